"""
sessions.py - quiz and poll mini-games for the Schumacher bot.

Only one game runs at a time across all channels.  The SessionSupervisor
owns that state; a running session consumes participant lines and timer
expiries from a single DeferredQueue, so answers and timeouts are always
handled one at a time, in arrival order.

Everything here runs on the reactor thread.  Time comes from the clock
passed in (the reactor by default), which lets tests drive it with
twisted.internet.task.Clock.
"""

from collections import Counter, namedtuple
import random

from twisted.internet import defer, reactor
from twisted.python import log

QUIZ = "quiz"
POLL = "poll"

POLL_USAGE = "Syntax: !poll question;option 1;option 2;option n"

ParticipantAnswer = namedtuple("ParticipantAnswer", "identity text")
PollOption = namedtuple("PollOption", "number text")

class TimeoutSignal:
    """Queued by the TimeoutScheduler when a round (or poll) runs out of time."""
    __slots__ = ()

    def __repr__(self):
        return "TIMEOUT"

TIMEOUT = TimeoutSignal()

class SessionError(Exception):
    """A session could not be started."""

class UsageError(SessionError):
    pass

class QuestionPoolError(SessionError):
    pass

class SessionBusy(SessionError):
    pass

def parseRoundCount(arg, default=5, maximum=10):
    """Number of quiz rounds requested; anything missing or outside 1..maximum gives default."""
    try:
        n = int(arg)
    except (TypeError, ValueError):
        return default
    if n < 1 or n > maximum:
        return default
    return n

def parsePoll(payload):
    """Split 'question;option 1;option 2' into the question and numbered options."""
    fields = [f.strip() for f in payload.split(";")]
    prompt = fields[0]
    options = [f for f in fields[1:] if f]
    if not prompt or not options:
        raise UsageError(POLL_USAGE)
    return prompt, [PollOption(n, text) for n, text in enumerate(options, 1)]

def drawQuestions(pool, count, rng=random):
    pool = list(pool)
    if not pool:
        raise QuestionPoolError("No quiz questions available.")
    rng.shuffle(pool)
    return pool[:count]

class TimeoutScheduler:
    """Single pending timer that queues TIMEOUT into a session's answer queue."""

    def __init__(self, answers, clock=None):
        self.answers = answers
        self.clock = clock or reactor
        self.pending = None

    def arm(self, duration):
        self.stop()
        self.pending = self.clock.callLater(duration, self._fire)

    def reset(self, duration):
        if self.pending is not None and self.pending.active():
            self.pending.reset(duration)
        else:
            self.arm(duration)

    def stop(self):
        if self.pending is not None and self.pending.active():
            self.pending.cancel()
        self.pending = None

    def _fire(self):
        self.pending = None
        self.answers.put(TIMEOUT)

class Session:
    """Base run loop shared by quizzes and polls.

    Subclasses implement begin(), answered(identity, text), timedOut()
    and conclude(), and set self.finished when the game is over.
    """
    kind = None

    def __init__(self, channel, say, timeout, clock=None, backlog=64):
        self.channel = channel
        self.say = say
        self.timeout = timeout
        self.clock = clock or reactor
        self.backlog = backlog
        self.answers = defer.DeferredQueue()
        self.timer = TimeoutScheduler(self.answers, self.clock)
        self.items = []
        self.itemIndex = 0
        self.tally = {}
        self.startedAt = None
        self.finished = False

    def announce(self, message):
        self.say(self.channel, message)

    def deliver(self, identity, text):
        """Queue a participant line without ever blocking the caller.

        Returns False when the line was dropped because the session is
        over or its backlog is full.
        """
        if self.finished or len(self.answers.pending) >= self.backlog:
            return False
        self.answers.put(ParticipantAnswer(identity, text))
        return True

    @defer.inlineCallbacks
    def run(self, onEnd=None):
        self.startedAt = self.clock.seconds()
        try:
            self.begin()
            while not self.finished:
                message = yield self.answers.get()
                if isinstance(message, TimeoutSignal):
                    self.timedOut()
                else:
                    self.answered(message.identity, message.text)
            self.conclude()
        finally:
            self.finished = True
            self.timer.stop()
            if onEnd is not None:
                onEnd(self)

    def begin(self):
        raise NotImplementedError

    def answered(self, identity, text):
        raise NotImplementedError

    def timedOut(self):
        raise NotImplementedError

    def conclude(self):
        raise NotImplementedError

class QuizSession(Session):
    kind = QUIZ

    def __init__(self, channel, say, items, timeout=20, clock=None, backlog=64):
        Session.__init__(self, channel, say, timeout, clock, backlog)
        self.items = list(items)
        # identity -> sequence number of the answer that gave them their current score
        self.reached = {}
        self.correctAnswers = 0
        self.roundStarted = None

    def begin(self):
        self.roundStarted = self.clock.seconds()
        self.timer.arm(self.timeout)
        self.askQuestion()

    def askQuestion(self):
        remaining = max(0, self.timeout - (self.clock.seconds() - self.roundStarted))
        self.announce(f"{self.itemIndex + 1}/{len(self.items)} - "
                      f"{self.items[self.itemIndex].prompt} ({remaining:0.0f} seconds remaining)")

    def answered(self, identity, text):
        if text.strip().lower() == self.items[self.itemIndex].answer.lower():
            self.announce("Correct!")
            self.correctAnswers += 1
            self.tally[identity] = self.tally.get(identity, 0) + 1
            self.reached[identity] = self.correctAnswers
            self.advance()
        else:
            # the round only ends on a correct answer or the timer; the clock keeps running
            self.announce("Wrong!")
            self.askQuestion()

    def timedOut(self):
        self.announce(f"Time's up... The correct answer was: {self.items[self.itemIndex].answer}")
        self.advance()

    def advance(self):
        self.itemIndex += 1
        if self.itemIndex >= len(self.items):
            self.finished = True
            return
        self.roundStarted = self.clock.seconds()
        self.timer.reset(self.timeout)
        self.askQuestion()

    def leaderboard(self):
        """(identity, score) pairs, best first; equal scores rank whoever got there first."""
        return sorted(self.tally.items(),
                      key=lambda entry: (-entry[1], self.reached[entry[0]]))

    def conclude(self):
        self.timer.stop()
        self.announce("The quiz is over!")
        board = self.leaderboard()
        if not board:
            self.announce("Nobody scored.")
            return
        self.announce("Score:")
        for identity, points in board:
            self.announce(f"{identity} - {points}")

class PollSession(Session):
    kind = POLL

    def __init__(self, channel, say, prompt, options, timeout=60, clock=None, backlog=64):
        Session.__init__(self, channel, say, timeout, clock, backlog)
        self.prompt = prompt
        self.items = list(options)

    def begin(self):
        self.announce(f"Poll: {self.prompt} ({self.timeout} seconds to vote)")
        for option in self.items:
            self.announce(f"{option.number}. {option.text}")
        self.timer.arm(self.timeout)

    def answered(self, identity, text):
        try:
            vote = int(text.strip())
        except ValueError:
            return
        if 1 <= vote <= len(self.items):
            self.tally[identity] = vote

    def timedOut(self):
        self.finished = True

    def results(self):
        """(option, votes, percentage) for every option, in option order."""
        counts = Counter(self.tally.values())
        total = sum(counts.values())
        return [(option, counts[option.number], counts[option.number] / total * 100)
                for option in self.items]

    def conclude(self):
        self.timer.stop()
        self.announce("The poll has ended.")
        if not self.tally:
            return
        self.announce("Results:")
        for option, votes, percentage in self.results():
            self.announce(f"{option.number}. {option.text} - {votes} vote(s), {percentage:.2f}%")

class SessionSupervisor:
    """Process-wide record of the one running game.

    tryStart() and markEnded() are only ever called on the reactor
    thread, which is what serializes them.
    """

    def __init__(self, quizTimeout=20, pollTimeout=60, defaultRounds=5,
                 maxRounds=10, backlog=64, clock=None, rng=None):
        self.quizTimeout = quizTimeout
        self.pollTimeout = pollTimeout
        self.defaultRounds = defaultRounds
        self.maxRounds = maxRounds
        self.backlog = backlog
        self.clock = clock or reactor
        self.rng = rng or random.Random()
        self.active = False
        self.kind = None
        self.channel = None
        self.session = None

    def tryStart(self, kind, channel):
        if self.active:
            return False
        self.active = True
        self.kind = kind
        self.channel = channel
        return True

    def markEnded(self, session=None):
        if session is not None and session is not self.session:
            return
        self.active = False
        self.kind = None
        self.channel = None
        self.session = None

    def activeIn(self, channel):
        return self.active and self.channel == channel

    def launch(self, session):
        if not self.tryStart(session.kind, session.channel):
            raise SessionBusy(f"a {self.kind} is already running in {self.channel}")
        self.session = session
        log.msg(f"starting {session.kind} in {session.channel}")
        d = session.run(onEnd=self.markEnded)
        d.addErrback(log.err, f"{session.kind} in {session.channel} failed")
        return session

    def startQuiz(self, channel, say, loadPool, count=None):
        """Start a quiz in channel.

        loadPool is only called once we know no other game is running, so
        a busy supervisor never touches the question table.
        """
        if self.active:
            raise SessionBusy(f"a {self.kind} is already running in {self.channel}")
        rounds = parseRoundCount(count, self.defaultRounds, self.maxRounds)
        items = drawQuestions(loadPool(), rounds, self.rng)
        return self.launch(QuizSession(channel, say, items, self.quizTimeout,
                                       self.clock, self.backlog))

    def startPoll(self, channel, say, payload):
        if self.active:
            raise SessionBusy(f"a {self.kind} is already running in {self.channel}")
        prompt, options = parsePoll(payload)
        return self.launch(PollSession(channel, say, prompt, options, self.pollTimeout,
                                       self.clock, self.backlog))

class AnswerRouter:
    """Hands non-command channel lines to the running game, if it lives in that channel."""

    def __init__(self, supervisor):
        self.supervisor = supervisor

    def route(self, channel, identity, text):
        session = self.supervisor.session
        if session is None or not self.supervisor.activeIn(channel):
            return False
        return session.deliver(identity, text)
