#!/usr/bin/env python3
# -*- coding: UTF-8 -*-
"""

*** THIS IS THE SCHUMACHER BOT ***

schumacher.py - an IRC bot for motorsport channels: upcoming sessions,
                championship standings, quotes, news feeds, and a quiz
                and poll game.

Configuration lives in Schumacher.toml (see config.py for the keys and
defaults).  Data lives in flat CSV tables in the configured datadir
(see records.py for the layouts).
"""

from twisted.internet import reactor, ssl, task, threads
from twisted.internet.protocol import ReconnectingClientFactory
from twisted.words.protocols import irc
from twisted.python import log
from twisted.python.logfile import DailyLogFile
from datetime import datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
import argparse
import random   # for !ask and !quote
import sys

import betting
import fetchers
from config import SchumacherConfig
from records import RecordStore, RecordError, parseEventTime
from sessions import (SessionSupervisor, AnswerRouter, SessionBusy,
                      SessionError, QuestionPoolError)
from tasks import EventReminder, FeedPoller

# "!next" shortcuts -> (category, session) as stored in the events table
NEXT_SHORTCUTS = {"f1"        : ("[Formula 1]", "any"),
                  "formula1"  : ("[Formula 1]", "any"),
                  "f2"        : ("[Formula 2]", "any"),
                  "formula2"  : ("[Formula 2]", "any"),
                  "f3"        : ("[Formula 3]", "any"),
                  "formula3"  : ("[Formula 3]", "any"),
                  "q"         : ("[Formula 1]", "Qualifying"),
                  "quali"     : ("[Formula 1]", "Qualifying"),
                  "qualy"     : ("[Formula 1]", "Qualifying"),
                  "qualifier" : ("[Formula 1]", "Qualifying"),
                  "qualifying": ("[Formula 1]", "Qualifying"),
                  "r"         : ("[Formula 1]", "Race"),
                  "race"      : ("[Formula 1]", "Race"),
                  "s"         : ("[Formula 1]", "Sprint Race"),
                  "sprint"    : ("[Formula 1]", "Sprint Race")}

def parseCommand(message, trigger):
    """Split a trigger-prefixed line into [name, arg, ...]; None if it is not a command."""
    if len(message) <= len(trigger) or not message.startswith(trigger):
        return None
    msgwords = message[len(trigger):].split()
    if not msgwords:
        return None
    return msgwords

def countdown(delta):
    minutes = int(delta.total_seconds()) // 60
    return f"{minutes // 1440} day(s), {minutes // 60 % 24} hour(s), {minutes % 60} minute(s)"

def utcOffset(local):
    """Offset label such as UTC+2 or UTC-3:30 for an aware datetime."""
    minutes = int(local.utcoffset().total_seconds()) // 60
    sign = "-" if minutes < 0 else "+"
    hours, minutes = divmod(abs(minutes), 60)
    if minutes:
        return f"UTC{sign}{hours}:{minutes:02d}"
    return f"UTC{sign}{hours}"

class SchumacherProtocol(irc.IRCClient):
    versionName = "schumacher.py"
    versionNum = "0.1"

    looping_calls = None
    commands = {}

    def __init__(self, config, records, supervisor):
        self.config = config
        self.nickname = config.nick
        self.username = config.username
        self.realname = config.realname
        # IRCClient paces outgoing lines at lineRate seconds; None sends immediately
        self.lineRate = config.line_rate or None
        self.records = records
        self.supervisor = supervisor
        self.router = AnswerRouter(supervisor)
        try:
            with open(config.password_file, "r") as f:
                self.nickservPassword = f.read().strip()
        except (IOError, OSError) as e:
            log.msg(f"Could not read password file {config.password_file}: {e}")
            self.nickservPassword = None
        self._initializeCommands()

    def _initializeCommands(self):
        """Initialize command handlers."""
        # Commands must be lowercase here.
        self.commands = {"a"          : self.doAsk,
                         "ask"        : self.doAsk,
                         "b"          : self.doBet,
                         "bet"        : self.doBet,
                         "drivers"    : self.doDrivers,
                         "c"          : self.doHelp,
                         "h"          : self.doHelp,
                         "commands"   : self.doHelp,
                         "help"       : self.doHelp,
                         "n"          : self.doNext,
                         "next"       : self.doNext,
                         "ny"         : self.doNotify,
                         "notify"     : self.doNotify,
                         "p"          : self.doPoll,
                         "poll"       : self.doPoll,
                         "pb"         : self.doProcessBets,
                         "processbets": self.doProcessBets,
                         "points"     : self.doPoints,
                         "wbc"        : self.doPoints,
                         "qz"         : self.doQuiz,
                         "quiz"       : self.doQuiz,
                         "q"          : self.doQuote,
                         "quote"      : self.doQuote,
                         "rr"         : self.doRegister,
                         "register"   : self.doRegister,
                         "w"          : self.doWeather,
                         "weather"    : self.doWeather,
                         "wdc"        : self.doStandings,
                         "wcc"        : self.doStandings}

    def _startMonitoringTasks(self):
        """Start periodic monitoring tasks."""
        self.looping_calls = {"events": task.LoopingCall(self.checkEvents),
                              "feeds": task.LoopingCall(self.checkFeeds)}
        for call in self.looping_calls.values():
            call.clock = self.factory.clock
        self.looping_calls["events"].start(self.config.event_interval, now=False)
        self.looping_calls["feeds"].start(self.config.feed_interval, now=False)

    def signedOn(self):
        self.factory.resetDelay()
        if self.nickservPassword:
            self.msg("NickServ", f"identify {self.nickname} {self.nickservPassword}")
        for c in self.config.channels:
            self.join(c)
        self._startMonitoringTasks()

    def connectionLost(self, reason=None):
        irc.IRCClient.connectionLost(self, reason)
        if self.looping_calls is None: return
        for call in self.looping_calls.values():
            if call.running:
                call.stop()

    def reply(self, replyto, message):
        self.msg(replyto, message)

    def checkEvents(self):
        try:
            self.factory.reminder.check()
        except Exception:
            log.err(None, "EventReminder: check failed")

    def checkFeeds(self):
        return self.factory.feeds.poll()

    # Listen to the chatter
    def privmsg(self, user, channel, message):
        sender = user.partition("!")[0]
        private = channel == self.nickname
        replyto = sender if private else channel
        msgwords = parseCommand(message.strip(), self.config.trigger)
        if msgwords is None:
            if private:
                return
            if self.router.route(channel, sender, message):
                return
            url = fetchers.findURL(message)
            if url and not self.supervisor.activeIn(channel):
                self.doTitle(channel, url)
            return
        command = msgwords[0].lower()
        if command not in self.commands:
            return
        try:
            self.commands[command](sender, replyto, msgwords)
        except Exception:
            log.err(None, f"{command} from {sender} in {replyto} failed")

    def doHelp(self, sender, replyto, msgwords):
        t = self.config.trigger
        help = [f"{t}ask <question> - Ask the bot a yes/no question.",
                f"{t}bet [first second third] - Bet on the podium of the next F1 race.",
                f"{t}drivers - List the driver codes for bets.",
                f"{t}help [command] - Show this help message.",
                f"{t}next [category] - Show the next motorsport event.",
                f"{t}notify [on|off] - Get mentioned when events start on this channel.",
                f"{t}points - Show the betting championship standings.",
                f"{t}poll <question;option 1;option 2> - Start a poll.",
                f"{t}processbets - Score the bets on the last F1 race (admins only).",
                f"{t}quiz [number] - Start an F1 quiz game.",
                f"{t}quote [get|add] [text] - Get a random quote or add one.",
                f"{t}register - Register for bets.",
                f"{t}wcc - Show the current World Constructor Championship standings.",
                f"{t}wdc - Show the current World Driver Championship standings.",
                f"{t}weather [location|c|f] - Show the weather, or set your location or units."]
        search = "".join(msgwords[1:]).lower()
        if search.startswith(t):
            search = search[len(t):]
        for line in help:
            if not search:
                self.reply(replyto, line)
            elif line[len(t):].startswith(search):
                self.reply(replyto, line)
                return

    def doAsk(self, sender, replyto, msgwords):
        if len(msgwords) < 2:
            self.reply(replyto, f"Usage: {self.config.trigger}ask <question>")
            return
        try:
            answers = self.records.read("answers")
        except RecordError as e:
            log.msg(f"doAsk: {e}")
            self.reply(replyto, "Error getting answer.")
            return
        if not answers:
            self.reply(replyto, "I have no answers for you.")
            return
        self.reply(replyto, random.choice(answers)[0])

    def doQuote(self, sender, replyto, msgwords):
        args = msgwords[1:]
        try:
            quotes = self.records.read("quotes")
        except RecordError as e:
            log.msg(f"doQuote: {e}")
            self.reply(replyto, "Error getting quote.")
            return
        if not args or args[0].lower() == "get":
            if not quotes:
                self.reply(replyto, "No quotes yet.")
                return
            date, text = random.choice(quotes)[:2]
            self.reply(replyto, f"{text} - {date}")
        elif len(args) > 1 and args[0].lower() == "add":
            quotes.append([datetime.now().strftime("%d-%m-%Y"), " ".join(args[1:])])
            try:
                self.records.write("quotes", quotes)
            except RecordError as e:
                log.msg(f"doQuote: {e}")
                self.reply(replyto, "Error adding quote.")
                return
            self.reply(replyto, "Quote added.")
        else:
            self.reply(replyto, f"Usage: {self.config.trigger}quote [get|add] [text]")

    def userZone(self, sender):
        """The sender's time zone from the users table, falling back to the configured default."""
        name = self.config.default_timezone
        try:
            user = self.records.findUser(sender)
        except RecordError as e:
            log.msg(f"userZone: {e}")
            user = None
        if user and len(user) > 1 and user[1]:
            name = user[1]
        try:
            return ZoneInfo(name)
        except (ZoneInfoNotFoundError, ValueError):
            log.msg(f"userZone: unknown time zone {name} for {sender}")
            return ZoneInfo(self.config.default_timezone)

    def doNext(self, sender, replyto, msgwords):
        search = " ".join(msgwords[1:])
        if search:
            category, session = NEXT_SHORTCUTS.get(search.lower(), (f"[{search}]", "any"))
        else:
            category, session = "any", "any"
        now = datetime.now(timezone.utc)
        try:
            event = self.records.nextEvent(category, session, now)
        except RecordError as e:
            log.msg(f"doNext: {e}")
            self.reply(replyto, "Error getting events.")
            return
        if event is None:
            self.reply(replyto, "No event found.")
            return
        start = parseEventTime(event[3])
        local = start.astimezone(self.userZone(sender))
        self.reply(replyto, f"{local:%A}, {local.day} {local:%B} at {local:%H:%M} "
                          f"\x02{local.tzname()} ({utcOffset(local)})\x02 | {' '.join(event[:3])} | "
                          f"{countdown(start - now)}")

    def doNotify(self, sender, replyto, msgwords):
        if replyto == sender:
            self.reply(replyto, "Notifications are per channel, use this command on a channel.")
            return
        try:
            users = self.records.read("users")
        except RecordError as e:
            log.msg(f"doNotify: {e}")
            self.reply(replyto, "Error getting users.")
            return
        user = next((u for u in users if u[0].lower() == sender.lower()), None)
        if user is None:
            user = [sender, self.config.default_timezone, "0", ""]
            users.append(user)
        while len(user) < 4:
            user.append("")
        channels = [c for c in user[3].split(":") if c]
        setting = msgwords[1].lower() if len(msgwords) > 1 else ""
        if setting == "on":
            if replyto not in channels:
                channels.append(replyto)
        elif setting == "off":
            channels = [c for c in channels if c != replyto]
        else:
            state = "on" if replyto in channels else "off"
            self.reply(replyto, f"Event notifications for {replyto} are {state}. "
                              f"Usage: {self.config.trigger}notify [on|off]")
            return
        user[3] = ":".join(channels)
        try:
            self.records.write("users", users)
        except RecordError as e:
            log.msg(f"doNotify: {e}")
            self.reply(replyto, "Error updating notifications.")
            return
        self.reply(replyto, f"Event notifications for {replyto} turned {setting}.")

    def doStandings(self, sender, replyto, msgwords):
        championship = "driver" if msgwords[0].lower() == "wdc" else "constructor"
        url = fetchers.standingsURL(self.config.standings_url, championship)
        d = threads.deferToThread(fetchers.fetchJSON, url, self.config.http_timeout)
        d.addCallback(fetchers.formatStandings, championship)

        def report(line):
            self.factory.say(replyto, line or "No standings available yet.")

        def failed(failure):
            log.err(failure, f"doStandings: {url}")
            self.factory.say(replyto, f"Error getting {championship} standings.")

        d.addCallbacks(report, failed)
        return d

    def doRegister(self, sender, replyto, msgwords):
        try:
            users = self.records.read("users", missingOk=True)
        except RecordError as e:
            log.msg(f"doRegister: {e}")
            self.reply(replyto, "Error getting users.")
            return
        if any(u[0].lower() == sender.lower() for u in users):
            self.reply(replyto, "You are already registered.")
            return
        users.append([sender.lower(), self.config.default_timezone, "0", ""])
        try:
            self.records.write("users", users)
        except RecordError as e:
            log.msg(f"doRegister: {e}")
            self.reply(replyto, "Error registering user.")
            return
        self.reply(replyto, "You were successfully registered.")

    def doBet(self, sender, replyto, msgwords):
        try:
            user = self.records.findUser(sender)
            event = self.records.nextEvent("[Formula 1]", "Race")
            bets = self.records.read("bets", missingOk=True)
        except RecordError as e:
            log.msg(f"doBet: {e}")
            self.reply(replyto, "Error getting bets.")
            return
        if user is None:
            self.reply(replyto, f"You're not a registered user. Use {self.config.trigger}register first.")
            return
        if event is None:
            self.reply(replyto, "Bets are closed.")
            return
        race = event[1]
        if len(msgwords) == 1:
            bet = betting.findBet(bets, race, sender)
            if bet is None:
                self.reply(replyto, f"You haven't placed a bet for the {race} yet.")
            else:
                self.reply(replyto, f"Your current bet for the {race}: {' '.join(bet[2:5]).upper()}")
            return
        try:
            betting.placeBet(bets, race, sender, msgwords[1:], self.records.read("drivers"))
            self.records.write("bets", bets)
        except betting.BetError as e:
            self.reply(replyto, str(e))
            return
        except RecordError as e:
            log.msg(f"doBet: {e}")
            self.reply(replyto, "Error updating bet.")
            return
        self.reply(replyto, f"Your bet for the {race} was successfully updated.")

    def doDrivers(self, sender, replyto, msgwords):
        try:
            drivers = self.records.read("drivers")
        except RecordError as e:
            log.msg(f"doDrivers: {e}")
            self.reply(replyto, "Could not get drivers.")
            return
        self.reply(replyto, " | ".join(d[0].upper() for d in drivers) or "No drivers yet.")

    def doPoints(self, sender, replyto, msgwords):
        try:
            users = self.records.read("users")
        except RecordError as e:
            log.msg(f"doPoints: {e}")
            self.reply(replyto, "Error getting users.")
            return
        self.reply(replyto, betting.formatPoints(users) or "No points yet.")

    def doProcessBets(self, sender, replyto, msgwords):
        if sender.lower() not in [a.lower() for a in self.config.admins]:
            self.reply(replyto, "Only the bot admins can use this command.")
            return
        try:
            event = self.records.lastEvent("[Formula 1]", "Race")
        except RecordError as e:
            log.msg(f"doProcessBets: {e}")
            self.reply(replyto, "Error getting events.")
            return
        if event is None:
            self.reply(replyto, "No race to process yet.")
            return
        race = event[1]
        url = fetchers.resultsURL(self.config.standings_url)
        d = threads.deferToThread(fetchers.fetchJSON, url, self.config.http_timeout)
        d.addCallback(fetchers.parseRaceResult)

        def process(result):
            # the results feed lags behind the race; never score against an older race
            if result is None or result[1] < parseEventTime(event[3]).date():
                self.factory.say(replyto, f"No results for the {race} yet.")
                return
            podium = result[2]
            results = self.records.read("results", missingOk=True)
            if any(r[0].lower() == race.lower() for r in results):
                self.factory.say(replyto, f"{race} bets have already been processed in the past.")
                return
            bets = self.records.read("bets", missingOk=True)
            users = self.records.read("users")
            scored = betting.processBets(bets, users, race, podium)
            self.records.write("users", users)
            self.records.write("bets", bets)
            results.append([race.lower()] + podium)
            self.records.write("results", results)
            log.msg(f"doProcessBets: {race} podium {podium}, {scored} bet(s) scored")
            self.factory.say(replyto, f"{race} bets successfully processed.")

        def failed(failure):
            log.err(failure, f"doProcessBets: {race}")
            self.factory.say(replyto, "Error processing bets.")

        d.addCallback(process)
        d.addErrback(failed)
        return d

    def doWeather(self, sender, replyto, msgwords):
        if not self.config.weather_api_key:
            self.reply(replyto, "Weather is not configured.")
            return
        args = msgwords[1:]
        try:
            settings = self.records.read("weather", missingOk=True)
        except RecordError as e:
            log.msg(f"doWeather: {e}")
            self.reply(replyto, "Error getting weather settings.")
            return
        setting = next((s for s in settings if s[0].lower() == sender.lower()), None)
        if len(args) == 1 and args[0].lower() in ("c", "f"):
            if setting is None:
                self.reply(replyto, "Get the weather for some location before setting the units.")
                return
            setting[1:2] = [args[0].lower()]
            try:
                self.records.write("weather", settings)
            except RecordError as e:
                log.msg(f"doWeather: {e}")
                self.reply(replyto, "Error storing weather units.")
                return
            self.reply(replyto, "Temperature units updated.")
            return
        if args:
            location = " ".join(args)
            if setting is None:
                setting = [sender, "c", location]
                settings.append(setting)
            else:
                setting[:] = [setting[0], setting[1] if len(setting) > 1 else "c", location]
            try:
                self.records.write("weather", settings)
            except RecordError as e:
                log.msg(f"doWeather: {e}")
                self.reply(replyto, "Error storing weather location.")
                return
        elif setting is None or len(setting) < 3 or not setting[2]:
            self.reply(replyto, "Please provide a location as argument.")
            return
        units = setting[1].upper() if setting[1].upper() in fetchers.WEATHER_UNITS else "C"
        location = setting[2]
        d = threads.deferToThread(fetchers.fetchJSON, self.config.weather_url, self.config.http_timeout,
                                  fetchers.weatherParams(location, units, self.config.weather_api_key))
        d.addCallback(fetchers.formatWeather, units)

        def failed(failure):
            log.err(failure, f"doWeather: {location}")
            self.factory.say(replyto, "Could not fetch weather for that location.")

        d.addCallbacks(lambda line: self.factory.say(replyto, line), failed)
        return d

    def doTitle(self, channel, url):
        d = threads.deferToThread(fetchers.fetchTitle, url, self.config.http_timeout)

        def report(title):
            if title:
                self.factory.say(channel, f"Title: {title}")

        def failed(failure):
            log.msg(f"doTitle: {url}: {failure.getErrorMessage()}")

        d.addCallbacks(report, failed)
        return d

    def loadQuestions(self, channel):
        try:
            return self.records.quizQuestions(channel if self.config.quiz_per_channel else None)
        except RecordError as e:
            log.msg(f"doQuiz: {e}")
            raise QuestionPoolError("Error reading questions.") from e

    def doQuiz(self, sender, replyto, msgwords):
        if replyto == sender: return
        count = msgwords[1] if len(msgwords) > 1 else None
        try:
            self.supervisor.startQuiz(replyto, self.factory.say,
                                      lambda: self.loadQuestions(replyto), count)
        except SessionBusy as e:
            log.msg(f"ignoring quiz from {sender} in {replyto}: {e}")
        except SessionError as e:
            self.reply(replyto, str(e))

    def doPoll(self, sender, replyto, msgwords):
        if replyto == sender: return
        try:
            self.supervisor.startPoll(replyto, self.factory.say, " ".join(msgwords[1:]))
        except SessionBusy as e:
            log.msg(f"ignoring poll from {sender} in {replyto}: {e}")
        except SessionError as e:
            self.reply(replyto, str(e))

class SchumacherFactory(ReconnectingClientFactory):
    def __init__(self, config, records=None, supervisor=None, clock=None):
        self.config = config
        self.clock = clock or reactor
        self.records = records or RecordStore(config.datadir)
        self.supervisor = supervisor or SessionSupervisor(
            quizTimeout=config.quiz_timeout,
            pollTimeout=config.poll_timeout,
            defaultRounds=config.quiz_default_rounds,
            maxRounds=config.quiz_max_rounds,
            backlog=config.answer_backlog,
            clock=self.clock)
        # pollers keep their state (announced events, running polls) across reconnects
        self.reminder = EventReminder(self.records, self.say,
                                      config.event_warning, config.trigger)
        self.feeds = FeedPoller(self.records, self.say,
                                config.feed_max_age, config.http_timeout)
        self.bot = None

    def say(self, channel, message):
        # games and background tasks outlive a single connection
        if self.bot is None:
            log.msg(f"not connected, dropping message for {channel}: {message}")
            return
        self.bot.reply(channel, message)

    def startedConnecting(self, connector):
        log.msg('Started to connect.')

    def buildProtocol(self, addr):
        log.msg('Connected.')
        log.msg('Resetting reconnection delay')
        self.resetDelay()
        p = SchumacherProtocol(self.config, self.records, self.supervisor)
        p.factory = self
        self.bot = p
        return p

    def clientConnectionLost(self, connector, reason):
        log.msg(f'Lost connection.  Reason: {reason.getErrorMessage()}')
        self.bot = None
        ReconnectingClientFactory.clientConnectionLost(self, connector, reason)

    def clientConnectionFailed(self, connector, reason):
        log.msg(f'Connection failed. Reason: {reason.getErrorMessage()}')
        ReconnectingClientFactory.clientConnectionFailed(self, connector, reason)

def main(argv=None):
    parser = argparse.ArgumentParser(description="Schumacher motorsport IRC bot")
    parser.add_argument("--config", help="path to Schumacher.toml")
    parser.add_argument("--nick", help="nick to be used by the bot")
    parser.add_argument("--channels", help="comma separated channels to join")
    args = parser.parse_args(argv)

    config = SchumacherConfig().fetch(args.config)
    if args.nick:
        config.nick = args.nick
    if args.channels:
        config.channels = [c for c in args.channels.split(",") if c]

    # initialize logging
    if config.logfile:
        log.startLogging(DailyLogFile.fromFullPath(config.logfile))
    else:
        log.startLogging(sys.stdout)

    # create factory protocol and application
    f = SchumacherFactory(config)

    # connect factory to this host and port
    if config.ssl:
        reactor.connectSSL(config.server, config.port, f, ssl.ClientContextFactory())
    else:
        reactor.connectTCP(config.server, config.port, f)

    # run bot
    reactor.run()

if __name__ == '__main__':
    main()
