"""
tasks.py - background pollers run from task.LoopingCall by the bot.

EventReminder announces events that are about to start; FeedPoller
announces new RSS/Atom items.  Both talk to IRC only through the say
callable they are given.
"""

from collections import deque
from datetime import datetime, timedelta, timezone

from twisted.internet import defer, threads
from twisted.python import log

import fetchers
from records import RecordError, parseEventTime

class EventReminder:
    def __init__(self, records, say, warning=300, trigger="!"):
        self.records = records
        self.say = say
        self.warning = warning
        self.trigger = trigger
        # recently announced events, so each one is only announced once
        self.announced = deque(maxlen=5)

    def check(self, now=None):
        if now is None:
            now = datetime.now(timezone.utc)
        try:
            event = self.records.nextEvent(now=now)
        except RecordError as e:
            log.msg(f"EventReminder: {e}")
            return
        if event is None:
            return
        if (parseEventTime(event[3]) - now).total_seconds() > self.warning:
            return
        name = " ".join(event[:3])
        if name in self.announced:
            return
        self.announced.append(name)
        channel = event[4]
        self.say(channel, f"\x034Starting in {self.warning // 60} minutes:\x03 \x02{name}\x02")
        if len(event) > 5 and event[5]:
            self.say(channel, f"Event link: {event[5]}")
        if len(event) > 6 and event[6].lower() == "notify":
            self.mention(channel)

    def mention(self, channel):
        try:
            users = self.records.read("users")
        except RecordError as e:
            log.msg(f"EventReminder: {e}")
            return
        nicks = [u[0] for u in users if len(u) > 3 and channel in u[3].split(":")]
        if nicks:
            self.say(channel, " ".join(nicks))
            self.say(channel, f"Use {self.trigger}notify off to stop getting mentions for events on this channel.")

class FeedPoller:
    def __init__(self, records, say, maxAge=7200, timeout=10, fetch=None):
        self.records = records
        self.say = say
        self.maxAge = timedelta(seconds=maxAge)
        self.timeout = timeout
        self.fetch = fetch or (lambda url: threads.deferToThread(fetchers.fetchText, url, self.timeout))
        self.running = False

    def newItems(self, document, lastSeen, now):
        """Items published after lastSeen and no older than maxAge, oldest first."""
        fresh = [i for i in fetchers.parseFeed(document)
                 if (lastSeen is None or i[2] > lastSeen) and now - i[2] < self.maxAge]
        return sorted(fresh, key=lambda i: i[2])

    def announceFeed(self, row, document, now):
        """Announce new items of one feed row and return True if the row changed."""
        name, _, channel = row[:3]
        lastSeen = fetchers.parseTimestamp(row[3]) if len(row) > 3 else None
        items = self.newItems(document, lastSeen, now)
        for title, link, published in items:
            self.say(channel, f"\x02[{name}] [{title}]\x02")
            self.say(channel, fetchers.cleanLink(link))
        if not items:
            return False
        row[3:] = [items[-1][2].isoformat()]
        return True

    @defer.inlineCallbacks
    def poll(self, now=None):
        # a slow feed can outlast the interval; never overlap two polls
        if self.running:
            return
        self.running = True
        try:
            feeds = self.records.read("feeds")
            changed = False
            for row in feeds:
                if len(row) < 3:
                    continue
                try:
                    document = yield self.fetch(row[1])
                    changed = self.announceFeed(row, document, now or datetime.now(timezone.utc)) or changed
                except Exception:
                    log.err(None, f"FeedPoller: {row[0]} ({row[1]}) failed")
            if changed:
                self.records.write("feeds", feeds)
        except RecordError as e:
            log.msg(f"FeedPoller: {e}")
        finally:
            self.running = False
