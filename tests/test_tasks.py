import os
from datetime import datetime, timedelta, timezone

from twisted.internet import defer
from twisted.trial import unittest

from records import RecordStore
from tasks import EventReminder, FeedPoller

NOW = datetime(2030, 5, 26, 12, 57, tzinfo=timezone.utc)

RSS = """<?xml version="1.0"?>
<rss version="2.0"><channel>
<item><title>Old news</title><link>https://n.example.org/old</link>
<pubDate>Sun, 26 May 2030 08:00:00 +0000</pubDate></item>
<item><title>Second</title><link>https://n.example.org/2</link>
<pubDate>Sun, 26 May 2030 12:30:00 +0000</pubDate></item>
<item><title>First</title><link>https://n.example.org/1</link>
<pubDate>Sun, 26 May 2030 12:00:00 +0000</pubDate></item>
</channel></rss>"""

class Recorder:
    def __init__(self):
        self.lines = []

    def __call__(self, channel, message):
        self.lines.append((channel, message))

class TaskTestCase(unittest.TestCase):
    def setUp(self):
        self.datadir = self.mktemp()
        os.makedirs(self.datadir)
        self.records = RecordStore(self.datadir)
        self.say = Recorder()

class EventReminderTests(TaskTestCase):
    def setUp(self):
        TaskTestCase.setUp(self)
        self.records.write("events", [
            ["[Formula 1]", "Monaco GP", "Race", "2030-05-26 13:00:00 UTC",
             "#motorsport", "https://example.org/live", "notify"],
            ["[Formula 1]", "Canada GP", "Race", "2030-06-09 18:00:00 UTC",
             "#motorsport", "", ""]])
        self.records.write("users", [["alice", "UTC", "0", "#motorsport:#f1"],
                                     ["bob", "UTC", "0", "#f1"],
                                     ["carol", "UTC", "0", "#motorsport"]])
        self.reminder = EventReminder(self.records, self.say, warning=300)

    def test_announces_once(self):
        self.reminder.check(NOW)
        self.reminder.check(NOW + timedelta(minutes=1))
        self.assertEqual(self.say.lines, [
            ("#motorsport", "\x034Starting in 5 minutes:\x03 \x02[Formula 1] Monaco GP Race\x02"),
            ("#motorsport", "Event link: https://example.org/live"),
            ("#motorsport", "alice carol"),
            ("#motorsport", "Use !notify off to stop getting mentions for events on this channel.")])

    def test_too_early(self):
        self.reminder.check(NOW - timedelta(minutes=10))
        self.assertEqual(self.say.lines, [])

    def test_missing_table(self):
        reminder = EventReminder(RecordStore(self.mktemp()), self.say)
        reminder.check(NOW)
        self.assertEqual(self.say.lines, [])

class FeedPollerTests(TaskTestCase):
    def setUp(self):
        TaskTestCase.setUp(self)
        self.records.write("feeds", [["Paddock", "https://n.example.org/rss", "#motorsport", ""]])
        self.fetched = []
        self.poller = FeedPoller(self.records, self.say, maxAge=7200, fetch=self.fetch)

    def fetch(self, url):
        self.fetched.append(url)
        return defer.succeed(RSS)

    @defer.inlineCallbacks
    def test_announces_new_items_oldest_first(self):
        yield self.poller.poll(NOW)
        self.assertEqual(self.fetched, ["https://n.example.org/rss"])
        self.assertEqual(self.say.lines, [
            ("#motorsport", "\x02[Paddock] [First]\x02"),
            ("#motorsport", "https://n.example.org/1"),
            ("#motorsport", "\x02[Paddock] [Second]\x02"),
            ("#motorsport", "https://n.example.org/2")])
        self.assertEqual(self.records.read("feeds")[0][3], "2030-05-26T12:30:00+00:00")

    @defer.inlineCallbacks
    def test_second_poll_is_quiet(self):
        yield self.poller.poll(NOW)
        del self.say.lines[:]
        yield self.poller.poll(NOW)
        self.assertEqual(self.say.lines, [])

    @defer.inlineCallbacks
    def test_fetch_failure_is_logged(self):
        def broken(url):
            return defer.fail(IOError("connection refused"))
        poller = FeedPoller(self.records, self.say, fetch=broken)
        yield poller.poll(NOW)
        self.assertEqual(self.say.lines, [])
        self.assertEqual(len(self.flushLoggedErrors(IOError)), 1)
        self.assertFalse(poller.running)
