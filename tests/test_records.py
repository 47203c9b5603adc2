import os
from datetime import datetime, timezone

from twisted.trial import unittest

from records import QuizItem, RecordError, RecordStore, parseEventTime

EVENTS = """\
[Formula 1],Monaco GP,Race,2030-05-26 13:00:00 UTC,#motorsport,https://example.org/monaco,notify
[Formula 2],Monaco,Feature Race,2030-05-26 09:00:00 UTC,#motorsport,,
[Formula 1],Canada GP,Qualifying,2030-06-08 20:00:00 UTC,#motorsport,,
[Formula 1],Canada GP,Race,2030-06-09 18:00:00 UTC,#motorsport,,
"""

def writeTable(datadir, table, text):
    with open(os.path.join(datadir, table + ".csv"), "w", encoding="UTF-8") as f:
        f.write(text)

class RecordStoreTests(unittest.TestCase):
    def setUp(self):
        self.datadir = self.mktemp()
        os.makedirs(self.datadir)
        self.records = RecordStore(self.datadir)

    def test_missing_table(self):
        self.assertRaises(RecordError, self.records.read, "quotes")
        self.assertEqual(self.records.read("bets", missingOk=True), [])

    def test_unknown_table(self):
        self.assertRaises(RecordError, self.records.read, "plugins")

    def test_write_then_read(self):
        rows = [["01-01-2030", "Leave me alone, I know what I'm doing."],
                ["02-01-2030", "Bwoah, with commas, and \"quotes\""]]
        self.records.write("quotes", rows)
        self.assertEqual(self.records.read("quotes"), rows)

    def test_write_failure(self):
        records = RecordStore(os.path.join(self.datadir, "missing", "dir"))
        self.assertRaises(RecordError, records.write, "quotes", [["a", "b"]])

    def test_quiz_questions(self):
        writeTable(self.datadir, "quiz",
                   "Who won in 2021?,Verstappen\n"
                   "Home of the Tifosi?,Monza,#motorsport\n"
                   "Only for others?,Yes,#other\n"
                   "Broken row\n"
                   "No answer?,\n")
        self.assertEqual(len(self.records.quizQuestions()), 3)
        self.assertEqual(self.records.quizQuestions("#MotorSport"),
                         [QuizItem("Who won in 2021?", "Verstappen"),
                          QuizItem("Home of the Tifosi?", "Monza")])

    def test_next_event(self):
        writeTable(self.datadir, "events", EVENTS)
        now = datetime(2030, 5, 26, 10, 0, tzinfo=timezone.utc)
        self.assertEqual(self.records.nextEvent(now=now)[1], "Monaco GP")
        self.assertEqual(self.records.nextEvent("[formula 1]", "qualifying", now)[1], "Canada GP")
        self.assertIsNone(self.records.nextEvent("[Formula 3]", "any", now))
        later = datetime(2030, 6, 10, tzinfo=timezone.utc)
        self.assertIsNone(self.records.nextEvent(now=later))

    def test_last_event(self):
        writeTable(self.datadir, "events", EVENTS)
        now = datetime(2030, 6, 9, 12, 0, tzinfo=timezone.utc)
        self.assertEqual(self.records.lastEvent("[Formula 1]", "Race", now)[1], "Monaco GP")
        self.assertEqual(self.records.lastEvent(now=now)[1], "Canada GP")
        early = datetime(2030, 5, 1, tzinfo=timezone.utc)
        self.assertIsNone(self.records.lastEvent("[Formula 1]", "Race", early))

    def test_next_event_bad_time(self):
        writeTable(self.datadir, "events", "[Formula 1],X,Race,tomorrow,#motorsport\n")
        self.assertRaises(RecordError, self.records.nextEvent)

    def test_find_user(self):
        writeTable(self.datadir, "users", "Gluon,Europe/Lisbon,10,#motorsport\n")
        self.assertEqual(self.records.findUser("gluon")[1], "Europe/Lisbon")
        self.assertIsNone(self.records.findUser("nobody"))

    def test_parse_event_time(self):
        self.assertEqual(parseEventTime("2030-05-26 13:00:00 UTC"),
                         datetime(2030, 5, 26, 13, 0, tzinfo=timezone.utc))
