"""
records.py - flat CSV tables backing the Schumacher bot.

Each table is a headerless CSV file named <table>.csv under the data
directory.  Column layouts (0-based):

  events  category, name, session, time ("%Y-%m-%d %H:%M:%S UTC"),
          channel, link, notify
  users   nick, timezone, points, channels (colon separated)
  quiz    question, answer [, channel]
  quotes  date, text
  answers text
  feeds   name, url, channel, last published time
  bets    event, nick, first, second, third, points
  drivers code, name
  results event, first, second, third (races whose bets were processed)
  weather nick, units (c or f), location
"""

import csv
import os
from collections import namedtuple
from datetime import datetime, timezone

EVENT_TIME_FORMAT = "%Y-%m-%d %H:%M:%S UTC"

TABLES = ("events", "users", "quiz", "quotes", "answers", "feeds",
          "bets", "drivers", "results", "weather")

QuizItem = namedtuple("QuizItem", "prompt answer")

class RecordError(Exception):
    """A table could not be read or written."""

def parseEventTime(s):
    return datetime.strptime(s, EVENT_TIME_FORMAT).replace(tzinfo=timezone.utc)

def matches(value, wanted):
    return wanted.lower() == "any" or value.lower() == wanted.lower()

class RecordStore:
    def __init__(self, datadir):
        self.datadir = datadir

    def path(self, table):
        if table not in TABLES:
            raise RecordError(f"Unknown table: {table}")
        return os.path.join(self.datadir, table + ".csv")

    def read(self, table, missingOk=False):
        """Rows of a table; with missingOk a table that does not exist yet reads as empty."""
        path = self.path(table)
        try:
            with open(path, newline='', encoding='UTF-8') as f:
                return [row for row in csv.reader(f) if row]
        except FileNotFoundError as e:
            if missingOk:
                return []
            raise RecordError(f"Error opening CSV file: {path}") from e
        except (IOError, OSError) as e:
            raise RecordError(f"Error opening CSV file: {path}") from e
        except csv.Error as e:
            raise RecordError(f"Error reading data from: {path}") from e

    def write(self, table, rows):
        path = self.path(table)
        try:
            with open(path, 'w', newline='', encoding='UTF-8') as f:
                csv.writer(f).writerows(rows)
        except (IOError, OSError, csv.Error) as e:
            raise RecordError(f"Error writing data to: {path}") from e

    def quizQuestions(self, channel=None):
        """Return the quiz pool as QuizItems.

        With a channel, only rows tagged for that channel and untagged
        rows are returned.  Rows without an answer are skipped.
        """
        pool = []
        for row in self.read("quiz"):
            if len(row) < 2 or not row[1].strip():
                continue
            tag = row[2].strip() if len(row) > 2 else ""
            if channel is not None and tag and tag.lower() != channel.lower():
                continue
            pool.append(QuizItem(row[0].strip(), row[1].strip()))
        return pool

    def nextEvent(self, category="any", session="any", now=None):
        """First event in file order matching both filters that has not started yet."""
        if now is None:
            now = datetime.now(timezone.utc)
        for row in self.read("events"):
            if len(row) < 5:
                continue
            if not (matches(row[0], category) and matches(row[2], session)):
                continue
            try:
                start = parseEventTime(row[3])
            except ValueError as e:
                raise RecordError(f"Error parsing time: {row[3]}") from e
            if start >= now:
                return row
        return None

    def findUser(self, nick):
        for user in self.read("users"):
            if user and user[0].lower() == nick.lower():
                return user
        return None

    def lastEvent(self, category="any", session="any", now=None):
        """Most recently started event matching both filters."""
        if now is None:
            now = datetime.now(timezone.utc)
        last = None
        for row in self.read("events"):
            if len(row) < 5:
                continue
            if not (matches(row[0], category) and matches(row[2], session)):
                continue
            try:
                start = parseEventTime(row[3])
            except ValueError as e:
                raise RecordError(f"Error parsing time: {row[3]}") from e
            if start < now and (last is None or start > last[0]):
                last = (start, row)
        return last[1] if last else None
