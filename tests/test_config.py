import os

from twisted.trial import unittest

from config import SchumacherConfig

class ConfigTests(unittest.TestCase):
    def test_defaults(self):
        config = SchumacherConfig()
        self.assertEqual(config.trigger, "!")
        self.assertEqual(config.quiz_timeout, 20)
        self.assertEqual(config.poll_timeout, 60)
        self.assertEqual(config.quiz_default_rounds, 5)
        self.assertEqual(config.quiz_max_rounds, 10)

    def test_from_file_flattens_tables(self):
        path = self.mktemp()
        with open(path, "w") as f:
            f.write('[irc]\nnick = "Schumi"\nchannels = ["#f1", "#motorsport"]\n'
                    '[games]\nquiz_timeout = 30\nquiz_per_channel = true\n')
        config = SchumacherConfig().fetch(path)
        self.assertEqual(config.nick, "Schumi")
        self.assertEqual(config.channels, ["#f1", "#motorsport"])
        self.assertEqual(config.quiz_timeout, 30)
        self.assertTrue(config.quiz_per_channel)
        self.assertEqual(config.poll_timeout, 60)

    def test_missing_file(self):
        path = os.path.join(self.mktemp(), "Schumacher.toml")
        self.assertRaises(OSError, SchumacherConfig().fetch, path)
        self.assertEqual(len(self.flushLoggedErrors(OSError)), 1)
