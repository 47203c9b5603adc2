from twisted.trial import unittest

import betting

DRIVERS = [["VER", "Max Verstappen"], ["NOR", "Lando Norris"],
           ["LEC", "Charles Leclerc"], ["HAM", "Lewis Hamilton"]]

class PlaceBetTests(unittest.TestCase):
    def test_new_and_updated_bet(self):
        bets = betting.placeBet([], "Monaco GP", "Alice", ["ver", "NOR", "Lec"], DRIVERS)
        self.assertEqual(bets, [["monaco gp", "alice", "ver", "nor", "lec", "0"]])
        betting.placeBet(bets, "Monaco GP", "alice", ["HAM", "VER", "NOR"], DRIVERS)
        self.assertEqual(bets, [["monaco gp", "alice", "ham", "ver", "nor", "0"]])
        self.assertEqual(betting.findBet(bets, "MONACO GP", "ALICE")[2], "ham")

    def test_invalid_bets(self):
        for codes, message in [(["VER", "NOR"], "The bet must contain 3 drivers."),
                               (["VER", "NOR", "XXX"], "Invalid drivers."),
                               (["VER", "VER", "NOR"], "Invalid drivers.")]:
            e = self.assertRaises(betting.BetError, betting.placeBet,
                                  [], "Monaco GP", "alice", codes, DRIVERS)
            self.assertEqual(str(e), message)

class ScoringTests(unittest.TestCase):
    def test_score(self):
        podium = ["VER", "NOR", "LEC"]
        self.assertEqual(betting.scoreBet(["ver", "nor", "lec"], podium), 25)
        self.assertEqual(betting.scoreBet(["ver", "lec", "nor"], podium), 11)
        self.assertEqual(betting.scoreBet(["ham", "ver", "nor"], podium), 6)
        self.assertEqual(betting.scoreBet(["ham", "sai", "alo"], podium), 0)

    def test_process_bets(self):
        bets = [["monaco gp", "alice", "ver", "nor", "lec", "0"],
                ["monaco gp", "bob", "ham", "ver", "lec", "0"],
                ["canada gp", "alice", "ver", "nor", "lec", "0"]]
        users = [["alice", "UTC", "10", ""], ["Bob", "UTC", "", ""]]
        self.assertEqual(betting.processBets(bets, users, "Monaco GP", ["VER", "NOR", "LEC"]), 2)
        self.assertEqual([b[5] for b in bets], ["25", "8", "0"])
        self.assertEqual([u[2] for u in users], ["35", "8"])

    def test_points(self):
        users = [["bob", "UTC", "8"], ["[alice]", "UTC", "35"], ["carol", "UTC", "0"], ["x"]]
        self.assertEqual(betting.formatPoints(users), "1. ALI 35 | 2. BOB 8")
        self.assertIsNone(betting.formatPoints([["carol", "UTC", "0"]]))
