"""
betting.py - podium bets on Formula 1 races.

A bet row is [event, nick, first, second, third, points]; event and nick
are stored lowercased and driver codes as typed (lowercased).  Points of
processed bets are added to the users table (column 2).
"""

import re

CORRECT = 5         # driver in the predicted podium position
PODIUM = 3          # driver on the podium, but in another position
BOOST = 10          # bonus for a perfect podium

RE_NICK_JUNK = re.compile(r'[^A-Za-z0-9]+')

class BetError(Exception):
    """A bet that cannot be placed; the message is meant for the channel."""

def findBet(bets, event, nick):
    for bet in bets:
        if len(bet) > 4 and bet[0].lower() == event.lower() and bet[1].lower() == nick.lower():
            return bet
    return None

def placeBet(bets, event, nick, codes, drivers):
    """Add or replace nick's bet for event.  Returns the bet rows."""
    if len(codes) != 3:
        raise BetError("The bet must contain 3 drivers.")
    picks = [c.lower() for c in codes]
    known = {d[0].lower() for d in drivers if d}
    if len(set(picks)) != 3 or not set(picks) <= known:
        raise BetError("Invalid drivers.")
    row = [event.lower(), nick.lower()] + picks + ["0"]
    bet = findBet(bets, event, nick)
    if bet is None:
        bets.append(row)
    else:
        bet[:] = row
    return bets

def scoreBet(picks, podium):
    picks = [p.lower() for p in picks]
    podium = [p.lower() for p in podium]
    score = 0
    for pick, actual in zip(picks, podium):
        if pick == actual:
            score += CORRECT
        elif pick in podium:
            score += PODIUM
    if score == 3 * CORRECT:
        score += BOOST
    return score

def processBets(bets, users, event, podium):
    """Score every bet on event against podium and credit the users.

    Returns the number of bets scored.
    """
    scored = 0
    for bet in bets:
        if len(bet) < 5 or bet[0].lower() != event.lower():
            continue
        score = scoreBet(bet[2:5], podium)
        bet[5:] = [str(score)]
        scored += 1
        for user in users:
            if user and user[0].lower() == bet[1].lower():
                while len(user) < 3:
                    user.append("0")
                user[2] = str(userPoints(user) + score)
    return scored

def userPoints(user):
    try:
        return int(user[2])
    except (IndexError, ValueError):
        return 0

def formatPoints(users):
    """Betting championship as '1. ALI 30 | 2. BOB 10', or None if nobody scored."""
    ranked = sorted((u for u in users if u and userPoints(u) > 0),
                    key=userPoints, reverse=True)
    if not ranked:
        return None
    return " | ".join(f"{i}. {RE_NICK_JUNK.sub('', u[0]).upper()[:3]} {userPoints(u)}"
                      for i, u in enumerate(ranked, 1))
