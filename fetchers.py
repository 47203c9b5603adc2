"""
fetchers.py - blocking HTTP helpers and response parsers.

Everything that touches the network here is blocking (requests) and is
meant to be run with twisted.internet.threads.deferToThread.  The parsers
are plain functions so they can be fed canned documents.
"""

import re
import xml.etree.ElementTree as ET  # for RSS and Atom feeds
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime

import requests
from bs4 import BeautifulSoup

USER_AGENT = "Schumacher IRC Bot/1.0"

RE_URL = re.compile(r'https?://[^\s<>"\']+', re.IGNORECASE)

ATOM_NS = {'atom': 'http://www.w3.org/2005/Atom'}

def findURL(message):
    """First http(s) URL in a chat line, or None."""
    match = RE_URL.search(message)
    return match.group(0) if match else None

def fetchText(url, timeout=10):
    r = requests.get(url, headers={"User-Agent": USER_AGENT}, timeout=timeout)
    r.raise_for_status()
    return r.text

def fetchJSON(url, timeout=10, params=None):
    r = requests.get(url, params=params, headers={"User-Agent": USER_AGENT}, timeout=timeout)
    r.raise_for_status()
    return r.json()

def extractTitle(document):
    """The page title of an HTML document (str or bytes), or None."""
    soup = BeautifulSoup(document, "html.parser")
    # inline SVG images carry their own <title> elements
    tag = next((t for t in soup.find_all("title") if t.find_parent("svg") is None), None)
    if tag is None:
        return None
    # collapse the newlines and indentation some sites put in their titles
    title = ' '.join(tag.get_text().split())
    return title or None

def fetchTitle(url, timeout=10):
    r = requests.get(url, headers={"User-Agent": USER_AGENT}, timeout=timeout)
    r.raise_for_status()
    # raw bytes, so BeautifulSoup can honour the page's own charset declaration
    return extractTitle(r.content)

def parseTimestamp(text):
    """Parse RFC 822 (RSS) or ISO 8601 (Atom) dates into aware UTC datetimes."""
    if not text:
        return None
    text = text.strip()
    try:
        stamp = parsedate_to_datetime(text)
    except (TypeError, ValueError, IndexError):
        try:
            stamp = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            return None
    if stamp.tzinfo is None:
        stamp = stamp.replace(tzinfo=timezone.utc)
    return stamp.astimezone(timezone.utc)

def _text(elem):
    return elem.text.strip() if elem is not None and elem.text else ""

def parseFeed(document):
    """Return (title, link, published) for each item of an RSS 2.0 or Atom feed.

    Items without a usable date are dropped since there is no way to tell
    whether they are new.
    """
    root = ET.fromstring(document)
    items = []
    if root.tag == f"{{{ATOM_NS['atom']}}}feed":
        for entry in root.findall('atom:entry', ATOM_NS):
            link = entry.find('atom:link', ATOM_NS)
            published = (_text(entry.find('atom:published', ATOM_NS)) or
                         _text(entry.find('atom:updated', ATOM_NS)))
            items.append((' '.join(_text(entry.find('atom:title', ATOM_NS)).split()),
                          link.get('href', '') if link is not None else "",
                          parseTimestamp(published)))
    else:
        for item in root.iter('item'):
            items.append((' '.join(_text(item.find('title')).split()),
                          _text(item.find('link')),
                          parseTimestamp(_text(item.find('pubDate')))))
    return [i for i in items if i[2] is not None]

def cleanLink(link):
    # drop tracking query strings, but leave single-parameter links alone
    if "?" in link and "&" in link:
        return link.split("?")[0]
    return link

def standingsURL(base, championship):
    page = {"driver": "driverStandings.json",
            "constructor": "constructorStandings.json"}[championship]
    return base.rstrip("/") + "/" + page

def formatStandings(data, championship):
    """One chat line summarising an Ergast standings response."""
    lists = data["MRData"]["StandingsTable"]["StandingsLists"]
    if not lists:
        return None
    if championship == "driver":
        entries = [f"{d['position']}. {d['Driver']['code']} {d['points']} ({d['wins']} wins)"
                   for d in lists[0]["DriverStandings"]]
    else:
        entries = [f"{c['position']}. {c['Constructor']['name']} {c['points']} ({c['wins']} wins)"
                   for c in lists[0]["ConstructorStandings"]]
    return " ".join(entries)

def resultsURL(base):
    return base.rstrip("/") + "/last/results.json"

def parseRaceResult(data):
    """(race name, race date, [P1, P2, P3 driver codes]) of an Ergast results response.

    Returns None when the season has no classified race yet.
    """
    races = data["MRData"]["RaceTable"]["Races"]
    if not races:
        return None
    race = races[0]
    results = sorted(race["Results"], key=lambda r: int(r["position"]))
    if len(results) < 3:
        return None
    podium = [r["Driver"]["code"].upper() for r in results[:3]]
    return (race["raceName"], datetime.strptime(race["date"], "%Y-%m-%d").date(), podium)

# OpenWeatherMap unit systems for the two temperature settings
WEATHER_UNITS = {"C": ("metric", "m/s"),
                 "F": ("imperial", "mph")}

def weatherParams(location, units, key):
    return {"q": location, "units": WEATHER_UNITS[units][0], "lang": "en", "appid": key}

def formatWeather(data, units):
    """One chat line for an OpenWeatherMap current weather response."""
    description = data["weather"][0]["description"] if data.get("weather") else "unknown"
    main = data["main"]
    return (f"{data['name']}: {description} | "
            f"Temperature: {main['temp']:0.1f}{units} | "
            f"Humidity: {main['humidity']}% | "
            f"Pressure: {float(main['pressure']):0.1f}hPa | "
            f"Wind: {data['wind']['speed']:0.1f}{WEATHER_UNITS[units][1]}")
