"""
Name Normalizer - Standardizes team and starter names for matching

Rules:
- Lowercase
- Remove punctuation
- Remove accents
- Collapse whitespace
- Map short forms and abbreviations to the full club name
"""

import re
import unicodedata

# Suffixes dropped from person names (case-insensitive)
PERSON_SUFFIXES = [
    r'\s+jr\.?$',
    r'\s+sr\.?$',
    r'\s+iv$',
    r'\s+iii$',
    r'\s+ii$',
]

# Team name standardization (feeds disagree on short names and abbreviations)
TEAM_ALIASES = {
    'yankees': 'new york yankees',
    'nyy': 'new york yankees',
    'ny yankees': 'new york yankees',
    'red sox': 'boston red sox',
    'bos': 'boston red sox',
    'blue jays': 'toronto blue jays',
    'jays': 'toronto blue jays',
    'tor': 'toronto blue jays',
    'orioles': 'baltimore orioles',
    'bal': 'baltimore orioles',
    'rays': 'tampa bay rays',
    'tb': 'tampa bay rays',
    'guardians': 'cleveland guardians',
    'cle': 'cleveland guardians',
    'twins': 'minnesota twins',
    'min': 'minnesota twins',
    'royals': 'kansas city royals',
    'kc': 'kansas city royals',
    'tigers': 'detroit tigers',
    'det': 'detroit tigers',
    'white sox': 'chicago white sox',
    'cws': 'chicago white sox',
    'chw': 'chicago white sox',
    'astros': 'houston astros',
    'hou': 'houston astros',
    'mariners': 'seattle mariners',
    'sea': 'seattle mariners',
    'rangers': 'texas rangers',
    'tex': 'texas rangers',
    'angels': 'los angeles angels',
    'laa': 'los angeles angels',
    'la angels': 'los angeles angels',
    'athletics': 'athletics',
    'oakland athletics': 'athletics',
    'as': 'athletics',
    'ath': 'athletics',
    'oak': 'athletics',
    'mets': 'new york mets',
    'nym': 'new york mets',
    'ny mets': 'new york mets',
    'braves': 'atlanta braves',
    'atl': 'atlanta braves',
    'phillies': 'philadelphia phillies',
    'phi': 'philadelphia phillies',
    'marlins': 'miami marlins',
    'mia': 'miami marlins',
    'nationals': 'washington nationals',
    'nats': 'washington nationals',
    'wsh': 'washington nationals',
    'cubs': 'chicago cubs',
    'chc': 'chicago cubs',
    'brewers': 'milwaukee brewers',
    'mil': 'milwaukee brewers',
    'cardinals': 'st louis cardinals',
    'cards': 'st louis cardinals',
    'stl': 'st louis cardinals',
    'saint louis cardinals': 'st louis cardinals',
    'reds': 'cincinnati reds',
    'cin': 'cincinnati reds',
    'pirates': 'pittsburgh pirates',
    'pit': 'pittsburgh pirates',
    'dodgers': 'los angeles dodgers',
    'lad': 'los angeles dodgers',
    'la dodgers': 'los angeles dodgers',
    'padres': 'san diego padres',
    'sd': 'san diego padres',
    'giants': 'san francisco giants',
    'sf': 'san francisco giants',
    'diamondbacks': 'arizona diamondbacks',
    'dbacks': 'arizona diamondbacks',
    'ari': 'arizona diamondbacks',
    'rockies': 'colorado rockies',
    'col': 'colorado rockies',
}


def remove_accents(text: str) -> str:
    """Remove accents/diacritics from text."""
    normalized = unicodedata.normalize('NFD', text)
    return ''.join(c for c in normalized if unicodedata.category(c) != 'Mn')


def _clean(raw: str) -> str:
    text = remove_accents(raw.lower().strip())
    text = re.sub(r"[^\w\s]", "", text)
    return " ".join(text.split())


def normalize_team_name(raw_team: str) -> str:
    """
    Normalize a team name for matching.

    "St. Louis Cardinals", "STL" and "Cardinals" all become "st louis cardinals".
    """
    if not raw_team:
        return ""

    team = _clean(raw_team)
    return TEAM_ALIASES.get(team, team)


def normalize_person_name(raw_name: str) -> str:
    """Normalize a starter/player name (accents, punctuation, Jr./Sr./II)."""
    if not raw_name:
        return ""

    name = remove_accents(raw_name.lower().strip())
    name = re.sub(r"[^\w\s\-]", "", name).replace("-", " ")
    for suffix_pattern in PERSON_SUFFIXES:
        name = re.sub(suffix_pattern, "", name, flags=re.IGNORECASE)
    return " ".join(name.split())


def teams_match(team1: str, team2: str) -> bool:
    """True when two team names refer to the same club."""
    n1 = normalize_team_name(team1)
    n2 = normalize_team_name(team2)
    return bool(n1) and n1 == n2


def pair_key(home_team: str, away_team: str) -> str:
    """Ordered participant key: "away@home" with normalized names."""
    return f"{normalize_team_name(away_team)}@{normalize_team_name(home_team)}"


def unordered_pair_key(team1: str, team2: str) -> str:
    """Participant key that ignores which side is listed as home."""
    return "|".join(sorted([normalize_team_name(team1), normalize_team_name(team2)]))
