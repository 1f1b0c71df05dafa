"""
Keyword classifiers over the user's own message.

Shared by context preparation (system prompt emphasis) and the auto-trigger
stage of the detection cascade. Matching is on word boundaries, so "now"
does not fire on "know", but a trailing plural or possessive is allowed:
"temperatures", "forecasts" and "weather's" all count.
"""

from typing import Optional, Tuple
from datetime import date
import re

WEATHER_KEYWORDS: Tuple[str, ...] = (
    "weather", "temperature", "forecast", "how cold", "how hot",
)

CURRENT_INFO_KEYWORDS: Tuple[str, ...] = (
    "weather", "temperature", "forecast", "how cold", "how hot",
    "who is the", "who are the", "who is", "who are",
    "current", "now", "today", "recent", "latest", "newest",
    "president", "prime minister", "leader", "ceo", "governor",
    "this year", "last year", "next year", "current year",
    "what happened", "what's happening", "what is happening",
    "news", "update", "latest news", "recent news",
    "acquisition", "merger", "buyout", "takeover", "deal",
    "announced", "announcement", "launched", "release", "unveiled",
    "election", "inauguration", "inaugurated", "sworn in",
)

_POSITION_PATTERNS = [
    re.compile(r"who is (the )?(president|prime minister|leader|ceo|governor|mayor)", re.I),
    re.compile(r"who are (the )?(presidents|leaders|officials)", re.I),
    re.compile(r"current (president|leader|government|administration)", re.I),
]

_BUSINESS_PATTERNS = [
    re.compile(r"(recent|latest|new|current).*(acquisition|merger|buyout|deal|announcement)", re.I),
    re.compile(r"(acquisition|merger|buyout|deal).*(recent|latest|new|current)", re.I),
    re.compile(r"tell me about.*(acquisition|merger|buyout|deal)", re.I),
]

_YEAR_PATTERN = re.compile(r"\b(20\d{2})\b")


def _keyword_pattern(keywords: Tuple[str, ...]) -> "re.Pattern[str]":
    alternation = "|".join(re.escape(k) for k in sorted(set(keywords), key=len, reverse=True))
    return re.compile(rf"(?<![\w'])(?:{alternation})(?:s|'s)?(?![\w'])", re.I)


_WEATHER_RE = _keyword_pattern(WEATHER_KEYWORDS)
_CURRENT_INFO_RE = _keyword_pattern(CURRENT_INFO_KEYWORDS)


def recent_years(today: Optional[date] = None):
    """The current year and the two before it"""
    year = (today or date.today()).year
    return {str(year - 2), str(year - 1), str(year)}


def detect_year_token(message: str, today: Optional[date] = None) -> Optional[str]:
    """Latest recent year mentioned in the message, if any"""
    years = recent_years(today)
    found = [y for y in _YEAR_PATTERN.findall(message) if y in years]
    return max(found) if found else None


def is_weather_query(message: str) -> bool:
    return bool(_WEATHER_RE.search(message or ""))


def requires_current_information(message: str, today: Optional[date] = None) -> bool:
    """Whether answering needs up-to-date information"""
    if not message:
        return False

    if _CURRENT_INFO_RE.search(message):
        return True

    if detect_year_token(message, today):
        return True

    for pattern in _POSITION_PATTERNS + _BUSINESS_PATTERNS:
        if pattern.search(message):
            return True

    return False
