"""
Regex templates that recover tool arguments from free text.

Used by the natural-language stage (over the model's text) and by the
auto-trigger stage (over the user's message). Every extractor returns a
possibly-empty dict and never raises.
"""

from typing import Any, Callable, Dict, List, Optional
import re

# A run of capitalised words: "Tokyo", "New York City", "Rio de Janeiro" is cut at "de"
_PLACE = r"[A-Z][\w'\-]*(?:\s+[A-Z][\w'\-]*)*"
_TERMINATOR = r"(?:\.(?!\d)|\?|!|$)"

_TRAILING_TIME_WORDS = {
    "today", "tomorrow", "tonight", "now", "currently", "right", "this", "week",
    "weekend", "morning", "afternoon", "evening",
}

_LOCATION_PATTERNS = [
    re.compile(rf"\b(?i:weather|temperature|forecast)(?i:s|'s)?\b.*?\b(?i:in|at|for)\s+({_PLACE})"),
    re.compile(rf"\b(?i:location|city|place)\s+(?:is\s+)?['\"]?({_PLACE})"),
    re.compile(rf"\b(?:in|at|for)\s+({_PLACE})"),
    re.compile(r"['\"]([A-Z][^'\"]+?)['\"]"),
]

_LOWERCASE_LOCATION = re.compile(
    r"\b(?:weather|temperature|forecast)(?:s|'s)?\s+(?:in|at|for)\s+([a-z][a-z'\- ]*?)"
    r"(?=\s+(?:today|tomorrow|tonight|now|right now|this)\b|[?.!,]|$)",
    re.I,
)

_ARITHMETIC = re.compile(
    r"(\(?\s*-?\d+(?:\.\d+)?\s*\)?(?:\s*(?:[-+*/^%]|\*\*)\s*\(?\s*-?\d+(?:\.\d+)?\s*\)?)+)"
)

_CALC_PATTERNS = [
    re.compile(rf"(?:calculate|compute|solve|evaluate|what is|what's)\s+(.+?){_TERMINATOR}", re.I | re.M),
    re.compile(rf"(?:equals?|is)\s+(.+?){_TERMINATOR}", re.I | re.M),
]

_TIMEZONE_PATTERNS = [
    re.compile(r"\b([A-Z][a-z]+/[A-Z][A-Za-z_]+(?:/[A-Z][A-Za-z_]+)?)\b"),
    re.compile(r"(?:timezone|time zone)\s+(?:is\s+)?['\"]?([A-Za-z_]+(?:/[A-Za-z_]+)?)", re.I),
    re.compile(rf"\b(?i:time)\s+(?:is\s+it\s+)?in\s+({_PLACE})"),
]

_QUERY_PATTERNS = [
    re.compile(rf"(?:search(?:\s+for)?|look\s+up|look\s+for|find)\s+['\"]?([^'\"\n]+?)['\"]?{_TERMINATOR}", re.I | re.M),
    re.compile(rf"(?:what is|what's|tell me about|who is|who are)\s+(.+?){_TERMINATOR}", re.I | re.M),
    re.compile(rf"(?:current|latest|recent|now|today)\s+(.+?){_TERMINATOR}", re.I | re.M),
]

CURRENCY_CODES = ("USD", "EUR", "GBP", "JPY", "CNY", "CAD", "AUD", "CHF", "INR")

_AMOUNT = re.compile(r"(\d+(?:\.\d+)?)\s*(?:dollars?|euros?|pounds?|yen|yuan|usd|eur|gbp|jpy|cny)?", re.I)
_FROM_CURRENCY = re.compile(r"(?:from|convert)\s+(?:\d+(?:\.\d+)?\s*)?([A-Za-z]{3})\b", re.I)
_TO_CURRENCY = re.compile(r"\b(?:to|into|in)\s+([A-Za-z]{3})\b", re.I)
_ANY_CODE = re.compile(r"\b([A-Za-z]{3})\b")

_MARKER_ARGUMENT = re.compile(r"(\w+)\s*=\s*(?:\"([^\"]*)\"|'([^']*)'|([^,\s)]+))")


def coerce_scalar(value: str) -> Any:
    """'84' -> 84, '2.5' -> 2.5, anything else unchanged"""
    text = value.strip()
    try:
        return int(text)
    except ValueError:
        pass
    try:
        return float(text)
    except ValueError:
        return value


def parse_marker_arguments(arguments: str) -> Dict[str, Any]:
    """Parse key="value", key=3 argument lists"""
    args: Dict[str, Any] = {}
    if not arguments or not arguments.strip():
        return args

    for match in _MARKER_ARGUMENT.finditer(arguments):
        key = match.group(1)
        quoted = match.group(2) if match.group(2) is not None else match.group(3)
        if quoted is not None:
            args[key] = quoted
        else:
            args[key] = coerce_scalar(match.group(4))
    return args


def _strip_trailing_time_words(place: str) -> str:
    words = place.split()
    while words and words[-1].lower() in _TRAILING_TIME_WORDS:
        words.pop()
    return " ".join(words)


def extract_location(text: str) -> Optional[str]:
    for pattern in _LOCATION_PATTERNS:
        for match in pattern.finditer(text):
            place = _strip_trailing_time_words(match.group(1).strip())
            if place:
                return place

    match = _LOWERCASE_LOCATION.search(text)
    if match:
        place = _strip_trailing_time_words(match.group(1).strip())
        if place:
            return place.title()
    return None


def _weather_arguments(text: str) -> Dict[str, Any]:
    args: Dict[str, Any] = {}
    location = extract_location(text)
    if location:
        args["location"] = location
    if re.search(r"\bfahrenheit\b|°\s*F\b", text, re.I):
        args["unit"] = "fahrenheit"
    elif re.search(r"\bcelsius\b|°\s*C\b", text, re.I):
        args["unit"] = "celsius"
    return args


def _calculate_arguments(text: str) -> Dict[str, Any]:
    match = _ARITHMETIC.search(text)
    if match:
        return {"expression": match.group(1).strip()}

    for pattern in _CALC_PATTERNS:
        match = pattern.search(text)
        if match and match.group(1).strip():
            return {"expression": match.group(1).strip()}
    return {}


def _time_arguments(text: str) -> Dict[str, Any]:
    for pattern in _TIMEZONE_PATTERNS:
        match = pattern.search(text)
        if match:
            timezone = _strip_trailing_time_words(match.group(1).strip())
            if timezone:
                return {"timezone": timezone}
    return {}


def _search_arguments(text: str) -> Dict[str, Any]:
    for pattern in _QUERY_PATTERNS:
        match = pattern.search(text)
        if match and match.group(1).strip():
            return {"query": match.group(1).strip()}
    return {}


def _currency_arguments(text: str) -> Dict[str, Any]:
    args: Dict[str, Any] = {}

    amount = _AMOUNT.search(text)
    if amount:
        args["amount"] = coerce_scalar(amount.group(1))

    source = _FROM_CURRENCY.search(text)
    if source and source.group(1).upper() in CURRENCY_CODES:
        args["from"] = source.group(1).upper()

    target = _TO_CURRENCY.search(text)
    if target and target.group(1).upper() in CURRENCY_CODES:
        args["to"] = target.group(1).upper()

    if "from" not in args or "to" not in args:
        codes = [c.upper() for c in _ANY_CODE.findall(text) if c.upper() in CURRENCY_CODES]
        if len(codes) >= 2:
            args.setdefault("from", codes[0])
            args.setdefault("to", codes[1])
    return args


ARGUMENT_EXTRACTORS: Dict[str, Callable[[str], Dict[str, Any]]] = {
    "get_weather": _weather_arguments,
    "calculate": _calculate_arguments,
    "get_current_time": _time_arguments,
    "search_web": _search_arguments,
    "convert_currency": _currency_arguments,
}


def extract_arguments(text: str, tool_name: str, required: Optional[List[str]] = None) -> Dict[str, Any]:
    """Best-effort arguments for tool_name found in text"""

    # Direct call syntax wins: calculate(expression="12 * 7") or calculate("12 * 7")
    call = re.search(rf"\b{re.escape(tool_name)}\s*\(([^)]*)\)", text)
    if call:
        args = parse_marker_arguments(call.group(1))
        if args:
            return args
        positional = call.group(1).strip().strip("'\"").strip()
        if positional and required and len(required) == 1:
            return {required[0]: positional}

    extractor = ARGUMENT_EXTRACTORS.get(tool_name)
    if extractor is None:
        return {}
    return extractor(text)
