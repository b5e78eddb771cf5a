"""
Human time expressions -> canonical seconds.

Recognised forms:
    "18"                     -> 18
    "18s", "18 sec", "18.5 seconds"
    "18:40"                  -> 1120      (minutes:seconds)
    "1:02:03"                -> 3723      (hours:minutes:seconds)
    "18 minutes", "18 min", "18m"
    "18 minutes 32 seconds", "2m 30s", "1 hour 5 minutes"
"""

import re
from typing import Union

_NUMBER = r"(\d+(?:\.\d+)?)"

_UNIT_SECONDS = {
    "h": 3600, "hr": 3600, "hrs": 3600, "hour": 3600, "hours": 3600,
    "m": 60, "min": 60, "mins": 60, "minute": 60, "minutes": 60,
    "s": 1, "sec": 1, "secs": 1, "second": 1, "seconds": 1,
}

_PLAIN_RE = re.compile(rf"^{_NUMBER}$")
_COLON_RE = re.compile(r"^\d+(?:\.\d+)?(?::\d+(?:\.\d+)?){1,2}$")
_WORDED_RE = re.compile(rf"{_NUMBER}\s*([a-z]+)")
_WORDED_FULL_RE = re.compile(rf"^(?:{_NUMBER}\s*[a-z]+[\s,]*(?:and\s+)?)+$")


def normalize_time(expression: Union[str, int, float]) -> float:
    """Return the number of seconds an expression denotes.

    Raises ValueError for anything that is not a recognised, non-negative
    time expression.
    """
    if isinstance(expression, bool):
        raise ValueError(f"Not a time expression: {expression!r}")
    if isinstance(expression, (int, float)):
        if expression < 0:
            raise ValueError(f"Time must be non-negative: {expression!r}")
        return float(expression)
    if not isinstance(expression, str):
        raise ValueError(f"Not a time expression: {expression!r}")

    value = expression.strip().lower()
    if not value:
        raise ValueError("Empty time expression")

    if _PLAIN_RE.match(value):
        return float(value)

    if _COLON_RE.match(value):
        parts = [float(p) for p in value.split(":")]
        seconds = parts.pop()
        minutes = parts.pop()
        hours = parts.pop() if parts else 0.0
        if seconds >= 60 or (hours and minutes >= 60):
            raise ValueError(f"Invalid clock time: {expression!r}")
        return hours * 3600 + minutes * 60 + seconds

    if _WORDED_FULL_RE.match(value):
        total = 0.0
        for amount, unit in _WORDED_RE.findall(value):
            if unit not in _UNIT_SECONDS:
                raise ValueError(f"Unknown time unit {unit!r} in {expression!r}")
            total += float(amount) * _UNIT_SECONDS[unit]
        return total

    raise ValueError(f"Unrecognized time expression: {expression!r}")
