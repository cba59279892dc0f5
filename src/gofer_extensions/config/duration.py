"""Go-style duration strings (``"1m"``, ``"3m30s"``) and human-readable run durations."""

from __future__ import annotations

import re
from datetime import timedelta

_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}

_NUMBER = re.compile(r"\d+(?:\.\d+)?")
_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")


def parse_duration(value: str) -> timedelta:
    """Parse a Go duration string into a timedelta.

    A bare number is read as seconds. Raises ``ValueError`` on anything else.
    """
    text = value.strip()
    if not text:
        raise ValueError("empty duration")

    if _NUMBER.fullmatch(text):
        return timedelta(seconds=float(text))

    sign = 1.0
    if text[0] in "+-":
        sign = -1.0 if text[0] == "-" else 1.0
        text = text[1:]

    pos = 0
    total = 0.0
    while pos < len(text):
        match = _PART.match(text, pos)
        if not match:
            raise ValueError(f"invalid duration {value!r}")
        total += float(match.group(1)) * _UNITS[match.group(2)]
        pos = match.end()

    if pos == 0:
        raise ValueError(f"invalid duration {value!r}")
    return timedelta(seconds=sign * total)


def _plural(n: int) -> str:
    return "" if n == 1 else "s"


def format_run_duration(started_ms: int, ended_ms: int) -> str:
    """Render the time between two epoch-millisecond stamps for humans."""
    duration = ended_ms - started_ms
    if duration < 0:
        return "Invalid time range"

    milliseconds = duration % 1000
    seconds = duration // 1000
    if seconds == 0:
        return f"{milliseconds} millisecond{_plural(milliseconds)}"
    if seconds < 60:
        if milliseconds > 0:
            return (
                f"{seconds} second{_plural(seconds)} "
                f"{milliseconds} millisecond{_plural(milliseconds)}"
            )
        return f"{seconds} second{_plural(seconds)}"
    if seconds < 3600:
        minutes = seconds // 60
        return f"{minutes} minute{_plural(minutes)}"
    if seconds < 86400:
        hours = seconds // 3600
        return f"{hours} hour{_plural(hours)}"
    days = seconds // 86400
    return f"{days} day{_plural(days)}"
