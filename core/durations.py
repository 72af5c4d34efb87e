"""
core/durations.py -- Duration spec parsing shared by config and token code.

A duration spec is a positive integer followed by one unit letter:
  "15m" -> 15 minutes, "12h" -> 12 hours, "30d" -> 30 days.

Unknown units, missing numbers, zero and negative values raise ValueError.
There is deliberately no fallback lifetime: a misconfigured TTL is an error.
"""

import re
from datetime import timedelta

_DURATION_RE = re.compile(r"^(\d+)([dhm])$")

_UNITS = {
    "d": "days",
    "h": "hours",
    "m": "minutes",
}


def parse_duration(spec: str) -> timedelta:
    """Parse a duration spec like "30d" into a timedelta."""
    match = _DURATION_RE.match(spec.strip()) if isinstance(spec, str) else None
    if match is None:
        raise ValueError(f"Invalid duration {spec!r}. Expected <integer><d|h|m>, e.g. '15m' or '30d'.")
    value = int(match.group(1))
    if value <= 0:
        raise ValueError(f"Duration {spec!r} must be positive.")
    return timedelta(**{_UNITS[match.group(2)]: value})
