"""
core/clock.py -- Injectable time source.

Services take a `clock` callable instead of calling datetime.now() directly so
tests can freeze or advance time deterministically.
"""

from collections.abc import Callable
from datetime import datetime, timezone

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_iso(moment: datetime) -> str:
    """Serialize a datetime as a fixed-width ISO 8601 UTC string.

    Fixed microsecond precision keeps lexicographic order equal to time order,
    which the store relies on for "expires_at > now" comparisons.
    """
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")

