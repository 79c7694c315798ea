"""
Conversions between Ripple network time and calendar time.

Ledger close times are reported as whole seconds since the Ripple epoch,
2000-01-01T00:00:00Z.
"""

from datetime import datetime, timedelta, timezone

RIPPLE_EPOCH = datetime(2000, 1, 1, tzinfo=timezone.utc)

# One second before 2020-01-01, the close time the tool looks for by default.
DEFAULT_TARGET = datetime(2019, 12, 31, 23, 59, 59, tzinfo=timezone.utc)


def to_ripple_seconds(when: datetime) -> int:
    """Return whole seconds since the Ripple epoch; naive datetimes are taken as UTC."""
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return int((when - RIPPLE_EPOCH) // timedelta(seconds=1))


def from_ripple_seconds(seconds: int) -> datetime:
    return RIPPLE_EPOCH + timedelta(seconds=int(seconds))


def format_ripple_time(seconds: int) -> str:
    return from_ripple_seconds(seconds).strftime("%Y-%m-%d %H:%M:%S UTC")


def parse_target(text: str) -> int:
    """
    Parse a search target given on the command line.

    Accepts either an integer number of Ripple seconds (``631151999``) or an
    ISO-8601 date/datetime (``2019-12-31``, ``2019-12-31T23:59:59Z``).
    """
    text = text.strip()
    if not text:
        raise ValueError("Empty target")
    if text.lstrip("-").isdigit():
        return int(text)
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        when = datetime.fromisoformat(text)
    except ValueError as exc:
        raise ValueError(f"Unrecognised target {text!r}; expected seconds or ISO-8601") from exc
    return to_ripple_seconds(when)
