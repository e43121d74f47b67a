"""
wagertrace/core/time.py

THE ONLY TIMESTAMP HELPERS IN WAGERTRACE.

Wire Format: YYYY-MM-DDTHH:MM:SS.mmmZ
             (milliseconds, explicit Z, no +00:00, no microseconds)

Components never call datetime.now() directly. They receive a Clock,
so settlement latency and grant expiry can be driven from tests.
All clock readings are truncated to whole milliseconds, which keeps
latency arithmetic exact after a round trip through the wire format.
"""

import re
from datetime import datetime, timezone

_TIMESTAMP_RE = re.compile(
    r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d{3}Z$"
)


def truncate_ms(moment: datetime) -> datetime:
    """Drop sub-millisecond precision."""
    return moment.replace(microsecond=(moment.microsecond // 1000) * 1000)


def format_timestamp(moment: datetime) -> str:
    """Render an aware datetime in wire format."""
    moment = moment.astimezone(timezone.utc)
    ms = moment.microsecond // 1000
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{ms:03d}Z"


def parse_timestamp(value: str) -> datetime:
    """
    Parse a wire-format timestamp back to an aware UTC datetime.

    Also accepts plain ISO-8601 strings with an offset, because bet
    placement times come from clients.
    """
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    moment = datetime.fromisoformat(value)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return truncate_ms(moment.astimezone(timezone.utc))


def is_wire_timestamp(value: str) -> bool:
    return isinstance(value, str) and bool(_TIMESTAMP_RE.match(value))


def ms_between(start: datetime, end: datetime) -> int:
    """Whole milliseconds from start to end (negative if end is earlier)."""
    delta = end - start
    return (delta.days * 86_400_000) + (delta.seconds * 1000) + (delta.microseconds // 1000)


class Clock:
    """Source of the current time. Subclass to control time in tests."""

    def now(self) -> datetime:
        raise NotImplementedError

    def timestamp(self) -> str:
        return format_timestamp(self.now())


class SystemClock(Clock):
    """Wall clock, UTC, millisecond precision."""

    def now(self) -> datetime:
        return truncate_ms(datetime.now(timezone.utc))


def wire_timestamp() -> str:
    """Current UTC time in wire format."""
    return SystemClock().timestamp()
