"""Time helpers: TTL parsing and display formatting."""

import re
from datetime import UTC, datetime
from typing import Final

from .errors import ValidationError

NULL_DISPLAY: Final[str] = "(NULL)"

_UNIT_SECONDS: Final[dict[str, int]] = {
    "second": 1,
    "sec": 1,
    "s": 1,
    "minute": 60,
    "min": 60,
    "m": 60,
    "hour": 3600,
    "h": 3600,
    "day": 86400,
    "d": 86400,
    "week": 604800,
    "w": 604800,
}
_TTL_PATTERN = re.compile(r"^\s*(\d+)\s*([a-z]*?)s?\s*$", re.IGNORECASE)


def parse_ttl(value: str | int) -> int:
    """Parse a TTL such as ``"7 days"``, ``"12h"`` or ``3600`` into seconds."""
    if isinstance(value, int):
        seconds = value
    else:
        match = _TTL_PATTERN.match(value)
        if match is None:
            raise ValidationError(f"Invalid TTL: {value!r}")
        amount, unit = int(match.group(1)), match.group(2).lower()
        if not unit:
            seconds = amount
        elif unit in _UNIT_SECONDS:
            seconds = amount * _UNIT_SECONDS[unit]
        else:
            raise ValidationError(f"Invalid TTL unit in {value!r}")
    if seconds <= 0:
        raise ValidationError(f"TTL must be positive: {value!r}")
    return seconds


def format_timestamp(value: int | None) -> str:
    """Render epoch seconds as ``YYYY-MM-DDTHH:MM:SSZ`` in UTC."""
    if value is None:
        return NULL_DISPLAY
    return datetime.fromtimestamp(value, tz=UTC).strftime("%Y-%m-%dT%H:%M:%SZ")
