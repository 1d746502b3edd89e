"""Datetime utilities with consistent UTC timezone handling.

All timestamps that cross the sync boundary are timezone-aware and in UTC.
The remote API sends ISO 8601 strings with or without a fractional-second
component; both forms must compare at full precision.
"""

from datetime import datetime, timezone
from typing import Optional


def now_utc() -> datetime:
    """Return current datetime in UTC timezone.

    Returns:
        Current datetime with timezone=UTC
    """
    return datetime.now(timezone.utc)


def ensure_aware(dt: Optional[datetime]) -> Optional[datetime]:
    """Ensure datetime is timezone-aware, assuming UTC if naive.

    Args:
        dt: Datetime to check/convert, or None

    Returns:
        Timezone-aware datetime in UTC, or None if input was None
    """
    if dt is None:
        return None

    if dt.tzinfo is None:
        # Naive datetime - assume UTC
        return dt.replace(tzinfo=timezone.utc)

    return dt.astimezone(timezone.utc)


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO 8601 timestamp into an aware UTC datetime.

    Accepts ``2026-01-11T10:00:00Z`` as well as
    ``2026-01-11T10:00:00.123456+00:00``. Fractions longer than
    microseconds are truncated.

    Args:
        value: Timestamp string

    Returns:
        Timezone-aware datetime in UTC

    Raises:
        ValueError: If the string is not a valid ISO 8601 timestamp
    """
    if not isinstance(value, str) or not value:
        raise ValueError(f"Expected ISO 8601 timestamp, got: {value!r}")

    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"

    # Normalize the fractional part to at most 6 digits. Digits past the
    # microsecond are dropped, so two stamps that differ only there compare
    # equal and last-writer-wins treats the record as unchanged on both sides.
    if "." in text:
        head, _, rest = text.partition(".")
        digits = ""
        for ch in rest:
            if not ch.isdigit():
                break
            digits += ch
        tail = rest[len(digits):]
        if not digits:
            raise ValueError(f"Expected ISO 8601 timestamp, got: {value!r}")
        text = f"{head}.{digits[:6].ljust(6, '0')}{tail}"

    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        raise ValueError(f"Expected ISO 8601 timestamp, got: {value!r}")
    return ensure_aware(parsed)


def format_timestamp(dt: datetime) -> str:
    """Format a datetime as ISO 8601 UTC with fractional seconds.

    Args:
        dt: Datetime to format (naive values are treated as UTC)

    Returns:
        String like ``2026-01-11T10:00:00.000000Z``
    """
    aware_dt = ensure_aware(dt)
    return aware_dt.strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def to_iso_string(dt: Optional[datetime]) -> Optional[str]:
    """Convert datetime to ISO string with timezone info.

    Args:
        dt: Datetime to convert, or None

    Returns:
        ISO format string with timezone, or None if input was None
    """
    if dt is None:
        return None

    aware_dt = ensure_aware(dt)
    return aware_dt.isoformat()


def from_iso_string(value: Optional[str]) -> Optional[datetime]:
    """Inverse of :func:`to_iso_string`."""
    if value is None:
        return None
    return parse_timestamp(value)
