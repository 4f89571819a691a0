"""Canonical timestamp parsing for reconciliation.

Sources report ``lastUpdated`` in different shapes: ISO 8601 with or without
an offset, epoch seconds, or epoch milliseconds. Everything is converted to
epoch seconds in UTC; naive ISO strings are read as UTC.
"""

from __future__ import annotations

from datetime import datetime, timezone

# Numbers above this are treated as milliseconds (year 2286 in seconds).
_EPOCH_MS_CUTOFF = 10_000_000_000


def parse_timestamp(value: object) -> float | None:
    """Return *value* as epoch seconds, or ``None`` if it cannot be read."""
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, datetime):
        moment = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
        return moment.timestamp()

    if isinstance(value, (int, float)):
        number = float(value)
        if number <= 0:
            return None
        return number / 1000.0 if number > _EPOCH_MS_CUTOFF else number

    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            return parse_timestamp(float(text))
        except ValueError:
            pass
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            moment = datetime.fromisoformat(text)
        except ValueError:
            return None
        return parse_timestamp(moment)

    return None


def observed_at(
    payload: object,
    fetched_at: float,
    *,
    field: str = "lastUpdated",
    skew_tolerance_seconds: float = 60.0,
) -> float:
    """Pick the time a result describes.

    Uses the payload's own timestamp when it is readable and not further in
    the future than ``skew_tolerance_seconds`` past the local fetch time;
    otherwise the local fetch time.
    """
    if isinstance(payload, dict):
        reported = parse_timestamp(payload.get(field))
        if reported is not None and reported - fetched_at <= skew_tolerance_seconds:
            return reported
    return fetched_at
