"""Utility functions for calendar time handling."""

from datetime import UTC, datetime
from typing import Any


def parse_rfc3339(value: str) -> datetime:
    """Parse an RFC3339 timestamp into an aware UTC datetime.

    Naive timestamps are taken to be UTC.

    Raises:
        ValueError: if ``value`` is not a valid timestamp.
    """
    dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def format_rfc3339(dt: datetime) -> str:
    return dt.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


def find_free_windows(
    busy: list[dict[str, Any]],
    time_min: str,
    time_max: str,
    min_duration_minutes: int = 0,
) -> list[dict[str, Any]]:
    """Find the gaps between busy periods inside a time range.

    Args:
        busy: Busy periods as returned by freeBusy (``{"start", "end"}``)
        time_min: Start of time range (RFC3339)
        time_max: End of time range (RFC3339)
        min_duration_minutes: Drop gaps shorter than this

    Returns:
        List of free windows with start, end, and duration_minutes
    """
    range_start = parse_rfc3339(time_min)
    range_end = parse_rfc3339(time_max)

    busy_periods: list[tuple[datetime, datetime]] = []
    for period in busy:
        try:
            busy_periods.append((parse_rfc3339(period["start"]), parse_rfc3339(period["end"])))
        except (KeyError, TypeError, ValueError):
            continue
    busy_periods.sort(key=lambda x: x[0])

    free_windows: list[dict[str, Any]] = []

    def add_window(start: datetime, end: datetime) -> None:
        if end <= start:
            return
        duration = int((end - start).total_seconds() / 60)
        if duration >= min_duration_minutes:
            free_windows.append({
                "start": format_rfc3339(start),
                "end": format_rfc3339(end),
                "duration_minutes": duration,
            })

    current_time = range_start
    for busy_start, busy_end in busy_periods:
        if busy_start > current_time:
            add_window(current_time, min(busy_start, range_end))
        current_time = max(current_time, busy_end)
        if current_time >= range_end:
            break

    if current_time < range_end:
        add_window(current_time, range_end)

    return free_windows
