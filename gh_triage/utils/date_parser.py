"""Date parsing for triage window options."""

from datetime import UTC, datetime, timedelta


def parse_date_input(date_str: str) -> datetime:
    """Parse various date formats into UTC datetime objects.

    Supports:
    - ISO dates: 2024-01-01, 2024-01-01T10:00:00Z
    - Common formats: January 1, 2024, Jan 1 2024

    Args:
        date_str: Date string to parse

    Returns:
        Parsed datetime object in UTC

    Raises:
        ValueError: If date format is not recognized
    """
    formats = [
        "%Y-%m-%d",  # 2024-01-01
        "%Y-%m-%dT%H:%M:%SZ",  # 2024-01-01T10:00:00Z
        "%Y-%m-%dT%H:%M:%S",  # 2024-01-01T10:00:00
        "%B %d, %Y",  # January 1, 2024
        "%b %d, %Y",  # Jan 1, 2024
        "%B %d %Y",  # January 1 2024
        "%b %d %Y",  # Jan 1 2024
        "%Y/%m/%d",  # 2024/01/01
    ]

    for fmt in formats:
        try:
            return datetime.strptime(date_str.strip(), fmt).replace(tzinfo=UTC)
        except ValueError:
            continue

    raise ValueError(
        f"Unable to parse date '{date_str}'. "
        f"Supported formats include: YYYY-MM-DD, YYYY-MM-DDTHH:MM:SSZ, "
        f"'January 1, 2024', 'Jan 1 2024'"
    )


def resolve_window_start(
    since: str | None = None,
    last_hours: int | None = None,
    last_days: int | None = None,
    now: datetime | None = None,
) -> datetime | None:
    """Turn the window options of a run into a start timestamp.

    Args:
        since: Absolute start date string
        last_hours: Window of N hours ending now
        last_days: Window of N days ending now
        now: Reference time; defaults to the current time

    Returns:
        The window start, or None when no option was given

    Raises:
        ValueError: If options conflict, are not positive, or lie in the future
    """
    provided = sum(1 for x in (since, last_hours, last_days) if x is not None)
    if provided == 0:
        return None
    if provided > 1:
        raise ValueError("Use only one of --since, --last-hours or --last-days")

    now = now or datetime.now(UTC)
    if last_hours is not None:
        if last_hours <= 0:
            raise ValueError("Hours must be a positive integer")
        return now - timedelta(hours=last_hours)
    if last_days is not None:
        if last_days <= 0:
            raise ValueError("Days must be a positive integer")
        return now - timedelta(days=last_days)

    assert since is not None
    start = parse_date_input(since)
    if start >= now:
        raise ValueError(f"Start date {start:%Y-%m-%d} must be in the past")
    return start
