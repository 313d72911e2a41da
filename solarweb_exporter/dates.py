"""Day-argument parsing for multi-day fetches."""

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Iterable, List, Optional

logger = logging.getLogger(__name__)

DAY_FORMAT = "%Y-%m-%d"


def utc_today() -> date:
    """The current day in UTC, the default when no day is given."""
    return datetime.now(timezone.utc).date()


def expand_range(start: date, end: date) -> List[date]:
    """Return every day from start to end, inclusive."""
    days = []
    current = start
    while current <= end:
        days.append(current)
        current += timedelta(days=1)
    return days


def parse_days(
    args: Iterable[str],
    today: Optional[date] = None,
    logger: Optional[logging.Logger] = None,
) -> List[date]:
    """Turn command-line day arguments into an ordered list of days.

    - No arguments: just today (the UTC day).
    - Unparseable arguments are logged and skipped.
    - Exactly two days where the first is more than one day before the
      second: the inclusive range between them.

    Args:
        args: Day strings in YYYY-MM-DD format
        today: Override for "today" (defaults to the current UTC day)
        logger: Logger for skipped arguments

    Returns:
        Ordered list of days without duplicates
    """
    log = logger or logging.getLogger(__name__)
    args = list(args)
    if not args:
        return [today or utc_today()]

    days: List[date] = []
    for arg in args:
        try:
            days.append(datetime.strptime(arg, DAY_FORMAT).date())
        except ValueError as e:
            log.error(f"Cannot parse day {arg!r} as YYYY-MM-DD: {e}")

    if len(days) == 2 and days[0] < days[1] - timedelta(days=1):
        days = expand_range(days[0], days[1])

    # Drop duplicates, keep first occurrence
    return list(dict.fromkeys(days))
