from datetime import datetime, timedelta
from typing import Optional, Tuple
import re

from ..utils.logger import logger

DEFAULT_DURATION = timedelta(hours=1)

_CLOCK = r'(\d{1,2})(?::(\d{2}))?\s*(am|pm)?'

DAY_AT_PATTERN = re.compile(rf'\b(today|tomorrow)\s+at\s+{_CLOCK}\b', re.IGNORECASE)
RANGE_PATTERN = re.compile(rf'\b{_CLOCK}\s+to\s+{_CLOCK}\b', re.IGNORECASE)


def to_24_hour(hour: int, meridiem: Optional[str]) -> Optional[int]:
    """Convert a 12-hour clock value. Without a meridiem the hour is taken as-is."""
    if meridiem:
        meridiem = meridiem.lower()
        if hour < 1 or hour > 12:
            return None
        if meridiem == 'pm' and hour != 12:
            hour += 12
        elif meridiem == 'am' and hour == 12:
            hour = 0

    if hour < 0 or hour > 23:
        return None

    return hour


def _at(base: datetime, hour: int, minute: int) -> datetime:
    # Rebuild through the zone so DST offsets are correct for the target day
    naive = base.replace(tzinfo=None, hour=hour, minute=minute, second=0, microsecond=0)
    tz = base.tzinfo
    if tz is not None and hasattr(tz, 'localize'):
        return tz.localize(naive)
    return naive.replace(tzinfo=tz)


def resolve_time_expression(text: str, now: datetime) -> Optional[Tuple[datetime, datetime]]:
    """Resolve the simple time shapes the fast path understands.

    Supported: "today at 3pm", "tomorrow at 10:30am", "2pm to 4pm". Ranges
    are placed on ``now``'s date. Anything else returns None.

    Args:
        text: Raw user request
        now: Current time in the user's timezone (pytz-aware)

    Returns:
        (start, end) in the user's timezone, or None
    """
    match = DAY_AT_PATTERN.search(text)
    if match:
        day, hour, minute, meridiem = match.groups()
        hour = to_24_hour(int(hour), meridiem)
        minute = int(minute) if minute else 0
        if hour is None or minute > 59:
            logger.warning(f"Invalid clock time in '{match.group(0)}'")
            return None

        base = now + timedelta(days=1) if day.lower() == 'tomorrow' else now
        start = _at(base, hour, minute)
        return start, start + DEFAULT_DURATION

    match = RANGE_PATTERN.search(text)
    if match:
        start_hour, start_minute, start_meridiem, end_hour, end_minute, end_meridiem = match.groups()
        # "2 to 4pm" shares the trailing meridiem
        start_hour = to_24_hour(int(start_hour), start_meridiem or end_meridiem)
        end_hour = to_24_hour(int(end_hour), end_meridiem or start_meridiem)
        start_minute = int(start_minute) if start_minute else 0
        end_minute = int(end_minute) if end_minute else 0
        if start_hour is None or end_hour is None or start_minute > 59 or end_minute > 59:
            logger.warning(f"Invalid time range in '{match.group(0)}'")
            return None

        start = _at(now, start_hour, start_minute)
        end = _at(now, end_hour, end_minute)
        if end <= start:
            logger.warning(f"Time range ends before it starts: '{match.group(0)}'")
            return None

        return start, end

    return None
