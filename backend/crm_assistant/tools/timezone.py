import pytz
from typing import Optional
from datetime import datetime

from ..utils.logger import logger


class TimezoneManager:
    @staticmethod
    def resolve(tz_name: Optional[str], default: str = 'UTC') -> str:
        """Return a valid IANA zone name, falling back to ``default``."""
        if not tz_name:
            return default

        try:
            pytz.timezone(tz_name)
            return tz_name
        except pytz.UnknownTimeZoneError:
            logger.warning(f"⚠️ Unknown timezone '{tz_name}', using {default}")
            return default

    @staticmethod
    def now_in(tz_name: str) -> datetime:
        return datetime.now(pytz.timezone(tz_name))

    @staticmethod
    def localize(dt: datetime, tz_name: str) -> datetime:
        """Attach ``tz_name`` to a naive datetime or convert an aware one into it."""
        tz = pytz.timezone(tz_name)
        if dt.tzinfo is None:
            return tz.localize(dt)
        return dt.astimezone(tz)

    @staticmethod
    def format_local(dt: datetime, tz_name: str) -> str:
        local_time = TimezoneManager.localize(dt, tz_name)
        tz_abbrev = local_time.strftime('%Z')
        return local_time.strftime(f'%A, %B %d, %Y at %I:%M %p {tz_abbrev}')
