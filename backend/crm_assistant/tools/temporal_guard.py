"""
Validation and correction of model-produced dates before they reach storage.

Language models routinely hallucinate stale years ("2022-01-03") for relative
requests and occasionally schedule in the past. The guard rejects past creates
and pins stale search ranges to the current week.
"""

from datetime import datetime, timedelta
from typing import Any, Optional, Tuple

import pytz
from dateutil import parser as date_parser

from ..errors import PastEventRejected, ValidationError
from ..utils.logger import logger
from .timezone import TimezoneManager


class TemporalGuard:
    def __init__(self, timezone: str = 'UTC', now: Optional[datetime] = None, grace_seconds: int = 60):
        self.timezone = TimezoneManager.resolve(timezone)
        self.tz = pytz.timezone(self.timezone)
        self.now = TimezoneManager.localize(now, self.timezone) if now else datetime.now(self.tz)
        self.grace = timedelta(seconds=grace_seconds)

    def week_bounds(self) -> Tuple[datetime, datetime]:
        """Sunday 00:00:00.000 through Saturday 23:59:59.999 of the current local week."""
        # weekday(): Monday=0 .. Sunday=6
        days_since_sunday = (self.now.weekday() + 1) % 7
        sunday = (self.now - timedelta(days=days_since_sunday)).replace(tzinfo=None)
        start_naive = sunday.replace(hour=0, minute=0, second=0, microsecond=0)
        end_naive = start_naive + timedelta(days=6, hours=23, minutes=59, seconds=59, microseconds=999000)
        return self.tz.localize(start_naive), self.tz.localize(end_naive)

    def parse(self, value: Any) -> datetime:
        """Parse an ISO 8601 value, interpreting naive values in the user's timezone."""
        if isinstance(value, datetime):
            parsed = value
        else:
            parsed = date_parser.isoparse(str(value))

        if parsed.tzinfo is None:
            parsed = self.tz.localize(parsed)
        return parsed

    def check(self, intent):
        """Validate or correct the temporal fields of a calendar intent in place.

        Raises:
            PastEventRejected: a create starts more than the grace window in the past
            ValidationError: a create carries an unparseable start time
        """
        if getattr(intent, 'operation_type', None) != 'calendar':
            return intent

        if intent.action == 'create':
            self._check_create(intent)
        elif intent.action in ('search', 'list'):
            self._correct_range(intent)

        return intent

    def _check_create(self, intent):
        data = intent.entity_data or {}
        raw_start = data.get('start_time')
        if not raw_start:
            return

        try:
            start = self.parse(raw_start)
        except (ValueError, OverflowError):
            raise ValidationError(
                f"Could not understand the start time '{raw_start}'. Please give a date and time such as 2025-03-14T15:00."
            )

        if start < self.now - self.grace:
            requested = TimezoneManager.format_local(start, self.timezone)
            current = TimezoneManager.format_local(self.now, self.timezone)
            logger.warning(f"⏪ Rejected past event: {requested} (now {current})")
            raise PastEventRejected(
                f"Cannot create an event in the past. The requested time is {requested}, "
                f"but it is currently {current}. Did you mean to schedule this for tomorrow or a future date?"
            )

    def _correct_range(self, intent):
        criteria = dict(intent.search_criteria or {})
        week_start, week_end = self.week_bounds()
        corrected = False

        for field, fallback in (('start_date', week_start), ('end_date', week_end)):
            value = criteria.get(field)
            if not value:
                continue
            try:
                stale = self.parse(value).year < self.now.year - 1
            except (ValueError, OverflowError):
                stale = True
            if stale:
                logger.info(f"🔧 Replacing stale {field} '{value}' with current week bound")
                criteria[field] = fallback.isoformat()
                corrected = True

        if intent.user_request and 'this week' in intent.user_request.lower():
            criteria['start_date'] = week_start.isoformat()
            criteria['end_date'] = week_end.isoformat()
            corrected = True

        if corrected:
            intent.search_criteria = criteria
