from datetime import datetime, timedelta
from typing import Optional, List, Dict, Any

import pytz
from dateutil import parser as date_parser

from ..storage.base import EntityStore, CALENDAR_EVENTS
from ..storage.query import all_of, any_of, ilike, gte, lte
from ..utils.logger import logger

EVENT_FIELDS = (
    'title', 'description', 'start_time', 'end_time', 'location',
    'is_all_day', 'is_recurring', 'recurrence_pattern'
)

EVENT_DEFAULTS = {
    'description': '',
    'location': '',
    'is_all_day': False,
    'is_recurring': False,
    'recurrence_pattern': None,
}


def to_storage_time(value: Any, default_tz: str = 'UTC') -> str:
    """Normalize a datetime or ISO string to the stored UTC form (millisecond precision)."""
    if isinstance(value, datetime):
        dt = value
    else:
        dt = date_parser.isoparse(str(value))

    if dt.tzinfo is None:
        dt = pytz.timezone(default_tz).localize(dt)

    return dt.astimezone(pytz.UTC).isoformat(timespec='milliseconds')


class CalendarTool:
    """Calendar boundary adapter: one storage call per action."""

    def __init__(self, store: EntityStore, timezone: str = 'UTC'):
        self.store = store
        self.timezone = timezone

    async def list_events(
        self,
        user_id: str,
        start_time: Optional[Any] = None,
        end_time: Optional[Any] = None,
        search_term: Optional[str] = None,
        max_results: Optional[int] = None,
        timezone: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """
        Fetch the user's events ordered by start time.

        Args:
            user_id: Owner of the events
            start_time: Lower bound on event start (datetime or ISO string)
            end_time: Upper bound on event start
            search_term: Case-insensitive match on title, description or location
            max_results: Optional cap on returned events
            timezone: Zone used for naive bounds

        Returns:
            List of event records
        """
        tz = timezone or self.timezone
        conditions = []

        if start_time:
            conditions.append(gte('start_time', to_storage_time(start_time, tz)))
        if end_time:
            conditions.append(lte('start_time', to_storage_time(end_time, tz)))
        if search_term:
            conditions.append(any_of(
                ilike('title', search_term),
                ilike('description', search_term),
                ilike('location', search_term)
            ))

        where = all_of(*conditions) if conditions else None
        events = await self.store.select(
            CALENDAR_EVENTS, user_id, where=where, order_by='start_time', limit=max_results
        )

        logger.info(f"📅 Found {len(events)} events for user {user_id}")
        return events

    async def upcoming_events(self, user_id: str, days: int = 30, max_results: Optional[int] = None) -> List[Dict[str, Any]]:
        now = datetime.now(pytz.UTC)
        return await self.list_events(user_id, now, now + timedelta(days=days), max_results=max_results)

    async def create_event(
        self,
        user_id: str,
        title: str,
        start_time: Any,
        end_time: Any,
        description: str = '',
        location: str = '',
        is_all_day: bool = False,
        is_recurring: bool = False,
        recurrence_pattern: Optional[str] = None,
        timezone: Optional[str] = None
    ) -> Dict[str, Any]:
        tz = timezone or self.timezone
        record = {
            'title': title,
            'description': description,
            'start_time': to_storage_time(start_time, tz),
            'end_time': to_storage_time(end_time, tz),
            'location': location,
            'is_all_day': is_all_day,
            'is_recurring': is_recurring,
            'recurrence_pattern': recurrence_pattern,
        }

        event = await self.store.insert(CALENDAR_EVENTS, user_id, record)
        logger.info(f"✅ Event created: {event['event_id']} '{title}'")
        return event

    async def update_event(
        self,
        user_id: str,
        event_id: str,
        changes: Dict[str, Any],
        timezone: Optional[str] = None
    ) -> Optional[Dict[str, Any]]:
        tz = timezone or self.timezone
        updates = {k: v for k, v in changes.items() if k in EVENT_FIELDS}
        for field in ('start_time', 'end_time'):
            if updates.get(field):
                updates[field] = to_storage_time(updates[field], tz)

        event = await self.store.update(CALENDAR_EVENTS, user_id, event_id, updates)
        if event:
            logger.info(f"✏️ Event updated: {event_id} ({', '.join(updates) or 'no changes'})")
        return event

    async def delete_event(self, user_id: str, event_id: str) -> bool:
        deleted = await self.store.delete(CALENDAR_EVENTS, user_id, event_id)
        if deleted:
            logger.info(f"🗑️ Event deleted: {event_id}")
        return deleted

    async def get_event(self, user_id: str, event_id: str) -> Optional[Dict[str, Any]]:
        return await self.store.get(CALENDAR_EVENTS, user_id, event_id)
