"""
Operation router: executes one structured intent against the storage boundary.

``OperationRouter.execute`` never raises. Domain errors become
``{"success": False, "error": <actionable text>, ...}`` results and anything
unexpected is logged and reported generically, so one failing tool call never
aborts the rest of a turn.
"""

from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

import pytz
from dateutil import parser as date_parser

from ..errors import AssistantError, AmbiguousTargetError, NotFoundError, ValidationError
from ..storage.base import EntityStore, CONTACTS, ALERTS
from ..storage.cache import SearchCache
from ..storage.query import Predicate, all_of, any_of, eq, gte, ilike, is_null, lte
from ..utils.config import settings as default_settings
from ..utils.debug_events import emit_tool_call
from ..utils.logger import logger
from .calendar import CalendarTool, EVENT_DEFAULTS, EVENT_FIELDS, to_storage_time
from .duplicates import DuplicateResolutionEngine, display_name
from .intents import (
    BaseIntent, ContactIntent, CalendarIntent, AlertIntent, SettingsIntent,
    DuplicateIntent, GeneralIntent, INTENT_TYPES
)
from .temporal_guard import TemporalGuard
from .timezone import TimezoneManager
from .validation import compact, require_canonical_id, require_fields

CONTACT_FIELDS = (
    'first_name', 'middle_name', 'last_name', 'nickname', 'email', 'phone',
    'mobile_phone', 'work_phone', 'company', 'job_title', 'department',
    'street_address', 'street_address_2', 'city', 'state_province', 'postal_code',
    'country', 'website', 'birthday', 'notes', 'tags', 'social_linkedin',
    'social_twitter', 'preferred_contact_method', 'language'
)

# Fields that must all match (missing matches missing) for a create to count as a duplicate
CONTACT_IDENTITY_FIELDS = (
    'first_name', 'middle_name', 'last_name', 'nickname', 'email', 'phone',
    'company', 'job_title', 'street_address', 'street_address_2', 'city',
    'state_province', 'postal_code', 'country', 'website', 'birthday', 'notes'
)

ALERT_FIELDS = ('title', 'description', 'alert_type', 'due_date', 'priority', 'status', 'contact_id', 'event_id', 'tags')

ALERT_PRIORITIES = {'low': 1, 'medium': 2, 'high': 3}

JOB_TITLE_KEYWORDS = ('manager', 'director', 'ceo')

GENERAL_HELP = (
    "I can help you with contact management, calendar events, alerts, and settings. "
    "What would you like to do?"
)

EVENT_ID_HINT = (
    "This looks like a meeting or conference id, not an event_id. "
    "Use the event_id from a previous calendar search result."
)


def contact_search_predicate(term: str) -> Predicate:
    """Predicate for a free-text contact search."""
    lowered = term.lower()

    if 'duplicate' in lowered:
        return any_of(ilike('first_name', term), ilike('last_name', term), ilike('email', term))

    if any(keyword in lowered for keyword in JOB_TITLE_KEYWORDS):
        return ilike('job_title', term)

    parts = term.split()
    if len(parts) == 2:
        first, last = parts
        return any_of(
            all_of(ilike('first_name', first), ilike('last_name', last)),
            all_of(ilike('first_name', last), ilike('last_name', first)),
            ilike('email', term),
            ilike('company', term),
            ilike('notes', term)
        )

    fields = ['first_name', 'last_name', 'email', 'company', 'job_title', 'phone']
    if len(parts) > 2:
        fields.append('notes')
    return any_of(*[ilike(f, term) for f in fields])


def contact_name_predicate(term: str) -> Predicate:
    """Narrower predicate used to resolve a single contact by name."""
    parts = term.split()
    if len(parts) == 2:
        first, last = parts
        return any_of(
            all_of(ilike('first_name', first), ilike('last_name', last)),
            all_of(ilike('first_name', last), ilike('last_name', first))
        )
    if len(parts) > 2:
        return any_of(ilike('first_name', term), ilike('last_name', term))
    return any_of(ilike('first_name', term), ilike('last_name', term), ilike('email', term))


def birthday_within(birthday: Any, today: datetime, days: int) -> bool:
    """True when a YYYY-MM-DD or MM-DD birthday falls within the next ``days`` days."""
    if not birthday:
        return False

    text = str(birthday)
    try:
        if len(text) == 5:
            month, day = int(text[:2]), int(text[3:])
        else:
            parsed = date_parser.isoparse(text)
            month, day = parsed.month, parsed.day
    except ValueError:
        return False

    start = today.date()
    for year in (start.year, start.year + 1):
        try:
            occurrence = start.replace(year=year, month=month, day=day)
        except ValueError:
            # Feb 29 in a non-leap year
            occurrence = start.replace(year=year, month=3, day=1)
        if occurrence >= start:
            return (occurrence - start).days <= days
    return False


def contact_summary(contact: Dict[str, Any]) -> Dict[str, Any]:
    return {
        'contact_id': contact.get('contact_id'),
        'name': display_name(contact),
        'email': contact.get('email'),
    }


def event_summary(event: Dict[str, Any]) -> Dict[str, Any]:
    return {
        'event_id': event.get('event_id'),
        'title': event.get('title'),
        'start_time': event.get('start_time'),
    }


class OperationRouter:
    def __init__(
        self,
        store: EntityStore,
        calendar: CalendarTool,
        duplicates: DuplicateResolutionEngine,
        cache: Optional[SearchCache] = None,
        timezone: str = 'UTC',
        settings=default_settings
    ):
        self.store = store
        self.calendar = calendar
        self.duplicates = duplicates
        self.cache = cache
        self.timezone = timezone
        self.settings = settings

        self.handlers: Dict[type, Callable] = {
            intent_type: getattr(self, name) for intent_type, name in HANDLERS.items()
        }

    async def execute(
        self,
        intent: BaseIntent,
        user_id: str,
        timezone: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """
        Run one intent and describe the outcome.

        Args:
            intent: Parsed tool-call arguments
            user_id: Authenticated owner of every record touched
            timezone: User's IANA zone, defaults to the router's zone
            now: Override of the current time (tests)

        Returns:
            Result dict with ``success`` and either a payload or an ``error``
        """
        tz = TimezoneManager.resolve(timezone, self.timezone)
        current = TimezoneManager.localize(now, tz) if now else datetime.now(pytz.UTC)
        label = f"{intent.operation_type}.{intent.action}"
        logger.info(f"🔧 Executing {label} for user {user_id}", extra={"user_id": user_id, "operation": label})

        try:
            TemporalGuard(tz, now=now, grace_seconds=self.settings.past_event_grace_seconds).check(intent)
            handler = self.handlers[type(intent)]
            result = await handler(intent, user_id, tz, current)
        except AssistantError as e:
            logger.warning(f"⚠️ {label} rejected: {e.message}")
            result = e.to_result()
        except Exception as e:
            logger.error(f"❌ {label} failed: {e}", exc_info=True)
            result = {
                'success': False,
                'error': f"The {intent.operation_type} {intent.action} operation failed. Please try again.",
                'error_type': 'internal_error',
            }

        result.setdefault('operation', intent.action)
        emit_tool_call(intent.operation_type, intent.action, result)
        return result

    def _invalidate(self, user_id: str):
        if self.cache is None:
            return
        try:
            self.cache.clear_user_cache(user_id)
        except Exception as e:
            logger.warning(f"Failed to clear search cache for user {user_id}: {e}")

    @staticmethod
    def _unknown(intent: BaseIntent):
        raise ValidationError(f"Unknown {intent.operation_type} action: {intent.action}")

    # Contacts

    async def _handle_contact(self, intent: ContactIntent, user_id: str, tz: str, now: datetime) -> Dict[str, Any]:
        if intent.action == 'create':
            return await self._create_contact(intent, user_id)
        if intent.action in ('search', 'list', 'read'):
            return await self._search_contacts(intent, user_id, tz, now)
        if intent.action == 'update':
            return await self._update_contact(intent, user_id)
        if intent.action == 'delete':
            return await self._delete_contact(intent, user_id)
        self._unknown(intent)

    async def _create_contact(self, intent: ContactIntent, user_id: str) -> Dict[str, Any]:
        if not intent.entity_data:
            raise ValidationError("Entity data required for contact creation")

        data = compact(intent.entity_data, CONTACT_FIELDS)
        require_fields(data, ('first_name', 'last_name'), 'contact')

        identity = all_of(*[
            eq(f, data[f]) if f in data else is_null(f)
            for f in CONTACT_IDENTITY_FIELDS
        ])
        existing = await self.store.select(CONTACTS, user_id, where=identity, limit=1)
        if existing:
            match = existing[0]
            logger.info(f"Duplicate contact create blocked: matches {match['contact_id']}")
            return {
                'success': False,
                'status': 409,
                'error_type': 'duplicate_contact',
                'error': f"A contact with exactly these details already exists: {display_name(match)}.",
                'existing_contact': match,
            }

        contact = await self.store.insert(CONTACTS, user_id, data)
        self._invalidate(user_id)
        return {'success': True, 'operation': 'create', 'contact': contact}

    async def _search_contacts(self, intent: ContactIntent, user_id: str, tz: str, now: datetime) -> Dict[str, Any]:
        criteria = intent.criteria
        limit = self.settings.contact_search_limit

        cache_key = f"contacts:{sorted(criteria.items())!r}"
        cached = self.cache.get(user_id, cache_key) if self.cache is not None else None
        if cached is not None:
            logger.debug(f"Contact search served from cache for user {user_id}")
            return {'success': True, 'operation': intent.action, 'contacts': cached, 'total': len(cached), 'cached': True}

        conditions: List[Predicate] = []
        if criteria.get('contact_id'):
            conditions.append(eq('contact_id', criteria['contact_id']))
        elif criteria.get('search_term'):
            conditions.append(contact_search_predicate(str(criteria['search_term'])))
        if criteria.get('company'):
            conditions.append(ilike('company', criteria['company']))

        where = all_of(*conditions) if conditions else None
        upcoming = bool(criteria.get('upcoming'))

        contacts = await self.store.select(
            CONTACTS, user_id, where=where, order_by='first_name',
            limit=None if upcoming else limit
        )

        if upcoming:
            today = now.astimezone(pytz.timezone(tz))
            contacts = [
                c for c in contacts
                if birthday_within(c.get('birthday'), today, self.settings.upcoming_window_days)
            ][:limit]

        if self.cache is not None:
            self.cache.set(user_id, cache_key, contacts)

        logger.info(f"👤 Contact search found {len(contacts)} result(s)")
        return {'success': True, 'operation': intent.action, 'contacts': contacts, 'total': len(contacts)}

    async def _resolve_contact(self, criteria: Dict[str, Any], user_id: str) -> Dict[str, Any]:
        if criteria.get('contact_id'):
            contact_id = require_canonical_id(criteria['contact_id'], 'contact_id')
            contact = await self.store.get(CONTACTS, user_id, contact_id)
            if contact is None:
                raise NotFoundError(f"Contact with ID {contact_id} not found")
            return contact

        term = criteria.get('search_term')
        if not term:
            raise ValidationError("Either contact_id or search_term required for update")

        matches = await self.store.select(CONTACTS, user_id, where=contact_name_predicate(str(term)), limit=10)
        if not matches:
            raise AmbiguousTargetError(f'No contacts found matching "{term}"')
        if len(matches) > 1:
            raise AmbiguousTargetError(
                f'Multiple contacts found matching "{term}". Please be more specific or use a contact_id.',
                candidates=[contact_summary(c) for c in matches]
            )
        return matches[0]

    async def _update_contact(self, intent: ContactIntent, user_id: str) -> Dict[str, Any]:
        changes = compact(intent.entity_data, CONTACT_FIELDS)
        if not changes:
            raise ValidationError("No data provided for update")

        target = await self._resolve_contact(intent.criteria, user_id)
        contact = await self.store.update(CONTACTS, user_id, target['contact_id'], changes)
        if contact is None:
            raise NotFoundError(f"Contact with ID {target['contact_id']} not found")

        self._invalidate(user_id)
        return {
            'success': True,
            'operation': 'update',
            'contact': contact,
            'message': f"Successfully updated {display_name(contact)}",
        }

    async def _delete_contact(self, intent: ContactIntent, user_id: str) -> Dict[str, Any]:
        contact_id = require_canonical_id(
            intent.criteria.get('contact_id'), 'contact_id',
            hint="Use the contact_id from the search results, not an email or other field."
        )
        if not await self.store.delete(CONTACTS, user_id, contact_id):
            raise NotFoundError(f"Contact with ID {contact_id} not found")

        self._invalidate(user_id)
        return {'success': True, 'operation': 'delete', 'deleted_contact_id': contact_id, 'message': "Contact deleted successfully"}

    # Calendar

    async def _handle_calendar(self, intent: CalendarIntent, user_id: str, tz: str, now: datetime) -> Dict[str, Any]:
        if intent.action == 'create':
            return await self._create_event(intent, user_id, tz)
        if intent.action in ('search', 'list', 'read'):
            return await self._search_events(intent, user_id, tz, now)
        if intent.action == 'update':
            return await self._update_event(intent, user_id, tz)
        if intent.action == 'delete':
            return await self._delete_event(intent, user_id)
        self._unknown(intent)

    async def _create_event(self, intent: CalendarIntent, user_id: str, tz: str) -> Dict[str, Any]:
        data = compact(intent.entity_data, EVENT_FIELDS)
        require_fields(data, ('title', 'start_time', 'end_time'), 'calendar event')

        fields = dict(EVENT_DEFAULTS)
        fields.update(data)
        try:
            event = await self.calendar.create_event(user_id, timezone=tz, **fields)
        except (ValueError, OverflowError):
            raise ValidationError("start_time and end_time must be ISO 8601 date-times, e.g. 2025-03-14T15:00:00")

        return {'success': True, 'operation': 'create', 'event': event, 'trigger_refresh': True}

    async def _search_events(self, intent: CalendarIntent, user_id: str, tz: str, now: datetime) -> Dict[str, Any]:
        criteria = intent.criteria
        start, end = criteria.get('start_date'), criteria.get('end_date')

        if criteria.get('upcoming'):
            start, end = now, now + timedelta(days=self.settings.upcoming_window_days)

        try:
            events = await self.calendar.list_events(
                user_id,
                start_time=start,
                end_time=end,
                search_term=criteria.get('search_term'),
                max_results=criteria.get('max_results'),
                timezone=tz
            )
        except (ValueError, OverflowError):
            raise ValidationError("start_date and end_date must be ISO 8601 dates")

        return {'success': True, 'operation': intent.action, 'events': events, 'total': len(events)}

    async def _update_event(self, intent: CalendarIntent, user_id: str, tz: str) -> Dict[str, Any]:
        event_id = intent.criteria.get('event_id') or intent.entity.get('event_id')
        if not event_id:
            raise ValidationError(
                "Event ID is required for calendar update. Please provide the event_id in "
                "search_criteria or specify which event to update."
            )
        require_canonical_id(event_id, 'event_id', hint=EVENT_ID_HINT)

        changes = compact(intent.entity_data, EVENT_FIELDS)
        if not changes:
            raise ValidationError("No event fields provided for update")

        try:
            event = await self.calendar.update_event(user_id, event_id, changes, timezone=tz)
        except (ValueError, OverflowError):
            raise ValidationError("start_time and end_time must be ISO 8601 date-times")

        if event is None:
            raise NotFoundError(f"Event with ID {event_id} not found")

        return {'success': True, 'operation': 'update', 'event': event, 'trigger_refresh': True}

    async def _delete_event(self, intent: CalendarIntent, user_id: str) -> Dict[str, Any]:
        criteria = intent.criteria

        if criteria.get('event_id'):
            event_id = require_canonical_id(criteria['event_id'], 'event_id', hint=EVENT_ID_HINT)
            if not await self.calendar.delete_event(user_id, event_id):
                raise NotFoundError(f"Event with ID {event_id} not found")
            return {'success': True, 'operation': 'delete', 'deleted_event_id': event_id, 'message': "Event deleted successfully", 'trigger_refresh': True}

        term = criteria.get('search_term')
        if not term:
            raise ValidationError(
                "To delete an event, please specify either the event ID or provide the event title/name to search for."
            )

        matches = await self.calendar.list_events(user_id, search_term=term)
        if not matches:
            raise AmbiguousTargetError(f'No events found matching "{term}". Please check the event name and try again.')
        if len(matches) > 1:
            listing = '\n'.join(f"- {e.get('title')} ({e.get('start_time')})" for e in matches)
            raise AmbiguousTargetError(
                f'Multiple events found matching "{term}":\n{listing}\n\nPlease be more specific or provide the exact date and time.',
                candidates=[event_summary(e) for e in matches]
            )

        target = matches[0]
        if not await self.calendar.delete_event(user_id, target['event_id']):
            raise NotFoundError(f"Event with ID {target['event_id']} not found")

        return {
            'success': True,
            'operation': 'delete',
            'deleted_event': target,
            'message': f'Successfully deleted "{target.get("title")}" scheduled for {target.get("start_time")}',
            'trigger_refresh': True,
        }

    # Alerts

    async def _handle_alert(self, intent: AlertIntent, user_id: str, tz: str, now: datetime) -> Dict[str, Any]:
        if intent.action == 'create':
            return await self._create_alert(intent, user_id, tz)
        if intent.action in ('search', 'list', 'read'):
            return await self._search_alerts(intent, user_id, now)
        if intent.action == 'update':
            return await self._update_alert(intent, user_id, tz)
        if intent.action == 'delete':
            return await self._delete_alert(intent, user_id)
        self._unknown(intent)

    @staticmethod
    def _alert_fields(entity_data: Optional[Dict[str, Any]], tz: str) -> Dict[str, Any]:
        data = compact(entity_data, ALERT_FIELDS)
        if isinstance(data.get('priority'), str):
            data['priority'] = ALERT_PRIORITIES.get(data['priority'].lower(), 2)
        if data.get('due_date'):
            try:
                data['due_date'] = to_storage_time(data['due_date'], tz)
            except (ValueError, OverflowError):
                raise ValidationError(f"Could not understand the due date '{data['due_date']}'. Use an ISO 8601 date-time.")
        return data

    async def _create_alert(self, intent: AlertIntent, user_id: str, tz: str) -> Dict[str, Any]:
        if not intent.entity_data:
            raise ValidationError("Entity data required for alert creation")

        data = self._alert_fields(intent.entity_data, tz)
        require_fields(data, ('title', 'alert_type', 'due_date'), 'alert')
        data.setdefault('priority', 2)
        data.setdefault('status', 'pending')

        alert = await self.store.insert(ALERTS, user_id, data)
        logger.info(f"🔔 Alert created: {alert['alert_id']}")
        return {'success': True, 'operation': 'create', 'alert': alert}

    async def _search_alerts(self, intent: AlertIntent, user_id: str, now: datetime) -> Dict[str, Any]:
        criteria = intent.criteria
        conditions: List[Predicate] = []

        if criteria.get('status'):
            conditions.append(eq('status', criteria['status']))
        if criteria.get('upcoming'):
            future = now + timedelta(days=self.settings.upcoming_window_days)
            conditions.append(gte('due_date', to_storage_time(now)))
            conditions.append(lte('due_date', to_storage_time(future)))

        alerts = await self.store.select(
            ALERTS, user_id,
            where=all_of(*conditions) if conditions else None,
            order_by='due_date',
            limit=self.settings.alert_search_limit
        )
        return {'success': True, 'operation': intent.action, 'alerts': alerts, 'total': len(alerts)}

    async def _update_alert(self, intent: AlertIntent, user_id: str, tz: str) -> Dict[str, Any]:
        alert_id = require_canonical_id(intent.criteria.get('alert_id'), 'alert_id')
        changes = self._alert_fields(intent.entity_data, tz)
        if not changes:
            raise ValidationError("No data provided for update")

        alert = await self.store.update(ALERTS, user_id, alert_id, changes)
        if alert is None:
            raise NotFoundError(f"Alert with ID {alert_id} not found")
        return {'success': True, 'operation': 'update', 'alert': alert}

    async def _delete_alert(self, intent: AlertIntent, user_id: str) -> Dict[str, Any]:
        alert_id = require_canonical_id(intent.criteria.get('alert_id'), 'alert_id')
        if not await self.store.delete(ALERTS, user_id, alert_id):
            raise NotFoundError(f"Alert with ID {alert_id} not found")
        return {'success': True, 'operation': 'delete', 'deleted_alert_id': alert_id, 'message': "Alert deleted successfully"}

    # Settings, duplicates, general

    async def _handle_settings(self, intent: SettingsIntent, user_id: str, tz: str, now: datetime) -> Dict[str, Any]:
        if intent.action == 'read':
            profile = await self.store.get_profile(user_id)
            return {'success': True, 'operation': 'read', 'profile': profile}

        if intent.action == 'update':
            data = compact(intent.entity_data)
            new_settings = data.get('settings') if isinstance(data.get('settings'), dict) else data
            profile = await self.store.update_profile(user_id, {'settings': new_settings})
            return {'success': True, 'operation': 'update', 'profile': profile}

        self._unknown(intent)

    async def _handle_duplicates(self, intent: DuplicateIntent, user_id: str, tz: str, now: datetime) -> Dict[str, Any]:
        if intent.action == 'analyze':
            term = intent.criteria.get('search_term')
            if not term:
                raise ValidationError("Search term required for duplicate analysis")

            candidates = await self.store.select(
                CONTACTS, user_id,
                where=contact_name_predicate(str(term)),
                order_by='updated_at',
                descending=True,
                limit=self.settings.duplicate_candidate_limit
            )
            return self.duplicates.analyze(candidates, search_term=str(term)).to_result()

        if intent.action == 'delete':
            result = await self.duplicates.delete_candidate(user_id, intent.criteria.get('contact_id'))
            self._invalidate(user_id)
            return result

        self._unknown(intent)

    async def _handle_general(self, intent: GeneralIntent, user_id: str, tz: str, now: datetime) -> Dict[str, Any]:
        return {'success': True, 'operation': intent.action, 'message': GENERAL_HELP}


HANDLERS = {
    ContactIntent: '_handle_contact',
    CalendarIntent: '_handle_calendar',
    AlertIntent: '_handle_alert',
    SettingsIntent: '_handle_settings',
    DuplicateIntent: '_handle_duplicates',
    GeneralIntent: '_handle_general',
}

_unhandled = set(INTENT_TYPES) - set(HANDLERS)
if _unhandled:
    raise RuntimeError(f"OperationRouter has no handler for: {', '.join(t.__name__ for t in _unhandled)}")
