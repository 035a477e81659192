"""
Fast-path selector for simple, fully specified calendar requests.

Requests such as "schedule Standup tomorrow at 9am" or "delete event <uuid>"
are executed directly against the calendar boundary without a model call.
Anything that looks like a question, a search or a scheduling negotiation goes
to the conversational orchestrator instead.
"""

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence

from ..errors import AssistantError, NotFoundError, ValidationError
from ..utils.debug_events import emit_fast_path
from ..utils.logger import logger
from .calendar import CalendarTool
from .intents import CalendarIntent
from .temporal_guard import TemporalGuard
from .time_parser import DAY_AT_PATTERN, RANGE_PATTERN, resolve_time_expression
from .timezone import TimezoneManager
from .validation import CANONICAL_ID_SEARCH


@dataclass
class FastAction:
    action: str
    event_id: Optional[str] = None
    title: Optional[str] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    rule: str = ''


class _SlowPath:
    def __repr__(self):
        return 'SLOW_PATH'


SLOW_PATH = _SlowPath()


@dataclass
class RoutingRule:
    """One classification step.

    ``predicate`` sees the lowercased request. ``build`` sees the raw request
    and the user's current time and returns a FastAction, SLOW_PATH to stop
    classification, or None to let later rules try.
    """
    name: str
    predicate: Callable[[str], bool]
    build: Callable[[str, datetime], Any]


COMPLEXITY_PATTERNS = [
    r'when\s+is',
    r'when\s+am\s+i',
    r'what.*next',
    r'find.*meeting',
    r'search.*for',
    r'show.*me',
    r'do\s+i\s+have',
    r'am\s+i\s+(free|busy)',
    r'schedule.*with',
    r'available.*time',
    r'conflict',
    r'reschedule',
    r'move.*meeting',
]

CREATE_PATTERN = re.compile(r'^(?:create\s+event|add\s+event|schedule|book|new\s+event)\s+', re.IGNORECASE)
CREATE_SHAPE = re.compile(
    r'^(?:create|add|schedule|book|new)\s+(?:event\s+)?(?:for\s+)?["\']?(.+?)["\']?\s+(?:on|at|from|today|tomorrow)\b',
    re.IGNORECASE
)
UPDATE_PATTERN = re.compile(
    r'(?:update|change|modify)\s+(?:event\s+)?.*[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}',
    re.IGNORECASE
)
DELETE_PATTERN = re.compile(
    r'(?:delete|remove|cancel)\s+(?:event\s+)?.*[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}',
    re.IGNORECASE
)
TITLE_CHANGE = re.compile(r'(?:title|name)\s+(?:to\s+)?["\']([^"\']+)["\']', re.IGNORECASE)
TIME_CHANGE = re.compile(r'(?:time|start|when)\s+(?:to\s+)?(.+)', re.IGNORECASE)

# Day references the time parser cannot place; ranges always land on today
UNRESOLVED_DAY = re.compile(
    r"\b(?:tomorrow|on|next|this|monday|tuesday|wednesday|thursday|friday|saturday|sunday|"
    r"mon|tue|tues|wed|thu|thurs|fri|sat|sun|jan(?:uary)?|feb(?:ruary)?|mar(?:ch)?|apr(?:il)?|may|"
    r"june?|july?|aug(?:ust)?|sep(?:t(?:ember)?)?|oct(?:ober)?|nov(?:ember)?|dec(?:ember)?)\b"
    r"|\d{4}-\d{2}-\d{2}|\b\d{1,2}/\d{1,2}\b",
    re.IGNORECASE
)


def _matches(pattern: str) -> Callable[[str], bool]:
    compiled = re.compile(pattern)
    return lambda text: bool(compiled.search(text))


def _build_create(raw: str, now: datetime) -> Optional[FastAction]:
    text = raw.strip()
    shape = CREATE_SHAPE.match(text)
    if not shape:
        return None

    title = shape.group(1).strip()
    if title.lower() in ('', 'event', 'meeting', 'a meeting', 'today', 'tomorrow'):
        return None

    tail = text[shape.end(1):]
    times = resolve_time_expression(tail, now)
    if not times:
        return None

    pattern = DAY_AT_PATTERN if DAY_AT_PATTERN.search(tail) else RANGE_PATTERN
    if UNRESOLVED_DAY.search(pattern.sub(" ", tail, count=1)):
        return None

    start, end = times
    return FastAction(action='create', title=title, start=start, end=end)


def _build_update(raw: str, now: datetime) -> Optional[FastAction]:
    id_match = CANONICAL_ID_SEARCH.search(raw)
    if not id_match:
        return None

    action = FastAction(action='update', event_id=id_match.group(0))

    title_match = TITLE_CHANGE.search(raw)
    if title_match:
        action.title = title_match.group(1)

    time_match = TIME_CHANGE.search(raw)
    if time_match:
        times = resolve_time_expression(time_match.group(1), now)
        if times:
            action.start, action.end = times

    if action.title is None and action.start is None:
        return None
    return action


def _build_delete(raw: str, now: datetime) -> Optional[FastAction]:
    id_match = CANONICAL_ID_SEARCH.search(raw)
    if not id_match:
        return None
    return FastAction(action='delete', event_id=id_match.group(0))


DEFAULT_RULES: List[RoutingRule] = [
    RoutingRule(f"complex:{pattern}", _matches(pattern), lambda raw, now: SLOW_PATH)
    for pattern in COMPLEXITY_PATTERNS
] + [
    RoutingRule('create', lambda text: bool(CREATE_PATTERN.search(text.strip())), _build_create),
    RoutingRule('update', lambda text: bool(UPDATE_PATTERN.search(text)), _build_update),
    RoutingRule('delete', lambda text: bool(DELETE_PATTERN.search(text)), _build_delete),
]


class SmartRouter:
    def __init__(self, calendar: CalendarTool, rules: Optional[Sequence[RoutingRule]] = None, grace_seconds: int = 60):
        self.calendar = calendar
        self.rules = list(rules) if rules is not None else list(DEFAULT_RULES)
        self.grace_seconds = grace_seconds

    def classify(self, raw_text: str, now: datetime) -> Optional[FastAction]:
        """Return the fast action for a request, or None when it needs the orchestrator."""
        if not raw_text:
            return None

        lowered = raw_text.lower()
        for rule in self.rules:
            if not rule.predicate(lowered):
                continue

            outcome = rule.build(raw_text, now)
            if outcome is SLOW_PATH:
                logger.debug(f"Smart router: '{rule.name}' forces the slow path")
                return None
            if outcome is not None:
                outcome.rule = rule.name
                logger.info(f"⚡ Smart router matched rule '{rule.name}'", extra={"rule": rule.name})
                return outcome

        return None

    async def execute(self, action: FastAction, user_id: str, timezone: str) -> Dict[str, Any]:
        if action.action == 'create':
            intent = CalendarIntent(
                action='create',
                entity_data={
                    'title': action.title,
                    'start_time': action.start.isoformat(),
                    'end_time': action.end.isoformat(),
                },
            )
            TemporalGuard(timezone, grace_seconds=self.grace_seconds).check(intent)
            event = await self.calendar.create_event(
                user_id, action.title, action.start, action.end, timezone=timezone
            )
            return {
                'success': True,
                'operation': 'create',
                'event': event,
                'trigger_refresh': True,
                'message': f"Event \"{action.title}\" created for {TimezoneManager.format_local(action.start, timezone)}.",
            }

        if action.action == 'update':
            changes: Dict[str, Any] = {}
            if action.title:
                changes['title'] = action.title
            if action.start:
                changes['start_time'] = action.start
                changes['end_time'] = action.end
            event = await self.calendar.update_event(user_id, action.event_id, changes, timezone=timezone)
            if event is None:
                raise NotFoundError(f"Event with ID {action.event_id} not found")
            return {
                'success': True,
                'operation': 'update',
                'event': event,
                'trigger_refresh': True,
                'message': f"Event \"{event.get('title')}\" updated successfully.",
            }

        if action.action == 'delete':
            if not await self.calendar.delete_event(user_id, action.event_id):
                raise NotFoundError(f"Event with ID {action.event_id} not found")
            return {
                'success': True,
                'operation': 'delete',
                'deleted_event_id': action.event_id,
                'trigger_refresh': True,
                'message': "Event deleted successfully.",
            }

        raise ValidationError(f"Unsupported fast-path action: {action.action}")

    async def try_fast_path(self, raw_text: str, user_id: str, timezone: str) -> Optional[Dict[str, Any]]:
        """
        Execute a request directly when it has a fast-path shape.

        Returns:
            The operation result, or None when the orchestrator should handle the request
        """
        action = self.classify(raw_text, TimezoneManager.now_in(timezone))
        if action is None:
            return None

        try:
            result = await self.execute(action, user_id, timezone)
        except AssistantError as e:
            logger.info(f"Fast path declined ({e.error_type}): {e.message}")
            emit_fast_path(action.action, user_id, False)
            return None
        except Exception as e:
            logger.error(f"❌ Fast path failed, falling back to the assistant: {e}", exc_info=True)
            emit_fast_path(action.action, user_id, False)
            return None

        emit_fast_path(action.action, user_id, True)
        return result
