"""Tests for the calendar fast path."""

import uuid
from datetime import datetime, timedelta

import pytest
import pytz

from crm_assistant.errors import PastEventRejected
from crm_assistant.storage.base import CALENDAR_EVENTS
from crm_assistant.tools.smart_router import DEFAULT_RULES, FastAction, RoutingRule, SLOW_PATH, SmartRouter

from .conftest import USER_ID

NOW = pytz.UTC.localize(datetime(2025, 3, 12, 8, 0))
EVENT_ID = "3f2b8c1e-9d4a-4e6b-8f7c-1a2b3c4d5e6f"


@pytest.fixture
def smart_router(calendar):
    return SmartRouter(calendar)


def test_delete_by_id(smart_router):
    action = smart_router.classify(f"delete event {EVENT_ID}", NOW)

    assert action.action == "delete"
    assert action.event_id == EVENT_ID
    assert action.rule == "delete"


def test_complex_requests_go_to_the_assistant(smart_router):
    assert smart_router.classify("schedule lunch with Bob tomorrow at 1pm", NOW) is None
    assert smart_router.classify("Do I have anything tomorrow?", NOW) is None
    assert smart_router.classify(f"please reschedule {EVENT_ID}", NOW) is None


def test_create_tomorrow_at_time(smart_router):
    action = smart_router.classify("schedule Standup tomorrow at 9am", NOW)

    assert action.action == "create"
    assert action.title == "Standup"
    assert action.start == pytz.UTC.localize(datetime(2025, 3, 13, 9, 0))
    assert action.end - action.start == timedelta(hours=1)


def test_create_with_range(smart_router):
    action = smart_router.classify("book Review from 2pm to 3:30pm", NOW)

    assert action.title == "Review"
    assert (action.start.hour, action.end.hour, action.end.minute) == (14, 15, 30)
    assert action.start.date() == NOW.date()


def test_create_range_shares_meridiem(smart_router):
    action = smart_router.classify("book Planning from 2 to 4pm", NOW)

    assert (action.start.hour, action.end.hour) == (14, 16)


def test_generic_titles_are_not_fast_pathed(smart_router):
    assert smart_router.classify("schedule meeting tomorrow at 9am", NOW) is None
    assert smart_router.classify("schedule Standup sometime soon", NOW) is None


def test_update_title(smart_router):
    action = smart_router.classify(f"update event {EVENT_ID} title to 'Board review'", NOW)

    assert action.action == "update"
    assert action.title == "Board review"
    assert action.start is None


def test_update_without_changes_falls_through(smart_router):
    assert smart_router.classify(f"update event {EVENT_ID} please", NOW) is None


def test_custom_rules_are_consulted_in_order(calendar):
    rules = [
        RoutingRule("block-cancel", lambda text: text.startswith("cancel"), lambda raw, now: SLOW_PATH),
        *DEFAULT_RULES,
    ]
    router = SmartRouter(calendar, rules=rules)

    assert router.classify(f"cancel {EVENT_ID}", NOW) is None
    assert SmartRouter(calendar).classify(f"cancel {EVENT_ID}", NOW).action == "delete"


@pytest.mark.asyncio
async def test_fast_path_deletes_existing_event(smart_router, calendar, store):
    start = datetime.now(pytz.UTC) + timedelta(days=1)
    event = await calendar.create_event(USER_ID, "Dentist", start, start + timedelta(hours=1))

    result = await smart_router.try_fast_path(f"delete event {event['event_id']}", USER_ID, "UTC")

    assert result["success"] is True
    assert result["trigger_refresh"] is True
    assert store.deleted == [(CALENDAR_EVENTS, event["event_id"])]


@pytest.mark.asyncio
async def test_fast_path_falls_back_when_event_is_missing(smart_router):
    assert await smart_router.try_fast_path(f"delete event {uuid.uuid4()}", USER_ID, "UTC") is None


@pytest.mark.asyncio
async def test_fast_path_misses_on_plain_chat(smart_router):
    assert await smart_router.try_fast_path("hello there", USER_ID, "UTC") is None


@pytest.mark.asyncio
async def test_fast_path_creates_event(smart_router, store):
    result = await smart_router.try_fast_path("schedule Standup tomorrow at 9am", USER_ID, "America/New_York")

    assert result["success"] is True
    assert result["event"]["title"] == "Standup"
    assert "Standup" in result["message"]
    assert len(store.tables[CALENDAR_EVENTS]) == 1


@pytest.mark.asyncio
async def test_past_fast_create_is_rejected(smart_router, store):
    start = datetime.now(pytz.UTC) - timedelta(hours=2)
    action = FastAction(action="create", title="Standup", start=start, end=start + timedelta(hours=1))

    with pytest.raises(PastEventRejected):
        await smart_router.execute(action, USER_ID, "UTC")

    assert store.tables[CALENDAR_EVENTS] == {}


def test_range_after_unplaced_day_goes_to_the_assistant(smart_router):
    assert smart_router.classify("schedule Standup tomorrow from 3pm to 4pm", NOW) is None
    assert smart_router.classify("schedule Standup on Friday 3pm to 4pm", NOW) is None
    assert smart_router.classify("schedule Standup tomorrow at 9am on 3/20", NOW) is None


def test_range_today_stays_on_the_fast_path(smart_router):
    action = smart_router.classify("schedule Standup today from 3pm to 4pm", NOW)

    assert action.start == pytz.UTC.localize(datetime(2025, 3, 12, 15, 0))
    assert action.end == pytz.UTC.localize(datetime(2025, 3, 12, 16, 0))


def test_bare_verbs_with_id_are_fast_pathed(smart_router):
    assert smart_router.classify(f"delete {EVENT_ID}", NOW).action == "delete"
    assert smart_router.classify(f"remove event {EVENT_ID}", NOW).action == "delete"

    action = smart_router.classify(f"update {EVENT_ID} title to 'Board review'", NOW)
    assert action.action == "update"
    assert action.title == "Board review"
