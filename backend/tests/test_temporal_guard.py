"""Tests for date validation and stale-range correction."""

from datetime import datetime

import pytest
import pytz

from crm_assistant.errors import PastEventRejected, ValidationError
from crm_assistant.tools.intents import CalendarIntent, ContactIntent
from crm_assistant.tools.temporal_guard import TemporalGuard

# Wednesday
NOW = datetime(2025, 3, 12, 10, 0, 0)


def make_guard(timezone="UTC", now=NOW):
    return TemporalGuard(timezone, now=now)


def test_week_bounds_run_sunday_to_saturday():
    start, end = make_guard().week_bounds()

    assert (start.year, start.month, start.day, start.hour, start.minute) == (2025, 3, 9, 0, 0)
    assert start.weekday() == 6
    assert (end.year, end.month, end.day) == (2025, 3, 15)
    assert (end.hour, end.minute, end.second, end.microsecond) == (23, 59, 59, 999000)


def test_week_bounds_on_sunday_start_that_day():
    start, _ = make_guard(now=datetime(2025, 3, 9, 8, 0)).week_bounds()
    assert start.day == 9


def test_create_in_the_past_is_rejected():
    intent = CalendarIntent(action="create", entity_data={
        "title": "Standup",
        "start_time": "2025-03-12T09:58:00",
        "end_time": "2025-03-12T10:30:00",
    })

    with pytest.raises(PastEventRejected) as exc_info:
        make_guard().check(intent)

    assert "Did you mean to schedule this for tomorrow or a future date?" in exc_info.value.message


def test_create_within_grace_window_is_allowed():
    intent = CalendarIntent(action="create", entity_data={
        "title": "Standup",
        "start_time": "2025-03-12T09:59:30",
        "end_time": "2025-03-12T10:30:00",
    })

    assert make_guard().check(intent) is intent


def test_naive_start_is_read_in_user_timezone():
    # 14:00 UTC is 10:00 in New York (EDT); 10:30 local is still ahead, 10:30 UTC would not be
    guard = TemporalGuard("America/New_York", now=pytz.UTC.localize(datetime(2025, 3, 12, 14, 0)))
    intent = CalendarIntent(action="create", entity_data={
        "title": "Call",
        "start_time": "2025-03-12T10:30:00",
        "end_time": "2025-03-12T11:00:00",
    })

    guard.check(intent)


def test_unparseable_start_is_a_validation_error():
    intent = CalendarIntent(action="create", entity_data={"title": "X", "start_time": "next-ish", "end_time": "later"})

    with pytest.raises(ValidationError):
        make_guard().check(intent)


def test_this_week_overrides_stale_range():
    intent = CalendarIntent(
        action="search",
        search_criteria={"start_date": "2022-01-01", "end_date": "2022-01-02"},
        user_request="What do I have this week?",
    )
    guard = make_guard()
    start, end = guard.week_bounds()

    guard.check(intent)

    assert intent.search_criteria["start_date"] == start.isoformat()
    assert intent.search_criteria["end_date"] == end.isoformat()


def test_this_week_overrides_plausible_range_too():
    intent = CalendarIntent(
        action="list",
        search_criteria={"start_date": "2025-03-10", "end_date": "2025-03-14"},
        user_request="Show THIS WEEK please",
    )
    guard = make_guard()
    start, _ = guard.week_bounds()

    guard.check(intent)

    assert intent.search_criteria["start_date"] == start.isoformat()


def test_stale_year_is_replaced_without_this_week():
    intent = CalendarIntent(action="search", search_criteria={"start_date": "2021-06-01", "search_term": "review"})
    guard = make_guard()
    start, _ = guard.week_bounds()

    guard.check(intent)

    assert intent.search_criteria["start_date"] == start.isoformat()
    assert intent.search_criteria["search_term"] == "review"


def test_recent_dates_are_left_alone():
    intent = CalendarIntent(action="search", search_criteria={"start_date": "2024-12-01", "end_date": "2025-04-01"})

    make_guard().check(intent)

    assert intent.search_criteria == {"start_date": "2024-12-01", "end_date": "2025-04-01"}


def test_other_intents_pass_through():
    intent = ContactIntent(action="create", entity_data={"first_name": "Ada", "birthday": "1815-12-10"})

    assert make_guard().check(intent).entity_data == {"first_name": "Ada", "birthday": "1815-12-10"}
