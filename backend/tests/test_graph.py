"""End-to-end turns through CRMAssistant with a scripted chat model."""

from datetime import datetime, timedelta

import pytest
import pytz

from crm_assistant.agent.graph import CRMAssistant
from crm_assistant.agent.nodes import ECHO_PATTERN, echoed_analysis_ids, format_echo
from crm_assistant.agent.prompts import MODEL_UNAVAILABLE_REPLY
from crm_assistant.storage.base import CALENDAR_EVENTS, CONTACTS
from crm_assistant.tools.smart_router import SmartRouter
from crm_assistant.utils.config import settings

from .conftest import FakeToolModel, USER_ID, ai_text_message, ai_tool_message, tool_call


def user(text):
    return {"role": "user", "content": text}


def assistant(text):
    return {"role": "assistant", "content": text}


def make_assistant(router, conversations, responses=None, smart_router=None, app_settings=settings):
    model = FakeToolModel(responses)
    return CRMAssistant(model, router, conversations, smart_router=smart_router, settings=app_settings), model


async def add_duplicates(store):
    keep = await store.insert(CONTACTS, USER_ID, {
        "first_name": "Jane", "last_name": "Doe", "email": "jane@x.com", "phone": "555", "company": "Acme"
    })
    dup = await store.insert(CONTACTS, USER_ID, {"first_name": "Jane", "last_name": "Doe", "email": "jane@x.com"})
    return keep, dup


def test_echo_round_trips_through_history():
    echo = format_echo("keep-id", ["a-id", "b-id"])

    assert ECHO_PATTERN.search(echo)
    assert echoed_analysis_ids([assistant(f"Found some.\n\n{echo}"), user(echo)]) == ["a-id", "b-id"]


@pytest.mark.asyncio
async def test_plain_reply_without_tools(router, conversations):
    bot, model = make_assistant(router, conversations, [ai_text_message("Hi! How can I help?")])

    result = await bot.process_turn([user("hello")], USER_ID, "Europe/Paris")

    assert result["reply"] == "Hi! How can I help?"
    assert result["metadata"]["tool_calls_made"] == 0
    assert result["metadata"]["writes"]["performed"] is False
    assert len(model.calls) == 1


@pytest.mark.asyncio
async def test_slow_path_executes_tool_and_sums_usage(router, conversations, store):
    bot, model = make_assistant(router, conversations, [
        ai_tool_message(tool_call("contact", "create", {"first_name": "Ada", "last_name": "Lovelace"}), tokens=10),
        ai_text_message("Added Ada Lovelace.", tokens=5),
    ])

    result = await bot.process_turn([user("Add Ada Lovelace as a contact")], USER_ID)
    metadata = result["metadata"]

    assert result["reply"] == "Added Ada Lovelace."
    assert len(store.tables[CONTACTS]) == 1
    assert metadata["used_fast_path"] is False
    assert metadata["tool_calls_made"] == 1
    assert metadata["should_refresh_contacts"] is True
    assert metadata["should_refresh_calendar"] is False
    assert metadata["usage"] == {"input_tokens": 15, "output_tokens": 15, "total_tokens": 30}
    assert metadata["response_id"] == "resp-final"
    assert conversations.get(USER_ID).last_response_id == "resp-final"
    assert len(model.calls) == 2


@pytest.mark.asyncio
async def test_fast_path_skips_the_model(router, conversations, calendar, store):
    start = datetime.now(pytz.UTC) + timedelta(days=1)
    event = await calendar.create_event(USER_ID, "Dentist", start, start + timedelta(hours=1))
    bot, model = make_assistant(router, conversations, smart_router=SmartRouter(calendar))

    result = await bot.process_turn([user(f"delete event {event['event_id']}")], USER_ID)
    metadata = result["metadata"]

    assert model.calls == []
    assert metadata["used_fast_path"] is True
    assert metadata["should_refresh_calendar"] is True
    assert metadata["usage"]["total_tokens"] == 0
    assert store.deleted == [(CALENDAR_EVENTS, event["event_id"])]
    assert conversations.get(USER_ID).message_count == 1


@pytest.mark.asyncio
async def test_fast_path_miss_falls_through_to_model(router, conversations, calendar):
    bot, model = make_assistant(
        router, conversations, [ai_text_message("You have nothing scheduled.")], smart_router=SmartRouter(calendar)
    )

    result = await bot.process_turn([user("Do I have anything tomorrow?")], USER_ID)

    assert result["reply"] == "You have nothing scheduled."
    assert result["metadata"]["used_fast_path"] is False
    assert len(model.calls) == 1


@pytest.mark.asyncio
async def test_duplicate_analysis_echo_authorizes_next_turn_delete(router, conversations, store):
    keep, dup = await add_duplicates(store)
    analyze = tool_call("duplicate_management", "analyze", search_criteria={"search_term": "Jane Doe"})
    bot, _ = make_assistant(router, conversations, [ai_tool_message(analyze), ai_text_message("Jane Doe has a duplicate.")])

    first = await bot.process_turn([user("find duplicate Jane Doe")], USER_ID)

    assert first["reply"].startswith("Jane Doe has a duplicate.")
    assert f"keep={keep['contact_id']}" in first["reply"]
    assert store.deleted == []

    delete = tool_call("duplicate_management", "delete", search_criteria={"contact_id": dup["contact_id"]})
    bot.model.responses = [ai_tool_message(delete), ai_text_message("Deleted the duplicate.")]
    history = [user("find duplicate Jane Doe"), assistant(first["reply"]), user("delete it")]

    second = await bot.process_turn(history, USER_ID)

    assert second["reply"] == "Deleted the duplicate."
    assert store.deleted == [(CONTACTS, dup["contact_id"])]
    assert second["metadata"]["should_refresh_contacts"] is True
    assert second["metadata"]["conversation"]["reset"] is False


@pytest.mark.asyncio
async def test_same_turn_analysis_authorizes_delete(router, conversations, store):
    _, dup = await add_duplicates(store)
    bot, _ = make_assistant(router, conversations, [
        ai_tool_message(
            tool_call("duplicate_management", "analyze", search_criteria={"search_term": "Jane Doe"}),
            tool_call("duplicate_management", "delete", search_criteria={"contact_id": dup["contact_id"]}),
        ),
        ai_text_message("Cleaned up Jane Doe."),
    ])

    result = await bot.process_turn([user("remove duplicate Jane Doe")], USER_ID)

    assert store.deleted == [(CONTACTS, dup["contact_id"])]
    assert result["metadata"]["tool_calls_made"] == 2


@pytest.mark.asyncio
async def test_duplicate_delete_without_analysis_is_blocked(router, conversations, store):
    keep, _ = await add_duplicates(store)
    bot, _ = make_assistant(router, conversations, [
        ai_tool_message(tool_call("duplicate_management", "delete", search_criteria={"contact_id": keep["contact_id"]})),
        ai_text_message("I need to analyze first."),
    ])

    result = await bot.process_turn([user("delete the Jane Doe duplicate")], USER_ID)

    assert store.deleted == []
    assert result["metadata"]["writes"]["performed"] is False
    assert any("prior duplicate analysis" in e for e in result["metadata"]["errors"])


@pytest.mark.asyncio
async def test_model_failure_returns_friendly_reply(router, conversations):
    bot, _ = make_assistant(router, conversations, [RuntimeError("quota exceeded")])

    result = await bot.process_turn([user("hello")], USER_ID)

    assert result["reply"] == MODEL_UNAVAILABLE_REPLY
    assert result["metadata"]["errors"]
    assert conversations.get(USER_ID).message_count == 1


@pytest.mark.asyncio
async def test_compose_failure_summarizes_results(router, conversations, store):
    bot, _ = make_assistant(router, conversations, [
        ai_tool_message(tool_call("contact", "create", {"first_name": "Ada", "last_name": "Lovelace"})),
        RuntimeError("timeout"),
    ])

    result = await bot.process_turn([user("Add Ada Lovelace")], USER_ID)

    assert result["reply"].startswith("I completed the following:")
    assert "✅ contact create" in result["reply"]
    assert len(store.tables[CONTACTS]) == 1


@pytest.mark.asyncio
async def test_failing_call_does_not_abort_the_next(router, conversations):
    bot, _ = make_assistant(router, conversations, [
        ai_tool_message(
            tool_call("contact", "delete", search_criteria={"contact_id": "bob@x.com"}),
            tool_call("not_a_type", "create"),
            tool_call("general", "help"),
        ),
        ai_text_message("Here is what happened."),
    ])

    result = await bot.process_turn([user("delete bob and help")], USER_ID)
    metadata = result["metadata"]

    assert metadata["tool_calls_made"] == 3
    assert len(metadata["errors"]) == 2
    assert result["reply"] == "Here is what happened."


@pytest.mark.asyncio
async def test_restarted_client_resets_conversation(router, conversations):
    for _ in range(5):
        conversations.touch(USER_ID, "resp-old")
    bot, _ = make_assistant(router, conversations, [ai_text_message("Hello again.")])

    result = await bot.process_turn([user("hi")], USER_ID)
    conversation = result["metadata"]["conversation"]

    assert conversation["reset"] is True
    assert conversation["previous_response_id"] is None
    assert conversation["message_count"] == 1


@pytest.mark.asyncio
async def test_follow_up_tool_calls_are_executed(router, conversations, store):
    bot, model = make_assistant(router, conversations, [
        ai_tool_message(tool_call("contact", "search", search_criteria={"search_term": "Ann Lee"})),
        ai_tool_message(
            tool_call("contact", "create", {"first_name": "Ann", "last_name": "Lee"}),
            response_id="resp-tools-2",
        ),
        ai_text_message("Ann Lee was not in your contacts, so I added her."),
    ])

    result = await bot.process_turn([user("Add Ann Lee unless she already exists")], USER_ID)
    metadata = result["metadata"]

    assert result["reply"] == "Ann Lee was not in your contacts, so I added her."
    assert [row["first_name"] for row in store.tables[CONTACTS].values()] == ["Ann"]
    assert metadata["tool_calls_made"] == 2
    assert metadata["should_refresh_contacts"] is True
    assert metadata["usage"]["total_tokens"] == 50
    assert len(model.calls) == 3


@pytest.mark.asyncio
async def test_follow_up_rounds_are_capped(router, conversations, store):
    bot, model = make_assistant(
        router,
        conversations,
        [
            ai_tool_message(tool_call("contact", "search", search_criteria={"search_term": "Ann Lee"})),
            ai_tool_message(tool_call("contact", "create", {"first_name": "Ann", "last_name": "Lee"})),
        ],
        app_settings=settings.model_copy(update={"max_tool_rounds": 1}),
    )

    result = await bot.process_turn([user("Add Ann Lee unless she already exists")], USER_ID)
    metadata = result["metadata"]

    assert store.tables[CONTACTS] == {}
    assert metadata["tool_calls_made"] == 1
    assert any("1 further operation(s) were not run" in e for e in metadata["errors"])
    assert result["reply"].startswith("I completed the following:")
    assert len(model.calls) == 2
