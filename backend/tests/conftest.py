import uuid
from typing import Any, Dict, List, Optional

import pytest
from langchain_core.messages import AIMessage

from crm_assistant.agent.conversation import ConversationStateStore
from crm_assistant.storage.cache import SearchCache
from crm_assistant.storage.memory import InMemoryEntityStore
from crm_assistant.tools.calendar import CalendarTool
from crm_assistant.tools.dispatcher import OperationRouter
from crm_assistant.tools.duplicates import DuplicateResolutionEngine
from crm_assistant.tools.intents import TOOL_NAME


class FakeToolModel:
    """Scripted stand-in for a LangChain chat model with tool binding."""

    def __init__(self, responses: Optional[List[Any]] = None):
        self.responses = list(responses or [])
        self.calls: List[List[Any]] = []
        self.bound_tools = None

    def bind_tools(self, tools, **kwargs):
        self.bound_tools = tools
        return self

    async def ainvoke(self, messages, config=None, **kwargs):
        self.calls.append(list(messages))
        if not self.responses:
            raise RuntimeError("FakeToolModel has no scripted response left")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class RecordingStore(InMemoryEntityStore):
    """In-memory store that remembers every delete call."""

    def __init__(self):
        super().__init__()
        self.deleted: List[tuple] = []

    async def delete(self, table, user_id, record_id):
        self.deleted.append((table, record_id))
        return await super().delete(table, user_id, record_id)


def tool_call(
    operation_type: str,
    action: str,
    entity_data: Optional[Dict[str, Any]] = None,
    search_criteria: Optional[Dict[str, Any]] = None,
    user_request: str = "",
    call_id: Optional[str] = None
) -> Dict[str, Any]:
    return {
        "name": TOOL_NAME,
        "args": {
            "operation_type": operation_type,
            "action": action,
            "entity_data": entity_data,
            "search_criteria": search_criteria,
            "user_request": user_request,
        },
        "id": call_id or f"call_{uuid.uuid4().hex[:8]}",
        "type": "tool_call",
    }


def ai_tool_message(*calls: Dict[str, Any], response_id: str = "resp-tools", tokens: int = 10) -> AIMessage:
    return AIMessage(
        content="",
        tool_calls=list(calls),
        id=response_id,
        usage_metadata={"input_tokens": tokens, "output_tokens": tokens, "total_tokens": tokens * 2},
    )


def ai_text_message(text: str, response_id: str = "resp-final", tokens: int = 5) -> AIMessage:
    return AIMessage(
        content=text,
        id=response_id,
        usage_metadata={"input_tokens": tokens, "output_tokens": tokens, "total_tokens": tokens * 2},
    )


USER_ID = "user-1"
OTHER_USER_ID = "user-2"


@pytest.fixture
def store():
    return RecordingStore()


@pytest.fixture
def cache():
    return SearchCache(ttl_seconds=30)


@pytest.fixture
def calendar(store):
    return CalendarTool(store)


@pytest.fixture
def router(store, calendar, cache):
    return OperationRouter(store, calendar, DuplicateResolutionEngine(store), cache=cache)


@pytest.fixture
def conversations():
    return ConversationStateStore(idle_seconds=3600)
