"""LangGraph CRM assistant."""

from .conversation import ConversationState, ConversationStateStore, InMemoryKeyValueStore, KeyValueStore
from .graph import assistant_graph, create_assistant_graph, CRMAssistant
from .state import TurnState, create_initial_state

__all__ = [
    "assistant_graph",
    "create_assistant_graph",
    "CRMAssistant",
    "ConversationState",
    "ConversationStateStore",
    "InMemoryKeyValueStore",
    "KeyValueStore",
    "TurnState",
    "create_initial_state"
]
