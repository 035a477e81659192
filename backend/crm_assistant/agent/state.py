from typing import TypedDict, Optional, List, Dict, Any, Annotated
import operator

from langchain_core.messages import BaseMessage


class TurnState(TypedDict):
    # Client-supplied transcript, plain {"role", "content"} dicts
    history: List[Dict[str, Any]]
    user_id: str
    timezone: str
    # LangChain messages exchanged with the model this turn
    messages: Annotated[List[BaseMessage], operator.add]
    tool_results: Annotated[List[Dict[str, Any]], operator.add]
    errors: Annotated[List[str], operator.add]
    analyzed_ids: List[str]
    duplicate_echo: Optional[str]
    # Completed execute_tools passes this turn
    tool_rounds: int
    usage: Dict[str, int]
    response_id: Optional[str]
    reply: Optional[str]
    conversation: Dict[str, Any]
    metadata: Dict[str, Any]


def create_initial_state(history: List[Dict[str, Any]], user_id: str, timezone: str = "UTC") -> TurnState:
    return TurnState(
        history=history,
        user_id=user_id,
        timezone=timezone,
        messages=[],
        tool_results=[],
        errors=[],
        analyzed_ids=[],
        duplicate_echo=None,
        tool_rounds=0,
        usage={"input_tokens": 0, "output_tokens": 0, "total_tokens": 0},
        response_id=None,
        reply=None,
        conversation={},
        metadata={},
    )
