from langgraph.graph import StateGraph, END
from typing import Any, Dict, List, Literal, Optional

from .conversation import ConversationStateStore
from .state import TurnState, create_initial_state
from .nodes import (
    prepare_turn,
    call_model,
    execute_tools,
    compose_reply,
    finalize,
    build_metadata
)
from ..tools.dispatcher import OperationRouter
from ..tools.smart_router import SmartRouter
from ..tools.timezone import TimezoneManager
from ..utils.config import settings as default_settings
from ..utils.debug_events import emit_routing
from ..utils.logger import logger


def after_model(state: TurnState) -> Literal["execute_tools", "finalize"]:
    if state.get("reply"):
        logger.info("Routing: call_model -> finalize (model unavailable)")
        emit_routing("call_model", "finalize", "model error")
        return "finalize"

    last = state["messages"][-1] if state["messages"] else None
    if getattr(last, "tool_calls", None):
        logger.info("Routing: call_model -> execute_tools")
        emit_routing("call_model", "execute_tools", f"{len(last.tool_calls)} tool call(s)")
        return "execute_tools"

    logger.info("Routing: call_model -> finalize (plain reply)")
    emit_routing("call_model", "finalize", "no tool calls")
    return "finalize"


def after_compose(state: TurnState) -> Literal["execute_tools", "finalize"]:
    if state.get("reply"):
        emit_routing("compose_reply", "finalize", "reply ready")
        return "finalize"

    last = state["messages"][-1] if state["messages"] else None
    if getattr(last, "tool_calls", None):
        logger.info("Routing: compose_reply -> execute_tools (follow-up operations)")
        emit_routing("compose_reply", "execute_tools", f"{len(last.tool_calls)} follow-up tool call(s)")
        return "execute_tools"

    emit_routing("compose_reply", "finalize", "no reply text")
    return "finalize"


def create_assistant_graph():
    workflow = StateGraph(TurnState)

    workflow.add_node("prepare_turn", prepare_turn)
    workflow.add_node("call_model", call_model)
    workflow.add_node("execute_tools", execute_tools)
    workflow.add_node("compose_reply", compose_reply)
    workflow.add_node("finalize", finalize)

    workflow.set_entry_point("prepare_turn")
    workflow.add_edge("prepare_turn", "call_model")

    workflow.add_conditional_edges(
        "call_model",
        after_model,
        {
            "execute_tools": "execute_tools",
            "finalize": "finalize"
        }
    )

    workflow.add_edge("execute_tools", "compose_reply")
    workflow.add_conditional_edges(
        "compose_reply",
        after_compose,
        {
            "execute_tools": "execute_tools",
            "finalize": "finalize"
        }
    )
    workflow.add_edge("finalize", END)

    app = workflow.compile()
    logger.info("Compiled CRM assistant workflow")
    return app


assistant_graph = create_assistant_graph()


def latest_user_message(messages: List[Dict[str, Any]]) -> Optional[str]:
    for message in reversed(messages):
        if message.get("role") == "user":
            return message.get("content") or None
    return None


class CRMAssistant:
    """Single entry point for a conversational turn."""

    def __init__(
        self,
        model,
        router: OperationRouter,
        conversations: ConversationStateStore,
        smart_router: Optional[SmartRouter] = None,
        settings=default_settings,
        graph=None
    ):
        self.model = model
        self.router = router
        self.conversations = conversations
        self.smart_router = smart_router
        self.settings = settings
        self.graph = graph or assistant_graph

    async def process_turn(
        self,
        messages: List[Dict[str, Any]],
        user_id: str,
        timezone: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Handle one request.

        Args:
            messages: Full client transcript, {"role", "content"} dicts, latest last
            user_id: Authenticated user
            timezone: User's IANA timezone

        Returns:
            {"reply": str, "metadata": dict}
        """
        tz = TimezoneManager.resolve(timezone, self.settings.default_timezone)

        latest = latest_user_message(messages)
        if latest and self.smart_router is not None:
            fast_result = await self.smart_router.try_fast_path(latest, user_id, tz)
            if fast_result is not None:
                return self._fast_path_reply(fast_result, messages, user_id)

        state = create_initial_state(messages, user_id, tz)
        result = await self.graph.ainvoke(
            state,
            config={
                "configurable": {
                    "model": self.model,
                    "router": self.router,
                    "conversations": self.conversations,
                    "settings": self.settings,
                }
            }
        )
        return {"reply": result["reply"], "metadata": result["metadata"]}

    def _fast_path_reply(self, result: Dict[str, Any], messages: List[Dict[str, Any]], user_id: str) -> Dict[str, Any]:
        self.conversations.sweep()
        conversation, was_reset = self.conversations.reconcile(user_id, len(messages))
        previous_response_id = conversation.last_response_id
        touched = self.conversations.touch(user_id)

        logger.info(f"⚡ Served {result.get('operation')} for {user_id} without the model")

        metadata = build_metadata(
            [{"operation_type": "calendar", "action": result.get("operation"), "result": result}],
            {"input_tokens": 0, "output_tokens": 0, "total_tokens": 0},
            None,
            {
                "message_count": touched.message_count,
                "previous_response_id": previous_response_id,
                "reset": was_reset,
            },
            [],
            used_fast_path=True,
        )
        return {"reply": result.get("message", "Done."), "metadata": metadata}
