"""
LangGraph nodes for one assistant turn.

Each node receives the turn state and the run config; collaborators (chat
model, operation router, conversation store, settings) are taken from
``config["configurable"]`` so the graph itself stays stateless.
"""

from typing import Dict, Any, List, Optional
from datetime import datetime
import json
import re
import uuid

import pytz
from pydantic import ValidationError as SchemaValidationError
from langchain_core.messages import HumanMessage, AIMessage, SystemMessage, ToolMessage, BaseMessage
from langchain_core.runnables import RunnableConfig

from .state import TurnState
from .prompts import SYSTEM_PROMPT, DATE_CONTEXT, FALLBACK_REPLY, MODEL_UNAVAILABLE_REPLY
from ..errors import ExternalServiceError, ValidationError
from ..tools.intents import EXECUTE_OPERATION_TOOL, TOOL_NAME, DuplicateIntent, parse_intent
from ..tools.temporal_guard import TemporalGuard
from ..tools.timezone import TimezoneManager
from ..utils.config import settings as default_settings
from ..utils.debug_events import emit_error, emit_message
from ..utils.logger import logger

WRITE_ACTIONS = ("create", "update", "delete")

ECHO_PATTERN = re.compile(r'<!--\s*duplicate-analysis\s+keep=(\S*)\s+consider_deleting=([^\s>]*)\s*-->')


# ============================================================================
# HELPERS
# ============================================================================

def _deps(config: Optional[RunnableConfig]) -> Dict[str, Any]:
    return (config or {}).get("configurable", {})


def message_text(message: BaseMessage) -> str:
    """Plain text of a model message; Gemini may return a list of content parts."""
    content = message.content
    if isinstance(content, str):
        return content
    parts = []
    for part in content or []:
        if isinstance(part, str):
            parts.append(part)
        elif isinstance(part, dict) and part.get("type", "text") == "text":
            parts.append(part.get("text", ""))
    return "".join(parts)


def history_to_messages(history: List[Dict[str, Any]]) -> List[BaseMessage]:
    messages: List[BaseMessage] = []
    for entry in history:
        role = entry.get("role")
        content = entry.get("content") or ""
        if not content:
            continue
        if role == "user":
            messages.append(HumanMessage(content=content))
        elif role == "assistant":
            messages.append(AIMessage(content=content))
    return messages


def echoed_analysis_ids(history: List[Dict[str, Any]]) -> List[str]:
    """consider_deleting ids echoed into earlier assistant replies."""
    ids: List[str] = []
    for entry in history:
        if entry.get("role") != "assistant":
            continue
        for match in ECHO_PATTERN.finditer(entry.get("content") or ""):
            ids.extend(i for i in match.group(2).split(",") if i)
    return ids


def format_echo(keep: str, consider_deleting: List[str]) -> str:
    return f"<!-- duplicate-analysis keep={keep} consider_deleting={','.join(consider_deleting)} -->"


def add_usage(total: Dict[str, int], message: AIMessage) -> Dict[str, int]:
    usage = dict(total)
    reported = getattr(message, "usage_metadata", None) or {}
    for key in ("input_tokens", "output_tokens", "total_tokens"):
        usage[key] = usage.get(key, 0) + int(reported.get(key, 0) or 0)
    return usage


def summarize_results(tool_results: List[Dict[str, Any]]) -> str:
    lines = []
    for record in tool_results:
        label = f"{record['operation_type']} {record['action']}"
        result = record["result"]
        if result.get("success"):
            detail = result.get("message") or "done"
            lines.append(f"- ✅ {label}: {detail}")
        else:
            lines.append(f"- ❌ {label}: {result.get('error', 'failed')}")
    return FALLBACK_REPLY.format(lines="\n".join(lines))


def build_metadata(
    tool_results: List[Dict[str, Any]],
    usage: Dict[str, int],
    response_id: Optional[str],
    conversation: Dict[str, Any],
    errors: List[str],
    used_fast_path: bool = False
) -> Dict[str, Any]:
    written = sorted({
        r["operation_type"] for r in tool_results
        if r["result"].get("success") and r["action"] in WRITE_ACTIONS
    })
    failures = [r["result"].get("error") for r in tool_results if not r["result"].get("success")]

    return {
        "used_fast_path": used_fast_path,
        "tool_calls_made": len(tool_results),
        "writes": {"performed": bool(written), "entity_types": written},
        "should_refresh_calendar": "calendar" in written,
        "should_refresh_contacts": "contact" in written or "duplicate_management" in written,
        "usage": usage,
        "response_id": response_id,
        "conversation": conversation,
        "errors": [e for e in list(errors) + failures if e],
    }


# ============================================================================
# NODES
# ============================================================================

async def prepare_turn(state: TurnState, config: RunnableConfig) -> Dict[str, Any]:
    deps = _deps(config)
    conversations = deps["conversations"]
    app_settings = deps.get("settings", default_settings)
    user_id = state["user_id"]

    conversations.sweep()
    conversation, was_reset = conversations.reconcile(user_id, len(state["history"]))

    tz = TimezoneManager.resolve(state.get("timezone"), app_settings.default_timezone)
    guard = TemporalGuard(tz)
    week_start, week_end = guard.week_bounds()
    utc_now = datetime.now(pytz.UTC)

    date_context = DATE_CONTEXT.format(
        today=guard.now.strftime("%A, %B %d, %Y"),
        utc_now=utc_now.isoformat(),
        local_now=guard.now.isoformat(),
        timezone=tz,
        week_start=week_start.isoformat(),
        week_end=week_end.isoformat(),
        user_id=user_id,
    )

    messages = [SystemMessage(content=f"{SYSTEM_PROMPT}\n\n{date_context}")]
    messages.extend(history_to_messages(state["history"]))

    logger.info(f"💬 Turn for {user_id}: {len(state['history'])} inbound message(s), tz={tz}")

    return {
        "timezone": tz,
        "messages": messages,
        "analyzed_ids": echoed_analysis_ids(state["history"]),
        "conversation": {
            "message_count": conversation.message_count,
            "previous_response_id": conversation.last_response_id,
            "reset": was_reset,
        },
    }


async def call_model(state: TurnState, config: RunnableConfig) -> Dict[str, Any]:
    model = _deps(config)["model"]

    try:
        ai_message = await model.bind_tools([EXECUTE_OPERATION_TOOL]).ainvoke(state["messages"])
    except Exception as e:
        error = ExternalServiceError(f"Language model unavailable: {e}")
        logger.error(f"❌ Model call failed: {e}", exc_info=True)
        emit_error("call_model", error, state["user_id"])
        return {"reply": MODEL_UNAVAILABLE_REPLY, "errors": [error.message]}

    tool_calls = len(ai_message.tool_calls or [])
    logger.info(f"🤖 Model returned {tool_calls} tool call(s)")

    return {
        "messages": [ai_message],
        "usage": add_usage(state["usage"], ai_message),
        "response_id": ai_message.id or state.get("response_id"),
    }


async def execute_tools(state: TurnState, config: RunnableConfig) -> Dict[str, Any]:
    router = _deps(config)["router"]
    user_id = state["user_id"]
    ai_message = state["messages"][-1]

    analyzed = [i.lower() for i in state.get("analyzed_ids") or []]
    echoes: List[str] = []
    tool_messages: List[ToolMessage] = []
    records: List[Dict[str, Any]] = []

    # Sequential on purpose: later calls may use ids produced by earlier ones
    for call in ai_message.tool_calls:
        args = call.get("args") or {}
        operation_type = args.get("operation_type", "unknown")
        action = args.get("action", "unknown")
        result: Optional[Dict[str, Any]] = None

        if call.get("name") != TOOL_NAME:
            result = ValidationError(f"Unknown tool: {call.get('name')}").to_result()
        else:
            try:
                intent = parse_intent(args)
            except SchemaValidationError as e:
                logger.warning(f"Invalid tool arguments: {e}")
                result = ValidationError(
                    f"The operation request was malformed: {e.error_count()} invalid field(s). "
                    f"operation_type must be one of contact, calendar, alert, settings, duplicate_management, general."
                ).to_result()
            else:
                if isinstance(intent, DuplicateIntent) and intent.action == "delete":
                    candidate = str(intent.criteria.get("contact_id") or "").lower()
                    if candidate not in analyzed:
                        logger.warning(f"🛑 Blocked duplicate delete of {candidate or '<none>'}: not in a prior analysis")
                        result = ValidationError(
                            "Duplicate deletion requires a prior duplicate analysis. Run duplicate_management "
                            "analyze first and only delete ids it listed under consider_deleting."
                        ).to_result()

                if result is None:
                    result = await router.execute(intent, user_id, state["timezone"])

                recommendation = result.get("recommendation") if result.get("success") else None
                if isinstance(intent, DuplicateIntent) and intent.action == "analyze" and recommendation:
                    analyzed.extend(i.lower() for i in recommendation["consider_deleting"])
                    echoes.append(format_echo(recommendation["keep"], recommendation["consider_deleting"]))

        tool_messages.append(ToolMessage(
            content=json.dumps(result, default=str),
            tool_call_id=call.get("id") or str(uuid.uuid4()),
            name=TOOL_NAME,
        ))
        records.append({"operation_type": operation_type, "action": action, "result": result})

    return {
        "messages": tool_messages,
        "tool_results": records,
        "analyzed_ids": analyzed,
        "duplicate_echo": "\n".join(filter(None, [state.get("duplicate_echo"), *echoes])) or None,
        "tool_rounds": state.get("tool_rounds", 0) + 1,
    }


async def compose_reply(state: TurnState, config: RunnableConfig) -> Dict[str, Any]:
    deps = _deps(config)
    model = deps["model"]
    max_rounds = deps.get("settings", default_settings).max_tool_rounds

    try:
        ai_message = await model.bind_tools([EXECUTE_OPERATION_TOOL]).ainvoke(state["messages"])
    except Exception as e:
        logger.error(f"❌ Follow-up model call failed, summarizing results: {e}", exc_info=True)
        error = ExternalServiceError(f"Language model unavailable while composing reply: {e}")
        emit_error("compose_reply", error, state["user_id"])
        return {
            "reply": summarize_results(state["tool_results"]),
            "errors": [error.message],
        }

    update = {
        "messages": [ai_message],
        "usage": add_usage(state["usage"], ai_message),
        "response_id": ai_message.id or state.get("response_id"),
    }

    follow_up = len(ai_message.tool_calls or [])
    if follow_up and state.get("tool_rounds", 0) < max_rounds:
        # No reply yet: the graph loops back to execute_tools
        logger.info(f"🔁 Model requested {follow_up} more tool call(s)")
        return update

    if follow_up:
        logger.warning(f"🛑 Tool round limit {max_rounds} reached, {follow_up} call(s) not run")
        update["errors"] = [
            f"Stopped after {max_rounds} rounds of operations; {follow_up} further operation(s) were not run."
        ]

    text = message_text(ai_message).strip()
    update["reply"] = text or summarize_results(state["tool_results"])
    return update


async def finalize(state: TurnState, config: RunnableConfig) -> Dict[str, Any]:
    conversations = _deps(config)["conversations"]
    user_id = state["user_id"]

    reply = state.get("reply")
    if not reply:
        last = state["messages"][-1] if state["messages"] else None
        reply = message_text(last).strip() if isinstance(last, AIMessage) else ""
    if not reply:
        reply = "I'm not sure how to help with that. Could you rephrase?"

    if state.get("duplicate_echo"):
        reply = f"{reply}\n\n{state['duplicate_echo']}"

    touched = conversations.touch(user_id, state.get("response_id"))
    conversation = dict(state.get("conversation") or {})
    conversation["message_count"] = touched.message_count

    emit_message("assistant", reply)

    return {
        "reply": reply,
        "metadata": build_metadata(
            state["tool_results"],
            state["usage"],
            state.get("response_id"),
            conversation,
            state["errors"],
        ),
    }
