from typing import Dict, Any, List, Callable, Optional, Set
import asyncio
from datetime import datetime, timezone

from .logger import logger


class DebugEventEmitter:
    def __init__(self, max_history: int = 100):
        self.listeners: List[Callable] = []
        self.event_history: List[Dict[str, Any]] = []
        self.max_history = max_history

    def add_listener(self, callback: Callable):
        self.listeners.append(callback)

    def remove_listener(self, callback: Callable):
        if callback in self.listeners:
            self.listeners.remove(callback)

    async def emit(self, event_type: str, data: Dict[str, Any]):
        event = {
            "type": event_type,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "data": data
        }

        self.event_history.append(event)
        if len(self.event_history) > self.max_history:
            self.event_history.pop(0)

        for listener in self.listeners:
            try:
                if asyncio.iscoroutinefunction(listener):
                    await listener(event)
                else:
                    listener(event)
            except Exception as e:
                logger.error(f"Error in debug event listener: {e}")

    def get_history(self) -> List[Dict[str, Any]]:
        return self.event_history.copy()


debug_emitter = DebugEventEmitter()

# Strong references to in-flight emits; the loop only keeps weak ones
_pending_emits: Set[asyncio.Task] = set()


def _schedule(event_type: str, data: Dict[str, Any]):
    # Emitters are fire-and-forget; outside an event loop there is nobody listening.
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        return
    task = loop.create_task(debug_emitter.emit(event_type, data))
    _pending_emits.add(task)
    task.add_done_callback(_pending_emits.discard)


def emit_routing(from_node: str, to_node: str, reason: str = ""):
    _schedule("routing", {
        "from": from_node,
        "to": to_node,
        "reason": reason
    })


def emit_fast_path(action: str, user_id: str, success: bool):
    _schedule("fast_path", {
        "action": action,
        "user_id": user_id,
        "success": success
    })


def emit_tool_call(operation_type: str, action: str, result: Dict[str, Any]):
    _schedule("tool_call", {
        "operation_type": operation_type,
        "action": action,
        "success": result.get("success"),
        "error": result.get("error")
    })


def emit_error(node_name: str, error: Exception, user_id: Optional[str] = None):
    _schedule("error", {
        "node": node_name,
        "user_id": user_id,
        "error_type": type(error).__name__,
        "error_message": str(error)
    })


def emit_message(role: str, content: str):
    _schedule("message", {
        "role": role,
        "content": content[:200]
    })
