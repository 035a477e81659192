"""
CRM Assistant - Main FastAPI Application
Exposes the conversational turn endpoint, conversation bookkeeping and the debug event stream.
"""

from fastapi import FastAPI, WebSocket, WebSocketDisconnect, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from langchain_google_genai import ChatGoogleGenerativeAI
from typing import Any, Dict, List, Optional
import json

from .agent.conversation import ConversationStateStore
from .agent.graph import CRMAssistant
from .storage.cache import SearchCache
from .storage.memory import InMemoryEntityStore
from .tools.calendar import CalendarTool
from .tools.dispatcher import OperationRouter
from .tools.duplicates import DuplicateResolutionEngine
from .tools.smart_router import SmartRouter
from .utils.config import settings
from .utils.logger import logger
from .utils.debug_events import debug_emitter, emit_message

VALID_ROLES = ("user", "assistant", "system", "tool")

# Initialize FastAPI app
app = FastAPI(
    title="CRM Assistant",
    description="Conversational assistant for contacts, calendar events, alerts and settings",
    version="1.0.0"
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        settings.frontend_url,
        "http://localhost:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def create_chat_model():
    return ChatGoogleGenerativeAI(
        model=settings.gemini_model,
        google_api_key=settings.gemini_api_key,
        temperature=settings.model_temperature
    )


def build_assistant(model=None, store=None) -> CRMAssistant:
    """Wire the assistant with the bundled in-memory store unless collaborators are given."""
    store = store or InMemoryEntityStore()
    cache = SearchCache(ttl_seconds=settings.search_cache_ttl_seconds)
    calendar = CalendarTool(store, timezone=settings.default_timezone)

    router = OperationRouter(
        store,
        calendar,
        DuplicateResolutionEngine(store),
        cache=cache,
        timezone=settings.default_timezone,
        settings=settings
    )

    return CRMAssistant(
        model=model or create_chat_model(),
        router=router,
        conversations=ConversationStateStore(idle_seconds=settings.conversation_idle_seconds),
        smart_router=SmartRouter(calendar, grace_seconds=settings.past_event_grace_seconds),
        settings=settings
    )


def get_assistant() -> CRMAssistant:
    assistant = getattr(app.state, "assistant", None)
    if assistant is None:
        assistant = build_assistant()
        app.state.assistant = assistant
    return assistant


def validate_messages(messages: Any) -> List[Dict[str, Any]]:
    if not isinstance(messages, list) or not messages:
        raise HTTPException(status_code=400, detail="messages must be a non-empty list")

    for index, message in enumerate(messages):
        if not isinstance(message, dict):
            raise HTTPException(status_code=400, detail=f"messages[{index}] must be an object")
        if message.get("role") not in VALID_ROLES:
            raise HTTPException(status_code=400, detail=f"messages[{index}].role must be one of {', '.join(VALID_ROLES)}")
        content = message.get("content")
        if content is not None and not isinstance(content, str):
            raise HTTPException(status_code=400, detail=f"messages[{index}].content must be a string")

    return messages


@app.get("/")
async def root():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "service": "CRM Assistant",
        "version": "1.0.0"
    }


@app.get("/health")
async def health_check():
    """Detailed health check."""
    return {
        "status": "healthy",
        "components": {
            "api": "operational",
            "model": "configured" if settings.gemini_api_key else "missing_api_key",
            "environment": settings.environment
        }
    }


# Assistant Endpoints

@app.post("/api/assistant")
async def assistant_turn(request: Request):
    """
    Process one conversational turn.

    Body: {"messages": [{"role", "content"}], "user_id"?: str, "timezone"?: str}
    The user id may also come from the X-User-Id header set by the auth layer.
    """
    try:
        body = await request.json()
    except json.JSONDecodeError:
        raise HTTPException(status_code=400, detail="Request body must be valid JSON")

    if not isinstance(body, dict):
        raise HTTPException(status_code=400, detail="Request body must be a JSON object")

    user_id: Optional[str] = request.headers.get("x-user-id") or body.get("user_id")
    if not user_id:
        raise HTTPException(status_code=401, detail="Authentication required")

    messages = validate_messages(body.get("messages"))
    timezone = body.get("timezone") or body.get("userTimezone")

    latest = messages[-1].get("content") or ""
    emit_message(messages[-1]["role"], latest)

    try:
        result = await get_assistant().process_turn(messages, user_id, timezone)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"❌ Assistant turn failed for {user_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="The assistant could not process this request. Please try again.")

    return {
        "role": "assistant",
        "content": result["reply"],
        "_metadata": result["metadata"]
    }


@app.post("/api/conversations/{user_id}/reset")
async def reset_conversation(user_id: str):
    """Forget the tracked conversation for a user."""
    get_assistant().conversations.reset(user_id)
    return {"success": True, "user_id": user_id}


@app.get("/api/conversations/{user_id}")
async def conversation_status(user_id: str):
    state = get_assistant().conversations.get(user_id)
    if state is None:
        return {"user_id": user_id, "active": False}
    return {"active": True, **state.to_dict()}


# Debug Endpoints

@app.websocket("/debug/ws")
async def debug_websocket(websocket: WebSocket):
    """WebSocket endpoint for real-time debug events."""
    await websocket.accept()
    logger.info("Debug WebSocket client connected")

    # Create listener for debug events
    async def send_event(event):
        try:
            await websocket.send_json(event)
        except RuntimeError as e:
            logger.debug(f"Debug WebSocket send failed (connection closed): {e}")

    # Register listener
    debug_emitter.add_listener(send_event)

    try:
        # Send event history
        for event in debug_emitter.get_history():
            await websocket.send_json(event)

        # Keep connection alive
        while True:
            await websocket.receive_text()
            await websocket.send_json({
                "type": "echo",
                "data": {"message": "received"}
            })
    except WebSocketDisconnect:
        logger.info("Debug WebSocket client disconnected")
    finally:
        debug_emitter.remove_listener(send_event)


# Application Startup

@app.on_event("startup")
async def startup_event():
    """Initialize services on startup."""
    logger.info("Starting CRM Assistant")
    logger.info(f"Frontend URL: {settings.frontend_url}")
    logger.info(f"Environment: {settings.environment}")
    if not settings.gemini_api_key:
        logger.warning("⚠️ GEMINI_API_KEY is not set; model-driven requests will fail")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "crm_assistant.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "development",
        log_level="info"
    )
