"""
Chat API. Request/response and WebSocket endpoints.

POST /v1/chat      Standard request/response
WS   /v1/chat/ws   Bidirectional channel

WebSocket events (server → client):
  {"type": "connection", "content": "...", "session_id": "..."}
  {"type": "typing", "is_typing": true}
  {"type": "message", "content": "...", "session_id": "...", "timestamp": "...", "agent": "..."}
  {"type": "error", "content": "...", "session_id": "...", "timestamp": "..."}
"""

import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import BaseModel, Field, ValidationError

from ..core.config import get_settings
from ..orchestrator.orchestrator import get_state_machine

logger = logging.getLogger(__name__)

chat_router = APIRouter(tags=["chat"])

ERROR_MESSAGE = "Sorry, I encountered an error processing your message. Please try again."


class Attachment(BaseModel):
    filename: str
    content_base64: str = ""


class ChatRequest(BaseModel):
    content: str
    session_id: Optional[str] = None
    attachments: list[Attachment] = Field(default_factory=list)


class ChatResponse(BaseModel):
    type: str = "message"
    content: str
    session_id: str
    timestamp: str
    agent: str = ""
    form_status: str = ""
    metadata: Optional[dict] = None


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


async def _run_turn(session_id: str, request: ChatRequest) -> ChatResponse:
    result = await get_state_machine().process_turn(
        session_id,
        request.content,
        attachments=[a.model_dump() for a in request.attachments] or None,
    )
    return ChatResponse(
        content=result.response,
        session_id=session_id,
        timestamp=_now(),
        agent=result.handler,
        form_status=result.session.form_status.value if result.session else "",
        metadata=result.metadata or None,
    )


@chat_router.post("/chat", response_model=ChatResponse)
async def chat(request: ChatRequest):
    """Send a message. It is routed to the right handler and answered."""
    session_id = request.session_id or str(uuid.uuid4())
    return await _run_turn(session_id, request)


def _error_event(session_id: str, error: Exception) -> dict:
    event = {"type": "error", "content": ERROR_MESSAGE, "session_id": session_id, "timestamp": _now()}
    if get_settings().env == "development":
        event["error"] = str(error)
    return event


@chat_router.websocket("/chat/ws")
async def chat_ws(websocket: WebSocket, session_id: Optional[str] = None):
    """
    One connection per session. Each inbound {content, attachments?} frame
    gets a typing event, then a message or error event.
    """
    session_id = session_id or str(uuid.uuid4())
    await websocket.accept()
    logger.info("Client connected: %s", session_id)
    await websocket.send_json({
        "type": "connection",
        "content": "Connected to FormDesk",
        "session_id": session_id,
    })

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                request = ChatRequest.model_validate(json.loads(raw))
            except (json.JSONDecodeError, ValidationError) as e:
                logger.warning("Bad WebSocket frame (session=%s): %s", session_id, e)
                await websocket.send_json(_error_event(session_id, e))
                continue

            await websocket.send_json({"type": "typing", "is_typing": True})
            try:
                response = await _run_turn(session_id, request)
            except Exception as e:
                logger.exception("WebSocket turn failed (session=%s): %s", session_id, e)
                await websocket.send_json(_error_event(session_id, e))
                continue
            await websocket.send_json(response.model_dump())
    except WebSocketDisconnect:
        logger.info("Client disconnected: %s", session_id)
