"""
Sessions API.

GET    /v1/sessions/{session_id}  Current session state
DELETE /v1/sessions/{session_id}  Reset a session
"""

from fastapi import APIRouter, HTTPException

from ..orchestrator.orchestrator import get_state_machine

sessions_router = APIRouter(tags=["sessions"])


@sessions_router.get("/sessions/{session_id}")
async def get_session(session_id: str):
    record = await get_state_machine().store.get(session_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Session not found or expired")
    return record


@sessions_router.delete("/sessions/{session_id}", status_code=204)
async def reset_session(session_id: str):
    await get_state_machine().reset(session_id)
