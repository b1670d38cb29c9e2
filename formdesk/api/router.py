"""
Main API router. Mounts all sub-routers.
"""

from fastapi import APIRouter
from pydantic import BaseModel

from ..orchestrator.registry import get_registry
from .chat import chat_router
from .forms import forms_router
from .sessions import sessions_router
from .submissions import submissions_router

router = APIRouter()


# ── Health ───────────────────────────────────────────────────────────

@router.get("/health")
async def health():
    return {"status": "ok", "service": "formdesk"}


# ── V1 routes ────────────────────────────────────────────────────────

router.include_router(chat_router, prefix="/v1")
router.include_router(forms_router, prefix="/v1")
router.include_router(sessions_router, prefix="/v1")
router.include_router(submissions_router, prefix="/v1")


# ── Handlers ─────────────────────────────────────────────────────────

class HandlerInfo(BaseModel):
    name: str
    display_name: str
    description: str


@router.get("/v1/handlers", response_model=list[HandlerInfo], tags=["handlers"])
async def list_handlers():
    """The conversation handlers a turn can be routed to."""
    return [HandlerInfo(**h.describe()) for h in get_registry().list_handlers()]
