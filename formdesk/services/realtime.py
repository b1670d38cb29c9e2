"""
Turn lifecycle events for live clients, published through core.redis.
"""

from ..core.redis import notify_session


async def turn_started(session_id: str, data: dict = None):
    await notify_session(session_id, "turn.started", data)


async def handler_started(session_id: str, handler_name: str):
    await notify_session(session_id, "handler.started", {"handler": handler_name})


async def turn_completed(session_id: str, data: dict = None):
    await notify_session(session_id, "turn.completed", data)


async def turn_error(session_id: str, data: dict = None):
    await notify_session(session_id, "turn.error", data)


async def form_submitted(session_id: str, submission_id: str, form_id: str):
    await notify_session(session_id, "form.submitted", {"submission_id": submission_id, "form_id": form_id})
