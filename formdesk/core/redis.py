"""
Redis connection shared by the session store and turn events.

Events go to the ``formdesk:session:{id}`` pub/sub channel as
``{"type": ..., "data": ..., "ts": ...}``. With FF_USE_REDIS off nothing
is published.
"""

import json
import logging
import time
from typing import Any, Optional

import redis.asyncio as aioredis

from .config import get_settings
from .flags import get_flags

logger = logging.getLogger(__name__)

_client: Optional[aioredis.Redis] = None


def get_redis() -> aioredis.Redis:
    global _client
    if _client is None:
        _client = aioredis.from_url(
            get_settings().redis_url,
            decode_responses=True,
            socket_connect_timeout=5,
        )
    return _client


def session_channel(session_id: str) -> str:
    return f"formdesk:session:{session_id}"


async def notify_session(session_id: str, event_type: str, data: Any = None) -> None:
    """Best effort: a lost notification never fails the turn."""
    if not get_flags().use_redis:
        return
    message = json.dumps({"type": event_type, "data": data, "ts": time.time()})
    try:
        await get_redis().publish(session_channel(session_id), message)
    except Exception as e:
        logger.warning("Could not publish %s for session %s: %s", event_type, session_id, e)


async def close_redis() -> None:
    global _client
    if _client is None:
        return
    await _client.aclose()
    _client = None
    logger.info("Redis connection closed")
