"""
Message dedup flags and per-conversation locks on the key-value store.

Store failures fail open: the message is processed rather than dropped.
"""

import asyncio
import time
from typing import Optional

from utils.cache import kv_store
from utils.logger import get_logger

log = get_logger("locks")

PROCESSING_TTL = 30  # seconds
CONVERSATION_LOCK_TTL = 30  # seconds
LOCK_RETRY_INTERVAL = 0.2  # seconds


def _conversation_key(phone: str, tenant_id: Optional[str] = None) -> str:
    return f"conv_lock:{tenant_id}:{phone}" if tenant_id else f"conv_lock:{phone}"


async def is_processing(message_id: str) -> bool:
    """
    Mark a WhatsApp message as in flight.

    Returns True when another delivery of the same message already holds
    the marker (i.e. this one is a duplicate).
    """
    try:
        acquired = await kv_store.set(f"processing:{message_id}", "1", ex=PROCESSING_TTL, nx=True)
        return not acquired
    except Exception as e:
        log.error("Processing flag check failed", message_id=message_id, error=str(e))
        return False


async def clear_processing(message_id: str) -> None:
    try:
        await kv_store.delete(f"processing:{message_id}")
    except Exception as e:
        log.error("Processing flag clear failed", message_id=message_id, error=str(e))


async def acquire_conversation_lock(phone: str, timeout_ms: int = 5000, tenant_id: Optional[str] = None) -> bool:
    """Wait up to timeout_ms for the conversation lock. Returns True once held."""
    key = _conversation_key(phone, tenant_id)
    deadline = time.monotonic() + timeout_ms / 1000

    while True:
        try:
            if await kv_store.set(key, str(int(time.time() * 1000)), ex=CONVERSATION_LOCK_TTL, nx=True):
                return True
        except Exception as e:
            log.error("Conversation lock error", phone=phone, error=str(e))
            return True

        if time.monotonic() >= deadline:
            break
        await asyncio.sleep(LOCK_RETRY_INTERVAL)

    log.warning("Timeout acquiring conversation lock", phone=phone, tenant_id=tenant_id)
    return False


async def release_conversation_lock(phone: str, tenant_id: Optional[str] = None) -> None:
    try:
        await kv_store.delete(_conversation_key(phone, tenant_id))
    except Exception as e:
        log.error("Conversation lock release failed", phone=phone, error=str(e))
