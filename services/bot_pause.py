"""
Bot pause - operator takeover of a conversation.

The key-value store holds a fast flag; the conversation row is the
source of truth.
"""

from database.crud import DBManager
from utils.cache import kv_store
from utils.logger import get_logger
from utils.timeutils import utcnow

log = get_logger("bot_pause")

BOT_PAUSE_TTL = 86400  # 24 hours


def get_pause_key(conversation_id) -> str:
    return f"bot_paused:{conversation_id}"


async def pause_bot(db: DBManager, conversation_id: int, paused_by: str = "operator") -> None:
    try:
        await kv_store.set(get_pause_key(conversation_id), "1", ex=BOT_PAUSE_TTL)
    except Exception as e:
        log.error("Could not cache bot pause", conversation_id=conversation_id, error=str(e))

    await db.update_conversation(
        conversation_id,
        bot_paused=True,
        paused_at=utcnow(),
        paused_by=paused_by,
    )
    log.info("Bot paused", conversation_id=conversation_id, paused_by=paused_by)


async def resume_bot(db: DBManager, conversation_id: int) -> None:
    try:
        await kv_store.delete(get_pause_key(conversation_id))
    except Exception as e:
        log.error("Could not clear cached bot pause", conversation_id=conversation_id, error=str(e))

    await db.update_conversation(
        conversation_id,
        bot_paused=False,
        paused_at=None,
        paused_by=None,
    )
    log.info("Bot resumed", conversation_id=conversation_id)


async def is_bot_paused(db: DBManager, conversation_id: int) -> bool:
    """Cache first, database fallback. Errors count as not paused."""
    try:
        if await kv_store.get(get_pause_key(conversation_id)):
            return True

        conversation = await db.get_conversation(conversation_id)
        if conversation and conversation.bot_paused:
            await kv_store.set(get_pause_key(conversation_id), "1", ex=BOT_PAUSE_TTL)
            return True

        return False
    except Exception as e:
        log.error("Bot pause check failed", conversation_id=conversation_id, error=str(e))
        return False


async def suppress_bot_for_broadcast(db: DBManager, conversation_id: int) -> None:
    """Keep the bot quiet on replies to a broadcast until an operator releases it"""
    await db.update_conversation(conversation_id, broadcast_suppressed=True)
    log.info("Bot suppressed for broadcast", conversation_id=conversation_id)


async def unsuppress_bot_for_broadcast(db: DBManager, conversation_id: int) -> None:
    await db.update_conversation(conversation_id, broadcast_suppressed=False)
    log.info("Bot unsuppressed for broadcast", conversation_id=conversation_id)


async def is_bot_suppressed(db: DBManager, conversation_id: int) -> bool:
    conversation = await db.get_conversation(conversation_id)
    return bool(conversation and conversation.broadcast_suppressed)
