# router/conversations.py

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from database.crud import DBManager
from router.auth import get_db_manager, get_tenant_user
from services.bot_pause import pause_bot, resume_bot, unsuppress_bot_for_broadcast
from services.tenant_service import get_tenant_credentials
from services.whatsapp_service import send_text_with_id
from utils.logger import get_logger
from utils.timeutils import isoformat

log = get_logger("router.conversations")

router = APIRouter(prefix="/api/conversations", tags=["conversations"])


class ReplyRequest(BaseModel):
    message: str


async def get_owned_conversation(conversation_id: int, user, db: DBManager):
    conversation = await db.get_conversation(conversation_id)
    if not conversation:
        raise HTTPException(status_code=404, detail="Conversation not found")
    if conversation.tenant_id != user.tenant_id:
        raise HTTPException(status_code=403, detail="Forbidden")
    return conversation


@router.post("/{conversation_id}/resume")
async def resume_conversation(conversation_id: int, user=Depends(get_tenant_user), db: DBManager = Depends(get_db_manager)):
    """Hand the conversation back to the bot"""
    await get_owned_conversation(conversation_id, user, db)
    await resume_bot(db, conversation_id)
    return {"status": "resumed"}


@router.post("/{conversation_id}/unsuppress")
async def unsuppress_conversation(conversation_id: int, user=Depends(get_tenant_user), db: DBManager = Depends(get_db_manager)):
    await get_owned_conversation(conversation_id, user, db)
    await unsuppress_bot_for_broadcast(db, conversation_id)
    return {"status": "unsuppressed"}


@router.post("/{conversation_id}/reply")
async def reply_to_conversation(
    conversation_id: int,
    body: ReplyRequest,
    user=Depends(get_tenant_user),
    db: DBManager = Depends(get_db_manager),
):
    """Operator reply; the bot stays paused afterwards"""
    text = (body.message or "").strip()
    if not text:
        raise HTTPException(status_code=400, detail="Message is required")

    conversation = await get_owned_conversation(conversation_id, user, db)
    lead = await db.get_lead_by_id(conversation.lead_id)
    if not lead:
        raise HTTPException(status_code=404, detail="Lead not found")

    credentials = await get_tenant_credentials(db, user.tenant_id)
    if not credentials:
        raise HTTPException(status_code=500, detail="WhatsApp account not configured")

    wa_message_id = await send_text_with_id(lead.phone, text, credentials)
    if wa_message_id is None:
        raise HTTPException(status_code=500, detail="Failed to send message")

    await db.save_message(
        conversation_id,
        "assistant",
        text,
        lead_id=lead.id,
        wa_message_id=wa_message_id,
        sent_by=user.email,
    )
    await pause_bot(db, conversation_id, paused_by=user.email)
    log.info("Operator reply sent", conversation_id=conversation_id, user_id=user.id)

    return {"status": "sent"}


@router.get("/{conversation_id}/messages")
async def list_messages(conversation_id: int, user=Depends(get_tenant_user), db: DBManager = Depends(get_db_manager)):
    conversation = await get_owned_conversation(conversation_id, user, db)
    messages = await db.get_recent_messages(conversation.id, limit=200)
    return {
        "conversation_id": conversation.id,
        "bot_paused": bool(conversation.bot_paused),
        "broadcast_suppressed": bool(conversation.broadcast_suppressed),
        "messages": [
            {
                "id": m.id,
                "role": m.role,
                "content": m.content,
                "sent_by": m.sent_by,
                "created_at": isoformat(m.created_at),
            }
            for m in messages
        ],
    }
