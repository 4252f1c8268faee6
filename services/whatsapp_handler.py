"""
WhatsApp Handler - Processes incoming WhatsApp Cloud API webhooks
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from config.followups import FollowUpConfig
from database.crud import DBManager
from database.db import AsyncSessionLocal
from database.models import Conversation, Lead
from graph_builder import process_message
from services.bot_pause import is_bot_paused, is_bot_suppressed
from services.broadcast_classifier import apply_classification_to_lead, classify_conversation
from services.follow_up_manager import (
    cancel_follow_ups,
    mark_opted_out,
    schedule_demo_reminders,
    schedule_reengagement,
    schedule_said_later,
)
from services.handoff_service import (
    HandoffContext,
    REASON_CONFIG,
    detect_handoff_trigger,
    detect_repeated_failures,
    execute_handoff,
    handoff_on_agent_error,
    handoff_on_service_error,
)
from services.tenant_service import TenantContext, get_tenant_from_phone_number_id, is_subscription_active
from services.whatsapp_parser import ParsedMessage, parse_status_updates, parse_webhook_message
from services.whatsapp_service import mark_as_read, send_schedule_list, send_text, send_text_with_id
from utils.autoresponder import is_autoresponder
from utils.errors import LLMError
from utils.locks import acquire_conversation_lock, clear_processing, is_processing, release_conversation_lock
from utils.logger import get_logger
from utils.metrics import metrics, timer
from utils.opt_out import should_stop_follow_ups
from utils.rate_limiter import rate_limiter
from utils.timeutils import utcnow

log = get_logger("whatsapp_handler")

RATE_LIMIT_MESSAGE = "Dame un momento para procesar tus mensajes anteriores."
FALLBACK_REPLY = "Hola, ¿en qué te puedo ayudar?"
SCHEDULE_LIST_BODY = "Elige el horario que te funcione:"
SCHEDULE_LIST_SAVED = "[Lista de horarios enviada]"
SLOT_PREFIX = "slot_"
SLOT_TIMES = ("10:00", "12:00", "16:00")
SLOT_DAYS = 3
EARLY_CONVERSATION_MESSAGES = 4
HISTORY_LIMIT = 20
DAY_NAMES = ['Lun', 'Mar', 'Mié', 'Jue', 'Vie', 'Sáb', 'Dom']


@dataclass
class ConversationContext:
    lead: Lead
    conversation: Conversation
    recent_messages: List[Dict] = field(default_factory=list)


def build_demo_slots(now: Optional[datetime] = None, days: int = SLOT_DAYS) -> List[dict]:
    """Weekday demo slots for the next few business days"""
    now = now or utcnow()
    slots = []
    day = now.date()
    while len(slots) < days * len(SLOT_TIMES):
        day += timedelta(days=1)
        if day.weekday() >= 5:
            continue
        for time_str in SLOT_TIMES:
            slots.append({
                'id': f"{SLOT_PREFIX}{day.isoformat()}_{time_str}",
                'title': f"{DAY_NAMES[day.weekday()]} {day.day:02d}/{day.month:02d} {time_str}",
            })
    return slots


def parse_slot_id(slot_id: str) -> Optional[datetime]:
    if not slot_id or not slot_id.startswith(SLOT_PREFIX):
        return None
    try:
        return datetime.strptime(slot_id[len(SLOT_PREFIX):], '%Y-%m-%d_%H:%M')
    except ValueError:
        return None


class WhatsAppHandler:

    @timer('whatsapp')
    async def handle_webhook(self, payload: Dict, db: Optional[DBManager] = None) -> Dict:
        """
        Process one WhatsApp Cloud API webhook delivery

        Returns:
            {'status': ...} describing what happened to the message
        """
        if db is None:
            async with AsyncSessionLocal() as session:
                result = await self._handle(payload, DBManager(session))
        else:
            result = await self._handle(payload, db)

        metrics.record_message(result['status'])
        return result

    async def _handle(self, payload: Dict, db: DBManager) -> Dict:
        message = parse_webhook_message(payload)
        if message is None:
            await self.process_status_updates(payload, db)
            return {'status': 'ok'}

        if await is_processing(message.message_id):
            log.info("Duplicate delivery ignored", message_id=message.message_id)
            return {'status': 'duplicate'}

        lock_held = False
        tenant: Optional[TenantContext] = None
        try:
            tenant = await get_tenant_from_phone_number_id(db, message.phone_number_id)
            if not tenant:
                return {'status': 'unknown_number'}

            if not is_subscription_active(tenant):
                log.warning(
                    "Subscription inactive, message not answered",
                    tenant_id=tenant.tenant_id,
                    subscription_status=tenant.subscription_status,
                )
                return {'status': 'subscription_inactive'}

            credentials = tenant.credentials

            limit = rate_limiter.check_message_limits(message.phone)
            if not limit.allowed:
                if limit.reason == 'minute_limit':
                    await send_text(message.phone, RATE_LIMIT_MESSAGE, credentials)
                return {'status': 'rate_limited'}

            lock_held = await acquire_conversation_lock(message.phone, tenant_id=tenant.tenant_id)
            if not lock_held:
                await mark_as_read(message.message_id, credentials)
                context = await self.get_conversation_context(db, message, tenant)
                await self._save_user_message(db, context, message)
                return {'status': 'queued_no_response'}

            await mark_as_read(message.message_id, credentials)
            context = await self.get_conversation_context(db, message, tenant)

            return await self._respond(db, message, tenant, context)

        finally:
            await clear_processing(message.message_id)
            if lock_held:
                await release_conversation_lock(message.phone, tenant_id=tenant.tenant_id if tenant else None)

    async def get_conversation_context(self, db: DBManager, message: ParsedMessage, tenant: TenantContext) -> ConversationContext:
        existing = await db.get_lead_by_phone(message.phone, tenant.tenant_id)
        lead = await db.get_or_create_lead(message.phone, message.name, tenant.tenant_id)
        if existing is None:
            metrics.record_lead('ctwa' if message.from_ad else 'whatsapp')
            log.info("New lead", lead_id=lead.id, tenant_id=tenant.tenant_id)

        conversation = await db.get_or_create_active_conversation(lead.id, tenant.tenant_id)
        history = await db.get_recent_messages(conversation.id, HISTORY_LIMIT)

        # Every inbound message reopens the service window
        lead = await db.update_lead(
            lead.id,
            service_window_start=utcnow(),
            service_window_type='ctwa' if message.from_ad else 'standard',
        )

        return ConversationContext(
            lead=lead,
            conversation=conversation,
            recent_messages=[{'role': m.role, 'content': m.content} for m in history],
        )

    async def _save_user_message(self, db: DBManager, context: ConversationContext, message: ParsedMessage):
        extra = {'type': message.message_type}
        if message.interactive_id:
            extra['interactive_id'] = message.interactive_id
        if message.media_id:
            extra['media_id'] = message.media_id
        if message.flow_response:
            extra['flow_response'] = message.flow_response
        if message.referral:
            extra['referral'] = message.referral

        return await db.save_message(
            context.conversation.id,
            'user',
            message.text,
            lead_id=context.lead.id,
            wa_message_id=message.message_id,
            extra_data=extra,
        )

    async def _save_reply(self, db: DBManager, context: ConversationContext, text: str, wa_message_id: str = None):
        return await db.save_message(
            context.conversation.id,
            'assistant',
            text,
            lead_id=context.lead.id,
            wa_message_id=wa_message_id,
            sent_by='bot',
        )

    async def _respond(self, db: DBManager, message: ParsedMessage, tenant: TenantContext, context: ConversationContext) -> Dict:
        lead = context.lead
        conversation = context.conversation
        credentials = tenant.credentials

        if len(context.recent_messages) <= 1 and is_autoresponder(message.text):
            log.info("Auto-responder detected, not replying", lead_id=lead.id)
            await self._save_user_message(db, context, message)
            return {'status': 'autoresponder_detected'}

        if await is_bot_paused(db, conversation.id):
            await self._save_user_message(db, context, message)
            return {'status': 'bot_paused'}

        # A stop signal ends follow-ups only; the message is still answered
        opted_out = bool(lead.opted_out)
        stop = should_stop_follow_ups(message.text, context.recent_messages + [{'role': 'user', 'content': message.text}])
        if stop['stop'] and not opted_out:
            await mark_opted_out(db, lead.id, stop['reason'])
            opted_out = True

        await self._save_user_message(db, context, message)
        await cancel_follow_ups(db, lead.id, FollowUpConfig.REENGAGEMENT_TYPES)

        if await is_bot_suppressed(db, conversation.id):
            return await self._classify_broadcast_reply(db, context, message)

        slot_at = parse_slot_id(message.interactive_id)
        if slot_at:
            return await self._book_slot(db, context, message, tenant, slot_at)

        trigger = detect_handoff_trigger(message.text, context.recent_messages)
        repeated_failures = detect_repeated_failures(context.recent_messages)
        if trigger or repeated_failures:
            reason = 'repeated_failures' if repeated_failures else trigger.reason
            priority = 'critical' if repeated_failures else trigger.priority
            result = await execute_handoff(
                HandoffContext(
                    phone=message.phone,
                    name=lead.name or 'Cliente',
                    reason=reason,
                    priority=priority,
                    recent_messages=context.recent_messages[-5:],
                    lead_id=lead.id,
                    email=lead.email,
                    company=lead.company,
                    industry=lead.industry,
                    conversation_id=conversation.id,
                    current_stage=lead.stage,
                    tenant_id=tenant.tenant_id,
                    credentials=credentials,
                ),
                db,
            )
            if result.notified_client:
                await self._save_reply(db, context, REASON_CONFIG[reason]['client_message'])
            return {'status': 'handoff', 'handoff_id': result.handoff_id, 'reason': reason}

        try:
            result = await process_message(
                message.text,
                {
                    'lead': {
                        'name': lead.name,
                        'company': lead.company,
                        'industry': lead.industry,
                        'stage': lead.stage,
                        'memory': lead.memory,
                    },
                    'history': context.recent_messages,
                    'summary': conversation.summary,
                    'turn_count': (conversation.agent_state or {}).get('turn_count', 0),
                },
                tenant.agent_config,
            )
        except LLMError as e:
            log.error("Language model unavailable, handing off", lead_id=lead.id, error=str(e))
            metrics.record_error(type(e).__name__, 'agent')
            await handoff_on_service_error(
                message.phone,
                lead.name or 'Cliente',
                'ollama',
                str(e),
                context.recent_messages[-5:],
                credentials,
                db,
                lead_id=lead.id,
                conversation_id=conversation.id,
                tenant_id=tenant.tenant_id,
            )
            return {'status': 'agent_error_handoff', 'reason': 'service_timeout'}
        except Exception as e:
            log.error("Agent error, handing off", lead_id=lead.id, error=str(e), exc_info=True)
            metrics.record_error(type(e).__name__, 'agent')
            await handoff_on_agent_error(
                message.phone,
                lead.name or 'Cliente',
                str(e),
                context.recent_messages[-5:],
                credentials,
                db,
                lead_id=lead.id,
                conversation_id=conversation.id,
                tenant_id=tenant.tenant_id,
            )
            return {'status': 'agent_error_handoff', 'reason': 'agent_error'}

        await db.update_conversation(
            conversation.id,
            summary=result.summary,
            agent_state={'turn_count': result.turn_count, 'topics': result.topics},
        )
        if result.industry != 'generic' and lead.industry != result.industry:
            lead = await db.update_lead(lead.id, industry=result.industry)

        reply = (result.response or '').strip() or FALLBACK_REPLY
        wa_message_id = await send_text_with_id(message.phone, reply, credentials)
        await self._save_reply(db, context, reply, wa_message_id)

        if result.show_schedule:
            if await send_schedule_list(message.phone, SCHEDULE_LIST_BODY, build_demo_slots(), credentials):
                await self._save_reply(db, context, SCHEDULE_LIST_SAVED)

        if not opted_out:
            await self._schedule_follow_ups(db, context, lead, result, reply)

        return {'status': 'processed', 'opted_out': True} if opted_out else {'status': 'processed'}

    async def _schedule_follow_ups(self, db: DBManager, context: ConversationContext, lead: Lead, result, reply: str):
        if result.said_later:
            await schedule_said_later(db, lead, context.conversation.id)
        elif (
            len(context.recent_messages) <= EARLY_CONVERSATION_MESSAGES
            and reply.endswith('?')
            and not result.escalated
        ):
            await schedule_reengagement(db, lead, conversation_id=context.conversation.id)

    async def _classify_broadcast_reply(self, db: DBManager, context: ConversationContext, message: ParsedMessage) -> Dict:
        """Broadcast replies are graded for the pipeline, not answered"""
        history = context.recent_messages + [{'role': 'user', 'content': message.text}]
        classification = await classify_conversation(history)
        await apply_classification_to_lead(db, context.lead.id, classification, context.lead.stage)
        return {'status': 'broadcast_suppressed', 'classification': classification}

    async def _book_slot(self, db: DBManager, context: ConversationContext, message: ParsedMessage, tenant: TenantContext, slot_at: datetime) -> Dict:
        lead = await db.update_lead(context.lead.id, stage='demo_scheduled')
        await cancel_follow_ups(db, lead.id)
        await schedule_demo_reminders(db, lead, message.interactive_id, slot_at)

        reply = f"¡Listo! Quedó agendada tu demo para {message.interactive_title or slot_at.strftime('%d/%m %H:%M')}. Te mando un recordatorio antes."
        wa_message_id = await send_text_with_id(message.phone, reply, tenant.credentials)
        await self._save_reply(db, context, reply, wa_message_id)
        return {'status': 'processed', 'flow': 'slot_selected'}

    async def process_status_updates(self, payload: Dict, db: DBManager) -> int:
        """Apply delivery receipts to broadcast recipients"""
        updated = 0
        for status in parse_status_updates(payload):
            recipient = await db.get_recipient_by_wa_message_id(status.wa_message_id)
            if not recipient:
                continue

            if status.status == 'failed':
                error = status.errors[0].get('title') if status.errors else None
                await db.update_recipient(recipient, status='failed', error_message=error or 'Unknown delivery error')
            elif status.status == 'delivered' and recipient.status == 'sent':
                await db.update_recipient(recipient, status='delivered', delivered_at=utcnow())
            elif status.status == 'read' and recipient.status in ('sent', 'delivered'):
                await db.update_recipient(recipient, status='read', read_at=utcnow())
            else:
                continue
            updated += 1

        return updated


# Singleton instance
whatsapp_handler = WhatsAppHandler()
