"""
Follow-up Manager - scheduling, processing and the monitoring loop
"""

import asyncio
import time
from datetime import datetime, timedelta
from typing import Iterable, Optional

from config.followups import FollowUpConfig, FollowUpStatus, FollowUpType
from config.worker_config import WorkerConfig
from database.crud import DBManager
from database.db import AsyncSessionLocal
from database.models import FollowUp, Lead
from services.follow_up_messages import generate_follow_up_message, should_send_reengagement
from services.tenant_service import get_tenant_credentials
from services.whatsapp_service import send_text
from utils.logger import get_logger
from utils.metrics import metrics
from utils.timeutils import utcnow

log = get_logger("followups")


# =============================
# SCHEDULER
# =============================

async def schedule_follow_up(
    db: DBManager,
    lead: Lead,
    followup_type: str,
    scheduled_for: datetime,
    message: str,
    appointment_id: str = None,
    attempt: int = 1,
    context: dict = None,
    conversation_id: int = None,
) -> Optional[FollowUp]:
    try:
        followup = await db.add_followup(
            lead_id=lead.id,
            followup_type=followup_type,
            scheduled_for=scheduled_for,
            tenant_id=lead.tenant_id,
            conversation_id=conversation_id,
            appointment_id=appointment_id,
            message=message,
            attempt=attempt,
            context=context,
        )
    except Exception as e:
        log.error("Could not schedule follow-up", lead_id=lead.id, followup_type=followup_type, error=str(e))
        return None

    log.info(
        "Follow-up scheduled",
        lead_id=lead.id,
        followup_type=followup_type,
        scheduled_for=scheduled_for.isoformat(),
    )
    return followup


async def cancel_follow_ups(db: DBManager, lead_id: int, types: Optional[Iterable[str]] = None) -> int:
    """Cancel pending follow-ups for a lead, optionally limited to some types"""
    cancelled = await db.cancel_followups(lead_id=lead_id, followup_types=types)
    if cancelled:
        log.info("Follow-ups cancelled", lead_id=lead_id, count=cancelled)
    return cancelled


async def get_pending_follow_ups(db: DBManager, window_minutes: int = None, limit: int = None):
    """Pending follow-ups due now or within the next `window_minutes`"""
    window_minutes = WorkerConfig.FOLLOWUP_WINDOW_MINUTES if window_minutes is None else window_minutes
    window_end = utcnow() + timedelta(minutes=window_minutes)
    return await db.get_due_followups(window_end, limit=limit or WorkerConfig.FOLLOWUP_BATCH_SIZE)


async def mark_sent(db: DBManager, followup_id: int):
    await db.update_followup(followup_id, status=FollowUpStatus.SENT, sent_at=utcnow())


async def mark_failed(db: DBManager, followup_id: int, error_message: str = None):
    await db.update_followup(followup_id, status=FollowUpStatus.FAILED, error_message=error_message)


async def reschedule(db: DBManager, followup_id: int, delay: timedelta = FollowUpConfig.MIN_INTERVAL):
    await db.update_followup(followup_id, scheduled_for=utcnow() + delay)


async def get_follow_up_count(db: DBManager, lead_id: int, followup_type: str) -> int:
    """Sent or pending follow-ups of a type"""
    return await db.count_followups(lead_id, followup_type)


async def get_reengagement_count(db: DBManager, lead_id: int) -> int:
    total = 0
    for followup_type in FollowUpConfig.REENGAGEMENT_TYPES:
        total += await get_follow_up_count(db, lead_id, followup_type)
    return total


async def schedule_demo_reminders(
    db: DBManager,
    lead: Lead,
    appointment_id: str,
    scheduled_at: datetime,
):
    """24h and 30min reminders (only when still ahead) plus a post-demo check-in"""
    now = utcnow()
    date_str = scheduled_at.strftime('%Y-%m-%d')
    time_str = scheduled_at.strftime('%H:%M')
    jobs = []

    for followup_type in (FollowUpType.PRE_DEMO_24H, FollowUpType.PRE_DEMO_REMINDER):
        remind_at = scheduled_at - FollowUpConfig.get_delay(followup_type)
        if remind_at <= now:
            continue
        jobs.append((
            followup_type,
            remind_at,
            generate_follow_up_message(
                followup_type, lead, appointment_date=date_str, appointment_time=time_str
            ),
        ))

    # Demo assumed to last 30 minutes
    post_demo_at = scheduled_at + timedelta(minutes=30) + FollowUpConfig.get_delay(FollowUpType.POST_DEMO)
    jobs.append((FollowUpType.POST_DEMO, post_demo_at, generate_follow_up_message(FollowUpType.POST_DEMO, lead)))

    scheduled = []
    for followup_type, scheduled_for, message in jobs:
        followup = await schedule_follow_up(
            db, lead, followup_type, scheduled_for, message, appointment_id=appointment_id
        )
        if followup:
            scheduled.append(followup)
    return scheduled


async def schedule_said_later(db: DBManager, lead: Lead, conversation_id: int = None):
    return await schedule_follow_up(
        db,
        lead,
        FollowUpType.SAID_LATER,
        utcnow() + FollowUpConfig.get_delay(FollowUpType.SAID_LATER),
        generate_follow_up_message(FollowUpType.SAID_LATER, lead),
        conversation_id=conversation_id,
    )


async def schedule_reengagement(db: DBManager, lead: Lead, memory: str = None, conversation_id: int = None):
    """Queue the next step of the re-engagement sequence, if any is left"""
    next_attempt = await get_reengagement_count(db, lead.id) + 1

    if not should_send_reengagement(lead, next_attempt):
        log.info("Skipping re-engagement", lead_id=lead.id, attempt=next_attempt, stage=lead.stage)
        return None

    followup_type = FollowUpConfig.REENGAGEMENT_SEQUENCE[next_attempt]
    message = generate_follow_up_message(
        followup_type,
        lead,
        memory=memory if memory is not None else lead.memory,
        attempt=next_attempt,
    )

    return await schedule_follow_up(
        db,
        lead,
        followup_type,
        utcnow() + FollowUpConfig.get_delay(followup_type),
        message,
        attempt=next_attempt,
        conversation_id=conversation_id,
    )


async def check_and_schedule_reengagement(db: DBManager, lead: Lead, last_interaction: datetime, memory: str = None):
    if utcnow() - last_interaction < FollowUpConfig.get_delay(FollowUpType.COLD_LEAD_REENGAGEMENT):
        return None

    if await get_reengagement_count(db, lead.id) >= FollowUpConfig.MAX_REENGAGEMENT_ATTEMPTS:
        return None

    return await schedule_reengagement(db, lead, memory)


async def reengage_idle_leads(db: DBManager, tenant_id: str = None) -> int:
    """Queue the next re-engagement for quiet leads with nothing pending"""
    idle_since = utcnow() - FollowUpConfig.get_delay(FollowUpType.COLD_LEAD_REENGAGEMENT)
    lead_ids = [lead.id for lead in await db.get_idle_leads(idle_since, tenant_id=tenant_id)]

    scheduled = 0
    for lead_id in lead_ids:
        if await db.count_followups(lead_id, statuses=(FollowUpStatus.PENDING,)):
            continue

        lead = await db.get_lead_by_id(lead_id)
        conversation = await db.get_active_conversation(lead_id)
        if conversation and conversation.broadcast_suppressed:
            continue
        if await check_and_schedule_reengagement(db, lead, lead.last_interaction):
            scheduled += 1

    if scheduled:
        log.info("Idle leads re-engaged", scheduled=scheduled, idle_leads=len(lead_ids))
    return scheduled


# =============================
# OPT-OUT & THROTTLING
# =============================

async def is_opted_out(db: DBManager, lead_id: int) -> bool:
    lead = await db.get_lead_by_id(lead_id)
    return bool(lead and lead.opted_out)


async def mark_opted_out(db: DBManager, lead_id: int, reason: str = None) -> int:
    """Flag the lead and close out everything still pending"""
    await db.update_lead(lead_id, opted_out=True, opted_out_at=utcnow())
    closed = await db.cancel_followups(lead_id=lead_id, status=FollowUpStatus.OPTED_OUT)
    log.info("Lead opted out of follow-ups", lead_id=lead_id, reason=reason, closed=closed)
    return closed


async def can_send_follow_up(db: DBManager, lead_id: int, followup_type: str) -> bool:
    if FollowUpConfig.is_demo_reminder(followup_type):
        return True

    last_sent = await db.get_last_sent_followup(lead_id)
    if not last_sent or not last_sent.sent_at:
        return True

    return utcnow() - last_sent.sent_at >= FollowUpConfig.MIN_INTERVAL


# =============================
# PROCESSOR
# =============================

async def _credentials_for(db: DBManager, followup: FollowUp):
    if followup.tenant_id:
        return await get_tenant_credentials(db, followup.tenant_id)
    return None


async def process_follow_up(db: DBManager, followup: FollowUp) -> bool:
    """Handle a single due follow-up. Returns False only on failure."""
    lead = await db.get_lead_by_id(followup.lead_id)
    if not lead:
        log.warning("Lead not found for follow-up", followup_id=followup.id, lead_id=followup.lead_id)
        await mark_failed(db, followup.id, "Lead not found")
        return False

    if lead.opted_out:
        await mark_opted_out(db, lead.id, "Skipped by processor - already opted out")
        return True

    if FollowUpConfig.is_reengagement(followup.followup_type) and lead.stage in FollowUpConfig.DEMO_STAGES:
        log.info("Skipping re-engagement at demo stage", lead_id=lead.id, stage=lead.stage)
        await mark_sent(db, followup.id)
        return True

    if not await can_send_follow_up(db, lead.id, followup.followup_type):
        log.info("Lead contacted in the last 24h, rescheduling", followup_id=followup.id, lead_id=lead.id)
        await reschedule(db, followup.id)
        return True

    message = followup.message or generate_follow_up_message(
        followup.followup_type, lead, memory=lead.memory, attempt=followup.attempt
    )
    credentials = await _credentials_for(db, followup)

    log.info("Sending follow-up", followup_id=followup.id, followup_type=followup.followup_type, lead_id=lead.id)
    if not await send_text(lead.phone, message, credentials):
        await mark_failed(db, followup.id, "WhatsApp send failed")
        return False

    await mark_sent(db, followup.id)

    conversation = await db.get_active_conversation(lead.id)
    if conversation:
        await db.save_message(
            conversation.id,
            'assistant',
            message,
            lead_id=lead.id,
            sent_by='followup',
            extra_data={'followup_id': followup.id, 'followup_type': followup.followup_type},
        )

    if followup.followup_type in (FollowUpType.COLD_LEAD_REENGAGEMENT, FollowUpType.REENGAGEMENT_2):
        await schedule_reengagement(db, lead)

    return True


async def process_due_follow_ups(db: DBManager, window_minutes: int = None) -> dict:
    """Send every follow-up due within the window"""
    start = time.time()
    # Rollbacks expire loaded rows, so work from ids
    pending = [(f.id, f.followup_type) for f in await get_pending_follow_ups(db, window_minutes)]

    successful = 0
    failed = 0
    for followup_id, followup_type in pending:
        try:
            followup = await db.get_followup(followup_id)
            ok = await process_follow_up(db, followup)
        except Exception as e:
            log.error("Error processing follow-up", followup_id=followup_id, error=str(e), exc_info=True)
            metrics.record_error(type(e).__name__, 'followups')
            await db.session.rollback()
            await mark_failed(db, followup_id, str(e))
            ok = False

        metrics.record_followup(followup_type, 'success' if ok else 'failed')
        if ok:
            successful += 1
        else:
            failed += 1

    duration_ms = int((time.time() - start) * 1000)
    if pending:
        log.info(
            "Follow-up run completed",
            processed=len(pending),
            successful=successful,
            failed=failed,
            duration_ms=duration_ms,
        )

    return {
        'processed': len(pending),
        'successful': successful,
        'failed': failed,
        'duration_ms': duration_ms,
    }


# =============================
# MONITORING LOOP
# =============================

class FollowUpManager:
    def __init__(self, check_interval: int = None):
        self.check_interval = check_interval or WorkerConfig.FOLLOWUP_CHECK_INTERVAL
        self.is_running = False
        self.last_run: Optional[dict] = None

    async def start_monitoring(self):
        """Start follow-up monitoring loop"""
        self.is_running = True
        log.info("Follow-up manager started", check_interval=self.check_interval)

        while self.is_running:
            try:
                await self.check_and_send_followups()
            except Exception as e:
                log.error("Follow-up manager error", error=str(e), exc_info=True)
                metrics.record_error(type(e).__name__, 'followup_manager')
            await asyncio.sleep(self.check_interval)

    def stop_monitoring(self):
        """Stop follow-up monitoring"""
        self.is_running = False
        log.info("Follow-up manager stopped")

    async def check_and_send_followups(self) -> dict:
        async with AsyncSessionLocal() as session:
            db = DBManager(session)
            result = await process_due_follow_ups(db)
            result['reengagements_scheduled'] = await reengage_idle_leads(db)
            self.last_run = result
            return result


# Singleton instance
follow_up_manager = FollowUpManager()
