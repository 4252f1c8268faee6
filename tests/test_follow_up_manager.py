"""
Follow-up scheduler and processor tests
"""

from datetime import timedelta

import pytest

from config.followups import FollowUpStatus, FollowUpType
from services import follow_up_manager as fum
from utils.timeutils import utcnow


@pytest.fixture
def send_text(mocker):
    return mocker.patch("services.follow_up_manager.send_text", new=mocker.AsyncMock(return_value=True))


async def _schedule(db, lead, followup_type, minutes_from_now=-1, message="Hola Ana"):
    return await fum.schedule_follow_up(
        db, lead, followup_type, utcnow() + timedelta(minutes=minutes_from_now), message
    )


# -----------------------------
# Scheduling
# -----------------------------
@pytest.mark.asyncio
async def test_schedule_follow_up(db_manager, sample_lead):
    followup = await _schedule(db_manager, sample_lead, FollowUpType.SAID_LATER, 60)

    assert followup.status == FollowUpStatus.PENDING
    assert followup.tenant_id == sample_lead.tenant_id
    assert followup.attempt == 1


@pytest.mark.asyncio
async def test_cancel_follow_ups_by_type(db_manager, sample_lead):
    keep = await _schedule(db_manager, sample_lead, FollowUpType.PRE_DEMO_24H, 60)
    drop = await _schedule(db_manager, sample_lead, FollowUpType.COLD_LEAD_REENGAGEMENT, 60)

    cancelled = await fum.cancel_follow_ups(db_manager, sample_lead.id, [FollowUpType.COLD_LEAD_REENGAGEMENT])

    assert cancelled == 1
    assert (await db_manager.get_followup(keep.id)).status == FollowUpStatus.PENDING
    assert (await db_manager.get_followup(drop.id)).status == FollowUpStatus.CANCELLED


@pytest.mark.asyncio
async def test_demo_reminders_all_ahead(db_manager, sample_lead):
    scheduled_at = (utcnow() + timedelta(days=2)).replace(microsecond=0)
    scheduled = await fum.schedule_demo_reminders(db_manager, sample_lead, "appt-1", scheduled_at)

    by_type = {f.followup_type: f for f in scheduled}
    assert set(by_type) == {FollowUpType.PRE_DEMO_24H, FollowUpType.PRE_DEMO_REMINDER, FollowUpType.POST_DEMO}
    assert by_type[FollowUpType.PRE_DEMO_24H].scheduled_for == scheduled_at - timedelta(hours=24)
    assert by_type[FollowUpType.PRE_DEMO_REMINDER].scheduled_for == scheduled_at - timedelta(minutes=30)
    assert by_type[FollowUpType.POST_DEMO].scheduled_for == scheduled_at + timedelta(minutes=35)


@pytest.mark.asyncio
async def test_demo_reminders_skip_past_times(db_manager, sample_lead):
    scheduled_at = utcnow() + timedelta(hours=2)
    scheduled = await fum.schedule_demo_reminders(db_manager, sample_lead, "appt-2", scheduled_at)

    assert [f.followup_type for f in scheduled] == [FollowUpType.PRE_DEMO_REMINDER, FollowUpType.POST_DEMO]


@pytest.mark.asyncio
async def test_reengagement_sequence_progresses(db_manager, sample_lead):
    first = await fum.schedule_reengagement(db_manager, sample_lead)
    second = await fum.schedule_reengagement(db_manager, sample_lead)
    third = await fum.schedule_reengagement(db_manager, sample_lead)
    fourth = await fum.schedule_reengagement(db_manager, sample_lead)

    assert (first.followup_type, first.attempt) == (FollowUpType.COLD_LEAD_REENGAGEMENT, 1)
    assert (second.followup_type, second.attempt) == (FollowUpType.REENGAGEMENT_2, 2)
    assert (third.followup_type, third.attempt) == (FollowUpType.REENGAGEMENT_3, 3)
    assert fourth is None


@pytest.mark.asyncio
async def test_no_reengagement_once_demo_scheduled(db_manager, sample_lead):
    lead = await db_manager.update_lead(sample_lead.id, stage="demo_scheduled")
    assert await fum.schedule_reengagement(db_manager, lead) is None


@pytest.mark.asyncio
async def test_check_and_schedule_reengagement_requires_idle_time(db_manager, sample_lead):
    assert await fum.check_and_schedule_reengagement(db_manager, sample_lead, utcnow() - timedelta(hours=1)) is None

    followup = await fum.check_and_schedule_reengagement(db_manager, sample_lead, utcnow() - timedelta(hours=49))
    assert followup.followup_type == FollowUpType.COLD_LEAD_REENGAGEMENT


@pytest.mark.asyncio
async def test_said_later_scheduled_next_day(db_manager, sample_lead):
    followup = await fum.schedule_said_later(db_manager, sample_lead)

    assert followup.followup_type == FollowUpType.SAID_LATER
    assert followup.scheduled_for - utcnow() > timedelta(hours=23)


# -----------------------------
# Opt-out & throttling
# -----------------------------
@pytest.mark.asyncio
async def test_mark_opted_out_closes_pending(db_manager, sample_lead):
    pending = await _schedule(db_manager, sample_lead, FollowUpType.SAID_LATER, 60)

    closed = await fum.mark_opted_out(db_manager, sample_lead.id, "no me interesa")

    assert closed == 1
    assert await fum.is_opted_out(db_manager, sample_lead.id) is True
    assert (await db_manager.get_followup(pending.id)).status == FollowUpStatus.OPTED_OUT
    assert (await db_manager.get_lead_by_id(sample_lead.id)).opted_out_at is not None


@pytest.mark.asyncio
async def test_can_send_respects_min_interval(db_manager, sample_lead):
    sent = await _schedule(db_manager, sample_lead, FollowUpType.SAID_LATER)
    await db_manager.update_followup(sent.id, status=FollowUpStatus.SENT, sent_at=utcnow() - timedelta(hours=2))

    assert await fum.can_send_follow_up(db_manager, sample_lead.id, FollowUpType.COLD_LEAD_REENGAGEMENT) is False
    assert await fum.can_send_follow_up(db_manager, sample_lead.id, FollowUpType.PRE_DEMO_REMINDER) is True

    await db_manager.update_followup(sent.id, sent_at=utcnow() - timedelta(hours=25))
    assert await fum.can_send_follow_up(db_manager, sample_lead.id, FollowUpType.COLD_LEAD_REENGAGEMENT) is True


# -----------------------------
# Processor
# -----------------------------
@pytest.mark.asyncio
async def test_process_sends_and_records_message(db_manager, sample_lead, conversation, send_text):
    followup = await _schedule(db_manager, sample_lead, FollowUpType.SAID_LATER, message="Hola Ana, ¿platicamos?")

    result = await fum.process_due_follow_ups(db_manager)

    assert result["processed"] == 1
    assert result["successful"] == 1
    assert result["failed"] == 0

    send_text.assert_awaited_once()
    to, text, credentials = send_text.await_args.args
    assert to == sample_lead.phone
    assert text == "Hola Ana, ¿platicamos?"
    assert credentials.access_token == "tenant-token"

    assert (await db_manager.get_followup(followup.id)).status == FollowUpStatus.SENT
    messages = await db_manager.get_recent_messages(conversation.id)
    assert messages[-1].sent_by == "followup"
    assert messages[-1].content == "Hola Ana, ¿platicamos?"


@pytest.mark.asyncio
async def test_process_ignores_future_follow_ups(db_manager, sample_lead, send_text):
    await _schedule(db_manager, sample_lead, FollowUpType.SAID_LATER, minutes_from_now=120)

    result = await fum.process_due_follow_ups(db_manager)

    assert result["processed"] == 0
    send_text.assert_not_awaited()


@pytest.mark.asyncio
async def test_process_send_failure_marks_failed(db_manager, sample_lead, send_text):
    send_text.return_value = False
    followup = await _schedule(db_manager, sample_lead, FollowUpType.SAID_LATER)

    result = await fum.process_due_follow_ups(db_manager)

    assert result["failed"] == 1
    stored = await db_manager.get_followup(followup.id)
    assert stored.status == FollowUpStatus.FAILED
    assert stored.error_message == "WhatsApp send failed"


@pytest.mark.asyncio
async def test_process_exception_marks_failed(db_manager, sample_lead, send_text):
    send_text.side_effect = RuntimeError("boom")
    followup_id = (await _schedule(db_manager, sample_lead, FollowUpType.SAID_LATER)).id

    result = await fum.process_due_follow_ups(db_manager)

    assert result["failed"] == 1
    stored = await db_manager.get_followup(followup_id)
    assert stored.status == FollowUpStatus.FAILED
    assert stored.error_message == "boom"


@pytest.mark.asyncio
async def test_process_opted_out_lead(db_manager, sample_lead, send_text):
    followup = await _schedule(db_manager, sample_lead, FollowUpType.SAID_LATER)
    await db_manager.update_lead(sample_lead.id, opted_out=True)

    result = await fum.process_due_follow_ups(db_manager)

    assert result["successful"] == 1
    send_text.assert_not_awaited()
    assert (await db_manager.get_followup(followup.id)).status == FollowUpStatus.OPTED_OUT


@pytest.mark.asyncio
async def test_process_skips_reengagement_after_demo_booked(db_manager, sample_lead, send_text):
    followup = await _schedule(db_manager, sample_lead, FollowUpType.COLD_LEAD_REENGAGEMENT)
    await db_manager.update_lead(sample_lead.id, stage="demo_scheduled")

    await fum.process_due_follow_ups(db_manager)

    send_text.assert_not_awaited()
    assert (await db_manager.get_followup(followup.id)).status == FollowUpStatus.SENT


@pytest.mark.asyncio
async def test_process_reschedules_when_contacted_recently(db_manager, sample_lead, send_text):
    earlier = await _schedule(db_manager, sample_lead, FollowUpType.SAID_LATER)
    await db_manager.update_followup(earlier.id, status=FollowUpStatus.SENT, sent_at=utcnow() - timedelta(hours=1))
    followup = await _schedule(db_manager, sample_lead, FollowUpType.COLD_LEAD_REENGAGEMENT)

    await fum.process_due_follow_ups(db_manager)

    send_text.assert_not_awaited()
    stored = await db_manager.get_followup(followup.id)
    assert stored.status == FollowUpStatus.PENDING
    assert stored.scheduled_for > utcnow() + timedelta(hours=23)


@pytest.mark.asyncio
async def test_sent_cold_reengagement_queues_next_step(db_manager, sample_lead, send_text):
    await fum.schedule_reengagement(db_manager, sample_lead)
    pending = await db_manager.get_followups_by_lead(sample_lead.id)
    await db_manager.update_followup(pending[0].id, scheduled_for=utcnow() - timedelta(minutes=1))

    await fum.process_due_follow_ups(db_manager)

    followups = await db_manager.get_followups_by_lead(sample_lead.id)
    types = {f.followup_type: f.status for f in followups}
    assert types[FollowUpType.COLD_LEAD_REENGAGEMENT] == FollowUpStatus.SENT
    assert types[FollowUpType.REENGAGEMENT_2] == FollowUpStatus.PENDING


@pytest.mark.asyncio
async def test_sent_second_reengagement_queues_the_third(db_manager, sample_lead, send_text):
    cold = await fum.schedule_reengagement(db_manager, sample_lead)
    second = await fum.schedule_reengagement(db_manager, sample_lead)
    await db_manager.update_followup(cold.id, status=FollowUpStatus.SENT, sent_at=utcnow() - timedelta(days=3))
    await db_manager.update_followup(second.id, scheduled_for=utcnow() - timedelta(minutes=1))

    await fum.process_due_follow_ups(db_manager)

    followups = await db_manager.get_followups_by_lead(sample_lead.id)
    pending = [f for f in followups if f.status == FollowUpStatus.PENDING]
    assert [(f.followup_type, f.attempt) for f in pending] == [(FollowUpType.REENGAGEMENT_3, 3)]


# -----------------------------
# Idle lead sweep
# -----------------------------
@pytest.mark.asyncio
async def test_idle_leads_get_first_reengagement_once(db_manager, sample_lead):
    await db_manager.update_lead(sample_lead.id, last_interaction=utcnow() - timedelta(days=3))

    assert await fum.reengage_idle_leads(db_manager) == 1
    assert await fum.reengage_idle_leads(db_manager) == 0

    followups = await db_manager.get_followups_by_lead(sample_lead.id)
    assert [f.followup_type for f in followups] == [FollowUpType.COLD_LEAD_REENGAGEMENT]


@pytest.mark.asyncio
async def test_idle_sweep_skips_recent_and_opted_out_leads(db_manager, sample_lead, tenant):
    await db_manager.update_lead(sample_lead.id, last_interaction=utcnow() - timedelta(hours=2))
    quiet = await db_manager.add_lead(phone="5215599999999", name="Luis", tenant_id=tenant.id)
    await db_manager.update_lead(quiet.id, last_interaction=utcnow() - timedelta(days=5), opted_out=True)

    assert await fum.reengage_idle_leads(db_manager, tenant_id=tenant.id) == 0
    assert await db_manager.get_followups_by_lead(sample_lead.id) == []


@pytest.mark.asyncio
async def test_idle_sweep_skips_broadcast_suppressed_conversations(db_manager, sample_lead):
    await db_manager.update_lead(sample_lead.id, last_interaction=utcnow() - timedelta(days=3))
    conversation = await db_manager.get_or_create_active_conversation(sample_lead.id, sample_lead.tenant_id)
    await db_manager.update_conversation(conversation.id, broadcast_suppressed=True)

    assert await fum.reengage_idle_leads(db_manager) == 0
    assert await db_manager.get_followups_by_lead(sample_lead.id) == []
