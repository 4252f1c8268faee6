from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy import and_, desc, func, update
from datetime import datetime
from typing import Iterable, List, Optional
from .models import (
    AgentConfig,
    Broadcast,
    BroadcastRecipient,
    Conversation,
    FollowUp,
    Handoff,
    Lead,
    Message,
    Tenant,
    TwilioNumber,
    User,
    WhatsAppAccount,
)
from utils.timeutils import utcnow


class DBManager:
    def __init__(self, session: AsyncSession):
        self.session = session

    # =============================
    # TENANTS & USERS
    # =============================

    async def create_tenant(self, name: str, plan: str = "starter", subscription_status: str = "trialing"):
        tenant = Tenant(name=name, plan=plan, subscription_status=subscription_status)
        self.session.add(tenant)
        await self.session.commit()
        await self.session.refresh(tenant)
        return tenant

    async def get_tenant(self, tenant_id: str):
        result = await self.session.execute(select(Tenant).filter_by(id=tenant_id))
        return result.scalar_one_or_none()

    async def create_user(self, email: str, password_hash: str, tenant_id: str = None, role: str = "owner"):
        user = User(email=email.lower(), password=password_hash, tenant_id=tenant_id, role=role)
        self.session.add(user)
        await self.session.commit()
        await self.session.refresh(user)
        return user

    async def get_user_by_email(self, email: str):
        result = await self.session.execute(select(User).filter_by(email=email.lower()))
        return result.scalar_one_or_none()

    async def get_user_by_id(self, user_id: int):
        result = await self.session.execute(select(User).filter_by(id=user_id))
        return result.scalar_one_or_none()

    async def get_agent_config(self, tenant_id: str):
        result = await self.session.execute(select(AgentConfig).filter_by(tenant_id=tenant_id))
        return result.scalar_one_or_none()

    async def save_agent_config(self, tenant_id: str, **fields):
        config = await self.get_agent_config(tenant_id)
        if not config:
            config = AgentConfig(tenant_id=tenant_id)
            self.session.add(config)
        for key, value in fields.items():
            setattr(config, key, value)
        await self.session.commit()
        await self.session.refresh(config)
        return config

    # =============================
    # WHATSAPP ACCOUNTS
    # =============================

    async def add_whatsapp_account(
        self,
        tenant_id: str,
        phone_number_id: str,
        access_token_encrypted: str,
        display_phone_number: str = None,
        waba_id: str = None,
    ):
        account = WhatsAppAccount(
            tenant_id=tenant_id,
            phone_number_id=phone_number_id,
            access_token_encrypted=access_token_encrypted,
            display_phone_number=display_phone_number,
            waba_id=waba_id,
            status="active",
        )
        self.session.add(account)
        await self.session.commit()
        await self.session.refresh(account)
        return account

    async def get_active_whatsapp_account(self, phone_number_id: str):
        result = await self.session.execute(
            select(WhatsAppAccount).filter_by(phone_number_id=phone_number_id, status="active")
        )
        return result.scalar_one_or_none()

    async def get_whatsapp_account_for_tenant(self, tenant_id: str):
        result = await self.session.execute(
            select(WhatsAppAccount)
            .filter_by(tenant_id=tenant_id, status="active")
            .order_by(desc(WhatsAppAccount.created_at))
            .limit(1)
        )
        return result.scalar_one_or_none()

    # =============================
    # LEADS
    # =============================

    async def add_lead(self, phone: str, name: str = "Usuario", tenant_id: str = None, **fields):
        lead = Lead(phone=phone, name=name or "Usuario", tenant_id=tenant_id, **fields)
        self.session.add(lead)
        await self.session.commit()
        await self.session.refresh(lead)
        return lead

    async def get_lead_by_id(self, lead_id: int):
        result = await self.session.execute(select(Lead).filter_by(id=lead_id))
        return result.scalar_one_or_none()

    async def get_lead_by_phone(self, phone: str, tenant_id: str = None):
        result = await self.session.execute(select(Lead).filter_by(phone=phone, tenant_id=tenant_id))
        return result.scalar_one_or_none()

    async def get_or_create_lead(self, phone: str, name: str = "Usuario", tenant_id: str = None):
        """Get existing lead for the tenant or create a new one"""
        lead = await self.get_lead_by_phone(phone, tenant_id)

        if not lead:
            lead = await self.add_lead(phone=phone, name=name, tenant_id=tenant_id)
        elif name and name != "Usuario" and lead.name in (None, "", "Usuario"):
            # Fill in the WhatsApp profile name once we learn it
            lead.name = name
            await self.session.commit()

        return lead

    async def update_lead(self, lead_id: int, **fields):
        lead = await self.get_lead_by_id(lead_id)
        if not lead:
            return None
        for key, value in fields.items():
            setattr(lead, key, value)
        await self.session.commit()
        return lead

    async def get_idle_leads(self, idle_since: datetime, tenant_id: str = None) -> List[Lead]:
        """Leads whose last interaction is older than idle_since and who have not opted out"""
        query = select(Lead).where(
            and_(
                Lead.last_interaction.is_not(None),
                Lead.last_interaction <= idle_since,
                Lead.opted_out.is_(False),
            )
        )
        if tenant_id:
            query = query.where(Lead.tenant_id == tenant_id)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    # =============================
    # CONVERSATIONS
    # =============================

    async def get_conversation(self, conversation_id: int):
        result = await self.session.execute(select(Conversation).filter_by(id=conversation_id))
        return result.scalar_one_or_none()

    async def get_active_conversation(self, lead_id: int):
        """Most recently started conversation that has not ended"""
        result = await self.session.execute(
            select(Conversation)
            .where(and_(Conversation.lead_id == lead_id, Conversation.ended_at.is_(None)))
            .order_by(desc(Conversation.started_at), desc(Conversation.id))
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def create_conversation(self, lead_id: int, tenant_id: str = None):
        conversation = Conversation(lead_id=lead_id, tenant_id=tenant_id, started_at=utcnow())
        self.session.add(conversation)
        await self.session.commit()
        await self.session.refresh(conversation)
        return conversation

    async def get_or_create_active_conversation(self, lead_id: int, tenant_id: str = None):
        conversation = await self.get_active_conversation(lead_id)
        if not conversation:
            conversation = await self.create_conversation(lead_id, tenant_id)
        return conversation

    async def update_conversation(self, conversation_id: int, **fields):
        conversation = await self.get_conversation(conversation_id)
        if not conversation:
            return None
        for key, value in fields.items():
            setattr(conversation, key, value)
        await self.session.commit()
        return conversation

    # =============================
    # MESSAGES
    # =============================

    async def save_message(
        self,
        conversation_id: int,
        role: str,
        content: str,
        lead_id: int = None,
        wa_message_id: str = None,
        sent_by: str = None,
        extra_data: dict = None,
    ):
        """Store a message and touch the lead's last interaction"""
        message = Message(
            conversation_id=conversation_id,
            lead_id=lead_id,
            role=role,
            content=content,
            wa_message_id=wa_message_id,
            sent_by=sent_by,
            extra_data=extra_data,
            created_at=utcnow(),
        )
        self.session.add(message)

        if lead_id:
            await self.session.execute(
                update(Lead).where(Lead.id == lead_id).values(last_interaction=utcnow())
            )

        await self.session.commit()
        await self.session.refresh(message)
        return message

    async def get_recent_messages(self, conversation_id: int, limit: int = 20) -> List[Message]:
        """Last `limit` messages in chronological order"""
        result = await self.session.execute(
            select(Message)
            .filter_by(conversation_id=conversation_id)
            .order_by(desc(Message.created_at), desc(Message.id))
            .limit(limit)
        )
        messages = result.scalars().all()
        return list(reversed(messages))

    async def count_messages(self, conversation_id: int) -> int:
        result = await self.session.execute(
            select(func.count(Message.id)).filter_by(conversation_id=conversation_id)
        )
        return result.scalar() or 0

    # =============================
    # FOLLOW-UP CRUD
    # =============================

    async def add_followup(
        self,
        lead_id: int,
        followup_type: str,
        scheduled_for: datetime,
        tenant_id: str = None,
        conversation_id: int = None,
        appointment_id: str = None,
        message: str = None,
        attempt: int = 1,
        context: dict = None,
    ):
        followup = FollowUp(
            lead_id=lead_id,
            tenant_id=tenant_id,
            conversation_id=conversation_id,
            appointment_id=appointment_id,
            followup_type=followup_type,
            scheduled_for=scheduled_for,
            message=message,
            attempt=attempt,
            context=context,
            status="pending",
        )
        self.session.add(followup)
        await self.session.commit()
        await self.session.refresh(followup)
        return followup

    async def get_followup(self, followup_id: int):
        result = await self.session.execute(select(FollowUp).filter_by(id=followup_id))
        return result.scalar_one_or_none()

    async def get_followups_by_lead(self, lead_id: int, status: str = None) -> List[FollowUp]:
        query = select(FollowUp).filter_by(lead_id=lead_id)
        if status:
            query = query.filter_by(status=status)
        result = await self.session.execute(query.order_by(FollowUp.scheduled_for))
        return list(result.scalars().all())

    async def get_due_followups(self, until: datetime, limit: int = 50) -> List[FollowUp]:
        """Pending follow-ups scheduled at or before `until`, earliest first"""
        result = await self.session.execute(
            select(FollowUp)
            .where(and_(FollowUp.status == "pending", FollowUp.scheduled_for <= until))
            .order_by(FollowUp.scheduled_for)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def cancel_followups(
        self,
        lead_id: int = None,
        followup_types: Optional[Iterable[str]] = None,
        status: str = "cancelled",
    ) -> int:
        """Move pending follow-ups to `status`; returns how many changed"""
        conditions = [FollowUp.status == "pending"]
        if lead_id is not None:
            conditions.append(FollowUp.lead_id == lead_id)
        if followup_types:
            conditions.append(FollowUp.followup_type.in_(list(followup_types)))

        result = await self.session.execute(
            update(FollowUp).where(and_(*conditions)).values(status=status)
        )
        await self.session.commit()
        return result.rowcount or 0

    async def update_followup(self, followup_id: int, **fields):
        followup = await self.get_followup(followup_id)
        if not followup:
            return None
        for key, value in fields.items():
            setattr(followup, key, value)
        await self.session.commit()
        return followup

    async def count_followups(self, lead_id: int, followup_type: str = None, statuses: Iterable[str] = ("sent", "pending")) -> int:
        query = select(func.count(FollowUp.id)).where(
            and_(FollowUp.lead_id == lead_id, FollowUp.status.in_(list(statuses)))
        )
        if followup_type:
            query = query.where(FollowUp.followup_type == followup_type)
        result = await self.session.execute(query)
        return result.scalar() or 0

    async def get_last_sent_followup(self, lead_id: int):
        result = await self.session.execute(
            select(FollowUp)
            .where(and_(FollowUp.lead_id == lead_id, FollowUp.status == "sent"))
            .order_by(desc(FollowUp.sent_at))
            .limit(1)
        )
        return result.scalar_one_or_none()

    # =============================
    # HANDOFFS
    # =============================

    async def add_handoff(
        self,
        handoff_ref: str,
        reason: str,
        priority: str,
        tenant_id: str = None,
        conversation_id: int = None,
        lead_id: int = None,
    ):
        handoff = Handoff(
            handoff_ref=handoff_ref,
            reason=reason,
            priority=priority,
            tenant_id=tenant_id,
            conversation_id=conversation_id,
            lead_id=lead_id,
            status="pending",
        )
        self.session.add(handoff)
        await self.session.commit()
        await self.session.refresh(handoff)
        return handoff

    async def get_handoffs(self, tenant_id: str = None) -> List[Handoff]:
        query = select(Handoff).order_by(desc(Handoff.created_at))
        if tenant_id:
            query = query.filter_by(tenant_id=tenant_id)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    # =============================
    # BROADCASTS
    # =============================

    async def create_broadcast(self, tenant_id: str, name: str, template_name: str, recipients: List[dict], **fields):
        """Campaign plus one pending recipient per {'phone', 'name'}"""
        broadcast = Broadcast(
            tenant_id=tenant_id,
            name=name,
            template_name=template_name,
            status="draft",
            total_recipients=len(recipients),
            **fields,
        )
        self.session.add(broadcast)
        await self.session.flush()

        self.session.add_all([
            BroadcastRecipient(
                broadcast_id=broadcast.id,
                phone=r["phone"],
                name=r.get("name"),
                status="pending",
            )
            for r in recipients
        ])
        await self.session.commit()
        await self.session.refresh(broadcast)
        return broadcast

    async def get_broadcast(self, broadcast_id: int, tenant_id: str = None):
        query = select(Broadcast).filter_by(id=broadcast_id)
        if tenant_id:
            query = query.filter_by(tenant_id=tenant_id)
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def list_broadcasts(self, tenant_id: str) -> List[Broadcast]:
        result = await self.session.execute(
            select(Broadcast).filter_by(tenant_id=tenant_id).order_by(desc(Broadcast.created_at), desc(Broadcast.id))
        )
        return list(result.scalars().all())

    async def update_broadcast(self, broadcast_id: int, **fields):
        broadcast = await self.get_broadcast(broadcast_id)
        if not broadcast:
            return None
        for key, value in fields.items():
            setattr(broadcast, key, value)
        await self.session.commit()
        return broadcast

    async def get_broadcast_recipients(self, broadcast_id: int, status: str = None) -> List[BroadcastRecipient]:
        query = select(BroadcastRecipient).filter_by(broadcast_id=broadcast_id)
        if status:
            query = query.filter_by(status=status)
        result = await self.session.execute(query.order_by(BroadcastRecipient.id))
        return list(result.scalars().all())

    # =============================
    # BROADCAST RECIPIENTS
    # =============================

    async def get_recipient_by_wa_message_id(self, wa_message_id: str):
        result = await self.session.execute(
            select(BroadcastRecipient).filter_by(wa_message_id=wa_message_id)
        )
        return result.scalar_one_or_none()

    async def update_recipient(self, recipient: BroadcastRecipient, **fields):
        for key, value in fields.items():
            setattr(recipient, key, value)
        await self.session.commit()
        return recipient

    # =============================
    # TWILIO NUMBERS
    # =============================

    async def add_twilio_number(self, tenant_id: str, phone_number: str, twilio_sid: str, **fields):
        number = TwilioNumber(
            tenant_id=tenant_id,
            phone_number=phone_number,
            twilio_sid=twilio_sid,
            **fields
        )
        self.session.add(number)
        await self.session.commit()
        await self.session.refresh(number)
        return number

    async def get_twilio_number(self, number_id: int, tenant_id: str):
        result = await self.session.execute(
            select(TwilioNumber).filter_by(id=number_id, tenant_id=tenant_id)
        )
        return result.scalar_one_or_none()

    async def get_provisioned_numbers(self, tenant_id: str) -> List[TwilioNumber]:
        result = await self.session.execute(
            select(TwilioNumber)
            .where(and_(TwilioNumber.tenant_id == tenant_id, TwilioNumber.status != "released"))
            .order_by(desc(TwilioNumber.created_at), desc(TwilioNumber.id))
        )
        return list(result.scalars().all())

    async def set_verification_code(self, phone_number: str, code: str, expires_at: datetime) -> int:
        """Store a code on numbers waiting for WhatsApp verification"""
        result = await self.session.execute(
            update(TwilioNumber)
            .where(
                and_(
                    TwilioNumber.phone_number == phone_number,
                    TwilioNumber.status.in_(["active", "pending_whatsapp"]),
                )
            )
            .values(verification_code=code, verification_code_expires_at=expires_at)
        )
        await self.session.commit()
        return result.rowcount or 0

    async def update_twilio_number(self, number: TwilioNumber, **fields):
        for key, value in fields.items():
            setattr(number, key, value)
        await self.session.commit()
        return number
