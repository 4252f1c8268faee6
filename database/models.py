import uuid

from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, JSON, Boolean, Text, Float, UniqueConstraint
from sqlalchemy.orm import relationship
from database.db import Base
from utils.timeutils import utcnow


def new_uuid() -> str:
    return str(uuid.uuid4())


class BaseModel(Base):
    __abstract__ = True

    def __str__(self):
        fields = ", ".join(f"{k}={getattr(self, k)}" for k in self.__table__.columns.keys())
        return f"<{self.__class__.__name__}({fields})>"


class Tenant(BaseModel):
    __tablename__ = "tenants"

    id = Column(String(36), primary_key=True, default=new_uuid)
    name = Column(String, nullable=False)
    plan = Column(String, default="starter")  # starter/growth/pro/enterprise
    subscription_status = Column(String, default="trialing")  # trialing/active/past_due/canceled
    created_at = Column(DateTime, default=utcnow)

    users = relationship("User", back_populates="tenant")
    agent_config = relationship("AgentConfig", back_populates="tenant", uselist=False)


class User(BaseModel):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    password = Column(String, nullable=False)
    tenant_id = Column(String(36), ForeignKey("tenants.id", ondelete="SET NULL"), nullable=True)
    role = Column(String, default="owner")  # owner/admin/agent
    created_at = Column(DateTime, default=utcnow)

    tenant = relationship("Tenant", back_populates="users")


class AgentConfig(BaseModel):
    __tablename__ = "agent_configs"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(String(36), ForeignKey("tenants.id", ondelete="CASCADE"), unique=True)
    business_name = Column(String, nullable=True)
    business_description = Column(Text, nullable=True)
    products_info = Column(Text, nullable=True)
    system_prompt = Column(Text, nullable=True)
    tone = Column(String, default="professional")  # professional/friendly/casual/formal
    greeting = Column(Text, nullable=True)
    model = Column(String, nullable=True)

    tenant = relationship("Tenant", back_populates="agent_config")


class WhatsAppAccount(BaseModel):
    __tablename__ = "whatsapp_accounts"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(String(36), ForeignKey("tenants.id", ondelete="CASCADE"), index=True)
    phone_number_id = Column(String, unique=True, index=True, nullable=False)
    waba_id = Column(String, nullable=True)
    display_phone_number = Column(String, nullable=True)
    access_token_encrypted = Column(Text, nullable=False)
    status = Column(String, default="active")  # active/disconnected
    created_at = Column(DateTime, default=utcnow)

    tenant = relationship("Tenant")


class Lead(BaseModel):
    __tablename__ = "leads"
    __table_args__ = (UniqueConstraint("tenant_id", "phone", name="uq_leads_tenant_phone"),)

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(String(36), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=True, index=True)
    phone = Column(String, nullable=False)
    name = Column(String, default="Usuario")
    email = Column(String, nullable=True)
    company = Column(String, nullable=True)
    industry = Column(String, nullable=True)
    stage = Column(String, default="initial")  # initial/Cold/Warm/Hot/demo_scheduled/demo_completed/won/lost
    priority = Column(String, nullable=True)  # high/medium/low
    broadcast_classification = Column(String, nullable=True)  # hot/warm/cold/bot_autoresponse
    memory = Column(Text, nullable=True)

    opted_out = Column(Boolean, default=False)
    opted_out_at = Column(DateTime, nullable=True)

    # WhatsApp customer service window
    service_window_start = Column(DateTime, nullable=True)
    service_window_type = Column(String, nullable=True)  # standard/ctwa

    last_interaction = Column(DateTime, nullable=True)
    last_activity_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)

    conversations = relationship(
        "Conversation", back_populates="lead", cascade="all, delete-orphan"
    )

    followups = relationship(
        "FollowUp", back_populates="lead", cascade="all, delete-orphan"
    )


class Conversation(BaseModel):
    __tablename__ = "conversations"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(String(36), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=True, index=True)
    lead_id = Column(Integer, ForeignKey("leads.id", ondelete="CASCADE"), index=True)
    started_at = Column(DateTime, default=utcnow)
    ended_at = Column(DateTime, nullable=True)

    # Operator takeover
    bot_paused = Column(Boolean, default=False)
    paused_at = Column(DateTime, nullable=True)
    paused_by = Column(String, nullable=True)
    broadcast_suppressed = Column(Boolean, default=False)

    # Agent memory
    summary = Column(Text, nullable=True)
    agent_state = Column(JSON, nullable=True)

    lead = relationship("Lead", back_populates="conversations")
    messages = relationship(
        "Message", back_populates="conversation", cascade="all, delete-orphan"
    )


class Message(BaseModel):
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, index=True)
    conversation_id = Column(Integer, ForeignKey("conversations.id", ondelete="CASCADE"), index=True)
    lead_id = Column(Integer, ForeignKey("leads.id", ondelete="CASCADE"), nullable=True)
    role = Column(String, nullable=False)  # user/assistant
    content = Column(Text, nullable=False)
    wa_message_id = Column(String, nullable=True, index=True)
    sent_by = Column(String, nullable=True)  # operator email for manual replies
    extra_data = Column(JSON, nullable=True)  # interactive ids, media ids, flow responses
    created_at = Column(DateTime, default=utcnow, index=True)

    conversation = relationship("Conversation", back_populates="messages")


class FollowUp(BaseModel):
    __tablename__ = "followups"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(String(36), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=True)
    lead_id = Column(Integer, ForeignKey("leads.id", ondelete="CASCADE"), index=True)
    conversation_id = Column(Integer, ForeignKey("conversations.id", ondelete="SET NULL"), nullable=True)
    appointment_id = Column(String, nullable=True, index=True)
    followup_type = Column(String, nullable=False)
    scheduled_for = Column(DateTime, nullable=False, index=True)
    status = Column(String, default="pending")  # pending/sent/cancelled/failed/opted_out
    message = Column(Text, nullable=True)
    attempt = Column(Integer, default=1)
    context = Column(JSON, nullable=True)  # appointment date/time etc.
    sent_at = Column(DateTime, nullable=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow)

    lead = relationship("Lead", back_populates="followups")


class Handoff(BaseModel):
    __tablename__ = "handoffs"

    id = Column(Integer, primary_key=True, index=True)
    handoff_ref = Column(String, unique=True, index=True)  # ho_{ms}_{rand}
    tenant_id = Column(String(36), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=True)
    conversation_id = Column(Integer, ForeignKey("conversations.id", ondelete="SET NULL"), nullable=True)
    lead_id = Column(Integer, ForeignKey("leads.id", ondelete="SET NULL"), nullable=True)
    reason = Column(String, nullable=False)
    priority = Column(String, nullable=False)
    status = Column(String, default="pending")  # pending/resolved
    created_at = Column(DateTime, default=utcnow)


class Broadcast(BaseModel):
    __tablename__ = "broadcasts"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(String(36), ForeignKey("tenants.id", ondelete="CASCADE"), index=True)
    name = Column(String, nullable=False)
    template_name = Column(String, nullable=True)
    template_language = Column(String, default="es")
    template_components = Column(JSON, nullable=True)
    suppress_bot = Column(Boolean, default=False)
    status = Column(String, default="draft")  # draft/sending/completed/failed
    total_recipients = Column(Integer, default=0)
    sent_count = Column(Integer, default=0)
    failed_count = Column(Integer, default=0)
    created_at = Column(DateTime, default=utcnow)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    recipients = relationship(
        "BroadcastRecipient", back_populates="broadcast", cascade="all, delete-orphan"
    )


class BroadcastRecipient(BaseModel):
    __tablename__ = "broadcast_recipients"

    id = Column(Integer, primary_key=True, index=True)
    broadcast_id = Column(Integer, ForeignKey("broadcasts.id", ondelete="CASCADE"), index=True)
    lead_id = Column(Integer, ForeignKey("leads.id", ondelete="SET NULL"), nullable=True)
    phone = Column(String, nullable=False)
    name = Column(String, nullable=True)
    wa_message_id = Column(String, nullable=True, index=True)
    status = Column(String, default="pending")  # pending/sent/delivered/read/failed
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    sent_at = Column(DateTime, nullable=True)
    delivered_at = Column(DateTime, nullable=True)
    read_at = Column(DateTime, nullable=True)

    broadcast = relationship("Broadcast", back_populates="recipients")


class TwilioNumber(BaseModel):
    __tablename__ = "twilio_numbers"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(String(36), ForeignKey("tenants.id", ondelete="CASCADE"), index=True)
    phone_number = Column(String, nullable=False, index=True)
    twilio_sid = Column(String, nullable=False)
    friendly_name = Column(String, nullable=True)
    country_code = Column(String(2), default="MX")
    monthly_cost = Column(Float, nullable=True)
    status = Column(String, default="pending_whatsapp")  # active/pending_whatsapp/whatsapp_connected/released/error
    verification_code = Column(String, nullable=True)
    verification_code_expires_at = Column(DateTime, nullable=True)
    released_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)
