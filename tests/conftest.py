"""
Pytest configuration and fixtures
"""

import os

# Must be set before config is imported
os.environ["ENVIRONMENT"] = "testing"
os.environ["ENCRYPTION_KEY"] = "0123456789abcdef" * 4
os.environ["SECRET_KEY"] = "test-secret"
os.environ["WHATSAPP_VERIFY_TOKEN"] = "verify-me"
os.environ["WHATSAPP_APP_SECRET"] = ""
os.environ["CRON_SECRET"] = "cron-secret"
os.environ["FALLBACK_PHONE"] = "5215500000001"
os.environ["FALLBACK_PHONE_2"] = ""
os.environ["TWILIO_ACCOUNT_SID"] = ""
os.environ["TWILIO_AUTH_TOKEN"] = ""

import pytest
from typing import AsyncGenerator
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database.db import Base
from database.crud import DBManager
from database import models  # noqa: F401
from services.tenant_service import clear_tenant_cache
from utils.cache import kv_store
from utils.crypto import encrypt_access_token
from utils.rate_limiter import rate_limiter
from utils.secure import create_jwt_token, hash_password


@pytest.fixture(autouse=True)
def reset_shared_state():
    """Singletons keep state between tests"""
    kv_store.clear()
    rate_limiter.requests.clear()
    clear_tenant_cache()
    yield
    kv_store.clear()
    rate_limiter.requests.clear()
    clear_tenant_cache()


@pytest.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Create test database session"""
    # Use in-memory SQLite for tests
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    # Create tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    # Create session
    async_session = sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False
    )

    async with async_session() as session:
        yield session

    # Cleanup
    await engine.dispose()


@pytest.fixture
async def db_manager(db_session: AsyncSession) -> DBManager:
    """Create DBManager instance"""
    return DBManager(db_session)


@pytest.fixture
async def tenant(db_manager: DBManager):
    """Tenant with an active WhatsApp account"""
    tenant = await db_manager.create_tenant(name="Acme")
    await db_manager.add_whatsapp_account(
        tenant_id=tenant.id,
        phone_number_id="PNID1",
        access_token_encrypted=encrypt_access_token("tenant-token"),
        display_phone_number="+5215512345678",
    )
    return tenant


@pytest.fixture
async def sample_lead(db_manager: DBManager, tenant):
    """Create sample lead for testing"""
    return await db_manager.add_lead(
        phone="5215511111111",
        name="Ana López",
        tenant_id=tenant.id,
        email="ana@example.com",
    )


@pytest.fixture
async def conversation(db_manager: DBManager, sample_lead):
    return await db_manager.create_conversation(sample_lead.id, sample_lead.tenant_id)


@pytest.fixture
async def user(db_manager: DBManager, tenant):
    return await db_manager.create_user("owner@acme.mx", hash_password("s3cret-pass"), tenant_id=tenant.id)


@pytest.fixture
def auth_headers(user):
    token = create_jwt_token(user.id, user.email, user.tenant_id)
    return {"Authorization": f"Bearer {token}"}


def make_text_payload(text, message_id="wamid.1", phone="5215511111111", name="Ana López", phone_number_id="PNID1", **extra):
    """WhatsApp Cloud API delivery with one text message"""
    message = {
        "from": phone,
        "id": message_id,
        "timestamp": "1735689600",
        "type": "text",
        "text": {"body": text},
    }
    message.update(extra)
    return {
        "object": "whatsapp_business_account",
        "entry": [{
            "id": "WABA1",
            "changes": [{
                "field": "messages",
                "value": {
                    "messaging_product": "whatsapp",
                    "metadata": {"display_phone_number": "5215512345678", "phone_number_id": phone_number_id},
                    "contacts": [{"profile": {"name": name}, "wa_id": phone}],
                    "messages": [message],
                },
            }],
        }],
    }


def make_list_reply_payload(reply_id, title, message_id="wamid.list", phone="5215511111111", phone_number_id="PNID1"):
    payload = make_text_payload("", message_id=message_id, phone=phone, phone_number_id=phone_number_id)
    message = payload["entry"][0]["changes"][0]["value"]["messages"][0]
    message.pop("text")
    message["type"] = "interactive"
    message["interactive"] = {"type": "list_reply", "list_reply": {"id": reply_id, "title": title}}
    return payload


@pytest.fixture
def text_payload():
    return make_text_payload


@pytest.fixture
def list_reply_payload():
    return make_list_reply_payload
