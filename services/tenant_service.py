"""
Tenant routing - map an inbound WhatsApp phone_number_id to its tenant,
decrypted credentials and agent configuration.
"""

import time
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

from database.crud import DBManager
from services.whatsapp_service import WhatsAppCredentials
from utils.crypto import decrypt_access_token
from utils.errors import EncryptionError
from utils.logger import get_logger

log = get_logger("tenant")

TENANT_CACHE_TTL = 300  # seconds

ACTIVE_SUBSCRIPTION_STATUSES = {'active', 'trialing'}


@dataclass
class TenantContext:
    tenant_id: str
    tenant_name: str
    plan: str
    subscription_status: str
    credentials: WhatsAppCredentials
    agent_config: Dict = field(default_factory=dict)


# {phone_number_id: (expires_at, TenantContext)}
_tenant_cache: Dict[str, Tuple[float, TenantContext]] = {}


def _agent_config_dict(config) -> dict:
    if not config:
        return {}
    return {
        'business_name': config.business_name,
        'business_description': config.business_description,
        'products_info': config.products_info,
        'system_prompt': config.system_prompt,
        'tone': config.tone,
        'greeting': config.greeting,
        'model': config.model,
    }


async def get_tenant_from_phone_number_id(db: DBManager, phone_number_id: str) -> Optional[TenantContext]:
    """Resolve the tenant that owns a WhatsApp number (cached 5 minutes)"""
    if not phone_number_id:
        return None

    cached = _tenant_cache.get(phone_number_id)
    if cached and cached[0] > time.monotonic():
        return cached[1]

    account = await db.get_active_whatsapp_account(phone_number_id)
    if not account:
        log.warning("No active WhatsApp account for phone number", phone_number_id=phone_number_id)
        return None

    tenant = await db.get_tenant(account.tenant_id)
    if not tenant:
        log.warning("WhatsApp account has no tenant", phone_number_id=phone_number_id)
        return None

    try:
        access_token = decrypt_access_token(account.access_token_encrypted)
    except EncryptionError as e:
        log.error("Could not decrypt tenant access token", tenant_id=tenant.id, error=str(e))
        return None

    agent_config = await db.get_agent_config(tenant.id)

    context = TenantContext(
        tenant_id=tenant.id,
        tenant_name=tenant.name,
        plan=tenant.plan,
        subscription_status=tenant.subscription_status,
        credentials=WhatsAppCredentials(
            phone_number_id=account.phone_number_id,
            access_token=access_token,
            tenant_id=tenant.id,
        ),
        agent_config=_agent_config_dict(agent_config),
    )

    _tenant_cache[phone_number_id] = (time.monotonic() + TENANT_CACHE_TTL, context)
    return context


async def get_tenant_credentials(db: DBManager, tenant_id: str) -> Optional[WhatsAppCredentials]:
    """Decrypted WhatsApp credentials for a tenant's active account"""
    account = await db.get_whatsapp_account_for_tenant(tenant_id)
    if not account:
        return None

    try:
        access_token = decrypt_access_token(account.access_token_encrypted)
    except EncryptionError as e:
        log.error("Could not decrypt tenant access token", tenant_id=tenant_id, error=str(e))
        return None

    return WhatsAppCredentials(
        phone_number_id=account.phone_number_id,
        access_token=access_token,
        tenant_id=tenant_id,
    )


def clear_tenant_cache(phone_number_id: Optional[str] = None):
    if phone_number_id:
        _tenant_cache.pop(phone_number_id, None)
    else:
        _tenant_cache.clear()


def is_subscription_active(tenant) -> bool:
    status = getattr(tenant, 'subscription_status', None)
    return status in ACTIVE_SUBSCRIPTION_STATUSES
