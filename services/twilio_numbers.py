"""
Twilio number provisioning - buy SMS-capable numbers for tenants and
capture the WhatsApp verification code Meta sends to them by SMS.
"""

import asyncio
import re
import time
from datetime import timedelta
from typing import List, Optional

from twilio.base.exceptions import TwilioRestException
from twilio.rest import Client

from config.environments import current_config
from database.crud import DBManager
from database.models import TwilioNumber
from utils.errors import TwilioNotConfiguredError, TwilioProvisioningError
from utils.logger import get_logger
from utils.timeutils import isoformat, utcnow

log = get_logger("twilio")

MONTHLY_PRICE = {'MX': 3.00, 'US': 1.15}
SEARCH_LIMIT = 10
VERIFICATION_CODE_TTL = timedelta(minutes=10)
VERIFICATION_CODE_PATTERN = re.compile(r'\b(\d{6})\b')
CODE_STATUSES = ('active', 'pending_whatsapp')

_client: Optional[Client] = None


def get_twilio_client() -> Client:
    """Lazily built Twilio REST client"""
    global _client
    if _client is None:
        if not current_config.TWILIO_ACCOUNT_SID or not current_config.TWILIO_AUTH_TOKEN:
            raise TwilioNotConfiguredError("Missing TWILIO_ACCOUNT_SID or TWILIO_AUTH_TOKEN")
        _client = Client(current_config.TWILIO_ACCOUNT_SID, current_config.TWILIO_AUTH_TOKEN)
    return _client


def country_for(phone_number: str) -> str:
    return 'MX' if phone_number.startswith('+52') else 'US'


def extract_verification_code(body: str) -> Optional[str]:
    match = VERIFICATION_CODE_PATTERN.search(body or '')
    return match.group(1) if match else None


def serialize_number(number: TwilioNumber) -> dict:
    return {
        'id': number.id,
        'tenant_id': number.tenant_id,
        'twilio_sid': number.twilio_sid,
        'phone_number': number.phone_number,
        'friendly_name': number.friendly_name,
        'country_code': number.country_code,
        'status': number.status,
        'monthly_cost': number.monthly_cost,
        'created_at': isoformat(number.created_at),
    }


async def search_available_numbers(country: str = 'MX', area_code: str = None, contains: str = None) -> List[dict]:
    """Up to 10 SMS-enabled numbers; MX mobile, US local"""
    client = get_twilio_client()
    params = {'sms_enabled': True, 'limit': SEARCH_LIMIT}
    if area_code:
        params['area_code'] = area_code
    if contains:
        params['contains'] = contains

    available = client.available_phone_numbers(country)
    listing = available.mobile if country == 'MX' else available.local

    try:
        numbers = await asyncio.to_thread(listing.list, **params)
    except TwilioRestException as e:
        raise TwilioProvisioningError(f"Number search failed: {e.msg}") from e

    price = MONTHLY_PRICE.get(country, MONTHLY_PRICE['US'])
    return [
        {
            'phone_number': n.phone_number,
            'friendly_name': n.friendly_name,
            'locality': n.locality or '',
            'region': n.region or '',
            'monthly_price': price,
        }
        for n in numbers
    ]


async def purchase_number(db: DBManager, tenant_id: str, phone_number: str) -> TwilioNumber:
    """Buy the number and point its SMS webhook at us"""
    client = get_twilio_client()

    try:
        purchased = await asyncio.to_thread(
            client.incoming_phone_numbers.create,
            phone_number=phone_number,
            sms_url=f"{current_config.APP_BASE_URL.rstrip('/')}/api/twilio/sms/webhook",
            sms_method='POST',
            friendly_name=f"Loomi - {tenant_id[:8]}",
        )
    except TwilioRestException as e:
        log.error("Twilio purchase failed", tenant_id=tenant_id, phone_number=phone_number, error=e.msg)
        raise TwilioProvisioningError(f"Purchase failed: {e.msg}") from e

    country = country_for(phone_number)
    number = await db.add_twilio_number(
        tenant_id=tenant_id,
        phone_number=purchased.phone_number,
        twilio_sid=purchased.sid,
        friendly_name=purchased.friendly_name,
        country_code=country,
        monthly_cost=MONTHLY_PRICE[country],
        status='pending_whatsapp',
    )
    log.info("Twilio number purchased", tenant_id=tenant_id, phone_number=number.phone_number)
    return number


async def mock_purchase_number(db: DBManager, tenant_id: str, phone_number: str) -> TwilioNumber:
    """Record a number without calling Twilio (development)"""
    country = country_for(phone_number)
    number = await db.add_twilio_number(
        tenant_id=tenant_id,
        phone_number=phone_number,
        twilio_sid=f"MOCK_{int(time.time() * 1000)}",
        friendly_name=f"Mock - {phone_number}",
        country_code=country,
        monthly_cost=MONTHLY_PRICE[country],
        status='pending_whatsapp',
    )
    log.info("Mock number recorded", tenant_id=tenant_id, phone_number=phone_number)
    return number


async def release_number(db: DBManager, tenant_id: str, number_id: int) -> Optional[TwilioNumber]:
    number = await db.get_twilio_number(number_id, tenant_id)
    if not number or number.status == 'released':
        return None

    if not number.twilio_sid.startswith('MOCK_'):
        client = get_twilio_client()
        try:
            await asyncio.to_thread(client.incoming_phone_numbers(number.twilio_sid).delete)
        except TwilioRestException as e:
            raise TwilioProvisioningError(f"Release failed: {e.msg}") from e

    number = await db.update_twilio_number(number, status='released', released_at=utcnow())
    log.info("Twilio number released", tenant_id=tenant_id, number_id=number_id)
    return number


async def get_provisioned_numbers(db: DBManager, tenant_id: str) -> List[TwilioNumber]:
    return await db.get_provisioned_numbers(tenant_id)


async def update_verification_code(db: DBManager, phone_number: str, code: str) -> int:
    """Store a code for 10 minutes on numbers awaiting verification"""
    updated = await db.set_verification_code(phone_number, code, utcnow() + VERIFICATION_CODE_TTL)
    if not updated:
        log.warning("Verification code for unknown number", phone_number=phone_number)
    return updated


async def get_verification_code(db: DBManager, tenant_id: str, number_id: int) -> dict:
    number = await db.get_twilio_number(number_id, tenant_id)
    if not number:
        return {'code': None, 'expires_at': None, 'expired': False}

    expires_at = number.verification_code_expires_at
    expired = bool(expires_at and expires_at < utcnow())

    return {
        'code': None if expired else number.verification_code,
        'expires_at': isoformat(expires_at),
        'expired': expired,
    }
