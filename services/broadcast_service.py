"""
Broadcast campaigns - load recipients from a CSV upload, send an approved
template to each of them in paced batches and, when the campaign asks for
it, keep the bot quiet on the replies so they can be graded instead.
"""

import asyncio
import csv
import io
import json
import re
from typing import Dict, List, Optional

from database.crud import DBManager
from database.models import Broadcast, BroadcastRecipient
from services.bot_pause import suppress_bot_for_broadcast
from services.whatsapp_service import WhatsAppCredentials, send_template
from utils.errors import BroadcastError, BroadcastStateError
from utils.logger import get_logger
from utils.timeutils import isoformat, utcnow

log = get_logger("broadcasts")

SEND_BATCH_SIZE = 50
BATCH_PAUSE_SECONDS = 1.0
MIN_PHONE_DIGITS = 8

NAME_PLACEHOLDER = '{{csv_name}}'
DEFAULT_RECIPIENT_NAME = 'Cliente'

HEADER_HINTS = ('phone', 'telefono', 'nombre', 'name')
PHONE_COLUMNS = ('phone', 'telefono', 'tel', 'numero', 'whatsapp')
NAME_COLUMNS = ('name', 'nombre')
LOCKED_STATUSES = ('sending', 'completed')


# =============================
# RECIPIENTS
# =============================

def _detect_delimiter(first_line: str) -> str:
    if '\t' in first_line:
        return '\t'
    if ';' in first_line:
        return ';'
    return ','


def clean_phone(raw: str) -> str:
    """Digits and a leading + only"""
    digits = re.sub(r'[^\d+]', '', raw or '')
    return ('+' if digits.startswith('+') else '') + digits.replace('+', '')


def parse_recipients_csv(text: str) -> List[Dict]:
    """
    Parse an uploaded contact list

    Comma, semicolon and tab separated files are accepted, with or without
    a header row. Quoted fields may span lines. Phones with fewer than 8
    digits are skipped, as are repeats of a phone already seen.

    Returns:
        [{'phone': ..., 'name': ... or None}]
    """
    text = (text or '').lstrip('\ufeff')
    if not text.strip():
        return []

    delimiter = _detect_delimiter(text.splitlines()[0])
    rows = [
        [cell.strip() for cell in row]
        for row in csv.reader(io.StringIO(text), delimiter=delimiter)
        if any(cell.strip() for cell in row)
    ]
    if not rows:
        return []

    phone_idx, name_idx = 0, None
    header = [cell.lower() for cell in rows[0]]
    if any(hint in ' '.join(header) for hint in HEADER_HINTS):
        rows = rows[1:]
        phone_idx = next((i for i, h in enumerate(header) if h in PHONE_COLUMNS), 0)
        name_idx = next((i for i, h in enumerate(header) if h in NAME_COLUMNS), None)

    recipients = []
    seen = set()
    for row in rows:
        phone = clean_phone(row[phone_idx] if phone_idx < len(row) else '')
        if len(phone.lstrip('+')) < MIN_PHONE_DIGITS or phone in seen:
            continue
        seen.add(phone)

        name = row[name_idx] if name_idx is not None and name_idx < len(row) else ''
        recipients.append({'phone': phone, 'name': name or None})

    return recipients


def parse_components(raw: Optional[str]) -> Optional[List[dict]]:
    """Template components posted as a JSON string"""
    if not raw:
        return None
    try:
        components = json.loads(raw)
    except ValueError:
        raise BroadcastError("Invalid components JSON")
    if not isinstance(components, list):
        raise BroadcastError("Components must be a JSON list")
    return components


def build_recipient_components(components: Optional[List[dict]], name: Optional[str]) -> Optional[List[dict]]:
    """Copy of the template components with {{csv_name}} replaced by the recipient's name"""
    if not components:
        return None

    built = []
    for component in components:
        parameters = []
        for param in component.get('parameters', []):
            if param.get('text') == NAME_PLACEHOLDER:
                param = {**param, 'text': name or DEFAULT_RECIPIENT_NAME}
            parameters.append(dict(param))
        built.append({**component, 'parameters': parameters})
    return built


# =============================
# CAMPAIGNS
# =============================

async def create_broadcast(
    db: DBManager,
    tenant_id: str,
    name: str,
    template_name: str,
    csv_text: str,
    language: str = 'es',
    components: Optional[List[dict]] = None,
    suppress_bot: bool = False,
) -> Broadcast:
    if not name or not template_name:
        raise BroadcastError("name and template_name are required")

    recipients = parse_recipients_csv(csv_text)
    if not recipients:
        raise BroadcastError("No valid recipients found in CSV")

    broadcast = await db.create_broadcast(
        tenant_id,
        name,
        template_name,
        recipients,
        template_language=language or 'es',
        template_components=components,
        suppress_bot=suppress_bot,
    )
    log.info(
        "Broadcast created",
        broadcast_id=broadcast.id,
        tenant_id=tenant_id,
        recipients=len(recipients),
        suppress_bot=suppress_bot,
    )
    return broadcast


async def _suppress_replies(db: DBManager, tenant_id: str, recipient: BroadcastRecipient):
    """Link the recipient to a lead and silence the bot on its conversation"""
    lead = await db.get_or_create_lead(recipient.phone.lstrip('+'), recipient.name or 'Usuario', tenant_id)
    conversation = await db.get_or_create_active_conversation(lead.id, tenant_id)
    await suppress_bot_for_broadcast(db, conversation.id)
    await db.update_recipient(recipient, lead_id=lead.id)


async def send_broadcast(
    db: DBManager,
    broadcast: Broadcast,
    credentials: WhatsAppCredentials,
    batch_size: int = SEND_BATCH_SIZE,
    pause_seconds: float = BATCH_PAUSE_SECONDS,
) -> Dict:
    """
    Send the campaign template to every pending recipient

    Templates go out concurrently within a batch; batches are paced by
    `pause_seconds`. Counters are saved after every batch so a failed run
    can be resumed with the recipients still pending.

    Raises:
        BroadcastStateError if the campaign is already sending or completed
    """
    if broadcast.status in LOCKED_STATUSES:
        raise BroadcastStateError(f"Campaign is already {broadcast.status}")

    broadcast_id = broadcast.id
    tenant_id = broadcast.tenant_id
    template_name = broadcast.template_name
    language = broadcast.template_language or 'es'
    components = broadcast.template_components
    suppress = bool(broadcast.suppress_bot)
    sent = broadcast.sent_count or 0
    failed = broadcast.failed_count or 0

    await db.update_broadcast(broadcast_id, status='sending', started_at=utcnow())
    recipients = await db.get_broadcast_recipients(broadcast_id, status='pending')
    log.info("Broadcast sending", broadcast_id=broadcast_id, pending=len(recipients))

    try:
        for start in range(0, len(recipients), batch_size):
            batch = recipients[start:start + batch_size]
            results = await asyncio.gather(*(
                send_template(
                    recipient.phone,
                    template_name,
                    language,
                    build_recipient_components(components, recipient.name),
                    credentials,
                )
                for recipient in batch
            ))

            for recipient, result in zip(batch, results):
                if result.success:
                    sent += 1
                    await db.update_recipient(
                        recipient, status='sent', wa_message_id=result.message_id, sent_at=utcnow()
                    )
                    if suppress:
                        await _suppress_replies(db, tenant_id, recipient)
                else:
                    failed += 1
                    await db.update_recipient(recipient, status='failed', error_message=result.error)

            await db.update_broadcast(broadcast_id, sent_count=sent, failed_count=failed)

            if start + batch_size < len(recipients):
                await asyncio.sleep(pause_seconds)

    except Exception as e:
        log.error("Broadcast send aborted", broadcast_id=broadcast_id, error=str(e), exc_info=True)
        await db.session.rollback()
        await db.update_broadcast(broadcast_id, status='failed')
        raise

    await db.update_broadcast(
        broadcast_id,
        status='completed',
        sent_count=sent,
        failed_count=failed,
        completed_at=utcnow(),
    )
    log.info("Broadcast completed", broadcast_id=broadcast_id, sent=sent, failed=failed)
    return {'sent': sent, 'failed': failed}


def serialize_recipient(recipient: BroadcastRecipient) -> dict:
    return {
        'id': recipient.id,
        'phone': recipient.phone,
        'name': recipient.name,
        'status': recipient.status,
        'lead_id': recipient.lead_id,
        'wa_message_id': recipient.wa_message_id,
        'error_message': recipient.error_message,
        'sent_at': isoformat(recipient.sent_at),
        'delivered_at': isoformat(recipient.delivered_at),
        'read_at': isoformat(recipient.read_at),
    }


def serialize_broadcast(broadcast: Broadcast) -> dict:
    return {
        'id': broadcast.id,
        'tenant_id': broadcast.tenant_id,
        'name': broadcast.name,
        'template_name': broadcast.template_name,
        'template_language': broadcast.template_language,
        'template_components': broadcast.template_components,
        'suppress_bot': bool(broadcast.suppress_bot),
        'status': broadcast.status,
        'total_recipients': broadcast.total_recipients,
        'sent_count': broadcast.sent_count,
        'failed_count': broadcast.failed_count,
        'created_at': isoformat(broadcast.created_at),
        'started_at': isoformat(broadcast.started_at),
        'completed_at': isoformat(broadcast.completed_at),
    }
