"""
WhatsApp Service - WhatsApp Business Cloud API (Graph API)
"""

import asyncio
from dataclasses import dataclass
from typing import List, Optional, Tuple

import requests

from config.environments import current_config
from utils.errors import WhatsAppSendError
from utils.logger import get_logger
from utils.retry_handler import retry_handler

log = get_logger("whatsapp_service")

GRAPH_API_BASE = "https://graph.facebook.com"
MAX_LIST_ROWS = 10
MAX_ROW_TITLE = 24


@dataclass
class WhatsAppCredentials:
    phone_number_id: str
    access_token: str
    tenant_id: Optional[str] = None


def default_credentials() -> Optional[WhatsAppCredentials]:
    """Platform credentials from the environment, if configured"""
    if current_config.WHATSAPP_PHONE_ID and current_config.WHATSAPP_ACCESS_TOKEN:
        return WhatsAppCredentials(
            phone_number_id=current_config.WHATSAPP_PHONE_ID,
            access_token=current_config.WHATSAPP_ACCESS_TOKEN,
        )
    return None


def _messages_url(phone_number_id: str) -> str:
    return f"{GRAPH_API_BASE}/{current_config.WHATSAPP_API_VERSION}/{phone_number_id}/messages"


def _post(credentials: WhatsAppCredentials, payload: dict) -> dict:
    response = requests.post(
        _messages_url(credentials.phone_number_id),
        json=payload,
        headers={
            "Authorization": f"Bearer {credentials.access_token}",
            "Content-Type": "application/json",
        },
        timeout=current_config.WHATSAPP_TIMEOUT,
    )

    if response.status_code >= 400:
        raise WhatsAppSendError(
            f"Graph API error {response.status_code}: {response.text[:300]}",
            status_code=response.status_code,
        )

    return response.json() if response.content else {}


async def _send_with_error(payload: dict, credentials: Optional[WhatsAppCredentials]) -> Tuple[Optional[dict], Optional[str]]:
    """POST to the Graph API with retries; (response, None) or (None, error)"""
    credentials = credentials or default_credentials()
    if not credentials:
        log.error("WhatsApp credentials not configured")
        return None, "WhatsApp credentials not configured"

    async def attempt():
        return await asyncio.to_thread(_post, credentials, payload)

    try:
        return await retry_handler.retry_with_exponential_backoff(attempt), None
    except (WhatsAppSendError, requests.RequestException) as e:
        log.error("WhatsApp send failed", error=str(e), message_type=payload.get("type"))
        return None, str(e)


async def _send(payload: dict, credentials: Optional[WhatsAppCredentials]) -> Optional[dict]:
    """POST to the Graph API with retries; None on failure"""
    result, _ = await _send_with_error(payload, credentials)
    return result


async def send_text(to: str, text: str, credentials: Optional[WhatsAppCredentials] = None) -> bool:
    """
    Send a plain text message

    Args:
        to: Recipient phone in international format (digits, optional +)
        text: Message body
        credentials: Tenant credentials; platform credentials when omitted
    """
    result = await send_text_with_id(to, text, credentials)
    return result is not None


async def send_text_with_id(to: str, text: str, credentials: Optional[WhatsAppCredentials] = None) -> Optional[str]:
    """Send text and return the WhatsApp message id (None on failure)"""
    payload = {
        "messaging_product": "whatsapp",
        "recipient_type": "individual",
        "to": to.lstrip('+'),
        "type": "text",
        "text": {"preview_url": False, "body": text},
    }
    result = await _send(payload, credentials)
    if result is None:
        return None

    messages = result.get("messages") or [{}]
    message_id = messages[0].get("id", "")
    log.info("WhatsApp message sent", to=to, message_id=message_id)
    return message_id


async def mark_as_read(message_id: str, credentials: Optional[WhatsAppCredentials] = None) -> bool:
    payload = {
        "messaging_product": "whatsapp",
        "status": "read",
        "message_id": message_id,
    }
    return await _send(payload, credentials) is not None


async def send_schedule_list(
    to: str,
    body: str,
    slots: List[dict],
    credentials: Optional[WhatsAppCredentials] = None,
    button_text: str = "Ver horarios",
) -> bool:
    """
    Send an interactive list of time slots

    Args:
        slots: [{'id': ..., 'title': ..., 'description': ...}]; at most
            10 rows are sent and titles are cut to 24 characters
    """
    rows = []
    for slot in slots[:MAX_LIST_ROWS]:
        row = {"id": str(slot["id"]), "title": str(slot["title"])[:MAX_ROW_TITLE]}
        if slot.get("description"):
            row["description"] = str(slot["description"])[:72]
        rows.append(row)

    if not rows:
        return False

    payload = {
        "messaging_product": "whatsapp",
        "recipient_type": "individual",
        "to": to.lstrip('+'),
        "type": "interactive",
        "interactive": {
            "type": "list",
            "body": {"text": body},
            "action": {
                "button": button_text,
                "sections": [{"title": "Horarios disponibles", "rows": rows}],
            },
        },
    }
    return await _send(payload, credentials) is not None


@dataclass
class TemplateSendResult:
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


async def send_template(
    to: str,
    template_name: str,
    language: str = "es",
    components: Optional[List[dict]] = None,
    credentials: Optional[WhatsAppCredentials] = None,
) -> TemplateSendResult:
    """
    Send an approved message template (allowed outside the service window)

    Args:
        components: Graph API template components (header/body parameters)
    """
    template = {"name": template_name, "language": {"code": language}}
    if components:
        template["components"] = components

    payload = {
        "messaging_product": "whatsapp",
        "recipient_type": "individual",
        "to": to.lstrip('+'),
        "type": "template",
        "template": template,
    }
    result, error = await _send_with_error(payload, credentials)
    if result is None:
        return TemplateSendResult(success=False, error=error)

    messages = result.get("messages") or [{}]
    message_id = messages[0].get("id", "")
    log.info("WhatsApp template sent", to=to, template=template_name, message_id=message_id)
    return TemplateSendResult(success=True, message_id=message_id)
