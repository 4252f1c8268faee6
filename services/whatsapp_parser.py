"""
Parse WhatsApp Cloud API webhook payloads
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

DEFAULT_CONTACT_NAME = "Usuario"

MEDIA_PLACEHOLDERS = {
    "image": "[Archivo multimedia]",
    "video": "[Archivo multimedia]",
    "document": "[Archivo multimedia]",
    "audio": "[Audio]",
    "voice": "[Audio]",
    "sticker": "[Sticker]",
    "location": "[Ubicación]",
    "contacts": "[Contacto]",
}


@dataclass
class ParsedMessage:
    message_id: str
    phone: str
    name: str
    text: str
    timestamp: datetime
    message_type: str
    phone_number_id: Optional[str] = None
    interactive_id: Optional[str] = None
    interactive_title: Optional[str] = None
    flow_response: Optional[dict] = None
    media_id: Optional[str] = None
    media_type: Optional[str] = None
    referral: Optional[dict] = None

    @property
    def from_ad(self) -> bool:
        """Message started from a click-to-WhatsApp ad"""
        return bool(self.referral and self.referral.get("ctwa_clid"))


@dataclass
class StatusUpdate:
    wa_message_id: str
    status: str
    recipient_id: Optional[str] = None
    errors: List[dict] = field(default_factory=list)


def _first_value(payload: dict) -> dict:
    try:
        return payload["entry"][0]["changes"][0]["value"] or {}
    except (KeyError, IndexError, TypeError):
        return {}


def _parse_timestamp(raw) -> datetime:
    try:
        return datetime.fromtimestamp(int(raw), tz=timezone.utc).replace(tzinfo=None)
    except (TypeError, ValueError):
        return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_webhook_message(payload: dict) -> Optional[ParsedMessage]:
    """First inbound message of a webhook delivery, or None for status-only events"""
    value = _first_value(payload)
    messages = value.get("messages") or []
    if not messages:
        return None

    message = messages[0]
    contacts = value.get("contacts") or [{}]
    metadata = value.get("metadata") or {}
    message_type = message.get("type", "unknown")

    parsed = ParsedMessage(
        message_id=message.get("id", ""),
        phone=message.get("from", ""),
        name=(contacts[0].get("profile") or {}).get("name") or DEFAULT_CONTACT_NAME,
        text="",
        timestamp=_parse_timestamp(message.get("timestamp")),
        message_type=message_type,
        phone_number_id=metadata.get("phone_number_id"),
        referral=message.get("referral"),
    )

    if message_type == "text":
        parsed.text = (message.get("text") or {}).get("body", "")

    elif message_type == "interactive":
        interactive = message.get("interactive") or {}
        interactive_type = interactive.get("type")
        if interactive_type in ("list_reply", "button_reply"):
            reply = interactive.get(interactive_type) or {}
            parsed.interactive_id = reply.get("id")
            parsed.interactive_title = reply.get("title")
            parsed.text = reply.get("title", "")
        elif interactive_type == "nfm_reply":
            reply = interactive.get("nfm_reply") or {}
            parsed.text = reply.get("body") or "[Flow completado]"
            response_json = reply.get("response_json")
            if response_json:
                try:
                    parsed.flow_response = json.loads(response_json)
                except (TypeError, ValueError):
                    parsed.flow_response = {"raw": response_json}
        else:
            parsed.text = f"[{message_type}]"

    elif message_type == "button":
        button = message.get("button") or {}
        parsed.text = button.get("text") or button.get("payload", "")

    elif message_type in MEDIA_PLACEHOLDERS:
        parsed.text = MEDIA_PLACEHOLDERS[message_type]
        media = message.get(message_type) or {}
        if message_type in ("image", "video", "document", "audio", "voice", "sticker"):
            parsed.media_id = media.get("id")
            parsed.media_type = message_type

    else:
        parsed.text = f"[{message_type}]"

    return parsed


def parse_status_updates(payload: dict) -> List[StatusUpdate]:
    value = _first_value(payload)
    updates = []
    for status in value.get("statuses") or []:
        if not status.get("id") or not status.get("status"):
            continue
        updates.append(
            StatusUpdate(
                wa_message_id=status["id"],
                status=status["status"],
                recipient_id=status.get("recipient_id"),
                errors=status.get("errors") or [],
            )
        )
    return updates
