"""
Handoff Service - escalate a conversation to a human operator over WhatsApp.

The operator (FALLBACK_PHONE) gets a summary of the lead and the last few
messages, the client gets a holding message, and critical/urgent cases
also reach the backup operator (FALLBACK_PHONE_2).
"""

import asyncio
import re
import secrets
import string
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from config.environments import current_config
from database.crud import DBManager
from services.whatsapp_service import WhatsAppCredentials, send_text
from utils.logger import get_logger
from utils.metrics import metrics

log = get_logger("handoff")

PRIORITY_CONFIG = {
    'critical': {'emoji': '🔴', 'label': 'CRÍTICO', 'response_time_minutes': 2},
    'urgent': {'emoji': '🟠', 'label': 'URGENTE', 'response_time_minutes': 5},
    'normal': {'emoji': '🟢', 'label': 'HANDOFF', 'response_time_minutes': 15},
}

REASON_CONFIG = {
    'user_requested': {
        'label': 'Cliente solicitó humano',
        'default_priority': 'urgent',
        'suggested_action': 'Contactar inmediatamente - el cliente espera',
        'client_message': 'Claro, te comunico con alguien del equipo. Te escriben en los próximos minutos.',
    },
    'user_frustrated': {
        'label': 'Cliente frustrado',
        'default_priority': 'critical',
        'suggested_action': 'URGENTE: Cliente molesto, ser empático y resolver rápido',
        'client_message': 'Perdón si no me expliqué bien. Te paso con alguien que te puede ayudar mejor. Te escriben en un momento.',
    },
    'agent_error': {
        'label': 'Error del agente',
        'default_priority': 'critical',
        'suggested_action': 'El agente falló - retomar conversación manualmente',
        'client_message': 'Tuve un problema técnico. Te paso con alguien del equipo. Te escriben en un momento.',
    },
    'service_timeout': {
        'label': 'Timeout de servicio',
        'default_priority': 'urgent',
        'suggested_action': 'Servicio externo no disponible - continuar manualmente',
        'client_message': 'Estoy teniendo problemas técnicos. Te comunico con alguien del equipo para ayudarte.',
    },
    'complex_question': {
        'label': 'Pregunta compleja',
        'default_priority': 'normal',
        'suggested_action': 'Pregunta técnica/compleja que requiere expertise',
        'client_message': 'Buena pregunta. Deja te paso con alguien del equipo que te puede dar más detalles.',
    },
    'enterprise_lead': {
        'label': 'Lead Enterprise',
        'default_priority': 'urgent',
        'suggested_action': 'LEAD DE ALTO VALOR - atención prioritaria',
        'client_message': 'Perfecto, para enterprise te comunico con nuestro equipo de ventas. Te escriben en breve.',
    },
    'payment_issue': {
        'label': 'Problema de pago',
        'default_priority': 'urgent',
        'suggested_action': 'Revisar estado del pago y resolver',
        'client_message': 'Deja verifico eso con el equipo. Te escriben para resolverlo.',
    },
    'repeated_failures': {
        'label': 'Fallos repetidos',
        'default_priority': 'critical',
        'suggested_action': 'Múltiples intentos fallidos - el cliente puede estar muy frustrado',
        'client_message': 'Perdón por los problemas. Te paso directamente con alguien del equipo.',
    },
    'negative_sentiment': {
        'label': 'Sentimiento negativo',
        'default_priority': 'urgent',
        'suggested_action': 'Cliente con actitud negativa - manejar con cuidado',
        'client_message': 'Entiendo tu frustración. Deja te comunico con alguien que pueda ayudarte mejor.',
    },
    'custom': {
        'label': 'Otro motivo',
        'default_priority': 'normal',
        'suggested_action': 'Revisar contexto de la conversación',
        'client_message': 'Te comunico con alguien del equipo. Te escriben pronto.',
    },
}

HANDOFF_TRIGGERS = {
    'human_request': [
        'humano', 'persona', 'persona real', 'hablar con alguien',
        'asesor', 'representante', 'alguien real', 'no eres humano',
        'eres un bot', 'quiero hablar con', 'pásame con', 'pasame con',
        'comunícame', 'comunicame', 'transfiere', 'agente real',
        'hablar con una persona', 'quiero un humano',
    ],
    # Complaints about the bot itself, not sales objections
    'frustration': [
        'no me entiendes', 'no entiendes', 'esto no sirve', 'no sirve',
        'ya me cansé', 'me cansé', 'inútil', 'no funciona', 'mal servicio',
        'pésimo', 'horrible', 'terrible',
        'qué asco', 'que asco', 'basura', 'porquería', 'porqueria',
    ],
    'enterprise': [
        'enterprise', 'corporativo', 'empresa grande', 'multinacional',
        'miles de mensajes', 'millones', 'volumen alto', 'muchas líneas',
        'varias sucursales', 'múltiples países', 'multiples paises',
        'api', 'integración custom', 'integracion custom', 'white label',
        'on-premise', 'self-hosted', 'sla', 'contrato anual',
    ],
    'payment_issues': [
        'no puedo pagar', 'error de pago', 'cobro', 'factura', 'reembolso',
        'cancelar suscripción', 'cancelar suscripcion', 'darme de baja',
        'cobro doble', 'cargo no reconocido', 'problema con el pago',
    ],
}

# Assistant questions whose answers describe the lead's own situation
DISCOVERY_PATTERNS = [
    'qué tipo de negocio', 'cuántos mensajes', 'cómo manejan',
    'qué usas', 'cómo te va', 'qué te llamó', 'en qué te puedo',
    'a qué te dedicas', 'cuéntame', 'qué problema', 'qué necesitas',
    'cómo funciona tu', 'qué solución', 'qué herramienta',
]

FAILURE_PATTERNS = [
    'problema', 'error', 'perdón', 'perdon', 'disculpa',
    'no pude', 'intenta de nuevo', 'fallo', 'no funciono',
]


def _keyword_pattern(keywords: List[str]) -> re.Pattern:
    alternatives = '|'.join(re.escape(k) for k in sorted(keywords, key=len, reverse=True))
    return re.compile(rf'(?<!\w)(?:{alternatives})(?!\w)', re.IGNORECASE)


_TRIGGER_PATTERNS = {name: _keyword_pattern(words) for name, words in HANDOFF_TRIGGERS.items()}


@dataclass
class HandoffTrigger:
    reason: str
    priority: str


@dataclass
class HandoffContext:
    phone: str
    name: str
    reason: str
    priority: str
    recent_messages: List[Dict] = field(default_factory=list)
    lead_id: Optional[int] = None
    email: Optional[str] = None
    company: Optional[str] = None
    industry: Optional[str] = None
    conversation_id: Optional[int] = None
    custom_reason: Optional[str] = None
    error_message: Optional[str] = None
    failed_service: Optional[str] = None
    lead_value: Optional[str] = None
    current_stage: Optional[str] = None
    tenant_id: Optional[str] = None
    credentials: Optional[WhatsAppCredentials] = None


@dataclass
class HandoffResult:
    success: bool
    handoff_id: str
    notified_operator: bool
    notified_client: bool
    operator_phone: Optional[str] = None


def _role_content(message):
    if isinstance(message, dict):
        return message.get('role'), message.get('content') or ''
    return getattr(message, 'role', None), getattr(message, 'content', None) or ''


def is_describing_own_situation(recent_messages) -> bool:
    """True when the last assistant turn was a discovery question"""
    for message in reversed(list(recent_messages or [])):
        role, content = _role_content(message)
        if role == 'assistant':
            lower = content.lower()
            return any(pattern in lower for pattern in DISCOVERY_PATTERNS)
    return False


def detect_handoff_trigger(message: str, recent_messages=None) -> Optional[HandoffTrigger]:
    if not message:
        return None

    if _TRIGGER_PATTERNS['human_request'].search(message):
        return HandoffTrigger('user_requested', 'urgent')

    if not is_describing_own_situation(recent_messages) and _TRIGGER_PATTERNS['frustration'].search(message):
        return HandoffTrigger('user_frustrated', 'critical')

    if _TRIGGER_PATTERNS['enterprise'].search(message):
        return HandoffTrigger('enterprise_lead', 'urgent')

    if _TRIGGER_PATTERNS['payment_issues'].search(message):
        return HandoffTrigger('payment_issue', 'urgent')

    return None


def detect_repeated_failures(messages) -> bool:
    """Two or more apologetic/error replies among the recent assistant turns"""
    recent = list(messages or [])[-10:]
    assistant = [content for role, content in map(_role_content, recent) if role == 'assistant'][-5:]

    error_count = 0
    for content in assistant:
        lower = content.lower()
        if any(pattern in lower for pattern in FAILURE_PATTERNS):
            error_count += 1

    return error_count >= 2


def generate_handoff_id() -> str:
    alphabet = string.ascii_lowercase + string.digits
    suffix = ''.join(secrets.choice(alphabet) for _ in range(6))
    return f"ho_{int(time.time() * 1000)}_{suffix}"


def build_operator_message(context: HandoffContext, handoff_id: str) -> str:
    reason = REASON_CONFIG.get(context.reason, REASON_CONFIG['custom'])
    priority = PRIORITY_CONFIG.get(context.priority, PRIORITY_CONFIG['normal'])
    parts = [f"{priority['emoji']} {priority['label']}: {reason['label']}", '']

    parts.append(f"👤 *{context.name}*")
    parts.append(f"📱 {context.phone}")
    if context.email:
        parts.append(f"📧 {context.email}")
    if context.company:
        parts.append(f"🏢 {context.company}")
    if context.industry:
        parts.append(f"🏭 {context.industry}")
    if context.current_stage:
        parts.append(f"📊 Etapa: {context.current_stage}")
    parts.append('')

    parts.append(f"⚡ *Acción:* {reason['suggested_action']}")
    parts.append(f"⏱️ Responder en menos de {priority['response_time_minutes']} min")
    parts.append('')

    if context.error_message:
        parts.append(f"🔧 Error: {context.error_message[:100]}")
    if context.failed_service:
        parts.append(f"⚠️ Servicio fallido: {context.failed_service}")
    if context.custom_reason:
        parts.append(f"📝 Detalle: {context.custom_reason}")

    if context.recent_messages:
        first_name = (context.name or 'Cliente').split(' ')[0]
        parts.extend(['', '💬 *Últimos mensajes:*', '---'])
        for message in list(context.recent_messages)[-5:]:
            role, content = _role_content(message)
            speaker = first_name if role == 'user' else 'Bot'
            if len(content) > 150:
                content = content[:147] + '...'
            parts.append(f"{speaker}: {content}")
        parts.append('---')

    clean_phone = re.sub(r'\D', '', context.phone or '')
    parts.extend(['', f"📲 wa.me/{clean_phone}", '', f"ID: {handoff_id}"])

    return '\n'.join(parts)


async def _skip() -> bool:
    return False


async def execute_handoff(context: HandoffContext, db: Optional[DBManager] = None) -> HandoffResult:
    handoff_id = generate_handoff_id()
    reason = REASON_CONFIG.get(context.reason, REASON_CONFIG['custom'])

    fallback_phone = current_config.FALLBACK_PHONE
    backup_phone = current_config.FALLBACK_PHONE_2

    if not fallback_phone:
        log.error("No FALLBACK_PHONE configured, handoff not delivered", handoff_id=handoff_id, reason=context.reason)
        return HandoffResult(
            success=False,
            handoff_id=handoff_id,
            notified_operator=False,
            notified_client=False,
        )

    operator_message = build_operator_message(context, handoff_id)
    notify_backup = context.priority in ('critical', 'urgent') and backup_phone

    operator_ok, client_ok, backup_ok = await asyncio.gather(
        send_text(fallback_phone, operator_message, context.credentials),
        send_text(context.phone, reason['client_message'], context.credentials),
        send_text(backup_phone, operator_message, context.credentials) if notify_backup else _skip(),
    )

    log.info(
        "Handoff executed",
        handoff_id=handoff_id,
        reason=context.reason,
        priority=context.priority,
        operator_notified=operator_ok,
        backup_notified=backup_ok,
        client_notified=client_ok,
    )
    metrics.record_handoff(context.reason, context.priority)

    if db is not None:
        try:
            await db.add_handoff(
                handoff_ref=handoff_id,
                reason=context.custom_reason or context.reason,
                priority=context.priority,
                tenant_id=context.tenant_id,
                conversation_id=context.conversation_id,
                lead_id=context.lead_id,
            )
        except Exception as e:
            log.error("Failed to record handoff", handoff_id=handoff_id, error=str(e))
            await db.session.rollback()

    notified = bool(operator_ok or backup_ok)
    return HandoffResult(
        success=notified,
        handoff_id=handoff_id,
        notified_operator=notified,
        notified_client=bool(client_ok),
        operator_phone=fallback_phone,
    )


# =============================
# CONVENIENCE HELPERS
# =============================

async def handoff_on_service_error(
    phone: str,
    name: str,
    service_name: str,
    error_message: str,
    recent_messages: List[Dict],
    credentials: WhatsAppCredentials = None,
    db: DBManager = None,
    **context,
) -> HandoffResult:
    return await execute_handoff(
        HandoffContext(
            phone=phone,
            name=name,
            reason='service_timeout',
            priority='urgent',
            recent_messages=recent_messages,
            error_message=error_message,
            failed_service=service_name,
            credentials=credentials,
            **context,
        ),
        db,
    )


async def handoff_on_agent_error(
    phone: str,
    name: str,
    error_message: str,
    recent_messages: List[Dict],
    credentials: WhatsAppCredentials = None,
    db: DBManager = None,
    **context,
) -> HandoffResult:
    return await execute_handoff(
        HandoffContext(
            phone=phone,
            name=name,
            reason='agent_error',
            priority='critical',
            recent_messages=recent_messages,
            error_message=error_message,
            credentials=credentials,
            **context,
        ),
        db,
    )
