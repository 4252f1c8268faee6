"""
Broadcast reply classification - grade replies to a broadcast as hot, warm,
cold or an automatic response, and move the lead up the pipeline.
"""

import asyncio
from typing import Iterable

from database.crud import DBManager
from tools.language_model import llm
from utils.autoresponder import is_autoresponder
from utils.errors import LLMError
from utils.logger import get_logger
from utils.timeutils import utcnow

log = get_logger("broadcast_classifier")

CLASSIFICATIONS = ('hot', 'warm', 'cold', 'bot_autoresponse')
DEFAULT_CLASSIFICATION = 'warm'

# 'cold' sits at the bottom with new leads, so a cold reply never moves a
# lead and leaves its stage and priority untouched
STAGE_POSITION = {
    'cold': 0, 'nuevo': 0, 'new': 0, 'initial': 0, 'lead': 0, 'contactado': 0,
    'warm': 1, 'contacted': 1,
    'hot': 2, 'calificado': 2, 'qualified': 2, 'propuesta': 2, 'negociacion': 2,
    'ganado': 3, 'won': 3, 'closed': 3,
    'perdido': 4, 'lost': 4,
}

CLASSIFICATION_STAGE = {'hot': 'Hot', 'warm': 'Warm', 'cold': 'Cold'}
CLASSIFICATION_PRIORITY = {'hot': 'high', 'warm': 'medium', 'cold': 'low'}

CLASSIFY_PROMPT = """Clasifica esta conversación post-broadcast de WhatsApp.

Categorías:
- hot: El contacto muestra intención de compra (pregunta precios, quiere demo, pide cotización, quiere contratar, dice que le interesa)
- warm: El contacto respondió con interés general (saluda, pregunta info, responde positivamente pero sin intención clara de compra)
- cold: El contacto rechaza o pide que no le escriban (no interesa, spam, bloquear, eliminar, no molestar)
- bot_autoresponse: Respuesta automática de un sistema (fuera de horario, buzón de voz, número equivocado, auto-reply, contestadora)

Responde SOLO con JSON: {{"classification": "hot|warm|cold|bot_autoresponse", "reason": "..."}}

Mensajes de la conversación:
{conversation}"""


def _role_content(message):
    if isinstance(message, dict):
        return message.get('role'), message.get('content') or ''
    return getattr(message, 'role', None), getattr(message, 'content', None) or ''


def format_conversation(messages: Iterable) -> str:
    lines = []
    for role, content in map(_role_content, messages):
        speaker = 'Contacto' if role == 'user' else 'Bot'
        lines.append(f"[{speaker}]: {content}")
    return '\n'.join(lines)


def should_update_pipeline(current_stage: str, proposed_stage: str) -> bool:
    """Only move a lead forward, never back"""
    current = STAGE_POSITION.get((current_stage or '').lower(), 0)
    proposed = STAGE_POSITION.get((proposed_stage or '').lower(), 0)
    return proposed > current


async def classify_conversation(messages) -> str:
    messages = list(messages or [])

    user_texts = [content for role, content in map(_role_content, messages) if role == 'user']
    if user_texts and all(is_autoresponder(text) for text in user_texts):
        return 'bot_autoresponse'

    prompt = CLASSIFY_PROMPT.format(conversation=format_conversation(messages))
    try:
        result = await asyncio.to_thread(llm.generate_json, prompt, 100, 0.2)
    except LLMError as e:
        log.error("Classification failed, defaulting to warm", error=str(e))
        return DEFAULT_CLASSIFICATION

    classification = str((result or {}).get('classification', '')).strip().lower()
    if classification not in CLASSIFICATIONS:
        log.warning("Unexpected classification, defaulting to warm", output=result)
        return DEFAULT_CLASSIFICATION

    return classification


async def apply_classification_to_lead(db: DBManager, lead_id: int, classification: str, current_stage: str):
    fields = {
        'broadcast_classification': classification,
        'last_activity_at': utcnow(),
    }

    if classification != 'bot_autoresponse':
        proposed_stage = CLASSIFICATION_STAGE.get(classification)
        if proposed_stage and should_update_pipeline(current_stage, proposed_stage):
            fields['stage'] = proposed_stage
            fields['priority'] = CLASSIFICATION_PRIORITY[classification]

    log.info("Applying broadcast classification", lead_id=lead_id, classification=classification, stage=fields.get('stage'))
    return await db.update_lead(lead_id, **fields)
