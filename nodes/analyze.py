"""
Analyze node - keyword topic detection, industry and "said later"
"""

import re

from state.agent_state import AgentState
from utils.industry import detect_industry

TOPIC_KEYWORDS = {
    'greeting': ['hola', 'buenos días', 'buenos dias', 'buenas tardes', 'buenas noches', 'buenas', 'qué tal', 'que tal', 'saludos', 'hi', 'hey'],
    'pricing': ['precio', 'precios', 'cuánto cuesta', 'cuanto cuesta', 'costo', 'costos', 'planes', 'plan', 'tarifa', 'mensualidad'],
    'demo': ['demo', 'demostración', 'demostracion', 'agendar', 'reunión', 'reunion', 'llamada', 'cita'],
    'features': ['funciona', 'funciones', 'integración', 'integracion', 'calendario', 'crm', 'automatizar', 'automatización'],
    'objection': ['caro', 'no sé', 'no se', 'lo pienso', 'pensarlo', 'desconfío', 'estafa', 'no confío'],
    'competitor': ['wati', 'manychat', 'leadsales', 'respond.io', 'zenvia', 'landbot', 'chatfuel'],
}

LATER_KEYWORDS = ['luego', 'después', 'despues', 'ahorita no', 'al rato', 'otro día', 'otro dia']


def _contains_any(text: str, keywords) -> bool:
    return any(re.search(rf'(?<!\w){re.escape(k)}(?!\w)', text) for k in keywords)


def detect_topics(message: str) -> list:
    lower = (message or '').lower()
    return [topic for topic, keywords in TOPIC_KEYWORDS.items() if _contains_any(lower, keywords)]


def detect_said_later(message: str) -> bool:
    return _contains_any((message or '').lower(), LATER_KEYWORDS)


def analyze_node(state: AgentState) -> dict:
    message = state.get('message', '')
    lead = state.get('lead') or {}

    user_text = ' '.join(
        [m.get('content', '') for m in state.get('history', []) if m.get('role') == 'user'] + [message]
    )

    return {
        'topics': detect_topics(message),
        'industry': detect_industry(user_text, lead.get('industry')),
        'said_later': detect_said_later(message),
    }
