"""
Opt-out detection for follow-up sequences.

Explicit keywords and short negatives stop follow-ups with high
confidence, rejection phrases with medium confidence. Very short cold
replies are only tracked; two of the last three stop the sequence.
"""

import re
from dataclasses import dataclass
from typing import Iterable, Optional

OPT_OUT_KEYWORDS = {
    'no gracias',
    'no, gracias',
    'no me interesa',
    'no me interesa gracias',
    'no estoy interesado',
    'no estoy interesada',
    'no quiero',
    'no necesito',
    'deja de escribirme',
    'deja de escribir',
    'no me escribas',
    'no me contactes',
    'para de escribir',
    'basta',
    'stop',
    'unsubscribe',
    'cancelar',
    'ya no',
    'no mas',
    'no más',
    'dejame en paz',
    'déjame en paz',
    'no molestes',
    'no jodas',
    'bájame',
    'dame de baja',
    'quiero darme de baja',
    'elimíname',
    'eliminame',
    'bórrame',
    'borrame',
}

SHORT_NEGATIVES = {
    'no',
    'nel',
    'nop',
    'nope',
    'nah',
    'paso',
    'x',
    'xx',
    '👎',
    '🚫',
    '❌',
    '✋',
}

# Matched anywhere in the message
REJECTION_PHRASES = [
    'gracias pero no',
    'gracias, pero no',
    'por ahora no',
    'ahorita no',
    'en este momento no',
    'no por ahora',
    'no en este momento',
    'quizás después',
    'tal vez luego',
    'no es para mi',
    'no es para mí',
    'no me sirve',
    'no me conviene',
    'ya tengo',
    'ya lo tengo',
    'ya cuento con',
    'no lo necesito',
    'estoy bien así',
    'estoy bien asi',
    'no busco eso',
    'no es lo que busco',
]

COLD_RESPONSE_MAX_LENGTH = 5
COLD_RESPONSE_PATTERNS = [
    re.compile(r'^ok+$', re.IGNORECASE),
    re.compile(r'^k+$', re.IGNORECASE),
    re.compile(r'^si+$', re.IGNORECASE),
    re.compile(r'^ya$', re.IGNORECASE),
    re.compile(r'^aja+$', re.IGNORECASE),
    re.compile(r'^ajá+$', re.IGNORECASE),
    re.compile(r'^mm+$', re.IGNORECASE),
    re.compile(r'^hmm+$', re.IGNORECASE),
    re.compile(r'^bien$', re.IGNORECASE),
    re.compile(r'^va$', re.IGNORECASE),
    re.compile(r'^sale$', re.IGNORECASE),
    re.compile(r'^bueno$', re.IGNORECASE),
    re.compile(r'^\.+$'),
    re.compile(r'^👍$'),
]


@dataclass
class OptOutResult:
    is_opt_out: bool
    is_cold_response: bool
    should_stop_follow_ups: bool
    confidence: str  # high/medium/low
    reason: Optional[str] = None  # explicit_keyword/short_negative/rejection_phrase/cold_response


def detect_opt_out(message: str) -> OptOutResult:
    normalized = (message or '').lower().strip()

    if normalized in OPT_OUT_KEYWORDS:
        return OptOutResult(True, False, True, 'high', 'explicit_keyword')

    if normalized in SHORT_NEGATIVES:
        return OptOutResult(True, False, True, 'high', 'short_negative')

    for phrase in REJECTION_PHRASES:
        if phrase in normalized:
            return OptOutResult(True, False, True, 'medium', 'rejection_phrase')

    # Cold replies are tracked but do not stop follow-ups on their own
    if len(normalized) <= COLD_RESPONSE_MAX_LENGTH:
        for pattern in COLD_RESPONSE_PATTERNS:
            if pattern.match(normalized):
                return OptOutResult(False, True, False, 'low', 'cold_response')

    return OptOutResult(False, False, False, 'low')


def _role_and_content(message):
    if isinstance(message, dict):
        return message.get('role'), message.get('content', '')
    return message.role, message.content


def detect_cold_response_pattern(recent_messages: Iterable) -> bool:
    """True when at least 2 of the last 3 user messages are cold replies"""
    user_messages = [
        content for role, content in map(_role_and_content, recent_messages)
        if role == 'user'
    ][-3:]

    if len(user_messages) < 2:
        return False

    cold_count = sum(1 for content in user_messages if detect_opt_out(content).is_cold_response)
    return cold_count >= 2


def should_stop_follow_ups(current_message: str, recent_messages: Optional[Iterable] = None) -> dict:
    result = detect_opt_out(current_message)

    if result.should_stop_follow_ups:
        return {
            'stop': True,
            'reason': f"Opt-out detected: {result.reason} ({result.confidence} confidence)",
        }

    if recent_messages is not None and detect_cold_response_pattern(recent_messages):
        return {
            'stop': True,
            'reason': 'Multiple cold responses detected - lead disengaged',
        }

    return {'stop': False, 'reason': None}
