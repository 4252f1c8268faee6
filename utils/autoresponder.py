"""
Auto-responder detection - keep the bot from chatting with corporate
auto-replies.
"""

import re

AUTORESPONDER_PATTERNS = [
    re.compile(r"gracias por (comunicarte|contactarnos|escribirnos|tu mensaje)", re.IGNORECASE),
    re.compile(r"hemos recibido (tu|su) (mensaje|solicitud|consulta)", re.IGNORECASE),
    re.compile(r"te (responderemos|contestaremos|atenderemos) (a la brevedad|pronto|en breve)", re.IGNORECASE),
    re.compile(r"nuestro horario de atenci[oó]n", re.IGNORECASE),
    re.compile(r"en este momento no (podemos|estamos disponibles)", re.IGNORECASE),
    re.compile(r"(tu|su) mensaje (ha sido|fue) recibido", re.IGNORECASE),
    re.compile(r"respuesta autom[aá]tica", re.IGNORECASE),
    re.compile(r"fuera de (horario|oficina|servicio)", re.IGNORECASE),
    re.compile(r"este n[uú]mero es (solo|únicamente) para", re.IGNORECASE),
    re.compile(r"auto[- ]?reply|out of office|automatic response", re.IGNORECASE),
    re.compile(r"mensaje autom[aá]tico", re.IGNORECASE),
    re.compile(r"estimado (cliente|usuario).*atenci[oó]n", re.IGNORECASE),
    re.compile(r"horario de (operaci[oó]n|atenci[oó]n):\s", re.IGNORECASE),
    re.compile(r"bienvenid[oa] a .{3,50}, un (asesor|ejecutivo|agente) te (atender[aá]|contactar[aá])", re.IGNORECASE),
]

# Auto-replies are verbose
MIN_AUTORESPONDER_LENGTH = 40


def is_autoresponder(message: str) -> bool:
    if not message or len(message) < MIN_AUTORESPONDER_LENGTH:
        return False

    return any(pattern.search(message) for pattern in AUTORESPONDER_PATTERNS)
