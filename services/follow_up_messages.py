"""
Follow-up message templates (Spanish)
"""

from datetime import datetime
from typing import Optional

from config.followups import FollowUpConfig, FollowUpType
from utils.industry import detect_industry, get_industry_context, get_industry_example

DAYS = ['lunes', 'martes', 'miércoles', 'jueves', 'viernes', 'sábado', 'domingo']
MONTHS = ['enero', 'febrero', 'marzo', 'abril', 'mayo', 'junio',
          'julio', 'agosto', 'septiembre', 'octubre', 'noviembre', 'diciembre']

DEFAULT_MESSAGE = "Hola, ¿cómo puedo ayudarte hoy?"


def format_time(time_str: str) -> str:
    """'14:05' -> '2:05 PM'"""
    hours, minutes = (int(part) for part in time_str.split(':')[:2])
    period = 'PM' if hours >= 12 else 'AM'
    display_hours = hours - 12 if hours > 12 else (12 if hours == 0 else hours)
    return f"{display_hours}:{minutes:02d} {period}"


def format_date(date_str: str) -> str:
    """'2025-03-14' -> 'viernes 14 de marzo'"""
    date = datetime.strptime(date_str, '%Y-%m-%d')
    return f"{DAYS[date.weekday()]} {date.day} de {MONTHS[date.month - 1]}"


def get_first_name(lead) -> str:
    name = getattr(lead, 'name', None)
    if not name or name == 'Usuario':
        return ''
    return name.split(' ')[0]


def _greeting(lead) -> str:
    name = get_first_name(lead)
    return f"Hola {name}" if name else "Hola"


def _lead_industry(lead, memory: Optional[str]) -> str:
    text = ' '.join(filter(None, [getattr(lead, 'company', None), getattr(lead, 'industry', None), memory]))
    return detect_industry(text, getattr(lead, 'industry', None))


def pre_demo_reminder(lead, appointment_time: str = None, **_) -> str:
    time_str = format_time(appointment_time) if appointment_time else 'en 30 minutos'
    return (
        f"{_greeting(lead)}, te recuerdo que tenemos nuestra demo en 30 minutos ({time_str}). "
        "El link de la reunión ya te lo envié antes. ¿Todo listo?"
    )


def pre_demo_24h(lead, appointment_date: str = None, appointment_time: str = None, **_) -> str:
    date_str = format_date(appointment_date) if appointment_date else 'mañana'
    time_str = f" a las {format_time(appointment_time)}" if appointment_time else ''
    return (
        f"{_greeting(lead)}, te recuerdo que mañana {date_str}{time_str} tenemos nuestra demo. "
        "Si necesitas reagendar, avísame."
    )


def post_demo(lead, **_) -> str:
    name = get_first_name(lead)
    prefix = f"{name}, " if name else ''
    return f"{prefix}Gracias por tu tiempo en la demo. ¿Qué te pareció? ¿Tienes alguna pregunta adicional?"


def no_show_followup(lead, **_) -> str:
    return (
        f"{_greeting(lead)}, veo que no pudiste conectarte a la demo. No hay problema, entiendo que "
        "pueden surgir imprevistos. ¿Te parece si reagendamos? ¿Qué día te funciona mejor?"
    )


def said_later(lead, **_) -> str:
    return (
        f"{_greeting(lead)}, ayer quedamos en platicar hoy. ¿Tienes un momento para que te cuente "
        "cómo podemos ayudarte con tu negocio?"
    )


def proposal_reminder(lead, **_) -> str:
    return f"{_greeting(lead)}, ¿pudiste revisar la propuesta? Si tienes dudas sobre algo, con gusto te las aclaro."


def cold_lead_reengagement(lead, memory: str = None, attempt: int = 1, **_) -> str:
    if attempt and attempt > 1:
        return reengagement_sequence(lead, memory=memory, attempt=attempt)

    greeting = _greeting(lead)

    if memory:
        return f"{greeting}, quería dar seguimiento a nuestra conversación. ¿Sigues interesado en automatizar tu WhatsApp?"

    industry = _lead_industry(lead, memory)
    if industry != 'generic':
        benefit = get_industry_context(industry)['benefits'][0]
        return (
            f"{greeting}, solo quería recordarte que podemos ayudarte a {benefit.lower()}. "
            "¿Te gustaría que agendemos una demo rápida?"
        )

    return (
        f"{greeting}, ¿cómo vas? Quería saber si todavía te interesa ver cómo funciona "
        "nuestro agente de IA para WhatsApp."
    )


def reengagement_sequence(lead, memory: str = None, attempt: int = 1, **_) -> str:
    greeting = _greeting(lead)

    if attempt == 2:
        industry = _lead_industry(lead, memory)
        if industry != 'generic':
            example = get_industry_example(industry)
            return (
                f"{greeting}, te comparto un caso que puede interesarte: {example}. "
                "Si quieres ver cómo aplicaría a tu negocio, dime y te muestro."
            )
        return (
            f"{greeting}, te comparto un dato: los negocios que usan IA en WhatsApp responden 10x más "
            "rápido y cierran hasta 30% más ventas. ¿Te gustaría ver cómo funcionaría para ti?"
        )

    # Final attempt, soft close
    return (
        f"{greeting}, es mi último mensaje de seguimiento. Si en algún momento te interesa explorar "
        "cómo automatizar tu WhatsApp, aquí estoy. ¡Éxito con tu negocio!"
    )


TEMPLATES = {
    FollowUpType.PRE_DEMO_REMINDER: pre_demo_reminder,
    FollowUpType.PRE_DEMO_24H: pre_demo_24h,
    FollowUpType.POST_DEMO: post_demo,
    FollowUpType.NO_SHOW_FOLLOWUP: no_show_followup,
    FollowUpType.SAID_LATER: said_later,
    FollowUpType.PROPOSAL_REMINDER: proposal_reminder,
    FollowUpType.COLD_LEAD_REENGAGEMENT: cold_lead_reengagement,
}


def generate_follow_up_message(
    followup_type: str,
    lead,
    memory: Optional[str] = None,
    appointment_date: Optional[str] = None,
    appointment_time: Optional[str] = None,
    attempt: Optional[int] = None,
) -> str:
    """Render the message for a follow-up type"""
    if followup_type == FollowUpType.REENGAGEMENT_2:
        return reengagement_sequence(lead, memory=memory, attempt=2)
    if followup_type == FollowUpType.REENGAGEMENT_3:
        return reengagement_sequence(lead, memory=memory, attempt=3)

    template = TEMPLATES.get(followup_type)
    if not template:
        return DEFAULT_MESSAGE

    return template(
        lead,
        memory=memory,
        appointment_date=appointment_date,
        appointment_time=appointment_time,
        attempt=attempt or 1,
    )


def should_send_reengagement(lead, attempt_number: int) -> bool:
    """False once a demo is on the books or the sequence is exhausted"""
    if getattr(lead, 'stage', None) in FollowUpConfig.DEMO_STAGES:
        return False

    return attempt_number <= FollowUpConfig.MAX_REENGAGEMENT_ATTEMPTS
