"""
Generate node - builds the sales-agent prompt and asks the LLM for a JSON reply
"""

from state.agent_state import AgentState
from tools.language_model import extract_json, llm
from utils.industry import get_industry_context

DEFAULT_AGENT_NAME = "Lu"
DEFAULT_BUSINESS_NAME = "Loomi"
DEFAULT_BUSINESS_DESCRIPTION = (
    "Loomi es un agente de IA para WhatsApp que atiende, califica y da seguimiento "
    "a leads 24/7 y agenda demos sin intervención humana."
)

TONE_INSTRUCTIONS = {
    'professional': "Tono profesional y cercano.",
    'friendly': "Tono amigable y cálido.",
    'casual': "Tono casual, como hablarías con un conocido.",
    'formal': "Tono formal, trata de usted.",
}

HISTORY_TURNS = 10


def _identity(config: dict) -> str:
    if config.get('system_prompt'):
        return config['system_prompt']

    business = config.get('business_name') or DEFAULT_BUSINESS_NAME
    description = config.get('business_description') or DEFAULT_BUSINESS_DESCRIPTION
    return (
        f"Eres {DEFAULT_AGENT_NAME if business == DEFAULT_BUSINESS_NAME else 'el asistente'} de {business}. "
        f"{description}\n"
        "Tu objetivo es entender el negocio del cliente, resolver sus dudas y, cuando haya interés, "
        "proponer agendar una demo."
    )


def build_prompt(state: AgentState) -> str:
    config = state.get('agent_config') or {}
    lead = state.get('lead') or {}

    sections = [_identity(config)]

    if config.get('products_info'):
        sections.append(f"# PRODUCTOS Y SERVICIOS\n{config['products_info']}")

    sections.append(TONE_INSTRUCTIONS.get(config.get('tone'), TONE_INSTRUCTIONS['friendly']))

    industry = state.get('industry', 'generic')
    if industry != 'generic':
        context = get_industry_context(industry)
        benefits = "\n".join(f"- {b}" for b in context['benefits'])
        sections.append(f"# INDUSTRIA DEL CLIENTE: {context['name']}\n{benefits}")

    lead_lines = [f"- Nombre: {lead.get('name') or 'desconocido'}"]
    if lead.get('company'):
        lead_lines.append(f"- Empresa: {lead['company']}")
    if lead.get('stage'):
        lead_lines.append(f"- Etapa: {lead['stage']}")
    if lead.get('memory'):
        lead_lines.append(f"- Notas: {lead['memory']}")
    sections.append("# LEAD\n" + "\n".join(lead_lines))

    if state.get('summary'):
        sections.append(f"# RESUMEN DE LA CONVERSACIÓN\n{state['summary']}")

    if state.get('topics'):
        sections.append(f"# TEMAS DEL MENSAJE ACTUAL\n{', '.join(state['topics'])}")

    history = state.get('history', [])[-HISTORY_TURNS:]
    if history:
        lines = "\n".join(
            f"{'Cliente' if m.get('role') == 'user' else 'Agente'}: {m.get('content', '')}" for m in history
        )
        sections.append(f"# HISTORIAL\n{lines}")

    sections.append(
        "# REGLAS\n"
        "- Responde en español, máximo 3 oraciones, sin listas largas.\n"
        "- Haz una sola pregunta a la vez.\n"
        "- Si el cliente quiere agendar, pon show_schedule en true.\n"
        "- Si no puedes ayudar o pide algo fuera de tu alcance, pon escalate en true."
    )

    sections.append(
        f"# MENSAJE DEL CLIENTE\n{state.get('message', '')}\n\n"
        "Responde SOLO con JSON:\n"
        '{"response": "tu respuesta", "show_schedule": false, "escalate": false}'
    )

    return "\n\n".join(sections)


def generate_node(state: AgentState) -> dict:
    """LLM errors propagate; the caller escalates them"""
    config = state.get('agent_config') or {}
    raw = llm.generate(build_prompt(state), max_tokens=300, temperature=0.7, model=config.get('model'))

    parsed = extract_json(raw)
    if parsed is None or not isinstance(parsed.get('response'), str):
        return {'response': raw.strip(), 'show_schedule': False, 'escalated': False}

    return {
        'response': parsed['response'].strip(),
        'show_schedule': bool(parsed.get('show_schedule')),
        'escalated': bool(parsed.get('escalate')),
    }
