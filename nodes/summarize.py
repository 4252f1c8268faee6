"""
Summarize node - rolling LLM summary of the conversation
"""

from state.agent_state import AgentState
from tools.language_model import llm
from utils.errors import LLMError
from utils.logger import get_logger

log = get_logger("agent.summarize")


def build_summary_prompt(state: AgentState) -> str:
    lead = state.get('lead') or {}
    history = "\n".join(
        f"[{i + 1}] {'CLIENTE' if m.get('role') == 'user' else 'AGENTE'}: {m.get('content', '')}"
        for i, m in enumerate(state.get('history', []))
    )
    previous = f"\n\n# RESUMEN ANTERIOR\n{state['summary']}" if state.get('summary') else ""

    return f"""Resume esta conversación de ventas por WhatsApp.

# CONTEXTO DEL LEAD
- Nombre: {lead.get('name') or 'desconocido'}
- Empresa: {lead.get('company') or 'desconocido'}
- Industria: {lead.get('industry') or 'desconocido'}{previous}

# CONVERSACIÓN
{history}

Explica qué quiere el lead, qué se le ha ofrecido y en qué quedaron. Máximo 3 oraciones.

Resumen:"""


def summarize_node(state: AgentState) -> dict:
    try:
        summary = llm.generate(build_summary_prompt(state), max_tokens=200, temperature=0.2).strip()
    except LLMError as e:
        # Keep the previous summary; the reply can still be generated
        log.warning("Summary refresh failed", error=str(e))
        return {}

    return {'summary': summary or state.get('summary')}
