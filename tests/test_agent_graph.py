"""
Sales agent graph tests (LLM mocked)
"""

import json

import pytest

from graph_builder import process_message
from nodes.analyze import analyze_node, detect_said_later, detect_topics
from nodes.generate import build_prompt, generate_node
from nodes.route import SUMMARY_EVERY_TURNS, route_after_route, route_node
from nodes.summarize import summarize_node
from state.agent_state import create_default_agent_state
from tools.language_model import extract_json, llm
from utils.errors import LLMError


def reply(response, show_schedule=False, escalate=False):
    return json.dumps({"response": response, "show_schedule": show_schedule, "escalate": escalate})


# -----------------------------
# Nodes
# -----------------------------
def test_detect_topics():
    assert detect_topics("Hola, ¿cuánto cuesta el plan?") == ["greeting", "pricing"]
    assert detect_topics("Quiero agendar una demo") == ["demo"]
    assert detect_topics("Ok") == []


def test_detect_said_later_whole_words():
    assert detect_said_later("Ahorita no, luego te escribo") is True
    assert detect_said_later("Me gusta la ciudad de Culuego") is False


def test_analyze_uses_history_for_industry():
    state = create_default_agent_state(
        message="¿Y cuánto cuesta?",
        history=[{"role": "user", "content": "Tengo una clínica dental, soy dentista"}],
    )
    result = analyze_node(state)

    assert result["industry"] == "salud"
    assert result["topics"] == ["pricing"]
    assert result["said_later"] is False


def test_route_counts_turns_and_flags_summary():
    history = [{"role": "user", "content": "hola"}]
    state = create_default_agent_state(history=history, turn_count=SUMMARY_EVERY_TURNS - 1)

    result = route_node(state)
    assert result == {"turn_count": SUMMARY_EVERY_TURNS, "needs_summary": True}
    assert route_after_route({**state, **result}) == "summarize"

    result = route_node(create_default_agent_state(history=history, turn_count=0))
    assert result["needs_summary"] is False
    assert route_after_route({**state, **result}) == "generate"


def test_summarize_keeps_previous_on_error(mocker):
    mocker.patch.object(llm, "generate", side_effect=LLMError("down"))
    state = create_default_agent_state(summary="Quiere demo", history=[{"role": "user", "content": "hola"}])

    assert summarize_node(state) == {}


def test_build_prompt_includes_tenant_and_lead():
    state = create_default_agent_state(
        message="¿Tienen integración con Shopify?",
        lead={"name": "Ana", "company": "Moda MX", "stage": "Warm"},
        agent_config={"business_name": "Moda Bot", "products_info": "Plan único $499", "tone": "formal"},
        summary="Vende ropa en línea",
    )
    state["industry"] = "ecommerce"
    prompt = build_prompt(state)

    assert "Moda Bot" in prompt
    assert "Plan único $499" in prompt
    assert "trata de usted" in prompt
    assert "E-commerce" in prompt
    assert "- Empresa: Moda MX" in prompt
    assert "Vende ropa en línea" in prompt
    assert prompt.rstrip().endswith('"escalate": false}')


def test_generate_parses_json(mocker):
    mocker.patch.object(llm, "generate", return_value="Claro: " + reply("¿Qué día te queda?", show_schedule=True))

    result = generate_node(create_default_agent_state(message="Quiero una demo"))

    assert result == {"response": "¿Qué día te queda?", "show_schedule": True, "escalated": False}


def test_generate_falls_back_to_raw_text(mocker):
    mocker.patch.object(llm, "generate", return_value="  Hola, ¿en qué te ayudo?  ")

    result = generate_node(create_default_agent_state(message="Hola"))

    assert result == {"response": "Hola, ¿en qué te ayudo?", "show_schedule": False, "escalated": False}


def test_extract_json():
    assert extract_json('{"a": 1}') == {"a": 1}
    assert extract_json('texto {"a": 1} más') == {"a": 1}
    assert extract_json("[1, 2]") is None
    assert extract_json("sin json") is None
    assert extract_json("") is None


# -----------------------------
# Graph
# -----------------------------
@pytest.mark.asyncio
async def test_process_message(mocker):
    generate = mocker.patch.object(llm, "generate", return_value=reply("¡Claro! ¿Qué tipo de negocio tienes?"))

    result = await process_message(
        "Hola, luego te cuento más",
        {"lead": {"name": "Ana"}, "history": [], "summary": None, "turn_count": 0},
        {"business_name": "Acme"},
    )

    assert result.response == "¡Claro! ¿Qué tipo de negocio tienes?"
    assert result.said_later is True
    assert result.turn_count == 1
    assert "greeting" in result.topics
    assert generate.call_count == 1


@pytest.mark.asyncio
async def test_process_message_refreshes_summary(mocker):
    def fake_generate(prompt, **kwargs):
        if prompt.startswith("Resume esta conversación"):
            return "Ana tiene una clínica y quiere demo."
        return reply("Perfecto, te muestro horarios.", show_schedule=True)

    mocker.patch.object(llm, "generate", side_effect=fake_generate)

    result = await process_message(
        "¿Podemos agendar?",
        {
            "lead": {"name": "Ana"},
            "history": [{"role": "user", "content": "Tengo una clínica"}],
            "summary": "Ana tiene una clínica.",
            "turn_count": SUMMARY_EVERY_TURNS - 1,
        },
    )

    assert result.summary == "Ana tiene una clínica y quiere demo."
    assert result.show_schedule is True
    assert result.turn_count == SUMMARY_EVERY_TURNS


@pytest.mark.asyncio
async def test_process_message_propagates_llm_errors(mocker):
    mocker.patch.object(llm, "generate", side_effect=LLMError("ollama down"))

    with pytest.raises(LLMError):
        await process_message("Hola", {"lead": {}, "history": []})
