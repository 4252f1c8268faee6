"""
Human handoff tests
"""

import re

import pytest

from config.environments import current_config
from services.handoff_service import (
    REASON_CONFIG,
    HandoffContext,
    build_operator_message,
    detect_handoff_trigger,
    detect_repeated_failures,
    execute_handoff,
    generate_handoff_id,
    handoff_on_agent_error,
    handoff_on_service_error,
)


@pytest.fixture
def send_text(mocker):
    return mocker.patch("services.handoff_service.send_text", new=mocker.AsyncMock(return_value=True))


def make_context(**overrides):
    fields = dict(
        phone="+52 1 55 1111 1111",
        name="Ana López",
        reason="user_requested",
        priority="urgent",
        recent_messages=[
            {"role": "user", "content": "Hola"},
            {"role": "assistant", "content": "¡Hola! ¿A qué te dedicas?"},
            {"role": "user", "content": "Quiero hablar con una persona"},
        ],
        email="ana@example.com",
        company="Clínica Sonrisa",
    )
    fields.update(overrides)
    return HandoffContext(**fields)


# -----------------------------
# Detection
# -----------------------------
def test_human_request_trigger():
    trigger = detect_handoff_trigger("¿Me pasas con un asesor?")
    assert trigger.reason == "user_requested"
    assert trigger.priority == "urgent"


def test_frustration_trigger():
    trigger = detect_handoff_trigger("No me entiendes, esto no sirve")
    assert trigger.reason == "user_frustrated"
    assert trigger.priority == "critical"


def test_frustration_ignored_when_answering_discovery_question():
    history = [{"role": "assistant", "content": "Cuéntame, ¿cómo manejan hoy los mensajes?"}]
    assert detect_handoff_trigger("Horrible, nadie contesta a tiempo", history) is None


def test_enterprise_and_payment_triggers():
    assert detect_handoff_trigger("Somos un corporativo con varias sucursales").reason == "enterprise_lead"
    assert detect_handoff_trigger("Tengo un cargo no reconocido").reason == "payment_issue"


def test_keywords_match_whole_words_only():
    # "api" inside "rapido", "sla" inside "isla"
    assert detect_handoff_trigger("Necesito algo rapido para mi negocio en la isla") is None


def test_no_trigger_for_normal_message():
    assert detect_handoff_trigger("¿Cuánto cuesta el plan básico?") is None
    assert detect_handoff_trigger("") is None


def test_competitor_mention_is_not_a_trigger():
    assert detect_handoff_trigger("Hoy uso ManyChat") is None


def test_repeated_failures():
    history = [
        {"role": "assistant", "content": "Perdón, tuve un problema"},
        {"role": "user", "content": "??"},
        {"role": "assistant", "content": "Disculpa, intenta de nuevo"},
    ]
    assert detect_repeated_failures(history) is True
    assert detect_repeated_failures(history[:2]) is False


def test_handoff_id_format():
    assert re.fullmatch(r"ho_\d+_[a-z0-9]{6}", generate_handoff_id())


# -----------------------------
# Operator message
# -----------------------------
def test_operator_message_contents():
    message = build_operator_message(make_context(), "ho_1_abcdef")

    assert message.startswith("🟠 URGENTE: Cliente solicitó humano")
    assert "👤 *Ana López*" in message
    assert "📧 ana@example.com" in message
    assert "🏢 Clínica Sonrisa" in message
    assert "Ana: Quiero hablar con una persona" in message
    assert "Bot: ¡Hola! ¿A qué te dedicas?" in message
    assert "wa.me/5215511111111" in message
    assert message.endswith("ID: ho_1_abcdef")


def test_operator_message_truncates_long_messages():
    context = make_context(recent_messages=[{"role": "user", "content": "x" * 200}])
    message = build_operator_message(context, "ho_1_abcdef")

    assert "Ana: " + "x" * 147 + "..." in message


def test_operator_message_includes_error_details():
    context = make_context(reason="agent_error", priority="critical", error_message="timeout" * 30)
    message = build_operator_message(context, "ho_1_abcdef")

    assert message.startswith("🔴 CRÍTICO: Error del agente")
    assert "🔧 Error: " + ("timeout" * 30)[:100] in message


# -----------------------------
# Execution
# -----------------------------
@pytest.mark.asyncio
async def test_execute_handoff_notifies_and_records(db_manager, sample_lead, send_text):
    context = make_context(lead_id=sample_lead.id, tenant_id=sample_lead.tenant_id)

    result = await execute_handoff(context, db_manager)

    assert result.success is True
    assert result.notified_operator is True
    assert result.notified_client is True
    assert result.operator_phone == current_config.FALLBACK_PHONE

    recipients = [call.args[0] for call in send_text.await_args_list]
    assert current_config.FALLBACK_PHONE in recipients
    assert context.phone in recipients

    client_call = next(c for c in send_text.await_args_list if c.args[0] == context.phone)
    assert client_call.args[1] == REASON_CONFIG["user_requested"]["client_message"]

    handoffs = await db_manager.get_handoffs(sample_lead.tenant_id)
    assert [h.handoff_ref for h in handoffs] == [result.handoff_id]


@pytest.mark.asyncio
async def test_backup_operator_for_urgent(send_text, mocker):
    mocker.patch.object(current_config, "FALLBACK_PHONE_2", "5215500000002")

    await execute_handoff(make_context(priority="urgent"))
    assert send_text.await_count == 3

    send_text.reset_mock()
    await execute_handoff(make_context(reason="complex_question", priority="normal"))
    assert send_text.await_count == 2


@pytest.mark.asyncio
async def test_no_operator_configured(send_text, mocker):
    mocker.patch.object(current_config, "FALLBACK_PHONE", "")

    result = await execute_handoff(make_context())

    assert result.success is False
    assert result.notified_client is False
    send_text.assert_not_awaited()


@pytest.mark.asyncio
async def test_operator_send_failure(send_text):
    send_text.return_value = False

    result = await execute_handoff(make_context())

    assert result.success is False
    assert result.notified_operator is False


@pytest.mark.asyncio
async def test_helpers_set_reason_and_priority(send_text):
    result = await handoff_on_agent_error("5215511111111", "Ana", "LLM down", [])
    operator_message = send_text.call_args_list[0].args[1]
    assert "Error del agente" in operator_message
    assert result.success is True

    send_text.reset_mock()
    await handoff_on_service_error("5215511111111", "Ana", "ollama", "connection refused", [])
    operator_message = send_text.call_args_list[0].args[1]
    assert "Timeout de servicio" in operator_message
    assert "Servicio fallido: ollama" in operator_message
