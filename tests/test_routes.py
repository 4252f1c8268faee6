"""
HTTP route tests
"""

import hashlib
import hmac
import json

import pytest
from httpx import ASGITransport, AsyncClient

from database.db import get_db
from main import app
from services.bot_pause import is_bot_paused, pause_bot
from services.twilio_numbers import mock_purchase_number
from utils.secure import create_jwt_token
from utils.webhook_security import webhook_security


@pytest.fixture
async def client(db_session):
    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def wa_send(mocker):
    return mocker.patch("router.conversations.send_text_with_id", new=mocker.AsyncMock(return_value="wamid.op"))


# -----------------------------
# Operations
# -----------------------------
@pytest.mark.asyncio
async def test_health_quick(client):
    response = await client.get("/health/quick")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


@pytest.mark.asyncio
async def test_metrics_endpoint(client):
    response = await client.get("/metrics")
    assert response.status_code == 200
    assert "whatsapp_messages_processed_total" in response.text


# -----------------------------
# WhatsApp webhook
# -----------------------------
@pytest.mark.asyncio
async def test_webhook_verification(client):
    params = {"hub.mode": "subscribe", "hub.verify_token": "verify-me", "hub.challenge": "12345"}
    response = await client.get("/webhook/whatsapp", params=params)

    assert response.status_code == 200
    assert response.text == "12345"


@pytest.mark.asyncio
async def test_webhook_verification_wrong_token(client):
    params = {"hub.mode": "subscribe", "hub.verify_token": "nope", "hub.challenge": "12345"}
    response = await client.get("/webhook/whatsapp", params=params)

    assert response.status_code == 403
    assert response.text == "Forbidden"


@pytest.mark.asyncio
async def test_webhook_delivers_to_handler(client, mocker, text_payload):
    handle = mocker.patch(
        "router.whatsapp.whatsapp_handler.handle_webhook", new=mocker.AsyncMock(return_value={"status": "processed"})
    )

    response = await client.post("/webhook/whatsapp", json=text_payload("Hola"))

    assert response.status_code == 200
    assert response.json() == {"status": "processed"}
    assert handle.await_args.args[0]["entry"][0]["changes"][0]["value"]["messages"][0]["text"]["body"] == "Hola"


@pytest.mark.asyncio
async def test_webhook_invalid_json(client):
    response = await client.post("/webhook/whatsapp", content=b"not json", headers={"Content-Type": "application/json"})
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_webhook_handler_error_returns_500(client, mocker, text_payload):
    mocker.patch(
        "router.whatsapp.whatsapp_handler.handle_webhook", new=mocker.AsyncMock(side_effect=RuntimeError("boom"))
    )

    response = await client.post("/webhook/whatsapp", json=text_payload("Hola"))

    assert response.status_code == 500
    assert response.json() == {"error": "Internal error"}


@pytest.mark.asyncio
async def test_webhook_signature_checked(client, mocker, text_payload):
    mocker.patch.object(webhook_security, "meta_app_secret", "app-secret")
    mocker.patch(
        "router.whatsapp.whatsapp_handler.handle_webhook", new=mocker.AsyncMock(return_value={"status": "ok"})
    )
    body = json.dumps(text_payload("Hola")).encode()
    signature = hmac.new(b"app-secret", body, hashlib.sha256).hexdigest()

    bad = await client.post("/webhook/whatsapp", content=body, headers={"X-Hub-Signature-256": "sha256=deadbeef"})
    assert bad.status_code == 403

    missing = await client.post("/webhook/whatsapp", content=body)
    assert missing.status_code == 403

    good = await client.post(
        "/webhook/whatsapp",
        content=body,
        headers={"X-Hub-Signature-256": f"sha256={signature}", "Content-Type": "application/json"},
    )
    assert good.status_code == 200


# -----------------------------
# Auth
# -----------------------------
@pytest.mark.asyncio
async def test_signup_creates_tenant(client, db_manager):
    response = await client.post(
        "/auth/signup", json={"email": "New@Shop.mx", "password": "long-enough", "business_name": "Shop"}
    )

    assert response.status_code == 200
    data = response.json()
    assert data["token_type"] == "bearer"
    assert "access_token" in response.cookies

    user = await db_manager.get_user_by_email("new@shop.mx")
    tenant = await db_manager.get_tenant(data["tenant_id"])
    assert user.tenant_id == tenant.id
    assert tenant.name == "Shop"


@pytest.mark.asyncio
@pytest.mark.parametrize("body", [
    {"email": "not-an-email", "password": "long-enough"},
    {"email": "a@b.mx", "password": "short"},
])
async def test_signup_validation(client, body):
    response = await client.post("/auth/signup", json=body)
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_signup_duplicate_email(client, user):
    response = await client.post("/auth/signup", json={"email": "owner@acme.mx", "password": "long-enough"})
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_login(client, user):
    response = await client.post("/auth/login", json={"email": "owner@acme.mx", "password": "s3cret-pass"})
    assert response.status_code == 200
    assert response.json()["tenant_id"] == user.tenant_id

    response = await client.post("/auth/login", json={"email": "owner@acme.mx", "password": "wrong-pass"})
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_protected_route_requires_token(client, conversation):
    response = await client.get(f"/api/conversations/{conversation.id}/messages")
    assert response.status_code == 401

    response = await client.get(
        f"/api/conversations/{conversation.id}/messages", headers={"Authorization": "Bearer garbage"}
    )
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_cookie_auth(client, user, conversation):
    client.cookies.set("access_token", create_jwt_token(user.id, user.email, user.tenant_id))

    response = await client.get(f"/api/conversations/{conversation.id}/messages")

    assert response.status_code == 200


# -----------------------------
# Conversations
# -----------------------------
@pytest.mark.asyncio
async def test_operator_reply_pauses_bot(client, db_manager, auth_headers, sample_lead, conversation, wa_send):
    response = await client.post(
        f"/api/conversations/{conversation.id}/reply", json={"message": "Hola Ana, soy Luis"}, headers=auth_headers
    )

    assert response.status_code == 200
    assert response.json() == {"status": "sent"}

    to, text, credentials = wa_send.await_args.args
    assert (to, text) == (sample_lead.phone, "Hola Ana, soy Luis")
    assert credentials.access_token == "tenant-token"

    assert await is_bot_paused(db_manager, conversation.id) is True
    messages = await db_manager.get_recent_messages(conversation.id)
    assert messages[-1].sent_by == "owner@acme.mx"
    assert messages[-1].wa_message_id == "wamid.op"


@pytest.mark.asyncio
async def test_operator_reply_validation(client, auth_headers, conversation, wa_send):
    response = await client.post(
        f"/api/conversations/{conversation.id}/reply", json={"message": "   "}, headers=auth_headers
    )
    assert response.status_code == 400

    response = await client.post("/api/conversations/9999/reply", json={"message": "Hola"}, headers=auth_headers)
    assert response.status_code == 404
    wa_send.assert_not_awaited()


@pytest.mark.asyncio
async def test_operator_reply_send_failure(client, auth_headers, conversation, wa_send):
    wa_send.return_value = None

    response = await client.post(
        f"/api/conversations/{conversation.id}/reply", json={"message": "Hola"}, headers=auth_headers
    )

    assert response.status_code == 500


@pytest.mark.asyncio
async def test_other_tenant_conversation_forbidden(client, db_manager, conversation, wa_send):
    other = await db_manager.create_tenant(name="Other")
    intruder = await db_manager.create_user("intruder@other.mx", "x", tenant_id=other.id)
    headers = {"Authorization": f"Bearer {create_jwt_token(intruder.id, intruder.email, other.id)}"}

    response = await client.get(f"/api/conversations/{conversation.id}/messages", headers=headers)
    assert response.status_code == 403

    response = await client.post(f"/api/conversations/{conversation.id}/resume", headers=headers)
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_resume_and_unsuppress(client, db_manager, auth_headers, conversation):
    await pause_bot(db_manager, conversation.id)
    await db_manager.update_conversation(conversation.id, broadcast_suppressed=True)

    response = await client.post(f"/api/conversations/{conversation.id}/resume", headers=auth_headers)
    assert response.json() == {"status": "resumed"}

    response = await client.post(f"/api/conversations/{conversation.id}/unsuppress", headers=auth_headers)
    assert response.json() == {"status": "unsuppressed"}

    response = await client.get(f"/api/conversations/{conversation.id}/messages", headers=auth_headers)
    data = response.json()
    assert data["bot_paused"] is False
    assert data["broadcast_suppressed"] is False


@pytest.mark.asyncio
async def test_list_messages(client, db_manager, auth_headers, sample_lead, conversation):
    await db_manager.save_message(conversation.id, "user", "Hola", lead_id=sample_lead.id)
    await db_manager.save_message(conversation.id, "assistant", "¡Hola!", lead_id=sample_lead.id, sent_by="bot")

    response = await client.get(f"/api/conversations/{conversation.id}/messages", headers=auth_headers)

    data = response.json()
    assert data["conversation_id"] == conversation.id
    assert [(m["role"], m["content"]) for m in data["messages"]] == [("user", "Hola"), ("assistant", "¡Hola!")]
    assert data["messages"][0]["created_at"].endswith("Z")


# -----------------------------
# Cron
# -----------------------------
@pytest.mark.asyncio
async def test_cron_requires_secret(client):
    assert (await client.post("/api/cron/followups")).status_code == 401
    assert (await client.post("/api/cron/followups", headers={"Authorization": "Bearer wrong"})).status_code == 401


@pytest.mark.asyncio
async def test_cron_processes_followups(client, mocker):
    process = mocker.patch(
        "router.cron.process_due_follow_ups",
        new=mocker.AsyncMock(return_value={"processed": 2, "successful": 2, "failed": 0}),
    )
    reengage = mocker.patch("router.cron.reengage_idle_leads", new=mocker.AsyncMock(return_value=1))

    response = await client.get("/api/cron/followups", headers={"Authorization": "Bearer cron-secret"})

    assert response.status_code == 200
    assert response.json() == {
        "status": "ok", "processed": 2, "successful": 2, "failed": 0, "reengagements_scheduled": 1,
    }
    process.assert_awaited_once()
    reengage.assert_awaited_once()


# -----------------------------
# Twilio
# -----------------------------
@pytest.mark.asyncio
async def test_sms_webhook_captures_code(client, db_manager, tenant):
    number = await mock_purchase_number(db_manager, tenant.id, "+5215512345678")

    response = await client.post(
        "/api/twilio/sms/webhook",
        data={"To": "+5215512345678", "From": "+15550000000", "Body": "Tu código de WhatsApp es 482913"},
    )

    assert response.status_code == 200
    assert response.text == "<Response></Response>"
    assert response.headers["content-type"].startswith("text/xml")

    stored = await db_manager.get_twilio_number(number.id, tenant.id)
    assert stored.verification_code == "482913"


@pytest.mark.asyncio
async def test_sms_webhook_without_code(client):
    response = await client.post("/api/twilio/sms/webhook", data={"To": "+5215512345678", "Body": "Hola"})

    assert response.status_code == 200
    assert response.text == "<Response></Response>"


@pytest.mark.asyncio
async def test_mock_purchase_list_and_release(client, auth_headers):
    response = await client.post(
        "/api/twilio/numbers/purchase", json={"phone_number": "+5215512345678"}, headers=auth_headers
    )
    assert response.status_code == 200
    number = response.json()["number"]
    assert number["twilio_sid"].startswith("MOCK_")

    response = await client.get("/api/twilio/numbers", headers=auth_headers)
    assert [n["id"] for n in response.json()["numbers"]] == [number["id"]]

    response = await client.get(f"/api/twilio/numbers/{number['id']}/verification", headers=auth_headers)
    assert response.json() == {"code": None, "expires_at": None, "expired": False}

    response = await client.delete(f"/api/twilio/numbers/{number['id']}", headers=auth_headers)
    assert response.json() == {"status": "released"}

    response = await client.delete(f"/api/twilio/numbers/{number['id']}", headers=auth_headers)
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_search_numbers(client, auth_headers, mocker):
    mocker.patch(
        "router.twilio.twilio_numbers.search_available_numbers",
        new=mocker.AsyncMock(return_value=[{"phone_number": "+14155550100"}]),
    )

    response = await client.get("/api/twilio/numbers/search", params={"country": "us"}, headers=auth_headers)
    assert response.json() == {"numbers": [{"phone_number": "+14155550100"}]}

    response = await client.get("/api/twilio/numbers/search", params={"country": "BR"}, headers=auth_headers)
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_search_without_twilio_credentials(client, auth_headers):
    response = await client.get("/api/twilio/numbers/search", params={"country": "MX"}, headers=auth_headers)
    assert response.status_code == 503


# -----------------------------
# Broadcasts
# -----------------------------
CONTACTS_CSV = "telefono,nombre\n+52 55 1111 1111,Ana\n5215522222222,Luis\n123,Corto\n"


async def _create_broadcast(client, auth_headers, **form):
    data = {"name": "Promo julio", "template_name": "promo_julio", **form}
    return await client.post(
        "/api/broadcasts",
        data=data,
        files={"csv": ("contactos.csv", CONTACTS_CSV.encode("utf-8"), "text/csv")},
        headers=auth_headers,
    )


@pytest.mark.asyncio
async def test_create_and_send_broadcast(client, db_manager, auth_headers, mocker):
    from services.whatsapp_service import TemplateSendResult

    send_template = mocker.patch(
        "services.broadcast_service.send_template",
        new=mocker.AsyncMock(return_value=TemplateSendResult(success=True, message_id="wamid.b")),
    )

    response = await _create_broadcast(client, auth_headers, suppress_bot="true")
    assert response.status_code == 200
    broadcast = response.json()["broadcast"]
    assert (broadcast["status"], broadcast["total_recipients"], broadcast["suppress_bot"]) == ("draft", 2, True)

    response = await client.get("/api/broadcasts", headers=auth_headers)
    assert [b["id"] for b in response.json()["broadcasts"]] == [broadcast["id"]]

    response = await client.post(f"/api/broadcasts/{broadcast['id']}/send", headers=auth_headers)
    assert response.json() == {"status": "completed", "sent": 2, "failed": 0}
    assert send_template.await_count == 2

    response = await client.get(f"/api/broadcasts/{broadcast['id']}", headers=auth_headers)
    body = response.json()
    assert body["broadcast"]["status"] == "completed"
    assert [r["status"] for r in body["recipients"]] == ["sent", "sent"]

    response = await client.post(f"/api/broadcasts/{broadcast['id']}/send", headers=auth_headers)
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_create_broadcast_validation(client, auth_headers):
    response = await client.post(
        "/api/broadcasts", data={"name": "Promo", "template_name": "promo"}, headers=auth_headers
    )
    assert response.status_code == 400

    response = await _create_broadcast(client, auth_headers, components="{not json")
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_unknown_broadcast_is_not_found(client, auth_headers):
    response = await client.get("/api/broadcasts/9999", headers=auth_headers)
    assert response.status_code == 404

    response = await client.post("/api/broadcasts/9999/send", headers=auth_headers)
    assert response.status_code == 404
