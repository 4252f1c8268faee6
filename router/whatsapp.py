# router/whatsapp.py

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from config.environments import current_config
from database.crud import DBManager
from router.auth import get_db_manager
from services.whatsapp_handler import whatsapp_handler
from utils.logger import get_logger
from utils.webhook_security import webhook_security

log = get_logger("router.whatsapp")

router = APIRouter(tags=["whatsapp"])


@router.get("/webhook/whatsapp")
async def verify_webhook(request: Request):
    """Meta subscription handshake"""
    params = request.query_params
    mode = params.get("hub.mode")
    token = params.get("hub.verify_token")
    challenge = params.get("hub.challenge", "")

    if mode == "subscribe" and current_config.WHATSAPP_VERIFY_TOKEN and token == current_config.WHATSAPP_VERIFY_TOKEN:
        log.info("WhatsApp webhook verified")
        return PlainTextResponse(challenge, status_code=200)

    log.warning("WhatsApp webhook verification failed", mode=mode)
    return PlainTextResponse("Forbidden", status_code=403)


@router.post("/webhook/whatsapp")
async def webhook_whatsapp(request: Request, db: DBManager = Depends(get_db_manager)):
    """
    WhatsApp Cloud API webhook endpoint
    Configure in Meta App Dashboard: https://yourserver.com/webhook/whatsapp
    """
    await webhook_security.verify_meta_signature(request)

    try:
        payload = await request.json()
    except ValueError:
        return JSONResponse({"error": "Invalid JSON"}, status_code=400)

    try:
        return await whatsapp_handler.handle_webhook(payload, db)
    except Exception as e:
        log.error("WhatsApp webhook error", error=str(e), exc_info=True)
        return JSONResponse({"error": "Internal error"}, status_code=500)
