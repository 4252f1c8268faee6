# router/twilio.py

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import Response
from pydantic import BaseModel

from config.environments import current_config
from database.crud import DBManager
from router.auth import get_db_manager, get_tenant_user
from services import twilio_numbers
from utils.errors import TwilioNotConfiguredError, TwilioProvisioningError
from utils.logger import get_logger
from utils.webhook_security import webhook_security

log = get_logger("router.twilio")

router = APIRouter(prefix="/api/twilio", tags=["twilio"])

EMPTY_TWIML = "<Response></Response>"


class PurchaseRequest(BaseModel):
    phone_number: str


def twiml_response() -> Response:
    return Response(content=EMPTY_TWIML, status_code=200, media_type="text/xml")


@router.post("/sms/webhook")
async def sms_webhook(request: Request, db: DBManager = Depends(get_db_manager)):
    """
    Twilio SMS webhook endpoint
    Captures the 6-digit WhatsApp verification code Meta sends to our numbers
    """
    await webhook_security.verify_twilio_signature(request)

    try:
        form = await request.form()
        to = form.get("To")
        body = form.get("Body")
        if not to or not body:
            return twiml_response()

        code = twilio_numbers.extract_verification_code(body)
        if code:
            log.info("Verification code captured", to=to)
            await twilio_numbers.update_verification_code(db, to, code)
    except Exception as e:
        log.error("SMS webhook error", error=str(e), exc_info=True)

    return twiml_response()


def _provisioning_error(e: Exception) -> HTTPException:
    if isinstance(e, TwilioNotConfiguredError):
        return HTTPException(status_code=503, detail=str(e))
    return HTTPException(status_code=502, detail=str(e))


@router.get("/numbers/search")
async def search_numbers(
    country: str = "MX",
    area_code: Optional[str] = None,
    contains: Optional[str] = None,
    user=Depends(get_tenant_user),
):
    country = country.upper()
    if country not in ("MX", "US"):
        raise HTTPException(status_code=400, detail="Country must be MX or US")

    try:
        numbers = await twilio_numbers.search_available_numbers(country, area_code, contains)
    except (TwilioNotConfiguredError, TwilioProvisioningError) as e:
        raise _provisioning_error(e)
    return {"numbers": numbers}


@router.post("/numbers/purchase")
async def purchase_number(
    body: PurchaseRequest,
    user=Depends(get_tenant_user),
    db: DBManager = Depends(get_db_manager),
):
    try:
        if current_config.TWILIO_MOCK_PURCHASES:
            number = await twilio_numbers.mock_purchase_number(db, user.tenant_id, body.phone_number)
        else:
            number = await twilio_numbers.purchase_number(db, user.tenant_id, body.phone_number)
    except (TwilioNotConfiguredError, TwilioProvisioningError) as e:
        raise _provisioning_error(e)
    return {"number": twilio_numbers.serialize_number(number)}


@router.get("/numbers")
async def list_numbers(user=Depends(get_tenant_user), db: DBManager = Depends(get_db_manager)):
    numbers = await twilio_numbers.get_provisioned_numbers(db, user.tenant_id)
    return {"numbers": [twilio_numbers.serialize_number(n) for n in numbers]}


@router.delete("/numbers/{number_id}")
async def release_number(number_id: int, user=Depends(get_tenant_user), db: DBManager = Depends(get_db_manager)):
    try:
        number = await twilio_numbers.release_number(db, user.tenant_id, number_id)
    except (TwilioNotConfiguredError, TwilioProvisioningError) as e:
        raise _provisioning_error(e)
    if not number:
        raise HTTPException(status_code=404, detail="Number not found")
    return {"status": "released"}


@router.get("/numbers/{number_id}/verification")
async def get_verification(number_id: int, user=Depends(get_tenant_user), db: DBManager = Depends(get_db_manager)):
    return await twilio_numbers.get_verification_code(db, user.tenant_id, number_id)
