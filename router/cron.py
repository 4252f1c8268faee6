# router/cron.py

import hmac

from fastapi import APIRouter, Depends, HTTPException, Request

from config.environments import Environment, current_config
from database.crud import DBManager
from router.auth import get_db_manager
from services.follow_up_manager import process_due_follow_ups, reengage_idle_leads
from utils.logger import get_logger

log = get_logger("router.cron")

router = APIRouter(prefix="/api/cron", tags=["cron"])


def verify_cron_auth(request: Request):
    secret = current_config.CRON_SECRET
    if not secret:
        # Open only for local development
        if current_config.ENVIRONMENT == Environment.DEVELOPMENT:
            return
        raise HTTPException(status_code=401, detail="Unauthorized")

    header = request.headers.get("Authorization", "")
    if not hmac.compare_digest(header, f"Bearer {secret}"):
        raise HTTPException(status_code=401, detail="Unauthorized")


@router.api_route("/followups", methods=["GET", "POST"], dependencies=[Depends(verify_cron_auth)])
async def run_followups(db: DBManager = Depends(get_db_manager)):
    """Send every follow-up due in the next few minutes, then re-engage idle leads"""
    result = await process_due_follow_ups(db)
    result["reengagements_scheduled"] = await reengage_idle_leads(db)
    return {"status": "ok", **result}
