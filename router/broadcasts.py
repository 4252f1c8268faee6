# router/broadcasts.py

from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile

from database.crud import DBManager
from router.auth import get_db_manager, get_tenant_user
from services import broadcast_service
from services.tenant_service import get_tenant_credentials
from utils.errors import BroadcastError, BroadcastStateError
from utils.logger import get_logger

log = get_logger("router.broadcasts")

router = APIRouter(prefix="/api/broadcasts", tags=["broadcasts"])


async def get_owned_broadcast(broadcast_id: int, user, db: DBManager):
    broadcast = await db.get_broadcast(broadcast_id, tenant_id=user.tenant_id)
    if not broadcast:
        raise HTTPException(status_code=404, detail="Broadcast not found")
    return broadcast


@router.get("")
async def list_broadcasts(user=Depends(get_tenant_user), db: DBManager = Depends(get_db_manager)):
    broadcasts = await db.list_broadcasts(user.tenant_id)
    return {"broadcasts": [broadcast_service.serialize_broadcast(b) for b in broadcasts]}


@router.post("")
async def create_broadcast(
    name: str = Form(...),
    template_name: str = Form(...),
    language: str = Form("es"),
    components: Optional[str] = Form(None),
    suppress_bot: bool = Form(False),
    csv: Optional[UploadFile] = File(None),
    user=Depends(get_tenant_user),
    db: DBManager = Depends(get_db_manager),
):
    """
    Create a campaign from a CSV contact list
    `components` is the template components list as a JSON string; a
    {{csv_name}} parameter is filled with each recipient's name
    """
    if csv is None:
        raise HTTPException(status_code=400, detail="CSV file is required")

    content = await csv.read()
    try:
        parsed_components = broadcast_service.parse_components(components)
        broadcast = await broadcast_service.create_broadcast(
            db,
            user.tenant_id,
            name.strip(),
            template_name.strip(),
            content.decode("utf-8", errors="replace"),
            language=language,
            components=parsed_components,
            suppress_bot=suppress_bot,
        )
    except BroadcastError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {"broadcast": broadcast_service.serialize_broadcast(broadcast)}


@router.get("/{broadcast_id}")
async def get_broadcast(broadcast_id: int, user=Depends(get_tenant_user), db: DBManager = Depends(get_db_manager)):
    broadcast = await get_owned_broadcast(broadcast_id, user, db)
    recipients = await db.get_broadcast_recipients(broadcast.id)
    return {
        "broadcast": broadcast_service.serialize_broadcast(broadcast),
        "recipients": [broadcast_service.serialize_recipient(r) for r in recipients],
    }


@router.post("/{broadcast_id}/send")
async def send_broadcast(broadcast_id: int, user=Depends(get_tenant_user), db: DBManager = Depends(get_db_manager)):
    broadcast = await get_owned_broadcast(broadcast_id, user, db)
    if broadcast.status in broadcast_service.LOCKED_STATUSES:
        raise HTTPException(status_code=409, detail=f"Broadcast is already {broadcast.status}")

    credentials = await get_tenant_credentials(db, user.tenant_id)
    if not credentials:
        raise HTTPException(status_code=400, detail="WhatsApp account not configured")

    try:
        result = await broadcast_service.send_broadcast(db, broadcast, credentials)
    except BroadcastStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except Exception as e:
        log.error("Broadcast send failed", broadcast_id=broadcast_id, error=str(e))
        raise HTTPException(status_code=500, detail="Broadcast send failed")

    return {"status": "completed", **result}
