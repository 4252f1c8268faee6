# router/auth.py

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from database.crud import DBManager
from database.db import get_db
from utils.logger import get_logger
from utils.secure import create_jwt_token, hash_password, verify_jwt_token, verify_password

log = get_logger("auth")

router = APIRouter(prefix="/auth", tags=["auth"])


# -----------------------------
# Request schemas
# -----------------------------
class SignupRequest(BaseModel):
    email: str
    password: str
    business_name: Optional[str] = None


class LoginRequest(BaseModel):
    email: str
    password: str


# -----------------------------
# Dependencies
# -----------------------------
async def get_db_manager(db: AsyncSession = Depends(get_db)) -> DBManager:
    return DBManager(session=db)


def _extract_token(request: Request) -> Optional[str]:
    header = request.headers.get("Authorization", "")
    if header.lower().startswith("bearer "):
        return header[7:].strip()
    return request.cookies.get("access_token")


async def get_current_user(request: Request, db: DBManager = Depends(get_db_manager)):
    """JWT from the Authorization header or the access_token cookie"""
    token = _extract_token(request)
    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated")

    payload = verify_jwt_token(token)
    try:
        user_id = int(payload["sub"])
    except (TypeError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid token payload")

    user = await db.get_user_by_id(user_id)
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    return user


async def get_tenant_user(user=Depends(get_current_user)):
    """Authenticated user that belongs to a tenant"""
    if not user.tenant_id:
        raise HTTPException(status_code=401, detail="No tenant associated with user")
    return user


# -----------------------------
# Routes
# -----------------------------
def _token_response(response: Response, user) -> dict:
    token = create_jwt_token(user.id, user.email, user.tenant_id)
    response.set_cookie(
        key="access_token", value=token, httponly=True, secure=False, samesite="Lax"
    )
    return {"access_token": token, "token_type": "bearer", "tenant_id": user.tenant_id}


@router.post("/signup")
async def signup(body: SignupRequest, response: Response, db: DBManager = Depends(get_db_manager)):
    email = body.email.strip().lower()
    if not email or "@" not in email:
        raise HTTPException(status_code=400, detail="Invalid email")
    if len(body.password) < 8:
        raise HTTPException(status_code=400, detail="Password must be at least 8 characters")
    if await db.get_user_by_email(email):
        raise HTTPException(status_code=400, detail="Email already registered")

    tenant = await db.create_tenant(name=body.business_name or email.split("@")[0])
    user = await db.create_user(email, hash_password(body.password), tenant_id=tenant.id)
    log.info("User signed up", user_id=user.id, tenant_id=tenant.id)

    return _token_response(response, user)


@router.post("/login")
async def login(body: LoginRequest, response: Response, db: DBManager = Depends(get_db_manager)):
    user = await db.get_user_by_email(body.email.strip().lower())
    if not user or not verify_password(body.password, user.password):
        raise HTTPException(status_code=401, detail="Invalid email or password")

    return _token_response(response, user)
