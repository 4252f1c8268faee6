from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
import jwt
from fastapi import HTTPException

from config.environments import current_config
from utils.logger import get_logger

log = get_logger("secure")


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode('utf-8'), bcrypt.gensalt()).decode('utf-8')


def verify_password(password: str, stored_password: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode('utf-8'), stored_password.encode('utf-8'))
    except ValueError:
        log.error("Stored password is not a valid bcrypt hash")
        return False


def create_jwt_token(user_id: int, email: str, tenant_id: Optional[str] = None, expires_hours: int = None) -> str:
    expires_hours = expires_hours or current_config.JWT_EXPIRE_HOURS
    exp = datetime.now(timezone.utc) + timedelta(hours=expires_hours)
    payload = {"sub": str(user_id), "email": email, "tenant_id": tenant_id, "exp": exp}
    return jwt.encode(payload, current_config.SECRET_KEY, algorithm=current_config.JWT_ALGORITHM)


def verify_jwt_token(token: str) -> dict:
    try:
        payload = jwt.decode(token, current_config.SECRET_KEY, algorithms=[current_config.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token has expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")

    if not payload.get("sub"):
        raise HTTPException(status_code=401, detail="Invalid token payload")

    return payload
