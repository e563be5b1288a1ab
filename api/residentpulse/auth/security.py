from datetime import datetime, timedelta, timezone
from typing import Any

import jwt
from fastapi import HTTPException

from ..config import ACCESS_TOKEN_TTL_MINUTES, JWT_SECRET

ALGORITHM = "HS256"
CLIENT_ADMIN_SCOPE = "client_admin"


def create_client_admin_token(
    *,
    admin_id: str,
    email: str,
    client_id: str,
    role: str,
    ttl_minutes: int | None = None,
) -> str:
    if not JWT_SECRET:
        raise HTTPException(status_code=500, detail="JWT secret not configured")
    now = datetime.now(timezone.utc)
    exp = now + timedelta(minutes=ttl_minutes or ACCESS_TOKEN_TTL_MINUTES)
    payload: dict[str, Any] = {
        "sub": admin_id,
        "email": email,
        "client_id": client_id,
        "role": role,
        "scope": CLIENT_ADMIN_SCOPE,
        "iat": int(now.timestamp()),
        "exp": int(exp.timestamp()),
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=ALGORITHM)


def decode_access_token(token: str) -> dict[str, Any]:
    if not JWT_SECRET:
        raise HTTPException(status_code=500, detail="JWT secret not configured")
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[ALGORITHM])
        if not isinstance(payload, dict):
            raise HTTPException(status_code=401, detail="Invalid token")
        return payload
    except jwt.ExpiredSignatureError as exc:
        raise HTTPException(status_code=401, detail="Token expired") from exc
    except jwt.PyJWTError as exc:
        raise HTTPException(status_code=401, detail="Invalid token") from exc


def decode_client_admin_token(token: str) -> dict[str, Any]:
    payload = decode_access_token(token)
    if payload.get("scope") != CLIENT_ADMIN_SCOPE:
        raise HTTPException(status_code=401, detail="Invalid client admin token")
    return payload
