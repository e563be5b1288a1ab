from __future__ import annotations

import logging
import uuid
from typing import Any

from fastapi import Depends, Header, HTTPException

from .. import config
from ..deps import parse_uuid
from ..errors import detail_payload
from .security import decode_client_admin_token

logger = logging.getLogger(__name__)

ROLE_ORDER = {"viewer": 1, "operator": 2, "admin": 3}


def _unauthorized(message: str, reason: str) -> HTTPException:
    trace_id = str(uuid.uuid4())
    if config.DEV_MODE:
        return HTTPException(status_code=401, detail=detail_payload(message=message, reason=reason, trace_id=trace_id))
    return HTTPException(status_code=401, detail={"message": message, "trace_id": trace_id})


def _extract_bearer(authorization: str | None) -> str | None:
    if not authorization:
        return None
    parts = authorization.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer" or not parts[1].strip():
        return None
    return parts[1].strip()


def get_current_client_admin(
    authorization: str | None = Header(default=None, alias="Authorization"),
    x_admin_token: str | None = Header(default=None, alias="X-Admin-Token"),
    x_client_id: str | None = Header(default=None, alias="X-Client-Id"),
) -> dict[str, Any]:
    bearer = _extract_bearer(authorization)
    if bearer:
        payload = decode_client_admin_token(bearer)
        admin_id = str(payload.get("sub") or "").strip()
        client_id = str(payload.get("client_id") or "").strip()
        role = str(payload.get("role") or "viewer").strip().lower()
        if not admin_id or not client_id or role not in ROLE_ORDER:
            logger.warning("[AUTH] rejected client admin token sub=%s client=%s role=%s", admin_id, client_id, role)
            raise _unauthorized("Invalid client admin token", "token_claims_invalid")
        return {
            "id": admin_id,
            "email": str(payload.get("email") or ""),
            "client_id": parse_uuid(client_id, "client_id"),
            "role": role,
            "auth_mode": "jwt",
        }

    # Dev fallback only.
    runtime_admin_token = str(getattr(config, "ADMIN_TOKEN", "") or "")
    if runtime_admin_token and x_admin_token and x_admin_token == runtime_admin_token:
        if not x_client_id:
            raise HTTPException(status_code=400, detail="X-Client-Id header is required with X-Admin-Token")
        return {
            "id": None,
            "email": "dev-admin-token",
            "client_id": parse_uuid(x_client_id, "X-Client-Id"),
            "role": "admin",
            "auth_mode": "token",
        }

    raise _unauthorized("Client admin authentication required", "missing_token")


def require_admin_role(min_role: str):
    required = ROLE_ORDER.get(min_role)
    if required is None:
        raise ValueError(f"Unknown role: {min_role}")

    def _dep(admin_user: dict[str, Any] = Depends(get_current_client_admin)) -> dict[str, Any]:
        role = str(admin_user.get("role") or "viewer").lower()
        current = ROLE_ORDER.get(role, 0)
        if current < required:
            raise HTTPException(status_code=403, detail="Insufficient admin role")
        return admin_user

    return _dep
