from typing import Any

from fastapi import APIRouter, Depends
from fastapi.encoders import jsonable_encoder

from ..auth.admin_deps import require_admin_role
from ..deps import parse_uuid
from ..errors import RoundPolicyError, policy_http_exception
from ..schemas import AlertScanRequest, FinalizeResponseRequest
from ..services import lifecycle

router = APIRouter()


def _json(data: Any) -> Any:
    return jsonable_encoder(data)


@router.post("/responses/{response_id}/finalize")
def responses_finalize(
    response_id: str,
    payload: FinalizeResponseRequest | None = None,
    admin_user: dict[str, Any] = Depends(require_admin_role("operator")),
) -> Any:
    try:
        result = lifecycle.finalize_response(
            admin_user["client_id"],
            parse_uuid(response_id, "response_id"),
            payload.nps_score if payload else None,
            actor=admin_user,
        )
    except RoundPolicyError as exc:
        raise policy_http_exception(exc)
    return _json(result)


@router.post("/responses/{response_id}/alerts/scan")
def responses_scan_alerts(
    response_id: str,
    payload: AlertScanRequest | None = None,
    admin_user: dict[str, Any] = Depends(require_admin_role("operator")),
) -> Any:
    payload = payload or AlertScanRequest()
    try:
        result = lifecycle.scan_response_alerts(
            admin_user["client_id"],
            parse_uuid(response_id, "response_id"),
            content=payload.content,
            flags=payload.flags,
        )
    except RoundPolicyError as exc:
        raise policy_http_exception(exc)
    return _json(result)
