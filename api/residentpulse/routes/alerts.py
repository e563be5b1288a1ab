from typing import Any

from fastapi import APIRouter, Depends
from fastapi.encoders import jsonable_encoder

from .. import alert_repo
from ..auth.admin_deps import require_admin_role
from ..deps import parse_uuid
from ..errors import RoundPolicyError, policy_http_exception
from ..schemas import DismissAlertRequest, SolveAlertRequest
from ..services import lifecycle

router = APIRouter()


def _json(data: Any) -> Any:
    return jsonable_encoder(data)


@router.get("/alerts")
def alerts_open(admin_user: dict[str, Any] = Depends(require_admin_role("viewer"))) -> Any:
    rows = alert_repo.list_alerts(admin_user["client_id"])
    return _json({"alerts": rows, "count": len(rows)})


@router.get("/rounds/{round_id}/alerts")
def alerts_for_round(round_id: str, admin_user: dict[str, Any] = Depends(require_admin_role("viewer"))) -> Any:
    rows = alert_repo.list_alerts(admin_user["client_id"], round_id=parse_uuid(round_id, "round_id"), include_closed=True)
    return _json({"alerts": rows, "count": len(rows)})


@router.post("/alerts/{alert_id}/dismiss")
def alerts_dismiss(
    alert_id: str,
    payload: DismissAlertRequest | None = None,
    admin_user: dict[str, Any] = Depends(require_admin_role("operator")),
) -> Any:
    try:
        row = lifecycle.dismiss_alert(
            admin_user["client_id"],
            parse_uuid(alert_id, "alert_id"),
            actor=admin_user,
            reason=payload.reason if payload else None,
        )
    except RoundPolicyError as exc:
        raise policy_http_exception(exc)
    return _json({"alert": row})


@router.post("/alerts/{alert_id}/solve")
def alerts_solve(
    alert_id: str,
    payload: SolveAlertRequest,
    admin_user: dict[str, Any] = Depends(require_admin_role("operator")),
) -> Any:
    try:
        row = lifecycle.solve_alert(admin_user["client_id"], parse_uuid(alert_id, "alert_id"), payload.note, actor=admin_user)
    except RoundPolicyError as exc:
        raise policy_http_exception(exc)
    return _json({"alert": row})
