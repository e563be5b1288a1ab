from typing import Any

from fastapi import APIRouter, Depends
from fastapi.encoders import jsonable_encoder

from .. import round_repo
from ..auth.admin_deps import require_admin_role
from ..deps import parse_uuid
from ..errors import RoundPolicyError, policy_http_exception
from ..schemas import RecalculateRequest, ScheduleRequest
from ..services import lifecycle, metrics

router = APIRouter()


def _json(data: Any) -> Any:
    return jsonable_encoder(data)


@router.get("/rounds")
def rounds_list(admin_user: dict[str, Any] = Depends(require_admin_role("viewer"))) -> Any:
    return _json({"rounds": round_repo.list_rounds(admin_user["client_id"])})


@router.post("/rounds/schedule")
def rounds_schedule(
    payload: ScheduleRequest,
    admin_user: dict[str, Any] = Depends(require_admin_role("operator")),
) -> Any:
    try:
        rounds = lifecycle.schedule_rounds(
            admin_user["client_id"], payload.first_launch_date, payload.cadence, actor=admin_user
        )
    except RoundPolicyError as exc:
        raise policy_http_exception(exc)
    return _json({"rounds": rounds})


@router.post("/rounds/recalculate")
def rounds_recalculate(
    payload: RecalculateRequest,
    admin_user: dict[str, Any] = Depends(require_admin_role("operator")),
) -> Any:
    try:
        rounds = lifecycle.recalculate_rounds(admin_user["client_id"], payload.cadence, actor=admin_user)
    except RoundPolicyError as exc:
        raise policy_http_exception(exc)
    return _json({"rounds": rounds})


@router.get("/rounds/trends")
def rounds_trends(admin_user: dict[str, Any] = Depends(require_admin_role("viewer"))) -> Any:
    try:
        return _json(metrics.round_trends(admin_user["client_id"]))
    except RoundPolicyError as exc:
        raise policy_http_exception(exc)


@router.post("/rounds/{round_id}/launch", status_code=202)
def rounds_launch(
    round_id: str,
    admin_user: dict[str, Any] = Depends(require_admin_role("operator")),
) -> Any:
    try:
        result = lifecycle.launch_round(admin_user["client_id"], parse_uuid(round_id, "round_id"), actor=admin_user)
    except RoundPolicyError as exc:
        raise policy_http_exception(exc)
    return _json(result)


@router.post("/rounds/{round_id}/close")
def rounds_close(
    round_id: str,
    admin_user: dict[str, Any] = Depends(require_admin_role("operator")),
) -> Any:
    try:
        result = lifecycle.close_round(admin_user["client_id"], parse_uuid(round_id, "round_id"), actor=admin_user)
    except RoundPolicyError as exc:
        raise policy_http_exception(exc)
    return _json(result)


@router.get("/rounds/{round_id}/dashboard")
def rounds_dashboard(
    round_id: str,
    admin_user: dict[str, Any] = Depends(require_admin_role("viewer")),
) -> Any:
    try:
        return _json(metrics.round_dashboard(admin_user["client_id"], parse_uuid(round_id, "round_id")))
    except RoundPolicyError as exc:
        raise policy_http_exception(exc)
