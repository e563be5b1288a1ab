from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from fastapi.encoders import jsonable_encoder

from .. import job_repo
from ..auth.admin_deps import require_admin_role
from ..deps import parse_uuid
from ..errors import RoundPolicyError, detail_payload, policy_http_exception
from ..services import dispatch

router = APIRouter()

_JOB_FIELDS = ("id", "round_id", "status", "sent_count", "failed_count", "total_count", "error_message", "created_at", "completed_at")


def _json(data: Any) -> Any:
    return jsonable_encoder(data)


def _public_job(job: dict[str, Any]) -> dict[str, Any]:
    return {key: job.get(key) for key in _JOB_FIELDS}


def _require_job(job_id: str, client_id: str) -> dict[str, Any]:
    job = job_repo.get_job(parse_uuid(job_id, "job_id"), client_id)
    if not job:
        raise HTTPException(status_code=404, detail=detail_payload(message="Email job not found", reason="job_not_found"))
    return job


@router.get("/jobs/active")
def jobs_active(admin_user: dict[str, Any] = Depends(require_admin_role("viewer"))) -> Any:
    client_id = admin_user["client_id"]
    resumed = dispatch.supervisor.resume_orphaned(client_id)
    job = job_repo.get_active_job(client_id)
    return _json({"job": _public_job(job) if job else None, "resumed": bool(resumed)})


@router.get("/jobs/{job_id}")
def jobs_get(job_id: str, admin_user: dict[str, Any] = Depends(require_admin_role("viewer"))) -> Any:
    return _json(_public_job(_require_job(job_id, admin_user["client_id"])))


@router.get("/jobs/{job_id}/recipients")
def jobs_recipients(
    job_id: str,
    status: str | None = None,
    admin_user: dict[str, Any] = Depends(require_admin_role("viewer")),
) -> Any:
    job = _require_job(job_id, admin_user["client_id"])
    rows = job_repo.list_recipients(job["id"], email_status=status)
    return _json({"job_id": job["id"], "recipients": rows, "count": len(rows)})


@router.post("/jobs/{job_id}/recipients/{invitation_id}/resend")
def jobs_resend(
    job_id: str,
    invitation_id: str,
    admin_user: dict[str, Any] = Depends(require_admin_role("operator")),
) -> Any:
    try:
        row = dispatch.resend_invitation(
            parse_uuid(job_id, "job_id"),
            parse_uuid(invitation_id, "invitation_id"),
            admin_user["client_id"],
            actor=admin_user,
        )
    except RoundPolicyError as exc:
        raise policy_http_exception(exc)
    return _json({"invitation": row})
