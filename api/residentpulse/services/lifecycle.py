"""Round lifecycle operations: schedule, recalculate, launch, close, and response follow-ups.

Per-tenant singletons (one in-progress round, one in-progress dispatch job)
are enforced by partial unique indexes and compare-and-set status updates;
the checks here only turn the common cases into readable policy errors.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import Any

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from .. import alert_repo, job_repo, response_repo, round_repo
from ..config import ALLOWED_CADENCES
from ..database import SessionLocal
from ..errors import RoundPolicyError
from . import dispatch, directory
from .events import log_activity
from .insights import run_closure_hooks
from .scheduling import compute_closes_at, launch_window_violation, plan_rounds
from .screening import screen_response
from .state_machine import round_due_to_close, transition_round_status

logger = logging.getLogger(__name__)


def _now(now: datetime | None) -> datetime:
    return now or datetime.now(timezone.utc)


def _require_client_plan(db, client_id: str) -> dict[str, Any]:
    plan = directory.get_client_plan(db, client_id)
    if not plan:
        raise RoundPolicyError("client_not_found", "Client not found", status_code=404)
    return plan


def _check_cadence(cadence: int, plan: dict[str, Any]) -> None:
    if cadence not in ALLOWED_CADENCES:
        raise RoundPolicyError(
            "invalid_cadence",
            f"Cadence must be one of {', '.join(str(c) for c in ALLOWED_CADENCES)} rounds per year.",
            status_code=400,
        )
    if cadence > plan["rounds_per_year"]:
        raise RoundPolicyError(
            "plan_limit",
            f"Your plan allows {plan['rounds_per_year']} rounds per year.",
            status_code=403,
            hint="Upgrade the plan to run quarterly rounds.",
        )


def schedule_rounds(
    client_id: str,
    first_launch_date: date,
    cadence: int,
    *,
    actor: dict[str, Any] | None = None,
    now: datetime | None = None,
) -> list[dict[str, Any]]:
    today = _now(now).date()
    try:
        with SessionLocal() as db:
            plan = _require_client_plan(db, client_id)
            _check_cadence(cadence, plan)
            if first_launch_date < today:
                raise RoundPolicyError(
                    "past_first_launch_date",
                    "first_launch_date cannot be in the past.",
                    status_code=400,
                )
            if round_repo.round_counts(db, client_id)["total"] > 0:
                raise RoundPolicyError(
                    "already_scheduled",
                    "Rounds are already scheduled for this client.",
                    hint="Use POST /rounds/recalculate to change the cadence.",
                )
            slots = plan_rounds(first_launch_date=first_launch_date, cadence=cadence, today=today)
            round_repo.upsert_schedule_settings(db, client_id, first_launch_date, cadence)
            round_repo.insert_planned_rounds(db, client_id, slots)
            log_activity(
                db,
                action="schedule",
                client_id=client_id,
                actor=actor,
                entity_type="round_schedule",
                entity_id=client_id,
                metadata={"first_launch_date": first_launch_date, "cadence": cadence, "rounds": len(slots)},
            )
            db.commit()
    except IntegrityError as exc:
        raise RoundPolicyError("already_scheduled", "Rounds were scheduled concurrently; reload and retry.") from exc
    logger.info("[ROUNDS] client=%s scheduled %s rounds from %s (cadence=%s)", client_id, len(slots), first_launch_date, cadence)
    return round_repo.list_rounds(client_id)


def recalculate_rounds(
    client_id: str,
    cadence: int | None = None,
    *,
    actor: dict[str, Any] | None = None,
    now: datetime | None = None,
) -> list[dict[str, Any]]:
    """Regenerate planned rounds; launched and concluded rounds are never touched."""
    today = _now(now).date()
    try:
        with SessionLocal() as db:
            plan = _require_client_plan(db, client_id)
            settings = round_repo.get_schedule_settings(db, client_id)
            if not settings:
                raise RoundPolicyError(
                    "nothing_to_recalculate",
                    "There is no round schedule to recalculate.",
                    status_code=400,
                    hint="Create a schedule with POST /rounds/schedule first.",
                )
            new_cadence = int(cadence or settings["cadence"])
            _check_cadence(new_cadence, plan)
            counts = round_repo.round_counts(db, client_id)
            removed = round_repo.delete_planned_rounds(db, client_id)
            slots = plan_rounds(
                first_launch_date=settings["first_launch_date"],
                cadence=new_cadence,
                today=today,
                launched_count=counts["launched"],
            )
            round_repo.upsert_schedule_settings(db, client_id, settings["first_launch_date"], new_cadence)
            round_repo.insert_planned_rounds(db, client_id, slots)
            log_activity(
                db,
                action="recalculate",
                client_id=client_id,
                actor=actor,
                entity_type="round_schedule",
                entity_id=client_id,
                metadata={
                    "previous_cadence": settings["cadence"],
                    "cadence": new_cadence,
                    "removed": removed,
                    "created": len(slots),
                },
            )
            db.commit()
    except IntegrityError as exc:
        raise RoundPolicyError("schedule_conflict", "The schedule changed concurrently; reload and retry.") from exc
    logger.info("[ROUNDS] client=%s recalculated cadence=%s removed=%s created=%s", client_id, new_cadence, removed, len(slots))
    return round_repo.list_rounds(client_id)


def launch_round(
    client_id: str,
    round_id: str,
    *,
    actor: dict[str, Any] | None = None,
    now: datetime | None = None,
    supervisor: dispatch.DispatchSupervisor | None = None,
) -> dict[str, Any]:
    """Launch a planned round and start its dispatch job in the background."""
    now = _now(now)
    try:
        with SessionLocal() as db:
            round_row = round_repo.get_round(db, round_id, client_id, for_update=True)
            if not round_row:
                raise RoundPolicyError("round_not_found", "Survey round not found", status_code=404)
            if transition_round_status(round_row["status"], "launch") is None:
                raise RoundPolicyError("round_not_planned", f"Cannot launch a round that is {round_row['status']}.")
            violation = launch_window_violation(round_row["scheduled_date"], now.date())
            if violation:
                raise RoundPolicyError("outside_launch_window", violation)
            if round_repo.get_in_progress_round(db, client_id):
                raise RoundPolicyError(
                    "round_in_progress",
                    "Another survey round is already in progress. Wait for it to conclude before launching a new one.",
                )
            if job_repo.get_active_job(client_id):
                raise RoundPolicyError(
                    "dispatch_in_progress",
                    "Invitations for a previous round are still being sent.",
                    hint="Poll GET /jobs/active until the job finishes.",
                )
            lowest = round_repo.lowest_planned_number(db, client_id)
            if lowest is not None and lowest != round_row["round_number"]:
                raise RoundPolicyError("earlier_round_planned", f"Round {lowest} must be launched first.")

            recipients = directory.list_eligible(db, client_id)
            if not recipients:
                raise RoundPolicyError(
                    "no_recipients",
                    "No board members found. Add board members before launching a survey round.",
                    status_code=400,
                )

            closes_at = compute_closes_at(now)
            launched = round_repo.mark_launched(
                db, round_id, launched_at=now, closes_at=closes_at, members_invited=len(recipients)
            )
            if not launched:
                raise RoundPolicyError("round_not_planned", "Round was launched concurrently.")
            job = job_repo.create_job(
                db, client_id=client_id, round_id=round_id, recipients=recipients, token_expires_at=closes_at
            )
            log_activity(
                db,
                action="launch",
                client_id=client_id,
                actor=actor,
                entity_type="survey_round",
                entity_id=round_id,
                metadata={"round_number": launched["round_number"], "job_id": job["id"], "recipients": len(recipients)},
            )
            db.commit()
    except IntegrityError as exc:
        if "uq_email_job_one_in_progress" in str(exc.orig):
            raise RoundPolicyError("dispatch_in_progress", "Another dispatch job is already running.") from exc
        raise RoundPolicyError("round_in_progress", "Another survey round is already in progress.") from exc

    (supervisor or dispatch.supervisor).start(
        job["id"], {"round_number": launched["round_number"], "closes_at": closes_at}
    )
    logger.info(
        "[ROUNDS] client=%s launched round %s job=%s recipients=%s",
        client_id,
        launched["round_number"],
        job["id"],
        len(recipients),
    )
    return {"job_id": job["id"], "total": job["total_count"], "closes_at": closes_at, "round": launched}


def close_round(
    client_id: str,
    round_id: str,
    *,
    actor: dict[str, Any] | None = None,
    mode: str = "manual",
) -> dict[str, Any]:
    """Conclude an in-progress round, then run closure side effects before returning.

    An in-flight dispatch job is left to finish; the close is flagged instead of blocked.
    """
    with SessionLocal() as db:
        round_row = round_repo.get_round(db, round_id, client_id)
        if not round_row:
            raise RoundPolicyError("round_not_found", "Survey round not found", status_code=404)
        if transition_round_status(round_row["status"], "close") is None:
            raise RoundPolicyError("round_not_in_progress", f"Cannot close a round that is {round_row['status']}.")
        concluded = round_repo.mark_concluded(db, round_id, concluded_by=mode)
        if not concluded:
            raise RoundPolicyError("round_not_in_progress", "Round was concluded concurrently.")
        job = job_repo.get_job_for_round(round_id)
        dispatch_in_progress = bool(job and job["status"] == "in_progress")
        log_activity(
            db,
            action="close",
            client_id=client_id,
            actor=actor,
            entity_type="survey_round",
            entity_id=round_id,
            metadata={"mode": mode, "round_number": concluded["round_number"], "dispatch_in_progress": dispatch_in_progress},
        )
        db.commit()

    if dispatch_in_progress:
        logger.warning("[ROUNDS] round=%s closed while dispatch job=%s is still sending", round_id, job["id"])

    closure: dict[str, Any]
    try:
        with SessionLocal() as db:
            closure = run_closure_hooks(db, concluded)
            db.commit()
    except SQLAlchemyError as exc:
        logger.exception("[ROUNDS] closure side effects failed for round=%s", round_id)
        closure = {"error": str(exc)}

    logger.info("[ROUNDS] client=%s concluded round %s (%s)", client_id, concluded["round_number"], mode)
    return {"round": concluded, "dispatch_in_progress": dispatch_in_progress, "closure": closure}


def conclude_expired_rounds(now: datetime | None = None) -> list[str]:
    now = _now(now)
    concluded: list[str] = []
    for round_row in round_repo.list_expired_rounds(now):
        if not round_due_to_close(round_row["status"], round_row.get("closes_at"), now):
            continue
        try:
            close_round(round_row["client_id"], round_row["id"], mode="auto")
        except RoundPolicyError as exc:
            logger.info("[SWEEPER] round=%s not auto-concluded: %s", round_row["id"], exc.detail)
            continue
        concluded.append(round_row["id"])
    return concluded


def finalize_response(
    client_id: str,
    response_id: str,
    nps_score: int | None = None,
    *,
    actor: dict[str, Any] | None = None,
) -> dict[str, Any]:
    with SessionLocal() as db:
        response = response_repo.get_response(db, response_id, client_id)
        if not response:
            raise RoundPolicyError("response_not_found", "Response not found", status_code=404)
        if response.get("completed"):
            raise RoundPolicyError("response_already_completed", "Response is already completed.")
        if nps_score is None and response.get("nps_score") is None:
            raise RoundPolicyError(
                "score_required",
                "An NPS score is required to finalize a response without one.",
                status_code=400,
            )
        row = response_repo.finalize_response(db, response_id, nps_score)
        if not row:
            raise RoundPolicyError("response_already_completed", "Response was finalized concurrently.")
        _, alerts = screen_response(db, client_id, row)
        log_activity(
            db,
            action="finalize_response",
            client_id=client_id,
            actor=actor,
            entity_type="response",
            entity_id=response_id,
            metadata={"previous_score": response.get("nps_score"), "nps_score": row.get("nps_score"), "alerts": len(alerts)},
        )
        db.commit()
    return {"response": row, "alerts": alerts}


def scan_response_alerts(
    client_id: str,
    response_id: str,
    *,
    content: str | None = None,
    flags: Any = None,
) -> dict[str, Any]:
    with SessionLocal() as db:
        response = response_repo.get_response(db, response_id, client_id)
        if not response:
            raise RoundPolicyError("response_not_found", "Response not found", status_code=404)
        detected, created = screen_response(db, client_id, response, content=content, flags=flags)
        db.commit()
    return {"detected": [a.alert_type for a in detected], "alerts": created}


def dismiss_alert(client_id: str, alert_id: str, *, actor: dict[str, Any] | None = None, reason: str | None = None) -> dict[str, Any]:
    with SessionLocal() as db:
        alert = alert_repo.get_alert(db, alert_id, client_id)
        if not alert:
            raise RoundPolicyError("alert_not_found", "Alert not found", status_code=404)
        if alert["dismissed"]:
            return alert
        row = alert_repo.dismiss_alert(db, alert_id, actor=(actor or {}).get("email"), reason=reason) or alert
        log_activity(
            db,
            action="dismiss_alert",
            client_id=client_id,
            actor=actor,
            entity_type="critical_alert",
            entity_id=alert_id,
            metadata={"alert_type": alert["alert_type"], "reason": reason},
        )
        db.commit()
    return row


def solve_alert(client_id: str, alert_id: str, note: str, *, actor: dict[str, Any] | None = None) -> dict[str, Any]:
    with SessionLocal() as db:
        alert = alert_repo.get_alert(db, alert_id, client_id)
        if not alert:
            raise RoundPolicyError("alert_not_found", "Alert not found", status_code=404)
        if alert["solved"]:
            return alert
        row = alert_repo.solve_alert(db, alert_id, actor=(actor or {}).get("email"), note=note) or alert
        log_activity(
            db,
            action="solve_alert",
            client_id=client_id,
            actor=actor,
            entity_type="critical_alert",
            entity_id=alert_id,
            metadata={"alert_type": alert["alert_type"]},
        )
        db.commit()
    return row
