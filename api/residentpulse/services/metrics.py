from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timezone
from typing import Any

from .. import alert_repo, job_repo, response_repo, round_repo
from ..config import WORD_CLOUD_MAX_WORDS
from ..database import SessionLocal
from ..errors import RoundPolicyError
from . import directory
from .cohorts import cohort_mix, compute_cohorts, compute_rollup, revenue_at_risk
from .nps import compute_nps, exclude_orphaned, latest_scored_responses, nps_percentages, respondent_key, response_rate
from .scheduling import days_remaining
from .trends import build_trends, word_frequencies


def _completed(responses: list[dict[str, Any]]) -> list[dict[str, Any]]:
    return [r for r in responses if r.get("completed")]


def _responded_count(responses: list[dict[str, Any]]) -> int:
    return len({respondent_key(r) for r in responses})


def _job_summary(job: dict[str, Any] | None) -> dict[str, Any] | None:
    if not job:
        return None
    return {
        "id": job["id"],
        "status": job["status"],
        "total_count": job["total_count"],
        "sent_count": job["sent_count"],
        "failed_count": job["failed_count"],
        "error_message": job.get("error_message"),
    }


def round_snapshot(
    round_row: dict[str, Any],
    responses: list[dict[str, Any]],
    communities: list[dict[str, Any]],
    *,
    include_paid: bool = False,
) -> dict[str, Any]:
    """Analytics for one round, derived from its completed responses."""
    completed = _completed(responses)
    nps = compute_nps(completed)
    rate = response_rate(_responded_count(completed), int(round_row.get("members_invited") or 0))
    cohorts = compute_cohorts(completed, communities)
    snapshot: dict[str, Any] = {
        "round_id": round_row["id"],
        "round_number": round_row["round_number"],
        "nps_score": nps["score"],
        "response_rate": rate["percent"],
        "response_count": rate["responded"],
        "invited_count": rate["invited"],
        "community_cohorts": cohort_mix(cohorts),
        "word_frequencies": round_row.get("word_frequencies") or [],
    }
    if include_paid:
        snapshot["revenue_at_risk"] = revenue_at_risk(cohorts, communities)
        snapshot["manager_performance"] = compute_rollup(completed, communities, "manager")
        snapshot["property_type_performance"] = compute_rollup(completed, communities, "property_type")
    return snapshot


def round_dashboard(client_id: str, round_id: str, now: datetime | None = None) -> dict[str, Any]:
    now = now or datetime.now(timezone.utc)
    with SessionLocal() as db:
        round_row = round_repo.get_round(db, round_id, client_id)
        if not round_row:
            raise RoundPolicyError("round_not_found", "Survey round not found", status_code=404)
        responses = response_repo.list_round_responses(db, client_id, round_id)
        communities = directory.list_communities(db, client_id)
        if round_row["status"] == "concluded" and round_row.get("word_frequencies") is not None:
            frequencies = round_row["word_frequencies"]
        elif round_row["status"] == "planned":
            frequencies = []
        else:
            frequencies = word_frequencies(response_repo.list_user_messages(db, round_id), WORD_CLOUD_MAX_WORDS)

    completed = _completed(responses)
    nps = compute_nps(completed)
    cohorts = compute_cohorts(completed, communities)
    invited = int(round_row.get("members_invited") or 0)
    round_info = dict(round_row)
    round_info.pop("insights_json", None)
    if round_row["status"] == "in_progress" and round_row.get("closes_at"):
        round_info["days_remaining"] = days_remaining(round_row["closes_at"], now)

    return {
        "round": round_info,
        "insights": round_row.get("insights_json"),
        "nps": {**nps, "percentages": nps_percentages(nps)},
        "response_rate": response_rate(_responded_count(completed), invited),
        "responses": {"total": len(responses), "completed": len(completed), "scored": len(latest_scored_responses(completed))},
        "cohorts": {"communities": cohorts, "mix": cohort_mix(cohorts)},
        "alerts": alert_repo.list_alerts(client_id, round_id=round_id, include_closed=True),
        "word_frequencies": frequencies,
        "non_responders": job_repo.list_non_responders(round_id) if round_row["status"] != "planned" else [],
        "job": _job_summary(job_repo.get_job_for_round(round_id)),
    }


def round_trends(client_id: str) -> dict[str, Any]:
    with SessionLocal() as db:
        plan = directory.get_client_plan(db, client_id)
        if not plan:
            raise RoundPolicyError("client_not_found", "Client not found", status_code=404)
        known_round_ids = round_repo.list_round_ids(db, client_id)
        responses = exclude_orphaned(response_repo.list_client_responses(db, client_id), known_round_ids)
        communities = directory.list_communities(db, client_id)
    concluded = round_repo.list_concluded_rounds(client_id)

    by_round: dict[str, list[dict[str, Any]]] = defaultdict(list)
    for response in responses:
        by_round[str(response["round_id"])].append(response)

    is_paid = bool(plan["is_paid_tier"])
    rounds = [
        round_snapshot(round_row, by_round.get(round_row["id"], []), communities, include_paid=is_paid)
        for round_row in concluded
    ]
    trends = build_trends(rounds)
    return {"is_paid_tier": is_paid, "rounds": rounds, **trends}
