from __future__ import annotations

import logging
import math
from datetime import datetime, timezone
from typing import Any, Iterable

logger = logging.getLogger(__name__)

PROMOTER_MIN = 9
PASSIVE_MIN = 7

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def classify_score(score: float) -> str:
    if score >= PROMOTER_MIN:
        return "promoter"
    if score >= PASSIVE_MIN:
        return "passive"
    return "detractor"


def _valid_score(value: Any) -> int | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if value != int(value) or not 0 <= value <= 10:
        return None
    return int(value)


def respondent_key(response: dict[str, Any]) -> str:
    user_id = response.get("user_id")
    if user_id:
        return f"user:{user_id}"
    email = str(response.get("email") or "").strip().lower()
    if email:
        return f"email:{email}"
    return f"session:{response.get('id')}"


def _created_at(response: dict[str, Any]) -> datetime:
    value = response.get("created_at")
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return _EPOCH
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return _EPOCH


def latest_scored_responses(responses: Iterable[dict[str, Any]]) -> list[dict[str, Any]]:
    """One response per respondent: the latest by created_at among those carrying a valid score."""
    latest: dict[str, dict[str, Any]] = {}
    for response in responses:
        score = _valid_score(response.get("nps_score"))
        if score is None:
            if response.get("nps_score") is not None:
                logger.warning(
                    "[ANALYTICS] response %s has invalid nps_score=%r; excluded",
                    response.get("id"),
                    response.get("nps_score"),
                )
            continue
        key = respondent_key(response)
        current = latest.get(key)
        if current is None or _created_at(response) >= _created_at(current):
            latest[key] = {**response, "nps_score": score}
    return list(latest.values())


def compute_nps(responses: Iterable[dict[str, Any]]) -> dict[str, int]:
    scored = latest_scored_responses(responses)
    promoters = passives = detractors = 0
    for response in scored:
        bucket = classify_score(response["nps_score"])
        if bucket == "promoter":
            promoters += 1
        elif bucket == "passive":
            passives += 1
        else:
            detractors += 1
    total = len(scored)
    score = round_half_up(100 * (promoters - detractors) / total) if total else 0
    return {
        "score": int(score),
        "promoters": promoters,
        "passives": passives,
        "detractors": detractors,
        "total": total,
    }


def nps_percentages(nps: dict[str, int]) -> dict[str, int]:
    total = nps.get("total") or 0
    if total <= 0:
        return {"promoters": 0, "passives": 0, "detractors": 0}
    return {
        "promoters": round_half_up(100 * nps["promoters"] / total),
        "passives": round_half_up(100 * nps["passives"] / total),
        "detractors": round_half_up(100 * nps["detractors"] / total),
    }


def response_rate(responded: int, invited: int) -> dict[str, Any]:
    ratio = (responded / invited) if invited > 0 else 0.0
    return {
        "responded": int(responded),
        "invited": int(invited),
        "ratio": ratio,
        "percent": round_half_up(100 * ratio),
    }


def exclude_orphaned(responses: Iterable[dict[str, Any]], known_round_ids: set[str]) -> list[dict[str, Any]]:
    """Drop responses pointing at a round that does not exist for the tenant."""
    kept: list[dict[str, Any]] = []
    for response in responses:
        round_id = response.get("round_id")
        if round_id is not None and str(round_id) not in known_round_ids:
            logger.warning(
                "[ANALYTICS] response %s references unknown round %s; excluded from aggregates",
                response.get("id"),
                round_id,
            )
            continue
        kept.append(response)
    return kept
