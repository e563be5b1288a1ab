from __future__ import annotations

from statistics import median
from typing import Any, Iterable

from ..config import REVENUE_AT_RISK_WARNING_RATIO
from .nps import classify_score, compute_nps, latest_scored_responses, round_half_up

INACTIVE_COMMUNITY_STATUSES = {"deactivated", "inactive", "archived"}


def _community_index(communities: Iterable[dict[str, Any]]) -> tuple[dict[str, dict[str, Any]], dict[str, dict[str, Any]]]:
    by_id: dict[str, dict[str, Any]] = {}
    by_name: dict[str, dict[str, Any]] = {}
    for c in communities:
        if c.get("id") is not None:
            by_id[str(c["id"])] = c
        name = str(c.get("name") or "").strip().lower()
        if name:
            by_name[name] = c
    return by_id, by_name


def _resolve_community(response: dict[str, Any], by_id: dict[str, dict[str, Any]], by_name: dict[str, dict[str, Any]]) -> dict[str, Any] | None:
    community_id = response.get("community_id")
    if community_id is not None and str(community_id) in by_id:
        return by_id[str(community_id)]
    name = str(response.get("community_name") or "").strip().lower()
    if name and name in by_name:
        return by_name[name]
    return None


def _contract_value(community: dict[str, Any] | None) -> float:
    if not community:
        return 0.0
    value = community.get("contract_value")
    if value is None:
        return 0.0
    return float(value)


def _summarize(label: str, scored: list[dict[str, Any]]) -> dict[str, Any]:
    scores = [r["nps_score"] for r in scored]
    mid = median(scores)
    return {
        "name": label,
        "median": mid,
        "cohort": classify_score(mid),
        "nps": compute_nps(scored),
        "respondents": len(scored),
    }


def compute_cohorts(responses: Iterable[dict[str, Any]], communities: Iterable[dict[str, Any]]) -> list[dict[str, Any]]:
    """Per-community median score, classified with the individual-score thresholds.

    Responses whose community is not in the directory are grouped under their
    free-text community name and carry no contract value.
    """
    communities = list(communities)
    by_id, by_name = _community_index(communities)

    groups: dict[str, dict[str, Any]] = {}
    for response in latest_scored_responses(responses):
        community = _resolve_community(response, by_id, by_name)
        if community is not None:
            key = f"id:{community.get('id')}"
            label = str(community.get("name") or "Unknown Community")
        else:
            label = str(response.get("community_name") or "").strip() or "Unknown Community"
            key = f"name:{label.lower()}"
        group = groups.setdefault(key, {"label": label, "community": community, "scored": []})
        group["scored"].append(response)

    out: list[dict[str, Any]] = []
    for group in groups.values():
        community = group["community"]
        row = _summarize(group["label"], group["scored"])
        row.update(
            {
                "community_id": str(community["id"]) if community and community.get("id") is not None else None,
                "contract_value": _contract_value(community),
                "manager": (community or {}).get("manager"),
                "property_type": (community or {}).get("property_type"),
            }
        )
        out.append(row)
    out.sort(key=lambda r: (r["median"], r["name"].lower()))
    return out


def cohort_mix(cohorts: Iterable[dict[str, Any]]) -> dict[str, Any]:
    counts = {"promoter": 0, "passive": 0, "detractor": 0}
    for row in cohorts:
        counts[row["cohort"]] += 1
    total = sum(counts.values())
    percent = {k: (round_half_up(100 * v / total) if total else 0) for k, v in counts.items()}
    return {**counts, "total": total, "percent": percent}


def _is_active(community: dict[str, Any]) -> bool:
    return str(community.get("status") or "active").lower() not in INACTIVE_COMMUNITY_STATUSES


def portfolio_value(communities: Iterable[dict[str, Any]]) -> float:
    return sum(_contract_value(c) for c in communities if _is_active(c))


def revenue_at_risk(
    cohorts: Iterable[dict[str, Any]],
    communities: Iterable[dict[str, Any]],
    warning_ratio: float = REVENUE_AT_RISK_WARNING_RATIO,
) -> dict[str, Any]:
    """Detractor contract value over the active portfolio; inactive communities count on neither side."""
    communities = list(communities)
    active_ids = {str(c["id"]) for c in communities if c.get("id") is not None and _is_active(c)}
    at_risk = [
        row
        for row in cohorts
        if row["cohort"] == "detractor" and row.get("contract_value") and row.get("community_id") in active_ids
    ]
    at_risk_value = sum(float(row["contract_value"]) for row in at_risk)
    total_value = portfolio_value(communities)
    ratio = (at_risk_value / total_value) if total_value > 0 else 0.0
    return {
        "at_risk_value": at_risk_value,
        "total_value": total_value,
        "ratio": ratio,
        "percent_at_risk": round_half_up(100 * ratio),
        "above_warning_threshold": total_value > 0 and ratio >= warning_ratio,
        "communities": sorted(row["name"] for row in at_risk),
    }


def compute_rollup(
    responses: Iterable[dict[str, Any]],
    communities: Iterable[dict[str, Any]],
    dimension: str,
) -> list[dict[str, Any]]:
    """Median-and-classify over a community attribute such as "manager" or "property_type"."""
    if dimension not in {"manager", "property_type"}:
        raise ValueError(f"unsupported rollup dimension: {dimension}")
    communities = list(communities)
    by_id, by_name = _community_index(communities)

    groups: dict[str, dict[str, Any]] = {}
    for response in latest_scored_responses(responses):
        community = _resolve_community(response, by_id, by_name)
        if community is None:
            continue
        label = str(community.get(dimension) or "").strip() or "Unassigned"
        group = groups.setdefault(label.lower(), {"label": label, "scored": [], "communities": {}})
        group["scored"].append(response)
        group["communities"][str(community.get("id"))] = community

    out: list[dict[str, Any]] = []
    for group in groups.values():
        row = _summarize(group["label"], group["scored"])
        row["communities"] = len(group["communities"])
        row["contract_value"] = sum(_contract_value(c) for c in group["communities"].values())
        out.append(row)
    out.sort(key=lambda r: (r["median"], r["name"].lower()))
    return out
