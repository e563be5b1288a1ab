import random
from datetime import datetime, timedelta, timezone

import pytest

from residentpulse.services.cohorts import (
    cohort_mix,
    compute_cohorts,
    compute_rollup,
    portfolio_value,
    revenue_at_risk,
)
from residentpulse.services.nps import compute_nps

MAPLE = {
    "id": "c-maple",
    "name": "Maple Court",
    "contract_value": 120000,
    "manager": "Dana",
    "property_type": "condo",
    "status": "active",
}
RETIRED = {
    "id": "c-old",
    "name": "Old Pines",
    "contract_value": 50000,
    "manager": "Dana",
    "property_type": "hoa",
    "status": "deactivated",
}


def _responses(scores, community_id="c-maple", prefix="m"):
    base = datetime(2025, 2, 1, tzinfo=timezone.utc)
    return [
        {
            "id": f"{prefix}{i}",
            "email": f"{prefix}{i}@example.com",
            "community_id": community_id,
            "nps_score": score,
            "created_at": base + timedelta(minutes=i),
        }
        for i, score in enumerate(scores)
    ]


def _round_view(scores):
    responses = _responses(scores)
    cohorts = compute_cohorts(responses, [MAPLE, RETIRED])
    return compute_nps(responses), cohorts, revenue_at_risk(cohorts, [MAPLE, RETIRED])


def test_three_round_scenario_for_single_community():
    nps, cohorts, risk = _round_view([3, 4, 5, 9, 8])
    assert nps["score"] == -40
    assert cohorts[0]["median"] == 5
    assert cohorts[0]["cohort"] == "detractor"
    assert risk["percent_at_risk"] == 100
    assert risk["above_warning_threshold"] is True
    assert risk["communities"] == ["Maple Court"]

    nps, cohorts, risk = _round_view([2, 3, 4, 6, 7, 8, 8, 9, 9, 10])
    assert nps["score"] == -10
    assert cohorts[0]["median"] == 7.5
    assert cohorts[0]["cohort"] == "passive"
    assert risk["at_risk_value"] == 0

    nps, cohorts, risk = _round_view([9, 10, 7, 3, 8])
    assert nps["score"] == 20
    assert cohorts[0]["cohort"] == "passive"
    assert risk["percent_at_risk"] == 0
    assert risk["above_warning_threshold"] is False


def test_inactive_communities_do_not_count_toward_portfolio():
    assert portfolio_value([MAPLE, RETIRED]) == 120000
    assert portfolio_value([]) == 0


def test_unknown_community_groups_by_free_text_name():
    responses = [
        {"id": "x1", "email": "a@example.com", "community_name": "Harbor View", "nps_score": 2},
        {"id": "x2", "email": "b@example.com", "community_name": "harbor view ", "nps_score": 4},
        {"id": "x3", "email": "c@example.com", "nps_score": 10},
    ]
    cohorts = compute_cohorts(responses, [MAPLE])
    by_name = {row["name"]: row for row in cohorts}
    assert by_name["Harbor View"]["respondents"] == 2
    assert by_name["Harbor View"]["contract_value"] == 0.0
    assert by_name["Harbor View"]["community_id"] is None
    assert by_name["Unknown Community"]["cohort"] == "promoter"

    risk = revenue_at_risk(cohorts, [MAPLE])
    assert risk["at_risk_value"] == 0
    assert risk["communities"] == []


def test_community_resolved_by_name_when_id_missing():
    responses = [{"id": "y1", "email": "a@example.com", "community_name": "maple court", "nps_score": 6}]
    cohorts = compute_cohorts(responses, [MAPLE])
    assert cohorts[0]["community_id"] == "c-maple"
    assert cohorts[0]["contract_value"] == 120000


def test_cohort_mix_counts_communities():
    cedar = {**MAPLE, "id": "c-cedar", "name": "Cedar Row"}
    responses = _responses([9, 10], community_id="c-maple") + _responses([1, 2], community_id="c-cedar", prefix="k")
    mix = cohort_mix(compute_cohorts(responses, [MAPLE, cedar]))
    assert mix["promoter"] == 1
    assert mix["detractor"] == 1
    assert mix["total"] == 2
    assert mix["percent"] == {"promoter": 50, "passive": 0, "detractor": 50}
    assert cohort_mix([])["percent"] == {"promoter": 0, "passive": 0, "detractor": 0}


def test_manager_and_property_type_rollups():
    cedar = {**MAPLE, "id": "c-cedar", "name": "Cedar Row", "manager": "Lee", "property_type": "hoa"}
    responses = _responses([9, 9], community_id="c-maple") + _responses([3, 5], community_id="c-cedar", prefix="k")

    managers = {row["name"]: row for row in compute_rollup(responses, [MAPLE, cedar], "manager")}
    assert managers["Dana"]["cohort"] == "promoter"
    assert managers["Lee"]["cohort"] == "detractor"
    assert managers["Lee"]["communities"] == 1

    types = compute_rollup(responses, [MAPLE, cedar], "property_type")
    assert [row["name"] for row in types] == ["hoa", "condo"]

    with pytest.raises(ValueError):
        compute_rollup(responses, [MAPLE], "region")


def test_deactivated_detractor_community_is_not_counted_at_risk():
    small = {**MAPLE, "id": "c-small", "name": "Small Court", "contract_value": 10000}
    responses = _responses([2], community_id="c-old", prefix="o") + _responses([9], community_id="c-small", prefix="s")
    cohorts = compute_cohorts(responses, [RETIRED, small])

    risk = revenue_at_risk(cohorts, [RETIRED, small])

    assert risk["at_risk_value"] == 0
    assert risk["total_value"] == 10000
    assert risk["percent_at_risk"] == 0
    assert risk["communities"] == []


def test_percent_at_risk_never_exceeds_portfolio():
    rng = random.Random(7)
    for _ in range(100):
        communities = [
            {
                "id": f"c{i}",
                "name": f"Community {i}",
                "contract_value": rng.randint(0, 100000),
                "status": rng.choice(["active", "active", "deactivated"]),
            }
            for i in range(rng.randint(1, 6))
        ]
        responses = [
            {"id": f"s{j}", "email": f"m{j}@example.com", "community_id": rng.choice(communities)["id"], "nps_score": rng.randint(0, 10)}
            for j in range(rng.randint(0, 20))
        ]
        risk = revenue_at_risk(compute_cohorts(responses, communities), communities)
        assert 0 <= risk["percent_at_risk"] <= 100
        assert risk["at_risk_value"] <= risk["total_value"]
