"""Read-only views over the respondent and community directories."""

from __future__ import annotations

from typing import Any

from sqlalchemy import text


def list_eligible(db, client_id: str) -> list[dict[str, Any]]:
    """Active, non-deactivated board members whose community (if any) is not deactivated."""
    rows = db.execute(
        text(
            """
            SELECT bm.id, bm.email, bm.first_name, bm.last_name, bm.active, c.community_name
            FROM board_member bm
            LEFT JOIN community c ON c.id = bm.community_id
            WHERE bm.client_id=CAST(:client_id AS uuid)
              AND bm.active=true
              AND bm.deactivated_at IS NULL
              AND (c.id IS NULL OR c.status NOT IN ('deactivated', 'inactive', 'archived'))
            ORDER BY bm.email
            """
        ),
        {"client_id": client_id},
    ).mappings().all()
    out: list[dict[str, Any]] = []
    seen: set[str] = set()
    for r in rows:
        email = str(r.get("email") or "").strip().lower()
        if not email or email in seen:
            continue
        seen.add(email)
        name = " ".join(p for p in (r.get("first_name"), r.get("last_name")) if p) or None
        out.append(
            {
                "id": str(r["id"]),
                "email": email,
                "name": name,
                "community": r.get("community_name"),
                "active": bool(r.get("active")),
            }
        )
    return out


def list_communities(db, client_id: str) -> list[dict[str, Any]]:
    rows = db.execute(
        text(
            """
            SELECT id, community_name, contract_value, community_manager_name, property_type, status
            FROM community
            WHERE client_id=CAST(:client_id AS uuid)
            ORDER BY community_name
            """
        ),
        {"client_id": client_id},
    ).mappings().all()
    return [
        {
            "id": str(r["id"]),
            "name": r.get("community_name"),
            "contract_value": float(r["contract_value"]) if r.get("contract_value") is not None else None,
            "manager": r.get("community_manager_name"),
            "property_type": r.get("property_type"),
            "status": r.get("status") or "active",
        }
        for r in rows
    ]


def get_client_plan(db, client_id: str) -> dict[str, Any] | None:
    row = db.execute(
        text("SELECT id, company_name, plan_tier, rounds_per_year FROM client WHERE id=CAST(:id AS uuid)"),
        {"id": client_id},
    ).mappings().first()
    if not row:
        return None
    plan_tier = str(row.get("plan_tier") or "free").lower()
    return {
        "id": str(row["id"]),
        "company_name": row.get("company_name"),
        "plan_tier": plan_tier,
        "rounds_per_year": int(row.get("rounds_per_year") or 2),
        "is_paid_tier": plan_tier not in {"free", "trial"},
    }
