from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import text

from .database import SessionLocal
from .services.state_machine import alert_display_state

_ALERT_COLUMNS = """
    a.id, a.client_id, a.round_id, a.session_id, a.user_id, a.alert_type, a.severity, a.description,
    a.dismissed, a.dismissed_by, a.dismissed_at, a.dismiss_reason,
    a.solved, a.solved_by, a.solved_at, a.solve_note, a.created_at
"""


def _normalize_row(row: Any) -> dict[str, Any]:
    out = dict(row)
    for key in ("id", "client_id", "round_id", "session_id", "user_id"):
        if key in out and out[key] is not None:
            out[key] = str(out[key])
    out["display_state"] = alert_display_state(out)
    return out


def insert_alerts(db, *, client_id: str, response: dict[str, Any], detected) -> list[dict[str, Any]]:
    """Insert detected alerts; an alert type already recorded for the response is kept as is."""
    created: list[dict[str, Any]] = []
    for alert in detected:
        row = db.execute(
            text(
                f"""
                INSERT INTO critical_alert AS a (id, client_id, round_id, session_id, user_id, alert_type, severity, description)
                VALUES (
                  :id, CAST(:client_id AS uuid),
                  (SELECT sr.id FROM survey_round sr WHERE sr.id = CAST(NULLIF(:round_id, '') AS uuid)),
                  CAST(:session_id AS uuid),
                  CAST(NULLIF(:user_id, '') AS uuid), :alert_type, :severity, :description
                )
                ON CONFLICT (session_id, alert_type) DO NOTHING
                RETURNING {_ALERT_COLUMNS}
                """
            ),
            {
                "id": str(uuid.uuid4()),
                "client_id": client_id,
                "round_id": str(response.get("round_id") or ""),
                "session_id": str(response["id"]),
                "user_id": str(response.get("user_id") or ""),
                "alert_type": alert.alert_type,
                "severity": alert.severity,
                "description": alert.description,
            },
        ).mappings().first()
        if row:
            created.append(_normalize_row(row))
    return created


def list_alerts(client_id: str, *, round_id: str | None = None, include_closed: bool = False) -> list[dict[str, Any]]:
    with SessionLocal() as db:
        rows = db.execute(
            text(
                f"""
                SELECT {_ALERT_COLUMNS}, s.email AS respondent_email, s.community_name
                FROM critical_alert a
                LEFT JOIN sessions s ON s.id = a.session_id
                WHERE a.client_id=CAST(:client_id AS uuid)
                  AND (:round_id IS NULL OR a.round_id=CAST(:round_id AS uuid))
                  AND (:include_closed OR (a.dismissed=false AND a.solved=false))
                ORDER BY CASE a.severity WHEN 'critical' THEN 0 ELSE 1 END, a.created_at DESC
                """
            ),
            {"client_id": client_id, "round_id": round_id, "include_closed": bool(include_closed)},
        ).mappings().all()
    return [_normalize_row(r) for r in rows]


def get_alert(db, alert_id: str, client_id: str) -> dict[str, Any] | None:
    row = db.execute(
        text(
            f"""
            SELECT {_ALERT_COLUMNS}
            FROM critical_alert a
            WHERE a.id=CAST(:id AS uuid) AND a.client_id=CAST(:client_id AS uuid)
            """
        ),
        {"id": alert_id, "client_id": client_id},
    ).mappings().first()
    return _normalize_row(row) if row else None


def dismiss_alert(db, alert_id: str, *, actor: str | None, reason: str | None) -> dict[str, Any] | None:
    row = db.execute(
        text(
            f"""
            UPDATE critical_alert a
            SET dismissed=true, dismissed_by=:actor, dismissed_at=NOW(), dismiss_reason=:reason
            WHERE a.id=CAST(:id AS uuid) AND a.dismissed=false
            RETURNING {_ALERT_COLUMNS}
            """
        ),
        {"id": alert_id, "actor": actor, "reason": reason},
    ).mappings().first()
    return _normalize_row(row) if row else None


def solve_alert(db, alert_id: str, *, actor: str | None, note: str) -> dict[str, Any] | None:
    row = db.execute(
        text(
            f"""
            UPDATE critical_alert a
            SET solved=true, solved_by=:actor, solved_at=NOW(), solve_note=:note
            WHERE a.id=CAST(:id AS uuid) AND a.solved=false
            RETURNING {_ALERT_COLUMNS}
            """
        ),
        {"id": alert_id, "actor": actor, "note": note},
    ).mappings().first()
    return _normalize_row(row) if row else None
