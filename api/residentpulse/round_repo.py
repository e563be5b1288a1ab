from __future__ import annotations

import json
import uuid
from datetime import date, datetime
from typing import Any

from sqlalchemy import text

from .database import SessionLocal

_ROUND_COLUMNS = """
    sr.id, sr.client_id, sr.round_number, sr.status, sr.scheduled_date, sr.launched_at, sr.closes_at,
    sr.concluded_at, sr.concluded_by, sr.members_invited, sr.reminders_sent, sr.word_frequencies,
    sr.insights_json, sr.created_at
"""


def _normalize_row(row: Any) -> dict[str, Any]:
    out = dict(row)
    for key in ("id", "client_id"):
        if key in out and out[key] is not None:
            out[key] = str(out[key])
    if "reminders_sent" in out:
        out["reminders_sent"] = list(out["reminders_sent"] or [])
    return out


def get_round(db, round_id: str, client_id: str, *, for_update: bool = False) -> dict[str, Any] | None:
    lock = " FOR UPDATE" if for_update else ""
    row = db.execute(
        text(
            f"""
            SELECT {_ROUND_COLUMNS}
            FROM survey_round sr
            WHERE sr.id=CAST(:id AS uuid) AND sr.client_id=CAST(:client_id AS uuid){lock}
            """
        ),
        {"id": round_id, "client_id": client_id},
    ).mappings().first()
    return _normalize_row(row) if row else None


def list_rounds(client_id: str) -> list[dict[str, Any]]:
    with SessionLocal() as db:
        rows = db.execute(
            text(
                f"""
                SELECT {_ROUND_COLUMNS},
                  (SELECT COUNT(1) FROM sessions s WHERE s.round_id = sr.id AND s.completed = true) AS responses_completed,
                  (SELECT COUNT(DISTINCT il.user_id) FROM invitation_log il
                    WHERE il.round_id = sr.id AND il.email_status = 'sent') AS invitations_sent
                FROM survey_round sr
                WHERE sr.client_id=CAST(:client_id AS uuid)
                ORDER BY sr.round_number
                """
            ),
            {"client_id": client_id},
        ).mappings().all()
    return [_normalize_row(r) for r in rows]


def list_round_ids(db, client_id: str) -> set[str]:
    rows = db.execute(
        text("SELECT id FROM survey_round WHERE client_id=CAST(:client_id AS uuid)"),
        {"client_id": client_id},
    ).all()
    return {str(r[0]) for r in rows}


def get_in_progress_round(db, client_id: str) -> dict[str, Any] | None:
    row = db.execute(
        text(
            f"""
            SELECT {_ROUND_COLUMNS}
            FROM survey_round sr
            WHERE sr.client_id=CAST(:client_id AS uuid) AND sr.status='in_progress'
            LIMIT 1
            """
        ),
        {"client_id": client_id},
    ).mappings().first()
    return _normalize_row(row) if row else None


def round_counts(db, client_id: str) -> dict[str, int]:
    row = db.execute(
        text(
            """
            SELECT
              COUNT(1) AS total,
              COUNT(1) FILTER (WHERE status <> 'planned') AS launched,
              COUNT(1) FILTER (WHERE status = 'planned') AS planned
            FROM survey_round
            WHERE client_id=CAST(:client_id AS uuid)
            """
        ),
        {"client_id": client_id},
    ).mappings().first()
    row = dict(row or {})
    return {k: int(row.get(k) or 0) for k in ("total", "launched", "planned")}


def lowest_planned_number(db, client_id: str) -> int | None:
    value = db.execute(
        text("SELECT MIN(round_number) FROM survey_round WHERE client_id=CAST(:client_id AS uuid) AND status='planned'"),
        {"client_id": client_id},
    ).scalar()
    return int(value) if value is not None else None


def delete_planned_rounds(db, client_id: str) -> int:
    rows = db.execute(
        text("DELETE FROM survey_round WHERE client_id=CAST(:client_id AS uuid) AND status='planned' RETURNING id"),
        {"client_id": client_id},
    ).all()
    return len(rows)


def insert_planned_rounds(db, client_id: str, slots) -> None:
    for slot in slots:
        db.execute(
            text(
                """
                INSERT INTO survey_round (id, client_id, round_number, status, scheduled_date)
                VALUES (:id, CAST(:client_id AS uuid), :round_number, 'planned', :scheduled_date)
                """
            ),
            {
                "id": str(uuid.uuid4()),
                "client_id": client_id,
                "round_number": int(slot.round_number),
                "scheduled_date": slot.scheduled_date,
            },
        )


def get_schedule_settings(db, client_id: str) -> dict[str, Any] | None:
    row = db.execute(
        text("SELECT client_id, first_launch_date, cadence, updated_at FROM round_schedule WHERE client_id=CAST(:client_id AS uuid)"),
        {"client_id": client_id},
    ).mappings().first()
    return _normalize_row(row) if row else None


def upsert_schedule_settings(db, client_id: str, first_launch_date: date, cadence: int) -> None:
    db.execute(
        text(
            """
            INSERT INTO round_schedule (client_id, first_launch_date, cadence, updated_at)
            VALUES (CAST(:client_id AS uuid), :first_launch_date, :cadence, NOW())
            ON CONFLICT (client_id) DO UPDATE
            SET first_launch_date=EXCLUDED.first_launch_date, cadence=EXCLUDED.cadence, updated_at=NOW()
            """
        ),
        {"client_id": client_id, "first_launch_date": first_launch_date, "cadence": int(cadence)},
    )


def mark_launched(db, round_id: str, *, launched_at: datetime, closes_at: datetime, members_invited: int) -> dict[str, Any] | None:
    """planned -> in_progress. Returns None when the round was not planned anymore."""
    row = db.execute(
        text(
            """
            UPDATE survey_round
            SET status='in_progress', launched_at=:launched_at, closes_at=:closes_at, members_invited=:members_invited
            WHERE id=CAST(:id AS uuid) AND status='planned'
            RETURNING id, client_id, round_number, status, scheduled_date, launched_at, closes_at, concluded_at,
                      concluded_by, members_invited, reminders_sent, created_at
            """
        ),
        {"id": round_id, "launched_at": launched_at, "closes_at": closes_at, "members_invited": int(members_invited)},
    ).mappings().first()
    return _normalize_row(row) if row else None


def mark_concluded(db, round_id: str, *, concluded_by: str) -> dict[str, Any] | None:
    """in_progress -> concluded. Returns None when the round was not in progress."""
    row = db.execute(
        text(
            """
            UPDATE survey_round
            SET status='concluded', concluded_at=NOW(), concluded_by=:concluded_by
            WHERE id=CAST(:id AS uuid) AND status='in_progress'
            RETURNING id, client_id, round_number, status, scheduled_date, launched_at, closes_at, concluded_at,
                      concluded_by, members_invited, reminders_sent, created_at
            """
        ),
        {"id": round_id, "concluded_by": concluded_by},
    ).mappings().first()
    return _normalize_row(row) if row else None


def list_expired_rounds(now: datetime) -> list[dict[str, Any]]:
    with SessionLocal() as db:
        rows = db.execute(
            text(
                f"""
                SELECT {_ROUND_COLUMNS}
                FROM survey_round sr
                WHERE sr.status='in_progress' AND sr.closes_at IS NOT NULL AND sr.closes_at <= :now
                ORDER BY sr.closes_at
                """
            ),
            {"now": now},
        ).mappings().all()
    return [_normalize_row(r) for r in rows]


def list_in_progress_rounds() -> list[dict[str, Any]]:
    with SessionLocal() as db:
        rows = db.execute(
            text(
                f"""
                SELECT {_ROUND_COLUMNS}
                FROM survey_round sr
                WHERE sr.status='in_progress'
                ORDER BY sr.launched_at
                """
            )
        ).mappings().all()
    return [_normalize_row(r) for r in rows]


def add_reminder_sent(round_id: str, reminder_day: int) -> bool:
    """Record a reminder day once; False when another sweeper already claimed it."""
    with SessionLocal() as db:
        row = db.execute(
            text(
                """
                UPDATE survey_round
                SET reminders_sent = array_append(reminders_sent, :day)
                WHERE id=CAST(:id AS uuid) AND status='in_progress' AND NOT (:day = ANY(reminders_sent))
                RETURNING id
                """
            ),
            {"id": round_id, "day": int(reminder_day)},
        ).first()
        db.commit()
    return row is not None


def remove_reminder_sent(round_id: str, reminder_day: int) -> None:
    with SessionLocal() as db:
        db.execute(
            text(
                """
                UPDATE survey_round
                SET reminders_sent = array_remove(reminders_sent, :day)
                WHERE id=CAST(:id AS uuid)
                """
            ),
            {"id": round_id, "day": int(reminder_day)},
        )
        db.commit()


def store_word_frequencies(db, round_id: str, frequencies: list[dict[str, Any]]) -> None:
    db.execute(
        text("UPDATE survey_round SET word_frequencies=CAST(:wf AS jsonb) WHERE id=CAST(:id AS uuid)"),
        {"id": round_id, "wf": json.dumps(frequencies)},
    )


def store_insights(db, round_id: str, insights: dict[str, Any]) -> None:
    db.execute(
        text("UPDATE survey_round SET insights_json=CAST(:insights AS jsonb) WHERE id=CAST(:id AS uuid)"),
        {"id": round_id, "insights": json.dumps(insights, default=str)},
    )


def list_concluded_rounds(client_id: str) -> list[dict[str, Any]]:
    with SessionLocal() as db:
        rows = db.execute(
            text(
                f"""
                SELECT {_ROUND_COLUMNS}
                FROM survey_round sr
                WHERE sr.client_id=CAST(:client_id AS uuid) AND sr.status='concluded'
                ORDER BY sr.round_number
                """
            ),
            {"client_id": client_id},
        ).mappings().all()
    return [_normalize_row(r) for r in rows]
