from __future__ import annotations

from typing import Any

from sqlalchemy import text

_SESSION_COLUMNS = """
    s.id, s.client_id, s.round_id, s.user_id, s.email, s.community_id, s.community_name,
    s.management_company, s.nps_score, s.completed, s.summary, s.intake_flags, s.created_at
"""


def _normalize_row(row: Any) -> dict[str, Any]:
    out = dict(row)
    for key in ("id", "client_id", "round_id", "user_id", "community_id"):
        if key in out and out[key] is not None:
            out[key] = str(out[key])
    return out


def list_round_responses(db, client_id: str, round_id: str) -> list[dict[str, Any]]:
    rows = db.execute(
        text(
            f"""
            SELECT {_SESSION_COLUMNS}
            FROM sessions s
            WHERE s.client_id=CAST(:client_id AS uuid) AND s.round_id=CAST(:round_id AS uuid)
            ORDER BY s.created_at
            """
        ),
        {"client_id": client_id, "round_id": round_id},
    ).mappings().all()
    return [_normalize_row(r) for r in rows]


def list_client_responses(db, client_id: str) -> list[dict[str, Any]]:
    rows = db.execute(
        text(
            f"""
            SELECT {_SESSION_COLUMNS}
            FROM sessions s
            WHERE s.client_id=CAST(:client_id AS uuid) AND s.round_id IS NOT NULL
            ORDER BY s.created_at
            """
        ),
        {"client_id": client_id},
    ).mappings().all()
    return [_normalize_row(r) for r in rows]


def list_user_messages(db, round_id: str) -> list[str]:
    rows = db.execute(
        text(
            """
            SELECT m.content
            FROM messages m
            JOIN sessions s ON s.id = m.session_id
            WHERE s.round_id=CAST(:round_id AS uuid) AND m.role='user'
            ORDER BY m.created_at
            """
        ),
        {"round_id": round_id},
    ).all()
    return [str(r[0]) for r in rows]


def session_user_text(db, session_id: str) -> str:
    rows = db.execute(
        text(
            """
            SELECT content FROM messages
            WHERE session_id=CAST(:session_id AS uuid) AND role='user'
            ORDER BY created_at
            """
        ),
        {"session_id": session_id},
    ).all()
    return "\n".join(str(r[0]) for r in rows)


def get_response(db, response_id: str, client_id: str) -> dict[str, Any] | None:
    row = db.execute(
        text(
            f"""
            SELECT {_SESSION_COLUMNS}
            FROM sessions s
            WHERE s.id=CAST(:id AS uuid) AND s.client_id=CAST(:client_id AS uuid)
            """
        ),
        {"id": response_id, "client_id": client_id},
    ).mappings().first()
    return _normalize_row(row) if row else None


def finalize_response(db, response_id: str, nps_score: int | None = None) -> dict[str, Any] | None:
    """Mark an incomplete response completed; the only write path that may replace a set score."""
    row = db.execute(
        text(
            f"""
            UPDATE sessions s
            SET completed=true, nps_score=COALESCE(:nps_score, s.nps_score)
            WHERE s.id=CAST(:id AS uuid) AND s.completed=false
            RETURNING {_SESSION_COLUMNS}
            """
        ),
        {"id": response_id, "nps_score": nps_score},
    ).mappings().first()
    return _normalize_row(row) if row else None


def list_stale_incomplete(db, round_id: str, min_user_messages: int = 2) -> list[dict[str, Any]]:
    """Incomplete scored responses with enough respondent messages to count as finished."""
    rows = db.execute(
        text(
            f"""
            SELECT {_SESSION_COLUMNS}
            FROM sessions s
            WHERE s.round_id=CAST(:round_id AS uuid)
              AND s.completed=false
              AND s.nps_score IS NOT NULL
              AND (SELECT COUNT(1) FROM messages m WHERE m.session_id = s.id AND m.role='user') >= :min_user_messages
            """
        ),
        {"round_id": round_id, "min_user_messages": int(min_user_messages)},
    ).mappings().all()
    return [_normalize_row(r) for r in rows]

