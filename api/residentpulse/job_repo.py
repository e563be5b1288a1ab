from __future__ import annotations

import logging
import secrets
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import text

from .database import SessionLocal

logger = logging.getLogger(__name__)

_JOB_COLUMNS = """
    id, client_id, round_id, status, total_count, sent_count, failed_count, error_message,
    heartbeat_at, created_at, completed_at
"""
_INVITATION_COLUMNS = """
    id, job_id, round_id, client_id, user_id, email, recipient_name, community_name, invitation_token,
    token_expires_at, email_status, error_message, provider_message_id, attempts, claimed_at, sent_at, created_at
"""


def _normalize_row(row: Any) -> dict[str, Any]:
    out = dict(row)
    for key in ("id", "client_id", "round_id", "job_id", "user_id"):
        if key in out and out[key] is not None:
            out[key] = str(out[key])
    return out


def create_job(db, *, client_id: str, round_id: str, recipients: list[dict[str, Any]], token_expires_at: datetime) -> dict[str, Any]:
    """Insert the job row and its immutable invitation target list in the caller's transaction."""
    job_id = str(uuid.uuid4())
    db.execute(
        text(
            """
            INSERT INTO email_job (id, client_id, round_id, status, total_count, sent_count, failed_count, heartbeat_at)
            VALUES (:id, CAST(:client_id AS uuid), CAST(:round_id AS uuid), 'in_progress', :total, 0, 0, NOW())
            """
        ),
        {"id": job_id, "client_id": client_id, "round_id": round_id, "total": len(recipients)},
    )
    for recipient in recipients:
        db.execute(
            text(
                """
                INSERT INTO invitation_log (
                  id, job_id, round_id, client_id, user_id, email, recipient_name, community_name,
                  invitation_token, token_expires_at, email_status
                )
                VALUES (
                  :id, CAST(:job_id AS uuid), CAST(:round_id AS uuid), CAST(:client_id AS uuid),
                  CAST(NULLIF(:user_id, '') AS uuid), :email, :recipient_name, :community_name,
                  :token, :token_expires_at, 'pending'
                )
                """
            ),
            {
                "id": str(uuid.uuid4()),
                "job_id": job_id,
                "round_id": round_id,
                "client_id": client_id,
                "user_id": str(recipient.get("id") or ""),
                "email": recipient["email"],
                "recipient_name": recipient.get("name"),
                "community_name": recipient.get("community"),
                "token": secrets.token_urlsafe(24),
                "token_expires_at": token_expires_at,
            },
        )
    return {
        "id": job_id,
        "client_id": client_id,
        "round_id": round_id,
        "status": "in_progress",
        "total_count": len(recipients),
        "sent_count": 0,
        "failed_count": 0,
        "error_message": None,
    }


def get_job(job_id: str, client_id: str | None = None) -> dict[str, Any] | None:
    with SessionLocal() as db:
        row = db.execute(
            text(
                f"""
                SELECT {_JOB_COLUMNS}
                FROM email_job
                WHERE id=CAST(:id AS uuid)
                  AND (:client_id IS NULL OR client_id=CAST(:client_id AS uuid))
                """
            ),
            {"id": job_id, "client_id": client_id},
        ).mappings().first()
    return _normalize_row(row) if row else None


def get_active_job(client_id: str) -> dict[str, Any] | None:
    with SessionLocal() as db:
        row = db.execute(
            text(
                f"""
                SELECT {_JOB_COLUMNS}
                FROM email_job
                WHERE client_id=CAST(:client_id AS uuid) AND status='in_progress'
                LIMIT 1
                """
            ),
            {"client_id": client_id},
        ).mappings().first()
    return _normalize_row(row) if row else None


def get_job_for_round(round_id: str) -> dict[str, Any] | None:
    with SessionLocal() as db:
        row = db.execute(
            text(f"SELECT {_JOB_COLUMNS} FROM email_job WHERE round_id=CAST(:round_id AS uuid)"),
            {"round_id": round_id},
        ).mappings().first()
    return _normalize_row(row) if row else None


def get_job_context(job_id: str) -> dict[str, Any]:
    """Round details rendered into every invitation of the job."""
    with SessionLocal() as db:
        row = db.execute(
            text(
                """
                SELECT sr.round_number, sr.closes_at
                FROM email_job j
                JOIN survey_round sr ON sr.id = j.round_id
                WHERE j.id=CAST(:id AS uuid)
                """
            ),
            {"id": job_id},
        ).mappings().first()
    return dict(row) if row else {}


def list_stale_jobs(stale_seconds: int, client_id: str | None = None) -> list[dict[str, Any]]:
    with SessionLocal() as db:
        rows = db.execute(
            text(
                f"""
                SELECT {_JOB_COLUMNS}
                FROM email_job
                WHERE status='in_progress'
                  AND heartbeat_at < NOW() - make_interval(secs => :stale_seconds)
                  AND (:client_id IS NULL OR client_id=CAST(:client_id AS uuid))
                ORDER BY created_at
                """
            ),
            {"stale_seconds": int(stale_seconds), "client_id": client_id},
        ).mappings().all()
    return [_normalize_row(r) for r in rows]


def touch_heartbeat(job_id: str) -> None:
    with SessionLocal() as db:
        db.execute(
            text("UPDATE email_job SET heartbeat_at=NOW() WHERE id=CAST(:id AS uuid) AND status='in_progress'"),
            {"id": job_id},
        )
        db.commit()


def list_pending_invitations(job_id: str) -> list[dict[str, Any]]:
    with SessionLocal() as db:
        rows = db.execute(
            text(
                f"""
                SELECT {_INVITATION_COLUMNS}
                FROM invitation_log
                WHERE job_id=CAST(:job_id AS uuid) AND email_status='pending'
                ORDER BY created_at, id
                """
            ),
            {"job_id": job_id},
        ).mappings().all()
    return [_normalize_row(r) for r in rows]


def claim_invitation(invitation_id: str) -> dict[str, Any] | None:
    """pending -> sending. None when another worker or instance already claimed it."""
    with SessionLocal() as db:
        row = db.execute(
            text(
                f"""
                UPDATE invitation_log
                SET email_status='sending', claimed_at=NOW(), attempts=attempts + 1
                WHERE id=CAST(:id AS uuid) AND email_status='pending'
                RETURNING {_INVITATION_COLUMNS}
                """
            ),
            {"id": invitation_id},
        ).mappings().first()
        db.commit()
    return _normalize_row(row) if row else None


def record_outcome(
    job_id: str,
    invitation_id: str,
    *,
    ok: bool,
    error: str | None = None,
    provider_message_id: str | None = None,
) -> dict[str, Any] | None:
    """Finish one claimed invitation and bump the matching job counter in one transaction.

    The counter update is a single atomic increment guarded by total_count, so
    concurrent workers never lose an update and counts never exceed the total.
    """
    status = "sent" if ok else "failed"
    counter = "sent_count" if ok else "failed_count"
    with SessionLocal() as db:
        updated = db.execute(
            text(
                """
                UPDATE invitation_log
                SET email_status=:status,
                    error_message=:error,
                    provider_message_id=:provider_message_id,
                    sent_at=CASE WHEN :status = 'sent' THEN NOW() ELSE sent_at END
                WHERE id=CAST(:id AS uuid) AND email_status='sending'
                RETURNING id
                """
            ),
            {"id": invitation_id, "status": status, "error": error, "provider_message_id": provider_message_id},
        ).first()
        if updated is None:
            db.rollback()
            logger.warning(
                "[DISPATCH] job=%s invitation=%s no longer sending; %s outcome dropped (provider_id=%s error=%s)",
                job_id,
                invitation_id,
                status,
                provider_message_id,
                error,
            )
            return None
        row = db.execute(
            text(
                f"""
                UPDATE email_job
                SET {counter}={counter} + 1, heartbeat_at=NOW()
                WHERE id=CAST(:job_id AS uuid) AND sent_count + failed_count < total_count
                RETURNING {_JOB_COLUMNS}
                """
            ),
            {"job_id": job_id},
        ).mappings().first()
        db.commit()
    return _normalize_row(row) if row else None


def fail_interrupted_sends(job_id: str, reason: str = "delivery interrupted") -> int:
    """Mark invitations left in `sending` by a dead process as failed; they are never re-sent."""
    with SessionLocal() as db:
        rows = db.execute(
            text(
                """
                UPDATE invitation_log
                SET email_status='failed', error_message=:reason
                WHERE job_id=CAST(:job_id AS uuid) AND email_status='sending'
                RETURNING id
                """
            ),
            {"job_id": job_id, "reason": reason},
        ).all()
        if rows:
            db.execute(
                text(
                    """
                    UPDATE email_job
                    SET failed_count=LEAST(total_count - sent_count, failed_count + :n), heartbeat_at=NOW()
                    WHERE id=CAST(:job_id AS uuid)
                    """
                ),
                {"job_id": job_id, "n": len(rows)},
            )
        db.commit()
    return len(rows)


def skip_pending(job_id: str, reason: str) -> int:
    with SessionLocal() as db:
        rows = db.execute(
            text(
                """
                UPDATE invitation_log
                SET email_status='skipped', error_message=:reason
                WHERE job_id=CAST(:job_id AS uuid) AND email_status='pending'
                RETURNING id
                """
            ),
            {"job_id": job_id, "reason": reason},
        ).all()
        db.commit()
    return len(rows)


def complete_job(job_id: str) -> dict[str, Any] | None:
    """in_progress -> completed once no invitation is still pending or sending."""
    with SessionLocal() as db:
        row = db.execute(
            text(
                f"""
                UPDATE email_job
                SET status='completed', completed_at=NOW(), heartbeat_at=NOW()
                WHERE id=CAST(:id AS uuid)
                  AND status='in_progress'
                  AND NOT EXISTS (
                    SELECT 1 FROM invitation_log
                    WHERE job_id=CAST(:id AS uuid) AND email_status IN ('pending', 'sending')
                  )
                RETURNING {_JOB_COLUMNS}
                """
            ),
            {"id": job_id},
        ).mappings().first()
        db.commit()
    return _normalize_row(row) if row else None


def fail_job(job_id: str, error_message: str) -> dict[str, Any] | None:
    with SessionLocal() as db:
        row = db.execute(
            text(
                f"""
                UPDATE email_job
                SET status='failed', error_message=:error_message, completed_at=NOW()
                WHERE id=CAST(:id AS uuid) AND status='in_progress'
                RETURNING {_JOB_COLUMNS}
                """
            ),
            {"id": job_id, "error_message": error_message[:1000]},
        ).mappings().first()
        db.commit()
    return _normalize_row(row) if row else None


def list_recipients(job_id: str, email_status: str | None = None) -> list[dict[str, Any]]:
    with SessionLocal() as db:
        rows = db.execute(
            text(
                f"""
                SELECT {_INVITATION_COLUMNS}
                FROM invitation_log
                WHERE job_id=CAST(:job_id AS uuid)
                  AND (:email_status IS NULL OR email_status=:email_status)
                ORDER BY recipient_name NULLS LAST, email
                """
            ),
            {"job_id": job_id, "email_status": email_status},
        ).mappings().all()
    return [_normalize_row(r) for r in rows]


def get_invitation(job_id: str, invitation_id: str) -> dict[str, Any] | None:
    with SessionLocal() as db:
        row = db.execute(
            text(
                f"""
                SELECT {_INVITATION_COLUMNS}
                FROM invitation_log
                WHERE id=CAST(:id AS uuid) AND job_id=CAST(:job_id AS uuid)
                """
            ),
            {"id": invitation_id, "job_id": job_id},
        ).mappings().first()
    return _normalize_row(row) if row else None


def record_resend(invitation_id: str, *, ok: bool, error: str | None = None, provider_message_id: str | None = None) -> dict[str, Any] | None:
    """Record an explicit resend on the invitation row; job counters are left untouched."""
    with SessionLocal() as db:
        row = db.execute(
            text(
                f"""
                UPDATE invitation_log
                SET email_status=CASE WHEN :ok THEN 'sent' ELSE email_status END,
                    error_message=CASE WHEN :ok THEN NULL ELSE :error END,
                    provider_message_id=COALESCE(:provider_message_id, provider_message_id),
                    sent_at=CASE WHEN :ok THEN NOW() ELSE sent_at END,
                    attempts=attempts + 1
                WHERE id=CAST(:id AS uuid)
                RETURNING {_INVITATION_COLUMNS}
                """
            ),
            {"id": invitation_id, "ok": bool(ok), "error": error, "provider_message_id": provider_message_id},
        ).mappings().first()
        db.commit()
    return _normalize_row(row) if row else None


def list_non_responders(round_id: str) -> list[dict[str, Any]]:
    """Invited recipients with no completed response in the round."""
    with SessionLocal() as db:
        rows = db.execute(
            text(
                """
                SELECT il.id, il.user_id, il.email, il.recipient_name, il.community_name, il.invitation_token,
                       il.email_status, il.sent_at
                FROM invitation_log il
                WHERE il.round_id=CAST(:round_id AS uuid)
                  AND il.email_status='sent'
                  AND NOT EXISTS (
                    SELECT 1 FROM sessions s
                    WHERE s.round_id = il.round_id
                      AND s.completed = true
                      AND (s.user_id = il.user_id OR LOWER(s.email) = LOWER(il.email))
                  )
                ORDER BY il.recipient_name NULLS LAST, il.email
                """
            ),
            {"round_id": round_id},
        ).mappings().all()
    return [_normalize_row(r) for r in rows]

