"""Invitation dispatch: one background run per email job.

A run owns write access to its job row. Each worker claims an invitation with a
compare-and-set (pending -> sending) before sending, then records the outcome
together with an atomic counter increment, so polling readers only ever see
counters grow and never pass total_count.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable

from .. import job_repo
from ..config import DISPATCH_MAX_WORKERS, DISPATCH_STALE_SECONDS, SURVEY_BASE_URL
from ..database import SessionLocal
from ..errors import RoundPolicyError
from .events import log_activity
from .rate_limit import pace_transport_send
from .state_machine import job_is_terminal
from .transport import TransportFatalError, get_transport

logger = logging.getLogger(__name__)

INTERRUPTED_REASON = "delivery interrupted"


def survey_link(token: str) -> str:
    return f"{SURVEY_BASE_URL}/survey/{token}"


def _recipient(invitation: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": invitation.get("user_id"),
        "email": invitation.get("email"),
        "name": invitation.get("recipient_name"),
        "community": invitation.get("community_name"),
    }


def _message_context(invitation: dict[str, Any], context: dict[str, Any]) -> dict[str, Any]:
    closes_at = context.get("closes_at")
    return {
        "round_number": context.get("round_number"),
        "closes_at": closes_at.isoformat() if hasattr(closes_at, "isoformat") else closes_at,
        "survey_link": survey_link(str(invitation.get("invitation_token") or "")),
    }


class DispatchJob:
    def __init__(
        self,
        job_id: str,
        *,
        context: dict[str, Any] | None = None,
        store=job_repo,
        transport=None,
        max_workers: int = DISPATCH_MAX_WORKERS,
        pace: Callable[[], None] = pace_transport_send,
    ) -> None:
        self.job_id = job_id
        self.context = context or {}
        self.store = store
        self._owns_transport = transport is None
        self.transport = transport if transport is not None else get_transport()
        self.max_workers = max(1, int(max_workers))
        self.pace = pace
        self._fatal = threading.Event()
        self._fatal_lock = threading.Lock()
        self._fatal_message: str | None = None

    def _set_fatal(self, message: str) -> None:
        with self._fatal_lock:
            if self._fatal_message is None:
                self._fatal_message = message
        self._fatal.set()

    def _deliver(self, invitation: dict[str, Any]) -> None:
        if self._fatal.is_set():
            return
        claimed = self.store.claim_invitation(invitation["id"])
        if claimed is None:
            return
        self.pace()
        try:
            result = self.transport.send(_recipient(claimed), "invitation", _message_context(claimed, self.context))
        except TransportFatalError as exc:
            self._set_fatal(str(exc))
            self.store.record_outcome(self.job_id, claimed["id"], ok=False, error=str(exc))
            return
        except Exception as exc:
            logger.warning("[DISPATCH] job=%s invitation=%s send raised: %s", self.job_id, claimed["id"], exc)
            result = {"ok": False, "error": str(exc) or exc.__class__.__name__}

        if result.get("ok"):
            self.store.record_outcome(self.job_id, claimed["id"], ok=True, provider_message_id=result.get("id"))
        else:
            error = str(result.get("error") or "send failed")
            logger.warning("[DISPATCH] job=%s failed for %s: %s", self.job_id, claimed.get("email"), error)
            self.store.record_outcome(self.job_id, claimed["id"], ok=False, error=error)

    def _fail(self, message: str) -> dict[str, Any] | None:
        skipped = self.store.skip_pending(self.job_id, f"not sent: {message}")
        logger.error("[DISPATCH] job=%s failed: %s (skipped=%s)", self.job_id, message, skipped)
        return self.store.fail_job(self.job_id, message)

    def run(self) -> dict[str, Any] | None:
        try:
            return self._run()
        finally:
            if self._owns_transport:
                self.transport.close()

    def _run(self) -> dict[str, Any] | None:
        interrupted = self.store.fail_interrupted_sends(self.job_id, INTERRUPTED_REASON)
        if interrupted:
            logger.warning("[DISPATCH] job=%s recorded %s interrupted sends as failed", self.job_id, interrupted)

        try:
            self.transport.check()
        except TransportFatalError as exc:
            return self._fail(str(exc))

        pending = self.store.list_pending_invitations(self.job_id)
        logger.info("[DISPATCH] job=%s sending %s invitations (workers=%s)", self.job_id, len(pending), self.max_workers)
        self.store.touch_heartbeat(self.job_id)

        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix=f"dispatch-{self.job_id[:8]}") as pool:
            for future in [pool.submit(self._deliver, invitation) for invitation in pending]:
                future.result()

        if self._fatal.is_set():
            return self._fail(self._fatal_message or "transport failure")

        job = self.store.complete_job(self.job_id)
        if job is not None:
            logger.info(
                "[DISPATCH] job=%s completed sent=%s failed=%s total=%s",
                self.job_id,
                job.get("sent_count"),
                job.get("failed_count"),
                job.get("total_count"),
            )
        return job


class DispatchSupervisor:
    """Tracks dispatch runs hosted by this process and adopts orphaned jobs."""

    def __init__(self, store=job_repo, job_factory: Callable[..., DispatchJob] = DispatchJob) -> None:
        self.store = store
        self.job_factory = job_factory
        self._threads: dict[str, threading.Thread] = {}
        self._lock = threading.Lock()

    def is_running(self, job_id: str) -> bool:
        with self._lock:
            thread = self._threads.get(job_id)
            return thread is not None and thread.is_alive()

    def _run(self, job_id: str, context: dict[str, Any]) -> None:
        try:
            self.job_factory(job_id, context=context, store=self.store).run()
        except Exception as exc:
            logger.exception("[DISPATCH] job=%s crashed", job_id)
            self.store.fail_job(job_id, f"dispatch crashed: {exc}")
        finally:
            with self._lock:
                self._threads.pop(job_id, None)

    def start(self, job_id: str, context: dict[str, Any] | None = None) -> bool:
        with self._lock:
            existing = self._threads.get(job_id)
            if existing is not None and existing.is_alive():
                return False
            thread = threading.Thread(
                target=self._run,
                args=(job_id, dict(context or {})),
                name=f"dispatch-job-{job_id[:8]}",
                daemon=True,
            )
            self._threads[job_id] = thread
        thread.start()
        logger.info("[DISPATCH] job=%s started", job_id)
        return True

    def resume_orphaned(self, client_id: str | None = None, stale_seconds: int = DISPATCH_STALE_SECONDS) -> list[str]:
        resumed: list[str] = []
        for job in self.store.list_stale_jobs(stale_seconds, client_id):
            job_id = job["id"]
            if self.is_running(job_id):
                continue
            logger.warning("[DISPATCH] resuming orphaned job=%s client=%s", job_id, job.get("client_id"))
            if self.start(job_id, self.store.get_job_context(job_id)):
                resumed.append(job_id)
        return resumed

    def join(self, job_id: str, timeout: float | None = None) -> None:
        with self._lock:
            thread = self._threads.get(job_id)
        if thread is not None:
            thread.join(timeout)


supervisor = DispatchSupervisor()


def resend_invitation(
    job_id: str,
    invitation_id: str,
    client_id: str,
    *,
    actor: dict[str, Any] | None = None,
    store=job_repo,
    transport=None,
) -> dict[str, Any]:
    """Explicitly re-send one failed invitation of a finished job."""
    job = store.get_job(job_id, client_id)
    if not job:
        raise RoundPolicyError("job_not_found", "Email job not found", status_code=404)
    if not job_is_terminal(job["status"]):
        raise RoundPolicyError(
            "job_in_progress",
            "Invitations can be resent once the dispatch job has finished.",
            hint="Poll GET /jobs/active until the job completes.",
        )
    invitation = store.get_invitation(job_id, invitation_id)
    if not invitation:
        raise RoundPolicyError("invitation_not_found", "Invitation not found", status_code=404)
    if invitation["email_status"] not in {"failed", "skipped"}:
        raise RoundPolicyError(
            "invitation_not_failed",
            f"Only failed invitations can be resent (status is {invitation['email_status']}).",
        )

    owns_transport = transport is None
    transport = transport if transport is not None else get_transport()
    context = store.get_job_context(job_id)
    try:
        result = transport.send(_recipient(invitation), "invitation", _message_context(invitation, context))
    except TransportFatalError as exc:
        raise RoundPolicyError("transport_unavailable", str(exc), status_code=503) from exc
    finally:
        if owns_transport:
            transport.close()

    ok = bool(result.get("ok"))
    error = None if ok else str(result.get("error") or "send failed")
    if not ok:
        logger.warning("[DISPATCH] resend job=%s invitation=%s failed: %s", job_id, invitation_id, error)
    row = store.record_resend(invitation_id, ok=ok, error=error, provider_message_id=result.get("id")) or invitation
    with SessionLocal() as db:
        log_activity(
            db,
            action="resend_invitation",
            client_id=client_id,
            actor=actor,
            entity_type="invitation",
            entity_id=invitation_id,
            metadata={"job_id": job_id, "ok": ok, "error": error},
        )
        db.commit()
    return row
