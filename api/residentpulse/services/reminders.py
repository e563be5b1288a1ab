from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from .. import job_repo, round_repo
from ..config import REMINDER_DAYS
from .dispatch import survey_link
from .rate_limit import pace_transport_send
from .scheduling import days_remaining
from .transport import TransportFatalError, get_transport

logger = logging.getLogger(__name__)


def due_reminder_days(round_row: dict[str, Any], now: datetime, reminder_days: list[int] = REMINDER_DAYS) -> list[int]:
    launched_at = round_row.get("launched_at")
    closes_at = round_row.get("closes_at")
    if round_row.get("status") != "in_progress" or launched_at is None or closes_at is None or now >= closes_at:
        return []
    elapsed_days = (now - launched_at).total_seconds() / 86400
    already = set(round_row.get("reminders_sent") or [])
    return [day for day in sorted(reminder_days) if elapsed_days >= day and day not in already]


def send_round_reminders(round_row: dict[str, Any], reminder_day: int, now: datetime, *, transport, pace=pace_transport_send) -> dict[str, int]:
    remaining = days_remaining(round_row["closes_at"], now)
    sent = failed = 0
    for invitation in job_repo.list_non_responders(round_row["id"]):
        if not invitation.get("invitation_token"):
            continue
        pace()
        recipient = {
            "id": invitation.get("user_id"),
            "email": invitation.get("email"),
            "name": invitation.get("recipient_name"),
            "community": invitation.get("community_name"),
        }
        result = transport.send(
            recipient,
            "reminder",
            {"days_remaining": remaining, "reminder_day": reminder_day, "survey_link": survey_link(invitation["invitation_token"])},
        )
        if result.get("ok"):
            sent += 1
        else:
            failed += 1
            logger.warning("[SWEEPER] day %s reminder to %s failed: %s", reminder_day, invitation.get("email"), result.get("error"))
    return {"sent": sent, "failed": failed}


def send_due_reminders(now: datetime | None = None, *, transport=None) -> list[dict[str, Any]]:
    """Send every due reminder day once; a day whose transport failed outright is released for the next sweep."""
    now = now or datetime.now(timezone.utc)
    owns_transport = transport is None
    transport = transport if transport is not None else get_transport()
    results: list[dict[str, Any]] = []
    try:
        for round_row in round_repo.list_in_progress_rounds():
            for day in due_reminder_days(round_row, now):
                if not round_repo.add_reminder_sent(round_row["id"], day):
                    continue
                try:
                    counts = send_round_reminders(round_row, day, now, transport=transport)
                except TransportFatalError as exc:
                    round_repo.remove_reminder_sent(round_row["id"], day)
                    logger.error("[SWEEPER] day %s reminders for round=%s stopped, will retry: %s", day, round_row["id"], exc)
                    break
                logger.info(
                    "[SWEEPER] day %s reminders for round %s (client %s): sent=%s failed=%s",
                    day,
                    round_row["round_number"],
                    round_row["client_id"],
                    counts["sent"],
                    counts["failed"],
                )
                results.append({"round_id": round_row["id"], "day": day, **counts})
    finally:
        if owns_transport:
            transport.close()
    return results
