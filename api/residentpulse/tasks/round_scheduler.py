"""Round sweeper: timer-driven close, reminder emails and orphaned dispatch recovery.

Runs on an APScheduler BackgroundScheduler every ROUND_SWEEP_INTERVAL_MINUTES.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.exc import SQLAlchemyError

from ..config import ROUND_SWEEP_INTERVAL_MINUTES
from ..services.dispatch import supervisor
from ..services.lifecycle import conclude_expired_rounds
from ..services.reminders import send_due_reminders

logger = logging.getLogger(__name__)

scheduler: Optional[BackgroundScheduler] = None


def get_scheduler() -> BackgroundScheduler:
    global scheduler
    if scheduler is None:
        scheduler = BackgroundScheduler(timezone="UTC")
    return scheduler


def run_round_sweep(now: Optional[datetime] = None) -> dict:
    now = now or datetime.now(timezone.utc)
    summary = {"concluded": [], "reminders": [], "resumed_jobs": []}

    try:
        summary["concluded"] = conclude_expired_rounds(now)
    except SQLAlchemyError:
        logger.exception("[SWEEPER] concluding expired rounds failed")

    try:
        summary["reminders"] = send_due_reminders(now)
    except SQLAlchemyError:
        logger.exception("[SWEEPER] sending reminders failed")

    try:
        summary["resumed_jobs"] = supervisor.resume_orphaned()
    except SQLAlchemyError:
        logger.exception("[SWEEPER] resuming orphaned dispatch jobs failed")

    logger.info(
        "[SWEEPER] concluded=%s reminder_batches=%s resumed_jobs=%s",
        len(summary["concluded"]),
        len(summary["reminders"]),
        len(summary["resumed_jobs"]),
    )
    return summary


def start_round_scheduler() -> BackgroundScheduler:
    sched = get_scheduler()
    sched.add_job(
        run_round_sweep,
        IntervalTrigger(minutes=ROUND_SWEEP_INTERVAL_MINUTES),
        id="round_sweep",
        name="Conclude expired rounds and send reminders",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
        next_run_time=datetime.now(timezone.utc),
    )
    if not sched.running:
        sched.start()
        logger.info("[SWEEPER] round scheduler started (every %s min)", ROUND_SWEEP_INTERVAL_MINUTES)
    return sched


def stop_round_scheduler() -> None:
    if scheduler and scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("[SWEEPER] round scheduler stopped")
