from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta

from ..config import (
    ALLOWED_CADENCES,
    LAUNCH_LOOKAHEAD_DAYS,
    MAX_SCHEDULED_ROUNDS,
    SCHEDULE_HORIZON_YEARS,
    SURVEY_WINDOW_DAYS,
)


@dataclass(frozen=True)
class PlannedSlot:
    round_number: int
    scheduled_date: date


def round_interval_days(cadence: int) -> int:
    if cadence not in ALLOWED_CADENCES:
        raise ValueError(f"cadence must be one of {ALLOWED_CADENCES}")
    return int(round(365 / cadence))


def plan_rounds(
    *,
    first_launch_date: date,
    cadence: int,
    today: date,
    launched_count: int = 0,
    horizon_years: int = SCHEDULE_HORIZON_YEARS,
    max_rounds: int = MAX_SCHEDULED_ROUNDS,
    grace_days: int = LAUNCH_LOOKAHEAD_DAYS,
) -> list[PlannedSlot]:
    """Planned rounds following `launched_count` already-launched ones.

    Slot k falls on first_launch_date + k * interval. A slot already in the past
    is pushed to today + grace_days so the tenant has time to prepare; later slots
    keep the interval from there. Generation stops at the horizon
    (max(first_launch_date, today) + horizon_years) or after max_rounds slots.
    Pure in (first_launch_date, cadence, today, launched_count).
    """
    interval = timedelta(days=round_interval_days(cadence))
    horizon_end = max(first_launch_date, today) + timedelta(days=365 * horizon_years)

    next_date = first_launch_date + interval * launched_count
    if next_date < today:
        next_date = today + timedelta(days=grace_days)

    slots: list[PlannedSlot] = []
    round_number = launched_count + 1
    while next_date < horizon_end and len(slots) < max_rounds:
        slots.append(PlannedSlot(round_number=round_number, scheduled_date=next_date))
        round_number += 1
        next_date = next_date + interval
    return slots


def launch_window_violation(
    scheduled_date: date,
    today: date,
    lookahead_days: int = LAUNCH_LOOKAHEAD_DAYS,
) -> str | None:
    earliest = scheduled_date - timedelta(days=lookahead_days)
    if today < earliest:
        return (
            f"Round is scheduled for {scheduled_date.isoformat()} and can be launched "
            f"from {earliest.isoformat()} ({lookahead_days} days ahead)."
        )
    return None


def compute_closes_at(launched_at: datetime, window_days: int = SURVEY_WINDOW_DAYS) -> datetime:
    return launched_at + timedelta(days=window_days)


def days_remaining(closes_at: datetime, now: datetime) -> int:
    seconds = (closes_at - now).total_seconds()
    return max(1, int(-(-seconds // 86400)))
