from datetime import datetime

_ROUND_TRANSITIONS = {
    ("planned", "launch"): "in_progress",
    ("in_progress", "close"): "concluded",
}


def transition_round_status(current: str, action: str) -> str | None:
    """Return the next round status, or None when the action is not allowed from `current`."""
    return _ROUND_TRANSITIONS.get((current, action))


def round_due_to_close(status: str, closes_at: datetime | None, now: datetime) -> bool:
    if status != "in_progress" or closes_at is None:
        return False
    return now >= closes_at


def job_is_terminal(status: str) -> bool:
    return status in {"completed", "failed"}


def alert_display_state(alert: dict) -> str:
    if alert.get("solved"):
        return "solved"
    if alert.get("dismissed"):
        return "dismissed"
    return "open"
