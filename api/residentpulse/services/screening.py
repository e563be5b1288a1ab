from __future__ import annotations

import logging
from typing import Any

from .. import alert_repo, response_repo
from .alerts import DetectedAlert, detect_alerts

logger = logging.getLogger(__name__)


def response_text(db, response: dict[str, Any]) -> str:
    parts = [response_repo.session_user_text(db, response["id"]), str(response.get("summary") or "")]
    return "\n".join(p for p in parts if p)


def screen_response(
    db,
    client_id: str,
    response: dict[str, Any],
    *,
    content: str | None = None,
    flags: Any = None,
) -> tuple[list[DetectedAlert], list[dict[str, Any]]]:
    """Run the alert detector on one response and store what it finds in the caller's transaction."""
    detected = detect_alerts(
        content=content if content is not None else response_text(db, response),
        flags=flags if flags is not None else response.get("intake_flags"),
    )
    created = alert_repo.insert_alerts(db, client_id=client_id, response=response, detected=detected)
    if created:
        logger.info("[ANALYTICS] response=%s raised %s alerts", response.get("id"), len(created))
    return detected, created
