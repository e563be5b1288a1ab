"""Round-closure side effects.

Insights generation lives outside this service; handlers registered here are
notified synchronously with the round and its response set when a round is
concluded. A failing handler is logged and never undoes the conclusion.
"""

from __future__ import annotations

import logging
from typing import Any, Callable

from .. import response_repo, round_repo
from ..config import WORD_CLOUD_MAX_WORDS
from .screening import screen_response
from .trends import word_frequencies

logger = logging.getLogger(__name__)

InsightsHandler = Callable[[dict[str, Any], list[dict[str, Any]]], Any]

_handlers: list[InsightsHandler] = []


def register_insights_handler(handler: InsightsHandler) -> InsightsHandler:
    if handler not in _handlers:
        _handlers.append(handler)
    return handler


def unregister_insights_handler(handler: InsightsHandler) -> None:
    if handler in _handlers:
        _handlers.remove(handler)


def finalize_stale_responses(db, client_id: str, round_id: str) -> tuple[list[dict[str, Any]], int]:
    """Complete abandoned responses and screen each one for alerts like a manual finalize."""
    finalized: list[dict[str, Any]] = []
    alerts_raised = 0
    for response in response_repo.list_stale_incomplete(db, round_id):
        row = response_repo.finalize_response(db, response["id"])
        if row:
            finalized.append(row)
            _, created = screen_response(db, client_id, row)
            alerts_raised += len(created)
    if finalized:
        logger.info("[ROUNDS] round=%s auto-finalized %s abandoned responses", round_id, len(finalized))
    return finalized, alerts_raised


def run_closure_hooks(db, round_row: dict[str, Any]) -> dict[str, Any]:
    """Finalize abandoned responses, store word frequencies and notify insights handlers."""
    round_id = round_row["id"]
    client_id = round_row["client_id"]

    finalized, alerts_raised = finalize_stale_responses(db, client_id, round_id)
    frequencies = word_frequencies(response_repo.list_user_messages(db, round_id), WORD_CLOUD_MAX_WORDS)
    round_repo.store_word_frequencies(db, round_id, frequencies)

    responses = [r for r in response_repo.list_round_responses(db, client_id, round_id) if r.get("completed")]
    notified = 0
    for handler in list(_handlers):
        try:
            insights = handler(round_row, responses)
        except Exception:
            logger.exception("[ROUNDS] insights handler %r failed for round=%s", handler, round_id)
            continue
        notified += 1
        if isinstance(insights, dict):
            round_repo.store_insights(db, round_id, insights)

    return {
        "finalized_responses": len(finalized),
        "alerts_raised": alerts_raised,
        "word_count": len(frequencies),
        "handlers_notified": notified,
        "responses": len(responses),
    }
