import json
import logging
import uuid
from typing import Any

from sqlalchemy import text

logger = logging.getLogger(__name__)


def log_activity(
    db,
    *,
    action: str,
    client_id: str | None,
    actor: dict[str, Any] | None = None,
    entity_type: str | None = None,
    entity_id: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> None:
    """Append to the audit trail inside the caller's transaction.

    `actor` is the authenticated client admin; None records the action as "system".
    """
    metadata = metadata or {}
    actor = actor or {}
    db.execute(
        text(
            """
            INSERT INTO activity_log (id, client_id, actor_type, actor_id, actor_email, action, entity_type, entity_id, metadata)
            VALUES (
              :id,
              CAST(NULLIF(:client_id, '') AS uuid),
              :actor_type,
              :actor_id,
              :actor_email,
              :action,
              :entity_type,
              :entity_id,
              CAST(:metadata AS jsonb)
            )
            """
        ),
        {
            "id": str(uuid.uuid4()),
            "client_id": client_id or "",
            "actor_type": "client_admin" if actor.get("id") or actor.get("email") else "system",
            "actor_id": str(actor["id"]) if actor.get("id") else None,
            "actor_email": actor.get("email"),
            "action": action,
            "entity_type": entity_type,
            "entity_id": str(entity_id) if entity_id else None,
            "metadata": json.dumps(metadata, default=str),
        },
    )
    logger.debug("[ACTIVITY] %s client=%s entity=%s:%s", action, client_id, entity_type, entity_id)
