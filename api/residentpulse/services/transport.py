"""Email transport used by invitation dispatch and reminders.

`send(recipient, template, context)` returns {"ok": True, "id": ...} or
{"ok": False, "error": ...} for a single-recipient problem, and raises
TransportFatalError when the transport as a whole cannot deliver
(missing or rejected credentials).
"""

from __future__ import annotations

import logging
import uuid
from typing import Any

import httpx

from ..config import (
    DISPATCH_SEND_TIMEOUT_SECONDS,
    EMAIL_FROM,
    EMAIL_TRANSPORT,
    RESEND_API_KEY,
    RESEND_API_URL,
)

logger = logging.getLogger(__name__)


class TransportFatalError(Exception):
    """The transport cannot deliver to anyone; the dispatch job must stop."""


def render_message(template: str, recipient: dict[str, Any], context: dict[str, Any]) -> tuple[str, str]:
    name = str(recipient.get("name") or "").strip() or "Board Member"
    community = str(recipient.get("community") or "").strip() or "your community"
    link = str(context.get("survey_link") or "")
    if template == "reminder":
        days = context.get("days_remaining")
        subject = "Reminder: your feedback is still needed"
        body = (
            f"Dear {name},\n\n"
            f"There are {days} day(s) left to share your feedback about {community}.\n\n"
            f"{link}\n"
        )
        return subject, body
    round_number = context.get("round_number")
    subject = f"Your feedback matters - survey round {round_number}" if round_number else "Your feedback matters"
    body = (
        f"Dear {name},\n\n"
        f"As a board member at {community}, your perspective shapes how your community is managed.\n"
        f"The survey closes on {context.get('closes_at') or 'the close date'}.\n\n"
        f"{link}\n"
    )
    return subject, body


class ResendTransport:
    name = "resend"

    def __init__(
        self,
        *,
        api_key: str = RESEND_API_KEY,
        api_url: str = RESEND_API_URL,
        sender: str = EMAIL_FROM,
        timeout: float = DISPATCH_SEND_TIMEOUT_SECONDS,
        client: httpx.Client | None = None,
    ) -> None:
        self.api_key = api_key
        self.api_url = api_url
        self.sender = sender
        self.timeout = timeout
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=timeout)

    def check(self) -> None:
        if not self.api_key:
            raise TransportFatalError("RESEND_API_KEY is not configured")

    def send(self, recipient: dict[str, Any], template: str, context: dict[str, Any]) -> dict[str, Any]:
        self.check()
        email = str(recipient.get("email") or "").strip()
        if not email:
            return {"ok": False, "error": "recipient has no email address"}
        subject, body = render_message(template, recipient, context)
        try:
            resp = self._client.post(
                self.api_url,
                json={"from": self.sender, "to": [email], "subject": subject, "text": body},
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=self.timeout,
            )
        except httpx.TimeoutException:
            return {"ok": False, "error": f"timeout after {self.timeout:g}s"}
        except httpx.HTTPError as exc:
            return {"ok": False, "error": f"transport error: {exc}"}

        if resp.status_code in (401, 403):
            raise TransportFatalError(f"email provider rejected credentials (HTTP {resp.status_code})")
        if resp.status_code >= 400:
            return {"ok": False, "error": f"HTTP {resp.status_code}: {resp.text[:300]}"}
        try:
            payload = resp.json()
        except ValueError:
            payload = {}
        return {"ok": True, "id": payload.get("id") if isinstance(payload, dict) else None}

    def close(self) -> None:
        if self._owns_client:
            self._client.close()


class LogTransport:
    """Development transport: logs the message instead of sending it."""

    name = "log"

    def check(self) -> None:
        return None

    def close(self) -> None:
        return None

    def send(self, recipient: dict[str, Any], template: str, context: dict[str, Any]) -> dict[str, Any]:
        subject, _ = render_message(template, recipient, context)
        message_id = f"log-{uuid.uuid4().hex[:12]}"
        logger.info("[TRANSPORT][log] to=%s template=%s subject=%r id=%s", recipient.get("email"), template, subject, message_id)
        return {"ok": True, "id": message_id}


def get_transport():
    if EMAIL_TRANSPORT == "log":
        return LogTransport()
    return ResendTransport()
