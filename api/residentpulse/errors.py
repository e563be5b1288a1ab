import uuid
from typing import Any

from fastapi import HTTPException


class RoundPolicyError(Exception):
    """Raised when a lifecycle operation is rejected by round or dispatch policy."""

    def __init__(self, reason: str, detail: str, status_code: int = 409, hint: str | None = None):
        self.reason = reason
        self.detail = detail
        self.status_code = status_code
        self.hint = hint
        self.trace_id = str(uuid.uuid4())
        super().__init__(detail)


def detail_payload(
    *,
    message: str,
    hint: str | None = None,
    reason: str | None = None,
    errors: list[dict[str, Any]] | None = None,
    trace_id: str | None = None,
) -> dict[str, Any]:
    return {
        "success": False,
        "message": message,
        "hint": hint,
        "reason": reason,
        "errors": errors or [],
        "trace_id": trace_id or str(uuid.uuid4()),
    }


def policy_http_exception(exc: RoundPolicyError) -> HTTPException:
    return HTTPException(
        status_code=exc.status_code,
        detail=detail_payload(message=exc.detail, hint=exc.hint, reason=exc.reason, trace_id=exc.trace_id),
    )
