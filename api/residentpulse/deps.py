import uuid

from fastapi import HTTPException


def parse_uuid(raw: str | None, field: str = "id") -> str:
    value = str(raw or "").strip()
    try:
        return str(uuid.UUID(value))
    except ValueError:
        raise HTTPException(status_code=400, detail=f"{field} must be a valid UUID")
