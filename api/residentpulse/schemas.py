from datetime import date
from typing import Any

from pydantic import BaseModel, Field

from .config import DEFAULT_CADENCE


class ScheduleRequest(BaseModel):
    first_launch_date: date
    cadence: int = Field(default=DEFAULT_CADENCE)


class RecalculateRequest(BaseModel):
    cadence: int | None = None


class DismissAlertRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=1000)


class SolveAlertRequest(BaseModel):
    note: str = Field(min_length=1, max_length=2000)


class FinalizeResponseRequest(BaseModel):
    nps_score: int | None = Field(default=None, ge=0, le=10)


class AlertScanRequest(BaseModel):
    content: str | None = None
    flags: Any = None
