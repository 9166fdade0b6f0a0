"""Pydantic schemas for the automation monitoring endpoints."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel


class AutomationLogResponse(BaseModel):
    id: int
    job_id: int | None
    matter_id: str
    client_participant_id: str | None
    action: str
    status: str
    message: str | None
    error_details: str | None
    triggered_by: str | None
    created_at: datetime

    model_config = {"from_attributes": True}


class AutomationJobResponse(BaseModel):
    id: int
    matter_id: str
    client_participant_id: str
    referrer_name: str
    origination_percentage: Decimal
    status: str
    error_message: str | None
    attempts: int
    max_attempts: int
    created_at: datetime
    started_at: datetime | None
    completed_at: datetime | None

    model_config = {"from_attributes": True}


class AutomationJobDetail(AutomationJobResponse):
    logs: list[AutomationLogResponse] = []


class JobStats(BaseModel):
    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0
    total: int = 0
