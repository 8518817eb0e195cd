# api/app/schemas/job.py
from __future__ import annotations

import uuid
from datetime import datetime, timezone

from pydantic import AnyHttpUrl, BaseModel, ConfigDict, Field, field_validator


class JobCreate(BaseModel):
    target: AnyHttpUrl
    not_before: datetime

    @field_validator("not_before")
    @classmethod
    def _to_utc(cls, value: datetime) -> datetime:
        # naive times from the dashboard are already UTC
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class JobResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    owner_id: uuid.UUID
    target: str
    not_before: datetime
    status: str
    attempt_count: int
    max_attempts: int
    last_error: str | None = None
    completed_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class ClaimRequest(BaseModel):
    limit: int | None = Field(default=None, ge=1, le=100)


class ClaimedJob(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    target: str
    claim_token: uuid.UUID
    claim_deadline: datetime
    attempt_count: int
    max_attempts: int


class ClaimResponse(BaseModel):
    jobs: list[ClaimedJob]
    count: int


class JobResultReport(BaseModel):
    claim_token: uuid.UUID
    success: bool
    error: str | None = None


class JobResultResponse(BaseModel):
    id: uuid.UUID
    status: str


class ReconcileResponse(BaseModel):
    reclaimed: int
