# models/job.py
from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from models.base import Base, TimestampMixin, UUIDPrimaryKey

STATUS_PENDING = "pending"
STATUS_CLAIMED = "claimed"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"

JOB_STATUSES = (STATUS_PENDING, STATUS_CLAIMED, STATUS_COMPLETED, STATUS_FAILED)
TERMINAL_STATUSES = (STATUS_COMPLETED, STATUS_FAILED)


class Job(Base, UUIDPrimaryKey, TimestampMixin):
    """A scheduled form submission waiting to be handed to the executor."""

    __tablename__ = "jobs"
    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'claimed', 'completed', 'failed')",
            name="ck_jobs_status",
        ),
        CheckConstraint(
            "(status = 'claimed' AND claim_token IS NOT NULL AND claim_deadline IS NOT NULL)"
            " OR (status <> 'claimed' AND claim_token IS NULL AND claim_deadline IS NULL)",
            name="ck_jobs_claim_fields",
        ),
        CheckConstraint(
            "attempt_count >= 0 AND attempt_count <= max_attempts",
            name="ck_jobs_attempt_bound",
        ),
        Index("ix_jobs_status_not_before", "status", "not_before"),
        Index("ix_jobs_status_claim_deadline", "status", "claim_deadline"),
        Index("ix_jobs_owner_id", "owner_id"),
    )

    owner_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    target: Mapped[str] = mapped_column(Text, nullable=False)
    not_before: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    # pending | claimed | completed | failed
    status: Mapped[str] = mapped_column(String(32), default=STATUS_PENDING, nullable=False)
    claim_token: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    claim_deadline: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    attempt_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_attempts: Mapped[int] = mapped_column(Integer, default=3, nullable=False)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def attempts_exhausted(self) -> bool:
        return self.attempt_count >= self.max_attempts
