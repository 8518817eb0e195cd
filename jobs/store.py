# jobs/store.py
"""
Job store: owner-scoped CRUD plus the two privileged scans the
scheduler depends on (due jobs, expired claims).
"""
from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence
from datetime import datetime

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from models.job import STATUS_CLAIMED, STATUS_PENDING, Job

logger = logging.getLogger(__name__)


async def create_job(
    db: AsyncSession,
    owner_id: uuid.UUID,
    target: str,
    not_before: datetime,
    max_attempts: int = 3,
) -> Job:
    job = Job(
        owner_id=owner_id,
        target=target,
        not_before=not_before,
        status=STATUS_PENDING,
        attempt_count=0,
        max_attempts=max_attempts,
    )
    db.add(job)
    await db.flush()
    await db.refresh(job)
    logger.info("Scheduled job %s for owner %s at %s", job.id, owner_id, not_before.isoformat())
    return job


async def get_job(db: AsyncSession, owner_id: uuid.UUID, job_id: uuid.UUID) -> Job | None:
    stmt = select(Job).where(Job.id == job_id, Job.owner_id == owner_id)
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def list_jobs(
    db: AsyncSession,
    owner_id: uuid.UUID,
    status: str | None = None,
) -> Sequence[Job]:
    stmt = (
        select(Job)
        .where(Job.owner_id == owner_id)
        .order_by(Job.not_before.desc())
    )
    if status:
        stmt = stmt.where(Job.status == status)
    result = await db.execute(stmt)
    return result.scalars().all()


async def delete_job(db: AsyncSession, owner_id: uuid.UUID, job_id: uuid.UUID) -> bool:
    """
    Owner-initiated deletion, allowed in any status.
    An in-flight claim on the row simply finds nothing left to update.
    """
    stmt = delete(Job).where(Job.id == job_id, Job.owner_id == owner_id)
    result = await db.execute(stmt)
    deleted = result.rowcount == 1
    if deleted:
        logger.info("Owner %s deleted job %s", owner_id, job_id)
    return deleted


async def list_due(
    db: AsyncSession,
    now: datetime,
    limit: int | None = None,
) -> Sequence[Job]:
    """
    Pending jobs whose not_before has passed, oldest-due first.
    Served by ix_jobs_status_not_before.
    """
    stmt = (
        select(Job)
        .where(
            Job.status == STATUS_PENDING,
            Job.not_before <= now,
        )
        .order_by(Job.not_before.asc())
        .execution_options(populate_existing=True)
    )
    if limit is not None:
        stmt = stmt.limit(limit)
    result = await db.execute(stmt)
    return result.scalars().all()


async def list_expired_claims(
    db: AsyncSession,
    now: datetime,
    limit: int | None = None,
) -> Sequence[Job]:
    """
    Claimed jobs whose lease ran out. Served by ix_jobs_status_claim_deadline.
    """
    stmt = (
        select(Job)
        .where(
            Job.status == STATUS_CLAIMED,
            Job.claim_deadline < now,
        )
        .order_by(Job.claim_deadline.asc())
        .execution_options(populate_existing=True)
    )
    if limit is not None:
        stmt = stmt.limit(limit)
    result = await db.execute(stmt)
    return result.scalars().all()
