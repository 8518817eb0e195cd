# jobs/claims.py
"""
Claim engine: turns due jobs into leased claims.

Every claim is a single conditional UPDATE keyed on the row still being
pending, so any number of pollers can race on the same job and exactly
one of them wins. Nothing here holds a lock between statements.
"""
from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from jobs.store import list_due
from models.base import utcnow
from models.job import STATUS_CLAIMED, STATUS_PENDING, Job

logger = logging.getLogger(__name__)


async def claim_job(
    db: AsyncSession,
    job: Job,
    now: datetime,
    lease_seconds: int,
) -> Job | None:
    """
    Attempt pending -> claimed for one job.
    Returns the refreshed job on success, None if another poller got there first,
    the job was deleted, or its attempts are already used up.
    """
    token = uuid.uuid4()
    stmt = (
        update(Job)
        .where(
            Job.id == job.id,
            Job.status == STATUS_PENDING,
            Job.attempt_count < Job.max_attempts,
        )
        .values(
            status=STATUS_CLAIMED,
            claim_token=token,
            claim_deadline=now + timedelta(seconds=lease_seconds),
            attempt_count=Job.attempt_count + 1,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)

    if result.rowcount != 1:
        logger.debug("Lost claim race for job %s", job.id)
        return None

    await db.refresh(job)
    logger.info(
        "Claimed job %s attempt %d/%d lease=%ds",
        job.id,
        job.attempt_count,
        job.max_attempts,
        lease_seconds,
    )
    return job


async def claim_batch(
    db: AsyncSession,
    limit: int,
    lease_seconds: int,
    now: datetime | None = None,
) -> list[Job]:
    """
    Claim up to `limit` due jobs, oldest-due first.

    Each successful claim is committed on its own, so if the store fails
    halfway through, the jobs already claimed stay validly claimed and the
    error propagates to the caller.
    """
    if limit <= 0:
        return []

    now = now or utcnow()
    candidates = await list_due(db, now, limit=limit)

    claimed: list[Job] = []
    for candidate in candidates:
        job = await claim_job(db, candidate, now, lease_seconds)
        await db.commit()
        if job is not None:
            claimed.append(job)

    if candidates:
        logger.info("Claimed %d of %d due jobs", len(claimed), len(candidates))
    return claimed
