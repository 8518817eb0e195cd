# jobs/reconciler.py
"""
Reconciler: returns claims whose lease ran out to the pending pool.

Lease expiry counts as a spent attempt; attempt_count is never reset. A job
whose attempts are already used up goes to failed instead, so a worker that
keeps crashing mid-dispatch cannot keep a job alive forever.
"""
from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from jobs.store import list_expired_claims
from models.base import utcnow
from models.job import STATUS_CLAIMED, STATUS_FAILED, STATUS_PENDING, Job
from services.observability import log_job_event

logger = logging.getLogger(__name__)

LEASE_EXPIRED_ERROR = "lease expired before the executor reported back"


async def reconcile_job(db: AsyncSession, job: Job, now: datetime) -> str | None:
    """
    Release one expired claim. The update only matches if the row still
    carries the deadline we observed, so a dispatcher finishing between our
    read and our write wins. Returns the new status or None.
    """
    new_status = STATUS_FAILED if job.attempts_exhausted else STATUS_PENDING
    stmt = (
        update(Job)
        .where(
            Job.id == job.id,
            Job.status == STATUS_CLAIMED,
            Job.claim_deadline == job.claim_deadline,
        )
        .values(
            status=new_status,
            claim_token=None,
            claim_deadline=None,
            last_error=LEASE_EXPIRED_ERROR,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    if result.rowcount != 1:
        logger.debug("Job %s changed before it could be reclaimed", job.id)
        return None

    await db.refresh(job)
    logger.warning(
        "Reclaimed job %s after lease expiry -> %s (attempt %d/%d)",
        job.id,
        new_status,
        job.attempt_count,
        job.max_attempts,
    )
    await log_job_event(
        db,
        "job_lease_expired",
        job,
        "error" if new_status == STATUS_FAILED else "warning",
        source="reconciler",
        status=new_status,
    )
    return new_status


async def reconcile_once(
    db: AsyncSession,
    now: datetime | None = None,
    limit: int | None = None,
) -> list[Job]:
    """One reconciliation pass. Each reclaim is committed on its own."""
    now = now or utcnow()
    expired = await list_expired_claims(db, now, limit=limit)

    reclaimed: list[Job] = []
    for job in expired:
        status = await reconcile_job(db, job, now)
        await db.commit()
        if status is not None:
            reclaimed.append(job)

    if expired:
        logger.info("Reconciled %d of %d expired claims", len(reclaimed), len(expired))
    return reclaimed
