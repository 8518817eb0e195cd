# api/app/routes/internal.py
"""
Service-scoped endpoints for a pull-style executor.

Instead of having the worker push jobs, an external bot can claim a batch
itself, run the forms, and report each result back with the claim token it
was handed. The same conditional updates as the worker apply.
"""
from __future__ import annotations

import logging
import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from api.app.config import get_settings
from api.app.dependencies import get_session, require_service_key
from api.app.schemas.job import (
    ClaimedJob,
    ClaimRequest,
    ClaimResponse,
    JobResultReport,
    JobResultResponse,
    ReconcileResponse,
)
from jobs.claims import claim_batch
from jobs.dispatcher import DispatchOutcome, complete_job, fail_job
from jobs.reconciler import reconcile_once
from models.job import STATUS_COMPLETED, Job

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/internal",
    tags=["internal"],
    dependencies=[Depends(require_service_key)],
)


@router.post("/claims", response_model=ClaimResponse)
async def claim_due_jobs(
    body: ClaimRequest | None = None,
    db: AsyncSession = Depends(get_session),
):
    """Claim due jobs on behalf of the caller."""
    settings = get_settings()
    limit = body.limit if body and body.limit else settings.claim_batch_size
    jobs = await claim_batch(db, limit=limit, lease_seconds=settings.lease_seconds)
    claimed = [ClaimedJob.model_validate(job) for job in jobs]
    return ClaimResponse(jobs=claimed, count=len(claimed))


@router.post("/jobs/{job_id}/result", response_model=JobResultResponse)
async def report_job_result(
    job_id: uuid.UUID,
    body: JobResultReport,
    db: AsyncSession = Depends(get_session),
):
    """
    Record the executor's verdict. A job that was deleted or reclaimed since
    the claim reports back as cancelled rather than an error.
    """
    job = await db.get(Job, job_id)

    new_status: str | None = None
    if job is not None:
        if body.success:
            if await complete_job(db, job_id, body.claim_token):
                new_status = STATUS_COMPLETED
        else:
            new_status = await fail_job(
                db,
                job,
                body.claim_token,
                body.error or "executor reported failure",
                retry_backoff_seconds=get_settings().retry_backoff_seconds,
            )

    if new_status is None:
        logger.warning("Result for job %s ignored: claim %s no longer held", job_id, body.claim_token)
        new_status = DispatchOutcome.CANCELLED.value

    return JobResultResponse(id=job_id, status=new_status)


@router.post("/reconcile", response_model=ReconcileResponse)
async def reconcile_expired_claims(db: AsyncSession = Depends(get_session)):
    reclaimed = await reconcile_once(db)
    return ReconcileResponse(reclaimed=len(reclaimed))
