# jobs/dispatcher.py
"""
Dispatcher: hands a claimed job to the executor and records the outcome.

Status writes are conditional on the claim token the dispatcher was given,
so a job reclaimed by the reconciler (or deleted by its owner) in the
meantime is never touched. The write is committed before dispatch_job
returns.
"""
from __future__ import annotations

import asyncio
import enum
import logging
import uuid
from datetime import datetime, timedelta

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from jobs.executor import ExecutionResult, Executor
from models.base import utcnow
from models.job import STATUS_CLAIMED, STATUS_COMPLETED, STATUS_FAILED, STATUS_PENDING, Job
from services.observability import log_job_event

logger = logging.getLogger(__name__)

MAX_ERROR_LENGTH = 4000
MAX_RETRY_DELAY_SECONDS = 24 * 60 * 60


class DispatchOutcome(str, enum.Enum):
    COMPLETED = "completed"
    RETRYING = "retrying"
    FAILED = "failed"
    # status write matched no row: job deleted or claim no longer ours
    CANCELLED = "cancelled"


def retry_delay(attempt_count: int, backoff_seconds: int) -> int:
    """Exponential delay before a failed attempt becomes due again, capped at one day."""
    if backoff_seconds <= 0:
        return 0
    exponent = min(max(attempt_count - 1, 0), 32)
    return min(backoff_seconds * 2 ** exponent, MAX_RETRY_DELAY_SECONDS)


async def complete_job(
    db: AsyncSession,
    job_id: uuid.UUID,
    claim_token: uuid.UUID,
    now: datetime | None = None,
) -> bool:
    now = now or utcnow()
    stmt = (
        update(Job)
        .where(
            Job.id == job_id,
            Job.status == STATUS_CLAIMED,
            Job.claim_token == claim_token,
        )
        .values(
            status=STATUS_COMPLETED,
            claim_token=None,
            claim_deadline=None,
            last_error=None,
            completed_at=now,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    if result.rowcount != 1:
        return False

    logger.info("Job %s completed", job_id)
    return True


async def fail_job(
    db: AsyncSession,
    job: Job,
    claim_token: uuid.UUID,
    error: str,
    now: datetime | None = None,
    retry_backoff_seconds: int = 0,
) -> str | None:
    """
    Schedules a retry or marks the job permanently failed.
    Returns the new status, or None when the claim is no longer current.
    No sleeping here.
    """
    now = now or utcnow()
    error = error[:MAX_ERROR_LENGTH]

    values: dict = {
        "claim_token": None,
        "claim_deadline": None,
        "last_error": error,
        "updated_at": now,
    }
    if job.attempt_count >= job.max_attempts:
        values["status"] = STATUS_FAILED
    else:
        values["status"] = STATUS_PENDING
        delay = retry_delay(job.attempt_count, retry_backoff_seconds)
        if delay:
            values["not_before"] = now + timedelta(seconds=delay)

    stmt = (
        update(Job)
        .where(
            Job.id == job.id,
            Job.status == STATUS_CLAIMED,
            Job.claim_token == claim_token,
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    if result.rowcount != 1:
        return None

    if values["status"] == STATUS_FAILED:
        logger.error(
            "Job %s permanently failed after %d attempts: %s",
            job.id,
            job.attempt_count,
            error,
        )
        await log_job_event(
            db, "job_permanently_failed", job, "error", source="dispatcher", message=error
        )
    else:
        logger.warning(
            "Job %s retry %d/%d: %s",
            job.id,
            job.attempt_count,
            job.max_attempts,
            error,
        )
        await log_job_event(
            db, "job_failed", job, "warning", source="dispatcher", message=error
        )
    return values["status"]


async def _run_executor(
    executor: Executor,
    job: Job,
    claim_token: uuid.UUID,
    timeout_seconds: float,
) -> ExecutionResult:
    try:
        return await asyncio.wait_for(
            executor.execute(job.id, job.target, claim_token),
            timeout=timeout_seconds,
        )
    except asyncio.TimeoutError:
        return ExecutionResult.failure(f"executor timed out after {timeout_seconds:g}s")
    except Exception as exc:
        logger.exception("Executor raised for job %s", job.id)
        return ExecutionResult.failure(f"{type(exc).__name__}: {exc}")


async def dispatch_job(
    db: AsyncSession,
    job: Job,
    executor: Executor,
    timeout_seconds: float,
    retry_backoff_seconds: int = 0,
    now: datetime | None = None,
) -> DispatchOutcome:
    claim_token = job.claim_token
    if job.status != STATUS_CLAIMED or claim_token is None:
        raise ValueError(f"Job {job.id} is not claimed")

    result = await _run_executor(executor, job, claim_token, timeout_seconds)
    now = now or utcnow()

    if result.ok:
        updated = await complete_job(db, job.id, claim_token, now)
        outcome = DispatchOutcome.COMPLETED if updated else DispatchOutcome.CANCELLED
    else:
        status = await fail_job(
            db,
            job,
            claim_token,
            result.error or "executor reported failure",
            now=now,
            retry_backoff_seconds=retry_backoff_seconds,
        )
        if status is None:
            outcome = DispatchOutcome.CANCELLED
        elif status == STATUS_FAILED:
            outcome = DispatchOutcome.FAILED
        else:
            outcome = DispatchOutcome.RETRYING

    await db.commit()

    if outcome is DispatchOutcome.CANCELLED:
        logger.warning(
            "Job %s no longer held by claim %s (deleted or reclaimed); result %s discarded",
            job.id,
            claim_token,
            "ok" if result.ok else "failed",
        )
    return outcome
