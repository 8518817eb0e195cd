# tests/test_dispatcher.py
"""
Tests for dispatching claimed jobs and resolving their status.
"""
from __future__ import annotations

import asyncio
import uuid
from datetime import timedelta

import pytest
from sqlalchemy import select

from jobs.claims import claim_batch
from jobs.dispatcher import (
    MAX_RETRY_DELAY_SECONDS,
    DispatchOutcome,
    complete_job,
    dispatch_job,
    fail_job,
    retry_delay,
)
from jobs.executor import ExecutionResult
from jobs.store import delete_job
from models.event import Event
from models.job import STATUS_CLAIMED, STATUS_COMPLETED, STATUS_FAILED, STATUS_PENDING, Job


class FakeExecutor:
    def __init__(self, result: ExecutionResult | None = None, delay: float = 0.0, exc: Exception | None = None):
        self.result = result or ExecutionResult.success()
        self.delay = delay
        self.exc = exc
        self.calls: list[tuple[uuid.UUID, str, uuid.UUID]] = []

    async def execute(self, job_id, target, claim_token):
        self.calls.append((job_id, target, claim_token))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.exc is not None:
            raise self.exc
        return self.result


async def _claim_one(db_session, now):
    [job] = await claim_batch(db_session, limit=10, lease_seconds=30, now=now)
    return job


def test_retry_delay_is_exponential():
    assert retry_delay(1, 30) == 30
    assert retry_delay(2, 30) == 60
    assert retry_delay(3, 30) == 120
    assert retry_delay(2, 0) == 0


def test_retry_delay_is_capped_at_one_day():
    assert retry_delay(12, 30) == MAX_RETRY_DELAY_SECONDS
    assert retry_delay(10_000, 30) == MAX_RETRY_DELAY_SECONDS


@pytest.mark.asyncio
async def test_successful_dispatch_completes_job(db_session, make_job, load_job, now):
    job_id = await make_job()
    job = await _claim_one(db_session, now)
    executor = FakeExecutor()

    outcome = await dispatch_job(db_session, job, executor, timeout_seconds=5, now=now)

    assert outcome is DispatchOutcome.COMPLETED
    assert executor.calls == [(job_id, job.target, job.claim_token)]
    stored = await load_job(job_id)
    assert stored.status == STATUS_COMPLETED
    assert stored.claim_token is None
    assert stored.claim_deadline is None
    assert stored.completed_at is not None
    assert stored.attempt_count == 1


@pytest.mark.asyncio
async def test_failed_dispatch_returns_job_to_pending(db_session, make_job, load_job, now):
    job_id = await make_job()
    job = await _claim_one(db_session, now)
    executor = FakeExecutor(ExecutionResult.failure("form closed"))

    outcome = await dispatch_job(db_session, job, executor, timeout_seconds=5, now=now)

    assert outcome is DispatchOutcome.RETRYING
    stored = await load_job(job_id)
    assert stored.status == STATUS_PENDING
    assert stored.claim_token is None
    assert stored.last_error == "form closed"
    assert stored.attempt_count == 1


@pytest.mark.asyncio
async def test_failed_dispatch_backs_off_before_retry(db_session, make_job, now):
    await make_job()
    job = await _claim_one(db_session, now)

    await dispatch_job(
        db_session,
        job,
        FakeExecutor(ExecutionResult.failure("busy")),
        timeout_seconds=5,
        retry_backoff_seconds=30,
        now=now,
    )

    assert await claim_batch(db_session, limit=10, lease_seconds=30, now=now + timedelta(seconds=29)) == []
    retried = await claim_batch(db_session, limit=10, lease_seconds=30, now=now + timedelta(seconds=30))
    assert len(retried) == 1
    assert retried[0].attempt_count == 2


@pytest.mark.asyncio
async def test_late_retry_is_scheduled_at_most_a_day_out(db_session, make_job, load_job, now):
    job_id = await make_job(attempt_count=39, max_attempts=50)
    job = await _claim_one(db_session, now)

    outcome = await dispatch_job(
        db_session,
        job,
        FakeExecutor(ExecutionResult.failure("form closed")),
        timeout_seconds=5,
        retry_backoff_seconds=30,
        now=now,
    )

    assert outcome is DispatchOutcome.RETRYING
    stored = await load_job(job_id)
    assert stored.status == STATUS_PENDING
    assert stored.attempt_count == 40
    assert stored.last_error == "form closed"
    expected = now + timedelta(seconds=MAX_RETRY_DELAY_SECONDS)
    assert stored.not_before.replace(tzinfo=None) == expected.replace(tzinfo=None)


@pytest.mark.asyncio
async def test_last_attempt_failure_is_permanent(db_session, make_job, load_job, now):
    job_id = await make_job(attempt_count=2, max_attempts=3)
    job = await _claim_one(db_session, now)
    assert job.attempt_count == 3

    outcome = await dispatch_job(
        db_session, job, FakeExecutor(ExecutionResult.failure("captcha")), timeout_seconds=5, now=now
    )

    assert outcome is DispatchOutcome.FAILED
    stored = await load_job(job_id)
    assert stored.status == STATUS_FAILED
    assert stored.last_error == "captcha"
    assert stored.claim_token is None

    events = (await db_session.execute(select(Event).where(Event.event_type == "job_permanently_failed"))).scalars().all()
    assert len(events) == 1
    assert events[0].metadata_["job_id"] == str(job_id)


@pytest.mark.asyncio
async def test_retry_bound_over_repeated_failures(db_session, make_job, load_job, now):
    job_id = await make_job(max_attempts=3)
    executor = FakeExecutor(ExecutionResult.failure("still broken"))

    outcomes = []
    for _ in range(5):
        claimed = await claim_batch(db_session, limit=10, lease_seconds=30, now=now)
        if not claimed:
            break
        outcomes.append(await dispatch_job(db_session, claimed[0], executor, timeout_seconds=5, now=now))

    assert outcomes == [DispatchOutcome.RETRYING, DispatchOutcome.RETRYING, DispatchOutcome.FAILED]
    stored = await load_job(job_id)
    assert stored.attempt_count == 3
    assert stored.status == STATUS_FAILED


@pytest.mark.asyncio
async def test_executor_timeout_counts_as_failure(db_session, make_job, load_job, now):
    job_id = await make_job()
    job = await _claim_one(db_session, now)

    outcome = await dispatch_job(db_session, job, FakeExecutor(delay=1.0), timeout_seconds=0.05, now=now)

    assert outcome is DispatchOutcome.RETRYING
    stored = await load_job(job_id)
    assert "timed out" in stored.last_error


@pytest.mark.asyncio
async def test_executor_exception_counts_as_failure(db_session, make_job, load_job, now):
    job_id = await make_job()
    job = await _claim_one(db_session, now)

    outcome = await dispatch_job(
        db_session, job, FakeExecutor(exc=RuntimeError("browser crashed")), timeout_seconds=5, now=now
    )

    assert outcome is DispatchOutcome.RETRYING
    stored = await load_job(job_id)
    assert stored.last_error == "RuntimeError: browser crashed"


@pytest.mark.asyncio
async def test_job_deleted_while_claimed_is_cancelled(session_factory, db_session, make_job, load_job, owner_id, now):
    job_id = await make_job()
    job = await _claim_one(db_session, now)

    async with session_factory() as owner_session:
        assert await delete_job(owner_session, owner_id, job_id)
        await owner_session.commit()

    outcome = await dispatch_job(db_session, job, FakeExecutor(), timeout_seconds=5, now=now)

    assert outcome is DispatchOutcome.CANCELLED
    assert await load_job(job_id) is None


@pytest.mark.asyncio
async def test_stale_claim_token_is_not_applied(db_session, make_job, load_job, now):
    job_id = await make_job()
    job = await _claim_one(db_session, now)

    assert not await complete_job(db_session, job.id, uuid.uuid4(), now)
    assert await fail_job(db_session, job, uuid.uuid4(), "nope", now=now) is None
    await db_session.commit()

    stored = await load_job(job_id)
    assert stored.status == STATUS_CLAIMED
    assert stored.claim_token == job.claim_token


@pytest.mark.asyncio
async def test_dispatch_rejects_unclaimed_job(db_session, make_job, now):
    job_id = await make_job()
    job = await db_session.get(Job, job_id)

    with pytest.raises(ValueError):
        await dispatch_job(db_session, job, FakeExecutor(), timeout_seconds=5, now=now)
