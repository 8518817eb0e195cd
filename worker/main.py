# worker/main.py
"""
Background worker: claims due jobs, dispatches them to the executor, and
reconciles expired claims.

The claim loop and the reconcile loop are independent tasks with their own
cadence. Each tick is stateless, so any number of replicas may run side by
side; they coordinate only through conditional updates on the jobs table.
"""
from __future__ import annotations

import asyncio
import logging
import platform
import signal
import uuid

from api.app.config import Settings, get_settings
from db.engine import dispose_engine
from db.session import SessionFactory, get_session_factory, session_scope
from jobs.claims import claim_batch
from jobs.dispatcher import DispatchOutcome, dispatch_job
from jobs.executor import Executor, HttpExecutor
from jobs.reconciler import reconcile_once
from models.job import Job

logger = logging.getLogger("worker")


WORKER_ID = f"worker-{platform.node()}-{uuid.uuid4().hex[:8]}"


async def _dispatch_one(
    factory: SessionFactory,
    job: Job,
    executor: Executor,
    settings: Settings,
) -> DispatchOutcome:
    async with session_scope(factory) as db:
        return await dispatch_job(
            db,
            job,
            executor,
            timeout_seconds=settings.executor_timeout_seconds,
            retry_backoff_seconds=settings.retry_backoff_seconds,
        )


async def claim_tick(
    factory: SessionFactory,
    executor: Executor,
    settings: Settings,
) -> list[DispatchOutcome]:
    """Claim one batch and dispatch every claimed job concurrently."""
    async with session_scope(factory) as db:
        jobs = await asyncio.wait_for(
            claim_batch(
                db,
                limit=settings.claim_batch_size,
                lease_seconds=settings.lease_seconds,
            ),
            timeout=settings.store_timeout_seconds,
        )

    if not jobs:
        return []

    results = await asyncio.gather(
        *(_dispatch_one(factory, job, executor, settings) for job in jobs),
        return_exceptions=True,
    )

    outcomes: list[DispatchOutcome] = []
    for job, result in zip(jobs, results):
        if isinstance(result, BaseException):
            # The claim stays in place; the reconciler returns it to the pool
            # once the lease runs out.
            logger.error("Dispatch of job %s failed: %r", job.id, result)
            continue
        outcomes.append(result)
    return outcomes


async def reconcile_tick(factory: SessionFactory, settings: Settings) -> int:
    async with session_scope(factory) as db:
        reclaimed = await asyncio.wait_for(
            reconcile_once(db),
            timeout=settings.store_timeout_seconds,
        )
    return len(reclaimed)


async def _run_every(name: str, interval: float, tick, stop: asyncio.Event) -> None:
    while not stop.is_set():
        try:
            await tick()
        except Exception as exc:
            logger.exception("%s tick error: %s", name, exc)

        try:
            await asyncio.wait_for(stop.wait(), timeout=interval)
        except asyncio.TimeoutError:
            pass


async def run_loop(
    settings: Settings | None = None,
    factory: SessionFactory | None = None,
    executor: Executor | None = None,
    stop: asyncio.Event | None = None,
) -> None:
    settings = settings or get_settings()
    factory = factory or get_session_factory()
    executor = executor or HttpExecutor(
        settings.executor_url,
        timeout=settings.executor_timeout_seconds,
    )
    stop = stop or asyncio.Event()

    logger.info(
        "Worker %s starting (role=%s, poll=%.1fs, reconcile=%.1fs, batch=%d, lease=%ds)",
        WORKER_ID,
        settings.worker_role,
        settings.claim_poll_interval,
        settings.reconcile_interval,
        settings.claim_batch_size,
        settings.lease_seconds,
    )

    loops = []
    if settings.worker_role in ("claim", "all"):
        loops.append(
            _run_every(
                "claim",
                settings.claim_poll_interval,
                lambda: claim_tick(factory, executor, settings),
                stop,
            )
        )
    if settings.worker_role in ("reconcile", "all"):
        loops.append(
            _run_every(
                "reconcile",
                settings.reconcile_interval,
                lambda: reconcile_tick(factory, settings),
                stop,
            )
        )

    try:
        await asyncio.gather(*loops)
    finally:
        if isinstance(executor, HttpExecutor):
            await executor.aclose()
        logger.info("Worker %s stopped", WORKER_ID)


async def _main() -> None:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)
    try:
        await run_loop(stop=stop)
    finally:
        await dispose_engine()


def main() -> None:
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    asyncio.run(_main())


if __name__ == "__main__":
    main()
