# services/observability.py
"""
Structured event logging to the events table.

Events are written in the same transaction as the status change they
describe, so a rolled-back transition leaves no event behind.
"""
from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from models.event import Event
from models.job import Job

logger = logging.getLogger(__name__)


async def log_event(
    db: AsyncSession,
    event_type: str,
    level: str = "info",
    source: str | None = None,
    message: str | None = None,
    metadata: dict | None = None,
) -> Event:
    """Persist a structured event log entry."""
    event = Event(
        event_type=event_type,
        level=level,
        source=source,
        message=message,
        metadata_=metadata,
    )
    db.add(event)
    await db.flush()
    logger.log(
        getattr(logging, level.upper(), logging.INFO),
        "[%s] %s %s",
        event_type,
        message or "",
        metadata or {},
    )
    return event


async def log_job_event(
    db: AsyncSession,
    event_type: str,
    job: Job,
    level: str = "info",
    source: str | None = None,
    message: str | None = None,
    **extra,
) -> Event:
    """Event for a job transition; tags it with the job's id, owner and attempt."""
    metadata = {
        "job_id": str(job.id),
        "owner_id": str(job.owner_id),
        "attempt_count": job.attempt_count,
        "max_attempts": job.max_attempts,
    }
    metadata.update(extra)
    return await log_event(db, event_type, level, source=source, message=message, metadata=metadata)
