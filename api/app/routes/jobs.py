# api/app/routes/jobs.py
from __future__ import annotations

import uuid
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from api.app.config import get_settings
from api.app.dependencies import get_current_owner, get_session
from api.app.schemas.job import JobCreate, JobResponse
from jobs.store import create_job, delete_job, get_job, list_jobs
from services.observability import log_event

router = APIRouter(tags=["jobs"])


@router.post("/jobs", response_model=JobResponse, status_code=status.HTTP_201_CREATED)
async def schedule_job(
    body: JobCreate,
    owner_id: uuid.UUID = Depends(get_current_owner),
    db: AsyncSession = Depends(get_session),
):
    """Schedule a form to be submitted at or after `not_before`."""
    job = await create_job(
        db,
        owner_id=owner_id,
        target=str(body.target),
        not_before=body.not_before,
        max_attempts=get_settings().max_attempts,
    )

    await log_event(db, "job_scheduled", "info", source="api", metadata={
        "job_id": str(job.id),
        "owner_id": str(owner_id),
        "not_before": body.not_before.isoformat(),
    })

    return JobResponse.model_validate(job)


@router.get("/jobs", response_model=list[JobResponse])
async def list_owner_jobs(
    status_filter: Literal["pending", "claimed", "completed", "failed"] | None = Query(None, alias="status"),
    owner_id: uuid.UUID = Depends(get_current_owner),
    db: AsyncSession = Depends(get_session),
):
    jobs = await list_jobs(db, owner_id, status=status_filter)
    return [JobResponse.model_validate(job) for job in jobs]


@router.get("/jobs/{job_id}", response_model=JobResponse)
async def get_owner_job(
    job_id: uuid.UUID,
    owner_id: uuid.UUID = Depends(get_current_owner),
    db: AsyncSession = Depends(get_session),
):
    job = await get_job(db, owner_id, job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return JobResponse.model_validate(job)


@router.delete("/jobs/{job_id}", status_code=status.HTTP_204_NO_CONTENT)
async def cancel_job(
    job_id: uuid.UUID,
    owner_id: uuid.UUID = Depends(get_current_owner),
    db: AsyncSession = Depends(get_session),
):
    if not await delete_job(db, owner_id, job_id):
        raise HTTPException(status_code=404, detail="Job not found")

    await log_event(db, "job_deleted", "info", source="api", metadata={
        "job_id": str(job_id),
        "owner_id": str(owner_id),
    })
    return Response(status_code=status.HTTP_204_NO_CONTENT)
