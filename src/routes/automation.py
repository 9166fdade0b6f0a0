"""Read-only views over the automation queue and audit log."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from src.database import get_db
from src.models.automation_job import AutomationJob, JobStatus
from src.models.automation_log import AutomationLog, LogStatus
from src.schemas.automation import (
    AutomationJobDetail,
    AutomationJobResponse,
    AutomationLogResponse,
    JobStats,
)

router = APIRouter(prefix="/automation", tags=["automation"])


@router.get("/logs", response_model=list[AutomationLogResponse])
async def list_logs(
    limit: int = Query(100, ge=1, le=1000),
    status: LogStatus | None = None,
    matter_id: str | None = None,
    db: AsyncSession = Depends(get_db),
):
    """Most recent audit entries, optionally filtered by status or matter."""
    stmt = select(AutomationLog)
    if matter_id:
        stmt = stmt.where(AutomationLog.matter_id == matter_id)
    if status:
        stmt = stmt.where(AutomationLog.status == status.value)
    result = await db.execute(
        stmt.order_by(AutomationLog.created_at.desc(), AutomationLog.id.desc()).limit(limit)
    )
    return result.scalars().all()


@router.get("/stats", response_model=JobStats)
async def job_stats(db: AsyncSession = Depends(get_db)):
    """Job counts per status."""
    result = await db.execute(
        select(AutomationJob.status, func.count(AutomationJob.id)).group_by(AutomationJob.status)
    )
    counts = {status: count for status, count in result.all()}
    return JobStats(
        pending=counts.get(JobStatus.PENDING.value, 0),
        processing=counts.get(JobStatus.PROCESSING.value, 0),
        completed=counts.get(JobStatus.COMPLETED.value, 0),
        failed=counts.get(JobStatus.FAILED.value, 0),
        total=sum(counts.values()),
    )


@router.get("/jobs", response_model=list[AutomationJobResponse])
async def list_jobs(
    limit: int = Query(50, ge=1, le=500),
    status: JobStatus | None = None,
    db: AsyncSession = Depends(get_db),
):
    stmt = select(AutomationJob)
    if status:
        stmt = stmt.where(AutomationJob.status == status.value)
    result = await db.execute(
        stmt.order_by(AutomationJob.created_at.desc(), AutomationJob.id.desc()).limit(limit)
    )
    return result.scalars().all()


@router.get("/jobs/{job_id}", response_model=AutomationJobDetail)
async def get_job(job_id: int, db: AsyncSession = Depends(get_db)):
    """A single job with its audit trail."""
    job = await db.get(AutomationJob, job_id)
    if not job:
        raise HTTPException(status_code=404, detail=f"Job {job_id} not found")
    detail = AutomationJobDetail.model_validate(job)
    detail.logs.sort(key=lambda entry: (entry.created_at, entry.id))
    return detail
