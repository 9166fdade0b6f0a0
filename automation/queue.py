"""Job queue store — the worker's view of automation_jobs and automation_logs.

The webhook producer inserts ``pending`` rows; everything else on a job row
is written here, through single-row updates conditioned on the job id and
its current status.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import func, select, update

from automation.driver import format_percentage
from src.database import async_session
from src.models.automation_job import AutomationJob, JobStatus
from src.models.automation_log import AutomationLog, LogAction, LogStatus, TriggeredBy

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobQueueStore:
    def __init__(self, session_factory: Any = None):
        self._session_factory = session_factory or async_session

    async def claim_next(self) -> AutomationJob | None:
        """Mark the oldest pending job as processing and return it."""
        async with self._session_factory() as db:
            result = await db.execute(
                select(AutomationJob.id)
                .where(AutomationJob.status == JobStatus.PENDING.value)
                .order_by(AutomationJob.created_at.asc(), AutomationJob.id.asc())
                .limit(1)
            )
            job_id = result.scalar_one_or_none()
            if job_id is None:
                return None

            claimed = await db.execute(
                update(AutomationJob)
                .where(
                    AutomationJob.id == job_id,
                    AutomationJob.status == JobStatus.PENDING.value,
                )
                .values(status=JobStatus.PROCESSING.value, started_at=_utcnow())
            )
            if claimed.rowcount != 1:
                await db.rollback()
                logger.warning("Job %s left pending before it could be claimed", job_id)
                return None
            await db.commit()
            return await db.get(AutomationJob, job_id)

    async def _finish(self, job: AutomationJob, **values: Any) -> bool:
        async with self._session_factory() as db:
            result = await db.execute(
                update(AutomationJob)
                .where(
                    AutomationJob.id == job.id,
                    AutomationJob.status == JobStatus.PROCESSING.value,
                )
                .values(**values)
            )
            await db.commit()
        if result.rowcount != 1:
            logger.warning("Job %s was not in processing state; update skipped", job.id)
            return False
        for key, value in values.items():
            setattr(job, key, value)
        return True

    async def mark_completed(self, job: AutomationJob) -> bool:
        return await self._finish(
            job,
            status=JobStatus.COMPLETED.value,
            completed_at=_utcnow(),
            error_message=None,
        )

    async def requeue(self, job: AutomationJob, attempts: int, error_message: str) -> bool:
        """Put a failed attempt back in the queue for the next poll."""
        return await self._finish(
            job,
            status=JobStatus.PENDING.value,
            attempts=attempts,
            error_message=error_message,
        )

    async def mark_failed(self, job: AutomationJob, attempts: int, error_message: str) -> bool:
        return await self._finish(
            job,
            status=JobStatus.FAILED.value,
            attempts=attempts,
            error_message=error_message,
            completed_at=_utcnow(),
        )

    async def append_log(
        self,
        job: AutomationJob,
        action: LogAction,
        status: LogStatus,
        message: str,
        *,
        error_details: str | None = None,
        triggered_by: TriggeredBy = TriggeredBy.AUTOMATION,
    ) -> AutomationLog:
        entry = AutomationLog(
            job_id=job.id,
            matter_id=job.matter_id,
            client_participant_id=job.client_participant_id,
            action=action.value,
            status=status.value,
            message=message,
            error_details=error_details,
            triggered_by=triggered_by.value,
        )
        async with self._session_factory() as db:
            db.add(entry)
            await db.commit()
        return entry

    async def enqueue(
        self,
        matter_id: str,
        referrer_name: str,
        percentage: Any,
        *,
        client_participant_id: str = "",
        max_attempts: int = 3,
        triggered_by: TriggeredBy = TriggeredBy.MANUAL,
    ) -> AutomationJob:
        """Insert a pending job, the way the webhook producer does."""
        if not matter_id or not referrer_name:
            raise ValueError("matter_id and referrer_name are required")
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        pct = Decimal(format_percentage(percentage))

        async with self._session_factory() as db:
            job = AutomationJob(
                matter_id=str(matter_id),
                client_participant_id=str(client_participant_id),
                referrer_name=referrer_name,
                origination_percentage=pct,
                status=JobStatus.PENDING.value,
                attempts=0,
                max_attempts=max_attempts,
            )
            db.add(job)
            await db.flush()
            db.add(
                AutomationLog(
                    job_id=job.id,
                    matter_id=job.matter_id,
                    client_participant_id=job.client_participant_id,
                    action=LogAction.JOB_QUEUED.value,
                    status=LogStatus.SUCCESS.value,
                    message=f"Origination fee job queued: {pct}% for {referrer_name}",
                    triggered_by=triggered_by.value,
                )
            )
            await db.commit()
        logger.info("Queued job %s for matter %s", job.id, job.matter_id)
        return job

    async def release_stale(self) -> int:
        """Return jobs stranded in processing by a previous worker to pending.

        Only safe with a single worker process, which is the supported setup.
        """
        async with self._session_factory() as db:
            result = await db.execute(
                update(AutomationJob)
                .where(AutomationJob.status == JobStatus.PROCESSING.value)
                .values(
                    status=JobStatus.PENDING.value,
                    error_message="Worker restarted while job was processing",
                )
            )
            await db.commit()
        if result.rowcount:
            logger.warning("Released %d job(s) left in processing state", result.rowcount)
        return result.rowcount

    async def get(self, job_id: int) -> AutomationJob | None:
        async with self._session_factory() as db:
            return await db.get(AutomationJob, job_id)

    async def count_by_status(self) -> dict[str, int]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(AutomationJob.status, func.count(AutomationJob.id))
                .group_by(AutomationJob.status)
            )
            return {status: count for status, count in result.all()}
