"""Job processor — polls the queue and drives the browser one job at a time.

Lifecycle per job: pending -> processing -> completed, or back to pending
with attempts incremented until attempts reach max_attempts, then failed.
The poll interval is the only backoff between attempts.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable

from automation.driver import FeeOutcome
from automation.errors import JobTimeout, is_browser_crash, is_fatal
from automation.queue import JobQueueStore
from automation.session import SessionManager
from src.models.automation_job import AutomationJob
from src.models.automation_log import LogAction, LogStatus

logger = logging.getLogger(__name__)

POLL_INTERVAL_SECONDS = 30
JOB_TIMEOUT_SECONDS = 300
JOB_SETTLE_SECONDS = 2


def _error_message(exc: BaseException) -> str:
    return str(exc) or type(exc).__name__


class JobProcessor:
    def __init__(
        self,
        store: JobQueueStore,
        session_factory: Callable[[], SessionManager],
        *,
        poll_interval: float = POLL_INTERVAL_SECONDS,
        max_concurrent: int = 1,
        job_timeout: float | None = JOB_TIMEOUT_SECONDS,
        job_settle_delay: float = JOB_SETTLE_SECONDS,
    ):
        self.store = store
        self._session_factory = session_factory
        self.session: SessionManager | None = None
        self.poll_interval = poll_interval
        if max_concurrent > 1:
            logger.warning(
                "max_concurrent=%d requested, but all jobs share one browser session; "
                "processing one job at a time",
                max_concurrent,
            )
        self.max_concurrent = 1
        self.job_timeout = job_timeout
        self.job_settle_delay = job_settle_delay

        self._running = False
        self._processing = False
        self._stop_event = asyncio.Event()
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_processing(self) -> bool:
        return self._processing

    # -- lifecycle -----------------------------------------------------

    async def start(self) -> None:
        """Launch the browser and log in. Failures here are fatal.

        A ``stop`` requested while logging in wins: the worker never starts
        polling.
        """
        logger.info("Starting automation worker...")
        logger.info("Poll interval: %ss", self.poll_interval)
        logger.info("Max concurrent jobs: %d", self.max_concurrent)
        self.session = self._session_factory()
        try:
            await self.session.start()
        except Exception:
            await self.session.close()
            if self._stop_event.is_set():
                logger.info("Stop requested during startup; login abandoned")
                return
            raise
        if self._stop_event.is_set():
            logger.info("Stop requested during startup; not polling")
            await self.session.close()
            return
        await self.store.release_stale()
        self._running = True
        logger.info("Worker started successfully")

    async def run(self) -> None:
        """Start, then poll until ``stop`` is called."""
        await self.start()
        while self._running and not self._stop_event.is_set():
            await self.tick()
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass

    async def tick(self) -> None:
        """One poll: process a job unless one is already in flight."""
        if self._processing:
            logger.debug("Job still in progress, skipping poll")
            return
        try:
            await self.process_next_job()
        except Exception:
            logger.exception("Error in polling loop; retrying next interval")

    async def stop(self) -> None:
        """Stop polling, wait for the in-flight job, then close the browser."""
        logger.info("Stopping worker...")
        self._running = False
        self._stop_event.set()
        await self._idle.wait()
        if self.session is not None:
            await self.session.close()
        logger.info("Worker stopped")

    # -- jobs ----------------------------------------------------------

    async def process_next_job(self) -> AutomationJob | None:
        """Claim the oldest pending job and run it to its next state."""
        if self._processing:
            return None
        self._processing = True
        self._idle.clear()
        try:
            job = await self.store.claim_next()
            if job is None:
                return None
            logger.info("Processing job %s for matter %s...", job.id, job.matter_id)
            try:
                outcome = await self._execute_with_deadline(job)
            except Exception as exc:
                await self._handle_failure(job, exc)
            else:
                await self._handle_success(job, outcome)
            return job
        finally:
            self._processing = False
            self._idle.set()

    async def _execute_with_deadline(self, job: AutomationJob) -> FeeOutcome:
        if not self.job_timeout:
            return await self.execute(job)
        try:
            return await asyncio.wait_for(self.execute(job), timeout=self.job_timeout)
        except asyncio.TimeoutError as exc:
            raise JobTimeout(f"Job {job.id} exceeded {self.job_timeout}s deadline") from exc

    async def execute(self, job: AutomationJob) -> FeeOutcome:
        """Drive the browser through one origination fee update."""
        if self.session is None:
            self.session = self._session_factory()
        session = self.session
        driver = session.driver

        await session.ensure_authenticated()

        await driver.goto_record(job.matter_id)
        if driver.is_on_auth_page():
            logger.info("Redirected to login loading matter %s, re-authenticating...", job.matter_id)
            await driver.screenshot("session-expired", job.matter_id)
            await session.ensure_authenticated()
            await driver.goto_record(job.matter_id)

        await driver.screenshot("matter-before", job.matter_id)
        outcome = await driver.set_origination_fee(job.referrer_name, job.origination_percentage)
        await driver.screenshot("matter-after", job.matter_id)

        await asyncio.sleep(self.job_settle_delay)
        return outcome

    async def _handle_success(self, job: AutomationJob, outcome: FeeOutcome) -> None:
        await self.store.mark_completed(job)
        if outcome is FeeOutcome.ALREADY_SET:
            action = LogAction.ALREADY_SET
            message = (
                f"Origination fee already {job.origination_percentage}% "
                f"for {job.referrer_name}; nothing to save"
            )
        else:
            action = LogAction.FEE_SET
            message = f"Origination fee set to {job.origination_percentage}% for {job.referrer_name}"
        await self.store.append_log(job, action, LogStatus.SUCCESS, message)
        logger.info("Job %s completed successfully", job.id)

    async def _handle_failure(self, job: AutomationJob, exc: Exception) -> None:
        error = _error_message(exc)
        logger.warning("Job %s failed: %s", job.id, error)

        if is_browser_crash(exc) or isinstance(exc, JobTimeout):
            await self._restart_session()

        fatal = is_fatal(exc)
        # Configuration errors do not consume retry budget.
        attempts = job.attempts if fatal else job.attempts + 1
        if fatal or attempts >= job.max_attempts:
            await self.store.mark_failed(job, attempts, error)
            await self.store.append_log(
                job,
                LogAction.FAILED,
                LogStatus.ERROR,
                "Failed to set origination fee",
                error_details=error,
            )
            logger.error("Job %s failed permanently after %d attempts", job.id, attempts)
            return

        await self.store.requeue(job, attempts, error)
        await self.store.append_log(
            job,
            LogAction.RETRY,
            LogStatus.WARNING,
            f"Attempt {attempts} failed, will retry: {error}",
        )
        logger.info("Job %s will retry (attempt %d/%d)", job.id, attempts, job.max_attempts)

    async def _restart_session(self) -> None:
        """Discard the browser and session and log in again from scratch."""
        logger.error("Browser crashed or stalled, restarting...")
        if self.session is not None:
            await self.session.close()
        self.session = self._session_factory()
        try:
            if self.job_timeout:
                await asyncio.wait_for(self.session.start(), timeout=self.job_timeout)
            else:
                await self.session.start()
        except Exception:
            # ensure_authenticated relaunches before the next job
            logger.exception("Browser restart failed; will retry before next job")
            await self.session.close()
            return
        logger.info("Browser restarted successfully")
