"""
Job Runner Service
Picks due scheduled jobs and dispatches them (resume_flow)
"""
import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from pydantic import ValidationError

from ..core.config import settings
from ..models import JobStatus, JobType, ResumeFlowPayload, ScheduledJob

logger = logging.getLogger(__name__)

BACKOFF_BASE_SECONDS = 5


def retry_delay(attempts: int) -> timedelta:
    """Backoff before the next attempt: 2^attempts * 5s"""
    return timedelta(seconds=(2 ** attempts) * BACKOFF_BASE_SECONDS)


class JobRunner:
    """
    Processes ScheduledJob rows.

    A pass claims each due job with an optimistic status check, so two
    runners never execute the same job. Failures are retried with
    exponential backoff until max_attempts, then marked failed.
    """

    def __init__(
        self,
        repository,
        engine,
        batch_size: Optional[int] = None,
        max_attempts: Optional[int] = None,
        poll_interval: Optional[float] = None
    ):
        """
        Args:
            repository: Persistence service
            engine: FlowEngine used for resume_flow jobs
            batch_size: Jobs per pass
            max_attempts: Attempts before a job is marked failed
            poll_interval: Seconds between passes of the background loop
        """
        self.repository = repository
        self.engine = engine
        self.batch_size = batch_size or settings.JOB_BATCH_SIZE
        self.max_attempts = max_attempts or settings.JOB_MAX_ATTEMPTS
        self.poll_interval = poll_interval or settings.JOB_POLL_INTERVAL_SECONDS

        self._running = False
        self._task: Optional[asyncio.Task] = None

    async def run_due_jobs(self, limit: Optional[int] = None) -> Dict[str, int]:
        """
        Run one pass over due jobs.

        Returns:
            {"processed": ..., "failed": ..., "total": ...}
        """
        now = datetime.now(timezone.utc)
        jobs = await self.repository.list_due_jobs(now, limit=limit or self.batch_size)

        processed = 0
        failed = 0

        for job in jobs:
            attempts = job.attempts + 1
            claimed = await self.repository.claim_job(job.id, attempts)
            if not claimed:
                logger.debug(f"Job {job.id} already claimed by another runner")
                continue

            try:
                await self._dispatch(job)
            except Exception as e:
                logger.exception(f"Job {job.id} ({job.type}) failed on attempt {attempts}: {e}")
                await self._record_failure(job, attempts, str(e))
                failed += 1
                continue

            await self.repository.update_job(job.id, {"status": JobStatus.COMPLETED})
            processed += 1

        if jobs:
            logger.info(f"Job pass finished: {processed} processed, {failed} failed, {len(jobs)} due")

        return {"processed": processed, "failed": failed, "total": len(jobs)}

    async def _dispatch(self, job: ScheduledJob) -> None:
        if job.type == JobType.RESUME_FLOW.value:
            await self._resume_flow(job.payload)
        else:
            logger.warning(f"Unknown job type '{job.type}' on job {job.id}, marking completed")

    async def _resume_flow(self, raw_payload: Dict[str, Any]) -> None:
        # Imported here: the flow package depends on services
        from ..flow.context import ExecutionContext

        try:
            payload = ResumeFlowPayload.model_validate(raw_payload)
        except ValidationError as e:
            logger.error(f"Invalid resume_flow payload, dropping job: {e}")
            return

        context = ExecutionContext.from_resume_payload(payload)
        await self.engine.resume_session(
            payload.session_id,
            context,
            node_id=payload.node_id,
            reason=payload.reason,
        )

    async def _record_failure(self, job: ScheduledJob, attempts: int, error: str) -> None:
        if attempts >= self.max_attempts:
            await self.repository.update_job(job.id, {
                "status": JobStatus.FAILED,
                "last_error": error,
            })
            logger.error(f"Job {job.id} failed permanently after {attempts} attempts")
            return

        retry_at = datetime.now(timezone.utc) + retry_delay(attempts)
        await self.repository.update_job(job.id, {
            "status": JobStatus.PENDING,
            "run_at": retry_at,
            "last_error": error,
        })
        logger.warning(f"Job {job.id} rescheduled for {retry_at.isoformat()}")

    # ==================== Background loop ====================

    async def start(self) -> None:
        """Start the background runner"""
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._runner_loop())
        logger.info("Job runner started")

    async def stop(self) -> None:
        """Stop the background runner"""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Job runner stopped")

    @property
    def is_running(self) -> bool:
        return self._running

    async def _runner_loop(self) -> None:
        """Background loop that processes due jobs"""
        while self._running:
            try:
                await self.run_due_jobs()
            except Exception as e:
                logger.exception(f"Error in job runner loop: {e}")

            await asyncio.sleep(self.poll_interval)


def create_job_runner(engine, repository=None) -> JobRunner:
    """Factory function; defaults to the Supabase repository"""
    if repository is None:
        from .database import db
        repository = db
    return JobRunner(repository, engine)
