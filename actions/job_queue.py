"""
Delayed Job Queue
Durable, at-least-once delayed job execution on APScheduler.

Jobs are keyed by deterministic ids and persisted in a SQLAlchemy job store,
so scheduling, cancellation and idempotent re-scheduling survive restarts
and never depend on an in-process job table.
"""

import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional
from datetime import datetime, timedelta, timezone

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED, EVENT_JOB_MISSED
from apscheduler.jobstores.base import JobLookupError
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.jobstores.sqlalchemy import SQLAlchemyJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from config import settings
from tools.clock import Clock, system_clock, to_utc_aware, to_utc_naive


logger = logging.getLogger(__name__)


JobHandler = Callable[[Dict[str, Any]], Awaitable[None]]

MAINTENANCE_STORE = "maintenance"


async def run_job(job_id: str, payload: Dict[str, Any], attempt: int = 1) -> None:
    """Callable stored with every delayed job; resolves the process-wide queue."""
    await job_queue.execute(job_id, payload, attempt)


class DelayedJobQueue:
    """
    Delayed job queue with per-kind handlers and bounded retry

    Usage:
        queue.register_handler("fire", handle_fire)
        queue.schedule("reminder:42", {"kind": "fire", "occurrence_id": 42}, fire_at)
        queue.cancel("reminder:42")
    """

    def __init__(
        self,
        jobstore_url: Optional[str] = None,
        clock: Optional[Clock] = None,
        max_attempts: Optional[int] = None,
        backoff_base_seconds: Optional[int] = None,
        misfire_grace_seconds: Optional[int] = None
    ):
        self.clock = clock or system_clock
        self.max_attempts = max_attempts or settings.JOB_MAX_ATTEMPTS
        self.backoff_base_seconds = (
            backoff_base_seconds if backoff_base_seconds is not None else settings.JOB_BACKOFF_BASE_SECONDS
        )
        self._handlers: Dict[str, JobHandler] = {}

        if jobstore_url:
            default_store = SQLAlchemyJobStore(url=jobstore_url, tablename="scheduled_jobs")
        else:
            default_store = MemoryJobStore()

        self.scheduler = AsyncIOScheduler(
            jobstores={
                "default": default_store,
                # re-registered on every start, no need to persist
                MAINTENANCE_STORE: MemoryJobStore(),
            },
            job_defaults={
                "coalesce": True,
                "max_instances": 1,
                "misfire_grace_time": misfire_grace_seconds or settings.JOB_MISFIRE_GRACE_SECONDS,
            },
            timezone=timezone.utc
        )
        self.scheduler.add_listener(self._job_executed, EVENT_JOB_EXECUTED)
        self.scheduler.add_listener(self._job_error, EVENT_JOB_ERROR)
        self.scheduler.add_listener(self._job_missed, EVENT_JOB_MISSED)

    # ==================== LIFECYCLE ====================

    @property
    def running(self) -> bool:
        return self.scheduler.running

    def start(self) -> None:
        """Start executing jobs (requires a running event loop)"""
        if self.scheduler.running:
            logger.warning("Job queue is already running")
            return
        self.scheduler.start()
        logger.info("Job queue started")

    def shutdown(self, wait: bool = False) -> None:
        if not self.scheduler.running:
            return
        self.scheduler.shutdown(wait=wait)
        logger.info("Job queue stopped")

    def register_handler(self, kind: str, handler: JobHandler) -> None:
        """Register the coroutine run for jobs whose payload kind matches"""
        self._handlers[kind] = handler
        logger.info(f"Registered job handler for {kind!r}")

    # ==================== SCHEDULING ====================

    def schedule(self, job_id: str, payload: Dict[str, Any], fire_at: datetime) -> bool:
        """
        Schedule `payload` to run at `fire_at`, replacing any job with the same id.

        A fire time that is not strictly in the future is dropped with a
        warning; historical reminders are never fired retroactively.

        Returns:
            True if a job was queued
        """
        fire_at = to_utc_naive(fire_at)
        now = self.clock.now()
        if fire_at <= now:
            logger.warning(f"Dropping job {job_id}: fire time {fire_at.isoformat()} is not in the future")
            return False

        self._add(job_id, payload, fire_at, attempt=1)
        logger.debug(f"Scheduled job {job_id} at {fire_at.isoformat()}")
        return True

    def cancel(self, job_id: str) -> bool:
        """Remove a job if present. Missing jobs are not an error."""
        removed = self._remove(job_id)
        if removed:
            logger.debug(f"Cancelled job {job_id}")
        return removed

    def add_interval_job(self, job_id: str, func: Callable, **interval) -> None:
        """Register a recurring maintenance job, e.g. hours=24"""
        self.scheduler.add_job(
            func,
            trigger="interval",
            id=job_id,
            jobstore=MAINTENANCE_STORE,
            replace_existing=True,
            **interval
        )
        logger.info(f"Registered maintenance job {job_id} every {interval}")

    def _add(self, job_id: str, payload: Dict[str, Any], fire_at: datetime, attempt: int) -> None:
        # A stopped scheduler keeps duplicate ids in its pending list, so
        # remove explicitly instead of relying on replace_existing alone.
        self._remove(job_id)
        self.scheduler.add_job(
            run_job,
            trigger="date",
            run_date=to_utc_aware(fire_at),
            id=job_id,
            name=payload.get("kind", job_id),
            args=[job_id, payload, attempt],
            replace_existing=True
        )

    def _remove(self, job_id: str) -> bool:
        try:
            self.scheduler.remove_job(job_id)
            return True
        except JobLookupError:
            return False

    # ==================== INSPECTION ====================

    def get_job(self, job_id: str):
        return self.scheduler.get_job(job_id)

    def has_job(self, job_id: str) -> bool:
        return self.scheduler.get_job(job_id) is not None

    def fire_time_of(self, job_id: str) -> Optional[datetime]:
        """Naive UTC run date of a queued delayed job"""
        job = self.scheduler.get_job(job_id)
        if job is None:
            return None
        return to_utc_naive(job.trigger.run_date)

    def attempt_of(self, job_id: str) -> Optional[int]:
        job = self.scheduler.get_job(job_id)
        if job is None:
            return None
        return job.args[2]

    def job_ids(self) -> List[str]:
        return [job.id for job in self.scheduler.get_jobs(jobstore="default")]

    # ==================== EXECUTION ====================

    def backoff_delay(self, attempt: int) -> int:
        """Seconds to wait before retry number `attempt` + 1"""
        return self.backoff_base_seconds * 2 ** (attempt - 1)

    async def execute(self, job_id: str, payload: Dict[str, Any], attempt: int = 1) -> bool:
        """
        Run the handler for a fired job.

        Handler exceptions never escape: the job is re-queued with
        exponential backoff until max_attempts, then dropped and logged.

        Returns:
            True if the handler completed
        """
        kind = payload.get("kind")
        handler = self._handlers.get(kind)
        if handler is None:
            logger.error(f"No handler registered for job {job_id} (kind={kind!r}); dropping")
            return False

        try:
            await handler(payload)
            return True
        except Exception as e:
            if attempt >= self.max_attempts:
                logger.error(
                    f"Job {job_id} failed after {attempt} attempts, dropping: {e}",
                    exc_info=True
                )
                return False

            delay = self.backoff_delay(attempt)
            logger.warning(
                f"Job {job_id} failed (attempt {attempt}/{self.max_attempts}): {e}. "
                f"Retrying in {delay}s"
            )
            self._add(job_id, payload, self.clock.now() + timedelta(seconds=delay), attempt + 1)
            return False

    # ==================== LISTENERS ====================

    def _job_executed(self, event):
        logger.debug(f"Job executed: {event.job_id}")

    def _job_error(self, event):
        logger.error(f"Job error: {event.job_id} - {event.exception}")

    def _job_missed(self, event):
        logger.warning(f"Job missed its run window and was skipped: {event.job_id}")


def _default_jobstore_url() -> Optional[str]:
    if not settings.SCHEDULER_ENABLED:
        return None
    return settings.JOBSTORE_URL or settings.DATABASE_URL


job_queue = DelayedJobQueue(jobstore_url=_default_jobstore_url())
