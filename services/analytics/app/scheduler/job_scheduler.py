"""Cron-driven background jobs: retry processing, rollups, dead-item purge."""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Coroutine

import structlog
from apscheduler.triggers.cron import CronTrigger

from app.core.clock import Clock, get_clock
from app.core.config import get_settings
from app.core.observability import record_job_run, set_scheduler_running

settings = get_settings()
logger = structlog.get_logger()

# Type alias for job callables
JobFunc = Callable[[], Coroutine[None, None, object]]


def next_fire_time(cron: str, after: datetime) -> datetime:
    """Next time strictly after ``after`` matching a 5-field crontab (UTC).

    Both sides are naive UTC datetimes, like every timestamp in this service.
    """
    trigger = CronTrigger.from_crontab(cron, timezone=timezone.utc)
    aware_after = after.replace(tzinfo=timezone.utc)
    fire_time = trigger.get_next_fire_time(aware_after, aware_after)
    if fire_time is None:
        raise ValueError(f"Cron expression never fires: {cron}")
    return fire_time.astimezone(timezone.utc).replace(tzinfo=None)


@dataclass
class ScheduledJob:
    """A named async callable with its cron schedule and last outcome."""

    name: str
    cron: str
    func: JobFunc
    next_run_at: datetime
    last_run_at: datetime | None = None
    last_error: str | None = None
    runs: int = 0
    failures: int = 0

    def as_dict(self) -> dict:
        return {
            "name": self.name,
            "cron": self.cron,
            "next_run_at": self.next_run_at.isoformat(),
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "last_error": self.last_error,
            "runs": self.runs,
            "failures": self.failures,
        }


@dataclass
class JobRunSummary:
    executed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


class JobScheduler:
    """Runs registered jobs when their cron expression comes due.

    A background task wakes every ``tick_seconds`` and runs each job whose
    ``next_run_at`` has passed. The next run is computed from the cron
    expression after every attempt, successful or not, and a failing job
    never stops the others.

    Usage:
        scheduler = JobScheduler()
        scheduler.add_job("process-analytics-retry", "*/5 * * * *", process_retry_queue)
        await scheduler.start()
        # ... later ...
        await scheduler.stop()
    """

    def __init__(self, clock: Clock | None = None, tick_seconds: float | None = None):
        self._clock = clock or get_clock()
        self._tick_seconds = tick_seconds if tick_seconds is not None else settings.scheduler_tick_seconds
        self._jobs: dict[str, ScheduledJob] = {}
        self._task: asyncio.Task | None = None
        self._running = False

    def add_job(self, name: str, cron: str, func: JobFunc) -> ScheduledJob:
        """Register (or replace) a job; its first run is the next cron match."""
        job = ScheduledJob(
            name=name,
            cron=cron,
            func=func,
            next_run_at=next_fire_time(cron, self._clock.now()),
        )
        self._jobs[name] = job
        logger.debug("Job registered", job=name, cron=cron, next_run_at=job.next_run_at.isoformat())
        return job

    def get_job(self, name: str) -> ScheduledJob | None:
        return self._jobs.get(name)

    @property
    def jobs(self) -> list[ScheduledJob]:
        return list(self._jobs.values())

    async def run_due_jobs(self) -> dict[str, list[str]]:
        """Run every due job once, oldest due first.

        Returns:
            Names of the jobs that ran, split into "executed" and "failed".
        """
        now = self._clock.now()
        due = sorted(
            (job for job in self._jobs.values() if job.next_run_at <= now),
            key=lambda job: job.next_run_at,
        )
        summary = JobRunSummary()

        for job in due:
            start_time = time.perf_counter()
            try:
                await job.func()
            except Exception as e:
                job.failures += 1
                job.last_error = repr(e)
                summary.failed.append(job.name)
                record_job_run(job.name, succeeded=False)
                logger.error("Scheduled job failed", job=job.name, error=repr(e))
            else:
                job.last_error = None
                summary.executed.append(job.name)
                record_job_run(job.name, succeeded=True)
                logger.info(
                    "Scheduled job complete",
                    job=job.name,
                    duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
                )
            finally:
                job.runs += 1
                job.last_run_at = now
                job.next_run_at = next_fire_time(job.cron, self._clock.now())

        return {"executed": summary.executed, "failed": summary.failed}

    async def start(self) -> None:
        """Start the scheduler loop in a background task."""
        if self._running:
            logger.warning("Scheduler already running")
            return

        self._running = True
        set_scheduler_running(True)
        self._task = asyncio.create_task(self._run_loop())

        logger.info(
            "Job scheduler started",
            jobs=[job.name for job in self._jobs.values()],
            tick_seconds=self._tick_seconds,
        )

    async def stop(self) -> None:
        """Stop the scheduler loop."""
        if not self._running:
            return

        self._running = False
        set_scheduler_running(False)

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        logger.info("Job scheduler stopped")

    async def _run_loop(self) -> None:
        while self._running:
            try:
                await self.run_due_jobs()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("Error in scheduler loop", error=repr(e))

            await asyncio.sleep(self._tick_seconds)

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def stats(self) -> dict:
        """Get scheduler statistics."""
        return {
            "running": self._running,
            "jobs": [job.as_dict() for job in self._jobs.values()],
        }


def register_default_jobs(scheduler: JobScheduler) -> None:
    """Register the analytics jobs on a scheduler."""
    from app.aggregators import get_aggregator
    from app.services.retry_processor import process_retry_queue
    from app.services.retry_queue import get_retry_queue

    scheduler.add_job(
        "process-analytics-retry",
        settings.retry_queue_cron,
        process_retry_queue,
    )
    scheduler.add_job(
        "aggregate-hourly-stats",
        settings.hourly_rollup_cron,
        lambda: get_aggregator().aggregate_hourly(),
    )
    scheduler.add_job(
        "aggregate-daily-stats",
        settings.daily_rollup_cron,
        lambda: get_aggregator().aggregate_daily(),
    )

    if settings.retry_dead_retention_days is not None:
        retention_days = settings.retry_dead_retention_days
        scheduler.add_job(
            "purge-dead-retry-items",
            settings.dead_item_purge_cron,
            lambda: get_retry_queue().purge_dead(retention_days),
        )


# Global scheduler instance
_scheduler: JobScheduler | None = None


def get_scheduler() -> JobScheduler:
    """Get the global scheduler instance with the default jobs registered."""
    global _scheduler
    if _scheduler is None:
        _scheduler = JobScheduler()
        register_default_jobs(_scheduler)
    return _scheduler


async def start_scheduler() -> None:
    """Start the global scheduler."""
    await get_scheduler().start()


async def stop_scheduler() -> None:
    """Stop the global scheduler."""
    if _scheduler is not None:
        await _scheduler.stop()
