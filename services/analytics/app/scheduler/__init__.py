"""Background job scheduling."""

from app.scheduler.job_scheduler import (
    JobScheduler,
    ScheduledJob,
    get_scheduler,
    next_fire_time,
    register_default_jobs,
    start_scheduler,
    stop_scheduler,
)

__all__ = [
    "JobScheduler",
    "ScheduledJob",
    "get_scheduler",
    "next_fire_time",
    "register_default_jobs",
    "start_scheduler",
    "stop_scheduler",
]
