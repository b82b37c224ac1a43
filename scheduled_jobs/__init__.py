from scheduled_jobs.db.models import ScheduledJob
from scheduled_jobs.domain.errors import (
    ConfigurationError,
    InvalidJobStateError,
    JobError,
    StoreError,
    TypeMismatchError,
)
from scheduled_jobs.domain.models import JobRecord, SchedulableJob
from scheduled_jobs.domain.states import ScheduledJobStatus
from scheduled_jobs.scheduler.config import SchedulerConfig
from scheduled_jobs.scheduler.manager import ScheduledJobManager

__all__ = [
    "ConfigurationError",
    "InvalidJobStateError",
    "JobError",
    "JobRecord",
    "SchedulableJob",
    "ScheduledJob",
    "ScheduledJobManager",
    "ScheduledJobStatus",
    "SchedulerConfig",
    "StoreError",
    "TypeMismatchError",
]
