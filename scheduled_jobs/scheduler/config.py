import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from scheduled_jobs.domain.errors import ConfigurationError
from scheduled_jobs.settings import Settings, settings as default_settings

logger = logging.getLogger(__name__)

@dataclass(frozen=True)
class SchedulerConfig:
    max_retry: int                      # Retries before a job stays FAILED/TIMEOUT for good
    max_in_flight_jobs: int             # Ceiling on QUEUED + IN_PROGRESS jobs
    queued_timeout: timedelta           # Max time in QUEUED before TIMEOUT
    in_progress_timeout: timedelta      # Max time in IN_PROGRESS before TIMEOUT
    old_job_retention: timedelta        # Rows older than this are deleted, whatever their status

    enqueue_check_interval: timedelta   # Admission + cleanup loop period
    timeout_check_interval: timedelta   # Timeout loop period
    retry_check_interval: timedelta     # Retry loop period, also the retry cooldown

    loop_max_restarts: int = 10
    loop_restart_delay: timedelta = timedelta(seconds=1)
    loop_max_jitter: timedelta = timedelta(0)

    def __post_init__(self):
        if self.max_retry < 0:
            raise ConfigurationError(f"max_retry must be >= 0, got {self.max_retry}")
        if self.max_in_flight_jobs < 1:
            raise ConfigurationError(f"max_in_flight_jobs must be >= 1, got {self.max_in_flight_jobs}")
        if self.loop_max_restarts < 0:
            raise ConfigurationError(f"loop_max_restarts must be >= 0, got {self.loop_max_restarts}")

        for name in (
            "queued_timeout",
            "in_progress_timeout",
            "old_job_retention",
            "enqueue_check_interval",
            "timeout_check_interval",
            "retry_check_interval",
        ):
            value = getattr(self, name)
            if value <= timedelta(0):
                raise ConfigurationError(f"{name} must be positive, got {value}")

        if self.loop_restart_delay < timedelta(0):
            raise ConfigurationError(f"loop_restart_delay must be >= 0, got {self.loop_restart_delay}")
        if self.loop_max_jitter < timedelta(0):
            raise ConfigurationError(f"loop_max_jitter must be >= 0, got {self.loop_max_jitter}")

        # Not enforced: cleanup is a blunt age policy and the operator owns the margin.
        if self.old_job_retention <= self.queued_timeout + self.in_progress_timeout:
            logger.warning(
                "old_job_retention (%s) does not exceed queued_timeout + in_progress_timeout (%s); "
                "cleanup may delete jobs that are still in flight",
                self.old_job_retention,
                self.queued_timeout + self.in_progress_timeout,
            )

    @classmethod
    def from_settings(cls, s: Optional[Settings] = None) -> "SchedulerConfig":
        s = s or default_settings
        return cls(
            max_retry=s.JOB_MAX_RETRY,
            max_in_flight_jobs=s.JOB_MAX_IN_FLIGHT,
            queued_timeout=timedelta(seconds=s.JOB_QUEUED_TIMEOUT_SECONDS),
            in_progress_timeout=timedelta(seconds=s.JOB_IN_PROGRESS_TIMEOUT_SECONDS),
            old_job_retention=timedelta(seconds=s.JOB_RETENTION_SECONDS),
            enqueue_check_interval=timedelta(seconds=s.ENQUEUE_CHECK_INTERVAL_SECONDS),
            timeout_check_interval=timedelta(seconds=s.TIMEOUT_CHECK_INTERVAL_SECONDS),
            retry_check_interval=timedelta(seconds=s.RETRY_CHECK_INTERVAL_SECONDS),
            loop_max_restarts=s.LOOP_MAX_RESTARTS,
            loop_restart_delay=timedelta(seconds=s.LOOP_RESTART_DELAY_SECONDS),
            loop_max_jitter=timedelta(seconds=s.LOOP_MAX_JITTER_SECONDS),
        )
