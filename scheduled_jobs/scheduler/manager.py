import inspect
import logging
from datetime import datetime
from typing import Callable, Generic, Optional, TypeVar

from sqlalchemy import select, func, inspect as sa_inspect
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from scheduled_jobs.api.v1.metrics import JOBS_ADDED
from scheduled_jobs.commands.add_job import add_job
from scheduled_jobs.commands.cleanup_jobs import delete_old_jobs
from scheduled_jobs.commands.enqueue_jobs import enqueue_created_jobs
from scheduled_jobs.commands.retry_jobs import retry_failed_jobs
from scheduled_jobs.commands.set_in_progress import set_job_in_progress
from scheduled_jobs.commands.set_result import set_job_result
from scheduled_jobs.commands.timeout_jobs import timeout_stale_jobs
from scheduled_jobs.db.models import ScheduledJob, CONTROL_BLOCK_COLUMNS
from scheduled_jobs.db.session import get_engine, make_session_factory, utcnow
from scheduled_jobs.domain.errors import (
    ConfigurationError,
    InvalidJobStateError,
    StoreError,
    TypeMismatchError,
)
from scheduled_jobs.domain.states import ScheduledJobStatus, is_terminal
from scheduled_jobs.scheduler.config import SchedulerConfig
from scheduled_jobs.scheduler.supervisor import PeriodicLoop
from scheduled_jobs.settings import Settings, settings as default_settings

logger = logging.getLogger(__name__)

JobT = TypeVar("JobT", bound=ScheduledJob)


def validate_job_model(job_model) -> None:
    """
    One-time structural check of the job class a manager is built for.
    Raises ConfigurationError describing the first problem found.
    """
    if not isinstance(job_model, type):
        raise ConfigurationError(f"job model must be a class, got instance of {type(job_model).__name__}")

    name = job_model.__name__
    if not issubclass(job_model, ScheduledJob):
        raise ConfigurationError(f"job model must include the ScheduledJob control block, got {name}")

    mapper = sa_inspect(job_model, raiseerr=False)
    if mapper is None:
        raise ConfigurationError(f"job model must be a mapped declarative class, got {name}")

    missing = CONTROL_BLOCK_COLUMNS - set(mapper.columns.keys())
    if missing:
        raise ConfigurationError(f"job model {name} is missing control block columns: {sorted(missing)}")

    enqueue = getattr(job_model, "enqueue", None)
    if enqueue is None or not inspect.iscoroutinefunction(enqueue):
        raise ConfigurationError(f"job model {name} must define 'async def enqueue(self)'")


class ScheduledJobManager(Generic[JobT]):
    """
    Drives jobs of one model through CREATED -> QUEUED -> IN_PROGRESS -> result.

    Three supervised loops run once started:
      enqueue: admission control, dispatch, then retention cleanup
      timeout: QUEUED / IN_PROGRESS jobs past their limit become TIMEOUT
      retry:   FAILED / TIMEOUT jobs with budget left go back to CREATED

    Every status change is an UPDATE gated on the current status, so several
    managers may share one database without further coordination.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        job_model: type[JobT],
        config: SchedulerConfig,
        clock: Callable[[], datetime] = utcnow,
    ):
        validate_job_model(job_model)

        self.session_factory = session_factory
        self.job_model = job_model
        self.config = config
        self.clock = clock
        self.model_name = job_model.__name__
        self._loops: list[PeriodicLoop] = []

    @classmethod
    def from_settings(
        cls,
        job_model: type[JobT],
        s: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> "ScheduledJobManager[JobT]":
        """Build a manager on the shared engine for the configured database URI."""
        s = s or default_settings
        session_factory = make_session_factory(get_engine(s.SQLALCHEMY_DATABASE_URI))
        return cls(session_factory, job_model, SchedulerConfig.from_settings(s), clock=clock)

    @property
    def running(self) -> bool:
        return any(loop.running for loop in self._loops)

    @property
    def loops(self) -> list[PeriodicLoop]:
        return list(self._loops)

    async def start(self, on_exhausted: Optional[Callable[[PeriodicLoop], None]] = None):
        if self._loops:
            return
        cfg = self.config
        for name, tick, interval in (
            ("enqueue", self.run_enqueue_tick, cfg.enqueue_check_interval),
            ("timeout", self.timeout, cfg.timeout_check_interval),
            ("retry", self.retry, cfg.retry_check_interval),
        ):
            loop = PeriodicLoop(
                name=f"{self.model_name}.{name}",
                tick=tick,
                interval=interval.total_seconds(),
                max_restarts=cfg.loop_max_restarts,
                restart_delay=cfg.loop_restart_delay.total_seconds(),
                max_jitter=cfg.loop_max_jitter.total_seconds(),
                on_exhausted=on_exhausted,
            )
            await loop.start()
            self._loops.append(loop)
        logger.info("Scheduled job manager started for model=%s", self.model_name)

    async def stop(self):
        for loop in self._loops:
            await loop.stop()
        self._loops = []
        logger.info("Scheduled job manager stopped for model=%s", self.model_name)

    def _check_type(self, job) -> None:
        if type(job) is not self.job_model:
            logger.error(
                "Job type does not match job model job_type=%s model=%s",
                type(job).__name__, self.model_name,
            )
            raise TypeMismatchError(self.job_model, type(job))

    # Entry points called by producers and workers

    async def add_job(self, job: JobT) -> JobT:
        self._check_type(job)
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    await add_job(session, job, self.clock())
                    # Keep the store-assigned id readable after the session closes
                    session.expunge(job)
        except SQLAlchemyError as e:
            logger.error("Failed to create job model=%s: %s", self.model_name, e, exc_info=True)
            raise StoreError(f"failed to create {self.model_name} job") from e

        JOBS_ADDED.labels(model=self.model_name).inc()
        return job

    async def set_job_in_progress(self, job: JobT) -> bool:
        self._check_type(job)
        job_id = job.get_record().id
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    changed = await set_job_in_progress(session, self.job_model, job_id, self.clock())
        except SQLAlchemyError as e:
            logger.error("Failed to set job in progress model=%s id=%s: %s", self.model_name, job_id, e, exc_info=True)
            raise StoreError(f"failed to set {self.model_name} job {job_id} in progress") from e

        if not changed:
            logger.debug("Ignoring in-progress signal for job model=%s id=%s, not QUEUED", self.model_name, job_id)
        return changed

    async def set_job_result(
        self,
        job: JobT,
        result: ScheduledJobStatus | str,
        failure_message: Optional[str] = None
    ) -> bool:
        self._check_type(job)
        try:
            status = ScheduledJobStatus(result)
        except ValueError:
            raise InvalidJobStateError(ScheduledJobStatus.IN_PROGRESS, result) from None
        if not is_terminal(status):
            raise InvalidJobStateError(ScheduledJobStatus.IN_PROGRESS, status)

        job_id = job.get_record().id
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    changed = await set_job_result(
                        session, self.job_model, job_id, status, failure_message, self.clock()
                    )
        except SQLAlchemyError as e:
            logger.error("Failed to set job result model=%s id=%s: %s", self.model_name, job_id, e, exc_info=True)
            raise StoreError(f"failed to set result of {self.model_name} job {job_id}") from e

        if not changed:
            logger.debug(
                "Ignoring %s result for job model=%s id=%s, not QUEUED or IN_PROGRESS",
                status, self.model_name, job_id,
            )
        return changed

    # Loop ticks
    # Store errors are logged and the tick abandoned; the next tick starts fresh.

    async def run_enqueue_tick(self):
        await self.enqueue()
        await self.cleanup()

    async def enqueue(self) -> int:
        try:
            return await enqueue_created_jobs(
                self.session_factory, self.job_model, self.config.max_in_flight_jobs, self.clock
            )
        except SQLAlchemyError as e:
            logger.error("Failed to enqueue jobs model=%s: %s", self.model_name, e, exc_info=True)
            return 0

    async def cleanup(self) -> int:
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    count = await delete_old_jobs(
                        session, self.job_model, self.config.old_job_retention, self.clock()
                    )
        except SQLAlchemyError as e:
            logger.error("Failed to cleanup jobs model=%s: %s", self.model_name, e, exc_info=True)
            return 0
        if count:
            logger.info("Deleted %d old jobs model=%s", count, self.model_name)
        return count

    async def timeout(self) -> int:
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    count = await timeout_stale_jobs(
                        session,
                        self.job_model,
                        self.config.queued_timeout,
                        self.config.in_progress_timeout,
                        self.clock(),
                    )
        except SQLAlchemyError as e:
            logger.error("Failed to timeout jobs model=%s: %s", self.model_name, e, exc_info=True)
            return 0
        if count:
            logger.info("Timed out %d jobs model=%s", count, self.model_name)
        return count

    async def retry(self) -> int:
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    count = await retry_failed_jobs(
                        session,
                        self.job_model,
                        self.config.max_retry,
                        self.config.retry_check_interval,
                        self.clock(),
                    )
        except SQLAlchemyError as e:
            logger.error("Failed to retry jobs model=%s: %s", self.model_name, e, exc_info=True)
            return 0
        if count:
            logger.info("Retrying %d jobs model=%s", count, self.model_name)
        return count

    # Introspection

    async def count_by_status(self) -> dict[str, int]:
        model = self.job_model
        stmt = select(model.status, func.count()).group_by(model.status)
        try:
            async with self.session_factory() as session:
                rows = (await session.execute(stmt)).all()
        except SQLAlchemyError as e:
            logger.error("Failed to count jobs model=%s: %s", self.model_name, e, exc_info=True)
            raise StoreError(f"failed to count {self.model_name} jobs") from e

        counts = {status.value: 0 for status in ScheduledJobStatus}
        for status, count in rows:
            counts[str(status)] = count
        return counts
