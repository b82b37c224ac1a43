from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import update
from sqlalchemy.ext.asyncio import create_async_engine

from scheduled_jobs.db.session import create_tables, make_session_factory
from scheduled_jobs.scheduler.config import SchedulerConfig
from scheduled_jobs.scheduler.manager import ScheduledJobManager
from tests.jobs import ExampleJob, TargetedJob

T0 = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


def as_utc(value: datetime | None) -> datetime | None:
    # SQLite hands timestamps back without tzinfo
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def make_config(**overrides) -> SchedulerConfig:
    values = dict(
        max_retry=2,
        max_in_flight_jobs=2,
        queued_timeout=timedelta(seconds=5),
        in_progress_timeout=timedelta(seconds=60),
        old_job_retention=timedelta(days=1),
        enqueue_check_interval=timedelta(seconds=1),
        timeout_check_interval=timedelta(seconds=1),
        retry_check_interval=timedelta(seconds=10),
        loop_restart_delay=timedelta(milliseconds=10),
    )
    values.update(overrides)
    return SchedulerConfig(**values)


@pytest.fixture(autouse=True)
def reset_broker():
    ExampleJob.dispatched.clear()
    ExampleJob.broken.clear()
    TargetedJob.sent.clear()
    yield
    ExampleJob.dispatched.clear()
    ExampleJob.broken.clear()
    TargetedJob.sent.clear()


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'jobs.db'}")
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_manager(session_factory, clock):
    def factory(model=ExampleJob, **overrides):
        return ScheduledJobManager(session_factory, model, make_config(**overrides), clock=clock)
    return factory


@pytest.fixture
def manager(make_manager):
    return make_manager()


@pytest.fixture
def fetch(session_factory):
    async def _fetch(job, model=ExampleJob):
        async with session_factory() as session:
            return await session.get(model, job.id)
    return _fetch


@pytest.fixture
def force(session_factory):
    """Writes control block columns directly, bypassing the manager."""
    async def _force(job, model=ExampleJob, **values):
        async with session_factory() as session:
            async with session.begin():
                await session.execute(update(model).where(model.id == job.id).values(**values))
    return _force
