import logging
from datetime import datetime
from typing import Callable, Sequence

from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from scheduled_jobs.api.v1.metrics import JOBS_ENQUEUED, JOBS_INFLIGHT
from scheduled_jobs.db.models import ScheduledJob
from scheduled_jobs.domain.states import ScheduledJobStatus, IN_FLIGHT_STATUSES, source_statuses

logger = logging.getLogger(__name__)

async def count_in_flight(session: AsyncSession, model: type[ScheduledJob]) -> int:
    q = select(func.count()).select_from(model).where(model.status.in_(IN_FLIGHT_STATUSES))
    return (await session.execute(q)).scalar() or 0

async def fetch_created_jobs(session: AsyncSession, model: type[ScheduledJob], limit: int) -> Sequence[ScheduledJob]:
    # Oldest first; relationships loaded up front so enqueue() can read them
    stmt = (
        select(model)
        .where(model.status == ScheduledJobStatus.CREATED)
        .order_by(model.created_at.asc(), model.id.asc())
        .limit(limit)
        .options(selectinload("*"))
    )
    result = await session.execute(stmt)
    return result.scalars().all()

async def mark_queued(session: AsyncSession, model: type[ScheduledJob], job_id: int, now: datetime) -> bool:
    stmt = (
        update(model)
        .where(
            model.id == job_id,
            # another instance may have taken it
            model.status.in_(source_statuses(ScheduledJobStatus.QUEUED))
        )
        .values(
            status=ScheduledJobStatus.QUEUED,
            queued_at=now,
            updated_at=now
        )
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    return result.rowcount == 1

async def enqueue_created_jobs(
    session_factory: async_sessionmaker[AsyncSession],
    model: type[ScheduledJob],
    max_in_flight: int,
    clock: Callable[[], datetime]
) -> int:
    """
    Admission step:
    1. Count QUEUED + IN_PROGRESS jobs; skip the whole step at the ceiling.
    2. Fetch the oldest CREATED jobs that fit under the ceiling.
    3. Dispatch each via job.enqueue() and only then flip it to QUEUED.

    A dispatch failure leaves the job CREATED so the next tick tries again.
    The fetched jobs stay attached to the reading session while enqueue() runs;
    each QUEUED flip is committed in its own short session so one bad row
    cannot undo the others.
    Returns the number of jobs moved to QUEUED.
    """
    model_name = model.__name__

    async with session_factory() as session:
        in_flight = await count_in_flight(session, model)
        JOBS_INFLIGHT.labels(model=model_name).set(in_flight)

        if in_flight >= max_in_flight:
            logger.debug(
                "Max in flight jobs reached, skipping enqueue cycle model=%s in_flight=%d max=%d",
                model_name, in_flight, max_in_flight,
            )
            return 0

        jobs = await fetch_created_jobs(session, model, max_in_flight - in_flight)

        queued = 0
        for job in jobs:
            try:
                await job.enqueue()
            except Exception as e:
                logger.error("Failed to enqueue job model=%s id=%s: %s", model_name, job.id, e, exc_info=True)
                JOBS_ENQUEUED.labels(model=model_name, result="failed").inc()
                continue

            JOBS_ENQUEUED.labels(model=model_name, result="success").inc()
            async with session_factory() as write_session:
                async with write_session.begin():
                    changed = await mark_queued(write_session, model, job.id, clock())
            if changed:
                queued += 1
            else:
                logger.warning("Job model=%s id=%s left CREATED before it could be queued", model_name, job.id)

    if queued:
        JOBS_INFLIGHT.labels(model=model_name).set(in_flight + queued)
    return queued
