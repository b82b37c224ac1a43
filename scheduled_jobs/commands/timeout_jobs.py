from datetime import datetime, timedelta

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from scheduled_jobs.api.v1.metrics import JOBS_TIMED_OUT
from scheduled_jobs.db.models import ScheduledJob
from scheduled_jobs.domain.states import ScheduledJobStatus

async def timeout_stale_jobs(
    session: AsyncSession,
    model: type[ScheduledJob],
    queued_timeout: timedelta,
    in_progress_timeout: timedelta,
    now: datetime
) -> int:
    """
    Reclassifies jobs that stayed too long in QUEUED or IN_PROGRESS as TIMEOUT.
    The worker holding the job is not told; its late updates become no-ops.
    Returns number of jobs timed out.
    """
    model_name = model.__name__

    stmt_queued = (
        update(model)
        .where(
            model.status == ScheduledJobStatus.QUEUED,
            model.queued_at < now - queued_timeout
        )
        .values(status=ScheduledJobStatus.TIMEOUT, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    queued = (await session.execute(stmt_queued)).rowcount or 0

    stmt_in_progress = (
        update(model)
        .where(
            model.status == ScheduledJobStatus.IN_PROGRESS,
            model.in_progressed_at < now - in_progress_timeout
        )
        .values(status=ScheduledJobStatus.TIMEOUT, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    in_progress = (await session.execute(stmt_in_progress)).rowcount or 0

    if queued:
        JOBS_TIMED_OUT.labels(model=model_name, stage="queued").inc(queued)
    if in_progress:
        JOBS_TIMED_OUT.labels(model=model_name, stage="in_progress").inc(in_progress)
    return queued + in_progress
