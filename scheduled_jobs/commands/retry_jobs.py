from datetime import datetime, timedelta

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from scheduled_jobs.api.v1.metrics import JOBS_RETRIED
from scheduled_jobs.db.models import ScheduledJob
from scheduled_jobs.domain.states import ScheduledJobStatus, RETRYABLE_STATUSES

async def retry_failed_jobs(
    session: AsyncSession,
    model: type[ScheduledJob],
    max_retry: int,
    cooldown: timedelta,
    now: datetime
) -> int:
    """
    FAILED | TIMEOUT -> CREATED for jobs with budget left.
    The updated_at gate keeps a job in its terminal state for at least one cooldown.
    Jobs at max_retry are never touched and stay FAILED/TIMEOUT for good.
    """
    stmt = (
        update(model)
        .where(
            model.status.in_(RETRYABLE_STATUSES),
            model.retry_count < max_retry,
            model.updated_at < now - cooldown
        )
        .values(
            status=ScheduledJobStatus.CREATED,
            retry_count=model.retry_count + 1,
            updated_at=now
        )
        .execution_options(synchronize_session=False)
    )
    count = (await session.execute(stmt)).rowcount or 0
    if count > 0:
        JOBS_RETRIED.labels(model=model.__name__).inc(count)
    return count
