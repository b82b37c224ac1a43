from datetime import datetime, timedelta

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from scheduled_jobs.api.v1.metrics import JOBS_CLEANED
from scheduled_jobs.db.models import ScheduledJob

async def delete_old_jobs(
    session: AsyncSession,
    model: type[ScheduledJob],
    retention: timedelta,
    now: datetime
) -> int:
    """
    Hard-deletes every job created before now - retention, whatever its status.
    Retention must exceed the queued + in-progress timeouts or live jobs get deleted.
    """
    stmt = (
        delete(model)
        .where(model.created_at < now - retention)
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    count = result.rowcount or 0
    if count > 0:
        JOBS_CLEANED.labels(model=model.__name__).inc(count)
    return count
