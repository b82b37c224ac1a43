from datetime import datetime

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from scheduled_jobs.db.models import ScheduledJob
from scheduled_jobs.domain.states import ScheduledJobStatus, source_statuses

async def set_job_in_progress(
    session: AsyncSession,
    model: type[ScheduledJob],
    job_id: int,
    now: datetime
) -> bool:
    """
    QUEUED -> IN_PROGRESS.
    Only queued jobs move, so a late or duplicate signal for a job that already
    timed out or finished matches zero rows. Returns whether a row changed.
    """
    stmt = (
        update(model)
        .where(
            model.id == job_id,
            model.status.in_(source_statuses(ScheduledJobStatus.IN_PROGRESS))
        )
        .values(
            status=ScheduledJobStatus.IN_PROGRESS,
            in_progressed_at=now,
            updated_at=now
        )
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    return result.rowcount == 1
