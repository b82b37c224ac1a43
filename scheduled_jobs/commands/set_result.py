from datetime import datetime
from typing import Optional

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from scheduled_jobs.db.models import ScheduledJob
from scheduled_jobs.domain.states import ScheduledJobStatus, source_statuses

async def set_job_result(
    session: AsyncSession,
    model: type[ScheduledJob],
    job_id: int,
    result: ScheduledJobStatus,
    failure_message: Optional[str],
    now: datetime
) -> bool:
    """
    QUEUED | IN_PROGRESS -> result.
    QUEUED is accepted as a source because updates may reach us out of order.
    """
    stmt = (
        update(model)
        .where(
            model.id == job_id,
            model.status.in_(source_statuses(result))
        )
        .values(
            status=result,
            failure_message=failure_message,
            updated_at=now
        )
        .execution_options(synchronize_session=False)
    )
    res = await session.execute(stmt)
    return res.rowcount == 1
