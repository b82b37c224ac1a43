from datetime import datetime
from typing import TypeVar

from sqlalchemy import inspect as sa_inspect
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import make_transient

from scheduled_jobs.db.models import ScheduledJob
from scheduled_jobs.domain.states import ScheduledJobStatus

JobT = TypeVar("JobT", bound=ScheduledJob)

async def add_job(session: AsyncSession, job: JobT, now: datetime) -> JobT:
    """
    Inserts a new job in CREATED state.
    Control block fields are reset so a reused object cannot smuggle in a status.
    Not idempotent: every call creates a new row.

    An object that already maps to a row (added before, or loaded from the
    store) is turned back into a fresh instance first, so the add always
    INSERTs and never rewrites the existing row. Its loaded payload columns
    are copied into the new row; the object then refers to the new row.
    """
    if sa_inspect(job).has_identity:
        make_transient(job)
        job.id = None

    job.status = ScheduledJobStatus.CREATED
    job.retry_count = 0
    job.queued_at = None
    job.in_progressed_at = None
    job.failure_message = None
    job.created_at = now
    job.updated_at = now

    session.add(job)
    await session.flush()
    return job
