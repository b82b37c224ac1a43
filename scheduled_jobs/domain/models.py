from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Protocol, runtime_checkable

from scheduled_jobs.domain.states import ScheduledJobStatus

@dataclass(frozen=True)
class JobRecord:
    """Read-only snapshot of a job's control block."""
    id: Optional[int]
    status: ScheduledJobStatus
    retry_count: int = 0
    failure_message: Optional[str] = None

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    queued_at: Optional[datetime] = None
    in_progressed_at: Optional[datetime] = None

@runtime_checkable
class SchedulableJob(Protocol):
    def get_record(self) -> JobRecord:
        ...

    async def enqueue(self) -> None:
        """Dispatches the job to its workers. Raising leaves the job CREATED."""
        ...
