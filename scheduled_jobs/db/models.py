from datetime import datetime
from typing import Optional

from sqlalchemy import String, Integer, DateTime, Text
from sqlalchemy.orm import Mapped, mapped_column

from scheduled_jobs.db.session import utcnow
from scheduled_jobs.domain.models import JobRecord
from scheduled_jobs.domain.states import ScheduledJobStatus

CONTROL_BLOCK_COLUMNS = frozenset({
    "id",
    "created_at",
    "updated_at",
    "queued_at",
    "in_progressed_at",
    "status",
    "retry_count",
    "failure_message",
})

class ScheduledJob:
    """
    Control block shared by every schedulable job table.

    Inherit it alongside a declarative base and add the payload columns:

        class ReportJob(ScheduledJob, Base):
            __tablename__ = "report_jobs"
            report_id: Mapped[str] = mapped_column(String)

            async def enqueue(self) -> None:
                await publish("reports", {"job_id": self.id, "report_id": self.report_id})
    """

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Lifecycle timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)
    queued_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    in_progressed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    status: Mapped[ScheduledJobStatus] = mapped_column(String(32), default=ScheduledJobStatus.CREATED, index=True)
    retry_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    failure_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    def get_record(self) -> JobRecord:
        return JobRecord(
            id=self.id,
            status=ScheduledJobStatus(self.status) if self.status else ScheduledJobStatus.CREATED,
            retry_count=self.retry_count or 0,
            failure_message=self.failure_message,
            created_at=self.created_at,
            updated_at=self.updated_at,
            queued_at=self.queued_at,
            in_progressed_at=self.in_progressed_at,
        )

    def __repr__(self) -> str:
        return f"<{type(self).__name__} id={self.id} status={self.status} retry_count={self.retry_count}>"
