from enum import StrEnum


class ScheduledJobStatus(StrEnum):
    CREATED = "CREATED"          # Waiting for admission
    QUEUED = "QUEUED"            # Dispatched, worker has not reported yet
    IN_PROGRESS = "IN_PROGRESS"  # Worker acknowledged the job
    SUCCEEDED = "SUCCEEDED"      # Completed successfully
    FAILED = "FAILED"            # Worker reported failure, retryable
    TIMEOUT = "TIMEOUT"          # Sat too long in QUEUED or IN_PROGRESS, retryable


TRANSITIONS: dict[ScheduledJobStatus, frozenset[ScheduledJobStatus]] = {
    ScheduledJobStatus.CREATED: frozenset({ScheduledJobStatus.QUEUED}),
    # Results may arrive before the in-progress signal
    ScheduledJobStatus.QUEUED: frozenset({
        ScheduledJobStatus.IN_PROGRESS,
        ScheduledJobStatus.SUCCEEDED,
        ScheduledJobStatus.FAILED,
        ScheduledJobStatus.TIMEOUT,
    }),
    ScheduledJobStatus.IN_PROGRESS: frozenset({
        ScheduledJobStatus.SUCCEEDED,
        ScheduledJobStatus.FAILED,
        ScheduledJobStatus.TIMEOUT,
    }),
    ScheduledJobStatus.SUCCEEDED: frozenset(),
    ScheduledJobStatus.FAILED: frozenset({ScheduledJobStatus.CREATED}),
    ScheduledJobStatus.TIMEOUT: frozenset({ScheduledJobStatus.CREATED}),
}


def source_statuses(target: ScheduledJobStatus | str) -> tuple[ScheduledJobStatus, ...]:
    """Statuses a row may be in for an UPDATE to ``target`` to apply."""
    target = ScheduledJobStatus(target)
    return tuple(status for status in ScheduledJobStatus if target in TRANSITIONS[status])


IN_FLIGHT_STATUSES = (ScheduledJobStatus.QUEUED, ScheduledJobStatus.IN_PROGRESS)
RETRYABLE_STATUSES = source_statuses(ScheduledJobStatus.CREATED)
RESULT_STATUSES = (ScheduledJobStatus.SUCCEEDED, ScheduledJobStatus.FAILED, ScheduledJobStatus.TIMEOUT)


def is_terminal(status: ScheduledJobStatus | str) -> bool:
    """SUCCEEDED always; FAILED and TIMEOUT until the retry loop picks them up."""
    return ScheduledJobStatus(status) in RESULT_STATUSES
