from datetime import timedelta

from prometheus_client import REGISTRY

from scheduled_jobs.commands.enqueue_jobs import mark_queued
from scheduled_jobs.domain.states import ScheduledJobStatus
from tests.conftest import as_utc
from tests.jobs import ExampleJob, Target, TargetedJob


def sample(name, **labels):
    return REGISTRY.get_sample_value(name, labels) or 0.0


# Admission & enqueue

async def test_enqueue_dispatches_and_queues(manager, fetch, clock):
    job = await manager.add_job(ExampleJob(name="a"))
    clock.advance(seconds=3)

    assert await manager.enqueue() == 1

    assert ExampleJob.dispatched == ["a"]
    row = await fetch(job)
    assert row.status == ScheduledJobStatus.QUEUED
    assert as_utc(row.queued_at) == clock.now


async def test_oldest_job_is_admitted_first(make_manager, fetch, clock):
    manager = make_manager(max_in_flight_jobs=1)
    older = await manager.add_job(ExampleJob(name="a"))
    clock.advance(seconds=1)
    newer = await manager.add_job(ExampleJob(name="b"))

    assert await manager.enqueue() == 1

    assert ExampleJob.dispatched == ["a"]
    assert (await fetch(older)).status == ScheduledJobStatus.QUEUED
    assert (await fetch(newer)).status == ScheduledJobStatus.CREATED


async def test_admission_fills_only_free_slots(make_manager, force):
    manager = make_manager(max_in_flight_jobs=3)
    busy = await manager.add_job(ExampleJob(name="busy"))
    await force(busy, status=ScheduledJobStatus.IN_PROGRESS)
    for name in "abcd":
        await manager.add_job(ExampleJob(name=name))

    assert await manager.enqueue() == 2

    assert ExampleJob.dispatched == ["a", "b"]
    counts = await manager.count_by_status()
    assert counts["QUEUED"] + counts["IN_PROGRESS"] == 3
    assert counts["CREATED"] == 2


async def test_full_ceiling_skips_the_tick(make_manager, force):
    manager = make_manager(max_in_flight_jobs=2)
    a = await manager.add_job(ExampleJob(name="a"))
    b = await manager.add_job(ExampleJob(name="b"))
    await force(a, status=ScheduledJobStatus.QUEUED)
    await force(b, status=ScheduledJobStatus.IN_PROGRESS)
    await manager.add_job(ExampleJob(name="c"))

    assert await manager.enqueue() == 0

    assert ExampleJob.dispatched == []
    assert (await manager.count_by_status())["CREATED"] == 1
    assert sample("scheduler_jobs_inflight", model="ExampleJob") == 2


async def test_in_flight_never_exceeds_ceiling_across_ticks(make_manager):
    manager = make_manager(max_in_flight_jobs=2)
    for name in "abcde":
        await manager.add_job(ExampleJob(name=name))

    for _ in range(3):
        await manager.enqueue()
        counts = await manager.count_by_status()
        assert counts["QUEUED"] + counts["IN_PROGRESS"] <= 2

    assert ExampleJob.dispatched == ["a", "b"]


async def test_failed_dispatch_stays_created_and_is_retried_next_tick(manager, fetch):
    a = await manager.add_job(ExampleJob(name="a"))
    b = await manager.add_job(ExampleJob(name="b"))
    ExampleJob.broken.add("a")
    failed_before = sample("scheduler_jobs_enqueued_total", model="ExampleJob", result="failed")

    assert await manager.enqueue() == 1

    assert (await fetch(a)).status == ScheduledJobStatus.CREATED
    assert (await fetch(b)).status == ScheduledJobStatus.QUEUED
    assert sample("scheduler_jobs_enqueued_total", model="ExampleJob", result="failed") == failed_before + 1

    ExampleJob.broken.clear()
    assert await manager.enqueue() == 1
    assert (await fetch(a)).status == ScheduledJobStatus.QUEUED
    assert ExampleJob.dispatched == ["b", "a"]


async def test_enqueue_can_read_relationships(make_manager, session_factory, fetch):
    manager = make_manager(model=TargetedJob)
    async with session_factory() as session:
        async with session.begin():
            target = Target(url="https://broker.example/hooks/1")
            session.add(target)
            await session.flush()
            target_id = target.id

    job = await manager.add_job(TargetedJob(target_id=target_id))

    assert await manager.enqueue() == 1

    assert TargetedJob.sent == ["https://broker.example/hooks/1"]
    assert (await fetch(job, model=TargetedJob)).status == ScheduledJobStatus.QUEUED


async def test_mark_queued_only_moves_created_rows(manager, session_factory, force, fetch, clock):
    job = await manager.add_job(ExampleJob(name="a"))
    # Another instance got there first
    await force(job, status=ScheduledJobStatus.QUEUED, queued_at=clock.now)
    clock.advance(seconds=1)

    async with session_factory() as session:
        async with session.begin():
            assert await mark_queued(session, ExampleJob, job.id, clock.now) is False

    assert as_utc((await fetch(job)).queued_at) == clock.now - timedelta(seconds=1)


# Cleanup

async def test_cleanup_deletes_old_jobs_regardless_of_status(manager, force, fetch, clock):
    old_jobs = []
    for status in ScheduledJobStatus:
        job = await manager.add_job(ExampleJob(name=status.value))
        await force(job, status=status)
        old_jobs.append(job)
    clock.advance(days=1, seconds=1)
    fresh = await manager.add_job(ExampleJob(name="fresh"))

    assert await manager.cleanup() == len(old_jobs)

    for job in old_jobs:
        assert await fetch(job) is None
    assert (await fetch(fresh)).status == ScheduledJobStatus.CREATED


async def test_cleanup_is_idempotent(manager, clock):
    await manager.add_job(ExampleJob(name="a"))
    clock.advance(days=2)

    assert await manager.cleanup() == 1
    assert await manager.cleanup() == 0


async def test_cleanup_keeps_jobs_inside_retention(manager, fetch, clock):
    job = await manager.add_job(ExampleJob(name="a"))
    clock.advance(hours=23)

    assert await manager.cleanup() == 0
    assert await fetch(job) is not None


async def test_enqueue_tick_runs_cleanup_even_when_full(make_manager, force, fetch, clock):
    manager = make_manager(max_in_flight_jobs=1)
    old = await manager.add_job(ExampleJob(name="old"))
    await force(old, status=ScheduledJobStatus.QUEUED, queued_at=clock.now)
    clock.advance(days=2)

    await manager.run_enqueue_tick()

    assert await fetch(old) is None


# Timeout

async def test_queued_job_times_out(manager, fetch, clock):
    job = await manager.add_job(ExampleJob(name="a"))
    await manager.enqueue()

    clock.advance(seconds=4)
    assert await manager.timeout() == 0
    assert (await fetch(job)).status == ScheduledJobStatus.QUEUED

    clock.advance(seconds=2)
    assert await manager.timeout() == 1
    row = await fetch(job)
    assert row.status == ScheduledJobStatus.TIMEOUT
    assert as_utc(row.updated_at) == clock.now


async def test_in_progress_job_times_out(manager, fetch, clock):
    job = await manager.add_job(ExampleJob(name="a"))
    await manager.enqueue()
    clock.advance(seconds=1)
    await manager.set_job_in_progress(job)
    timed_out_before = sample("scheduler_jobs_timed_out_total", model="ExampleJob", stage="in_progress")

    # Past the queued limit but not the in-progress one
    clock.advance(seconds=30)
    assert await manager.timeout() == 0

    clock.advance(seconds=31)
    assert await manager.timeout() == 1
    assert (await fetch(job)).status == ScheduledJobStatus.TIMEOUT
    assert sample("scheduler_jobs_timed_out_total", model="ExampleJob", stage="in_progress") == timed_out_before + 1


async def test_late_signals_do_not_resurrect_timed_out_job(manager, fetch, clock):
    job = await manager.add_job(ExampleJob(name="a"))
    await manager.enqueue()
    clock.advance(seconds=6)
    await manager.timeout()

    assert await manager.set_job_in_progress(job) is False
    assert await manager.set_job_result(job, ScheduledJobStatus.SUCCEEDED) is False
    assert (await fetch(job)).status == ScheduledJobStatus.TIMEOUT


async def test_timeout_ignores_other_statuses(manager, force, clock):
    for status in (ScheduledJobStatus.CREATED, ScheduledJobStatus.SUCCEEDED, ScheduledJobStatus.FAILED):
        job = await manager.add_job(ExampleJob(name=status.value))
        await force(job, status=status)
    clock.advance(hours=1)

    assert await manager.timeout() == 0


# Retry

async def test_retry_waits_one_cooldown(manager, force, fetch, clock):
    job = await manager.add_job(ExampleJob(name="a"))
    await force(job, status=ScheduledJobStatus.FAILED, updated_at=clock.now)

    clock.advance(seconds=9)
    assert await manager.retry() == 0

    clock.advance(seconds=2)
    assert await manager.retry() == 1
    row = await fetch(job)
    assert row.status == ScheduledJobStatus.CREATED
    assert row.retry_count == 1


async def test_timed_out_jobs_are_retried(manager, fetch, clock):
    job = await manager.add_job(ExampleJob(name="a"))
    await manager.enqueue()
    clock.advance(seconds=6)
    await manager.timeout()
    clock.advance(seconds=11)

    assert await manager.retry() == 1
    assert (await fetch(job)).status == ScheduledJobStatus.CREATED


async def test_succeeded_jobs_are_never_retried(manager, force, clock):
    job = await manager.add_job(ExampleJob(name="a"))
    await force(job, status=ScheduledJobStatus.SUCCEEDED)
    clock.advance(hours=1)

    assert await manager.retry() == 0


async def test_job_is_dead_lettered_after_max_retry(manager, fetch, clock):
    job = await manager.add_job(ExampleJob(name="a"))

    for attempt in (1, 2):
        clock.advance(seconds=1)
        assert await manager.enqueue() == 1
        queued_at = clock.now
        clock.advance(seconds=1)
        assert await manager.set_job_in_progress(job)
        assert await manager.set_job_result(job, ScheduledJobStatus.FAILED, f"attempt {attempt}")

        clock.advance(seconds=11)
        assert await manager.retry() == 1
        row = await fetch(job)
        assert row.status == ScheduledJobStatus.CREATED
        assert row.retry_count == attempt

    # Retried jobs get fresh timestamps on the way back through QUEUED
    clock.advance(seconds=1)
    await manager.enqueue()
    row = await fetch(job)
    assert as_utc(row.queued_at) == clock.now
    assert as_utc(row.queued_at) > queued_at

    await manager.set_job_in_progress(job)
    await manager.set_job_result(job, ScheduledJobStatus.FAILED, "attempt 3")
    clock.advance(minutes=5)

    assert await manager.retry() == 0
    row = await fetch(job)
    assert row.status == ScheduledJobStatus.FAILED
    assert row.retry_count == 2
    assert row.failure_message == "attempt 3"
    assert ExampleJob.dispatched == ["a", "a", "a"]


async def test_max_retry_zero_never_retries(make_manager, force, clock):
    manager = make_manager(max_retry=0)
    job = await manager.add_job(ExampleJob(name="a"))
    await force(job, status=ScheduledJobStatus.FAILED)
    clock.advance(hours=1)

    assert await manager.retry() == 0
