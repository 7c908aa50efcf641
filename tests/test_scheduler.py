"""Tests for the job scheduler loop."""

import asyncio

import pytest
import pytest_asyncio

from csvimport.models.job import JobStatus
from csvimport.workers.scheduler import JobScheduler, SchedulerState
from tests.conftest import make_csv


class FakeSleep:
    """Records requested delays without waiting."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


@pytest.fixture
def fake_sleep() -> FakeSleep:
    return FakeSleep()


@pytest_asyncio.fixture
async def scheduler(session_maker, processor, fake_sleep):
    instance = JobScheduler(
        session_maker=session_maker,
        processor=processor,
        max_workers=3,
        idle_interval=1,
        job_interval=0,
        error_backoff=7,
        max_consecutive_failures=3,
        sleep=fake_sleep,
    )
    yield instance
    await instance.stop()


async def run_loop_to_end(scheduler: JobScheduler) -> None:
    scheduler.ensure_running()
    await asyncio.wait_for(scheduler._loop_task, timeout=5)


@pytest.mark.asyncio
async def test_run_once_without_jobs(scheduler):
    assert await scheduler.run_once() is False


@pytest.mark.asyncio
async def test_small_job_completes(scheduler, create_job, fetch_job, downstream):
    """Test a 2-row file is processed in one batch and completed."""
    job = await create_job(rows=2)

    assert await scheduler.run_once() is True

    stored = await fetch_job(job.job_id)
    assert stored.status == JobStatus.COMPLETED
    assert stored.success_count == 2
    assert stored.failure_count == 0
    assert stored.completed_at is not None
    assert stored.progress_percentage == 100
    assert sorted(downstream.emails) == ["student1@school.org", "student2@school.org"]


@pytest.mark.asyncio
async def test_job_is_split_into_batches(scheduler, create_job, fetch_job, downstream):
    job = await create_job(rows=120)

    await scheduler.run_once()

    stored = await fetch_job(job.job_id)
    assert stored.status == JobStatus.COMPLETED
    assert stored.success_count == 120
    assert len(downstream.requests) == 120
    assert len(set(downstream.emails)) == 120
    assert scheduler.get_stats().active_workers == 0


@pytest.mark.asyncio
async def test_failed_batch_counts_its_rows(scheduler, create_job, fetch_job, storage):
    """Test rows of a batch that could not run are reported as failures."""
    job = await create_job(rows=70)
    storage.fail_reads = True

    await scheduler.run_once()

    stored = await fetch_job(job.job_id)
    assert stored.status == JobStatus.COMPLETED
    assert stored.success_count == 0
    assert stored.failure_count == 70
    assert sorted(e["error"] for e in stored.errors) == [
        "Batch 1 (rows 1-50) failed: object storage unavailable",
        "Batch 2 (rows 51-70) failed: object storage unavailable",
    ]


@pytest.mark.asyncio
async def test_zero_record_job_completes_without_batches(scheduler, create_job, fetch_job, downstream):
    job = await create_job(rows=0, text=make_csv(0))

    await scheduler.run_once()

    stored = await fetch_job(job.job_id)
    assert stored.status == JobStatus.COMPLETED
    assert stored.progress_percentage == 0
    assert downstream.requests == []


@pytest.mark.asyncio
async def test_drain_processes_oldest_first(scheduler, create_job, fetch_job, downstream):
    first = await create_job(rows=1, text="email,firstname,lastname,phoneno\nold@school.org,A,B,1\n")
    second = await create_job(rows=1, text="email,firstname,lastname,phoneno\nnew@school.org,C,D,2\n")

    assert await scheduler.drain() == 2

    assert downstream.emails == ["old@school.org", "new@school.org"]
    assert (await fetch_job(first.job_id)).status == JobStatus.COMPLETED
    assert (await fetch_job(second.job_id)).status == JobStatus.COMPLETED


@pytest.mark.asyncio
async def test_ensure_running_is_idempotent(session_maker, processor):
    scheduler = JobScheduler(session_maker=session_maker, processor=processor, max_workers=4, idle_interval=3600)
    try:
        stats = scheduler.ensure_running()
        loop_task = scheduler._loop_task
        again = scheduler.ensure_running()

        assert scheduler._loop_task is loop_task
        assert scheduler.state == SchedulerState.RUNNING
        assert stats.max_workers == 4
        assert again.max_workers == 4
        assert scheduler.is_running
    finally:
        await scheduler.stop()

    assert scheduler.state == SchedulerState.STOPPED
    assert not scheduler.is_running


@pytest.mark.asyncio
async def test_loop_picks_up_queued_job(session_maker, processor, create_job, fetch_job):
    scheduler = JobScheduler(
        session_maker=session_maker,
        processor=processor,
        idle_interval=0.01,
        job_interval=0.01,
    )
    job = await create_job(rows=3)
    try:
        scheduler.ensure_running()
        for _ in range(200):
            if (await fetch_job(job.job_id)).status == JobStatus.COMPLETED:
                break
            await asyncio.sleep(0.01)
    finally:
        await scheduler.stop()

    stored = await fetch_job(job.job_id)
    assert stored.status == JobStatus.COMPLETED
    assert stored.success_count == 3


@pytest.mark.asyncio
async def test_consecutive_errors_enter_alarm(scheduler, fake_sleep, monkeypatch):
    """Test the loop backs off after errors and stops once the limit is reached."""
    outcomes = [RuntimeError("db down"), RuntimeError("db down"), False] + [RuntimeError("db down")] * 3
    calls = 0

    async def flaky_run_once():
        nonlocal calls
        outcome = outcomes[calls]
        calls += 1
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    monkeypatch.setattr(scheduler, "run_once", flaky_run_once)

    await run_loop_to_end(scheduler)

    assert calls == 6
    assert fake_sleep.delays == [7, 7, 1, 7, 7]
    assert scheduler.state == SchedulerState.ALARM
    assert scheduler.consecutive_failures == 3
    assert scheduler.last_error == "db down"


@pytest.mark.asyncio
async def test_alarm_marks_current_job_failed(session_maker, processor, create_job, fetch_job, monkeypatch):
    scheduler = JobScheduler(
        session_maker=session_maker,
        processor=processor,
        max_consecutive_failures=1,
        sleep=FakeSleep(),
    )

    async def broken(job_id, total_records):
        raise RuntimeError("executor broken")

    monkeypatch.setattr(scheduler, "_process_job", broken)
    job = await create_job(rows=2)

    await run_loop_to_end(scheduler)

    stored = await fetch_job(job.job_id)
    assert scheduler.state == SchedulerState.ALARM
    assert stored.status == JobStatus.FAILED
    assert stored.completed_at is not None


@pytest.mark.asyncio
async def test_trigger_restarts_from_alarm(scheduler, monkeypatch):
    async def failing_run_once():
        raise RuntimeError("db down")

    monkeypatch.setattr(scheduler, "run_once", failing_run_once)
    await run_loop_to_end(scheduler)
    assert scheduler.state == SchedulerState.ALARM

    async def idle_run_once():
        return False

    monkeypatch.setattr(scheduler, "run_once", idle_run_once)
    scheduler.ensure_running()

    assert scheduler.state == SchedulerState.RUNNING
    assert scheduler.consecutive_failures == 0
    assert scheduler.is_running


@pytest.mark.asyncio
async def test_blank_lines_keep_counts_within_total(scheduler, create_job, fetch_job):
    """Test a whitespace-only line is neither counted nor processed."""
    from csvimport.services.csv_validator import validate_csv_file

    text = "email,firstname,lastname,phoneno\na@school.org,A,B,1\n   \nc@school.org,C,D,2\n"
    validation = validate_csv_file(text.encode(), "students.csv")
    job = await create_job(rows=validation.record_count, text=text)

    await scheduler.run_once()

    stored = await fetch_job(job.job_id)
    assert stored.total_records == 2
    assert stored.success_count == 2
    assert stored.failure_count == 0
    assert stored.progress_percentage == 100


@pytest.mark.asyncio
async def test_quoted_newline_completes_with_matching_counts(scheduler, create_job, fetch_job, downstream):
    from csvimport.services.csv_validator import validate_csv_file

    text = 'email,firstname,lastname,phoneno\na@school.org,"Ann\nMarie",B,1\n'
    validation = validate_csv_file(text.encode(), "students.csv")
    job = await create_job(rows=validation.record_count, text=text)

    await scheduler.run_once()

    stored = await fetch_job(job.job_id)
    assert stored.status == JobStatus.COMPLETED
    assert stored.total_records == 1
    assert stored.success_count + stored.failure_count == stored.total_records
    assert downstream.requests[0]["firstName"] == "Ann\nMarie"


@pytest.mark.asyncio
async def test_concurrent_schedulers_claim_a_job_once(session_maker, processor, create_job, fetch_job, downstream):
    """Test two schedulers racing for one job process it exactly once."""
    first = JobScheduler(session_maker=session_maker, processor=processor, sleep=FakeSleep())
    second = JobScheduler(session_maker=session_maker, processor=processor, sleep=FakeSleep())
    job = await create_job(rows=2)

    results = await asyncio.gather(first.run_once(), second.run_once())

    assert sorted(results) == [False, True]
    assert len(downstream.requests) == 2
    stored = await fetch_job(job.job_id)
    assert stored.status == JobStatus.COMPLETED
    assert stored.success_count == 2


@pytest.mark.asyncio
async def test_claim_skips_job_already_taken(session_maker, create_job):
    from csvimport.repositories.job_repo import CsvJobRepository

    taken = await create_job(rows=1)
    waiting = await create_job(rows=1)

    async with session_maker() as session:
        claimed = await CsvJobRepository(session).claim_next_queued()
        await session.commit()
    async with session_maker() as session:
        claimed_next = await CsvJobRepository(session).claim_next_queued()
        await session.commit()
    async with session_maker() as session:
        nothing = await CsvJobRepository(session).claim_next_queued()

    assert claimed.job_id == taken.job_id
    assert claimed.status == JobStatus.PROCESSING
    assert claimed_next.job_id == waiting.job_id
    assert nothing is None


@pytest.mark.asyncio
async def test_explicit_zero_workers_is_clamped_to_one(session_maker, processor):
    scheduler = JobScheduler(session_maker=session_maker, processor=processor, max_workers=0)
    assert scheduler.get_stats().max_workers == 1


@pytest.mark.asyncio
async def test_batch_size_must_be_positive(session_maker, processor):
    with pytest.raises(ValueError):
        JobScheduler(session_maker=session_maker, processor=processor, batch_size=0)
