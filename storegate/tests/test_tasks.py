"""
Tests for the background task queue.
"""

import asyncio

import pytest

from storegate.tasks import TaskQueue


def fast_queue(**kwargs) -> TaskQueue:
    kwargs.setdefault("base_delay", 0.0)
    kwargs.setdefault("jitter", 0.0)
    return TaskQueue(**kwargs)


@pytest.mark.asyncio
async def test_job_runs():
    queue = fast_queue()
    ran = []

    async def job():
        ran.append("done")

    await queue.start()
    job_id = queue.enqueue("job", job)
    await queue.drain()
    await queue.stop()

    assert ran == ["done"]
    assert job_id
    assert queue.completed_count == 1
    assert not queue.running


@pytest.mark.asyncio
async def test_job_enqueued_before_start_waits():
    queue = fast_queue()
    ran = []

    async def job():
        ran.append(1)

    queue.enqueue("early", job)
    assert queue.pending == 1

    await queue.start()
    await queue.drain()
    await queue.stop()
    assert ran == [1]


@pytest.mark.asyncio
async def test_transient_failure_is_retried():
    queue = fast_queue(max_attempts=3)
    attempts = []

    async def flaky():
        attempts.append(1)
        if len(attempts) < 3:
            raise RuntimeError("temporary")

    await queue.start()
    queue.enqueue("flaky", flaky)
    await queue.drain()
    await queue.stop()

    assert len(attempts) == 3
    assert queue.completed_count == 1
    assert not queue.failed_jobs


@pytest.mark.asyncio
async def test_exhausted_job_lands_in_failed_jobs():
    queue = fast_queue(max_attempts=2)

    async def broken():
        raise ValueError("permanent")

    await queue.start()
    job_id = queue.enqueue("broken", broken)
    await queue.drain()
    await queue.stop()

    assert len(queue.failed_jobs) == 1
    failed = queue.failed_jobs[0]
    assert failed.id == job_id
    assert failed.attempts == 2
    assert "permanent" in failed.last_error
    assert failed.failed_at is not None


@pytest.mark.asyncio
async def test_failed_job_buffer_is_bounded():
    queue = fast_queue(max_attempts=1, max_failed=2)

    async def broken():
        raise ValueError("nope")

    await queue.start()
    for i in range(4):
        queue.enqueue(f"broken-{i}", broken)
    await queue.drain()
    await queue.stop()

    assert [job.name for job in queue.failed_jobs] == ["broken-2", "broken-3"]


@pytest.mark.asyncio
async def test_failure_does_not_stop_other_jobs():
    queue = fast_queue(workers=1, max_attempts=1)
    ran = []

    async def broken():
        raise RuntimeError("boom")

    async def fine():
        ran.append("fine")

    await queue.start()
    queue.enqueue("broken", broken)
    queue.enqueue("fine", fine)
    await queue.drain()
    await queue.stop()

    assert ran == ["fine"]


@pytest.mark.asyncio
async def test_jobs_run_concurrently():
    queue = fast_queue(workers=2)
    both_started = asyncio.Event()
    started = []

    async def job():
        started.append(1)
        if len(started) == 2:
            both_started.set()
        await asyncio.wait_for(both_started.wait(), timeout=1)

    await queue.start()
    queue.enqueue("a", job)
    queue.enqueue("b", job)
    await queue.drain()
    await queue.stop()

    assert queue.completed_count == 2


def test_backoff_grows_and_is_capped():
    queue = TaskQueue(base_delay=1.0, max_delay=5.0, jitter=0.0)
    assert [queue._delay(n) for n in (1, 2, 3, 4)] == [1.0, 2.0, 4.0, 5.0]
