"""Tests for sshp.dispatcher."""

import asyncio

import pytest

from sshp.config import ConfigError
from sshp.dispatcher import AggregateState, Dispatcher
from sshp.executor import JOB_FAILURE_STATUS, Job, JobState


def _exits(job: Job, status: int) -> int:
    job.exit_status = status
    job.advance(JobState.EXITED)
    return status


@pytest.mark.asyncio
@pytest.mark.parametrize("max_jobs,total", [(1, 5), (3, 10), (8, 4)])
async def test_running_jobs_bounded_by_cap(max_jobs, total):
    dispatcher = Dispatcher()
    peak = 0

    async def job_factory(job):
        nonlocal peak
        peak = max(peak, dispatcher.running)
        assert dispatcher.running <= min(max_jobs, total)
        assert dispatcher.running + dispatcher.pending + dispatcher.completed == total
        await asyncio.sleep(0.001 * (job.index % 3))
        return _exits(job, 0)

    hosts = [f"host{i}" for i in range(total)]
    assert await dispatcher.submit(hosts, max_jobs, job_factory) == 0
    assert peak == min(max_jobs, total)
    assert dispatcher.running == 0
    assert dispatcher.pending == 0
    assert dispatcher.completed == total


@pytest.mark.asyncio
async def test_invariant_holds_on_every_completion():
    seen = []

    def on_complete(job, state):
        seen.append((job.host, state.completed))
        assert dispatcher.running + dispatcher.pending + dispatcher.completed == 6

    dispatcher = Dispatcher(on_complete=on_complete)

    async def job_factory(job):
        await asyncio.sleep(0)
        return _exits(job, 0)

    await dispatcher.submit([f"h{i}" for i in range(6)], 2, job_factory)
    assert [completed for _, completed in seen] == [1, 2, 3, 4, 5, 6]


@pytest.mark.asyncio
async def test_aggregate_exit_status_is_sum():
    dispatcher = Dispatcher()

    async def job_factory(job):
        return _exits(job, int(job.host))

    assert await dispatcher.submit(["0", "1", "2"], 2, job_factory) == 3
    assert dispatcher.state.failed == 2


@pytest.mark.asyncio
async def test_drain_fires_once_after_last_job():
    drains = []
    dispatcher = Dispatcher(on_drain=lambda state: drains.append(state.completed))

    async def job_factory(job):
        await asyncio.sleep(0.001)
        assert drains == []
        return _exits(job, 0)

    await dispatcher.submit(["a", "b", "c", "d"], 2, job_factory)
    await asyncio.sleep(0.01)
    assert drains == [4]


@pytest.mark.asyncio
async def test_empty_host_list_drains_with_zero():
    drains = []
    dispatcher = Dispatcher(on_drain=lambda state: drains.append(state.total))

    async def job_factory(job):
        raise AssertionError("no job should run")

    future = dispatcher.submit([], 4, job_factory)
    assert drains == []
    assert await future == 0
    assert drains == [0]


@pytest.mark.asyncio
async def test_admission_is_fifo():
    started = []
    dispatcher = Dispatcher()

    async def job_factory(job):
        started.append(job.host)
        await asyncio.sleep(0)
        return _exits(job, 0)

    hosts = ["c", "a", "b", "a"]
    await dispatcher.submit(hosts, 1, job_factory)
    assert started == hosts


@pytest.mark.asyncio
async def test_duplicate_hosts_are_separate_jobs():
    jobs = []
    dispatcher = Dispatcher(on_complete=lambda job, state: jobs.append(job))

    async def job_factory(job):
        return _exits(job, 1)

    assert await dispatcher.submit(["a", "a"], 5, job_factory) == 2
    assert sorted(job.index for job in jobs) == [0, 1]
    assert all(job.state is JobState.REPORTED for job in jobs)


@pytest.mark.asyncio
async def test_job_exception_is_a_failure_not_fatal():
    dispatcher = Dispatcher()

    async def job_factory(job):
        if job.host == "bad":
            raise RuntimeError("boom")
        return _exits(job, 0)

    status = await dispatcher.submit(["ok1", "bad", "ok2"], 1, job_factory)
    assert status == JOB_FAILURE_STATUS
    assert dispatcher.completed == 3


@pytest.mark.asyncio
async def test_failing_completion_handler_does_not_stall_run():
    completed = []

    def on_complete(job, state):
        completed.append(job.host)
        raise BrokenPipeError("stdout closed")

    def on_drain(state):
        raise BrokenPipeError("stdout closed")

    dispatcher = Dispatcher(on_complete=on_complete, on_drain=on_drain)

    async def job_factory(job):
        return _exits(job, 1)

    status = await asyncio.wait_for(dispatcher.submit(["a", "b", "c"], 1, job_factory), 5)

    assert status == 3
    assert completed == ["a", "b", "c"]


@pytest.mark.asyncio
async def test_cancel_stops_admission_and_cancels_running():
    started = []
    dispatcher = Dispatcher()

    async def job_factory(job):
        started.append(job.host)
        await asyncio.sleep(10)
        return _exits(job, 0)

    dispatcher.submit(["a", "b", "c"], 2, job_factory)
    await asyncio.sleep(0)
    dispatcher.cancel()
    await asyncio.sleep(0.01)

    assert started == ["a", "b"]
    assert dispatcher.completed == 2
    assert dispatcher.pending == 1
    assert dispatcher.state.exit_status == 2 * JOB_FAILURE_STATUS
    assert dispatcher.state.interrupted_status() == 3 * JOB_FAILURE_STATUS


def test_interrupted_status_counts_unfinished_jobs():
    state = AggregateState(total=3)
    state.record(3)

    assert state.interrupted_status() == 3 + 2 * JOB_FAILURE_STATUS


@pytest.mark.asyncio
@pytest.mark.parametrize("max_jobs", [0, -1])
async def test_invalid_cap_rejected_before_any_job(max_jobs):
    started = []
    dispatcher = Dispatcher()

    async def job_factory(job):
        started.append(job)
        return 0

    with pytest.raises(ConfigError):
        dispatcher.submit(["a"], max_jobs, job_factory)
    await asyncio.sleep(0)
    assert started == []


@pytest.mark.asyncio
async def test_submit_twice_rejected():
    dispatcher = Dispatcher()

    async def job_factory(job):
        return _exits(job, 0)

    await dispatcher.submit(["a"], 1, job_factory)
    with pytest.raises(RuntimeError):
        dispatcher.submit(["b"], 1, job_factory)


def test_aggregate_state_rejects_extra_completions():
    state = AggregateState(total=1)
    state.record(2)

    assert state.done
    assert state.exit_status == 2
    with pytest.raises(RuntimeError):
        state.record(0)
