"""Bounded-concurrency job dispatcher."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable

from .config import ConfigError
from .executor import JOB_FAILURE_STATUS, Job, JobState

logger = logging.getLogger(__name__)


@dataclass
class AggregateState:
    """Progress and exit status across every job of a run."""

    total: int = 0
    completed: int = 0
    exit_status: int = 0
    failed: int = 0

    def record(self, exit_status: int) -> None:
        if self.completed >= self.total:
            raise RuntimeError("more completions recorded than jobs submitted")
        self.completed += 1
        self.exit_status += exit_status
        if exit_status != 0:
            self.failed += 1

    @property
    def done(self) -> bool:
        return self.completed == self.total

    def interrupted_status(self) -> int:
        """Exit status for a run stopped early; unfinished jobs count as failures."""
        return self.exit_status + JOB_FAILURE_STATUS * (self.total - self.completed)


# Type aliases for callbacks
JobFactory = Callable[[Job], Awaitable[int]]  # job -> exit status
CompleteCallback = Callable[[Job, AggregateState], None]
DrainCallback = Callable[[AggregateState], None]


class Dispatcher:
    """Runs one job per host with at most ``max_jobs`` running at once.

    All bookkeeping happens in callbacks on the running event loop, so the
    counters need no locking. When a job finishes its slot is refilled from
    the pending queue; once every job has finished the run is drained and
    the future returned by :meth:`submit` resolves to the summed exit status.
    """

    def __init__(
        self,
        on_complete: CompleteCallback | None = None,
        on_drain: DrainCallback | None = None,
    ):
        self.on_complete = on_complete
        self.on_drain = on_drain
        self.state = AggregateState()
        self._pending: deque[Job] = deque()
        self._running: dict[asyncio.Future[int], Job] = {}
        self._max_jobs = 0
        self._job_factory: JobFactory | None = None
        self._drained: asyncio.Future[int] | None = None
        self._cancelled = False

    @property
    def running(self) -> int:
        return len(self._running)

    @property
    def pending(self) -> int:
        return len(self._pending)

    @property
    def completed(self) -> int:
        return self.state.completed

    def submit(
        self, hosts: Iterable[str], max_jobs: int, job_factory: JobFactory
    ) -> asyncio.Future[int]:
        """Queue one job per host and start the first ``max_jobs`` of them."""
        if max_jobs < 1:
            raise ConfigError(f"max jobs must be at least 1, got {max_jobs}")
        if self._drained is not None:
            raise RuntimeError("dispatcher has already been started")

        loop = asyncio.get_running_loop()
        self._drained = loop.create_future()
        self._max_jobs = max_jobs
        self._job_factory = job_factory
        self._pending.extend(Job(index=i, host=host) for i, host in enumerate(hosts))
        self.state.total = len(self._pending)

        if not self._pending:
            # Nothing to run; still drain asynchronously
            loop.call_soon(self._drain)
        else:
            self._admit()
        return self._drained

    def cancel(self) -> None:
        """Stop admitting jobs and cancel the ones still running.

        Cancelled jobs are recorded as failures; jobs never admitted stay
        pending, so the run does not drain.
        """
        self._cancelled = True
        for task in list(self._running):
            task.cancel()

    def _admit(self) -> None:
        if self._cancelled:
            return
        while len(self._running) < self._max_jobs and self._pending:
            job = self._pending.popleft()
            task = asyncio.ensure_future(self._job_factory(job))
            self._running[task] = job
            task.add_done_callback(self._on_job_done)

    def _on_job_done(self, task: asyncio.Future[int]) -> None:
        job = self._running.pop(task)

        if task.cancelled():
            logger.warning("[%s] job was cancelled", job.host)
            exit_status = JOB_FAILURE_STATUS
        elif task.exception() is not None:
            exc = task.exception()
            logger.error("[%s] job failed: %s", job.host, exc, exc_info=exc)
            exit_status = JOB_FAILURE_STATUS
        else:
            exit_status = task.result()

        if job.state is not JobState.EXITED:
            # The job never got as far as exiting cleanly
            job.state = JobState.EXITED
            job.exit_status = exit_status
            if job.duration_ms is None:
                job.duration_ms = 0
        job.advance(JobState.REPORTED)

        self.state.record(exit_status)
        if self.on_complete:
            # A failing reporter must not stall admission or drain
            try:
                self.on_complete(job, self.state)
            except Exception:
                logger.exception("[%s] completion handler failed", job.host)

        self._admit()
        if self.state.done:
            self._drain()

    def _drain(self) -> None:
        if self._drained is None or self._drained.done():
            return
        if self.on_drain:
            try:
                self.on_drain(self.state)
            except Exception:
                logger.exception("drain handler failed")
        self._drained.set_result(self.state.exit_status)
