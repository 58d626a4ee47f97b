"""SSH process execution for sshp."""

from __future__ import annotations

import asyncio
import logging
import shlex
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Sequence

from .config import TransportOptions

if TYPE_CHECKING:
    from .output import OutputSink

logger = logging.getLogger(__name__)

# Status recorded for a job whose process could not be started, or which
# died with an unexpected error. Matches ssh's own status for its errors.
JOB_FAILURE_STATUS = 255

READ_CHUNK_SIZE = 64 * 1024


class StreamKind(Enum):
    """Which output channel of a job some data came from."""

    STDOUT = "stdout"
    STDERR = "stderr"


class JobState(Enum):
    """Lifecycle of a single job."""

    PENDING = "pending"
    SPAWNED = "spawned"
    STREAMING = "streaming"
    EXITED = "exited"
    REPORTED = "reported"


_TRANSITIONS: dict[JobState, frozenset[JobState]] = {
    # Dry runs and spawn failures go straight to EXITED
    JobState.PENDING: frozenset({JobState.SPAWNED, JobState.EXITED}),
    JobState.SPAWNED: frozenset({JobState.STREAMING, JobState.EXITED}),
    JobState.STREAMING: frozenset({JobState.EXITED}),
    JobState.EXITED: frozenset({JobState.REPORTED}),
    JobState.REPORTED: frozenset(),
}


@dataclass
class Job:
    """One execution of the command against one host."""

    index: int
    host: str
    argv: list[str] = field(default_factory=list)
    state: JobState = JobState.PENDING
    started: float | None = None
    exit_status: int | None = None
    duration_ms: int | None = None

    def advance(self, state: JobState) -> None:
        """Move to the next lifecycle state, rejecting illegal transitions."""
        if state not in _TRANSITIONS[self.state]:
            raise RuntimeError(
                f"job {self.index} ({self.host}): illegal transition "
                f"{self.state.value} -> {state.value}"
            )
        self.state = state


def build_command(options: TransportOptions) -> list[str]:
    """Build the ssh argument vector shared by every job.

    The host and the remote command are appended per job.
    """
    cmd = [options.executable]
    if options.quiet:
        cmd.append("-q")
    if options.port:
        cmd.extend(["-p", str(options.port)])
    if options.login:
        cmd.extend(["-l", options.login])
    if options.identity:
        cmd.extend(["-i", str(options.identity)])
    if options.no_strict:
        cmd.extend(["-o", "StrictHostKeyChecking=no"])
    return cmd


def _normalize_returncode(returncode: int) -> int:
    """Map "killed by signal N" (negative) to the shell's 128 + N."""
    if returncode < 0:
        return 128 - returncode
    return returncode


class JobRunner:
    """Runs a single job's ssh process and streams its output to a sink."""

    def __init__(
        self,
        template: Sequence[str],
        command: Sequence[str],
        sink: OutputSink,
        dry_run: bool = False,
    ):
        self.template = list(template)
        self.command = list(command)
        self.sink = sink
        self.dry_run = dry_run

    def argv_for(self, host: str) -> list[str]:
        return [*self.template, host, *self.command]

    async def run(self, job: Job) -> int:
        """Run the job to completion and return its exit status."""
        if not job.argv:
            job.argv = self.argv_for(job.host)
        job.started = time.monotonic()
        logger.debug("[%s] %s", job.host, shlex.join(job.argv))
        self.sink.on_job_start(job)

        if self.dry_run:
            return self._finish(job, 0)

        try:
            proc = await asyncio.create_subprocess_exec(
                *job.argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            logger.error("[%s] failed to start %s: %s", job.host, job.argv[0], e)
            return self._finish(job, JOB_FAILURE_STATUS)

        job.advance(JobState.SPAWNED)
        job.advance(JobState.STREAMING)

        # Read stdout and stderr concurrently
        pumps = [
            asyncio.ensure_future(self._pump(job, proc.stdout, StreamKind.STDOUT)),
            asyncio.ensure_future(self._pump(job, proc.stderr, StreamKind.STDERR)),
        ]
        returncode = None
        try:
            await asyncio.gather(*pumps)
            returncode = await proc.wait()
        finally:
            if returncode is None:
                await self._abort(job, proc, pumps)
        return self._finish(job, _normalize_returncode(returncode))

    async def _abort(
        self, job: Job, proc: asyncio.subprocess.Process, pumps: list[asyncio.Future]
    ) -> None:
        """Stop the pumps and the child after a failure or cancellation."""
        for pump in pumps:
            pump.cancel()
        await asyncio.gather(*pumps, return_exceptions=True)
        if proc.returncode is None:
            try:
                proc.kill()
            except ProcessLookupError:
                pass
        await proc.wait()
        self._finish(job, JOB_FAILURE_STATUS)

    async def _pump(
        self, job: Job, stream: asyncio.StreamReader | None, kind: StreamKind
    ) -> None:
        """Forward one pipe to the sink until EOF or a read error."""
        if stream is not None:
            while True:
                try:
                    chunk = await stream.read(READ_CHUNK_SIZE)
                except OSError as e:
                    logger.debug("[%s] %s read error: %s", job.host, kind.value, e)
                    break
                if not chunk:
                    break
                self.sink.on_data(job, kind, chunk)
        self.sink.on_stream_closed(job, kind)

    def _finish(self, job: Job, exit_status: int) -> int:
        job.exit_status = exit_status
        job.duration_ms = int((time.monotonic() - job.started) * 1000)
        job.advance(JobState.EXITED)
        return exit_status
