"""Output aggregation for sshp: line, group and join modes."""

from __future__ import annotations

import codecs
import sys
from typing import TextIO

from .config import ConfigError, OutputMode, RunConfig
from .dispatcher import AggregateState
from .executor import Job, StreamKind
from .lines import LineSplitter
from .summary import SummaryReporter, group_outputs

CYAN = "\033[36m"
GREEN = "\033[32m"
RED = "\033[31m"
MAGENTA = "\033[35m"
GREY = "\033[90m"
RESET = "\033[0m"


class Palette:
    """ANSI colours, or plain text when disabled."""

    def __init__(self, enabled: bool = False):
        self.enabled = enabled

    def _paint(self, color: str, text: object) -> str:
        if not self.enabled:
            return str(text)
        return f"{color}{text}{RESET}"

    def host(self, text: object) -> str:
        return self._paint(CYAN, text)

    def stdout(self, text: object) -> str:
        return self._paint(GREEN, text)

    def stderr(self, text: object) -> str:
        return self._paint(RED, text)

    def number(self, text: object) -> str:
        return self._paint(MAGENTA, text)

    def dim(self, text: object) -> str:
        return self._paint(GREY, text)

    def stream(self, kind: StreamKind, text: object) -> str:
        if kind is StreamKind.STDERR:
            return self.stderr(text)
        return self.stdout(text)


class OutputSink:
    """Receives job output and completion events and renders them."""

    def __init__(
        self,
        stdout: TextIO | None = None,
        stderr: TextIO | None = None,
        silent: bool = False,
        report_exit_codes: bool = False,
        color: bool = False,
    ):
        self.stdout = stdout if stdout is not None else sys.stdout
        self.stderr = stderr if stderr is not None else sys.stderr
        self.silent = silent
        self.report_exit_codes = report_exit_codes
        self.palette = Palette(color)

    def channel(self, kind: StreamKind) -> TextIO:
        return self.stderr if kind is StreamKind.STDERR else self.stdout

    def on_start(self, state: AggregateState) -> None:
        pass

    def on_job_start(self, job: Job) -> None:
        pass

    def on_data(self, job: Job, kind: StreamKind, data: bytes) -> None:
        raise NotImplementedError

    def on_stream_closed(self, job: Job, kind: StreamKind) -> None:
        pass

    def on_job_complete(self, job: Job, state: AggregateState) -> None:
        if self.report_exit_codes:
            self._report_exit(job)

    def on_drain(self, state: AggregateState) -> None:
        pass

    def progress(self, state: AggregateState, carriage_return: bool = False) -> None:
        """Print ``finished <completed>/<total>``."""
        paint = self.palette
        self.stdout.write(
            "[{}] finished {}/{}{}".format(
                paint.host("sshp"),
                paint.number(state.completed),
                paint.number(state.total),
                "\r" if carriage_return else "\n",
            )
        )
        self.stdout.flush()

    def _report_exit(self, job: Job) -> None:
        paint = self.palette
        status = job.exit_status
        status_text = paint.stdout(status) if status == 0 else paint.stderr(status)
        self.stdout.write(
            f"[{paint.host(job.host)}] exited: {status_text} "
            f"({paint.number(job.duration_ms)} ms)\n"
        )
        self.stdout.flush()


class LineSink(OutputSink):
    """Prefixes every complete line with its host, as soon as it arrives."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._splitters: dict[tuple[int, StreamKind], LineSplitter] = {}

    def on_data(self, job: Job, kind: StreamKind, data: bytes) -> None:
        splitter = self._splitters.get((job.index, kind))
        if splitter is None:
            splitter = self._splitters[(job.index, kind)] = LineSplitter()
        for line in splitter.feed(data):
            self.write_line(job, kind, line)

    def on_stream_closed(self, job: Job, kind: StreamKind) -> None:
        splitter = self._splitters.pop((job.index, kind), None)
        if splitter is None:
            return
        for line in splitter.close():
            self.write_line(job, kind, line)

    def write_line(self, job: Job, kind: StreamKind, line: bytes) -> None:
        if self.silent:
            return
        text = line.decode("utf-8", errors="replace").rstrip("\r")
        out = self.channel(kind)
        out.write(f"[{self.palette.host(job.host)}] {self.palette.stream(kind, text)}\n")
        out.flush()


class GroupSink(OutputSink):
    """Writes raw chunks, with a host header whenever the writer changes."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.last_job: int | None = None
        self._decoders: dict[tuple[int, StreamKind], codecs.IncrementalDecoder] = {}

    def _decoder(self, job: Job, kind: StreamKind) -> codecs.IncrementalDecoder:
        decoder = self._decoders.get((job.index, kind))
        if decoder is None:
            decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
            self._decoders[(job.index, kind)] = decoder
        return decoder

    def on_data(self, job: Job, kind: StreamKind, data: bytes) -> None:
        if self.silent:
            return
        self._write(job, kind, self._decoder(job, kind).decode(data))

    def on_stream_closed(self, job: Job, kind: StreamKind) -> None:
        decoder = self._decoders.pop((job.index, kind), None)
        if decoder is None or self.silent:
            return
        self._write(job, kind, decoder.decode(b"", final=True))

    def _write(self, job: Job, kind: StreamKind, text: str) -> None:
        # A chunk may end mid-character and decode to nothing yet
        if not text:
            return
        if job.index != self.last_job:
            self.stdout.write(f"[{self.palette.host(job.host)}]\n")
            self.stdout.flush()
            self.last_job = job.index
        out = self.channel(kind)
        out.write(self.palette.stream(kind, text))
        out.flush()


class JoinSink(OutputSink):
    """Collects each job's output and prints hosts grouped by identical output."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        if self.silent:
            raise ConfigError("options --join and --silent are mutually exclusive")
        self.outputs: dict[int, bytearray] = {}
        self._hosts: dict[int, str] = {}

    def on_start(self, state: AggregateState) -> None:
        self.progress(state, carriage_return=True)

    def on_data(self, job: Job, kind: StreamKind, data: bytes) -> None:
        # stdout and stderr share one buffer
        self._hosts.setdefault(job.index, job.host)
        self.outputs.setdefault(job.index, bytearray()).extend(data)

    def on_job_complete(self, job: Job, state: AggregateState) -> None:
        self._hosts.setdefault(job.index, job.host)
        if self.report_exit_codes:
            self._report_exit(job)
        else:
            self.progress(state, carriage_return=True)

    def on_drain(self, state: AggregateState) -> None:
        reporter = SummaryReporter(self.stdout, self.palette)
        reporter.report_groups(self.groups(), state.total)

    def groups(self):
        """Group every finished job by its accumulated output, in input order."""
        return group_outputs(
            (self._hosts[index], bytes(self.outputs.get(index, b"")))
            for index in sorted(self._hosts)
        )


SINKS: dict[OutputMode, type[OutputSink]] = {
    OutputMode.LINE: LineSink,
    OutputMode.GROUP: GroupSink,
    OutputMode.JOIN: JoinSink,
}


def make_sink(
    config: RunConfig, stdout: TextIO | None = None, stderr: TextIO | None = None
) -> OutputSink:
    """Create the sink for the configured output mode."""
    return SINKS[config.mode](
        stdout=stdout,
        stderr=stderr,
        silent=config.silent,
        report_exit_codes=config.report_exit_codes,
        color=config.color,
    )
