"""TUI Dashboard for sshp."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from rich.text import Text
from textual.app import App, ComposeResult
from textual.message import Message
from textual.reactive import reactive
from textual.widgets import Footer, Header, Label, RichLog, Static
from textual.worker import Worker, WorkerState

from .config import RunConfig
from .dispatcher import AggregateState
from .executor import JOB_FAILURE_STATUS, Job, StreamKind
from .output import LineSink
from .runner import run


PENDING = "pending"
RUNNING = "running"
SUCCESS = "success"
FAILED = "failed"

STATUS_ICONS = {
    PENDING: ("·", "dim"),
    RUNNING: ("…", "yellow"),
    SUCCESS: ("✓", "green"),
    FAILED: ("✗", "red"),
}


class JobPanel(Static):
    """A panel displaying output for a single job."""

    status: reactive[str] = reactive(PENDING)

    def __init__(self, index: int, host: str, **kwargs) -> None:
        super().__init__(**kwargs)
        self.job_index = index
        self.host = host

    def compose(self) -> ComposeResult:
        yield Label(self._get_header(), id=f"header-{self.job_index}")
        yield RichLog(
            id=f"log-{self.job_index}",
            highlight=False,
            markup=False,
            wrap=True,
            auto_scroll=True,
        )

    def _get_header(self) -> str:
        icon, color = STATUS_ICONS.get(self.status, ("?", "white"))
        return f"[{color}]{icon}[/] [{color}][bold]{self.host}[/bold][/]"

    def watch_status(self, status: str) -> None:
        """Update header when status changes."""
        if not self.is_mounted:
            return
        header = self.query_one(f"#header-{self.job_index}", Label)
        header.update(self._get_header())

    def append_output(self, line: str, is_stderr: bool = False) -> None:
        """Append a line of output to this panel."""
        log = self.query_one(f"#log-{self.job_index}", RichLog)
        log.write(Text(line, style="red" if is_stderr else ""))


class StatusBar(Static):
    """Bottom status bar showing overall progress."""

    completed: reactive[int] = reactive(0)
    total: reactive[int] = reactive(0)
    failed: reactive[int] = reactive(0)
    running: reactive[bool] = reactive(True)

    def render(self) -> str:
        status = "Running..." if self.running else "Complete"
        return (
            f"finished {self.completed}/{self.total} | failed {self.failed} | "
            f"{status} | Press 'q' to quit"
        )


@dataclass
class JobStarted(Message):
    """Message for a job being admitted."""
    index: int


@dataclass
class JobOutput(Message):
    """Message for one line of job output."""
    index: int
    line: str
    is_stderr: bool


@dataclass
class JobFinished(Message):
    """Message for a job reaching its terminal state."""
    index: int
    exit_status: int
    duration_ms: int


@dataclass
class Progress(Message):
    """Message for updated aggregate progress."""
    completed: int
    total: int
    failed: int


class DashboardSink(LineSink):
    """Line-mode sink that posts output to the dashboard instead of a stream."""

    def __init__(self, app: App, silent: bool = False, report_exit_codes: bool = False):
        super().__init__(silent=silent, report_exit_codes=report_exit_codes)
        self.app = app
        self.state: AggregateState | None = None

    def on_start(self, state: AggregateState) -> None:
        self.state = state
        self.progress(state)

    def on_job_start(self, job: Job) -> None:
        self.app.post_message(JobStarted(job.index))

    def write_line(self, job: Job, kind: StreamKind, line: bytes) -> None:
        if self.silent:
            return
        text = line.decode("utf-8", errors="replace").rstrip("\r")
        self.app.post_message(JobOutput(job.index, text, kind is StreamKind.STDERR))

    def on_job_complete(self, job: Job, state: AggregateState) -> None:
        self.app.post_message(JobFinished(job.index, job.exit_status, job.duration_ms))
        self.progress(state)

    def progress(self, state: AggregateState, carriage_return: bool = False) -> None:
        self.app.post_message(Progress(state.completed, state.total, state.failed))


class Dashboard(App):
    """Main TUI Dashboard application."""

    CSS = """
    Screen {
        layout: grid;
        grid-size: 2;
        grid-gutter: 1;
    }

    JobPanel {
        border: solid $primary;
        height: 100%;
        min-height: 10;
    }

    JobPanel Label {
        dock: top;
        padding: 0 1;
        background: $surface;
    }

    JobPanel RichLog {
        height: 1fr;
        padding: 0 1;
    }

    StatusBar {
        dock: bottom;
        height: 1;
        background: $surface;
        padding: 0 1;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("escape", "quit", "Quit"),
    ]

    def __init__(
        self, config: RunConfig, hosts: Sequence[str], command: Sequence[str], **kwargs
    ) -> None:
        super().__init__(**kwargs)
        self.config = config
        self.hosts = list(hosts)
        self.command = list(command)
        self.panels: dict[int, JobPanel] = {}
        self.aggregate_status: int | None = None
        self._sink: DashboardSink | None = None
        self._worker: Worker | None = None

    def compose(self) -> ComposeResult:
        yield Header(show_clock=True)

        # One panel per job; hosts may repeat so panels are keyed by position
        for index, host in enumerate(self.hosts):
            panel = JobPanel(index, host, id=f"panel-{index}")
            self.panels[index] = panel
            yield panel

        yield StatusBar(id="status-bar")
        yield Footer()

    def on_mount(self) -> None:
        """Start dispatching when the app mounts."""
        status_bar = self.query_one("#status-bar", StatusBar)
        status_bar.total = len(self.hosts)

        self._sink = DashboardSink(
            self,
            silent=self.config.silent,
            report_exit_codes=self.config.report_exit_codes,
        )
        # Runs on the app's own event loop, so every callback stays on one thread
        self._worker = self.run_worker(self._run_dispatch(self._sink), exclusive=True)

    async def _run_dispatch(self, sink: DashboardSink) -> None:
        self.aggregate_status = await run(self.config, self.hosts, self.command, sink=sink)

    def on_worker_state_changed(self, event: Worker.StateChanged) -> None:
        """Handle worker completion."""
        if event.worker == self._worker and event.state == WorkerState.SUCCESS:
            status_bar = self.query_one("#status-bar", StatusBar)
            status_bar.running = False

    def on_job_started(self, message: JobStarted) -> None:
        if message.index in self.panels:
            self.panels[message.index].status = RUNNING

    def on_job_output(self, message: JobOutput) -> None:
        if message.index in self.panels:
            self.panels[message.index].append_output(message.line, message.is_stderr)

    def on_job_finished(self, message: JobFinished) -> None:
        panel = self.panels.get(message.index)
        if panel is None:
            return
        panel.status = SUCCESS if message.exit_status == 0 else FAILED
        if self.config.report_exit_codes:
            panel.append_output(
                f"exited: {message.exit_status} ({message.duration_ms} ms)"
            )

    def on_progress(self, message: Progress) -> None:
        status_bar = self.query_one("#status-bar", StatusBar)
        status_bar.completed = message.completed
        status_bar.total = message.total
        status_bar.failed = message.failed

    async def action_quit(self) -> None:
        """Quit the application."""
        if self._worker and self._worker.is_running:
            # Freeze the status before cancellation records the running jobs
            state = self._sink.state if self._sink else None
            self.aggregate_status = (
                state.interrupted_status() if state is not None else JOB_FAILURE_STATUS
            )
            self._worker.cancel()
        self.exit()

    def final_status(self) -> int:
        """Exit status of the run; a run that never finished is never 0."""
        if self.aggregate_status is None:
            return JOB_FAILURE_STATUS
        return self.aggregate_status
