"""sshp: parallel ssh with streaming output."""

__version__ = "1.0.0"

from .config import ConfigError, OutputMode, RunConfig, TransportOptions, load_config
from .dispatcher import AggregateState, Dispatcher
from .executor import Job, JobRunner, JobState, StreamKind, build_command
from .lines import LineSplitter
from .output import GroupSink, JoinSink, LineSink, OutputSink, make_sink

__all__ = [
    "__version__",
    "ConfigError",
    "OutputMode",
    "RunConfig",
    "TransportOptions",
    "load_config",
    "AggregateState",
    "Dispatcher",
    "Job",
    "JobRunner",
    "JobState",
    "StreamKind",
    "build_command",
    "LineSplitter",
    "GroupSink",
    "JoinSink",
    "LineSink",
    "OutputSink",
    "make_sink",
]
