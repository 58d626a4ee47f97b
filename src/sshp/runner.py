#!/usr/bin/env python3
"""Main entry point for sshp."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import shlex
import signal
import sys
import time
from datetime import datetime
from pathlib import Path
from typing import Sequence

from . import __version__
from .config import (
    ConfigError,
    RunConfig,
    default_config_path,
    load_config,
    read_hosts,
    resolve_mode,
    validate,
)
from .dispatcher import Dispatcher
from .executor import JobRunner, build_command
from .output import OutputSink, make_sink
from .summary import SummaryReporter

logger = logging.getLogger(__name__)

# Largest exit code a process can report without wrapping around
MAX_EXIT_STATUS = 255


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sshp",
        description="parallel ssh with streaming output",
        epilog=(
            "examples:\n"
            "  sshp uname -v < hosts\n"
            "  sshp -m 3 -f my_hosts.txt \"ps -ef | grep process\""
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("-d", "--debug", action="store_true", default=None,
                        help="turn on debugging information")
    parser.add_argument("-e", "--exit-codes", action="store_true", default=None,
                        help="print the exit code of the remote processes")
    parser.add_argument("-f", "--file", type=Path,
                        help="a file of hosts separated by newlines, defaults to stdin")
    parser.add_argument("-g", "--group", action="store_true",
                        help="group the output together as it comes in by hostname, not line-by-line")
    parser.add_argument("-j", "--join", action="store_true",
                        help="join hosts together by unique output")
    parser.add_argument("-m", "--max-jobs", type=int,
                        help="the maximum number of jobs to run concurrently, defaults to 30")
    parser.add_argument("-n", "--dry-run", action="store_true",
                        help="print debug information without actually running any commands")
    parser.add_argument("-N", "--no-strict", action="store_true", default=None,
                        help="disable strict host key checking for ssh")
    parser.add_argument("-s", "--silent", action="store_true", default=None,
                        help="silence all stdout and stderr from remote hosts")
    parser.add_argument("-c", "--config", type=Path,
                        help="YAML file with default options (defaults to ~/.config/sshp/config.yaml)")
    parser.add_argument("--no-color", action="store_true",
                        help="never colorize output")
    parser.add_argument("--dashboard", action="store_true",
                        help="show output in a terminal dashboard instead of streaming it")
    parser.add_argument("-v", "--version", action="version", version=__version__)

    ssh = parser.add_argument_group("ssh options (passed directly to ssh)")
    ssh.add_argument("-i", "--identity", type=Path, help="ssh identity file to use")
    ssh.add_argument("-l", "--login", help="the username to login as")
    ssh.add_argument("-q", "--quiet", action="store_true", default=None,
                     help="run ssh in quiet mode")
    ssh.add_argument("-p", "--port", type=int, help="the ssh port")

    parser.add_argument("command", nargs=argparse.REMAINDER, help="command to run on every host")
    return parser


def build_config(args: argparse.Namespace) -> RunConfig:
    """Merge command line arguments over the config file defaults."""
    config_path = args.config or default_config_path()
    config = load_config(config_path) if config_path else RunConfig()

    # Command line flags override the file
    if args.max_jobs is not None:
        config.max_jobs = args.max_jobs
    config.mode = resolve_mode(args.group, args.join, default=config.mode)
    if args.silent is not None:
        config.silent = args.silent
    if args.exit_codes is not None:
        config.report_exit_codes = args.exit_codes
    config.dry_run = args.dry_run
    config.debug = bool(args.debug) or args.dry_run
    config.dashboard = args.dashboard
    config.color = (
        not args.no_color and "NO_COLOR" not in os.environ and sys.stdout.isatty()
    )

    transport = config.transport
    if args.identity is not None:
        transport.identity = args.identity.expanduser()
    if args.login is not None:
        transport.login = args.login
    if args.port is not None:
        transport.port = args.port
    if args.quiet is not None:
        transport.quiet = args.quiet
    if args.no_strict is not None:
        transport.no_strict = args.no_strict
    return config


async def run(
    config: RunConfig,
    hosts: Sequence[str],
    command: Sequence[str],
    sink: OutputSink | None = None,
) -> int:
    """Run ``command`` on every host and return the summed exit status."""
    validate(config, command)
    if sink is None:
        sink = make_sink(config)

    started = time.monotonic()
    logger.debug("starting: %s", datetime.now().isoformat())
    logger.debug("pid: %d", os.getpid())
    logger.debug("hosts (%d): %s", len(hosts), " ".join(hosts))
    logger.debug("command: %s", shlex.join(command))
    logger.debug("maxjobs: %d", config.max_jobs)

    runner = JobRunner(build_command(config.transport), command, sink, dry_run=config.dry_run)
    dispatcher = Dispatcher(on_complete=sink.on_job_complete, on_drain=sink.on_drain)

    loop = asyncio.get_running_loop()
    progress_signal = getattr(signal, "SIGUSR1", None)
    if progress_signal is not None:
        # Dump progress on SIGUSR1
        try:
            loop.add_signal_handler(progress_signal, sink.progress, dispatcher.state)
        except (NotImplementedError, RuntimeError, ValueError) as e:
            logger.debug("progress signal unavailable: %s", e)
            progress_signal = None
    try:
        drained = dispatcher.submit(hosts, config.max_jobs, runner.run)
        sink.on_start(dispatcher.state)
        try:
            exit_status = await drained
        except asyncio.CancelledError:
            # Kill in-flight ssh processes rather than orphaning them
            dispatcher.cancel()
            raise
    finally:
        if progress_signal is not None:
            loop.remove_signal_handler(progress_signal)

    SummaryReporter(sink.stdout, sink.palette).report_timing(started)
    return exit_status


def _setup_logging(debug: bool, dashboard: bool = False) -> None:
    level = logging.DEBUG if debug else logging.WARNING
    if dashboard:
        # stderr would draw over the dashboard; send records to the textual console
        from textual.logging import TextualHandler

        logging.basicConfig(level=level, format="[sshp] %(message)s", handlers=[TextualHandler()])
        return
    logging.basicConfig(level=level, format="[sshp] %(message)s", stream=sys.stderr)


def main(argv: Sequence[str] | None = None) -> int:
    """Main entry point."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    try:
        config = build_config(args)
        validate(config, args.command)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    _setup_logging(config.debug, dashboard=config.dashboard)

    try:
        hosts = read_hosts(args.file)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if config.dashboard:
        from .dashboard import Dashboard

        app = Dashboard(config, hosts, args.command)
        app.run()
        exit_status = app.final_status()
    else:
        exit_status = asyncio.run(run(config, hosts, args.command))

    return min(exit_status, MAX_EXIT_STATUS)


if __name__ == "__main__":
    sys.exit(main())
