"""Configuration loader for sshp."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Sequence

import yaml

DEFAULT_MAX_JOBS = 30
DEFAULT_CONFIG_PATH = Path("~/.config/sshp/config.yaml")


class ConfigError(ValueError):
    """Raised for invalid or mutually exclusive options."""


class OutputMode(Enum):
    """How output from many hosts is aggregated."""

    LINE = "line"
    GROUP = "group"
    JOIN = "join"


@dataclass
class TransportOptions:
    """Options passed straight through to the ssh executable."""

    executable: str = "ssh"
    identity: Path | None = None
    login: str | None = None
    port: int | None = None
    quiet: bool = False
    no_strict: bool = False


@dataclass
class RunConfig:
    """Validated options for a single run."""

    max_jobs: int = DEFAULT_MAX_JOBS
    mode: OutputMode = OutputMode.LINE
    silent: bool = False
    dry_run: bool = False
    debug: bool = False
    report_exit_codes: bool = False
    color: bool = False
    dashboard: bool = False
    transport: TransportOptions = field(default_factory=TransportOptions)
    source_path: Path | None = None  # Path to the YAML file, if one was loaded


def default_config_path() -> Path | None:
    """Return the config file to load implicitly, or None if there is none."""
    env_path = os.environ.get("SSHP_CONFIG")
    if env_path:
        return Path(env_path).expanduser()
    path = DEFAULT_CONFIG_PATH.expanduser()
    return path if path.exists() else None


def load_config(config_path: str | Path) -> RunConfig:
    """Load defaults from a YAML file."""
    config_path = Path(config_path).expanduser().resolve()

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path) as f:
        try:
            raw = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e

    config = _parse_config(raw or {})
    config.source_path = config_path
    return config


def _parse_config(raw: Any) -> RunConfig:
    """Parse raw YAML data into a RunConfig."""
    if not isinstance(raw, dict):
        raise ConfigError("Config file must contain a mapping")

    mode_raw = raw.get("mode", OutputMode.LINE.value)
    try:
        mode = OutputMode(mode_raw)
    except ValueError:
        choices = ", ".join(m.value for m in OutputMode)
        raise ConfigError(f"Unknown mode {mode_raw!r} (expected one of: {choices})") from None

    return RunConfig(
        max_jobs=_as_int(raw.get("max_jobs", DEFAULT_MAX_JOBS), "max_jobs"),
        mode=mode,
        silent=bool(raw.get("silent", False)),
        report_exit_codes=bool(raw.get("exit_codes", False)),
        transport=_parse_transport(raw.get("ssh") or {}),
    )


def _parse_transport(raw: Any) -> TransportOptions:
    """Parse the ssh section."""
    if not isinstance(raw, dict):
        raise ConfigError("The 'ssh' section must be a mapping")

    identity = raw.get("identity")
    port = raw.get("port")
    return TransportOptions(
        executable=str(raw.get("executable", "ssh")),
        identity=Path(identity).expanduser() if identity else None,
        login=raw.get("login"),
        port=_as_int(port, "ssh.port") if port is not None else None,
        quiet=bool(raw.get("quiet", False)),
        no_strict=bool(raw.get("no_strict", False)),
    )


def _as_int(value: Any, name: str) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"'{name}' must be an integer, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"'{name}' must be an integer, got {value!r}") from None


def resolve_mode(group: bool, join: bool, default: OutputMode = OutputMode.LINE) -> OutputMode:
    """Turn the group/join flags into a single output mode."""
    if group and join:
        raise ConfigError("options --group and --join are mutually exclusive")
    if group:
        return OutputMode.GROUP
    if join:
        return OutputMode.JOIN
    return default


def validate(config: RunConfig, command: Sequence[str]) -> None:
    """Reject configurations that must never reach the dispatcher."""
    if not command:
        raise ConfigError("no command specified")
    if config.max_jobs < 1:
        raise ConfigError(f"max jobs must be at least 1, got {config.max_jobs}")
    if config.mode is OutputMode.JOIN and config.silent:
        raise ConfigError("options --join and --silent are mutually exclusive")
    if config.dashboard and config.mode is not OutputMode.LINE:
        raise ConfigError("option --dashboard cannot be combined with --group or --join")


def read_hosts(path: str | Path | None = None) -> list[str]:
    """Read hosts, one per line, from a file or stdin.

    Hosts are kept exactly as written; only blank lines are dropped.
    """
    if path is None or str(path) == "-":
        text = sys.stdin.read()
    else:
        path = Path(path).expanduser()
        if not path.exists():
            raise FileNotFoundError(f"Hosts file not found: {path}")
        text = path.read_text()

    return [line for line in text.splitlines() if line.strip()]
