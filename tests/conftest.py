"""Shared pytest fixtures for sshp tests."""

from __future__ import annotations

import io
import stat
import sys
from pathlib import Path

import pytest

from sshp.config import RunConfig, TransportOptions
from sshp.executor import Job

# Stand-in for the ssh executable. It skips ssh's own flags, then behaves
# according to the host name:
#   quiet*   prints nothing
#   err*     also writes "<host> oops" to stderr
#   exit-N   exits with status N
#   sleep-S  sleeps S seconds first
# and otherwise prints the remote command on stdout.
FAKE_SSH = '''\
#!{python}
import sys
import time

args = sys.argv[1:]
while args and args[0].startswith("-"):
    flag = args.pop(0)
    if flag in ("-p", "-l", "-i", "-o"):
        args.pop(0)
host, command = args[0], args[1:]

if host.startswith("sleep-"):
    time.sleep(float(host.split("-", 1)[1]))
if not host.startswith("quiet"):
    sys.stdout.write(" ".join(command) + "\\n")
if host.startswith("err"):
    sys.stderr.write(host + " oops\\n")
sys.stdout.flush()
sys.exit(int(host.split("-", 1)[1]) if host.startswith("exit-") else 0)
'''


@pytest.fixture(autouse=True)
def isolate_config(tmp_path: Path, monkeypatch):
    """Keep a real ~/.config/sshp/config.yaml out of the tests."""
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    monkeypatch.delenv("SSHP_CONFIG", raising=False)


@pytest.fixture
def fake_ssh(tmp_path: Path) -> Path:
    """Write an executable fake ssh script and return its path."""
    path = tmp_path / "fake-ssh"
    path.write_text(FAKE_SSH.format(python=sys.executable))
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


@pytest.fixture
def config(fake_ssh: Path) -> RunConfig:
    """A line-mode config that runs the fake ssh."""
    return RunConfig(transport=TransportOptions(executable=str(fake_ssh)))


@pytest.fixture
def hosts_file(tmp_path: Path) -> Path:
    f = tmp_path / "hosts.txt"
    f.write_text("web1\nweb2\n\nweb3\n")
    return f


@pytest.fixture
def streams() -> tuple[io.StringIO, io.StringIO]:
    """In-memory stdout and stderr for sinks."""
    return io.StringIO(), io.StringIO()


def make_job(index: int, host: str, exit_status: int = 0, duration_ms: int = 5) -> Job:
    return Job(index=index, host=host, exit_status=exit_status, duration_ms=duration_ms)
