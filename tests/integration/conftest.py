"""Shared fixtures for dexvisor integration tests.

These tests run the supervisor against a real child process: a small
Python script standing in for the ``dex`` binary.  The script appends one
line per lifecycle step to a log file so tests can check ordering:

    start <pid> <argv...>
    term <pid>
    exit <pid>
"""

from __future__ import annotations

import stat
import sys
from pathlib import Path

import pytest

_FAKE_DEX = """\
#!{python}
import os
import signal
import sys
import time

LOG = os.environ["FAKE_DEX_LOG"]


def record(line):
    with open(LOG, "a") as fh:
        fh.write(line + "\\n")


def on_term(signum, frame):
    record(f"term {{os.getpid()}}")
    if os.environ.get("FAKE_DEX_IGNORE_TERM") != "1":
        record(f"exit {{os.getpid()}}")
        sys.exit(0)


signal.signal(signal.SIGTERM, on_term)
record(f"start {{os.getpid()}} {{' '.join(sys.argv[1:])}}")
while True:
    time.sleep(0.05)
"""


class FakeDex:
    """Handle on the fake dex executable and its lifecycle log."""

    def __init__(self, executable: Path, log: Path) -> None:
        self.executable = executable
        self.log = log

    def lines(self) -> list[str]:
        if not self.log.exists():
            return []
        return self.log.read_text().splitlines()

    def started(self) -> list[str]:
        return [line for line in self.lines() if line.startswith("start ")]


@pytest.fixture
def fake_dex(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> FakeDex:
    executable = tmp_path / "fake-dex"
    executable.write_text(_FAKE_DEX.format(python=sys.executable))
    executable.chmod(executable.stat().st_mode | stat.S_IXUSR)

    log = tmp_path / "fake-dex.log"
    monkeypatch.setenv("FAKE_DEX_LOG", str(log))
    monkeypatch.delenv("FAKE_DEX_IGNORE_TERM", raising=False)
    return FakeDex(executable, log)
