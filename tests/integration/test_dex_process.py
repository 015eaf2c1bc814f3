"""Integration tests: DexSupervisor driving a real child process."""

from __future__ import annotations

import asyncio
import contextlib
import signal
from pathlib import Path

import pytest

from dexvisor.supervisor import DexSupervisor

from ..conftest import FakeSettingsSource, doc_snapshot, render_raw, wait_for
from .conftest import FakeDex

pytestmark = pytest.mark.integration


def _supervisor(source: FakeSettingsSource, fake_dex: FakeDex, config_path: Path, **kwargs) -> DexSupervisor:
    return DexSupervisor(
        source,
        render=render_raw,
        config_path=str(config_path),
        executable=str(fake_dex.executable),
        **kwargs,
    )


async def _cancel(task: asyncio.Task) -> None:
    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await task


async def test_dex_started_with_serve_and_config_path(fake_dex: FakeDex, tmp_path: Path) -> None:
    config_path = tmp_path / "dex.yaml"
    source = FakeSettingsSource(doc_snapshot("issuer: one\n"))
    supervisor = _supervisor(source, fake_dex, config_path)

    task = asyncio.create_task(supervisor.run())
    try:
        await wait_for(lambda: len(fake_dex.started()) == 1)
        assert fake_dex.started() == [f"start {supervisor.pid} serve {config_path}"]
        assert config_path.read_text() == "issuer: one\n"
        assert supervisor.running
    finally:
        await _cancel(task)

    pid = fake_dex.started()[0].split()[1]
    assert fake_dex.lines()[-2:] == [f"term {pid}", f"exit {pid}"]
    assert not supervisor.running


async def test_config_change_restarts_without_overlap(fake_dex: FakeDex, tmp_path: Path) -> None:
    source = FakeSettingsSource(doc_snapshot("issuer: one\n"))
    supervisor = _supervisor(source, fake_dex, tmp_path / "dex.yaml")

    task = asyncio.create_task(supervisor.run())
    try:
        await wait_for(lambda: len(fake_dex.started()) == 1)
        first_pid = supervisor.pid

        source.publish(doc_snapshot("issuer: two\n", resource_version="2"))
        await wait_for(lambda: len(fake_dex.started()) == 2)
        second_pid = supervisor.pid

        assert first_pid != second_pid
        assert fake_dex.lines()[:4] == [
            f"start {first_pid} serve {tmp_path / 'dex.yaml'}",
            f"term {first_pid}",
            f"exit {first_pid}",
            f"start {second_pid} serve {tmp_path / 'dex.yaml'}",
        ]
        assert (tmp_path / "dex.yaml").read_text() == "issuer: two\n"
        assert supervisor.restarts == 1
    finally:
        await _cancel(task)


async def test_disabling_dex_stops_the_process(fake_dex: FakeDex, tmp_path: Path) -> None:
    source = FakeSettingsSource(doc_snapshot("issuer: one\n"))
    supervisor = _supervisor(source, fake_dex, tmp_path / "dex.yaml")

    task = asyncio.create_task(supervisor.run())
    try:
        await wait_for(lambda: supervisor.running)
        pid = supervisor.pid

        source.publish(doc_snapshot("", resource_version="2"))
        await wait_for(lambda: not supervisor.running)
        await wait_for(lambda: f"exit {pid}" in fake_dex.lines())
        assert len(fake_dex.started()) == 1
    finally:
        await _cancel(task)


async def test_unresponsive_dex_is_killed(
    fake_dex: FakeDex, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("FAKE_DEX_IGNORE_TERM", "1")
    source = FakeSettingsSource(doc_snapshot("issuer: one\n"))
    supervisor = _supervisor(source, fake_dex, tmp_path / "dex.yaml", shutdown_timeout=0.5)

    task = asyncio.create_task(supervisor.run())
    await wait_for(lambda: len(fake_dex.started()) == 1)
    process = supervisor._process
    assert process is not None

    await _cancel(task)

    assert process.returncode == -signal.SIGKILL
    assert f"term {process.pid}" in fake_dex.lines()
    assert f"exit {process.pid}" not in fake_dex.lines()
