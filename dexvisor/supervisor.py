"""Dex process supervisor.

DexSupervisor owns the watch -> render -> diff -> restart loop and the one
Dex subprocess.  It has two states:

    NoProcess -- the rendered configuration is empty (Dex not configured).
    Running   -- Dex was started with the retained configuration document.

Dex is restarted if and only if a newly rendered document differs
byte-for-byte from the retained one.  The old process is always fully
stopped (SIGTERM, bounded wait, SIGKILL on timeout) before a new one is
spawned, so two instances never overlap.

Every error is fatal to ``run()`` and is never retried here; the process
manager that runs dexvisor decides whether to start it again.
"""

from __future__ import annotations

import asyncio
import os
import shutil
from collections.abc import Callable
from pathlib import Path
from typing import Protocol

from dexvisor.channel import LatestValueChannel
from dexvisor.errors import (
    PersistenceError,
    ProcessSignalError,
    ProcessStartError,
    ProcessWaitError,
    RenderError,
)
from dexvisor.models.settings import SettingsSnapshot
from dexvisor.observability.logging import get_logger
from dexvisor.redaction import LOG_RULES, redact_document

_log = get_logger("supervisor")

_DEFAULT_SHUTDOWN_TIMEOUT = 30.0
_CONFIG_FILE_MODE = 0o644

Renderer = Callable[[SettingsSnapshot], bytes]


class SettingsSource(Protocol):
    async def get_settings(self) -> SettingsSnapshot: ...

    def subscribe(self, channel: LatestValueChannel[SettingsSnapshot]) -> None: ...

    def unsubscribe(self, channel: LatestValueChannel[SettingsSnapshot]) -> None: ...


class DexSupervisor:
    """Runs Dex with the configuration rendered from the latest settings.

    Args:
        settings:         Source of settings snapshots and change notifications.
        render:           Pure function turning a snapshot into a Dex config
                          document; ``b""`` means Dex is not configured.
        config_path:      Where the document is written for Dex to read.
        executable:       Dex binary name or path, resolved via ``PATH``.
        shutdown_timeout: Seconds to wait after SIGTERM (and again after
                          SIGKILL) for Dex to exit.
    """

    def __init__(
        self,
        settings: SettingsSource,
        render: Renderer,
        config_path: str,
        executable: str = "dex",
        shutdown_timeout: float = _DEFAULT_SHUTDOWN_TIMEOUT,
    ) -> None:
        self._settings = settings
        self._render = render
        self._config_path = config_path
        self._executable = executable
        self._shutdown_timeout = shutdown_timeout

        # Document of the running process, b"" when nothing runs.
        self._previous: bytes = b""
        self._process: asyncio.subprocess.Process | None = None
        self.restarts = 0

    @property
    def running(self) -> bool:
        return self._process is not None and self._process.returncode is None

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process is not None else None

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    async def run(self) -> None:
        """Supervise Dex until an error occurs or the task is cancelled.

        Raises:
            SettingsFetchError: the initial settings could not be read.
            RenderError, PersistenceError, ProcessStartError,
            ProcessSignalError, ProcessWaitError: see ``dexvisor.errors``.
        """
        executable = self._resolve_executable()

        # Subscribe before the initial read so a change landing during the
        # read is still delivered.
        channel: LatestValueChannel[SettingsSnapshot] = LatestValueChannel()
        self._settings.subscribe(channel)
        try:
            snapshot = await self._settings.get_settings()
            document = self._render_document(snapshot)
            while True:
                await self._apply(document, executable)
                document = await self._next_document(channel)
                await self._stop_process()
                self.restarts += 1
        finally:
            self._settings.unsubscribe(channel)
            await self._stop_process()

    async def _next_document(self, channel: LatestValueChannel[SettingsSnapshot]) -> bytes:
        """Wait for a snapshot whose rendering differs from the retained document."""
        while True:
            snapshot = await channel.get()
            document = self._render_document(snapshot)
            if document != self._previous:
                _log.info("dex_config_modified", resource_version=snapshot.resource_version)
                return document
            _log.info("dex_config_unmodified", resource_version=snapshot.resource_version)

    async def _apply(self, document: bytes, executable: str) -> None:
        if not document:
            _log.info("dex_not_configured")
            self._previous = b""
            return
        self._persist(document)
        _log.debug("dex_config", config=redact_document(document, LOG_RULES))
        await self._spawn(executable)
        self._previous = document

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _resolve_executable(self) -> str:
        path = shutil.which(self._executable)
        if path is None:
            raise ProcessStartError(f"executable '{self._executable}' not found in PATH")
        return path

    def _render_document(self, snapshot: SettingsSnapshot) -> bytes:
        try:
            return self._render(snapshot)
        except RenderError:
            raise
        except Exception as exc:
            raise RenderError(f"could not render dex config: {exc}") from exc

    def _persist(self, document: bytes) -> None:
        try:
            path = Path(self._config_path)
            path.write_bytes(document)
            os.chmod(path, _CONFIG_FILE_MODE)
        except OSError as exc:
            raise PersistenceError(self._config_path, exc) from exc

    async def _spawn(self, executable: str) -> None:
        try:
            # stdout/stderr are inherited from dexvisor.
            self._process = await asyncio.create_subprocess_exec(executable, "serve", self._config_path)
        except OSError as exc:
            raise ProcessStartError(f"could not start '{executable}': {exc}") from exc
        _log.info("dex_started", pid=self._process.pid, config_path=self._config_path)

    async def _stop_process(self) -> None:
        """Stop the running process, escalating to SIGKILL after the timeout."""
        process = self._process
        if process is None:
            return

        try:
            await self._terminate(process)
        except (ProcessSignalError, ProcessWaitError):
            # Give up on this process so teardown does not repeat a failed stop.
            self._process = None
            self._previous = b""
            raise

        self._process = None
        self._previous = b""
        _log.info("dex_stopped", pid=process.pid, returncode=process.returncode)

    async def _terminate(self, process: asyncio.subprocess.Process) -> None:
        self._signal(process, "terminate")
        try:
            await asyncio.wait_for(process.wait(), timeout=self._shutdown_timeout)
        except TimeoutError:
            _log.warning("dex_shutdown_timeout", pid=process.pid, timeout=self._shutdown_timeout)
            self._signal(process, "kill")
            try:
                await asyncio.wait_for(process.wait(), timeout=self._shutdown_timeout)
            except TimeoutError as exc:
                raise ProcessWaitError(f"dex (pid {process.pid}) did not exit after SIGKILL") from exc
        except OSError as exc:
            raise ProcessWaitError(f"could not wait for dex (pid {process.pid}): {exc}") from exc

    @staticmethod
    def _signal(process: asyncio.subprocess.Process, method: str) -> None:
        if process.returncode is not None:
            return
        try:
            getattr(process, method)()
        except ProcessLookupError:
            # Exited between the returncode check and the signal.
            pass
        except OSError as exc:
            raise ProcessSignalError(f"could not {method} dex (pid {process.pid}): {exc}") from exc
