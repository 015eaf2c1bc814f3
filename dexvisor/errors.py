"""Exception hierarchy for dexvisor.

Every error raised here is fatal to the current supervisor run.  Nothing
in dexvisor retries them; restarting the whole supervisor is left to the
surrounding process manager (e.g. the kubelet).
"""

from __future__ import annotations


class DexvisorError(Exception):
    """Base class for all dexvisor errors."""


class SettingsFetchError(DexvisorError):
    """Raised when the Argo CD settings cannot be read from the cluster."""


class RenderError(DexvisorError):
    """Raised when the Dex configuration cannot be generated."""


class PersistenceError(DexvisorError):
    """Raised when a file (config, certificate, key) cannot be written."""

    def __init__(self, path: str, cause: Exception) -> None:
        super().__init__(f"could not write '{path}': {cause}")
        self.path = path
        self.cause = cause


class TLSError(DexvisorError):
    """Raised when the TLS certificate and key cannot be loaded or generated."""


class ProcessStartError(DexvisorError):
    """Raised when the Dex executable cannot be located or spawned."""


class ProcessSignalError(DexvisorError):
    """Raised when SIGTERM/SIGKILL cannot be delivered to Dex."""


class ProcessWaitError(DexvisorError):
    """Raised when waiting for Dex to exit fails or times out after a kill."""
