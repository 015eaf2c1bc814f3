"""Core data structures for dexvisor."""

from dexvisor.models.config import DexvisorConfig
from dexvisor.models.settings import SettingsSnapshot

__all__ = [
    "DexvisorConfig",
    "SettingsSnapshot",
]
