"""Argo CD settings source.

Exposes:
    SettingsManager -- reads and watches the Argo CD ConfigMap and Secret.
    build_snapshot  -- converts API objects into a SettingsSnapshot.
"""

from dexvisor.settings.manager import SettingsManager, build_snapshot

__all__ = ["SettingsManager", "build_snapshot"]
