"""Configuration data structures."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class DexProcessConfig:
    """How the Dex binary is located, started and stopped."""

    executable: str = "dex"
    config_path: str = "/tmp/dex.yaml"
    shutdown_timeout: float = 30.0


@dataclass
class TLSConfig:
    """TLS material locations.

    ``mounted_*`` is where an operator-provided pair may be mounted;
    ``cert_path``/``key_path`` is where the pair is persisted for Dex.
    """

    disabled: bool = False
    mounted_cert_path: str = "/tls/tls.crt"
    mounted_key_path: str = "/tls/tls.key"
    cert_path: str = "/tmp/tls.crt"
    key_path: str = "/tmp/tls.key"
    hosts: list[str] = field(default_factory=lambda: ["localhost", "dexserver"])


@dataclass
class SettingsConfig:
    """Names of the Kubernetes objects holding Argo CD settings."""

    configmap_name: str = "argocd-cm"
    secret_name: str = "argocd-secret"


@dataclass
class LogConfig:
    """Logging configuration."""

    level: str = "info"
    format: str = "json"


@dataclass
class DexvisorConfig:
    """Top-level dexvisor configuration."""

    dex: DexProcessConfig = field(default_factory=DexProcessConfig)
    tls: TLSConfig = field(default_factory=TLSConfig)
    settings: SettingsConfig = field(default_factory=SettingsConfig)
    log: LogConfig = field(default_factory=LogConfig)
