"""Configuration loading from environment variables."""

from __future__ import annotations

import os

from dexvisor.models.config import (
    DexProcessConfig,
    DexvisorConfig,
    LogConfig,
    SettingsConfig,
    TLSConfig,
)


def _env(key: str, default: str = "") -> str:
    return os.environ.get(f"DEXVISOR_{key}", default)


def _env_bool(key: str, default: bool = False) -> bool:
    val = _env(key, str(default).lower())
    return val.lower() in ("true", "1", "yes")


def _env_float(key: str, default: float, min_val: float | None = None) -> float:
    val = float(_env(key, str(default)))
    if min_val is not None:
        val = max(val, min_val)
    return val


def _env_list(key: str, default: list[str]) -> list[str]:
    raw = _env(key, "")
    if not raw:
        return list(default)
    return [item.strip() for item in raw.split(",") if item.strip()]


def _validate_log_level(value: str) -> str:
    valid = {"debug", "info", "warn", "warning", "error"}
    if value.lower() not in valid:
        raise ValueError(f"Invalid log level: {value}. Must be one of {valid}")
    return value.lower()


def _validate_log_format(value: str) -> str:
    valid = {"json", "text"}
    if value.lower() not in valid:
        raise ValueError(f"Invalid log format: {value}. Must be one of {valid}")
    return value.lower()


def load_config() -> DexvisorConfig:
    """Load configuration from DEXVISOR_* environment variables."""
    return DexvisorConfig(
        dex=DexProcessConfig(
            executable=_env("DEX_EXECUTABLE", "dex"),
            config_path=_env("DEX_CONFIG_PATH", "/tmp/dex.yaml"),
            shutdown_timeout=_env_float("SHUTDOWN_TIMEOUT", 30.0, min_val=1.0),
        ),
        tls=TLSConfig(
            disabled=_env_bool("DISABLE_TLS", False),
            mounted_cert_path=_env("TLS_MOUNTED_CERT_PATH", "/tls/tls.crt"),
            mounted_key_path=_env("TLS_MOUNTED_KEY_PATH", "/tls/tls.key"),
            cert_path=_env("TLS_CERT_PATH", "/tmp/tls.crt"),
            key_path=_env("TLS_KEY_PATH", "/tmp/tls.key"),
            hosts=_env_list("TLS_HOSTS", ["localhost", "dexserver"]),
        ),
        settings=SettingsConfig(
            configmap_name=_env("CONFIGMAP_NAME", "argocd-cm"),
            secret_name=_env("SECRET_NAME", "argocd-secret"),
        ),
        log=LogConfig(
            level=_validate_log_level(_env("LOG_LEVEL", "info")),
            format=_validate_log_format(_env("LOG_FORMAT", "json")),
        ),
    )
