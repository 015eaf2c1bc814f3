"""Click commands for running Dex and dumping its generated configuration.

    dexvisor rundex     -- supervise Dex, restarting it when its config changes.
    dexvisor gendexcfg  -- render the Dex config once and write or print it.

Flag defaults can be provided through the ``ARGOCD_DEX_SERVER_*``
environment variables used by the Argo CD manifests; everything else is
read from ``DEXVISOR_*`` (see ``dexvisor.config``).
"""

from __future__ import annotations

import asyncio
import dataclasses
import functools
import os
import signal
from collections.abc import Callable, Coroutine
from pathlib import Path
from typing import Any

import click

from dexvisor import __version__
from dexvisor.config import load_config
from dexvisor.dex.config import generate_dex_config
from dexvisor.errors import DexvisorError, PersistenceError, TLSError
from dexvisor.kube import build_api_client
from dexvisor.models.config import DexvisorConfig
from dexvisor.observability.logging import get_logger, setup_logging
from dexvisor.redaction import DISPLAY_RULES, redact_document
from dexvisor.settings import SettingsManager
from dexvisor.supervisor import DexSupervisor
from dexvisor.tls import load_or_generate, write_material

_log = get_logger("cli")

_LOG_LEVELS = ["debug", "info", "warn", "warning", "error"]
_LOG_FORMATS = ["json", "text"]


def _common_options(fn: Callable[..., Any]) -> Callable[..., Any]:
    options = [
        click.option(
            "--loglevel",
            envvar="ARGOCD_DEX_SERVER_LOGLEVEL",
            type=click.Choice(_LOG_LEVELS, case_sensitive=False),
            default=None,
            help="Set the logging level.",
        ),
        click.option(
            "--logformat",
            envvar="ARGOCD_DEX_SERVER_LOGFORMAT",
            type=click.Choice(_LOG_FORMATS, case_sensitive=False),
            default=None,
            help="Set the logging format.",
        ),
        click.option(
            "--disable-tls",
            envvar="ARGOCD_DEX_SERVER_DISABLE_TLS",
            is_flag=True,
            default=False,
            help="Disable TLS on the Dex HTTP endpoint.",
        ),
        click.option("--namespace", "-n", default=None, help="Namespace holding the Argo CD settings."),
        click.option("--kubeconfig", default=None, type=click.Path(dir_okay=False), help="Path to a kubeconfig file."),
        click.option("--context", default=None, help="Kubeconfig context to use."),
    ]
    for option in reversed(options):
        fn = option(fn)
    return fn


def _resolve_config(loglevel: str | None, logformat: str | None, disable_tls: bool) -> DexvisorConfig:
    try:
        cfg = load_config()
    except ValueError as exc:
        raise click.ClickException(str(exc)) from exc

    log_cfg = dataclasses.replace(
        cfg.log,
        level=(loglevel or cfg.log.level).lower(),
        format=(logformat or cfg.log.format).lower(),
    )
    tls_cfg = dataclasses.replace(cfg.tls, disabled=disable_tls or cfg.tls.disabled)
    cfg = dataclasses.replace(cfg, log=log_cfg, tls=tls_cfg)
    setup_logging(cfg.log.level, cfg.log.format)
    return cfg


def _run(coro: Coroutine[Any, Any, None]) -> None:
    """Run *coro*, turning dexvisor errors into a logged non-zero exit."""
    try:
        asyncio.run(coro)
    except DexvisorError as exc:
        _log.critical("fatal_error", error_type=type(exc).__name__, error=str(exc))
        raise SystemExit(1) from exc


def _renderer(cfg: DexvisorConfig) -> Callable[..., bytes]:
    return functools.partial(
        generate_dex_config,
        disable_tls=cfg.tls.disabled,
        tls_cert_path=cfg.tls.cert_path,
        tls_key_path=cfg.tls.key_path,
    )


def _provision_tls(cfg: DexvisorConfig) -> None:
    try:
        material = load_or_generate(cfg.tls.mounted_cert_path, cfg.tls.mounted_key_path, cfg.tls.hosts)
    except (OSError, ValueError) as exc:
        raise TLSError(f"could not create TLS config: {exc}") from exc
    write_material(material, cfg.tls.cert_path, cfg.tls.key_path)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(__version__, prog_name="dexvisor")
def cli() -> None:
    """dexvisor tools used to run Dex for Argo CD."""


@cli.command("rundex")
@_common_options
def rundex(
    loglevel: str | None,
    logformat: str | None,
    disable_tls: bool,
    namespace: str | None,
    kubeconfig: str | None,
    context: str | None,
) -> None:
    """Run Dex with a config generated from the Argo CD ConfigMap and Secret."""
    cfg = _resolve_config(loglevel, logformat, disable_tls)
    _run(_run_dex(cfg, namespace, kubeconfig, context))


async def _run_dex(
    cfg: DexvisorConfig,
    namespace: str | None,
    kubeconfig: str | None,
    context: str | None,
) -> None:
    api_client, namespace = await build_api_client(namespace, kubeconfig, context)
    _log.info("dexvisor_starting", version=__version__, namespace=namespace, tls=not cfg.tls.disabled)
    try:
        if not cfg.tls.disabled:
            _provision_tls(cfg)

        manager = SettingsManager(
            api_client,
            namespace,
            configmap_name=cfg.settings.configmap_name,
            secret_name=cfg.settings.secret_name,
        )
        supervisor = DexSupervisor(
            manager,
            render=_renderer(cfg),
            config_path=cfg.dex.config_path,
            executable=cfg.dex.executable,
            shutdown_timeout=cfg.dex.shutdown_timeout,
        )
        await manager.start()
        task = asyncio.create_task(supervisor.run(), name="dex-supervisor")

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, task.cancel)
        try:
            await task
        except asyncio.CancelledError:
            _log.info("dexvisor_stopped", restarts=supervisor.restarts)
        finally:
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.remove_signal_handler(sig)
            await manager.stop()
    finally:
        await api_client.close()


@cli.command("gendexcfg")
@_common_options
@click.option("--out", "-o", default="", help="Output to the specified file instead of stdout.")
def gendexcfg(
    loglevel: str | None,
    logformat: str | None,
    disable_tls: bool,
    namespace: str | None,
    kubeconfig: str | None,
    context: str | None,
    out: str,
) -> None:
    """Generate a Dex config from Argo CD settings."""
    cfg = _resolve_config(loglevel, logformat, disable_tls)
    _run(_gen_dex_config(cfg, namespace, kubeconfig, context, out))


async def _gen_dex_config(
    cfg: DexvisorConfig,
    namespace: str | None,
    kubeconfig: str | None,
    context: str | None,
    out: str,
) -> None:
    api_client, namespace = await build_api_client(namespace, kubeconfig, context)
    try:
        manager = SettingsManager(
            api_client,
            namespace,
            configmap_name=cfg.settings.configmap_name,
            secret_name=cfg.settings.secret_name,
        )
        snapshot = await manager.get_settings()
    finally:
        await api_client.close()

    document = _renderer(cfg)(snapshot)
    emit_dex_config(document, out)


def emit_dex_config(document: bytes, out: str) -> None:
    """Write *document* to *out*, or print its display-redacted form to stdout."""
    if not document:
        _log.info("dex_not_configured")
        return
    if out:
        try:
            Path(out).write_bytes(document)
            os.chmod(out, 0o644)
        except OSError as exc:
            raise PersistenceError(out, exc) from exc
        return
    click.echo(redact_document(document, DISPLAY_RULES), nl=False)
