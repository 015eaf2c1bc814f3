"""Argo CD settings source backed by the Kubernetes API.

SettingsManager reads the ``argocd-cm`` ConfigMap and ``argocd-secret``
Secret into a SettingsSnapshot and watches both objects.  Every watch
event triggers a fresh read, and the resulting snapshot is published to
all subscribed LatestValueChannels.  Slow subscribers only ever see the
most recent snapshot.

Watch streams are re-established with exponential back-off.  Starting a
watch without a resource version replays the current object as ADDED,
so a reconnect also picks up changes missed while disconnected.
"""

from __future__ import annotations

import asyncio
import base64
from collections.abc import AsyncIterator, Callable
from typing import Any

from kubernetes_asyncio import client as k8s_client
from kubernetes_asyncio import watch
from kubernetes_asyncio.client.exceptions import ApiException

from dexvisor.channel import LatestValueChannel
from dexvisor.errors import SettingsFetchError
from dexvisor.models.settings import SettingsSnapshot
from dexvisor.observability.logging import get_logger

_log = get_logger("settings.manager")

URL_KEY = "url"
DEX_CONFIG_KEY = "dex.config"

_INITIAL_BACKOFF = 1.0
_MAX_BACKOFF = 30.0
_WATCH_TIMEOUT_SECONDS = 300
_RELEVANT_EVENTS = frozenset({"ADDED", "MODIFIED", "DELETED"})


def _decode_secret_data(data: dict[str, str] | None) -> dict[str, str]:
    decoded: dict[str, str] = {}
    for key, value in (data or {}).items():
        decoded[key] = base64.b64decode(value).decode("utf-8", errors="replace")
    return decoded


def build_snapshot(configmap: Any | None, secret: Any | None) -> SettingsSnapshot:
    """Build a snapshot from (possibly missing) ConfigMap and Secret objects."""
    cm_data: dict[str, str] = (configmap.data or {}) if configmap is not None else {}
    secrets = _decode_secret_data(secret.data) if secret is not None else {}
    cm_version = configmap.metadata.resource_version if configmap is not None else ""
    secret_version = secret.metadata.resource_version if secret is not None else ""
    return SettingsSnapshot(
        url=cm_data.get(URL_KEY, ""),
        dex_config=cm_data.get(DEX_CONFIG_KEY, ""),
        secrets=secrets,
        resource_version=f"{cm_version}/{secret_version}",
    )


class SettingsManager:
    """Fetches Argo CD settings and notifies subscribers when they change.

    Args:
        api_client:     kubernetes-asyncio ApiClient.
        namespace:      Namespace holding the Argo CD objects.
        configmap_name: Name of the settings ConfigMap.
        secret_name:    Name of the settings Secret.
        core_api:       Optional CoreV1Api (injected by tests).
    """

    def __init__(
        self,
        api_client: k8s_client.ApiClient | None,
        namespace: str,
        configmap_name: str = "argocd-cm",
        secret_name: str = "argocd-secret",
        core_api: Any = None,
    ) -> None:
        self._namespace = namespace
        self._configmap_name = configmap_name
        self._secret_name = secret_name
        self._v1 = core_api if core_api is not None else k8s_client.CoreV1Api(api_client)
        self._subscribers: list[LatestValueChannel[SettingsSnapshot]] = []
        self._tasks: list[asyncio.Task[None]] = []

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def _read_optional(self, read_fn: Callable[..., Any], name: str) -> Any | None:
        try:
            return await read_fn(name, self._namespace)
        except ApiException as exc:
            if exc.status == 404:
                _log.info("settings_object_not_found", name=name, namespace=self._namespace)
                return None
            raise SettingsFetchError(f"could not read '{name}' in namespace '{self._namespace}': {exc.reason}") from exc
        except Exception as exc:
            raise SettingsFetchError(f"could not read '{name}' in namespace '{self._namespace}': {exc}") from exc

    async def get_settings(self) -> SettingsSnapshot:
        """Return the current settings snapshot.

        Raises:
            SettingsFetchError: the API server could not be queried.
        """
        configmap = await self._read_optional(self._v1.read_namespaced_config_map, self._configmap_name)
        secret = await self._read_optional(self._v1.read_namespaced_secret, self._secret_name)
        return build_snapshot(configmap, secret)

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, channel: LatestValueChannel[SettingsSnapshot]) -> None:
        """Deliver every future snapshot to *channel*."""
        self._subscribers.append(channel)

    def unsubscribe(self, channel: LatestValueChannel[SettingsSnapshot]) -> None:
        if channel in self._subscribers:
            self._subscribers.remove(channel)

    def publish(self, snapshot: SettingsSnapshot) -> None:
        for channel in list(self._subscribers):
            channel.put(snapshot)

    async def refresh(self) -> SettingsSnapshot:
        """Re-read the settings and publish the result to all subscribers."""
        snapshot = await self.get_settings()
        _log.debug("settings_refreshed", resource_version=snapshot.resource_version)
        self.publish(snapshot)
        return snapshot

    # ------------------------------------------------------------------
    # Watches
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Launch the ConfigMap and Secret watch loops as background tasks."""
        if self._tasks:
            return
        self._tasks = [
            asyncio.create_task(
                self._watch(self._v1.list_namespaced_config_map, self._configmap_name),
                name=f"watch-{self._configmap_name}",
            ),
            asyncio.create_task(
                self._watch(self._v1.list_namespaced_secret, self._secret_name),
                name=f"watch-{self._secret_name}",
            ),
        ]
        _log.info("settings_watch_started", namespace=self._namespace)

    async def stop(self) -> None:
        """Cancel the watch loops and wait for them to finish."""
        for task in self._tasks:
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

    async def _stream_events(self, list_fn: Callable[..., Any], name: str) -> AsyncIterator[str]:
        """Yield the type of each watch event for the named object."""
        async with watch.Watch().stream(
            list_fn,
            namespace=self._namespace,
            field_selector=f"metadata.name={name}",
            timeout_seconds=_WATCH_TIMEOUT_SECONDS,
        ) as stream:
            async for event in stream:
                yield event["type"]

    async def _watch(self, list_fn: Callable[..., Any], name: str) -> None:
        backoff = _INITIAL_BACKOFF
        while True:
            try:
                async for event_type in self._stream_events(list_fn, name):
                    backoff = _INITIAL_BACKOFF
                    if event_type in _RELEVANT_EVENTS:
                        _log.debug("settings_event", name=name, type=event_type)
                        await self.refresh()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                _log.warning("settings_watch_error", name=name, error=str(exc), retry_in=backoff)
                await asyncio.sleep(backoff)
                backoff = min(backoff * 2, _MAX_BACKOFF)
