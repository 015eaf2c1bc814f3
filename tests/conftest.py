"""Shared fixtures and fakes for dexvisor tests.

Nothing here talks to a real Kubernetes cluster: the settings source is an
in-memory fake driven directly by the tests.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable

import pytest

from dexvisor.channel import LatestValueChannel
from dexvisor.models.settings import SettingsSnapshot

# ---------------------------------------------------------------------------
# Snapshot helpers
# ---------------------------------------------------------------------------

GITHUB_DEX_CONFIG = """\
connectors:
- type: github
  id: github
  name: GitHub
  config:
    clientID: aabbccddeeff00112233
    clientSecret: $dex.github.clientSecret
    orgs:
    - name: your-github-org
"""

LDAP_DEX_CONFIG = """\
connectors:
- type: ldap
  id: ldap
  name: LDAP
  config:
    host: ldap.example.com:636
    bindDN: cn=admin,dc=example,dc=com
    bindPW: $dex.ldap.bindPW
"""


def make_snapshot(
    url: str = "https://argocd.example.com",
    dex_config: str = GITHUB_DEX_CONFIG,
    secrets: dict[str, str] | None = None,
    resource_version: str = "1/1",
) -> SettingsSnapshot:
    """Create a SettingsSnapshot with sensible defaults for testing."""
    if secrets is None:
        secrets = {
            "server.secretkey": "s3cr3t-key",
            "dex.github.clientSecret": "github-client-secret",
            "dex.ldap.bindPW": "hunter2",
        }
    return SettingsSnapshot(
        url=url,
        dex_config=dex_config,
        secrets=secrets,
        resource_version=resource_version,
    )


def doc_snapshot(document: str, resource_version: str = "") -> SettingsSnapshot:
    """Snapshot whose rendering (with ``render_raw``) is exactly *document*."""
    return SettingsSnapshot(dex_config=document, resource_version=resource_version)


def render_raw(snapshot: SettingsSnapshot) -> bytes:
    """Trivial renderer: the document is the snapshot's dex_config."""
    return snapshot.dex_config.encode()


# ---------------------------------------------------------------------------
# Fake settings source
# ---------------------------------------------------------------------------


class FakeSettingsSource:
    """In-memory SettingsSource; tests push snapshots with ``publish``."""

    def __init__(self, initial: SettingsSnapshot) -> None:
        self.initial = initial
        self.channels: list[LatestValueChannel[SettingsSnapshot]] = []
        self.subscribed = asyncio.Event()

    async def get_settings(self) -> SettingsSnapshot:
        return self.initial

    def subscribe(self, channel: LatestValueChannel[SettingsSnapshot]) -> None:
        self.channels.append(channel)
        self.subscribed.set()

    def unsubscribe(self, channel: LatestValueChannel[SettingsSnapshot]) -> None:
        self.channels.remove(channel)

    def publish(self, snapshot: SettingsSnapshot) -> None:
        for channel in self.channels:
            channel.put(snapshot)


async def wait_for(predicate: Callable[[], bool], timeout: float = 5.0) -> None:
    """Poll *predicate* until it is true or *timeout* seconds elapse."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.01)


@pytest.fixture
def snapshot() -> SettingsSnapshot:
    return make_snapshot()
