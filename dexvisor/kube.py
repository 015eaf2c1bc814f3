"""Kubernetes client bootstrap.

Prefers the in-cluster service account and falls back to a kubeconfig
file, mirroring how ``kubectl`` resolves its configuration.
"""

from __future__ import annotations

from pathlib import Path

from kubernetes_asyncio import client as k8s_client
from kubernetes_asyncio import config as k8s_config

from dexvisor import __version__
from dexvisor.errors import SettingsFetchError
from dexvisor.observability.logging import get_logger

_log = get_logger("kube")

_SERVICE_ACCOUNT_NAMESPACE = Path("/var/run/secrets/kubernetes.io/serviceaccount/namespace")
_DEFAULT_NAMESPACE = "default"


def _kubeconfig_namespace(kubeconfig: str | None, context: str | None) -> str | None:
    try:
        contexts, active = k8s_config.list_kube_config_contexts(config_file=kubeconfig)
    except (k8s_config.ConfigException, OSError):
        return None
    if context:
        active = next((c for c in contexts if c.get("name") == context), active)
    return (active or {}).get("context", {}).get("namespace")


async def _load_configuration(
    configuration: k8s_client.Configuration,
    kubeconfig: str | None,
    context: str | None,
) -> bool:
    """Populate *configuration*; return True when running in-cluster."""
    if kubeconfig is None and context is None:
        try:
            k8s_config.load_incluster_config(client_configuration=configuration)
            _log.info("k8s_client_in_cluster")
            return True
        except k8s_config.ConfigException:
            pass
    try:
        await k8s_config.load_kube_config(
            config_file=kubeconfig,
            context=context,
            client_configuration=configuration,
        )
    except (k8s_config.ConfigException, OSError) as exc:
        raise SettingsFetchError(f"could not configure kubernetes client: {exc}") from exc
    _log.info("k8s_client_kubeconfig", kubeconfig=kubeconfig, context=context)
    return False


async def build_api_client(
    namespace: str | None = None,
    kubeconfig: str | None = None,
    context: str | None = None,
) -> tuple[k8s_client.ApiClient, str]:
    """Return an ``ApiClient`` and the namespace dexvisor should watch.

    Namespace resolution order: explicit flag, in-cluster service account,
    kubeconfig context, ``default``.

    Raises:
        SettingsFetchError: neither in-cluster nor kubeconfig credentials work.
    """
    configuration = k8s_client.Configuration()
    in_cluster = await _load_configuration(configuration, kubeconfig, context)

    if namespace is None and in_cluster and _SERVICE_ACCOUNT_NAMESPACE.exists():
        namespace = _SERVICE_ACCOUNT_NAMESPACE.read_text().strip()
    if namespace is None:
        namespace = _kubeconfig_namespace(kubeconfig, context) or _DEFAULT_NAMESPACE

    api_client = k8s_client.ApiClient(configuration=configuration)
    api_client.user_agent = f"dexvisor/{__version__}"
    return api_client, namespace
