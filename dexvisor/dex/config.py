"""Dex configuration generation from Argo CD settings.

``generate_dex_config`` is a pure function of a settings snapshot and the
TLS flag: rendering the same inputs twice yields byte-identical YAML
(keys are sorted), which is what lets the supervisor restart Dex only
when the configuration really changed.
"""

from __future__ import annotations

from typing import Any

import yaml

from dexvisor.errors import RenderError
from dexvisor.models.settings import SettingsSnapshot

ARGO_CD_CLIENT_ID = "argo-cd"
ARGO_CD_CLI_CLIENT_ID = "argo-cd-cli"
ARGO_CD_PKCE_CLIENT_ID = "argo-cd-pkce"

DEX_HTTP_ADDR = "0.0.0.0:5556"
DEX_GRPC_ADDR = "0.0.0.0:5557"
DEX_METRICS_ADDR = "0.0.0.0:5558"

DEFAULT_TLS_CERT_PATH = "/tmp/tls.crt"
DEFAULT_TLS_KEY_PATH = "/tmp/tls.key"

_CLI_REDIRECT_URIS = ["http://localhost", "http://localhost:8085/auth/callback"]

# Connector types whose config must carry Argo CD's Dex callback URL.
_REDIRECT_CONNECTOR_TYPES = frozenset(
    {
        "oidc",
        "saml",
        "microsoft",
        "linkedin",
        "gitlab",
        "github",
        "bitbucket-cloud",
        "openshift",
        "gitea",
        "google",
        "oauth",
    }
)


def parse_dex_config(raw: str) -> dict[str, Any]:
    """Parse the ``dex.config`` YAML string into a map (empty when unset)."""
    if not raw.strip():
        return {}
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError as exc:
        raise RenderError(f"dex.config is not valid YAML: {exc}") from exc
    if parsed is None:
        return {}
    if not isinstance(parsed, dict):
        raise RenderError("dex.config must be a YAML map")
    return parsed


def is_dex_configured(snapshot: SettingsSnapshot) -> bool:
    """Dex runs only when Argo CD has a URL and a non-empty ``dex.config``."""
    if not snapshot.url:
        return False
    return bool(parse_dex_config(snapshot.dex_config))


def replace_secrets(obj: Any, secrets: dict[str, str]) -> Any:
    """Return a copy of *obj* with ``$key`` string values replaced from *secrets*.

    References to keys that do not exist are left as-is.
    """
    if isinstance(obj, dict):
        return {key: replace_secrets(val, secrets) for key, val in obj.items()}
    if isinstance(obj, list):
        return [replace_secrets(item, secrets) for item in obj]
    if isinstance(obj, str) and obj.startswith("$"):
        return secrets.get(obj[1:], obj)
    return obj


def _static_clients(snapshot: SettingsSnapshot) -> list[dict[str, Any]]:
    return [
        {
            "id": ARGO_CD_CLIENT_ID,
            "name": "Argo CD",
            "secret": snapshot.dex_oauth2_client_secret(),
            "redirectURIs": [snapshot.redirect_url],
        },
        {
            "id": ARGO_CD_CLI_CLIENT_ID,
            "name": "Argo CD CLI",
            "public": True,
            "redirectURIs": list(_CLI_REDIRECT_URIS),
        },
        {
            "id": ARGO_CD_PKCE_CLIENT_ID,
            "name": "Argo CD PKCE",
            "public": True,
            "redirectURIs": [snapshot.pkce_redirect_url],
        },
    ]


def _apply_connector_redirects(dex_cfg: dict[str, Any], redirect_uri: str) -> None:
    connectors = dex_cfg.get("connectors", [])
    if connectors is None:
        connectors = []
    if not isinstance(connectors, list):
        raise RenderError("malformed Dex configuration: 'connectors' must be a list")

    for connector in connectors:
        if not isinstance(connector, dict):
            raise RenderError("malformed Dex configuration: connector must be a map")
        if connector.get("type") not in _REDIRECT_CONNECTOR_TYPES:
            continue
        connector_cfg = connector.get("config")
        if connector_cfg is None:
            connector_cfg = {}
        if not isinstance(connector_cfg, dict):
            raise RenderError(
                f"malformed Dex configuration: config of connector "
                f"'{connector.get('id', connector.get('name', ''))}' must be a map"
            )
        connector_cfg["redirectURI"] = redirect_uri
        connector["config"] = connector_cfg
    dex_cfg["connectors"] = connectors


def generate_dex_config(
    snapshot: SettingsSnapshot,
    disable_tls: bool,
    tls_cert_path: str = DEFAULT_TLS_CERT_PATH,
    tls_key_path: str = DEFAULT_TLS_KEY_PATH,
) -> bytes:
    """Render the Dex configuration document for *snapshot*.

    Returns ``b""`` when Dex is not configured.

    Raises:
        RenderError: ``dex.config`` is malformed.
    """
    if not is_dex_configured(snapshot):
        return b""
    dex_cfg = parse_dex_config(snapshot.dex_config)

    dex_cfg["issuer"] = snapshot.issuer_url
    dex_cfg["storage"] = {"type": "memory"}
    if disable_tls:
        dex_cfg["web"] = {"http": DEX_HTTP_ADDR}
    else:
        dex_cfg["web"] = {
            "https": DEX_HTTP_ADDR,
            "tlsCert": tls_cert_path,
            "tlsKey": tls_key_path,
        }
    dex_cfg["grpc"] = {"addr": DEX_GRPC_ADDR}
    dex_cfg["telemetry"] = {"http": DEX_METRICS_ADDR}

    oauth2 = dex_cfg.get("oauth2")
    if isinstance(oauth2, dict):
        oauth2.setdefault("skipApprovalScreen", True)
    else:
        dex_cfg["oauth2"] = {"skipApprovalScreen": True}

    user_clients = dex_cfg.get("staticClients") or []
    if not isinstance(user_clients, list):
        raise RenderError("malformed Dex configuration: 'staticClients' must be a list")
    dex_cfg["staticClients"] = _static_clients(snapshot) + user_clients

    _apply_connector_redirects(dex_cfg, snapshot.dex_redirect_url)
    dex_cfg = replace_secrets(dex_cfg, snapshot.secrets)

    try:
        rendered = yaml.safe_dump(dex_cfg, default_flow_style=False, sort_keys=True)
    except yaml.YAMLError as exc:
        raise RenderError(f"could not serialise dex config: {exc}") from exc
    return rendered.encode()
