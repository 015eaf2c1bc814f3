"""Argo CD settings snapshot."""

from __future__ import annotations

import base64
import hashlib
from dataclasses import dataclass, field

SERVER_SECRET_KEY = "server.secretkey"


@dataclass(frozen=True)
class SettingsSnapshot:
    """Point-in-time view of the Argo CD settings relevant to Dex.

    Snapshots are never compared with each other; the supervisor only
    compares their rendered Dex configuration.
    """

    url: str = ""
    dex_config: str = ""
    secrets: dict[str, str] = field(default_factory=dict)
    resource_version: str = ""

    @property
    def issuer_url(self) -> str:
        return f"{self.url}/api/dex"

    @property
    def redirect_url(self) -> str:
        return f"{self.url}/auth/callback"

    @property
    def dex_redirect_url(self) -> str:
        return f"{self.url}/api/dex/callback"

    @property
    def pkce_redirect_url(self) -> str:
        return f"{self.url}/pkce/verify"

    def dex_oauth2_client_secret(self) -> str:
        """Derive the Argo CD OAuth2 client secret from the server secret key."""
        digest = hashlib.sha256(self.secrets.get(SERVER_SECRET_KEY, "").encode()).digest()
        return base64.urlsafe_b64encode(digest).decode()[:40]
