"""dexvisor -- supervises a Dex server configured from Argo CD settings."""

__version__ = "0.1.0"
