"""Dex configuration rendering."""

from dexvisor.dex.config import generate_dex_config, is_dex_configured

__all__ = ["generate_dex_config", "is_dex_configured"]
