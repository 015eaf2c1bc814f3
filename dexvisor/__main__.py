"""Entry point for `python -m dexvisor`.

Usage:
    python -m dexvisor rundex
    python -m dexvisor gendexcfg --out /tmp/dex.yaml
"""

from __future__ import annotations

from dexvisor.cli import cli

cli()
