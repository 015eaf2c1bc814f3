"""dexvisor command-line interface.

Exposes:
    cli -- Click group entry point (registered as ``dexvisor`` script).
"""

from dexvisor.cli.main import cli

__all__ = ["cli"]
