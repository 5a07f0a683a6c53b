"""Core subpackage.

This package contains the Syncer facade that wires every component
together and owns their lifecycle.
"""

from vault_secret_syncer.core.syncer import Syncer

__all__ = [
    "Syncer",
]
