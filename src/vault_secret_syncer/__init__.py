"""vault-secret-syncer: keep Kubernetes secrets in sync with Vault.

This package reads a static mapping of desired secrets, resolves their
values from Vault KV v2 documents and converges the labelled Kubernetes
secrets toward it, both periodically and from a live watch stream.

Example usage:
    from vault_secret_syncer import Settings, Syncer

    with Syncer(Settings(secret_map="map.yaml", in_cluster=False)) as syncer:
        syncer.start()
        syncer.wait()
"""

__version__ = "0.1.0"

from vault_secret_syncer.cli import cli
from vault_secret_syncer.config import Settings
from vault_secret_syncer.core.syncer import Syncer
from vault_secret_syncer.exceptions import (
    ClusterConnectionError,
    MappingError,
    SecretResolutionError,
    StoreError,
    SyncerError,
    VaultError,
    VaultLoginError,
    VaultReadError,
)

__all__ = [
    # Version
    "__version__",
    # Main CLI
    "cli",
    # Classes
    "Settings",
    "Syncer",
    # Exceptions
    "SyncerError",
    "ClusterConnectionError",
    "MappingError",
    "SecretResolutionError",
    "StoreError",
    "VaultError",
    "VaultLoginError",
    "VaultReadError",
]
