"""Secrets subpackage.

This package contains the secret mapping parser and the Vault source
that resolves mapping entries into secret data.
"""

from vault_secret_syncer.secrets.mapping import parse_mapping_file
from vault_secret_syncer.secrets.vault import VaultSession, VaultSource

__all__ = [
    # mapping
    "parse_mapping_file",
    # vault
    "VaultSession",
    "VaultSource",
]
