"""Custom exceptions for vault-secret-syncer.

This module defines the exception hierarchy used throughout the application
to separate startup-fatal conditions from per-secret failures that the
reconciliation passes skip over.
"""


class SyncerError(Exception):
    """Base exception for all vault-secret-syncer errors.

    All custom exceptions in this package inherit from this class,
    allowing callers to catch all syncer errors with a single
    except clause if desired.
    """

    pass


class MappingError(SyncerError):
    """Raised when the secret mapping file cannot be loaded.

    This can occur when:
    - The file does not exist
    - The file is not valid YAML
    - A key is not in ``namespace/name`` form
    - A value specification is malformed
    """

    pass


class ClusterConnectionError(SyncerError):
    """Raised when the Kubernetes client cannot be configured.

    This can occur when:
    - The in-cluster service account is not mounted
    - The kubeconfig is invalid or missing
    """

    pass


class StoreError(SyncerError):
    """Raised when a call against the cluster secret API fails.

    Attributes:
        status: HTTP status code reported by the API server, if any.

    """

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class VaultError(SyncerError):
    """Base exception for failures talking to Vault."""

    pass


class VaultLoginError(VaultError):
    """Raised when the Kubernetes auth login against Vault fails.

    This can occur when:
    - The service account token cannot be read
    - Vault is unreachable
    - Vault rejects the role or the token
    """

    pass


class VaultReadError(VaultError):
    """Raised when a single field cannot be read from a Vault KV document."""

    pass


class SecretResolutionError(VaultError):
    """Raised when one or more fields of a mapped secret could not be read.

    Attributes:
        key: The ``namespace/name`` of the mapping entry.
        failures: Read errors collected while resolving the entry.
        partial: Data that was read successfully (may be empty).

    """

    def __init__(
        self,
        key: str,
        failures: list[VaultReadError],
        partial: dict[str, bytes] | None = None,
    ) -> None:
        super().__init__(f"{key}: {len(failures)} field(s) could not be read")
        self.key = key
        self.failures = failures
        self.partial = partial or {}
