"""Reconciliation of managed Kubernetes secrets against the mapping.

This module provides the KubeRepo class which decides, for each managed
secret, whether it must be created, updated or deleted, and applies the
decision through a SecretStore. Values are resolved through VaultSource.
"""

import base64
from collections.abc import Iterable, Mapping

from kubernetes import client

from vault_secret_syncer import console
from vault_secret_syncer.cluster import HTTP_CONFLICT, HTTP_NOT_FOUND, SecretStore
from vault_secret_syncer.config import Settings
from vault_secret_syncer.exceptions import SecretResolutionError, StoreError
from vault_secret_syncer.models import Action, MappingEntry, PassResult, is_docker_secret, secret_key
from vault_secret_syncer.secrets.vault import VaultSource


def encode_data(data: Mapping[str, bytes]) -> dict[str, str]:
    """Encode secret data for the Kubernetes API (base64 strings)."""
    return {key: base64.b64encode(value).decode() for key, value in data.items()}


def decode_data(data: Mapping[str, str] | None) -> dict[str, bytes]:
    """Decode the base64 data of a V1Secret into bytes."""
    return {key: base64.b64decode(value) for key, value in (data or {}).items()}


class KubeRepo:
    """Converges managed secrets toward the desired mapping.

    Attributes:
        store: Cluster secret storage.
        vault: Source of desired values.
        label_key: Label marking secrets managed by the syncer.

    """

    def __init__(self, settings: Settings, store: SecretStore, vault: VaultSource) -> None:
        self.store: SecretStore = store
        self.vault: VaultSource = vault
        self.label_key: str = settings.label_key
        self.label_selector: str = settings.label_selector

    def __repr__(self) -> str:
        return f"KubeRepo(label_selector={self.label_selector!r})"

    def list_managed(self) -> list[client.V1Secret]:
        """List every secret carrying the managed label.

        Raises:
            StoreError: If the secrets cannot be listed.

        """
        return self.store.list(self.label_selector)

    def new_secret(self, entry: MappingEntry, data: Mapping[str, bytes] | None = None) -> client.V1Secret:
        """Build a labelled secret object for a mapping entry."""
        return client.V1Secret(
            api_version="v1",
            kind="Secret",
            metadata=client.V1ObjectMeta(
                name=entry.name,
                namespace=entry.namespace,
                labels={self.label_key: "true"},
            ),
            type=entry.secret_type.value,
            data=encode_data(data) if data else None,
        )

    def _resolve(self, namespace: str, name: str) -> dict[str, bytes] | None:
        if is_docker_secret(name):
            return self.vault.resolve_docker(namespace, name)
        return self.vault.resolve(namespace, name)

    def _delete(self, namespace: str, name: str) -> Action:
        key = secret_key(namespace, name)
        console.info(f"{key} is not in the secret map - DELETE")
        try:
            self.store.delete(namespace, name)
        except StoreError as err:
            if err.status == HTTP_NOT_FOUND:
                console.debug(f"{key} is already gone")
                return Action.DELETED
            console.error(f"{key}: {err}")
            return Action.FAILED
        return Action.DELETED

    def reconcile_one(self, secret: client.V1Secret) -> Action:
        """Bring one managed secret in line with its mapping entry.

        Args:
            secret: The secret as currently stored in the cluster.

        Returns:
            The action that was taken.

        """
        namespace, name = secret.metadata.namespace, secret.metadata.name
        key = secret_key(namespace, name)

        try:
            data = self._resolve(namespace, name)
        except SecretResolutionError as err:
            console.warning(f"{key}: {err} - SKIP")
            return Action.SKIPPED

        if data is None:
            return self._delete(namespace, name)

        if decode_data(secret.data) == data:
            console.debug(f"{key} check for update - EQUALS")
            return Action.UNCHANGED

        console.info(f"{key} check for update - NOT EQUALS")
        secret.data = encode_data(data)
        try:
            self.store.update(secret)
        except StoreError as err:
            console.error(f"{key}: {err}")
            return Action.FAILED
        return Action.UPDATED

    def reconcile_existing(self, secrets: Iterable[client.V1Secret]) -> PassResult:
        """Update or delete every managed secret currently in the cluster.

        Args:
            secrets: The managed secrets as listed from the cluster.

        Returns:
            Counts of the actions taken.

        """
        result = PassResult("update")
        for secret in secrets:
            result.record(self.reconcile_one(secret))
        return result

    def _create(self, entry: MappingEntry) -> Action:
        data: dict[str, bytes] | None = None
        if entry.is_docker:
            try:
                data = self.vault.resolve_docker(entry.namespace, entry.name)
            except SecretResolutionError as err:
                console.warning(f"{entry.key}: {err} - SKIP create")
                return Action.SKIPPED
            console.info(f"{entry.key} create docker secret")
        else:
            console.info(f"{entry.key} create empty secret")

        try:
            self.store.create(self.new_secret(entry, data))
        except StoreError as err:
            if err.status == HTTP_CONFLICT:
                console.debug(f"{entry.key} already exists")
                return Action.UNCHANGED
            console.error(f"{entry.key}: {err}")
            return Action.FAILED
        return Action.CREATED

    def reconcile_missing(
        self,
        secrets: Iterable[client.V1Secret],
        desired: Mapping[str, MappingEntry],
    ) -> PassResult:
        """Create a secret for every mapping entry that has none in the cluster.

        Plain entries are created as empty placeholders; their data is
        written by the next ``reconcile_one`` of the secret. Docker registry
        entries are created with their data.

        Args:
            secrets: The managed secrets as listed from the cluster.
            desired: Snapshot of the mapping.

        Returns:
            Counts of the actions taken.

        """
        existing = {secret_key(secret.metadata.namespace, secret.metadata.name) for secret in secrets}
        result = PassResult("create")
        for key, entry in desired.items():
            if key in existing:
                continue
            result.record(self._create(entry))
        return result
