"""Kubernetes secret storage.

This module provides the SecretStore capability surface used by the
reconciler and the KubeSecretStore adapter that implements it on top of
the Kubernetes CoreV1 API. The adapter holds no policy: it lists, watches,
creates, updates and deletes secrets, one API call at a time.
"""

import threading
from collections.abc import Iterator
from typing import Any, Protocol

from icecream import ic
from kubernetes import client, config, watch
from kubernetes.client.exceptions import ApiException
from kubernetes.config.config_exception import ConfigException
from urllib3.exceptions import HTTPError, MaxRetryError

from vault_secret_syncer import console
from vault_secret_syncer.config import Settings
from vault_secret_syncer.exceptions import ClusterConnectionError, StoreError

# The API server ends a watch after this many seconds; the watcher then reconnects
WATCH_TIMEOUT_SECONDS = 300

HTTP_NOT_FOUND = 404
HTTP_CONFLICT = 409
HTTP_GONE = 410


class SecretWatch(Protocol):
    """An open watch stream of secret events."""

    def __iter__(self) -> Iterator[dict[str, Any]]: ...

    def stop(self) -> None: ...


class SecretStore(Protocol):
    """Capability surface over the cluster's secret API."""

    def list(self, label_selector: str) -> list[client.V1Secret]: ...

    def watch(self, label_selector: str) -> SecretWatch: ...

    def create(self, secret: client.V1Secret) -> None: ...

    def update(self, secret: client.V1Secret) -> None: ...

    def delete(self, namespace: str, name: str) -> None: ...


def _store_error(action: str, err: Exception) -> StoreError:
    """Wrap a Kubernetes client failure in a StoreError."""
    if isinstance(err, ApiException):
        return StoreError(f"Failed to {action}: {err.status} {err.reason}", status=err.status)
    if isinstance(err, MaxRetryError):
        return StoreError(f"Failed to {action}: cannot connect to the Kubernetes cluster: {err.reason}")
    return StoreError(f"Failed to {action}: {err}")


def load_kube_config(settings: Settings) -> None:
    """Configure the Kubernetes client from the service account or a kubeconfig.

    Args:
        settings: Process settings (``in_cluster`` and ``kubeconfig``).

    Raises:
        ClusterConnectionError: If no valid configuration is available.

    """
    try:
        if settings.in_cluster:
            config.load_incluster_config()
        else:
            config.load_kube_config(config_file=settings.kubeconfig or None)
    except ConfigException as e:
        raise ClusterConnectionError(f"Invalid or missing Kubernetes configuration: {e}") from e


class KubeSecretWatch:
    """A watch stream opened by KubeSecretStore.

    Iterating yields the raw watch events (``type``, ``object``). When the
    stream ends the last seen resource version is handed back to the store.
    """

    def __init__(self, store: "KubeSecretStore", watcher: watch.Watch, stream: Iterator[dict[str, Any]]) -> None:
        self._store = store
        self._watcher = watcher
        self._stream = stream

    def __iter__(self) -> Iterator[dict[str, Any]]:
        expired = False
        try:
            yield from self._stream
        except ApiException as err:
            if err.status == HTTP_GONE:
                expired = True
                self._store.reset_resource_version()
            raise _store_error("watch secrets", err) from err
        except HTTPError as err:
            raise _store_error("watch secrets", err) from err
        finally:
            # The watcher still holds the version it was opened with after a 410
            if not expired:
                self._store.remember_resource_version(self._watcher.resource_version)

    def stop(self) -> None:
        self._watcher.stop()


class KubeSecretStore:
    """SecretStore backed by the Kubernetes CoreV1 API.

    Every call is serialized by a single lock held only for the duration
    of the underlying API call.

    Attributes:
        dry_run: If True, mutating calls are validated by the API server
                 without being persisted.

    """

    def __init__(self, api: client.CoreV1Api, *, dry_run: bool = False) -> None:
        self.api: client.CoreV1Api = api
        self.dry_run: bool = dry_run
        self._lock = threading.Lock()
        self._resource_version: str = ""

    @classmethod
    def from_settings(cls, settings: Settings) -> "KubeSecretStore":
        """Configure the Kubernetes client and build a store.

        Raises:
            ClusterConnectionError: If the Kubernetes configuration is unusable.

        """
        load_kube_config(settings)
        if settings.dry_run:
            console.warning("Dry run mode: cluster changes are validated but not persisted")
        return cls(client.CoreV1Api(), dry_run=settings.dry_run)

    def __repr__(self) -> str:
        return f"KubeSecretStore(dry_run={self.dry_run!r}, resource_version={self._resource_version!r})"

    @property
    def resource_version(self) -> str:
        return self._resource_version

    def remember_resource_version(self, resource_version: str | None) -> None:
        if resource_version:
            self._resource_version = resource_version

    def reset_resource_version(self) -> None:
        """Forget the resource version after the API server expired it."""
        console.warning("Watch resource version expired, resuming from the current state")
        self._resource_version = ""

    def _mutation_kwargs(self) -> dict[str, str]:
        return {"dry_run": "All"} if self.dry_run else {}

    def list(self, label_selector: str) -> list[client.V1Secret]:
        """List secrets in all namespaces matching a label selector.

        Raises:
            StoreError: If the API call fails.

        """
        with self._lock:
            try:
                secret_list = self.api.list_secret_for_all_namespaces(label_selector=label_selector)
            except (ApiException, MaxRetryError) as err:
                raise _store_error("list secrets", err) from err
            self.remember_resource_version(secret_list.metadata.resource_version)
        ic(self._resource_version)
        return list(secret_list.items)

    def watch(self, label_selector: str) -> KubeSecretWatch:
        """Open a watch on matching secrets from the last seen resource version.

        The HTTP request is sent on first iteration; connection failures
        are raised from there as StoreError.
        """
        with self._lock:
            watcher = watch.Watch()
            kwargs: dict[str, Any] = {
                "label_selector": label_selector,
                "timeout_seconds": WATCH_TIMEOUT_SECONDS,
            }
            if self._resource_version:
                kwargs["resource_version"] = self._resource_version
            ic(kwargs)
            stream = watcher.stream(self.api.list_secret_for_all_namespaces, **kwargs)
        return KubeSecretWatch(self, watcher, stream)

    def create(self, secret: client.V1Secret) -> None:
        """Create a secret.

        Raises:
            StoreError: If the API call fails.

        """
        with self._lock:
            try:
                self.api.create_namespaced_secret(
                    namespace=secret.metadata.namespace,
                    body=secret,
                    **self._mutation_kwargs(),
                )
            except (ApiException, MaxRetryError) as err:
                raise _store_error(f"create secret {secret.metadata.namespace}/{secret.metadata.name}", err) from err

    def update(self, secret: client.V1Secret) -> None:
        """Replace a secret, failing with 409 if it changed since it was read.

        Raises:
            StoreError: If the API call fails.

        """
        with self._lock:
            try:
                self.api.replace_namespaced_secret(
                    name=secret.metadata.name,
                    namespace=secret.metadata.namespace,
                    body=secret,
                    **self._mutation_kwargs(),
                )
            except (ApiException, MaxRetryError) as err:
                raise _store_error(f"update secret {secret.metadata.namespace}/{secret.metadata.name}", err) from err

    def delete(self, namespace: str, name: str) -> None:
        """Delete a secret.

        Raises:
            StoreError: If the API call fails.

        """
        with self._lock:
            try:
                self.api.delete_namespaced_secret(name=name, namespace=namespace, **self._mutation_kwargs())
            except (ApiException, MaxRetryError) as err:
                raise _store_error(f"delete secret {namespace}/{name}", err) from err
