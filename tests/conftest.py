"""Shared test fixtures for vault-secret-syncer tests."""

import base64
import copy
import threading
import time
from unittest.mock import MagicMock, patch

import pytest
from hvac.exceptions import InvalidPath
from kubernetes import client

from vault_secret_syncer import console
from vault_secret_syncer.config import Settings
from vault_secret_syncer.exceptions import StoreError
from vault_secret_syncer.notify import TelegramNotifier
from vault_secret_syncer.reconciler import KubeRepo
from vault_secret_syncer.secrets.mapping import parse_entry
from vault_secret_syncer.secrets.vault import VaultSource

LABEL_KEY = "vault-injector/sync"


def wait_for(predicate, timeout=5.0, interval=0.01):
    """Poll until predicate() is truthy; return its last value."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return bool(predicate())


def make_secret(namespace, name, data=None, *, secret_type="Opaque", labels=None):
    """Build a V1Secret as the API server would return it (base64 data)."""
    return client.V1Secret(
        api_version="v1",
        kind="Secret",
        metadata=client.V1ObjectMeta(
            name=name,
            namespace=namespace,
            labels={LABEL_KEY: "true"} if labels is None else labels,
        ),
        type=secret_type,
        data={key: base64.b64encode(value).decode() for key, value in data.items()} if data else None,
    )


def secret_data(secret):
    """Decode the data of a V1Secret."""
    return {key: base64.b64decode(value) for key, value in (secret.data or {}).items()}


class FakeWatch:
    """Watch stream yielding a fixed list of events.

    With ``hold=True`` the stream stays open after the events until stopped.
    """

    def __init__(self, events, *, hold=False):
        self.events = list(events)
        self.hold = hold
        self.stopped = threading.Event()

    def __iter__(self):
        for event in self.events:
            if self.stopped.is_set():
                return
            yield event
        if self.hold:
            self.stopped.wait(5)

    def stop(self):
        self.stopped.set()


class FakeSecretStore:
    """In-memory SecretStore recording every mutating call."""

    def __init__(self):
        self.secrets = {}
        self.calls = []
        self.failures = {}
        self.watches = []
        self.watch_error = None
        self.watch_calls = 0
        self._lock = threading.Lock()

    def add(self, secret):
        self.secrets[f"{secret.metadata.namespace}/{secret.metadata.name}"] = secret

    def get(self, namespace, name):
        return self.secrets.get(f"{namespace}/{name}")

    def count(self, operation):
        return sum(1 for op, _ in self.calls if op == operation)

    def _record(self, operation, key):
        self.calls.append((operation, key))
        error = self.failures.get((operation, key))
        if error is not None:
            raise error

    def list(self, label_selector):
        with self._lock:
            label, _, value = label_selector.partition("=")
            return [
                copy.deepcopy(secret)
                for secret in self.secrets.values()
                if (secret.metadata.labels or {}).get(label) == value
            ]

    def watch(self, label_selector):
        self.watch_calls += 1
        if self.watch_error is not None:
            raise self.watch_error
        if not self.watches:
            return FakeWatch([], hold=True)
        item = self.watches.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def create(self, secret):
        with self._lock:
            key = f"{secret.metadata.namespace}/{secret.metadata.name}"
            self._record("create", key)
            if key in self.secrets:
                raise StoreError(f"{key} already exists", status=409)
            self.secrets[key] = copy.deepcopy(secret)

    def update(self, secret):
        with self._lock:
            key = f"{secret.metadata.namespace}/{secret.metadata.name}"
            self._record("update", key)
            if key not in self.secrets:
                raise StoreError(f"{key} not found", status=404)
            self.secrets[key] = copy.deepcopy(secret)

    def delete(self, namespace, name):
        with self._lock:
            key = f"{namespace}/{name}"
            self._record("delete", key)
            if key not in self.secrets:
                raise StoreError(f"{key} not found", status=404)
            del self.secrets[key]


class FakeVaultBackend:
    """Stands in for the Vault server behind a mocked hvac client."""

    def __init__(self):
        self.documents = {}
        self.lease_duration = 3600
        self.login_error = None
        self.logins = 0
        self.clients = []

    def client_factory(self, url, timeout):
        vault_client = MagicMock(name="hvac.Client")
        vault_client.url = url
        vault_client.auth.kubernetes.login.side_effect = self._login
        vault_client.secrets.kv.v2.read_secret_version.side_effect = self._read
        self.clients.append(vault_client)
        return vault_client

    def _login(self, role, jwt):
        if self.login_error is not None:
            raise self.login_error
        self.logins += 1
        return {"auth": {"client_token": f"s.token-{self.logins}", "lease_duration": self.lease_duration}}

    def _read(self, path, mount_point, raise_on_deleted_version=True):
        document = self.documents.get((mount_point, path))
        if document is None:
            raise InvalidPath(f"no document at {mount_point}/{path}")
        return {"data": {"data": dict(document), "metadata": {"version": 1}}}


@pytest.fixture(autouse=True)
def reset_log_level():
    """Restore the default log level after each test."""
    yield
    console.set_level("info")


@pytest.fixture
def token_file(tmp_path):
    """Service account token file."""
    path = tmp_path / "token"
    path.write_text("service-account-jwt\n")
    return path


@pytest.fixture
def settings(tmp_path, token_file):
    """Settings for running outside a cluster."""
    return Settings(
        in_cluster=False,
        token_path=str(token_file),
        secret_map=str(tmp_path / "map.yaml"),
        telegram_secret="",
        interval=60,
        http_addr="127.0.0.1:0",
    )


@pytest.fixture
def backend():
    """Fake Vault server."""
    return FakeVaultBackend()


@pytest.fixture
def notifier():
    """Notifier double."""
    return MagicMock(spec=TelegramNotifier)


@pytest.fixture
def stop_event():
    """Shared cancellation signal, set on teardown."""
    event = threading.Event()
    yield event
    event.set()


@pytest.fixture
def make_vault(settings, backend, notifier, stop_event):
    """Factory for VaultSource instances over the fake backend."""

    def _make(mapping, *, start=True, **kwargs):
        entries = {}
        for key, specs in mapping.items():
            entry = parse_entry(key, specs)
            entries[entry.key] = entry
        vault = VaultSource(settings, entries, notifier, client_factory=backend.client_factory, **kwargs)
        if start:
            vault.start(stop_event)
        return vault

    return _make


@pytest.fixture
def store():
    """In-memory secret store."""
    return FakeSecretStore()


@pytest.fixture
def make_repo(settings, store, make_vault):
    """Factory for a KubeRepo over the fake store and fake Vault."""

    def _make(mapping):
        return KubeRepo(settings, store, make_vault(mapping))

    return _make


@pytest.fixture
def fast_renewal():
    """Shrink the renewal and retry delays so lease tests run quickly."""
    with (
        patch("vault_secret_syncer.secrets.vault._MIN_RENEW_DELAY", 0.01),
        patch("vault_secret_syncer.secrets.vault._RETRY_MIN", 0.01),
        patch("vault_secret_syncer.secrets.vault._RETRY_MAX", 0.05),
    ):
        yield
