"""Vault backend session and secret resolution.

This module provides the VaultSource class which owns the Kubernetes auth
login against Vault, keeps the session alive by logging in again before the
lease expires, and resolves mapping entries into secret data.
"""

import base64
import json
import threading
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Any

import hvac
import requests
from hvac.exceptions import VaultError as HvacError
from icecream import ic
from tenacity import RetryCallState, Retrying, retry_if_exception_type, wait_exponential

from vault_secret_syncer import console
from vault_secret_syncer.config import Settings
from vault_secret_syncer.exceptions import SecretResolutionError, VaultLoginError, VaultReadError
from vault_secret_syncer.models import MappingEntry, VaultRef, secret_key
from vault_secret_syncer.notify import TelegramNotifier

# Data key of kubernetes.io/dockerconfigjson secrets
DOCKER_CONFIG_KEY = ".dockerconfigjson"

# Renewal happens this many seconds before the lease expires
RENEW_MARGIN = 10
_MIN_RENEW_DELAY = 1.0
_RETRY_MIN = 1.0
_RETRY_MAX = 60.0

_CLIENT_TIMEOUT = 60


@dataclass(frozen=True, slots=True)
class VaultSession:
    """An authenticated Vault client and the lease it was issued.

    Attributes:
        client: The authenticated hvac client.
        lease_duration: Lease duration in seconds granted by Vault (0 = no expiry).
        acquired_at: ``time.monotonic()`` when the login completed.

    """

    client: Any
    lease_duration: int
    acquired_at: float

    @property
    def expires_at(self) -> float:
        return self.acquired_at + self.lease_duration

    @property
    def renew_in(self) -> float:
        """Seconds to wait after acquisition before logging in again."""
        return max(self.lease_duration - RENEW_MARGIN, _MIN_RENEW_DELAY)


def render_value(value: Any) -> bytes:
    """Render a Vault field value as bytes.

    Strings are used as is, booleans become ``true``/``false``, mappings and
    lists are JSON-encoded and every other scalar uses its text form.

    Args:
        value: The decoded JSON value of the field.

    Returns:
        The UTF-8 encoded text form of the value.

    """
    if isinstance(value, str):
        text = value
    elif isinstance(value, bool):
        text = "true" if value else "false"
    elif isinstance(value, dict | list):
        text = json.dumps(value)
    else:
        text = str(value)
    return text.encode()


def compose_docker_config(host: bytes, username: bytes, password: bytes) -> bytes:
    """Build a ``.dockerconfigjson`` document for a single registry.

    Args:
        host: Registry host name.
        username: Registry user name.
        password: Registry password.

    Returns:
        The JSON document with the base64 encoded ``user:password`` pair.

    """
    auth = base64.b64encode(username + b":" + password).decode()
    return json.dumps({"auths": {host.decode(): {"auth": auth}}}).encode()


class VaultSource:
    """Backend session owner and resolver of desired secret data.

    Attributes:
        settings: Process settings (Vault address, role, token path).
        notifier: Sink for read and login failure alerts.

    """

    def __init__(
        self,
        settings: Settings,
        mapping: Mapping[str, MappingEntry],
        notifier: TelegramNotifier,
        *,
        client_factory: Callable[..., Any] = hvac.Client,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings: Settings = settings
        self.notifier: TelegramNotifier = notifier
        self._mapping: dict[str, MappingEntry] = dict(mapping)
        self._mapping_lock = threading.Lock()
        self._client_factory = client_factory
        self._clock = clock
        self._session: VaultSession | None = None
        self._healthy: bool = False
        self._stop_event: threading.Event = threading.Event()
        self._thread: threading.Thread | None = None

    def __repr__(self) -> str:
        return f"VaultSource(addr={self.settings.vault_addr!r}, role={self.settings.vault_role!r})"

    @property
    def session(self) -> VaultSession | None:
        """The current session; replaced as a whole on every login."""
        return self._session

    @property
    def healthy(self) -> bool:
        """False once a lease expired without a successful renewal."""
        return self._healthy

    def login(self) -> VaultSession:
        """Authenticate against Vault with the Kubernetes auth method.

        Returns:
            A new VaultSession.

        Raises:
            VaultLoginError: If the token cannot be read or Vault rejects the login.

        """
        try:
            jwt = Path(self.settings.token_path).read_text().strip()
        except OSError as err:
            raise VaultLoginError(
                f"Unable to read service account token '{self.settings.token_path}': {err.strerror}"
            ) from err

        client = self._client_factory(url=self.settings.vault_addr, timeout=_CLIENT_TIMEOUT)
        try:
            response = client.auth.kubernetes.login(role=self.settings.vault_role, jwt=jwt)
        except (HvacError, requests.RequestException) as err:
            raise VaultLoginError(f"Unable to log in with Kubernetes auth: {err}") from err

        auth = response.get("auth") if isinstance(response, dict) else None
        if not auth:
            raise VaultLoginError("No auth info was returned after login")

        return VaultSession(
            client=client,
            lease_duration=int(auth.get("lease_duration") or 0),
            acquired_at=self._clock(),
        )

    def start(self, stop_event: threading.Event) -> None:
        """Log in and start the background renewal thread.

        Args:
            stop_event: Shared cancellation signal.

        Raises:
            VaultLoginError: If the initial login fails.

        """
        self._stop_event = stop_event
        self._session = self.login()
        self._healthy = True
        console.success(f"Vault login success. lease duration: {self._session.lease_duration}s")
        self.init_notifier()

        self._thread = threading.Thread(target=self.renewal_loop, name="vault-renewal", daemon=True)
        self._thread.start()

    def join(self, timeout: float | None = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def renewal_loop(self) -> None:
        """Log in again shortly before each lease expires until stopped."""
        console.info("Vault renewal loop started")
        while True:
            session = self._session
            if session is None:
                break
            if session.lease_duration <= 0:
                console.info("Vault lease does not expire, session renewal disabled")
                self._stop_event.wait()
                break
            if self._stop_event.wait(session.renew_in):
                break
            if not self._renew(session):
                break
        console.info("Vault renewal loop finished")

    def _login_unless_stopped(self) -> VaultSession | None:
        if self._stop_event.is_set():
            return None
        return self.login()

    def _renewal_failed(self, previous: VaultSession, retry_state: RetryCallState) -> None:
        message = f"Vault session renewal failed: {retry_state.outcome.exception()}"
        console.error(message)
        self.notifier.send(message)
        if self._healthy and self._clock() >= previous.expires_at:
            self._healthy = False
            console.error("Vault lease expired without renewal; reads fail until login succeeds")

    def _renew(self, previous: VaultSession) -> bool:
        """Replace the session, retrying with backoff while the old one keeps serving.

        Returns:
            True once a new session is in place, False if stopped first.

        """
        retrying = Retrying(
            retry=retry_if_exception_type(VaultLoginError),
            wait=wait_exponential(multiplier=_RETRY_MIN, min=_RETRY_MIN, max=_RETRY_MAX),
            stop=lambda _state: self._stop_event.is_set(),
            sleep=self._stop_event.wait,
            before_sleep=lambda retry_state: self._renewal_failed(previous, retry_state),
            reraise=True,
        )
        try:
            session = retrying(self._login_unless_stopped)
        except VaultLoginError:
            return False
        if session is None:
            return False

        self._session = session
        self._healthy = True
        console.success(f"Vault session renewed. lease duration: {session.lease_duration}s")
        return True

    def _read_document(self, mount: str, path: str) -> dict[str, Any]:
        session = self._session
        if session is None:
            raise VaultReadError("Vault session is not established")
        try:
            response = session.client.secrets.kv.v2.read_secret_version(
                path=path,
                mount_point=mount,
                raise_on_deleted_version=True,
            )
        except (HvacError, requests.RequestException) as err:
            raise VaultReadError(f"unable to read secret {mount}/{path}: {err}") from err
        try:
            document = response["data"]["data"]
        except (KeyError, TypeError) as err:
            raise VaultReadError(f"unable to read secret {mount}/{path}: malformed response") from err
        if not isinstance(document, dict):
            raise VaultReadError(f"unable to read secret {mount}/{path}: malformed response")
        return document

    def read(self, ref: VaultRef, *, owner: str = "") -> bytes:
        """Read one field of a Vault KV v2 document.

        Args:
            ref: The mount, path and field to read.
            owner: ``namespace/name`` of the secret being resolved, for logs.

        Returns:
            The field value as bytes.

        Raises:
            VaultReadError: If the document or the field cannot be read.
                The failure is logged and sent to the notifier.

        """
        console.debug(f"{owner} read {ref}")
        try:
            document = self._read_document(ref.mount, ref.path)
            if ref.key not in document:
                raise VaultReadError(f"unable to read secret {ref}: key not found")
            return render_value(document[ref.key])
        except VaultReadError as err:
            message = f"{owner}: {err}" if owner else str(err)
            console.error(message)
            self.notifier.send(message)
            raise

    def is_managed(self, key: str) -> bool:
        """Check whether ``namespace/name`` is declared in the mapping."""
        with self._mapping_lock:
            return key in self._mapping

    def _entry(self, namespace: str, name: str) -> MappingEntry | None:
        with self._mapping_lock:
            return self._mapping.get(secret_key(namespace, name))

    def snapshot(self) -> Mapping[str, MappingEntry]:
        """Return an immutable copy of the desired-state mapping."""
        with self._mapping_lock:
            return MappingProxyType(dict(self._mapping))

    def resolve(self, namespace: str, name: str) -> dict[str, bytes] | None:
        """Read every plain value of a mapping entry.

        Args:
            namespace: Secret namespace.
            name: Secret name.

        Returns:
            The secret data keyed by destination key, or None if the
            secret is not in the mapping.

        Raises:
            SecretResolutionError: If any field could not be read. The
                remaining fields are still read and returned as ``partial``.

        """
        entry = self._entry(namespace, name)
        if entry is None:
            return None

        data: dict[str, bytes] = {}
        failures: list[VaultReadError] = []
        for spec in entry.values:
            try:
                data[spec.destination] = self.read(spec.ref, owner=entry.key)
            except VaultReadError as err:
                failures.append(err)

        if failures:
            raise SecretResolutionError(entry.key, failures, partial=data)
        return data

    def resolve_docker(self, namespace: str, name: str) -> dict[str, bytes] | None:
        """Compose the ``.dockerconfigjson`` data of a docker registry entry.

        Args:
            namespace: Secret namespace.
            name: Secret name.

        Returns:
            The secret data, or None if the secret is not in the mapping.

        Raises:
            SecretResolutionError: On the first field that cannot be read.

        """
        entry = self._entry(namespace, name)
        if entry is None:
            return None
        if entry.registry is None:
            raise SecretResolutionError(
                entry.key, [VaultReadError(f"{entry.key} has no docker registry value")]
            )

        fields: dict[str, bytes] = {}
        for field_name in ("host", "username", "password"):
            try:
                fields[field_name] = self.read(entry.registry.field_ref(field_name), owner=entry.key)
            except VaultReadError as err:
                raise SecretResolutionError(entry.key, [err]) from err

        return {DOCKER_CONFIG_KEY: compose_docker_config(fields["host"], fields["username"], fields["password"])}

    def init_notifier(self) -> None:
        """Load Telegram credentials from Vault into the notifier.

        Failures are logged and leave the notifier as configured.
        """
        location = self.settings.telegram_secret
        if not location:
            return
        mount, _, path = location.partition("/")
        try:
            document = self._read_document(mount, path)
            chat_id = int(document["channel"])
            token = str(document["token"])
        except (VaultReadError, KeyError, TypeError, ValueError) as err:
            console.warning(f"Init telegram failed: {err}")
            return
        ic(chat_id)
        self.notifier.configure(chat_id, token)
        console.info("Telegram initialized")
