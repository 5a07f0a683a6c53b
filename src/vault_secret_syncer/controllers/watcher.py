"""Event-driven reconciliation.

The WatchController keeps a watch open on managed secrets and reconciles
each added or modified secret as soon as the API server reports it. A
closed or failed watch is reopened after a short delay, forever.
"""

import threading
from typing import Any

from kubernetes import client

from vault_secret_syncer import console
from vault_secret_syncer.cluster import SecretWatch
from vault_secret_syncer.exceptions import StoreError
from vault_secret_syncer.models import secret_key
from vault_secret_syncer.reconciler import KubeRepo

# Delay between a disconnect and the next watch attempt
RESTART_DELAY = 1.0

_RECONCILED_EVENTS = ("ADDED", "MODIFIED")


class WatchController:
    """Event driver: reconciles secrets from a watch stream.

    Attributes:
        repo: The reconciler.
        restart_delay: Seconds to wait before reopening a watch.

    """

    def __init__(self, repo: KubeRepo, *, stop_event: threading.Event, restart_delay: float = RESTART_DELAY) -> None:
        self.repo: KubeRepo = repo
        self.restart_delay: float = restart_delay
        self._stop_event = stop_event
        self._active: SecretWatch | None = None
        self._active_lock = threading.Lock()
        self._thread: threading.Thread | None = None

    def __repr__(self) -> str:
        return f"WatchController(restart_delay={self.restart_delay!r})"

    def handle_event(self, event: dict[str, Any]) -> None:
        """Reconcile the secret of an added or modified event; ignore others."""
        event_type = event.get("type")
        if event_type not in _RECONCILED_EVENTS:
            console.debug(f"Ignoring {event_type} event")
            return
        secret = event.get("object")
        if not isinstance(secret, client.V1Secret):
            console.error(f"Unexpected watch object {type(secret).__name__} in {event_type} event")
            return
        console.info(f"{secret_key(secret.metadata.namespace, secret.metadata.name)} added or modified")
        self.repo.reconcile_one(secret)

    def watch(self) -> None:
        """Consume one watch connection until it closes or the controller stops."""
        try:
            stream = self.repo.store.watch(self.repo.label_selector)
        except StoreError as err:
            console.error(f"WatchController cannot open watch: {err}")
            return

        with self._active_lock:
            self._active = stream
        if self._stop_event.is_set():
            stream.stop()

        console.info("WatchController watching")
        try:
            for event in stream:
                if self._stop_event.is_set():
                    console.info("Exit from watcher because the controller is stopping")
                    return
                try:
                    self.handle_event(event)
                except Exception:
                    console.exception("Failed to handle watch event")
            if not self._stop_event.is_set():
                console.warning("WatchController hung up on us, need restart event watcher")
        except StoreError as err:
            console.error(f"WatchController watch failed: {err}")
        finally:
            stream.stop()
            with self._active_lock:
                self._active = None

    def run(self) -> None:
        """Supervisor body: one watching thread per connection attempt."""
        console.info("WatchController start")
        while not self._stop_event.is_set():
            worker = threading.Thread(target=self.watch, name="secret-watch", daemon=True)
            worker.start()
            worker.join()
            if self._stop_event.wait(self.restart_delay):
                break
        console.info("WatchController finished")

    def start(self) -> None:
        self._thread = threading.Thread(target=self.run, name="watch-controller", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """Cancel the controller and release the open watch."""
        self._stop_event.set()
        with self._active_lock:
            if self._active is not None:
                self._active.stop()

    def join(self, timeout: float | None = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)
