"""Periodic full reconciliation.

The LoopController runs a full update-then-create pass on a fixed interval,
or earlier when a force update is requested.
"""

import threading

from vault_secret_syncer import console
from vault_secret_syncer.exceptions import StoreError
from vault_secret_syncer.models import PassResult
from vault_secret_syncer.reconciler import KubeRepo
from vault_secret_syncer.secrets.vault import VaultSource


class LoopController:
    """Poll driver: reconciles every managed secret on a timer.

    Attributes:
        repo: The reconciler.
        vault: Source of the mapping snapshot.
        interval: Seconds between passes.

    """

    def __init__(self, repo: KubeRepo, vault: VaultSource, *, interval: float, stop_event: threading.Event) -> None:
        self.repo: KubeRepo = repo
        self.vault: VaultSource = vault
        self.interval: float = interval
        self._stop_event = stop_event
        self._wakeup = threading.Event()
        self._forced = threading.Event()
        self._thread: threading.Thread | None = None

    def __repr__(self) -> str:
        return f"LoopController(interval={self.interval!r})"

    def _finish(self, label: str, result: PassResult) -> PassResult:
        if result.ok:
            console.info(f"{label} finish ({result}, total={result.total})")
        else:
            console.warning(f"{label} finish with errors ({result}, total={result.total})")
        return result

    def update_secret_list(self) -> PassResult | None:
        """Update or delete every managed secret.

        Returns:
            The pass result, or None if the pass could not run.

        """
        console.info("UpdateSecretList start")
        try:
            result = self.repo.reconcile_existing(self.repo.list_managed())
        except StoreError as err:
            console.error(f"UpdateSecretList failed: {err}")
            return None
        except Exception:
            console.exception("UpdateSecretList failed unexpectedly")
            return None
        return self._finish("UpdateSecretList", result)

    def create_secret_list(self) -> PassResult | None:
        """Create every mapped secret that is missing from the cluster.

        Returns:
            The pass result, or None if the pass could not run.

        """
        console.info("CreateSecretList start")
        try:
            result = self.repo.reconcile_missing(self.repo.list_managed(), self.vault.snapshot())
        except StoreError as err:
            console.error(f"CreateSecretList failed: {err}")
            return None
        except Exception:
            console.exception("CreateSecretList failed unexpectedly")
            return None
        return self._finish("CreateSecretList", result)

    def force_update(self) -> None:
        """Run a pass now instead of waiting for the next tick."""
        self._forced.set()
        self._wakeup.set()

    def run(self) -> None:
        """Controller body; returns once the stop event is set."""
        console.info("LoopController start")
        self.create_secret_list()
        while not self._stop_event.is_set():
            self._wakeup.wait(self.interval)
            self._wakeup.clear()
            if self._stop_event.is_set():
                break
            if self._forced.is_set():
                self._forced.clear()
                console.info("force update")
            else:
                console.info("ticker update")
            self.update_secret_list()
            self.create_secret_list()
        console.info("LoopController finished")

    def start(self) -> None:
        self._thread = threading.Thread(target=self.run, name="loop-controller", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """Cancel the loop; ticks that have not started are dropped."""
        self._stop_event.set()
        self._wakeup.set()

    def join(self, timeout: float | None = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)
