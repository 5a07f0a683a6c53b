"""Syncer facade class.

This module provides the Syncer class which composes every component from
explicit settings and owns their lifecycle: start, force update, stop.
"""

import threading

from vault_secret_syncer import __version__, console
from vault_secret_syncer.cluster import KubeSecretStore, SecretStore
from vault_secret_syncer.config import Settings
from vault_secret_syncer.controllers.loop import LoopController
from vault_secret_syncer.controllers.watcher import WatchController
from vault_secret_syncer.health import HealthServer
from vault_secret_syncer.notify import TelegramNotifier
from vault_secret_syncer.reconciler import KubeRepo
from vault_secret_syncer.secrets.mapping import parse_mapping_file
from vault_secret_syncer.secrets.vault import VaultSource

# Upper bound on how long shutdown waits for each background thread
_JOIN_TIMEOUT = 5.0


class Syncer:
    """Wires the notifier, Vault source, secret store, reconciler and drivers.

    Attributes:
        settings: Process settings.
        stop_event: Cancellation signal shared by every background task.
        notifier: Telegram alert sink.
        vault: Backend session owner.
        store: Cluster secret storage.
        repo: Reconciler.
        loop: Poll driver.
        watcher: Event driver.
        health: Liveness endpoint, or None when disabled.

    """

    def __init__(
        self,
        settings: Settings,
        *,
        store: SecretStore | None = None,
        vault: VaultSource | None = None,
        notifier: TelegramNotifier | None = None,
        serve_health: bool = True,
    ) -> None:
        """Build every component.

        Raises:
            MappingError: If the secret map cannot be parsed.
            ClusterConnectionError: If the Kubernetes client cannot be configured.

        """
        self.settings: Settings = settings
        self.stop_event = threading.Event()
        self.notifier: TelegramNotifier = notifier or TelegramNotifier(
            settings.telegram_channel, settings.telegram_token
        )
        self.vault: VaultSource = vault or VaultSource(
            settings, parse_mapping_file(settings.secret_map), self.notifier
        )
        self.store: SecretStore = store or KubeSecretStore.from_settings(settings)
        self.repo = KubeRepo(settings, self.store, self.vault)
        self.loop = LoopController(self.repo, self.vault, interval=settings.interval, stop_event=self.stop_event)
        self.watcher = WatchController(self.repo, stop_event=self.stop_event)
        self.health: HealthServer | None = None
        if serve_health:
            host, port = settings.http_host_port
            self.health = HealthServer(
                host,
                port,
                is_healthy=lambda: self.vault.healthy,
                force_update=self.loop.force_update,
                prefix=settings.http_route_prefix,
            )

    def __enter__(self) -> "Syncer":
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: object) -> None:
        self.stop()

    def __repr__(self) -> str:
        return f"Syncer(vault={self.vault!r}, store={self.store!r})"

    def start(self) -> None:
        """Log in to Vault and start every background task.

        Raises:
            VaultLoginError: If the initial Vault login fails.

        """
        self.notifier.start()
        self.vault.start(self.stop_event)
        if self.health is not None:
            self.health.start()

        message = f"vault-secret-syncer starting. Version: {__version__}"
        console.info(message)
        self.notifier.send(message)

        self.loop.start()
        self.watcher.start()

    def force_update(self) -> None:
        self.loop.force_update()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the syncer is stopped."""
        return self.stop_event.wait(timeout)

    def stop(self) -> None:
        """Cancel every background task and wait for them to exit."""
        console.info("Stopping vault-secret-syncer")
        self.loop.stop()
        self.watcher.stop()
        self.stop_event.set()
        if self.health is not None:
            self.health.stop()
        for component in (self.loop, self.watcher, self.vault):
            component.join(_JOIN_TIMEOUT)
        self.notifier.stop(_JOIN_TIMEOUT)
