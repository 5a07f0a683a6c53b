"""Tests for core/syncer.py module."""

from unittest.mock import patch

import pytest
from conftest import make_secret, secret_data, wait_for
from kubernetes.config.config_exception import ConfigException

from vault_secret_syncer import __version__
from vault_secret_syncer.core.syncer import Syncer
from vault_secret_syncer.exceptions import ClusterConnectionError, MappingError


@pytest.fixture
def syncer_factory(settings, store, make_vault, notifier):
    """Build a Syncer over the fake store and fake Vault."""
    created = []

    def _make(mapping, **kwargs):
        syncer = Syncer(
            settings,
            store=store,
            vault=make_vault(mapping, start=False),
            notifier=notifier,
            serve_health=False,
            **kwargs,
        )
        created.append(syncer)
        return syncer

    yield _make
    for syncer in created:
        syncer.stop()


class TestSyncerLifecycle:
    """Tests for start, force update and stop."""

    def test_start_announces_version(self, syncer_factory, notifier):
        """Test that the startup message is logged and sent."""
        syncer = syncer_factory({})

        syncer.start()

        notifier.start.assert_called_once()
        notifier.send.assert_any_call(f"vault-secret-syncer starting. Version: {__version__}")

    def test_converges(self, syncer_factory, store, backend):
        """Test that the running syncer creates and fills mapped secrets."""
        backend.documents[("secretv2", "team-a/db")] = {"password": "s3cr3t"}
        store.add(make_secret("team-z", "orphan"))
        syncer = syncer_factory({"team-a/db-cred": ["password:secretv2/team-a/db:password"]})

        syncer.start()
        assert wait_for(lambda: store.get("team-a", "db-cred") is not None)
        syncer.force_update()

        assert wait_for(lambda: secret_data(store.get("team-a", "db-cred")) == {"password": b"s3cr3t"})
        assert wait_for(lambda: store.get("team-z", "orphan") is None)

    def test_stop(self, syncer_factory, notifier):
        """Test that stop ends every background task."""
        syncer = syncer_factory({})
        syncer.start()

        syncer.stop()

        assert syncer.wait(timeout=0)
        assert not syncer.loop._thread.is_alive()
        assert not syncer.watcher._thread.is_alive()
        assert not syncer.vault._thread.is_alive()
        notifier.stop.assert_called_once()

    def test_context_manager_stops(self, syncer_factory):
        """Test that leaving the context stops the syncer."""
        with syncer_factory({}) as syncer:
            syncer.start()

        assert syncer.stop_event.is_set()


class TestSyncerConstruction:
    """Tests for building components from settings."""

    def test_missing_secret_map(self, settings, store, notifier):
        """Test that a missing secret map fails construction."""
        with pytest.raises(MappingError):
            Syncer(settings, store=store, notifier=notifier, serve_health=False)

    def test_cluster_config_failure(self, settings, notifier, tmp_path):
        """Test that an unusable Kubernetes config fails construction."""
        (tmp_path / "map.yaml").write_text("")

        with patch("kubernetes.config.load_kube_config") as mock_load:
            mock_load.side_effect = ConfigException("Invalid kube-config file.")
            with pytest.raises(ClusterConnectionError):
                Syncer(settings, notifier=notifier, serve_health=False)

    def test_health_server_wired(self, settings, store, make_vault, notifier):
        """Test that the health endpoint reports the Vault session state."""
        syncer = Syncer(settings, store=store, vault=make_vault({}, start=False), notifier=notifier)

        assert syncer.health is not None
        assert syncer.health.host == "127.0.0.1"
        assert syncer.health._is_healthy() is False
