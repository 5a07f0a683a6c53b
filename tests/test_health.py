"""Tests for health.py module."""

from unittest.mock import MagicMock

import pytest
import requests

from vault_secret_syncer.health import HealthServer


@pytest.fixture
def health():
    """Health server on a free local port with controllable state."""
    state = {"healthy": True}
    force_update = MagicMock()
    server = HealthServer(
        "127.0.0.1",
        0,
        is_healthy=lambda: state["healthy"],
        force_update=force_update,
        prefix="/syncer/",
    )
    server.start()
    yield server, state, force_update
    server.stop()


@pytest.fixture
def http():
    """HTTP session that ignores proxy settings from the environment."""
    session = requests.Session()
    session.trust_env = False
    yield session
    session.close()


def url(server, path):
    return f"http://127.0.0.1:{server.server_port}{path}"


class TestHealthServer:
    """Tests for the HTTP routes."""

    def test_healthy(self, health, http):
        """Test 200 while the Vault session is usable."""
        server, _, _ = health

        response = http.get(url(server, "/syncer/healthz"), timeout=5)

        assert response.status_code == 200
        assert response.text == "ok"

    def test_unhealthy(self, health, http):
        """Test 503 once the session expired."""
        server, state, _ = health
        state["healthy"] = False

        response = http.get(url(server, "/syncer/healthz"), timeout=5)

        assert response.status_code == 503

    def test_ready(self, health, http):
        """Test the readiness route."""
        server, _, _ = health

        assert http.get(url(server, "/syncer/readyz"), timeout=5).status_code == 200

    def test_sync(self, health, http):
        """Test that POST /sync requests a force update."""
        server, _, force_update = health

        response = http.post(url(server, "/syncer/sync"), timeout=5)

        assert response.status_code == 202
        force_update.assert_called_once()

    @pytest.mark.parametrize("path", ["/healthz", "/syncer/metrics"])
    def test_unknown_route(self, health, http, path):
        """Test that routes outside the prefix are not found."""
        server, _, _ = health

        assert http.get(url(server, path), timeout=5).status_code == 404

    def test_stop_is_idempotent(self):
        """Test that stopping a server that never started is a no-op."""
        HealthServer("127.0.0.1", 0, is_healthy=lambda: True, force_update=lambda: None).stop()
