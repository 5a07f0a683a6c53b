"""HTTP liveness endpoint.

Routes (below the configured prefix):
    - GET /healthz: 200 while the Vault session is usable, 503 otherwise
    - GET /readyz: 200 once the server is up
    - POST /sync: request an immediate reconciliation pass (202)
"""

import threading
from collections.abc import Callable
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

from vault_secret_syncer import console


class HealthServer:
    """Serves the liveness endpoint in a background thread.

    Attributes:
        host: Listen host.
        port: Listen port.
        prefix: Path prefix for every route.

    """

    def __init__(
        self,
        host: str,
        port: int,
        *,
        is_healthy: Callable[[], bool],
        force_update: Callable[[], None],
        prefix: str = "",
    ) -> None:
        self.host: str = host
        self.port: int = port
        self.prefix: str = prefix.rstrip("/")
        self._is_healthy = is_healthy
        self._force_update = force_update
        self._server: ThreadingHTTPServer | None = None
        self._thread: threading.Thread | None = None

    def __repr__(self) -> str:
        return f"HealthServer(host={self.host!r}, port={self.port!r}, prefix={self.prefix!r})"

    def _handler(self) -> type[BaseHTTPRequestHandler]:
        server = self

        class Handler(BaseHTTPRequestHandler):
            def _reply(self, status: HTTPStatus, body: str) -> None:
                payload = body.encode()
                self.send_response(status)
                self.send_header("Content-Type", "text/plain; charset=utf-8")
                self.send_header("Content-Length", str(len(payload)))
                self.end_headers()
                self.wfile.write(payload)

            def do_GET(self) -> None:  # noqa: N802
                if self.path == f"{server.prefix}/healthz":
                    if server._is_healthy():
                        self._reply(HTTPStatus.OK, "ok")
                    else:
                        self._reply(HTTPStatus.SERVICE_UNAVAILABLE, "vault session expired")
                elif self.path == f"{server.prefix}/readyz":
                    self._reply(HTTPStatus.OK, "ok")
                else:
                    self._reply(HTTPStatus.NOT_FOUND, "not found")

            def do_POST(self) -> None:  # noqa: N802
                if self.path == f"{server.prefix}/sync":
                    server._force_update()
                    self._reply(HTTPStatus.ACCEPTED, "sync requested")
                else:
                    self._reply(HTTPStatus.NOT_FOUND, "not found")

            def log_message(self, format: str, *args: object) -> None:  # noqa: A002
                console.debug(f"http {self.address_string()} {format % args}")

        return Handler

    @property
    def server_port(self) -> int:
        """The bound port (useful when listening on port 0)."""
        return self._server.server_address[1] if self._server else self.port

    def start(self) -> None:
        self._server = ThreadingHTTPServer((self.host, self.port), self._handler())
        self._server.daemon_threads = True
        self._thread = threading.Thread(target=self._server.serve_forever, name="health-server", daemon=True)
        self._thread.start()
        console.info(f"Health endpoint listening on {console.highlight(f'{self.host}:{self.server_port}')}")

    def stop(self) -> None:
        if self._server is None:
            return
        self._server.shutdown()
        self._server.server_close()
        self._server = None
