"""Runtime configuration for vault-secret-syncer.

Settings are resolved once at startup from, in increasing precedence,
built-in defaults, an optional YAML file, environment variables and
command-line flags, and passed explicitly to every component.
"""

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from vault_secret_syncer import console
from vault_secret_syncer.exceptions import SyncerError

DEFAULT_TOKEN_PATH = "/var/run/secrets/kubernetes.io/serviceaccount/token"
DEFAULT_VAULT_ADDR = "https://vault-active.vault.svc.cluster.local:8200"

# Nested YAML sections that are flattened into "<section>_<key>" settings
_SECTIONS = ("telegram", "http")


@dataclass(frozen=True, slots=True)
class Settings:
    """Process configuration.

    Attributes:
        log_level: Minimum level of log messages.
        dry_run: Send mutating cluster calls with server-side dry run.
        in_cluster: Use the mounted service account instead of a kubeconfig.
        kubeconfig: Kubeconfig path used when not running in cluster.
        token_path: Service account token exchanged for a Vault session.
        vault_addr: Vault server address.
        vault_role: Vault Kubernetes auth role.
        secret_label: Label prefix marking secrets managed by the syncer.
        secret_map: Path to the secret mapping file.
        interval: Seconds between full reconciliation passes.
        telegram_channel: Telegram chat id for alerts.
        telegram_token: Telegram bot token for alerts.
        telegram_secret: Vault ``mount/path`` holding Telegram credentials.
        http_addr: Listen address of the health endpoint.
        http_route_prefix: Path prefix of the health endpoint routes.

    """

    log_level: str = "info"
    dry_run: bool = False
    in_cluster: bool = True
    kubeconfig: str = ""
    token_path: str = DEFAULT_TOKEN_PATH
    vault_addr: str = DEFAULT_VAULT_ADDR
    vault_role: str = "vault-secret-syncer"
    secret_label: str = "vault-injector"
    secret_map: str = "map.yaml"
    interval: int = 900
    telegram_channel: int = 0
    telegram_token: str = field(default="", repr=False)
    telegram_secret: str = "projects/share/telegram"
    http_addr: str = ":8080"
    http_route_prefix: str = ""

    @property
    def label_key(self) -> str:
        """The label that marks a secret as managed."""
        return f"{self.secret_label}/sync"

    @property
    def label_selector(self) -> str:
        return f"{self.label_key}=true"

    @property
    def http_host_port(self) -> tuple[str, int]:
        """Split ``http_addr`` (``host:port`` or ``:port``) for the HTTP server."""
        host, _, port = self.http_addr.rpartition(":")
        return host or "0.0.0.0", int(port)  # noqa: S104 - Required for container networking


def _normalize_key(key: str) -> str:
    key = re.sub(r"(?<=[a-z0-9])([A-Z])", r"_\1", key.strip())
    return key.lower().replace("-", "_")


def flatten_config(document: dict[str, Any]) -> dict[str, Any]:
    """Flatten a config document into setting names.

    camelCase keys become snake_case, dashes become underscores, and the nested
    ``telegram`` and ``http`` sections become ``telegram_*`` and ``http_*``.

    Args:
        document: The parsed YAML document.

    Returns:
        A flat mapping of setting names to values.

    """
    flat: dict[str, Any] = {}
    for key, value in document.items():
        name = _normalize_key(str(key))
        if name in _SECTIONS and isinstance(value, dict):
            for sub_key, sub_value in value.items():
                flat[f"{name}_{_normalize_key(str(sub_key))}"] = sub_value
        else:
            flat[name] = value
    return flat


def load_config_file(config_path: str, *, required: bool = False) -> dict[str, Any]:
    """Load settings from a YAML config file.

    Args:
        config_path: Path to the config file.
        required: If False, a missing file yields an empty mapping.

    Returns:
        A flat mapping of known setting names to values. Unknown keys
        are logged as warnings and dropped.

    Raises:
        SyncerError: If the file is required but missing, is not valid
            YAML, or does not contain a mapping.

    """
    path = Path(config_path)
    if not path.exists():
        if required:
            raise SyncerError(f"Config file '{config_path}' does not exist")
        return {}

    try:
        document = yaml.safe_load(path.read_text())
    except yaml.YAMLError as err:
        raise SyncerError(f"Config file '{config_path}' contains malformed YAML: {err}") from err

    if document is None:
        return {}
    if not isinstance(document, dict):
        raise SyncerError(f"Config file '{config_path}' does not contain a YAML mapping")

    known = set(Settings.__dataclass_fields__)
    settings: dict[str, Any] = {}
    for key, value in flatten_config(document).items():
        if key in known:
            settings[key] = value
        else:
            console.warning(f"Ignoring unknown config key '{key}' in {config_path}")
    return settings
