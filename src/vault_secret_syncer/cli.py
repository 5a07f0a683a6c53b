#!/usr/bin/env python
"""Command-line interface for vault-secret-syncer.

This module provides the main CLI entry point, resolving the settings
from flags, environment variables and the YAML config file, then running
the syncer until the process is told to stop.
"""

import signal
import sys
from dataclasses import fields
from typing import Any

import click
from icecream import ic

from vault_secret_syncer import __version__, console
from vault_secret_syncer.config import DEFAULT_TOKEN_PATH, DEFAULT_VAULT_ADDR, Settings, load_config_file
from vault_secret_syncer.core.syncer import Syncer
from vault_secret_syncer.exceptions import ClusterConnectionError, MappingError, SyncerError, VaultLoginError


def _load_config(ctx: click.Context, _param: click.Parameter, value: str) -> str:
    """Fill the click default map from the YAML config file."""
    required = ctx.get_parameter_source("config") is not click.core.ParameterSource.DEFAULT
    try:
        ctx.default_map = {**(ctx.default_map or {}), **load_config_file(value, required=required)}
    except SyncerError as e:
        raise click.BadParameter(str(e)) from None
    return value


def build_settings(params: dict[str, Any]) -> Settings:
    """Build Settings from the parsed click parameters."""
    names = {f.name for f in fields(Settings)}
    return Settings(**{name: value for name, value in params.items() if name in names})


def run(settings: Settings) -> None:
    """Run the syncer until SIGINT or SIGTERM.

    SIGHUP triggers an immediate reconciliation pass.

    Args:
        settings: Process settings.

    """
    with Syncer(settings) as syncer:

        def _terminate(signum: int, _frame: object) -> None:
            console.info(f"Received signal {signal.Signals(signum).name}. Terminating...")
            syncer.stop_event.set()

        def _force(_signum: int, _frame: object) -> None:
            console.info("Received SIGHUP, forcing update")
            syncer.force_update()

        signal.signal(signal.SIGINT, _terminate)
        signal.signal(signal.SIGTERM, _terminate)
        if hasattr(signal, "SIGHUP"):
            signal.signal(signal.SIGHUP, _force)

        syncer.start()
        syncer.wait()


@click.command(help="Synchronize Vault secrets into Kubernetes secrets")
@click.option("--version", "-v", required=False, is_flag=True, help="print version")
@click.option("--debug", required=False, is_flag=True, help="print debug information")
@click.option(
    "--config",
    default="config.yaml",
    show_default=True,
    is_eager=True,
    expose_value=False,
    callback=_load_config,
    help="YAML configuration file",
)
@click.option("--log-level", envvar="LOG_LEVEL", default="info", show_default=True,
              type=click.Choice(["debug", "info", "warning", "error"], case_sensitive=False))
@click.option("--dry-run/--no-dry-run", envvar="DRY_RUN", default=False, help="validate changes without persisting")
@click.option("--in-cluster/--no-in-cluster", envvar="IN_CLUSTER", default=True, show_default=True,
              help="use the mounted service account")
@click.option("--kubeconfig", envvar="KUBECONFIG", default="", help="kubeconfig used outside the cluster")
@click.option("--token-path", envvar="TOKEN_PATH", default=DEFAULT_TOKEN_PATH, show_default=True,
              help="service account token exchanged for a Vault session")
@click.option("--vault-addr", envvar="VAULT_ADDR", default=DEFAULT_VAULT_ADDR, show_default=True)
@click.option("--vault-role", envvar="VAULT_ROLE", default="vault-secret-syncer", show_default=True)
@click.option("--secret-label", envvar="SECRET_LABEL", default="vault-injector", show_default=True,
              help="label prefix of managed secrets")
@click.option("--secret-map", envvar="SECRET_MAP", default="map.yaml", show_default=True,
              help="secret mapping file")
@click.option("--interval", envvar="INTERVAL", default=900, show_default=True, type=click.IntRange(min=1),
              help="seconds between full passes")
@click.option("--telegram-channel", envvar=["TELEGRAM_ALERT_CHANNEL", "TELEGRAM_ALERT_CHANEL"], default=0, type=int,
              help="alert chat id")
@click.option("--telegram-token", envvar="TELEGRAM_TOKEN", default="", help="alert bot token")
@click.option("--telegram-secret", envvar="TELEGRAM_SECRET", default="projects/share/telegram", show_default=True,
              help="Vault document with Telegram credentials")
@click.option("--http-addr", envvar="HTTP_ADDR", default=":8080", show_default=True, help="health endpoint address")
@click.option("--http-route-prefix", envvar="HTTP_ROUTE_PREFIX", default="", help="health endpoint path prefix")
def cli(version: bool, debug: bool, **params: Any) -> None:
    """Process CLI arguments and run the syncer.

    Args:
        version: Print version and exit.
        debug: Enable debug output.
        **params: Settings fields.

    """
    if version:
        click.echo(__version__)
        return

    if debug:
        params["log_level"] = "debug"
    else:
        ic.disable()

    settings = build_settings(params)
    console.set_level(settings.log_level)
    ic(settings)

    try:
        run(settings)
    except MappingError as e:
        console.error(f"Secret map is invalid: {e}")
        sys.exit(1)
    except ClusterConnectionError as e:
        console.error(f"Cluster connection failed: {e}")
        sys.exit(1)
    except VaultLoginError as e:
        console.error(f"Vault login failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    cli()
