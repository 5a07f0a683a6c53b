"""Reconciliation drivers.

LoopController runs full passes on a timer; WatchController reconciles
individual secrets from a watch stream.
"""

from vault_secret_syncer.controllers.loop import LoopController
from vault_secret_syncer.controllers.watcher import WatchController

__all__ = [
    "LoopController",
    "WatchController",
]
