"""Data models for vault-secret-syncer.

This module provides type-safe data structures for the secret mapping
and for the outcome of reconciliation passes.
"""

from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import NamedTuple

# Name fragment that selects the docker-registry form of a mapping entry
DOCKER_CONFIG_MARKER = "dockerconfigjson"


class SecretType(str, Enum):
    """Kubernetes secret types created by the syncer.

    Inherits from str so members can be assigned directly to
    ``V1Secret.type``.
    """

    OPAQUE = "Opaque"
    DOCKER_CONFIG_JSON = "kubernetes.io/dockerconfigjson"


class VaultRef(NamedTuple):
    """Address of one field of a Vault KV v2 document.

    Attributes:
        mount: The KV secrets engine mount point.
        path: The document path below the mount.
        key: The field inside the document.

    """

    mount: str
    path: str
    key: str

    def __str__(self) -> str:
        return f"{self.mount}/{self.path}:{self.key}"


@dataclass(frozen=True, slots=True)
class ValueSpec:
    """A plain value specification: one Vault field stored under one secret key.

    Attributes:
        destination: The key in the Kubernetes secret's data.
        ref: Where the value is read from.

    """

    destination: str
    ref: VaultRef


@dataclass(frozen=True, slots=True)
class RegistrySpec:
    """A docker-registry value specification.

    The ``host``, ``username`` and ``password`` fields are read from
    ``{prefix}/host``, ``{prefix}/username`` and ``{prefix}/password``.
    """

    mount: str
    path: str
    prefix: str

    def field_ref(self, field_name: str) -> VaultRef:
        return VaultRef(self.mount, self.path, f"{self.prefix}/{field_name}")


@dataclass(frozen=True, slots=True)
class MappingEntry:
    """One desired secret and the Vault fields that supply its keys.

    Attributes:
        namespace: Namespace of the Kubernetes secret.
        name: Name of the Kubernetes secret.
        values: Plain value specifications, in file order.
        registry: The docker-registry specification for docker entries.

    """

    namespace: str
    name: str
    values: tuple[ValueSpec, ...] = ()
    registry: RegistrySpec | None = None

    @property
    def key(self) -> str:
        return secret_key(self.namespace, self.name)

    @property
    def is_docker(self) -> bool:
        return is_docker_secret(self.name)

    @property
    def secret_type(self) -> SecretType:
        return SecretType.DOCKER_CONFIG_JSON if self.is_docker else SecretType.OPAQUE


def secret_key(namespace: str, name: str) -> str:
    """Return the ``namespace/name`` key used to index mapping entries."""
    return f"{namespace}/{name}"


def is_docker_secret(name: str) -> bool:
    """Check whether a secret name selects the docker-registry form."""
    return DOCKER_CONFIG_MARKER in name


class Action(str, Enum):
    """Outcome of reconciling a single secret."""

    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"
    UNCHANGED = "unchanged"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class PassResult:
    """Counts of actions taken during one reconciliation pass.

    Attributes:
        name: Label of the pass, used in log output.
        counts: Number of secrets per action.

    """

    name: str
    counts: Counter = field(default_factory=Counter)

    def record(self, action: Action) -> None:
        self.counts[action] += 1

    def __getitem__(self, action: Action) -> int:
        return self.counts[action]

    @property
    def total(self) -> int:
        return sum(self.counts.values())

    @property
    def ok(self) -> bool:
        """True when no secret in the pass failed or was skipped."""
        return not (self.counts[Action.FAILED] or self.counts[Action.SKIPPED])

    def __str__(self) -> str:
        parts = [f"{action.value}={self.counts[action]}" for action in Action if self.counts[action]]
        return f"{self.name}: {', '.join(parts) if parts else 'nothing to do'}"
