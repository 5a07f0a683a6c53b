"""Secret mapping file parsing.

The mapping file is a YAML document mapping ``namespace/name`` strings to
lists of value specifications::

    team-a/db-cred:
      - password:secretv2/team-a/db:password
      - username:secretv2/team-a/db:username
    team-a/registry-dockerconfigjson:
      - secretv2/team-a/registry:harbor

Plain specifications have the form ``{key}:{mount}/{path}:{vault_key}``.
Entries whose name contains ``dockerconfigjson`` use the docker-registry
form ``{mount}/{path}:{vault_key_prefix}``.
"""

from typing import Any

import yaml
from icecream import ic

from vault_secret_syncer import console
from vault_secret_syncer.exceptions import MappingError
from vault_secret_syncer.models import MappingEntry, RegistrySpec, ValueSpec, VaultRef, is_docker_secret


def _split_mount_path(location: str, spec: str) -> tuple[str, str]:
    mount, sep, path = location.partition("/")
    if not sep or not mount or not path:
        raise MappingError(f"Value '{spec}' must reference a Vault location as 'mount/path'")
    return mount, path


def parse_value_spec(spec: str) -> ValueSpec:
    """Parse a plain ``key:mount/path:vault_key`` value specification.

    Args:
        spec: The specification string.

    Returns:
        The parsed ValueSpec.

    Raises:
        MappingError: If the specification is malformed.

    """
    parts = spec.split(":", 2)
    if len(parts) != 3 or not all(parts):
        raise MappingError(f"Value '{spec}' must have the form 'key:mount/path:vault_key'")
    destination, location, key = parts
    mount, path = _split_mount_path(location, spec)
    return ValueSpec(destination=destination, ref=VaultRef(mount, path, key))


def parse_registry_spec(spec: str) -> RegistrySpec:
    """Parse a docker-registry ``mount/path:vault_key_prefix`` specification.

    Args:
        spec: The specification string.

    Returns:
        The parsed RegistrySpec.

    Raises:
        MappingError: If the specification is malformed.

    """
    location, sep, prefix = spec.partition(":")
    if not sep or not prefix:
        raise MappingError(f"Value '{spec}' must have the form 'mount/path:vault_key_prefix'")
    mount, path = _split_mount_path(location, spec)
    return RegistrySpec(mount=mount, path=path, prefix=prefix)


def parse_entry(key: Any, specs: Any) -> MappingEntry:
    """Build a MappingEntry from one item of the mapping document.

    Args:
        key: The ``namespace/name`` key.
        specs: The list of value specification strings.

    Returns:
        The parsed MappingEntry.

    Raises:
        MappingError: If the key or any specification is malformed.

    """
    if not isinstance(key, str):
        raise MappingError(f"Mapping key {key!r} must be a 'namespace/name' string")
    parts = key.split("/")
    if len(parts) != 2 or not all(parts):
        raise MappingError(f"Mapping key '{key}' must have the form 'namespace/name'")
    namespace, name = parts

    if specs is None:
        specs = []
    if not isinstance(specs, list) or not all(isinstance(spec, str) for spec in specs):
        raise MappingError(f"Mapping entry '{key}' must be a list of strings")

    if is_docker_secret(name):
        if not specs:
            raise MappingError(f"Docker registry entry '{key}' needs a 'mount/path:vault_key_prefix' value")
        if len(specs) > 1:
            console.warning(f"{key}: only the first value of a docker registry entry is used")
        return MappingEntry(namespace=namespace, name=name, registry=parse_registry_spec(specs[0]))

    return MappingEntry(
        namespace=namespace,
        name=name,
        values=tuple(parse_value_spec(spec) for spec in specs),
    )


def parse_mapping_file(mapping_path: str) -> dict[str, MappingEntry]:
    """Parse the secret mapping YAML file.

    Args:
        mapping_path: Path to the mapping file.

    Returns:
        Mapping entries keyed by ``namespace/name``. An empty file
        yields an empty mapping.

    Raises:
        MappingError: If the file does not exist, is not valid YAML,
            is not a YAML mapping, or contains a malformed entry.

    """
    try:
        with open(mapping_path) as stream:
            document = yaml.safe_load(stream)
    except FileNotFoundError as err:
        raise MappingError(f"Secret map '{mapping_path}' does not exist") from err
    except yaml.YAMLError as err:
        raise MappingError(f"Secret map '{mapping_path}' contains malformed YAML: {err}") from err

    if document is None:
        console.warning(f"Secret map {console.highlight(mapping_path)} is empty")
        return {}
    if not isinstance(document, dict):
        raise MappingError(f"Secret map '{mapping_path}' does not contain a YAML mapping")

    entries: dict[str, MappingEntry] = {}
    for key, specs in document.items():
        entry = parse_entry(key, specs)
        entries[entry.key] = entry

    ic(list(entries))
    console.info(f"Loaded {len(entries)} secret(s) from {console.highlight(mapping_path)}")
    return entries
