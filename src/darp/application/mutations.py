"""Application-layer mutation API.

Purpose
-------
Validated, in-place edits of the configuration tree. Each operation either
succeeds completely or raises from :mod:`darp.domain.errors` before touching
anything, so the CLI can persist the store only after a successful return.

Contents
    - Parent lookups, split into *get-or-create* (used by "add" and by
      service-level "set") and *get-or-fail* (used by "remove" and
      environment-level "set").
    - Domain operations: ``add_domain`` / ``remove_domain`` and the default
      environment pointer.
    - Override fields (``serve_command``, ``image_repository``, ``platform``,
      ``default_container_image``) on environments and services.
    - Host port mappings and volumes on environments and services.
    - Global settings: engine, podman machine, ``urls_in_hosts``.

System Role
-----------
Called by :mod:`darp.cli`; reads nothing from the process environment and
writes nothing to disk.
"""

from __future__ import annotations

from pathlib import Path
from typing import Final

from ..domain.errors import AlreadyExists, InvalidInput, IOFailure, NotFound
from ..domain.model import (
    OVERRIDE_FIELDS,
    ConfigurationStore,
    Domain,
    Engine,
    Environment,
    Service,
    Volume,
    slugify_name,
)
from ..observability import log_info, make_event

_TRUE_WORDS: Final[frozenset[str]] = frozenset({"true", "1", "yes", "y", "on"})
_FALSE_WORDS: Final[frozenset[str]] = frozenset({"false", "0", "no", "n", "off"})


# ---------------------------------------------------------------------------
# Parent lookups
# ---------------------------------------------------------------------------


def find_domain(store: ConfigurationStore, domain_name: str) -> Domain:
    """Return the domain whose logical ``name`` is *domain_name* (not its location key)."""

    for domain in store.domains.values():
        if domain.name == domain_name:
            return domain
    raise NotFound(f"domain, {domain_name}, does not exist")


def get_environment(store: ConfigurationStore, env_name: str) -> Environment:
    """Get-or-fail lookup of an environment by name."""

    try:
        return store.environments[env_name]
    except KeyError:
        raise NotFound(f"Environment '{env_name}' does not exist.") from None


def get_or_create_environment(store: ConfigurationStore, env_name: str) -> Environment:
    """Get-or-create lookup of an environment by name."""

    env = store.environments.get(env_name)
    if env is None:
        env = store.environments[env_name] = Environment()
        log_info("environment_created", **make_event("environment", env_name))
    return env


def get_service(domain: Domain, service_name: str) -> Service:
    """Get-or-fail lookup of a service folder inside *domain*."""

    if domain.services is None:
        raise NotFound(f"No services configured for domain {domain.name}")
    try:
        return domain.services[service_name]
    except KeyError:
        raise NotFound(f"service, {service_name}, does not exist") from None


def get_or_create_service(domain: Domain, service_name: str) -> Service:
    """Get-or-create lookup of a service folder inside *domain*."""

    if domain.services is None:
        domain.services = {}
    service = domain.services.get(service_name)
    if service is None:
        service = domain.services[service_name] = Service()
        log_info("service_created", **make_event("service", f"{domain.name}.{service_name}"))
    return service


# ---------------------------------------------------------------------------
# Domains
# ---------------------------------------------------------------------------


def add_domain(store: ConfigurationStore, location: str | Path) -> tuple[str, Domain]:
    """Register *location* as a domain and return ``(location_key, domain)``.

    The name is the slug of the final segment of *location* as given; the key
    is the canonical absolute path.

    Raises
    ------
    IOFailure
        If *location* cannot be canonicalised (e.g. it does not exist).
    InvalidInput
        If *location* is not a directory.
    AlreadyExists
        If the location is already registered or another domain uses the name.
    """

    raw = Path(location)
    try:
        canonical = raw.resolve(strict=True)
    except (OSError, RuntimeError) as exc:
        raise IOFailure(f"Failed to canonicalize domain location '{location}': {exc}") from exc
    if not canonical.is_dir():
        raise InvalidInput(f"Domain location '{location}' is not a directory.")

    label = canonical.name if raw.name in ("", ".", "..") else raw.name
    name = slugify_name(label)
    key = str(canonical)

    if key in store.domains:
        raise AlreadyExists(f"Domain with location '{key}' already exists.")
    if any(domain.name == name for domain in store.domains.values()):
        raise AlreadyExists(f"Domain name '{name}' already exists. Domain names must be unique.")

    domain = store.domains[key] = Domain(name=name)
    log_info("domain_added", **make_event("domain", name, {"location": key}))
    return key, domain


def remove_domain(store: ConfigurationStore, name_or_location: str) -> tuple[str, Domain]:
    """Remove the domain matching either its ``name`` or its location key."""

    for key, domain in store.domains.items():
        if domain.name == name_or_location or key == name_or_location:
            del store.domains[key]
            log_info("domain_removed", **make_event("domain", domain.name, {"location": key}))
            return key, domain
    raise NotFound(f"domain {name_or_location} does not exist")


def set_domain_default_environment(store: ConfigurationStore, domain_name: str, env_name: str) -> None:
    """Point *domain_name* at an existing environment; the environment is never created here."""

    get_environment(store, env_name)
    domain = find_domain(store, domain_name)
    domain.default_environment = env_name


def remove_domain_default_environment(store: ConfigurationStore, domain_name: str) -> None:
    domain = find_domain(store, domain_name)
    if domain.default_environment is None:
        raise NotFound(f"Domain '{domain_name}' has no default_environment.")
    domain.default_environment = None


# ---------------------------------------------------------------------------
# Environments
# ---------------------------------------------------------------------------


def remove_environment(store: ConfigurationStore, env_name: str) -> list[str]:
    """Delete an environment and return the names of domains still pointing at it.

    Those ``default_environment`` references are left in place and resolve as
    absent until they are re-pointed or the environment is recreated.
    """

    get_environment(store, env_name)
    del store.environments[env_name]
    dangling = sorted(d.name for d in store.domains.values() if d.default_environment == env_name)
    log_info("environment_removed", **make_event("environment", env_name, {"dangling": dangling}))
    return dangling


def set_environment_field(store: ConfigurationStore, env_name: str, field_name: str, value: str) -> None:
    """Set one override field on an existing environment."""

    _check_field(field_name)
    env = get_environment(store, env_name)
    setattr(env, field_name, value)


def remove_environment_field(store: ConfigurationStore, env_name: str, field_name: str) -> None:
    _check_field(field_name)
    env = get_environment(store, env_name)
    if getattr(env, field_name) is None:
        raise NotFound(f"Environment '{env_name}' has no {_field_label(field_name)}.")
    setattr(env, field_name, None)


def add_environment_portmap(store: ConfigurationStore, env_name: str, host_port: str, container_port: str) -> None:
    """Map *host_port* to *container_port*; creates the environment when needed."""

    env = get_or_create_environment(store, env_name)
    if env.host_portmappings is None:
        env.host_portmappings = {}
    if host_port in env.host_portmappings:
        raise AlreadyExists(
            f"Portmapping on host side for environment '{env_name}' ({host_port}:____) already exists"
        )
    env.host_portmappings[host_port] = container_port


def remove_environment_portmap(store: ConfigurationStore, env_name: str, host_port: str) -> None:
    env = get_environment(store, env_name)
    if env.host_portmappings is None:
        raise NotFound(f"No host_portmappings configured for environment '{env_name}'")
    if env.host_portmappings.pop(host_port, None) is None:
        raise NotFound(f"Portmapping on host side for environment '{env_name}' ({host_port}:____) does not exist")


def add_environment_volume(store: ConfigurationStore, env_name: str, container_dir: str, host_dir: str) -> None:
    """Append a volume; creates the environment when needed."""

    env = get_or_create_environment(store, env_name)
    _append_volume(env, Volume(container=container_dir, host=host_dir), f"environment '{env_name}'")


def remove_environment_volume(store: ConfigurationStore, env_name: str, container_dir: str, host_dir: str) -> None:
    env = get_environment(store, env_name)
    if env.volumes is None:
        raise NotFound(f"No volumes configured for environment '{env_name}'")
    _discard_volume(env.volumes, Volume(container=container_dir, host=host_dir), f"environment '{env_name}'")


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------


def set_service_field(
    store: ConfigurationStore,
    domain_name: str,
    service_name: str,
    field_name: str,
    value: str,
) -> None:
    """Set one override field on a service; the domain must exist, the service is created."""

    _check_field(field_name)
    service = get_or_create_service(find_domain(store, domain_name), service_name)
    setattr(service, field_name, value)


def remove_service_field(store: ConfigurationStore, domain_name: str, service_name: str, field_name: str) -> None:
    _check_field(field_name)
    service = get_service(find_domain(store, domain_name), service_name)
    if getattr(service, field_name) is None:
        raise NotFound(f"Service '{domain_name}.{service_name}' has no {_field_label(field_name)}.")
    setattr(service, field_name, None)


def add_service_portmap(
    store: ConfigurationStore,
    domain_name: str,
    service_name: str,
    host_port: str,
    container_port: str,
) -> None:
    """Map *host_port* to *container_port* for one service folder.

    Uniqueness is on the host port only; the same container port may appear
    under several host ports.
    """

    service = get_or_create_service(find_domain(store, domain_name), service_name)
    if service.host_portmappings is None:
        service.host_portmappings = {}
    if host_port in service.host_portmappings:
        raise AlreadyExists(
            f"Portmapping on host side '{domain_name}.{service_name}' ({host_port}:____) already exists"
        )
    service.host_portmappings[host_port] = container_port


def remove_service_portmap(store: ConfigurationStore, domain_name: str, service_name: str, host_port: str) -> None:
    service = get_service(find_domain(store, domain_name), service_name)
    if service.host_portmappings is None:
        raise NotFound("No host_portmappings configured")
    if service.host_portmappings.pop(host_port, None) is None:
        raise NotFound(
            f"Portmapping on host side '{domain_name}.{service_name}' ({host_port}:____) does not exist"
        )


def add_service_volume(
    store: ConfigurationStore,
    domain_name: str,
    service_name: str,
    container_dir: str,
    host_dir: str,
) -> None:
    service = get_or_create_service(find_domain(store, domain_name), service_name)
    _append_volume(service, Volume(container=container_dir, host=host_dir), f"service '{domain_name}.{service_name}'")


def remove_service_volume(
    store: ConfigurationStore,
    domain_name: str,
    service_name: str,
    container_dir: str,
    host_dir: str,
) -> None:
    service = get_service(find_domain(store, domain_name), service_name)
    where = f"service '{domain_name}.{service_name}'"
    if service.volumes is None:
        raise NotFound(f"No volumes configured for {where}")
    _discard_volume(service.volumes, Volume(container=container_dir, host=host_dir), where)


# ---------------------------------------------------------------------------
# Global settings
# ---------------------------------------------------------------------------


def set_engine(store: ConfigurationStore, engine: str) -> Engine:
    """Select the container engine (case-insensitive ``podman`` or ``docker``)."""

    try:
        selected = Engine(engine.strip().lower())
    except ValueError:
        raise InvalidInput("engine must be 'podman' or 'docker'") from None
    store.engine = selected.value
    return selected


def set_podman_machine(store: ConfigurationStore, machine: str) -> None:
    store.podman_machine = machine


def remove_podman_machine(store: ConfigurationStore) -> None:
    store.podman_machine = None


def set_urls_in_hosts(store: ConfigurationStore, value: str) -> bool:
    enabled = parse_bool(value)
    store.urls_in_hosts = enabled
    return enabled


def parse_bool(value: str) -> bool:
    """Parse a user-supplied boolean flag.

    Examples
    --------
    >>> parse_bool("Yes"), parse_bool("off")
    (True, False)
    >>> parse_bool("maybe")
    Traceback (most recent call last):
    ...
    darp.domain.errors.InvalidInput: Invalid boolean value: maybe (expected TRUE/FALSE/yes/no/1/0/on/off)
    """

    word = value.strip().lower()
    if word in _TRUE_WORDS:
        return True
    if word in _FALSE_WORDS:
        return False
    raise InvalidInput(f"Invalid boolean value: {value} (expected TRUE/FALSE/yes/no/1/0/on/off)")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _check_field(field_name: str) -> None:
    if field_name not in OVERRIDE_FIELDS:
        raise InvalidInput(f"Unknown field '{field_name}' (expected one of: {', '.join(OVERRIDE_FIELDS)})")


def _field_label(field_name: str) -> str:
    """Return the wording used in "has no ..." messages for *field_name*."""

    if field_name == "default_container_image":
        return field_name
    return f"custom {field_name}"


def _append_volume(owner: Environment | Service, volume: Volume, where: str) -> None:
    if owner.volumes is None:
        owner.volumes = []
    if volume in owner.volumes:
        raise AlreadyExists(f"Volume mapping already exists for {where}: {volume.host} -> {volume.container}")
    owner.volumes.append(volume)


def _discard_volume(volumes: list[Volume], volume: Volume, where: str) -> None:
    remaining = [existing for existing in volumes if existing != volume]
    if len(remaining) == len(volumes):
        raise NotFound(
            f"No matching volume found in {where} for host '{volume.host}' -> container '{volume.container}'"
        )
    volumes[:] = remaining
