"""Domain-level configuration data model.

Purpose
-------
Describe the persisted configuration tree (store → domains → services, and
store → environments) as plain dataclasses, together with the wire-format
conversion used by the JSON store. The module contains no I/O.

Contents
--------
* :class:`Volume` – one ``container``/``host`` directory pair.
* :class:`Service` / :class:`Environment` – the two override tiers sharing the
  same optional fields (see :data:`OVERRIDE_FIELDS`).
* :class:`Domain` – a registered directory holding service folders.
* :class:`ConfigurationStore` – the root document.
* :func:`slugify_name` – derives a domain name from a folder name.

System Role
-----------
The mutation API edits these objects in place; the resolution rules read them;
the store adapter converts them to and from JSON via :meth:`from_dict` and
:meth:`to_dict`. Field names are the wire format and must not change.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Final, TypeVar

from .errors import InvalidFormat

#: Optional string fields shared by :class:`Service` and :class:`Environment`.
OVERRIDE_FIELDS: Final[tuple[str, ...]] = (
    "serve_command",
    "image_repository",
    "platform",
    "default_container_image",
)

#: Name used when a folder name slugifies to nothing.
FALLBACK_DOMAIN_NAME: Final[str] = "domain"


class Engine(str, Enum):
    """Container engines the store may name."""

    PODMAN = "podman"
    DOCKER = "docker"


@dataclass(frozen=True, slots=True)
class Volume:
    """A host directory mounted into the container.

    ``host`` may contain the ``{pwd}`` and ``{home}`` tokens; they are only
    substituted at resolution time.
    """

    container: str
    host: str

    @classmethod
    def from_dict(cls, data: object) -> Volume:
        if not isinstance(data, Mapping):
            raise InvalidFormat(f"volume entry must be an object, got {type(data).__name__}")
        container = data.get("container")
        host = data.get("host")
        if not isinstance(container, str) or not isinstance(host, str):
            raise InvalidFormat("volume entry requires string 'container' and 'host'")
        return cls(container=container, host=host)

    def to_dict(self) -> dict[str, str]:
        return {"container": self.container, "host": self.host}


_O = TypeVar("_O", bound="_Overrides")


@dataclass
class _Overrides:
    """Optional fields common to both override tiers.

    Every field defaults to ``None`` meaning "not configured at this tier". An
    empty list or mapping is *configured* and still overrides the lower tier.
    """

    host_portmappings: dict[str, str] | None = None
    volumes: list[Volume] | None = None
    serve_command: str | None = None
    image_repository: str | None = None
    platform: str | None = None
    default_container_image: str | None = None

    @classmethod
    def from_dict(cls: type[_O], data: object, *, where: str) -> _O:
        if data is None:
            return cls()
        if not isinstance(data, Mapping):
            raise InvalidFormat(f"{where} must be an object")
        values: dict[str, Any] = {
            "host_portmappings": _optional_portmap(data.get("host_portmappings"), where=where),
            "volumes": _optional_volumes(data.get("volumes"), where=where),
        }
        for name in OVERRIDE_FIELDS:
            values[name] = _optional_str(data.get(name), f"{where}.{name}")
        return cls(**values)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {}
        if self.host_portmappings is not None:
            payload["host_portmappings"] = dict(sorted(self.host_portmappings.items()))
        if self.volumes is not None:
            payload["volumes"] = [volume.to_dict() for volume in self.volumes]
        for name in OVERRIDE_FIELDS:
            value = getattr(self, name)
            if value is not None:
                payload[name] = value
        return payload


@dataclass
class Service(_Overrides):
    """Per-folder overrides stored under a :class:`Domain`."""


@dataclass
class Environment(_Overrides):
    """Named bundle of defaults that services fall back to."""


@dataclass(slots=True)
class Domain:
    """A registered directory whose immediate subfolders are services.

    The domain's filesystem location is its key in
    :attr:`ConfigurationStore.domains`; ``name`` is the human label used in
    URLs (``<folder>.<name>.test``) and in every CLI lookup.
    """

    name: str
    services: dict[str, Service] | None = None
    default_environment: str | None = None

    @classmethod
    def from_dict(cls, data: object, *, where: str) -> Domain:
        if not isinstance(data, Mapping):
            raise InvalidFormat(f"{where} must be an object")
        name = data.get("name")
        if not isinstance(name, str):
            raise InvalidFormat(f"{where}.name must be a string")
        raw_services = data.get("services")
        services: dict[str, Service] | None = None
        if raw_services is not None:
            if not isinstance(raw_services, Mapping):
                raise InvalidFormat(f"{where}.services must be an object")
            services = {
                str(folder): Service.from_dict(value, where=f"{where}.services.{folder}")
                for folder, value in raw_services.items()
            }
        return cls(
            name=name,
            services=services,
            default_environment=_optional_str(data.get("default_environment"), f"{where}.default_environment"),
        )

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"name": self.name}
        if self.services is not None:
            payload["services"] = {folder: svc.to_dict() for folder, svc in sorted(self.services.items())}
        if self.default_environment is not None:
            payload["default_environment"] = self.default_environment
        return payload


@dataclass(slots=True)
class ConfigurationStore:
    """Root configuration document persisted as ``config.json``.

    Examples
    --------
    >>> store = ConfigurationStore.from_dict({"engine": "docker", "domains": {"/src": {"name": "src"}}})
    >>> store.engine, store.domains["/src"].name
    ('docker', 'src')
    >>> store.to_dict()
    {'engine': 'docker', 'domains': {'/src': {'name': 'src'}}}
    """

    engine: str | None = None
    podman_machine: str | None = None
    urls_in_hosts: bool | None = None
    domains: dict[str, Domain] = field(default_factory=dict)
    environments: dict[str, Environment] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: object) -> ConfigurationStore:
        """Build a store from decoded JSON, raising :class:`InvalidFormat` on bad shapes."""

        if not isinstance(data, Mapping):
            raise InvalidFormat("configuration root must be a JSON object")
        urls_in_hosts = data.get("urls_in_hosts")
        if urls_in_hosts is not None and not isinstance(urls_in_hosts, bool):
            raise InvalidFormat("urls_in_hosts must be a boolean")
        return cls(
            engine=_optional_str(data.get("engine"), "engine"),
            podman_machine=_optional_str(data.get("podman_machine"), "podman_machine"),
            urls_in_hosts=urls_in_hosts,
            domains={
                str(location): Domain.from_dict(value, where=f"domains.{location}")
                for location, value in _optional_mapping(data.get("domains"), "domains").items()
            },
            environments={
                str(name): Environment.from_dict(value, where=f"environments.{name}")
                for name, value in _optional_mapping(data.get("environments"), "environments").items()
            },
        )

    def to_dict(self) -> dict[str, Any]:
        """Return the wire representation; absent fields are omitted and maps sorted."""

        payload: dict[str, Any] = {}
        if self.engine is not None:
            payload["engine"] = self.engine
        if self.podman_machine is not None:
            payload["podman_machine"] = self.podman_machine
        if self.urls_in_hosts is not None:
            payload["urls_in_hosts"] = self.urls_in_hosts
        if self.domains:
            payload["domains"] = {key: domain.to_dict() for key, domain in sorted(self.domains.items())}
        if self.environments:
            payload["environments"] = {name: env.to_dict() for name, env in sorted(self.environments.items())}
        return payload


def slugify_name(label: str) -> str:
    """Return the domain name derived from a folder *label*.

    ASCII letters and digits are kept (lower-cased); whitespace, ``_`` and
    ``-`` act as separators and collapse into a single hyphen; every other
    character is dropped. Leading and trailing hyphens never survive.

    Examples
    --------
    >>> slugify_name("My App!")
    'my-app'
    >>> slugify_name("a--b  c")
    'a-b-c'
    >>> slugify_name("___")
    'domain'
    """

    out: list[str] = []
    pending_dash = False
    for char in label.strip():
        if char.isascii() and char.isalnum():
            if pending_dash and out:
                out.append("-")
            out.append(char.lower())
            pending_dash = False
        elif char.isspace() or char in "_-":
            pending_dash = True
    return "".join(out) or FALLBACK_DOMAIN_NAME


def _optional_str(value: object, where: str) -> str | None:
    if value is None or isinstance(value, str):
        return value
    raise InvalidFormat(f"{where} must be a string")


def _optional_mapping(value: object, where: str) -> Mapping[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise InvalidFormat(f"{where} must be an object")
    return value


def _optional_portmap(value: object, *, where: str) -> dict[str, str] | None:
    if value is None:
        return None
    if not isinstance(value, Mapping):
        raise InvalidFormat(f"{where}.host_portmappings must be an object")
    ports: dict[str, str] = {}
    for host_port, container_port in value.items():
        if not isinstance(container_port, (str, int)) or isinstance(container_port, bool):
            raise InvalidFormat(f"{where}.host_portmappings.{host_port} must be a port string")
        ports[str(host_port)] = str(container_port)
    return ports


def _optional_volumes(value: object, *, where: str) -> list[Volume] | None:
    if value is None:
        return None
    if not isinstance(value, list):
        raise InvalidFormat(f"{where}.volumes must be a list")
    return [Volume.from_dict(item) for item in value]
