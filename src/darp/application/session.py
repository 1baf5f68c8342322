"""Plan ``darp shell`` and ``darp serve`` container invocations.

Purpose
-------
Translate "the service folder I am standing in" plus the configuration store
into the exact argument list handed to the container engine. Everything here
is computed from explicit inputs: the working directory and home come from a
:class:`~darp.application.resolution.ResolutionContext` and the file layout
from :class:`~darp.adapters.paths.DarpPaths`.

Contents
--------
* :class:`ServiceLocation` – domain and folder resolved from the cwd.
* :class:`ContainerInvocation` – container name plus ``run`` arguments.
* :func:`locate_service` / :func:`select_environment` – lookups.
* :func:`plan_shell` / :func:`plan_serve` – build the invocations.

System Role
-----------
Called by the CLI, which then passes the invocation to
:meth:`darp.adapters.engine.ContainerEngine.run_interactive`.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Final

from ..adapters.paths import DarpPaths
from ..adapters.store import read_json
from ..domain.errors import NotFound, PreconditionFailed
from ..domain.model import ConfigurationStore, Domain, Environment, Service
from ..observability import log_debug
from .ports import ContainerEngine
from .resolution import (
    ResolutionContext,
    resolve_base_image,
    resolve_host_path,
    resolve_host_portmappings,
    resolve_image_name,
    resolve_platform,
    resolve_serve_command,
    resolve_volumes,
)

CONTAINER_PREFIX: Final[str] = "darp_"
CONTAINER_PROXY_PORT: Final[int] = 8000

_NGINX_PREAMBLE: Final[str] = """if command -v nginx >/dev/null 2>&1; then
    echo "Starting nginx..."; nginx;
else
    echo "nginx not found, skipping";
fi;
"""

SHELL_SCRIPT: Final[str] = (
    _NGINX_PREAMBLE
    + 'echo "";\n'
    + "echo \"To leave this shell and stop the container, type: $(printf '\\033[33m')exit$(printf '\\033[0m')\"\n"
    + 'echo "";\n'
    + "cd /app; exec sh"
)


@dataclass(frozen=True, slots=True)
class ServiceLocation:
    """Where the current directory sits in the configuration tree."""

    domain_key: str
    domain: Domain
    folder: str
    service: Service | None
    cwd: Path

    @property
    def container_name(self) -> str:
        return f"{CONTAINER_PREFIX}{self.domain.name}_{self.folder}"


@dataclass(frozen=True, slots=True)
class ContainerInvocation:
    """Arguments for one ``<engine> run`` call, excluding the engine's own prefix.

    ``interactive`` selects ``-it`` (shell) versus attached non-tty (serve).
    """

    container_name: str
    args: tuple[str, ...]
    interactive: bool


def locate_service(store: ConfigurationStore, context: ResolutionContext) -> ServiceLocation:
    """Find the domain whose location is the parent of ``context.cwd``.

    Raises
    ------
    NotFound
        When the parent directory is not a registered domain location.
    """

    cwd = context.cwd
    parent = cwd.parent
    try:
        key = str(parent.resolve())
    except OSError:
        key = str(parent)
    domain = store.domains.get(key)
    if domain is None:
        raise NotFound(f"domain location '{key}' does not exist in darp's domain configuration.")
    folder = cwd.name
    service = (domain.services or {}).get(folder)
    return ServiceLocation(domain_key=key, domain=domain, folder=folder, service=service, cwd=cwd)


def select_environment(
    store: ConfigurationStore,
    domain: Domain,
    env_name: str | None,
) -> tuple[str | None, Environment | None]:
    """Return the environment named on the command line, else the domain default.

    An explicit name must exist. A default that points at a removed
    environment is treated as unset.
    """

    if env_name is not None:
        environment = store.environments.get(env_name)
        if environment is None:
            raise NotFound(f"Environment '{env_name}' does not exist.")
        return env_name, environment
    default = domain.default_environment
    if default is not None and default in store.environments:
        return default, store.environments[default]
    return None, None


def plan_shell(
    store: ConfigurationStore,
    paths: DarpPaths,
    engine: ContainerEngine,
    context: ResolutionContext,
    *,
    env_name: str | None = None,
    cli_image: str | None = None,
) -> ContainerInvocation:
    """Build the interactive ``darp shell`` invocation for the current folder."""

    location = locate_service(store, context)
    selected, environment = select_environment(store, location.domain, env_name)
    args = _run_args(location, environment, paths, engine, context)
    image = _image(location, environment, selected, cli_image, "shell")
    args += [image, "sh", "-c", SHELL_SCRIPT]
    log_debug("shell_planned", container=location.container_name, image=image, environment=selected)
    return ContainerInvocation(container_name=location.container_name, args=tuple(args), interactive=True)


def plan_serve(
    store: ConfigurationStore,
    paths: DarpPaths,
    engine: ContainerEngine,
    context: ResolutionContext,
    *,
    env_name: str | None = None,
    cli_image: str | None = None,
) -> ContainerInvocation:
    """Build the ``darp serve`` invocation running the effective serve command.

    Raises
    ------
    PreconditionFailed
        When no environment can be selected or no tier sets ``serve_command``.
    """

    location = locate_service(store, context)
    selected, environment = select_environment(store, location.domain, env_name)
    domain_name = location.domain.name
    if selected is None:
        raise PreconditionFailed(
            f"No environment selected for '{domain_name}.{location.folder}'.\n"
            f"Pass one with 'darp serve -e <env>' or run "
            f"'darp config set domain default-environment {domain_name} <env>' first."
        )
    serve_command = resolve_serve_command(location.service, environment)
    if serve_command is None:
        raise PreconditionFailed(
            f"Neither service '{domain_name}.{location.folder}' nor environment '{selected}' "
            f"has a serve_command configured.\n"
            f"Use 'darp config set svc serve-command {domain_name} {location.folder} <cmd>' or "
            f"'darp config set env serve-command {selected} <cmd>' first."
        )

    args = _run_args(location, environment, paths, engine, context)
    image = _image(location, environment, selected, cli_image, "serve")
    args += [image, "sh", "-c", f"{_NGINX_PREAMBLE}cd /app; {serve_command}"]
    log_debug("serve_planned", container=location.container_name, image=image, environment=selected)
    return ContainerInvocation(container_name=location.container_name, args=tuple(args), interactive=False)


def lookup_proxy_port(paths: DarpPaths, domain_name: str, folder: str) -> int:
    """Return the reverse-proxy port ``deploy`` assigned to *folder*.

    Raises
    ------
    PreconditionFailed
        When the port map is missing or has no entry for the folder.
    """

    portmap = read_json(paths.portmap_path) if paths.portmap_path.exists() else {}
    folders = portmap.get(domain_name) if isinstance(portmap, dict) else None
    port = folders.get(folder) if isinstance(folders, dict) else None
    if not isinstance(port, int) or isinstance(port, bool):
        raise PreconditionFailed(f"port not yet assigned to {folder}, run 'darp deploy'")
    return port


def _run_args(
    location: ServiceLocation,
    environment: Environment | None,
    paths: DarpPaths,
    engine: ContainerEngine,
    context: ResolutionContext,
) -> list[str]:
    args = [
        "-v",
        f"{location.cwd}:/app",
        "-v",
        f"{paths.hosts_container_path}:/etc/hosts",
        "-v",
        f"{paths.nginx_conf_path}:/etc/nginx/nginx.conf",
        "-v",
        f"{paths.vhost_container_conf}:/etc/nginx/http.d/vhost_container.conf",
    ]
    for volume in resolve_volumes(location.service, environment) or []:
        host = resolve_host_path(volume.host, context)
        if not Path(host).exists():
            raise PreconditionFailed(f"Volume {volume.host} does not appear to exist.")
        args += ["-v", f"{host}:{volume.container}"]
    for host_port, container_port in (resolve_host_portmappings(location.service, environment) or {}).items():
        args += ["-p", f"{host_port}:{container_port}"]
    args += engine.platform_args(resolve_platform(location.service, environment))
    port = lookup_proxy_port(paths, location.domain.name, location.folder)
    args += ["-p", f"{port}:{CONTAINER_PROXY_PORT}"]
    return args


def _image(
    location: ServiceLocation,
    environment: Environment | None,
    env_name: str | None,
    cli_image: str | None,
    command_name: str,
) -> str:
    base = resolve_base_image(
        cli_image,
        location.service,
        environment,
        domain_name=location.domain.name,
        service_name=location.folder,
        env_name=env_name,
        command_name=command_name,
    )
    return resolve_image_name(base, location.service, environment)
