"""Deterministic port assignment and artifact generation.

Purpose
-------
Turn the registered domains into the three files the proxy stack reads:

* ``hosts_container`` – one ``0.0.0.0   <url>`` line per service, mounted as
  ``/etc/hosts`` inside service containers;
* ``vhost_container.conf`` – one nginx ``server`` block per service;
* ``portmap.json`` – ``{domain: {folder: port}}`` consumed by shell/serve.

Contents
--------
* :data:`BASE_PORT` – first port handed out.
* :class:`PortAssignment` / :class:`DeployPlan` – the pure planning result.
* :func:`plan_ports` – walk domains and folders in sorted order.
* :func:`render_hosts`, :func:`render_vhosts`, :func:`render_portmap` – text
  and JSON rendering of a plan.
* :func:`write_artifacts` – persist the rendered plan atomically.
* :func:`deploy` – full pass including the engine and hosts side effects.

System Role
-----------
Invoked by ``darp deploy``. Planning touches the filesystem only to list
directories; nothing is written until the whole plan has been computed, so a
missing domain location leaves the previous artifacts intact.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Final

from ..adapters.paths import DarpPaths
from ..adapters.store import write_json_atomic, write_text_atomic
from ..domain.errors import IOFailure, PreconditionFailed
from ..domain.model import ConfigurationStore
from ..observability import log_debug, log_info, make_event
from .ports import ContainerEngine, SystemIntegration

BASE_PORT: Final[int] = 50100
"""Reverse-proxy port of the first service; later services count upward."""

CONTAINER_HOSTS_ADDRESS: Final[str] = "0.0.0.0"

_VHOST_TEMPLATE: Final[str] = """server {
    listen 80;
    server_name {url};
    location / {
        proxy_pass http://{host_gateway}:{port}/;
        proxy_set_header Host $host;
    }
}
"""


@dataclass(frozen=True, slots=True)
class PortAssignment:
    """One service folder and the proxy port it received.

    Examples
    --------
    >>> PortAssignment(domain="src", folder="api", port=50100).url
    'api.src.test'
    """

    domain: str
    folder: str
    port: int

    @property
    def url(self) -> str:
        return f"{self.folder}.{self.domain}.test"


@dataclass(frozen=True, slots=True)
class DeployPlan:
    """Ordered port assignments plus the domain names seen (even if empty)."""

    assignments: tuple[PortAssignment, ...]
    domains: tuple[str, ...] = field(default=())

    @property
    def urls(self) -> list[str]:
        return [assignment.url for assignment in self.assignments]


def plan_ports(store: ConfigurationStore, *, base_port: int = BASE_PORT) -> DeployPlan:
    """Assign consecutive ports to every service folder of every domain.

    Domains are visited in sorted location order and folders in sorted name
    order, so the same tree always yields the same ports whatever order the
    directories were created in.

    Raises
    ------
    PreconditionFailed
        When no domain is registered.
    IOFailure
        When a domain location cannot be listed.
    """

    if not store.domains:
        raise PreconditionFailed("Please configure a domain.")

    assignments: list[PortAssignment] = []
    domain_names: list[str] = []
    port = base_port
    for location in sorted(store.domains):
        domain = store.domains[location]
        domain_names.append(domain.name)
        for folder in _service_folders(Path(location)):
            assignments.append(PortAssignment(domain=domain.name, folder=folder, port=port))
            port += 1
    log_debug("deploy_planned", services=len(assignments), domains=len(domain_names))
    return DeployPlan(assignments=tuple(assignments), domains=tuple(domain_names))


def render_hosts(plan: DeployPlan) -> str:
    """Return the container hosts fragment for *plan*.

    Examples
    --------
    >>> plan = DeployPlan((PortAssignment("src", "api", 50100),), ("src",))
    >>> render_hosts(plan)
    '0.0.0.0   api.src.test\\n'
    """

    return "".join(f"{CONTAINER_HOSTS_ADDRESS}   {url}\n" for url in plan.urls)


def render_vhosts(plan: DeployPlan, host_gateway: str) -> str:
    """Return one nginx ``server`` block per assignment, proxying to *host_gateway*."""

    return "".join(
        _VHOST_TEMPLATE.replace("{url}", assignment.url)
        .replace("{host_gateway}", host_gateway)
        .replace("{port}", str(assignment.port))
        for assignment in plan.assignments
    )


def render_portmap(plan: DeployPlan) -> dict[str, dict[str, int]]:
    """Return ``{domain: {folder: port}}``; domains without folders map to ``{}``.

    Examples
    --------
    >>> plan = DeployPlan((PortAssignment("src", "api", 50100), PortAssignment("src", "web", 50101)), ("src", "empty"))
    >>> render_portmap(plan)
    {'src': {'api': 50100, 'web': 50101}, 'empty': {}}
    """

    portmap: dict[str, dict[str, int]] = {name: {} for name in plan.domains}
    for assignment in plan.assignments:
        portmap.setdefault(assignment.domain, {})[assignment.folder] = assignment.port
    return portmap


def write_artifacts(paths: DarpPaths, plan: DeployPlan, host_gateway: str) -> None:
    """Persist the vhost, hosts and port map files rendered from *plan*."""

    write_text_atomic(paths.vhost_container_conf, render_vhosts(plan, host_gateway))
    write_text_atomic(paths.hosts_container_path, render_hosts(plan))
    write_json_atomic(paths.portmap_path, render_portmap(plan))
    log_info(
        "artifacts_written",
        **make_event("artifact", str(paths.root), {"services": len(plan.assignments), "gateway": host_gateway}),
    )


def deploy(
    store: ConfigurationStore,
    paths: DarpPaths,
    engine: ContainerEngine,
    system: SystemIntegration,
) -> DeployPlan:
    """Run the complete deploy pass and return the plan that was applied.

    The sequence is: plan, check the engine, write artifacts, restart the
    reverse proxy, start the DNS helper, stop running service containers and,
    when ``urls_in_hosts`` is enabled, mirror the URLs into the system hosts
    file.
    """

    plan = plan_ports(store)
    engine.require_ready()
    write_artifacts(paths, plan, engine.host_gateway)

    engine.restart_reverse_proxy()
    engine.start_dns_helper()
    engine.stop_running_services()

    if store.urls_in_hosts:
        system.sync_system_hosts(plan.urls)
    log_info("deploy_complete", services=len(plan.assignments))
    return plan


def _service_folders(location: Path) -> list[str]:
    try:
        return sorted(entry.name for entry in location.iterdir() if entry.is_dir())
    except OSError as exc:
        raise IOFailure(f"Failed to read domain location {location}: {exc}") from exc
