"""Application-layer ports describing the external collaborators.

Purpose
-------
Define the structural contracts the deploy pass and the session runner rely
on, so the core can be exercised with in-memory fakes while the CLI wires in
the subprocess-backed adapters.

Contents
--------
* :class:`ContainerEngine` – the container runtime (docker or podman).
* :class:`SystemIntegration` – host OS facilities (``/etc/hosts``).

System Role
-----------
:mod:`darp.adapters.engine` and :mod:`darp.adapters.system` implement these
protocols; :mod:`darp.application.deploy` only talks to the abstractions.
"""

from __future__ import annotations

from typing import Iterable, Protocol, Sequence, runtime_checkable


@runtime_checkable
class ContainerEngine(Protocol):
    """Start, stop, and run containers on behalf of darp.

    Why
    ----
    The deploy pass needs to bounce the proxy and DNS containers without
    knowing which binary does it or how readiness is checked.
    """

    @property
    def host_gateway(self) -> str:
        """Hostname under which containers reach the host machine."""

    def require_ready(self) -> None:
        """Raise ``PreconditionFailed`` when the engine cannot run containers."""

    def restart_reverse_proxy(self) -> None:
        """(Re)start the nginx reverse proxy with the current vhost file mounted."""

    def start_dns_helper(self) -> None:
        """Start the dnsmasq helper if it is not already running."""

    def stop_running_services(self) -> None:
        """Stop every running service container created by ``shell``/``serve``."""

    def platform_args(self, platform: str | None) -> list[str]:
        """Translate an ``os/arch`` string into engine-specific run flags."""

    def run_interactive(self, args: Sequence[str], container_name: str, *, interactive: bool = True) -> int:
        """Run a container in the foreground and return its exit code."""


@runtime_checkable
class SystemIntegration(Protocol):
    """Reach outside the darp root into system-owned files."""

    def sync_system_hosts(self, hosts: Iterable[str]) -> None:
        """Replace darp's managed block in ``/etc/hosts`` with *hosts*."""
