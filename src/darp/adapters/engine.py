"""Subprocess adapter for the docker / podman container engines.

Purpose
-------
Implement :class:`darp.application.ports.ContainerEngine` by shelling out to
the configured engine binary. The two engines differ only in a few
capabilities (binary name, host gateway hostname, platform flags, readiness
probe) which are attached to :class:`EngineKind` so callers never branch on
the engine name themselves.

Contents
--------
* :class:`EngineKind` – closed set of engines plus the "none configured" case.
* :class:`ContainerEngine` – readiness, proxy/DNS lifecycle, interactive runs.
* :data:`REVERSE_PROXY` / :data:`DNS_HELPER` – managed container names.

System Role
-----------
Built by the CLI from the store's ``engine`` and ``podman_machine`` fields and
handed to the deploy pass and the shell/serve runner. Background starts are
fire-and-forget (``Popen`` without waiting) so ``darp deploy`` returns as soon
as the engine has accepted the request.
"""

from __future__ import annotations

import subprocess
from enum import Enum
from typing import Final, Sequence

import rich_click as click

from ..domain.errors import IOFailure, PreconditionFailed
from ..observability import log_debug, log_error, log_info
from .paths import DarpPaths

REVERSE_PROXY: Final[str] = "darp-reverse-proxy"
DNS_HELPER: Final[str] = "darp-masq"
DNS_HELPER_IMAGE: Final[str] = "dockurr/dnsmasq"
REVERSE_PROXY_IMAGE: Final[str] = "nginx"
SERVICE_PREFIX: Final[str] = "darp_"
DEFAULT_PODMAN_MACHINE: Final[str] = "podman-machine-default"

_CTRL_C_GRACE_SECONDS: Final[float] = 5.0
_NO_ENGINE_MESSAGE: Final[str] = (
    "No container engine is configured.\n"
    "Use 'darp config set engine podman' or 'darp config set engine docker'."
)


class EngineKind(Enum):
    """Container engines darp can drive, with their per-engine capabilities."""

    PODMAN = "podman"
    DOCKER = "docker"
    NONE = "none"

    @classmethod
    def from_setting(cls, value: str | None) -> EngineKind:
        """Map the store's ``engine`` string (case-insensitive) onto a kind.

        Examples
        --------
        >>> EngineKind.from_setting("Docker")
        <EngineKind.DOCKER: 'docker'>
        >>> EngineKind.from_setting(None)
        <EngineKind.NONE: 'none'>
        """

        normalised = (value or "").strip().lower()
        for kind in (cls.PODMAN, cls.DOCKER):
            if kind.value == normalised:
                return kind
        return cls.NONE

    @property
    def binary(self) -> str | None:
        return None if self is EngineKind.NONE else self.value

    @property
    def host_gateway(self) -> str:
        """Hostname containers use to reach services published on the host."""

        return _HOST_GATEWAYS[self]

    def platform_args(self, platform: str | None) -> list[str]:
        """Translate ``os/arch`` into run flags for this engine.

        Examples
        --------
        >>> EngineKind.DOCKER.platform_args("linux/amd64")
        ['--platform', 'linux/amd64']
        >>> EngineKind.PODMAN.platform_args("linux/arm64")
        ['--os', 'linux', '--arch', 'arm64']
        >>> EngineKind.PODMAN.platform_args("arm64")
        ['--arch', 'arm64']
        >>> EngineKind.NONE.platform_args("linux/amd64")
        []
        """

        if not platform:
            return []
        if self is EngineKind.DOCKER:
            return ["--platform", platform]
        if self is EngineKind.PODMAN:
            os_name, slash, arch = platform.partition("/")
            if slash:
                return ["--os", os_name, "--arch", arch]
            return ["--arch", platform]
        return []


_HOST_GATEWAYS: Final[dict[EngineKind, str]] = {
    EngineKind.PODMAN: "host.containers.internal",
    EngineKind.DOCKER: "host.docker.internal",
    EngineKind.NONE: "localhost",
}


class ContainerEngine:
    """Drive the engine binary selected by :class:`EngineKind`.

    Parameters
    ----------
    kind:
        Engine to drive; :attr:`EngineKind.NONE` makes lifecycle calls no-ops
        and :meth:`require_ready` fail.
    paths:
        Layout supplying the vhost file and ``dnsmasq.d`` directory mounts.
    podman_machine:
        Podman VM expected to be running; defaults to
        :data:`DEFAULT_PODMAN_MACHINE`.
    """

    def __init__(self, kind: EngineKind, paths: DarpPaths, *, podman_machine: str | None = None) -> None:
        self.kind = kind
        self.paths = paths
        self.podman_machine = podman_machine or DEFAULT_PODMAN_MACHINE

    @property
    def host_gateway(self) -> str:
        return self.kind.host_gateway

    def platform_args(self, platform: str | None) -> list[str]:
        return self.kind.platform_args(platform)

    def require_ready(self) -> None:
        """Raise :class:`PreconditionFailed` unless the engine can run containers."""

        if self.kind is EngineKind.DOCKER:
            result = self._run(["docker", "info"], capture=False)
            if result.returncode != 0:
                raise PreconditionFailed("Docker does not appear to be running (docker info)")
            return
        if self.kind is EngineKind.PODMAN:
            result = self._run(["podman", "machine", "list", "--format", "{{.Name}} {{.Running}}"])
            if result.returncode != 0:
                raise PreconditionFailed(f"Failed to run 'podman machine list': exit {result.returncode}")
            if not _machine_running(result.stdout, self.podman_machine):
                raise PreconditionFailed(
                    f"Podman machine '{self.podman_machine}' appears to be down "
                    f"(podman machine start {self.podman_machine})"
                )
            return
        raise PreconditionFailed(_NO_ENGINE_MESSAGE)

    def running_containers(self) -> list[str]:
        """Return the names of running containers (empty when no engine is set)."""

        if self.kind.binary is None:
            return []
        result = self._run([self.kind.binary, "ps", "--format", "{{.Names}}"])
        if result.returncode != 0:
            log_error("engine_ps_failed", returncode=result.returncode)
            return []
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    def is_container_running(self, name: str) -> bool:
        return name in self.running_containers()

    def restart_reverse_proxy(self) -> None:
        """Restart the nginx proxy if it runs, otherwise start it detached."""

        binary = self.kind.binary
        if binary is None:
            return
        if self.is_container_running(REVERSE_PROXY):
            click.echo(f"restarting {click.style(REVERSE_PROXY, fg='green')}")
            self._spawn([binary, "restart", REVERSE_PROXY])
            return
        click.echo(f"starting {click.style(REVERSE_PROXY, fg='green')}")
        self._spawn(
            [
                binary,
                "run",
                "-d",
                "--rm",
                "--name",
                REVERSE_PROXY,
                "-p",
                "80:80",
                "-v",
                f"{self.paths.vhost_container_conf}:/etc/nginx/conf.d/vhost_container.conf",
                REVERSE_PROXY_IMAGE,
            ]
        )

    def start_dns_helper(self) -> None:
        """Start the dnsmasq helper detached unless it is already running."""

        binary = self.kind.binary
        if binary is None or self.is_container_running(DNS_HELPER):
            return
        click.echo(f"starting {click.style(DNS_HELPER, fg='green')}")
        self._spawn(
            [
                binary,
                "run",
                "-d",
                "--rm",
                "--name",
                DNS_HELPER,
                "-p",
                "53:53/udp",
                "-p",
                "53:53/tcp",
                "-v",
                f"{self.paths.dnsmasq_dir}:/etc/dnsmasq.d",
                "--cap-add=NET_ADMIN",
                DNS_HELPER_IMAGE,
            ]
        )

    def stop_running_services(self) -> None:
        """Stop every running ``darp_*`` container left by shell/serve."""

        binary = self.kind.binary
        if binary is None:
            return
        for name in self.running_containers():
            if name.startswith(SERVICE_PREFIX):
                click.echo(f"stopping {click.style(name, fg='cyan')}")
                self._spawn([binary, "stop", name])

    def stop_named_container(self, name: str) -> None:
        binary = self.kind.binary
        if binary is None or not self.is_container_running(name):
            return
        click.echo(f"stopping {click.style(name, fg='cyan')}")
        self._spawn([binary, "stop", name])

    def run_interactive(
        self,
        args: Sequence[str],
        container_name: str,
        *,
        interactive: bool = True,
        restart_on: frozenset[int] = frozenset(),
    ) -> int:
        """Run ``<engine> run --rm [-it] --name <container_name> *args`` in the foreground.

        The container is started again while its exit code is in *restart_on*.
        Ctrl+C gives the container a grace period to exit and then stops it by
        name. Returns the last exit code (130 after Ctrl+C).
        """

        binary = self.kind.binary
        if binary is None:
            raise PreconditionFailed(_NO_ENGINE_MESSAGE)
        command = [binary, "run", "--rm", *(["-it"] if interactive else []), "--name", container_name, *args]
        while True:
            log_info("container_run", container=container_name, argv=command)
            process = self._popen(command, detached=False)
            try:
                returncode = process.wait()
            except KeyboardInterrupt:
                click.echo(f"\nStopping {click.style(container_name, fg='cyan')} (Ctrl+C)", err=True)
                self._stop_after_interrupt(process, container_name)
                return 130
            if returncode in restart_on:
                click.echo(f"restarting {click.style(container_name, fg='cyan')}")
                continue
            log_debug("container_exited", container=container_name, returncode=returncode)
            return returncode

    def _stop_after_interrupt(self, process: subprocess.Popen, container_name: str) -> None:
        try:
            process.wait(timeout=_CTRL_C_GRACE_SECONDS)
        except subprocess.TimeoutExpired:
            result = self._run([self.kind.binary or "", "stop", container_name], capture=False)
            if result.returncode != 0:
                log_error("container_stop_failed", container=container_name, returncode=result.returncode)

    def _run(self, argv: list[str], *, capture: bool = True) -> subprocess.CompletedProcess[str]:
        log_debug("engine_exec", argv=argv)
        try:
            return subprocess.run(
                argv,
                check=False,
                text=True,
                stdout=subprocess.PIPE if capture else subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
            )
        except OSError as exc:
            raise IOFailure(f"Failed to run {argv[0]}: {exc}") from exc

    def _spawn(self, argv: list[str]) -> None:
        self._popen(argv, detached=True)

    def _popen(self, argv: list[str], *, detached: bool) -> subprocess.Popen:
        log_debug("engine_spawn", argv=argv, detached=detached)
        quiet = subprocess.DEVNULL if detached else None
        try:
            return subprocess.Popen(argv, stdout=quiet, stderr=quiet)
        except OSError as exc:
            raise IOFailure(f"Failed to start {argv[0]}: {exc}") from exc


def _machine_running(listing: str, machine: str) -> bool:
    """Return whether ``podman machine list`` output shows *machine* running.

    Examples
    --------
    >>> _machine_running("podman-machine-default* true\\nother false\\n", "podman-machine-default")
    True
    >>> _machine_running("podman-machine-default false\\n", "podman-machine-default")
    False
    """

    for line in listing.splitlines():
        parts = line.split()
        if len(parts) != 2:
            continue
        name, running = parts
        if name.rstrip("*") == machine and running.lower() == "true":
            return True
    return False
