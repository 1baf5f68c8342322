"""Engine adapter tests with ``subprocess`` replaced by a recorder."""

from __future__ import annotations

import subprocess
from typing import Any

import pytest

from darp.adapters import engine as engine_module
from darp.adapters.engine import DNS_HELPER, REVERSE_PROXY, ContainerEngine, EngineKind
from darp.adapters.paths import DarpPaths
from darp.domain.errors import IOFailure, PreconditionFailed


class FakeProcess:
    def __init__(self, outcomes: list[Any]) -> None:
        self.outcomes = outcomes
        self.waits: list[float | None] = []

    def wait(self, timeout: float | None = None) -> int:
        self.waits.append(timeout)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class Recorder:
    """Stands in for ``subprocess.run`` and ``subprocess.Popen``."""

    def __init__(self, *, stdout: str = "", returncode: int = 0, wait_outcomes: list[Any] | None = None) -> None:
        self.stdout = stdout
        self.returncode = returncode
        self.wait_outcomes = wait_outcomes if wait_outcomes is not None else [0]
        self.run_calls: list[list[str]] = []
        self.popen_calls: list[list[str]] = []

    def run(self, argv: list[str], **_kwargs: Any) -> subprocess.CompletedProcess[str]:
        self.run_calls.append(list(argv))
        return subprocess.CompletedProcess(argv, self.returncode, stdout=self.stdout)

    def popen(self, argv: list[str], **_kwargs: Any) -> FakeProcess:
        self.popen_calls.append(list(argv))
        return FakeProcess(self.wait_outcomes)


@pytest.fixture()
def recorder(monkeypatch: pytest.MonkeyPatch) -> Recorder:
    rec = Recorder()
    monkeypatch.setattr(engine_module.subprocess, "run", rec.run)
    monkeypatch.setattr(engine_module.subprocess, "Popen", rec.popen)
    return rec


def test_engine_kind_capabilities() -> None:
    assert EngineKind.from_setting("PODMAN") is EngineKind.PODMAN
    assert EngineKind.from_setting("containerd") is EngineKind.NONE
    assert EngineKind.PODMAN.host_gateway == "host.containers.internal"
    assert EngineKind.DOCKER.host_gateway == "host.docker.internal"
    assert EngineKind.NONE.host_gateway == "localhost"
    assert EngineKind.NONE.binary is None


def test_docker_readiness(recorder: Recorder, paths: DarpPaths) -> None:
    docker = ContainerEngine(EngineKind.DOCKER, paths)
    docker.require_ready()
    assert recorder.run_calls == [["docker", "info"]]

    recorder.returncode = 1
    with pytest.raises(PreconditionFailed, match="Docker does not appear to be running"):
        docker.require_ready()


def test_podman_readiness_checks_the_configured_machine(recorder: Recorder, paths: DarpPaths) -> None:
    recorder.stdout = "podman-machine-default* true\ndev-vm false\n"

    ContainerEngine(EngineKind.PODMAN, paths).require_ready()
    with pytest.raises(PreconditionFailed, match="Podman machine 'dev-vm' appears to be down"):
        ContainerEngine(EngineKind.PODMAN, paths, podman_machine="dev-vm").require_ready()


def test_no_engine_is_not_ready(paths: DarpPaths) -> None:
    with pytest.raises(PreconditionFailed, match="No container engine is configured."):
        ContainerEngine(EngineKind.NONE, paths).require_ready()


def test_reverse_proxy_started_when_absent(recorder: Recorder, paths: DarpPaths) -> None:
    ContainerEngine(EngineKind.DOCKER, paths).restart_reverse_proxy()

    assert recorder.run_calls == [["docker", "ps", "--format", "{{.Names}}"]]
    assert recorder.popen_calls == [
        [
            "docker",
            "run",
            "-d",
            "--rm",
            "--name",
            REVERSE_PROXY,
            "-p",
            "80:80",
            "-v",
            f"{paths.vhost_container_conf}:/etc/nginx/conf.d/vhost_container.conf",
            "nginx",
        ]
    ]


def test_reverse_proxy_restarted_when_running(recorder: Recorder, paths: DarpPaths) -> None:
    recorder.stdout = f"{REVERSE_PROXY}\n"

    ContainerEngine(EngineKind.PODMAN, paths).restart_reverse_proxy()

    assert recorder.popen_calls == [["podman", "restart", REVERSE_PROXY]]


def test_dns_helper_started_once(recorder: Recorder, paths: DarpPaths) -> None:
    engine = ContainerEngine(EngineKind.DOCKER, paths)
    engine.start_dns_helper()
    assert recorder.popen_calls[0][:6] == ["docker", "run", "-d", "--rm", "--name", DNS_HELPER]
    assert "--cap-add=NET_ADMIN" in recorder.popen_calls[0]
    assert recorder.popen_calls[0][-1] == "dockurr/dnsmasq"

    recorder.stdout = f"{DNS_HELPER}\n"
    engine.start_dns_helper()
    assert len(recorder.popen_calls) == 1


def test_only_service_containers_are_stopped(recorder: Recorder, paths: DarpPaths) -> None:
    recorder.stdout = f"darp_src_api\n{REVERSE_PROXY}\nunrelated\ndarp_lab_web\n"

    ContainerEngine(EngineKind.DOCKER, paths).stop_running_services()

    assert recorder.popen_calls == [["docker", "stop", "darp_src_api"], ["docker", "stop", "darp_lab_web"]]


def test_lifecycle_calls_are_noops_without_engine(recorder: Recorder, paths: DarpPaths) -> None:
    engine = ContainerEngine(EngineKind.NONE, paths)
    engine.restart_reverse_proxy()
    engine.start_dns_helper()
    engine.stop_running_services()
    engine.stop_named_container(DNS_HELPER)

    assert recorder.run_calls == []
    assert recorder.popen_calls == []


def test_run_interactive_builds_command_and_restarts(recorder: Recorder, paths: DarpPaths) -> None:
    recorder.wait_outcomes = [3, 0]
    engine = ContainerEngine(EngineKind.PODMAN, paths)

    code = engine.run_interactive(["-p", "50100:8000", "img"], "darp_src_api", restart_on=frozenset({3}))

    assert code == 0
    assert recorder.popen_calls == [
        ["podman", "run", "--rm", "-it", "--name", "darp_src_api", "-p", "50100:8000", "img"],
    ] * 2


def test_run_interactive_non_tty_for_serve(recorder: Recorder, paths: DarpPaths) -> None:
    recorder.wait_outcomes = [7]

    code = ContainerEngine(EngineKind.DOCKER, paths).run_interactive(["img"], "darp_a_b", interactive=False)

    assert code == 7
    assert recorder.popen_calls == [["docker", "run", "--rm", "--name", "darp_a_b", "img"]]


def test_ctrl_c_stops_the_container_after_grace_period(recorder: Recorder, paths: DarpPaths) -> None:
    recorder.wait_outcomes = [KeyboardInterrupt(), subprocess.TimeoutExpired("podman", 5)]

    code = ContainerEngine(EngineKind.PODMAN, paths).run_interactive(["img"], "darp_src_api")

    assert code == 130
    assert recorder.run_calls == [["podman", "stop", "darp_src_api"]]


def test_spawn_failure_is_io_failure(monkeypatch: pytest.MonkeyPatch, paths: DarpPaths) -> None:
    def _missing(*_args: Any, **_kwargs: Any) -> None:
        raise FileNotFoundError("docker")

    monkeypatch.setattr(engine_module.subprocess, "run", _missing)

    with pytest.raises(IOFailure, match="Failed to run docker"):
        ContainerEngine(EngineKind.DOCKER, paths).require_ready()
