"""Shared fixtures: an isolated darp root, domain trees, and in-memory collaborators."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable, Sequence

import pytest

from darp.adapters.paths import DarpPaths
from darp.domain.errors import PreconditionFailed
from darp.observability import bind_trace_id


@dataclass
class FakeEngine:
    """Records lifecycle calls instead of shelling out to docker/podman."""

    host_gateway: str = "host.docker.internal"
    ready: bool = True
    exit_code: int = 0
    calls: list[str] = field(default_factory=list)
    runs: list[tuple[tuple[str, ...], str, bool]] = field(default_factory=list)

    def require_ready(self) -> None:
        self.calls.append("require_ready")
        if not self.ready:
            raise PreconditionFailed("engine is down")

    def restart_reverse_proxy(self) -> None:
        self.calls.append("restart_reverse_proxy")

    def start_dns_helper(self) -> None:
        self.calls.append("start_dns_helper")

    def stop_running_services(self) -> None:
        self.calls.append("stop_running_services")

    def platform_args(self, platform: str | None) -> list[str]:
        return ["--platform", platform] if platform else []

    def run_interactive(self, args: Sequence[str], container_name: str, *, interactive: bool = True) -> int:
        self.runs.append((tuple(args), container_name, interactive))
        return self.exit_code


@dataclass
class FakeSystem:
    """Captures hosts-file syncs."""

    synced: list[list[str]] = field(default_factory=list)

    def sync_system_hosts(self, hosts: Iterable[str]) -> None:
        self.synced.append(list(hosts))


@pytest.fixture(autouse=True)
def _clear_trace_id() -> Iterable[None]:
    yield
    bind_trace_id(None)


@pytest.fixture()
def paths(tmp_path: Path) -> DarpPaths:
    """A darp root inside ``tmp_path`` with a fake packaged ``nginx.conf``."""

    source = tmp_path / "opt" / "nginx.conf"
    source.parent.mkdir(parents=True)
    source.write_text("events {}\n", encoding="utf-8")
    return DarpPaths.from_root(tmp_path / "darp-root", nginx_conf_source=source)


@pytest.fixture()
def make_domain_dir(tmp_path: Path) -> Callable[..., Path]:
    """Create ``tmp_path/<name>`` with the given service subfolders."""

    def _make(name: str, *folders: str) -> Path:
        root = tmp_path / "projects" / name
        root.mkdir(parents=True, exist_ok=True)
        for folder in folders:
            (root / folder).mkdir()
        return root

    return _make


@pytest.fixture()
def fake_engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture()
def fake_system() -> FakeSystem:
    return FakeSystem()
