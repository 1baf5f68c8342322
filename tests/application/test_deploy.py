from __future__ import annotations

import json
from pathlib import Path
from typing import Callable

import pytest

from darp.adapters.paths import DarpPaths
from darp.application import mutations
from darp.application.deploy import BASE_PORT, deploy, plan_ports, render_vhosts
from darp.domain.errors import IOFailure, PreconditionFailed
from darp.domain.model import ConfigurationStore


@pytest.fixture()
def two_domains(make_domain_dir: Callable[..., Path]) -> ConfigurationStore:
    store = ConfigurationStore()
    mutations.add_domain(store, make_domain_dir("alpha", "web", "api"))
    mutations.add_domain(store, make_domain_dir("beta", "svc2", "svc1"))
    return store


def test_plan_assigns_consecutive_ports_in_sorted_order(two_domains: ConfigurationStore) -> None:
    plan = plan_ports(two_domains)

    assert [(a.domain, a.folder, a.port) for a in plan.assignments] == [
        ("alpha", "api", 50100),
        ("alpha", "web", 50101),
        ("beta", "svc1", 50102),
        ("beta", "svc2", 50103),
    ]


def test_plan_ignores_plain_files(make_domain_dir: Callable[..., Path]) -> None:
    location = make_domain_dir("alpha", "api")
    (location / "README.md").write_text("hi", encoding="utf-8")
    store = ConfigurationStore()
    mutations.add_domain(store, location)

    assert [a.folder for a in plan_ports(store).assignments] == ["api"]


def test_plan_without_domains_fails() -> None:
    with pytest.raises(PreconditionFailed, match="Please configure a domain."):
        plan_ports(ConfigurationStore())


def test_deploy_writes_all_artifacts(
    two_domains: ConfigurationStore, paths: DarpPaths, fake_engine, fake_system
) -> None:
    deploy(two_domains, paths, fake_engine, fake_system)

    hosts = paths.hosts_container_path.read_text(encoding="utf-8").splitlines()
    assert hosts == [
        "0.0.0.0   api.alpha.test",
        "0.0.0.0   web.alpha.test",
        "0.0.0.0   svc1.beta.test",
        "0.0.0.0   svc2.beta.test",
    ]

    vhost = paths.vhost_container_conf.read_text(encoding="utf-8")
    assert vhost.count("server {") == 4
    assert "server_name svc2.beta.test;" in vhost
    assert "proxy_pass http://host.docker.internal:50103/;" in vhost
    assert "proxy_set_header Host $host;" in vhost

    portmap = json.loads(paths.portmap_path.read_text(encoding="utf-8"))
    assert portmap == {"alpha": {"api": 50100, "web": 50101}, "beta": {"svc1": 50102, "svc2": 50103}}

    assert fake_engine.calls == [
        "require_ready",
        "restart_reverse_proxy",
        "start_dns_helper",
        "stop_running_services",
    ]
    assert fake_system.synced == []


def test_deploy_regenerates_instead_of_appending(
    two_domains: ConfigurationStore, paths: DarpPaths, fake_engine, fake_system
) -> None:
    deploy(two_domains, paths, fake_engine, fake_system)
    first = paths.vhost_container_conf.read_text(encoding="utf-8")
    deploy(two_domains, paths, fake_engine, fake_system)

    assert paths.vhost_container_conf.read_text(encoding="utf-8") == first


def test_deploy_is_independent_of_creation_order(tmp_path: Path) -> None:
    one = tmp_path / "one" / "proj"
    two = tmp_path / "two" / "proj"
    for root, folders in ((one, ["b", "a", "c"]), (two, ["c", "a", "b"])):
        root.mkdir(parents=True)
        for folder in folders:
            (root / folder).mkdir()

    plans = []
    for root in (one, two):
        store = ConfigurationStore()
        mutations.add_domain(store, root)
        plans.append([(a.folder, a.port) for a in plan_ports(store).assignments])

    assert plans[0] == plans[1] == [("a", BASE_PORT), ("b", BASE_PORT + 1), ("c", BASE_PORT + 2)]


def test_deploy_syncs_hosts_when_enabled(
    two_domains: ConfigurationStore, paths: DarpPaths, fake_engine, fake_system
) -> None:
    two_domains.urls_in_hosts = True

    deploy(two_domains, paths, fake_engine, fake_system)

    assert fake_system.synced == [["api.alpha.test", "web.alpha.test", "svc1.beta.test", "svc2.beta.test"]]


def test_missing_location_writes_nothing(
    two_domains: ConfigurationStore, paths: DarpPaths, fake_engine, fake_system
) -> None:
    deploy(two_domains, paths, fake_engine, fake_system)
    before = paths.portmap_path.read_text(encoding="utf-8")
    removed = next(key for key, domain in two_domains.domains.items() if domain.name == "beta")
    for child in Path(removed).iterdir():
        child.rmdir()
    Path(removed).rmdir()
    fake_engine.calls.clear()

    with pytest.raises(IOFailure):
        deploy(two_domains, paths, fake_engine, fake_system)

    assert paths.portmap_path.read_text(encoding="utf-8") == before
    assert fake_engine.calls == []


def test_engine_not_ready_writes_nothing(
    two_domains: ConfigurationStore, paths: DarpPaths, fake_engine, fake_system
) -> None:
    fake_engine.ready = False

    with pytest.raises(PreconditionFailed):
        deploy(two_domains, paths, fake_engine, fake_system)

    assert not paths.portmap_path.exists()


def test_vhost_uses_engine_gateway(two_domains: ConfigurationStore) -> None:
    text = render_vhosts(plan_ports(two_domains), "host.containers.internal")

    assert "proxy_pass http://host.containers.internal:50100/;" in text
