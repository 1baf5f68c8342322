from __future__ import annotations

from pathlib import Path

import pytest

from darp.application.resolution import (
    ResolutionContext,
    resolve_base_image,
    resolve_host_path,
    resolve_host_portmappings,
    resolve_image_name,
    resolve_platform,
    resolve_serve_command,
    resolve_volumes,
)
from darp.domain.errors import PreconditionFailed
from darp.domain.model import Environment, Service, Volume

CONTEXT = ResolutionContext(cwd=Path("/work/src/api"), home=Path("/home/dev"))


def _image(cli: str | None, service: Service | None, environment: Environment | None) -> str:
    return resolve_base_image(
        cli,
        service,
        environment,
        domain_name="src",
        service_name="api",
        env_name="dev",
        command_name="shell",
    )


def test_service_volumes_hide_environment_volumes() -> None:
    env = Environment(volumes=[Volume(container="/a", host="x")])
    svc = Service(volumes=[Volume(container="/b", host="y")])

    assert resolve_volumes(svc, env) == [Volume(container="/b", host="y")]
    assert resolve_volumes(Service(), env) == [Volume(container="/a", host="x")]
    assert resolve_volumes(None, env) == [Volume(container="/a", host="x")]


def test_empty_service_list_still_overrides() -> None:
    env = Environment(volumes=[Volume(container="/a", host="x")])

    assert resolve_volumes(Service(volumes=[]), env) == []


def test_portmaps_are_not_merged() -> None:
    env = Environment(host_portmappings={"8080": "80"})
    svc = Service(host_portmappings={"9090": "90"})

    assert resolve_host_portmappings(svc, env) == {"9090": "90"}
    assert resolve_host_portmappings(None, None) is None


def test_scalar_fields_fall_back_independently() -> None:
    env = Environment(serve_command="env serve", platform="linux/amd64")
    svc = Service(platform="linux/arm64")

    assert resolve_platform(svc, env) == "linux/arm64"
    assert resolve_serve_command(svc, env) == "env serve"


def test_image_repository_prefix() -> None:
    assert resolve_image_name("3.12", None, Environment(image_repository="reg/env")) == "reg/env:3.12"
    assert resolve_image_name("3.12", Service(image_repository="reg/svc"), None) == "reg/svc:3.12"
    assert resolve_image_name("python:3.12", Service(), Environment()) == "python:3.12"


def test_base_image_precedence() -> None:
    env = Environment(default_container_image="env:img")
    svc = Service(default_container_image="svc:img")

    assert _image("cli:img", svc, env) == "cli:img"
    assert _image(None, svc, env) == "svc:img"
    assert _image(None, Service(), env) == "env:img"


def test_missing_base_image_names_both_remedies() -> None:
    with pytest.raises(PreconditionFailed) as excinfo:
        _image(None, None, Environment())

    message = str(excinfo.value)
    assert "darp config set svc default-container-image src api <image>" in message
    assert "darp config set env default-container-image dev <image>" in message


def test_host_path_tokens() -> None:
    assert resolve_host_path("{pwd}/data", CONTEXT) == "/work/src/api/data"
    assert resolve_host_path("{home}/.cache", CONTEXT) == "/home/dev/.cache"
    assert resolve_host_path("relative/dir/", CONTEXT) == "relative/dir/"
