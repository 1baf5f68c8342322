"""Application-layer resolution rules.

Purpose
-------
Compute the *effective* value of each runtime parameter from the two override
tiers. A value set on the service wins. Otherwise the environment's value is
used. If neither tier sets it the result is ``None`` and the caller decides
whether that is fatal.

Contents
    - ``ResolutionContext``: explicit cwd/home values used for host path tokens.
    - ``resolve_image_name`` / ``resolve_base_image``: image tag composition.
    - ``resolve_serve_command`` / ``resolve_platform`` /
      ``resolve_host_portmappings`` / ``resolve_volumes``: independent
      per-field lookups.
    - ``resolve_host_path``: ``{pwd}`` / ``{home}`` substitution.

System Role
-----------
Pure functions consumed by :mod:`darp.application.session`. The override is
by presence of the field, not a merge: a service that defines ``volumes`` at
all (even ``[]``) hides the environment's volumes.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Final

from ..domain.errors import PreconditionFailed
from ..domain.model import Environment, Service, Volume

PWD_TOKEN: Final[str] = "{pwd}"
HOME_TOKEN: Final[str] = "{home}"


@dataclass(frozen=True, slots=True)
class ResolutionContext:
    """Process facts the resolution rules may depend on, passed in explicitly.

    Attributes
    ----------
    cwd:
        Directory the command runs in (the service folder for shell/serve).
    home:
        User home directory substituted for ``{home}``.
    """

    cwd: Path
    home: Path

    @classmethod
    def current(cls) -> ResolutionContext:
        """Capture the running process's cwd and home; only the CLI calls this."""

        return cls(cwd=Path.cwd(), home=Path.home())


def _pick(field_name: str, service: Service | None, environment: Environment | None):
    """Return the service's value for *field_name*, falling back to the environment's."""

    if service is not None:
        value = getattr(service, field_name)
        if value is not None:
            return value
    if environment is not None:
        return getattr(environment, field_name)
    return None


def resolve_image_name(cli_image: str, service: Service | None, environment: Environment | None) -> str:
    """Prefix *cli_image* with the effective ``image_repository`` if one is set.

    Examples
    --------
    >>> resolve_image_name("3.12", None, Environment(image_repository="reg/env"))
    'reg/env:3.12'
    >>> resolve_image_name("3.12", Service(image_repository="reg/svc"), Environment(image_repository="reg/env"))
    'reg/svc:3.12'
    >>> resolve_image_name("python:3.12", None, None)
    'python:3.12'
    """

    repository = _pick("image_repository", service, environment)
    if repository is None:
        return cli_image
    return f"{repository}:{cli_image}"


def resolve_base_image(
    cli_image: str | None,
    service: Service | None,
    environment: Environment | None,
    *,
    domain_name: str,
    service_name: str,
    env_name: str | None,
    command_name: str,
) -> str:
    """Return the base image: CLI literal, then service default, then environment default.

    Raises
    ------
    PreconditionFailed
        When no tier supplies an image; the message lists both commands that
        would configure one.
    """

    if cli_image:
        return cli_image
    image = _pick("default_container_image", service, environment)
    if image is not None:
        return image

    scope = f"'{domain_name}.{service_name}'"
    if env_name is not None:
        scope += f" in environment '{env_name}'"
    raise PreconditionFailed(
        f"No container image provided for {scope}.\n"
        f"Either pass an explicit image to 'darp {command_name}' or configure a default_container_image:\n"
        f"  darp config set svc default-container-image {domain_name} {service_name} <image>\n"
        f"or\n"
        f"  darp config set env default-container-image {env_name or '<env>'} <image>"
    )


def resolve_serve_command(service: Service | None, environment: Environment | None) -> str | None:
    return _pick("serve_command", service, environment)


def resolve_platform(service: Service | None, environment: Environment | None) -> str | None:
    return _pick("platform", service, environment)


def resolve_host_portmappings(service: Service | None, environment: Environment | None) -> dict[str, str] | None:
    return _pick("host_portmappings", service, environment)


def resolve_volumes(service: Service | None, environment: Environment | None) -> list[Volume] | None:
    return _pick("volumes", service, environment)


def resolve_host_path(template: str, context: ResolutionContext) -> str:
    """Substitute ``{pwd}`` and ``{home}`` in *template*; other text passes through.

    Examples
    --------
    >>> ctx = ResolutionContext(cwd=Path("/work/app"), home=Path("/home/dev"))
    >>> resolve_host_path("{pwd}/data", ctx)
    '/work/app/data'
    >>> resolve_host_path("{home}/.cache", ctx)
    '/home/dev/.cache'
    >>> resolve_host_path("/srv/static", ctx)
    '/srv/static'
    """

    return template.replace(PWD_TOKEN, str(context.cwd)).replace(HOME_TOKEN, str(context.home))
