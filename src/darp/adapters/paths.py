"""Filesystem layout of the darp root directory.

Purpose
-------
Resolve, once per process, every path the tool reads or writes: the
configuration store, the generated artifacts, and the nginx/dnsmasq support
files. The values are computed from an explicit environment mapping so tests
can point the whole tool at a temporary directory.

Contents
--------
* :class:`DarpPaths` – frozen value holding every location.
* :data:`DEFAULT_NGINX_CONF_SOURCE` – where installs ship ``nginx.conf``.

System Role
-----------
Built by the CLI and handed to the store adapter, the deploy pass, the session
planner, and the OS/engine adapters. Nothing below the CLI reads ``DARP_ROOT``
on its own.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Final, Mapping

DEFAULT_NGINX_CONF_SOURCE: Final[Path] = Path("/usr/local/opt/darp/nginx.conf")

_ROOT_ENV: Final[str] = "DARP_ROOT"
_NGINX_SOURCE_ENV: Final[str] = "DARP_NGINX_CONF_SOURCE"


@dataclass(frozen=True, slots=True)
class DarpPaths:
    """Every file and directory darp manages under its root.

    Examples
    --------
    >>> paths = DarpPaths.from_env({"DARP_ROOT": "/tmp/darp"})
    >>> paths.config_path.as_posix()
    '/tmp/darp/config.json'
    >>> paths.portmap_path.name, paths.dnsmasq_dir.name
    ('portmap.json', 'dnsmasq.d')
    """

    root: Path
    config_path: Path
    portmap_path: Path
    dnsmasq_dir: Path
    vhost_container_conf: Path
    hosts_container_path: Path
    nginx_conf_path: Path
    nginx_conf_source: Path

    @classmethod
    def from_root(cls, root: Path, *, nginx_conf_source: Path = DEFAULT_NGINX_CONF_SOURCE) -> DarpPaths:
        return cls(
            root=root,
            config_path=root / "config.json",
            portmap_path=root / "portmap.json",
            dnsmasq_dir=root / "dnsmasq.d",
            vhost_container_conf=root / "vhost_container.conf",
            hosts_container_path=root / "hosts_container",
            nginx_conf_path=root / "nginx.conf",
            nginx_conf_source=nginx_conf_source,
        )

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None, *, home: Path | None = None) -> DarpPaths:
        """Return the layout selected by ``DARP_ROOT`` (default ``~/.darp``).

        Parameters
        ----------
        env:
            Environment mapping; defaults to :data:`os.environ`.
        home:
            Home directory used for the default root; defaults to
            :meth:`pathlib.Path.home`.
        """

        source = os.environ if env is None else env
        raw_root = source.get(_ROOT_ENV)
        root = Path(raw_root) if raw_root else (home or Path.home()) / ".darp"
        raw_nginx = source.get(_NGINX_SOURCE_ENV)
        nginx_source = Path(raw_nginx) if raw_nginx else DEFAULT_NGINX_CONF_SOURCE
        return cls.from_root(root, nginx_conf_source=nginx_source)
