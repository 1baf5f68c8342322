"""OS integration against a temporary filesystem (no privilege prefix)."""

from __future__ import annotations

from pathlib import Path

import pytest

from darp.adapters.paths import DarpPaths
from darp.adapters.system import (
    HOSTS_FOOTER,
    HOSTS_HEADER,
    RC_START_MARKER,
    RESOLVER_CONTENT,
    TEST_CONF_CONTENT,
    OsIntegration,
    completion_targets,
    detect_shell,
    ensure_rc_block,
    remove_rc_block,
    splice_hosts_block,
)
from darp.domain.errors import IOFailure, PreconditionFailed


@pytest.fixture()
def system(paths: DarpPaths, tmp_path: Path) -> OsIntegration:
    hosts = tmp_path / "etc" / "hosts"
    hosts.parent.mkdir(parents=True)
    hosts.write_text("127.0.0.1 localhost\n", encoding="utf-8")
    return OsIntegration(
        paths,
        hosts_path=hosts,
        resolver_path=tmp_path / "etc" / "resolver" / "test",
        privilege=(),
    )


def test_splice_replaces_existing_block_and_keeps_trailing_text() -> None:
    current = "\n".join(
        ["127.0.0.1 localhost", "", HOSTS_HEADER, "127.0.0.1   old.src.test", HOSTS_FOOTER, "", "10.0.0.1 nas", ""]
    )

    updated = splice_hosts_block(current, ["api.src.test", "web.src.test"])

    assert "old.src.test" not in updated
    assert updated.count(HOSTS_HEADER) == 1
    assert "127.0.0.1   api.src.test\n127.0.0.1   web.src.test\n" in updated
    assert updated.startswith("127.0.0.1 localhost\n")
    assert updated.endswith("10.0.0.1 nas\n")
    assert splice_hosts_block(updated, ["api.src.test", "web.src.test"]) == updated


def test_splice_normalises_crlf() -> None:
    updated = splice_hosts_block("127.0.0.1 localhost\r\n", ["api.src.test"])

    assert "\r" not in updated


def test_splice_with_no_hosts_leaves_an_empty_block() -> None:
    assert splice_hosts_block("", []) == f"\n{HOSTS_HEADER}\n{HOSTS_FOOTER}\n"


@pytest.mark.parametrize(
    ("shell_path", "expected"),
    [("/bin/bash", "bash"), ("/usr/bin/zsh", "zsh"), ("fish", "fish"), ("/bin/sh", None), (None, None)],
)
def test_detect_shell(shell_path: str | None, expected: str | None) -> None:
    assert detect_shell(shell_path) == expected


def test_rc_block_is_added_once_and_removed(tmp_path: Path) -> None:
    rc = tmp_path / ".bashrc"
    rc.write_text("export EDITOR=vi", encoding="utf-8")

    assert ensure_rc_block(rc, "source completions") is True
    assert ensure_rc_block(rc, "source completions") is False
    assert rc.read_text(encoding="utf-8").count(RC_START_MARKER) == 1

    assert remove_rc_block(rc) is True
    assert rc.read_text(encoding="utf-8") == "export EDITOR=vi\n"
    assert remove_rc_block(rc) is False


def test_remove_rc_block_from_missing_file(tmp_path: Path) -> None:
    assert remove_rc_block(tmp_path / ".zshrc") is False


def test_sync_system_hosts_rewrites_managed_block(system: OsIntegration) -> None:
    system.sync_system_hosts(["api.src.test"])
    system.sync_system_hosts(["web.src.test"])

    text = system.hosts_path.read_text(encoding="utf-8")
    assert text.startswith("127.0.0.1 localhost\n")
    assert "127.0.0.1   web.src.test" in text
    assert "api.src.test" not in text


def test_resolver_lifecycle(system: OsIntegration) -> None:
    system.init_resolver()
    assert system.resolver_path.read_text(encoding="utf-8") == RESOLVER_CONTENT

    system.remove_resolver()
    assert not system.resolver_path.exists()


def test_failed_privileged_command_is_io_failure(system: OsIntegration, tmp_path: Path) -> None:
    system.hosts_path = tmp_path / "missing" / "hosts"

    with pytest.raises(IOFailure, match="exited with status"):
        system.sync_system_hosts(["api.src.test"])


def test_prepare_root_copies_nginx_conf(system: OsIntegration, paths: DarpPaths) -> None:
    system.prepare_root()

    assert paths.nginx_conf_path.read_text(encoding="utf-8") == paths.nginx_conf_source.read_text(encoding="utf-8")
    assert (paths.dnsmasq_dir / "test.conf").read_text(encoding="utf-8") == TEST_CONF_CONTENT


def test_prepare_root_requires_nginx_source(system: OsIntegration, paths: DarpPaths) -> None:
    paths.nginx_conf_source.unlink()

    with pytest.raises(PreconditionFailed, match="Expected nginx.conf at"):
        system.prepare_root()


def test_completion_install_and_uninstall(system: OsIntegration, tmp_path: Path) -> None:
    home = tmp_path / "home"
    targets = completion_targets(home)

    system.install_completion(targets["zsh"], "#compdef darp\n")
    system.install_completion(targets["fish"], "complete -c darp\n")

    assert (home / ".zfunc" / "_darp").read_text(encoding="utf-8") == "#compdef darp\n"
    assert RC_START_MARKER in (home / ".zshrc").read_text(encoding="utf-8")
    assert (home / ".config" / "fish" / "completions" / "darp.fish").exists()

    system.uninstall_completion(targets["zsh"])
    system.uninstall_completion(targets["bash"])

    assert not (home / ".zfunc" / "_darp").exists()
    assert (home / ".zshrc").read_text(encoding="utf-8") == ""
