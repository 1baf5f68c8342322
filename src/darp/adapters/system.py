"""Host operating-system integration.

Purpose
-------
Own every file darp touches outside its root directory: the ``*.test``
resolver entry, the managed block in ``/etc/hosts``, and the shell completion
scripts plus their rc-file hooks. The root-local support files created by
``darp install`` (``dnsmasq.d/test.conf`` and ``nginx.conf``) live here too.

Contents
--------
* :class:`OsIntegration` – implements
  :class:`darp.application.ports.SystemIntegration` plus install/uninstall.
* :func:`splice_hosts_block` – pure replacement of the managed hosts block.
* :func:`ensure_rc_block` / :func:`remove_rc_block` – idempotent rc edits.
* :func:`detect_shell` / :func:`completion_targets` – completion layout.

System Role
-----------
System files are root-owned, so reads and writes go through ``sudo cat`` and
``sudo tee``. The privilege prefix is a constructor argument so tests can run
the same code paths against a temporary directory.
"""

from __future__ import annotations

import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Final, Iterable, Sequence

import rich_click as click

from ..domain.errors import IOFailure, PreconditionFailed
from ..observability import log_debug, log_info, make_event
from .paths import DarpPaths

HOSTS_PATH: Final[Path] = Path("/etc/hosts")
RESOLVER_PATH: Final[Path] = Path("/etc/resolver/test")
HOSTS_HEADER: Final[str] = "# --- DARP HOSTS START ---"
HOSTS_FOOTER: Final[str] = "# --- DARP HOSTS END ---"
HOSTS_ADDRESS: Final[str] = "127.0.0.1"
RC_START_MARKER: Final[str] = "# >>> darp completion start >>>"
RC_END_MARKER: Final[str] = "# <<< darp completion end <<<"

RESOLVER_CONTENT: Final[str] = "nameserver 127.0.0.1\n"
TEST_CONF_CONTENT: Final[str] = "address=/.test/127.0.0.1\n"

_BASH_RC_BODY: Final[str] = """if command -v darp >/dev/null 2>&1; then
  source "${XDG_DATA_HOME:-$HOME/.local/share}/bash-completion/completions/darp"
fi"""

_ZSH_RC_BODY: Final[str] = """if command -v darp >/dev/null 2>&1; then
  fpath+=("$HOME/.zfunc")
  autoload -Uz compinit
  compinit
fi"""

SUPPORTED_SHELLS: Final[tuple[str, ...]] = ("bash", "zsh", "fish")


@dataclass(frozen=True, slots=True)
class CompletionTarget:
    """Where one shell's completion script and optional rc hook live."""

    shell: str
    script_path: Path
    rc_path: Path | None = None
    rc_body: str | None = None


def completion_targets(home: Path) -> dict[str, CompletionTarget]:
    """Return the completion layout for each supported shell under *home*."""

    return {
        "bash": CompletionTarget(
            shell="bash",
            script_path=home / ".local/share/bash-completion/completions/darp",
            rc_path=home / ".bashrc",
            rc_body=_BASH_RC_BODY,
        ),
        "zsh": CompletionTarget(
            shell="zsh",
            script_path=home / ".zfunc/_darp",
            rc_path=home / ".zshrc",
            rc_body=_ZSH_RC_BODY,
        ),
        "fish": CompletionTarget(shell="fish", script_path=home / ".config/fish/completions/darp.fish"),
    }


def detect_shell(shell_path: str | None) -> str | None:
    """Return the supported shell named by a ``$SHELL`` value.

    Examples
    --------
    >>> detect_shell("/bin/zsh")
    'zsh'
    >>> detect_shell("/usr/local/bin/fish")
    'fish'
    >>> detect_shell("/bin/tcsh") is None
    True
    """

    if not shell_path:
        return None
    name = Path(shell_path).name
    for shell in SUPPORTED_SHELLS:
        if name.endswith(shell):
            return shell
    return None


def splice_hosts_block(current: str, hosts: Iterable[str]) -> str:
    """Return *current* with darp's managed block replaced by entries for *hosts*.

    Text before and after an existing block is preserved; without a block the
    new one is appended after a blank line. Applying the same hosts twice is a
    no-op.

    Examples
    --------
    >>> text = splice_hosts_block("127.0.0.1 localhost\\n", ["api.src.test"])
    >>> print(text, end="")
    127.0.0.1 localhost
    <BLANKLINE>
    # --- DARP HOSTS START ---
    127.0.0.1   api.src.test
    # --- DARP HOSTS END ---
    >>> splice_hosts_block(text, ["api.src.test"]) == text
    True
    """

    current = current.replace("\r\n", "\n")
    start = current.find(HOSTS_HEADER)
    end = current.find(HOSTS_FOOTER, start) if start != -1 else -1
    if start != -1 and end != -1:
        before = current[:start]
        after = current[end + len(HOSTS_FOOTER) :].strip("\n")
    else:
        before = current
        after = ""
    before = before.rstrip("\n")

    block = "\n".join([HOSTS_HEADER, *(f"{HOSTS_ADDRESS}   {host}" for host in hosts), HOSTS_FOOTER])
    parts = [f"{before}\n" if before else "", "\n", block, "\n"]
    if after:
        parts += ["\n", after, "\n"]
    return "".join(parts)


def ensure_rc_block(rc_path: Path, body: str) -> bool:
    """Append the marked completion block to *rc_path* unless it is already there.

    Returns ``True`` when the file was changed.
    """

    try:
        contents = rc_path.read_text(encoding="utf-8") if rc_path.exists() else ""
        if RC_START_MARKER in contents:
            return False
        if contents and not contents.endswith("\n"):
            contents += "\n"
        block = body.rstrip("\n")
        contents += f"{RC_START_MARKER}\n{block}\n{RC_END_MARKER}\n"
        rc_path.parent.mkdir(parents=True, exist_ok=True)
        rc_path.write_text(contents, encoding="utf-8")
    except OSError as exc:
        raise IOFailure(f"Failed to update {rc_path}: {exc}") from exc
    return True


def remove_rc_block(rc_path: Path) -> bool:
    """Remove darp's marked block from *rc_path*; returns ``True`` when one was removed."""

    try:
        if not rc_path.exists():
            return False
        contents = rc_path.read_text(encoding="utf-8")
        start = contents.find(RC_START_MARKER)
        if start == -1:
            return False
        end = contents.find(RC_END_MARKER, start)
        end = len(contents) if end == -1 else end + len(RC_END_MARKER)
        head = contents[:start].rstrip("\n")
        tail = contents[end:].lstrip("\n")
        updated = f"{head}\n" if head else ""
        if tail:
            updated += ("\n" if updated else "") + tail.rstrip("\n") + "\n"
        rc_path.write_text(updated, encoding="utf-8")
    except OSError as exc:
        raise IOFailure(f"Failed to update {rc_path}: {exc}") from exc
    return True


class OsIntegration:
    """Resolver, hosts-file and completion management for one darp root."""

    def __init__(
        self,
        paths: DarpPaths,
        *,
        hosts_path: Path = HOSTS_PATH,
        resolver_path: Path = RESOLVER_PATH,
        privilege: Sequence[str] = ("sudo",),
    ) -> None:
        self.paths = paths
        self.hosts_path = hosts_path
        self.resolver_path = resolver_path
        self.privilege = tuple(privilege)

    def sync_system_hosts(self, hosts: Iterable[str]) -> None:
        """Rewrite the managed block of the system hosts file with *hosts*."""

        current = self._privileged(["cat", str(self.hosts_path)], capture=True)
        self._privileged_write(self.hosts_path, splice_hosts_block(current, hosts))
        click.echo(f"{click.style(str(self.hosts_path), fg='green')} updated with Darp URL mappings (127.0.0.1).")

    def init_resolver(self) -> None:
        """Point the ``test`` TLD at the local DNS helper."""

        self._privileged(["mkdir", "-p", str(self.resolver_path.parent)])
        self._privileged_write(self.resolver_path, RESOLVER_CONTENT)
        click.echo(f"{click.style(str(self.resolver_path), fg='green')} created")

    def remove_resolver(self) -> None:
        self._privileged(["rm", "-f", str(self.resolver_path)])
        click.echo(f"{click.style(str(self.resolver_path), fg='green')} removed")

    def prepare_root(self) -> None:
        """Create ``dnsmasq.d/test.conf`` and copy ``nginx.conf`` into the darp root."""

        source = self.paths.nginx_conf_source
        if not source.exists():
            raise PreconditionFailed(f"Expected nginx.conf at {source} not found")
        test_conf = self.paths.dnsmasq_dir / "test.conf"
        try:
            self.paths.dnsmasq_dir.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(source, self.paths.nginx_conf_path)
            test_conf.write_text(TEST_CONF_CONTENT, encoding="utf-8")
        except OSError as exc:
            raise IOFailure(f"Failed to prepare {self.paths.root}: {exc}") from exc
        log_info("root_prepared", **make_event("artifact", str(self.paths.root), {"nginx_source": str(source)}))
        click.echo(f"{click.style(str(test_conf), fg='green')} created")

    def install_completion(self, target: CompletionTarget, script: str) -> None:
        try:
            target.script_path.parent.mkdir(parents=True, exist_ok=True)
            target.script_path.write_text(script, encoding="utf-8")
        except OSError as exc:
            raise IOFailure(f"Failed to write {target.script_path}: {exc}") from exc
        click.echo(f"Installed {target.shell} completions to {target.script_path}")
        if target.rc_path is not None and target.rc_body is not None:
            ensure_rc_block(target.rc_path, target.rc_body)
            click.echo(f"Updated {target.rc_path} with darp completion block")
        elif target.shell == "fish":
            click.echo("Fish automatically loads completions from ~/.config/fish/completions.")

    def uninstall_completion(self, target: CompletionTarget) -> None:
        try:
            if target.script_path.exists():
                target.script_path.unlink()
                click.echo(f"Removed {target.shell} completions at {target.script_path}")
        except OSError as exc:
            raise IOFailure(f"Failed to remove {target.script_path}: {exc}") from exc
        if target.rc_path is not None:
            remove_rc_block(target.rc_path)

    def _privileged(self, argv: list[str], *, capture: bool = False) -> str:
        command = [*self.privilege, *argv]
        log_debug("system_exec", argv=command)
        try:
            result = subprocess.run(
                command,
                check=False,
                text=True,
                stdout=subprocess.PIPE if capture else subprocess.DEVNULL,
            )
        except OSError as exc:
            raise IOFailure(f"Failed to run {command[0]}: {exc}") from exc
        if result.returncode != 0:
            raise IOFailure(f"'{' '.join(command)}' exited with status {result.returncode}")
        return result.stdout or ""

    def _privileged_write(self, path: Path, text: str) -> None:
        command = [*self.privilege, "tee", str(path)]
        log_debug("system_write", path=str(path), size=len(text))
        try:
            result = subprocess.run(command, input=text, check=False, text=True, stdout=subprocess.DEVNULL)
        except OSError as exc:
            raise IOFailure(f"Failed to run {command[0]}: {exc}") from exc
        if result.returncode != 0:
            raise IOFailure(f"Failed to write {path}: '{' '.join(command)}' exited with status {result.returncode}")
