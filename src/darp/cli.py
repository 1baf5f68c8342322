"""CLI adapter for ``darp`` built on ``rich_click`` and ``lib_cli_exit_tools``.

Purpose
-------
Expose the configuration store, the deploy pass, and the shell/serve runner as
the ``darp`` command. Every command follows the same shape: resolve paths
from the environment, load the store, call one application-layer operation,
and persist the store only when that operation returned normally.

Contents
--------
* :data:`CLICK_CONTEXT_SETTINGS` – shared Click settings ensuring ``-h`` works.
* :func:`cli` – root group wiring traceback handling and ``--verbose`` logging.
* ``config`` – ``set`` / ``add`` / ``rm`` / ``show`` sub-groups editing the store.
* :func:`cli_deploy`, :func:`cli_shell`, :func:`cli_serve`, :func:`cli_urls` –
  runtime commands.
* :func:`cli_install` / :func:`cli_uninstall` – host integration.
* :func:`main` – entry point used by ``console_scripts`` registration.

System Role
-----------
Outermost layer. :class:`darp.domain.errors.DarpError` is converted into a
one-line :class:`click.ClickException` (exit code 1) unless ``--traceback``
is active, in which case the original exception reaches
``lib_cli_exit_tools`` and is printed in full.
"""

from __future__ import annotations

import functools
import json
import os
import sys
import uuid
from contextlib import contextmanager
from importlib import metadata
from pathlib import Path
from typing import Any, Callable, Final, Iterator, Optional, Sequence, TypeVar

import lib_cli_exit_tools
import rich_click as click
from click.shell_completion import get_completion_class

from .adapters.engine import DNS_HELPER, REVERSE_PROXY, ContainerEngine, EngineKind
from .adapters.paths import DarpPaths
from .adapters.store import load_store, read_json, save_store
from .adapters.system import OsIntegration, completion_targets, detect_shell
from .application import mutations
from .application.deploy import deploy as run_deploy
from .application.resolution import ResolutionContext
from .application.session import ContainerInvocation, plan_serve, plan_shell
from .domain.errors import DarpError, InvalidFormat, PreconditionFailed
from .domain.model import ConfigurationStore
from .observability import bind_trace_id, enable_console_logging, get_logger, log_debug

CLICK_CONTEXT_SETTINGS = {"help_option_names": ["-h", "--help"]}
_TRACEBACK_SUMMARY_LIMIT: Final[int] = 500
_TRACEBACK_VERBOSE_LIMIT: Final[int] = 10_000

PROG_NAME: Final[str] = "darp"
COMPLETE_VAR: Final[str] = "_DARP_COMPLETE"

#: CLI spelling of each override field.
FIELD_OPTIONS: Final[dict[str, str]] = {
    "image-repository": "image_repository",
    "serve-command": "serve_command",
    "platform": "platform",
    "default-container-image": "default_container_image",
}

_Func = TypeVar("_Func", bound=Callable[..., Any])


def _resolve_version() -> str:
    """Return the installed package version, ``"0.0.0"`` for source checkouts."""

    try:
        return metadata.version(PROG_NAME)
    except metadata.PackageNotFoundError:
        return "0.0.0"


def _reports_domain_errors(func: _Func) -> _Func:
    """Turn :class:`DarpError` into a Click error unless tracebacks were requested."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except DarpError as exc:
            if lib_cli_exit_tools.config.traceback:
                raise
            raise click.ClickException(str(exc)) from exc

    return wrapper  # type: ignore[return-value]


def _paths() -> DarpPaths:
    return DarpPaths.from_env()


@contextmanager
def _editing_store() -> Iterator[ConfigurationStore]:
    """Yield the loaded store and save it only if the block finishes without raising."""

    paths = _paths()
    store = load_store(paths.config_path)
    yield store
    save_store(store, paths.config_path)


def _engine_for(store: ConfigurationStore, paths: DarpPaths) -> ContainerEngine:
    return ContainerEngine(EngineKind.from_setting(store.engine), paths, podman_machine=store.podman_machine)


def _completion_script(shell: str) -> str:
    completion_class = get_completion_class(shell)
    if completion_class is None:
        raise PreconditionFailed(f"Shell '{shell}' not supported for automatic completions.")
    return completion_class(cli, {}, PROG_NAME, COMPLETE_VAR).source()


@click.group(
    help="Local development environments on *.test domains",
    context_settings=CLICK_CONTEXT_SETTINGS,
    invoke_without_command=False,
)
@click.version_option(
    version=_resolve_version(),
    prog_name=PROG_NAME,
    message="darp version %(version)s",
)
@click.option(
    "--traceback/--no-traceback",
    is_flag=True,
    default=False,
    help="Show full Python traceback on errors",
)
@click.option("--verbose", is_flag=True, default=False, help="Log every step to stderr")
@click.pass_context
def cli(ctx: click.Context, traceback: bool, verbose: bool) -> None:
    """Root command configuring traceback handling and logging for all subcommands.

    Side Effects
        Mutates ``lib_cli_exit_tools.config.traceback`` and
        ``lib_cli_exit_tools.config.traceback_force_color``; binds a fresh trace
        identifier for this invocation.
    """

    ctx.ensure_object(dict)
    ctx.obj["traceback"] = traceback
    lib_cli_exit_tools.config.traceback = traceback
    lib_cli_exit_tools.config.traceback_force_color = traceback
    bind_trace_id(uuid.uuid4().hex[:12])
    if verbose:
        handler = enable_console_logging()
        ctx.call_on_close(lambda: get_logger().removeHandler(handler))
    log_debug("cli_invoked", command=ctx.invoked_subcommand)


@cli.command("info", context_settings=CLICK_CONTEXT_SETTINGS)
def cli_info() -> None:
    """Print distribution metadata and the active darp root."""

    try:
        meta = metadata.metadata(PROG_NAME)
    except metadata.PackageNotFoundError:
        click.echo("darp (metadata unavailable)")
    else:
        click.echo(f"Info for {meta.get('Name', PROG_NAME)}:")
        click.echo(f"  Version         : {meta.get('Version', _resolve_version())}")
        click.echo(f"  Requires-Python : {meta.get('Requires-Python', '>=3.10')}")
        summary = meta.get("Summary")
        if summary:
            click.echo(f"  Summary         : {summary}")
    paths = _paths()
    click.echo(f"  Root            : {paths.root}")
    click.echo(f"  Config          : {paths.config_path}")


# ---------------------------------------------------------------------------
# config
# ---------------------------------------------------------------------------


@cli.group("config", context_settings=CLICK_CONTEXT_SETTINGS)
def cli_config() -> None:
    """Inspect and edit the darp configuration store."""


@cli_config.command("show", context_settings=CLICK_CONTEXT_SETTINGS)
@_reports_domain_errors
def cli_config_show() -> None:
    """Print the configuration store as JSON."""

    store = load_store(_paths().config_path)
    click.echo(json.dumps(store.to_dict(), indent=2))


@cli_config.group("set", context_settings=CLICK_CONTEXT_SETTINGS)
def cli_config_set() -> None:
    """Set global options, environment fields, and service fields."""


@cli_config_set.command("engine", context_settings=CLICK_CONTEXT_SETTINGS)
@click.argument("engine")
@_reports_domain_errors
def cli_set_engine(engine: str) -> None:
    """Select the container engine: podman or docker."""

    with _editing_store() as store:
        mutations.set_engine(store, engine)
    click.echo("Engine set. New Darp invocations will use this container engine.")


@cli_config_set.command("podman-machine", context_settings=CLICK_CONTEXT_SETTINGS)
@click.argument("machine")
@_reports_domain_errors
def cli_set_podman_machine(machine: str) -> None:
    """Name the podman machine that must be running."""

    with _editing_store() as store:
        mutations.set_podman_machine(store, machine)
    click.echo(f"PODMAN_MACHINE set to '{machine}' in config ({_paths().config_path}).")


@cli_config_set.command("urls-in-hosts", context_settings=CLICK_CONTEXT_SETTINGS)
@click.argument("value")
@_reports_domain_errors
def cli_set_urls_in_hosts(value: str) -> None:
    """Mirror deployed URLs into /etc/hosts (true/false)."""

    with _editing_store() as store:
        enabled = mutations.set_urls_in_hosts(store, value)
    state = "enabled" if enabled else "disabled"
    click.echo(
        f"urls_in_hosts has been {state} (stored in {_paths().config_path}). "
        "Next 'darp deploy' will sync /etc/hosts accordingly."
    )


@cli_config_set.group("env", context_settings=CLICK_CONTEXT_SETTINGS)
def cli_set_env() -> None:
    """Set a field on an existing environment."""


@cli_config_set.group("svc", context_settings=CLICK_CONTEXT_SETTINGS)
def cli_set_svc() -> None:
    """Set a field on a service (created if needed)."""


@cli_config_set.group("domain", context_settings=CLICK_CONTEXT_SETTINGS)
def cli_set_domain() -> None:
    """Set domain options."""


@cli_set_domain.command("default-environment", context_settings=CLICK_CONTEXT_SETTINGS)
@click.argument("domain_name")
@click.argument("environment")
@_reports_domain_errors
def cli_set_domain_default_environment(domain_name: str, environment: str) -> None:
    """Use ENVIRONMENT for shell/serve in DOMAIN_NAME when -e is omitted."""

    with _editing_store() as store:
        mutations.set_domain_default_environment(store, domain_name, environment)
    click.echo(f"Set default_environment for domain '{domain_name}' to '{environment}'")


def _register_field_setters(option: str, field_name: str) -> None:
    @cli_set_env.command(option, context_settings=CLICK_CONTEXT_SETTINGS, help=f"Set {field_name} on ENVIRONMENT.")
    @click.argument("environment")
    @click.argument("value")
    @_reports_domain_errors
    def set_env_field(environment: str, value: str) -> None:
        with _editing_store() as store:
            mutations.set_environment_field(store, environment, field_name, value)
        click.echo(f"Set {field_name} for environment '{environment}' to:\n  {value}")

    @cli_set_svc.command(option, context_settings=CLICK_CONTEXT_SETTINGS, help=f"Set {field_name} on a service.")
    @click.argument("domain_name")
    @click.argument("service")
    @click.argument("value")
    @_reports_domain_errors
    def set_svc_field(domain_name: str, service: str, value: str) -> None:
        with _editing_store() as store:
            mutations.set_service_field(store, domain_name, service, field_name, value)
        click.echo(f"Set {field_name} for service '{domain_name}.{service}' to:\n  {value}")


@cli_config.group("add", context_settings=CLICK_CONTEXT_SETTINGS)
def cli_config_add() -> None:
    """Add domains, port mappings, and volumes."""


@cli_config_add.command("domain", context_settings=CLICK_CONTEXT_SETTINGS)
@click.argument("location")
@_reports_domain_errors
def cli_add_domain(location: str) -> None:
    """Register LOCATION; each of its subfolders becomes a service."""

    with _editing_store() as store:
        key, domain = mutations.add_domain(store, location)
    click.echo(f"created '{domain.name}' at {key}")


@cli_config_add.group("env", context_settings=CLICK_CONTEXT_SETTINGS)
def cli_add_env() -> None:
    """Add port mappings or volumes to an environment (created if needed)."""


@cli_add_env.command("portmap", context_settings=CLICK_CONTEXT_SETTINGS)
@click.argument("environment")
@click.argument("host_port")
@click.argument("container_port")
@_reports_domain_errors
def cli_add_env_portmap(environment: str, host_port: str, container_port: str) -> None:
    """Publish HOST_PORT as CONTAINER_PORT for ENVIRONMENT."""

    with _editing_store() as store:
        mutations.add_environment_portmap(store, environment, host_port, container_port)
    click.echo(f"Created portmapping for environment '{environment}' ({host_port}:{container_port})")


@cli_add_env.command("volume", context_settings=CLICK_CONTEXT_SETTINGS)
@click.argument("environment")
@click.argument("container_dir")
@click.argument("host_dir")
@_reports_domain_errors
def cli_add_env_volume(environment: str, container_dir: str, host_dir: str) -> None:
    """Mount HOST_DIR (may use {pwd}/{home}) at CONTAINER_DIR."""

    with _editing_store() as store:
        mutations.add_environment_volume(store, environment, container_dir, host_dir)
    click.echo(f"Added volume to environment '{environment}': {host_dir} -> {container_dir}")


@cli_config_add.group("svc", context_settings=CLICK_CONTEXT_SETTINGS)
def cli_add_svc() -> None:
    """Add port mappings or volumes to a service (created if needed)."""


@cli_add_svc.command("portmap", context_settings=CLICK_CONTEXT_SETTINGS)
@click.argument("domain_name")
@click.argument("service")
@click.argument("host_port")
@click.argument("container_port")
@_reports_domain_errors
def cli_add_svc_portmap(domain_name: str, service: str, host_port: str, container_port: str) -> None:
    """Publish HOST_PORT as CONTAINER_PORT for one service."""

    with _editing_store() as store:
        mutations.add_service_portmap(store, domain_name, service, host_port, container_port)
    click.echo(f"Created portmapping for '{domain_name}.{service}' ({host_port}:{container_port})")


@cli_add_svc.command("volume", context_settings=CLICK_CONTEXT_SETTINGS)
@click.argument("domain_name")
@click.argument("service")
@click.argument("container_dir")
@click.argument("host_dir")
@_reports_domain_errors
def cli_add_svc_volume(domain_name: str, service: str, container_dir: str, host_dir: str) -> None:
    """Mount HOST_DIR (may use {pwd}/{home}) at CONTAINER_DIR for one service."""

    with _editing_store() as store:
        mutations.add_service_volume(store, domain_name, service, container_dir, host_dir)
    click.echo(f"Added volume to service '{domain_name}.{service}': {host_dir} -> {container_dir}")


@cli_config.group("rm", context_settings=CLICK_CONTEXT_SETTINGS)
def cli_config_rm() -> None:
    """Remove domains, settings, port mappings, volumes, and fields."""


@cli_config_rm.command("domain", context_settings=CLICK_CONTEXT_SETTINGS)
@click.argument("name_or_location")
@_reports_domain_errors
def cli_rm_domain(name_or_location: str) -> None:
    """Unregister a domain by name or location."""

    with _editing_store() as store:
        _key, domain = mutations.remove_domain(store, name_or_location)
    click.echo(f"removed '{domain.name}'")


@cli_config_rm.command("podman-machine", context_settings=CLICK_CONTEXT_SETTINGS)
@_reports_domain_errors
def cli_rm_podman_machine() -> None:
    """Forget the configured podman machine (the default one is used)."""

    with _editing_store() as store:
        mutations.remove_podman_machine(store)
    click.echo("podman_machine removed from config.")


@cli_config_rm.command("domain-default-environment", context_settings=CLICK_CONTEXT_SETTINGS)
@click.argument("domain_name")
@_reports_domain_errors
def cli_rm_domain_default_environment(domain_name: str) -> None:
    """Clear the default environment of DOMAIN_NAME."""

    with _editing_store() as store:
        mutations.remove_domain_default_environment(store, domain_name)
    click.echo(f"Removed default_environment from domain '{domain_name}'")


@cli_config_rm.group("env", context_settings=CLICK_CONTEXT_SETTINGS)
def cli_rm_env() -> None:
    """Remove an environment or one of its settings."""


@cli_rm_env.command("environment", context_settings=CLICK_CONTEXT_SETTINGS)
@click.argument("environment")
@_reports_domain_errors
def cli_rm_env_environment(environment: str) -> None:
    """Delete ENVIRONMENT; domains defaulting to it keep a dangling reference."""

    with _editing_store() as store:
        dangling = mutations.remove_environment(store, environment)
    click.echo(f"Removed environment '{environment}'")
    if dangling:
        click.echo(
            f"Warning: {', '.join(dangling)} still use '{environment}' as default_environment; "
            "it will be ignored until re-pointed.",
            err=True,
        )


@cli_rm_env.command("portmap", context_settings=CLICK_CONTEXT_SETTINGS)
@click.argument("environment")
@click.argument("host_port")
@_reports_domain_errors
def cli_rm_env_portmap(environment: str, host_port: str) -> None:
    """Remove the mapping keyed by HOST_PORT."""

    with _editing_store() as store:
        mutations.remove_environment_portmap(store, environment, host_port)
    click.echo(f"Removed portmapping for environment '{environment}' ({host_port}:____)")


@cli_rm_env.command("volume", context_settings=CLICK_CONTEXT_SETTINGS)
@click.argument("environment")
@click.argument("container_dir")
@click.argument("host_dir")
@_reports_domain_errors
def cli_rm_env_volume(environment: str, container_dir: str, host_dir: str) -> None:
    """Remove the exact CONTAINER_DIR / HOST_DIR pair."""

    with _editing_store() as store:
        mutations.remove_environment_volume(store, environment, container_dir, host_dir)
    click.echo(f"Removed volume from environment '{environment}': {host_dir} -> {container_dir}")


@cli_config_rm.group("svc", context_settings=CLICK_CONTEXT_SETTINGS)
def cli_rm_svc() -> None:
    """Remove one of a service's settings."""


@cli_rm_svc.command("portmap", context_settings=CLICK_CONTEXT_SETTINGS)
@click.argument("domain_name")
@click.argument("service")
@click.argument("host_port")
@_reports_domain_errors
def cli_rm_svc_portmap(domain_name: str, service: str, host_port: str) -> None:
    """Remove the service mapping keyed by HOST_PORT."""

    with _editing_store() as store:
        mutations.remove_service_portmap(store, domain_name, service, host_port)
    click.echo(f"Removed portmapping for '{domain_name}.{service}' ({host_port}:____)")


@cli_rm_svc.command("volume", context_settings=CLICK_CONTEXT_SETTINGS)
@click.argument("domain_name")
@click.argument("service")
@click.argument("container_dir")
@click.argument("host_dir")
@_reports_domain_errors
def cli_rm_svc_volume(domain_name: str, service: str, container_dir: str, host_dir: str) -> None:
    """Remove the exact CONTAINER_DIR / HOST_DIR pair from a service."""

    with _editing_store() as store:
        mutations.remove_service_volume(store, domain_name, service, container_dir, host_dir)
    click.echo(f"Removed volume from service '{domain_name}.{service}': {host_dir} -> {container_dir}")


def _register_field_removers(option: str, field_name: str) -> None:
    @cli_rm_env.command(option, context_settings=CLICK_CONTEXT_SETTINGS, help=f"Remove {field_name} from ENVIRONMENT.")
    @click.argument("environment")
    @_reports_domain_errors
    def rm_env_field(environment: str) -> None:
        with _editing_store() as store:
            mutations.remove_environment_field(store, environment, field_name)
        click.echo(f"Removed {field_name} from environment '{environment}'")

    @cli_rm_svc.command(option, context_settings=CLICK_CONTEXT_SETTINGS, help=f"Remove {field_name} from a service.")
    @click.argument("domain_name")
    @click.argument("service")
    @_reports_domain_errors
    def rm_svc_field(domain_name: str, service: str) -> None:
        with _editing_store() as store:
            mutations.remove_service_field(store, domain_name, service, field_name)
        click.echo(f"Removed {field_name} from service '{domain_name}.{service}'")


for _option, _field in FIELD_OPTIONS.items():
    _register_field_setters(_option, _field)
    _register_field_removers(_option, _field)


# ---------------------------------------------------------------------------
# runtime
# ---------------------------------------------------------------------------


@cli.command("deploy", context_settings=CLICK_CONTEXT_SETTINGS)
@_reports_domain_errors
def cli_deploy() -> None:
    """Assign ports, regenerate proxy files, and restart the proxy containers."""

    paths = _paths()
    store = load_store(paths.config_path)
    click.echo("Deploying Container Development\n")
    run_deploy(store, paths, _engine_for(store, paths), OsIntegration(paths))


@cli.command("urls", context_settings=CLICK_CONTEXT_SETTINGS)
@_reports_domain_errors
def cli_urls() -> None:
    """List the URL and proxy port of every deployed service."""

    paths = _paths()
    if not paths.portmap_path.exists():
        raise PreconditionFailed("No services deployed yet, run 'darp deploy'")
    portmap = read_json(paths.portmap_path)
    if not isinstance(portmap, dict) or not all(isinstance(folders, dict) for folders in portmap.values()):
        raise InvalidFormat(f"{paths.portmap_path} must map each domain to an object of folder ports")
    click.echo()
    for domain_name, folders in portmap.items():
        click.secho(domain_name, fg="green")
        for folder, port in sorted(folders.items()):
            click.echo(f"  http://{click.style(folder, fg='blue')}.{domain_name}.test ({port})")
        click.echo()


def _run_session(
    planner: Callable[..., ContainerInvocation],
    environment: Optional[str],
    image: Optional[str],
) -> int:
    paths = _paths()
    store = load_store(paths.config_path)
    engine = _engine_for(store, paths)
    engine.require_ready()
    invocation = planner(
        store,
        paths,
        engine,
        ResolutionContext.current(),
        env_name=environment,
        cli_image=image,
    )
    return engine.run_interactive(
        invocation.args,
        invocation.container_name,
        interactive=invocation.interactive,
    )


@cli.command("shell", context_settings=CLICK_CONTEXT_SETTINGS)
@click.option("-e", "--environment", default=None, help="Environment to apply (defaults to the domain's)")
@click.argument("image", required=False)
@click.pass_context
@_reports_domain_errors
def cli_shell(ctx: click.Context, environment: Optional[str], image: Optional[str]) -> None:
    """Open an interactive shell in a container for the current service folder."""

    ctx.exit(_run_session(plan_shell, environment, image))


@cli.command("serve", context_settings=CLICK_CONTEXT_SETTINGS)
@click.option("-e", "--environment", default=None, help="Environment to apply (defaults to the domain's)")
@click.argument("image", required=False)
@click.pass_context
@_reports_domain_errors
def cli_serve(ctx: click.Context, environment: Optional[str], image: Optional[str]) -> None:
    """Run the effective serve_command for the current service folder."""

    ctx.exit(_run_session(plan_serve, environment, image))


# ---------------------------------------------------------------------------
# host integration
# ---------------------------------------------------------------------------


@cli.command("install", context_settings=CLICK_CONTEXT_SETTINGS)
@_reports_domain_errors
def cli_install() -> None:
    """Configure the resolver, prepare the darp root, and install completions."""

    paths = _paths()
    store = load_store(paths.config_path)
    system = OsIntegration(paths)
    click.echo("Running installation")
    system.init_resolver()
    system.prepare_root()
    shell = detect_shell(os.environ.get("SHELL"))
    if shell is None:
        click.echo("Could not detect shell from $SHELL; skipping shell completion install.")
    else:
        system.install_completion(completion_targets(Path.home())[shell], _completion_script(shell))
    save_store(store, paths.config_path)


@cli.command("uninstall", context_settings=CLICK_CONTEXT_SETTINGS)
@_reports_domain_errors
def cli_uninstall() -> None:
    """Stop darp containers and remove resolver and completion files (config is kept)."""

    paths = _paths()
    store = load_store(paths.config_path)
    engine = _engine_for(store, paths)
    system = OsIntegration(paths)
    click.echo("Running uninstallation")
    engine.stop_running_services()
    engine.stop_named_container(REVERSE_PROXY)
    engine.stop_named_container(DNS_HELPER)
    system.remove_resolver()
    shell = detect_shell(os.environ.get("SHELL"))
    if shell is None:
        click.echo("Could not detect shell from $SHELL; skipping shell completion removal.")
    else:
        system.uninstall_completion(completion_targets(Path.home())[shell])
    click.echo("Uninstall complete. Darp config.json has been left on disk.")


def main(argv: Optional[Sequence[str]] = None, *, restore_traceback: bool = True) -> int:
    """Execute the CLI with shared exit handling and return the exit code."""

    previous_traceback = getattr(lib_cli_exit_tools.config, "traceback", False)
    previous_force_color = getattr(lib_cli_exit_tools.config, "traceback_force_color", False)
    try:
        try:
            return lib_cli_exit_tools.run_cli(
                cli,
                argv=list(argv) if argv is not None else None,
                prog_name=PROG_NAME,
            )
        except BaseException as exc:  # noqa: BLE001 - funnel through shared printers
            lib_cli_exit_tools.print_exception_message(
                trace_back=lib_cli_exit_tools.config.traceback,
                length_limit=(
                    _TRACEBACK_VERBOSE_LIMIT if lib_cli_exit_tools.config.traceback else _TRACEBACK_SUMMARY_LIMIT
                ),
            )
            return lib_cli_exit_tools.get_system_exit_code(exc)
    finally:
        if restore_traceback:
            lib_cli_exit_tools.config.traceback = previous_traceback
            lib_cli_exit_tools.config.traceback_force_color = previous_force_color


if __name__ == "__main__":  # pragma: no cover - exercised via console entry point
    raise SystemExit(main(sys.argv[1:]))
