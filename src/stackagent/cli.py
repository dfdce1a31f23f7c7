"""Typer-powered command line interface for ``stackagent``.

Commands operate on applications identified by their stable ID. Mutating
commands run through :class:`~stackagent.lifecycle.AppLifecycle`, which takes
the per-application locks; every command is recorded in the structured
operation log.
"""
from __future__ import annotations

import json
import textwrap
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console
from rich.table import Table

from . import __version__
from .config import AgentConfig, ConfigError, load_config
from .errors import LifecycleError, StackAgentError
from .exit_codes import ExitCode
from .lifecycle import AppLifecycle, LifecycleResult
from .locking import LockManager
from .logging import OperationScope, StructuredLogger
from .models import AppStatus, ContainerStatusCode
from .providers import DockerInspector, create_driver
from .rendering import TemplateRenderer
from .revisions import RevisionStore
from .state import StateRegistry
from .status import StatusAggregator

console = Console()

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to stackagent's YAML config file.",
)

JSON_OPTION = typer.Option(
    False,
    "--json",
    help="Emit machine-readable JSON instead of a table.",
)

REVISION_OPTION = typer.Option(
    None,
    "--revision",
    "-r",
    min=1,
    help="Deploy this revision instead of the latest one.",
)

APP_ID_ARGUMENT = typer.Argument(..., help="Stable identifier of the application.")

_STATUS_STYLES = {
    ContainerStatusCode.ACTIVE: "green",
    ContainerStatusCode.IDLE: "yellow",
    ContainerStatusCode.RESTARTING: "yellow",
    ContainerStatusCode.PROBLEMATIC: "red",
    ContainerStatusCode.STOPPED: "dim",
    ContainerStatusCode.UNKNOWN: "dim",
}

app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        Host agent for containerised applications.

        Renders versioned application templates into deployment directories
        and drives the container orchestrator to run them.
        """
    ).strip(),
)
apps_app = typer.Typer(help="Deploy and operate applications.")
config_app = typer.Typer(help="Inspect the effective configuration.")

app.add_typer(apps_app, name="app")
app.add_typer(config_app, name="config")


@dataclass
class RuntimeContext:
    """Aggregated runtime objects shared by commands."""

    config: AgentConfig
    registry: StateRegistry
    store: RevisionStore
    locks: LockManager
    logger: StructuredLogger
    lifecycle: AppLifecycle


def _build_lifecycle(
    config: AgentConfig,
    store: RevisionStore,
    locks: LockManager,
    registry: StateRegistry,
) -> AppLifecycle:
    driver = create_driver(config)
    inspector = DockerInspector(config.compose.docker_bin)
    status = StatusAggregator(
        inspector,
        store,
        config.apps_path,
        project_label=driver.project_label,
    )
    renderer = TemplateRenderer(store, env_file_name=config.compose.env_file)
    return AppLifecycle(
        store=store,
        renderer=renderer,
        driver=driver,
        status=status,
        apps_path=config.apps_path,
        locks=locks,
        registry=registry,
        keep_revisions=config.keep_app_revisions,
    )


def _ensure_runtime(
    ctx: typer.Context,
    config_file: Path | None,
    lock_timeout_override: float | None = None,
) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime

    overrides: dict[str, object] = {}
    if lock_timeout_override is not None:
        overrides["lock_timeout"] = lock_timeout_override

    try:
        config = load_config(config_file=config_file, overrides=overrides)
    except ConfigError as exc:
        console.print(f"[red]Configuration error: {exc}[/red]")
        raise typer.Exit(code=int(ExitCode.VALIDATION)) from exc

    registry = StateRegistry(config.registry_dir)
    store = RevisionStore(config.apps_templates_path)
    locks = LockManager(config.runtime_dir, config.lock_timeout)
    logger = StructuredLogger(config.logs_dir)
    runtime = RuntimeContext(
        config=config,
        registry=registry,
        store=store,
        locks=locks,
        logger=logger,
        lifecycle=_build_lifecycle(config, store, locks, registry),
    )
    ctx.obj = runtime
    return runtime


def _get_runtime(ctx: typer.Context) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    return _ensure_runtime(ctx, None, None)


@app.callback(invoke_without_command=True)
def _root(  # noqa: D401 - Typer displays help for us, docstring optional.
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the stackagent version and exit.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
    lock_timeout: float | None = typer.Option(
        None,
        "--lock-timeout",
        help="Override lock acquisition timeout in seconds.",
    ),
) -> None:
    """Entry point callback invoked for every CLI execution."""
    if version:
        runtime = _ensure_runtime(ctx, config_file, lock_timeout)
        with runtime.logger.operation(
            "root --version",
            args={"version": True},
            target={"kind": "meta", "scope": "version"},
        ) as op:
            console.print(f"stackagent {__version__}")
            op.success("Reported CLI version.", changed=0)
        raise typer.Exit(code=0)

    _ensure_runtime(ctx, config_file, lock_timeout)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=0)


def _command_error(
    op: OperationScope,
    message: str,
    *,
    rc: int = 2,
    errors: Sequence[str] | None = None,
) -> NoReturn:
    """Emit a structured error and terminate the command."""
    console.print(f"[red]{message}[/red]")
    op.error(message, errors=list(errors or [message]), rc=rc)
    raise typer.Exit(code=rc)


def _lifecycle_error(op: OperationScope, exc: StackAgentError) -> NoReturn:
    errors = [str(exc)]
    cause = getattr(exc, "cause", None)
    output = getattr(cause, "output", "")
    if output:
        errors.append(output.strip())
    _command_error(op, str(exc), rc=int(exc.exit_code), errors=errors)


def _status_markup(code: ContainerStatusCode) -> str:
    style = _STATUS_STYLES.get(code, "dim")
    return f"[{style}]{code.label}[/{style}]"


def _run_transition(
    ctx: typer.Context,
    command: str,
    app_id: str,
    *,
    args: Mapping[str, object],
    action: Callable[[AppLifecycle], LifecycleResult],
    message: str,
    json_output: bool = False,
) -> None:
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        command,
        args={"app_id": app_id, **args},
        target={"kind": "app", "id": app_id},
    ) as op:
        try:
            result = action(runtime.lifecycle)
        except LifecycleError as exc:
            _lifecycle_error(op, exc)

        op.set_lock_wait_ms(result.lock_wait_ms)
        for step in result.steps:
            op.add_step(step.name, status=step.status, detail=step.detail or None)
        context = {"app_name": result.app_name, "revision": result.revision}

        if json_output:
            console.print_json(data=result.to_dict())
        else:
            for warning in result.warnings:
                console.print(f"[yellow]Warning:[/yellow] {warning}")
            console.print(f"[green]{message.format(app_id=app_id, name=result.app_name)}[/green]")

        changed = sum(1 for step in result.steps if step.status == "success")
        if result.warnings:
            op.warning(
                f"{message.format(app_id=app_id, name=result.app_name)} (with warnings)",
                warnings=result.warnings,
                changed=changed,
                context=context,
            )
        else:
            op.success(
                message.format(app_id=app_id, name=result.app_name),
                changed=changed,
                context=context,
            )


@apps_app.command("deploy")
def app_deploy(
    ctx: typer.Context,
    app_id: str = APP_ID_ARGUMENT,
    revision: int | None = REVISION_OPTION,
    json_output: bool = JSON_OPTION,
) -> None:
    """Render a revision of an application and bring it up."""
    _run_transition(
        ctx,
        "app deploy",
        app_id,
        args={"revision": revision},
        action=lambda lifecycle: lifecycle.deploy(app_id, revision=revision),
        message="Application '{app_id}' deployed as '{name}'.",
        json_output=json_output,
    )


@apps_app.command("start")
def app_start(
    ctx: typer.Context,
    app_id: str = APP_ID_ARGUMENT,
    json_output: bool = JSON_OPTION,
) -> None:
    """Start an application, deploying it if it has never been rendered."""
    _run_transition(
        ctx,
        "app start",
        app_id,
        args={},
        action=lambda lifecycle: lifecycle.start(app_id),
        message="Application '{app_id}' started.",
        json_output=json_output,
    )


@apps_app.command("stop")
def app_stop(
    ctx: typer.Context,
    app_id: str = APP_ID_ARGUMENT,
    json_output: bool = JSON_OPTION,
) -> None:
    """Stop an application. Stopping an undeployed application is a no-op."""
    _run_transition(
        ctx,
        "app stop",
        app_id,
        args={},
        action=lambda lifecycle: lifecycle.stop(app_id),
        message="Application '{app_id}' stopped.",
        json_output=json_output,
    )


@apps_app.command("restart")
def app_restart(
    ctx: typer.Context,
    app_id: str = APP_ID_ARGUMENT,
    json_output: bool = JSON_OPTION,
) -> None:
    """Restart an application in place."""
    _run_transition(
        ctx,
        "app restart",
        app_id,
        args={},
        action=lambda lifecycle: lifecycle.restart(app_id),
        message="Application '{app_id}' restarted.",
        json_output=json_output,
    )


@apps_app.command("update")
def app_update(
    ctx: typer.Context,
    app_id: str = APP_ID_ARGUMENT,
    json_output: bool = JSON_OPTION,
) -> None:
    """Pull fresh images for a deployed application and bring it up."""
    _run_transition(
        ctx,
        "app update",
        app_id,
        args={},
        action=lambda lifecycle: lifecycle.update(app_id),
        message="Application '{app_id}' updated.",
        json_output=json_output,
    )


@apps_app.command("redeploy")
def app_redeploy(
    ctx: typer.Context,
    app_id: str = APP_ID_ARGUMENT,
    revision: int | None = REVISION_OPTION,
    json_output: bool = JSON_OPTION,
) -> None:
    """Stop an application and deploy it again."""
    _run_transition(
        ctx,
        "app redeploy",
        app_id,
        args={"revision": revision},
        action=lambda lifecycle: lifecycle.redeploy(app_id, revision=revision),
        message="Application '{app_id}' redeployed as '{name}'.",
        json_output=json_output,
    )


@apps_app.command("delete")
def app_delete(
    ctx: typer.Context,
    app_id: str = APP_ID_ARGUMENT,
    purge: bool = typer.Option(
        False,
        "--purge",
        help="Also remove every stored revision of the application.",
    ),
    json_output: bool = JSON_OPTION,
) -> None:
    """Stop an application (best effort) and remove its deployment."""
    _run_transition(
        ctx,
        "app delete",
        app_id,
        args={"purge": purge},
        action=lambda lifecycle: lifecycle.delete(app_id, purge=purge),
        message="Application '{app_id}' deleted.",
        json_output=json_output,
    )


@apps_app.command("rename")
def app_rename(
    ctx: typer.Context,
    app_id: str = APP_ID_ARGUMENT,
    new_name: str = typer.Argument(..., help="New application name."),
    json_output: bool = JSON_OPTION,
) -> None:
    """Rename an application, moving its deployment directory."""
    _run_transition(
        ctx,
        "app rename",
        app_id,
        args={"new_name": new_name},
        action=lambda lifecycle: lifecycle.rename(app_id, new_name),
        message="Application '{app_id}' is now named '{name}'.",
        json_output=json_output,
    )


@apps_app.command("prune")
def app_prune(
    ctx: typer.Context,
    app_id: str = APP_ID_ARGUMENT,
    keep: int | None = typer.Option(
        None,
        "--keep",
        min=1,
        help="Number of revisions to keep (default: keep_app_revisions).",
    ),
    json_output: bool = JSON_OPTION,
) -> None:
    """Delete the oldest stored revisions of an application."""
    _run_transition(
        ctx,
        "app prune",
        app_id,
        args={"keep": keep},
        action=lambda lifecycle: lifecycle.prune(app_id, keep=keep),
        message="Revisions of '{app_id}' pruned.",
        json_output=json_output,
    )


def _render_status_table(statuses: Sequence[AppStatus]) -> None:
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("App ID", style="bold")
    table.add_column("Name")
    table.add_column("Status")
    table.add_column("Containers")
    table.add_column("Ports")

    if not statuses:
        table.add_row("(none)", "", "", "", "")
    for status in statuses:
        ports = sorted(
            {
                f"{port.public}/{port.protocol}"
                for container in status.containers
                for port in container.ports
            }
        )
        table.add_row(
            status.app_id,
            status.app_name,
            _status_markup(status.status_code),
            str(len(status.containers)),
            ", ".join(ports),
        )
    console.print(table)

    for status in statuses:
        for container in status.containers:
            if container.error:
                console.print(f"[red]{container.name}[/red]: {container.error}")


@apps_app.command("status")
def app_status(
    ctx: typer.Context,
    app_id: str | None = typer.Argument(None, help="Application to inspect (default: all)."),
    json_output: bool = JSON_OPTION,
) -> None:
    """Report live container status for one or all applications."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "app status",
        args={"app_id": app_id, "json": json_output},
        target={"kind": "app", "id": app_id or "*"},
    ) as op:
        try:
            if app_id is None:
                statuses = runtime.lifecycle.status_all()
            else:
                statuses = [runtime.lifecycle.status(app_id)]
        except StackAgentError as exc:
            _lifecycle_error(op, exc)

        if json_output:
            console.print_json(data={"apps": [status.to_dict() for status in statuses]})
            op.success("Reported application status as JSON.", changed=0)
            return

        _render_status_table(statuses)
        op.success("Reported application status.", changed=0)


@apps_app.command("logs")
def app_logs(
    ctx: typer.Context,
    app_id: str = APP_ID_ARGUMENT,
    tail: int | None = typer.Option(
        None,
        "--tail",
        "-n",
        min=1,
        help="Show the last N log lines per container.",
    ),
    since: str | None = typer.Option(
        None,
        "--since",
        help="Show logs since a timestamp or relative duration (e.g. 10m).",
    ),
) -> None:
    """Print the orchestrator logs of an application."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "app logs",
        args={"app_id": app_id, "tail": tail, "since": since},
        target={"kind": "app", "id": app_id},
    ) as op:
        try:
            output = runtime.lifecycle.logs(app_id, tail=tail, since=since)
        except LifecycleError as exc:
            _lifecycle_error(op, exc)
        op.add_step("driver.logs", status="success", detail=f"{len(output)} bytes")
        if output.strip():
            console.print(output.rstrip(), markup=False, highlight=False)
        op.success("Fetched application logs.", changed=0)


@apps_app.command("revisions")
def app_revisions(
    ctx: typer.Context,
    app_id: str = APP_ID_ARGUMENT,
    json_output: bool = JSON_OPTION,
) -> None:
    """List stored revisions of an application."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "app revisions",
        args={"app_id": app_id, "json": json_output},
        target={"kind": "app", "id": app_id},
    ) as op:
        try:
            revisions = runtime.store.list_revisions(app_id)
            current = runtime.store.read_current_config(app_id)
        except StackAgentError as exc:
            _command_error(op, str(exc), rc=int(exc.exit_code))
        latest = revisions[-1] if revisions else None

        if json_output:
            console.print_json(
                data={
                    "app_id": app_id,
                    "revisions": revisions,
                    "latest": latest,
                    "deployed_name": current.name if current else None,
                }
            )
            op.success("Reported revisions as JSON.", changed=0)
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Revision", style="bold")
        table.add_column("Name")
        table.add_column("Files")
        if not revisions:
            table.add_row("(none)", "", "")
        for number in revisions:
            try:
                config = runtime.store.load_config(app_id, number)
            except StackAgentError as exc:
                table.add_row(str(number), f"[red]{exc}[/red]", "")
                continue
            marker = " (latest)" if number == latest else ""
            table.add_row(f"{number}{marker}", config.name, str(len(config.files)))
        console.print(table)
        op.success("Reported revisions.", changed=0)


@config_app.command("show")
def config_show(
    ctx: typer.Context,
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Emit configuration as JSON instead of a table.",
    ),
) -> None:
    """Display the effective configuration after merges."""
    runtime = _get_runtime(ctx)
    data = runtime.config.to_dict()

    with runtime.logger.operation(
        "config show",
        args={"json": json_output},
        target={"kind": "config"},
    ) as op:
        if json_output:
            console.print_json(data=data)
            op.success("Rendered configuration as JSON.", changed=0)
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Key", style="bold")
        table.add_column("Value")

        for key, value in data.items():
            if isinstance(value, dict):
                rendered = json.dumps(value, indent=2, sort_keys=True)
            else:
                rendered = str(value)
            table.add_row(key, rendered)

        console.print(table)
        op.success("Rendered configuration table.", changed=0)


def main() -> None:  # pragma: no cover - thin wrapper for console_scripts
    """Invoke the Typer application."""
    app()


__all__ = ["app", "main"]
