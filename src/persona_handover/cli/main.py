"""CLI entry point for persona-handover.

Invoked as::

    persona-handover [OPTIONS] COMMAND [ARGS]...

or, during development::

    python -m persona_handover.cli.main

Commands
--------
- version  — Show version information
- run      — Hand a new context over to a persona process
- inspect  — Load and display a context file
- verify   — Check a context file against its checksum
- list     — List context files in the store
- sweep    — Remove context files older than the retention window
"""
from __future__ import annotations

import logging
import shlex
import sys
from dataclasses import replace
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from persona_handover.config import HandoverConfig
from persona_handover.context.state import FileReference, FileRole, PersonaContext
from persona_handover.errors import HandoverError
from persona_handover.handover.coordinator import HandoverCoordinator, HandoverOptions

console = Console()
err_console = Console(stderr=True)

# Exit code when the target persona ran but exited nonzero.
_EXIT_CHILD_FAILED = 2


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _load_config(config_file: str | None, store_dir: str | None) -> HandoverConfig:
    """Build the effective configuration.

    Parameters
    ----------
    config_file:
        Optional YAML configuration file.  Environment variables are used
        when absent.
    store_dir:
        Overrides the configured store directory when given.
    """
    config = HandoverConfig.from_yaml(config_file) if config_file else HandoverConfig.from_env()
    if store_dir:
        config = replace(config, store_dir=Path(store_dir))
    return config


def _parse_env_pairs(pairs: tuple[str, ...]) -> dict[str, str]:
    variables: dict[str, str] = {}
    for pair in pairs:
        name, sep, value = pair.partition("=")
        if not sep or not name:
            raise click.BadParameter(f"expected KEY=VALUE, got {pair!r}", param_hint="--env")
        variables[name] = value
    return variables


def _artifact_reference(artifact: str, work_root: Path) -> FileReference:
    """Reference ``artifact`` by its path under ``work_root``.

    Paths outside the tree stay absolute so the validator can reject them.
    """
    resolved = Path(artifact).resolve()
    ref = FileReference.from_path(resolved, role=FileRole.INPUT)
    if resolved.is_relative_to(work_root):
        ref.path = str(resolved.relative_to(work_root))
    return ref


def _coordinator(ctx: click.Context) -> HandoverCoordinator:
    return HandoverCoordinator.from_config(ctx.obj["config"])


# ---------------------------------------------------------------------------
# Root group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(package_name="persona-handover")
@click.option(
    "--config",
    "config_file",
    default=None,
    type=click.Path(exists=True, dir_okay=False),
    help="YAML configuration file.",
)
@click.option("--store-dir", default=None, help="Directory holding context files.")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
@click.pass_context
def cli(ctx: click.Context, config_file: str | None, store_dir: str | None, verbose: bool) -> None:
    """Context handover between persona processes"""
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(message)s",
            handlers=[RichHandler(console=err_console, show_path=False)],
        )
    ctx.ensure_object(dict)
    try:
        ctx.obj["config"] = _load_config(config_file, store_dir)
    except ValueError as exc:
        err_console.print(f"[red]Invalid configuration:[/red] {exc}")
        sys.exit(1)


# ---------------------------------------------------------------------------
# version
# ---------------------------------------------------------------------------


@cli.command(name="version")
def version_command() -> None:
    """Show detailed version information."""
    from persona_handover import __version__

    console.print(f"[bold]persona-handover[/bold] v{__version__}")


# ---------------------------------------------------------------------------
# run
# ---------------------------------------------------------------------------


@cli.command(name="run")
@click.option("--source", "source_persona", default="", help="Persona handing over.")
@click.option("--target", "target_persona", required=True, help="Persona receiving the context.")
@click.option("--task", "task_description", required=True, help="Task for the target persona.")
@click.option(
    "--artifact",
    "artifact_paths",
    multiple=True,
    type=click.Path(exists=True, dir_okay=False),
    help="Input file to reference (repeatable).",
)
@click.option("--env", "env_pairs", multiple=True, help="KEY=VALUE for the child (repeatable).")
@click.option("--timeout-ms", default=None, type=click.IntRange(min=1), help="Child timeout.")
@click.option("--interactive", is_flag=True, help="Run the persona on this terminal.")
@click.option(
    "--working-dir",
    default=None,
    type=click.Path(exists=True, file_okay=False),
    help="Working tree root.  Defaults to the current directory.",
)
@click.option("--command", "persona_command", default=None, help="Override the persona command.")
@click.pass_context
def run_handover_command(
    ctx: click.Context,
    source_persona: str,
    target_persona: str,
    task_description: str,
    artifact_paths: tuple[str, ...],
    env_pairs: tuple[str, ...],
    timeout_ms: int | None,
    interactive: bool,
    working_dir: str | None,
    persona_command: str | None,
) -> None:
    """Hand a new context over to TARGET and wait for its result."""
    config: HandoverConfig = ctx.obj["config"]
    if persona_command:
        config = replace(config, persona_command=tuple(shlex.split(persona_command)))
        ctx.obj["config"] = config
    work_root = (Path(working_dir) if working_dir else Path.cwd()).resolve()
    context = PersonaContext.create(
        source_persona,
        target_persona,
        task_description,
        working_directory=work_root,
    )
    context.environment.variables.update(_parse_env_pairs(env_pairs))
    context.environment.timeout_ms = timeout_ms
    for artifact in artifact_paths:
        context.artifacts.files.append(_artifact_reference(artifact, work_root))

    coordinator = _coordinator(ctx)
    try:
        result = coordinator.handover(context, HandoverOptions(interactive=interactive))
    except HandoverError as exc:
        err_console.print(f"[red]Handover failed:[/red] {exc}")
        sys.exit(1)

    table = Table(title=f"Handover to {target_persona}", show_lines=True)
    table.add_column("Field", style="bold cyan")
    table.add_column("Value")
    status_style = "green" if result.succeeded else "red"
    table.add_row("status", f"[{status_style}]{result.status.value}[/{status_style}]")
    table.add_row("execution_time_ms", str(result.execution_time_ms))
    table.add_row("artifacts", "\n".join(result.artifacts) or "-")
    if result.error:
        table.add_row("error", result.error[:500])
    console.print(table)
    if result.output:
        console.print(Panel(result.output.rstrip(), title="Output", expand=False))

    if not result.succeeded:
        sys.exit(_EXIT_CHILD_FAILED)


# ---------------------------------------------------------------------------
# inspect
# ---------------------------------------------------------------------------


@cli.command(name="inspect")
@click.argument("context_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--json-output", is_flag=True, help="Output JSON instead of formatted view.")
@click.pass_context
def inspect_command(ctx: click.Context, context_file: str, json_output: bool) -> None:
    """Load and display CONTEXT_FILE."""
    coordinator = _coordinator(ctx)
    try:
        context = coordinator.load_context(context_file)
    except HandoverError as exc:
        err_console.print(f"[red]Cannot load context:[/red] {exc}")
        sys.exit(1)

    if json_output:
        from persona_handover.context.serializer import ContextCodec

        console.print_json(ContextCodec().to_json(context))
        return

    meta = context.metadata
    table = Table(title=f"Context {meta.context_id}", show_lines=True)
    table.add_column("Field", style="bold cyan")
    table.add_column("Value")
    table.add_row("schema_version", meta.schema_version)
    table.add_row("created_at", meta.created_at.isoformat())
    table.add_row("source_persona", meta.source_persona or "-")
    table.add_row("target_persona", meta.target_persona)
    table.add_row("task_description", meta.task_description[:200])
    table.add_row("working_directory", meta.working_directory)
    table.add_row("encoding_format", meta.encoding_format.value)
    table.add_row("timeout_ms", str(context.environment.timeout_ms or "default"))
    table.add_row("communication", f"{context.communication.mode.value} / {context.communication.error_handling.value}")
    console.print(table)

    if context.artifacts.files:
        files = Table(title="Files")
        files.add_column("Path", style="cyan")
        files.add_column("Role")
        files.add_column("Format")
        files.add_column("Size", justify="right")
        for ref in context.artifacts.files:
            files.add_row(ref.path, ref.role.value, ref.format or "-", str(ref.size))
        console.print(files)


# ---------------------------------------------------------------------------
# verify
# ---------------------------------------------------------------------------


@cli.command(name="verify")
@click.argument("context_file", type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def verify_command(ctx: click.Context, context_file: str) -> None:
    """Check CONTEXT_FILE against its checksum and schema."""
    coordinator = _coordinator(ctx)
    try:
        context = coordinator.load_context(context_file)
    except HandoverError as exc:
        err_console.print(f"[red]Invalid:[/red] {exc}")
        sys.exit(1)
    console.print(f"[green]OK[/green] {context.summary_line()}")


# ---------------------------------------------------------------------------
# list
# ---------------------------------------------------------------------------


@cli.command(name="list")
@click.pass_context
def list_command(ctx: click.Context) -> None:
    """List context files in the store directory."""
    coordinator = _coordinator(ctx)
    paths = coordinator.store.list_contexts()
    if not paths:
        console.print("[yellow]No context files found.[/yellow]")
        return

    table = Table(title="Context files")
    table.add_column("File", style="cyan")
    table.add_column("Size", justify="right")
    for path in paths:
        try:
            size = str(path.stat().st_size)
        except FileNotFoundError:
            size = "[red]<gone>[/red]"
        table.add_row(path.name, size)
    console.print(table)


# ---------------------------------------------------------------------------
# sweep
# ---------------------------------------------------------------------------


@cli.command(name="sweep")
@click.option(
    "--max-age-ms",
    default=None,
    type=click.IntRange(min=0),
    help="Age threshold.  Defaults to the configured retention window.",
)
@click.pass_context
def sweep_command(ctx: click.Context, max_age_ms: int | None) -> None:
    """Remove context files older than the retention window."""
    coordinator = _coordinator(ctx)
    removed = coordinator.sweep(max_age_ms)
    for path in removed:
        console.print(f"[dim]removed[/dim] {path.name}")
    console.print(f"[green]Swept {len(removed)} context file(s).[/green]")


if __name__ == "__main__":
    cli()
