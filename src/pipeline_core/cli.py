"""pipeline-core CLI.

Operate a file-backed checkpoint store from the shell and preview how the
retry engine treats failures. Main entry point for the pipeline-core command.
"""

from __future__ import annotations

import functools
import json
import logging
import sys
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from . import __version__
from .checkpoint import Checkpoint, CheckpointManager, CheckpointStatus, FileCheckpointStore
from .config import (
    PipelineConfig,
    format_config_for_display,
    get_config_path,
    load_config,
    save_config,
)
from .exceptions import PipelineError
from .retry import RetryContext, calculate_backoff, classify_with_reason
from .retry.classifier import FailureDetails
from .utils.errors import handle_exception, set_debug_mode

console = Console()

STATUS_STYLES = {
    CheckpointStatus.PENDING: "dim",
    CheckpointStatus.IN_PROGRESS: "yellow",
    CheckpointStatus.AWAITING_REVIEW: "cyan",
    CheckpointStatus.APPROVED: "green",
    CheckpointStatus.REJECTED: "red",
    CheckpointStatus.SKIPPED: "magenta",
}


@dataclass
class CLIState:
    """Shared state for subcommands."""

    config: PipelineConfig
    store_dir: Path

    def manager(self) -> CheckpointManager:
        return CheckpointManager(store=FileCheckpointStore(self.store_dir))


def configure_logging(level: int) -> None:
    """Send log records to stderr through rich."""
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def handle_errors(func: Callable[..., Any]) -> Callable[..., Any]:
    """Render pipeline and file errors instead of raising tracebacks."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except (PipelineError, OSError) as e:
            handle_exception(console, e)

    return wrapper


def _status_text(status: CheckpointStatus) -> str:
    style = STATUS_STYLES.get(status, "white")
    return f"[{style}]{status.value}[/{style}]"


def _print_checkpoint(checkpoint: Checkpoint) -> None:
    console.print(f"[bold]{escape(checkpoint.id)}[/bold] {escape(checkpoint.name)}")
    console.print(f"  Stage:    {escape(checkpoint.stage)}")
    console.print(f"  Status:   {_status_text(checkpoint.status)}")
    if checkpoint.reviewer:
        console.print(f"  Reviewer: {escape(checkpoint.reviewer)}")
    if checkpoint.feedback:
        console.print(f"  Feedback: {escape(checkpoint.feedback)}")
    console.print(f"  Created:  {checkpoint.created_at.isoformat()}")
    console.print(f"  Updated:  {checkpoint.updated_at.isoformat()}")
    if checkpoint.data:
        console.print(f"  Data:     {escape(json.dumps(checkpoint.data))}")


def _report(checkpoint: Checkpoint) -> None:
    console.print(f"[green]✓[/green] {escape(checkpoint.id)} is now {_status_text(checkpoint.status)}")


@click.group(invoke_without_command=True)
@click.option("--version", "-v", is_flag=True, help="Show version and exit")
@click.option("--debug", "-d", is_flag=True, help="Enable debug mode with verbose error output")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Config file (default: ~/.pipeline-core/config.toml)",
)
@click.option(
    "--store-dir",
    type=click.Path(file_okay=False, path_type=Path),
    help="Checkpoint directory (overrides checkpoints.directory)",
)
@click.pass_context
def main(
    ctx: click.Context,
    version: bool,
    debug: bool,
    config_path: Path | None,
    store_dir: Path | None,
) -> None:
    """pipeline-core - quality gates and resilient calls for pipeline stages."""
    if version:
        console.print(f"pipeline-core version {__version__}")
        ctx.exit()

    if debug:
        set_debug_mode(True)

    config = load_config(config_path)
    configure_logging(logging.DEBUG if debug else config.logging.numeric_level)

    ctx.obj = CLIState(
        config=config,
        store_dir=store_dir or Path(config.checkpoints.directory),
    )

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


# =============================================================================
# Checkpoints
# =============================================================================


@main.group()
def checkpoint() -> None:
    """Create and review checkpoints.

    \b
    Lifecycle:
        pending -> in_progress -> awaiting_review -> approved
    Checkpoints can be rejected, skipped, restarted or reset along the way.
    """
    pass


@checkpoint.command("create")
@click.argument("checkpoint_id")
@click.argument("name")
@click.argument("stage")
@click.option("--data", help="JSON object to attach to the checkpoint")
@click.pass_obj
@handle_errors
def checkpoint_create(state: CLIState, checkpoint_id: str, name: str, stage: str, data: str | None) -> None:
    """Create a pending checkpoint.

    \b
    Examples:
        pipeline-core checkpoint create c1 "Extraction QC" extraction
        pipeline-core checkpoint create c2 "Screening" screening --data '{"batch": 3}'
    """
    payload = None
    if data:
        try:
            payload = json.loads(data)
        except json.JSONDecodeError as e:
            raise click.BadParameter(f"not valid JSON: {e}", param_hint="--data") from e
        if not isinstance(payload, dict):
            raise click.BadParameter("must be a JSON object", param_hint="--data")

    created = state.manager().create(checkpoint_id, name, stage, data=payload)
    console.print(f"[green]✓[/green] Created {escape(created.id)} in stage {escape(created.stage)}")


@checkpoint.command("start")
@click.argument("checkpoint_id")
@click.pass_obj
@handle_errors
def checkpoint_start(state: CLIState, checkpoint_id: str) -> None:
    """Begin work on a checkpoint."""
    _report(state.manager().start(checkpoint_id))


@checkpoint.command("submit")
@click.argument("checkpoint_id")
@click.pass_obj
@handle_errors
def checkpoint_submit(state: CLIState, checkpoint_id: str) -> None:
    """Submit a checkpoint for review."""
    _report(state.manager().submit_for_review(checkpoint_id))


@checkpoint.command("approve")
@click.argument("checkpoint_id")
@click.option("--reviewer", "-r", required=True, help="Who approves")
@click.option("--feedback", "-f", help="Optional review feedback")
@click.pass_obj
@handle_errors
def checkpoint_approve(state: CLIState, checkpoint_id: str, reviewer: str, feedback: str | None) -> None:
    """Approve a checkpoint awaiting review."""
    _report(state.manager().approve(checkpoint_id, reviewer, feedback))


@checkpoint.command("reject")
@click.argument("checkpoint_id")
@click.option("--reviewer", "-r", required=True, help="Who rejects")
@click.option("--feedback", "-f", required=True, help="What needs to change")
@click.pass_obj
@handle_errors
def checkpoint_reject(state: CLIState, checkpoint_id: str, reviewer: str, feedback: str) -> None:
    """Reject a checkpoint with feedback."""
    _report(state.manager().reject(checkpoint_id, reviewer, feedback))


@checkpoint.command("skip")
@click.argument("checkpoint_id")
@click.option("--reason", required=True, help="Why the checkpoint is skipped")
@click.pass_obj
@handle_errors
def checkpoint_skip(state: CLIState, checkpoint_id: str, reason: str) -> None:
    """Skip a checkpoint."""
    _report(state.manager().skip(checkpoint_id, reason))


@checkpoint.command("restart")
@click.argument("checkpoint_id")
@click.option("--actor", help="Who restarts the work")
@click.pass_obj
@handle_errors
def checkpoint_restart(state: CLIState, checkpoint_id: str, actor: str | None) -> None:
    """Resume work on a rejected checkpoint."""
    _report(state.manager().restart(checkpoint_id, actor=actor))


@checkpoint.command("reset")
@click.argument("checkpoint_id")
@click.option("--actor", help="Who resets the checkpoint")
@click.pass_obj
@handle_errors
def checkpoint_reset(state: CLIState, checkpoint_id: str, actor: str | None) -> None:
    """Send a rejected checkpoint back to pending."""
    _report(state.manager().reset(checkpoint_id, actor=actor))


@checkpoint.command("show")
@click.argument("checkpoint_id")
@click.pass_obj
@handle_errors
def checkpoint_show(state: CLIState, checkpoint_id: str) -> None:
    """Show one checkpoint."""
    _print_checkpoint(state.manager().require(checkpoint_id))


@checkpoint.command("history")
@click.argument("checkpoint_id")
@click.pass_obj
@handle_errors
def checkpoint_history(state: CLIState, checkpoint_id: str) -> None:
    """Show the transition history of a checkpoint."""
    history = state.manager().get_history(checkpoint_id)

    if not history:
        console.print(f"[yellow]No transitions recorded for {escape(checkpoint_id)}.[/yellow]")
        return

    table = Table(title=f"History of {escape(checkpoint_id)}")
    table.add_column("#", justify="right")
    table.add_column("From")
    table.add_column("To")
    table.add_column("When")
    table.add_column("Actor")
    table.add_column("Reason")

    for i, record in enumerate(history, 1):
        table.add_row(
            str(i),
            _status_text(record.from_status),
            _status_text(record.to_status),
            record.timestamp.isoformat(timespec="seconds"),
            escape(record.actor or "-"),
            escape(record.reason or "-"),
        )

    console.print(table)


# =============================================================================
# Stages
# =============================================================================


@main.group()
def stage() -> None:
    """Inspect stage completion."""
    pass


@stage.command("status")
@click.argument("stage_name")
@click.pass_obj
@handle_errors
def stage_status(state: CLIState, stage_name: str) -> None:
    """Show the checkpoints of a stage and whether it may advance.

    Exits with status 2 when the stage is not complete, so scripts can gate
    on it.
    """
    manager = state.manager()
    checkpoints = manager.get_stage_checkpoints(stage_name)

    if not checkpoints:
        console.print(f"[yellow]No checkpoints in stage {escape(stage_name)}.[/yellow]")
        sys.exit(2)

    table = Table(title=f"Stage {escape(stage_name)}")
    table.add_column("ID")
    table.add_column("Name")
    table.add_column("Status")
    table.add_column("Reviewer")

    for cp in checkpoints:
        table.add_row(escape(cp.id), escape(cp.name), _status_text(cp.status), escape(cp.reviewer or "-"))

    console.print(table)

    if manager.is_stage_complete(stage_name):
        console.print("[green]✓ Stage complete[/green]")
        return

    console.print("[yellow]Stage not complete[/yellow]")
    sys.exit(2)


@stage.command("list")
@click.pass_obj
@handle_errors
def stage_list(state: CLIState) -> None:
    """List stages with a per-status count."""
    manager = state.manager()
    stages = manager.list_stages()

    if not stages:
        console.print("[yellow]No checkpoints found.[/yellow]")
        console.print("[dim]Run 'pipeline-core checkpoint create' to add one.[/dim]")
        return

    table = Table(title="Stages")
    table.add_column("Stage")
    for status in CheckpointStatus:
        table.add_column(status.value, justify="right")
    table.add_column("Complete")

    for name in stages:
        summary = manager.stage_summary(name)
        complete = "[green]yes[/green]" if manager.is_stage_complete(name) else "no"
        table.add_row(escape(name), *(str(summary[s]) for s in CheckpointStatus), complete)

    console.print(table)


# =============================================================================
# Export / import
# =============================================================================


@main.command("export")
@click.argument("output", required=False, type=click.Path(dir_okay=False, path_type=Path))
@click.pass_obj
@handle_errors
def export_cmd(state: CLIState, output: Path | None) -> None:
    """Serialize all checkpoints and histories to JSON."""
    document = state.manager().serialize(indent=2)

    if output is None:
        click.echo(document)
        return

    output.write_text(document)
    console.print(f"[green]✓[/green] Exported to {output}")


@main.command("import")
@click.argument("input_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_obj
@handle_errors
def import_cmd(state: CLIState, input_file: Path) -> None:
    """Load checkpoints from an export, replacing entries with the same id."""
    manager = CheckpointManager.deserialize(
        input_file.read_text(),
        store=FileCheckpointStore(state.store_dir),
    )
    count = len(manager.store.list_checkpoints())
    console.print(f"[green]✓[/green] Imported {count} checkpoint(s) into {state.store_dir}")


# =============================================================================
# Retry previews
# =============================================================================


@main.command("classify")
@click.argument("message")
@click.option("--status", "status_code", type=int, help="HTTP status code carried by the error")
@click.option("--code", help="Low-level error code, e.g. ECONNRESET")
def classify_cmd(message: str, status_code: int | None, code: str | None) -> None:
    """Show how the retry engine classifies a failure.

    \b
    Examples:
        pipeline-core classify "Too Many Requests" --status 429
        pipeline-core classify "socket hang up" --code ECONNRESET
    """
    result = classify_with_reason(
        FailureDetails(status_code=status_code, code=code.upper() if code else None, message=message)
    )
    verdict = "[green]retryable[/green]" if result.retryable else "[red]not retryable[/red]"
    console.print(f"[bold]{result.kind.value}[/bold] ({escape(result.reason)}) - {verdict}")


@main.command("backoff")
@click.option("--attempts", "-n", type=click.IntRange(min=1), default=None, help="Retries to show")
@click.option("--base-delay", type=click.IntRange(min=0), default=None, help="Base delay in ms")
@click.option("--max-delay", type=click.IntRange(min=0), default=None, help="Delay cap in ms")
@click.option("--jitter", type=click.FloatRange(0, 1), default=None, help="Jitter fraction")
@click.pass_obj
def backoff_cmd(
    state: CLIState,
    attempts: int | None,
    base_delay: int | None,
    max_delay: int | None,
    jitter: float | None,
) -> None:
    """Preview the backoff schedule from configuration."""
    overrides = {
        key: value
        for key, value in {
            "max_retries": attempts,
            "base_delay_ms": base_delay,
            "max_delay_ms": max_delay,
            "jitter": jitter,
        }.items()
        if value is not None
    }
    ctx = RetryContext.from_config(state.config.retry, **overrides)

    table = Table(title="Backoff schedule")
    table.add_column("Retry", justify="right")
    table.add_column("Base (ms)", justify="right")
    table.add_column("Range (ms)", justify="right")
    table.add_column("Sample (ms)", justify="right")

    for attempt in range(ctx.max_retries):
        base = calculate_backoff(attempt, ctx.base_delay_ms, ctx.max_delay_ms, jitter=0)
        low, high = round(base * (1 - ctx.jitter)), round(base * (1 + ctx.jitter))
        sample = calculate_backoff(attempt, ctx.base_delay_ms, ctx.max_delay_ms, ctx.jitter)
        table.add_row(str(attempt + 1), str(base), f"{low}-{high}", str(sample))

    console.print(table)
    console.print(f"[dim]Total attempts on persistent failure: {ctx.max_attempts}[/dim]")


# =============================================================================
# Configuration
# =============================================================================


@main.group("config")
def config_group() -> None:
    """View or initialize configuration."""
    pass


@config_group.command("show")
@click.pass_obj
def config_show(state: CLIState) -> None:
    """Show the effective configuration."""
    console.print(escape(format_config_for_display(state.config)))


@config_group.command("init")
@click.option("--force", "-f", is_flag=True, help="Overwrite an existing config file")
@click.pass_obj
@handle_errors
def config_init(state: CLIState, force: bool) -> None:
    """Write a config file with default values."""
    path = state.config.config_path or get_config_path()

    if path.exists() and not force:
        console.print(f"[yellow]Config already exists at {path}[/yellow]")
        console.print("[dim]Use --force to overwrite.[/dim]")
        return

    written = save_config(PipelineConfig(), path)
    console.print(f"[green]✓[/green] Wrote default config to {written}")


if __name__ == "__main__":
    main()
