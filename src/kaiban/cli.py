"""kaiban CLI: inspect the task board and hand tasks to an AI CLI.

Installed as the ``kaiban`` console_script.
"""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import NoReturn

import click
from rich.markup import escape
from rich.table import Table

from kaiban import __version__
from kaiban import log
from kaiban.batch import BatchQueue, BatchSummary
from kaiban.config import Config
from kaiban.detector import DetectorState
from kaiban.errors import KaibanError, NoProviderError
from kaiban.notify import ConsoleNotifier
from kaiban.orchestrator import ExecutionOrchestrator
from kaiban.prd import read_prd_status, resolve_prd_path
from kaiban.providers.base import CLIProvider
from kaiban.providers.registry import PROVIDER_NAMES, detect_all, get_provider, provider_for
from kaiban.tasks.model import TASK_PRIORITIES, TASK_STATUSES, Task, sort_tasks
from kaiban.tasks.store import TaskStore

CONTEXT_SETTINGS = dict(help_option_names=["-h", "--help"])

_STATUS_STYLES = {
    "Backlog": "dim",
    "To Do": "blue",
    "Doing": "cyan",
    "Testing": "magenta",
    "Done": "green",
    "Blocked": "red",
}

_PRIORITY_STYLES = {"High": "red", "Medium": "yellow", "Low": "dim"}

_status_choice = click.Choice(TASK_STATUSES, case_sensitive=False)


def _store(ctx: click.Context) -> TaskStore:
    return TaskStore(ctx.obj)


def _fail(ctx: click.Context, err: Exception) -> NoReturn:
    log.error(str(err))
    ctx.exit(1)


def _card(task: Task) -> str:
    style = _PRIORITY_STYLES.get(task.priority, "white")
    order = f"#{task.order} " if task.order is not None else ""
    return f"{order}[bold]{task.id}[/bold] {escape(task.label)}\n[{style}]{escape(task.priority)}[/{style}]"


def _prd_suffix(ctx: click.Context, task: Task) -> str:
    cfg: Config = ctx.obj
    prd_file = resolve_prd_path(
        task.prd_path,
        task_file=Path(task.file_path),
        prd_base=cfg.prd_base,
        workspace=cfg.workspace_path,
    )
    if prd_file is None:
        return " [dim](missing)[/dim]"
    status = read_prd_status(prd_file)
    return f" [dim](status: {status})[/dim]" if status else ""


def _resolve_provider(ctx: click.Context, name: str | None) -> CLIProvider:
    cfg: Config = ctx.obj
    if name:
        cfg.provider = name
    try:
        return provider_for(cfg)
    except NoProviderError as e:
        _fail(ctx, e)


def _orchestrator(ctx: click.Context, provider: CLIProvider) -> ExecutionOrchestrator:
    cfg: Config = ctx.obj
    notifier = ConsoleNotifier(desktop=cfg.desktop_notifications)
    return ExecutionOrchestrator(cfg, _store(ctx), provider, notifier=notifier)


# ── Group ────────────────────────────────────────────────────────


@click.group(context_settings=CONTEXT_SETTINGS)
@click.option("--workspace", "-w", default="", help="Workspace root (default: git top level or cwd)")
@click.option("-v", "--verbose", is_flag=True, help="Show debug output")
@click.version_option(__version__, prog_name="kaiban")
@click.pass_context
def main(ctx: click.Context, workspace: str, verbose: bool) -> None:
    """kaiban: Markdown task board with AI CLI execution.

    Tasks live as Markdown files under .agent/TASKS. ``run`` hands one task
    to Claude, Codex or Cursor and waits until the agent moves it to Done
    or Testing; ``batch`` does the same for several tasks in turn.

    \b
    EXAMPLES:
      kaiban list                          # Show the board
      kaiban new "Add login page"          # Create a task
      kaiban move task-3 "To Do" --order 1
      kaiban run task-3                    # Execute one task
      kaiban batch --status "To Do"        # Execute every To Do task
    """
    log.set_verbose(verbose)
    try:
        ctx.obj = Config(workspace=workspace, verbose=verbose)
    except ValueError as e:
        raise click.UsageError(str(e)) from e


# ── Board commands ───────────────────────────────────────────────


@main.command(name="list")
@click.option("--status", "status_filter", type=_status_choice, default=None, help="Only show one column")
@click.pass_context
def list_tasks(ctx: click.Context, status_filter: str | None) -> None:
    """Show the board, one column per status."""
    store = _store(ctx)
    grouped = store.group_by_status(store.parse_tasks())
    statuses = [status_filter] if status_filter else list(TASK_STATUSES)

    columns = {status: sort_tasks(grouped[status]) for status in statuses}
    if not any(columns.values()):
        log.info(f"No tasks found in {store.root}")
        return

    table = Table(show_lines=True, expand=True)
    for status in statuses:
        style = _STATUS_STYLES.get(status, "white")
        table.add_column(f"[{style}]{status}[/{style}] ({len(columns[status])})", overflow="fold")
    depth = max(len(tasks) for tasks in columns.values())
    for row in range(depth):
        table.add_row(*(
            _card(columns[status][row]) if row < len(columns[status]) else ""
            for status in statuses
        ))
    log.console.print(table)


@main.command()
@click.argument("task_id")
@click.pass_context
def show(ctx: click.Context, task_id: str) -> None:
    """Print the fields of one task."""
    try:
        task = _store(ctx).get_task(task_id)
    except KaibanError as e:
        _fail(ctx, e)

    style = _STATUS_STYLES.get(task.status, "white")
    log.console.print(f"[bold]{escape(task.label)}[/bold] ({task.id})")
    log.console.print(f"  Status:   [{style}]{task.status}[/{style}]")
    log.console.print(f"  Priority: {task.priority}")
    log.console.print(f"  Type:     {task.type}")
    if task.order is not None:
        log.console.print(f"  Order:    {task.order}")
    if task.prd_path:
        log.console.print(f"  PRD:      {task.prd_path}{_prd_suffix(ctx, task)}")
    if task.rejection_count:
        log.console.print(f"  Rejected: {task.rejection_count}x")
    log.console.print(f"  Updated:  {task.updated}")
    log.console.print(f"  File:     [dim]{task.file_path}[/dim]")
    if task.description:
        log.console.print("")
        log.console.print(escape(task.description))
    if task.agent_notes:
        log.console.print("")
        log.console.print("[bold]Agent notes:[/bold]")
        log.console.print(escape(task.agent_notes))


@main.command()
@click.argument("label")
@click.option("--description", "-d", default="", help="Task description")
@click.option("--type", "task_type", default="Task", help="Task type (Feature, Bug, ...)")
@click.option(
    "--priority",
    type=click.Choice(TASK_PRIORITIES, case_sensitive=False),
    default="Medium",
    help="Task priority",
)
@click.option("--status", type=_status_choice, default=None, help="Initial status (default from config)")
@click.option("--order", type=int, default=None, help="Position within the column")
@click.option("--prd", "prd_path", default="", help="Path of the linked PRD")
@click.pass_context
def new(
    ctx: click.Context,
    label: str,
    description: str,
    task_type: str,
    priority: str,
    status: str | None,
    order: int | None,
    prd_path: str,
) -> None:
    """Create a task file."""
    task = _store(ctx).create_task(
        label,
        description=description,
        type=task_type,
        priority=priority,
        status=status,
        prd_path=prd_path,
        order=order,
    )
    log.success(f"Created {task.id}: {task.file_path}")


@main.command()
@click.argument("task_id")
@click.argument("status", type=_status_choice)
@click.option("--order", type=int, default=None, help="New position within the column")
@click.pass_context
def move(ctx: click.Context, task_id: str, status: str, order: int | None) -> None:
    """Move a task to STATUS (syncs the linked PRD)."""
    try:
        task = _store(ctx).update_task_status(task_id, status, order)
    except KaibanError as e:
        _fail(ctx, e)
    log.success(f"{task.id} -> {task.status}")


@main.command()
@click.argument("task_id")
@click.argument("note")
@click.pass_context
def reject(ctx: click.Context, task_id: str, note: str) -> None:
    """Send a task back to To Do with a rejection NOTE."""
    try:
        task = _store(ctx).reject_task(task_id, note)
    except KaibanError as e:
        _fail(ctx, e)
    log.warn(f"{task.id} rejected ({task.rejection_count}x), back to {task.status}")


# ── Execution commands ───────────────────────────────────────────


async def _run_single(orchestrator: ExecutionOrchestrator, task_id: str) -> DetectorState:
    handle = await orchestrator.start(task_id)
    try:
        return await handle.wait()
    except asyncio.CancelledError:
        log.warn(f"Interrupted; stopping {task_id}")
        await orchestrator.stop(task_id)
        return DetectorState.STOPPED
    finally:
        await orchestrator.shutdown()


async def _run_batch(queue: BatchQueue, task_ids: list[str]) -> BatchSummary:
    job = asyncio.ensure_future(queue.start_batch(task_ids))
    try:
        return await asyncio.shield(job)
    except asyncio.CancelledError:
        log.warn("Interrupted; cancelling batch")
        await queue.cancel_batch()
        return await job
    finally:
        await queue.orchestrator.shutdown()


def _apply_run_options(ctx: click.Context, timeout: float | None, no_notify: bool) -> None:
    cfg: Config = ctx.obj
    if timeout is not None:
        cfg.execution_timeout = timeout
    if no_notify:
        cfg.desktop_notifications = False


_provider_option = click.option(
    "--provider",
    "provider_name",
    type=click.Choice(("auto", *PROVIDER_NAMES)),
    default=None,
    help="CLI to run (default: configured, else first installed)",
)
_timeout_option = click.option("--timeout", type=float, default=None, help="Minutes before a run is abandoned")
_no_notify_option = click.option("--no-notify", is_flag=True, help="Disable desktop notifications")


@main.command()
@click.argument("task_id")
@_provider_option
@_timeout_option
@_no_notify_option
@click.pass_context
def run(
    ctx: click.Context,
    task_id: str,
    provider_name: str | None,
    timeout: float | None,
    no_notify: bool,
) -> None:
    """Execute one task and wait for the agent to finish it."""
    _apply_run_options(ctx, timeout, no_notify)
    provider = _resolve_provider(ctx, provider_name)
    orchestrator = _orchestrator(ctx, provider)
    try:
        outcome = asyncio.run(_run_single(orchestrator, task_id))
    except (KaibanError, OSError) as e:
        _fail(ctx, e)
    except KeyboardInterrupt:
        ctx.exit(130)

    if outcome is not DetectorState.COMPLETED:
        ctx.exit(1)


@main.command()
@click.argument("task_ids", nargs=-1)
@click.option("--status", "status_filter", type=_status_choice, default="To Do", help="Column to run when no ids are given")
@_provider_option
@_timeout_option
@_no_notify_option
@click.pass_context
def batch(
    ctx: click.Context,
    task_ids: tuple[str, ...],
    status_filter: str,
    provider_name: str | None,
    timeout: float | None,
    no_notify: bool,
) -> None:
    """Execute tasks one after another (Ctrl-C cancels).

    Without TASK_IDS every task in the --status column runs, in board order.
    """
    _apply_run_options(ctx, timeout, no_notify)
    ids = list(task_ids)
    if not ids:
        store = _store(ctx)
        grouped = store.group_by_status(store.parse_tasks())
        ids = [task.id for task in sort_tasks(grouped[status_filter])]

    if not ids:
        log.warn(f"No tasks with status {status_filter}")
        ctx.exit(1)

    provider = _resolve_provider(ctx, provider_name)
    queue = BatchQueue(_orchestrator(ctx, provider))
    try:
        summary = asyncio.run(_run_batch(queue, ids))
    except KaibanError as e:
        _fail(ctx, e)
    except KeyboardInterrupt:
        ctx.exit(130)

    if summary.cancelled:
        ctx.exit(130)


@main.command()
@click.pass_context
def providers(ctx: click.Context) -> None:
    """Show which AI CLIs are installed."""
    cfg: Config = ctx.obj
    table = Table(show_header=True)
    table.add_column("Provider")
    table.add_column("Status")
    table.add_column("Version")
    table.add_column("Executable", overflow="fold")
    for detection in detect_all(cfg):
        if detection.available:
            overrides = cfg if cfg.provider == detection.name else None
            version = get_provider(detection.name, overrides).detect_version()
            table.add_row(detection.name, "[green]available[/green]", version or "-", detection.executable_path)
        else:
            table.add_row(detection.name, "[red]missing[/red]", "-", f"[dim]{escape(detection.error)}[/dim]")
    log.console.print(table)


if __name__ == "__main__":
    sys.exit(main())
