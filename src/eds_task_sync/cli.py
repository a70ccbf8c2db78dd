"""
Command-line interface for EDS Task Sync.
"""

import logging
from dataclasses import dataclass
from dataclasses import field
from datetime import datetime
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from eds_task_sync.config import build_sync_config
from eds_task_sync.config import load_config_file
from eds_task_sync.config import parse_policy
from eds_task_sync.config import read_scopes
from eds_task_sync.config import resolve_state_db
from eds_task_sync.db import StateDatabase
from eds_task_sync.db import query_status_all_scopes
from eds_task_sync.models import DEFAULT_CONFIG
from eds_task_sync.models import ConflictsPresentError
from eds_task_sync.models import SyncConfig
from eds_task_sync.models import SyncStats
from eds_task_sync.models import TaskSyncError
from eds_task_sync.retry import RedactingFilter
from eds_task_sync.sync import TaskSynchronizer
from eds_task_sync.sync.resolve import parse_override
from eds_task_sync.vikunja import VikunjaClient

# Exit status when a run was refused because of unresolved conflicts
EXIT_CONFLICTS = 3

# ---------------------------------------------------------------------------
# Typer app
# ---------------------------------------------------------------------------

app = typer.Typer(
    no_args_is_help=True,
    rich_markup_mode="rich",
    help="Bidirectional task sync between EDS task lists and Vikunja projects.",
)

console = Console()


# ---------------------------------------------------------------------------
# Global state shared across subcommands
# ---------------------------------------------------------------------------


@dataclass
class _State:
    config_path: Path = field(default_factory=lambda: DEFAULT_CONFIG)
    state_db: Path | None = None
    verbose: bool = False


state = _State()


@app.callback()
def _global(
    config: Annotated[
        Path,
        typer.Option("--config", "-c", help=f"Config file path (default: {DEFAULT_CONFIG})"),
    ] = DEFAULT_CONFIG,
    state_db: Annotated[
        Path | None,
        typer.Option("--state-db", help="State DB path (overrides config and EDS_TASK_SYNC_DB)"),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable verbose debug output"),
    ] = False,
) -> None:
    state.config_path = config
    state.state_db = state_db
    state.verbose = verbose
    _setup_logging(verbose)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False, console=console)],
    )


def _install_redaction(token: str) -> None:
    """Keep the API token out of every log line from here on."""
    for handler in logging.getLogger().handlers:
        handler.addFilter(RedactingFilter([token]))


def _load_sync_config(**options) -> SyncConfig:
    try:
        cfg = build_sync_config(state.config_path, state.state_db, **options)
    except TaskSyncError as e:
        console.print(f"[bold red]Error:[/] {escape(str(e))}")
        raise typer.Exit(1) from None
    _install_redaction(cfg.token)
    return cfg


def _state_db_path() -> Path:
    return resolve_state_db(load_config_file(state.config_path), state.state_db)


def _format_ts(ts: int | None) -> str:
    return datetime.fromtimestamp(ts).strftime("%Y-%m-%d %H:%M:%S") if ts else "-"


def _print_results(stats: SyncStats) -> None:
    results = Table.grid(padding=(0, 2))
    results.add_column(style="bold")
    results.add_column(justify="right")
    results.add_column(justify="right")
    results.add_row("", Text("EDS", style="dim"), Text("Vikunja", style="dim"))
    results.add_row("Created", str(stats.created_left), str(stats.created_right))
    results.add_row("Updated", str(stats.updated_left), str(stats.updated_right))
    results.add_row("Deleted", str(stats.deleted_left), str(stats.deleted_right))
    results.add_row("Conflicts", str(stats.conflicts), "")
    error_val = Text(str(stats.errors))
    if stats.errors == 0:
        error_val.append(" ✓", style="green")
    else:
        error_val.stylize("bold red")
    results.add_row("Errors", error_val, "")

    console.print(Panel(results, title="[bold]Results[/bold]", expand=False))


def _run_sync(cfg: SyncConfig) -> None:
    """Core sync runner: display panel, confirm, run, show results."""
    info = Text()
    info.append("  Vikunja:   ", style="bold")
    info.append(f"{cfg.api_base}\n")
    info.append("  State DB:  ", style="bold")
    info.append(f"{cfg.state_db_path}\n")
    info.append("  Scopes:    ", style="bold")
    for i, scope in enumerate(cfg.scopes):
        if i:
            info.append("             ")
        info.append(f"{scope.name}")
        info.append(f"  {scope.local_list} ↔ {scope.project}\n", style="dim")
    info.append("  Conflicts: ", style="bold")
    info.append(cfg.resolve_conflicts.value, style="cyan")
    if cfg.overrides:
        info.append(f" (+{len(cfg.overrides)} override(s))", style="dim")
    if cfg.allow_conflicts:
        info.append(" [allowed]", style="yellow")
    if cfg.dry_run:
        info.append("\n  Mode:      ")
        info.append("DRY RUN", style="bold magenta")

    console.print(Panel(info, title="[bold]EDS Task Sync[/bold]"))

    # -- Confirmation --------------------------------------------------------
    if not cfg.yes and not cfg.dry_run:
        typer.confirm("Proceed?", abort=True)

    # -- Run -----------------------------------------------------------------
    try:
        stats = TaskSynchronizer(cfg).run()
    except ConflictsPresentError as e:
        console.print(f"[bold yellow]{e.user_message}[/] {escape(str(e))}")
        console.print("Run [cyan]eds-task-sync conflicts[/] to review them.")
        raise typer.Exit(EXIT_CONFLICTS) from None
    except TaskSyncError as e:
        console.print(f"[bold red]Sync failed:[/] {e.user_message} {escape(str(e))}")
        raise typer.Exit(1) from None
    except KeyboardInterrupt:
        console.print("[yellow]Interrupted by user[/]")
        raise typer.Exit(130) from None
    except Exception as e:
        console.print_exception()
        console.print(f"[bold red]Unexpected error:[/] {escape(str(e))}")
        raise typer.Exit(1) from e

    _print_results(stats)

    if stats.errors:
        raise typer.Exit(1)


# ---------------------------------------------------------------------------
# Subcommand: sync
# ---------------------------------------------------------------------------

_DRY_RUN = Annotated[bool, typer.Option("--dry-run", "-n", help="Preview changes without applying")]
_YES = Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation prompt")]
_RESOLVE = Annotated[
    str | None,
    typer.Option(
        "--resolve-conflicts",
        help="Conflict policy: none, favor-left, favor-right, last-write-wins",
    ),
]
_ALLOW = Annotated[
    bool,
    typer.Option(
        "--allow-conflicts",
        help="Apply everything else even when conflicts remain unresolved",
    ),
]
_OVERRIDE = Annotated[
    list[str] | None,
    typer.Option(
        "--override",
        help="Per-pair policy as LEFT_ID:RIGHT_ID=POLICY (repeatable)",
    ),
]
_REPORT = Annotated[
    Path | None,
    typer.Option("--conflict-report", help="Write a JSON conflict report to this path"),
]


@app.command()
def sync(
    dry_run: _DRY_RUN = False,
    yes: _YES = False,
    resolve_conflicts: _RESOLVE = None,
    allow_conflicts: _ALLOW = False,
    override: _OVERRIDE = None,
    conflict_report: _REPORT = None,
) -> None:
    """Synchronise every configured scope in both directions."""
    try:
        policy = parse_policy(resolve_conflicts) if resolve_conflicts else None
        overrides = dict(parse_override(text) for text in override or [])
    except (TaskSyncError, ValueError) as e:
        raise typer.BadParameter(str(e)) from None

    _run_sync(
        _load_sync_config(
            dry_run=dry_run,
            verbose=state.verbose,
            yes=yes,
            resolve_conflicts=policy,
            allow_conflicts=allow_conflicts,
            overrides=overrides,
            conflict_report_path=conflict_report,
        )
    )


# ---------------------------------------------------------------------------
# Subcommand: status
# ---------------------------------------------------------------------------


@app.command()
def status() -> None:
    """Show sync configuration and state database summary."""
    parser = load_config_file(state.config_path)
    db_path = _state_db_path()
    config_exists = state.config_path.exists()
    db_exists = db_path.exists()

    cfg_info = Text()
    cfg_info.append("  Config:   ", style="bold")
    cfg_info.append(str(state.config_path) + " ")
    cfg_info.append(
        "✓" if config_exists else "(not found)", style="green" if config_exists else "red"
    )
    cfg_info.append("\n  State DB: ", style="bold")
    cfg_info.append(str(db_path) + " ")
    cfg_info.append("✓" if db_exists else "(not found)", style="green" if db_exists else "yellow")

    try:
        scopes = read_scopes(parser)
    except TaskSyncError as e:
        scopes = []
        cfg_info.append(f"\n  {e}", style="red")
    for scope in scopes:
        cfg_info.append("\n  Scope:    ", style="bold")
        cfg_info.append(f"{scope.name}  ")
        cfg_info.append(f"{scope.local_list} ↔ {scope.project}", style="dim")

    console.print(Panel(cfg_info, title="[bold]EDS Task Sync: Status[/bold]"))

    rows = query_status_all_scopes(db_path)
    if not rows:
        if not db_exists:
            console.print(
                "[yellow]No state database yet, run[/] "
                "[cyan]eds-task-sync sync[/] "
                "[yellow]to create it.[/]"
            )
        else:
            console.print("[yellow]State database is empty, no syncs recorded yet.[/]")
        return

    table = Table(show_header=True, header_style="bold cyan", box=None, padding=(0, 2))
    table.add_column("EDS list")
    table.add_column("Vikunja project", justify="right")
    table.add_column("Mapped", justify="right")
    table.add_column("Inferred due", justify="right")
    table.add_column("Conflicts", justify="right")
    table.add_column("Last sync")
    for row in rows:
        conflicts = Text(str(row["conflicts"]), style="bold red" if row["conflicts"] else "")
        table.add_row(
            row["left_list_id"],
            row["right_project_id"],
            str(row["count"]),
            str(row["inferred"] or 0),
            conflicts,
            _format_ts(row["last_sync_at"]),
        )
    console.print(Panel(table, title="[bold]Tracked scopes[/bold]", expand=False))


# ---------------------------------------------------------------------------
# Subcommand: conflicts
# ---------------------------------------------------------------------------


@app.command()
def conflicts() -> None:
    """Show conflicts recorded by the last sync, field by field."""
    db_path = _state_db_path()
    if not db_path.exists():
        console.print("[yellow]No state database yet, nothing to show.[/]")
        return

    with StateDatabase(db_path) as state_db:
        entries = state_db.conflicts.load()

    if not entries:
        console.print("[green]No unresolved conflicts.[/]")
        return

    for entry in entries:
        table = Table(show_header=True, header_style="bold cyan", box=None, padding=(0, 2))
        table.add_column("Field", style="bold")
        table.add_column("EDS")
        table.add_column("Vikunja")
        for diff in entry["diffs"]:
            table.add_row(diff["field"], diff["left"], diff["right"])

        title = Text()
        title.append(entry["left"].get("title") or "(untitled)", style="bold")
        title.append(f"  {entry['left_id']} ↔ {entry['right_id']}", style="dim")
        console.print(
            Panel(table, title=title, subtitle=_format_ts(entry["detected_at"]), expand=False)
        )

    console.print(
        f"{len(entries)} conflict(s). Re-run [cyan]sync[/] with "
        "[cyan]--resolve-conflicts[/] or [cyan]--override[/] to settle them."
    )


# ---------------------------------------------------------------------------
# Subcommand: projects
# ---------------------------------------------------------------------------


@app.command()
def projects() -> None:
    """List Vikunja projects visible to the configured token."""
    cfg = _load_sync_config()
    client = VikunjaClient(cfg.api_base, cfg.token, timeout=cfg.timeout)
    try:
        items = client.list_projects()
    except TaskSyncError as e:
        console.print(f"[bold red]Error:[/] {e.user_message} {escape(str(e))}")
        raise typer.Exit(1) from None

    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("ID", justify="right", style="dim")
    table.add_column("Title", style="bold")
    table.add_column("Archived")
    for project in items:
        archived = project.get("is_archived")
        table.add_row(
            str(project["id"]),
            project.get("title") or "(untitled)",
            Text("yes", style="yellow") if archived else "",
        )
    console.print(table)


# ---------------------------------------------------------------------------
# Subcommand: lists
# ---------------------------------------------------------------------------


@app.command()
def lists() -> None:
    """List all EDS task lists."""
    import gi

    gi.require_version("EDataServer", "1.2")
    from gi.repository import EDataServer

    from eds_task_sync.eds_client import print_task_lists

    registry = EDataServer.SourceRegistry.new_sync(None)
    print_task_lists(registry, console)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main() -> None:
    app()
