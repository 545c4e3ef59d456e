#!/usr/bin/env python3
"""
Command-line interface for the LMS recovery toolkit.

Provides administrative listing, deletion, restoration and reporting tools
for tombstoned records.
"""

import logging
import sys
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import click
import pandas as pd  # type: ignore[import-untyped]
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table
from rich.tree import Tree

from . import __version__
from .config import get_config
from .soft_delete import ModelKind, RecordStore, SoftDeleteService
from .soft_delete.models import TombstoneSummary

console = Console()

KIND_CHOICE = click.Choice([kind.value for kind in ModelKind])


def get_service() -> SoftDeleteService:
    """Build the service from the global configuration."""
    config = get_config()
    store = RecordStore.from_config(config)
    return SoftDeleteService(store, config=config)


EXPORT_COLUMNS = [
    "kind",
    "id",
    "deleted_at",
    "deleted_by",
    "deletion_event_id",
    "label",
    "parent",
    "parent_label",
]


def _summaries_to_rows(summaries: Iterable[TombstoneSummary]) -> List[Dict[str, Any]]:
    rows = []
    for summary in summaries:
        row = summary.model_dump(mode="json")
        row["parent"] = str(summary.parent) if summary.parent else None
        rows.append(row)
    return rows


def _fail(message: str, exc: Exception) -> None:
    hint = " (safe to retry)" if getattr(exc, "retryable", False) else ""
    console.print(f"[red]{message}: {exc}{hint}[/red]")
    sys.exit(1)


@click.group(invoke_without_command=True)
@click.version_option(version=__version__)
@click.pass_context
def cli(ctx: click.Context) -> None:
    """LMS Recovery Toolkit - soft delete and restore for course records."""
    logging.basicConfig(
        level=get_config().log_level,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )
    if ctx.invoked_subcommand is None:
        console.print(
            Panel.fit(
                f"[bold blue]LMS Recovery Toolkit[/bold blue] v{__version__}\n"
                "[dim]Soft delete and cascading restore for course records[/dim]\n\n"
                "Use [bold]lms-recovery --help[/bold] to see available commands.",
                border_style="blue",
            )
        )


@cli.group()
def config() -> None:
    """Inspect toolkit configuration."""
    pass


@config.command("show")
@click.option("--format", type=click.Choice(["table", "json", "yaml"]), default="table")
def config_show(format: str) -> None:
    """Display current configuration."""
    try:
        config_dict = get_config().to_dict()

        if format == "json":
            console.print_json(data=config_dict)
        elif format == "yaml":
            import yaml  # type: ignore[import-untyped]

            console.print(yaml.dump(config_dict, default_flow_style=False))
        else:
            table = Table(title="Recovery Configuration", show_header=True)
            table.add_column("Setting", style="cyan")
            table.add_column("Value", style="green")

            categories = {
                "General": ["application_name", "environment", "log_level"],
                "Store": [
                    "database_url",
                    "isolation_level",
                    "transaction_timeout_seconds",
                ],
                "Soft Delete": ["cascade_delete_enabled", "default_cascade_restore"],
                "Retention": ["retention_days", "retention_overrides"],
            }

            for category, settings in categories.items():
                table.add_row(f"[bold]{category}[/bold]", "")
                for setting in settings:
                    value = config_dict.get(setting)
                    if value is None or value == {}:
                        value = "[dim]Not configured[/dim]"
                    elif isinstance(value, bool):
                        value = "✓" if value else "✗"
                    table.add_row(f"  {setting}", str(value))

            console.print(table)

    except Exception as e:
        console.print(f"[red]Error loading configuration: {e}[/red]")
        sys.exit(1)


@config.command("validate")
def config_validate() -> None:
    """Validate current configuration."""
    try:
        config = get_config()
    except Exception as e:
        console.print(f"[red]✗ Configuration validation failed: {e}[/red]")
        sys.exit(1)

    warnings = []
    if config.isolation_level.value != "SERIALIZABLE":
        warnings.append(
            f"Isolation level {config.isolation_level.value} lets overlapping "
            "deletes and restores interleave"
        )
    if config.database_url.startswith("sqlite") and config.environment == "production":
        warnings.append("SQLite store not recommended for production")
    if not config.cascade_delete_enabled:
        warnings.append(
            "Cascade delete disabled: descendants stay hidden but are not tombstoned"
        )

    console.print("[green]✓ Configuration is valid[/green]")
    if warnings:
        console.print("\n[yellow]⚠ Warnings:[/yellow]")
        for warning in warnings:
            console.print(f"  [yellow]• {warning}[/yellow]")


@cli.group()
def db() -> None:
    """Record store management."""
    pass


@db.command("init")
def db_init() -> None:
    """Create entity and ledger tables."""
    try:
        get_service().store.create_all()
        console.print("[green]✓ Schema created[/green]")
    except Exception as e:
        console.print(f"[red]Error creating schema: {e}[/red]")
        sys.exit(1)


@cli.group()
def trash() -> None:
    """Deleted record listing, deletion and restoration."""
    pass


@trash.command("list")
@click.option("--kind", type=KIND_CHOICE, help="Only list this model kind")
@click.option("--limit", type=int, default=None, help="Maximum results per kind")
@click.option("--format", type=click.Choice(["table", "json", "csv"]), default="table")
def trash_list(kind: Optional[str], limit: Optional[int], format: str) -> None:
    """List records carrying their own tombstone."""
    try:
        service = get_service()
        if kind:
            listing = {ModelKind(kind): service.list_tombstoned(kind, limit=limit)}
        else:
            listing = service.list_all_tombstoned(limit=limit)

        summaries = [summary for group in listing.values() for summary in group]
        if not summaries:
            console.print("[yellow]No deleted records found[/yellow]")
            return

        if format == "json":
            console.print_json(data=_summaries_to_rows(summaries))
        elif format == "csv":
            df = pd.DataFrame(_summaries_to_rows(summaries))
            print(df.to_csv(index=False))
        else:
            table = Table(title=f"Deleted Records ({len(summaries)})")
            table.add_column("Kind", style="cyan")
            table.add_column("ID", style="green")
            table.add_column("Name")
            table.add_column("Parent", style="dim")
            table.add_column("Deleted At", style="yellow")
            table.add_column("Deleted By", style="blue")
            table.add_column("Event", style="magenta")

            for summary in summaries:
                parent = ""
                if summary.parent:
                    parent = escape(summary.parent_label or str(summary.parent))
                table.add_row(
                    summary.kind.value,
                    summary.id,
                    escape(summary.label),
                    parent,
                    summary.deleted_at.strftime("%Y-%m-%d %H:%M:%S"),
                    summary.deleted_by or "",
                    summary.deletion_event_id or "",
                )

            console.print(table)

    except Exception as e:
        _fail("Error listing deleted records", e)


@trash.command("export")
@click.option("--output", type=click.Path(), required=True, help="Output file path")
@click.option("--format", type=click.Choice(["json", "csv", "excel"]), default="csv")
def trash_export(output: str, format: str) -> None:
    """Export every tombstoned record for review."""
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
    ) as progress:
        task = progress.add_task("Exporting deleted records...", total=None)

        try:
            service = get_service()
            rows = [
                row
                for kind in service.graph.kinds
                for row in _summaries_to_rows(service.iter_tombstoned(kind))
            ]
            progress.update(task, description=f"Found {len(rows)} records, exporting...")

            df = pd.DataFrame(rows, columns=EXPORT_COLUMNS)
            output_path = Path(output)
            if format == "json":
                df.to_json(output_path, orient="records", date_format="iso", indent=2)
            elif format == "excel":
                df.to_excel(output_path, index=False, engine="openpyxl")
            else:
                df.to_csv(output_path, index=False)

            progress.stop()
            console.print(
                f"[green]✓ Exported {len(rows)} deleted records to {output_path}[/green]"
            )

        except Exception as e:
            progress.stop()
            _fail("Error exporting deleted records", e)


@trash.command("delete")
@click.argument("kind", type=KIND_CHOICE)
@click.argument("record_id")
@click.option("--actor", required=True, help="ID of the acting administrator")
def trash_delete(kind: str, record_id: str, actor: str) -> None:
    """Soft delete a record and its descendants."""
    try:
        event = get_service().delete(kind, record_id, actor)
    except Exception as e:
        _fail("Delete failed", e)
        return

    console.print(
        f"[green]✓ Deleted {event.root}[/green] under event "
        f"[magenta]{event.event_id}[/magenta]"
    )
    console.print(
        f"  {len(event.tombstoned)} tombstoned "
        f"({len(event.cascaded)} by cascade), "
        f"{len(event.members) - len(event.tombstoned)} already deleted"
    )


@trash.command("restore")
@click.argument("kind", type=KIND_CHOICE)
@click.argument("record_id")
@click.option("--actor", required=True, help="ID of the acting administrator")
@click.option(
    "--cascade/--no-cascade",
    default=None,
    help="Restore descendants deleted by the same event",
)
def trash_restore(kind: str, record_id: str, actor: str, cascade: Optional[bool]) -> None:
    """Restore a deleted record."""
    try:
        result = get_service().restore(kind, record_id, actor, cascade=cascade)
    except Exception as e:
        _fail("Restore failed", e)
        return

    console.print(
        f"[green]✓ Restored {len(result.restored)} record(s)[/green] "
        f"from event [magenta]{result.event_id}[/magenta]"
    )
    for ref in result.restored:
        console.print(f"  • {ref}")


@trash.command("event")
@click.argument("event_id")
def trash_event(event_id: str) -> None:
    """Show one deletion event."""
    try:
        event = get_service().get_event(event_id)
    except Exception as e:
        _fail("Error loading event", e)
        return

    tombstoned = set(event.tombstoned)
    tree = Tree(
        f"[bold]Event {event.event_id}[/bold] "
        f"[dim]{event.timestamp:%Y-%m-%d %H:%M:%S} by {event.actor_id}[/dim]"
    )
    root = tree.add(f"[bold red]{event.root}[/bold red]")
    for ref in event.members[1:]:
        if ref in tombstoned:
            root.add(f"[red]{ref}[/red]")
        else:
            root.add(f"[dim]{ref} (already deleted)[/dim]")
    console.print(tree)


@trash.command("purge-candidates")
@click.option("--kind", type=KIND_CHOICE, help="Only check this model kind")
def trash_purge_candidates(kind: Optional[str]) -> None:
    """List deleted records past their retention period."""
    try:
        service = get_service()
        kinds = [ModelKind(kind)] if kind else list(service.graph.kinds)
        candidates = [c for k in kinds for c in service.purge_candidates(k)]
    except Exception as e:
        _fail("Error evaluating retention", e)
        return

    if not candidates:
        console.print("[green]No records are past their retention period[/green]")
        return

    table = Table(title=f"Purge Candidates ({len(candidates)})")
    table.add_column("Kind", style="cyan")
    table.add_column("ID", style="green")
    table.add_column("Deleted At", style="yellow")
    table.add_column("Retention (days)", style="blue")
    for candidate in candidates:
        table.add_row(
            candidate.kind.value,
            candidate.id,
            candidate.deleted_at.strftime("%Y-%m-%d"),
            str(service.retention_policies[candidate.kind].retention_days),
        )
    console.print(table)


@trash.command("report")
@click.option("--days", type=int, default=30, help="Number of days to analyze")
def trash_report(days: int) -> None:
    """Display deletion statistics."""
    try:
        service = get_service()
        end_date = service.clock()
        report = service.generate_deletion_report(
            start_date=end_date - timedelta(days=days), end_date=end_date
        )
    except Exception as e:
        _fail("Error generating report", e)
        return

    console.print(
        Panel.fit(
            f"[bold]Deletion events:[/bold] {report.total_events}\n"
            f"[bold]Records tombstoned:[/bold] {report.total_tombstoned}",
            title=f"Last {days} days",
            border_style="blue",
        )
    )

    if report.by_root_kind:
        table = Table(title="Events by Root Kind")
        table.add_column("Kind", style="cyan")
        table.add_column("Events", style="green")
        for root_kind, count in sorted(report.by_root_kind.items()):
            table.add_row(root_kind, str(count))
        console.print(table)

    if report.by_actor:
        table = Table(title="Events by Actor")
        table.add_column("Actor", style="cyan")
        table.add_column("Events", style="green")
        for actor, count in sorted(report.by_actor.items(), key=lambda x: -x[1]):
            table.add_row(actor, str(count))
        console.print(table)

    table = Table(title="Currently Deleted")
    table.add_column("Kind", style="cyan")
    table.add_column("Records", style="green")
    for kind_name, count in report.currently_tombstoned.items():
        table.add_row(kind_name, str(count))
    console.print(table)


def main() -> None:
    """Main entry point for CLI."""
    cli()


if __name__ == "__main__":
    main()
