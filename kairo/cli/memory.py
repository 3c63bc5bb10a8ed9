"""Memory management CLI commands."""

import asyncio
import json
from pathlib import Path
from typing import Awaitable, Callable, List, Optional, TypeVar

import typer
from rich.console import Console
from rich.table import Table

from kairo.cli.helpers import load_cli_config, open_store
from kairo.exceptions import BackendUnavailable, RecordNotFound
from kairo.memory.schema import MemoryKind, RecallOptions
from kairo.memory.store import MemoryStore

T = TypeVar("T")

console = Console()

memory_app = typer.Typer(help="Inspect and maintain stored memory")

ConfigOption = typer.Option(None, "--config", help="Path to kairo.yaml")


def _run(config_path: Optional[Path], operation: Callable[[MemoryStore], Awaitable[T]]) -> T:
    """Open the store, run one operation, close the store."""
    config = load_cli_config(config_path)

    async def runner() -> T:
        store = open_store(config)
        try:
            return await operation(store)
        finally:
            await store.close()

    try:
        return asyncio.run(runner())
    except BackendUnavailable as e:
        console.print(f"[red]Memory backend unavailable: {e}[/red]")
        raise typer.Exit(1)


def _short(text: str, width: int = 60) -> str:
    text = " ".join(text.split())
    return text if len(text) <= width else text[: width - 3] + "..."


@memory_app.command("recall")
def memory_recall(
    agent: str = typer.Argument(help="Agent id"),
    query: str = typer.Argument(help="Free-text query"),
    user: Optional[str] = typer.Option(None, "--user", "-u", help="Restrict to a user/session id"),
    preset: Optional[str] = typer.Option(
        None, "--preset", "-p", help="Recall preset (research, automation, router, general)"
    ),
    limit: Optional[int] = typer.Option(None, "--limit", "-n", help="Maximum records"),
    min_relevance: Optional[float] = typer.Option(None, "--min-relevance", help="Minimum score"),
    kind: Optional[List[MemoryKind]] = typer.Option(None, "--kind", "-k", help="Only these kinds (repeatable)"),
    as_json: bool = typer.Option(False, "--json", help="Print JSON"),
    config_path: Optional[Path] = ConfigOption,
):
    """Recall the records most relevant to QUERY.

    Examples:
        kairo memory recall automation "fix script"
        kairo memory recall research "market data" --preset research
    """
    config = load_cli_config(config_path)
    options = config.memory.preset(preset) if preset else RecallOptions()
    if limit is not None:
        options.limit = limit
    if min_relevance is not None:
        options.min_relevance = min_relevance
    if kind:
        options.kinds = list(kind)

    result = _run(config_path, lambda store: store.recall(agent, query, user_id=user, options=options))

    if as_json:
        payload = {
            "total_matches": result.total_matches,
            "average_relevance": result.average_relevance,
            "entries": [dict(e.to_row(), score=e.score) for e in result.entries],
            "patterns": [p.to_dict() for p in result.patterns],
        }
        print(json.dumps(payload, indent=2, ensure_ascii=False))
        return

    if not result.entries:
        console.print("[yellow]No relevant memories found[/yellow]")
        return

    table = Table(title=f"Recall for {agent!r} ({result.total_matches} match(es))")
    table.add_column("Score", justify="right", style="cyan")
    table.add_column("Kind", style="green")
    table.add_column("ID", style="dim", no_wrap=True)
    table.add_column("Summary")
    for entry in result.entries:
        table.add_row(f"{entry.score:.2f}", entry.kind.value, entry.id, _short(entry.summary))
    console.print(table)

    for pattern in result.patterns:
        console.print(f"[dim]pattern[/dim] {pattern.signature} (seen {pattern.frequency}x)")


@memory_app.command("stats")
def memory_stats(
    agent: str = typer.Argument(help="Agent id"),
    user: Optional[str] = typer.Option(None, "--user", "-u", help="Restrict to a user/session id"),
    config_path: Optional[Path] = ConfigOption,
):
    """Show record counts, average prior and recent activity."""
    stats = _run(config_path, lambda store: store.stats(agent, user_id=user))

    console.print(f"[bold]Total entries:[/bold] {stats.total_entries}")
    console.print(f"[bold]Average relevance prior:[/bold] {stats.average_relevance:.2f}")

    if stats.by_kind:
        table = Table(title="By kind")
        table.add_column("Kind", style="green")
        table.add_column("Count", justify="right")
        for kind_name, count in sorted(stats.by_kind.items()):
            table.add_row(kind_name, str(count))
        console.print(table)

    if stats.recent_activity:
        console.print("\n[bold]Recent activity[/bold]")
        for record in stats.recent_activity:
            when = f"{record.last_accessed:%Y-%m-%d %H:%M}"
            console.print(f"  {when}  [dim]{record.id}[/dim]  {_short(record.input, 50)}")

    if stats.top_patterns:
        console.print("\n[bold]Top patterns[/bold]")
        for pattern in stats.top_patterns:
            console.print(f"  {pattern.signature} ({pattern.frequency}x)")


@memory_app.command("delete")
def memory_delete(
    agent: str = typer.Argument(help="Agent id"),
    record_id: str = typer.Argument(help="Record id"),
    config_path: Optional[Path] = ConfigOption,
):
    """Delete one record."""
    deleted = _run(config_path, lambda store: store.delete(agent, record_id))
    if not deleted:
        console.print(f"[yellow]Record not found: {record_id}[/yellow]")
        raise typer.Exit(1)
    console.print(f"[green]Deleted {record_id}[/green]")


@memory_app.command("cleanup")
def memory_cleanup(
    agent: str = typer.Argument(help="Agent id"),
    max_age_days: Optional[int] = typer.Option(None, "--max-age-days", help="Drop records older than this"),
    min_relevance: Optional[float] = typer.Option(None, "--min-relevance", help="Drop records with a lower prior"),
    max_entries: Optional[int] = typer.Option(None, "--max-entries", help="Keep at most this many"),
    config_path: Optional[Path] = ConfigOption,
):
    """Purge old, low-relevance and overflow records."""
    defaults = load_cli_config(config_path).memory.cleanup
    deleted = _run(
        config_path,
        lambda store: store.cleanup(
            agent,
            max_age_days=max_age_days if max_age_days is not None else defaults.max_age_days,
            min_relevance=min_relevance if min_relevance is not None else defaults.min_relevance,
            max_entries=max_entries if max_entries is not None else defaults.max_entries,
        ),
    )
    console.print(f"[green]Removed {deleted} record(s)[/green]")


@memory_app.command("correct")
def memory_correct(
    agent: str = typer.Argument(help="Agent id"),
    record_id: str = typer.Argument(help="Record whose response was wrong"),
    correction: str = typer.Argument(help="What the response should have been"),
    config_path: Optional[Path] = ConfigOption,
):
    """Store a correction for an earlier response."""

    async def operation(store: MemoryStore):
        original = await store.get(agent, record_id)
        return await store.learn_from_correction(
            agent, original.input, original.output, correction, user_id=original.user_id
        )

    try:
        record = _run(config_path, operation)
    except RecordNotFound as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)
    console.print(f"[green]Stored correction {record.id}[/green]")
