"""Console rendering of sync results."""

from __future__ import annotations

from rich.console import Console
from rich.markup import escape
from rich.text import Text

from .sync import SyncResult, SyncStatus, SyncSummary

STATUS_ICONS = {
    SyncStatus.SYNCED: "[green]✓[/green]",
    SyncStatus.SKIPPED: "[yellow]⏭[/yellow]",
    SyncStatus.FAILED: "[red]✗[/red]",
}


def format_result(result: SyncResult) -> str:
    """One status line (rich markup) for a repo."""
    parts = [STATUS_ICONS[result.status], f"[bold]{escape(result.name)}[/bold]"]
    if result.branch:
        parts.append(f"[cyan]({escape(result.branch)})[/cyan]")
    if result.ahead or result.behind:
        parts.append(f"↑{result.ahead} ↓{result.behind}")
    if result.dirty:
        parts.append("[yellow]\\[dirty][/yellow]")
    if result.lockfile_changed:
        parts.append("[magenta]\\[lock changed][/magenta]")
    if result.message:
        parts.append(f"[dim]- {escape(result.message)}[/dim]")
    return " ".join(parts)


def print_result(console: Console, result: SyncResult) -> None:
    console.print(format_result(result))
    if result.dirty and result.dirty_status:
        # git already colored it
        for line in result.dirty_status.rstrip("\n").splitlines():
            console.print(Text("    ") + Text.from_ansi(line))


def format_summary(summary: SyncSummary) -> str:
    return f"{summary.synced} synced, {summary.skipped} skipped, {summary.failed} failed"


def print_summary(console: Console, summary: SyncSummary) -> None:
    """Every result line, then the aggregate counts."""
    for result in summary.results:
        print_result(console, result)
    console.print()
    style = "red" if summary.failed else "green"
    console.print(f"[{style}]{format_summary(summary)}[/{style}]")
