"""
Confirmation gates.

A sync run asks its gate exactly once, after the pending revisions are known
and before anything is written. Answering no aborts the run without touching
the destination or the sync history.
"""

from typing import Protocol

import click
from rich.console import Console
from rich.table import Table

from .models import Revision, SyncSummary

console = Console()

# Rows shown before the preview table is truncated
PREVIEW_LIMIT = 20


class ConfirmationGate(Protocol):
    """Decides whether a sync run may proceed."""

    def ask(self, summary: SyncSummary) -> bool: ...


class AutoConfirm:
    """Gate that always answers the same way (``--yes`` and tests)."""

    def __init__(self, answer: bool = True):
        self.answer = answer
        self.asked: list[SyncSummary] = []

    def ask(self, summary: SyncSummary) -> bool:
        self.asked.append(summary)
        return self.answer


def revisions_table(revisions: tuple[Revision, ...] | list[Revision], title: str) -> Table:
    """Build a table of revisions like the one shown before syncing."""
    table = Table(title=title)
    table.add_column("Rev", style="cyan", width=8)
    table.add_column("Date", style="green", width=20)
    table.add_column("Author", style="yellow", width=20)
    table.add_column("Changes", justify="right", width=8)
    table.add_column("Message", style="white")

    for revision in revisions[:PREVIEW_LIMIT]:
        message = revision.summary_line[:60]
        if len(revision.summary_line) > 60:
            message += "..."
        table.add_row(
            f"r{revision.id}",
            revision.timestamp.strftime("%Y-%m-%d %H:%M"),
            revision.author,
            str(len(revision.changes)),
            message,
        )

    if len(revisions) > PREVIEW_LIMIT:
        table.add_row(
            "...", "...", "...", "", f"[dim]({len(revisions) - PREVIEW_LIMIT} more revisions)[/dim]"
        )
    return table


class ConsoleConfirmation:
    """Gate that shows the pending revisions and asks on the terminal."""

    def ask(self, summary: SyncSummary) -> bool:
        """Print the pending revisions and prompt for confirmation."""
        checkpoint = f"r{summary.checkpoint}" if summary.checkpoint is not None else "never synced"
        console.print(f"\n[dim]Last synced revision: {checkpoint}[/dim]")
        console.print(
            revisions_table(summary.revisions, f"Pending Revisions ({summary.count})")
        )
        try:
            return click.confirm(
                f"Replay {summary.count} revision(s) ({summary.revision_range})?",
                default=False,
            )
        except click.Abort:
            return False
