"""
Sync runner.

Builds the engine and its collaborators from a ``SyncConfig`` and renders
what happens with rich: the pending revisions, a progress spinner while
replaying, a summary at the end, and the sync history table.
"""

from pathlib import Path

from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from .checkpoint import checkpoint_from_records, resolve_checkpoint
from .config import SyncConfig
from .engine import EngineState, SyncEngine, SyncListener, SyncOutcome
from .errors import SyncError
from .gate import AutoConfirm, ConfirmationGate, revisions_table
from .git_ops import GitRepository
from .history import HistoryStore
from .mapper import CommitMapper
from .models import Revision, SyncRecord
from .svn_ops import SvnRepository

console = Console()


class _ProgressListener(SyncListener):
    """Draws a spinner while revisions are replayed."""

    def __init__(self):
        self.progress: Progress | None = None
        self.task = None

    def state_changed(self, state: EngineState) -> None:
        if state == EngineState.REPLAYING:
            self.progress = Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                console=console,
            )
            self.progress.start()
        elif state in (EngineState.FINALIZING, EngineState.FAILED):
            self.close()

    def revision_started(self, revision: Revision, index: int, total: int) -> None:
        if self.progress is None:
            return
        description = f"Replaying r{revision.id} ({index}/{total})..."
        if self.task is None:
            self.task = self.progress.add_task(description, total=total)
        else:
            self.progress.update(self.task, description=description)

    def revision_applied(self, revision: Revision, destination_ref: str | None) -> None:
        if self.progress is None:
            return
        if destination_ref:
            self.progress.console.print(
                f"  [green]✓[/green] r{revision.id} → {destination_ref[:8]}"
            )
        else:
            self.progress.console.print(f"  [dim]- r{revision.id} (no commit)[/dim]")
        self.progress.advance(self.task)

    def close(self) -> None:
        if self.progress is not None:
            self.progress.stop()
            self.progress = None


class SvnSyncer:
    """Runs syncs and history operations for one configuration."""

    def __init__(self, config: SyncConfig, gate: ConfirmationGate | None = None):
        """Initialize the syncer with configuration."""
        self.config = config
        self.gate = gate or AutoConfirm()
        self.history = HistoryStore(config.history_file)

    @property
    def source_name(self) -> str | None:
        """The configured source as recorded in the history (URLs kept, paths made absolute)."""
        svn_dir = self.config.svn_dir
        if not svn_dir or "://" in svn_dir:
            return svn_dir
        return str(Path(svn_dir).expanduser().resolve())

    @property
    def destination_name(self) -> str | None:
        """The configured destination as recorded in the history."""
        if self.config.git_dir is None:
            return None
        return str(Path(self.config.git_dir).expanduser().resolve())

    def _source(self) -> SvnRepository:
        if not self.config.svn_dir:
            raise SyncError("No Subversion source configured (svn_dir)")
        return SvnRepository(
            self.config.svn_dir,
            start_revision=self.config.start_revision,
            max_revisions=self.config.max_revisions,
            username=self.config.svn_username,
            password=self.config.svn_password,
            timeout=self.config.svn_timeout,
        )

    def _destination(self, init: bool = False) -> GitRepository:
        if self.config.git_dir is None:
            raise SyncError("No Git destination configured (git_dir)")
        if init:
            return GitRepository.init(self.config.git_dir)
        return GitRepository(self.config.git_dir)

    def sync(self, dry_run: bool = False, init: bool = False) -> SyncOutcome:
        """
        Replay every pending revision onto the destination.

        Args:
            dry_run: Only list the pending revisions
            init: Create the destination repository if it does not exist

        Returns:
            SyncOutcome describing how the run ended
        """
        source = self._source()
        destination = self._destination(init=init and not dry_run)
        mapper = CommitMapper(source, destination, self.config)
        listener = _ProgressListener()
        engine = SyncEngine(
            source,
            mapper,
            self.history,
            self.gate,
            listener=listener,
            source_name=self.source_name,
            destination_name=self.destination_name,
        )

        console.print(f"\n[bold]Syncing {self.config.svn_dir} → {destination.path}[/bold]\n")
        if dry_run:
            console.print("[yellow]DRY RUN - No changes will be made[/yellow]\n")

        try:
            outcome = engine.run(dry_run=dry_run)
        finally:
            listener.close()

        if not outcome.pending:
            console.print("[green]No revisions to sync.[/green]")
            return outcome
        if dry_run:
            console.print(
                revisions_table(outcome.pending, f"Pending Revisions ({len(outcome.pending)})")
            )
        self._print_summary(outcome)
        return outcome

    def _print_summary(self, outcome: SyncOutcome) -> None:
        """Print sync summary."""
        console.print("\n[bold]Sync Summary:[/bold]")

        if outcome.dry_run:
            console.print(f"  [yellow][DRY RUN] {len(outcome.pending)} revisions pending[/yellow]")
            return
        if outcome.state == EngineState.ABORTED:
            console.print("  [yellow]Sync aborted - nothing was written[/yellow]")
            return

        if outcome.state == EngineState.DONE:
            console.print(f"  [green]✓ Synced {len(outcome.applied)} revisions[/green]")
        else:
            console.print(f"  [red]✗ Sync failed after {len(outcome.applied)} revisions[/red]")

        if outcome.record is not None:
            record = outcome.record
            console.print(
                f"  Record #{record.record_id}: {record.status.value} {record.revision_range}"
            )
            if record.reason:
                console.print(f"  [red]Error: {record.reason}[/red]")
        if outcome.destination_ref:
            console.print(f"  Destination tip: {outcome.destination_ref[:8]}")
        if outcome.state == EngineState.FAILED:
            console.print(
                "  [yellow]Revisions of the failed range stay pending; fix the cause "
                "and run sync again.[/yellow]"
            )

    def show_history(self) -> list[SyncRecord]:
        """Print the sync history of every source/destination pair and its checkpoint."""
        records = self.history.list()
        if not records:
            console.print("[yellow]No sync records.[/yellow]")
            return records

        groups: dict[tuple[str | None, str | None], list[SyncRecord]] = {}
        for record in records:
            groups.setdefault((record.source, record.destination), []).append(record)

        for (source, destination), group in groups.items():
            title = f"Sync History ({len(group)})"
            if source or destination:
                title = f"{source} → {destination} ({len(group)})"
            console.print(_history_table(group, title))
            try:
                checkpoint = checkpoint_from_records(group)
            except SyncError as e:
                console.print(f"[red]Checkpoint unavailable: {e}[/red]\n")
            else:
                console.print(f"Checkpoint: {_format_checkpoint(checkpoint)}\n")
        return records

    def delete_record(self, record_id: int) -> SyncRecord:
        """
        Delete a sync record and report its effect on the checkpoint of its pair.

        Raises:
            RecordNotFoundError: if no record has that id
        """
        record = self.history.get(record_id)
        before = self.history.latest_completed(record.source, record.destination)
        self.history.delete(record_id)
        console.print(
            f"[green]Deleted sync record #{record.record_id} "
            f"({record.status.value} {record.revision_range})[/green]"
        )

        if before is not None and before.record_id == record.record_id:
            console.print(
                f"  Checkpoint rewound to {_format_checkpoint(record.after_revision)}; "
                f"{record.revision_range} will be replayed by the next sync"
            )
            return record

        try:
            resolve_checkpoint(self.history, record.source, record.destination)
        except SyncError as e:
            console.print(f"  [yellow]Warning: {e}[/yellow]")
        return record

    def status(self) -> None:
        """Show configuration, checkpoint, destination tip and pending revisions."""
        console.print("\n[bold]SVN Syncer Status[/bold]\n")

        console.print("[bold]Configuration:[/bold]")
        console.print(f"  Subversion source: {self.config.svn_dir or 'not configured'}")
        console.print(f"  Git destination: {self.config.git_dir or 'not configured'}")
        console.print(f"  History file: {self.config.history_file}")

        console.print("\n[bold]Sync State:[/bold]")
        try:
            records = self.history.list(self.source_name, self.destination_name)
            checkpoint = checkpoint_from_records(records)
        except SyncError as e:
            console.print(f"  [red]Error reading sync history: {e}[/red]")
            return
        console.print(f"  Checkpoint: {_format_checkpoint(checkpoint)}")

        if self.config.git_dir is not None:
            try:
                self._show_destination(checkpoint, records[-1] if records else None)
            except SyncError as e:
                console.print(f"  [red]Error reading destination: {e}[/red]")

        if self.config.svn_dir:
            console.print("\n[bold]Pending Revisions:[/bold]")
            try:
                pending = self._source().pending(after=checkpoint)
            except SyncError as e:
                console.print(f"  [red]Error reading Subversion source: {e}[/red]")
            else:
                console.print(f"  {len(pending)} revisions")

    def _show_destination(self, checkpoint: int | None, latest: SyncRecord | None) -> None:
        destination = self._destination()
        tip = destination.current_tip()
        console.print(f"  Destination tip: {tip[:8] if tip else 'empty repository'}")

        synced = destination.last_synced_revision()
        if synced is None:
            console.print("  Last synced commit: none")
        else:
            revision_id, commit_hash = synced
            console.print(f"  Last synced commit: {commit_hash[:8]} (r{revision_id})")
            if revision_id != checkpoint:
                console.print(
                    f"  [yellow]Warning: destination carries r{revision_id} but the "
                    f"checkpoint is {_format_checkpoint(checkpoint)}; a failed run may "
                    "have left commits behind[/yellow]"
                )

        if latest is None or latest.is_completed:
            return
        left_behind = destination.synced_commits(latest.revision_range)
        if left_behind:
            console.print(
                f"  [yellow]Failed sync #{latest.record_id} ({latest.revision_range}) "
                f"left {len(left_behind)} commit(s) behind:[/yellow]"
            )
            for revision_id, commit_hash in left_behind:
                console.print(f"    r{revision_id} {commit_hash[:8]}")


def _history_table(records: list[SyncRecord], title: str) -> Table:
    table = Table(title=title)
    table.add_column("ID", style="cyan", justify="right")
    table.add_column("Status")
    table.add_column("Revisions", style="white")
    table.add_column("After", style="dim")
    table.add_column("Destination", style="yellow", width=10)
    table.add_column("Created", style="green", width=20)
    table.add_column("Reason", style="red")

    for record in records:
        status = "[green]completed[/green]" if record.is_completed else "[red]failed[/red]"
        table.add_row(
            str(record.record_id),
            status,
            str(record.revision_range),
            f"r{record.after_revision}" if record.after_revision is not None else "-",
            record.destination_ref[:8] if record.destination_ref else "-",
            record.created_at.strftime("%Y-%m-%d %H:%M:%S"),
            record.reason or "",
        )
    return table


def _format_checkpoint(checkpoint: int | None) -> str:
    return f"r{checkpoint}" if checkpoint is not None else "none (never synced)"
