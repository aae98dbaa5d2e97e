"""
Checkpoint resolution.

The checkpoint is never stored on its own: it is derived from the completed
records of the sync history every time a run starts.
"""

from collections.abc import Iterable

from .errors import CorruptHistoryError
from .history import HistoryStore
from .models import SyncRecord


def resolve_checkpoint(
    history: HistoryStore, source: str | None = None, destination: str | None = None
) -> int | None:
    """
    Return the last source revision covered by a completed sync, or None.

    Every source/destination pair has its own chain of records. When a
    source or destination is given, only the records of that pair count.

    Raises:
        CorruptHistoryError: if completed ranges overlap or leave a gap
    """
    return checkpoint_from_records(history.list(source, destination))


def checkpoint_from_records(records: Iterable[SyncRecord]) -> int | None:
    """Validate completed records and return the revision they reach."""
    completed = sorted((r for r in records if r.is_completed), key=lambda r: r.record_id)

    checkpoint: int | None = None
    for record in completed:
        rng = record.revision_range
        if record.after_revision != checkpoint:
            if checkpoint is None:
                raise CorruptHistoryError(
                    f"Sync record #{record.record_id} ({rng}) resumes after "
                    f"r{record.after_revision}, but no completed sync covers that revision"
                )
            if record.after_revision is None:
                raise CorruptHistoryError(
                    f"Sync record #{record.record_id} ({rng}) starts a new history "
                    f"after revisions up to r{checkpoint} were already synced"
                )
            raise CorruptHistoryError(
                f"Sync record #{record.record_id} ({rng}) resumes after "
                f"r{record.after_revision}, but the previous completed sync ends at r{checkpoint}"
            )
        if checkpoint is not None and rng.from_id <= checkpoint:
            raise CorruptHistoryError(
                f"Sync record #{record.record_id} ({rng}) overlaps revisions "
                f"already synced up to r{checkpoint}"
            )
        checkpoint = rng.to_id

    return checkpoint
