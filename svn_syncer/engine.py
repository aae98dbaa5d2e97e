"""
Sync engine.

Orchestrates one sync run: resolve the checkpoint from the history, fetch
the pending revisions, ask for confirmation, replay the revisions one at a
time through the commit mapper, and record the outcome.

A run writes at most one history record. Only a completed record moves the
checkpoint, so the revisions of a failed run stay pending and are replayed
from the start of their range by the next run.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

from .checkpoint import resolve_checkpoint
from .errors import SourceUnavailableError, SyncError
from .gate import ConfirmationGate
from .history import HistoryStore
from .models import Revision, RevisionRange, SyncRecord, SyncStatus, SyncSummary

logger = logging.getLogger(__name__)


class EngineState(str, Enum):
    """Lifecycle of a single sync run."""

    IDLE = "idle"
    RESOLVING = "resolving"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    REPLAYING = "replaying"
    FINALIZING = "finalizing"
    DONE = "done"
    ABORTED = "aborted"
    FAILED = "failed"


class RevisionSource(Protocol):
    """Where pending revisions come from: gap-free and oldest first."""

    def pending(self, after: int | None) -> list[Revision]: ...


class RevisionApplier(Protocol):
    """Applies one revision to the destination and returns the new tip."""

    def apply(self, revision: Revision) -> str | None: ...


class SyncListener:
    """Receives progress notifications from the engine. Override what you need."""

    def state_changed(self, state: EngineState) -> None:
        pass

    def revision_started(self, revision: Revision, index: int, total: int) -> None:
        pass

    def revision_applied(self, revision: Revision, destination_ref: str | None) -> None:
        pass


@dataclass
class SyncOutcome:
    """Result of a sync run."""

    state: EngineState
    checkpoint: int | None = None
    pending: tuple[Revision, ...] = ()
    applied: list[int] = field(default_factory=list)
    record: SyncRecord | None = None
    destination_ref: str | None = None
    error: SyncError | None = None
    dry_run: bool = False

    @property
    def success(self) -> bool:
        return self.state in (EngineState.DONE, EngineState.ABORTED)


class SyncEngine:
    """Replays pending source revisions onto the destination."""

    def __init__(
        self,
        source: RevisionSource,
        mapper: RevisionApplier,
        history: HistoryStore,
        gate: ConfirmationGate,
        listener: SyncListener | None = None,
        source_name: str | None = None,
        destination_name: str | None = None,
    ):
        """
        Initialize the engine.

        Args:
            source: Provides the revisions after a checkpoint, oldest first
            mapper: Turns one revision into one destination commit
            history: Store that receives the record of the run
            gate: Asked once before anything is replayed
            listener: Optional progress receiver
            source_name: Source location; with destination_name it selects the
                records whose checkpoint this run resumes from
            destination_name: Destination location stored on the record
        """
        self.source = source
        self.mapper = mapper
        self.history = history
        self.gate = gate
        self.listener = listener or SyncListener()
        self.source_name = source_name
        self.destination_name = destination_name
        self.state = EngineState.IDLE

    def _enter(self, state: EngineState) -> None:
        logger.debug("Engine state %s -> %s", self.state.value, state.value)
        self.state = state
        self.listener.state_changed(state)

    def run(self, dry_run: bool = False) -> SyncOutcome:
        """
        Run one sync.

        ``CorruptHistoryError`` and ``SourceUnavailableError`` raised before
        replay starts propagate and leave the history untouched. Errors during
        replay are recorded as a failed run; sync errors are returned on the
        outcome, anything else is re-raised after it has been recorded.
        """
        self._enter(EngineState.RESOLVING)
        checkpoint = resolve_checkpoint(self.history, self.source_name, self.destination_name)
        pending = tuple(self.source.pending(after=checkpoint))
        self._check_order(pending, checkpoint)
        logger.info(
            "Checkpoint %s, %d pending revision(s)",
            f"r{checkpoint}" if checkpoint is not None else "none",
            len(pending),
        )

        outcome = SyncOutcome(
            state=EngineState.DONE, checkpoint=checkpoint, pending=pending, dry_run=dry_run
        )
        if not pending or dry_run:
            self._enter(EngineState.DONE)
            return outcome

        self._enter(EngineState.AWAITING_CONFIRMATION)
        if not self.gate.ask(SyncSummary(checkpoint=checkpoint, revisions=pending)):
            logger.info("Sync declined; nothing written")
            self._enter(EngineState.ABORTED)
            outcome.state = EngineState.ABORTED
            return outcome

        self._enter(EngineState.REPLAYING)
        first_id = pending[0].id
        tip: str | None = None
        for index, revision in enumerate(pending, start=1):
            self.listener.revision_started(revision, index, len(pending))
            try:
                tip = self.mapper.apply(revision)
            except SyncError as e:
                self._fail(outcome, revision, first_id, tip, str(e))
                outcome.error = e
                return outcome
            except BaseException as e:
                # Interrupts are recorded too
                reason = f"{type(e).__name__}: {e}" if str(e) else type(e).__name__
                self._fail(outcome, revision, first_id, tip, reason)
                raise
            outcome.applied.append(revision.id)
            outcome.destination_ref = tip
            self.listener.revision_applied(revision, tip)

        self._enter(EngineState.FINALIZING)
        outcome.record = self.history.append(
            status=SyncStatus.COMPLETED,
            revision_range=RevisionRange(from_id=first_id, to_id=pending[-1].id),
            after_revision=checkpoint,
            destination_ref=tip,
            source=self.source_name,
            destination=self.destination_name,
        )
        self._enter(EngineState.DONE)
        return outcome

    def _fail(
        self,
        outcome: SyncOutcome,
        revision: Revision,
        first_id: int,
        tip: str | None,
        reason: str,
    ) -> None:
        logger.error("Sync failed at r%d: %s", revision.id, reason)
        outcome.record = self.history.append(
            status=SyncStatus.FAILED,
            revision_range=RevisionRange(from_id=first_id, to_id=revision.id),
            after_revision=outcome.checkpoint,
            destination_ref=tip,
            reason=reason,
            source=self.source_name,
            destination=self.destination_name,
        )
        outcome.state = EngineState.FAILED
        self._enter(EngineState.FAILED)

    @staticmethod
    def _check_order(pending: tuple[Revision, ...], checkpoint: int | None) -> None:
        previous = checkpoint
        for revision in pending:
            if previous is not None and revision.id <= previous:
                raise SourceUnavailableError(
                    f"Source returned r{revision.id} after r{previous}; "
                    "revisions must be strictly ascending and newer than the checkpoint"
                )
            if previous is not None and revision.id != previous + 1:
                raise SourceUnavailableError(
                    f"Source skipped from r{previous} to r{revision.id}; "
                    "revisions must follow each other without gaps"
                )
            previous = revision.id
