"""
Data types shared by the sync engine and its collaborators.

Revisions and tree mutations are plain frozen dataclasses; sync records are
pydantic models because they are persisted to the history file.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field, model_validator


class ChangeAction(str, Enum):
    """Kinds of path-level change carried by a revision."""

    ADD = "add"
    MODIFY = "modify"
    DELETE = "delete"
    REPLACE = "replace"
    RENAME = "rename"


@dataclass(frozen=True)
class PathChange:
    """A single path change inside a revision."""

    path: str  # POSIX path relative to the synced subtree
    action: ChangeAction
    kind: str = "file"  # 'file' or 'dir'
    copy_from: str | None = None  # Origin of a rename/copy inside the subtree
    is_copy: bool = False  # Copied from anywhere in the repository

    @property
    def is_dir(self) -> bool:
        return self.kind == "dir"


@dataclass(frozen=True)
class Revision:
    """One immutable change-set from the Subversion repository."""

    id: int
    author: str
    timestamp: datetime
    message: str
    changes: tuple[PathChange, ...] = ()

    @property
    def summary_line(self) -> str:
        """First line of the log message."""
        lines = self.message.strip().splitlines()
        return lines[0] if lines else ""


class SyncStatus(str, Enum):
    """Outcome of a recorded sync attempt."""

    COMPLETED = "completed"
    FAILED = "failed"


class RevisionRange(BaseModel):
    """Inclusive range of source revision ids."""

    from_id: int = Field(..., ge=0)
    to_id: int = Field(..., ge=0)

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _check_order(self) -> "RevisionRange":
        if self.from_id > self.to_id:
            raise ValueError(
                f"Revision range starts after it ends: r{self.from_id} > r{self.to_id}"
            )
        return self

    def __contains__(self, revision_id: int) -> bool:
        return self.from_id <= revision_id <= self.to_id

    def __len__(self) -> int:
        return self.to_id - self.from_id + 1

    def __str__(self) -> str:
        if self.from_id == self.to_id:
            return f"r{self.from_id}"
        return f"r{self.from_id}:r{self.to_id}"


class SyncRecord(BaseModel):
    """Persisted outcome of one attempt to replay a revision range."""

    record_id: int = Field(..., ge=1)
    revision_range: RevisionRange
    # Checkpoint the run resumed from (None for the very first run)
    after_revision: int | None = None
    destination_ref: str | None = None
    status: SyncStatus
    reason: str | None = None
    created_at: datetime
    source: str | None = None
    destination: str | None = None

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _check_reason(self) -> "SyncRecord":
        if self.status == SyncStatus.FAILED and not self.reason:
            raise ValueError("A failed sync record needs a reason")
        if self.status == SyncStatus.COMPLETED and self.reason:
            raise ValueError("A completed sync record cannot carry a failure reason")
        return self

    @property
    def is_completed(self) -> bool:
        return self.status == SyncStatus.COMPLETED


@dataclass(frozen=True)
class SyncSummary:
    """What a sync run is about to replay, as shown to the confirmation gate."""

    checkpoint: int | None
    revisions: tuple[Revision, ...]

    @property
    def count(self) -> int:
        return len(self.revisions)

    @property
    def first_id(self) -> int:
        return self.revisions[0].id

    @property
    def last_id(self) -> int:
        return self.revisions[-1].id

    @property
    def revision_range(self) -> RevisionRange:
        return RevisionRange(from_id=self.first_id, to_id=self.last_id)


# Tree mutation operations handed to the destination sink.


@dataclass(frozen=True)
class WriteFile:
    path: str
    content: bytes


@dataclass(frozen=True)
class MakeDir:
    path: str


@dataclass(frozen=True)
class RemovePath:
    path: str


@dataclass(frozen=True)
class MovePath:
    source: str
    path: str


TreeOperation = WriteFile | MakeDir | RemovePath | MovePath


@dataclass(frozen=True)
class TreeMutation:
    """Ordered working-tree operations that make up one commit."""

    operations: tuple[TreeOperation, ...] = ()

    def __len__(self) -> int:
        return len(self.operations)

    @property
    def is_empty(self) -> bool:
        return not self.operations


@dataclass(frozen=True)
class CommitMetadata:
    """Everything needed to create a destination commit besides the tree."""

    message: str
    author_name: str
    author_email: str
    timestamp: datetime
