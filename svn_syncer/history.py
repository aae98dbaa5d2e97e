"""
Sync history persistence.

The history file is a single JSON document holding every recorded sync
attempt. Records are only ever appended or deleted; a record is never edited
in place. Writes go to a temporary file that atomically replaces the target,
so readers never observe a half-written history.
"""

import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

from .errors import CorruptHistoryError, RecordNotFoundError
from .models import RevisionRange, SyncRecord, SyncStatus

logger = logging.getLogger(__name__)

HISTORY_FORMAT_VERSION = 1


class HistoryFile(BaseModel):
    """On-disk layout of the history file."""

    version: int = HISTORY_FORMAT_VERSION
    # Ids are never reused, even after records are deleted
    next_record_id: int = Field(default=1, ge=1)
    records: list[SyncRecord] = Field(default_factory=list)


class HistoryStore:
    """Append-mostly store of sync records backed by a JSON file."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def pairs(self) -> list[tuple[str, str]]:
        """Return the source/destination pairs in the history, most recently used first."""
        seen: dict[tuple[str, str], None] = {}
        for record in self.list():
            if record.source and record.destination:
                pair = (record.source, record.destination)
                seen.pop(pair, None)
                seen[pair] = None
        return list(reversed(seen))

    def list(self, source: str | None = None, destination: str | None = None) -> list[SyncRecord]:
        """
        Return records ordered by record id.

        When a source or destination is given, only the records of exactly
        that source/destination pair are returned.
        """
        records = sorted(self._load().records, key=lambda r: r.record_id)
        if source is None and destination is None:
            return records
        return [r for r in records if (r.source, r.destination) == (source, destination)]

    def get(self, record_id: int) -> SyncRecord:
        """Return a single record or raise ``RecordNotFoundError``."""
        for record in self._load().records:
            if record.record_id == record_id:
                return record
        raise RecordNotFoundError(record_id)

    def latest_completed(
        self, source: str | None = None, destination: str | None = None
    ) -> SyncRecord | None:
        """Return the most recent completed record (of one pair when given), if any."""
        completed = [r for r in self.list(source, destination) if r.is_completed]
        return completed[-1] if completed else None

    def append(
        self,
        status: SyncStatus,
        revision_range: RevisionRange,
        after_revision: int | None = None,
        destination_ref: str | None = None,
        reason: str | None = None,
        source: str | None = None,
        destination: str | None = None,
    ) -> SyncRecord:
        """
        Persist a new record and return it.

        The store assigns the record id; ids strictly increase over the
        lifetime of the history file.
        """
        history = self._load()
        record = SyncRecord(
            record_id=history.next_record_id,
            revision_range=revision_range,
            after_revision=after_revision,
            destination_ref=destination_ref,
            status=status,
            reason=reason,
            created_at=datetime.now(timezone.utc),
            source=source,
            destination=destination,
        )
        history.records.append(record)
        history.next_record_id = record.record_id + 1
        self._save(history)
        logger.info(
            "Recorded sync #%d: %s %s", record.record_id, status.value, revision_range
        )
        return record

    def delete(self, record_id: int) -> SyncRecord:
        """
        Delete a record by id and return it.

        Deleting the latest completed record rewinds the checkpoint to the
        revision that record resumed from. Deleting any other completed
        record leaves a gap that the checkpoint resolver will refuse.
        """
        history = self._load()
        for index, record in enumerate(history.records):
            if record.record_id == record_id:
                del history.records[index]
                self._save(history)
                logger.info("Deleted sync record #%d (%s)", record_id, record.revision_range)
                return record
        raise RecordNotFoundError(record_id)

    def _load(self) -> HistoryFile:
        if not self.path.exists():
            return HistoryFile()
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
            history = HistoryFile.model_validate(data)
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            raise CorruptHistoryError(f"Cannot read sync history {self.path}: {e}") from e

        if history.version != HISTORY_FORMAT_VERSION:
            raise CorruptHistoryError(
                f"Unsupported sync history version {history.version} in {self.path}"
            )
        ids = [r.record_id for r in history.records]
        if len(set(ids)) != len(ids) or any(i >= history.next_record_id for i in ids):
            raise CorruptHistoryError(f"Sync history {self.path} has inconsistent record ids")
        return history

    def _save(self, history: HistoryFile) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(
            dir=str(self.path.parent), prefix=f".{self.path.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(history.model_dump(mode="json"), f, indent=2)
            os.replace(tmp_path, self.path)
        except BaseException:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise
