"""
Revision to commit mapping.

Turns one Subversion revision into one destination commit: the path
changes become an ordered tree mutation checked against the destination
tree, and the revision metadata becomes the commit's author, date and
message (including the ``svn-revision`` cross-reference trailer).
"""

import logging
from typing import Protocol

from .config import SyncConfig
from .errors import PathConflictError
from .git_ops import REVISION_TRAILER
from .models import (
    ChangeAction,
    CommitMetadata,
    MakeDir,
    MovePath,
    PathChange,
    RemovePath,
    Revision,
    TreeMutation,
    TreeOperation,
    WriteFile,
)

logger = logging.getLogger(__name__)


class ContentSource(Protocol):
    """Where file and tree content of a revision is read from."""

    uuid: str

    def cat(self, path: str, revision: int) -> bytes: ...

    def export(self, path: str, revision: int) -> list[tuple[str, bytes]]: ...


class DestinationSink(Protocol):
    """What the mapper needs from the destination repository."""

    def ensure_clean(self) -> None: ...

    def current_tip(self) -> str | None: ...

    def path_kind(self, file_path: str) -> str | None: ...

    def commit(self, mutation: TreeMutation, metadata: CommitMetadata) -> str: ...

    def create_tag(
        self, tag_name: str, commit_hash: str, message: str | None = None, force: bool = False
    ) -> bool: ...


class _TreeView:
    """The destination tree as it looks after the operations planned so far."""

    def __init__(self, sink: DestinationSink):
        self._sink = sink
        # path -> 'file', 'dir' (created in this revision) or None (removed)
        self._overlay: dict[str, str | None] = {}
        # moved directory -> where its content still lives on disk
        self._moves: dict[str, str] = {}

    def kind(self, path: str) -> str | None:
        if path in self._overlay:
            return self._overlay[path]
        parts = path.split("/")
        for i in range(len(parts) - 1, 0, -1):
            ancestor = "/".join(parts[:i])
            if ancestor not in self._overlay:
                continue
            if self._overlay[ancestor] != "dir":
                return None
            origin = self._moves.get(ancestor)
            if origin is None:
                # Fresh directory: only children planned in this revision exist
                return None
            return self._sink.path_kind("/".join([origin, *parts[i:]]))
        return self._sink.path_kind(path)

    def set(self, path: str, kind: str | None) -> None:
        prefix = path + "/"
        for key in [k for k in self._overlay if k.startswith(prefix)]:
            del self._overlay[key]
        self._moves.pop(path, None)
        self._overlay[path] = kind

    def move(self, source: str, path: str) -> None:
        origin = self._moves.get(source, source)
        self.set(source, None)
        self.set(path, "dir")
        self._moves[path] = origin


class CommitMapper:
    """Replays Subversion revisions as destination commits."""

    def __init__(self, source: ContentSource, sink: DestinationSink, config: SyncConfig):
        self.source = source
        self.sink = sink
        self.config = config

    def apply(self, revision: Revision) -> str | None:
        """
        Apply one revision to the destination and commit it.

        Returns the destination tip afterwards. A revision that does not touch
        the synced tree leaves the tip unchanged unless empty revisions are
        kept.

        Raises:
            PathConflictError: a change does not fit the destination tree
            SinkUnavailableError: the destination cannot accept the write
        """
        self.sink.ensure_clean()
        tip = self.sink.current_tip()

        if not revision.changes and not self.config.keep_empty_revisions:
            logger.info("r%d does not touch the synced tree; no commit", revision.id)
            return tip

        mutation = self.build_mutation(revision)
        new_ref = self.sink.commit(mutation, self.build_metadata(revision))
        logger.info("r%d -> %s (%d operations)", revision.id, new_ref[:8], len(mutation))

        if self.config.create_tags:
            self.sink.create_tag(f"{self.config.tag_prefix}{revision.id}", new_ref, force=True)
        return new_ref

    def build_metadata(self, revision: Revision) -> CommitMetadata:
        """Build commit metadata carrying the revision's author, date and message."""
        author_name, author_email = self.config.resolve_author(
            revision.author, fallback_domain=self.source.uuid or None
        )

        body = revision.message.strip()
        if self.config.commit_prefix:
            body = f"{self.config.commit_prefix} {body}".strip()
        trailer = f"{REVISION_TRAILER}: {revision.id}"
        message = f"{body}\n\n{trailer}" if body else trailer

        return CommitMetadata(
            message=message,
            author_name=author_name,
            author_email=author_email,
            timestamp=revision.timestamp,
        )

    def build_mutation(self, revision: Revision) -> TreeMutation:
        """
        Translate the revision's changes, in order, into tree operations.

        Each change is checked against the destination tree including the
        effect of the changes before it in the same revision.
        """
        view = _TreeView(self.sink)
        operations: list[TreeOperation] = []

        for change in revision.changes:
            current = view.kind(change.path)
            kind = change.kind or current or "file"

            if change.action == ChangeAction.ADD:
                operations.extend(self._add(revision, change, kind, current, view))

            elif change.action == ChangeAction.REPLACE:
                if current is not None:
                    operations.append(RemovePath(change.path))
                    view.set(change.path, None)
                operations.extend(self._add(revision, change, kind, None, view))

            elif change.action == ChangeAction.MODIFY:
                if current is None:
                    raise self._conflict(revision, change, "modifies a path that does not exist")
                if kind != current:
                    raise self._conflict(revision, change, f"modifies a {kind} but found a {current}")
                # Directory modifications are property changes; nothing to write
                if kind == "file":
                    operations.append(
                        WriteFile(change.path, self.source.cat(change.path, revision.id))
                    )
                    view.set(change.path, "file")

            elif change.action == ChangeAction.DELETE:
                if current is None:
                    raise self._conflict(revision, change, "deletes a path that does not exist")
                operations.append(RemovePath(change.path))
                view.set(change.path, None)

            elif change.action == ChangeAction.RENAME:
                operations.extend(self._rename(revision, change, kind, current, view))

            else:
                raise ValueError(f"Unknown change action: {change.action}")

        return TreeMutation(tuple(operations))

    def _add(
        self,
        revision: Revision,
        change: PathChange,
        kind: str,
        current: str | None,
        view: _TreeView,
    ) -> list[TreeOperation]:
        # Adding over an existing path of the same kind overwrites it
        if current is not None and current != kind:
            raise self._conflict(revision, change, f"adds a {kind} where a {current} exists")

        if kind == "file":
            view.set(change.path, "file")
            return [WriteFile(change.path, self.source.cat(change.path, revision.id))]

        if not change.is_copy:
            # Children of a plain directory add are listed as their own changes
            if current is None:
                view.set(change.path, "dir")
                return [MakeDir(change.path)]
            return []

        # A copied directory only lists its root; bring in the whole tree
        operations: list[TreeOperation] = []
        if current is not None:
            operations.append(RemovePath(change.path))
        operations.append(MakeDir(change.path))
        view.set(change.path, "dir")
        for rel_path, content in self.source.export(change.path, revision.id):
            file_path = f"{change.path}/{rel_path}"
            operations.append(WriteFile(file_path, content))
            view.set(file_path, "file")
        return operations

    def _rename(
        self,
        revision: Revision,
        change: PathChange,
        kind: str,
        current: str | None,
        view: _TreeView,
    ) -> list[TreeOperation]:
        origin = change.copy_from
        if origin is None:
            raise self._conflict(revision, change, "renames a path without an origin")
        origin_kind = view.kind(origin)
        if origin_kind is None:
            raise self._conflict(revision, change, f"renames '{origin}', which does not exist")
        if origin_kind != kind:
            raise self._conflict(revision, change, f"renames a {origin_kind} as a {kind}")
        if current is not None:
            raise self._conflict(revision, change, "renames onto a path that already exists")

        if kind == "dir":
            view.move(origin, change.path)
            return [MovePath(origin, change.path)]

        view.set(origin, None)
        view.set(change.path, "file")
        return [
            RemovePath(origin),
            WriteFile(change.path, self.source.cat(change.path, revision.id)),
        ]

    @staticmethod
    def _conflict(revision: Revision, change: PathChange, problem: str) -> PathConflictError:
        return PathConflictError(
            f"r{revision.id} {problem}: {change.path}",
            path=change.path,
            revision_id=revision.id,
        )
