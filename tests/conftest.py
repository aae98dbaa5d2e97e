"""Pytest configuration and fixtures for svn_syncer tests."""

import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from git import Repo

from svn_syncer.config import SyncConfig
from svn_syncer.git_ops import GitRepository
from svn_syncer.history import HistoryStore
from svn_syncer.models import ChangeAction, PathChange, Revision


class FakeSource:
    """In-memory revision source with a full file snapshot per revision."""

    def __init__(self, uuid: str = "0f1e2d3c-test-uuid"):
        self.uuid = uuid
        self.revisions: list[Revision] = []
        self.snapshots: dict[int, dict[str, bytes]] = {0: {}}
        self.pending_calls: list[int | None] = []

    def add_revision(
        self,
        changes: list[PathChange],
        files: dict[str, bytes | None] | None = None,
        author: str = "alice",
        message: str = "",
    ) -> Revision:
        """
        Append a revision.

        ``files`` updates the previous snapshot: bytes set a file, None
        removes a path and everything below it.
        """
        revision_id = len(self.revisions) + 1
        snapshot = dict(self.snapshots[revision_id - 1])
        for path, content in (files or {}).items():
            if content is None:
                for existing in list(snapshot):
                    if existing == path or existing.startswith(path + "/"):
                        del snapshot[existing]
            else:
                snapshot[path] = content
        self.snapshots[revision_id] = snapshot

        revision = Revision(
            id=revision_id,
            author=author,
            timestamp=datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc) + timedelta(hours=revision_id),
            message=message or f"Revision {revision_id}",
            changes=tuple(changes),
        )
        self.revisions.append(revision)
        return revision

    def pending(self, after: int | None) -> list[Revision]:
        self.pending_calls.append(after)
        start = 0 if after is None else after
        return [r for r in self.revisions if r.id > start]

    def cat(self, path: str, revision: int) -> bytes:
        return self.snapshots[revision][path]

    def export(self, path: str, revision: int) -> list[tuple[str, bytes]]:
        prefix = path + "/"
        return sorted(
            (name[len(prefix):], content)
            for name, content in self.snapshots[revision].items()
            if name.startswith(prefix)
        )


def _added(path: str, kind: str = "file", copy_from: str | None = None) -> PathChange:
    return PathChange(path, ChangeAction.ADD, kind, copy_from, is_copy=copy_from is not None)


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def git_dir(temp_dir: Path):
    """Create an empty git repository to act as the sync destination."""
    repo_path = temp_dir / "dest"
    repo_path.mkdir()

    repo = Repo.init(repo_path)

    # Configure git user for commits made by the tests themselves
    repo.config_writer().set_value("user", "name", "Test User").release()
    repo.config_writer().set_value("user", "email", "test@example.com").release()

    yield repo_path


@pytest.fixture
def destination(git_dir: Path):
    """GitRepository wrapper around the destination repository."""
    return GitRepository(git_dir)


@pytest.fixture
def history(temp_dir: Path):
    """Empty history store in the temporary directory."""
    return HistoryStore(temp_dir / "history.json")


@pytest.fixture
def config(temp_dir: Path, git_dir: Path):
    """Configuration pointing at the temporary destination and history."""
    return SyncConfig(
        svn_dir="file:///tmp/svn/repo/trunk",
        git_dir=git_dir,
        history_file=temp_dir / "history.json",
        authors={"alice": "Alice Example <alice@example.com>"},
    )


@pytest.fixture
def source():
    """Fake source with five revisions building a small tree."""
    fake = FakeSource()
    fake.add_revision(
        [_added("README.txt")],
        {"README.txt": b"hello\n"},
        message="Initial import",
    )
    fake.add_revision(
        [_added("src", "dir"), _added("src/main.c")],
        {"src/main.c": b"int main() { return 0; }\n"},
        author="bob",
        message="Add sources",
    )
    fake.add_revision(
        [PathChange("README.txt", ChangeAction.MODIFY, "file")],
        {"README.txt": b"hello world\n"},
        message="Update readme",
    )
    fake.add_revision(
        [_added("docs", "dir"), _added("docs/guide.txt")],
        {"docs/guide.txt": b"guide\n"},
        message="Add docs",
    )
    fake.add_revision(
        [PathChange("docs", ChangeAction.DELETE, "dir")],
        {"docs": None},
        message="Remove docs",
    )
    return fake


@pytest.fixture
def empty_source():
    """Fake source with no revisions yet."""
    return FakeSource()


@pytest.fixture
def other_source():
    """A second, unrelated repository with three revisions."""
    fake = FakeSource(uuid="9a8b7c6d-other-uuid")
    for revision_id in (1, 2, 3):
        name = f"file{revision_id}.txt"
        fake.add_revision([_added(name)], {name: f"{revision_id}\n".encode()})
    return fake
