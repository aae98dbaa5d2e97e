"""Tests for the revision to commit mapper."""

from pathlib import Path

import pytest
from git import Repo

from svn_syncer.config import SyncConfig
from svn_syncer.errors import PathConflictError, SinkUnavailableError
from svn_syncer.git_ops import GitRepository
from svn_syncer.mapper import CommitMapper
from svn_syncer.models import (
    ChangeAction,
    MakeDir,
    MovePath,
    PathChange,
    RemovePath,
    WriteFile,
)


def _tree(git_dir: Path) -> dict[str, bytes]:
    commit = Repo(git_dir).head.commit
    return {
        b.path: b.data_stream.read() for b in commit.tree.traverse() if b.type == "blob"
    }


@pytest.fixture
def mapper(source, destination: GitRepository, config: SyncConfig):
    return CommitMapper(source, destination, config)


class TestApply:
    """Tests for applying revisions to the destination."""

    def test_replays_revisions(self, source, mapper: CommitMapper, git_dir: Path):
        """Test that each revision produces the expected tree."""
        refs = [mapper.apply(revision) for revision in source.revisions]

        assert len(set(refs)) == 5
        assert _tree(git_dir) == {
            "README.txt": b"hello world\n",
            "src/main.c": b"int main() { return 0; }\n",
        }

    def test_commit_metadata(self, source, mapper: CommitMapper, git_dir: Path):
        """Test author mapping, date and revision trailer."""
        mapper.apply(source.revisions[0])
        mapper.apply(source.revisions[1])

        repo = Repo(git_dir)
        second, first = list(repo.iter_commits("HEAD"))
        assert first.author.name == "Alice Example"
        assert first.author.email == "alice@example.com"
        assert first.message.strip() == "Initial import\n\nsvn-revision: 1"
        assert first.authored_datetime == source.revisions[0].timestamp
        assert first.committed_datetime == source.revisions[0].timestamp

        # bob is not in the author map: falls back to the repository uuid
        assert second.author.name == "bob"
        assert second.author.email == f"bob@{source.uuid}"

    def test_commit_prefix(self, source, destination, config: SyncConfig):
        """Test the configured commit message prefix."""
        config.commit_prefix = "[svn]"
        mapper = CommitMapper(source, destination, config)
        assert mapper.build_metadata(source.revisions[0]).message == (
            "[svn] Initial import\n\nsvn-revision: 1"
        )

    def test_empty_revision_keeps_tip(self, empty_source, destination, config):
        """Test that a revision outside the synced tree creates no commit."""
        empty_source.add_revision([PathChange("a.txt", ChangeAction.ADD)], {"a.txt": b"a"})
        empty_source.add_revision([])
        mapper = CommitMapper(empty_source, destination, config)

        tip = mapper.apply(empty_source.revisions[0])
        assert mapper.apply(empty_source.revisions[1]) == tip

    def test_empty_revision_on_empty_repo(self, empty_source, destination, config):
        """Test that nothing is created before the first real change."""
        empty_source.add_revision([])
        mapper = CommitMapper(empty_source, destination, config)
        assert mapper.apply(empty_source.revisions[0]) is None

    def test_keep_empty_revisions(self, empty_source, destination, config: SyncConfig, git_dir):
        """Test that empty revisions can be kept as empty commits."""
        config.keep_empty_revisions = True
        empty_source.add_revision([], message="Branch created")
        mapper = CommitMapper(empty_source, destination, config)

        ref = mapper.apply(empty_source.revisions[0])
        assert ref is not None
        assert Repo(git_dir).head.commit.message.startswith("Branch created")

    def test_create_tags(self, source, destination, config: SyncConfig):
        """Test per-revision tags."""
        config.create_tags = True
        mapper = CommitMapper(source, destination, config)
        ref = mapper.apply(source.revisions[0])
        tags = Repo(destination.path).tags
        assert [t.name for t in tags] == ["svn/r1"]
        assert tags["svn/r1"].commit.hexsha == ref

    def test_dirty_destination(self, source, mapper: CommitMapper, git_dir: Path):
        """Test that uncommitted local edits stop the replay."""
        mapper.apply(source.revisions[0])
        (git_dir / "README.txt").write_text("local edit")

        with pytest.raises(SinkUnavailableError, match="uncommitted changes"):
            mapper.apply(source.revisions[1])

    def test_missing_destination(self, source, config: SyncConfig, temp_dir: Path):
        """Test that a destination that is not a repository is a sink error."""
        mapper = CommitMapper(source, GitRepository(temp_dir / "nowhere"), config)
        with pytest.raises(SinkUnavailableError):
            mapper.apply(source.revisions[0])

    def test_reapply_add_overwrites(self, source, mapper: CommitMapper, git_dir: Path):
        """Test that adding a path that already exists overwrites it."""
        mapper.apply(source.revisions[0])
        mapper.apply(source.revisions[0])
        assert _tree(git_dir) == {"README.txt": b"hello\n"}


class TestBuildMutation:
    """Tests for translating path changes into tree operations."""

    def test_operations_follow_change_order(self, source, mapper: CommitMapper):
        """Test operations for a directory and a file added together."""
        mutation = mapper.build_mutation(source.revisions[1])
        assert mutation.operations == (
            MakeDir("src"),
            WriteFile("src/main.c", b"int main() { return 0; }\n"),
        )

    def test_modify_missing_path(self, empty_source, destination, config):
        """Test that modifying a path the destination lacks is a conflict."""
        empty_source.add_revision(
            [PathChange("missing.txt", ChangeAction.MODIFY)], {"missing.txt": b"x"}
        )
        mapper = CommitMapper(empty_source, destination, config)

        with pytest.raises(PathConflictError) as excinfo:
            mapper.apply(empty_source.revisions[0])
        assert excinfo.value.path == "missing.txt"
        assert excinfo.value.revision_id == 1

    def test_delete_missing_path(self, empty_source, destination, config):
        """Test that deleting a path the destination lacks is a conflict."""
        empty_source.add_revision([PathChange("gone", ChangeAction.DELETE, "dir")])
        mapper = CommitMapper(empty_source, destination, config)

        with pytest.raises(PathConflictError, match="deletes a path that does not exist"):
            mapper.build_mutation(empty_source.revisions[0])

    def test_kind_mismatch(self, empty_source, destination, config):
        """Test adding a file where a directory exists."""
        empty_source.add_revision(
            [PathChange("a", ChangeAction.ADD, "dir"), PathChange("a/b", ChangeAction.ADD)],
            {"a/b": b"b"},
        )
        empty_source.add_revision([PathChange("a", ChangeAction.ADD, "file")], {"a": b"a"})
        mapper = CommitMapper(empty_source, destination, config)
        mapper.apply(empty_source.revisions[0])

        with pytest.raises(PathConflictError, match="adds a file where a dir exists"):
            mapper.apply(empty_source.revisions[1])

    def test_earlier_changes_are_visible(self, empty_source, destination, config):
        """Test that a change sees the effect of earlier changes in the revision."""
        empty_source.add_revision(
            [
                PathChange("a.txt", ChangeAction.ADD),
                PathChange("a.txt", ChangeAction.MODIFY),
            ],
            {"a.txt": b"a"},
        )
        mapper = CommitMapper(empty_source, destination, config)
        mutation = mapper.build_mutation(empty_source.revisions[0])
        assert mutation.operations == (WriteFile("a.txt", b"a"), WriteFile("a.txt", b"a"))

    def test_delete_inside_deleted_directory(self, empty_source, destination, config):
        """Test that paths below a removed directory are gone."""
        empty_source.add_revision(
            [PathChange("d", ChangeAction.ADD, "dir"), PathChange("d/f", ChangeAction.ADD)],
            {"d/f": b"f"},
        )
        empty_source.add_revision(
            [PathChange("d", ChangeAction.DELETE, "dir"), PathChange("d/f", ChangeAction.DELETE)],
            {"d": None},
        )
        mapper = CommitMapper(empty_source, destination, config)
        mapper.apply(empty_source.revisions[0])

        with pytest.raises(PathConflictError, match="d/f"):
            mapper.build_mutation(empty_source.revisions[1])

    def test_rename_directory(self, empty_source, destination, config, git_dir: Path):
        """Test moving a directory and editing a file inside the new location."""
        empty_source.add_revision(
            [PathChange("src", ChangeAction.ADD, "dir"), PathChange("src/a.c", ChangeAction.ADD)],
            {"src/a.c": b"a"},
        )
        empty_source.add_revision(
            [
                PathChange("lib", ChangeAction.RENAME, "dir", copy_from="src", is_copy=True),
                PathChange("lib/a.c", ChangeAction.MODIFY),
            ],
            {"src": None, "lib/a.c": b"a2"},
        )
        mapper = CommitMapper(empty_source, destination, config)
        mapper.apply(empty_source.revisions[0])

        mutation = mapper.build_mutation(empty_source.revisions[1])
        assert mutation.operations == (MovePath("src", "lib"), WriteFile("lib/a.c", b"a2"))

        mapper.apply(empty_source.revisions[1])
        assert _tree(git_dir) == {"lib/a.c": b"a2"}

    def test_rename_file(self, empty_source, destination, config, git_dir: Path):
        """Test renaming a file."""
        empty_source.add_revision([PathChange("a.txt", ChangeAction.ADD)], {"a.txt": b"a"})
        empty_source.add_revision(
            [PathChange("b.txt", ChangeAction.RENAME, "file", copy_from="a.txt", is_copy=True)],
            {"a.txt": None, "b.txt": b"a"},
        )
        mapper = CommitMapper(empty_source, destination, config)
        mapper.apply(empty_source.revisions[0])

        assert mapper.build_mutation(empty_source.revisions[1]).operations == (
            RemovePath("a.txt"),
            WriteFile("b.txt", b"a"),
        )
        mapper.apply(empty_source.revisions[1])
        assert _tree(git_dir) == {"b.txt": b"a"}

    def test_rename_from_missing_path(self, empty_source, destination, config):
        """Test that renaming a path the destination lacks is a conflict."""
        empty_source.add_revision(
            [PathChange("b.txt", ChangeAction.RENAME, "file", copy_from="a.txt", is_copy=True)],
            {"b.txt": b"a"},
        )
        mapper = CommitMapper(empty_source, destination, config)
        with pytest.raises(PathConflictError, match="renames 'a.txt'"):
            mapper.build_mutation(empty_source.revisions[0])

    def test_rename_without_origin(self, empty_source, destination, config):
        """Test that a rename naming no origin is a conflict."""
        empty_source.add_revision(
            [PathChange("b.txt", ChangeAction.RENAME, "file")], {"b.txt": b"a"}
        )
        mapper = CommitMapper(empty_source, destination, config)
        with pytest.raises(PathConflictError, match="without an origin"):
            mapper.build_mutation(empty_source.revisions[0])

    def test_copied_directory_is_exported(self, empty_source, destination, config, git_dir):
        """Test that a directory copied from elsewhere brings its whole tree."""
        empty_source.add_revision(
            [PathChange("vendor/zlib", ChangeAction.ADD, "dir", is_copy=True)],
            {"vendor/zlib/zlib.h": b"h", "vendor/zlib/src/inflate.c": b"c"},
        )
        mapper = CommitMapper(empty_source, destination, config)

        assert mapper.build_mutation(empty_source.revisions[0]).operations == (
            MakeDir("vendor/zlib"),
            WriteFile("vendor/zlib/src/inflate.c", b"c"),
            WriteFile("vendor/zlib/zlib.h", b"h"),
        )
        mapper.apply(empty_source.revisions[0])
        assert _tree(git_dir) == {
            "vendor/zlib/src/inflate.c": b"c",
            "vendor/zlib/zlib.h": b"h",
        }

    def test_replace_file_with_directory(self, empty_source, destination, config, git_dir):
        """Test replacing a file by a directory of the same name."""
        empty_source.add_revision([PathChange("x", ChangeAction.ADD)], {"x": b"file"})
        empty_source.add_revision(
            [PathChange("x", ChangeAction.REPLACE, "dir"), PathChange("x/y", ChangeAction.ADD)],
            {"x": None, "x/y": b"y"},
        )
        mapper = CommitMapper(empty_source, destination, config)
        mapper.apply(empty_source.revisions[0])

        assert mapper.build_mutation(empty_source.revisions[1]).operations == (
            RemovePath("x"),
            MakeDir("x"),
            WriteFile("x/y", b"y"),
        )
        mapper.apply(empty_source.revisions[1])
        assert _tree(git_dir) == {"x/y": b"y"}
