"""
Git operations for the syncer.

Provides a wrapper around the destination repository using GitPython:
inspecting the tip and working tree, applying tree mutations, staging,
committing with fixed author and committer identities, and tagging.
Every GitPython or filesystem failure is reported as ``SinkUnavailableError``.
"""

import logging
import re
import shutil
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path

from git import Repo
from git.exc import GitError, InvalidGitRepositoryError, NoSuchPathError

from .errors import SinkUnavailableError
from .models import (
    CommitMetadata,
    MakeDir,
    MovePath,
    RemovePath,
    RevisionRange,
    TreeMutation,
    WriteFile,
)

logger = logging.getLogger(__name__)

# Trailer embedded in every synced commit message
REVISION_TRAILER = "svn-revision"
_TRAILER_RE = re.compile(rf"^{REVISION_TRAILER}:\s*(\d+)\s*$", re.MULTILINE)


def format_git_date(moment: datetime) -> str:
    """Format a datetime the way ``git commit --date`` expects it."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S%z")


def parse_revision_trailer(message: str) -> int | None:
    """Extract the source revision id from a synced commit message."""
    matches = _TRAILER_RE.findall(message)
    return int(matches[-1]) if matches else None


@contextmanager
def _sink_errors(action: str) -> Iterator[None]:
    try:
        yield
    except (GitError, OSError) as e:
        raise SinkUnavailableError(f"Could not {action}: {e}") from e


class GitRepository:
    """Wrapper around the destination git repository for sync operations."""

    def __init__(self, path: Path):
        """
        Initialize repository wrapper.

        The repository itself is opened on first use, so a missing or invalid
        destination is reported by the operation that needs it.
        """
        self.path = Path(path).expanduser().resolve()
        self._repo: Repo | None = None

    @classmethod
    def init(cls, path: Path) -> "GitRepository":
        """Create the repository (and its directory) if it does not exist yet."""
        path = Path(path).expanduser().resolve()
        with _sink_errors(f"initialize a git repository at {path}"):
            try:
                Repo(path)
            except (InvalidGitRepositoryError, NoSuchPathError):
                logger.info("Initializing git repository at %s", path)
                Repo.init(path, mkdir=True)
        return cls(path)

    @property
    def repo(self) -> Repo:
        if self._repo is None:
            try:
                self._repo = Repo(self.path)
            except (InvalidGitRepositoryError, NoSuchPathError) as e:
                raise SinkUnavailableError(f"Not a valid git repository: {self.path}") from e
            if self._repo.bare:
                raise SinkUnavailableError(f"Git repository has no working tree: {self.path}")
        return self._repo

    def current_tip(self) -> str | None:
        """Get the current HEAD commit hash, or None for an empty repository."""
        repo = self.repo
        with _sink_errors("read the destination HEAD"):
            if not repo.head.is_valid():
                return None
            return repo.head.commit.hexsha

    def path_kind(self, file_path: str) -> str | None:
        """Return 'file', 'dir' or None for a path in the working tree."""
        full_path = self.path / file_path
        if full_path.is_dir() and not full_path.is_symlink():
            return "dir"
        if full_path.exists() or full_path.is_symlink():
            return "file"
        return None

    def ensure_clean(self) -> None:
        """Refuse to continue when tracked files have uncommitted changes."""
        repo = self.repo
        with _sink_errors("check the destination working tree"):
            if not repo.head.is_valid():
                dirty = bool(repo.index.entries)
            else:
                dirty = repo.is_dirty(index=True, working_tree=True, untracked_files=False)
        if dirty:
            raise SinkUnavailableError(
                f"Destination {self.path} has uncommitted changes; commit or reset them first"
            )

    def stage_files(self, file_paths: list[str]) -> None:
        """Stage multiple files for commit."""
        if file_paths:
            # Forced: mirrored content must not be filtered by .gitignore
            self.repo.git.add("-f", "--", *file_paths)

    def remove_file(self, file_path: str) -> None:
        """Stage the removal of a path (file or directory)."""
        self.repo.git.rm("-r", "--cached", "--ignore-unmatch", "--quiet", "--", file_path)

    def apply(self, mutation: TreeMutation) -> None:
        """Apply tree operations to the working tree and stage them in order."""
        with _sink_errors("update the destination working tree"):
            for operation in mutation.operations:
                if isinstance(operation, WriteFile):
                    target = self.path / operation.path
                    if target.is_dir() and not target.is_symlink():
                        shutil.rmtree(target)
                    target.parent.mkdir(parents=True, exist_ok=True)
                    target.write_bytes(operation.content)
                    self.stage_files([operation.path])
                elif isinstance(operation, MakeDir):
                    # Git does not track directories; nothing to stage
                    (self.path / operation.path).mkdir(parents=True, exist_ok=True)
                elif isinstance(operation, RemovePath):
                    self._remove_from_tree(operation.path)
                    self.remove_file(operation.path)
                elif isinstance(operation, MovePath):
                    source = self.path / operation.source
                    target = self.path / operation.path
                    if target.exists():
                        self._remove_from_tree(operation.path)
                    target.parent.mkdir(parents=True, exist_ok=True)
                    shutil.move(str(source), str(target))
                    self.remove_file(operation.source)
                    if target.is_dir():
                        if any(p.is_file() for p in target.rglob("*")):
                            self.stage_files([operation.path])
                    else:
                        self.stage_files([operation.path])
                else:
                    raise TypeError(f"Unknown tree operation: {operation!r}")

    def _remove_from_tree(self, file_path: str) -> None:
        full_path = self.path / file_path
        if full_path.is_dir() and not full_path.is_symlink():
            shutil.rmtree(full_path)
        elif full_path.exists() or full_path.is_symlink():
            full_path.unlink()

    def commit(self, mutation: TreeMutation, metadata: CommitMetadata) -> str:
        """
        Apply a mutation and commit it.

        Author and committer share the same identity and date, so replaying
        the same mutation on the same parent yields the same commit hash.
        Empty commits are allowed: every call produces exactly one commit.
        """
        self.apply(mutation)

        date_str = format_git_date(metadata.timestamp)
        env = {
            "GIT_AUTHOR_NAME": metadata.author_name,
            "GIT_AUTHOR_EMAIL": metadata.author_email,
            "GIT_AUTHOR_DATE": date_str,
            "GIT_COMMITTER_NAME": metadata.author_name,
            "GIT_COMMITTER_EMAIL": metadata.author_email,
            "GIT_COMMITTER_DATE": date_str,
        }
        with _sink_errors("create the destination commit"):
            self.repo.git.commit(
                "--allow-empty",
                "--no-verify",
                "--no-gpg-sign",
                "--cleanup=whitespace",
                "-m",
                metadata.message,
                env=env,
            )
            new_hash = self.repo.head.commit.hexsha
        logger.debug("Committed %s", new_hash)
        return new_hash

    def create_tag(
        self,
        tag_name: str,
        commit_hash: str,
        message: str | None = None,
        force: bool = False,
    ) -> bool:
        """
        Create a tag at a specific commit.

        Returns False when the tag already exists and ``force`` is not set.
        """
        if not force and self.tag_exists(tag_name):
            return False
        args = []
        if force:
            args.append("-f")
        if message:
            args.extend(["-a", "-m", message])
        args.extend([tag_name, commit_hash])
        with _sink_errors(f"create tag {tag_name}"):
            self.repo.git.tag(*args)
        return True

    def tag_exists(self, tag_name: str) -> bool:
        """Check if a tag exists."""
        return tag_name in {t.name for t in self.repo.tags}

    def last_synced_revision(self, max_count: int = 100) -> tuple[int, str] | None:
        """
        Find the newest commit that carries a revision trailer.

        Searches recent commits from HEAD and returns the revision id together
        with the commit hash, or None if no synced commit is found.
        """
        if self.current_tip() is None:
            return None
        with _sink_errors("read the destination history"):
            for commit in self.repo.iter_commits("HEAD", max_count=max_count):
                revision_id = parse_revision_trailer(commit.message)
                if revision_id is not None:
                    return revision_id, commit.hexsha
        return None

    def synced_commits(self, revision_range: RevisionRange | None = None) -> list[tuple[int, str]]:
        """
        List synced commits reachable from HEAD, newest first.

        Returns (revision id, commit hash) pairs, optionally restricted to a
        revision range. Commits left behind by a failed run are found the
        same way as those of a completed one.
        """
        if self.current_tip() is None:
            return []
        found = []
        with _sink_errors("search the destination history"):
            for commit in self.repo.iter_commits("HEAD"):
                revision_id = parse_revision_trailer(commit.message)
                if revision_id is None:
                    continue
                if revision_range is None or revision_id in revision_range:
                    found.append((revision_id, commit.hexsha))
        return found
