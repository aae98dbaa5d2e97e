"""
Subversion operations for the syncer.

Wraps the ``svn`` command line client: reading repository info, fetching
verbose logs as XML, and reading file or tree content at a given revision.
Every failure to run or parse ``svn`` output is reported as
``SourceUnavailableError``.
"""

import logging
import subprocess
import tempfile
import xml.etree.ElementTree as ET
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from pathlib import Path
from urllib.parse import quote, unquote

from .config import NO_AUTHOR
from .errors import SourceUnavailableError
from .models import ChangeAction, PathChange, Revision

logger = logging.getLogger(__name__)

SVN_ACTIONS = {
    "A": ChangeAction.ADD,
    "M": ChangeAction.MODIFY,
    "D": ChangeAction.DELETE,
    "R": ChangeAction.REPLACE,
}

# Used when a log entry has no date (e.g. revision 0 or stripped revprops)
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def run_svn(
    args: list[str],
    timeout: int = 300,
    username: str | None = None,
    password: str | None = None,
) -> bytes:
    """
    Run an svn command and return its raw stdout.

    Args:
        args: svn subcommand and arguments (without the ``svn`` executable)
        timeout: Seconds before the command is abandoned
        username: Optional Subversion username
        password: Optional Subversion password (never logged)

    Returns:
        The command's stdout as bytes
    """
    cmd = ["svn", *args, "--non-interactive"]
    if username:
        cmd.extend(["--username", username])
    if password:
        cmd.extend(["--password", password, "--no-auth-cache"])

    logger.debug("Running svn %s", " ".join(args))
    try:
        result = subprocess.run(cmd, capture_output=True, check=True, timeout=timeout)
    except FileNotFoundError as e:
        raise SourceUnavailableError(
            "The svn executable was not found; is Subversion installed?"
        ) from e
    except subprocess.TimeoutExpired as e:
        raise SourceUnavailableError(f"svn {args[0]} timed out after {timeout}s") from e
    except subprocess.CalledProcessError as e:
        stderr = (e.stderr or b"").decode("utf-8", errors="replace").strip()
        raise SourceUnavailableError(f"svn {args[0]} failed: {stderr or 'no details'}") from e
    return result.stdout


@dataclass(frozen=True)
class SvnInfo:
    """Subset of ``svn info --xml`` that the syncer needs."""

    url: str
    root_url: str
    uuid: str
    revision: int
    kind: str

    @property
    def subtree(self) -> str:
        """Repository path of ``url``, e.g. ``/trunk`` (``/`` for the root)."""
        relative = self.url[len(self.root_url):] if self.url.startswith(self.root_url) else ""
        return unquote(relative).rstrip("/") or "/"


def _parse_xml(xml: bytes, what: str) -> ET.Element:
    try:
        return ET.fromstring(xml)
    except ET.ParseError as e:
        raise SourceUnavailableError(f"Cannot parse svn {what} output: {e}") from e


def parse_info_xml(xml: bytes) -> SvnInfo:
    """Parse the first entry of ``svn info --xml`` output."""
    root = _parse_xml(xml, "info")
    entry = root.find("entry")
    if entry is None:
        raise SourceUnavailableError("svn info returned no entry")

    url = entry.findtext("url")
    root_url = entry.findtext("repository/root")
    revision = entry.get("revision")
    if not url or not root_url or revision is None:
        raise SourceUnavailableError("svn info output is missing url, root or revision")

    return SvnInfo(
        url=url.rstrip("/"),
        root_url=root_url.rstrip("/"),
        uuid=entry.findtext("repository/uuid") or "",
        revision=int(revision),
        kind=entry.get("kind", ""),
    )


def _parse_svn_date(text: str | None) -> datetime:
    if not text or not text.strip():
        return EPOCH
    text = text.strip()
    try:
        return datetime.strptime(text, "%Y-%m-%dT%H:%M:%S.%fZ").replace(tzinfo=timezone.utc)
    except ValueError:
        pass
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError as e:
        raise SourceUnavailableError(f"Unrecognised svn date: {text}") from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def relative_path(path: str, subtree: str) -> str | None:
    """
    Make a repository path relative to the synced subtree.

    Returns None for paths outside the subtree and for the subtree root
    itself.
    """
    path = path.rstrip("/")
    if subtree == "/":
        return path.lstrip("/") or None
    if path.startswith(subtree + "/"):
        return path[len(subtree) + 1 :]
    return None


def _path_sort_key(change: PathChange) -> tuple[str, ...]:
    # Parents sort before their children
    return tuple(change.path.split("/"))


def fold_renames(changes: list[PathChange]) -> list[PathChange]:
    """
    Turn a delete plus a copy of the same path into a single rename.

    Subversion has no native rename; a move shows up as ``D old`` and
    ``A new (from old)`` in the same revision. The first copy of a deleted
    path becomes a ``RENAME``; further copies stay plain adds.
    """
    deleted = {c.path for c in changes if c.action == ChangeAction.DELETE}
    rename_targets: dict[str, str] = {}
    for change in changes:
        if (
            change.action == ChangeAction.ADD
            and change.copy_from in deleted
            and change.copy_from not in rename_targets
        ):
            rename_targets[change.copy_from] = change.path

    folded = []
    for change in changes:
        if change.action == ChangeAction.DELETE and change.path in rename_targets:
            continue
        if (
            change.action == ChangeAction.ADD
            and change.copy_from is not None
            and rename_targets.get(change.copy_from) == change.path
        ):
            folded.append(replace(change, action=ChangeAction.RENAME))
        else:
            folded.append(change)
    return folded


def parse_log_xml(xml: bytes, subtree: str = "/") -> list[Revision]:
    """
    Parse ``svn log --xml -v`` output into revisions.

    Changed paths are made relative to ``subtree``; paths outside it are
    dropped, so a revision that only touches other parts of the repository
    comes back with no changes. Changes are reported parents-first.
    """
    root = _parse_xml(xml, "log")
    if root.tag != "log":
        raise SourceUnavailableError(f"Unexpected svn log root element <{root.tag}>")

    revisions = []
    for entry in root.findall("logentry"):
        revision_attr = entry.get("revision")
        if revision_attr is None:
            raise SourceUnavailableError("svn log entry is missing its revision attribute")
        revision_id = int(revision_attr)

        changes = []
        paths = entry.find("paths")
        for path_elem in paths.findall("path") if paths is not None else []:
            action = SVN_ACTIONS.get(path_elem.get("action", ""))
            if action is None:
                raise SourceUnavailableError(
                    f"Unknown svn action '{path_elem.get('action')}' in r{revision_id}"
                )
            repo_path = (path_elem.text or "").strip()
            rel = relative_path(repo_path, subtree)
            if rel is None:
                if repo_path.rstrip("/") == subtree and action != ChangeAction.MODIFY:
                    logger.warning(
                        "r%d %s the synced directory itself; ignoring",
                        revision_id,
                        "deletes" if action == ChangeAction.DELETE else "re-creates",
                    )
                continue

            copy_from = path_elem.get("copyfrom-path")
            changes.append(
                PathChange(
                    path=rel,
                    action=action,
                    kind=path_elem.get("kind", ""),
                    copy_from=relative_path(copy_from, subtree) if copy_from else None,
                    is_copy=copy_from is not None,
                )
            )

        changes.sort(key=_path_sort_key)
        revisions.append(
            Revision(
                id=revision_id,
                author=(entry.findtext("author") or "").strip() or NO_AUTHOR,
                timestamp=_parse_svn_date(entry.findtext("date")),
                message=(entry.findtext("msg") or "").strip(),
                changes=tuple(fold_renames(changes)),
            )
        )

    return revisions


class SvnRepository:
    """Read-only view of a Subversion repository, used as the revision source."""

    def __init__(
        self,
        location: str,
        start_revision: int = 1,
        max_revisions: int | None = None,
        username: str | None = None,
        password: str | None = None,
        timeout: int = 300,
    ):
        """
        Initialize the repository wrapper.

        Args:
            location: Working copy path or repository URL
            start_revision: First revision replayed when nothing was synced yet
            max_revisions: Upper bound on revisions returned by one ``pending`` call
            username: Optional Subversion username
            password: Optional Subversion password
            timeout: Seconds allowed for a single svn command
        """
        self.location = location
        self.start_revision = start_revision
        self.max_revisions = max_revisions
        self.username = username
        self.password = password
        self.timeout = timeout
        self._info: SvnInfo | None = None

    def _svn(self, *args: str) -> bytes:
        return run_svn(
            list(args),
            timeout=self.timeout,
            username=self.username,
            password=self.password,
        )

    @property
    def info(self) -> SvnInfo:
        """Repository info of the configured location (fetched once)."""
        if self._info is None:
            self._info = parse_info_xml(self._svn("info", "--xml", self.location))
            logger.debug(
                "Source %s: root %s, subtree %s", self._info.url, self._info.root_url, self._info.subtree
            )
        return self._info

    @property
    def url(self) -> str:
        return self.info.url

    @property
    def uuid(self) -> str:
        return self.info.uuid

    def head_revision(self) -> int:
        """Get the youngest revision of the repository."""
        return parse_info_xml(self._svn("info", "--xml", "-r", "HEAD", self.info.root_url)).revision

    def pending(self, after: int | None) -> list[Revision]:
        """
        Get the revisions that follow ``after``, oldest first.

        The log is read from the repository root so that every revision id
        shows up, including revisions that do not touch the synced subtree.
        """
        start = self.start_revision if after is None else after + 1
        head = self.head_revision()
        if start > head:
            return []

        end = head
        if self.max_revisions is not None:
            end = min(head, start + self.max_revisions - 1)

        logger.info("Fetching svn log r%d:r%d", start, end)
        xml = self._svn("log", "--xml", "-v", "-r", f"{start}:{end}", self.info.root_url)
        revisions = parse_log_xml(xml, self.info.subtree)

        expected = start
        for revision in revisions:
            if revision.id != expected:
                # Typically revisions hidden by path-based authorization
                raise SourceUnavailableError(
                    f"svn log skipped from r{expected} to r{revision.id}; "
                    "every revision must be readable to sync without gaps"
                )
            expected = revision.id + 1

        return [self._with_known_kinds(r) for r in revisions]

    def _with_known_kinds(self, revision: Revision) -> Revision:
        # Old servers leave the node kind out of the log
        if all(c.kind or c.action == ChangeAction.DELETE for c in revision.changes):
            return revision
        changes = tuple(
            c if c.kind or c.action == ChangeAction.DELETE
            else replace(c, kind=self.node_kind(c.path, revision.id))
            for c in revision.changes
        )
        return replace(revision, changes=changes)

    def _path_url(self, path: str, revision: int) -> str:
        # Trailing peg revision pins the path as it existed at that revision
        return f"{self.url}/{quote(path)}@{revision}"

    def node_kind(self, path: str, revision: int) -> str:
        """Get whether ``path`` is a 'file' or a 'dir' at ``revision``."""
        return parse_info_xml(self._svn("info", "--xml", self._path_url(path, revision))).kind

    def cat(self, path: str, revision: int) -> bytes:
        """Get the content of a file at a revision."""
        return self._svn("cat", self._path_url(path, revision))

    def export(self, path: str, revision: int) -> list[tuple[str, bytes]]:
        """
        Get every file below a directory at a revision.

        Returns (relative path, content) pairs sorted by path. Keywords are
        left unexpanded and native line endings exported as LF so the result
        matches what ``cat`` returns for the same files.
        """
        with tempfile.TemporaryDirectory(prefix="svn_syncer_") as tmp:
            target = Path(tmp) / "export"
            self._svn(
                "export",
                "--quiet",
                "--ignore-externals",
                "--ignore-keywords",
                "--native-eol",
                "LF",
                self._path_url(path, revision),
                str(target),
            )
            files = [p for p in target.rglob("*") if p.is_file()]
            files.sort(key=lambda p: p.relative_to(target).parts)
            return [(p.relative_to(target).as_posix(), p.read_bytes()) for p in files]
