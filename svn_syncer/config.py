"""
Configuration handling for svn_syncer.

Defines the configuration schema and provides methods for loading/saving
sync configuration from YAML files.
"""

import re
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, field_validator


DEFAULT_CONFIG_FILE = Path("svn_syncer.yaml")
DEFAULT_HISTORY_FILE = Path(".svn_syncer_history.json")

# "Full Name <email@example.com>"
_AUTHOR_RE = re.compile(r"^\s*(?P<name>[^<>]*?)\s*<(?P<email>[^<>]*)>\s*$")

# Author used by Subversion for revisions committed without one
NO_AUTHOR = "(no author)"


class SyncConfig(BaseModel):
    """Main configuration for the svn syncer."""

    # Source: a Subversion working copy path or repository URL
    svn_dir: str | None = Field(
        None, description="Subversion working copy or URL to read revisions from"
    )
    # Destination Git working tree
    git_dir: Path | None = Field(
        None, description="Path to the Git repository that receives the commits"
    )

    # Sync history file (record of every sync attempt)
    history_file: Path = Field(
        default=DEFAULT_HISTORY_FILE,
        description="Path to the sync history file",
    )

    # Revision selection
    start_revision: int = Field(
        default=1, ge=1, description="First revision to replay on the very first sync"
    )
    max_revisions: int | None = Field(
        default=None,
        ge=1,
        description="Maximum number of revisions replayed in one run",
    )

    # Commit shaping
    commit_prefix: str = Field(
        default="",
        description="Prefix to add to commit messages when syncing",
    )
    keep_empty_revisions: bool = Field(
        default=False,
        description="Create empty commits for revisions outside the synced subtree",
    )
    create_tags: bool = Field(
        default=False, description="Tag every synced commit with its revision number"
    )
    tag_prefix: str = Field(
        default="svn/r", description="Prefix of the per-revision tags"
    )

    # Author mapping: svn username -> "Name <email>"
    authors: dict[str, str] = Field(
        default_factory=dict,
        description="Map of Subversion usernames to Git identities",
    )
    author_email_domain: str | None = Field(
        default=None,
        description="Email domain for unmapped authors (defaults to the repository UUID)",
    )

    # Subversion access
    svn_username: str | None = Field(default=None, description="Subversion username")
    svn_password: str | None = Field(default=None, description="Subversion password")
    svn_timeout: int = Field(
        default=300, ge=1, description="Timeout in seconds for a single svn command"
    )

    @field_validator("authors")
    @classmethod
    def _check_authors(cls, authors: dict[str, str]) -> dict[str, str]:
        for username, identity in authors.items():
            if not _AUTHOR_RE.match(identity):
                raise ValueError(
                    f"Author mapping for '{username}' must look like 'Name <email>', got '{identity}'"
                )
        return authors

    @classmethod
    def from_yaml(cls, path: Path) -> "SyncConfig":
        """Load configuration from a YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f)
        return cls.model_validate(data or {})

    @classmethod
    def load_or_default(cls, path: Path) -> "SyncConfig":
        """Load configuration from a YAML file, or defaults when it does not exist."""
        if not path.exists():
            return cls()
        return cls.from_yaml(path)

    def to_yaml(self, path: Path) -> None:
        """Save configuration to a YAML file."""
        data = self.model_dump(mode="json", exclude_none=True)
        # Never write secrets back to disk
        data.pop("svn_password", None)
        with open(path, "w") as f:
            yaml.dump(
                data,
                f,
                default_flow_style=False,
                sort_keys=False,
            )

    def resolve_author(self, username: str, fallback_domain: str | None = None) -> tuple[str, str]:
        """
        Map a Subversion username to a Git author name and email.

        Mapped users come from ``authors``. Everybody else becomes
        ``username <username@domain>`` where the domain is
        ``author_email_domain`` or, failing that, ``fallback_domain``.
        """
        identity = self.authors.get(username)
        if identity:
            match = _AUTHOR_RE.match(identity)
            if match is None:
                raise ValueError(
                    f"Author mapping for '{username}' must look like 'Name <email>', got '{identity}'"
                )
            return match.group("name") or username, match.group("email")

        name = username or NO_AUTHOR
        domain = self.author_email_domain or fallback_domain or "localhost"
        local_part = re.sub(r"[^A-Za-z0-9._+-]", "", name.replace(" ", ".")) or "unknown"
        return name, f"{local_part}@{domain}"


def create_default_config(
    svn_dir: str | None = None,
    git_dir: Path | None = None,
    authors: dict[str, str] | None = None,
) -> SyncConfig:
    """Create a default configuration with sensible defaults."""
    return SyncConfig(
        svn_dir=svn_dir,
        git_dir=git_dir,
        authors=authors or {},
    )


def default_git_dir(svn_dir: str) -> Path:
    """Suggest a destination next to the working copy: ``<name>-git``."""
    if "://" in svn_dir:
        name = svn_dir.rstrip("/").rsplit("/", 1)[-1] or "svn"
        return Path(f"{name}-git")
    source = Path(svn_dir).expanduser().resolve()
    return source.parent / f"{source.name or 'svn'}-git"
