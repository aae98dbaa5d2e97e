"""Tests for configuration module."""

from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError

from svn_syncer.config import (
    DEFAULT_HISTORY_FILE,
    SyncConfig,
    create_default_config,
    default_git_dir,
)


class TestSyncConfig:
    """Tests for SyncConfig."""

    def test_defaults(self):
        """Test the default settings."""
        config = SyncConfig()
        assert config.svn_dir is None
        assert config.git_dir is None
        assert config.history_file == DEFAULT_HISTORY_FILE
        assert config.start_revision == 1
        assert config.max_revisions is None
        assert config.keep_empty_revisions is False
        assert config.create_tags is False
        assert config.tag_prefix == "svn/r"

    def test_start_revision_must_be_positive(self):
        """Test that revision 0 cannot be the first replayed revision."""
        with pytest.raises(ValidationError):
            SyncConfig(start_revision=0)

    def test_invalid_author_mapping(self):
        """Test that author identities must look like 'Name <email>'."""
        with pytest.raises(ValidationError, match="Name <email>"):
            SyncConfig(authors={"alice": "alice@example.com"})

    def test_yaml_roundtrip(self, temp_dir: Path):
        """Test saving and loading config from YAML."""
        config_path = temp_dir / "config.yaml"
        config = SyncConfig(
            svn_dir="https://svn.example.com/repo/trunk",
            git_dir=temp_dir / "trunk-git",
            commit_prefix="[svn]",
            authors={"alice": "Alice Example <alice@example.com>"},
        )
        config.to_yaml(config_path)

        loaded = SyncConfig.from_yaml(config_path)
        assert loaded.svn_dir == config.svn_dir
        assert loaded.git_dir == config.git_dir
        assert loaded.commit_prefix == "[svn]"
        assert loaded.authors == config.authors

    def test_password_not_written(self, temp_dir: Path):
        """Test that the Subversion password never reaches the config file."""
        config_path = temp_dir / "config.yaml"
        SyncConfig(svn_username="alice", svn_password="secret").to_yaml(config_path)

        data = yaml.safe_load(config_path.read_text())
        assert data["svn_username"] == "alice"
        assert "svn_password" not in data
        assert "secret" not in config_path.read_text()

    def test_load_or_default_missing_file(self, temp_dir: Path):
        """Test that a missing config file yields the defaults."""
        config = SyncConfig.load_or_default(temp_dir / "missing.yaml")
        assert config == SyncConfig()

    def test_load_empty_file(self, temp_dir: Path):
        """Test that an empty config file yields the defaults."""
        config_path = temp_dir / "empty.yaml"
        config_path.write_text("")
        assert SyncConfig.from_yaml(config_path) == SyncConfig()


class TestResolveAuthor:
    """Tests for mapping Subversion usernames to Git identities."""

    def test_mapped_author(self):
        """Test a username present in the author map."""
        config = SyncConfig(authors={"alice": "Alice Example <alice@example.com>"})
        assert config.resolve_author("alice") == ("Alice Example", "alice@example.com")

    def test_unmapped_author_uses_domain(self):
        """Test the configured email domain for unmapped users."""
        config = SyncConfig(author_email_domain="example.org")
        assert config.resolve_author("bob") == ("bob", "bob@example.org")

    def test_unmapped_author_falls_back(self):
        """Test the fallback domain when no domain is configured."""
        config = SyncConfig()
        assert config.resolve_author("bob", fallback_domain="uuid-1") == ("bob", "bob@uuid-1")
        assert config.resolve_author("bob") == ("bob", "bob@localhost")

    def test_no_author(self):
        """Test revisions committed without an author."""
        name, email = SyncConfig().resolve_author("(no author)")
        assert name == "(no author)"
        assert email == "no.author@localhost"

    def test_mapping_changed_after_load(self):
        """Test that a malformed mapping set after validation is still refused."""
        config = SyncConfig()
        config.authors["bob"] = "bob@example.com"
        with pytest.raises(ValueError, match="Name <email>"):
            config.resolve_author("bob")


class TestCreateDefaultConfig:
    """Tests for create_default_config function."""

    def test_create_default(self, temp_dir: Path):
        """Test creating default config."""
        config = create_default_config(
            svn_dir="svn-wc",
            git_dir=temp_dir / "svn-wc-git",
            authors={"alice": "Alice <alice@example.com>"},
        )
        assert config.svn_dir == "svn-wc"
        assert config.git_dir == temp_dir / "svn-wc-git"
        assert "alice" in config.authors


class TestDefaultGitDir:
    """Tests for the suggested destination directory."""

    def test_local_working_copy(self, temp_dir: Path):
        """Test that a working copy gets a sibling -git directory."""
        assert default_git_dir(str(temp_dir / "project")) == temp_dir.resolve() / "project-git"

    def test_url(self):
        """Test that a URL gets a -git directory named after its last segment."""
        assert default_git_dir("https://svn.example.com/repo/trunk/") == Path("trunk-git")
