"""
Tests for directory lookups.
"""

import pytest
import yaml

from sharegate.access import (
    DirectoryFileStore,
    DirectoryMemoryStore,
    get_directory,
    set_directory,
)


class TestDirectoryMemoryStore:
    """Test the in-memory directory."""

    def test_manager_of(self):
        directory = DirectoryMemoryStore({"u-alice": "u-bob"})
        assert directory.manager_of("u-alice") == "u-bob"
        assert directory.manager_of("u-zed") is None

    def test_set_manager(self):
        directory = DirectoryMemoryStore()
        directory.set_manager("u-alice", "u-carol")
        assert directory.manager_of("u-alice") == "u-carol"


class TestDirectoryFileStore:
    """Test the YAML directory."""

    def test_mapping_entries(self, tmp_path):
        path = tmp_path / "directory.yaml"
        path.write_text(yaml.safe_dump({
            "u-alice": {"manager_id": "u-bob", "display_name": "Alice"},
            "u-bob": "u-carol",
            "u-carol": {"display_name": "Carol"},
        }))
        directory = DirectoryFileStore(str(path))
        assert directory.manager_of("u-alice") == "u-bob"
        assert directory.manager_of("u-bob") == "u-carol"
        assert directory.manager_of("u-carol") is None
        assert directory.manager_of("u-unknown") is None

    def test_missing_file_is_empty(self, tmp_path):
        directory = DirectoryFileStore(str(tmp_path / "absent.yaml"))
        assert directory.manager_of("u-alice") is None

    def test_reads_edits(self, tmp_path):
        """Edits apply to the next lookup."""
        path = tmp_path / "directory.yaml"
        path.write_text(yaml.safe_dump({"u-alice": "u-bob"}))
        directory = DirectoryFileStore(str(path))
        assert directory.manager_of("u-alice") == "u-bob"

        path.write_text(yaml.safe_dump({"u-alice": "u-dave"}))
        assert directory.manager_of("u-alice") == "u-dave"

    def test_malformed_file_raises(self, tmp_path):
        path = tmp_path / "directory.yaml"
        path.write_text(yaml.safe_dump(["u-alice", "u-bob"]))
        with pytest.raises(ValueError):
            DirectoryFileStore(str(path)).manager_of("u-alice")


class TestDirectoryFactory:
    """Test the default directory."""

    def test_default_uses_config(self, isolated_env):
        directory = get_directory()
        assert isinstance(directory, DirectoryFileStore)
        assert str(directory.path) == isolated_env["SHAREGATE_DIRECTORY_FILE"]

    def test_set_directory(self):
        custom = DirectoryMemoryStore()
        set_directory(custom)
        assert get_directory() is custom
