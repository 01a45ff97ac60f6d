"""
Directory lookup backends.

The RBAC evaluator asks the directory for a record owner's direct
manager when deciding individual-level access.

File layout (YAML map keyed by user ID):
    u-alice:
      manager_id: u-bob
      display_name: Alice
    u-bob:
      manager_id: u-carol
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from sharegate.config import get_config

logger = logging.getLogger(__name__)


class BaseDirectoryLookup(ABC):
    """Abstract base class for directory backends."""

    @abstractmethod
    def manager_of(self, user_id: str) -> Optional[str]:
        """Return the direct manager's user ID, or None."""
        pass


class DirectoryMemoryStore(BaseDirectoryLookup):
    """In-memory directory for testing and embedding."""

    def __init__(self, managers: Optional[Dict[str, Optional[str]]] = None):
        self._managers: Dict[str, Optional[str]] = dict(managers or {})

    def manager_of(self, user_id: str) -> Optional[str]:
        return self._managers.get(user_id)

    def set_manager(self, user_id: str, manager_id: Optional[str]) -> None:
        self._managers[user_id] = manager_id


class DirectoryFileStore(BaseDirectoryLookup):
    """
    YAML-backed directory.

    The file is read on every lookup so edits apply to the next
    decision. A missing file is an empty directory; an unreadable or
    malformed file is an error the caller sees.
    """

    def __init__(self, path: Optional[str] = None):
        self.path = Path(path or get_config().directory_file)
        logger.debug(f"DirectoryFileStore initialized at {self.path}")

    def _load(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}

        with open(self.path) as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ValueError(f"Directory file {self.path} must contain a mapping")
        return data

    def manager_of(self, user_id: str) -> Optional[str]:
        entry = self._load().get(user_id)
        if entry is None:
            return None
        if isinstance(entry, dict):
            manager_id = entry.get("manager_id")
        else:
            # Shorthand: "u-alice: u-bob"
            manager_id = entry
        return str(manager_id) if manager_id else None


# =============================================================================
# Directory Factory
# =============================================================================

_default_directory: Optional[BaseDirectoryLookup] = None


def get_directory() -> BaseDirectoryLookup:
    """Get the default directory (file-backed at the configured path)."""
    global _default_directory

    if _default_directory is None:
        _default_directory = DirectoryFileStore()

    return _default_directory


def set_directory(directory: BaseDirectoryLookup) -> None:
    """Set the default directory (for testing)."""
    global _default_directory
    _default_directory = directory


def reset_directory() -> None:
    """Reset the default directory (for testing)."""
    global _default_directory
    _default_directory = None
