"""
Record repositories.

Persistence for ProtectedRecord is a collaborator; this module defines
its boundary plus an in-memory implementation for tests and embedding.
Deletes are soft: the service flags the record and saves it back.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from sharegate.access.models import ProtectedRecord

logger = logging.getLogger(__name__)


class BaseRecordRepository(ABC):
    """Abstract base class for record storage backends."""

    @abstractmethod
    def get(self, record_id: str) -> Optional[ProtectedRecord]:
        """Get a record by ID, including soft-deleted ones."""
        pass

    @abstractmethod
    def save(self, record: ProtectedRecord) -> None:
        """Save a record (create or update)."""
        pass

    @abstractmethod
    def list_records(self, include_deleted: bool = False) -> List[ProtectedRecord]:
        """List records, ordered by ID."""
        pass

    def get_active(self, record_id: str) -> Optional[ProtectedRecord]:
        """Get a record unless it is missing or soft-deleted."""
        record = self.get(record_id)
        if record is None or record.is_deleted:
            return None
        return record

    def list_by_owner(self, owner_id: str) -> List[ProtectedRecord]:
        return [r for r in self.list_records() if r.owner_id == owner_id]


class RecordMemoryRepository(BaseRecordRepository):
    """
    In-memory record storage for testing.

    Data is lost when the process exits.
    """

    def __init__(self, records: Optional[List[ProtectedRecord]] = None):
        self._records: Dict[str, ProtectedRecord] = {}
        for record in records or []:
            self.save(record)

    def get(self, record_id: str) -> Optional[ProtectedRecord]:
        return self._records.get(record_id)

    def save(self, record: ProtectedRecord) -> None:
        self._records[record.id] = record
        logger.debug(f"Saved record {record.id}")

    def list_records(self, include_deleted: bool = False) -> List[ProtectedRecord]:
        records = sorted(self._records.values(), key=lambda r: r.id)
        if include_deleted:
            return records
        return [r for r in records if not r.is_deleted]
