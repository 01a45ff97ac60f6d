"""
Access-controlled record operations.

Example usage:
    from sharegate.records import RecordService, RecordMemoryRepository

    service = RecordService(repository=RecordMemoryRepository())
    record = service.get(identity, "rec-42")
"""

from sharegate.records.repository import (
    BaseRecordRepository,
    RecordMemoryRepository,
)

from sharegate.records.service import (
    RecordExistsError,
    RecordNotFoundError,
    RecordService,
    SUMMARY_COLUMNS,
)

__all__ = [
    "BaseRecordRepository",
    "RecordMemoryRepository",
    "RecordExistsError",
    "RecordNotFoundError",
    "RecordService",
    "SUMMARY_COLUMNS",
]
