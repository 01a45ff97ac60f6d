"""
Column-level security.

The visible-column set starts from all columns, loses the
clearance-gated ones the requester is not cleared for, and is then
intersected with every applicable column allow-list rule in rule order.
A column stays visible only if every allow-list keeps it.

Updates go through the same set: changes to columns the requester
cannot see (or that are never caller-writable) are dropped, not
rejected.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from sharegate.access.evaluators import call_collaborator
from sharegate.access.models import (
    ALL_COLUMNS,
    CONFIDENTIAL_NOTES,
    FINANCIAL_DATA,
    ClearanceLevel,
    IdentityContext,
    ProtectedRecord,
    RuleStoreError,
)
from sharegate.access.store import BaseRuleStore

logger = logging.getLogger(__name__)

# Column -> minimum clearance to see it
CLEARANCE_GATED_COLUMNS: Dict[str, ClearanceLevel] = {
    CONFIDENTIAL_NOTES: ClearanceLevel.CONFIDENTIAL,
    FINANCIAL_DATA: ClearanceLevel.SECRET,
}

# Columns a caller may set on update
MUTABLE_COLUMNS: FrozenSet[str] = frozenset({
    "name",
    "data_date",
    "data",
    "organization_level",
    "sensitivity_level",
    CONFIDENTIAL_NOTES,
    FINANCIAL_DATA,
})

# Columns whose changes are written to the field-change log
AUDITED_COLUMNS: FrozenSet[str] = frozenset({
    "name",
    "data_date",
    "data",
    "organization_level",
    "sensitivity_level",
})


class ColumnVisibilityResolver:
    """Computes the visible-column set for a requester and record."""

    def __init__(self, store: BaseRuleStore):
        self.store = store

    def clearance_columns(self, identity: IdentityContext) -> FrozenSet[str]:
        """All columns minus the clearance-gated ones the requester lacks."""
        hidden = {
            column for column, required in CLEARANCE_GATED_COLUMNS.items()
            if not identity.has_clearance(required)
        }
        return ALL_COLUMNS - hidden

    def resolve(
        self,
        identity: IdentityContext,
        record: ProtectedRecord,
        now: Optional[datetime] = None,
    ) -> FrozenSet[str]:
        visible = set(self.clearance_columns(identity))

        rules = call_collaborator(
            RuleStoreError,
            f"Column rule lookup for record {record.id}",
            self.store.column_level_rules,
            record.id,
            identity.user_id,
            now or datetime.now(timezone.utc),
        )
        for rule in rules:
            visible &= rule.visible_columns
            logger.debug(f"Column rule {rule.id} narrows {identity.user_id} to {sorted(visible)}")

        return frozenset(visible)


def is_partial(visible: FrozenSet[str]) -> bool:
    return len(visible & ALL_COLUMNS) < len(ALL_COLUMNS)


@dataclass
class FieldChange:
    field: str
    old_value: Any
    new_value: Any


@dataclass
class UpdatePlan:
    """Outcome of filtering an update through the visible-column set."""

    record: ProtectedRecord
    applied: Dict[str, Any] = field(default_factory=dict)
    dropped: List[str] = field(default_factory=list)
    changes: List[FieldChange] = field(default_factory=list)


def plan_update(
    record: ProtectedRecord,
    changes: Dict[str, Any],
    visible: FrozenSet[str],
) -> UpdatePlan:
    """
    Apply only visible, mutable changes to a copy of ``record``.

    Audited columns report a FieldChange only when the validated new
    value differs from the old one.
    """
    applied: Dict[str, Any] = {}
    dropped: List[str] = []
    for name, value in changes.items():
        if name in MUTABLE_COLUMNS and name in visible:
            applied[name] = value
        else:
            dropped.append(name)

    updated = ProtectedRecord.model_validate({**record.model_dump(), **applied})

    diffs = []
    for name in applied:
        if name not in AUDITED_COLUMNS:
            continue
        old_value, new_value = _diff_pair(record, updated, name)
        if old_value != new_value:
            diffs.append(FieldChange(field=name, old_value=old_value, new_value=new_value))

    return UpdatePlan(record=updated, applied=applied, dropped=dropped, changes=diffs)


def _diff_pair(old: ProtectedRecord, new: ProtectedRecord, name: str) -> Tuple[Any, Any]:
    old_value = getattr(old, name)
    new_value = getattr(new, name)
    # Log enums by value
    return getattr(old_value, "value", old_value), getattr(new_value, "value", new_value)
