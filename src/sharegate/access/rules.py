"""
Access rules managed by administrators.

A rule grants or withholds the four operations on one record (or on the
whole table when ``record_id`` is None) for a principal, optionally
narrowed by attribute conditions, a column allow-list and a validity
window. The engine never mutates rules.

Rule semantics:
- A rule is applicable when it is active, inside its validity window,
  scoped to the record (or table-wide), its principal matches and all
  of its conditions hold.
- An applicable rule whose grant for the operation is False is a veto.
  Inapplicable rules never affect the decision.
- ``priority`` only orders evaluation (ascending, ties by id); it never
  resolves conflicts.

Example:
    rule = AccessRule(
        id="contractors-no-delete",
        name="Contractors may not delete",
        principal_type=PrincipalType.ROLE,
        principal_value="CONTRACTOR",
        can_read=True,
        conditions=[{"kind": "department", "value": "FIN"}],
    )
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from sharegate.access.conditions import Condition, conditions_hold, parse_conditions
from sharegate.access.models import (
    ClearanceLevel,
    IdentityContext,
    MalformedRuleError,
    Operation,
    PrincipalType,
)

# Stored names for fields whose serialized form predates this model
_FIELD_ALIASES: Dict[str, str] = {
    "rule_name": "name",
    "data_id": "record_id",
    "attribute_conditions": "conditions",
}


def _as_utc(dt: datetime) -> datetime:
    """Naive datetimes are treated as UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


class AccessRule(BaseModel):
    """A row/column grant for one principal."""

    id: str = Field(..., description="Unique rule identifier")
    name: str = Field(..., description="Human-readable name, reported on veto")
    description: str = Field(default="")

    record_id: Optional[str] = Field(None, description="Target record; None = table-wide")

    principal_type: PrincipalType
    principal_value: str = Field(default="*", description="User ID, role, department, ...")

    # Grants
    can_read: bool = False
    can_create: bool = False
    can_update: bool = False
    can_delete: bool = False

    visible_columns: Optional[FrozenSet[str]] = Field(
        None, description="Column allow-list; None = no column restriction"
    )
    conditions: List[Condition] = Field(default_factory=list)

    # Validity window (None = unbounded)
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None

    priority: int = 0
    active: bool = True

    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    created_by: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _apply_aliases(cls, data: Any) -> Any:
        if isinstance(data, dict):
            data = dict(data)
            for stored, name in _FIELD_ALIASES.items():
                if stored in data and name not in data:
                    data[name] = data.pop(stored)
        return data

    @field_validator("conditions", mode="before")
    @classmethod
    def _parse_conditions(cls, v: Any) -> Any:
        return parse_conditions(v)

    @field_validator("visible_columns", mode="before")
    @classmethod
    def _parse_columns(cls, v: Any) -> Any:
        if v is None:
            return None
        if isinstance(v, str):
            text = v.strip()
            if not text:
                return None
            if text.startswith("["):
                try:
                    v = json.loads(text)
                except json.JSONDecodeError as e:
                    raise ValueError(f"column list is not valid JSON: {e}")
            else:
                v = text.split(",")
        if not isinstance(v, (list, tuple, set, frozenset)):
            raise ValueError(f"column list must be a list, got {type(v).__name__}")
        columns = set()
        for column in v:
            if not isinstance(column, str):
                raise ValueError(f"column names must be strings, got {column!r}")
            if column.strip():
                columns.add(column.strip())
        return frozenset(columns)

    @model_validator(mode="after")
    def _check_clearance_principal(self) -> "AccessRule":
        if self.principal_type == PrincipalType.CLEARANCE:
            try:
                ClearanceLevel(self.principal_value.strip().upper())
            except ValueError:
                raise ValueError(f"unknown clearance principal '{self.principal_value}'")
        return self

    def grants(self, operation: Operation) -> bool:
        """Map an operation to this rule's grant flag."""
        return {
            Operation.READ: self.can_read,
            Operation.CREATE: self.can_create,
            Operation.UPDATE: self.can_update,
            Operation.DELETE: self.can_delete,
        }[operation]

    def is_within_validity(self, now: Optional[datetime] = None) -> bool:
        now = _as_utc(now or datetime.now(timezone.utc))
        if self.valid_from is not None and now < _as_utc(self.valid_from):
            return False
        if self.valid_until is not None and now > _as_utc(self.valid_until):
            return False
        return True

    def is_in_effect(self, now: Optional[datetime] = None) -> bool:
        """Active and inside the validity window."""
        return self.active and self.is_within_validity(now)

    def applies_to_record(self, record_id: str) -> bool:
        return self.record_id is None or self.record_id == record_id

    def principal_matches(self, identity: IdentityContext) -> bool:
        """Check whether this rule's principal covers the requester."""
        pt = self.principal_type
        if pt == PrincipalType.USER:
            return self.principal_value == identity.user_id
        if pt == PrincipalType.ROLE:
            return identity.has_role(self.principal_value)
        if pt == PrincipalType.DEPARTMENT:
            return identity.belongs_to_department(self.principal_value)
        if pt == PrincipalType.TEAM:
            return identity.belongs_to_team(self.principal_value)
        if pt == PrincipalType.CLEARANCE:
            return identity.has_clearance(ClearanceLevel(self.principal_value.strip().upper()))
        # ORGANIZATION and ALL cover everyone
        return True

    def conditions_hold(self, identity: IdentityContext) -> bool:
        return conditions_hold(self.conditions, identity)

    def is_applicable(
        self,
        identity: IdentityContext,
        record_id: str,
        now: Optional[datetime] = None,
    ) -> bool:
        """Whether this rule takes part in a decision at all."""
        return (
            self.is_in_effect(now)
            and self.applies_to_record(record_id)
            and self.principal_matches(identity)
            and self.conditions_hold(identity)
        )

    def targets_user(self, user_id: str) -> bool:
        """True for rules aimed at exactly this user or at everyone."""
        if self.principal_type == PrincipalType.ALL:
            return True
        return self.principal_type == PrincipalType.USER and self.principal_value == user_id

    def describe_principal(self) -> str:
        return f"{self.principal_type.value}:{self.principal_value}"

    def describe_grants(self) -> str:
        flags = [
            ("R", self.can_read),
            ("C", self.can_create),
            ("U", self.can_update),
            ("D", self.can_delete),
        ]
        return "".join(letter if granted else "-" for letter, granted in flags)


def rule_sort_key(rule: AccessRule) -> Tuple[int, str]:
    """Ascending priority, ties broken by rule id."""
    return (rule.priority, rule.id)


def parse_rule(data: Any) -> AccessRule:
    """
    Validate stored rule data.

    Raises:
        MalformedRuleError: If the rule (or its conditions/columns) cannot be parsed
    """
    rule_id = data.get("id") if isinstance(data, dict) else None
    try:
        return AccessRule.model_validate(data)
    except ValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(part) for part in first.get("loc", ()))
        message = f"{location}: {first['msg']}" if location else first["msg"]
        raise MalformedRuleError(message, rule_id=rule_id) from e
