"""
Attribute conditions attached to access rules.

A rule may only apply when every one of its conditions holds for the
requester. Conditions are a closed set of kinds, discriminated by the
``kind`` field:

    department      requester belongs to the department
    team            requester belongs to the team
    clearance       requester clearance is at least the level
    role            requester holds the role
    is_manager      requester manager flag equals the value
    is_executive    requester executive flag equals the value

Stored rules may still carry the flat key/value map form, e.g.
``{"department": "FIN", "isManager": "true"}``. ``parse_conditions``
converts both forms; anything it cannot convert raises
MalformedRuleError.
"""

from __future__ import annotations

import json
from typing import Annotated, Any, Dict, List, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

from sharegate.access.models import ClearanceLevel, IdentityContext, MalformedRuleError


def _strict_flag(v: Any) -> bool:
    if isinstance(v, bool):
        return v
    if isinstance(v, str) and v.strip().lower() in ("true", "false"):
        return v.strip().lower() == "true"
    raise ValueError(f"expected 'true' or 'false', got {v!r}")


class _Condition(BaseModel):
    model_config = ConfigDict(frozen=True)

    def describe(self) -> str:
        return f"{self.kind}={self.value}"


class DepartmentEquals(_Condition):
    kind: Literal["department"] = "department"
    value: str

    def holds(self, identity: IdentityContext) -> bool:
        return identity.belongs_to_department(self.value)


class TeamEquals(_Condition):
    kind: Literal["team"] = "team"
    value: str

    def holds(self, identity: IdentityContext) -> bool:
        return identity.belongs_to_team(self.value)


class ClearanceAtLeast(_Condition):
    kind: Literal["clearance"] = "clearance"
    value: ClearanceLevel

    @field_validator("value", mode="before")
    @classmethod
    def _upper(cls, v: Any) -> Any:
        return v.strip().upper() if isinstance(v, str) else v

    def holds(self, identity: IdentityContext) -> bool:
        return identity.has_clearance(self.value)

    def describe(self) -> str:
        return f"clearance>={self.value.value}"


class RoleEquals(_Condition):
    kind: Literal["role"] = "role"
    value: str

    def holds(self, identity: IdentityContext) -> bool:
        return identity.has_role(self.value)


class IsManager(_Condition):
    kind: Literal["is_manager"] = "is_manager"
    value: bool

    @field_validator("value", mode="before")
    @classmethod
    def _flag(cls, v: Any) -> bool:
        return _strict_flag(v)

    def holds(self, identity: IdentityContext) -> bool:
        return identity.is_manager == self.value


class IsExecutive(_Condition):
    kind: Literal["is_executive"] = "is_executive"
    value: bool

    @field_validator("value", mode="before")
    @classmethod
    def _flag(cls, v: Any) -> bool:
        return _strict_flag(v)

    def holds(self, identity: IdentityContext) -> bool:
        return identity.is_executive == self.value


Condition = Annotated[
    Union[DepartmentEquals, TeamEquals, ClearanceAtLeast, RoleEquals, IsManager, IsExecutive],
    Field(discriminator="kind"),
]

_conditions_adapter = TypeAdapter(List[Condition])

# Flat map keys (compared lowercased) -> condition kind
LEGACY_KEYS: Dict[str, str] = {
    "department": "department",
    "team": "team",
    "clearance": "clearance",
    "role": "role",
    "ismanager": "is_manager",
    "is_manager": "is_manager",
    "isexecutive": "is_executive",
    "is_executive": "is_executive",
}


def parse_conditions(raw: Any) -> List[Condition]:
    """
    Parse stored conditions into the closed condition union.

    Accepts None, a JSON string, a flat key/value map, or a list of
    ``{"kind": ..., "value": ...}`` items.

    Raises:
        MalformedRuleError: On unparseable JSON, unknown keys or bad values
    """
    if raw is None:
        return []

    if isinstance(raw, str):
        if not raw.strip():
            return []
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as e:
            raise MalformedRuleError(f"attribute conditions are not valid JSON: {e}")

    if isinstance(raw, dict):
        items = []
        for key, value in raw.items():
            kind = LEGACY_KEYS.get(str(key).lower())
            if kind is None:
                raise MalformedRuleError(f"unknown attribute condition '{key}'")
            items.append({"kind": kind, "value": value})
        raw = items

    if not isinstance(raw, list):
        raise MalformedRuleError(
            f"attribute conditions must be a map or a list, got {type(raw).__name__}"
        )

    try:
        return _conditions_adapter.validate_python(raw)
    except ValidationError as e:
        raise MalformedRuleError(f"invalid attribute condition: {e.errors()[0]['msg']}")


def conditions_hold(conditions: List[Condition], identity: IdentityContext) -> bool:
    """True when every condition holds (an empty list always holds)."""
    return all(condition.holds(identity) for condition in conditions)
