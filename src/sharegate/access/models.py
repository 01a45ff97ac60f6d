"""
Pydantic models for record access control.

Provides the value objects consumed and produced by the access decision
engine: who is asking, what they are asking for, and the verdict.

Key concepts:
- IdentityContext: Resolved requester (roles, org hierarchy, clearance)
- ProtectedRecord: Business record guarded by row and column rules
- RequestContext: Ambient request data (client IP, user agent, time)
- StageResult: Outcome of one evaluator in the pipeline
- AccessDecision: Final verdict with a per-model audit trail
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator

from sharegate.logger import DecisionLogger

logger = logging.getLogger(__name__)

_decision_log = DecisionLogger()


class OrganizationLevel(str, Enum):
    """Organizational tier; on records it governs who may see the row."""
    EXECUTIVE = "EXECUTIVE"      # Visible to executives across the organization
    DEPARTMENT = "DEPARTMENT"    # Visible to department members
    TEAM = "TEAM"                # Visible to team members
    INDIVIDUAL = "INDIVIDUAL"    # Visible to the owner and their management chain


class SensitivityLevel(str, Enum):
    """Record classification; governs the clearance needed to read it."""
    PUBLIC = "PUBLIC"
    INTERNAL = "INTERNAL"
    CONFIDENTIAL = "CONFIDENTIAL"
    RESTRICTED = "RESTRICTED"


class ClearanceLevel(str, Enum):
    """Security clearance of a requester. Ordered by CLEARANCE_RANK."""
    PUBLIC = "PUBLIC"
    INTERNAL = "INTERNAL"
    CONFIDENTIAL = "CONFIDENTIAL"
    SECRET = "SECRET"
    TOP_SECRET = "TOP_SECRET"


class Operation(str, Enum):
    """Operations that can be performed on a record."""
    CREATE = "CREATE"
    READ = "READ"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class PrincipalType(str, Enum):
    """Kind of subject an access rule applies to."""
    USER = "USER"                    # A single user ID
    ROLE = "ROLE"                    # Holders of a role
    DEPARTMENT = "DEPARTMENT"        # Members of a department
    TEAM = "TEAM"                    # Members of a team
    ORGANIZATION = "ORGANIZATION"    # Organization-wide
    CLEARANCE = "CLEARANCE"          # Requesters at or above a clearance level
    ALL = "ALL"                      # Everyone


class PipelineStage(str, Enum):
    """States of the decision pipeline."""
    START = "START"
    RBAC = "RBAC"
    ABAC = "ABAC"
    CBAC = "CBAC"
    ROW_LEVEL = "ROW_LEVEL"
    COLUMNS = "COLUMNS"
    ALLOW = "ALLOW"
    DENIED = "DENIED"


class DenialReason(str, Enum):
    """Category of a denial, one per denying evaluator."""
    DENIED_ROLE = "DENIED_ROLE"
    DENIED_ATTRIBUTE = "DENIED_ATTRIBUTE"
    DENIED_CONTEXT = "DENIED_CONTEXT"
    DENIED_ROW_LEVEL = "DENIED_ROW_LEVEL"


# Explicit total order; never rely on enum declaration order.
CLEARANCE_RANK: Dict[ClearanceLevel, int] = {
    ClearanceLevel.PUBLIC: 0,
    ClearanceLevel.INTERNAL: 1,
    ClearanceLevel.CONFIDENTIAL: 2,
    ClearanceLevel.SECRET: 3,
    ClearanceLevel.TOP_SECRET: 4,
}

SENSITIVITY_CLEARANCE: Dict[SensitivityLevel, ClearanceLevel] = {
    SensitivityLevel.PUBLIC: ClearanceLevel.PUBLIC,
    SensitivityLevel.INTERNAL: ClearanceLevel.INTERNAL,
    SensitivityLevel.CONFIDENTIAL: ClearanceLevel.CONFIDENTIAL,
    SensitivityLevel.RESTRICTED: ClearanceLevel.SECRET,
}

# Role names with built-in meaning
ADMIN_ROLE = "ADMIN"
EXECUTIVE_ROLE = "EXECUTIVE"
DEPARTMENT_MANAGER_ROLE = "DEPARTMENT_MANAGER"
DATA_MANAGER_ROLE = "DATA_MANAGER"
EDITOR_ROLE = "EDITOR"

CONFIDENTIAL_NOTES = "confidential_notes"
FINANCIAL_DATA = "financial_data"

ALL_COLUMNS: FrozenSet[str] = frozenset({
    "id",
    "name",
    "data_date",
    "data",
    "sensitivity_level",
    "organization_level",
    "department_id",
    "team_id",
    "owner_id",
    CONFIDENTIAL_NOTES,
    FINANCIAL_DATA,
    "created_at",
    "created_by",
    "updated_at",
    "updated_by",
})


E = TypeVar("E", bound=Enum)


def coerce_enum(enum_cls: Type[E], value: Any, fallback: E, field: str) -> E:
    """
    Parse an enum value, falling back to the most restrictive member.

    Unknown values are never mapped to a permissive member; they are
    replaced by ``fallback`` and flagged as ``input.coerced``.
    """
    if isinstance(value, enum_cls):
        return value
    if isinstance(value, str):
        try:
            return enum_cls(value.strip().upper())
        except ValueError:
            pass
    logger.warning(f"Unknown {field} value {value!r}, using {fallback.value}")
    _decision_log.log_input_coerced(field, value, fallback.value)
    return fallback


class IdentityContext(BaseModel):
    """
    The resolved requester for one decision.

    Built by a collaborator (token parsing, attribute lookup) and
    consumed read-only by the engine.

    Example:
        identity = IdentityContext(
            user_id="u-alice",
            display_name="Alice",
            roles={"EDITOR"},
            department_id="FIN",
            team_id="FIN-AP",
            clearance_level=ClearanceLevel.CONFIDENTIAL,
            manager_id="u-bob",
        )
    """
    model_config = ConfigDict(frozen=True)

    user_id: str = Field(..., description="Unique requester identifier")
    display_name: str = Field(default="", description="Human-readable name")
    roles: FrozenSet[str] = Field(default_factory=frozenset, description="Role names")

    # Organization hierarchy
    department_id: Optional[str] = Field(None, description="Department membership")
    team_id: Optional[str] = Field(None, description="Team membership")
    organization_level: OrganizationLevel = Field(default=OrganizationLevel.INDIVIDUAL)
    clearance_level: ClearanceLevel = Field(default=ClearanceLevel.PUBLIC)
    manager_id: Optional[str] = Field(None, description="Direct manager user ID")
    is_manager: bool = False
    is_department_head: bool = False
    is_executive: bool = False

    # Ambient request metadata
    client_ip: Optional[str] = None
    user_agent: Optional[str] = None

    @field_validator("organization_level", mode="before")
    @classmethod
    def _coerce_organization_level(cls, v: Any) -> OrganizationLevel:
        return coerce_enum(
            OrganizationLevel, v, OrganizationLevel.INDIVIDUAL, "identity.organization_level"
        )

    @field_validator("clearance_level", mode="before")
    @classmethod
    def _coerce_clearance_level(cls, v: Any) -> ClearanceLevel:
        return coerce_enum(ClearanceLevel, v, ClearanceLevel.PUBLIC, "identity.clearance_level")

    def has_role(self, role: str) -> bool:
        return role in self.roles

    def has_any_role(self, *roles: str) -> bool:
        return any(role in self.roles for role in roles)

    def belongs_to_department(self, department_id: Optional[str]) -> bool:
        return self.department_id is not None and self.department_id == department_id

    def belongs_to_team(self, team_id: Optional[str]) -> bool:
        return self.team_id is not None and self.team_id == team_id

    def has_clearance(self, required: ClearanceLevel) -> bool:
        """Check clearance against the explicit rank table."""
        return CLEARANCE_RANK[self.clearance_level] >= CLEARANCE_RANK[required]


class ProtectedRecord(BaseModel):
    """
    A shared business record.

    ``organization_level`` decides who may see the row by default,
    ``sensitivity_level`` decides the clearance needed to read it.
    """
    id: str = Field(..., description="Record identifier")
    name: str = Field(default="", description="Display name")
    data_date: Optional[date] = None
    data: Optional[str] = None

    sensitivity_level: SensitivityLevel = Field(default=SensitivityLevel.INTERNAL)
    organization_level: OrganizationLevel = Field(default=OrganizationLevel.INDIVIDUAL)

    # Ownership
    department_id: Optional[str] = None
    team_id: Optional[str] = None
    owner_id: str = Field(..., description="Owning user ID")

    # Clearance-gated columns
    confidential_notes: Optional[str] = None
    financial_data: Optional[str] = None

    # Audit fields
    created_at: Optional[datetime] = None
    created_by: Optional[str] = None
    updated_at: Optional[datetime] = None
    updated_by: Optional[str] = None

    # Soft delete
    is_deleted: bool = False
    deleted_at: Optional[datetime] = None
    deleted_by: Optional[str] = None

    @field_validator("organization_level", mode="before")
    @classmethod
    def _coerce_organization_level(cls, v: Any) -> OrganizationLevel:
        return coerce_enum(
            OrganizationLevel, v, OrganizationLevel.INDIVIDUAL, "record.organization_level"
        )

    @field_validator("sensitivity_level", mode="before")
    @classmethod
    def _coerce_sensitivity_level(cls, v: Any) -> SensitivityLevel:
        return coerce_enum(
            SensitivityLevel, v, SensitivityLevel.RESTRICTED, "record.sensitivity_level"
        )

    def project(self, columns: FrozenSet[str]) -> Dict[str, Any]:
        """Return the record as a dict restricted to the given columns."""
        return self.model_dump(mode="json", include=set(columns & ALL_COLUMNS))


class RequestContext(BaseModel):
    """Ambient request data resolved by the caller before evaluation."""
    model_config = ConfigDict(frozen=True)

    client_ip: Optional[str] = None
    user_agent: Optional[str] = None
    request_uri: Optional[str] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


# =============================================================================
# Stage Results
# =============================================================================

class StageResult(BaseModel):
    """Outcome of a single evaluator."""
    allowed: bool = True
    reason: Optional[str] = Field(None, description="Human-readable explanation")


class RbacResult(StageResult):
    matched_role: Optional[str] = Field(None, description="Comma-joined roles on success")
    required_role: Optional[str] = Field(None, description="Role that would have granted access")


class AbacResult(StageResult):
    matched_rule: Optional[str] = Field(None, description="Name of the vetoing rule")
    evaluated_attributes: Dict[str, str] = Field(default_factory=dict)


class CbacResult(StageResult):
    evaluated_context: Dict[str, Optional[str]] = Field(default_factory=dict)


class RowLevelResult(StageResult):
    matched_rule: Optional[str] = Field(None, description="Name of the vetoing rule")


class AccessDecision(BaseModel):
    """
    Result of an access evaluation.

    Includes the per-model trail needed for audit and compliance.

    Example:
        decision = AccessDecision(
            user_id="u-alice",
            record_id="rec-42",
            operation=Operation.READ,
        )
    """
    user_id: str = Field(..., description="Who requested access")
    record_id: str = Field(..., description="Which record")
    operation: Operation = Field(..., description="What they tried to do")

    allowed: bool = False
    partial_access: bool = False
    stage: PipelineStage = Field(default=PipelineStage.START, description="Pipeline state")
    denied_at: Optional[PipelineStage] = Field(None, description="Stage that denied")
    denial_reason: Optional[DenialReason] = None
    denial_details: Optional[str] = None

    rbac_result: Optional[RbacResult] = None
    abac_result: Optional[AbacResult] = None
    cbac_result: Optional[CbacResult] = None
    row_level_result: Optional[RowLevelResult] = None

    visible_columns: Optional[FrozenSet[str]] = Field(
        None, description="Only computed on the allow path"
    )

    # Audit trail
    evaluated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    trace_id: Optional[str] = Field(None, description="OTel trace ID for correlation")

    @property
    def reason(self) -> Optional[str]:
        return self.denial_details

    def build_audit_summary(self) -> str:
        """One-line summary for audit logging."""
        summary = f"Access Decision: {'GRANTED' if self.allowed else 'DENIED'}"

        if not self.allowed and self.denial_reason is not None:
            summary += f" | Reason: {self.denial_reason.value}"
            if self.denial_details:
                summary += f" - {self.denial_details}"

        if self.partial_access:
            summary += " | Partial Access: columns filtered"

        return summary

    def to_audit_record(self) -> Dict[str, Any]:
        """Flat record for the external audit writer."""
        return {
            "user_id": self.user_id,
            "record_id": self.record_id,
            "operation": self.operation.value,
            "outcome": "GRANTED" if self.allowed else "DENIED",
            "denial_reason": self.denial_reason.value if self.denial_reason else None,
            "summary": self.build_audit_summary(),
            "required_role": self.rbac_result.required_role if self.rbac_result else None,
            "attribute_conditions": (
                dict(self.abac_result.evaluated_attributes) if self.abac_result else None
            ),
            "context_conditions": (
                dict(self.cbac_result.evaluated_context) if self.cbac_result else None
            ),
            "visible_columns": (
                sorted(self.visible_columns) if self.visible_columns is not None else None
            ),
            "evaluated_at": self.evaluated_at.isoformat(),
            "trace_id": self.trace_id,
        }


# =============================================================================
# Errors
# =============================================================================

class AccessDeniedError(Exception):
    """
    Raised when access is denied (hard enforcement).

    Contains the full AccessDecision for logging/debugging.
    """

    def __init__(self, decision: AccessDecision):
        self.decision = decision
        reason = decision.denial_details or "Insufficient permissions"
        super().__init__(f"Access denied: {reason}")


class EngineError(Exception):
    """Decision pipeline failure; no access decision was made."""


class CollaboratorError(EngineError):
    """An external collaborator read failed."""


class RuleStoreError(CollaboratorError):
    """The rule store could not be read."""


class DirectoryLookupError(CollaboratorError):
    """The directory (manager lookup) could not be read."""


class MalformedRuleError(ValueError):
    """A stored rule could not be parsed."""

    def __init__(self, message: str, rule_id: Optional[str] = None):
        self.rule_id = rule_id
        super().__init__(message)
