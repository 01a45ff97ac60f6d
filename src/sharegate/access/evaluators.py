"""
Pipeline evaluators.

Each evaluator checks one authorization model and returns a StageResult
subclass. The engine runs them in a fixed order and stops at the first
denial:

    RBAC -> ABAC -> CBAC -> ROW_LEVEL

All evaluators share one interface, ``evaluate(ctx) -> StageResult``, so
each can be tested in isolation and the order is data, not control flow.

Collaborator reads (rule store, directory) that raise are re-raised as
RuleStoreError / DirectoryLookupError. They never turn into a denial or
an allow.
"""

from __future__ import annotations

import ipaddress
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone, tzinfo
from typing import Any, Callable, ClassVar, Dict, Optional, Type, TypeVar

from sharegate.access.directory import BaseDirectoryLookup
from sharegate.access.models import (
    ADMIN_ROLE,
    DATA_MANAGER_ROLE,
    DEPARTMENT_MANAGER_ROLE,
    EDITOR_ROLE,
    EXECUTIVE_ROLE,
    SENSITIVITY_CLEARANCE,
    AbacResult,
    CbacResult,
    CollaboratorError,
    DenialReason,
    DirectoryLookupError,
    IdentityContext,
    Operation,
    OrganizationLevel,
    PipelineStage,
    ProtectedRecord,
    RbacResult,
    RequestContext,
    RowLevelResult,
    RuleStoreError,
    StageResult,
)
from sharegate.access.store import BaseRuleStore
from sharegate.config import ShareGateConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")


def call_collaborator(
    error_cls: Type[CollaboratorError],
    description: str,
    fn: Callable[..., T],
    *args: Any,
    **kwargs: Any,
) -> T:
    """
    Call a collaborator, wrapping any failure in ``error_cls``.

    Errors that already are CollaboratorErrors pass through unchanged.
    """
    try:
        return fn(*args, **kwargs)
    except CollaboratorError:
        raise
    except Exception as e:
        logger.error(f"{description} failed: {e}")
        raise error_cls(f"{description} failed: {e}") from e


@dataclass(frozen=True)
class EvaluationContext:
    """Inputs shared by every evaluator for one decision."""

    identity: IdentityContext
    record: ProtectedRecord
    operation: Operation
    request: Optional[RequestContext]
    now: datetime

    @classmethod
    def build(
        cls,
        identity: IdentityContext,
        record: ProtectedRecord,
        operation: Operation,
        request: Optional[RequestContext] = None,
        zone: Optional[tzinfo] = None,
    ) -> "EvaluationContext":
        """Naive request timestamps are pinned to ``zone`` (UTC when omitted)."""
        now = request.timestamp if request is not None else datetime.now(timezone.utc)
        if now.tzinfo is None:
            now = now.replace(tzinfo=zone or timezone.utc)
        return cls(identity=identity, record=record, operation=operation, request=request, now=now)

    @property
    def client_ip(self) -> Optional[str]:
        if self.request is not None and self.request.client_ip:
            return self.request.client_ip
        return self.identity.client_ip

    @property
    def user_agent(self) -> Optional[str]:
        if self.request is not None and self.request.user_agent:
            return self.request.user_agent
        return self.identity.user_agent


class Evaluator(ABC):
    """One stage of the decision pipeline."""

    stage: ClassVar[PipelineStage]
    denial_reason: ClassVar[DenialReason]
    # AccessDecision field that receives this stage's result
    result_field: ClassVar[str]

    @abstractmethod
    def evaluate(self, ctx: EvaluationContext) -> StageResult:
        """Return the stage result; ``allowed=False`` stops the pipeline."""
        pass


# =============================================================================
# RBAC
# =============================================================================

class RBACEvaluator(Evaluator):
    """
    Organization hierarchy and role-operation constraints.

    Administrators pass unconditionally. Everyone else must clear the
    record's organization level and then the operation gate:

    - DELETE: ADMIN or DATA_MANAGER role, or ownership
    - UPDATE: ADMIN, DATA_MANAGER or EDITOR role, or ownership
    """

    stage = PipelineStage.RBAC
    denial_reason = DenialReason.DENIED_ROLE
    result_field = "rbac_result"

    def __init__(self, directory: BaseDirectoryLookup):
        self.directory = directory

    def evaluate(self, ctx: EvaluationContext) -> RbacResult:
        identity = ctx.identity
        record = ctx.record

        if identity.has_role(ADMIN_ROLE):
            return RbacResult(allowed=True, matched_role=ADMIN_ROLE)

        denied = self._check_organization_level(identity, record)
        if denied is not None:
            return denied

        denied = self._check_operation(identity, record, ctx.operation)
        if denied is not None:
            return denied

        return RbacResult(allowed=True, matched_role=",".join(sorted(identity.roles)))

    def _check_organization_level(
        self,
        identity: IdentityContext,
        record: ProtectedRecord,
    ) -> Optional[RbacResult]:
        level = record.organization_level

        if level == OrganizationLevel.EXECUTIVE:
            if not identity.is_executive and not identity.has_role(EXECUTIVE_ROLE):
                return RbacResult(
                    allowed=False,
                    reason="Executive level data requires EXECUTIVE role",
                    required_role=EXECUTIVE_ROLE,
                )

        elif level == OrganizationLevel.DEPARTMENT:
            elevated = (
                identity.is_executive
                or identity.is_department_head
                or identity.has_any_role(EXECUTIVE_ROLE, DEPARTMENT_MANAGER_ROLE)
            )
            if not elevated and not identity.belongs_to_department(record.department_id):
                return RbacResult(
                    allowed=False,
                    reason=f"Department level data requires membership in department: {record.department_id}",
                    required_role=DEPARTMENT_MANAGER_ROLE,
                )

        elif level == OrganizationLevel.TEAM:
            elevated = identity.is_executive or identity.is_department_head
            if not elevated and not identity.belongs_to_team(record.team_id):
                return RbacResult(
                    allowed=False,
                    reason=f"Team level data requires membership in team: {record.team_id}",
                )

        else:
            if not self._in_management_chain(identity, record):
                return RbacResult(
                    allowed=False,
                    reason="Individual level data can only be accessed by owner or their management chain",
                )

        return None

    def _in_management_chain(self, identity: IdentityContext, record: ProtectedRecord) -> bool:
        if identity.user_id == record.owner_id:
            return True
        if identity.is_executive or identity.is_department_head:
            return True
        # Only hit the directory when nothing cheaper decided it
        manager_id = call_collaborator(
            DirectoryLookupError,
            f"Manager lookup for {record.owner_id}",
            self.directory.manager_of,
            record.owner_id,
        )
        return manager_id is not None and manager_id == identity.user_id

    def _check_operation(
        self,
        identity: IdentityContext,
        record: ProtectedRecord,
        operation: Operation,
    ) -> Optional[RbacResult]:
        is_owner = identity.user_id == record.owner_id

        if operation == Operation.DELETE:
            if not identity.has_any_role(ADMIN_ROLE, DATA_MANAGER_ROLE) and not is_owner:
                return RbacResult(
                    allowed=False,
                    reason="DELETE operation requires ADMIN, DATA_MANAGER role, or data ownership",
                    required_role=f"{ADMIN_ROLE},{DATA_MANAGER_ROLE}",
                )

        elif operation == Operation.UPDATE:
            if not identity.has_any_role(ADMIN_ROLE, DATA_MANAGER_ROLE, EDITOR_ROLE) and not is_owner:
                return RbacResult(
                    allowed=False,
                    reason="UPDATE operation requires appropriate role or data ownership",
                    required_role=f"{ADMIN_ROLE},{DATA_MANAGER_ROLE},{EDITOR_ROLE}",
                )

        return None


# =============================================================================
# ABAC
# =============================================================================

class ABACEvaluator(Evaluator):
    """
    Clearance-vs-sensitivity and rule-store attribute conditions.

    Every applicable rule must grant the operation. A rule whose
    principal does not match, or whose conditions do not all hold, is
    skipped; it neither grants nor blocks.
    """

    stage = PipelineStage.ABAC
    denial_reason = DenialReason.DENIED_ATTRIBUTE
    result_field = "abac_result"

    def __init__(self, store: BaseRuleStore):
        self.store = store

    def evaluate(self, ctx: EvaluationContext) -> AbacResult:
        identity = ctx.identity
        required = SENSITIVITY_CLEARANCE[ctx.record.sensitivity_level]

        attributes: Dict[str, str] = {
            "required_clearance": required.value,
            "user_clearance": identity.clearance_level.value,
            "record_sensitivity": ctx.record.sensitivity_level.value,
        }

        if not identity.has_clearance(required):
            return AbacResult(
                allowed=False,
                reason=(
                    f"Insufficient clearance level. Required: {required.value}, "
                    f"User has: {identity.clearance_level.value}"
                ),
                evaluated_attributes=attributes,
            )

        rules = call_collaborator(
            RuleStoreError,
            f"Rule lookup for record {ctx.record.id}",
            self.store.active_rules_for,
            ctx.record.id,
        )

        applicable = 0
        for rule in rules:
            if not rule.is_applicable(identity, ctx.record.id, ctx.now):
                continue
            applicable += 1
            if not rule.grants(ctx.operation):
                logger.debug(f"Rule {rule.id} vetoes {ctx.operation.value} for {identity.user_id}")
                attributes["rules_evaluated"] = str(len(rules))
                attributes["rules_applicable"] = str(applicable)
                return AbacResult(
                    allowed=False,
                    reason=f"Access denied by rule: {rule.name}",
                    matched_rule=rule.name,
                    evaluated_attributes=attributes,
                )

        attributes["rules_evaluated"] = str(len(rules))
        attributes["rules_applicable"] = str(applicable)
        return AbacResult(allowed=True, evaluated_attributes=attributes)


# =============================================================================
# CBAC
# =============================================================================

class CBACEvaluator(Evaluator):
    """
    Ambient request constraints: network origin and business hours.

    Depends only on the request, never on the record. When IP
    allow-listing is enforced, a missing or unparseable client IP is
    denied.
    """

    stage = PipelineStage.CBAC
    denial_reason = DenialReason.DENIED_CONTEXT
    result_field = "cbac_result"

    def __init__(self, config: ShareGateConfig):
        self.config = config
        self._networks = config.allowed_networks
        self._zone = config.zone
        self._start, self._end = config.business_hours

    def is_ip_allowed(self, client_ip: Optional[str]) -> bool:
        """Exact CIDR containment against the configured ranges."""
        if not client_ip:
            return False
        try:
            address = ipaddress.ip_address(client_ip.strip())
        except ValueError:
            logger.warning(f"Unparseable client IP {client_ip!r}")
            return False
        return any(address in network for network in self._networks)

    def local_time(self, now: datetime) -> datetime:
        """Convert to the configured zone; naive timestamps are already local."""
        if now.tzinfo is None:
            return now.replace(tzinfo=self._zone)
        return now.astimezone(self._zone)

    def is_within_business_hours(self, now: datetime) -> bool:
        """[start, end) in the configured timezone."""
        local = self.local_time(now).time()
        return self._start <= local < self._end

    def evaluate(self, ctx: EvaluationContext) -> CbacResult:
        client_ip = ctx.client_ip
        within_hours = self.is_within_business_hours(ctx.now)

        evaluated: Dict[str, Optional[str]] = {
            "client_ip": client_ip,
            "user_agent": ctx.user_agent,
            "within_business_hours": str(within_hours).lower(),
            "local_time": self.local_time(ctx.now).isoformat(),
            "timezone": self.config.timezone,
        }

        if self.config.require_allowed_ip and not self.is_ip_allowed(client_ip):
            return CbacResult(
                allowed=False,
                reason="Access denied: IP address not in allowed ranges",
                evaluated_context=evaluated,
            )

        if self.config.require_business_hours and not within_hours:
            return CbacResult(
                allowed=False,
                reason=(
                    f"Access denied: Outside business hours ({self.config.business_hours_start} - "
                    f"{self.config.business_hours_end} {self.config.timezone})"
                ),
                evaluated_context=evaluated,
            )

        return CbacResult(allowed=True, evaluated_context=evaluated)


# =============================================================================
# Row-level
# =============================================================================

class RowLevelEvaluator(Evaluator):
    """
    Per-record overrides for the exact requester or ALL.

    Any in-effect rule whose grant for the operation is False vetoes.
    No matching rule is an implicit allow; row rules are exceptions on
    top of RBAC/ABAC, not a whitelist.
    """

    stage = PipelineStage.ROW_LEVEL
    denial_reason = DenialReason.DENIED_ROW_LEVEL
    result_field = "row_level_result"

    def __init__(self, store: BaseRuleStore):
        self.store = store

    def evaluate(self, ctx: EvaluationContext) -> RowLevelResult:
        rules = call_collaborator(
            RuleStoreError,
            f"Row-level rule lookup for record {ctx.record.id}",
            self.store.row_level_rules,
            ctx.record.id,
            ctx.identity.user_id,
            ctx.now,
        )

        for rule in rules:
            if rule.active and not rule.grants(ctx.operation):
                return RowLevelResult(
                    allowed=False,
                    reason=f"Row-level access denied by rule: {rule.name}",
                    matched_rule=rule.name,
                )

        return RowLevelResult(allowed=True)
