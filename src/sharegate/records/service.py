"""
Record service.

Guards every create, read, update and delete of a shared record with an
access decision, and returns records projected onto the columns the
requester may see.

Denials raise AccessDeniedError carrying the decision (surface as 403).
Creating over an existing id raises RecordExistsError (surface as 409).
Collaborator failures (RuleStoreError, DirectoryLookupError) propagate
untouched (surface as 5xx); no access decision was made.

Example:
    service = RecordService(engine=engine, repository=RecordMemoryRepository())

    created = service.create(alice, {"name": "Q3 forecast", "data": "..."})
    service.update(alice, created["id"], {"name": "Q3 forecast (rev 2)"})
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, FrozenSet, List, Optional

from sharegate.access.audit import DecisionAuditEmitter
from sharegate.access.columns import CLEARANCE_GATED_COLUMNS, MUTABLE_COLUMNS, plan_update
from sharegate.access.engine import AccessDecisionEngine, get_engine
from sharegate.access.models import (
    AccessDecision,
    AccessDeniedError,
    DenialReason,
    IdentityContext,
    Operation,
    PipelineStage,
    ProtectedRecord,
    RequestContext,
    SensitivityLevel,
)
from sharegate.logger import DecisionLogger
from sharegate.records.repository import BaseRecordRepository, RecordMemoryRepository

logger = logging.getLogger(__name__)

# Columns returned by list operations
SUMMARY_COLUMNS: FrozenSet[str] = frozenset({
    "id",
    "name",
    "data_date",
    "sensitivity_level",
    "organization_level",
    "owner_id",
    "updated_at",
})


class RecordNotFoundError(LookupError):
    """The record does not exist or has been deleted."""

    def __init__(self, record_id: str):
        self.record_id = record_id
        super().__init__(f"Record not found: {record_id}")


class RecordExistsError(ValueError):
    """A create named an id that is already taken, deleted records included."""

    def __init__(self, record_id: str):
        self.record_id = record_id
        super().__init__(f"Record already exists: {record_id}")


class RecordService:
    """Access-controlled operations on shared records."""

    def __init__(
        self,
        engine: Optional[AccessDecisionEngine] = None,
        repository: Optional[BaseRecordRepository] = None,
        emitter: Optional[DecisionAuditEmitter] = None,
        decision_logger: Optional[DecisionLogger] = None,
    ):
        self.engine = engine or get_engine()
        self.repository = repository or RecordMemoryRepository()
        self.emitter = emitter
        self.decision_logger = decision_logger or DecisionLogger()

    def _decide(
        self,
        identity: IdentityContext,
        record: ProtectedRecord,
        operation: Operation,
        request: Optional[RequestContext],
    ) -> AccessDecision:
        decision = self.engine.evaluate(identity, record, operation, request)

        if self.emitter is not None:
            self.emitter.emit_decision(decision)

        if not decision.allowed:
            logger.warning(
                f"{operation.value} denied for {identity.user_id} on {record.id}: "
                f"{decision.denial_details}"
            )
            raise AccessDeniedError(decision)

        return decision

    def _load(self, record_id: str) -> ProtectedRecord:
        record = self.repository.get_active(record_id)
        if record is None:
            raise RecordNotFoundError(record_id)
        return record

    def create(
        self,
        identity: IdentityContext,
        fields: Dict[str, Any],
        request: Optional[RequestContext] = None,
    ) -> Dict[str, Any]:
        """
        Create a record owned by the requester.

        Clearance-gated columns the requester is not cleared for are
        cleared before saving rather than rejected.

        Raises:
            AccessDeniedError: CREATE was denied
            RecordExistsError: ``fields["id"]`` names an existing record
        """
        values = {k: v for k, v in fields.items() if k in MUTABLE_COLUMNS}
        if values.get("sensitivity_level") is None:
            values["sensitivity_level"] = SensitivityLevel.INTERNAL

        record = ProtectedRecord(
            id=str(fields.get("id") or uuid.uuid4().hex),
            owner_id=identity.user_id,
            department_id=identity.department_id,
            team_id=identity.team_id,
            created_at=datetime.now(timezone.utc),
            created_by=identity.user_id,
            **values,
        )

        decision = self._decide(identity, record, Operation.CREATE, request)

        for column, required in CLEARANCE_GATED_COLUMNS.items():
            if getattr(record, column) is not None and not identity.has_clearance(required):
                logger.warning(
                    f"User {identity.user_id} attempted to set {column} without "
                    f"{required.value} clearance"
                )
                setattr(record, column, None)

        if self.repository.get(record.id) is not None:
            logger.warning(f"User {identity.user_id} attempted to create existing record {record.id}")
            raise RecordExistsError(record.id)

        self.repository.save(record)
        logger.info(f"Record created: {record.id} by user {identity.user_id}")

        return record.project(decision.visible_columns)

    def get(
        self,
        identity: IdentityContext,
        record_id: str,
        request: Optional[RequestContext] = None,
    ) -> Dict[str, Any]:
        """Read a record, restricted to the visible columns."""
        record = self._load(record_id)
        decision = self._decide(identity, record, Operation.READ, request)
        return record.project(decision.visible_columns)

    def update(
        self,
        identity: IdentityContext,
        record_id: str,
        changes: Dict[str, Any],
        request: Optional[RequestContext] = None,
    ) -> Dict[str, Any]:
        """
        Apply the visible part of ``changes``.

        Changes to columns the requester cannot see are dropped silently;
        audited columns are logged only when their value actually changed.
        """
        record = self._load(record_id)
        decision = self._decide(identity, record, Operation.UPDATE, request)

        plan = plan_update(record, changes, decision.visible_columns)

        for column in plan.dropped:
            logger.debug(f"Dropping update to {column} on {record_id} for {identity.user_id}")
            self.decision_logger.log_field_dropped(record_id, column, actor=identity.user_id)

        for change in plan.changes:
            self.decision_logger.log_field_changed(
                record_id,
                change.field,
                change.old_value,
                change.new_value,
                actor=identity.user_id,
            )

        updated = plan.record
        updated.updated_at = datetime.now(timezone.utc)
        updated.updated_by = identity.user_id
        self.repository.save(updated)
        logger.info(f"Record updated: {record_id} by user {identity.user_id}")

        return updated.project(decision.visible_columns)

    def delete(
        self,
        identity: IdentityContext,
        record_id: str,
        request: Optional[RequestContext] = None,
    ) -> None:
        """Soft-delete a record."""
        record = self._load(record_id)
        self._decide(identity, record, Operation.DELETE, request)

        record.is_deleted = True
        record.deleted_at = datetime.now(timezone.utc)
        record.deleted_by = identity.user_id
        self.repository.save(record)
        logger.info(f"Record deleted: {record_id} by user {identity.user_id}")

    def list_owned_by(self, identity: IdentityContext, owner_id: str) -> List[Dict[str, Any]]:
        """
        Summaries of another user's records.

        Only the owner, executives and department heads may list them.
        """
        if (
            identity.user_id != owner_id
            and not identity.is_executive
            and not identity.is_department_head
        ):
            decision = AccessDecision(
                user_id=identity.user_id,
                record_id=f"owner:{owner_id}",
                operation=Operation.READ,
                stage=PipelineStage.DENIED,
                denied_at=PipelineStage.RBAC,
                denial_reason=DenialReason.DENIED_ROLE,
                denial_details="Cannot view data owned by other users",
            )
            self.decision_logger.log_decision(decision)
            raise AccessDeniedError(decision)

        return [r.project(SUMMARY_COLUMNS) for r in self.repository.list_by_owner(owner_id)]

    def list_accessible(
        self,
        identity: IdentityContext,
        request: Optional[RequestContext] = None,
        name_contains: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Summaries of every record the requester may read, optionally by name."""
        records = self.repository.list_records()
        if name_contains:
            needle = name_contains.lower()
            records = [r for r in records if needle in r.name.lower()]

        allowed, filtered = self.engine.filter_by_permission(
            identity, records, Operation.READ, request
        )
        logger.debug(f"Listed {len(allowed)} records for {identity.user_id}, {filtered} filtered")

        return [r.project(SUMMARY_COLUMNS) for r in allowed]
