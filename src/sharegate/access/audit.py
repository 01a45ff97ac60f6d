"""
Decision Audit Emitter.

Emits access decisions as OTel spans so they can be correlated with
the request that caused them. Durable storage of the audit trail is a
separate collaborator; it should persist ``decision.to_audit_record()``.

Example TraceQL queries:
    # All denials in last 24h
    { name = "access.deny" }

    # Denials by the attribute model
    { access.denial_reason = "DENIED_ATTRIBUTE" }

    # Partial reads for a specific user
    { access.user_id = "u-alice" && access.partial = true }
"""

from __future__ import annotations

import logging
from typing import List, Optional

from opentelemetry import trace
from opentelemetry.trace import SpanKind, Status, StatusCode

from sharegate.access.engine import AccessDecisionEngine, get_engine
from sharegate.access.models import AccessDecision, AccessDeniedError

logger = logging.getLogger(__name__)


class DecisionAuditEmitter:
    """
    Emits access decisions as OTel spans.

    Each decision becomes a span carrying who asked, for which record and
    operation, where the pipeline stopped and why.

    Example:
        emitter = DecisionAuditEmitter()
        trace_id = emitter.emit_decision(decision)
    """

    def __init__(self, tracer_name: str = "sharegate.access.audit"):
        self.tracer = trace.get_tracer(tracer_name)

    def emit_decision(self, decision: AccessDecision) -> str:
        """
        Emit access decision as OTel span.

        Returns trace_id for reference.
        """
        outcome = "allow" if decision.allowed else "deny"

        with self.tracer.start_as_current_span(
            f"access.{outcome}",
            kind=SpanKind.INTERNAL,
        ) as span:
            span.set_attribute("access.decision", outcome)
            span.set_attribute("access.user_id", decision.user_id)
            span.set_attribute("access.record_id", decision.record_id)
            span.set_attribute("access.operation", decision.operation.value)
            span.set_attribute("access.stage", decision.stage.value)

            if decision.denied_at:
                span.set_attribute("access.denied_at", decision.denied_at.value)
            if decision.denial_reason:
                span.set_attribute("access.denial_reason", decision.denial_reason.value)
            if decision.denial_details:
                span.set_attribute("access.denial_details", decision.denial_details)

            if decision.rbac_result and decision.rbac_result.matched_role:
                span.set_attribute("access.matched_role", decision.rbac_result.matched_role)
            if decision.rbac_result and decision.rbac_result.required_role:
                span.set_attribute("access.required_role", decision.rbac_result.required_role)

            matched_rule = None
            if decision.abac_result and decision.abac_result.matched_rule:
                matched_rule = decision.abac_result.matched_rule
            elif decision.row_level_result and decision.row_level_result.matched_rule:
                matched_rule = decision.row_level_result.matched_rule
            if matched_rule:
                span.set_attribute("access.matched_rule", matched_rule)

            if decision.allowed:
                span.set_attribute("access.partial", decision.partial_access)
                span.set_attribute(
                    "access.visible_column_count",
                    len(decision.visible_columns or ()),
                )

            span.set_attribute("access.evaluated_at", decision.evaluated_at.isoformat())

            span.add_event(
                "access.evaluated",
                attributes={
                    "decision": outcome,
                    "user": decision.user_id,
                    "record": decision.record_id,
                    "operation": decision.operation.value,
                    "summary": decision.build_audit_summary(),
                },
            )

            if decision.allowed:
                span.set_status(Status(StatusCode.OK))
            else:
                span.set_status(
                    Status(StatusCode.ERROR, decision.denial_details or "Access denied")
                )

            span_context = span.get_span_context()
            trace_id = format(span_context.trace_id, "032x")

            decision.trace_id = trace_id

        return trace_id

    def emit_batch(self, decisions: List[AccessDecision]) -> List[str]:
        """Emit multiple decisions; returns their trace_ids."""
        return [self.emit_decision(d) for d in decisions]


class AuditingEngine:
    """
    Engine wrapper that automatically emits audit spans.

    Example:
        engine = AuditingEngine(AccessDecisionEngine(store=store), audit_allows=False)
        decision = engine.evaluate(identity, record, Operation.READ)  # Denials audited
    """

    def __init__(
        self,
        engine: Optional[AccessDecisionEngine] = None,
        emitter: Optional[DecisionAuditEmitter] = None,
        audit_allows: bool = True,
        audit_denies: bool = True,
    ):
        self.engine = engine or get_engine()
        self.emitter = emitter or DecisionAuditEmitter()
        self.audit_allows = audit_allows
        self.audit_denies = audit_denies

    def evaluate(self, *args, **kwargs) -> AccessDecision:
        """Evaluate and emit audit span."""
        decision = self.engine.evaluate(*args, **kwargs)
        self._maybe_emit(decision)
        return decision

    def require_access(self, *args, **kwargs) -> AccessDecision:
        """Require access (raises on deny) and emit audit span."""
        try:
            decision = self.engine.require_access(*args, **kwargs)
        except AccessDeniedError as e:
            self._maybe_emit(e.decision)
            raise
        self._maybe_emit(decision)
        return decision

    def visible_columns(self, *args, **kwargs):
        return self.engine.visible_columns(*args, **kwargs)

    def _maybe_emit(self, decision: AccessDecision) -> None:
        """Emit audit span if configured."""
        if decision.allowed and self.audit_allows:
            self.emitter.emit_decision(decision)
        elif not decision.allowed and self.audit_denies:
            self.emitter.emit_decision(decision)
