"""
Access Decision Engine.

Runs the evaluator pipeline for one requester, record and operation and
returns a single AccessDecision with a per-model trail:

    START -> RBAC -> ABAC -> CBAC -> ROW_LEVEL -> COLUMNS -> ALLOW

with DENIED reachable from any of RBAC, ABAC, CBAC or ROW_LEVEL.

The first denial is terminal; later evaluators are not run and the
visible-column set is only computed on the allow path. The engine holds
no per-call state, so one instance can serve concurrent decisions.

Example:
    engine = AccessDecisionEngine(store=store, directory=directory, config=config)

    # Evaluate (returns a decision, never raises on denial)
    decision = engine.evaluate(identity, record, Operation.READ, request)

    # Require (raises AccessDeniedError on denial)
    engine.require_access(identity, record, Operation.UPDATE, request)
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import FrozenSet, Iterable, List, Optional, Tuple, Union

from sharegate.access.columns import ColumnVisibilityResolver, is_partial
from sharegate.access.directory import BaseDirectoryLookup, get_directory
from sharegate.access.evaluators import (
    ABACEvaluator,
    CBACEvaluator,
    EvaluationContext,
    Evaluator,
    RBACEvaluator,
    RowLevelEvaluator,
)
from sharegate.access.models import (
    ALL_COLUMNS,
    AccessDecision,
    AccessDeniedError,
    IdentityContext,
    Operation,
    PipelineStage,
    ProtectedRecord,
    RequestContext,
)
from sharegate.access.store import BaseRuleStore, get_rule_store
from sharegate.config import ShareGateConfig, get_config
from sharegate.logger import DecisionLogger

logger = logging.getLogger(__name__)


class AccessDecisionEngine:
    """
    Combines RBAC, ABAC, CBAC and row-level checks into one verdict.

    Features:
    - Fixed, explicit evaluator pipeline (replaceable for testing)
    - Fail-fast on the first denial
    - Column redaction on the allow path
    - Kill-switches for row-level and column-level checks
    """

    def __init__(
        self,
        store: Optional[BaseRuleStore] = None,
        directory: Optional[BaseDirectoryLookup] = None,
        config: Optional[ShareGateConfig] = None,
        evaluators: Optional[Iterable[Evaluator]] = None,
        decision_logger: Optional[DecisionLogger] = None,
    ):
        self.config = config or get_config()
        self.store = store or get_rule_store()
        self.directory = directory or get_directory()
        self.evaluators: List[Evaluator] = (
            list(evaluators) if evaluators is not None else self.default_pipeline()
        )
        self.column_resolver = ColumnVisibilityResolver(self.store)
        self.decision_logger = decision_logger or DecisionLogger()

    def default_pipeline(self) -> List[Evaluator]:
        """RBAC, ABAC, CBAC, then row-level when enabled."""
        pipeline: List[Evaluator] = [
            RBACEvaluator(self.directory),
            ABACEvaluator(self.store),
            CBACEvaluator(self.config),
        ]
        if self.config.row_level_enabled:
            pipeline.append(RowLevelEvaluator(self.store))
        return pipeline

    def evaluate(
        self,
        identity: IdentityContext,
        record: ProtectedRecord,
        operation: Union[Operation, str],
        request: Optional[RequestContext] = None,
    ) -> AccessDecision:
        """
        Decide whether ``identity`` may perform ``operation`` on ``record``.

        Returns AccessDecision with the full audit trail.
        Does NOT raise on denial - use require_access for enforcement.

        Raises:
            RuleStoreError: The rule store could not be read
            DirectoryLookupError: The manager lookup failed
        """
        operation = Operation(operation.upper()) if isinstance(operation, str) else operation
        ctx = EvaluationContext.build(identity, record, operation, request, zone=self.config.zone)

        decision = AccessDecision(
            user_id=identity.user_id,
            record_id=record.id,
            operation=operation,
        )

        for evaluator in self.evaluators:
            decision.stage = evaluator.stage
            result = evaluator.evaluate(ctx)
            setattr(decision, evaluator.result_field, result)

            if not result.allowed:
                decision.allowed = False
                decision.denied_at = evaluator.stage
                decision.stage = PipelineStage.DENIED
                decision.denial_reason = evaluator.denial_reason
                decision.denial_details = result.reason
                logger.debug(
                    f"Denied at {evaluator.stage.value}: user={identity.user_id}, "
                    f"record={record.id}, operation={operation.value}, reason={result.reason}"
                )
                self.decision_logger.log_decision(decision)
                return decision

            logger.debug(f"{evaluator.stage.value} passed for {identity.user_id} on {record.id}")

        decision.stage = PipelineStage.COLUMNS
        visible = self.visible_columns(identity, record, ctx.now)
        decision.visible_columns = visible
        decision.partial_access = is_partial(visible)

        decision.stage = PipelineStage.ALLOW
        decision.allowed = True
        self.decision_logger.log_decision(decision)
        return decision

    def visible_columns(
        self,
        identity: IdentityContext,
        record: ProtectedRecord,
        now: Optional[datetime] = None,
    ) -> FrozenSet[str]:
        """
        Visible-column set without running the full pipeline.

        Returns every column when column-level checks are disabled.
        """
        if not self.config.column_level_enabled:
            return ALL_COLUMNS
        return self.column_resolver.resolve(identity, record, now)

    def require_access(
        self,
        identity: IdentityContext,
        record: ProtectedRecord,
        operation: Union[Operation, str],
        request: Optional[RequestContext] = None,
    ) -> AccessDecision:
        """
        Hard enforcement: raises AccessDeniedError if denied.

        Use this for actual enforcement at security boundaries.
        """
        decision = self.evaluate(identity, record, operation, request)

        if not decision.allowed:
            logger.warning(
                f"Access denied: user={identity.user_id}, record={record.id}, "
                f"operation={decision.operation.value}, reason={decision.denial_details}"
            )
            raise AccessDeniedError(decision)

        return decision

    def filter_by_permission(
        self,
        identity: IdentityContext,
        records: Iterable[ProtectedRecord],
        operation: Union[Operation, str] = Operation.READ,
        request: Optional[RequestContext] = None,
    ) -> Tuple[List[ProtectedRecord], int]:
        """
        Filter records down to those the requester may access.

        Returns:
            Tuple of (allowed_records, num_filtered)
        """
        allowed = []
        filtered_count = 0

        for record in records:
            decision = self.evaluate(identity, record, operation, request)
            if decision.allowed:
                allowed.append(record)
            else:
                filtered_count += 1
                logger.debug(f"Filtered record {record.id}: {decision.denial_details}")

        return allowed, filtered_count


# =============================================================================
# Global Engine
# =============================================================================

_default_engine: Optional[AccessDecisionEngine] = None


def get_engine() -> AccessDecisionEngine:
    """Get the default engine (configured from get_config())."""
    global _default_engine

    if _default_engine is None:
        _default_engine = AccessDecisionEngine()

    return _default_engine


def set_engine(engine: AccessDecisionEngine) -> None:
    """Set the default engine (for testing)."""
    global _default_engine
    _default_engine = engine


def reset_engine() -> None:
    """Reset the default engine (for testing)."""
    global _default_engine
    _default_engine = None
