"""
ShareGate Access Module.

Access decisions for shared business records, combining role-based
(RBAC), attribute-based (ABAC) and context-based (CBAC) checks with
row-level overrides and column-level redaction.

Example usage:
    from sharegate.access import (
        AccessDecisionEngine,
        ClientContextResolver,
        IdentityContext,
        Operation,
        AccessDeniedError,
    )

    engine = AccessDecisionEngine()

    request = ClientContextResolver.resolve(headers, remote_addr)

    try:
        decision = engine.require_access(identity, record, Operation.READ, request)
        payload = record.project(decision.visible_columns)
    except AccessDeniedError as e:
        print(f"Access denied: {e.decision.denial_details}")

CLI usage:
    # List rules for a record
    sharegate rules list --record rec-42

    # Evaluate a decision
    sharegate check --identity alice.yaml --record rec-42.yaml --operation read
"""

from sharegate.access.models import (
    # Enums
    OrganizationLevel,
    SensitivityLevel,
    ClearanceLevel,
    Operation,
    PrincipalType,
    PipelineStage,
    DenialReason,
    # Constants
    ALL_COLUMNS,
    CLEARANCE_RANK,
    SENSITIVITY_CLEARANCE,
    ADMIN_ROLE,
    EXECUTIVE_ROLE,
    DEPARTMENT_MANAGER_ROLE,
    DATA_MANAGER_ROLE,
    EDITOR_ROLE,
    # Models
    IdentityContext,
    ProtectedRecord,
    RequestContext,
    StageResult,
    RbacResult,
    AbacResult,
    CbacResult,
    RowLevelResult,
    AccessDecision,
    # Errors
    AccessDeniedError,
    EngineError,
    CollaboratorError,
    RuleStoreError,
    DirectoryLookupError,
    MalformedRuleError,
)

from sharegate.access.conditions import (
    Condition,
    DepartmentEquals,
    TeamEquals,
    ClearanceAtLeast,
    RoleEquals,
    IsManager,
    IsExecutive,
    parse_conditions,
)

from sharegate.access.rules import (
    AccessRule,
    parse_rule,
)

from sharegate.access.store import (
    BaseRuleStore,
    RuleFileStore,
    RuleMemoryStore,
    CachingRuleStore,
    get_rule_store,
    set_rule_store,
    reset_rule_store,
)

from sharegate.access.directory import (
    BaseDirectoryLookup,
    DirectoryFileStore,
    DirectoryMemoryStore,
    get_directory,
    set_directory,
    reset_directory,
)

from sharegate.access.context import ClientContextResolver

from sharegate.access.evaluators import (
    EvaluationContext,
    Evaluator,
    RBACEvaluator,
    ABACEvaluator,
    CBACEvaluator,
    RowLevelEvaluator,
)

from sharegate.access.columns import (
    ColumnVisibilityResolver,
    FieldChange,
    UpdatePlan,
    plan_update,
    is_partial,
)

from sharegate.access.engine import (
    AccessDecisionEngine,
    get_engine,
    set_engine,
    reset_engine,
)

from sharegate.access.audit import (
    DecisionAuditEmitter,
    AuditingEngine,
)

__all__ = [
    # Enums
    "OrganizationLevel",
    "SensitivityLevel",
    "ClearanceLevel",
    "Operation",
    "PrincipalType",
    "PipelineStage",
    "DenialReason",
    # Constants
    "ALL_COLUMNS",
    "CLEARANCE_RANK",
    "SENSITIVITY_CLEARANCE",
    "ADMIN_ROLE",
    "EXECUTIVE_ROLE",
    "DEPARTMENT_MANAGER_ROLE",
    "DATA_MANAGER_ROLE",
    "EDITOR_ROLE",
    # Models
    "IdentityContext",
    "ProtectedRecord",
    "RequestContext",
    "StageResult",
    "RbacResult",
    "AbacResult",
    "CbacResult",
    "RowLevelResult",
    "AccessDecision",
    # Errors
    "AccessDeniedError",
    "EngineError",
    "CollaboratorError",
    "RuleStoreError",
    "DirectoryLookupError",
    "MalformedRuleError",
    # Conditions
    "Condition",
    "DepartmentEquals",
    "TeamEquals",
    "ClearanceAtLeast",
    "RoleEquals",
    "IsManager",
    "IsExecutive",
    "parse_conditions",
    # Rules
    "AccessRule",
    "parse_rule",
    # Store
    "BaseRuleStore",
    "RuleFileStore",
    "RuleMemoryStore",
    "CachingRuleStore",
    "get_rule_store",
    "set_rule_store",
    "reset_rule_store",
    # Directory
    "BaseDirectoryLookup",
    "DirectoryFileStore",
    "DirectoryMemoryStore",
    "get_directory",
    "set_directory",
    "reset_directory",
    # Context
    "ClientContextResolver",
    # Evaluators
    "EvaluationContext",
    "Evaluator",
    "RBACEvaluator",
    "ABACEvaluator",
    "CBACEvaluator",
    "RowLevelEvaluator",
    # Columns
    "ColumnVisibilityResolver",
    "FieldChange",
    "UpdatePlan",
    "plan_update",
    "is_partial",
    # Engine
    "AccessDecisionEngine",
    "get_engine",
    "set_engine",
    "reset_engine",
    # Audit
    "DecisionAuditEmitter",
    "AuditingEngine",
]
