"""
ShareGate - Access decisions for shared business records.

Every read or write of a shared record goes through one decision that
combines role, attribute and request-context checks with row-level
overrides and column-level redaction, and explains itself for audit.

Key Features:
- Fixed RBAC -> ABAC -> CBAC -> row-level pipeline, fail-fast
- Column redaction by clearance and rule allow-lists
- Decisions as structured logs and OTel spans
- File-backed rule store and directory for standalone use

Example usage:
    from sharegate import AccessDecisionEngine
    from sharegate.access import IdentityContext, ProtectedRecord, Operation

    engine = AccessDecisionEngine()
    decision = engine.evaluate(identity, record, Operation.READ)
    print(decision.build_audit_summary())
"""

__version__ = "0.1.0"
__all__ = [
    "AccessDecisionEngine",
    "RecordService",
    "get_config",
    "__version__",
]


# Lazy imports to avoid loading pydantic models and OTel at import time
def __getattr__(name: str):
    if name == "AccessDecisionEngine":
        from sharegate.access.engine import AccessDecisionEngine
        return AccessDecisionEngine
    if name == "RecordService":
        from sharegate.records.service import RecordService
        return RecordService
    if name == "get_config":
        from sharegate.config import get_config
        return get_config
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
