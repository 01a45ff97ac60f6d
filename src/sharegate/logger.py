"""
Structured logging for access decisions.

Outputs JSON-formatted logs, one object per line, so that decision
trails can be shipped to a log pipeline and queried by user, record or
outcome. The durable audit store is a separate collaborator; these logs
are the operational view of the same events.

Logged events:
- access.granted
- access.denied
- rule.skipped (malformed rule data treated as non-applicable)
- input.coerced (unknown enum value mapped to its most restrictive value)
- field.changed (update changed an audited field)
- field.dropped (update tried to set a column the requester cannot see)

Usage:
    from sharegate.logger import DecisionLogger

    logger = DecisionLogger()
    logger.log_decision(decision)
    logger.log_rule_skipped(rule_id="deny-contractors", reason="unknown condition key")
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Dict, Optional

if TYPE_CHECKING:
    from sharegate.access.models import AccessDecision
    from sharegate.config import ShareGateConfig

# Configure structured logger for decision events
_decision_logger = logging.getLogger("sharegate.decisions")
_decision_logger.setLevel(logging.INFO)

# Default handler outputs JSON to stdout (for container log pickup)
if not _decision_logger.handlers:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter("%(message)s"))
    _decision_logger.addHandler(handler)

_TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(config: "ShareGateConfig") -> None:
    """Apply the configured level and format to the sharegate logger tree."""
    level = getattr(logging, config.log_level.upper())
    root = logging.getLogger("sharegate")
    root.setLevel(level)

    if config.log_format == "text" and not root.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(_TEXT_FORMAT))
        root.addHandler(handler)


class DecisionLogger:
    """
    Structured logger for access-control events.

    Each log entry includes standard fields for filtering:
    - timestamp, level, event, service
    - event-specific attributes (user, record, operation, rule, field)
    """

    def __init__(
        self,
        service_name: str = "sharegate",
        extra_labels: Optional[Dict[str, str]] = None,
    ):
        """
        Initialize decision logger.

        Args:
            service_name: Service name for log attribution
            extra_labels: Additional labels attached to every entry
        """
        self.service_name = service_name
        self.extra_labels = extra_labels or {}
        self._logger = _decision_logger

    def _emit(self, event: str, level: str = "info", **fields: Any) -> None:
        """Emit a structured log entry."""
        entry: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": level,
            "event": event,
            "service": self.service_name,
        }
        entry.update(fields)

        if self.extra_labels:
            entry["labels"] = self.extra_labels

        log_line = json.dumps(entry, default=str)

        if level == "error":
            self._logger.error(log_line)
        elif level == "warn":
            self._logger.warning(log_line)
        else:
            self._logger.info(log_line)

    def log_decision(self, decision: "AccessDecision") -> None:
        """Log the outcome of a full pipeline run."""
        if decision.allowed:
            self._emit(
                event="access.granted",
                user_id=decision.user_id,
                record_id=decision.record_id,
                operation=decision.operation.value,
                partial_access=decision.partial_access,
                visible_columns=sorted(decision.visible_columns or ()),
            )
        else:
            self._emit(
                event="access.denied",
                level="warn",
                user_id=decision.user_id,
                record_id=decision.record_id,
                operation=decision.operation.value,
                denied_at=decision.denied_at.value if decision.denied_at else None,
                denial_reason=decision.denial_reason.value if decision.denial_reason else None,
                denial_details=decision.denial_details,
            )

    def log_rule_skipped(
        self,
        rule_id: Optional[str],
        reason: str,
        source: Optional[str] = None,
    ) -> None:
        """Log a stored rule that could not be parsed and was ignored."""
        self._emit(
            event="rule.skipped",
            level="warn",
            rule_id=rule_id,
            reason=reason,
            source=source,
        )

    def log_input_coerced(self, field: str, raw_value: Any, fallback: str) -> None:
        """Log an unknown input value replaced by its most restrictive value."""
        self._emit(
            event="input.coerced",
            level="warn",
            field=field,
            raw_value=raw_value,
            fallback=fallback,
        )

    def log_field_changed(
        self,
        record_id: str,
        field: str,
        old_value: Any,
        new_value: Any,
        actor: Optional[str] = None,
    ) -> None:
        """Log an audited field whose value actually changed."""
        self._emit(
            event="field.changed",
            record_id=record_id,
            field=field,
            old_value=old_value,
            new_value=new_value,
            actor=actor,
        )

    def log_field_dropped(
        self,
        record_id: str,
        field: str,
        actor: Optional[str] = None,
    ) -> None:
        """Log an update to a column the requester cannot see."""
        self._emit(
            event="field.dropped",
            record_id=record_id,
            field=field,
            actor=actor,
        )
