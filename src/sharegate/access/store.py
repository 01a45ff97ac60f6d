"""
Access rule storage backends.

The engine only reads rules; administrators write them through
save_rule/delete_rule (or by editing the files directly).

Data layout (file-based):
    ~/.sharegate/rules/
    ├── contractors-no-delete.yaml
    ├── finance-columns.yaml
    └── <rule_id>.yaml

A file that fails to parse is logged as ``rule.skipped`` and left out
of every read, so a broken rule can never grant access.
"""

from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import yaml

from sharegate.access.models import MalformedRuleError, PrincipalType
from sharegate.access.rules import AccessRule, parse_rule, rule_sort_key
from sharegate.config import get_config
from sharegate.logger import DecisionLogger

logger = logging.getLogger(__name__)


class BaseRuleStore(ABC):
    """Abstract base class for rule storage backends."""

    @abstractmethod
    def list_rules(self) -> List[AccessRule]:
        """List all parseable rules."""
        pass

    @abstractmethod
    def get_rule(self, rule_id: str) -> Optional[AccessRule]:
        """Get a rule by ID."""
        pass

    @abstractmethod
    def save_rule(self, rule: AccessRule) -> None:
        """Save a rule (create or update)."""
        pass

    @abstractmethod
    def delete_rule(self, rule_id: str) -> bool:
        """Delete a rule. Returns False if not found."""
        pass

    def active_rules_for(self, record_id: str) -> List[AccessRule]:
        """
        Active rules in scope for a record, table-wide and record-specific.

        Ordered by ascending priority, ties broken by rule id.
        """
        rules = [
            r for r in self.list_rules()
            if r.active and r.applies_to_record(record_id)
        ]
        return sorted(rules, key=rule_sort_key)

    def rules_for(
        self,
        principal_type: PrincipalType,
        principal_value: Optional[str] = None,
    ) -> List[AccessRule]:
        """Rules for a principal; ``principal_value=None`` matches any value."""
        rules = [
            r for r in self.list_rules()
            if r.principal_type == principal_type
            and (principal_value is None or r.principal_value == principal_value)
        ]
        return sorted(rules, key=rule_sort_key)

    def row_level_rules(
        self,
        record_id: str,
        user_id: str,
        now: Optional[datetime] = None,
    ) -> List[AccessRule]:
        """
        Rules scoped to exactly this record and aimed at the user or ALL.

        Table-wide rules are excluded; those are attribute rules.
        """
        return [
            r for r in self.active_rules_for(record_id)
            if r.record_id == record_id
            and r.targets_user(user_id)
            and r.is_within_validity(now)
        ]

    def column_level_rules(
        self,
        record_id: str,
        user_id: str,
        now: Optional[datetime] = None,
    ) -> List[AccessRule]:
        """In-effect rules for the user or ALL that declare a column allow-list."""
        candidates = self.rules_for(PrincipalType.USER, user_id) + self.rules_for(PrincipalType.ALL)
        seen = set()
        rules = []
        for r in sorted(candidates, key=rule_sort_key):
            if r.id in seen:
                continue
            seen.add(r.id)
            if r.visible_columns is None:
                continue
            if r.is_in_effect(now) and r.applies_to_record(record_id):
                rules.append(r)
        return rules


class RuleFileStore(BaseRuleStore):
    """
    File-based rule storage.

    Stores one rule per YAML file for easy inspection and review.
    """

    def __init__(
        self,
        base_dir: Optional[str] = None,
        decision_logger: Optional[DecisionLogger] = None,
    ):
        if base_dir is None:
            base_dir = get_config().rules_dir
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self._decision_log = decision_logger or DecisionLogger()
        logger.debug(f"RuleFileStore initialized at {self.base_dir}")

    def _rule_path(self, rule_id: str) -> Path:
        """Get path for a rule file."""
        if not rule_id or "/" in rule_id or "\\" in rule_id or rule_id.startswith("."):
            raise ValueError(f"Invalid rule id: {rule_id!r}")
        return self.base_dir / f"{rule_id}.yaml"

    def _load(self, path: Path) -> Optional[AccessRule]:
        """Parse one rule file; malformed files are logged and skipped."""
        with open(path) as f:
            try:
                data = yaml.safe_load(f)
            except yaml.YAMLError as e:
                self._skip(path.stem, f"invalid YAML: {e}", path)
                return None

        if not isinstance(data, dict):
            self._skip(path.stem, "rule file does not contain a mapping", path)
            return None

        try:
            return parse_rule(data)
        except MalformedRuleError as e:
            self._skip(e.rule_id or path.stem, str(e), path)
            return None

    def _skip(self, rule_id: str, reason: str, path: Path) -> None:
        logger.warning(f"Skipping malformed rule {rule_id} ({path}): {reason}")
        self._decision_log.log_rule_skipped(rule_id=rule_id, reason=reason, source=str(path))

    def list_rules(self) -> List[AccessRule]:
        rules = []
        for path in sorted(self.base_dir.glob("*.yaml")):
            rule = self._load(path)
            if rule is not None:
                rules.append(rule)
        return rules

    def get_rule(self, rule_id: str) -> Optional[AccessRule]:
        path = self._rule_path(rule_id)
        if not path.exists():
            return None
        return self._load(path)

    def save_rule(self, rule: AccessRule) -> None:
        path = self._rule_path(rule.id)
        data = rule.model_dump(mode="json")
        if data.get("visible_columns") is not None:
            data["visible_columns"] = sorted(data["visible_columns"])

        with open(path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)

        logger.debug(f"Saved rule {rule.id} to {path}")

    def delete_rule(self, rule_id: str) -> bool:
        path = self._rule_path(rule_id)
        if not path.exists():
            return False

        path.unlink()
        logger.debug(f"Deleted rule {rule_id}")
        return True


class RuleMemoryStore(BaseRuleStore):
    """
    In-memory rule storage for testing and embedding.

    Data is lost when the process exits.
    """

    def __init__(self, rules: Optional[List[AccessRule]] = None):
        self._rules: Dict[str, AccessRule] = {}
        for rule in rules or []:
            self.save_rule(rule)

    def list_rules(self) -> List[AccessRule]:
        return list(self._rules.values())

    def get_rule(self, rule_id: str) -> Optional[AccessRule]:
        return self._rules.get(rule_id)

    def save_rule(self, rule: AccessRule) -> None:
        self._rules[rule.id] = rule

    def delete_rule(self, rule_id: str) -> bool:
        if rule_id not in self._rules:
            return False
        del self._rules[rule_id]
        return True


class CachingRuleStore(BaseRuleStore):
    """
    Short-lived read cache in front of another store.

    Rule updates become visible to new decisions within ``ttl_seconds``.
    Writes through this wrapper invalidate the cache immediately.
    """

    def __init__(self, inner: BaseRuleStore, ttl_seconds: float = 30):
        self.inner = inner
        self.ttl_seconds = ttl_seconds
        self._lock = threading.Lock()
        self._cached: Optional[Tuple[float, List[AccessRule]]] = None

    def list_rules(self) -> List[AccessRule]:
        with self._lock:
            if self._cached is not None:
                loaded_at, rules = self._cached
                if time.monotonic() - loaded_at < self.ttl_seconds:
                    return list(rules)

            rules = self.inner.list_rules()
            self._cached = (time.monotonic(), rules)
            return list(rules)

    def get_rule(self, rule_id: str) -> Optional[AccessRule]:
        for rule in self.list_rules():
            if rule.id == rule_id:
                return rule
        return None

    def save_rule(self, rule: AccessRule) -> None:
        self.inner.save_rule(rule)
        self.invalidate()

    def delete_rule(self, rule_id: str) -> bool:
        deleted = self.inner.delete_rule(rule_id)
        self.invalidate()
        return deleted

    def invalidate(self) -> None:
        with self._lock:
            self._cached = None


# =============================================================================
# Store Factory
# =============================================================================

_default_store: Optional[BaseRuleStore] = None


def get_rule_store() -> BaseRuleStore:
    """
    Get the default rule store.

    File-backed under the configured ``rules_dir``, wrapped in a cache
    when ``rule_cache_ttl_seconds`` is set.
    """
    global _default_store

    if _default_store is None:
        config = get_config()
        store: BaseRuleStore = RuleFileStore(config.rules_dir)
        if config.rule_cache_ttl_seconds > 0:
            store = CachingRuleStore(store, ttl_seconds=config.rule_cache_ttl_seconds)
        _default_store = store

    return _default_store


def set_rule_store(store: BaseRuleStore) -> None:
    """Set the default rule store (for testing)."""
    global _default_store
    _default_store = store


def reset_rule_store() -> None:
    """Reset the default store (for testing)."""
    global _default_store
    _default_store = None
