"""
Pytest configuration and fixtures for ShareGate tests.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, Generator

import pytest

from sharegate.access import (
    AccessDecisionEngine,
    AccessRule,
    ClearanceLevel,
    DirectoryMemoryStore,
    IdentityContext,
    OrganizationLevel,
    PrincipalType,
    ProtectedRecord,
    RequestContext,
    RuleMemoryStore,
    SensitivityLevel,
    reset_directory,
    reset_engine,
    reset_rule_store,
)
from sharegate.config import ShareGateConfig, reset_config


# ============================================================================
# Environment Fixtures
# ============================================================================


@pytest.fixture(autouse=True)
def isolated_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Generator[Dict[str, str], None, None]:
    """Point file-backed collaborators at a temp dir and reset singletons."""
    env = {
        "SHAREGATE_RULES_DIR": str(tmp_path / "rules"),
        "SHAREGATE_DIRECTORY_FILE": str(tmp_path / "directory.yaml"),
    }
    for key, value in env.items():
        monkeypatch.setenv(key, value)
    for key in (
        "SHAREGATE_REQUIRE_BUSINESS_HOURS",
        "SHAREGATE_REQUIRE_ALLOWED_IP",
        "SHAREGATE_ROW_LEVEL_ENABLED",
        "SHAREGATE_COLUMN_LEVEL_ENABLED",
        "SHAREGATE_TIMEZONE",
    ):
        monkeypatch.delenv(key, raising=False)

    reset_config()
    reset_rule_store()
    reset_directory()
    reset_engine()

    yield env

    reset_config()
    reset_rule_store()
    reset_directory()
    reset_engine()


# ============================================================================
# Model Fixtures
# ============================================================================


@pytest.fixture
def make_identity() -> Callable[..., IdentityContext]:
    """Factory for identities; defaults describe a plain finance analyst."""

    def _make(user_id: str = "u-alice", **overrides) -> IdentityContext:
        data = {
            "user_id": user_id,
            "display_name": user_id,
            "roles": frozenset({"ANALYST"}),
            "department_id": "FIN",
            "team_id": "FIN-AP",
            "clearance_level": ClearanceLevel.CONFIDENTIAL,
        }
        data.update(overrides)
        return IdentityContext(**data)

    return _make


@pytest.fixture
def make_record() -> Callable[..., ProtectedRecord]:
    """Factory for records; defaults to an individual-level record owned by u-alice."""

    def _make(record_id: str = "rec-1", **overrides) -> ProtectedRecord:
        data = {
            "id": record_id,
            "name": "Q3 forecast",
            "data": "payload",
            "sensitivity_level": SensitivityLevel.INTERNAL,
            "organization_level": OrganizationLevel.INDIVIDUAL,
            "department_id": "FIN",
            "team_id": "FIN-AP",
            "owner_id": "u-alice",
            "confidential_notes": "notes",
            "financial_data": "numbers",
        }
        data.update(overrides)
        return ProtectedRecord(**data)

    return _make


@pytest.fixture
def make_rule() -> Callable[..., AccessRule]:
    """Factory for rules; defaults to a table-wide ALL rule granting nothing."""

    def _make(rule_id: str = "rule-1", **overrides) -> AccessRule:
        data = {
            "id": rule_id,
            "name": rule_id,
            "principal_type": PrincipalType.ALL,
        }
        data.update(overrides)
        return AccessRule(**data)

    return _make


@pytest.fixture
def business_day() -> datetime:
    """Wednesday 2026-10-14 12:00 in New York (16:00 UTC)."""
    return datetime(2026, 10, 14, 16, 0, tzinfo=timezone.utc)


@pytest.fixture
def request_context(business_day: datetime) -> RequestContext:
    return RequestContext(client_ip="10.1.2.3", user_agent="pytest", timestamp=business_day)


# ============================================================================
# Collaborator Fixtures
# ============================================================================


@pytest.fixture
def config() -> ShareGateConfig:
    return ShareGateConfig()


@pytest.fixture
def store() -> RuleMemoryStore:
    return RuleMemoryStore()


@pytest.fixture
def directory() -> DirectoryMemoryStore:
    """u-alice reports to u-bob."""
    return DirectoryMemoryStore({"u-alice": "u-bob", "u-bob": "u-carol"})


@pytest.fixture
def engine(store: RuleMemoryStore, directory: DirectoryMemoryStore, config: ShareGateConfig) -> AccessDecisionEngine:
    return AccessDecisionEngine(store=store, directory=directory, config=config)
