"""
Tests for access models.

Tests cover:
- Clearance ordering via the rank table
- Coercion of unknown enum values to the most restrictive value
- Record projection
- AccessDecision audit summary and audit record
"""

import pytest

from sharegate.access import (
    ALL_COLUMNS,
    CLEARANCE_RANK,
    SENSITIVITY_CLEARANCE,
    AccessDecision,
    AccessDeniedError,
    AbacResult,
    ClearanceLevel,
    CbacResult,
    DenialReason,
    Operation,
    OrganizationLevel,
    PipelineStage,
    RbacResult,
    SensitivityLevel,
)


class TestClearance:
    """Test clearance ordering."""

    def test_rank_is_total_order(self):
        """Every level has a distinct rank in the documented order."""
        ordered = [
            ClearanceLevel.PUBLIC,
            ClearanceLevel.INTERNAL,
            ClearanceLevel.CONFIDENTIAL,
            ClearanceLevel.SECRET,
            ClearanceLevel.TOP_SECRET,
        ]
        ranks = [CLEARANCE_RANK[level] for level in ordered]
        assert ranks == sorted(ranks)
        assert len(set(ranks)) == len(ordered)

    def test_sensitivity_mapping(self):
        """RESTRICTED records need SECRET clearance."""
        assert SENSITIVITY_CLEARANCE[SensitivityLevel.PUBLIC] == ClearanceLevel.PUBLIC
        assert SENSITIVITY_CLEARANCE[SensitivityLevel.RESTRICTED] == ClearanceLevel.SECRET

    def test_has_clearance(self, make_identity):
        """Clearance is compared by rank, inclusive."""
        identity = make_identity(clearance_level=ClearanceLevel.SECRET)
        assert identity.has_clearance(ClearanceLevel.CONFIDENTIAL) is True
        assert identity.has_clearance(ClearanceLevel.SECRET) is True
        assert identity.has_clearance(ClearanceLevel.TOP_SECRET) is False


class TestInputCoercion:
    """Unknown enum values map to the most restrictive value."""

    def test_unknown_record_organization_level(self, make_record):
        record = make_record(organization_level="GALAXY")
        assert record.organization_level == OrganizationLevel.INDIVIDUAL

    def test_unknown_record_sensitivity(self, make_record):
        record = make_record(sensitivity_level="TOP")
        assert record.sensitivity_level == SensitivityLevel.RESTRICTED

    def test_unknown_identity_clearance(self, make_identity):
        identity = make_identity(clearance_level="ULTRA")
        assert identity.clearance_level == ClearanceLevel.PUBLIC

    def test_lowercase_values_accepted(self, make_record):
        """Known values are matched case-insensitively."""
        record = make_record(sensitivity_level="confidential", organization_level="team")
        assert record.sensitivity_level == SensitivityLevel.CONFIDENTIAL
        assert record.organization_level == OrganizationLevel.TEAM

    def test_identity_is_immutable(self, make_identity):
        identity = make_identity()
        with pytest.raises(Exception):
            identity.user_id = "u-mallory"


class TestProtectedRecord:
    """Test record projection."""

    def test_project_restricts_columns(self, make_record):
        record = make_record()
        projected = record.project(frozenset({"id", "name"}))
        assert projected == {"id": "rec-1", "name": "Q3 forecast"}

    def test_project_ignores_unknown_columns(self, make_record):
        """Soft-delete bookkeeping is never part of a projection."""
        record = make_record()
        projected = record.project(frozenset({"id", "is_deleted"}))
        assert set(projected) == {"id"}

    def test_all_columns(self):
        assert len(ALL_COLUMNS) == 15
        assert "confidential_notes" in ALL_COLUMNS
        assert "financial_data" in ALL_COLUMNS


class TestAccessDecision:
    """Test decision summaries."""

    def test_denied_summary(self):
        decision = AccessDecision(
            user_id="u-alice",
            record_id="rec-1",
            operation=Operation.READ,
            stage=PipelineStage.DENIED,
            denied_at=PipelineStage.ABAC,
            denial_reason=DenialReason.DENIED_ATTRIBUTE,
            denial_details="Access denied by rule: contractors",
        )
        assert decision.build_audit_summary() == (
            "Access Decision: DENIED | Reason: DENIED_ATTRIBUTE - Access denied by rule: contractors"
        )
        assert decision.reason == "Access denied by rule: contractors"

    def test_partial_summary(self):
        decision = AccessDecision(
            user_id="u-alice",
            record_id="rec-1",
            operation=Operation.READ,
            allowed=True,
            partial_access=True,
        )
        assert decision.build_audit_summary() == (
            "Access Decision: GRANTED | Partial Access: columns filtered"
        )

    def test_audit_record(self):
        decision = AccessDecision(
            user_id="u-alice",
            record_id="rec-1",
            operation=Operation.UPDATE,
            allowed=True,
            rbac_result=RbacResult(matched_role="EDITOR"),
            abac_result=AbacResult(evaluated_attributes={"user_clearance": "SECRET"}),
            cbac_result=CbacResult(evaluated_context={"client_ip": "10.0.0.1"}),
            visible_columns=frozenset({"name", "id"}),
        )
        record = decision.to_audit_record()
        assert record["outcome"] == "GRANTED"
        assert record["operation"] == "UPDATE"
        assert record["attribute_conditions"] == {"user_clearance": "SECRET"}
        assert record["context_conditions"] == {"client_ip": "10.0.0.1"}
        assert record["visible_columns"] == ["id", "name"]
        assert record["denial_reason"] is None

    def test_audit_record_fully_redacted(self):
        """An empty column set is recorded, distinct from columns never computed."""
        redacted = AccessDecision(
            user_id="u-alice",
            record_id="rec-1",
            operation=Operation.READ,
            allowed=True,
            partial_access=True,
            visible_columns=frozenset(),
        )
        denied = AccessDecision(user_id="u-alice", record_id="rec-1", operation=Operation.READ)

        assert redacted.to_audit_record()["visible_columns"] == []
        assert denied.to_audit_record()["visible_columns"] is None

    def test_access_denied_error_message(self):
        decision = AccessDecision(
            user_id="u-alice",
            record_id="rec-1",
            operation=Operation.DELETE,
            denial_details="DELETE operation requires ADMIN, DATA_MANAGER role, or data ownership",
        )
        error = AccessDeniedError(decision)
        assert error.decision is decision
        assert "DELETE operation requires" in str(error)
