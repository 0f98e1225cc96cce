"""
Tests for the fixed safety guardrails and evidence-field protection.

Covers:
  - is_protected_evidence_field: case-insensitive, whitespace tolerant
  - GUARDRAILS: exactly the two cross-level rules, immutable
  - evaluate_guardrails: missing / rejected / approved prerequisite levels

Marker: unit (no database).
"""

import dataclasses

import pytest

from scrapops.models.transaction import LevelRecord
from scrapops.services.guardrails import (
    GUARDRAILS,
    PROTECTED_EVIDENCE_FIELDS,
    evaluate_guardrails,
    is_protected_evidence_field,
)

GRN_MSG = "GRN cannot be generated without approved material inspection"
GATE_PASS_MSG = "Gate pass cannot be generated without approved GRN"

pytestmark = pytest.mark.unit


class TestProtectedEvidenceFields:
    @pytest.mark.parametrize("name", sorted(PROTECTED_EVIDENCE_FIELDS))
    def test_every_listed_name_is_protected(self, name):
        assert is_protected_evidence_field(name) is True

    @pytest.mark.parametrize("name", ["PHOTOS", "Gps_Coordinates", "  timestamp "])
    def test_match_ignores_case_and_padding(self, name):
        assert is_protected_evidence_field(name) is True

    @pytest.mark.parametrize("name", ["vehicle_number", "photo", "", None])
    def test_other_names_are_not_protected(self, name):
        assert is_protected_evidence_field(name) is False

    def test_set_cannot_be_mutated(self):
        with pytest.raises(AttributeError):
            PROTECTED_EVIDENCE_FIELDS.add("custom_field")


class TestGuardrailTable:
    def test_two_rules_grn_and_gate_pass(self):
        pairs = {(g.target_level, g.required_level, g.required_status) for g in GUARDRAILS}
        assert pairs == {(6, 4, "APPROVED"), (7, 6, "APPROVED")}

    def test_rules_are_frozen(self):
        with pytest.raises(dataclasses.FrozenInstanceError):
            GUARDRAILS[0].required_status = "PENDING"


class TestEvaluateGuardrails:
    def test_level_6_without_inspection_record(self):
        assert evaluate_guardrails({}, 6) == [GRN_MSG]

    def test_level_6_with_rejected_inspection(self):
        records = {4: LevelRecord(level=4, validation_status="REJECTED")}
        assert evaluate_guardrails(records, 6) == [GRN_MSG]

    def test_level_6_with_pending_inspection(self):
        records = {4: LevelRecord(level=4)}
        assert evaluate_guardrails(records, 6) == [GRN_MSG]

    def test_level_6_with_approved_inspection(self):
        records = {4: LevelRecord(level=4, validation_status="APPROVED")}
        assert evaluate_guardrails(records, 6) == []

    def test_level_7_requires_approved_grn(self):
        records = {4: LevelRecord(level=4, validation_status="APPROVED")}
        assert evaluate_guardrails(records, 7) == [GATE_PASS_MSG]

        records[6] = LevelRecord(level=6, validation_status="APPROVED")
        assert evaluate_guardrails(records, 7) == []

    @pytest.mark.parametrize("target", [1, 2, 3, 4, 5, 8, 0])
    def test_other_targets_have_no_guardrail(self, target):
        assert evaluate_guardrails({}, target) == []
