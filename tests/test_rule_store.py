"""
Tests for the RuleStore: authoring, approval, supersession, resolution
and dependency analysis.
"""

from datetime import date

import pytest

from core.errors import (
    DependencyCycleError,
    NotFoundError,
    RuleConflictError,
    RuleValidationError,
)
from domain.events import RuleApproved, RuleCreated, RuleSuperseded
from rules.models import RuleDraft
from rules.rule_types import RuleStatus, RuleType


DEDUCTION_PARAMS = {"standard_by_size": {1: 198, 4: 208}, "earned_income_percent": "0.20"}
INCOME_LIMIT_PARAMS = {"limits": {1: {"gross_limit": 2301, "net_limit": "1150.50"}}, "additional_member_gross": 808}
ALLOTMENT_PARAMS = {"rows": {1: {"max_benefit": 292}}, "additional_member_amount": 220}


def make_draft(rule_type=RuleType.DEDUCTION, params=None, effective=date(2024, 10, 1), **kwargs):
    defaults = {
        RuleType.DEDUCTION: DEDUCTION_PARAMS,
        RuleType.INCOME_LIMIT: INCOME_LIMIT_PARAMS,
        RuleType.ALLOTMENT: ALLOTMENT_PARAMS,
    }
    data = {
        "program_code": "snap",
        "rule_type": rule_type,
        "jurisdiction": "md",
        "parameters": params if params is not None else defaults[rule_type],
        "effective_date": effective,
    }
    data.update(kwargs)
    return RuleDraft(**data)


class TestAuthoring:
    """Tests for adding draft rules."""

    def test_add_rule_creates_draft(self, store, recorder):
        """Test a new rule is version 1 of its own lineage."""
        rule = store.add_rule(make_draft(), created_by="analyst")

        assert rule.status == RuleStatus.DRAFT
        assert rule.version == 1
        assert rule.lineage_id == rule.id
        assert rule.program_code == "SNAP"
        assert rule.jurisdiction == "MD"
        assert rule.created_by == "analyst"
        assert [e.rule_id for e in recorder.of_type(RuleCreated)] == [rule.id]

    def test_parameters_are_typed(self, store):
        from decimal import Decimal

        rule = store.add_rule(make_draft())
        assert rule.parameters.standard_for(3) == Decimal("198")
        assert rule.parameters.standard_for(4) == Decimal("208")
        assert rule.parameters.earned_income_percent == Decimal("0.20")

    def test_invalid_parameters_rejected(self, store):
        """Test parameters outside their allowed range are refused."""
        with pytest.raises(RuleValidationError) as exc_info:
            store.add_rule(make_draft(params={"earned_income_percent": "1.5"}))
        assert exc_info.value.details["errors"]
        assert not store.has_rules()

    def test_parameter_kind_mismatch_rejected(self, store):
        with pytest.raises(RuleValidationError):
            store.add_rule(make_draft(params={"kind": "allotment", "rows": {1: {"max_benefit": 292}}}))

    def test_unknown_dependency_rejected(self, store):
        with pytest.raises(RuleValidationError):
            store.add_rule(make_draft(depends_on=["missing"]))

    def test_expiration_must_follow_effective(self):
        from pydantic import ValidationError

        with pytest.raises(ValidationError):
            make_draft(expiration_date=date(2024, 1, 1))

    def test_get_unknown_rule(self, store):
        with pytest.raises(NotFoundError):
            store.get_rule("missing")


class TestApproval:
    """Tests for approval and the effective-date invariant."""

    def test_approve_draft(self, store, recorder):
        rule = store.add_rule(make_draft())
        approved = store.approve_rule(rule.id, approved_by="reviewer")

        assert approved.status == RuleStatus.APPROVED
        assert approved.approved_by == "reviewer"
        assert [e.rule_id for e in recorder.of_type(RuleApproved)] == [rule.id]

    def test_approve_twice_conflicts(self, store):
        rule = store.add_rule(make_draft())
        store.approve_rule(rule.id)
        with pytest.raises(RuleConflictError):
            store.approve_rule(rule.id)

    def test_later_version_closes_predecessor(self, store, recorder):
        """Test approving a later version expires and supersedes the earlier one."""
        first = store.approve_rule(store.add_rule(make_draft()).id)
        second = store.approve_rule(
            store.add_rule(make_draft(effective=date(2025, 10, 1))).id
        )

        closed = store.get_rule(first.id)
        assert closed.status == RuleStatus.SUPERSEDED
        assert closed.expiration_date == date(2025, 10, 1)
        assert second.supersedes_id == first.id
        assert store.find_overlaps() == []

        superseded = recorder.of_type(RuleSuperseded)
        assert len(superseded) == 1
        assert superseded[0].successor_id == second.id

    def test_overlapping_earlier_version_conflicts(self, store):
        """Test a draft starting before an approved version cannot be approved."""
        store.approve_rule(store.add_rule(make_draft()).id)
        earlier = store.add_rule(
            make_draft(effective=date(2024, 6, 1), expiration_date=date(2024, 12, 1))
        )

        with pytest.raises(RuleConflictError):
            store.approve_rule(earlier.id)
        assert store.get_rule(earlier.id).status == RuleStatus.DRAFT

    def test_same_effective_date_conflicts(self, store):
        store.approve_rule(store.add_rule(make_draft()).id)
        duplicate = store.add_rule(make_draft())
        with pytest.raises(RuleConflictError):
            store.approve_rule(duplicate.id)

    def test_non_overlapping_window_allowed(self, store):
        store.approve_rule(store.add_rule(
            make_draft(effective=date(2023, 10, 1), expiration_date=date(2024, 10, 1))
        ).id)
        second = store.approve_rule(store.add_rule(make_draft()).id)
        assert second.supersedes_id is None
        assert len(store.history("SNAP", RuleType.DEDUCTION, "MD")) == 2


class TestResolution:
    """Tests for effective-date resolution."""

    def test_resolve_by_date(self, store):
        first = store.approve_rule(store.add_rule(make_draft()).id)
        second = store.approve_rule(store.add_rule(make_draft(effective=date(2025, 10, 1))).id)

        assert store.resolve("SNAP", RuleType.DEDUCTION, "MD", date(2025, 9, 30)).id == first.id
        assert store.resolve("SNAP", RuleType.DEDUCTION, "MD", date(2025, 10, 1)).id == second.id
        assert store.resolve("SNAP", RuleType.DEDUCTION, "MD", date(2024, 9, 30)) is None

    def test_drafts_never_resolve(self, store):
        store.add_rule(make_draft())
        assert store.resolve("SNAP", RuleType.DEDUCTION, "MD", date(2025, 1, 1)) is None

    def test_federal_fallback(self, store):
        """Test a state household resolves a federal rule when no state version exists."""
        federal = store.approve_rule(store.add_rule(make_draft(jurisdiction="US")).id)
        resolved = store.resolve("SNAP", RuleType.DEDUCTION, "VA", date(2025, 1, 1))
        assert resolved.id == federal.id

    def test_state_rule_preferred_over_federal(self, store):
        store.approve_rule(store.add_rule(make_draft(jurisdiction="US")).id)
        state = store.approve_rule(store.add_rule(make_draft()).id)
        assert store.resolve("SNAP", RuleType.DEDUCTION, "MD", date(2025, 1, 1)).id == state.id

    def test_resolve_ruleset(self, store):
        deduction = store.approve_rule(store.add_rule(make_draft()).id)
        limit = store.approve_rule(store.add_rule(make_draft(RuleType.INCOME_LIMIT)).id)

        ruleset = store.resolve_ruleset("snap", "md", date(2025, 1, 1))
        assert ruleset.get(RuleType.DEDUCTION).id == deduction.id
        assert ruleset.get(RuleType.INCOME_LIMIT).id == limit.id
        assert ruleset.get(RuleType.ALLOTMENT) is None
        assert sorted(ruleset.rule_ids) == sorted([deduction.id, limit.id])


class TestSupersession:
    """Tests for supersede()."""

    def test_supersede_continues_lineage(self, store):
        original = store.approve_rule(store.add_rule(make_draft()).id)
        successor = store.supersede(
            original.id,
            {"standard_by_size": {1: 204}, "earned_income_percent": "0.20"},
            date(2025, 10, 1),
            approved_by="reviewer",
        )

        assert successor.version == 2
        assert successor.lineage_id == original.lineage_id
        assert successor.supersedes_id == original.id
        assert successor.status == RuleStatus.APPROVED
        assert store.get_rule(original.id).status == RuleStatus.SUPERSEDED

    def test_supersede_requires_later_start(self, store):
        original = store.approve_rule(store.add_rule(make_draft()).id)
        with pytest.raises(RuleConflictError):
            store.supersede(original.id, DEDUCTION_PARAMS, date(2024, 10, 1))

    def test_supersede_requires_approved(self, store):
        draft = store.add_rule(make_draft())
        with pytest.raises(RuleConflictError):
            store.supersede(draft.id, DEDUCTION_PARAMS, date(2025, 10, 1))

    def test_supersede_validates_parameters(self, store):
        original = store.approve_rule(store.add_rule(make_draft()).id)
        with pytest.raises(RuleValidationError):
            store.supersede(original.id, {"shelter_cap": -1}, date(2025, 10, 1))
        assert store.get_rule(original.id).status == RuleStatus.APPROVED


class TestDependencies:
    """Tests for dependency edges and impact analysis."""

    def _chain(self, store):
        deduction = store.approve_rule(store.add_rule(make_draft()).id)
        limit = store.approve_rule(store.add_rule(
            make_draft(RuleType.INCOME_LIMIT, depends_on=[deduction.id])
        ).id)
        allotment = store.approve_rule(store.add_rule(
            make_draft(RuleType.ALLOTMENT, depends_on=[limit.id])
        ).id)
        return deduction, limit, allotment

    def test_dependents_transitive(self, store):
        deduction, limit, allotment = self._chain(store)
        assert {r.id for r in store.dependents_of(deduction.id)} == {limit.id, allotment.id}
        assert {r.id for r in store.dependents_of(deduction.id, transitive=False)} == {limit.id}

    def test_cycle_rejected(self, store):
        deduction, limit, allotment = self._chain(store)
        with pytest.raises(DependencyCycleError):
            store.set_dependencies(deduction.id, [allotment.id])
        assert store.get_rule(deduction.id).depends_on == []

    def test_dependents_follow_current_version(self, store):
        """Test a superseded rule's dependents still depend on its successor."""
        deduction, limit, _ = self._chain(store)
        successor = store.supersede(deduction.id, DEDUCTION_PARAMS, date(2025, 10, 1))

        assert limit.id in {r.id for r in store.dependents_of(successor.id)}

    def test_impact_closure_includes_seed(self, store):
        deduction, limit, allotment = self._chain(store)
        closure = store.impact_closure([limit.id])
        assert {r.id for r in closure} == {limit.id, allotment.id}

    def test_rules_referencing_term(self, store):
        deduction, limit, _ = self._chain(store)
        store.set_ontology_terms(limit.id, ["term-1"])
        assert [r.id for r in store.rules_referencing_term("term-1")] == [limit.id]
        assert store.rules_referencing_term("term-2") == []
