"""Tests for test case and evaluation run persistence."""

from datetime import date
from decimal import Decimal

import pytest

from core.errors import InvalidInputError, NotFoundError
from evaluation.models import (
    EvaluationTestCaseCreate,
    EvaluationTestCaseUpdate,
    ExpectedResult,
    FailureType,
    RunStatus,
)


def case_data(**overrides):
    values = {
        "program": "snap",
        "category": "working_family",
        "name": "Three person household with shelter costs",
        "input_data": {"size": 3, "income": {"earned": 2500}},
        "expected_result": ExpectedResult(is_eligible=True, monthly_benefit=Decimal("272")),
        "tags": ["regression"],
        "as_of_date": date(2025, 1, 15),
    }
    values.update(overrides)
    return EvaluationTestCaseCreate(**values)


class TestTestCaseRepository:
    """Tests for TestCaseRepository."""

    def test_create_normalizes_program_and_household(self, test_cases, default_tolerance):
        case = test_cases.create(case_data(), default_tolerance)

        assert case.program == "SNAP"
        assert case.tolerance == Decimal("2.00")
        assert case.is_active is True
        assert case.input_data["jurisdiction"] == "MD"
        assert case.input_data["income"]["unearned"] == "0"

    def test_explicit_tolerance_kept(self, test_cases, default_tolerance):
        case = test_cases.create(case_data(tolerance=Decimal("5")), default_tolerance)
        assert case.tolerance == Decimal("5")

    def test_unknown_program_rejected(self, test_cases, default_tolerance):
        with pytest.raises(InvalidInputError):
            test_cases.create(case_data(program="WIC"), default_tolerance)

    def test_invalid_household_rejected(self, test_cases, default_tolerance):
        with pytest.raises(InvalidInputError):
            test_cases.create(case_data(input_data={"size": 0}), default_tolerance)

    def test_list_filters(self, test_cases, default_tolerance):
        snap = test_cases.create(case_data(), default_tolerance)
        tanf = test_cases.create(
            case_data(program="TANF", category="child_only", tags=["smoke"],
                      input_data={"size": 2, "members": [{"age": 30}, {"age": 4}]}),
            default_tolerance,
        )

        assert [c.id for c in test_cases.list(program="tanf")] == [tanf.id]
        assert [c.id for c in test_cases.list(category="working_family")] == [snap.id]
        assert [c.id for c in test_cases.list(tag="smoke")] == [tanf.id]
        assert len(test_cases.list(limit=1)) == 1

    def test_deactivate_hides_from_active_listing(self, test_cases, default_tolerance):
        case = test_cases.create(case_data(), default_tolerance)
        test_cases.deactivate(case.id)

        assert test_cases.list(is_active=True) == []
        assert test_cases.get(case.id).is_active is False

    def test_update_changes_only_given_fields(self, test_cases, default_tolerance):
        case = test_cases.create(case_data(), default_tolerance)
        updated = test_cases.update(
            case.id,
            EvaluationTestCaseUpdate(expected_result=ExpectedResult(monthly_benefit=Decimal("260"))),
        )

        assert updated.expected_result.monthly_benefit == Decimal("260")
        assert updated.expected_result.is_eligible is None
        assert updated.name == case.name
        assert updated.updated_at is not None

    def test_by_ids_keeps_order_and_reports_missing(self, test_cases, default_tolerance):
        first = test_cases.create(case_data(), default_tolerance)
        second = test_cases.create(case_data(name="Second"), default_tolerance)

        assert [c.id for c in test_cases.by_ids([second.id, first.id])] == [second.id, first.id]
        with pytest.raises(NotFoundError):
            test_cases.by_ids([first.id, "missing"])

    def test_delete(self, test_cases, default_tolerance):
        case = test_cases.create(case_data(), default_tolerance)
        test_cases.delete(case.id)

        with pytest.raises(NotFoundError):
            test_cases.get(case.id)
        with pytest.raises(NotFoundError):
            test_cases.delete(case.id)


class TestEvaluationRunRepository:
    """Tests for EvaluationRunRepository."""

    def test_create_run_starts_running(self, runs):
        run = runs.create_run("Nightly", ["a", "b"], program="SNAP")

        assert run.status == RunStatus.RUNNING
        assert run.total_cases == 2
        assert run.started_at is not None
        assert run.is_finished is False

    def test_upsert_overwrites_and_counts_attempts(self, runs):
        run = runs.create_run("Nightly", ["a"])
        runs.upsert_result(run.id, "a", passed=False, failure_type=FailureType.EXECUTION,
                           error_message="boom")
        result = runs.upsert_result(run.id, "a", passed=True, failure_type=FailureType.NONE,
                                    variance=Decimal("0.00"))

        assert result.attempts == 2
        assert result.passed is True
        assert result.error_message is None
        assert len(runs.results_for_run(run.id)) == 1

    def test_finalize_aggregates(self, runs):
        run = runs.create_run("Nightly", ["a", "b", "c"])
        runs.upsert_result(run.id, "a", True, FailureType.NONE, variance=Decimal("0.00"))
        runs.upsert_result(run.id, "b", False, FailureType.ASSERTION, variance=Decimal("8.80"))
        runs.upsert_result(run.id, "c", False, FailureType.EXECUTION, error_message="no rule")

        finished = runs.finalize(run.id)

        assert finished.status == RunStatus.COMPLETED
        assert finished.passed_cases == 1
        assert finished.failed_cases == 2
        assert finished.errored_cases == 1
        assert finished.average_variance == Decimal("4.40")
        assert finished.pass_rate == Decimal("33.33")
        assert finished.completed_at is not None

    def test_finalize_with_missing_results_leaves_run_failed(self, runs):
        run = runs.create_run("Nightly", ["a", "b"])
        runs.upsert_result(run.id, "a", True, FailureType.NONE, variance=Decimal("0.00"))

        finished = runs.finalize(run.id)

        assert finished.status == RunStatus.FAILED
        assert finished.passed_cases == 1
        assert finished.total_cases == 2
        assert finished.error_message == "1 of 2 test cases have no result"

    def test_mark_failed(self, runs):
        run = runs.create_run("Nightly", ["a"])
        failed = runs.mark_failed(run.id, "database unavailable")

        assert failed.status == RunStatus.FAILED
        assert failed.error_message == "database unavailable"
        assert runs.mark_failed("missing", "x") is None

    def test_unknown_run(self, runs):
        with pytest.raises(NotFoundError):
            runs.get_run("missing")
        with pytest.raises(NotFoundError):
            runs.results_for_run("missing")

    def test_list_runs_filters_by_status(self, runs):
        done = runs.create_run("Done", ["a"])
        runs.upsert_result(done.id, "a", True, FailureType.NONE)
        runs.finalize(done.id)
        runs.create_run("Pending", ["b"])

        assert [r.id for r in runs.list_runs(status=RunStatus.COMPLETED)] == [done.id]
        assert len(runs.list_runs()) == 2
