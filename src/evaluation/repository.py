"""Evaluation Repositories.

Persistence for test cases, runs and per-case results. Each method runs
in its own transaction via session_scope; result writes are upserts on
(run_id, test_case_id) so a re-issued case overwrites its earlier result.
"""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from calculator.programs import ProgramRegistry
from core.errors import InvalidInputError, NotFoundError
from database.connection import get_sync_session_factory, session_scope
from database.models import (
    EvaluationResultRecord,
    EvaluationRunRecord,
    TestCaseRecord,
    new_id,
)
from evaluation.models import (
    EvaluationResult,
    EvaluationRun,
    EvaluationTestCase,
    EvaluationTestCaseCreate,
    EvaluationTestCaseUpdate,
    FailureType,
    RunStatus,
)
from models.household import coerce_household

logger = logging.getLogger(__name__)


class _Repository:
    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self._session_factory = session_factory

    @property
    def session_factory(self) -> sessionmaker:
        if self._session_factory is None:
            self._session_factory = get_sync_session_factory()
        return self._session_factory


def _normalized_input(program: str, input_data: Dict[str, Any]) -> Dict[str, Any]:
    """Validate a test case's program and household before storing it."""
    if not ProgramRegistry.is_supported(program):
        raise InvalidInputError(
            f"Unknown program: {program}",
            [f"program must be one of {', '.join(ProgramRegistry.get_supported_programs())}"],
        )
    return coerce_household(input_data).model_dump(mode="json")


class TestCaseRepository(_Repository):
    """CRUD for evaluation test cases."""

    __test__ = False

    def create(self, data: EvaluationTestCaseCreate, default_tolerance: Decimal) -> EvaluationTestCase:
        """
        Create a test case.

        Args:
            data: Test case definition.
            default_tolerance: Tolerance used when data.tolerance is unset.

        Raises:
            InvalidInputError: Unknown program or malformed household.
        """
        input_data = _normalized_input(data.program, data.input_data)
        with session_scope(self.session_factory) as session:
            record = TestCaseRecord(
                id=new_id(),
                program=data.program,
                category=data.category,
                name=data.name,
                description=data.description,
                input_data=input_data,
                expected_result=data.expected_result.model_dump(mode="json"),
                tolerance=data.tolerance if data.tolerance is not None else default_tolerance,
                tags=list(data.tags),
                as_of_date=data.as_of_date,
                is_active=True,
                created_by=data.created_by,
            )
            session.add(record)
            session.flush()
            logger.info(f"Created test case {record.id} ({record.program}/{record.category})")
            return EvaluationTestCase.model_validate(record)

    def get(self, test_case_id: str) -> EvaluationTestCase:
        with session_scope(self.session_factory) as session:
            record = session.get(TestCaseRecord, test_case_id)
            if record is None:
                raise NotFoundError("Test case", test_case_id)
            return EvaluationTestCase.model_validate(record)

    def list(
        self,
        program: Optional[str] = None,
        category: Optional[str] = None,
        is_active: Optional[bool] = None,
        tag: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[EvaluationTestCase]:
        """
        List test cases matching the filters, oldest first.

        Args:
            program: Program code filter.
            category: Category filter.
            is_active: Active flag filter; None returns both.
            tag: Only cases carrying this tag.
        """
        query = select(TestCaseRecord)
        if program:
            query = query.where(TestCaseRecord.program == program.upper())
        if category:
            query = query.where(TestCaseRecord.category == category)
        if is_active is not None:
            query = query.where(TestCaseRecord.is_active == is_active)
        query = query.order_by(TestCaseRecord.created_at, TestCaseRecord.id)

        with session_scope(self.session_factory) as session:
            records = session.execute(query).scalars().all()
            cases = [EvaluationTestCase.model_validate(r) for r in records]

        if tag:
            cases = [c for c in cases if tag in c.tags]
        return cases[offset:offset + limit]

    def by_ids(self, test_case_ids: List[str]) -> List[EvaluationTestCase]:
        """
        Fetch test cases in the given order.

        Raises:
            NotFoundError: Any id does not exist.
        """
        with session_scope(self.session_factory) as session:
            records = session.execute(
                select(TestCaseRecord).where(TestCaseRecord.id.in_(test_case_ids))
            ).scalars().all()
            by_id = {r.id: EvaluationTestCase.model_validate(r) for r in records}

        missing = [i for i in test_case_ids if i not in by_id]
        if missing:
            raise NotFoundError("Test case", ", ".join(missing))
        return [by_id[i] for i in test_case_ids]

    def update(self, test_case_id: str, changes: EvaluationTestCaseUpdate) -> EvaluationTestCase:
        values = changes.model_dump(exclude_unset=True)
        with session_scope(self.session_factory) as session:
            record = session.get(TestCaseRecord, test_case_id)
            if record is None:
                raise NotFoundError("Test case", test_case_id)

            if "input_data" in values and values["input_data"] is not None:
                values["input_data"] = _normalized_input(record.program, values["input_data"])
            if "expected_result" in values and values["expected_result"] is not None:
                values["expected_result"] = changes.expected_result.model_dump(mode="json")
            for name, value in values.items():
                if value is None and name not in ("as_of_date",):
                    continue
                setattr(record, name, value)
            record.updated_at = datetime.utcnow()
            session.flush()
            return EvaluationTestCase.model_validate(record)

    def deactivate(self, test_case_id: str) -> EvaluationTestCase:
        return self.update(test_case_id, EvaluationTestCaseUpdate(is_active=False))

    def delete(self, test_case_id: str) -> None:
        with session_scope(self.session_factory) as session:
            record = session.get(TestCaseRecord, test_case_id)
            if record is None:
                raise NotFoundError("Test case", test_case_id)
            session.delete(record)
        logger.info(f"Deleted test case {test_case_id}")


class EvaluationRunRepository(_Repository):
    """Runs and their per-case results."""

    def create_run(
        self,
        name: str,
        test_case_ids: List[str],
        program: Optional[str] = None,
        verify_reference: bool = False,
        triggered_by: Optional[str] = None,
    ) -> EvaluationRun:
        with session_scope(self.session_factory) as session:
            record = EvaluationRunRecord(
                id=new_id(),
                name=name,
                program=program,
                status=RunStatus.RUNNING.value,
                verify_reference=verify_reference,
                test_case_ids=list(test_case_ids),
                total_cases=len(test_case_ids),
                triggered_by=triggered_by,
                started_at=datetime.utcnow(),
            )
            session.add(record)
            session.flush()
            return EvaluationRun.model_validate(record)

    def get_run(self, run_id: str) -> EvaluationRun:
        with session_scope(self.session_factory) as session:
            record = session.get(EvaluationRunRecord, run_id)
            if record is None:
                raise NotFoundError("Evaluation run", run_id)
            return EvaluationRun.model_validate(record)

    def list_runs(
        self,
        program: Optional[str] = None,
        status: Optional[RunStatus] = None,
        limit: int = 50,
    ) -> List[EvaluationRun]:
        """Most recent runs first."""
        query = select(EvaluationRunRecord)
        if program:
            query = query.where(EvaluationRunRecord.program == program.upper())
        if status:
            query = query.where(EvaluationRunRecord.status == RunStatus(status).value)
        query = query.order_by(EvaluationRunRecord.started_at.desc()).limit(limit)
        with session_scope(self.session_factory) as session:
            return [EvaluationRun.model_validate(r) for r in session.execute(query).scalars()]

    def upsert_result(
        self,
        run_id: str,
        test_case_id: str,
        passed: bool,
        failure_type: FailureType,
        actual_result: Optional[Dict[str, Any]] = None,
        reference_result: Optional[Dict[str, Any]] = None,
        variance: Optional[Decimal] = None,
        execution_time_ms: int = 0,
        error_message: Optional[str] = None,
    ) -> EvaluationResult:
        """Insert or overwrite the result for (run_id, test_case_id)."""
        with session_scope(self.session_factory) as session:
            record = session.execute(
                select(EvaluationResultRecord).where(
                    EvaluationResultRecord.run_id == run_id,
                    EvaluationResultRecord.test_case_id == test_case_id,
                )
            ).scalars().first()
            if record is None:
                record = EvaluationResultRecord(
                    id=new_id(), run_id=run_id, test_case_id=test_case_id, attempts=1
                )
                session.add(record)
            else:
                record.attempts = (record.attempts or 1) + 1

            record.passed = passed
            record.failure_type = FailureType(failure_type).value
            record.actual_result = actual_result
            record.reference_result = reference_result
            record.variance = variance
            record.execution_time_ms = execution_time_ms
            record.error_message = error_message
            record.updated_at = datetime.utcnow()
            session.flush()
            return EvaluationResult.model_validate(record)

    def results_for_run(self, run_id: str) -> List[EvaluationResult]:
        with session_scope(self.session_factory) as session:
            if session.get(EvaluationRunRecord, run_id) is None:
                raise NotFoundError("Evaluation run", run_id)
            records = session.execute(
                select(EvaluationResultRecord)
                .where(EvaluationResultRecord.run_id == run_id)
                .order_by(EvaluationResultRecord.created_at, EvaluationResultRecord.id)
            ).scalars().all()
            return [EvaluationResult.model_validate(r) for r in records]

    def results_for_test_case(self, test_case_id: str, limit: int = 50) -> List[EvaluationResult]:
        with session_scope(self.session_factory) as session:
            records = session.execute(
                select(EvaluationResultRecord)
                .where(EvaluationResultRecord.test_case_id == test_case_id)
                .order_by(EvaluationResultRecord.updated_at.desc())
                .limit(limit)
            ).scalars().all()
            return [EvaluationResult.model_validate(r) for r in records]

    def finalize(self, run_id: str) -> EvaluationRun:
        """
        Aggregate results onto the run and mark it completed.

        average_variance is the mean over results with a defined variance.
        A run with any test case still lacking a result is left failed.
        """
        with session_scope(self.session_factory) as session:
            run = session.get(EvaluationRunRecord, run_id)
            if run is None:
                raise NotFoundError("Evaluation run", run_id)
            results = session.execute(
                select(EvaluationResultRecord).where(EvaluationResultRecord.run_id == run_id)
            ).scalars().all()

            passed = sum(1 for r in results if r.passed)
            errored = sum(1 for r in results if r.failure_type == FailureType.EXECUTION.value)
            variances = [Decimal(r.variance) for r in results if r.variance is not None]

            run.total_cases = len(run.test_case_ids or [])
            run.passed_cases = passed
            run.failed_cases = len(results) - passed
            run.errored_cases = errored
            run.average_variance = (
                (sum(variances) / len(variances)).quantize(Decimal("0.01")) if variances else None
            )
            recorded = {r.test_case_id for r in results}
            missing = [case_id for case_id in (run.test_case_ids or []) if case_id not in recorded]
            if missing:
                run.status = RunStatus.FAILED.value
                run.error_message = f"{len(missing)} of {run.total_cases} test cases have no result"
            else:
                run.status = RunStatus.COMPLETED.value
                run.error_message = None
            run.completed_at = datetime.utcnow()
            session.flush()
            return EvaluationRun.model_validate(run)

    def mark_failed(self, run_id: str, error_message: str) -> Optional[EvaluationRun]:
        with session_scope(self.session_factory) as session:
            run = session.get(EvaluationRunRecord, run_id)
            if run is None:
                return None
            run.status = RunStatus.FAILED.value
            run.error_message = error_message[:2000]
            run.completed_at = datetime.utcnow()
            session.flush()
            return EvaluationRun.model_validate(run)
