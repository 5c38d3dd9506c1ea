"""
Evaluation Harness.

Runs curated test cases through the rules engine, optionally cross-checks
them against the reference calculator, and aggregates pass/fail and
variance statistics per run.

A run is created in the ``running`` state and returned immediately;
cases execute on a thread pool (or on a Celery worker) and each result
is written as soon as its case finishes.
"""

import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime
from decimal import Decimal
from threading import Lock
from typing import Any, Dict, List, Optional

from calculator.engine import RulesEngine
from config.settings import EvaluationSettings, get_settings
from core.errors import BenefitRulesError, InvalidInputError, NotFoundError
from domain.event_bus import EventBus, get_event_bus
from domain.events import EvaluationRunCompleted
from evaluation.models import (
    EvaluationResult,
    EvaluationRun,
    EvaluationTestCase,
    FailureType,
    RunStatus,
    RunSummary,
)
from evaluation.repository import EvaluationRunRepository, TestCaseRepository
from evaluation.variance import compare
from verification.reference_verifier import ReferenceVerifier

logger = logging.getLogger(__name__)


class EvaluationHarness:
    """Executes evaluation runs and serves their results."""

    def __init__(
        self,
        engine: RulesEngine,
        test_cases: TestCaseRepository,
        runs: EvaluationRunRepository,
        verifier: Optional[ReferenceVerifier] = None,
        settings: Optional[EvaluationSettings] = None,
        event_bus: Optional[EventBus] = None,
    ):
        self.engine = engine
        self.test_cases = test_cases
        self.runs = runs
        self.verifier = verifier or ReferenceVerifier()
        self.settings = settings or get_settings().evaluation
        self._event_bus = event_bus

        self._case_executor = ThreadPoolExecutor(
            max_workers=self.settings.max_workers, thread_name_prefix="eval-case"
        )
        self._run_executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="eval-run")
        self._futures: Dict[str, Future] = {}
        self._lock = Lock()

    @property
    def event_bus(self) -> EventBus:
        return self._event_bus or get_event_bus()

    def shutdown(self, wait: bool = True) -> None:
        self._run_executor.shutdown(wait=wait)
        self._case_executor.shutdown(wait=wait)

    # =========================================================================
    # STARTING RUNS
    # =========================================================================

    def _select_cases(
        self, test_case_ids: Optional[List[str]], filters: Optional[Dict[str, Any]]
    ) -> List[EvaluationTestCase]:
        if test_case_ids:
            return self.test_cases.by_ids(list(dict.fromkeys(test_case_ids)))
        filters = filters or {}
        return self.test_cases.list(
            program=filters.get("program"),
            category=filters.get("category"),
            tag=filters.get("tag"),
            is_active=True,
            limit=10_000,
        )

    def run_evaluation(
        self,
        test_case_ids: Optional[List[str]] = None,
        filters: Optional[Dict[str, Any]] = None,
        verify_reference: bool = False,
        name: Optional[str] = None,
        triggered_by: Optional[str] = None,
    ) -> EvaluationRun:
        """
        Create a run and dispatch its execution.

        Args:
            test_case_ids: Explicit cases to run (active or not).
            filters: program/category/tag filters over active cases, used
                when no ids are given.
            verify_reference: Also call the reference calculator per case.
            name: Display name; generated when omitted.
            triggered_by: Reviewer or process that started the run.

        Returns:
            The run in ``running`` state.

        Raises:
            InvalidInputError: No test cases selected.
            NotFoundError: An explicit test case id does not exist.
        """
        cases = self._select_cases(test_case_ids, filters)
        if not cases:
            raise InvalidInputError("No test cases match the selection")

        programs = sorted({c.program for c in cases})
        program = programs[0] if len(programs) == 1 else None
        run = self.runs.create_run(
            name=name or f"{program or 'Mixed'} evaluation {datetime.utcnow():%Y-%m-%d %H:%M:%S}",
            test_case_ids=[c.id for c in cases],
            program=program,
            verify_reference=verify_reference,
            triggered_by=triggered_by,
        )
        logger.info(
            f"Evaluation run {run.id} started with {len(cases)} cases",
            extra={"run_id": run.id, "program": program, "verify_reference": verify_reference},
        )
        self._dispatch(run.id)
        return run

    def _dispatch(self, run_id: str) -> None:
        if self.settings.dispatch_mode == "celery":
            from tasks.evaluation_tasks import execute_evaluation_run
            execute_evaluation_run.delay(run_id)
            return
        future = self._run_executor.submit(self.execute_run, run_id)
        with self._lock:
            self._futures[run_id] = future

    def wait(self, run_id: str, timeout: Optional[float] = None) -> EvaluationRun:
        """Block until an in-process run finishes, then return it."""
        with self._lock:
            future = self._futures.get(run_id)
        if future is not None:
            future.result(timeout=timeout)
            with self._lock:
                self._futures.pop(run_id, None)
        return self.runs.get_run(run_id)

    # =========================================================================
    # EXECUTION
    # =========================================================================

    def execute_run(self, run_id: str) -> EvaluationRun:
        """
        Execute every case of a run and aggregate the results.

        Case failures never abort the run. Anything that prevents the run
        itself from completing marks it ``failed``.
        """
        try:
            run = self.runs.get_run(run_id)
            cases = self.test_cases.by_ids(run.test_case_ids)
            futures = [
                self._case_executor.submit(self._execute_case, run_id, case, run.verify_reference)
                for case in cases
            ]
            for future in futures:
                future.result()
            run = self.runs.finalize(run_id)
        except Exception as e:
            logger.error(f"Evaluation run {run_id} failed: {e}", exc_info=True)
            failed = self.runs.mark_failed(run_id, str(e))
            if failed is None:
                raise
            run = failed

        logger.info(
            f"Evaluation run {run_id} {run.status.value}: "
            f"{run.passed_cases}/{run.total_cases} passed, {run.errored_cases} errored",
            extra={"run_id": run_id, "average_variance": str(run.average_variance)},
        )
        self.event_bus.publish(EvaluationRunCompleted(
            aggregate_id=run.id,
            run_id=run.id,
            status=run.status.value,
            total_cases=run.total_cases,
            passed_cases=run.passed_cases,
            failed_cases=run.failed_cases,
            errored_cases=run.errored_cases,
            average_variance=float(run.average_variance) if run.average_variance is not None else None,
        ))
        return run

    def _execute_case(
        self, run_id: str, case: EvaluationTestCase, verify_reference: bool
    ) -> EvaluationResult:
        """Evaluate one case and upsert its result."""
        started = time.perf_counter()
        actual: Optional[Dict[str, Any]] = None
        reference: Optional[Dict[str, Any]] = None
        variance: Optional[Decimal] = None
        error_message: Optional[str] = None

        try:
            determination = self.engine.evaluate(case.program, case.input_data, case.as_of_date)
            actual = determination.to_api_dict()

            reference_result = None
            if verify_reference and self.verifier.supports(case.program):
                reference_result = self.verifier.verify(case.program, case.input_data, case.as_of_date)
                reference = reference_result.to_dict()

            outcome = compare(determination, case.expected_result, case.tolerance, reference_result)
            passed = outcome.passed
            failure_type = outcome.failure_type
            variance = outcome.variance
            error_message = outcome.message
        except BenefitRulesError as e:
            logger.info(f"Case {case.id} in run {run_id} failed to execute: {e.message}")
            passed, failure_type, error_message = False, FailureType.EXECUTION, e.message
        except Exception as e:
            logger.error(f"Unexpected error in case {case.id} of run {run_id}: {e}", exc_info=True)
            passed, failure_type, error_message = False, FailureType.EXECUTION, f"{type(e).__name__}: {e}"

        elapsed_ms = int((time.perf_counter() - started) * 1000)
        return self.runs.upsert_result(
            run_id=run_id,
            test_case_id=case.id,
            passed=passed,
            failure_type=failure_type,
            actual_result=actual,
            reference_result=reference,
            variance=variance,
            execution_time_ms=elapsed_ms,
            error_message=error_message,
        )

    def retry_case(self, run_id: str, test_case_id: str) -> EvaluationResult:
        """
        Re-issue a single case of a finished or running run.

        The result row is overwritten and the run re-aggregated.

        Raises:
            NotFoundError: Unknown run, or the case is not part of the run.
        """
        run = self.runs.get_run(run_id)
        if test_case_id not in run.test_case_ids:
            raise NotFoundError("Test case in run", f"{run_id}/{test_case_id}")

        case = self.test_cases.get(test_case_id)
        result = self._execute_case(run_id, case, run.verify_reference)
        if run.status != RunStatus.RUNNING:
            self.runs.finalize(run_id)
        logger.info(f"Retried case {test_case_id} in run {run_id}: passed={result.passed}")
        return result

    # =========================================================================
    # READ SIDE
    # =========================================================================

    def get_run(self, run_id: str) -> EvaluationRun:
        return self.runs.get_run(run_id)

    def list_runs(
        self, program: Optional[str] = None, status: Optional[RunStatus] = None, limit: int = 50
    ) -> List[EvaluationRun]:
        return self.runs.list_runs(program=program, status=status, limit=limit)

    def get_results(self, run_id: str) -> List[EvaluationResult]:
        return self.runs.results_for_run(run_id)

    def results_for_test_case(self, test_case_id: str) -> List[EvaluationResult]:
        self.test_cases.get(test_case_id)
        return self.runs.results_for_test_case(test_case_id)

    def summary(self, program: Optional[str] = None) -> RunSummary:
        """Pass rate and mean variance across the most recent completed runs."""
        runs = self.runs.list_runs(
            program=program, status=RunStatus.COMPLETED, limit=self.settings.recent_runs_window
        )
        total = sum(r.total_cases for r in runs)
        passed = sum(r.passed_cases for r in runs)
        variances = [r.average_variance for r in runs if r.average_variance is not None]

        latest = self.runs.list_runs(program=program, limit=1)
        return RunSummary(
            program=program.upper() if program else None,
            runs_considered=len(runs),
            total_cases=total,
            passed_cases=passed,
            failed_cases=sum(r.failed_cases for r in runs),
            errored_cases=sum(r.errored_cases for r in runs),
            pass_rate=(Decimal(passed) * 100 / Decimal(total)).quantize(Decimal("0.01")) if total else None,
            mean_variance=(sum(variances) / len(variances)).quantize(Decimal("0.01")) if variances else None,
            last_run_id=latest[0].id if latest else None,
            last_run_status=latest[0].status if latest else None,
        )
