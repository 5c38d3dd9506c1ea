"""
Evaluation harness: curated test cases, runs and per-case results.
"""

from .models import (
    EvaluationResult,
    EvaluationRun,
    EvaluationTestCase,
    EvaluationTestCaseCreate,
    EvaluationTestCaseUpdate,
    ExpectedResult,
    FailureType,
    RunStatus,
    RunSummary,
)
from .variance import ComparisonOutcome, check_tolerance, compare
from .repository import EvaluationRunRepository, TestCaseRepository
from .harness import EvaluationHarness

__all__ = [
    "EvaluationResult",
    "EvaluationRun",
    "EvaluationTestCase",
    "EvaluationTestCaseCreate",
    "EvaluationTestCaseUpdate",
    "ExpectedResult",
    "FailureType",
    "RunStatus",
    "RunSummary",
    "ComparisonOutcome",
    "check_tolerance",
    "compare",
    "EvaluationRunRepository",
    "TestCaseRepository",
    "EvaluationHarness",
]
