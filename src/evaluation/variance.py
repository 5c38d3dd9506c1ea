"""
Comparison of a determination against expected and reference results.

Booleans must match exactly. The numeric baseline is the reference
amount when the reference calculator produced one, otherwise the
expected amount; the case passes when the percent variance from that
baseline is within tolerance.
"""

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import List, Optional

from calculator.decimal_math import ZERO, percent_difference, percentage, to_decimal
from core.errors import ToleranceExceededError
from evaluation.models import ExpectedResult, FailureType
from models.determination import Determination
from verification.reference_verifier import ReferenceResult


@dataclass(frozen=True)
class ComparisonOutcome:
    passed: bool
    variance: Optional[Decimal]
    baseline: Optional[Decimal] = None
    baseline_source: Optional[str] = None
    failures: List[str] = field(default_factory=list)

    @property
    def failure_type(self) -> FailureType:
        return FailureType.NONE if self.passed else FailureType.ASSERTION

    @property
    def message(self) -> Optional[str]:
        return "; ".join(self.failures) if self.failures else None


VARIANCE_DETAIL = Decimal("0.0001")


def check_tolerance(variance: Decimal, tolerance: Decimal) -> None:
    """
    Compare an unrounded variance against the tolerance.

    Raises:
        ToleranceExceededError: variance is above tolerance. The message
            shows 4 places when 2 would hide the excess.
    """
    tolerance = to_decimal(tolerance)
    if variance > tolerance:
        shown = percentage(variance)
        if shown <= tolerance:
            shown = to_decimal(variance).quantize(VARIANCE_DETAIL, rounding=ROUND_HALF_UP)
        raise ToleranceExceededError(shown, tolerance)


def _expected_amount(determination: Determination, expected: ExpectedResult) -> Optional[Decimal]:
    if determination.annual_credit is not None:
        return expected.annual_credit
    if expected.monthly_benefit is not None:
        return expected.monthly_benefit
    return expected.annual_credit


def compare(
    determination: Determination,
    expected: ExpectedResult,
    tolerance: Decimal,
    reference: Optional[ReferenceResult] = None,
) -> ComparisonOutcome:
    failures: List[str] = []

    if expected.is_eligible is not None and expected.is_eligible != determination.eligible:
        failures.append(f"eligible: expected {expected.is_eligible}, got {determination.eligible}")
    if reference is not None and reference.eligible is not None and reference.eligible != determination.eligible:
        failures.append(f"eligible: reference {reference.eligible}, got {determination.eligible}")

    baseline: Optional[Decimal] = None
    source: Optional[str] = None
    if reference is not None and reference.amount is not None:
        baseline, source = reference.amount, "reference"
    else:
        expected_amount = _expected_amount(determination, expected)
        if expected_amount is not None:
            baseline, source = expected_amount, "expected"

    variance: Optional[Decimal] = None
    if baseline is not None:
        actual = determination.benefit_amount
        exact = percent_difference(actual if actual is not None else ZERO, baseline, rounded=False)
        variance = percentage(exact)
        try:
            check_tolerance(exact, tolerance)
        except ToleranceExceededError as e:
            failures.append(e.message)

    return ComparisonOutcome(
        passed=not failures,
        variance=variance,
        baseline=baseline,
        baseline_source=source,
        failures=failures,
    )
