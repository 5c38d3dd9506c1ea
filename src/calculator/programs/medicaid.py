"""Medicaid eligibility calculator."""

from __future__ import annotations

from calculator.programs.base_program_calculator import BaseProgramCalculator, CalculationContext
from calculator.programs.program_registry import register_program
from rules.rule_types import RuleType


@register_program("MEDICAID")
class MedicaidCalculator(BaseProgramCalculator):
    """Eligibility only: income against the FPL-based limit, no benefit amount."""

    program_code = "MEDICAID"
    required_rule_types = (RuleType.INCOME_LIMIT,)
    pays_benefit = False

    def pre_checks(self, ctx: CalculationContext) -> None:
        ctx.notes.append("Eligibility determination only; coverage has no cash value")
