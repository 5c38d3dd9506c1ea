"""Earned Income Tax Credit (EITC) calculator."""

from __future__ import annotations

from calculator.programs.base_program_calculator import BaseProgramCalculator, CalculationContext
from calculator.programs.program_registry import register_program
from rules.rule_types import RuleType


@register_program("EITC")
class EITCCalculator(BaseProgramCalculator):
    """
    Annual credit by number of qualifying children.

    credit = min(max_credit, phase_in_rate * earned)
             - phase_out_rate * max(0, earned - phase_out_start)

    Monthly earnings are annualized before the schedule is applied.
    """

    program_code = "EITC"
    required_rule_types = (RuleType.ALLOTMENT,)
    zero_benefit_ineligible = True
    zero_benefit_reason = "Earned income is outside the credit range"

    def pre_checks(self, ctx: CalculationContext) -> None:
        if ctx.household.earned_total <= 0:
            ctx.reasons.append("No earned income")
        ctx.notes.append(f"Qualifying children: {min(ctx.household.qualifying_children, 3)}")
