"""Temporary Assistance for Needy Families (TANF) calculator."""

from __future__ import annotations

from calculator.programs.base_program_calculator import BaseProgramCalculator, CalculationContext
from calculator.programs.program_registry import register_program
from rules.rule_types import RuleType


@register_program("TANF")
class TANFCalculator(BaseProgramCalculator):
    """
    Monthly cash assistance: payment standard minus countable income.

    Countable income is gross income after the earned income disregard
    from the deduction rule. A household whose countable income reaches
    the payment standard receives nothing and is ineligible.
    """

    program_code = "TANF"
    required_rule_types = (RuleType.INCOME_LIMIT, RuleType.DEDUCTION, RuleType.ALLOTMENT)
    zero_benefit_ineligible = True
    zero_benefit_reason = "Countable income meets or exceeds the payment standard"

    def pre_checks(self, ctx: CalculationContext) -> None:
        if not any(m.is_qualifying_child or m.is_pregnant for m in ctx.household.members):
            if ctx.household.members:
                ctx.reasons.append("No dependent child or pregnant member in household")
