"""Supplemental Nutrition Assistance Program (SNAP) calculator."""

from __future__ import annotations

from calculator.programs.base_program_calculator import BaseProgramCalculator
from calculator.programs.program_registry import register_program
from rules.rule_types import RuleType


@register_program("SNAP")
class SNAPCalculator(BaseProgramCalculator):
    """
    Monthly SNAP allotment.

    Gross and net income tests against the household-size limits,
    elderly/disabled households exempt from the gross test, then
    allotment = max allotment - 30% of net income.
    """

    program_code = "SNAP"
    required_rule_types = (RuleType.INCOME_LIMIT, RuleType.DEDUCTION, RuleType.ALLOTMENT)
