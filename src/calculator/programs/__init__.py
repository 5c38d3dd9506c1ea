"""
Benefit program calculators.

Importing this package registers every calculator with ProgramRegistry.
"""

from calculator.programs.base_program_calculator import BaseProgramCalculator, CalculationContext
from calculator.programs.program_registry import ProgramRegistry, register_program
from calculator.programs import snap, tanf, medicaid, eitc  # noqa: F401

__all__ = [
    "BaseProgramCalculator",
    "CalculationContext",
    "ProgramRegistry",
    "register_program",
]
