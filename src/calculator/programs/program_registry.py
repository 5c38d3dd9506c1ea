"""Program calculator registry for dynamic lookup."""

from __future__ import annotations

from typing import Callable, Dict, List, Optional, Type

from calculator.programs.base_program_calculator import BaseProgramCalculator


class ProgramRegistry:
    """
    Registry for benefit program calculators.

    Calculators register themselves by program code with the
    ``register_program`` decorator.
    """

    # Storage: program_code -> calculator_class
    _calculators: Dict[str, Type[BaseProgramCalculator]] = {}

    @classmethod
    def register(cls, program_code: str, calculator_class: Type[BaseProgramCalculator]) -> None:
        """
        Register a calculator for a program.

        Args:
            program_code: Program code (e.g., "SNAP", "EITC")
            calculator_class: The calculator class to register
        """
        cls._calculators[program_code.upper()] = calculator_class

    @classmethod
    def get_calculator(cls, program_code: str) -> Optional[BaseProgramCalculator]:
        """
        Get calculator instance for a program.

        Returns:
            Calculator instance or None if the program is not supported
        """
        calculator_class = cls._calculators.get((program_code or "").upper())
        if not calculator_class:
            return None
        return calculator_class()

    @classmethod
    def get_supported_programs(cls) -> List[str]:
        """Sorted list of registered program codes."""
        return sorted(cls._calculators)

    @classmethod
    def is_supported(cls, program_code: str) -> bool:
        return (program_code or "").upper() in cls._calculators


def register_program(program_code: str) -> Callable:
    """
    Decorator to register a program calculator.

    Usage:
        @register_program("SNAP")
        class SNAPCalculator(BaseProgramCalculator):
            ...
    """
    def decorator(cls: Type[BaseProgramCalculator]) -> Type[BaseProgramCalculator]:
        ProgramRegistry.register(program_code, cls)
        return cls
    return decorator
