"""Household input and determination output models."""

from .household import (
    HouseholdMember,
    IncomeSources,
    HouseholdExpenses,
    HouseholdProfile,
    coerce_household,
)
from .determination import Determination

__all__ = [
    "HouseholdMember",
    "IncomeSources",
    "HouseholdExpenses",
    "HouseholdProfile",
    "coerce_household",
    "Determination",
]
