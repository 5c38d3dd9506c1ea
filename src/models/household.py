"""
Household input model.

A HouseholdProfile is the immutable input to every program calculator.
All monetary amounts are monthly Decimal values.
"""

from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from core.errors import InvalidInputError


ELDERLY_AGE = 60
CHILD_AGE_LIMIT = 19


class HouseholdMember(BaseModel):
    """
    One person in the household.

    is_elderly and is_qualifying_child are derived from age when not given.
    """

    model_config = ConfigDict(frozen=True)

    age: int = Field(ge=0, le=130)
    is_elderly: Optional[bool] = None
    is_disabled: bool = False
    is_pregnant: bool = False
    is_qualifying_child: Optional[bool] = None

    @model_validator(mode="after")
    def derive_flags(self) -> "HouseholdMember":
        # frozen model: assign derived values through __dict__
        if self.is_elderly is None:
            self.__dict__["is_elderly"] = self.age >= ELDERLY_AGE
        if self.is_qualifying_child is None:
            self.__dict__["is_qualifying_child"] = self.age < CHILD_AGE_LIMIT
        return self

    @property
    def is_elderly_or_disabled(self) -> bool:
        return bool(self.is_elderly) or self.is_disabled


class IncomeSources(BaseModel):
    """Monthly income by source."""

    model_config = ConfigDict(frozen=True)

    earned: Decimal = Field(default=Decimal("0"), ge=0, description="Wages and salaries")
    unearned: Decimal = Field(default=Decimal("0"), ge=0, description="Benefits, support, pensions")
    self_employment: Decimal = Field(default=Decimal("0"), ge=0, description="Net self-employment income")

    @property
    def total(self) -> Decimal:
        return self.earned + self.unearned + self.self_employment


class HouseholdExpenses(BaseModel):
    """Monthly expenses that feed the deduction schedule."""

    model_config = ConfigDict(frozen=True)

    shelter: Decimal = Field(default=Decimal("0"), ge=0, description="Rent or mortgage, taxes, insurance")
    utilities: Decimal = Field(default=Decimal("0"), ge=0)
    medical: Decimal = Field(default=Decimal("0"), ge=0)
    dependent_care: Decimal = Field(default=Decimal("0"), ge=0)


class HouseholdProfile(BaseModel):
    """Household attributes used for a benefit determination."""

    model_config = ConfigDict(frozen=True)

    size: int = Field(ge=1, le=30)
    members: List[HouseholdMember] = Field(default_factory=list)
    income: IncomeSources = Field(default_factory=IncomeSources)
    expenses: HouseholdExpenses = Field(default_factory=HouseholdExpenses)
    assets: Decimal = Field(default=Decimal("0"), ge=0)
    jurisdiction: str = "MD"
    receives_programs: List[str] = Field(default_factory=list)

    @field_validator("jurisdiction")
    @classmethod
    def normalize_jurisdiction(cls, v: str) -> str:
        v = v.strip().upper()
        if not v:
            raise ValueError("jurisdiction must not be empty")
        return v

    @field_validator("receives_programs")
    @classmethod
    def normalize_programs(cls, v: List[str]) -> List[str]:
        return sorted({p.strip().upper() for p in v if p and p.strip()})

    @model_validator(mode="after")
    def validate_members(self) -> "HouseholdProfile":
        if len(self.members) > self.size:
            raise ValueError(
                f"household lists {len(self.members)} members but size is {self.size}"
            )
        return self

    @property
    def gross_income(self) -> Decimal:
        return self.income.total

    @property
    def earned_total(self) -> Decimal:
        """Earned income including net self-employment."""
        return self.income.earned + self.income.self_employment

    @property
    def has_elderly_or_disabled(self) -> bool:
        return any(m.is_elderly_or_disabled for m in self.members)

    @property
    def qualifying_children(self) -> int:
        return sum(1 for m in self.members if m.is_qualifying_child)

    def receives_any(self, programs: List[str]) -> List[str]:
        """Programs from the list that the household already receives."""
        wanted = {p.upper() for p in programs}
        return [p for p in self.receives_programs if p in wanted]


def coerce_household(data: Any) -> HouseholdProfile:
    """
    Build a HouseholdProfile from a dict or pass one through.

    Raises:
        InvalidInputError: With one message per validation failure.
    """
    if isinstance(data, HouseholdProfile):
        return data
    if not isinstance(data, dict):
        raise InvalidInputError("Household must be an object")
    try:
        return HouseholdProfile.model_validate(data)
    except ValidationError as e:
        errors = [
            f"{'.'.join(str(p) for p in err['loc']) or 'household'}: {err['msg']}"
            for err in e.errors()
        ]
        raise InvalidInputError("Invalid household input", errors) from e


def household_flags(household: HouseholdProfile) -> Dict[str, bool]:
    """Conditions referenced by document requirements."""
    return {
        "always": True,
        "has_earned_income": household.income.earned > 0,
        "has_unearned_income": household.income.unearned > 0,
        "has_self_employment": household.income.self_employment > 0,
        "has_dependent_care": household.expenses.dependent_care > 0,
        "has_medical_expenses": household.expenses.medical > 0,
        "has_shelter_costs": (household.expenses.shelter + household.expenses.utilities) > 0,
        "has_assets": household.assets > 0,
        "has_elderly_or_disabled": household.has_elderly_or_disabled,
    }
