"""
Typed rule parameters.

Each rule type carries exactly one parameter shape. The shapes form a
discriminated union on ``kind`` so that parameters are validated once,
when a rule is written to the store, and calculators can rely on typed
attributes at evaluation time.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

from core.errors import RuleValidationError
from rules.rule_types import BenefitPeriod, IncomeBasis, RequiredWhen, RuleType, SizeBasis

logger = logging.getLogger(__name__)


class _Parameters(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


def _lookup_by_size(table: Dict[int, Any], size: int) -> tuple:
    """Return (largest key <= size, row), or the smallest row if size is below every key."""
    keys = sorted(table)
    eligible = [k for k in keys if k <= size]
    key = eligible[-1] if eligible else keys[0]
    return key, table[key]


def _non_negative_table(value: Dict[int, Any], field_name: str) -> Dict[int, Any]:
    if not value:
        raise ValueError(f"{field_name} must contain at least one row")
    for size in value:
        if size < 0:
            raise ValueError(f"{field_name} has negative size key {size}")
    return value


# =============================================================================
# INCOME LIMITS
# =============================================================================

class IncomeLimitRow(_Parameters):
    gross_limit: Optional[Decimal] = Field(default=None, ge=0)
    net_limit: Optional[Decimal] = Field(default=None, ge=0)


class IncomeLimitParameters(_Parameters):
    """Gross/net income limits by household size, plus optional asset limits."""

    kind: Literal["income_limit"] = "income_limit"
    period: BenefitPeriod = BenefitPeriod.MONTHLY
    size_basis: SizeBasis = SizeBasis.HOUSEHOLD_SIZE
    limits: Dict[int, IncomeLimitRow]
    additional_member_gross: Decimal = Field(default=Decimal("0"), ge=0)
    additional_member_net: Decimal = Field(default=Decimal("0"), ge=0)
    asset_limit: Optional[Decimal] = Field(default=None, ge=0)
    asset_limit_elderly_disabled: Optional[Decimal] = Field(default=None, ge=0)
    elderly_disabled_exempt_from_gross_test: bool = False

    @field_validator("limits")
    @classmethod
    def validate_limits(cls, v: Dict[int, IncomeLimitRow]) -> Dict[int, IncomeLimitRow]:
        return _non_negative_table(v, "limits")

    def limit_for(self, size: int) -> IncomeLimitRow:
        """Limits for a size, extrapolating past the largest row."""
        key, row = _lookup_by_size(self.limits, size)
        extra = max(0, size - key)
        if extra == 0:
            return row
        return IncomeLimitRow(
            gross_limit=(
                row.gross_limit + self.additional_member_gross * extra
                if row.gross_limit is not None else None
            ),
            net_limit=(
                row.net_limit + self.additional_member_net * extra
                if row.net_limit is not None else None
            ),
        )


# =============================================================================
# DEDUCTIONS
# =============================================================================

class DeductionParameters(_Parameters):
    """
    Deduction schedule applied in fixed order:
    standard -> earned income -> dependent care -> medical -> excess shelter.

    A component is disabled by leaving its amount/rate unset.
    """

    kind: Literal["deduction"] = "deduction"
    standard_by_size: Dict[int, Decimal] = Field(default_factory=dict)
    earned_income_percent: Decimal = Field(default=Decimal("0"), ge=0, le=1)
    earned_income_flat_disregard: Decimal = Field(default=Decimal("0"), ge=0)
    dependent_care_allowed: bool = False
    dependent_care_cap: Optional[Decimal] = Field(default=None, ge=0)
    medical_threshold: Optional[Decimal] = Field(default=None, ge=0)
    medical_elderly_disabled_only: bool = True
    shelter_income_share: Optional[Decimal] = Field(default=None, ge=0, le=1)
    shelter_cap: Optional[Decimal] = Field(default=None, ge=0)
    shelter_cap_exempt_elderly_disabled: bool = True

    @field_validator("standard_by_size")
    @classmethod
    def validate_standard(cls, v: Dict[int, Decimal]) -> Dict[int, Decimal]:
        for size, amount in v.items():
            if size < 1:
                raise ValueError(f"standard_by_size key must be >= 1, got {size}")
            if amount < 0:
                raise ValueError(f"standard deduction for size {size} is negative")
        return v

    def standard_for(self, size: int) -> Decimal:
        if not self.standard_by_size:
            return Decimal("0")
        _, amount = _lookup_by_size(self.standard_by_size, size)
        return amount


# =============================================================================
# ALLOTMENTS / BENEFIT SCHEDULES
# =============================================================================

class AllotmentRow(_Parameters):
    max_benefit: Decimal = Field(ge=0)
    phase_in_rate: Optional[Decimal] = Field(default=None, ge=0, le=1)
    reduction_rate: Optional[Decimal] = Field(default=None, ge=0, le=1)
    reduction_threshold: Optional[Decimal] = Field(default=None, ge=0)


class AllotmentParameters(_Parameters):
    """
    Benefit schedule: maximum benefit by size minus a share of income.

    benefit = min(max_benefit, phase_in_rate * earned)
              - reduction_rate * max(0, income - reduction_threshold)

    Row-level rate/threshold override the schedule defaults.
    """

    kind: Literal["allotment"] = "allotment"
    period: BenefitPeriod = BenefitPeriod.MONTHLY
    size_basis: SizeBasis = SizeBasis.HOUSEHOLD_SIZE
    income_basis: IncomeBasis = IncomeBasis.NET
    rows: Dict[int, AllotmentRow]
    additional_member_amount: Decimal = Field(default=Decimal("0"), ge=0)
    benefit_reduction_rate: Decimal = Field(default=Decimal("0.30"), ge=0, le=1)
    reduction_threshold: Decimal = Field(default=Decimal("0"), ge=0)
    minimum_benefit: Optional[Decimal] = Field(default=None, ge=0)
    minimum_benefit_max_household_size: int = Field(default=2, ge=1)
    minimum_benefit_requires_elderly_disabled: bool = False

    @field_validator("rows")
    @classmethod
    def validate_rows(cls, v: Dict[int, AllotmentRow]) -> Dict[int, AllotmentRow]:
        return _non_negative_table(v, "rows")

    def row_for(self, size: int) -> AllotmentRow:
        key, row = _lookup_by_size(self.rows, size)
        extra = max(0, size - key)
        if extra == 0 or self.additional_member_amount == 0:
            return row
        return row.model_copy(
            update={"max_benefit": row.max_benefit + self.additional_member_amount * extra}
        )


# =============================================================================
# CATEGORICAL ELIGIBILITY
# =============================================================================

class CategoricalEligibilityParameters(_Parameters):
    """Receipt of any qualifying program confers eligibility."""

    kind: Literal["categorical_eligibility"] = "categorical_eligibility"
    qualifying_programs: List[str] = Field(min_length=1)
    bypass_income_tests: bool = True
    bypass_asset_test: bool = True
    description: str = ""

    @field_validator("qualifying_programs")
    @classmethod
    def normalize_programs(cls, v: List[str]) -> List[str]:
        return [p.strip().upper() for p in v if p.strip()]


# =============================================================================
# DOCUMENT REQUIREMENTS
# =============================================================================

class DocumentRequirementItem(_Parameters):
    document_type: str
    description: str = ""
    required_when: RequiredWhen = RequiredWhen.ALWAYS
    acceptable_documents: List[str] = Field(default_factory=list)
    validity_days: Optional[int] = Field(default=None, gt=0)


class DocumentRequirementParameters(_Parameters):
    kind: Literal["document_requirement"] = "document_requirement"
    requirements: List[DocumentRequirementItem] = Field(min_length=1)


RuleParameters = Annotated[
    Union[
        IncomeLimitParameters,
        DeductionParameters,
        AllotmentParameters,
        CategoricalEligibilityParameters,
        DocumentRequirementParameters,
    ],
    Field(discriminator="kind"),
]

_PARAMETERS_ADAPTER = TypeAdapter(RuleParameters)


def parse_parameters(rule_type: Union[RuleType, str], data: Dict[str, Any]) -> RuleParameters:
    """
    Validate raw parameters for a rule type.

    The ``kind`` tag defaults to the rule type; a conflicting tag is an error.

    Raises:
        RuleValidationError: If the parameters do not match the rule type's shape.
    """
    rule_type = RuleType(rule_type)
    if not isinstance(data, dict):
        raise RuleValidationError(f"Parameters for {rule_type.value} must be an object")

    payload = dict(data)
    kind = payload.setdefault("kind", rule_type.value)
    if kind != rule_type.value:
        raise RuleValidationError(
            f"Parameter kind '{kind}' does not match rule type '{rule_type.value}'",
            {"kind": kind, "rule_type": rule_type.value},
        )

    try:
        return _PARAMETERS_ADAPTER.validate_python(payload)
    except ValidationError as e:
        errors = [
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        ]
        logger.info(f"Rejected {rule_type.value} parameters: {errors}")
        raise RuleValidationError(
            f"Invalid {rule_type.value} parameters",
            {"errors": errors},
        ) from e


def dump_parameters(parameters: RuleParameters) -> Dict[str, Any]:
    """JSON-safe representation for persistence."""
    return parameters.model_dump(mode="json")
