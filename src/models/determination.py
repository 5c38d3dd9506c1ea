"""
Determination output model.

A Determination carries no wall-clock timestamps, so evaluating the same
household against the same rules twice yields identical serializations.
"""

from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class Determination(BaseModel):
    """Eligibility and benefit result for one household and program."""

    model_config = ConfigDict(frozen=True)

    program: str
    jurisdiction: str
    as_of_date: date
    eligible: bool
    monthly_benefit: Optional[Decimal] = Field(default=None, description="Whole-unit monthly amount")
    annual_credit: Optional[Decimal] = Field(default=None, description="Whole-unit annual credit")
    applied_rules: List[str] = Field(default_factory=list)
    intermediate_values: Dict[str, Decimal] = Field(default_factory=dict)
    ineligibility_reasons: List[str] = Field(default_factory=list)
    notes: List[str] = Field(default_factory=list)
    calculation_breakdown: List[Dict[str, Any]] = Field(default_factory=list)

    @property
    def benefit_amount(self) -> Optional[Decimal]:
        """Monthly benefit, or the annual credit for credit programs."""
        if self.monthly_benefit is not None:
            return self.monthly_benefit
        return self.annual_credit

    def to_api_dict(self) -> Dict[str, Any]:
        """Wire representation with camelCase keys."""
        def num(value: Optional[Decimal]) -> Optional[float]:
            return float(value) if value is not None else None

        payload: Dict[str, Any] = {
            "program": self.program,
            "jurisdiction": self.jurisdiction,
            "asOfDate": self.as_of_date.isoformat(),
            "eligible": self.eligible,
            "appliedRules": list(self.applied_rules),
            "intermediateValues": {k: num(v) for k, v in self.intermediate_values.items()},
            "ineligibilityReasons": list(self.ineligibility_reasons),
            "notes": list(self.notes),
            "calculationBreakdown": [
                {k: (num(v) if isinstance(v, Decimal) else v) for k, v in step.items()}
                for step in self.calculation_breakdown
            ],
        }
        if self.monthly_benefit is not None:
            payload["monthlyBenefit"] = num(self.monthly_benefit)
        if self.annual_credit is not None:
            payload["annualCredit"] = num(self.annual_credit)
        return payload
