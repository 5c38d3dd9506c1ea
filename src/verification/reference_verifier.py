"""
Reference verification.

Turns a PolicyEngine calculation into the same units the rules engine
reports: monthly whole-unit benefits for SNAP and TANF, an annual credit
for EITC, and eligibility only for Medicaid.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Optional, Union

from calculator.decimal_math import MONTHS_PER_YEAR, divide, whole_units
from core.errors import InvalidInputError, ReferenceVerificationError
from models.household import HouseholdProfile, coerce_household
from verification.policy_engine_client import PROGRAM_VARIABLES, PolicyEngineClient

logger = logging.getLogger(__name__)

MONTHLY_PROGRAMS = {"SNAP", "TANF"}


@dataclass(frozen=True)
class ReferenceResult:
    """Reference calculator outcome in engine units."""

    program: str
    eligible: Optional[bool]
    amount: Optional[Decimal]
    period: str
    raw_value: Any = None
    source: str = "policyengine"
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "program": self.program,
            "eligible": self.eligible,
            "amount": str(self.amount) if self.amount is not None else None,
            "period": self.period,
            "source": self.source,
        }


class ReferenceVerifier:
    """Cross-checks determinations against the reference calculator."""

    def __init__(self, client: Optional[PolicyEngineClient] = None):
        self._client = client

    @property
    def client(self) -> PolicyEngineClient:
        if self._client is None:
            self._client = PolicyEngineClient()
        return self._client

    @staticmethod
    def supports(program: str) -> bool:
        return (program or "").upper() in PROGRAM_VARIABLES

    def verify(
        self,
        program: str,
        household: Union[HouseholdProfile, Dict[str, Any]],
        as_of_date: Optional[date] = None,
    ) -> ReferenceResult:
        """
        Raises:
            InvalidInputError: Program has no reference mapping.
            ReferenceTimeoutError: Reference calculator timed out.
            ReferenceVerificationError: Unusable reference response.
        """
        code = (program or "").upper()
        if not self.supports(code):
            raise InvalidInputError(f"No reference calculation for program {program}")
        profile = coerce_household(household)
        year = (as_of_date or date.today()).year

        data = self.client.calculate(profile, year)
        value = PolicyEngineClient.extract(data, code, year)
        if value is None:
            raise ReferenceVerificationError(
                f"Reference response has no {code} value for {year}",
                {"program": code, "year": year},
            )

        if code == "MEDICAID":
            eligible = bool(value) if isinstance(value, bool) else value > 0
            result = ReferenceResult(program=code, eligible=eligible, amount=None,
                                     period="none", raw_value=value)
        elif code in MONTHLY_PROGRAMS:
            monthly = whole_units(divide(value, MONTHS_PER_YEAR))
            result = ReferenceResult(program=code, eligible=monthly > 0, amount=monthly,
                                     period="monthly", raw_value=value)
        else:
            annual = whole_units(value)
            result = ReferenceResult(program=code, eligible=annual > 0, amount=annual,
                                     period="annual", raw_value=value)

        logger.debug(f"Reference {code} for {profile.jurisdiction} {year}: {result.amount}")
        return result
