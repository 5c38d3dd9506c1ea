"""
PolicyEngine household calculation client.

Posts a household to the PolicyEngine REST API and reads the computed
program values back out of the returned entity structure. PolicyEngine
works in annual amounts keyed by period year:

    {"spm_units": {"spm_unit": {"snap": {"2025": 3264.0}}}}
"""

import logging
from decimal import Decimal
from typing import Any, Dict, Optional

import httpx

from config.settings import ReferenceSettings, get_settings
from core.errors import ReferenceTimeoutError, ReferenceVerificationError
from middleware.correlation import propagate_correlation_headers
from models.household import HouseholdProfile
from resilience import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerOpen,
    RetryConfig,
    RetryExhausted,
    call_with_retry,
    get_circuit_breaker_registry,
)

logger = logging.getLogger(__name__)

ADULT_AGE = 18

# program -> (entity group, entity name, variable)
PROGRAM_VARIABLES = {
    "SNAP": ("spm_units", "spm_unit", "snap"),
    "TANF": ("spm_units", "spm_unit", "tanf"),
    "EITC": ("tax_units", "tax_unit", "eitc"),
    "MEDICAID": ("people", "member_0", "medicaid"),
}


class PolicyEngineClient:
    """Synchronous PolicyEngine client with bounded timeout, retry and circuit breaker."""

    def __init__(
        self,
        settings: Optional[ReferenceSettings] = None,
        http_client: Optional[httpx.Client] = None,
        breaker: Optional[CircuitBreaker] = None,
    ):
        app_settings = get_settings()
        self.settings = settings or app_settings.reference
        self._http_client = http_client
        self._owns_client = http_client is None
        self.breaker = breaker or get_circuit_breaker_registry().get(
            "policyengine",
            CircuitBreakerConfig.from_settings(app_settings.resilience),
        )
        self.retry_config = RetryConfig.from_settings(
            app_settings.resilience,
            max_attempts=self.settings.max_attempts,
            base_delay=self.settings.retry_base_delay,
            retryable_exceptions=(httpx.TimeoutException, httpx.ConnectError),
        )

    @property
    def url(self) -> str:
        return f"{self.settings.base_url.rstrip('/')}/{self.settings.country}/calculate"

    @property
    def http_client(self) -> httpx.Client:
        if self._http_client is None:
            self._http_client = httpx.Client(
                timeout=httpx.Timeout(
                    self.settings.timeout_seconds,
                    connect=self.settings.connect_timeout_seconds,
                ),
                headers={"Content-Type": "application/json"},
            )
        return self._http_client

    def close(self) -> None:
        if self._http_client is not None and self._owns_client:
            self._http_client.close()
            self._http_client = None

    # =========================================================================
    # PAYLOAD
    # =========================================================================

    def build_payload(self, household: HouseholdProfile, year: int) -> Dict[str, Any]:
        """
        PolicyEngine situation for a household.

        Members beyond those listed are filled in as working-age adults.
        Monthly amounts are annualized.
        """
        period = str(year)
        ages = [m.age for m in household.members]
        ages += [30] * (household.size - len(ages))
        disabled = [m.is_disabled for m in household.members] + [False] * (household.size - len(household.members))

        adult_ids = [f"member_{i}" for i, age in enumerate(ages) if age >= ADULT_AGE] or ["member_0"]
        annual_earned = household.income.earned * 12
        earned_share = annual_earned / len(adult_ids)

        people: Dict[str, Dict[str, Any]] = {}
        for i, age in enumerate(ages):
            person_id = f"member_{i}"
            person: Dict[str, Any] = {"age": {period: age}}
            if disabled[i]:
                person["is_disabled"] = {period: True}
            if person_id in adult_ids and annual_earned > 0:
                person["employment_income"] = {period: float(earned_share)}
            people[person_id] = person

        first_adult = people[adult_ids[0]]
        if household.income.self_employment > 0:
            first_adult["self_employment_income"] = {period: float(household.income.self_employment * 12)}
        if household.income.unearned > 0:
            first_adult["interest_income"] = {period: float(household.income.unearned * 12)}
        people["member_0"]["medicaid"] = {period: None}

        members = list(people)
        household_entity: Dict[str, Any] = {
            "members": members,
            "state_name": {period: household.jurisdiction if household.jurisdiction != "US" else self.settings.state_code},
        }
        annual_expenses = {
            "housing_cost": household.expenses.shelter,
            "utility_cost": household.expenses.utilities,
            "medical_out_of_pocket_expenses": household.expenses.medical,
            "childcare_expenses": household.expenses.dependent_care,
        }
        for variable, monthly in annual_expenses.items():
            if monthly > 0:
                household_entity[variable] = {period: float(monthly * 12)}
        if household.assets > 0:
            household_entity["household_assets"] = {period: float(household.assets)}

        adults = len(adult_ids)
        return {
            "household": {
                "people": people,
                "households": {"household": household_entity},
                "tax_units": {
                    "tax_unit": {
                        "members": members,
                        "filing_status": {period: "JOINT" if adults > 1 else "SINGLE"},
                        "eitc": {period: None},
                    }
                },
                "families": {"family": {"members": members}},
                "spm_units": {
                    "spm_unit": {
                        "members": members,
                        "snap": {period: None},
                        "tanf": {period: None},
                    }
                },
            }
        }

    # =========================================================================
    # TRANSPORT
    # =========================================================================

    def _post(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        response = self.http_client.post(
            self.url, json=payload, headers=propagate_correlation_headers()
        )
        if response.status_code >= 400:
            raise ReferenceVerificationError(
                f"Reference calculator returned HTTP {response.status_code}",
                {"status_code": response.status_code, "body": response.text[:500]},
            )
        try:
            body = response.json()
        except ValueError as e:
            raise ReferenceVerificationError("Reference calculator returned invalid JSON") from e
        result = body.get("result", body) if isinstance(body, dict) else None
        if not isinstance(result, dict):
            raise ReferenceVerificationError("Reference calculator returned an unexpected response")
        return result

    def calculate(self, household: HouseholdProfile, year: int) -> Dict[str, Any]:
        """
        Run the reference calculation.

        Raises:
            ReferenceTimeoutError: Every attempt timed out.
            ReferenceVerificationError: Error response, unreachable service
                or open circuit.
        """
        payload = self.build_payload(household, year)
        try:
            return self.breaker.call(call_with_retry, self._post, self.retry_config, payload)
        except CircuitBreakerOpen as e:
            raise ReferenceVerificationError(
                f"Reference calculator unavailable; retry in {e.time_remaining:.0f}s",
                {"circuit": e.circuit_name},
            ) from e
        except RetryExhausted as e:
            if isinstance(e.last_exception, httpx.TimeoutException):
                logger.warning(f"Reference calculation timed out after {e.attempts} attempts")
                raise ReferenceTimeoutError(
                    f"Reference calculator timed out after {e.attempts} attempts",
                    attempts=e.attempts,
                ) from e
            raise ReferenceVerificationError(
                f"Reference calculator unreachable: {e.last_exception}",
                {"attempts": e.attempts},
            ) from e

    @staticmethod
    def extract(data: Dict[str, Any], program: str, year: int) -> Any:
        """Computed value of a program's variable, or None when absent."""
        entity_type, entity_name, variable = PROGRAM_VARIABLES[program]
        value = data.get(entity_type, {}).get(entity_name, {}).get(variable)
        if isinstance(value, dict):
            value = value.get(str(year))
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return Decimal(str(value))
        return value
