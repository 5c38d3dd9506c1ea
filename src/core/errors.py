"""
Domain error taxonomy.

Every error raised by the rules engine, the evaluation harness and the
provision pipeline derives from BenefitRulesError so the HTTP layer and
the background workers can translate them uniformly.
"""

from typing import Any, Dict, List, Optional


class BenefitRulesError(Exception):
    """Base class for all platform errors."""

    code: str = "benefit_rules_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for API error responses."""
        payload: Dict[str, Any] = {"error": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class InvalidInputError(BenefitRulesError):
    """Malformed household or program input, rejected before calculation."""

    code = "invalid_input"

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        super().__init__(message, {"errors": errors} if errors else None)
        self.errors = errors or []


class NotFoundError(BenefitRulesError):
    """A requested record does not exist."""

    code = "not_found"

    def __init__(self, entity: str, identifier: str):
        super().__init__(f"{entity} not found: {identifier}", {"entity": entity, "id": identifier})
        self.entity = entity
        self.identifier = identifier


class RuleNotFoundError(BenefitRulesError):
    """No effective rule for the requested program, jurisdiction and date."""

    code = "rule_not_found"

    def __init__(self, program_code: str, rule_type: str, jurisdiction: str, as_of_date: Any):
        super().__init__(
            f"No effective {rule_type} rule for {program_code} in {jurisdiction} as of {as_of_date}",
            {
                "program": program_code,
                "rule_type": rule_type,
                "jurisdiction": jurisdiction,
                "as_of_date": str(as_of_date),
            },
        )
        self.program_code = program_code
        self.rule_type = rule_type
        self.jurisdiction = jurisdiction
        self.as_of_date = as_of_date


class RuleValidationError(BenefitRulesError):
    """Rule parameters or dependencies are invalid at authoring time."""

    code = "rule_validation_failed"


class DependencyCycleError(RuleValidationError):
    """Adding a dependency edge would create a cycle."""

    code = "dependency_cycle"

    def __init__(self, cycle: List[str]):
        super().__init__(
            f"Rule dependency cycle detected: {' -> '.join(cycle)}",
            {"cycle": cycle},
        )
        self.cycle = cycle


class RuleConflictError(BenefitRulesError):
    """Approving a rule would violate the effective-date invariant."""

    code = "rule_conflict"


class ReferenceVerificationError(BenefitRulesError):
    """The external reference calculator returned an unusable response."""

    code = "reference_verification_failed"


class ReferenceTimeoutError(ReferenceVerificationError):
    """The external reference calculator did not respond in time."""

    code = "reference_timeout"

    def __init__(self, message: str, attempts: int = 1):
        super().__init__(message, {"attempts": attempts})
        self.attempts = attempts


class ToleranceExceededError(BenefitRulesError):
    """
    A test case produced a variance above its tolerance.

    This is an assertion outcome, not an execution failure; the harness
    records it as a failed result with failure_type "assertion".
    """

    code = "tolerance_exceeded"

    def __init__(self, variance: Any, tolerance: Any):
        super().__init__(
            f"Variance {variance}% exceeds tolerance {tolerance}%",
            {"variance": str(variance), "tolerance": str(tolerance)},
        )
        self.variance = variance
        self.tolerance = tolerance


class MappingStateError(BenefitRulesError):
    """Invalid review transition on a provision mapping."""

    code = "mapping_state_error"

    def __init__(self, message: str, current_status: str, target_status: str):
        super().__init__(
            message,
            {"current_status": current_status, "target_status": target_status},
        )
        self.current_status = current_status
        self.target_status = target_status
