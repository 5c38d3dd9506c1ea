from __future__ import annotations

import logging
from datetime import date
from typing import Any, Dict, List, Optional, Union

from calculator.programs import ProgramRegistry
from core.errors import InvalidInputError, RuleNotFoundError
from models.determination import Determination
from models.household import HouseholdProfile, coerce_household, household_flags
from rules.rule_parameters import DocumentRequirementParameters
from rules.rule_store import RuleStore
from rules.rule_types import RuleType

logger = logging.getLogger(__name__)


class RulesEngine:
    """
    Benefit determination engine.

    Resolves the rules effective for a program, jurisdiction and date
    from the RuleStore and hands them to the program's calculator.
    Evaluation has no side effects, so one engine is shared across
    harness worker threads.
    """

    def __init__(self, rule_store: RuleStore):
        self.rule_store = rule_store

    def _calculator(self, program: str):
        calculator = ProgramRegistry.get_calculator(program) if isinstance(program, str) else None
        if calculator is None:
            raise InvalidInputError(
                f"Unknown program: {program}",
                [f"program must be one of {', '.join(ProgramRegistry.get_supported_programs())}"],
            )
        return calculator

    def evaluate(
        self,
        program: str,
        household: Union[HouseholdProfile, Dict[str, Any]],
        as_of_date: Optional[date] = None,
    ) -> Determination:
        """
        Determine eligibility and benefit for a household.

        Raises:
            InvalidInputError: Malformed household or unknown program.
            RuleNotFoundError: A required rule type has no effective version.
        """
        calculator = self._calculator(program)
        profile = coerce_household(household)
        as_of = as_of_date or date.today()

        ruleset = self.rule_store.resolve_ruleset(calculator.program_code, profile.jurisdiction, as_of)
        for rule_type in calculator.required_rule_types:
            ruleset.require(rule_type)

        determination = calculator.calculate(profile, ruleset)
        logger.debug(
            f"{calculator.program_code} determination for {profile.jurisdiction} as of {as_of}: "
            f"eligible={determination.eligible} amount={determination.benefit_amount}",
            extra={"applied_rules": determination.applied_rules},
        )
        return determination

    def document_checklist(
        self,
        program: str,
        household: Union[HouseholdProfile, Dict[str, Any]],
        as_of_date: Optional[date] = None,
    ) -> Dict[str, Any]:
        """
        Documents an applicant must provide, given the household's situation.

        Raises:
            RuleNotFoundError: No document requirement rule is in effect.
        """
        calculator = self._calculator(program)
        profile = coerce_household(household)
        as_of = as_of_date or date.today()

        rule = self.rule_store.resolve(
            calculator.program_code, RuleType.DOCUMENT_REQUIREMENT, profile.jurisdiction, as_of
        )
        if rule is None:
            raise RuleNotFoundError(
                calculator.program_code, RuleType.DOCUMENT_REQUIREMENT.value, profile.jurisdiction, as_of
            )

        params: DocumentRequirementParameters = rule.parameters
        flags = household_flags(profile)
        documents: List[Dict[str, Any]] = []
        for item in params.requirements:
            if not flags.get(item.required_when.value, False):
                continue
            documents.append({
                "document_type": item.document_type,
                "description": item.description,
                "required_when": item.required_when.value,
                "acceptable_documents": list(item.acceptable_documents),
                "validity_days": item.validity_days,
            })

        return {
            "program": calculator.program_code,
            "jurisdiction": profile.jurisdiction,
            "as_of_date": as_of.isoformat(),
            "rule_id": rule.id,
            "documents": documents,
        }
