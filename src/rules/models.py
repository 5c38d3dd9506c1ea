"""
Rule domain models.

Rule is the read model handed to calculators and API callers; RuleDraft
is the authoring input accepted by the RuleStore. RuleSet bundles the
rules effective for one (program, jurisdiction, date).
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from core.errors import RuleNotFoundError
from rules.rule_parameters import RuleParameters
from rules.rule_types import RuleStatus, RuleType


class Rule(BaseModel):
    """A single codified, effective-dated rule version."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: str
    program_code: str
    rule_type: RuleType
    jurisdiction: str
    parameters: RuleParameters
    effective_date: date
    expiration_date: Optional[date] = None
    source_citation: str = ""
    description: str = ""
    status: RuleStatus = RuleStatus.DRAFT
    version: int = 1
    lineage_id: str
    supersedes_id: Optional[str] = None
    depends_on: List[str] = Field(default_factory=list, description="Lineage ids this rule depends on")
    ontology_terms: List[str] = Field(default_factory=list)
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None

    def is_effective_on(self, as_of: date) -> bool:
        """True when as_of falls inside [effective_date, expiration_date)."""
        if as_of < self.effective_date:
            return False
        return self.expiration_date is None or as_of < self.expiration_date

    @property
    def key(self) -> tuple:
        return (self.program_code, self.rule_type.value, self.jurisdiction)


class RuleDraft(BaseModel):
    """Authoring input for a new rule."""

    program_code: str
    rule_type: RuleType
    jurisdiction: str = "US"
    parameters: Dict[str, Any]
    effective_date: date
    expiration_date: Optional[date] = None
    source_citation: str = ""
    description: str = ""
    depends_on: List[str] = Field(default_factory=list, description="Rule ids this rule depends on")
    ontology_terms: List[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_dates(self) -> "RuleDraft":
        if self.expiration_date is not None and self.expiration_date <= self.effective_date:
            raise ValueError("expiration_date must be after effective_date")
        self.program_code = self.program_code.upper()
        self.jurisdiction = self.jurisdiction.upper()
        return self


class RuleAmendment(BaseModel):
    """Replacement parameters applied when a mapping approval supersedes a rule."""

    parameters: Dict[str, Any]
    effective_date: date
    expiration_date: Optional[date] = None
    source_citation: Optional[str] = None
    description: Optional[str] = None


@dataclass
class RuleSet:
    """Rules effective for one program/jurisdiction on a given date."""

    program_code: str
    jurisdiction: str
    as_of_date: date
    rules: Dict[RuleType, Rule] = field(default_factory=dict)

    def get(self, rule_type: RuleType) -> Optional[Rule]:
        return self.rules.get(rule_type)

    def require(self, rule_type: RuleType) -> Rule:
        """Return the rule of this type or raise RuleNotFoundError."""
        rule = self.rules.get(rule_type)
        if rule is None:
            raise RuleNotFoundError(
                self.program_code, rule_type.value, self.jurisdiction, self.as_of_date
            )
        return rule

    @property
    def rule_ids(self) -> List[str]:
        return [r.id for r in self.rules.values()]
