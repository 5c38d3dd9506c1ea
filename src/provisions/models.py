"""
Provision-impact models.

Legislative provisions are mapped to ontology terms and rules; a mapping
moves through human review (pending -> approved | rejected) and an
approval creates re-verification obligations for every affected rule.
"""

from datetime import date, datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from rules.models import Rule, RuleAmendment


class MappingType(str, Enum):
    AMENDS = "amends"
    SUPERSEDES = "supersedes"
    ADDS_EXCEPTION = "adds_exception"
    MODIFIES_THRESHOLD = "modifies_threshold"
    CLARIFIES = "clarifies"
    REMOVES = "removes"
    CREATES = "creates"


class MatchMethod(str, Enum):
    CITATION_MATCH = "citation_match"
    SEMANTIC_SIMILARITY = "semantic_similarity"
    AI_PROPOSED = "ai_proposed"
    MANUAL = "manual"


class ReviewStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class PriorityLevel(str, Enum):
    URGENT = "urgent"
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"

    @property
    def rank(self) -> int:
        """Higher is more urgent."""
        return PRIORITY_RANK[self]


PRIORITY_RANK: Dict[PriorityLevel, int] = {
    PriorityLevel.URGENT: 3,
    PriorityLevel.HIGH: 2,
    PriorityLevel.NORMAL: 1,
    PriorityLevel.LOW: 0,
}


class ObligationStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    VERIFIED = "verified"
    FAILED = "failed"


# =============================================================================
# PROVISIONS AND TERMS
# =============================================================================

class ProvisionCreate(BaseModel):
    """A provision as extracted from a public law."""

    public_law_id: str = Field(min_length=1, max_length=64)
    section_number: str = Field(min_length=1, max_length=64)
    section_title: Optional[str] = None
    provision_type: str = "amendment"
    provision_text: str = Field(min_length=1)
    provision_summary: Optional[str] = None
    us_code_citation: Optional[str] = None
    affected_programs: List[str] = Field(default_factory=list)
    effective_date: Optional[date] = None

    @field_validator("affected_programs")
    @classmethod
    def normalize_programs(cls, v: List[str]) -> List[str]:
        return sorted({p.strip().upper() for p in v if p and p.strip()})


class Provision(ProvisionCreate):
    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: str
    ingested_at: Optional[datetime] = None


class OntologyTermCreate(BaseModel):
    term_name: str = Field(min_length=1, max_length=200)
    canonical_name: str = Field(min_length=1, max_length=200)
    program_code: str
    domain: str = "eligibility"
    definition: str = ""
    statutory_citation: Optional[str] = None
    rule_ids: List[str] = Field(
        default_factory=list,
        description="Rules whose formula references this term",
    )

    @field_validator("program_code")
    @classmethod
    def normalize_program(cls, v: str) -> str:
        return v.strip().upper()


class OntologyTerm(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    term_name: str
    canonical_name: str
    program_code: str
    domain: str
    definition: str = ""
    statutory_citation: Optional[str] = None
    is_active: bool = True


# =============================================================================
# MAPPINGS
# =============================================================================

class MappingProposal(BaseModel):
    """Request to propose a mapping for a provision."""

    provision_id: str
    ontology_term_id: Optional[str] = None
    rule_id: Optional[str] = None
    mapping_type: Optional[MappingType] = None
    manual: bool = False
    mapping_reason: Optional[str] = None

    @model_validator(mode="after")
    def require_target(self) -> "MappingProposal":
        if not self.ontology_term_id and not self.rule_id:
            raise ValueError("a mapping needs an ontology_term_id or a rule_id")
        return self


class ProvisionMapping(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    provision_id: str
    ontology_term_id: Optional[str] = None
    rule_id: Optional[str] = None
    mapping_type: MappingType
    match_method: MatchMethod
    ai_confidence_score: float
    citation_match_score: float
    semantic_similarity_score: Optional[float] = None
    review_status: ReviewStatus
    priority_level: PriorityLevel
    mapping_reason: str = ""
    impact_description: str = ""
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    review_notes: Optional[str] = None
    rejection_reason: Optional[str] = None
    verification_batch_id: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.review_status != ReviewStatus.PENDING


class ApprovalOutcome(BaseModel):
    """What an approval changed and what now needs re-verification."""

    mapping: ProvisionMapping
    affected_rule_ids: List[str] = Field(default_factory=list)
    obligation_ids: List[str] = Field(default_factory=list)
    verification_batch_id: Optional[str] = None
    superseding_rule: Optional[Rule] = None

    @property
    def affected_count(self) -> int:
        return len(self.affected_rule_ids)


class BulkApprovalResult(BaseModel):
    success_count: int = 0
    approved_ids: List[str] = Field(default_factory=list)
    errors: Dict[str, str] = Field(default_factory=dict)
    affected_rule_ids: List[str] = Field(default_factory=list)


class ApprovalRequest(BaseModel):
    reviewer: str = Field(min_length=1)
    notes: Optional[str] = None
    amendment: Optional[RuleAmendment] = None


class RejectionRequest(BaseModel):
    reviewer: str = Field(min_length=1)
    reason: str = ""


class MappingStats(BaseModel):
    by_status: Dict[str, int] = Field(default_factory=dict)
    pending_by_priority: Dict[str, int] = Field(default_factory=dict)
    total: int = 0


# =============================================================================
# RE-VERIFICATION
# =============================================================================

class ReverificationObligation(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    mapping_id: str
    rule_id: str
    program_code: str
    batch_id: Optional[str] = None
    status: ObligationStatus
    run_id: Optional[str] = None
    created_at: Optional[datetime] = None
    claimed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
