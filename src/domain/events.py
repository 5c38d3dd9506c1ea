"""
Domain Events for the benefit rules platform.

Domain events are immutable records of things reviewers and operators
care about: a rule version taking effect, a provision mapping changing
review state, an evaluation run finishing. They feed the audit trail
and decouple the provision pipeline from the evaluation harness.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field


class EventType(str, Enum):
    """Types of domain events."""
    # Rule Events
    RULE_CREATED = "rule.created"
    RULE_APPROVED = "rule.approved"
    RULE_SUPERSEDED = "rule.superseded"

    # Mapping Events
    MAPPING_PROPOSED = "mapping.proposed"
    MAPPING_APPROVED = "mapping.approved"
    MAPPING_REJECTED = "mapping.rejected"

    # Verification Events
    REVERIFICATION_QUEUED = "verification.queued"
    REVERIFICATION_COMPLETED = "verification.completed"
    EVALUATION_RUN_COMPLETED = "evaluation.run_completed"


class DomainEvent(BaseModel):
    """
    Base class for all domain events.

    All events are immutable and contain:
    - Unique event ID
    - When the event occurred
    - Metadata about context (reviewer, correlation id, etc.)
    """

    model_config = ConfigDict(frozen=True)

    event_id: UUID = Field(default_factory=uuid4)
    event_type: EventType
    occurred_at: datetime = Field(default_factory=datetime.utcnow)
    version: int = Field(default=1, description="Event schema version")

    metadata: Dict[str, Any] = Field(
        default_factory=dict,
        description="Additional context (reviewer, correlation_id, etc.)"
    )

    aggregate_id: Optional[str] = Field(
        default=None,
        description="ID of the aggregate this event belongs to"
    )
    aggregate_type: Optional[str] = Field(
        default=None,
        description="Type of aggregate (rule, mapping, evaluation_run)"
    )


# =============================================================================
# RULE EVENTS
# =============================================================================

class RuleCreated(DomainEvent):
    """A draft rule version was authored."""
    event_type: EventType = EventType.RULE_CREATED
    aggregate_type: str = "rule"

    rule_id: str
    program_code: str
    rule_type: str
    jurisdiction: str


class RuleApproved(DomainEvent):
    """A rule version became effective."""
    event_type: EventType = EventType.RULE_APPROVED
    aggregate_type: str = "rule"

    rule_id: str
    program_code: str
    rule_type: str
    jurisdiction: str
    effective_date: str
    approved_by: Optional[str] = None
    supersedes_id: Optional[str] = None


class RuleSuperseded(DomainEvent):
    """A rule version was closed off by a successor."""
    event_type: EventType = EventType.RULE_SUPERSEDED
    aggregate_type: str = "rule"

    rule_id: str
    successor_id: str
    expiration_date: str


# =============================================================================
# MAPPING EVENTS
# =============================================================================

class MappingProposed(DomainEvent):
    """A provision mapping entered the review queue."""
    event_type: EventType = EventType.MAPPING_PROPOSED
    aggregate_type: str = "provision_mapping"

    mapping_id: str
    provision_id: str
    match_method: str
    priority_level: str
    ai_confidence_score: float


class MappingApproved(DomainEvent):
    """A reviewer approved a provision mapping."""
    event_type: EventType = EventType.MAPPING_APPROVED
    aggregate_type: str = "provision_mapping"

    mapping_id: str
    reviewer: str
    affected_rule_ids: List[str] = Field(default_factory=list)
    verification_batch_id: Optional[str] = None
    superseding_rule_id: Optional[str] = None


class MappingRejected(DomainEvent):
    """A reviewer rejected a provision mapping."""
    event_type: EventType = EventType.MAPPING_REJECTED
    aggregate_type: str = "provision_mapping"

    mapping_id: str
    reviewer: str
    reason: str


# =============================================================================
# VERIFICATION EVENTS
# =============================================================================

class ReverificationQueued(DomainEvent):
    """Rules were queued for re-verification after a mapping approval."""
    event_type: EventType = EventType.REVERIFICATION_QUEUED
    aggregate_type: str = "verification_batch"

    batch_id: str
    mapping_id: str
    rule_ids: List[str] = Field(default_factory=list)
    obligation_count: int = 0


class ReverificationCompleted(DomainEvent):
    """Obligations for one program finished re-verification."""
    event_type: EventType = EventType.REVERIFICATION_COMPLETED
    aggregate_type: str = "verification_batch"

    program_code: str
    run_id: str
    obligation_ids: List[str] = Field(default_factory=list)
    verified: bool


class EvaluationRunCompleted(DomainEvent):
    """An evaluation run reached a final status."""
    event_type: EventType = EventType.EVALUATION_RUN_COMPLETED
    aggregate_type: str = "evaluation_run"

    run_id: str
    status: str
    total_cases: int
    passed_cases: int
    failed_cases: int
    errored_cases: int = 0
    average_variance: Optional[float] = None
