"""
Provision Mapper.

Proposes mappings from legislative provisions to ontology terms and
rules, scores them, and runs them through human review.

Review state machine (terminal states never change again):

    pending -> approved
    pending -> rejected

Approving a mapping optionally supersedes the mapped rule, computes the
transitive closure of affected rules over the rule dependency graph and
enqueues a re-verification obligation for each. All of that happens in
one transaction; events are published after it commits.
"""

import logging
from datetime import date, datetime
from threading import Lock
from typing import Dict, List, Optional, Set, Tuple

from sqlalchemy import case, func, select
from sqlalchemy.orm import Session, sessionmaker

from config.settings import MatchingSettings, get_settings
from core.errors import BenefitRulesError, InvalidInputError, MappingStateError, NotFoundError
from database.connection import get_sync_session_factory, session_scope
from database.models import (
    OntologyTermRecord,
    ProvisionMappingRecord,
    ProvisionRecord,
    new_id,
)
from domain.event_bus import EventBus, get_event_bus
from domain.events import (
    DomainEvent,
    MappingApproved,
    MappingProposed,
    MappingRejected,
    ReverificationQueued,
)
from provisions.citation import citation_score, normalize_citation
from provisions.models import (
    PRIORITY_RANK,
    ApprovalOutcome,
    BulkApprovalResult,
    MappingStats,
    MappingType,
    MatchMethod,
    OntologyTerm,
    OntologyTermCreate,
    PriorityLevel,
    Provision,
    ProvisionCreate,
    ProvisionMapping,
    ReviewStatus,
)
from provisions.obligations import ReverificationQueue
from provisions.text_matcher import OpenAITextMatcher, TextMatch
from rules.models import Rule, RuleAmendment
from rules.rule_store import RuleStore

logger = logging.getLogger(__name__)


VALID_TRANSITIONS: Dict[ReviewStatus, Set[ReviewStatus]] = {
    ReviewStatus.PENDING: {ReviewStatus.APPROVED, ReviewStatus.REJECTED},
    ReviewStatus.APPROVED: set(),
    ReviewStatus.REJECTED: set(),
}

MAPPING_SEVERITY: Dict[MappingType, PriorityLevel] = {
    MappingType.SUPERSEDES: PriorityLevel.URGENT,
    MappingType.REMOVES: PriorityLevel.URGENT,
    MappingType.AMENDS: PriorityLevel.HIGH,
    MappingType.MODIFIES_THRESHOLD: PriorityLevel.HIGH,
    MappingType.ADDS_EXCEPTION: PriorityLevel.HIGH,
    MappingType.CREATES: PriorityLevel.NORMAL,
    MappingType.CLARIFIES: PriorityLevel.LOW,
}

_BY_RANK = {rank: level for level, rank in PRIORITY_RANK.items()}


# =============================================================================
# SCORING HELPERS
# =============================================================================

def infer_mapping_type(provision_type: str, provision_text: str) -> MappingType:
    """Guess how a provision affects its target from its type and wording."""
    text = provision_text.lower()

    if provision_type == "repeal" or "is repealed" in text or "is struck" in text:
        return MappingType.REMOVES
    if provision_type == "new_section" or "is added" in text or "insert the following" in text:
        return MappingType.CREATES
    if "supersede" in text or "in lieu of" in text:
        return MappingType.SUPERSEDES
    if "exception" in text or "except that" in text or "notwithstanding" in text:
        return MappingType.ADDS_EXCEPTION
    if any(word in text for word in ("percent", "$", "threshold", "limit")) or "%" in text:
        return MappingType.MODIFIES_THRESHOLD
    if "clarif" in text or " means " in text or "definition" in text:
        return MappingType.CLARIFIES
    return MappingType.AMENDS


def determine_priority(
    mapping_type: MappingType,
    affected_programs: List[str],
    effective_date: Optional[date],
    settings: MatchingSettings,
    today: Optional[date] = None,
) -> PriorityLevel:
    """
    Review priority from severity, effective-date proximity and breadth.

    Provisions effective within the urgent window (or already effective)
    are urgent, within the high window at least high. Provisions touching
    many programs are escalated one level.
    """
    rank = PRIORITY_RANK[MAPPING_SEVERITY[mapping_type]]

    if effective_date is not None:
        days = (effective_date - (today or date.today())).days
        if days <= settings.urgent_window_days:
            rank = PRIORITY_RANK[PriorityLevel.URGENT]
        elif days <= settings.high_window_days:
            rank = max(rank, PRIORITY_RANK[PriorityLevel.HIGH])

    if len(affected_programs) >= settings.broad_impact_programs:
        rank = min(rank + 1, PRIORITY_RANK[PriorityLevel.URGENT])

    return _BY_RANK[rank]


def combine_scores(
    citation: float, semantic: Optional[float], settings: MatchingSettings
) -> float:
    """Weighted confidence; citation only when no semantic score exists."""
    if semantic is None:
        return round(citation, 4)
    return round(settings.citation_weight * citation + settings.semantic_weight * semantic, 4)


class ProvisionMapper:
    """Maps provisions to terms and rules and runs the review workflow."""

    def __init__(
        self,
        rule_store: RuleStore,
        obligations: ReverificationQueue,
        text_matcher: Optional[OpenAITextMatcher] = None,
        session_factory: Optional[sessionmaker] = None,
        settings: Optional[MatchingSettings] = None,
        event_bus: Optional[EventBus] = None,
    ):
        self.rule_store = rule_store
        self.obligations = obligations
        self.text_matcher = text_matcher
        self.settings = settings or get_settings().matching
        self._session_factory = session_factory
        self._event_bus = event_bus
        self._review_lock = Lock()

    @property
    def session_factory(self) -> sessionmaker:
        if self._session_factory is None:
            self._session_factory = get_sync_session_factory()
        return self._session_factory

    @property
    def event_bus(self) -> EventBus:
        return self._event_bus or get_event_bus()

    def _publish(self, events: List[DomainEvent]) -> None:
        for event in events:
            self.event_bus.publish(event)

    # =========================================================================
    # PROVISIONS AND TERMS
    # =========================================================================

    def ingest_provision(self, data: ProvisionCreate) -> Provision:
        """
        Store a provision. Provisions are immutable; re-ingesting the same
        (public_law_id, section_number) returns the stored one unchanged.
        """
        with session_scope(self.session_factory) as session:
            existing = session.execute(
                select(ProvisionRecord).where(
                    ProvisionRecord.public_law_id == data.public_law_id,
                    ProvisionRecord.section_number == data.section_number,
                )
            ).scalars().first()
            if existing is not None:
                logger.info(
                    f"Provision {data.public_law_id} §{data.section_number} already ingested as {existing.id}"
                )
                return Provision.model_validate(existing)

            record = ProvisionRecord(
                id=new_id(),
                ingested_at=datetime.utcnow(),
                **data.model_dump(),
            )
            session.add(record)
            session.flush()
            logger.info(
                f"Ingested provision {record.id} ({data.public_law_id} §{data.section_number})",
                extra={"affected_programs": data.affected_programs},
            )
            return Provision.model_validate(record)

    def get_provision(self, provision_id: str) -> Provision:
        with session_scope(self.session_factory) as session:
            return Provision.model_validate(self._get_provision(session, provision_id))

    def list_provisions(self, program: Optional[str] = None, limit: int = 100) -> List[Provision]:
        with session_scope(self.session_factory) as session:
            records = session.execute(
                select(ProvisionRecord).order_by(ProvisionRecord.ingested_at.desc())
            ).scalars().all()
            provisions = [Provision.model_validate(r) for r in records]
        if program:
            provisions = [p for p in provisions if program.upper() in p.affected_programs]
        return provisions[:limit]

    def register_term(self, data: OntologyTermCreate) -> OntologyTerm:
        """
        Add an ontology term and link it to the rules that reference it.

        Raises:
            InvalidInputError: canonical_name already registered.
            NotFoundError: A linked rule does not exist.
        """
        with session_scope(self.session_factory) as session:
            duplicate = session.execute(
                select(OntologyTermRecord.id).where(
                    OntologyTermRecord.canonical_name == data.canonical_name
                )
            ).first()
            if duplicate is not None:
                raise InvalidInputError(
                    f"Ontology term already registered: {data.canonical_name}",
                    [f"canonical_name {data.canonical_name!r} is taken by {duplicate[0]}"],
                )
            record = OntologyTermRecord(
                id=new_id(),
                term_name=data.term_name,
                canonical_name=data.canonical_name,
                program_code=data.program_code,
                domain=data.domain,
                definition=data.definition,
                statutory_citation=data.statutory_citation,
                is_active=True,
            )
            session.add(record)
            session.flush()
            term = OntologyTerm.model_validate(record)

        for rule_id in data.rule_ids:
            rule = self.rule_store.get_rule(rule_id)
            self.rule_store.set_ontology_terms(rule_id, list(rule.ontology_terms) + [term.id])
        logger.info(f"Registered ontology term {term.canonical_name} linked to {len(data.rule_ids)} rules")
        return term

    def list_terms(self, program: Optional[str] = None, active_only: bool = True) -> List[OntologyTerm]:
        query = select(OntologyTermRecord).order_by(OntologyTermRecord.canonical_name)
        if program:
            query = query.where(OntologyTermRecord.program_code == program.upper())
        if active_only:
            query = query.where(OntologyTermRecord.is_active.is_(True))
        with session_scope(self.session_factory) as session:
            return [OntologyTerm.model_validate(r) for r in session.execute(query).scalars()]

    # =========================================================================
    # PROPOSALS
    # =========================================================================

    def _get_provision(self, session: Session, provision_id: str) -> ProvisionRecord:
        record = session.get(ProvisionRecord, provision_id)
        if record is None:
            raise NotFoundError("Provision", provision_id)
        return record

    def _get_term(self, session: Session, term_id: str) -> OntologyTermRecord:
        record = session.get(OntologyTermRecord, term_id)
        if record is None:
            raise NotFoundError("Ontology term", term_id)
        return record

    def _semantic(
        self, provision: ProvisionRecord, name: str, definition: str
    ) -> Optional[TextMatch]:
        if self.text_matcher is None:
            return None
        return self.text_matcher.similarity(
            provision.provision_text, name, definition, citation=provision.us_code_citation
        )

    def _match_method(self, citation: float, semantic: Optional[float], manual: bool) -> MatchMethod:
        if manual:
            return MatchMethod.MANUAL
        citation_hit = citation >= self.settings.citation_threshold
        semantic_hit = semantic is not None and semantic >= self.settings.semantic_threshold
        if citation_hit and not semantic_hit:
            return MatchMethod.CITATION_MATCH
        if semantic_hit and not citation_hit:
            return MatchMethod.SEMANTIC_SIMILARITY
        return MatchMethod.AI_PROPOSED

    def _existing_pending(
        self, session: Session, provision_id: str, term_id: Optional[str], rule_id: Optional[str]
    ) -> Optional[ProvisionMappingRecord]:
        return session.execute(
            select(ProvisionMappingRecord).where(
                ProvisionMappingRecord.provision_id == provision_id,
                ProvisionMappingRecord.ontology_term_id == term_id
                if term_id else ProvisionMappingRecord.ontology_term_id.is_(None),
                ProvisionMappingRecord.rule_id == rule_id
                if rule_id else ProvisionMappingRecord.rule_id.is_(None),
                ProvisionMappingRecord.review_status == ReviewStatus.PENDING.value,
            )
        ).scalars().first()

    def _create_mapping(
        self,
        session: Session,
        provision: ProvisionRecord,
        term: Optional[OntologyTermRecord],
        rule: Optional[Rule],
        citation: float,
        semantic: Optional[TextMatch],
        mapping_type: Optional[MappingType],
        manual: bool,
        mapping_reason: Optional[str],
    ) -> Tuple[ProvisionMappingRecord, bool]:
        existing = self._existing_pending(
            session, provision.id, term.id if term else None, rule.id if rule else None
        )
        if existing is not None:
            return existing, False

        mapping_type = mapping_type or infer_mapping_type(provision.provision_type, provision.provision_text)
        semantic_score = semantic.similarity if semantic else None
        target_name = term.canonical_name if term else f"rule {rule.id}"
        target_citation = (term.statutory_citation if term else None) or (rule.source_citation if rule else None)

        if not mapping_reason:
            if semantic and semantic.justification:
                mapping_reason = semantic.justification
            elif citation > 0:
                mapping_reason = (
                    f"Citation match: provision cites {normalize_citation(provision.us_code_citation)}, "
                    f"{target_name} references {normalize_citation(target_citation)}"
                )
            elif manual:
                mapping_reason = "Manual mapping"
            else:
                mapping_reason = f"Proposed for {target_name}"

        programs = list(provision.affected_programs or [])
        record = ProvisionMappingRecord(
            id=new_id(),
            provision_id=provision.id,
            ontology_term_id=term.id if term else None,
            rule_id=rule.id if rule else None,
            mapping_type=mapping_type.value,
            match_method=self._match_method(citation, semantic_score, manual).value,
            ai_confidence_score=combine_scores(citation, semantic_score, self.settings),
            citation_match_score=round(citation, 4),
            semantic_similarity_score=round(semantic_score, 4) if semantic_score is not None else None,
            review_status=ReviewStatus.PENDING.value,
            priority_level=determine_priority(
                mapping_type, programs, provision.effective_date, self.settings
            ).value,
            mapping_reason=mapping_reason,
            impact_description=(
                f"{mapping_type.value.replace('_', ' ').capitalize()} {target_name}"
                + (f" ({', '.join(programs)})" if programs else "")
            ),
            created_at=datetime.utcnow(),
        )
        session.add(record)
        session.flush()
        return record, True

    def _proposed_event(self, record: ProvisionMappingRecord) -> MappingProposed:
        return MappingProposed(
            aggregate_id=record.id,
            mapping_id=record.id,
            provision_id=record.provision_id,
            match_method=record.match_method,
            priority_level=record.priority_level,
            ai_confidence_score=record.ai_confidence_score,
        )

    def propose_mapping(
        self,
        provision_id: str,
        ontology_term_id: Optional[str] = None,
        rule_id: Optional[str] = None,
        mapping_type: Optional[MappingType] = None,
        manual: bool = False,
        mapping_reason: Optional[str] = None,
    ) -> ProvisionMapping:
        """
        Score and store a pending mapping.

        A failing text matcher degrades the score to citation only; it
        never prevents the mapping from being created. Proposing the
        same target again while a mapping is pending returns that mapping.

        Raises:
            InvalidInputError: Neither a term nor a rule given.
            NotFoundError: Unknown provision, term or rule.
        """
        if not ontology_term_id and not rule_id:
            raise InvalidInputError("A mapping needs an ontology term or a rule")

        rule = self.rule_store.get_rule(rule_id) if rule_id else None
        with session_scope(self.session_factory) as session:
            provision = self._get_provision(session, provision_id)
            term = self._get_term(session, ontology_term_id) if ontology_term_id else None

            target_citation = (term.statutory_citation if term else None) or (rule.source_citation if rule else None)
            citation = citation_score(provision.us_code_citation, target_citation)
            if term is not None:
                semantic = self._semantic(provision, term.term_name, term.definition)
            else:
                semantic = self._semantic(provision, f"{rule.program_code} {rule.rule_type.value}", rule.description)

            record, created = self._create_mapping(
                session, provision, term, rule, citation, semantic,
                MappingType(mapping_type) if mapping_type else None, manual, mapping_reason,
            )
            mapping = ProvisionMapping.model_validate(record)
            event = self._proposed_event(record) if created else None

        if event is not None:
            logger.info(
                f"Proposed mapping {mapping.id} for provision {provision_id} "
                f"({mapping.match_method.value}, confidence {mapping.ai_confidence_score:.2f})",
                extra={"priority": mapping.priority_level.value},
            )
            self._publish([event])
        return mapping

    def match_provision(self, provision_id: str) -> List[ProvisionMapping]:
        """
        Propose mappings to every active term in the provision's programs
        whose citation or semantic score clears its threshold.
        """
        mappings: List[ProvisionMapping] = []
        events: List[DomainEvent] = []
        with session_scope(self.session_factory) as session:
            provision = self._get_provision(session, provision_id)
            programs = list(provision.affected_programs or [])

            query = select(OntologyTermRecord).where(OntologyTermRecord.is_active.is_(True))
            if programs:
                query = query.where(OntologyTermRecord.program_code.in_(programs))
            terms = session.execute(query.order_by(OntologyTermRecord.canonical_name)).scalars().all()

            for term in terms:
                citation = citation_score(provision.us_code_citation, term.statutory_citation)
                semantic = self._semantic(provision, term.term_name, term.definition)
                semantic_score = semantic.similarity if semantic else None

                if citation < self.settings.citation_threshold and (
                    semantic_score is None or semantic_score < self.settings.semantic_threshold
                ):
                    continue

                record, created = self._create_mapping(
                    session, provision, term, None, citation, semantic, None, False, None
                )
                mappings.append(ProvisionMapping.model_validate(record))
                if created:
                    events.append(self._proposed_event(record))

        logger.info(
            f"Matched provision {provision_id} against {len(terms)} terms: "
            f"{len(mappings)} candidates, {len(events)} new"
        )
        self._publish(events)
        return mappings

    # =========================================================================
    # REVIEW
    # =========================================================================

    def _get_mapping(self, session: Session, mapping_id: str) -> ProvisionMappingRecord:
        record = session.get(ProvisionMappingRecord, mapping_id)
        if record is None:
            raise NotFoundError("Provision mapping", mapping_id)
        return record

    def _check_transition(self, record: ProvisionMappingRecord, target: ReviewStatus) -> None:
        current = ReviewStatus(record.review_status)
        if target not in VALID_TRANSITIONS[current]:
            raise MappingStateError(
                f"Mapping {record.id} is {current.value} and cannot become {target.value}",
                current.value,
                target.value,
            )

    def get_mapping(self, mapping_id: str) -> ProvisionMapping:
        with session_scope(self.session_factory) as session:
            return ProvisionMapping.model_validate(self._get_mapping(session, mapping_id))

    def list_mappings(
        self, provision_id: Optional[str] = None, status: Optional[ReviewStatus] = None
    ) -> List[ProvisionMapping]:
        query = select(ProvisionMappingRecord)
        if provision_id:
            query = query.where(ProvisionMappingRecord.provision_id == provision_id)
        if status:
            query = query.where(ProvisionMappingRecord.review_status == ReviewStatus(status).value)
        query = query.order_by(ProvisionMappingRecord.created_at, ProvisionMappingRecord.id)
        with session_scope(self.session_factory) as session:
            return [ProvisionMapping.model_validate(r) for r in session.execute(query).scalars()]

    def approve(
        self,
        mapping_id: str,
        reviewer: str,
        notes: Optional[str] = None,
        amendment: Optional[RuleAmendment] = None,
    ) -> ApprovalOutcome:
        """
        Approve a pending mapping.

        Args:
            mapping_id: Mapping to approve.
            reviewer: Who approved it.
            notes: Review notes.
            amendment: Replacement parameters; when given, the mapped rule
                is superseded in the same transaction.

        Returns:
            ApprovalOutcome with the affected rules (the mapped rule, rules
            referencing the mapped term, and everything transitively
            depending on them) and the obligations created for them.

        Raises:
            NotFoundError: Unknown mapping.
            MappingStateError: Mapping is not pending.
            InvalidInputError: Amendment given for a mapping without a rule.
            RuleConflictError / RuleValidationError: Supersession refused;
                nothing is changed.
        """
        events: List[DomainEvent] = []
        with self._review_lock, session_scope(self.session_factory) as session:
            record = self._get_mapping(session, mapping_id)
            self._check_transition(record, ReviewStatus.APPROVED)

            superseding: Optional[Rule] = None
            if amendment is not None:
                if not record.rule_id:
                    raise InvalidInputError(
                        "An amendment requires a mapping that targets a rule",
                        [f"mapping {mapping_id} has no rule_id"],
                    )
                provision = self._get_provision(session, record.provision_id)
                superseding = self.rule_store.supersede(
                    record.rule_id,
                    amendment.parameters,
                    amendment.effective_date,
                    approved_by=reviewer,
                    expiration_date=amendment.expiration_date,
                    source_citation=amendment.source_citation or provision.us_code_citation,
                    description=amendment.description,
                    session=session,
                    events=events,
                )

            seeds: List[str] = []
            if record.rule_id:
                seeds.append(record.rule_id)
            if record.ontology_term_id:
                seeds.extend(
                    r.id for r in self.rule_store.rules_referencing_term(record.ontology_term_id, session=session)
                )
            affected = self.rule_store.impact_closure(seeds, session=session) if seeds else []
            affected_ids = [r.id for r in affected]

            batch_id = new_id() if affected_ids else None
            obligation_ids = self.obligations.enqueue(mapping_id, affected_ids, batch_id, session=session)

            record.review_status = ReviewStatus.APPROVED.value
            record.reviewed_by = reviewer
            record.reviewed_at = datetime.utcnow()
            record.review_notes = notes
            record.verification_batch_id = batch_id
            session.flush()
            mapping = ProvisionMapping.model_validate(record)

        events.append(MappingApproved(
            aggregate_id=mapping.id,
            mapping_id=mapping.id,
            reviewer=reviewer,
            affected_rule_ids=affected_ids,
            verification_batch_id=batch_id,
            superseding_rule_id=superseding.id if superseding else None,
        ))
        if batch_id:
            events.append(ReverificationQueued(
                aggregate_id=batch_id,
                batch_id=batch_id,
                mapping_id=mapping.id,
                rule_ids=affected_ids,
                obligation_count=len(obligation_ids),
            ))
        self._publish(events)

        logger.info(
            f"Mapping {mapping_id} approved by {reviewer}: "
            f"{len(affected_ids)} rules require re-verification",
            extra={"batch_id": batch_id, "superseded": superseding is not None},
        )
        return ApprovalOutcome(
            mapping=mapping,
            affected_rule_ids=affected_ids,
            obligation_ids=obligation_ids,
            verification_batch_id=batch_id,
            superseding_rule=superseding,
        )

    def reject(self, mapping_id: str, reason: str, reviewer: str) -> ProvisionMapping:
        """
        Reject a pending mapping. Rejection is terminal.

        Raises:
            NotFoundError: Unknown mapping.
            MappingStateError: Mapping is not pending.
            InvalidInputError: Empty reason.
        """
        with self._review_lock, session_scope(self.session_factory) as session:
            record = self._get_mapping(session, mapping_id)
            self._check_transition(record, ReviewStatus.REJECTED)
            if not reason or not reason.strip():
                raise InvalidInputError(
                    "A rejection reason is required",
                    ["reason must not be empty"],
                )

            record.review_status = ReviewStatus.REJECTED.value
            record.reviewed_by = reviewer
            record.reviewed_at = datetime.utcnow()
            record.rejection_reason = reason.strip()
            session.flush()
            mapping = ProvisionMapping.model_validate(record)

        logger.info(f"Mapping {mapping_id} rejected by {reviewer}")
        self._publish([MappingRejected(
            aggregate_id=mapping.id,
            mapping_id=mapping.id,
            reviewer=reviewer,
            reason=mapping.rejection_reason,
        )])
        return mapping

    def bulk_approve(
        self, mapping_ids: List[str], reviewer: str, notes: Optional[str] = None
    ) -> BulkApprovalResult:
        """Approve each mapping independently; failures are reported, not raised."""
        result = BulkApprovalResult()
        affected: List[str] = []
        for mapping_id in mapping_ids:
            try:
                outcome = self.approve(mapping_id, reviewer, notes=notes)
            except BenefitRulesError as e:
                result.errors[mapping_id] = e.message
                continue
            except Exception as e:
                logger.error(f"Unexpected error approving mapping {mapping_id}: {e}", exc_info=True)
                result.errors[mapping_id] = str(e)
                continue
            result.success_count += 1
            result.approved_ids.append(mapping_id)
            affected.extend(outcome.affected_rule_ids)

        result.affected_rule_ids = list(dict.fromkeys(affected))
        logger.info(
            f"Bulk approval by {reviewer}: {result.success_count}/{len(mapping_ids)} approved"
        )
        return result

    # =========================================================================
    # QUEUE AND STATS
    # =========================================================================

    def review_queue(
        self,
        rule_id: Optional[str] = None,
        ontology_term_id: Optional[str] = None,
        priority: Optional[PriorityLevel] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[ProvisionMapping]:
        """Pending mappings by priority, then confidence, oldest first."""
        priority_rank = case(
            {level.value: rank for level, rank in PRIORITY_RANK.items()},
            value=ProvisionMappingRecord.priority_level,
            else_=0,
        )
        query = select(ProvisionMappingRecord).where(
            ProvisionMappingRecord.review_status == ReviewStatus.PENDING.value
        )
        if rule_id:
            query = query.where(ProvisionMappingRecord.rule_id == rule_id)
        if ontology_term_id:
            query = query.where(ProvisionMappingRecord.ontology_term_id == ontology_term_id)
        if priority:
            query = query.where(ProvisionMappingRecord.priority_level == PriorityLevel(priority).value)
        query = query.order_by(
            priority_rank.desc(),
            ProvisionMappingRecord.ai_confidence_score.desc(),
            ProvisionMappingRecord.created_at.asc(),
            ProvisionMappingRecord.id.asc(),
        ).limit(limit).offset(offset)

        with session_scope(self.session_factory) as session:
            return [ProvisionMapping.model_validate(r) for r in session.execute(query).scalars()]

    def stats(self) -> MappingStats:
        with session_scope(self.session_factory) as session:
            by_status = dict(session.execute(
                select(ProvisionMappingRecord.review_status, func.count())
                .group_by(ProvisionMappingRecord.review_status)
            ).all())
            pending_by_priority = dict(session.execute(
                select(ProvisionMappingRecord.priority_level, func.count())
                .where(ProvisionMappingRecord.review_status == ReviewStatus.PENDING.value)
                .group_by(ProvisionMappingRecord.priority_level)
            ).all())

        return MappingStats(
            by_status={s.value: by_status.get(s.value, 0) for s in ReviewStatus},
            pending_by_priority={p.value: pending_by_priority.get(p.value, 0) for p in PriorityLevel},
            total=sum(by_status.values()),
        )
