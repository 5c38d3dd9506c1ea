"""
Rule Store.

Holds versioned, effective-dated rule definitions keyed by
(program_code, rule_type, jurisdiction).

Invariants enforced here:
- Parameters are validated against the rule type's shape on write.
- Approved/superseded versions of one key never have overlapping
  [effective_date, expiration_date) ranges.
- Approving a successor closes its predecessor in the same transaction,
  so readers observe either the old or the new effective rule, never
  zero or two.
- Dependency edges between lineages stay acyclic.
"""

import logging
from contextlib import contextmanager
from datetime import date, datetime
from threading import RLock
from typing import Any, Dict, Generator, Iterable, List, Optional, Tuple

from sqlalchemy import or_, select
from sqlalchemy.orm import Session, sessionmaker

from config.settings import get_settings
from core.errors import NotFoundError, RuleConflictError, RuleValidationError
from database.connection import get_sync_session_factory, session_scope
from database.models import RuleDependencyRecord, RuleRecord, new_id
from domain.event_bus import EventBus, get_event_bus
from domain.events import DomainEvent, RuleApproved, RuleCreated, RuleSuperseded
from rules.dependency_graph import DependencyGraph
from rules.models import Rule, RuleDraft, RuleSet
from rules.rule_parameters import dump_parameters, parse_parameters
from rules.rule_types import RESOLVABLE_STATUSES, RuleStatus, RuleType

logger = logging.getLogger(__name__)

_RESOLVABLE = [s.value for s in RESOLVABLE_STATUSES]


def _ranges_overlap(
    start_a: date, end_a: Optional[date], start_b: date, end_b: Optional[date]
) -> bool:
    """Half-open ranges [start, end) with None meaning open-ended."""
    a_before_b_ends = end_b is None or start_a < end_b
    b_before_a_ends = end_a is None or start_b < end_a
    return a_before_b_ends and b_before_a_ends


class RuleStore:
    """
    SQLAlchemy-backed store of rule versions.

    Public methods open their own transaction. Methods that accept a
    ``session`` join the caller's transaction instead; domain events are
    then appended to ``events`` for the caller to publish after commit.
    """

    def __init__(
        self,
        session_factory: Optional[sessionmaker] = None,
        event_bus: Optional[EventBus] = None,
        federal_jurisdiction: Optional[str] = None,
    ):
        self._session_factory = session_factory
        self._event_bus = event_bus
        self.federal_jurisdiction = (
            federal_jurisdiction or get_settings().federal_jurisdiction
        ).upper()
        self._write_lock = RLock()

    @property
    def session_factory(self) -> sessionmaker:
        if self._session_factory is None:
            self._session_factory = get_sync_session_factory()
        return self._session_factory

    @property
    def event_bus(self) -> EventBus:
        return self._event_bus or get_event_bus()

    @contextmanager
    def _session(self, session: Optional[Session] = None) -> Generator[Session, None, None]:
        if session is not None:
            yield session
        else:
            with session_scope(self.session_factory) as owned:
                yield owned

    def _publish(self, events: Iterable[DomainEvent]) -> None:
        for event in events:
            self.event_bus.publish(event)

    # =========================================================================
    # CONVERSION
    # =========================================================================

    def _dependencies(self, session: Session, lineage_id: str) -> List[str]:
        rows = session.execute(
            select(RuleDependencyRecord.depends_on_lineage_id).where(
                RuleDependencyRecord.lineage_id == lineage_id
            )
        ).scalars().all()
        return sorted(rows)

    def _to_rule(self, session: Session, record: RuleRecord) -> Rule:
        return Rule.model_validate({
            "id": record.id,
            "program_code": record.program_code,
            "rule_type": record.rule_type,
            "jurisdiction": record.jurisdiction,
            "parameters": record.parameters,
            "effective_date": record.effective_date,
            "expiration_date": record.expiration_date,
            "source_citation": record.source_citation or "",
            "description": record.description or "",
            "status": record.status,
            "version": record.version,
            "lineage_id": record.lineage_id,
            "supersedes_id": record.supersedes_id,
            "depends_on": self._dependencies(session, record.lineage_id),
            "ontology_terms": list(record.ontology_terms or []),
            "created_by": record.created_by,
            "created_at": record.created_at,
            "approved_by": record.approved_by,
            "approved_at": record.approved_at,
        })

    def _get_record(self, session: Session, rule_id: str) -> RuleRecord:
        record = session.get(RuleRecord, rule_id)
        if record is None:
            raise NotFoundError("Rule", rule_id)
        return record

    def _load_graph(self, session: Session) -> DependencyGraph:
        edges: Dict[str, List[str]] = {}
        for row in session.execute(select(RuleDependencyRecord)).scalars():
            edges.setdefault(row.lineage_id, []).append(row.depends_on_lineage_id)
        return DependencyGraph(edges)

    def _resolve_lineages(self, session: Session, rule_ids: Iterable[str]) -> List[str]:
        lineages = []
        for rule_id in rule_ids:
            record = session.get(RuleRecord, rule_id)
            if record is None:
                raise RuleValidationError(
                    f"Unknown dependency rule: {rule_id}", {"rule_id": rule_id}
                )
            lineages.append(record.lineage_id)
        return sorted(set(lineages))

    def _current_record(self, session: Session, lineage_id: str) -> Optional[RuleRecord]:
        """Highest version of a lineage."""
        return session.execute(
            select(RuleRecord)
            .where(RuleRecord.lineage_id == lineage_id)
            .order_by(RuleRecord.version.desc())
            .limit(1)
        ).scalars().first()

    # =========================================================================
    # AUTHORING
    # =========================================================================

    def add_rule(self, draft: RuleDraft, created_by: Optional[str] = None) -> Rule:
        """
        Store a new draft rule (version 1 of a new lineage).

        Raises:
            RuleValidationError: Invalid parameters or unknown dependency.
            DependencyCycleError: The dependency edges would form a cycle.
        """
        parameters = parse_parameters(draft.rule_type, draft.parameters)

        with self._write_lock, self._session() as session:
            rule_id = new_id()
            depends_on = self._resolve_lineages(session, draft.depends_on)

            graph = self._load_graph(session)
            graph.set_dependencies(rule_id, depends_on)

            record = RuleRecord(
                id=rule_id,
                program_code=draft.program_code,
                rule_type=draft.rule_type.value,
                jurisdiction=draft.jurisdiction,
                parameters=dump_parameters(parameters),
                effective_date=draft.effective_date,
                expiration_date=draft.expiration_date,
                source_citation=draft.source_citation,
                description=draft.description,
                status=RuleStatus.DRAFT.value,
                version=1,
                lineage_id=rule_id,
                ontology_terms=list(draft.ontology_terms),
                created_by=created_by,
                created_at=datetime.utcnow(),
            )
            session.add(record)
            for target in depends_on:
                session.add(RuleDependencyRecord(lineage_id=rule_id, depends_on_lineage_id=target))
            session.flush()
            rule = self._to_rule(session, record)

        logger.info(
            f"Rule draft created: {rule.program_code}/{rule.rule_type.value}/{rule.jurisdiction}",
            extra={"rule_id": rule.id, "effective_date": str(rule.effective_date)},
        )
        self._publish([RuleCreated(
            aggregate_id=rule.id,
            rule_id=rule.id,
            program_code=rule.program_code,
            rule_type=rule.rule_type.value,
            jurisdiction=rule.jurisdiction,
        )])
        return rule

    def set_dependencies(self, rule_id: str, depends_on: List[str]) -> Rule:
        """
        Replace the dependency edges of a rule's lineage.

        Raises:
            DependencyCycleError: The new edges would form a cycle.
        """
        with self._write_lock, self._session() as session:
            record = self._get_record(session, rule_id)
            targets = self._resolve_lineages(session, depends_on)

            graph = self._load_graph(session)
            graph.set_dependencies(record.lineage_id, targets)

            session.query(RuleDependencyRecord).filter(
                RuleDependencyRecord.lineage_id == record.lineage_id
            ).delete()
            for target in targets:
                session.add(RuleDependencyRecord(
                    lineage_id=record.lineage_id, depends_on_lineage_id=target
                ))
            session.flush()
            return self._to_rule(session, record)

    def set_ontology_terms(self, rule_id: str, term_ids: List[str]) -> Rule:
        """Record which ontology terms a rule's formula references."""
        with self._write_lock, self._session() as session:
            record = self._get_record(session, rule_id)
            record.ontology_terms = sorted(set(term_ids))
            session.flush()
            return self._to_rule(session, record)

    # =========================================================================
    # APPROVAL / SUPERSESSION
    # =========================================================================

    def _activate(
        self, session: Session, record: RuleRecord, approved_by: Optional[str]
    ) -> List[DomainEvent]:
        """Approve a draft, closing the predecessor it replaces."""
        others = session.execute(
            select(RuleRecord).where(
                RuleRecord.program_code == record.program_code,
                RuleRecord.rule_type == record.rule_type,
                RuleRecord.jurisdiction == record.jurisdiction,
                RuleRecord.status.in_(_RESOLVABLE),
                RuleRecord.id != record.id,
            )
        ).scalars().all()

        predecessor: Optional[RuleRecord] = None
        for other in others:
            if not _ranges_overlap(
                other.effective_date, other.expiration_date,
                record.effective_date, record.expiration_date,
            ):
                continue

            replaceable = (
                predecessor is None
                and other.status == RuleStatus.APPROVED.value
                and other.effective_date < record.effective_date
                and (
                    record.expiration_date is None
                    or (
                        other.expiration_date is not None
                        and other.expiration_date <= record.expiration_date
                    )
                )
            )
            if not replaceable:
                raise RuleConflictError(
                    f"Rule {record.id} overlaps {other.status} rule {other.id} "
                    f"({other.effective_date} to {other.expiration_date or 'open'})",
                    {"rule_id": record.id, "conflicting_rule_id": other.id},
                )
            predecessor = other

        events: List[DomainEvent] = []
        now = datetime.utcnow()

        if predecessor is not None:
            predecessor.expiration_date = record.effective_date
            predecessor.status = RuleStatus.SUPERSEDED.value
            if record.supersedes_id is None:
                record.supersedes_id = predecessor.id
            events.append(RuleSuperseded(
                aggregate_id=predecessor.id,
                rule_id=predecessor.id,
                successor_id=record.id,
                expiration_date=record.effective_date.isoformat(),
            ))
            logger.info(
                f"Rule {predecessor.id} superseded by {record.id} "
                f"effective {record.effective_date}"
            )

        record.status = RuleStatus.APPROVED.value
        record.approved_by = approved_by
        record.approved_at = now
        session.flush()

        events.insert(0, RuleApproved(
            aggregate_id=record.id,
            rule_id=record.id,
            program_code=record.program_code,
            rule_type=record.rule_type,
            jurisdiction=record.jurisdiction,
            effective_date=record.effective_date.isoformat(),
            approved_by=approved_by,
            supersedes_id=record.supersedes_id,
        ))
        return events

    def approve_rule(self, rule_id: str, approved_by: Optional[str] = None) -> Rule:
        """
        Approve a draft rule.

        If an approved rule of the same key is effective when the draft
        starts, it is expired at the draft's effective date and marked
        superseded in the same transaction.

        Raises:
            RuleConflictError: Draft is not a draft, or its range overlaps
                a version it cannot cleanly replace.
        """
        with self._write_lock, self._session() as session:
            record = self._get_record(session, rule_id)
            if record.status != RuleStatus.DRAFT.value:
                raise RuleConflictError(
                    f"Rule {rule_id} is {record.status}; only drafts can be approved",
                    {"rule_id": rule_id, "status": record.status},
                )
            events = self._activate(session, record, approved_by)
            rule = self._to_rule(session, record)

        self._publish(events)
        return rule

    def supersede(
        self,
        rule_id: str,
        parameters: Dict[str, Any],
        effective_date: date,
        approved_by: Optional[str] = None,
        expiration_date: Optional[date] = None,
        source_citation: Optional[str] = None,
        description: Optional[str] = None,
        session: Optional[Session] = None,
        events: Optional[List[DomainEvent]] = None,
    ) -> Rule:
        """
        Create and approve the successor of an approved rule atomically.

        The successor continues the predecessor's lineage, so every rule
        depending on the lineage now resolves to the new version.

        Raises:
            RuleValidationError: Invalid replacement parameters.
            RuleConflictError: Predecessor not approved, or the successor
                would not start inside the predecessor's range.
        """
        with self._write_lock, self._session(session) as s:
            predecessor = self._get_record(s, rule_id)
            parsed = parse_parameters(predecessor.rule_type, parameters)

            if predecessor.status != RuleStatus.APPROVED.value:
                raise RuleConflictError(
                    f"Only approved rules can be superseded; {rule_id} is {predecessor.status}",
                    {"rule_id": rule_id, "status": predecessor.status},
                )
            if effective_date <= predecessor.effective_date:
                raise RuleConflictError(
                    f"Successor must take effect after {predecessor.effective_date}",
                    {"rule_id": rule_id, "effective_date": effective_date.isoformat()},
                )

            current = self._current_record(s, predecessor.lineage_id)
            successor = RuleRecord(
                id=new_id(),
                program_code=predecessor.program_code,
                rule_type=predecessor.rule_type,
                jurisdiction=predecessor.jurisdiction,
                parameters=dump_parameters(parsed),
                effective_date=effective_date,
                expiration_date=expiration_date,
                source_citation=source_citation or predecessor.source_citation,
                description=description or predecessor.description,
                status=RuleStatus.DRAFT.value,
                version=(current.version if current else predecessor.version) + 1,
                lineage_id=predecessor.lineage_id,
                supersedes_id=predecessor.id,
                ontology_terms=list(predecessor.ontology_terms or []),
                created_by=approved_by,
                created_at=datetime.utcnow(),
            )
            s.add(successor)
            s.flush()

            produced = self._activate(s, successor, approved_by)
            rule = self._to_rule(s, successor)

        if session is None:
            self._publish(produced)
        elif events is not None:
            events.extend(produced)
        return rule

    # =========================================================================
    # RESOLUTION
    # =========================================================================

    def _resolve_record(
        self,
        session: Session,
        program_code: str,
        rule_type: RuleType,
        jurisdiction: str,
        as_of_date: date,
    ) -> Optional[RuleRecord]:
        candidates = [jurisdiction.upper()]
        if self.federal_jurisdiction not in candidates:
            candidates.append(self.federal_jurisdiction)

        for juris in candidates:
            record = session.execute(
                select(RuleRecord)
                .where(
                    RuleRecord.program_code == program_code.upper(),
                    RuleRecord.rule_type == RuleType(rule_type).value,
                    RuleRecord.jurisdiction == juris,
                    RuleRecord.status.in_(_RESOLVABLE),
                    RuleRecord.effective_date <= as_of_date,
                    or_(
                        RuleRecord.expiration_date.is_(None),
                        RuleRecord.expiration_date > as_of_date,
                    ),
                )
                .order_by(RuleRecord.effective_date.desc())
                .limit(1)
            ).scalars().first()
            if record is not None:
                return record
        return None

    def resolve(
        self,
        program_code: str,
        rule_type: RuleType,
        jurisdiction: str,
        as_of_date: date,
    ) -> Optional[Rule]:
        """
        Rule version effective on as_of_date, falling back to the federal
        jurisdiction when no jurisdiction-specific version exists.
        """
        with self._session() as session:
            record = self._resolve_record(session, program_code, rule_type, jurisdiction, as_of_date)
            return self._to_rule(session, record) if record else None

    def resolve_ruleset(self, program_code: str, jurisdiction: str, as_of_date: date) -> RuleSet:
        """All rule types effective for a program/jurisdiction on a date."""
        ruleset = RuleSet(
            program_code=program_code.upper(),
            jurisdiction=jurisdiction.upper(),
            as_of_date=as_of_date,
        )
        with self._session() as session:
            for rule_type in RuleType:
                record = self._resolve_record(
                    session, program_code, rule_type, jurisdiction, as_of_date
                )
                if record is not None:
                    ruleset.rules[rule_type] = self._to_rule(session, record)
        return ruleset

    # =========================================================================
    # QUERIES
    # =========================================================================

    def get_rule(self, rule_id: str) -> Rule:
        with self._session() as session:
            return self._to_rule(session, self._get_record(session, rule_id))

    def list_rules(
        self,
        program_code: Optional[str] = None,
        rule_type: Optional[RuleType] = None,
        jurisdiction: Optional[str] = None,
        status: Optional[RuleStatus] = None,
    ) -> List[Rule]:
        query = select(RuleRecord)
        if program_code:
            query = query.where(RuleRecord.program_code == program_code.upper())
        if rule_type:
            query = query.where(RuleRecord.rule_type == RuleType(rule_type).value)
        if jurisdiction:
            query = query.where(RuleRecord.jurisdiction == jurisdiction.upper())
        if status:
            query = query.where(RuleRecord.status == RuleStatus(status).value)
        query = query.order_by(
            RuleRecord.program_code, RuleRecord.rule_type,
            RuleRecord.jurisdiction, RuleRecord.effective_date,
        )
        with self._session() as session:
            return [self._to_rule(session, r) for r in session.execute(query).scalars()]

    def history(self, program_code: str, rule_type: RuleType, jurisdiction: str) -> List[Rule]:
        """Approved and superseded versions of a key, oldest first."""
        return [
            r for r in self.list_rules(program_code, rule_type, jurisdiction)
            if r.status in RESOLVABLE_STATUSES
        ]

    def has_rules(self) -> bool:
        with self._session() as session:
            return session.execute(select(RuleRecord.id).limit(1)).first() is not None

    def find_overlaps(self) -> List[Tuple[str, str]]:
        """Pairs of resolvable rule ids whose ranges overlap for the same key."""
        resolvable = [r for r in self.list_rules() if r.status in RESOLVABLE_STATUSES]
        overlaps = []
        for i, a in enumerate(resolvable):
            for b in resolvable[i + 1:]:
                if a.key == b.key and _ranges_overlap(
                    a.effective_date, a.expiration_date, b.effective_date, b.expiration_date
                ):
                    overlaps.append((a.id, b.id))
        return overlaps

    # =========================================================================
    # DEPENDENCY ANALYSIS
    # =========================================================================

    def dependents_of(self, rule_id: str, transitive: bool = True) -> List[Rule]:
        """Current versions of rules depending on a rule's lineage."""
        with self._session() as session:
            record = self._get_record(session, rule_id)
            graph = self._load_graph(session)
            if transitive:
                lineages = graph.transitive_dependents(record.lineage_id)
            else:
                lineages = {
                    n for n in graph.transitive_dependents(record.lineage_id)
                    if record.lineage_id in graph.dependencies_of(n)
                }
            return self._current_rules(session, lineages)

    def _current_rules(self, session: Session, lineages: Iterable[str]) -> List[Rule]:
        rules = []
        for lineage in lineages:
            current = self._current_record(session, lineage)
            if current is not None:
                rules.append(self._to_rule(session, current))
        return sorted(rules, key=lambda r: (r.program_code, r.rule_type.value, r.id))

    def rules_referencing_term(self, term_id: str, session: Optional[Session] = None) -> List[Rule]:
        """Current versions of rules whose formula references an ontology term."""
        with self._session(session) as s:
            records = s.execute(
                select(RuleRecord).where(RuleRecord.status != RuleStatus.SUPERSEDED.value)
            ).scalars().all()
            lineages = {r.lineage_id for r in records if term_id in (r.ontology_terms or [])}
            return self._current_rules(s, lineages)

    def impact_closure(
        self, rule_ids: Iterable[str], session: Optional[Session] = None
    ) -> List[Rule]:
        """
        Seed rules plus everything transitively depending on them,
        each represented by its lineage's current version.
        """
        with self._session(session) as s:
            graph = self._load_graph(s)
            lineages = set()
            for rule_id in rule_ids:
                record = self._get_record(s, rule_id)
                lineages.add(record.lineage_id)
                lineages |= graph.transitive_dependents(record.lineage_id)
            return self._current_rules(s, lineages)
