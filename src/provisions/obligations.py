"""
Re-verification obligations.

An approved provision mapping leaves one obligation per affected rule.
The queue is processed separately from approval: pending obligations are
claimed, grouped by program, and each program's active test cases are run
through the evaluation harness. The run outcome is written back onto the
obligations.

Delivery is at-least-once. Enqueue is idempotent on (mapping_id, rule_id)
and claiming only moves obligations out of ``pending``, so replays are
safe. A claim that never reaches a run is released back to ``pending``, or
reclaimed by a later sweep once it is older than the claim timeout.
"""

import logging
from collections import defaultdict
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Dict, List, Optional

from sqlalchemy import and_, or_, select, update
from sqlalchemy.orm import Session, sessionmaker

from core.errors import BenefitRulesError, NotFoundError
from database.connection import get_sync_session_factory, session_scope
from database.models import ReverificationObligationRecord, RuleRecord, new_id
from domain.event_bus import EventBus, get_event_bus
from domain.events import ReverificationCompleted
from evaluation.models import EvaluationRun, RunStatus
from provisions.models import ObligationStatus, ReverificationObligation

if TYPE_CHECKING:
    from evaluation.harness import EvaluationHarness

logger = logging.getLogger(__name__)


class ReverificationQueue:
    """Obligation table access and processing."""

    def __init__(
        self,
        session_factory: Optional[sessionmaker] = None,
        event_bus: Optional[EventBus] = None,
        claim_timeout: float = 900,
    ):
        self._session_factory = session_factory
        self._event_bus = event_bus
        self.claim_timeout = claim_timeout

    @property
    def session_factory(self) -> sessionmaker:
        if self._session_factory is None:
            self._session_factory = get_sync_session_factory()
        return self._session_factory

    @property
    def event_bus(self) -> EventBus:
        return self._event_bus or get_event_bus()

    # =========================================================================
    # ENQUEUE
    # =========================================================================

    def _enqueue(
        self, session: Session, mapping_id: str, rule_ids: List[str], batch_id: Optional[str]
    ) -> List[str]:
        existing = {
            o.rule_id: o.id
            for o in session.execute(
                select(ReverificationObligationRecord).where(
                    ReverificationObligationRecord.mapping_id == mapping_id
                )
            ).scalars()
        }

        obligation_ids = []
        for rule_id in dict.fromkeys(rule_ids):
            if rule_id in existing:
                obligation_ids.append(existing[rule_id])
                continue
            rule = session.get(RuleRecord, rule_id)
            if rule is None:
                raise NotFoundError("Rule", rule_id)
            record = ReverificationObligationRecord(
                id=new_id(),
                mapping_id=mapping_id,
                rule_id=rule_id,
                program_code=rule.program_code,
                batch_id=batch_id,
                status=ObligationStatus.PENDING.value,
            )
            session.add(record)
            obligation_ids.append(record.id)
        session.flush()
        return obligation_ids

    def enqueue(
        self,
        mapping_id: str,
        rule_ids: List[str],
        batch_id: Optional[str] = None,
        session: Optional[Session] = None,
    ) -> List[str]:
        """
        Create one pending obligation per rule.

        Args:
            mapping_id: Approved mapping that caused the obligations.
            rule_ids: Affected rule ids.
            batch_id: Verification batch shared by this approval.
            session: Join the caller's transaction when given.

        Returns:
            Obligation ids in rule order, including ones that already existed.
        """
        if session is not None:
            return self._enqueue(session, mapping_id, rule_ids, batch_id)
        with session_scope(self.session_factory) as owned:
            return self._enqueue(owned, mapping_id, rule_ids, batch_id)

    # =========================================================================
    # QUERIES
    # =========================================================================

    def list(
        self,
        mapping_id: Optional[str] = None,
        status: Optional[ObligationStatus] = None,
        program_code: Optional[str] = None,
    ) -> List[ReverificationObligation]:
        query = select(ReverificationObligationRecord)
        if mapping_id:
            query = query.where(ReverificationObligationRecord.mapping_id == mapping_id)
        if status:
            query = query.where(ReverificationObligationRecord.status == ObligationStatus(status).value)
        if program_code:
            query = query.where(ReverificationObligationRecord.program_code == program_code.upper())
        query = query.order_by(ReverificationObligationRecord.created_at, ReverificationObligationRecord.id)
        with session_scope(self.session_factory) as session:
            return [ReverificationObligation.model_validate(r) for r in session.execute(query).scalars()]

    def pending(self) -> List[ReverificationObligation]:
        return self.list(status=ObligationStatus.PENDING)

    # =========================================================================
    # PROCESSING
    # =========================================================================

    def _claim(self) -> Dict[str, List[str]]:
        """
        Move pending obligations to running; returns ids by program.

        Running obligations that never got a run id are claimed again once
        their claim is older than claim_timeout.
        """
        claimed: Dict[str, List[str]] = defaultdict(list)
        now = datetime.utcnow()
        stale_before = now - timedelta(seconds=self.claim_timeout)
        claimable = or_(
            ReverificationObligationRecord.status == ObligationStatus.PENDING.value,
            and_(
                ReverificationObligationRecord.status == ObligationStatus.RUNNING.value,
                ReverificationObligationRecord.run_id.is_(None),
                or_(
                    ReverificationObligationRecord.claimed_at.is_(None),
                    ReverificationObligationRecord.claimed_at <= stale_before,
                ),
            ),
        )
        with session_scope(self.session_factory) as session:
            candidates = session.execute(
                select(
                    ReverificationObligationRecord.id,
                    ReverificationObligationRecord.program_code,
                    ReverificationObligationRecord.status,
                )
                .where(claimable)
                .order_by(ReverificationObligationRecord.created_at)
            ).all()
            for obligation_id, program_code, status in candidates:
                if status == ObligationStatus.RUNNING.value:
                    logger.warning(f"Reclaiming stale re-verification obligation {obligation_id}")
                result = session.execute(
                    update(ReverificationObligationRecord)
                    .where(ReverificationObligationRecord.id == obligation_id, claimable)
                    .values(status=ObligationStatus.RUNNING.value, claimed_at=now)
                )
                if result.rowcount:
                    claimed[program_code].append(obligation_id)
        return dict(claimed)

    def _release(self, obligation_ids: List[str]) -> None:
        """Return claimed obligations to pending for the next sweep."""
        with session_scope(self.session_factory) as session:
            session.execute(
                update(ReverificationObligationRecord)
                .where(
                    ReverificationObligationRecord.id.in_(obligation_ids),
                    ReverificationObligationRecord.run_id.is_(None),
                )
                .values(status=ObligationStatus.PENDING.value, claimed_at=None)
            )

    def _assign_run(self, obligation_ids: List[str], run_id: str) -> None:
        with session_scope(self.session_factory) as session:
            session.execute(
                update(ReverificationObligationRecord)
                .where(ReverificationObligationRecord.id.in_(obligation_ids))
                .values(run_id=run_id)
            )

    def _complete(
        self, program_code: str, obligation_ids: List[str], run: Optional[EvaluationRun]
    ) -> bool:
        verified = (
            run is not None
            and run.status == RunStatus.COMPLETED
            and run.failed_cases == 0
            and run.passed_cases == run.total_cases
        )
        status = ObligationStatus.VERIFIED if verified else ObligationStatus.FAILED
        with session_scope(self.session_factory) as session:
            session.execute(
                update(ReverificationObligationRecord)
                .where(ReverificationObligationRecord.id.in_(obligation_ids))
                .values(status=status.value, completed_at=datetime.utcnow())
            )

        logger.info(
            f"Re-verification of {program_code}: {len(obligation_ids)} obligations {status.value}",
            extra={"program": program_code, "run_id": run.id if run else None},
        )
        self.event_bus.publish(ReverificationCompleted(
            aggregate_id=run.id if run else None,
            program_code=program_code,
            run_id=run.id if run else "",
            obligation_ids=list(obligation_ids),
            verified=verified,
        ))
        return verified

    def process_pending(
        self,
        harness: "EvaluationHarness",
        wait: bool = True,
        timeout: Optional[float] = None,
        triggered_by: str = "reverification",
    ) -> List[str]:
        """
        Claim pending obligations and start one evaluation run per program.

        Args:
            harness: Harness used to run each program's active test cases.
            wait: Block on in-process runs and record their outcome now.
                Runs that are still executing are settled by a later
                call to sync_running().
            timeout: Per-run wait timeout in seconds.
            triggered_by: Recorded on the evaluation runs.

        Returns:
            Ids of the runs started.
        """
        claimed = self._claim()
        run_ids = []

        for program_code, obligation_ids in sorted(claimed.items()):
            cases = harness.test_cases.list(program=program_code, is_active=True, limit=10_000)
            if not cases:
                logger.warning(
                    f"No active test cases for {program_code}; "
                    f"{len(obligation_ids)} obligations cannot be verified"
                )
                self._complete(program_code, obligation_ids, None)
                continue

            try:
                run = harness.run_evaluation(
                    test_case_ids=[c.id for c in cases],
                    name=f"Re-verification {program_code} {datetime.utcnow():%Y-%m-%d %H:%M:%S}",
                    triggered_by=triggered_by,
                )
            except BenefitRulesError as e:
                logger.error(f"Could not start re-verification run for {program_code}: {e.message}")
                self._complete(program_code, obligation_ids, None)
                continue
            except Exception as e:
                logger.error(
                    f"Unexpected error starting re-verification run for {program_code}: {e}",
                    exc_info=True,
                )
                self._release(obligation_ids)
                continue

            self._assign_run(obligation_ids, run.id)
            run_ids.append(run.id)
            if wait:
                harness.wait(run.id, timeout=timeout)

        self.sync_running(harness)
        return run_ids

    def sync_running(self, harness: "EvaluationHarness") -> int:
        """Settle running obligations whose evaluation run has finished."""
        with session_scope(self.session_factory) as session:
            rows = session.execute(
                select(
                    ReverificationObligationRecord.id,
                    ReverificationObligationRecord.program_code,
                    ReverificationObligationRecord.run_id,
                ).where(
                    ReverificationObligationRecord.status == ObligationStatus.RUNNING.value,
                    ReverificationObligationRecord.run_id.is_not(None),
                )
            ).all()

        by_run: Dict[tuple, List[str]] = defaultdict(list)
        for obligation_id, program_code, run_id in rows:
            by_run[(run_id, program_code)].append(obligation_id)

        settled = 0
        for (run_id, program_code), obligation_ids in by_run.items():
            try:
                run = harness.get_run(run_id)
            except NotFoundError:
                run = None
            if run is not None and not run.is_finished:
                continue
            self._complete(program_code, obligation_ids, run)
            settled += len(obligation_ids)
        return settled
