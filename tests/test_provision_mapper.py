"""
Tests for the ProvisionMapper: ingestion, scoring, review state machine
and impact analysis on approval.
"""

from datetime import date, timedelta
from unittest.mock import MagicMock

import pytest

from core.errors import InvalidInputError, MappingStateError, NotFoundError, RuleConflictError
from domain.events import (
    MappingApproved,
    MappingProposed,
    MappingRejected,
    ReverificationQueued,
    RuleSuperseded,
)
from provisions.mapper import combine_scores, determine_priority, infer_mapping_type
from provisions.models import (
    MappingType,
    MatchMethod,
    ObligationStatus,
    OntologyTermCreate,
    PriorityLevel,
    ProvisionCreate,
    ReviewStatus,
)
from provisions.text_matcher import TextMatch
from rules.models import RuleAmendment, RuleDraft
from rules.rule_types import RuleStatus, RuleType

EFFECTIVE = date(2024, 10, 1)

PARAMS = {
    RuleType.DEDUCTION: {"standard_by_size": {1: 198}, "earned_income_percent": 0.20},
    RuleType.INCOME_LIMIT: {"limits": {1: {"gross_limit": 2301, "net_limit": 1150.50}}},
    RuleType.ALLOTMENT: {"rows": {1: {"max_benefit": 292}}},
    RuleType.CATEGORICAL_ELIGIBILITY: {"qualifying_programs": ["SSI"]},
}


def add_approved(store, program, rule_type, depends_on=(), citation=""):
    rule = store.add_rule(RuleDraft(
        program_code=program,
        rule_type=rule_type,
        jurisdiction="MD",
        parameters=PARAMS[rule_type],
        effective_date=EFFECTIVE,
        depends_on=list(depends_on),
        source_citation=citation,
    ))
    return store.approve_rule(rule.id, approved_by="policy-team")


@pytest.fixture
def rule_graph(store):
    """
    A SNAP deduction with four dependents across two programs:

        base <- snap income_limit <- snap categorical
        base <- snap allotment
        base <- tanf income_limit
    """
    base = add_approved(store, "SNAP", RuleType.DEDUCTION, citation="7 U.S.C. 2014(e)")
    snap_limit = add_approved(store, "SNAP", RuleType.INCOME_LIMIT, [base.id])
    snap_allotment = add_approved(store, "SNAP", RuleType.ALLOTMENT, [base.id])
    categorical = add_approved(store, "SNAP", RuleType.CATEGORICAL_ELIGIBILITY, [snap_limit.id])
    tanf_limit = add_approved(store, "TANF", RuleType.INCOME_LIMIT, [base.id])
    return {
        "base": base,
        "snap_limit": snap_limit,
        "snap_allotment": snap_allotment,
        "categorical": categorical,
        "tanf_limit": tanf_limit,
    }


def provision_data(**overrides):
    values = {
        "public_law_id": "PL 118-99",
        "section_number": "4102",
        "section_title": "Standard deduction",
        "provision_type": "amendment",
        "provision_text": "Section 5(e)(1) of the Food and Nutrition Act of 2008 is amended.",
        "us_code_citation": "7 U.S.C. 2014(e)",
        "affected_programs": ["snap"],
    }
    values.update(overrides)
    return ProvisionCreate(**values)


class TestHelpers:
    """Tests for mapping type inference, priority and score combination."""

    @pytest.mark.parametrize(
        "provision_type,text,expected",
        [
            ("repeal", "Subsection (k) applies.", MappingType.REMOVES),
            ("amendment", "Paragraph (3) is struck.", MappingType.REMOVES),
            ("new_section", "A program is established.", MappingType.CREATES),
            ("amendment", "The following is added at the end.", MappingType.CREATES),
            ("amendment", "This section shall supersede section 6.", MappingType.SUPERSEDES),
            ("amendment", "Notwithstanding paragraph (2), a household...", MappingType.ADDS_EXCEPTION),
            ("amendment", "Striking 20 percent and inserting 25.", MappingType.MODIFIES_THRESHOLD),
            ("amendment", "The term 'household' means a group.", MappingType.CLARIFIES),
            ("amendment", "Section 5 is amended.", MappingType.AMENDS),
        ],
    )
    def test_infer_mapping_type(self, provision_type, text, expected):
        assert infer_mapping_type(provision_type, text) == expected

    def test_priority_from_severity(self, matching_settings):
        today = date(2025, 1, 1)
        far = date(2026, 1, 1)

        assert determine_priority(MappingType.SUPERSEDES, ["SNAP"], far, matching_settings, today) == PriorityLevel.URGENT
        assert determine_priority(MappingType.AMENDS, ["SNAP"], far, matching_settings, today) == PriorityLevel.HIGH
        assert determine_priority(MappingType.CREATES, ["SNAP"], None, matching_settings, today) == PriorityLevel.NORMAL
        assert determine_priority(MappingType.CLARIFIES, ["SNAP"], far, matching_settings, today) == PriorityLevel.LOW

    def test_priority_from_effective_date(self, matching_settings):
        today = date(2025, 1, 1)

        assert determine_priority(
            MappingType.CLARIFIES, [], today + timedelta(days=30), matching_settings, today
        ) == PriorityLevel.URGENT
        assert determine_priority(
            MappingType.CLARIFIES, [], today + timedelta(days=60), matching_settings, today
        ) == PriorityLevel.HIGH
        assert determine_priority(
            MappingType.CLARIFIES, [], today - timedelta(days=5), matching_settings, today
        ) == PriorityLevel.URGENT

    def test_broad_impact_escalates_one_level(self, matching_settings):
        programs = ["SNAP", "TANF", "MEDICAID"]
        assert determine_priority(MappingType.CLARIFIES, programs, None, matching_settings) == PriorityLevel.NORMAL
        assert determine_priority(MappingType.SUPERSEDES, programs, None, matching_settings) == PriorityLevel.URGENT

    def test_combine_scores(self, matching_settings):
        assert combine_scores(1.0, None, matching_settings) == 1.0
        assert combine_scores(0.0, 0.9, matching_settings) == 0.54
        assert combine_scores(0.7, 0.8, matching_settings) == 0.76


class TestProvisionsAndTerms:
    """Tests for provision ingestion and ontology terms."""

    def test_ingest_is_idempotent(self, mapper):
        first = mapper.ingest_provision(provision_data())
        second = mapper.ingest_provision(provision_data(provision_text="Different text"))

        assert second.id == first.id
        assert second.provision_text == first.provision_text
        assert first.affected_programs == ["SNAP"]
        assert len(mapper.list_provisions()) == 1

    def test_list_provisions_by_program(self, mapper):
        mapper.ingest_provision(provision_data())
        mapper.ingest_provision(provision_data(section_number="4103", affected_programs=["TANF"]))

        assert [p.section_number for p in mapper.list_provisions("tanf")] == ["4103"]

    def test_unknown_provision(self, mapper):
        with pytest.raises(NotFoundError):
            mapper.get_provision("missing")

    def test_register_term_links_rules(self, mapper, store, rule_graph):
        base = rule_graph["base"]
        term = mapper.register_term(OntologyTermCreate(
            term_name="Standard deduction",
            canonical_name="snap.standard_deduction",
            program_code="snap",
            statutory_citation="7 U.S.C. 2014(e)(1)",
            rule_ids=[base.id],
        ))

        assert term.program_code == "SNAP"
        assert store.get_rule(base.id).ontology_terms == [term.id]
        assert [r.id for r in store.rules_referencing_term(term.id)] == [base.id]
        assert [t.id for t in mapper.list_terms("SNAP")] == [term.id]

    def test_duplicate_canonical_name(self, mapper):
        data = OntologyTermCreate(term_name="Gross income", canonical_name="snap.gross_income", program_code="SNAP")
        mapper.register_term(data)

        with pytest.raises(InvalidInputError):
            mapper.register_term(data)


class TestProposals:
    """Tests for propose_mapping() and match_provision()."""

    def test_citation_only_confidence(self, mapper, rule_graph, recorder):
        provision = mapper.ingest_provision(provision_data())
        mapping = mapper.propose_mapping(provision.id, rule_id=rule_graph["base"].id)

        assert mapping.review_status == ReviewStatus.PENDING
        assert mapping.citation_match_score == 1.0
        assert mapping.semantic_similarity_score is None
        assert mapping.ai_confidence_score == 1.0
        assert mapping.match_method == MatchMethod.CITATION_MATCH
        assert mapping.mapping_type == MappingType.AMENDS
        assert mapping.priority_level == PriorityLevel.HIGH
        assert mapping.mapping_reason.startswith("Citation match")
        assert len(recorder.of_type(MappingProposed)) == 1

    def test_duplicate_pending_proposal_returns_existing(self, mapper, rule_graph, recorder):
        provision = mapper.ingest_provision(provision_data())
        first = mapper.propose_mapping(provision.id, rule_id=rule_graph["base"].id)
        second = mapper.propose_mapping(provision.id, rule_id=rule_graph["base"].id)

        assert second.id == first.id
        assert len(recorder.of_type(MappingProposed)) == 1

    def test_requires_target(self, mapper):
        provision = mapper.ingest_provision(provision_data())
        with pytest.raises(InvalidInputError):
            mapper.propose_mapping(provision.id)

    def test_manual_mapping(self, mapper, rule_graph):
        provision = mapper.ingest_provision(provision_data(us_code_citation=None))
        mapping = mapper.propose_mapping(
            provision.id, rule_id=rule_graph["tanf_limit"].id,
            mapping_type=MappingType.CLARIFIES, manual=True,
        )

        assert mapping.match_method == MatchMethod.MANUAL
        assert mapping.ai_confidence_score == 0.0
        assert mapping.mapping_reason == "Manual mapping"
        assert mapping.priority_level == PriorityLevel.LOW

    def test_semantic_score_blended(self, store, obligations, session_factory, matching_settings, event_bus):
        from provisions.mapper import ProvisionMapper

        matcher = MagicMock()
        matcher.similarity.return_value = TextMatch(0.9, "Changes how the deduction is computed.")
        mapper = ProvisionMapper(store, obligations, matcher, session_factory, matching_settings, event_bus)

        provision = mapper.ingest_provision(provision_data(us_code_citation="42 U.S.C. 1396a"))
        term = mapper.register_term(OntologyTermCreate(
            term_name="Earned income deduction",
            canonical_name="snap.earned_income_deduction",
            program_code="SNAP",
            definition="Share of earnings excluded from net income",
            statutory_citation="7 U.S.C. 2014(e)(2)",
        ))
        mapping = mapper.propose_mapping(provision.id, ontology_term_id=term.id)

        assert mapping.citation_match_score == 0.0
        assert mapping.semantic_similarity_score == 0.9
        assert mapping.ai_confidence_score == 0.54
        assert mapping.match_method == MatchMethod.SEMANTIC_SIMILARITY
        assert mapping.mapping_reason == "Changes how the deduction is computed."

    def test_match_provision_filters_terms(self, mapper):
        provision = mapper.ingest_provision(provision_data())
        close = mapper.register_term(OntologyTermCreate(
            term_name="Standard deduction", canonical_name="snap.standard_deduction",
            program_code="SNAP", statutory_citation="7 U.S.C. 2014(e)(1)",
        ))
        mapper.register_term(OntologyTermCreate(
            term_name="Allotment", canonical_name="snap.allotment",
            program_code="SNAP", statutory_citation="7 U.S.C. 2017(a)",
        ))
        mapper.register_term(OntologyTermCreate(
            term_name="TCA deduction", canonical_name="tanf.earned_income_disregard",
            program_code="TANF", statutory_citation="7 U.S.C. 2014(e)",
        ))

        mappings = mapper.match_provision(provision.id)

        assert [m.ontology_term_id for m in mappings] == [close.id]
        assert mappings[0].citation_match_score == 0.9
        assert mapper.match_provision(provision.id)[0].id == mappings[0].id


class TestReview:
    """Tests for approve(), reject() and bulk_approve()."""

    def test_approve_enqueues_closure(self, mapper, obligations, rule_graph, recorder):
        """Test approving a mapping on a base rule obligates it and all four dependents."""
        provision = mapper.ingest_provision(provision_data())
        mapping = mapper.propose_mapping(
            provision.id, rule_id=rule_graph["base"].id, mapping_type=MappingType.SUPERSEDES
        )

        outcome = mapper.approve(mapping.id, reviewer="analyst", notes="Confirmed")

        assert outcome.mapping.review_status == ReviewStatus.APPROVED
        assert outcome.mapping.reviewed_by == "analyst"
        assert outcome.affected_count == 5
        assert set(outcome.affected_rule_ids) == {r.id for r in rule_graph.values()}
        assert len(outcome.obligation_ids) == 5
        assert outcome.superseding_rule is None

        queued = obligations.list(mapping_id=mapping.id)
        assert {o.status for o in queued} == {ObligationStatus.PENDING}
        assert {o.program_code for o in queued} == {"SNAP", "TANF"}
        assert {o.batch_id for o in queued} == {outcome.verification_batch_id}

        approved = recorder.of_type(MappingApproved)
        assert len(approved) == 1
        assert approved[0].verification_batch_id == outcome.verification_batch_id
        assert recorder.of_type(ReverificationQueued)[0].obligation_count == 5

    def test_approve_with_amendment_supersedes_rule(self, mapper, store, rule_graph, recorder):
        base = rule_graph["base"]
        provision = mapper.ingest_provision(provision_data())
        mapping = mapper.propose_mapping(provision.id, rule_id=base.id)

        outcome = mapper.approve(
            mapping.id,
            reviewer="analyst",
            amendment=RuleAmendment(
                parameters={"standard_by_size": {1: 204}, "earned_income_percent": 0.20},
                effective_date=date(2025, 10, 1),
            ),
        )

        successor = outcome.superseding_rule
        assert successor is not None
        assert successor.version == 2
        assert successor.lineage_id == base.lineage_id
        assert successor.supersedes_id == base.id
        assert successor.source_citation == "7 U.S.C. 2014(e)"
        assert successor.id in outcome.affected_rule_ids
        assert base.id not in outcome.affected_rule_ids
        assert outcome.affected_count == 5

        old = store.get_rule(base.id)
        assert old.status == RuleStatus.SUPERSEDED
        assert old.expiration_date == date(2025, 10, 1)
        assert recorder.of_type(RuleSuperseded)[0].successor_id == successor.id
        assert recorder.of_type(MappingApproved)[0].superseding_rule_id == successor.id

    def test_failed_supersession_leaves_mapping_pending(self, mapper, store, rule_graph):
        base = rule_graph["base"]
        provision = mapper.ingest_provision(provision_data())
        mapping = mapper.propose_mapping(provision.id, rule_id=base.id)

        with pytest.raises(RuleConflictError):
            mapper.approve(mapping.id, reviewer="analyst", amendment=RuleAmendment(
                parameters=PARAMS[RuleType.DEDUCTION], effective_date=EFFECTIVE,
            ))

        assert mapper.get_mapping(mapping.id).review_status == ReviewStatus.PENDING
        assert store.get_rule(base.id).status == RuleStatus.APPROVED
        assert mapper.obligations.list(mapping_id=mapping.id) == []

    def test_amendment_requires_rule_target(self, mapper):
        provision = mapper.ingest_provision(provision_data())
        term = mapper.register_term(OntologyTermCreate(
            term_name="Standard deduction", canonical_name="snap.standard_deduction", program_code="SNAP",
        ))
        mapping = mapper.propose_mapping(provision.id, ontology_term_id=term.id)

        with pytest.raises(InvalidInputError):
            mapper.approve(mapping.id, reviewer="analyst", amendment=RuleAmendment(
                parameters={}, effective_date=date(2025, 10, 1),
            ))

    def test_term_mapping_affects_referencing_rules(self, mapper, rule_graph):
        provision = mapper.ingest_provision(provision_data())
        term = mapper.register_term(OntologyTermCreate(
            term_name="Gross income limit", canonical_name="snap.gross_income_limit",
            program_code="SNAP", rule_ids=[rule_graph["snap_limit"].id],
        ))
        mapping = mapper.propose_mapping(provision.id, ontology_term_id=term.id)

        outcome = mapper.approve(mapping.id, reviewer="analyst")

        assert set(outcome.affected_rule_ids) == {rule_graph["snap_limit"].id, rule_graph["categorical"].id}

    def test_reject_requires_reason_then_is_terminal(self, mapper, rule_graph, recorder):
        provision = mapper.ingest_provision(provision_data())
        mapping = mapper.propose_mapping(provision.id, rule_id=rule_graph["base"].id)

        with pytest.raises(InvalidInputError):
            mapper.reject(mapping.id, "   ", reviewer="analyst")
        assert mapper.get_mapping(mapping.id).review_status == ReviewStatus.PENDING

        rejected = mapper.reject(mapping.id, "Provision targets a different subsection", reviewer="analyst")
        assert rejected.review_status == ReviewStatus.REJECTED
        assert rejected.rejection_reason == "Provision targets a different subsection"
        assert len(recorder.of_type(MappingRejected)) == 1

        with pytest.raises(MappingStateError) as exc_info:
            mapper.approve(mapping.id, reviewer="analyst")
        assert exc_info.value.current_status == "rejected"
        with pytest.raises(MappingStateError):
            mapper.reject(mapping.id, "again", reviewer="analyst")
        assert mapper.obligations.list(mapping_id=mapping.id) == []

    def test_approved_mapping_cannot_be_rejected(self, mapper, rule_graph):
        provision = mapper.ingest_provision(provision_data())
        mapping = mapper.propose_mapping(provision.id, rule_id=rule_graph["tanf_limit"].id)
        mapper.approve(mapping.id, reviewer="analyst")

        with pytest.raises(MappingStateError):
            mapper.reject(mapping.id, "late", reviewer="analyst")

    def test_bulk_approve_reports_failures(self, mapper, rule_graph):
        provision = mapper.ingest_provision(provision_data())
        first = mapper.propose_mapping(provision.id, rule_id=rule_graph["snap_allotment"].id)
        second = mapper.propose_mapping(provision.id, rule_id=rule_graph["tanf_limit"].id)
        mapper.reject(second.id, "Not relevant", reviewer="analyst")

        result = mapper.bulk_approve([first.id, second.id, "missing"], reviewer="lead")

        assert result.success_count == 1
        assert result.approved_ids == [first.id]
        assert set(result.errors) == {second.id, "missing"}
        assert result.affected_rule_ids == [rule_graph["snap_allotment"].id]


class TestQueueAndStats:
    """Tests for review_queue() and stats()."""

    def test_queue_orders_by_priority_then_confidence(self, mapper, rule_graph):
        provision = mapper.ingest_provision(provision_data())
        low = mapper.propose_mapping(provision.id, rule_id=rule_graph["snap_limit"].id,
                                     mapping_type=MappingType.CLARIFIES)
        urgent = mapper.propose_mapping(provision.id, rule_id=rule_graph["snap_allotment"].id,
                                        mapping_type=MappingType.SUPERSEDES)
        high_cited = mapper.propose_mapping(provision.id, rule_id=rule_graph["base"].id,
                                            mapping_type=MappingType.AMENDS)
        high_uncited = mapper.propose_mapping(provision.id, rule_id=rule_graph["tanf_limit"].id,
                                              mapping_type=MappingType.AMENDS)

        queue = mapper.review_queue()
        assert [m.id for m in queue] == [urgent.id, high_cited.id, high_uncited.id, low.id]
        assert [m.id for m in mapper.review_queue(priority=PriorityLevel.HIGH)] == [high_cited.id, high_uncited.id]
        assert [m.id for m in mapper.review_queue(rule_id=rule_graph["snap_limit"].id)] == [low.id]

    def test_stats(self, mapper, rule_graph):
        provision = mapper.ingest_provision(provision_data())
        first = mapper.propose_mapping(provision.id, rule_id=rule_graph["base"].id)
        second = mapper.propose_mapping(provision.id, rule_id=rule_graph["tanf_limit"].id,
                                        mapping_type=MappingType.CLARIFIES)
        third = mapper.propose_mapping(provision.id, rule_id=rule_graph["snap_allotment"].id)
        mapper.approve(first.id, reviewer="analyst")
        mapper.reject(third.id, "Duplicate", reviewer="analyst")

        stats = mapper.stats()

        assert stats.by_status == {"pending": 1, "approved": 1, "rejected": 1}
        assert stats.pending_by_priority == {"urgent": 0, "high": 0, "normal": 0, "low": 1}
        assert stats.total == 3
        assert [m.id for m in mapper.list_mappings(status=ReviewStatus.PENDING)] == [second.id]
