"""
SQLAlchemy ORM Models for the benefit rules database.

Architecture:
- Primary Keys: UUID strings for all tables (globally unique)
- Rules: effective-dated versions grouped into lineages, with lineage-level
  dependency edges
- Evaluation: test cases, runs and per-case results; results are unique
  per (run_id, test_case_id) so re-issued cases overwrite in place
- Provision pipeline: provisions, ontology terms, mappings and the
  re-verification obligations an approval produces
"""

from datetime import datetime
from uuid import uuid4

from sqlalchemy import (
    Column, String, Integer, Numeric, Boolean, Date, DateTime, Float,
    Text, ForeignKey, Index, UniqueConstraint, JSON,
)
from sqlalchemy.dialects.postgresql import JSONB as PG_JSONB
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.types import TypeDecorator


# Cross-database compatible JSON type
# Uses JSONB on PostgreSQL, JSON on SQLite/others
class JSONB(TypeDecorator):
    """A portable JSONB type that works with both PostgreSQL and SQLite."""
    impl = JSON
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == 'postgresql':
            return dialect.type_descriptor(PG_JSONB())
        else:
            return dialect.type_descriptor(JSON())


Base = declarative_base()


def new_id() -> str:
    return str(uuid4())


# =============================================================================
# RULES
# =============================================================================

class RuleRecord(Base):
    """
    A codified rule version.

    Secondary Key: (program_code, rule_type, jurisdiction) - effective date
    ranges of approved/superseded versions never overlap for one key.
    """
    __tablename__ = "rules"

    id = Column(String(36), primary_key=True, default=new_id)
    program_code = Column(String(32), nullable=False, index=True)
    rule_type = Column(String(40), nullable=False)
    jurisdiction = Column(String(8), nullable=False, default="US")

    parameters = Column(JSONB, nullable=False, comment="Typed parameters tagged by kind")
    effective_date = Column(Date, nullable=False)
    expiration_date = Column(Date, nullable=True, comment="Exclusive end of the effective range")
    source_citation = Column(String(255), default="")
    description = Column(Text, default="")

    status = Column(String(16), nullable=False, default="draft", index=True)
    version = Column(Integer, nullable=False, default=1)
    lineage_id = Column(String(36), nullable=False, index=True)
    supersedes_id = Column(String(36), ForeignKey("rules.id"), nullable=True)
    ontology_terms = Column(JSONB, default=list)

    created_by = Column(String(100), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    approved_by = Column(String(100), nullable=True)
    approved_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("ix_rules_key", "program_code", "rule_type", "jurisdiction", "status"),
    )


class RuleDependencyRecord(Base):
    """Edge: lineage_id depends on depends_on_lineage_id."""
    __tablename__ = "rule_dependencies"

    lineage_id = Column(String(36), primary_key=True)
    depends_on_lineage_id = Column(String(36), primary_key=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


# =============================================================================
# EVALUATION
# =============================================================================

class TestCaseRecord(Base):
    """Curated evaluation test case."""
    __tablename__ = "evaluation_test_cases"
    __test__ = False

    id = Column(String(36), primary_key=True, default=new_id)
    program = Column(String(32), nullable=False, index=True)
    category = Column(String(64), nullable=False, default="general", index=True)
    name = Column(String(200), nullable=False)
    description = Column(Text, default="")
    input_data = Column(JSONB, nullable=False)
    expected_result = Column(JSONB, nullable=False)
    tolerance = Column(Numeric(6, 2), nullable=False)
    tags = Column(JSONB, default=list)
    as_of_date = Column(Date, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False, index=True)

    created_by = Column(String(100), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class EvaluationRunRecord(Base):
    """Batch execution of test cases."""
    __tablename__ = "evaluation_runs"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(200), nullable=False)
    program = Column(String(32), nullable=True, index=True)
    status = Column(String(16), nullable=False, default="running", index=True)
    verify_reference = Column(Boolean, default=False, nullable=False)
    test_case_ids = Column(JSONB, default=list)

    total_cases = Column(Integer, default=0, nullable=False)
    passed_cases = Column(Integer, default=0, nullable=False)
    failed_cases = Column(Integer, default=0, nullable=False)
    errored_cases = Column(Integer, default=0, nullable=False)
    average_variance = Column(Numeric(10, 2), nullable=True)

    triggered_by = Column(String(100), nullable=True)
    error_message = Column(Text, nullable=True)
    started_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    completed_at = Column(DateTime, nullable=True)

    results = relationship(
        "EvaluationResultRecord",
        back_populates="run",
        cascade="all, delete-orphan",
    )


class EvaluationResultRecord(Base):
    """One test case's outcome within a run."""
    __tablename__ = "evaluation_results"

    id = Column(String(36), primary_key=True, default=new_id)
    run_id = Column(String(36), ForeignKey("evaluation_runs.id"), nullable=False, index=True)
    test_case_id = Column(String(36), nullable=False, index=True)

    actual_result = Column(JSONB, nullable=True)
    reference_result = Column(JSONB, nullable=True)
    passed = Column(Boolean, nullable=False, default=False)
    variance = Column(Numeric(10, 2), nullable=True)
    failure_type = Column(String(16), nullable=False, default="none")
    execution_time_ms = Column(Integer, default=0, nullable=False)
    error_message = Column(Text, nullable=True)
    attempts = Column(Integer, default=1, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    run = relationship("EvaluationRunRecord", back_populates="results")

    __table_args__ = (
        UniqueConstraint("run_id", "test_case_id", name="uq_result_run_case"),
    )


# =============================================================================
# PROVISION PIPELINE
# =============================================================================

class ProvisionRecord(Base):
    """A discrete unit of legislative text. Never updated after insert."""
    __tablename__ = "legislative_provisions"

    id = Column(String(36), primary_key=True, default=new_id)
    public_law_id = Column(String(64), nullable=False, index=True)
    section_number = Column(String(64), nullable=False)
    section_title = Column(String(255), nullable=True)
    provision_type = Column(String(64), nullable=False)
    provision_text = Column(Text, nullable=False)
    provision_summary = Column(Text, nullable=True)
    us_code_citation = Column(String(128), nullable=True)
    affected_programs = Column(JSONB, default=list)
    effective_date = Column(Date, nullable=True)
    ingested_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("public_law_id", "section_number", name="uq_provision_section"),
    )


class OntologyTermRecord(Base):
    """Canonical concept that rules and provisions are mapped against."""
    __tablename__ = "ontology_terms"

    id = Column(String(36), primary_key=True, default=new_id)
    term_name = Column(String(200), nullable=False)
    canonical_name = Column(String(200), nullable=False, unique=True)
    program_code = Column(String(32), nullable=False, index=True)
    domain = Column(String(64), nullable=False, default="eligibility")
    definition = Column(Text, nullable=False, default="")
    statutory_citation = Column(String(128), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class ProvisionMappingRecord(Base):
    """Link from a provision to the ontology term and/or rule it affects."""
    __tablename__ = "provision_mappings"

    id = Column(String(36), primary_key=True, default=new_id)
    provision_id = Column(String(36), ForeignKey("legislative_provisions.id"), nullable=False, index=True)
    ontology_term_id = Column(String(36), ForeignKey("ontology_terms.id"), nullable=True, index=True)
    rule_id = Column(String(36), ForeignKey("rules.id"), nullable=True, index=True)

    mapping_type = Column(String(32), nullable=False)
    match_method = Column(String(32), nullable=False)
    ai_confidence_score = Column(Float, nullable=False, default=0.0)
    citation_match_score = Column(Float, nullable=False, default=0.0)
    semantic_similarity_score = Column(Float, nullable=True)

    review_status = Column(String(16), nullable=False, default="pending", index=True)
    priority_level = Column(String(16), nullable=False, default="normal", index=True)
    mapping_reason = Column(Text, default="")
    impact_description = Column(Text, default="")

    reviewed_by = Column(String(100), nullable=True)
    reviewed_at = Column(DateTime, nullable=True)
    review_notes = Column(Text, nullable=True)
    rejection_reason = Column(Text, nullable=True)
    verification_batch_id = Column(String(36), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class ReverificationObligationRecord(Base):
    """A rule that must be re-verified because an approved mapping affected it."""
    __tablename__ = "reverification_obligations"

    id = Column(String(36), primary_key=True, default=new_id)
    mapping_id = Column(String(36), ForeignKey("provision_mappings.id"), nullable=False, index=True)
    rule_id = Column(String(36), ForeignKey("rules.id"), nullable=False)
    program_code = Column(String(32), nullable=False)
    batch_id = Column(String(36), nullable=True, index=True)
    status = Column(String(16), nullable=False, default="pending", index=True)
    run_id = Column(String(36), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    claimed_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    __table_args__ = (
        UniqueConstraint("mapping_id", "rule_id", name="uq_obligation_mapping_rule"),
    )
