"""
Provision-impact pipeline: legislative provisions, ontology mappings,
human review and re-verification obligations.
"""

from .models import (
    ApprovalOutcome,
    BulkApprovalResult,
    MappingStats,
    MappingType,
    MatchMethod,
    ObligationStatus,
    OntologyTerm,
    OntologyTermCreate,
    PriorityLevel,
    Provision,
    ProvisionCreate,
    ProvisionMapping,
    ReverificationObligation,
    ReviewStatus,
)
from .citation import Citation, citation_score, normalize_citation, parse_citations
from .text_matcher import OpenAITextMatcher, TextMatch
from .obligations import ReverificationQueue
from .mapper import (
    VALID_TRANSITIONS,
    ProvisionMapper,
    combine_scores,
    determine_priority,
    infer_mapping_type,
)

__all__ = [
    "ApprovalOutcome",
    "BulkApprovalResult",
    "MappingStats",
    "MappingType",
    "MatchMethod",
    "ObligationStatus",
    "OntologyTerm",
    "OntologyTermCreate",
    "PriorityLevel",
    "Provision",
    "ProvisionCreate",
    "ProvisionMapping",
    "ReverificationObligation",
    "ReviewStatus",
    "Citation",
    "citation_score",
    "normalize_citation",
    "parse_citations",
    "OpenAITextMatcher",
    "TextMatch",
    "ReverificationQueue",
    "VALID_TRANSITIONS",
    "ProvisionMapper",
    "combine_scores",
    "determine_priority",
    "infer_mapping_type",
]
