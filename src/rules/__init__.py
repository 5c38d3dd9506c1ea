"""
Rule store module.

Versioned, effective-dated program rules keyed by program, rule type
and jurisdiction, with typed parameters and a lineage dependency graph.
"""

from .rule_types import RuleStatus, RuleType, ProgramCode
from .models import Rule, RuleDraft, RuleAmendment, RuleSet

__all__ = [
    "RuleStatus",
    "RuleType",
    "ProgramCode",
    "Rule",
    "RuleDraft",
    "RuleAmendment",
    "RuleSet",
]
