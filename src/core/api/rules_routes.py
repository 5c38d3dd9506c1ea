"""
Rules API Routes

- POST /rules/evaluate            : eligibility and benefit determination
- POST /rules/document-checklist  : documents a household must provide
- GET  /rules/programs            : supported program codes
- GET  /rules                     : list rule versions
- POST /rules                     : author a draft rule
- GET  /rules/{id}                : one rule version
- GET  /rules/{id}/dependents     : rules depending on a rule's lineage
- PUT  /rules/{id}/dependencies   : replace dependency edges
- POST /rules/{id}/approve        : make a draft effective
- POST /rules/{id}/supersede      : approve a successor version
"""

import logging
from datetime import date
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, ConfigDict, Field

from calculator.engine import RulesEngine
from calculator.programs import ProgramRegistry
from rules.models import RuleAmendment, RuleDraft
from rules.rule_store import RuleStore
from rules.rule_types import RuleStatus, RuleType

from .dependencies import get_engine, get_rule_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/rules", tags=["Rules"])


# =============================================================================
# MODELS
# =============================================================================

class EvaluateRequest(BaseModel):
    """Determination request; accepts ``asOfDate`` or ``as_of_date``."""
    model_config = ConfigDict(populate_by_name=True)

    program: str
    household: Dict[str, Any]
    as_of_date: Optional[date] = Field(default=None, alias="asOfDate")


class ApproveRuleRequest(BaseModel):
    approved_by: str = Field(min_length=1)


class SupersedeRuleRequest(RuleAmendment):
    approved_by: str = Field(min_length=1)


class DependenciesRequest(BaseModel):
    depends_on: List[str] = Field(default_factory=list)


def _rule_json(rule) -> Dict[str, Any]:
    return rule.model_dump(mode="json")


# =============================================================================
# EVALUATION
# =============================================================================

@router.post("/evaluate")
def evaluate(request: EvaluateRequest, engine: RulesEngine = Depends(get_engine)):
    """
    Determine eligibility and benefit for a household.

    Returns the Determination with camelCase keys (eligible,
    monthlyBenefit or annualCredit, appliedRules, ...).
    """
    determination = engine.evaluate(request.program, request.household, request.as_of_date)
    return determination.to_api_dict()


@router.post("/document-checklist")
def document_checklist(request: EvaluateRequest, engine: RulesEngine = Depends(get_engine)):
    return engine.document_checklist(request.program, request.household, request.as_of_date)


@router.get("/programs")
def list_programs():
    return {"programs": ProgramRegistry.get_supported_programs()}


# =============================================================================
# AUTHORING
# =============================================================================

@router.get("")
def list_rules(
    program: Optional[str] = Query(None),
    rule_type: Optional[RuleType] = Query(None),
    jurisdiction: Optional[str] = Query(None),
    rule_status: Optional[RuleStatus] = Query(None, alias="status"),
    store: RuleStore = Depends(get_rule_store),
):
    rules = store.list_rules(program, rule_type, jurisdiction, rule_status)
    return {"rules": [_rule_json(r) for r in rules], "count": len(rules)}


@router.post("", status_code=status.HTTP_201_CREATED)
def create_rule(
    draft: RuleDraft,
    created_by: Optional[str] = Query(None),
    store: RuleStore = Depends(get_rule_store),
):
    """Author a draft rule. Parameters are validated against the rule type."""
    return _rule_json(store.add_rule(draft, created_by=created_by))


@router.get("/{rule_id}")
def get_rule(rule_id: str, store: RuleStore = Depends(get_rule_store)):
    return _rule_json(store.get_rule(rule_id))


@router.get("/{rule_id}/dependents")
def get_dependents(
    rule_id: str,
    transitive: bool = Query(True),
    store: RuleStore = Depends(get_rule_store),
):
    dependents = store.dependents_of(rule_id, transitive=transitive)
    return {"rule_id": rule_id, "dependents": [_rule_json(r) for r in dependents]}


@router.put("/{rule_id}/dependencies")
def set_dependencies(
    rule_id: str,
    request: DependenciesRequest,
    store: RuleStore = Depends(get_rule_store),
):
    return _rule_json(store.set_dependencies(rule_id, request.depends_on))


@router.post("/{rule_id}/approve")
def approve_rule(
    rule_id: str,
    request: ApproveRuleRequest,
    store: RuleStore = Depends(get_rule_store),
):
    return _rule_json(store.approve_rule(rule_id, approved_by=request.approved_by))


@router.post("/{rule_id}/supersede", status_code=status.HTTP_201_CREATED)
def supersede_rule(
    rule_id: str,
    request: SupersedeRuleRequest,
    store: RuleStore = Depends(get_rule_store),
):
    successor = store.supersede(
        rule_id,
        request.parameters,
        request.effective_date,
        approved_by=request.approved_by,
        expiration_date=request.expiration_date,
        source_citation=request.source_citation,
        description=request.description,
    )
    return _rule_json(successor)
