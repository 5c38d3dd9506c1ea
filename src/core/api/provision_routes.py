"""
Provision API Routes

- POST /provisions                          : ingest a provision
- GET  /provisions?program=
- POST /provisions/terms                    : register an ontology term
- GET  /provisions/terms?program=
- GET  /provisions/mappings/pending         : review queue
- GET  /provisions/mappings/stats
- POST /provisions/mappings                 : propose a mapping
- POST /provisions/mappings/bulk-approve
- GET  /provisions/mappings/{id}
- POST /provisions/mappings/{id}/approve
- POST /provisions/mappings/{id}/reject
- GET  /provisions/obligations?mapping_id=&status=
- POST /provisions/obligations/process      : run pending re-verification
- GET  /provisions/{id}
- POST /provisions/{id}/match               : propose mappings to candidate terms
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from evaluation.harness import EvaluationHarness
from provisions.mapper import ProvisionMapper
from provisions.models import (
    ApprovalOutcome,
    ApprovalRequest,
    BulkApprovalResult,
    MappingProposal,
    MappingStats,
    ObligationStatus,
    OntologyTerm,
    OntologyTermCreate,
    PriorityLevel,
    Provision,
    ProvisionCreate,
    ProvisionMapping,
    RejectionRequest,
    ReverificationObligation,
)
from provisions.obligations import ReverificationQueue

from .dependencies import get_harness, get_mapper, get_obligations

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/provisions", tags=["Provisions"])


class BulkApproveRequest(BaseModel):
    mapping_ids: List[str] = Field(min_length=1)
    reviewer: str = Field(min_length=1)
    notes: Optional[str] = None


def _outcome_json(outcome: ApprovalOutcome) -> Dict[str, Any]:
    return {
        "mapping": outcome.mapping.model_dump(mode="json"),
        "affected_rule_ids": outcome.affected_rule_ids,
        "affected_count": outcome.affected_count,
        "obligation_ids": outcome.obligation_ids,
        "verification_batch_id": outcome.verification_batch_id,
        "superseding_rule_id": outcome.superseding_rule.id if outcome.superseding_rule else None,
        "message": f"{outcome.affected_count} rules require re-verification",
    }


# =============================================================================
# PROVISIONS AND TERMS
# =============================================================================

@router.post("", response_model=Provision, status_code=status.HTTP_201_CREATED)
def ingest_provision(request: ProvisionCreate, mapper: ProvisionMapper = Depends(get_mapper)):
    return mapper.ingest_provision(request)


@router.get("", response_model=List[Provision])
def list_provisions(
    program: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    mapper: ProvisionMapper = Depends(get_mapper),
):
    return mapper.list_provisions(program=program, limit=limit)


@router.post("/terms", response_model=OntologyTerm, status_code=status.HTTP_201_CREATED)
def register_term(request: OntologyTermCreate, mapper: ProvisionMapper = Depends(get_mapper)):
    return mapper.register_term(request)


@router.get("/terms", response_model=List[OntologyTerm])
def list_terms(program: Optional[str] = Query(None), mapper: ProvisionMapper = Depends(get_mapper)):
    return mapper.list_terms(program=program)


# =============================================================================
# MAPPINGS
# =============================================================================

@router.get("/mappings/pending", response_model=List[ProvisionMapping])
def review_queue(
    rule_id: Optional[str] = Query(None),
    ontology_term_id: Optional[str] = Query(None),
    priority: Optional[PriorityLevel] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    mapper: ProvisionMapper = Depends(get_mapper),
):
    """Pending mappings: priority desc, confidence desc, oldest first."""
    return mapper.review_queue(
        rule_id=rule_id, ontology_term_id=ontology_term_id, priority=priority,
        limit=limit, offset=offset,
    )


@router.get("/mappings/stats", response_model=MappingStats)
def mapping_stats(mapper: ProvisionMapper = Depends(get_mapper)):
    return mapper.stats()


@router.post("/mappings", response_model=ProvisionMapping, status_code=status.HTTP_201_CREATED)
def propose_mapping(request: MappingProposal, mapper: ProvisionMapper = Depends(get_mapper)):
    return mapper.propose_mapping(
        request.provision_id,
        ontology_term_id=request.ontology_term_id,
        rule_id=request.rule_id,
        mapping_type=request.mapping_type,
        manual=request.manual,
        mapping_reason=request.mapping_reason,
    )


@router.post("/mappings/bulk-approve", response_model=BulkApprovalResult)
def bulk_approve(request: BulkApproveRequest, mapper: ProvisionMapper = Depends(get_mapper)):
    return mapper.bulk_approve(request.mapping_ids, request.reviewer, notes=request.notes)


@router.get("/mappings/{mapping_id}", response_model=ProvisionMapping)
def get_mapping(mapping_id: str, mapper: ProvisionMapper = Depends(get_mapper)):
    return mapper.get_mapping(mapping_id)


@router.post("/mappings/{mapping_id}/approve")
def approve_mapping(
    mapping_id: str,
    request: ApprovalRequest,
    mapper: ProvisionMapper = Depends(get_mapper),
):
    outcome = mapper.approve(
        mapping_id, request.reviewer, notes=request.notes, amendment=request.amendment
    )
    return _outcome_json(outcome)


@router.post("/mappings/{mapping_id}/reject", response_model=ProvisionMapping)
def reject_mapping(
    mapping_id: str,
    request: RejectionRequest,
    mapper: ProvisionMapper = Depends(get_mapper),
):
    return mapper.reject(mapping_id, request.reason, request.reviewer)


# =============================================================================
# RE-VERIFICATION
# =============================================================================

@router.get("/obligations", response_model=List[ReverificationObligation])
def list_obligations(
    mapping_id: Optional[str] = Query(None),
    obligation_status: Optional[ObligationStatus] = Query(None, alias="status"),
    queue: ReverificationQueue = Depends(get_obligations),
):
    return queue.list(mapping_id=mapping_id, status=obligation_status)


@router.post("/obligations/process", status_code=status.HTTP_202_ACCEPTED)
def process_obligations(
    queue: ReverificationQueue = Depends(get_obligations),
    harness: EvaluationHarness = Depends(get_harness),
):
    """Start re-verification runs for pending obligations without waiting."""
    run_ids = queue.process_pending(harness, wait=False, triggered_by="api")
    return {"run_ids": run_ids, "started": len(run_ids)}


# =============================================================================
# SINGLE PROVISION
# =============================================================================

@router.get("/{provision_id}", response_model=Provision)
def get_provision(provision_id: str, mapper: ProvisionMapper = Depends(get_mapper)):
    return mapper.get_provision(provision_id)


@router.post("/{provision_id}/match", response_model=List[ProvisionMapping])
def match_provision(provision_id: str, mapper: ProvisionMapper = Depends(get_mapper)):
    return mapper.match_provision(provision_id)
