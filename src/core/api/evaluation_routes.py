"""
Evaluation API Routes

Test cases:
- POST   /evaluation/test-cases
- GET    /evaluation/test-cases?program=&category=&is_active=&tag=
- GET    /evaluation/test-cases/{id}
- PATCH  /evaluation/test-cases/{id}
- POST   /evaluation/test-cases/{id}/deactivate
- DELETE /evaluation/test-cases/{id}
- GET    /evaluation/test-cases/{id}/results

Runs:
- POST /evaluation/runs                              (202, run in "running" state)
- GET  /evaluation/runs?program=&status=&limit=
- GET  /evaluation/runs/{id}
- GET  /evaluation/runs/{id}/results
- POST /evaluation/runs/{id}/cases/{test_case_id}/retry
- GET  /evaluation/summary?program=
"""

import logging
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Response, status
from pydantic import BaseModel, Field

from config.settings import get_settings
from evaluation.harness import EvaluationHarness
from evaluation.models import (
    EvaluationResult,
    EvaluationRun,
    EvaluationTestCase,
    EvaluationTestCaseCreate,
    EvaluationTestCaseUpdate,
    RunStatus,
    RunSummary,
)
from evaluation.repository import TestCaseRepository

from .dependencies import get_harness, get_test_cases

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/evaluation", tags=["Evaluation"])


class RunFilters(BaseModel):
    program: Optional[str] = None
    category: Optional[str] = None
    tag: Optional[str] = None


class StartRunRequest(BaseModel):
    """Either explicit test case ids or filters over active cases."""
    test_case_ids: Optional[List[str]] = None
    filters: Optional[RunFilters] = None
    verify_reference: bool = False
    name: Optional[str] = Field(default=None, max_length=200)
    triggered_by: Optional[str] = None


# =============================================================================
# TEST CASES
# =============================================================================

@router.post("/test-cases", response_model=EvaluationTestCase, status_code=status.HTTP_201_CREATED)
def create_test_case(
    request: EvaluationTestCaseCreate,
    repo: TestCaseRepository = Depends(get_test_cases),
):
    default_tolerance = Decimal(str(get_settings().evaluation.default_tolerance))
    return repo.create(request, default_tolerance)


@router.get("/test-cases", response_model=List[EvaluationTestCase])
def list_test_cases(
    program: Optional[str] = Query(None),
    category: Optional[str] = Query(None),
    is_active: Optional[bool] = Query(None),
    tag: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    repo: TestCaseRepository = Depends(get_test_cases),
):
    return repo.list(
        program=program, category=category, is_active=is_active, tag=tag,
        limit=limit, offset=offset,
    )


@router.get("/test-cases/{test_case_id}", response_model=EvaluationTestCase)
def get_test_case(test_case_id: str, repo: TestCaseRepository = Depends(get_test_cases)):
    return repo.get(test_case_id)


@router.patch("/test-cases/{test_case_id}", response_model=EvaluationTestCase)
def update_test_case(
    test_case_id: str,
    request: EvaluationTestCaseUpdate,
    repo: TestCaseRepository = Depends(get_test_cases),
):
    return repo.update(test_case_id, request)


@router.post("/test-cases/{test_case_id}/deactivate", response_model=EvaluationTestCase)
def deactivate_test_case(test_case_id: str, repo: TestCaseRepository = Depends(get_test_cases)):
    return repo.deactivate(test_case_id)


@router.delete("/test-cases/{test_case_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_test_case(test_case_id: str, repo: TestCaseRepository = Depends(get_test_cases)):
    repo.delete(test_case_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/test-cases/{test_case_id}/results", response_model=List[EvaluationResult])
def test_case_results(test_case_id: str, harness: EvaluationHarness = Depends(get_harness)):
    return harness.results_for_test_case(test_case_id)


# =============================================================================
# RUNS
# =============================================================================

@router.post("/runs", response_model=EvaluationRun, status_code=status.HTTP_202_ACCEPTED)
def start_run(request: StartRunRequest, harness: EvaluationHarness = Depends(get_harness)):
    """
    Start an evaluation run.

    Returns immediately with the run in ``running`` state; poll
    GET /evaluation/runs/{id} for the outcome.
    """
    return harness.run_evaluation(
        test_case_ids=request.test_case_ids,
        filters=request.filters.model_dump(exclude_none=True) if request.filters else None,
        verify_reference=request.verify_reference,
        name=request.name,
        triggered_by=request.triggered_by,
    )


@router.get("/runs", response_model=List[EvaluationRun])
def list_runs(
    program: Optional[str] = Query(None),
    run_status: Optional[RunStatus] = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=500),
    harness: EvaluationHarness = Depends(get_harness),
):
    return harness.list_runs(program=program, status=run_status, limit=limit)


@router.get("/runs/{run_id}", response_model=EvaluationRun)
def get_run(run_id: str, harness: EvaluationHarness = Depends(get_harness)):
    return harness.get_run(run_id)


@router.get("/runs/{run_id}/results", response_model=List[EvaluationResult])
def get_run_results(run_id: str, harness: EvaluationHarness = Depends(get_harness)):
    return harness.get_results(run_id)


@router.post("/runs/{run_id}/cases/{test_case_id}/retry", response_model=EvaluationResult)
def retry_case(run_id: str, test_case_id: str, harness: EvaluationHarness = Depends(get_harness)):
    return harness.retry_case(run_id, test_case_id)


@router.get("/summary", response_model=RunSummary)
def summary(
    program: Optional[str] = Query(None),
    harness: EvaluationHarness = Depends(get_harness),
):
    return harness.summary(program)
