"""
Evaluation harness models.

Test cases describe a household, the program to evaluate and the result
a reviewer expects. Runs execute a set of test cases and aggregate the
per-case results.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class RunStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class FailureType(str, Enum):
    """Why a result did not pass."""
    NONE = "none"
    ASSERTION = "assertion"   # mismatch or variance above tolerance
    EXECUTION = "execution"   # engine or reference calculator error


class ExpectedResult(BaseModel):
    """Expected outcome; unset fields are not compared."""

    is_eligible: Optional[bool] = None
    monthly_benefit: Optional[Decimal] = Field(default=None, ge=0)
    annual_credit: Optional[Decimal] = Field(default=None, ge=0)


class EvaluationTestCaseCreate(BaseModel):
    """Input for creating a test case."""

    program: str
    category: str = "general"
    name: str = Field(min_length=1, max_length=200)
    description: str = ""
    input_data: Dict[str, Any]
    expected_result: ExpectedResult
    tolerance: Optional[Decimal] = Field(default=None, gt=0, le=100)
    tags: List[str] = Field(default_factory=list)
    as_of_date: Optional[date] = None
    created_by: Optional[str] = None

    @field_validator("program")
    @classmethod
    def normalize_program(cls, v: str) -> str:
        return v.strip().upper()


class EvaluationTestCaseUpdate(BaseModel):
    """Partial update; only provided fields change."""

    category: Optional[str] = None
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    input_data: Optional[Dict[str, Any]] = None
    expected_result: Optional[ExpectedResult] = None
    tolerance: Optional[Decimal] = Field(default=None, gt=0, le=100)
    tags: Optional[List[str]] = None
    as_of_date: Optional[date] = None
    is_active: Optional[bool] = None


class EvaluationTestCase(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    program: str
    category: str
    name: str
    description: str = ""
    input_data: Dict[str, Any]
    expected_result: ExpectedResult
    tolerance: Decimal
    tags: List[str] = Field(default_factory=list)
    as_of_date: Optional[date] = None
    is_active: bool = True
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class EvaluationRun(BaseModel):
    """
    One execution of a set of test cases.

    failed_cases counts every case that did not pass; errored_cases is
    the subset that failed to execute.
    """

    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    program: Optional[str] = None
    status: RunStatus
    verify_reference: bool = False
    test_case_ids: List[str] = Field(default_factory=list)
    total_cases: int = 0
    passed_cases: int = 0
    failed_cases: int = 0
    errored_cases: int = 0
    average_variance: Optional[Decimal] = None
    triggered_by: Optional[str] = None
    error_message: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def pass_rate(self) -> Optional[Decimal]:
        if not self.total_cases:
            return None
        return (Decimal(self.passed_cases) * 100 / Decimal(self.total_cases)).quantize(Decimal("0.01"))

    @property
    def is_finished(self) -> bool:
        return self.status != RunStatus.RUNNING


class EvaluationResult(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    run_id: str
    test_case_id: str
    actual_result: Optional[Dict[str, Any]] = None
    reference_result: Optional[Dict[str, Any]] = None
    passed: bool
    variance: Optional[Decimal] = None
    failure_type: FailureType = FailureType.NONE
    execution_time_ms: int = 0
    error_message: Optional[str] = None
    attempts: int = 1
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class RunSummary(BaseModel):
    """Pass rate and variance across recent completed runs."""

    program: Optional[str] = None
    runs_considered: int
    total_cases: int
    passed_cases: int
    failed_cases: int
    errored_cases: int
    pass_rate: Optional[Decimal] = None
    mean_variance: Optional[Decimal] = None
    last_run_id: Optional[str] = None
    last_run_status: Optional[RunStatus] = None
