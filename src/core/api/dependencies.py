"""
FastAPI dependencies resolving platform services from the registry.

Overriding these in ``app.dependency_overrides`` (or registering other
instances in the registry) swaps the wiring in tests.
"""

from calculator.engine import RulesEngine
from core.service_registry import services
from evaluation.harness import EvaluationHarness
from evaluation.repository import TestCaseRepository
from provisions.mapper import ProvisionMapper
from provisions.obligations import ReverificationQueue
from rules.rule_store import RuleStore


def get_rule_store() -> RuleStore:
    return services.require("rule_store")


def get_engine() -> RulesEngine:
    return services.require("engine")


def get_test_cases() -> TestCaseRepository:
    return services.require("test_cases")


def get_harness() -> EvaluationHarness:
    return services.require("harness")


def get_mapper() -> ProvisionMapper:
    return services.require("mapper")


def get_obligations() -> ReverificationQueue:
    return services.require("obligations")
