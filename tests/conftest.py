"""
Shared fixtures for the benefit rules platform tests.

Every test gets its own SQLite file so rule stores, repositories and the
provision mapper never share state across tests.
"""

import os
from decimal import Decimal

import pytest

os.environ.setdefault("APP_ENVIRONMENT", "test")
os.environ["EVAL_DISPATCH_MODE"] = "thread"


# =============================================================================
# DATABASE AND EVENTS
# =============================================================================

@pytest.fixture
def session_factory(tmp_path):
    """Session factory bound to a fresh SQLite database."""
    from config.database import DatabaseSettings
    from database.connection import create_session_factory

    factory = create_session_factory(DatabaseSettings(url=f"sqlite:///{tmp_path / 'rules.db'}"))
    yield factory
    factory.kw["bind"].dispose()


@pytest.fixture
def recorder():
    from domain.event_bus import RecordingEventHandler

    return RecordingEventHandler()


@pytest.fixture
def event_bus(recorder):
    from domain.event_bus import EventBus

    bus = EventBus()
    bus.subscribe_all(recorder.handle)
    return bus


# =============================================================================
# RULES
# =============================================================================

@pytest.fixture
def store(session_factory, event_bus):
    """Empty rule store with US as the federal fallback jurisdiction."""
    from rules.rule_store import RuleStore

    return RuleStore(session_factory, event_bus, "US")


@pytest.fixture
def seeded_store(store):
    """Rule store loaded with the YAML seed rules for SNAP, TANF, Medicaid and EITC."""
    from config.rule_config_loader import seed_rule_store

    seed_rule_store(store)
    return store


@pytest.fixture
def engine(seeded_store):
    from calculator.engine import RulesEngine

    return RulesEngine(seeded_store)


# =============================================================================
# EVALUATION
# =============================================================================

@pytest.fixture
def test_cases(session_factory):
    from evaluation.repository import TestCaseRepository

    return TestCaseRepository(session_factory)


@pytest.fixture
def runs(session_factory):
    from evaluation.repository import EvaluationRunRepository

    return EvaluationRunRepository(session_factory)


@pytest.fixture
def eval_settings():
    from config.settings import EvaluationSettings

    return EvaluationSettings(max_workers=2, dispatch_mode="thread")


@pytest.fixture
def verifier():
    """Reference verifier whose client must never be reached."""
    from unittest.mock import MagicMock

    from verification.reference_verifier import ReferenceVerifier

    return ReferenceVerifier(client=MagicMock())


@pytest.fixture
def harness(engine, test_cases, runs, verifier, eval_settings, event_bus):
    from evaluation.harness import EvaluationHarness

    harness = EvaluationHarness(
        engine=engine,
        test_cases=test_cases,
        runs=runs,
        verifier=verifier,
        settings=eval_settings,
        event_bus=event_bus,
    )
    yield harness
    harness.shutdown(wait=True)


@pytest.fixture
def default_tolerance():
    return Decimal("2.00")


# =============================================================================
# PROVISIONS
# =============================================================================

@pytest.fixture
def obligations(session_factory, event_bus):
    from provisions.obligations import ReverificationQueue

    return ReverificationQueue(session_factory, event_bus)


@pytest.fixture
def matching_settings():
    from config.settings import MatchingSettings

    return MatchingSettings()


@pytest.fixture
def mapper(store, obligations, session_factory, matching_settings, event_bus):
    """Mapper without a text matcher: confidence is citation-only."""
    from provisions.mapper import ProvisionMapper

    return ProvisionMapper(
        store,
        obligations,
        text_matcher=None,
        session_factory=session_factory,
        settings=matching_settings,
        event_bus=event_bus,
    )


# =============================================================================
# HOUSEHOLDS
# =============================================================================

@pytest.fixture
def snap_household():
    """Three-person working household with shelter costs above the excess threshold."""
    return {
        "size": 3,
        "income": {"earned": 2500},
        "expenses": {"shelter": 900, "utilities": 150},
        "jurisdiction": "MD",
    }


@pytest.fixture
def tanf_household():
    return {
        "size": 3,
        "members": [{"age": 30}, {"age": 5}, {"age": 3}],
        "income": {"earned": 500},
        "jurisdiction": "MD",
    }


@pytest.fixture
def eitc_household():
    return {
        "size": 2,
        "members": [{"age": 35}, {"age": 4}],
        "income": {"earned": 1000},
        "jurisdiction": "MD",
    }
