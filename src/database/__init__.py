"""
Database Layer for the benefit rules platform.

This module provides:
- SQLAlchemy ORM models for rules, evaluation runs and the provision pipeline
- Engine and session management (SQLite for development, PostgreSQL in production)
"""

from .models import (
    Base,
    RuleRecord,
    RuleDependencyRecord,
    TestCaseRecord,
    EvaluationRunRecord,
    EvaluationResultRecord,
    ProvisionRecord,
    OntologyTermRecord,
    ProvisionMappingRecord,
    ReverificationObligationRecord,
)
from .connection import (
    build_engine,
    create_session_factory,
    get_db_session,
    get_sync_engine,
    get_sync_session_factory,
    init_database,
    session_scope,
    close_sync_engine,
)

__all__ = [
    "Base",
    "RuleRecord",
    "RuleDependencyRecord",
    "TestCaseRecord",
    "EvaluationRunRecord",
    "EvaluationResultRecord",
    "ProvisionRecord",
    "OntologyTermRecord",
    "ProvisionMappingRecord",
    "ReverificationObligationRecord",
    "build_engine",
    "create_session_factory",
    "get_db_session",
    "get_sync_engine",
    "get_sync_session_factory",
    "init_database",
    "session_scope",
    "close_sync_engine",
]
