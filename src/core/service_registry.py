"""
Service Registry.

Holds the platform's long-lived services (rule store, engine, harness,
mapper, obligation queue) so the web app, Celery workers and the CLI
share one wiring. Services are registered as factories and built on
first use; tests reset the cached instances between cases.

Usage:
    from core.service_registry import services, register_default_services

    register_default_services()
    engine = services.get("engine")

    # In tests (via conftest.py fixture)
    services.reset_all()
"""

import logging
from threading import RLock
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import sessionmaker

logger = logging.getLogger(__name__)


class ServiceRegistry:
    """Named services, either registered instances or lazily built factories."""

    def __init__(self):
        self._services: Dict[str, Any] = {}
        self._factories: Dict[str, Callable[[], Any]] = {}
        self._lock = RLock()

    def register(self, name: str, instance: Any) -> None:
        with self._lock:
            self._services[name] = instance
        logger.debug(f"Service registered: {name}")

    def register_factory(self, name: str, factory: Callable[[], Any]) -> None:
        """
        Register a factory called on first ``get()``; the result is cached.
        Re-registering drops any cached instance.
        """
        with self._lock:
            self._factories[name] = factory
            self._services.pop(name, None)
        logger.debug(f"Service factory registered: {name}")

    def get(self, name: str, default: Any = None) -> Any:
        with self._lock:
            if name in self._services:
                return self._services[name]
            if name in self._factories:
                instance = self._factories[name]()
                self._services[name] = instance
                return instance
        return default

    def require(self, name: str) -> Any:
        """Like get() but raises KeyError for unknown services."""
        instance = self.get(name)
        if instance is None:
            raise KeyError(f"Service not registered: {name}")
        return instance

    def has(self, name: str) -> bool:
        return name in self._services or name in self._factories

    def reset(self, name: str) -> None:
        with self._lock:
            self._services.pop(name, None)

    def reset_all(self) -> None:
        """Drop cached instances; factories stay registered."""
        with self._lock:
            instances = list(self._services.values())
            self._services.clear()
        for instance in instances:
            shutdown = getattr(instance, "shutdown", None)
            if callable(shutdown):
                shutdown(wait=False)
        logger.debug("All services reset")

    def unregister(self, name: str) -> None:
        with self._lock:
            self._services.pop(name, None)
            self._factories.pop(name, None)

    @property
    def registered_names(self) -> List[str]:
        return sorted(set(self._services) | set(self._factories))


# Global singleton registry
services = ServiceRegistry()


def register_default_services(
    session_factory: Optional[sessionmaker] = None,
    registry: Optional[ServiceRegistry] = None,
) -> ServiceRegistry:
    """
    Register factories for every platform service.

    Args:
        session_factory: Session factory shared by all services; the
            process-wide factory from database.connection when omitted.
        registry: Registry to populate (the global one by default).
    """
    from calculator.engine import RulesEngine
    from config.settings import get_settings
    from database.connection import get_sync_session_factory
    from evaluation.harness import EvaluationHarness
    from evaluation.repository import EvaluationRunRepository, TestCaseRepository
    from provisions.mapper import ProvisionMapper
    from provisions.obligations import ReverificationQueue
    from provisions.text_matcher import OpenAITextMatcher
    from rules.rule_store import RuleStore
    from verification.reference_verifier import ReferenceVerifier

    registry = registry or services

    def _sessions() -> sessionmaker:
        return session_factory or get_sync_session_factory()

    registry.register_factory("rule_store", lambda: RuleStore(_sessions()))
    registry.register_factory("engine", lambda: RulesEngine(registry.require("rule_store")))
    registry.register_factory("verifier", ReferenceVerifier)
    registry.register_factory("test_cases", lambda: TestCaseRepository(_sessions()))
    registry.register_factory("runs", lambda: EvaluationRunRepository(_sessions()))
    registry.register_factory("harness", lambda: EvaluationHarness(
        engine=registry.require("engine"),
        test_cases=registry.require("test_cases"),
        runs=registry.require("runs"),
        verifier=registry.require("verifier"),
        settings=get_settings().evaluation,
    ))
    registry.register_factory("obligations", lambda: ReverificationQueue(
        _sessions(),
        claim_timeout=get_settings().evaluation.reverification_claim_timeout,
    ))
    registry.register_factory("text_matcher", OpenAITextMatcher)
    registry.register_factory("mapper", lambda: ProvisionMapper(
        rule_store=registry.require("rule_store"),
        obligations=registry.require("obligations"),
        text_matcher=registry.require("text_matcher"),
        session_factory=_sessions(),
    ))
    logger.info("Default services registered")
    return registry
