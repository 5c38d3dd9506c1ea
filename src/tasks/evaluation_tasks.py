"""
Evaluation tasks.

- execute_evaluation_run: run every case of a created run (dispatched by
  the harness when EVAL_DISPATCH_MODE=celery)
- retry_evaluation_case: re-issue one case of a run
- process_reverification_obligations: beat task sweeping the obligation
  queue
"""

from __future__ import annotations

import logging
from typing import Any, Dict

from core.service_registry import register_default_services, services
from middleware.correlation import correlation_id_context
from tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


def _service(name: str) -> Any:
    if not services.has(name):
        register_default_services()
    return services.require(name)


@celery_app.task(name="tasks.evaluation_tasks.execute_evaluation_run")
def execute_evaluation_run(run_id: str) -> Dict[str, Any]:
    with correlation_id_context(run_id):
        run = _service("harness").execute_run(run_id)
    return {
        "run_id": run.id,
        "status": run.status.value,
        "passed_cases": run.passed_cases,
        "failed_cases": run.failed_cases,
    }


@celery_app.task(name="tasks.evaluation_tasks.retry_evaluation_case")
def retry_evaluation_case(run_id: str, test_case_id: str) -> Dict[str, Any]:
    with correlation_id_context(run_id):
        result = _service("harness").retry_case(run_id, test_case_id)
    return {"run_id": run_id, "test_case_id": test_case_id, "passed": result.passed}


@celery_app.task(name="tasks.evaluation_tasks.process_reverification_obligations")
def process_reverification_obligations() -> Dict[str, Any]:
    """
    Start runs for pending obligations and settle finished ones.

    In celery dispatch mode the runs execute on other workers; their
    obligations are settled by a later sweep.
    """
    queue = _service("obligations")
    harness = _service("harness")
    with correlation_id_context():
        run_ids = queue.process_pending(harness, wait=harness.settings.dispatch_mode == "thread")
    logger.info(f"Re-verification sweep started {len(run_ids)} runs")
    return {"run_ids": run_ids}
