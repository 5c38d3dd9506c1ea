"""
Background tasks: Celery app with Redis broker, evaluation runs and
re-verification sweeps.
"""

from .celery_app import celery_app, get_task_info
from .evaluation_tasks import (
    execute_evaluation_run,
    process_reverification_obligations,
    retry_evaluation_case,
)

__all__ = [
    "celery_app",
    "get_task_info",
    "execute_evaluation_run",
    "process_reverification_obligations",
    "retry_evaluation_case",
]
