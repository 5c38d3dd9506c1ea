"""
Celery App Configuration - background evaluation with a Redis broker.

Runs:
- Evaluation runs when EVAL_DISPATCH_MODE=celery
- Single-case retries
- Periodic re-verification obligation sweeps (beat)

Usage:
    # Run worker
    celery -A tasks.celery_app worker --loglevel=info

    # Run with beat scheduler
    celery -A tasks.celery_app worker --beat --loglevel=info
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from celery import Celery, Task
from celery.signals import task_failure, task_prerun, worker_ready, worker_shutdown

from config.settings import CelerySettings, RedisSettings, get_settings

logger = logging.getLogger(__name__)


def create_celery_app(
    redis_settings: Optional[RedisSettings] = None,
    celery_settings: Optional[CelerySettings] = None,
) -> Celery:
    """
    Create and configure the Celery application.

    Args:
        redis_settings: Redis connection settings
        celery_settings: Celery configuration settings
    """
    settings = get_settings()
    redis_settings = redis_settings or settings.redis
    celery_settings = celery_settings or settings.celery

    auth = f":{redis_settings.password}@" if redis_settings.password else ""
    protocol = "rediss" if redis_settings.ssl else "redis"
    base_url = f"{protocol}://{auth}{redis_settings.host}:{redis_settings.port}"

    app = Celery(
        "benefit_rules",
        broker=f"{base_url}/{celery_settings.broker_db}",
        backend=f"{base_url}/{celery_settings.result_db}",
        include=["tasks.evaluation_tasks"],
    )

    app.conf.update(
        task_serializer=celery_settings.task_serializer,
        result_serializer=celery_settings.result_serializer,
        accept_content=celery_settings.accept_content,
        result_accept_content=celery_settings.accept_content,

        # Obligations are delivered at least once; tasks must tolerate replays
        task_acks_late=celery_settings.task_acks_late,
        task_reject_on_worker_lost=celery_settings.task_reject_on_worker_lost,
        worker_prefetch_multiplier=celery_settings.worker_prefetch_multiplier,

        task_time_limit=celery_settings.task_time_limit,
        task_soft_time_limit=celery_settings.task_soft_time_limit,

        result_expires=3600,
        task_track_started=True,
        timezone="UTC",
        enable_utc=True,

        beat_schedule={
            "process-reverification-obligations": {
                "task": "tasks.evaluation_tasks.process_reverification_obligations",
                "schedule": celery_settings.reverification_interval,
            },
        },
    )

    return app


class TaskBase(Task):
    """Base task logging failures with task context."""

    abstract = True

    def on_failure(self, exc, task_id, args, kwargs, einfo):
        logger.error(
            f"Task {self.name}[{task_id}] failed: {exc}",
            extra={
                "task_id": task_id,
                "task_name": self.name,
                "task_args": args,
                "exception": str(exc),
            },
        )
        super().on_failure(exc, task_id, args, kwargs, einfo)


celery_app = create_celery_app()
celery_app.Task = TaskBase


@worker_ready.connect
def on_worker_ready(sender, **kwargs):
    logger.info(f"Celery worker ready: {sender}")


@worker_shutdown.connect
def on_worker_shutdown(sender, **kwargs):
    from core.service_registry import services

    services.reset_all()
    logger.info(f"Celery worker shutting down: {sender}")


@task_prerun.connect
def on_task_prerun(task_id, task, args, kwargs, **other):
    logger.debug(f"Task starting: {task.name}[{task_id}]", extra={"task_id": task_id})


@task_failure.connect
def on_task_failure(task_id, exception, args, kwargs, traceback, einfo, **other):
    task = other.get("sender")
    logger.warning(
        f"Task failure recorded: {task.name if task else 'unknown'}[{task_id}]",
        extra={"task_id": task_id, "exception": str(exception)},
    )


def get_task_info(task_id: str) -> Dict[str, Any]:
    """Status and result of a task."""
    result = celery_app.AsyncResult(task_id)
    info: Dict[str, Any] = {
        "task_id": task_id,
        "status": result.status,
        "ready": result.ready(),
    }
    if result.ready():
        if result.successful():
            info["result"] = result.result
        else:
            info["error"] = str(result.result)
    return info
