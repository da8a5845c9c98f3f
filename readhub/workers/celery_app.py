from __future__ import annotations

from celery import Celery, signals
from celery.schedules import crontab

from readhub.core.config import BaseAppSettings, get_settings
from readhub.core.logger import init_logging
from readhub.core.monitoring import init_monitoring


def _create_celery(settings: BaseAppSettings) -> Celery:
    celery = Celery(
        "readhub",
        broker=settings.REDIS_URL,
        backend=settings.REDIS_URL,
        include=["readhub.workers.tasks"],
    )
    celery.conf.update(
        task_default_queue="default",
        task_serializer="json",
        result_serializer="json",
        accept_content=["json"],
        timezone="UTC",
        enable_utc=True,
        task_always_eager=settings.ENV.lower() in {"test"},
        worker_hijack_root_logger=False,
    )
    # Beat schedule (only active outside test env)
    if settings.ENV.lower() not in {"test"}:
        celery.conf.beat_schedule = {
            "expire-due-subscriptions": {
                "task": "subscriptions.expire_due",
                "schedule": crontab(minute=5),  # hourly
            },
            "reconcile-stale-pending": {
                "task": "subscriptions.reconcile_stale_pending",
                "schedule": crontab(minute="*/15"),
            },
            "prune-webhook-events": {
                "task": "webhooks.prune_events",
                "schedule": crontab(minute=30, hour=3),  # 03:30 UTC daily
            },
        }
    return celery


@signals.setup_logging.connect
def _configure_worker_logging(**_kwargs) -> None:
    # Same handler and format as the API process
    init_logging(get_settings())


@signals.worker_process_init.connect
def _configure_worker_monitoring(**_kwargs) -> None:
    init_monitoring(get_settings())


celery_app = _create_celery(get_settings())
