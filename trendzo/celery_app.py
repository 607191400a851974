"""Celery application setup for scheduled ETL runs."""

from __future__ import annotations

from celery import Celery
from celery.schedules import crontab

from .config import EtlConfig, load_config

BEAT_SCHEDULE = {
    "trending-every-6-hours": {
        "task": "trendzo.run_etl_job",
        "schedule": crontab(minute=0, hour="*/6"),
        "kwargs": {"job_type": "trending", "options": {"max_items": 30}},
    },
    "categories-daily": {
        "task": "trendzo.run_etl_job",
        "schedule": crontab(minute=0, hour=0),
        "kwargs": {"job_type": "categories", "options": {"limit": 20}},
    },
    "update-stats-every-12-hours": {
        "task": "trendzo.run_etl_job",
        "schedule": crontab(minute=0, hour="*/12"),
        "kwargs": {"job_type": "update-stats", "options": {}},
    },
}


def create_celery_app(config: EtlConfig | None = None) -> Celery:
    """Instantiate the Celery app from the queue section of the ETL config."""

    config = config or load_config()
    queue = config.queue
    # Only the SQL backend can double as a broker; Firestore deployments stay in memory.
    db_url = config.db_url if config.use_supabase else None
    broker_url = queue.resolve_broker(db_url)
    backend_url = queue.resolve_backend(db_url)

    app = Celery("trendzo", broker=broker_url, backend=backend_url, include=["trendzo.tasks"])
    conf_updates = {
        "task_serializer": "json",
        "accept_content": ["json"],
        "result_serializer": "json",
        "task_always_eager": queue.always_eager,
        "task_acks_late": True,
        "task_reject_on_worker_lost": True,
        "worker_prefetch_multiplier": 1,
        "result_persistent": True,
        "broker_connection_retry_on_startup": True,
        "timezone": "UTC",
        "beat_schedule": BEAT_SCHEDULE,
    }
    if backend_url.startswith("db+"):
        conf_updates["database_engine_options"] = queue.engine_options()
        conf_updates["database_short_lived_sessions"] = True
    app.conf.update(**conf_updates)
    return app


celery_app = create_celery_app()


__all__ = ["BEAT_SCHEDULE", "celery_app", "create_celery_app"]
