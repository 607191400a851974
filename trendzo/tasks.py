"""Celery tasks wrapping the ETL job runner."""

from __future__ import annotations

import logging
from typing import Any, Mapping

from celery import Task

from .celery_app import celery_app
from .config import load_config
from .jobs import summarize_result
from .pipeline import run_job

LOGGER = logging.getLogger(__name__)


@celery_app.task(name="trendzo.run_etl_job", bind=True)
def run_etl_job_task(
    self: Task,
    job_type: str,
    options: Mapping[str, Any] | None = None,
    job_id: str | None = None,
) -> dict[str, Any]:
    # Failures are retried inside run_job; Celery-level retries would duplicate writes.
    config = load_config()
    try:
        outcome = run_job(job_type, options, config=config, job_id=job_id)
    except ValueError as exc:
        LOGGER.error("Rejected %s job %s: %s", job_type, job_id or "-", exc)
        return {"job_id": job_id, "status": "failed", "error": str(exc)}

    job = outcome.job
    LOGGER.info("ETL job %s (%s) finished with status %s", job["id"], job_type, job["status"])
    payload: dict[str, Any] = {
        "job_id": job["id"],
        "status": job["status"],
        "result": summarize_result(outcome.result),
    }
    if outcome.error is not None:
        payload["error"] = str(outcome.error)
    return payload


__all__ = ["run_etl_job_task"]
