"""ETL job records and the single re-attempt job runner."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Mapping, Optional

from .config import RetryConfig
from .errors import EtlErrorReporter
from .persistence import ContentStore, RecordNotFoundError, utcnow

LOGGER = logging.getLogger(__name__)


class JobStatus(str, Enum):
    SCHEDULED = "scheduled"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.SCHEDULED: frozenset({JobStatus.RUNNING}),
    JobStatus.RUNNING: frozenset({JobStatus.COMPLETED, JobStatus.FAILED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
}


class InvalidJobTransition(RuntimeError):
    """Raised when a job is moved to a status its current status cannot reach."""


def summarize_result(result: Any) -> dict[str, Any]:
    """Reduce an ETL result mapping to the counters stored on the job record."""

    if not isinstance(result, Mapping):
        return {"processed": 0, "failed": 0, "skipped": 0, "templates": 0, "message": str(result or "")}

    def pick(*keys: str) -> int:
        for key in keys:
            value = result.get(key)
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                return int(value)
        return 0

    templates = result.get("templates")
    template_count = len(templates) if isinstance(templates, list) else pick("templates", "total_templates")
    summary = {
        "processed": pick("success", "updated", "processed", "total_success", "linked"),
        "failed": pick("failed", "total_failed"),
        "skipped": pick("skipped", "total_skipped"),
        "templates": template_count,
        "message": str(result.get("message") or ""),
    }
    return summary


def _duration_ms(start: Any, end: datetime) -> Optional[int]:
    if not isinstance(start, datetime):
        return None
    return int((end - start).total_seconds() * 1000)


@dataclass(slots=True)
class JobOutcome:
    job: dict[str, Any]
    result: Any = None
    error: Optional[BaseException] = None
    attempts: int = 0

    @property
    def succeeded(self) -> bool:
        return self.job.get("status") == JobStatus.COMPLETED.value


class JobReporter:
    """Tracks ETL job records through ``scheduled -> running -> completed|failed``."""

    def __init__(
        self,
        store: ContentStore,
        *,
        retry: RetryConfig | None = None,
        error_reporter: EtlErrorReporter | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._retry = retry or RetryConfig()
        self._error_reporter = error_reporter
        self._clock = clock

    def create_job(
        self,
        job_type: str,
        name: str | None = None,
        parameters: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        now = self._clock()
        record = {
            "name": name or f"{job_type} ETL",
            "type": job_type,
            "status": JobStatus.SCHEDULED.value,
            "start_time": now,
            "parameters": dict(parameters or {}),
            "created_at": now,
        }
        job = self._store.create_job(record)
        LOGGER.info("Scheduled %s job %s", job_type, job["id"])
        return job

    def _transition(self, job_id: str, target: JobStatus, changes: Mapping[str, Any]) -> dict[str, Any]:
        job = self._store.get_job(job_id)
        if job is None:
            raise RecordNotFoundError("Job", job_id)
        current = JobStatus(job["status"])
        if target not in _TRANSITIONS[current]:
            raise InvalidJobTransition(f"Job {job_id} cannot move from {current.value} to {target.value}")
        payload = {"status": target.value, **changes}
        if target in (JobStatus.COMPLETED, JobStatus.FAILED):
            end = self._clock()
            payload["end_time"] = end
            payload["duration_ms"] = _duration_ms(job.get("start_time"), end)
        return self._store.update_job(job_id, payload)

    def start_job(self, job_id: str) -> dict[str, Any]:
        job = self._transition(job_id, JobStatus.RUNNING, {"start_time": self._clock()})
        LOGGER.info("Started job %s", job_id)
        return job

    def complete_job(self, job_id: str, result: Any) -> dict[str, Any]:
        job = self._transition(job_id, JobStatus.COMPLETED, {"result": summarize_result(result)})
        LOGGER.info("Completed job %s in %sms", job_id, job.get("duration_ms"))
        return job

    def fail_job(self, job_id: str, error: str, partial_result: Any = None) -> dict[str, Any]:
        job = self._transition(
            job_id,
            JobStatus.FAILED,
            {"error": error, "result": summarize_result(partial_result)},
        )
        LOGGER.error("Job %s failed: %s", job_id, error)
        return job

    def get_job(self, job_id: str) -> Optional[dict[str, Any]]:
        return self._store.get_job(job_id)

    def recent_jobs(self, limit: int = 20) -> list[dict[str, Any]]:
        return self._store.list_jobs(limit=limit)

    def jobs_by_status(self, status: JobStatus | str, limit: int = 20) -> list[dict[str, Any]]:
        return self._store.list_jobs(status=JobStatus(status).value, limit=limit)

    def jobs_by_type(self, job_type: str, limit: int = 20) -> list[dict[str, Any]]:
        return self._store.list_jobs(job_type=job_type, limit=limit)

    def run(
        self,
        job_type: str,
        fn: Callable[[str], Any],
        *,
        name: str | None = None,
        parameters: Mapping[str, Any] | None = None,
        job_id: str | None = None,
    ) -> JobOutcome:
        """Run ``fn(job_id)`` as a tracked job.

        A failing call is re-invoked immediately until the configured attempt
        count is used up; there is no delay between attempts.
        """

        if job_id is None:
            job_id = self.create_job(job_type, name, parameters)["id"]
        self.start_job(job_id)

        attempts = self._retry.attempts
        last_error: BaseException | None = None
        for attempt in range(1, attempts + 1):
            try:
                result = fn(job_id)
            except Exception as exc:
                last_error = exc
                LOGGER.warning("Job %s attempt %d/%d failed: %s", job_id, attempt, attempts, exc)
                continue
            job = self.complete_job(job_id, result)
            return JobOutcome(job=job, result=result, attempts=attempt)

        message = str(last_error) or type(last_error).__name__
        if self._error_reporter is not None:
            self._error_reporter.report(last_error, "unknown", job_id=job_id, context={"job_type": job_type})
            self._error_reporter.notify(f"{job_type} job failed", message, job_id=job_id)
        job = self.fail_job(job_id, message)
        return JobOutcome(job=job, error=last_error, attempts=attempts)


__all__ = [
    "InvalidJobTransition",
    "JobOutcome",
    "JobReporter",
    "JobStatus",
    "summarize_result",
]
