"""ETL error normalization, recording and notifications."""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

from .persistence import ContentPersistenceError, ContentStore, utcnow

LOGGER = logging.getLogger(__name__)

PHASES = ("extraction", "transformation", "loading", "validation", "unknown")

PHASE_ERROR_TYPES = {
    "extraction": "EXTRACT_ERROR",
    "transformation": "TRANSFORM_ERROR",
    "loading": "LOAD_ERROR",
    "validation": "VALIDATION_ERROR",
}
UNKNOWN_ERROR = "UNKNOWN_ERROR"


class EtlError(RuntimeError):
    """An error raised or caught during one phase of an ETL job."""

    def __init__(self, message: str, error_type: str = UNKNOWN_ERROR, *, phase: str = "unknown") -> None:
        super().__init__(message)
        self.error_type = error_type
        self.phase = phase


def error_type_for_phase(phase: str) -> str:
    return PHASE_ERROR_TYPES.get(phase, UNKNOWN_ERROR)


def normalize_error(error: BaseException | Any, phase: str) -> EtlError:
    if isinstance(error, EtlError):
        return error
    error_type = error_type_for_phase(phase)
    if isinstance(error, BaseException):
        normalized = EtlError(str(error) or type(error).__name__, error_type, phase=phase)
        normalized.__cause__ = error
        return normalized
    return EtlError(f"{phase.capitalize()} error: {error}", error_type, phase=phase)


class EtlErrorReporter:
    """Logs ETL errors and, when enabled, records them in the store."""

    def __init__(self, store: Optional[ContentStore], *, enabled: bool = True) -> None:
        self._store = store
        self._enabled = enabled and store is not None

    def report(
        self,
        error: BaseException | Any,
        phase: str,
        *,
        job_id: Optional[str] = None,
        item_id: Optional[str] = None,
        context: Mapping[str, Any] | None = None,
    ) -> EtlError:
        etl_error = normalize_error(error, phase)
        LOGGER.error(
            "%s during %s (job=%s, item=%s): %s",
            etl_error.error_type,
            phase,
            job_id or "-",
            item_id or "-",
            etl_error,
        )
        if self._enabled:
            record = {
                "job_id": job_id,
                "error_type": etl_error.error_type,
                "phase": phase,
                "message": str(etl_error),
                "item_id": item_id,
                "context": dict(context or {}),
                "created_at": utcnow(),
            }
            try:
                self._store.add_error(record)
            except ContentPersistenceError as exc:
                LOGGER.warning("Failed to record ETL error for job %s: %s", job_id, exc)
        return etl_error

    def notify(
        self,
        title: str,
        message: str,
        *,
        job_id: Optional[str] = None,
        kind: str = "etl_error",
    ) -> None:
        LOGGER.error("ETL notification [%s] %s: %s", kind, title, message)
        if not self._enabled:
            return
        try:
            self._store.add_notification(
                {
                    "kind": kind,
                    "title": title,
                    "message": message,
                    "job_id": job_id,
                    "read": False,
                    "created_at": utcnow(),
                }
            )
        except ContentPersistenceError as exc:
            LOGGER.warning("Failed to record notification for job %s: %s", job_id, exc)

    def error_stats(self, job_id: str) -> dict[str, Any]:
        if self._store is None:
            return {"total_errors": 0, "by_type": {}, "by_phase": {}}
        errors = self._store.list_errors(job_id=job_id, limit=1000)
        by_type: dict[str, int] = {}
        by_phase: dict[str, int] = {}
        for error in errors:
            error_type = error.get("error_type") or UNKNOWN_ERROR
            phase = error.get("phase") or "unknown"
            by_type[error_type] = by_type.get(error_type, 0) + 1
            by_phase[phase] = by_phase.get(phase, 0) + 1
        return {"total_errors": len(errors), "by_type": by_type, "by_phase": by_phase}


__all__ = [
    "EtlError",
    "EtlErrorReporter",
    "PHASES",
    "PHASE_ERROR_TYPES",
    "error_type_for_phase",
    "normalize_error",
]
