"""Firestore-backed content store."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

import firebase_admin
from firebase_admin import credentials, firestore

from .config import FirestoreConfig
from .persistence import ContentPersistenceError, RecordNotFoundError, merge_sound, new_record_id, utcnow

LOGGER = logging.getLogger(__name__)

TEMPLATES = "templates"
SOUNDS = "sounds"
JOBS = "etlJobs"
ERRORS = "etlErrors"
NOTIFICATIONS = "notifications"
TREND_REPORTS = "soundTrendReports"


def build_firestore_client(config: FirestoreConfig):
    """Initialise the default Firebase app once and return a Firestore client."""

    if config.credentials_json:
        cred = credentials.Certificate(json.loads(config.credentials_json))
    elif config.credentials_path:
        cred = credentials.Certificate(config.credentials_path)
    else:
        # Falls back to Application Default Credentials.
        cred = credentials.ApplicationDefault()
    if not firebase_admin._apps:
        options = {"projectId": config.project_id} if config.project_id else None
        firebase_admin.initialize_app(cred, options)
    return firestore.client()


def _from_firestore(value: Any) -> Any:
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value
    if isinstance(value, dict):
        return {key: _from_firestore(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_from_firestore(item) for item in value]
    return value


def _snapshot_to_dict(snapshot) -> dict[str, Any]:
    record = _from_firestore(snapshot.to_dict() or {})
    record["id"] = snapshot.id
    return record


class FirestoreContentStore:
    """Stores templates, sounds and ETL bookkeeping in Firestore collections."""

    def __init__(self, client) -> None:
        self._db = client

    def _collection(self, name: str):
        return self._db.collection(name)

    def _set(self, collection: str, record: Mapping[str, Any], *, record_id: Optional[str] = None) -> dict[str, Any]:
        doc_id = record_id or record.get("id") or new_record_id()
        payload = {key: value for key, value in record.items() if key != "id"}
        now = utcnow()
        payload.setdefault("created_at", now)
        payload.setdefault("updated_at", now)
        try:
            self._collection(collection).document(doc_id).set(payload)
        except Exception as exc:  # pragma: no cover - failure path
            raise ContentPersistenceError(str(exc)) from exc
        return {"id": doc_id, **payload}

    def _get(self, collection: str, doc_id: str) -> Optional[dict[str, Any]]:
        try:
            snapshot = self._collection(collection).document(doc_id).get()
        except Exception as exc:  # pragma: no cover - failure path
            raise ContentPersistenceError(str(exc)) from exc
        if not snapshot.exists:
            return None
        return _snapshot_to_dict(snapshot)

    def _update(self, collection: str, kind: str, doc_id: str, changes: Mapping[str, Any]) -> dict[str, Any]:
        existing = self._get(collection, doc_id)
        if existing is None:
            raise RecordNotFoundError(kind, doc_id)
        payload = {key: value for key, value in changes.items() if key != "id"}
        payload["updated_at"] = utcnow()
        try:
            self._collection(collection).document(doc_id).update(payload)
        except Exception as exc:  # pragma: no cover - failure path
            raise ContentPersistenceError(str(exc)) from exc
        existing.update(payload)
        return existing

    def _query(
        self,
        collection: str,
        *,
        filters: Mapping[str, Any] | None = None,
        order_field: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[dict[str, Any]]:
        query = self._collection(collection)
        for field_path, value in (filters or {}).items():
            if value is not None:
                query = query.where(field_path, "==", value)
        # Equality filters combined with ordering need composite indexes; sort locally instead.
        if order_field and not any(value is not None for value in (filters or {}).values()):
            query = query.order_by(order_field, direction=firestore.Query.DESCENDING)
            if limit:
                query = query.limit(limit)
        try:
            records = [_snapshot_to_dict(snapshot) for snapshot in query.stream()]
        except Exception as exc:  # pragma: no cover - failure path
            raise ContentPersistenceError(str(exc)) from exc
        if order_field:
            records.sort(key=lambda record: _sort_key(record.get(order_field)), reverse=True)
        return records[:limit] if limit else records

    # Templates

    def create_template(self, record: Mapping[str, Any]) -> dict[str, Any]:
        # Every ingestion writes a fresh document.
        return self._set(TEMPLATES, record, record_id=new_record_id())

    def get_template(self, template_id: str) -> Optional[dict[str, Any]]:
        return self._get(TEMPLATES, template_id)

    def list_templates(
        self, *, category: Optional[str] = None, active_only: bool = True, limit: int = 100
    ) -> list[dict[str, Any]]:
        filters = {"category": category, "is_active": True if active_only else None}
        return self._query(TEMPLATES, filters=filters, order_field="created_at", limit=limit)

    def update_template(self, template_id: str, changes: Mapping[str, Any]) -> dict[str, Any]:
        return self._update(TEMPLATES, "Template", template_id, changes)

    # Sounds

    def upsert_sound(self, record: Mapping[str, Any]) -> tuple[dict[str, Any], bool]:
        sound_id = record.get("id")
        if not sound_id:
            raise ValueError("Sound records require an id")
        existing = self._get(SOUNDS, sound_id)
        if existing is None:
            return self._set(SOUNDS, record), True
        merged = merge_sound(existing, record)
        merged["updated_at"] = utcnow()
        return self._set(SOUNDS, merged), False

    def get_sound(self, sound_id: str) -> Optional[dict[str, Any]]:
        return self._get(SOUNDS, sound_id)

    def list_sounds(
        self, *, category: Optional[str] = None, stage: Optional[str] = None, limit: int = 100
    ) -> list[dict[str, Any]]:
        filters = {"sound_category": category, "lifecycle.stage": stage}
        return self._query(SOUNDS, filters=filters, order_field="usage_count", limit=limit)

    def update_sound(self, sound_id: str, changes: Mapping[str, Any]) -> dict[str, Any]:
        return self._update(SOUNDS, "Sound", sound_id, changes)

    # Jobs

    def create_job(self, record: Mapping[str, Any]) -> dict[str, Any]:
        return self._set(JOBS, record)

    def get_job(self, job_id: str) -> Optional[dict[str, Any]]:
        return self._get(JOBS, job_id)

    def update_job(self, job_id: str, changes: Mapping[str, Any]) -> dict[str, Any]:
        return self._update(JOBS, "Job", job_id, changes)

    def list_jobs(
        self, *, status: Optional[str] = None, job_type: Optional[str] = None, limit: int = 20
    ) -> list[dict[str, Any]]:
        filters = {"status": status, "type": job_type}
        return self._query(JOBS, filters=filters, order_field="created_at", limit=limit)

    # Errors, notifications and reports

    def add_error(self, record: Mapping[str, Any]) -> dict[str, Any]:
        return self._set(ERRORS, record)

    def list_errors(self, *, job_id: Optional[str] = None, limit: int = 100) -> list[dict[str, Any]]:
        return self._query(ERRORS, filters={"job_id": job_id}, order_field="created_at", limit=limit)

    def add_notification(self, record: Mapping[str, Any]) -> dict[str, Any]:
        return self._set(NOTIFICATIONS, record)

    def add_trend_report(self, record: Mapping[str, Any]) -> dict[str, Any]:
        return self._set(TREND_REPORTS, record)

    def latest_trend_report(self) -> Optional[dict[str, Any]]:
        reports = self._query(TREND_REPORTS, order_field="created_at", limit=1)
        return reports[0] if reports else None


def _sort_key(value: Any) -> tuple[int, Any]:
    if value is None:
        return (0, 0)
    if isinstance(value, datetime):
        return (1, value.timestamp())
    return (1, value)


__all__ = ["FirestoreContentStore", "build_firestore_client"]
