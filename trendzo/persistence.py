"""Content store protocol, the SQL backend and the per-item persistence writer."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Mapping, Optional, Protocol

from sqlalchemy.orm import Session

from models import EtlErrorRecord, EtlJob, Notification, Sound, SoundTrendReport, Template, generate_uuid7

LOGGER = logging.getLogger(__name__)


class ContentPersistenceError(RuntimeError):
    """Raised when the backing store rejects a read or write."""


class RecordNotFoundError(LookupError):
    """Raised when updating a record that does not exist."""

    def __init__(self, kind: str, record_id: str) -> None:
        super().__init__(f"{kind} {record_id} not found")
        self.kind = kind
        self.record_id = record_id


def utcnow() -> datetime:
    """Naive UTC timestamp; both backends store timestamps without tzinfo."""

    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_record_id() -> str:
    return str(generate_uuid7())


class ContentStore(Protocol):
    def create_template(self, record: Mapping[str, Any]) -> dict[str, Any]: ...

    def get_template(self, template_id: str) -> Optional[dict[str, Any]]: ...

    def list_templates(
        self, *, category: Optional[str] = None, active_only: bool = True, limit: int = 100
    ) -> list[dict[str, Any]]: ...

    def update_template(self, template_id: str, changes: Mapping[str, Any]) -> dict[str, Any]: ...

    def upsert_sound(self, record: Mapping[str, Any]) -> tuple[dict[str, Any], bool]: ...

    def get_sound(self, sound_id: str) -> Optional[dict[str, Any]]: ...

    def list_sounds(
        self, *, category: Optional[str] = None, stage: Optional[str] = None, limit: int = 100
    ) -> list[dict[str, Any]]: ...

    def update_sound(self, sound_id: str, changes: Mapping[str, Any]) -> dict[str, Any]: ...

    def create_job(self, record: Mapping[str, Any]) -> dict[str, Any]: ...

    def get_job(self, job_id: str) -> Optional[dict[str, Any]]: ...

    def update_job(self, job_id: str, changes: Mapping[str, Any]) -> dict[str, Any]: ...

    def list_jobs(
        self, *, status: Optional[str] = None, job_type: Optional[str] = None, limit: int = 20
    ) -> list[dict[str, Any]]: ...

    def add_error(self, record: Mapping[str, Any]) -> dict[str, Any]: ...

    def list_errors(self, *, job_id: Optional[str] = None, limit: int = 100) -> list[dict[str, Any]]: ...

    def add_notification(self, record: Mapping[str, Any]) -> dict[str, Any]: ...

    def add_trend_report(self, record: Mapping[str, Any]) -> dict[str, Any]: ...

    def latest_trend_report(self) -> Optional[dict[str, Any]]: ...


def merge_sound(existing: Mapping[str, Any], incoming: Mapping[str, Any]) -> dict[str, Any]:
    """Fold a freshly extracted sound into the stored one.

    Counters and media fields take the incoming values, usage history and
    template usage accumulate, and the discovery date is preserved.
    """

    merged = dict(existing)
    for key, value in incoming.items():
        if key in {"usage_history", "template_usage", "related_template_ids", "lifecycle", "created_at"}:
            continue
        if value not in (None, "", [], {}):
            merged[key] = value

    history = dict(existing.get("usage_history") or {})
    history.update(incoming.get("usage_history") or {})
    merged["usage_history"] = history

    usage = list(existing.get("template_usage") or [])
    known = {entry.get("template_id") for entry in usage}
    for entry in incoming.get("template_usage") or []:
        if entry.get("template_id") not in known:
            usage.append(entry)
    merged["template_usage"] = usage

    related = list(existing.get("related_template_ids") or [])
    for template_id in incoming.get("related_template_ids") or []:
        if template_id not in related:
            related.append(template_id)
    merged["related_template_ids"] = related

    lifecycle = dict(existing.get("lifecycle") or {})
    incoming_lifecycle = incoming.get("lifecycle") or {}
    lifecycle.setdefault("discovery_date", incoming_lifecycle.get("discovery_date"))
    if incoming_lifecycle.get("last_detected_date"):
        lifecycle["last_detected_date"] = incoming_lifecycle["last_detected_date"]
    lifecycle.setdefault("stage", incoming_lifecycle.get("stage", "emerging"))
    merged["lifecycle"] = lifecycle
    return merged


# Record key -> ORM attribute, where they differ.
_TEMPLATE_ATTRS = {"metadata": "template_metadata"}
_SOUND_ATTRS = {"metadata": "sound_metadata"}


def _model_to_dict(obj: Any, renamed: Mapping[str, str] | None = None) -> dict[str, Any]:
    reverse = {attr: key for key, attr in (renamed or {}).items()}
    record: dict[str, Any] = {}
    for column in obj.__mapper__.column_attrs:
        record[reverse.get(column.key, column.key)] = getattr(obj, column.key)
    return record


def _apply_changes(obj: Any, changes: Mapping[str, Any], renamed: Mapping[str, str] | None = None) -> None:
    renamed = renamed or {}
    columns = {column.key for column in obj.__mapper__.column_attrs}
    for key, value in changes.items():
        attr = renamed.get(key, key)
        if attr == "id" or attr not in columns:
            continue
        setattr(obj, attr, value)


class SqlContentStore:
    """SQLAlchemy-backed store used for the Supabase (Postgres) backend."""

    def __init__(self, session_factory) -> None:
        self._session_factory = session_factory

    def _run(self, operation: Callable[[Session], Any]) -> Any:
        try:
            with self._session_factory() as session:
                result = operation(session)
                session.commit()
                return result
        except RecordNotFoundError:
            raise
        except Exception as exc:  # pragma: no cover - failure path
            raise ContentPersistenceError(str(exc)) from exc

    # Templates

    def create_template(self, record: Mapping[str, Any]) -> dict[str, Any]:
        def operation(session: Session) -> dict[str, Any]:
            template = Template(id=new_record_id())
            _apply_changes(template, record, _TEMPLATE_ATTRS)
            session.add(template)
            session.flush()
            return _model_to_dict(template, _TEMPLATE_ATTRS)

        return self._run(operation)

    def get_template(self, template_id: str) -> Optional[dict[str, Any]]:
        def operation(session: Session) -> Optional[dict[str, Any]]:
            template = session.get(Template, template_id)
            return _model_to_dict(template, _TEMPLATE_ATTRS) if template else None

        return self._run(operation)

    def list_templates(
        self, *, category: Optional[str] = None, active_only: bool = True, limit: int = 100
    ) -> list[dict[str, Any]]:
        def operation(session: Session) -> list[dict[str, Any]]:
            query = session.query(Template)
            if category:
                query = query.filter(Template.category == category)
            if active_only:
                query = query.filter(Template.is_active.is_(True))
            rows = query.order_by(Template.created_at.desc()).limit(limit).all()
            return [_model_to_dict(row, _TEMPLATE_ATTRS) for row in rows]

        return self._run(operation)

    def update_template(self, template_id: str, changes: Mapping[str, Any]) -> dict[str, Any]:
        def operation(session: Session) -> dict[str, Any]:
            template = session.get(Template, template_id)
            if template is None:
                raise RecordNotFoundError("Template", template_id)
            _apply_changes(template, changes, _TEMPLATE_ATTRS)
            template.updated_at = utcnow()
            session.flush()
            return _model_to_dict(template, _TEMPLATE_ATTRS)

        return self._run(operation)

    # Sounds

    def upsert_sound(self, record: Mapping[str, Any]) -> tuple[dict[str, Any], bool]:
        sound_id = record.get("id")
        if not sound_id:
            raise ValueError("Sound records require an id")

        def operation(session: Session) -> tuple[dict[str, Any], bool]:
            sound = session.query(Sound).filter(Sound.id == sound_id).one_or_none()
            created = False
            if sound is None:
                sound = Sound(id=sound_id)
                _apply_changes(sound, record, _SOUND_ATTRS)
                session.add(sound)
                created = True
            else:
                merged = merge_sound(_model_to_dict(sound, _SOUND_ATTRS), record)
                _apply_changes(sound, merged, _SOUND_ATTRS)
                sound.updated_at = utcnow()
            session.flush()
            return _model_to_dict(sound, _SOUND_ATTRS), created

        return self._run(operation)

    def get_sound(self, sound_id: str) -> Optional[dict[str, Any]]:
        def operation(session: Session) -> Optional[dict[str, Any]]:
            sound = session.get(Sound, sound_id)
            return _model_to_dict(sound, _SOUND_ATTRS) if sound else None

        return self._run(operation)

    def list_sounds(
        self, *, category: Optional[str] = None, stage: Optional[str] = None, limit: int = 100
    ) -> list[dict[str, Any]]:
        def operation(session: Session) -> list[dict[str, Any]]:
            query = session.query(Sound)
            if category:
                query = query.filter(Sound.sound_category == category)
            query = query.order_by(Sound.usage_count.desc(), Sound.id)
            if not stage:
                return [_model_to_dict(row, _SOUND_ATTRS) for row in query.limit(limit).all()]
            # Lifecycle lives in a JSON column; filter portably in Python.
            records = [_model_to_dict(row, _SOUND_ATTRS) for row in query.all()]
            return [r for r in records if (r.get("lifecycle") or {}).get("stage") == stage][:limit]

        return self._run(operation)

    def update_sound(self, sound_id: str, changes: Mapping[str, Any]) -> dict[str, Any]:
        def operation(session: Session) -> dict[str, Any]:
            sound = session.get(Sound, sound_id)
            if sound is None:
                raise RecordNotFoundError("Sound", sound_id)
            _apply_changes(sound, changes, _SOUND_ATTRS)
            sound.updated_at = utcnow()
            session.flush()
            return _model_to_dict(sound, _SOUND_ATTRS)

        return self._run(operation)

    # Jobs

    def create_job(self, record: Mapping[str, Any]) -> dict[str, Any]:
        def operation(session: Session) -> dict[str, Any]:
            job = EtlJob(id=record.get("id") or new_record_id())
            _apply_changes(job, record)
            session.add(job)
            session.flush()
            return _model_to_dict(job)

        return self._run(operation)

    def get_job(self, job_id: str) -> Optional[dict[str, Any]]:
        def operation(session: Session) -> Optional[dict[str, Any]]:
            job = session.get(EtlJob, job_id)
            return _model_to_dict(job) if job else None

        return self._run(operation)

    def update_job(self, job_id: str, changes: Mapping[str, Any]) -> dict[str, Any]:
        def operation(session: Session) -> dict[str, Any]:
            job = session.get(EtlJob, job_id)
            if job is None:
                raise RecordNotFoundError("Job", job_id)
            _apply_changes(job, changes)
            session.flush()
            return _model_to_dict(job)

        return self._run(operation)

    def list_jobs(
        self, *, status: Optional[str] = None, job_type: Optional[str] = None, limit: int = 20
    ) -> list[dict[str, Any]]:
        def operation(session: Session) -> list[dict[str, Any]]:
            query = session.query(EtlJob)
            if status:
                query = query.filter(EtlJob.status == status)
            if job_type:
                query = query.filter(EtlJob.type == job_type)
            rows = query.order_by(EtlJob.created_at.desc(), EtlJob.id.desc()).limit(limit).all()
            return [_model_to_dict(row) for row in rows]

        return self._run(operation)

    # Errors, notifications and reports

    def add_error(self, record: Mapping[str, Any]) -> dict[str, Any]:
        return self._add(EtlErrorRecord, record)

    def list_errors(self, *, job_id: Optional[str] = None, limit: int = 100) -> list[dict[str, Any]]:
        def operation(session: Session) -> list[dict[str, Any]]:
            query = session.query(EtlErrorRecord)
            if job_id:
                query = query.filter(EtlErrorRecord.job_id == job_id)
            rows = query.order_by(EtlErrorRecord.created_at.desc()).limit(limit).all()
            return [_model_to_dict(row) for row in rows]

        return self._run(operation)

    def add_notification(self, record: Mapping[str, Any]) -> dict[str, Any]:
        return self._add(Notification, record)

    def add_trend_report(self, record: Mapping[str, Any]) -> dict[str, Any]:
        return self._add(SoundTrendReport, record)

    def latest_trend_report(self) -> Optional[dict[str, Any]]:
        def operation(session: Session) -> Optional[dict[str, Any]]:
            report = (
                session.query(SoundTrendReport)
                .order_by(SoundTrendReport.created_at.desc(), SoundTrendReport.id.desc())
                .first()
            )
            return _model_to_dict(report) if report else None

        return self._run(operation)

    def _add(self, model, record: Mapping[str, Any]) -> dict[str, Any]:
        def operation(session: Session) -> dict[str, Any]:
            obj = model(id=record.get("id") or new_record_id())
            _apply_changes(obj, record)
            session.add(obj)
            session.flush()
            return _model_to_dict(obj)

        return self._run(operation)


@dataclass(slots=True)
class PersistenceResult:
    record_id: str
    created: bool


@dataclass(slots=True)
class WriteSummary:
    written: list[str] = field(default_factory=list)
    failed: int = 0
    errors: list[str] = field(default_factory=list)


class PersistenceWriter:
    """Writes normalized records one at a time.

    A failed write is logged and counted and the remaining records are still
    written. Template writes always create new records.
    """

    def __init__(
        self,
        store: ContentStore,
        *,
        on_error: Callable[[Mapping[str, Any], Exception], None] | None = None,
    ) -> None:
        self._store = store
        self._on_error = on_error

    def write_template(self, record: Mapping[str, Any]) -> PersistenceResult:
        stored = self._store.create_template(record)
        return PersistenceResult(record_id=str(stored["id"]), created=True)

    def write_sound(self, record: Mapping[str, Any]) -> PersistenceResult:
        stored, created = self._store.upsert_sound(record)
        return PersistenceResult(record_id=str(stored["id"]), created=created)

    def write_templates(self, records: Iterable[Mapping[str, Any]]) -> WriteSummary:
        return self._write_each(records, self.write_template, "template")

    def write_sounds(self, records: Iterable[Mapping[str, Any]]) -> WriteSummary:
        return self._write_each(records, self.write_sound, "sound")

    def _write_each(
        self,
        records: Iterable[Mapping[str, Any]],
        write: Callable[[Mapping[str, Any]], PersistenceResult],
        kind: str,
    ) -> WriteSummary:
        summary = WriteSummary()
        for record in records:
            try:
                result = write(record)
            except (ContentPersistenceError, ValueError) as exc:
                label = record.get("source_video_id") or record.get("id") or "unknown"
                LOGGER.error("Failed to write %s %s: %s", kind, label, exc)
                summary.failed += 1
                summary.errors.append(str(exc))
                if self._on_error is not None:
                    self._on_error(record, exc)
                continue
            summary.written.append(result.record_id)
        return summary


__all__ = [
    "ContentPersistenceError",
    "ContentStore",
    "PersistenceResult",
    "PersistenceWriter",
    "RecordNotFoundError",
    "SqlContentStore",
    "WriteSummary",
    "merge_sound",
    "new_record_id",
    "utcnow",
]
