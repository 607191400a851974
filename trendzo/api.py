"""JSON HTTP API for templates, sounds and ETL job control."""

from __future__ import annotations

import hmac
import logging
import os
from typing import Any, Callable, Optional

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from starlette.exceptions import HTTPException as StarletteHTTPException

from .audio import format_audio_duration, format_audio_time
from .config import ConfigurationError, EtlConfig, load_config
from .errors import EtlErrorReporter
from .jobs import JobReporter, JobStatus
from .persistence import ContentPersistenceError, ContentStore, PersistenceWriter, RecordNotFoundError
from .pipeline import JOB_NAMES, JOB_TYPES
from .sound_etl import generate_trend_report, record_sound_usage, trending_sounds
from .stores import build_store

LOGGER = logging.getLogger(__name__)

DEFAULT_LIMIT = 20
MAX_LIMIT = 100

Enqueue = Callable[[str, dict[str, Any], str], Any]


class EtlRunRequest(BaseModel):
    type: str
    options: dict[str, Any] = Field(default_factory=dict)


class SoundUsageRequest(BaseModel):
    increment: int = Field(default=1, ge=1)
    template_id: Optional[str] = None


class TemplateCreateRequest(BaseModel):
    title: str = Field(min_length=1, max_length=500)
    description: str = ""
    category: str = "other"
    hashtags: list[str] = Field(default_factory=list)
    structure: list[dict[str, Any]] = Field(default_factory=list)
    source_video_id: Optional[str] = None
    source_url: Optional[str] = None
    author_name: Optional[str] = None


def _clamp_limit(limit: Optional[int]) -> int:
    if limit is None:
        return DEFAULT_LIMIT
    return max(1, min(limit, MAX_LIMIT))


def _ok(data: Any, status_code: int = 200) -> Any:
    if status_code == 200:
        return {"success": True, "data": data}
    return JSONResponse(status_code=status_code, content=jsonable_encoder({"success": True, "data": data}))


def _sound_payload(sound: dict[str, Any]) -> dict[str, Any]:
    duration = sound.get("duration") or 0
    return {
        **sound,
        "duration_display": format_audio_time(duration),
        "duration_label": format_audio_duration(duration),
    }


def _default_enqueue(job_type: str, options: dict[str, Any], job_id: str) -> Any:
    from .tasks import run_etl_job_task

    return run_etl_job_task.delay(job_type=job_type, options=options, job_id=job_id)


def get_config(request: Request) -> EtlConfig:
    return request.app.state.config


def get_store(request: Request) -> ContentStore:
    state = request.app.state
    if state.store is None:
        state.store = build_store(state.config)
    return state.store


def require_api_key(
    config: EtlConfig = Depends(get_config),
    x_api_key: Optional[str] = Header(default=None),
    authorization: Optional[str] = Header(default=None),
) -> None:
    if config.api.development:
        return
    supplied = x_api_key
    if not supplied and authorization and authorization.lower().startswith("bearer "):
        supplied = authorization[7:].strip()
    accepted = config.api.accepted_keys()
    if not supplied or not any(hmac.compare_digest(supplied, key) for key in accepted):
        raise HTTPException(status_code=401, detail="Unauthorized")


templates_router = APIRouter(prefix="/api/templates", tags=["templates"])
sounds_router = APIRouter(prefix="/api/sounds", tags=["sounds"])
etl_router = APIRouter(prefix="/api/etl", tags=["etl"])


@templates_router.get("")
def list_templates(
    category: Optional[str] = None,
    limit: Optional[int] = None,
    store: ContentStore = Depends(get_store),
):
    templates = store.list_templates(category=category, limit=_clamp_limit(limit))
    return _ok(templates)


@templates_router.get("/{template_id}")
def get_template(template_id: str, store: ContentStore = Depends(get_store)):
    template = store.get_template(template_id)
    if template is None:
        raise HTTPException(status_code=404, detail="Template not found")
    return _ok(template)


@templates_router.post("", dependencies=[Depends(require_api_key)])
def create_template(body: TemplateCreateRequest, store: ContentStore = Depends(get_store)):
    record = body.model_dump()
    record.update(
        {
            "stats": {"views": 0, "likes": 0, "comments": 0, "shares": 0, "usage_count": 0, "engagement_rate": 0},
            "metadata": {"created_by": "editor"},
            "is_active": True,
        }
    )
    result = PersistenceWriter(store).write_template(record)
    return _ok(store.get_template(result.record_id), status_code=201)


@sounds_router.get("")
def list_sounds(
    category: Optional[str] = None,
    stage: Optional[str] = None,
    limit: Optional[int] = None,
    store: ContentStore = Depends(get_store),
):
    sounds = store.list_sounds(category=category, stage=stage, limit=_clamp_limit(limit))
    return _ok([_sound_payload(sound) for sound in sounds])


@sounds_router.get("/trending")
def list_trending_sounds(
    timeframe: str = "7d",
    limit: Optional[int] = None,
    store: ContentStore = Depends(get_store),
):
    sounds = trending_sounds(store, timeframe=timeframe, limit=_clamp_limit(limit))
    return _ok([_sound_payload(sound) for sound in sounds])


@sounds_router.get("/trend-report")
def get_trend_report(store: ContentStore = Depends(get_store)):
    report = store.latest_trend_report()
    if report is None:
        raise HTTPException(status_code=404, detail="Trend report not found")
    return _ok(report)


@sounds_router.post("/trend-report", dependencies=[Depends(require_api_key)])
def create_trend_report(store: ContentStore = Depends(get_store)):
    return _ok(generate_trend_report(store), status_code=201)


@sounds_router.get("/{sound_id}")
def get_sound(sound_id: str, store: ContentStore = Depends(get_store)):
    sound = store.get_sound(sound_id)
    if sound is None:
        raise HTTPException(status_code=404, detail="Sound not found")
    return _ok(_sound_payload(sound))


@sounds_router.post("/{sound_id}/usage")
def track_sound_usage(sound_id: str, body: SoundUsageRequest, store: ContentStore = Depends(get_store)):
    sound = record_sound_usage(store, sound_id, body.increment, template_id=body.template_id)
    return _ok(
        {
            "id": sound["id"],
            "usage_count": sound.get("usage_count"),
            "stats": sound.get("stats"),
            "related_template_ids": sound.get("related_template_ids") or [],
        }
    )


@etl_router.post("/run", dependencies=[Depends(require_api_key)])
def run_etl(body: EtlRunRequest, request: Request, store: ContentStore = Depends(get_store)):
    if body.type not in JOB_TYPES:
        raise HTTPException(status_code=400, detail=f"Unknown ETL type '{body.type}'")
    config: EtlConfig = request.app.state.config
    reporter = JobReporter(store, retry=config.retry)
    job = reporter.create_job(body.type, JOB_NAMES[body.type], body.options)
    try:
        request.app.state.enqueue(body.type, body.options, job["id"])
    except Exception:
        LOGGER.exception("Failed to enqueue %s job %s", body.type, job["id"])
        raise HTTPException(status_code=500, detail="Failed to start the ETL job")
    # Eager Celery runs finish before returning; report the freshest state.
    return _ok(store.get_job(job["id"]) or job, status_code=202)


@etl_router.get("/jobs", dependencies=[Depends(require_api_key)])
def list_jobs(
    status: Optional[str] = None,
    job_type: Optional[str] = Query(default=None, alias="type"),
    limit: Optional[int] = None,
    store: ContentStore = Depends(get_store),
):
    if status is not None:
        try:
            status = JobStatus(status).value
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Unknown job status '{status}'")
    return _ok(store.list_jobs(status=status, job_type=job_type, limit=_clamp_limit(limit)))


@etl_router.get("/jobs/{job_id}", dependencies=[Depends(require_api_key)])
def get_job(job_id: str, store: ContentStore = Depends(get_store)):
    job = store.get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return _ok(job)


@etl_router.get("/jobs/{job_id}/errors", dependencies=[Depends(require_api_key)])
def get_job_errors(job_id: str, store: ContentStore = Depends(get_store)):
    if store.get_job(job_id) is None:
        raise HTTPException(status_code=404, detail="Job not found")
    reporter = EtlErrorReporter(store)
    return _ok(
        {
            "errors": store.list_errors(job_id=job_id, limit=MAX_LIMIT),
            "stats": reporter.error_stats(job_id),
        }
    )


def _error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})


def create_app(
    config: EtlConfig | None = None,
    *,
    store: ContentStore | None = None,
    enqueue: Enqueue | None = None,
) -> FastAPI:
    app = FastAPI(title="Trendzo API")
    app.state.config = config or load_config()
    app.state.store = store
    app.state.enqueue = enqueue or _default_enqueue

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return _error_response(exc.status_code, str(exc.detail))

    @app.exception_handler(RequestValidationError)
    async def _validation_error(_request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = exc.errors()
        message = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
        return _error_response(400, message)

    @app.exception_handler(RecordNotFoundError)
    async def _not_found(_request: Request, exc: RecordNotFoundError) -> JSONResponse:
        return _error_response(404, f"{exc.kind} not found")

    @app.exception_handler(ConfigurationError)
    async def _config_error(_request: Request, exc: ConfigurationError) -> JSONResponse:
        LOGGER.error("Server is misconfigured: %s", exc)
        return _error_response(500, "Internal server error")

    @app.exception_handler(ValueError)
    async def _bad_request(_request: Request, exc: ValueError) -> JSONResponse:
        return _error_response(400, str(exc))

    @app.exception_handler(ContentPersistenceError)
    async def _store_error(_request: Request, exc: ContentPersistenceError) -> JSONResponse:
        LOGGER.error("Store error while handling request: %s", exc)
        return _error_response(500, "Internal server error")

    @app.exception_handler(Exception)
    async def _unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        LOGGER.exception("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
        return _error_response(500, "Internal server error")

    app.include_router(templates_router)
    app.include_router(sounds_router)
    app.include_router(etl_router)
    return app


def main() -> None:  # pragma: no cover - server entrypoint
    import uvicorn

    from .ingest import configure_logging

    configure_logging()
    uvicorn.run(
        "trendzo.api:create_app",
        factory=True,
        host=os.getenv("TRENDZO_API_HOST", "127.0.0.1"),
        port=int(os.getenv("TRENDZO_API_PORT", "8000")),
    )


__all__ = ["create_app", "main", "require_api_key"]


if __name__ == "__main__":  # pragma: no cover
    main()
