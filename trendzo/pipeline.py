"""Dispatch of named ETL job types to their implementations."""

from __future__ import annotations

import logging
from typing import Any, Callable, Mapping, Optional

from .ai_analysis import AiTemplateAnalysisEtl, TemplateAnalyzer
from .config import EtlConfig
from .errors import EtlErrorReporter
from .http_client import ApifySource
from .jobs import JobOutcome, JobReporter
from .persistence import ContentStore
from .sound_etl import SoundEtl
from .stores import build_store
from .template_etl import TemplateEtl

LOGGER = logging.getLogger(__name__)

JOB_NAMES = {
    "trending": "Trending templates",
    "categories": "Category templates",
    "update-stats": "Template stats update",
    "sounds": "Trending sounds",
    "sound-stats": "Sound stats update",
    "link-sounds": "Sound-template linking",
    "ai-trending": "AI-enhanced template analysis - trending",
}
JOB_TYPES = tuple(JOB_NAMES)


def _option_int(options: Mapping[str, Any], key: str, default: int) -> int:
    value = options.get(key)
    if value is None:
        return default
    try:
        parsed = int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Option {key!r} must be an integer") from exc
    if parsed < 1:
        raise ValueError(f"Option {key!r} must be positive")
    return parsed


def _build_task(
    job_type: str,
    options: Mapping[str, Any],
    *,
    config: EtlConfig,
    source: ApifySource,
    store: ContentStore,
    error_reporter: EtlErrorReporter,
    analyzer: Optional[TemplateAnalyzer],
) -> Callable[[str], Any]:
    if job_type in {"trending", "categories", "update-stats"}:
        templates = TemplateEtl(source, store, error_reporter=error_reporter)
        if job_type == "trending":
            max_items = _option_int(options, "max_items", 50)
            return lambda job_id: templates.process_hot_trends(max_items, job_id=job_id)
        if job_type == "categories":
            limit = _option_int(options, "limit", 20)
            categories = options.get("categories") or None
            return lambda job_id: templates.process_by_categories(categories, limit, job_id=job_id)
        limit = _option_int(options, "limit", 100)
        return lambda job_id: templates.update_template_stats(limit, job_id=job_id)

    if job_type in {"sounds", "sound-stats", "link-sounds"}:
        sounds = SoundEtl(source, store, error_reporter=error_reporter)
        if job_type == "sounds":
            max_items = _option_int(options, "max_items", 50)
            return lambda job_id: sounds.process_sounds_from_trending(max_items, job_id=job_id)
        if job_type == "sound-stats":
            limit = _option_int(options, "limit", 50)
            return lambda job_id: sounds.update_sound_stats(limit, job_id=job_id)
        limit = _option_int(options, "limit", 100)
        return lambda job_id: sounds.link_sounds_to_templates(limit, job_id=job_id)

    if job_type == "ai-trending":
        analyzer = analyzer or TemplateAnalyzer(config.openai, timeout=config.timeout.openai_timeout)
        etl = AiTemplateAnalysisEtl(source, store, analyzer, error_reporter=error_reporter)
        max_items = _option_int(options, "max_items", 30)
        return lambda job_id: etl.process_trending_with_ai(max_items, job_id=job_id)

    raise ValueError(f"Unknown ETL job type {job_type!r}; expected one of {', '.join(JOB_TYPES)}")


def run_job(
    job_type: str,
    options: Mapping[str, Any] | None = None,
    *,
    config: EtlConfig,
    store: ContentStore | None = None,
    source: ApifySource | None = None,
    analyzer: TemplateAnalyzer | None = None,
    job_id: str | None = None,
) -> JobOutcome:
    """Run one ETL job type as a tracked job record.

    When ``job_id`` names an already scheduled job (for example one created by
    the API), that record is moved through its states instead of a new one.
    """

    options = dict(options or {})
    store = store or build_store(config)
    error_reporter = EtlErrorReporter(store, enabled=config.record_errors)
    reporter = JobReporter(store, retry=config.retry, error_reporter=error_reporter)

    owns_source = source is None
    try:
        if source is None:
            source = ApifySource(config)
        task = _build_task(
            job_type,
            options,
            config=config,
            source=source,
            store=store,
            error_reporter=error_reporter,
            analyzer=analyzer,
        )
    except ValueError as exc:
        if job_id is not None:
            reporter.start_job(job_id)
            reporter.fail_job(job_id, str(exc))
        if owns_source and source is not None:
            source.close()
        raise

    try:
        return reporter.run(
            job_type,
            task,
            name=JOB_NAMES.get(job_type),
            parameters=options,
            job_id=job_id,
        )
    finally:
        if owns_source:
            source.close()


__all__ = ["JOB_NAMES", "JOB_TYPES", "run_job"]
