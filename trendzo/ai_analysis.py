"""OpenAI-assisted template analysis for trending videos."""

from __future__ import annotations

import json
import logging
from typing import Any, Mapping, Optional

import httpx
from openai import OpenAI, OpenAIError

from .analysis import CATEGORY_KEYWORDS, analyze_video_sections, build_template_record, categorize_video
from .config import OpenAIConfig
from .errors import EtlError, EtlErrorReporter
from .http_client import ApifySource
from .normalize import TikTokVideo, normalize_videos
from .persistence import ContentPersistenceError, ContentStore, PersistenceWriter
from .template_etl import MIN_DIGG_COUNT, MIN_PLAY_COUNT

LOGGER = logging.getLogger(__name__)

_SYSTEM_PROMPT = (
    "You analyse short-form TikTok videos as reusable content templates. "
    "Respond with a single JSON object only."
)
_MAX_LIST_ITEMS = 10


class TemplateAnalysisError(RuntimeError):
    """Raised when the model call fails or returns an unusable analysis."""


def _build_prompt(video: TikTokVideo, sections: list[dict[str, Any]], category: str) -> str:
    stats = video.stats
    section_lines = "\n".join(
        f"- {section['type']}: starts {section['start_time']}s, lasts {section['duration']}s"
        for section in sections
    )
    return (
        f"Caption: {video.text or '(none)'}\n"
        f"Hashtags: {', '.join(video.hashtags) or '(none)'}\n"
        f"Heuristic category: {category}\n"
        f"Duration: {video.duration}s\n"
        f"Views: {stats.play_count}, likes: {stats.digg_count}, "
        f"comments: {stats.comment_count}, shares: {stats.share_count}\n"
        f"Sections:\n{section_lines}\n\n"
        "Return JSON with keys: summary (string), hook_strength (number 0-10), "
        "pacing (one of slow, medium, fast), viral_factors (list of strings), "
        "recommended_uses (list of strings), suggested_category (string)."
    )


def sanitize_analysis(payload: Mapping[str, Any]) -> dict[str, Any]:
    """Keep the known analysis fields and coerce them to storable types."""

    def string_list(value: Any) -> list[str]:
        if not isinstance(value, list):
            return []
        return [str(item).strip() for item in value if str(item).strip()][:_MAX_LIST_ITEMS]

    try:
        hook_strength = float(payload.get("hook_strength") or 0)
    except (TypeError, ValueError):
        hook_strength = 0.0
    pacing = str(payload.get("pacing") or "medium").lower()
    if pacing not in {"slow", "medium", "fast"}:
        pacing = "medium"
    return {
        "summary": str(payload.get("summary") or "")[:1000],
        "hook_strength": min(10.0, max(0.0, hook_strength)),
        "pacing": pacing,
        "viral_factors": string_list(payload.get("viral_factors")),
        "recommended_uses": string_list(payload.get("recommended_uses")),
        "suggested_category": str(payload.get("suggested_category") or "").lower() or None,
    }


class TemplateAnalyzer:
    """Asks an OpenAI chat model for a structured analysis of a video template."""

    def __init__(self, config: OpenAIConfig, *, client: OpenAI | None = None, timeout: float = 60.0) -> None:
        if client is None and not config.is_configured():
            raise ValueError("OPENAI_API_KEY is required for AI template analysis")
        self._model = config.model
        self._client = client or OpenAI(api_key=config.api_key, http_client=httpx.Client(timeout=timeout))

    def analyze(self, video: TikTokVideo, sections: list[dict[str, Any]], category: str) -> dict[str, Any]:
        try:
            response = self._client.chat.completions.create(
                model=self._model,
                messages=[
                    {"role": "system", "content": _SYSTEM_PROMPT},
                    {"role": "user", "content": _build_prompt(video, sections, category)},
                ],
                response_format={"type": "json_object"},
                temperature=0.2,
            )
        except OpenAIError as exc:
            raise TemplateAnalysisError(f"OpenAI request failed: {exc}") from exc

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise TemplateAnalysisError("OpenAI returned an empty analysis")
        try:
            payload = json.loads(content)
        except json.JSONDecodeError as exc:
            raise TemplateAnalysisError("OpenAI returned invalid JSON") from exc
        if not isinstance(payload, dict):
            raise TemplateAnalysisError("OpenAI analysis is not a JSON object")
        return sanitize_analysis(payload)


class AiTemplateAnalysisEtl:
    """Trending ETL that stores an AI analysis alongside each template."""

    def __init__(
        self,
        source: ApifySource,
        store: ContentStore,
        analyzer: TemplateAnalyzer,
        *,
        error_reporter: EtlErrorReporter | None = None,
    ) -> None:
        self._source = source
        self._store = store
        self._analyzer = analyzer
        self._error_reporter = error_reporter or EtlErrorReporter(store, enabled=False)

    def process_trending_with_ai(self, max_items: int = 30, *, job_id: Optional[str] = None) -> dict[str, Any]:
        LOGGER.info("Starting AI-enhanced trending template analysis (max_items=%d)", max_items)
        videos = normalize_videos(self._source.scrape_trending(max_items))
        if not videos:
            raise EtlError("No videos returned from Apify scraper", "EXTRACT_ERROR", phase="extraction")

        results: dict[str, Any] = {"total": len(videos), "success": 0, "failed": 0, "skipped": 0, "templates": []}
        writer = PersistenceWriter(self._store)

        for video in videos:
            if not video.id or not video.has_stats:
                LOGGER.warning("Skipping video %s due to missing data", video.id or "unknown")
                results["skipped"] += 1
                continue
            if video.stats.play_count < MIN_PLAY_COUNT or video.stats.digg_count < MIN_DIGG_COUNT:
                LOGGER.debug("Skipping video %s due to low engagement", video.id)
                results["skipped"] += 1
                continue

            sections = analyze_video_sections(video)
            if not sections:
                results["skipped"] += 1
                continue
            category = categorize_video(video)
            try:
                analysis = self._analyzer.analyze(video, sections, category)
                suggested = analysis.get("suggested_category")
                if suggested in CATEGORY_KEYWORDS:
                    category = suggested
                record = build_template_record(video, sections, category)
                record["analysis"] = analysis
                result = writer.write_template(record)
            except TemplateAnalysisError as exc:
                results["failed"] += 1
                self._error_reporter.report(exc, "transformation", job_id=job_id, item_id=video.id)
                continue
            except ContentPersistenceError as exc:
                results["failed"] += 1
                self._error_reporter.report(exc, "loading", job_id=job_id, item_id=video.id)
                continue
            results["success"] += 1
            results["templates"].append(result.record_id)
            LOGGER.info("Stored AI-analysed template %s for video %s", result.record_id, video.id)

        LOGGER.info(
            "AI analysis ETL finished: %d succeeded, %d failed, %d skipped",
            results["success"],
            results["failed"],
            results["skipped"],
        )
        return results


__all__ = ["AiTemplateAnalysisEtl", "TemplateAnalysisError", "TemplateAnalyzer", "sanitize_analysis"]
