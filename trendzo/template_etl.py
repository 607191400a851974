"""Template ETL: trending videos to stored templates, plus template stats refresh."""

from __future__ import annotations

import logging
import time
from datetime import date
from typing import Any, Callable, Iterable, Mapping, Optional, Sequence

from .analysis import analyze_video_sections, build_template_record, categorize_video, engagement_rate
from .errors import EtlErrorReporter
from .http_client import ApifyFetchError, ApifySource
from .normalize import TikTokVideo, normalize_video, normalize_videos
from .persistence import ContentPersistenceError, ContentStore, PersistenceWriter, RecordNotFoundError

LOGGER = logging.getLogger(__name__)

DEFAULT_CATEGORIES = ("dance", "product", "tutorial", "comedy", "fashion")
MIN_PLAY_COUNT = 10_000
MIN_DIGG_COUNT = 1_000


def update_trend_data(trend_data: Mapping[str, Any] | None, views: int, today: date) -> dict[str, Any]:
    """Record today's view count and recompute growth against the previous sample.

    ``growth_rate`` is views gained per day since the previous sample and
    ``velocity_score`` is that rate as a percentage of the previous count.
    """

    updated = dict(trend_data or {})
    daily_views = dict(updated.get("daily_views") or {})
    today_key = today.isoformat()
    previous = sorted(key for key in daily_views if key < today_key)
    daily_views[today_key] = views
    updated["daily_views"] = daily_views

    if previous:
        last_key = previous[-1]
        last_views = int(daily_views[last_key] or 0)
        days = max((today - date.fromisoformat(last_key)).days, 1)
        growth = (views - last_views) / days
        updated["growth_rate"] = round(growth, 2)
        updated["velocity_score"] = round(growth / last_views * 100, 2) if last_views > 0 else 0
    else:
        updated.setdefault("growth_rate", 0)
        updated.setdefault("velocity_score", 0)
    return updated


class TemplateEtl:
    """Extracts trending videos, turns them into templates and stores them."""

    def __init__(
        self,
        source: ApifySource,
        store: ContentStore,
        *,
        error_reporter: EtlErrorReporter | None = None,
        today: Callable[[], date] = date.today,
    ) -> None:
        self._source = source
        self._store = store
        self._error_reporter = error_reporter or EtlErrorReporter(store, enabled=False)
        self._today = today

    def _report(self, exc: BaseException, phase: str, job_id: Optional[str], item_id: Optional[str]) -> None:
        self._error_reporter.report(exc, phase, job_id=job_id, item_id=item_id)

    def process_hot_trends(self, max_items: int = 50, *, job_id: Optional[str] = None) -> dict[str, Any]:
        started = time.monotonic()
        LOGGER.info("Starting trending template ETL (max_items=%d)", max_items)
        raw_items = self._source.scrape_trending(max_items)
        videos = normalize_videos(raw_items)
        LOGGER.info("Extracted %d videos", len(videos))
        results = self.process_videos(videos, job_id=job_id)
        LOGGER.info(
            "Trending ETL finished in %.1fs: %d total, %d succeeded, %d failed, %d skipped",
            time.monotonic() - started,
            results["total"],
            results["success"],
            results["failed"],
            results["skipped"],
        )
        return results

    def process_videos(self, videos: Sequence[TikTokVideo], *, job_id: Optional[str] = None) -> dict[str, Any]:
        results: dict[str, Any] = {"total": len(videos), "success": 0, "failed": 0, "skipped": 0, "templates": []}
        records: list[dict[str, Any]] = []

        for video in videos:
            if not video.id:
                LOGGER.info("Skipping video without id")
                results["skipped"] += 1
                continue
            if video.stats.play_count < MIN_PLAY_COUNT or video.stats.digg_count < MIN_DIGG_COUNT:
                LOGGER.info(
                    "Skipping video %s due to low engagement (plays: %d, likes: %d)",
                    video.id,
                    video.stats.play_count,
                    video.stats.digg_count,
                )
                results["skipped"] += 1
                continue
            try:
                sections = analyze_video_sections(video)
                if not sections:
                    LOGGER.info("Skipping video %s; no template sections identified", video.id)
                    results["skipped"] += 1
                    continue
                category = categorize_video(video)
                records.append(build_template_record(video, sections, category))
            except (TypeError, ValueError) as exc:
                results["failed"] += 1
                self._report(exc, "transformation", job_id, video.id)

        writer = PersistenceWriter(
            self._store,
            on_error=lambda record, exc: self._report(exc, "loading", job_id, record.get("source_video_id")),
        )
        summary = writer.write_templates(records)
        results["success"] += len(summary.written)
        results["failed"] += summary.failed
        results["templates"].extend(summary.written)
        for template_id in summary.written:
            LOGGER.debug("Stored template %s", template_id)
        return results

    def process_by_categories(
        self,
        categories: Iterable[str] | None = None,
        limit: int = 20,
        *,
        job_id: Optional[str] = None,
    ) -> dict[str, Any]:
        selected = list(categories or DEFAULT_CATEGORIES)
        LOGGER.info("Starting category ETL for: %s", ", ".join(selected))
        results: dict[str, Any] = {
            "categories": {},
            "total_success": 0,
            "total_failed": 0,
            "total_skipped": 0,
            "templates": [],
        }
        for category in selected:
            try:
                raw_items = self._source.scrape_by_category(category, limit)
            except ApifyFetchError as exc:
                LOGGER.error("Error processing category %s: %s", category, exc)
                self._report(exc, "extraction", job_id, category)
                results["categories"][category] = {"error": str(exc)}
                results["total_failed"] += 1
                continue

            category_results = self.process_videos(normalize_videos(raw_items), job_id=job_id)
            results["categories"][category] = category_results
            results["total_success"] += category_results["success"]
            results["total_failed"] += category_results["failed"]
            results["total_skipped"] += category_results["skipped"]
            results["templates"].extend(category_results["templates"])

        LOGGER.info(
            "Category ETL finished: %d succeeded, %d failed, %d skipped",
            results["total_success"],
            results["total_failed"],
            results["total_skipped"],
        )
        return results

    def update_template_stats(self, limit: int = 100, *, job_id: Optional[str] = None) -> dict[str, Any]:
        templates = self._store.list_templates(limit=limit)
        LOGGER.info("Found %d active templates to update", len(templates))
        updated = failed = skipped = 0

        for template in templates:
            template_id = template["id"]
            source_url = template.get("source_url")
            if not source_url:
                LOGGER.info("Skipping template %s; no source video URL", template_id)
                skipped += 1
                continue
            try:
                raw_items = self._source.scrape_videos([source_url])
                if not raw_items:
                    LOGGER.info("Could not find source video for template %s", template_id)
                    skipped += 1
                    continue
                video = normalize_video(raw_items[0])
                if not video.has_stats:
                    LOGGER.info("Skipping template %s; source video returned no stats", template_id)
                    skipped += 1
                    continue
                self._store.update_template(template_id, self._stats_changes(template, video))
            except (ApifyFetchError, ContentPersistenceError, RecordNotFoundError) as exc:
                failed += 1
                phase = "extraction" if isinstance(exc, ApifyFetchError) else "loading"
                self._report(exc, phase, job_id, template_id)
                continue
            updated += 1
            LOGGER.debug("Updated stats for template %s", template_id)

        LOGGER.info("Template stats update: %d updated, %d failed, %d skipped", updated, failed, skipped)
        return {"total": len(templates), "updated": updated, "failed": failed, "skipped": skipped}

    def _stats_changes(self, template: Mapping[str, Any], video: TikTokVideo) -> dict[str, Any]:
        stats = video.stats
        previous = template.get("stats") or {}
        return {
            "stats": {
                "views": stats.play_count,
                "likes": stats.digg_count,
                "comments": stats.comment_count,
                "shares": stats.share_count,
                "usage_count": previous.get("usage_count", 0),
                "engagement_rate": engagement_rate(
                    stats.play_count, stats.digg_count, stats.comment_count, stats.share_count
                ),
            },
            "trend_data": update_trend_data(template.get("trend_data"), stats.play_count, self._today()),
        }


__all__ = ["DEFAULT_CATEGORIES", "TemplateEtl", "update_trend_data"]
