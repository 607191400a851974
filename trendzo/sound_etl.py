"""Sound ETL: sound extraction, growth metrics, template links and trend reports."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Callable, Mapping, Optional, Sequence

from .errors import EtlErrorReporter
from .http_client import ApifyFetchError, ApifySource
from .normalize import TikTokVideo, extract_sound, normalize_video, normalize_videos, validate_sound
from .persistence import (
    ContentPersistenceError,
    ContentStore,
    PersistenceWriter,
    RecordNotFoundError,
    utcnow,
)

LOGGER = logging.getLogger(__name__)

BATCH_SIZE = 10
HIGH_PLAY_COUNT = 500_000
HIGH_DIGG_COUNT = 100_000
POPULAR_SOUND_USAGE = 50_000
_PRIORITY_ORDER = {"high": 1, "medium": 2, "low": 3}
# A history sample counts for an N-day window when it is within this many days of the target.
_WINDOW_TOLERANCE_DAYS = 3
TIMEFRAMES = ("7d", "14d", "30d")
_REPORT_POOL_SIZE = 500
_REPORT_SECTION_SIZE = 10


@dataclass(slots=True)
class PrioritizedVideo:
    video: TikTokVideo
    priority: str
    reason: str


def prioritize_videos(videos: Sequence[TikTokVideo], trending_template_ids: set[str]) -> list[PrioritizedVideo]:
    """Order videos so that sounds from trending or high-engagement videos come first."""

    prioritized: list[PrioritizedVideo] = []
    for video in videos:
        if video.id in trending_template_ids:
            item = PrioritizedVideo(video, "high", "Associated with trending template")
        elif video.stats.play_count > HIGH_PLAY_COUNT or video.stats.digg_count > HIGH_DIGG_COUNT:
            item = PrioritizedVideo(video, "high", "High engagement metrics")
        elif video.music is not None and video.music.usage_count > POPULAR_SOUND_USAGE:
            item = PrioritizedVideo(video, "medium", "Popular sound with high usage")
        else:
            item = PrioritizedVideo(video, "low", "Standard processing")
        prioritized.append(item)
    # sorted() is stable, so videos keep their scrape order within a priority.
    return sorted(prioritized, key=lambda item: _PRIORITY_ORDER[item.priority])


def _closest_date(dates: Sequence[date], target: date) -> Optional[date]:
    closest: Optional[date] = None
    best = None
    for candidate in dates:
        diff = abs((candidate - target).days)
        if best is None or diff < best:
            best = diff
            closest = candidate
    if best is None or best > _WINDOW_TOLERANCE_DAYS:
        return None
    return closest


def calculate_growth_metrics(usage_history: Mapping[str, int]) -> Optional[dict[str, Any]]:
    """Derive velocities, trend, peak and lifecycle stage from a usage history.

    Returns ``None`` when fewer than two samples exist.
    """

    samples: dict[date, int] = {}
    for key, value in (usage_history or {}).items():
        try:
            samples[date.fromisoformat(key)] = int(value or 0)
        except (TypeError, ValueError):
            LOGGER.debug("Ignoring malformed usage history entry %r=%r", key, value)
    if len(samples) < 2:
        return None

    dates = sorted(samples)
    latest = dates[-1]
    latest_usage = samples[latest]

    def velocity(days: int) -> float:
        past = _closest_date(dates, latest - timedelta(days=days))
        if past is None:
            return 0.0
        elapsed = (latest - past).days
        return (latest_usage - samples[past]) / elapsed if elapsed > 0 else 0.0

    velocity_7d = velocity(7)
    velocity_14d = velocity(14)
    velocity_30d = velocity(30)

    if velocity_7d > 0:
        trend = "rising"
    elif velocity_7d < 0:
        trend = "falling"
    else:
        trend = "stable"

    peak_usage = 0
    peak_date = latest
    for day in dates:
        if samples[day] > peak_usage:
            peak_usage = samples[day]
            peak_date = day

    if peak_date == latest and velocity_7d > 0:
        stage = "growing" if velocity_7d > velocity_14d else "peaking"
    elif peak_date != latest:
        stage = "declining"
    elif len(dates) <= 3:
        stage = "emerging"
    else:
        stage = "stable"

    return {
        "growth_velocity_7d": velocity_7d,
        "growth_velocity_14d": velocity_14d,
        "growth_velocity_30d": velocity_30d,
        "trend": trend,
        "peak_usage": peak_usage,
        "peak_date": peak_date.isoformat(),
        "stage": stage,
    }


def record_sound_usage(
    store: ContentStore,
    sound_id: str,
    increment: int = 1,
    *,
    template_id: Optional[str] = None,
    today: Optional[date] = None,
) -> dict[str, Any]:
    """Increment a sound's usage counters, optionally crediting a template."""

    if increment < 1:
        raise ValueError("increment must be a positive integer")
    sound = store.get_sound(sound_id)
    if sound is None:
        raise RecordNotFoundError("Sound", sound_id)

    day = (today or date.today()).isoformat()
    usage = int(sound.get("usage_count") or 0) + increment
    stats = dict(sound.get("stats") or {})
    stats["usage_count"] = usage
    history = dict(sound.get("usage_history") or {})
    history[day] = usage
    lifecycle = dict(sound.get("lifecycle") or {})
    lifecycle["last_detected_date"] = day
    changes: dict[str, Any] = {
        "usage_count": usage,
        "stats": stats,
        "usage_history": history,
        "lifecycle": lifecycle,
    }

    if template_id:
        usage_entries = [dict(entry) for entry in sound.get("template_usage") or []]
        for entry in usage_entries:
            if entry.get("template_id") == template_id:
                entry["use_count"] = int(entry.get("use_count") or 0) + increment
                entry["last_used"] = day
                break
        else:
            usage_entries.append(
                {"template_id": template_id, "use_count": increment, "average_engagement": 0, "last_used": day}
            )
        changes["template_usage"] = usage_entries
        related = list(sound.get("related_template_ids") or [])
        if template_id not in related:
            related.append(template_id)
        changes["related_template_ids"] = related

    return store.update_sound(sound_id, changes)


class SoundEtl:
    """Extracts sounds from trending videos and maintains their metrics."""

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

    def process_sounds_from_trending(self, max_items: int = 50, *, job_id: Optional[str] = None) -> dict[str, Any]:
        started = time.monotonic()
        LOGGER.info("Starting sound ETL (max_items=%d)", max_items)
        videos = normalize_videos(self._source.scrape_trending(max_items))
        LOGGER.info("Extracted %d videos", len(videos))

        templates = self._store.list_templates(limit=100)
        trending_ids = {template["id"] for template in templates}
        trending_ids.update(template["source_video_id"] for template in templates if template.get("source_video_id"))

        results = self.process_sounds_progressively(prioritize_videos(videos, trending_ids), job_id=job_id)
        sound_ids = results["sounds"]
        results["growth"] = self.apply_growth_metrics(sound_ids, job_id=job_id)
        results["correlations"] = self.update_template_correlations(sound_ids, job_id=job_id)
        results["report_id"] = self.generate_trend_report()["id"]

        LOGGER.info(
            "Sound ETL finished in %.1fs: %d videos, %d sounds extracted, %d stored, %d failed",
            time.monotonic() - started,
            results["total_videos"],
            results["sounds_extracted"],
            results["sounds_stored"],
            results["failed"],
        )
        return results

    def process_sounds_progressively(
        self, prioritized: Sequence[PrioritizedVideo], *, job_id: Optional[str] = None
    ) -> dict[str, Any]:
        results: dict[str, Any] = {
            "total_videos": len(prioritized),
            "sounds_extracted": 0,
            "sounds_stored": 0,
            "failed": 0,
            "skipped": 0,
            "sounds": [],
            "high_priority_sounds": 0,
            "medium_priority_sounds": 0,
            "low_priority_sounds": 0,
        }
        processed_ids: set[str] = set()
        writer = PersistenceWriter(
            self._store,
            on_error=lambda record, exc: self._report(exc, "loading", job_id, record.get("id")),
        )
        batch_count = (len(prioritized) + BATCH_SIZE - 1) // BATCH_SIZE

        for start in range(0, len(prioritized), BATCH_SIZE):
            batch = prioritized[start:start + BATCH_SIZE]
            LOGGER.info("Processing batch %d/%d (%d videos)", start // BATCH_SIZE + 1, batch_count, len(batch))
            records: list[dict[str, Any]] = []

            for item in batch:
                sound = extract_sound(item.video, today=self._today())
                if sound is None:
                    LOGGER.debug("No sound data in video %s", item.video.id)
                    results["skipped"] += 1
                    continue
                if sound.id in processed_ids:
                    LOGGER.debug("Sound %s already processed in this run", sound.id)
                    results["skipped"] += 1
                    continue
                valid, reason = validate_sound(sound)
                if not valid:
                    LOGGER.info("Sound %s validation failed: %s", sound.id, reason)
                    results["failed"] += 1
                    self._report(ValueError(reason), "validation", job_id, sound.id)
                    continue

                results[f"{item.priority}_priority_sounds"] += 1
                sound.metadata = {
                    **sound.metadata,
                    "extracted_from": item.video.id,
                    "extraction_priority": item.priority,
                    "extraction_reason": item.reason,
                    "processing_timestamp": utcnow().isoformat(),
                }
                processed_ids.add(sound.id)
                results["sounds_extracted"] += 1
                records.append(sound.to_record())

            summary = writer.write_sounds(records)
            results["sounds_stored"] += len(summary.written)
            results["failed"] += summary.failed
            results["sounds"].extend(summary.written)

        return results

    def apply_growth_metrics(self, sound_ids: Sequence[str], *, job_id: Optional[str] = None) -> dict[str, int]:
        LOGGER.info("Calculating growth metrics for %d sounds", len(sound_ids))
        updated = failed = 0
        for sound_id in sound_ids:
            try:
                sound = self._store.get_sound(sound_id)
                if sound is None:
                    continue
                metrics = calculate_growth_metrics(sound.get("usage_history") or {})
                if metrics is None:
                    LOGGER.debug("Not enough history for sound %s", sound_id)
                    continue
                stats = dict(sound.get("stats") or {})
                stats.update({key: value for key, value in metrics.items() if key != "stage"})
                lifecycle = dict(sound.get("lifecycle") or {})
                lifecycle["stage"] = metrics["stage"]
                self._store.update_sound(sound_id, {"stats": stats, "lifecycle": lifecycle})
            except (ContentPersistenceError, RecordNotFoundError) as exc:
                failed += 1
                self._report(exc, "transformation", job_id, sound_id)
                continue
            updated += 1
        return {"updated": updated, "failed": failed}

    def update_sound_stats(self, limit: int = 50, *, job_id: Optional[str] = None) -> dict[str, Any]:
        sounds = self._store.list_sounds(limit=limit)
        LOGGER.info("Updating usage statistics for %d sounds", len(sounds))
        updated = failed = skipped = 0
        today = self._today().isoformat()

        for sound in sounds:
            sound_id = sound["id"]
            try:
                videos = normalize_videos(self._source.scrape_videos_by_sound(sound_id, 10))
                matching = [video for video in videos if video.music and video.music.id == sound_id]
                if not matching:
                    LOGGER.info("No videos found for sound %s", sound_id)
                    skipped += 1
                    continue
                reported = max(video.music.usage_count for video in matching)
                usage = reported or int(sound.get("usage_count") or 0) + len(matching)
                stats = dict(sound.get("stats") or {})
                stats["usage_count"] = usage
                history = dict(sound.get("usage_history") or {})
                history[today] = usage
                lifecycle = dict(sound.get("lifecycle") or {})
                lifecycle["last_detected_date"] = today
                self._store.update_sound(
                    sound_id,
                    {"usage_count": usage, "stats": stats, "usage_history": history, "lifecycle": lifecycle},
                )
            except (ApifyFetchError, ContentPersistenceError, RecordNotFoundError) as exc:
                failed += 1
                phase = "extraction" if isinstance(exc, ApifyFetchError) else "loading"
                self._report(exc, phase, job_id, sound_id)
                continue
            updated += 1

        LOGGER.info("Sound stats update: %d updated, %d failed, %d skipped", updated, failed, skipped)
        return {"total": len(sounds), "updated": updated, "failed": failed, "skipped": skipped}

    def link_sounds_to_templates(self, limit: int = 100, *, job_id: Optional[str] = None) -> dict[str, Any]:
        templates = self._store.list_templates(limit=limit)
        LOGGER.info("Linking sounds for %d templates", len(templates))
        linked = failed = skipped = 0

        for template in templates:
            template_id = template["id"]
            try:
                sound_id = self._sound_for_template(template)
                if sound_id is None:
                    skipped += 1
                    continue
                sound = self._store.get_sound(sound_id)
                if sound is None:
                    LOGGER.info("Sound %s for template %s is not stored", sound_id, template_id)
                    skipped += 1
                    continue
                related = list(sound.get("related_template_ids") or [])
                if template_id not in related:
                    related.append(template_id)
                    self._store.update_sound(sound_id, {"related_template_ids": related})
            except (ApifyFetchError, ContentPersistenceError, RecordNotFoundError) as exc:
                failed += 1
                phase = "extraction" if isinstance(exc, ApifyFetchError) else "loading"
                self._report(exc, phase, job_id, template_id)
                continue
            linked += 1
            LOGGER.debug("Linked sound %s to template %s", sound_id, template_id)

        return {"total": len(templates), "linked": linked, "failed": failed, "skipped": skipped}

    def _sound_for_template(self, template: Mapping[str, Any]) -> Optional[str]:
        metadata = template.get("metadata") or {}
        if metadata.get("sound_id"):
            return str(metadata["sound_id"])
        source_url = template.get("source_url")
        if not source_url:
            LOGGER.debug("Skipping template %s; no source video", template["id"])
            return None
        raw_items = self._source.scrape_videos([source_url])
        if not raw_items:
            return None
        sound = extract_sound(normalize_video(raw_items[0]), today=self._today())
        if sound is None:
            return None
        self._store.update_template(template["id"], {"metadata": {**metadata, "sound_id": sound.id}})
        return sound.id

    def update_template_correlations(self, sound_ids: Sequence[str], *, job_id: Optional[str] = None) -> dict[str, int]:
        updated = failed = 0
        category_averages: dict[str, float] = {}

        for sound_id in sound_ids:
            try:
                sound = self._store.get_sound(sound_id)
                if sound is None or not sound.get("related_template_ids"):
                    continue
                correlations = []
                for template_id in sound["related_template_ids"]:
                    template = self._store.get_template(template_id)
                    if template is None or not template.get("stats"):
                        continue
                    category = template.get("category") or ""
                    if category not in category_averages:
                        category_averages[category] = self._category_average_engagement(category)
                    average = category_averages[category]
                    engagement = _template_engagement(template)
                    lift = engagement / average - 1 if average > 0 else 0
                    correlations.append(
                        {
                            "template_id": template_id,
                            "correlation_score": min(1.0, max(0.0, 0.5 + lift / 2)),
                            "engagement_lift": lift,
                        }
                    )
                if correlations:
                    correlations.sort(key=lambda entry: entry["correlation_score"], reverse=True)
                    self._store.update_sound(sound_id, {"template_correlations": correlations})
                    updated += 1
            except (ContentPersistenceError, RecordNotFoundError) as exc:
                failed += 1
                self._report(exc, "transformation", job_id, sound_id)
        return {"updated": updated, "failed": failed}

    def _category_average_engagement(self, category: str) -> float:
        templates = self._store.list_templates(category=category or None, limit=100)
        if not templates:
            return 0.0
        return sum(_template_engagement(template) for template in templates) / len(templates)

    def generate_trend_report(self) -> dict[str, Any]:
        return generate_trend_report(self._store, today=self._today())


def _template_engagement(template: Mapping[str, Any]) -> float:
    stats = template.get("stats") or {}
    return float(stats.get("likes") or 0) + float(stats.get("shares") or 0)


def _rank_by_velocity(sounds: Sequence[Mapping[str, Any]], timeframe: str, count: int) -> list[Mapping[str, Any]]:
    key = f"growth_velocity_{timeframe}"
    ranked = sorted(sounds, key=lambda sound: (sound.get("stats") or {}).get(key) or 0, reverse=True)
    return ranked[:count]


def trending_sounds(store: ContentStore, timeframe: str = "7d", limit: int = 20) -> list[dict[str, Any]]:
    """Return stored sounds ordered by growth velocity over ``timeframe``."""

    if timeframe not in TIMEFRAMES:
        raise ValueError(f"timeframe must be one of {', '.join(TIMEFRAMES)}")
    sounds = store.list_sounds(limit=_REPORT_POOL_SIZE)
    return [dict(sound) for sound in _rank_by_velocity(sounds, timeframe, limit)]


def generate_trend_report(store: ContentStore, *, today: date | None = None) -> dict[str, Any]:
    """Build and store a snapshot of the top, emerging, peaking and declining sounds."""

    sounds = store.list_sounds(limit=_REPORT_POOL_SIZE)

    def top_by(timeframe: str) -> list[str]:
        return [sound["id"] for sound in _rank_by_velocity(sounds, timeframe, _REPORT_SECTION_SIZE)]

    def in_stage(stage: str) -> list[str]:
        matching = [sound for sound in sounds if (sound.get("lifecycle") or {}).get("stage") == stage]
        return [sound["id"] for sound in matching[:_REPORT_SECTION_SIZE]]

    genres: dict[str, int] = {}
    for sound in sounds:
        genre = sound.get("genre") or "unknown"
        genres[genre] = genres.get(genre, 0) + 1

    report = {
        "date": (today or date.today()).isoformat(),
        "top_sounds": {
            "daily": top_by("7d"),
            "weekly": top_by("14d"),
            "monthly": top_by("30d"),
        },
        "emerging_sounds": in_stage("emerging"),
        "peaking_sounds": in_stage("peaking"),
        "declining_sounds": in_stage("declining"),
        "genre_distribution": genres,
        "created_at": utcnow(),
    }
    stored = store.add_trend_report(report)
    LOGGER.info("Stored sound trend report %s", stored["id"])
    return stored


__all__ = [
    "PrioritizedVideo",
    "SoundEtl",
    "TIMEFRAMES",
    "calculate_growth_metrics",
    "generate_trend_report",
    "prioritize_videos",
    "record_sound_usage",
    "trending_sounds",
]
