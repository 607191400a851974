"""Heuristic template analysis for normalized TikTok videos."""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Any

from models import generate_uuid7

from .normalize import TikTokVideo

LOGGER = logging.getLogger(__name__)

CATEGORY_KEYWORDS: dict[str, tuple[str, ...]] = {
    "product": ("product", "unboxing", "review", "haul", "shopping"),
    "tutorial": ("tutorial", "how to", "diy", "learn", "step by step", "tips"),
    "dance": ("dance", "choreography", "challenge", "trending dance"),
    "comedy": ("comedy", "funny", "joke", "humor", "prank"),
    "lifestyle": ("lifestyle", "day in the life", "routine", "vlog"),
    "fashion": ("fashion", "outfit", "style", "clothing", "accessories"),
    "beauty": ("beauty", "makeup", "skincare", "haircare", "cosmetics"),
    "food": ("food", "recipe", "cooking", "baking", "meal prep"),
    "fitness": ("fitness", "workout", "exercise", "gym", "training"),
    "educational": ("facts", "learn", "education", "knowledge", "science"),
}
DEFAULT_CATEGORY = "other"

_SENTENCE_SPLIT = re.compile(r"[.!?] ")
_DEFAULT_STYLE = {"font_size": 22, "font_weight": "bold", "color": "#ffffff"}


def _round_tenth(value: float) -> float:
    return round(value * 10) / 10


def _text_overlay(text: str, x: int = 50, y: int = 50, style: dict[str, Any] | None = None) -> dict[str, Any]:
    return {
        "id": str(generate_uuid7()),
        "text": text,
        "position": {"x": x, "y": y},
        "style": dict(style or _DEFAULT_STYLE),
    }


def _section(name: str, section_type: str, start: float, duration: float) -> dict[str, Any]:
    return {
        "id": str(generate_uuid7()),
        "name": name,
        "type": section_type,
        "start_time": start,
        "duration": duration,
        "text_overlays": [],
    }


def analyze_video_sections(video: TikTokVideo) -> list[dict[str, Any]]:
    """Split a video into intro, content and outro sections.

    The intro covers the first 20% of the video, the content the middle 60%
    and the outro the final 20%, each rounded to a tenth of a second.
    Videos without a positive duration yield no sections.
    """

    total = video.duration or 0
    if total <= 0:
        LOGGER.warning("Invalid duration for video %s; no sections extracted", video.id or "unknown")
        return []

    sentences = [part for part in _SENTENCE_SPLIT.split(video.text) if len(part) > 10]

    intro = _section("Hook", "intro", 0, _round_tenth(total * 0.2))
    if sentences:
        intro["text_overlays"].append(_text_overlay(sentences[0][:50], y=30))

    content = _section("Main content", "content", intro["duration"], _round_tenth(total * 0.6))
    if len(sentences) > 1:
        content["text_overlays"].append(_text_overlay(sentences[1][:50]))
    if video.hashtags:
        tags = " ".join(f"#{tag}" for tag in video.hashtags[:3])
        content["text_overlays"].append(
            _text_overlay(tags, y=80, style={"font_size": 18, "font_weight": "normal", "color": "#ffffff"})
        )

    outro = _section(
        "Call to action",
        "outro",
        _round_tenth(intro["duration"] + content["duration"]),
        _round_tenth(total * 0.2),
    )
    outro["text_overlays"].append(
        _text_overlay("Follow for more!", style={"font_size": 24, "font_weight": "bold", "color": "#ffffff"})
    )
    outro["text_overlays"].append(
        _text_overlay(
            f"@{video.author.nickname}",
            y=75,
            style={"font_size": 20, "font_weight": "normal", "color": "#ffffff"},
        )
    )
    return [intro, content, outro]


def categorize_video(video: TikTokVideo) -> str:
    """Pick a category from hashtags first, then from the caption text."""

    for category, keywords in CATEGORY_KEYWORDS.items():
        for hashtag in video.hashtags:
            lowered = hashtag.lower()
            if any(keyword in lowered for keyword in keywords):
                return category

    text = video.text.lower()
    for category, keywords in CATEGORY_KEYWORDS.items():
        if any(keyword in text for keyword in keywords):
            return category

    return DEFAULT_CATEGORY


def engagement_rate(views: int, likes: int, comments: int, shares: int) -> float:
    if views <= 0:
        return 0.0
    return (likes + comments + shares) / views * 100


def build_template_record(
    video: TikTokVideo,
    sections: list[dict[str, Any]],
    category: str,
    *,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Assemble the stored template mapping for an analysed video."""

    timestamp = now or datetime.now(timezone.utc)
    stats = video.stats
    title = video.text[:100] if video.text else f"Trending {category} template"
    return {
        "title": title,
        "description": video.text,
        "category": category,
        "source_video_id": video.id,
        "source_url": video.web_video_url,
        "author_name": video.author.name or video.author.nickname,
        "author_id": video.author.id,
        "author_verified": video.author.verified,
        "hashtags": list(video.hashtags),
        "structure": sections,
        "stats": {
            "views": stats.play_count,
            "likes": stats.digg_count,
            "comments": stats.comment_count,
            "shares": stats.share_count,
            "usage_count": 0,
            "engagement_rate": engagement_rate(
                stats.play_count, stats.digg_count, stats.comment_count, stats.share_count
            ),
        },
        "trend_data": {
            "daily_views": {timestamp.date().isoformat(): stats.play_count},
            "growth_rate": 0,
            "velocity_score": 0,
        },
        "metadata": {
            "duration": video.duration,
            "hashtags": list(video.hashtags),
            "sound_id": video.music.id if video.music else None,
        },
        "is_active": True,
    }


__all__ = [
    "CATEGORY_KEYWORDS",
    "DEFAULT_CATEGORY",
    "analyze_video_sections",
    "build_template_record",
    "categorize_video",
    "engagement_rate",
]
