"""Normalization of raw scraped TikTok items into domain objects."""

from __future__ import annotations

import logging
import math
from dataclasses import asdict, dataclass, field
from datetime import date
from typing import Any, Mapping, Optional

LOGGER = logging.getLogger(__name__)

SOUND_CATEGORIES = ("music", "voiceover", "soundEffect", "remix", "original")
TEMPOS = ("slow", "medium", "fast")

_MAX_SOUND_USAGE = 1_000_000_000
_MAX_SOUND_DURATION = 600


@dataclass(slots=True)
class VideoStats:
    play_count: int = 0
    digg_count: int = 0
    comment_count: int = 0
    share_count: int = 0


@dataclass(slots=True)
class AuthorMeta:
    id: str = ""
    name: str = ""
    nickname: str = ""
    verified: bool = False
    avatar: str = ""


@dataclass(slots=True)
class MusicMeta:
    id: str = ""
    title: str = ""
    author_name: str = ""
    play_url: str = ""
    duration: float = 0
    original: bool = False
    is_remix: bool = False
    usage_count: int = 0
    album: str = ""
    cover_thumb: str = ""
    cover_medium: str = ""
    cover_large: str = ""
    genre: str = ""


@dataclass(slots=True)
class TikTokVideo:
    id: str
    text: str = ""
    create_time: int = 0
    author: AuthorMeta = field(default_factory=AuthorMeta)
    music: Optional[MusicMeta] = None
    duration: float = 0
    width: int = 0
    height: int = 0
    hashtags: list[str] = field(default_factory=list)
    stats: VideoStats = field(default_factory=VideoStats)
    has_stats: bool = False
    video_url: str = ""
    web_video_url: str = ""


@dataclass(slots=True)
class Sound:
    id: str
    title: str
    author_name: str = "Unknown Artist"
    play_url: str = ""
    duration: float = 0
    album: str = ""
    cover_thumb: str = ""
    cover_medium: str = ""
    cover_large: str = ""
    original: bool = False
    is_remix: bool = False
    genre: str = ""
    usage_count: int = 1
    sound_category: str = "music"
    tempo: str = "medium"
    stats: dict[str, Any] = field(default_factory=dict)
    usage_history: dict[str, int] = field(default_factory=dict)
    lifecycle: dict[str, Any] = field(default_factory=dict)
    related_template_ids: list[str] = field(default_factory=list)
    template_usage: list[dict[str, Any]] = field(default_factory=list)
    template_correlations: list[dict[str, Any]] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_record(self) -> dict[str, Any]:
        return asdict(self)


def _first(*values: Any) -> Any:
    """Return the first truthy value, mirroring ``a || b || c`` defaults."""

    for value in values:
        if value:
            return value
    return None


def _as_int(value: Any) -> int:
    if value is None or isinstance(value, bool):
        return 0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    if math.isnan(number) or math.isinf(number):
        return 0
    return int(number)


def _as_float(value: Any) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(number) or math.isinf(number):
        return 0.0
    return number


def _mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def _normalize_stats(raw: Mapping[str, Any]) -> tuple[VideoStats, bool]:
    stats = raw.get("stats")
    if isinstance(stats, Mapping):
        source: Mapping[str, Any] = stats
        present = True
    else:
        # Some actor versions flatten the counters onto the item itself.
        source = raw
        present = any(key in raw for key in ("playCount", "diggCount", "commentCount", "shareCount"))
    return (
        VideoStats(
            play_count=_as_int(source.get("playCount")),
            digg_count=_as_int(source.get("diggCount")),
            comment_count=_as_int(source.get("commentCount")),
            share_count=_as_int(source.get("shareCount")),
        ),
        present,
    )


def _normalize_music(raw: Mapping[str, Any]) -> Optional[MusicMeta]:
    music_meta = _mapping(raw.get("musicMeta"))
    music = _mapping(raw.get("music"))
    if not music_meta and not music:
        return None
    return MusicMeta(
        id=str(_first(music_meta.get("musicId"), music.get("id")) or ""),
        title=str(_first(music_meta.get("musicName"), music.get("title")) or ""),
        author_name=str(_first(music_meta.get("musicAuthor"), music.get("authorName")) or ""),
        play_url=str(_first(music_meta.get("playUrl"), music_meta.get("musicUrl"), music.get("playUrl")) or ""),
        duration=_as_float(_first(music_meta.get("duration"), music.get("duration"))),
        original=bool(_first(music_meta.get("musicOriginal"), music_meta.get("isOriginal"), music.get("original"))),
        is_remix=bool(_first(music_meta.get("isRemix"), music.get("isRemix"))),
        usage_count=_as_int(_first(music_meta.get("usageCount"), music.get("usageCount"))),
        album=str(_first(music_meta.get("musicAlbum"), music_meta.get("album"), music.get("album")) or ""),
        cover_thumb=str(_first(music_meta.get("coverThumb"), music.get("coverThumb")) or ""),
        cover_medium=str(
            _first(music_meta.get("coverMediumUrl"), music_meta.get("coverMedium"), music.get("coverMedium")) or ""
        ),
        cover_large=str(_first(music_meta.get("coverLarge"), music.get("coverLarge")) or ""),
        genre=str(_first(music_meta.get("genre"), music.get("genre")) or ""),
    )


def _normalize_hashtags(raw: Mapping[str, Any]) -> list[str]:
    hashtags = raw.get("hashtags")
    if not isinstance(hashtags, list):
        return []
    names: list[str] = []
    for tag in hashtags:
        if isinstance(tag, str):
            name = tag
        elif isinstance(tag, Mapping):
            name = str(tag.get("name") or tag.get("title") or "")
        else:
            continue
        if name:
            names.append(name)
    return names


def normalize_video(raw: Mapping[str, Any]) -> TikTokVideo:
    """Map a raw Apify dataset item to :class:`TikTokVideo`.

    Both the ``authorMeta``/``videoMeta`` shape and the ``author``/``video``
    shape are accepted. Missing fields are default-filled and missing stats
    are zeroed; this function does not raise for incomplete items.
    """

    author_meta = _mapping(raw.get("authorMeta"))
    author = _mapping(raw.get("author"))
    video_meta = _mapping(raw.get("videoMeta"))
    video = _mapping(raw.get("video"))
    stats, has_stats = _normalize_stats(raw)

    return TikTokVideo(
        id=str(raw.get("id") or ""),
        text=str(_first(raw.get("text"), raw.get("desc")) or ""),
        create_time=_as_int(raw.get("createTime")),
        author=AuthorMeta(
            id=str(_first(author_meta.get("id"), author.get("id")) or ""),
            name=str(_first(author_meta.get("name"), author.get("nickname")) or ""),
            nickname=str(_first(author_meta.get("nickName"), author_meta.get("nickname"), author.get("uniqueId")) or ""),
            verified=bool(_first(author_meta.get("verified"), author.get("verified"))),
            avatar=str(_first(author_meta.get("avatar"), author.get("avatarThumb")) or ""),
        ),
        music=_normalize_music(raw),
        duration=_as_float(_first(video_meta.get("duration"), video.get("duration"))),
        width=_as_int(_first(video_meta.get("width"), video.get("width"))),
        height=_as_int(_first(video_meta.get("height"), video.get("height"))),
        hashtags=_normalize_hashtags(raw),
        stats=stats,
        has_stats=has_stats,
        video_url=str(_first(raw.get("videoUrl"), video.get("playAddr")) or ""),
        web_video_url=str(raw.get("webVideoUrl") or ""),
    )


def normalize_videos(items: list[Mapping[str, Any]]) -> list[TikTokVideo]:
    videos: list[TikTokVideo] = []
    for item in items:
        if not isinstance(item, Mapping):
            LOGGER.debug("Skipping non-object dataset item %r", item)
            continue
        videos.append(normalize_video(item))
    return videos


def determine_sound_category(music: MusicMeta) -> str:
    if music.original:
        return "original"
    if music.is_remix:
        return "remix"
    title = music.title.lower()
    if title and ("sound effect" in title or "sfx" in title or music.duration < 5):
        return "soundEffect"
    return "music"


def determine_tempo(duration: float) -> str:
    if duration:
        if duration < 15:
            return "fast"
        if duration > 45:
            return "slow"
    return "medium"


def extract_sound(video: TikTokVideo, *, today: date | None = None) -> Optional[Sound]:
    """Build a :class:`Sound` from the video's music, or ``None`` without a music id."""

    music = video.music
    if music is None or not music.id:
        return None

    day = (today or date.today()).isoformat()
    usage = music.usage_count or 1
    stats = video.stats
    return Sound(
        id=music.id,
        title=music.title,
        author_name=music.author_name or "Unknown Artist",
        play_url=music.play_url,
        duration=music.duration,
        album=music.album,
        cover_thumb=music.cover_thumb,
        cover_medium=music.cover_medium,
        cover_large=music.cover_large,
        original=music.original,
        is_remix=music.is_remix,
        genre=music.genre,
        usage_count=usage,
        sound_category=determine_sound_category(music),
        tempo=determine_tempo(music.duration),
        stats={
            "usage_count": usage,
            "growth_velocity_7d": 0,
            "growth_velocity_14d": 0,
            "growth_velocity_30d": 0,
            "trend": "stable",
        },
        usage_history={day: usage},
        lifecycle={"stage": "emerging", "discovery_date": day, "last_detected_date": day},
        template_usage=[
            {
                # The source video id stands in for a template id until templates are linked.
                "template_id": video.id,
                "use_count": 1,
                "average_engagement": (stats.digg_count + stats.share_count + stats.comment_count) / 3,
                "last_used": day,
            }
        ],
    )


def validate_sound(sound: Sound) -> tuple[bool, Optional[str]]:
    """Return ``(valid, reason)`` for a sound about to be stored."""

    if not sound.id:
        return False, "missing id"
    if not sound.title:
        return False, "missing title"
    if len(sound.title) < 2 or len(sound.title) > 200:
        return False, "title length out of range"
    if "[object Object]" in sound.title or "undefined" in sound.title:
        return False, "title contains placeholder text"
    if sound.duration <= 0 or sound.duration > _MAX_SOUND_DURATION:
        return False, "duration out of range"
    if sound.usage_count < 0 or sound.usage_count > _MAX_SOUND_USAGE:
        return False, "usage count out of range"
    if not (sound.play_url or sound.cover_thumb or sound.cover_medium or sound.cover_large):
        return False, "missing media url"
    return True, None


__all__ = [
    "AuthorMeta",
    "MusicMeta",
    "Sound",
    "TikTokVideo",
    "VideoStats",
    "determine_sound_category",
    "determine_tempo",
    "extract_sound",
    "normalize_video",
    "normalize_videos",
    "validate_sound",
]
