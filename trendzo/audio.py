"""Formatting helpers for audio durations and playback positions."""

from __future__ import annotations

import math


def _invalid(seconds: float) -> bool:
    try:
        return math.isnan(seconds) or seconds < 0
    except TypeError:
        return True


def format_audio_time(seconds: float, show_hours: bool = False) -> str:
    """Format seconds as ``MM:SS``, or ``HH:MM:SS`` past an hour or when requested.

    Negative and NaN inputs render as zero.
    """

    if _invalid(seconds) or math.isinf(seconds):
        return "00:00:00" if show_hours else "00:00"

    hours = int(seconds // 3600)
    minutes = int((seconds % 3600) // 60)
    remaining = int(seconds % 60)
    if show_hours or hours > 0:
        return f"{hours:02d}:{minutes:02d}:{remaining:02d}"
    return f"{minutes:02d}:{remaining:02d}"


def format_audio_duration(seconds: float) -> str:
    if _invalid(seconds) or math.isinf(seconds):
        return "0 sec"
    minutes = int(seconds // 60)
    remaining = int(seconds % 60)
    if minutes == 0:
        return f"{remaining} sec"
    if remaining == 0:
        return f"{minutes} min"
    return f"{minutes} min {remaining} sec"


def time_remaining(current_time: float, duration: float) -> str:
    return format_audio_time(max(0.0, duration - current_time))


def calculate_progress(current_time: float, duration: float) -> float:
    if duration <= 0 or current_time < 0:
        return 0.0
    return min(100.0, current_time / duration * 100)


def percent_to_time(percent: float, duration: float) -> float:
    if duration <= 0:
        return 0.0
    return percent / 100 * duration


__all__ = [
    "calculate_progress",
    "format_audio_duration",
    "format_audio_time",
    "percent_to_time",
    "time_remaining",
]
