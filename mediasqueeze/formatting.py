"""
mediasqueeze.formatting
~~~~~~~~~~~~~~~~~~~~~~~
Human-readable sizes, durations and output-size estimates for labels.
"""

from __future__ import annotations

_SIZE_SUFFIXES = ("B", "KB", "MB", "GB", "TB", "PB")

ASSUMED_AUDIO_KBPS = 128


def format_bytes(size: int, decimals: int = 2) -> str:
    if size <= 0:
        return "0 B"
    value = float(size)
    index = 0
    while value >= 1024 and index < len(_SIZE_SUFFIXES) - 1:
        value /= 1024
        index += 1
    return f"{value:.{decimals}f} {_SIZE_SUFFIXES[index]}"


def format_duration(seconds: float) -> str:
    """``HH:MM:SS.ss``, the same shape ffmpeg prints."""
    seconds = max(seconds, 0.0)
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    return f"{int(hours):02d}:{int(minutes):02d}:{secs:05.2f}"


def estimate_video_size(video_kbps: float, duration_seconds: float) -> int:
    """Bytes for *duration_seconds* at *video_kbps* plus a 128 kbps audio track."""
    total_kbps = video_kbps + ASSUMED_AUDIO_KBPS
    return int(total_kbps * 1000 * max(duration_seconds, 0.0) / 8)


def format_estimate(size_bytes: int) -> str:
    if size_bytes <= 0:
        return "~0 MB"
    if size_bytes < 1024 * 1024:
        return f"~{size_bytes / 1024:.0f} KB"
    return f"~{size_bytes / (1024 * 1024):.1f} MB"
