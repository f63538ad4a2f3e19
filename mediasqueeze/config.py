"""
mediasqueeze.config
~~~~~~~~~~~~~~~~~~~
Persists user preferences to a JSON file in the platform's standard
config directory.

Config location
---------------
  Windows  : %APPDATA%\\MediaSqueeze\\preferences.json
  macOS    : ~/Library/Application Support/MediaSqueeze/preferences.json
  Linux    : $XDG_CONFIG_HOME (or ~/.config)/MediaSqueeze/preferences.json

The orchestration core never reads this file; the front end loads it and
passes plain values (ffmpeg path, debounce window, settings snapshots) in.
"""

from __future__ import annotations

import json
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path

from loguru import logger

from mediasqueeze.models import (
    CompressionSettings,
    ImageSettings,
    MediaKind,
    VideoSettings,
    default_settings_for,
    settings_class_for,
)

APP_DIR_NAME = "MediaSqueeze"


# ── Config directory ──────────────────────────────────────────────────────────

def _platform_config_base() -> Path:
    home = Path.home()
    if sys.platform == "win32":
        return Path(os.environ.get("APPDATA") or home / "AppData" / "Roaming")
    if sys.platform == "darwin":
        return home / "Library" / "Application Support"
    return Path(os.environ.get("XDG_CONFIG_HOME") or home / ".config")


def config_dir() -> Path:
    """``MediaSqueeze/`` under the platform config base, created on first use."""
    path = _platform_config_base() / APP_DIR_NAME
    path.mkdir(parents=True, exist_ok=True)
    return path


def preferences_file() -> Path:
    return config_dir() / "preferences.json"


# ── Preferences ───────────────────────────────────────────────────────────────

@dataclass
class Preferences:
    ffmpeg_path: str | None = None
    debounce_ms: int = 500
    log_level: str = "INFO"
    last_settings: dict[MediaKind, CompressionSettings] = field(default_factory=dict)

    def settings_for(self, kind: MediaKind) -> CompressionSettings:
        """Last used snapshot for *kind*, or the defaults."""
        return self.last_settings.get(kind) or default_settings_for(kind)

    def remember(self, settings: CompressionSettings) -> None:
        self.last_settings[settings.media_kind] = settings


# ── Public API ────────────────────────────────────────────────────────────────

def save_preferences(prefs: Preferences, path: Path | None = None) -> None:
    """
    Serialise *prefs*, overwriting any previous data.
    I/O errors are logged, never raised, so a config issue never crashes the app.
    """
    target = path or preferences_file()
    try:
        target.write_text(json.dumps(_prefs_to_dict(prefs), indent=2), encoding="utf-8")
    except OSError as exc:
        logger.warning(f"[CONFIG] Could not save preferences to '{target}': {exc}")


def load_preferences(path: Path | None = None) -> Preferences:
    """
    Read the preferences file.
    Returns defaults if the file is missing, empty, or malformed.
    """
    source = path or preferences_file()
    if not source.exists():
        return Preferences()
    try:
        payload = json.loads(source.read_text(encoding="utf-8"))
        return _dict_to_prefs(payload)
    except (OSError, ValueError, TypeError, KeyError, AttributeError) as exc:
        logger.warning(f"[CONFIG] Ignoring unreadable preferences '{source}': {exc}")
        return Preferences()


# ── Serialisation helpers ─────────────────────────────────────────────────────

def _settings_to_dict(settings: CompressionSettings) -> dict:
    if isinstance(settings, VideoSettings):
        return {
            "output_format": settings.output_format,
            "bitrate_kbps":  settings.bitrate_kbps,
            "resolution":    settings.resolution,
        }
    if isinstance(settings, ImageSettings):
        return {
            "output_format": settings.output_format,
            "quality":       settings.quality,
            "resolution":    settings.resolution,
        }
    return {
        "output_format": settings.output_format,
        "bitrate_kbps":  settings.bitrate_kbps,
    }


def _prefs_to_dict(prefs: Preferences) -> dict:
    return {
        "ffmpeg_path": prefs.ffmpeg_path,
        "debounce_ms": prefs.debounce_ms,
        "log_level":   prefs.log_level,
        "last_settings": {
            kind.value: _settings_to_dict(s) for kind, s in prefs.last_settings.items()
        },
    }


def _dict_to_prefs(d: dict) -> Preferences:
    last: dict[MediaKind, CompressionSettings] = {}
    for kind_name, values in (d.get("last_settings") or {}).items():
        try:
            kind = MediaKind(kind_name)
            last[kind] = settings_class_for(kind)(**values)
        except (TypeError, ValueError, KeyError) as exc:
            logger.warning(f"[CONFIG] Dropping saved {kind_name} settings: {exc}")

    return Preferences(
        ffmpeg_path = d.get("ffmpeg_path") or None,
        debounce_ms = int(d.get("debounce_ms", 500)),
        log_level   = str(d.get("log_level", "INFO")),
        last_settings = last,
    )

