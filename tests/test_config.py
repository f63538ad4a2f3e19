"""Tests for preferences persistence, binary lookup, logging and formatting helpers."""

import json
import stat
from pathlib import Path

import pytest
from loguru import logger

from mediasqueeze import config, paths
from mediasqueeze.config import Preferences, load_preferences, save_preferences
from mediasqueeze.exceptions import ToolUnavailableError
from mediasqueeze.formatting import estimate_video_size, format_bytes, format_duration, format_estimate
from mediasqueeze.log import clear_recent_logs, recent_logs, setup_logging
from mediasqueeze.models import AudioSettings, ImageSettings, MediaKind, VideoSettings


class TestPreferences:

    def test_config_dir_follows_xdg_on_linux(self, monkeypatch, tmp_path):
        monkeypatch.setattr(config.sys, "platform", "linux")
        monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
        assert config.config_dir() == tmp_path / "xdg" / "MediaSqueeze"
        assert (tmp_path / "xdg" / "MediaSqueeze").is_dir()

    def test_config_dir_uses_appdata_on_windows(self, monkeypatch, tmp_path):
        monkeypatch.setattr(config.sys, "platform", "win32")
        monkeypatch.setenv("APPDATA", str(tmp_path / "Roaming"))
        assert config.config_dir() == tmp_path / "Roaming" / "MediaSqueeze"

    def test_missing_file_gives_defaults(self, tmp_path):
        prefs = load_preferences(tmp_path / "nope.json")
        assert prefs == Preferences()
        assert prefs.settings_for(MediaKind.VIDEO) == VideoSettings()

    def test_saved_settings_come_back(self, tmp_path):
        target = tmp_path / "preferences.json"
        prefs = Preferences(ffmpeg_path="/opt/ffmpeg/bin/ffmpeg", debounce_ms=300)
        prefs.remember(VideoSettings("vp9", 1500, 0.5))
        prefs.remember(AudioSettings("opus", 96))

        save_preferences(prefs, target)
        loaded = load_preferences(target)

        assert loaded.ffmpeg_path == "/opt/ffmpeg/bin/ffmpeg"
        assert loaded.debounce_ms == 300
        assert loaded.settings_for(MediaKind.VIDEO) == VideoSettings("vp9", 1500, 0.5)
        assert loaded.settings_for(MediaKind.AUDIO) == AudioSettings("opus", 96)
        assert loaded.settings_for(MediaKind.IMAGE) == ImageSettings()

    def test_malformed_file_gives_defaults(self, tmp_path):
        target = tmp_path / "preferences.json"
        target.write_text("{not json", encoding="utf-8")
        assert load_preferences(target) == Preferences()

    def test_invalid_saved_settings_are_dropped(self, tmp_path):
        target = tmp_path / "preferences.json"
        target.write_text(json.dumps({
            "log_level": "DEBUG",
            "last_settings": {
                "video": {"output_format": "mpeg2", "bitrate_kbps": 5000, "resolution": 1.0},
                "sound": {"output_format": "mp3", "bitrate_kbps": 128},
                "image": {"output_format": "png", "quality": 90, "resolution": 0.5},
            },
        }), encoding="utf-8")

        prefs = load_preferences(target)

        assert prefs.log_level == "DEBUG"
        assert set(prefs.last_settings) == {MediaKind.IMAGE}

    def test_save_never_raises(self, tmp_path):
        save_preferences(Preferences(), tmp_path / "missing-dir" / "preferences.json")


class TestFindBinary:

    @pytest.fixture
    def fake_ffmpeg(self, tmp_path) -> Path:
        binary = tmp_path / "ffmpeg"
        binary.write_text("#!/bin/sh\nexit 0\n")
        binary.chmod(binary.stat().st_mode | stat.S_IXUSR)
        return binary

    def test_override_wins(self, fake_ffmpeg):
        assert paths.find_binary("ffmpeg", fake_ffmpeg) == fake_ffmpeg

    def test_bad_override_is_an_error(self, tmp_path):
        with pytest.raises(ToolUnavailableError):
            paths.find_binary("ffmpeg", tmp_path / "missing")

    def test_environment_override(self, fake_ffmpeg, monkeypatch):
        monkeypatch.setenv("MEDIASQUEEZE_FFMPEG", str(fake_ffmpeg))
        assert paths.find_binary("ffmpeg") == fake_ffmpeg

    def test_not_found_anywhere(self, tmp_path, monkeypatch):
        monkeypatch.delenv("MEDIASQUEEZE_FFMPEG", raising=False)
        monkeypatch.setattr(paths, "BIN_DIR", tmp_path / "bin")
        monkeypatch.setattr(paths, "SYSTEM_BIN_DIRS", ())
        monkeypatch.setattr(paths.shutil, "which", lambda name: None)
        with pytest.raises(ToolUnavailableError):
            paths.find_binary("ffmpeg")

    def test_validate_binaries(self, fake_ffmpeg, tmp_path):
        assert paths.validate_binaries(fake_ffmpeg) == []
        errors = paths.validate_binaries(tmp_path / "ffprobe", tmp_path)
        assert errors[0].startswith("Binary not found")
        assert errors[1].startswith("Not a file")


class TestLogging:

    def test_recent_logs_ring(self, tmp_path):
        log_file = setup_logging("WARNING", tmp_path / "app_logs.txt")
        clear_recent_logs()

        logger.debug("[TEST] debug line")
        logger.error("[TEST] something broke")

        text = recent_logs()
        assert "[TEST] debug line" in text
        assert "ERROR: [TEST] something broke" in text
        assert log_file == tmp_path / "app_logs.txt"

        clear_recent_logs()
        assert recent_logs() == ""
        logger.remove()


class TestFormatting:

    @pytest.mark.parametrize("size, expected", [
        (0, "0 B"),
        (512, "512.00 B"),
        (1536, "1.50 KB"),
        (5 * 1024 * 1024, "5.00 MB"),
    ])
    def test_format_bytes(self, size, expected):
        assert format_bytes(size) == expected

    def test_format_duration(self):
        assert format_duration(3725.5) == "01:02:05.50"
        assert format_duration(-1) == "00:00:00.00"

    def test_estimate_includes_audio(self):
        # (872 + 128) kbps for 8 s = 1 000 000 bytes
        assert estimate_video_size(872, 8.0) == 1_000_000
        # Binary units: a million bytes is still under 1 MiB
        assert format_estimate(1_000_000) == "~977 KB"
        assert format_estimate(1024 * 1024) == "~1.0 MB"
        assert format_estimate(2048) == "~2 KB"
        assert format_estimate(0) == "~0 MB"
