"""Tests for value objects: settings validation, clip windows, outcomes, capabilities."""

from pathlib import Path

import pytest

from mediasqueeze.models import (
    AudioSettings,
    BatchReport,
    Capabilities,
    ClipWindow,
    ExitOutcome,
    ExitStatus,
    ImageSettings,
    MediaInfo,
    MediaKind,
    PreviewStep,
    TranscodeTask,
    VideoSettings,
    WorkStream,
    default_settings_for,
    pixel_format_has_alpha,
)


class TestSettings:

    def test_defaults(self):
        assert default_settings_for(MediaKind.VIDEO) == VideoSettings("h265", 5000, 1.0)
        assert default_settings_for(MediaKind.IMAGE) == ImageSettings("jpg", 80, 1.0)
        assert default_settings_for(MediaKind.AUDIO) == AudioSettings("mp3", 128)

    def test_unknown_kind_has_no_defaults(self):
        with pytest.raises(ValueError):
            default_settings_for(MediaKind.UNKNOWN)

    @pytest.mark.parametrize("bitrate", [9, 100_001])
    def test_video_bitrate_out_of_range(self, bitrate):
        with pytest.raises(ValueError):
            VideoSettings(bitrate_kbps=bitrate)

    @pytest.mark.parametrize("bitrate", [10, 100_000])
    def test_video_bitrate_bounds_accepted(self, bitrate):
        assert VideoSettings(bitrate_kbps=bitrate).bitrate_kbps == bitrate

    @pytest.mark.parametrize("quality", [0, 101])
    def test_quality_out_of_range(self, quality):
        with pytest.raises(ValueError):
            ImageSettings(quality=quality)

    def test_audio_bitrate_range(self):
        AudioSettings(bitrate_kbps=8)
        AudioSettings(bitrate_kbps=512)
        with pytest.raises(ValueError):
            AudioSettings(bitrate_kbps=513)

    def test_resolution_must_be_a_known_scale(self):
        with pytest.raises(ValueError):
            VideoSettings(resolution=0.75)

    def test_unknown_format_rejected(self):
        with pytest.raises(ValueError):
            AudioSettings(output_format="flac")

    def test_with_changes_returns_new_snapshot(self):
        original = VideoSettings()
        changed = original.with_changes(bitrate_kbps=2000)
        assert original.bitrate_kbps == 5000
        assert changed.bitrate_kbps == 2000
        assert changed.output_format == original.output_format

    def test_with_changes_validates(self):
        with pytest.raises(ValueError):
            ImageSettings().with_changes(quality=500)

    @pytest.mark.parametrize("fmt, ext", [("vp9", "webm"), ("av1", "mp4"), ("h264", "mp4"), ("h265", "mp4")])
    def test_video_extension(self, fmt, ext):
        assert VideoSettings(output_format=fmt).extension == ext

    def test_image_and_audio_extension_is_the_format(self):
        assert ImageSettings(output_format="avif").extension == "avif"
        assert AudioSettings(output_format="opus").extension == "opus"


class TestMediaInfo:

    def test_negative_duration_rejected(self):
        with pytest.raises(ValueError):
            MediaInfo(duration_seconds=-1.0)

    @pytest.mark.parametrize("fmt", ["yuva420p", "rgba", "bgra", "ya8", "gbrap", "argb"])
    def test_alpha_pixel_formats(self, fmt):
        assert pixel_format_has_alpha(fmt)
        assert MediaInfo(pixel_format=fmt).has_alpha

    @pytest.mark.parametrize("fmt", ["yuv420p", "yuvj420p", "rgb24", "gray", ""])
    def test_opaque_pixel_formats(self, fmt):
        assert not pixel_format_has_alpha(fmt)


class TestClipWindow:

    def test_middle_of_source(self):
        clip = ClipWindow.from_scrub(0.5, 10.0, 2.0)
        assert clip.start_seconds == pytest.approx(5.0)
        assert clip.duration_seconds == 2.0

    def test_end_of_source_is_pulled_back(self):
        clip = ClipWindow.from_scrub(1.0, 10.0, 2.0)
        assert clip.start_seconds == pytest.approx(8.0)

    def test_source_shorter_than_window_starts_at_zero(self):
        assert ClipWindow.from_scrub(0.9, 1.0, 2.0).start_seconds == 0.0

    def test_position_is_clamped(self):
        assert ClipWindow.from_scrub(-3.0, 10.0, 2.0).start_seconds == 0.0

    def test_zero_duration_rejected(self):
        with pytest.raises(ValueError):
            ClipWindow(0.0, 0.0)


class TestExitOutcome:

    def test_constructors(self):
        assert ExitOutcome.success().ok
        assert ExitOutcome.cancelled().status is ExitStatus.CANCELLED
        failed = ExitOutcome.non_zero_exit(1, "bad")
        assert not failed.ok
        assert failed.exit_code == 1
        assert failed.diagnostics == "bad"


class TestCapabilities:

    def test_unqueried_assumes_every_encoder(self):
        caps = Capabilities()
        assert caps.has_encoder("libx264")
        assert caps.pixel_formats_for("libx264") is None

    def test_queried(self):
        caps = Capabilities(encoders=frozenset({"libx264"}), pixel_formats={"libx264": ("yuv420p",)})
        assert caps.has_encoder("libx264")
        assert not caps.has_encoder("libx265")
        assert caps.pixel_formats_for("libx264") == ("yuv420p",)


def test_batch_report_counts():
    report = BatchReport(destination=Path("/out"))
    report.succeeded.append(Path("a.mov"))
    report.failures.append((Path("b.mov"), "boom"))
    assert report.total == 2
    assert report.failure_count == 1


def test_task_outputs_cover_every_preview_step():
    steps = [PreviewStep("reference", [], Path("/p/r.wav")), PreviewStep("compressed", [], Path("/p/c.mp3"))]
    preview = TranscodeTask(WorkStream.PREVIEW, 1, [], AudioSettings(), Path("/p/c.mp3"), steps=steps)
    export = TranscodeTask(WorkStream.EXPORT, 1, [], AudioSettings(), Path("/out/c.mp3"))

    assert preview.outputs() == [Path("/p/r.wav"), Path("/p/c.mp3")]
    assert preview.step.name == "reference" and preview.has_next_step
    assert export.outputs() == [Path("/out/c.mp3")]
    assert export.step is None and not export.has_next_step
