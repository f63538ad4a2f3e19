"""
Unit tests for media classification.

Both probe strategies (ffprobe JSON and ``ffmpeg -i`` text) feed the same
classification policy; cover art never makes an audio file a video.
"""

import json
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from mediasqueeze.exceptions import ToolUnavailableError, UnsupportedInputError
from mediasqueeze.models import MediaKind
from mediasqueeze.probe import (
    FfprobeMediaProbe,
    InspectMediaProbe,
    classify,
    create_media_probe,
    is_image_container,
    parse_ffprobe_json,
    parse_inspect_output,
)

MP3_WITH_COVER = {
    "format": {"format_name": "mp3", "duration": "205.51", "bit_rate": "320000"},
    "streams": [
        {"codec_type": "audio", "codec_name": "mp3"},
        {"codec_type": "video", "codec_name": "mjpeg", "width": 600, "height": 600,
         "pix_fmt": "yuvj420p", "disposition": {"attached_pic": 1}},
    ],
}

MOV_VIDEO = {
    "format": {"format_name": "mov,mp4,m4a,3gp,3g2,mj2", "duration": "12.5", "bit_rate": "8000000",
               "tags": {"major_brand": "qt  "}},
    "streams": [
        {"codec_type": "video", "width": 1920, "height": 1080, "pix_fmt": "yuv420p",
         "disposition": {"attached_pic": 0}},
        {"codec_type": "audio"},
    ],
}

AVIF_STILL = {
    "format": {"format_name": "mov,mp4,m4a,3gp,3g2,mj2", "tags": {"major_brand": "avif"}},
    "streams": [{"codec_type": "video", "width": 640, "height": 480, "pix_fmt": "yuv420p"}],
}

INSPECT_MP3 = """\
Input #0, mp3, from 'song.mp3':
  Metadata:
    title           : Example
  Duration: 00:03:25.51, start: 0.025057, bitrate: 320 kb/s
  Stream #0:0: Audio: mp3, 44100 Hz, stereo, fltp, 320 kb/s
  Stream #0:1: Video: mjpeg (Baseline), yuvj420p(pc, bt470bg/unknown/unknown), 600x600 [SAR 1:1 DAR 1:1], 90k tbr, 90k tbn (attached pic)
At least one output file must be specified
"""

INSPECT_PNG = """\
Input #0, png_pipe, from 'logo.png':
  Duration: N/A, bitrate: N/A
  Stream #0:0: Video: png, rgba(pc), 801x601, 25 tbr, 25 tbn
At least one output file must be specified
"""

INSPECT_MP4 = """\
Input #0, mov,mp4,m4a,3gp,3g2,mj2, from 'clip.mp4':
  Metadata:
    major_brand     : isom
  Duration: 00:00:10.00, start: 0.000000, bitrate: 2500 kb/s
  Stream #0:0[0x1](und): Video: h264 (High) (avc1 / 0x31637661), yuv420p(progressive), 1280x720, 2300 kb/s, 30 fps
  Stream #0:1[0x2](und): Audio: aac (LC) (mp4a / 0x6134706D), 48000 Hz, stereo, fltp, 192 kb/s
"""

INSPECT_GARBAGE = "notes.txt: Invalid data found when processing input\n"


class TestClassification:

    def test_cover_art_mp3_is_audio(self):
        assert classify(parse_ffprobe_json(MP3_WITH_COVER)) == (MediaKind.AUDIO, True)

    def test_video_with_audio_is_video(self):
        assert classify(parse_ffprobe_json(MOV_VIDEO)) == (MediaKind.VIDEO, True)

    def test_avif_brand_is_image(self):
        assert classify(parse_ffprobe_json(AVIF_STILL)) == (MediaKind.IMAGE, True)

    @pytest.mark.parametrize("container", ["image2", "png_pipe", "webp_pipe", "png"])
    def test_image_containers(self, container):
        assert is_image_container(container)

    def test_mov_is_not_an_image_container(self):
        assert not is_image_container("mov,mp4,m4a,3gp,3g2,mj2", "isom")

    def test_subtitle_only_is_unknown_but_supported(self):
        data = {"format": {"format_name": "srt"}, "streams": [{"codec_type": "subtitle"}]}
        assert classify(parse_ffprobe_json(data)) == (MediaKind.UNKNOWN, True)

    def test_empty_json_is_unsupported(self):
        assert classify(parse_ffprobe_json({})) == (MediaKind.UNKNOWN, False)


class TestFfprobeJson:

    def test_media_info_fields(self):
        inspection = parse_ffprobe_json(MOV_VIDEO)
        assert inspection.duration == pytest.approx(12.5)
        assert inspection.bitrate_kbps == 8000
        assert inspection.major_brand == "qt  "

    def test_missing_numbers_default_to_zero(self):
        inspection = parse_ffprobe_json(AVIF_STILL)
        assert inspection.duration == 0.0
        assert inspection.bitrate_kbps == 0

    def test_examine_runs_ffprobe(self, tmp_path):
        song = tmp_path / "song.mp3"
        song.write_bytes(b"ID3")
        completed = MagicMock(returncode=0, stdout=json.dumps(MP3_WITH_COVER), stderr="")

        with patch("mediasqueeze.probe.subprocess.run", return_value=completed) as mock_run:
            result, info = FfprobeMediaProbe(Path("/usr/bin/ffprobe")).examine(song)

        assert mock_run.call_args.args[0][-1] == str(song)
        assert result.kind is MediaKind.AUDIO
        assert info.duration_seconds == pytest.approx(205.51)
        assert info.bitrate_kbps == 320

    def test_ffprobe_error_is_unsupported(self, tmp_path):
        junk = tmp_path / "junk.bin"
        junk.write_bytes(b"\x00")
        completed = MagicMock(returncode=1, stdout="", stderr="Invalid data found when processing input")

        with patch("mediasqueeze.probe.subprocess.run", return_value=completed):
            probe = FfprobeMediaProbe(Path("ffprobe"))
            result, _ = probe.examine(junk)
            assert result.supported is False
            with pytest.raises(UnsupportedInputError):
                probe.info(junk)
            assert probe.get_duration(junk) == 0.0


class TestInspectOutput:

    def test_mp3_with_cover(self):
        inspection = parse_inspect_output(INSPECT_MP3)
        assert classify(inspection) == (MediaKind.AUDIO, True)
        assert inspection.duration == pytest.approx(205.51)
        assert inspection.bitrate_kbps == 320

    def test_png_pipe(self):
        inspection = parse_inspect_output(INSPECT_PNG)
        assert classify(inspection) == (MediaKind.IMAGE, True)
        picture = inspection.streams[0]
        assert (picture.width, picture.height) == (801, 601)
        assert picture.pix_fmt == "rgba"

    def test_mp4_video(self):
        inspection = parse_inspect_output(INSPECT_MP4)
        assert classify(inspection) == (MediaKind.VIDEO, True)
        assert inspection.major_brand == "isom"
        assert inspection.streams[0].pix_fmt == "yuv420p"
        assert inspection.streams[0].width == 1280

    def test_unparseable(self):
        inspection = parse_inspect_output(INSPECT_GARBAGE)
        assert not inspection.readable
        assert "Invalid data" in inspection.diagnostics

    def test_examine_ignores_exit_code(self, tmp_path):
        song = tmp_path / "song.mp3"
        song.write_bytes(b"ID3")
        completed = MagicMock(returncode=1, stdout="", stderr=INSPECT_MP3)

        with patch("mediasqueeze.probe.subprocess.run", return_value=completed):
            result, info = InspectMediaProbe(Path("ffmpeg")).examine(song)

        assert result.kind is MediaKind.AUDIO
        assert info.width == 600  # cover art geometry is still reported


class TestErrors:

    def test_missing_input_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            FfprobeMediaProbe(Path("ffprobe")).examine(tmp_path / "nope.mp4")

    def test_missing_tool(self, tmp_path):
        existing = tmp_path / "clip.mp4"
        existing.write_bytes(b"\x00")
        with pytest.raises(ToolUnavailableError) as exc_info:
            InspectMediaProbe(Path("/nonexistent/ffmpeg")).examine(existing)
        assert "/nonexistent/ffmpeg" in exc_info.value.tool


def test_factory_prefers_ffprobe():
    assert isinstance(create_media_probe(Path("ffmpeg"), Path("ffprobe")), FfprobeMediaProbe)
    assert isinstance(create_media_probe(Path("ffmpeg")), InspectMediaProbe)
