"""
mediasqueeze.probe
~~~~~~~~~~~~~~~~~~
Thin wrappers around the tool's inspection mode.
Return ProbeResult / MediaInfo dataclasses: no Qt, no side effects.

Two strategies share one classification policy:

  FfprobeMediaProbe   ffprobe -print_format json -show_format -show_streams
  InspectMediaProbe   ffmpeg -hide_banner -i FILE  (parses the diagnostic text)

``create_media_probe`` picks ffprobe when it is installed and falls back to
plain ffmpeg otherwise; the choice is made once, at startup.
"""

from __future__ import annotations

import json
import re
import subprocess
from dataclasses import dataclass, field
from pathlib import Path

from loguru import logger

from mediasqueeze.exceptions import ToolUnavailableError, UnsupportedInputError
from mediasqueeze.models import MediaInfo, MediaKind, ProbeResult

PROBE_TIMEOUT_SECONDS = 30

# Single-frame containers, by demuxer name
IMAGE_FORMAT_NAMES = frozenset({"image2", "png", "apng", "webp", "bmp", "tiff", "jpegxl"})
# ISO-BMFF still-image brands (AVIF/HEIF use the mov demuxer)
IMAGE_BRANDS = frozenset({"avif", "avis", "heic", "heix", "mif1", "msf1"})


# ── Neutral stream description ────────────────────────────────────────────────

@dataclass
class _Stream:
    codec_type: str                # "video", "audio", "subtitle", "data"…
    attached_pic: bool = False
    width: int = 0
    height: int = 0
    pix_fmt: str = ""


@dataclass
class _Inspection:
    """What either strategy extracted from one tool run."""
    readable: bool
    container: str = ""
    major_brand: str = ""
    duration: float = 0.0
    bitrate_kbps: int = 0
    streams: list[_Stream] = field(default_factory=list)
    diagnostics: str = ""


# ── Classification policy ─────────────────────────────────────────────────────

def is_image_container(container: str, major_brand: str = "") -> bool:
    names = [n.strip().lower() for n in container.split(",") if n.strip()]
    if any(n in IMAGE_FORMAT_NAMES or n.endswith("_pipe") for n in names):
        return True
    return major_brand.strip().lower() in IMAGE_BRANDS


def classify(inspection: _Inspection) -> tuple[MediaKind, bool]:
    """
    Map an inspection onto (kind, supported).

    Cover art (attached pictures) never counts as video, so an mp3 with an
    embedded album image classifies as audio.
    """
    if not inspection.readable:
        return MediaKind.UNKNOWN, False

    if is_image_container(inspection.container, inspection.major_brand):
        return MediaKind.IMAGE, True

    kinds = {s.codec_type for s in inspection.streams if not s.attached_pic}
    if "video" in kinds:
        return MediaKind.VIDEO, True
    if "audio" in kinds:
        return MediaKind.AUDIO, True
    # Parsed, but nothing we special-case (subtitles only, data tracks…)
    return MediaKind.UNKNOWN, True


def _media_info(inspection: _Inspection) -> MediaInfo:
    picture = next(
        (s for s in inspection.streams if s.codec_type == "video" and not s.attached_pic),
        None,
    ) or next((s for s in inspection.streams if s.codec_type == "video"), None)

    return MediaInfo(
        duration_seconds=max(inspection.duration, 0.0),
        bitrate_kbps=max(inspection.bitrate_kbps, 0),
        width=picture.width if picture else 0,
        height=picture.height if picture else 0,
        pixel_format=picture.pix_fmt if picture else "",
    )


# ── Strategy base ─────────────────────────────────────────────────────────────

class MediaProbe:
    """Inspection-mode front end; subclasses provide ``_inspect``."""

    tool: Path

    def examine(self, path: Path) -> tuple[ProbeResult, MediaInfo]:
        """
        Probe *path* once and return both the classification and the media info.

        Raises:
            FileNotFoundError     – if the input file does not exist
            ToolUnavailableError  – if the tool cannot be executed
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Input file not found: {path}")

        inspection = self._inspect(path)
        kind, supported = classify(inspection)
        result = ProbeResult(
            path=path,
            kind=kind,
            supported=supported,
            container=inspection.container,
        )
        info = _media_info(inspection) if inspection.readable else MediaInfo()
        logger.debug(
            f"[PROBE] {path.name}: kind={kind.value} supported={supported} "
            f"container='{inspection.container}' duration={info.duration_seconds:.2f}s "
            f"bitrate={info.bitrate_kbps}kb/s size={info.width}x{info.height}"
        )
        return result, info

    def probe(self, path: Path) -> ProbeResult:
        return self.examine(path)[0]

    def info(self, path: Path) -> MediaInfo:
        """
        Raises:
            UnsupportedInputError – if the tool cannot parse the file
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Input file not found: {path}")
        inspection = self._inspect(path)
        if not inspection.readable:
            raise UnsupportedInputError(path, inspection.diagnostics or "unreadable media")
        return _media_info(inspection)

    def get_duration(self, path: Path) -> float:
        """
        Convenience shortcut, returns duration in seconds only.
        Returns 0.0 if the file cannot be parsed.
        """
        try:
            return self.info(path).duration_seconds
        except UnsupportedInputError:
            return 0.0

    def _inspect(self, path: Path) -> _Inspection:
        raise NotImplementedError

    def _run(self, cmd: list[str]) -> subprocess.CompletedProcess:
        try:
            return subprocess.run(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                errors="replace",
                timeout=PROBE_TIMEOUT_SECONDS,
            )
        except OSError as exc:
            raise ToolUnavailableError(self.tool, str(exc)) from exc
        except subprocess.TimeoutExpired as exc:
            raise ToolUnavailableError(self.tool, f"timed out after {PROBE_TIMEOUT_SECONDS}s") from exc


# ── ffprobe JSON strategy ─────────────────────────────────────────────────────

class FfprobeMediaProbe(MediaProbe):

    def __init__(self, ffprobe: Path):
        self.tool = Path(ffprobe)

    def build_command(self, file: Path) -> list[str]:
        return [
            str(self.tool),
            "-v", "error",            # errors only, so failures stay readable
            "-print_format", "json",  # machine-readable output
            "-show_format",           # container, duration, bitrate
            "-show_streams",          # per-stream codec info
            str(file),
        ]

    def _inspect(self, path: Path) -> _Inspection:
        result = self._run(self.build_command(path))
        if result.returncode != 0:
            return _Inspection(readable=False, diagnostics=result.stderr.strip())
        try:
            data = json.loads(result.stdout or "{}")
        except json.JSONDecodeError:
            return _Inspection(readable=False, diagnostics=result.stderr.strip())
        return parse_ffprobe_json(data)


def parse_ffprobe_json(data: dict) -> _Inspection:
    """Extract the fields we care about from raw ffprobe JSON."""
    fmt = data.get("format", {})
    if not fmt and not data.get("streams"):
        return _Inspection(readable=False)

    streams = [
        _Stream(
            codec_type=s.get("codec_type", ""),
            attached_pic=bool(s.get("disposition", {}).get("attached_pic", 0)),
            width=int(s.get("width", 0) or 0),
            height=int(s.get("height", 0) or 0),
            pix_fmt=s.get("pix_fmt", "") or "",
        )
        for s in data.get("streams", [])
    ]
    tags = {k.lower(): v for k, v in (fmt.get("tags") or {}).items()}

    return _Inspection(
        readable=True,
        container=fmt.get("format_name", ""),
        major_brand=str(tags.get("major_brand", "")),
        duration=_to_float(fmt.get("duration")),
        bitrate_kbps=int(_to_float(fmt.get("bit_rate")) // 1000),
        streams=streams,
    )


# ── ffmpeg -i strategy ────────────────────────────────────────────────────────

# Input #0, mp3, from 'song.mp3':
_INPUT_RE    = re.compile(r"^Input #0, (.+?), from ")
# Duration: 00:03:25.51, start: 0.025057, bitrate: 320 kb/s
_DURATION_RE = re.compile(r"Duration: (\d+):(\d+):(\d+(?:\.\d+)?)")
_BITRATE_RE  = re.compile(r"bitrate: (\d+) kb/s")
_BRAND_RE    = re.compile(r"^\s*major_brand\s*:\s*(\S+)")
# Stream #0:1[0x2](und): Video: mjpeg (Baseline), yuvj420p(pc), 600x600 [SAR 1:1], (attached pic)
_STREAM_RE   = re.compile(r"^\s*Stream #0:\d+\S*: (\w+): (.*)$")
_SIZE_RE     = re.compile(r",\s*(\d{1,5})x(\d{1,5})\b")
# pixel format is the first token after the codec description: "h264 (High), yuv420p(tv), …"
_PIX_FMT_RE  = re.compile(r"^[^,]*,\s*([a-z0-9_]+)")


class InspectMediaProbe(MediaProbe):
    """Probe with ffmpeg alone, for builds shipped without ffprobe."""

    def __init__(self, ffmpeg: Path):
        self.tool = Path(ffmpeg)

    def build_command(self, file: Path) -> list[str]:
        return [str(self.tool), "-hide_banner", "-i", str(file)]

    def _inspect(self, path: Path) -> _Inspection:
        # With no output file ffmpeg always exits non-zero; the text is what matters.
        result = self._run(self.build_command(path))
        return parse_inspect_output(result.stderr)


def parse_inspect_output(text: str) -> _Inspection:
    container = ""
    brand = ""
    streams: list[_Stream] = []

    for line in text.splitlines():
        if not container:
            match = _INPUT_RE.match(line)
            if match:
                container = match.group(1)
                continue
        if not brand:
            match = _BRAND_RE.match(line)
            if match:
                brand = match.group(1)
                continue
        match = _STREAM_RE.match(line)
        if match:
            streams.append(_parse_stream_line(match.group(1), match.group(2)))

    if not container:
        return _Inspection(readable=False, diagnostics=text.strip())

    duration = 0.0
    match = _DURATION_RE.search(text)
    if match:
        h, m, s = match.groups()
        duration = int(h) * 3600 + int(m) * 60 + float(s)

    bitrate = 0
    match = _BITRATE_RE.search(text)
    if match:
        bitrate = int(match.group(1))

    return _Inspection(
        readable=True,
        container=container,
        major_brand=brand,
        duration=duration,
        bitrate_kbps=bitrate,
        streams=streams,
    )


def _parse_stream_line(kind: str, description: str) -> _Stream:
    stream = _Stream(
        codec_type=kind.lower(),
        attached_pic="(attached pic)" in description,
    )
    if stream.codec_type == "video":
        size = _SIZE_RE.search(description)
        if size:
            stream.width, stream.height = int(size.group(1)), int(size.group(2))
        pix = _PIX_FMT_RE.match(description)
        if pix:
            stream.pix_fmt = pix.group(1)
    return stream


# ── Factory ───────────────────────────────────────────────────────────────────

def create_media_probe(ffmpeg: Path, ffprobe: Path | None = None) -> MediaProbe:
    if ffprobe is not None:
        logger.info(f"[PROBE] Using ffprobe at {ffprobe}")
        return FfprobeMediaProbe(ffprobe)
    logger.info(f"[PROBE] ffprobe not found, inspecting with {ffmpeg} -i")
    return InspectMediaProbe(ffmpeg)


def _to_float(value) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0
