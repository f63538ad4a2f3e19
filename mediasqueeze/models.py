"""
mediasqueeze.models
~~~~~~~~~~~~~~~~~~~
Value objects: no Qt, no I/O.
These travel freely between the probe, the command builder and the supervisor.

Settings are frozen: every edit produces a new snapshot, so the supervisor
can compare "settings used by the in-flight task" against "current settings".
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from enum import Enum, auto
from pathlib import Path
from typing import Mapping, Union


# ── Enums ─────────────────────────────────────────────────────────────────────

class MediaKind(Enum):
    IMAGE   = "image"
    AUDIO   = "audio"
    VIDEO   = "video"
    UNKNOWN = "unknown"


class WorkStream(Enum):
    PREVIEW = auto()
    EXPORT  = auto()


class StreamState(Enum):
    IDLE      = auto()  # nothing in flight
    RUNNING   = auto()  # a task is current
    COMPLETED = auto()  # transient, returns to IDLE
    FAILED    = auto()  # transient, returns to IDLE
    CANCELLED = auto()  # transient, returns to IDLE


class ExitStatus(Enum):
    SUCCESS       = auto()
    NON_ZERO_EXIT = auto()
    CANCELLED     = auto()


VIDEO_FORMATS = ("av1", "vp9", "h264", "h265")
IMAGE_FORMATS = ("jpg", "png", "webp", "avif")
AUDIO_FORMATS = ("mp3", "ogg", "opus")

RESOLUTION_SCALES = (1.0, 0.5, 0.25)

VIDEO_BITRATE_RANGE = (10, 100_000)   # kbps
AUDIO_BITRATE_RANGE = (8, 512)        # kbps
QUALITY_RANGE       = (1, 100)

ALPHA_TAGS = ("rgba", "bgra", "argb", "abgr")


def pixel_format_has_alpha(pix_fmt: str) -> bool:
    """True for pixel formats that carry a transparency channel (yuva420p, rgba, ya8…)."""
    fmt = pix_fmt.lower()
    if fmt.startswith(("yuva", "gbrap", "ya")):
        return True
    return any(tag in fmt for tag in ALPHA_TAGS)


# ── Probe output (returned by mediasqueeze.probe) ─────────────────────────────

@dataclass(frozen=True)
class MediaInfo:
    """Duration, bitrate and geometry of a source file."""
    duration_seconds: float = 0.0   # 0.0 if unknown
    bitrate_kbps: int = 0
    width: int = 0
    height: int = 0
    pixel_format: str = ""

    def __post_init__(self):
        if self.duration_seconds < 0:
            raise ValueError(f"duration must be >= 0, got {self.duration_seconds}")
        if self.bitrate_kbps < 0 or self.width < 0 or self.height < 0:
            raise ValueError("bitrate and dimensions must be >= 0")

    @property
    def has_alpha(self) -> bool:
        return pixel_format_has_alpha(self.pixel_format)

    @property
    def has_dimensions(self) -> bool:
        return self.width > 0 and self.height > 0


@dataclass(frozen=True)
class ProbeResult:
    """Classification of a source file. Drives which settings variant applies."""
    path: Path
    kind: MediaKind
    supported: bool
    container: str = ""


# ── Compression settings ──────────────────────────────────────────────────────

def _check_choice(name: str, value, choices) -> None:
    if value not in choices:
        raise ValueError(f"{name} must be one of {choices}, got {value!r}")


def _check_range(name: str, value: float, bounds: tuple[int, int]) -> None:
    lo, hi = bounds
    if not lo <= value <= hi:
        raise ValueError(f"{name} must be within [{lo}, {hi}], got {value}")


class _SettingsMixin:

    def with_changes(self, **changes):
        """Return a new snapshot with *changes* applied; the original is untouched."""
        return dataclasses.replace(self, **changes)


@dataclass(frozen=True)
class VideoSettings(_SettingsMixin):
    output_format: str = "h265"
    bitrate_kbps: float = 5000
    resolution: float = 1.0

    media_kind = MediaKind.VIDEO

    def __post_init__(self):
        _check_choice("output_format", self.output_format, VIDEO_FORMATS)
        _check_range("bitrate_kbps", self.bitrate_kbps, VIDEO_BITRATE_RANGE)
        _check_choice("resolution", self.resolution, RESOLUTION_SCALES)

    @property
    def extension(self) -> str:
        return "webm" if self.output_format == "vp9" else "mp4"


@dataclass(frozen=True)
class ImageSettings(_SettingsMixin):
    output_format: str = "jpg"
    quality: float = 80
    resolution: float = 1.0

    media_kind = MediaKind.IMAGE

    def __post_init__(self):
        _check_choice("output_format", self.output_format, IMAGE_FORMATS)
        _check_range("quality", self.quality, QUALITY_RANGE)
        _check_choice("resolution", self.resolution, RESOLUTION_SCALES)

    @property
    def extension(self) -> str:
        return self.output_format


@dataclass(frozen=True)
class AudioSettings(_SettingsMixin):
    output_format: str = "mp3"
    bitrate_kbps: float = 128

    media_kind = MediaKind.AUDIO

    def __post_init__(self):
        _check_choice("output_format", self.output_format, AUDIO_FORMATS)
        _check_range("bitrate_kbps", self.bitrate_kbps, AUDIO_BITRATE_RANGE)

    @property
    def extension(self) -> str:
        return self.output_format


CompressionSettings = Union[VideoSettings, ImageSettings, AudioSettings]

_DEFAULTS = {
    MediaKind.VIDEO: VideoSettings,
    MediaKind.IMAGE: ImageSettings,
    MediaKind.AUDIO: AudioSettings,
}


def default_settings_for(kind: MediaKind) -> CompressionSettings:
    """Default snapshot for *kind*. Raises ValueError for UNKNOWN."""
    try:
        return _DEFAULTS[kind]()
    except KeyError:
        raise ValueError(f"No compression settings for media kind {kind.value!r}") from None


def settings_class_for(kind: MediaKind) -> type:
    return _DEFAULTS[kind]


# ── Clip window ───────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ClipWindow:
    """Trim window for preview clips: ``-ss start -t duration``."""
    start_seconds: float
    duration_seconds: float

    def __post_init__(self):
        if self.start_seconds < 0:
            raise ValueError(f"start must be >= 0, got {self.start_seconds}")
        if self.duration_seconds <= 0:
            raise ValueError(f"duration must be > 0, got {self.duration_seconds}")

    @classmethod
    def from_scrub(cls, position: float, total_seconds: float, length: float) -> "ClipWindow":
        """
        Map a 0..1 scrub *position* onto a source of *total_seconds*.

        The window is pulled back so it ends inside the source where the
        source is long enough; a short source yields a window starting at 0.
        """
        position = min(max(position, 0.0), 1.0)
        start = total_seconds * position
        if total_seconds > 0:
            start = min(start, max(total_seconds - length, 0.0))
        return cls(start_seconds=max(start, 0.0), duration_seconds=length)


# ── Process outcome ───────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ExitOutcome:
    status: ExitStatus
    exit_code: int | None = None
    diagnostics: str = ""

    @classmethod
    def success(cls) -> "ExitOutcome":
        return cls(ExitStatus.SUCCESS, 0)

    @classmethod
    def cancelled(cls) -> "ExitOutcome":
        return cls(ExitStatus.CANCELLED)

    @classmethod
    def non_zero_exit(cls, code: int, diagnostics: str) -> "ExitOutcome":
        return cls(ExitStatus.NON_ZERO_EXIT, code, diagnostics)

    @property
    def ok(self) -> bool:
        return self.status is ExitStatus.SUCCESS


# ── Capability set (returned by mediasqueeze.capabilities) ────────────────────

@dataclass(frozen=True)
class Capabilities:
    """
    Encoders and pixel formats the local ffmpeg build supports.

    ``encoders=None`` means "not queried": every encoder is assumed present,
    which keeps the command builder usable before (or without) introspection.
    """
    encoders: frozenset[str] | None = None
    pixel_formats: Mapping[str, tuple[str, ...]] = field(default_factory=dict)

    def has_encoder(self, name: str) -> bool:
        return self.encoders is None or name in self.encoders

    def pixel_formats_for(self, encoder: str) -> tuple[str, ...] | None:
        """Supported pixel formats, or None when they were never queried."""
        return self.pixel_formats.get(encoder)


# ── Supervisor / batch records ────────────────────────────────────────────────

@dataclass
class PreviewStep:
    """One ffmpeg run in a preview chain (reference → compressed → composite)."""
    name: str
    args: list[str]
    output_path: Path
    fallback_args: list[str] | None = None   # retried once if this run fails


@dataclass(frozen=True)
class PreviewArtifacts:
    """
    Files a finished preview left behind.

    ``reference`` is the lightly-encoded "before" clip (video, audio);
    ``composite`` is the side-by-side before/after render (video only).
    """
    compressed: Path
    reference: Path | None = None
    composite: Path | None = None

    @property
    def primary(self) -> Path:
        """What a viewer should show: the composite when there is one."""
        return self.composite or self.compressed

    def paths(self) -> list[Path]:
        return [p for p in (self.reference, self.compressed, self.composite) if p is not None]


@dataclass
class TranscodeTask:
    """
    Work owned by the supervisor: one process for an export, a short chain
    of processes for a preview. ``generation`` is captured at submission
    time and compared on every completion.
    """
    stream: WorkStream
    generation: int
    args: list[str]
    settings: CompressionSettings
    output_path: Path
    handle: object = field(default=None, compare=False, repr=False)
    total_duration: float | None = None
    steps: list[PreviewStep] = field(default_factory=list)
    step_index: int = 0
    fallback_used: bool = False
    progress: float = 0.0

    @property
    def step(self) -> PreviewStep | None:
        return self.steps[self.step_index] if self.steps else None

    @property
    def has_next_step(self) -> bool:
        return self.step_index + 1 < len(self.steps)

    def outputs(self) -> list[Path]:
        """Every file this task may write."""
        if not self.steps:
            return [self.output_path]
        return [s.output_path for s in self.steps]


@dataclass
class BatchReport:
    destination: Path
    succeeded: list[Path] = field(default_factory=list)
    failures: list[tuple[Path, str]] = field(default_factory=list)
    outputs: list[Path] = field(default_factory=list)   # parallel to ``succeeded``

    @property
    def failure_count(self) -> int:
        return len(self.failures)

    @property
    def total(self) -> int:
        return len(self.succeeded) + len(self.failures)
