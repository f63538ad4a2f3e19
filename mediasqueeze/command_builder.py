"""
mediasqueeze.command_builder
~~~~~~~~~~~~~~~~~~~~~~~~~~~~
Turns a settings snapshot into ffmpeg arguments (plain list[str]).

Exports and previews share ``encode_args``, so what the user previews is
what the export will produce. Preview chains add a lightly-encoded
reference clip and, for video, a side-by-side composite around it.

Capability facts (which encoders exist, which pixel formats they take)
arrive as arguments; no process is spawned and no file is written here.

The argument layout is:
    -hide_banner -y
    [-ss START -t DURATION]     ← clip window, preview only
    -i <source>
    <encode args>               ← codec, filters, quality; shared by preview and export
    <output>
"""

from __future__ import annotations

import math
import shlex
from pathlib import Path

from mediasqueeze.models import (
    AudioSettings,
    Capabilities,
    ClipWindow,
    CompressionSettings,
    ImageSettings,
    MediaInfo,
    MediaKind,
    PreviewArtifacts,
    PreviewStep,
    VideoSettings,
    pixel_format_has_alpha,
)


# ── Encoder tables ────────────────────────────────────────────────────────────
# First encoder the local build has wins.

VIDEO_ENCODERS: dict[str, tuple[str, ...]] = {
    "av1":  ("av1_videotoolbox", "libaom-av1", "libsvtav1"),
    "vp9":  ("libvpx-vp9",),
    "h264": ("libx264", "h264_videotoolbox"),
    "h265": ("libx265", "hevc_videotoolbox"),
}

IMAGE_ENCODERS: dict[str, tuple[str, ...]] = {
    "jpg":  ("mjpeg",),
    "png":  ("png",),
    "webp": ("libwebp",),
    "avif": ("libaom-av1", "libsvtav1"),
}

AUDIO_ENCODERS: dict[str, tuple[str, ...]] = {
    "mp3":  ("libmp3lame",),
    "opus": ("libopus", "opus"),
    "ogg":  ("libvorbis", "vorbis"),
}

ENCODER_SPEED_FLAGS: dict[str, list[str]] = {
    "libaom-av1": ["-cpu-used", "6", "-row-mt", "1"],
    "libsvtav1":  ["-preset", "8"],
    "libvpx-vp9": ["-cpu-used", "6", "-row-mt", "1"],
    "libx264":    ["-preset", "medium"],
    "libx265":    ["-preset", "medium"],
}

# Never assumed present when capabilities were not queried
HARDWARE_ENCODERS = frozenset({"av1_videotoolbox", "h264_videotoolbox", "hevc_videotoolbox"})

# ffmpeg's native vorbis/opus encoders are still flagged experimental
EXPERIMENTAL_ENCODERS = frozenset({"vorbis", "opus"})

# Outputs whose container/codec can carry transparency
ALPHA_CAPABLE_FORMATS = frozenset({"png", "webp", "avif", "vp9"})

# Used when an encoder's pixel formats were never queried
KNOWN_ALPHA_PIXEL_FORMATS: dict[str, str] = {
    "png":        "rgba",
    "libwebp":    "yuva420p",
    "libvpx-vp9": "yuva420p",
}

JPEG_Q_RANGE  = (2, 31)
AVIF_CRF_RANGE = (0, 63)


# ── Quality / geometry helpers ────────────────────────────────────────────────

def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _clamp(value: float, lo: float, hi: float) -> float:
    return min(max(value, lo), hi)


def jpeg_qscale(quality: float) -> int:
    """
    Map quality 1–100 onto mjpeg's ``-q:v`` (31 = worst, 2 = best).
        quality=1   → 31
        quality=100 → 2
    """
    quality = _clamp(quality, 1, 100)
    q = _round_half_up(31 - (quality - 1) * (29 / 99))
    return int(_clamp(q, *JPEG_Q_RANGE))


def avif_crf(quality: float) -> int:
    """Map quality 1–100 onto AV1 CRF 63–0."""
    quality = _clamp(quality, 1, 100)
    crf = _round_half_up(63 - (quality - 1) * (63 / 99))
    return int(_clamp(crf, *AVIF_CRF_RANGE))


def scaled_dimensions(width: int, height: int, scale: float) -> tuple[int, int]:
    """Output size for *scale*, matching ``trunc(dim*scale/2)*2``, always even."""
    return int(width * scale / 2) * 2, int(height * scale / 2) * 2


def scale_filter(scale: float) -> str:
    return f"scale=trunc(iw*{scale}/2)*2:trunc(ih*{scale}/2)*2"


EVEN_DIMENSIONS_FILTER = "scale=trunc(iw/2)*2:trunc(ih/2)*2"


def _geometry_filter(settings: CompressionSettings, media_info: MediaInfo | None) -> str | None:
    resolution = getattr(settings, "resolution", 1.0)
    if resolution < 1.0:
        return scale_filter(resolution)
    # Chroma-subsampled encoders reject odd sizes; PNG does not care.
    if settings.output_format == "png" or media_info is None:
        return None
    if media_info.width % 2 or media_info.height % 2:
        return EVEN_DIMENSIONS_FILTER
    return None


# ── Encoder selection ─────────────────────────────────────────────────────────

def encoder_candidates(settings: CompressionSettings) -> tuple[str, ...]:
    if isinstance(settings, VideoSettings):
        return VIDEO_ENCODERS[settings.output_format]
    if isinstance(settings, ImageSettings):
        return IMAGE_ENCODERS[settings.output_format]
    return AUDIO_ENCODERS[settings.output_format]


def all_known_encoders() -> set[str]:
    """Every encoder any format may ask for; the set to query capabilities for."""
    names: set[str] = set()
    for table in (VIDEO_ENCODERS, IMAGE_ENCODERS, AUDIO_ENCODERS):
        for candidates in table.values():
            names.update(candidates)
    return names


def select_encoder(settings: CompressionSettings, capabilities: Capabilities) -> str | None:
    """First preferred encoder present in *capabilities*, or None (→ basic conversion)."""
    for name in encoder_candidates(settings):
        if capabilities.encoders is None and name in HARDWARE_ENCODERS:
            continue
        if capabilities.has_encoder(name):
            return name
    return None


def alpha_pixel_format(encoder: str, capabilities: Capabilities) -> str | None:
    """The encoder's alpha-carrying pixel format, if it has one."""
    formats = capabilities.pixel_formats_for(encoder)
    if formats is None:
        return KNOWN_ALPHA_PIXEL_FORMATS.get(encoder)
    return next((fmt for fmt in formats if pixel_format_has_alpha(fmt)), None)


# ── Public API ────────────────────────────────────────────────────────────────

def build(
    source: Path,
    settings: CompressionSettings,
    output: Path,
    capabilities: Capabilities,
    media_info: MediaInfo | None = None,
    clip: ClipWindow | None = None,
) -> list[str]:
    """
    Build the ffmpeg arguments (without the executable) for one transcode.

    A preview and an export of the same settings differ only in *clip*.

    Example (export, AV1 at 2000 kbps):
        ['-hide_banner', '-y', '-i', '/in/clip.mov',
         '-c:v', 'libaom-av1', '-b:v', '2000k', '-cpu-used', '6', '-row-mt', '1',
         '-threads', '0', '/out/clip.mp4']
    """
    args = ["-hide_banner", "-y"]
    args += clip_args(clip)
    args += ["-i", str(source)]
    args += encode_args(settings, capabilities, media_info)
    args.append(str(output))
    return args


def clip_args(clip: ClipWindow | None) -> list[str]:
    if clip is None:
        return []
    return ["-ss", f"{clip.start_seconds:.3f}", "-t", f"{clip.duration_seconds:.3f}"]


def encode_args(
    settings: CompressionSettings,
    capabilities: Capabilities,
    media_info: MediaInfo | None = None,
) -> list[str]:
    if isinstance(settings, AudioSettings):
        return _audio_args(settings, capabilities)

    encoder = select_encoder(settings, capabilities)
    geometry = _geometry_filter(settings, media_info)

    if encoder is None:
        return _fallback_args(settings, geometry)

    wants_alpha = (
        media_info is not None
        and media_info.has_alpha
        and settings.output_format in ALPHA_CAPABLE_FORMATS
    )

    if wants_alpha:
        alpha_fmt = alpha_pixel_format(encoder, capabilities)
        if alpha_fmt is None:
            return _split_alpha_args(settings, encoder, geometry)
        pix_fmt = alpha_fmt
    else:
        pix_fmt = _opaque_pixel_format(settings)

    args: list[str] = []
    if geometry:
        args += ["-vf", geometry]
    args += ["-c:v", encoder]
    args += _quality_args(settings, encoder)
    if pix_fmt:
        args += ["-pix_fmt", pix_fmt]
    args += _container_args(settings)
    return args


# ── Preview chains ────────────────────────────────────────────────────────────

# Formats whose preview encode is retried with libx264 if it fails
PREVIEW_FALLBACK_FORMATS = frozenset({"av1", "vp9"})

REFERENCE_VIDEO_ARGS = ["-c:v", "libx264", "-preset", "ultrafast", "-crf", "18", "-pix_fmt", "yuv420p", "-an"]
REFERENCE_AUDIO_ARGS = ["-vn", "-c:a", "pcm_s16le"]


def reference_args(source: Path, kind: MediaKind, output: Path, clip: ClipWindow | None) -> list[str]:
    """
    The "before" clip: near-lossless H.264 for video, PCM for audio, so the
    comparison is not polluted by a second round of lossy artifacts.
    """
    args = ["-hide_banner", "-y", *clip_args(clip), "-i", str(source)]
    if kind is MediaKind.AUDIO:
        args += REFERENCE_AUDIO_ARGS
    else:
        args += ["-vf", EVEN_DIMENSIONS_FILTER, *REFERENCE_VIDEO_ARGS]
    args.append(str(output))
    return args


def composite_args(
    reference: Path,
    compressed: Path,
    output: Path,
    media_info: MediaInfo | None = None,
) -> list[str]:
    """
    Original (left) and compressed (right) side by side. The compressed clip
    is scaled back up to the reference size so hstack gets equal heights and
    downscaling artifacts stay visible.
    """
    upscale = ""
    if media_info is not None and media_info.has_dimensions:
        width, height = scaled_dimensions(media_info.width, media_info.height, 1.0)
        upscale = f"scale={width}:{height},"
    graph = (
        "[0:v]setpts=PTS-STARTPTS[a];"
        f"[1:v]{upscale}setpts=PTS-STARTPTS[b];"
        "[a][b]hstack=inputs=2[v]"
    )
    return [
        "-hide_banner", "-y",
        "-i", str(reference), "-i", str(compressed),
        "-filter_complex", graph,
        "-map", "[v]",
        *REFERENCE_VIDEO_ARGS,
        str(output),
    ]


def preview_fallback_args(
    source: Path,
    settings: VideoSettings,
    output: Path,
    media_info: MediaInfo | None = None,
    clip: ClipWindow | None = None,
) -> list[str]:
    """libx264 at the same bitrate and scale, for builds that choke on AV1/VP9."""
    args = ["-hide_banner", "-y", *clip_args(clip), "-i", str(source)]
    geometry = _geometry_filter(settings, media_info)
    if geometry:
        args += ["-vf", geometry]
    args += [
        "-c:v", "libx264", "-preset", "ultrafast",
        "-b:v", f"{_round_half_up(settings.bitrate_kbps)}k",
        "-pix_fmt", "yuv420p", "-an",
        str(output),
    ]
    return args


def preview_steps(
    source: Path,
    kind: MediaKind,
    settings: CompressionSettings,
    directory: Path,
    stem: str,
    capabilities: Capabilities,
    media_info: MediaInfo | None = None,
    clip: ClipWindow | None = None,
) -> list[PreviewStep]:
    """
    Plan the runs for one preview; they execute one after another.

        image   compressed
        audio   reference (.wav) → compressed
        video   reference (.mp4) → compressed (.mp4) → composite (.mp4)

    Video clips always use MP4 so the libx264 fallback can reuse the path.
    """
    if kind is MediaKind.IMAGE:
        output = directory / f"{stem}.{settings.extension}"
        return [PreviewStep("compressed", build(source, settings, output, capabilities, media_info, clip), output)]

    if kind is MediaKind.AUDIO:
        reference = directory / f"{stem}_original.wav"
        compressed = directory / f"{stem}_compressed.{settings.extension}"
        return [
            PreviewStep("reference", reference_args(source, kind, reference, clip), reference),
            PreviewStep("compressed", build(source, settings, compressed, capabilities, media_info, clip),
                        compressed),
        ]

    reference = directory / f"{stem}_original.mp4"
    compressed = directory / f"{stem}_compressed.mp4"
    composite = directory / f"{stem}_composite.mp4"
    fallback = None
    if settings.output_format in PREVIEW_FALLBACK_FORMATS and capabilities.has_encoder("libx264"):
        fallback = preview_fallback_args(source, settings, compressed, media_info, clip)
    return [
        PreviewStep("reference", reference_args(source, kind, reference, clip), reference),
        PreviewStep("compressed", build(source, settings, compressed, capabilities, media_info, clip),
                    compressed, fallback_args=fallback),
        PreviewStep("composite", composite_args(reference, compressed, composite, media_info), composite),
    ]


def artifacts_for(steps: list[PreviewStep]) -> PreviewArtifacts:
    by_name = {step.name: step.output_path for step in steps}
    return PreviewArtifacts(
        compressed=by_name["compressed"],
        reference=by_name.get("reference"),
        composite=by_name.get("composite"),
    )


def command_as_string(executable: Path | str, args: list[str]) -> str:
    """Human-readable, shell-pasteable version of the command for logging."""
    return shlex.join([str(executable), *args])


# ── Internal helpers ──────────────────────────────────────────────────────────

def _opaque_pixel_format(settings: CompressionSettings) -> str | None:
    if settings.output_format == "jpg":
        return "yuvj420p"
    if settings.output_format == "png":
        return None
    return "yuv420p"


def _quality_args(settings: CompressionSettings, encoder: str) -> list[str]:
    if isinstance(settings, VideoSettings):
        return [
            "-b:v", f"{_round_half_up(settings.bitrate_kbps)}k",
            *ENCODER_SPEED_FLAGS.get(encoder, []),
            "-threads", "0",
        ]
    fmt = settings.output_format
    if fmt == "jpg":
        return ["-q:v", str(jpeg_qscale(settings.quality))]
    if fmt == "webp":
        return ["-q:v", str(_round_half_up(settings.quality))]
    if fmt == "avif":
        return ["-crf", str(avif_crf(settings.quality)), *ENCODER_SPEED_FLAGS.get(encoder, [])]
    return []  # png: lossless


def _container_args(settings: CompressionSettings) -> list[str]:
    if isinstance(settings, ImageSettings):
        return ["-frames:v", "1", "-update", "1"]
    return []


def _split_alpha_args(settings: CompressionSettings, encoder: str, geometry: str | None) -> list[str]:
    """
    Encoder has no 4-channel pixel format: encode color and alpha as two
    streams and mux them into the same output (AVIF carries the second one
    as its alpha plane).
    """
    head = f"[0:v]{geometry}," if geometry else "[0:v]"
    graph = f"{head}split=2[color][alpha_src];[alpha_src]alphaextract[alpha]"
    return [
        "-filter_complex", graph,
        "-map", "[color]", "-map", "[alpha]",
        "-c:v:0", encoder, "-c:v:1", encoder,
        *_quality_args(settings, encoder),
        "-pix_fmt:v:0", "yuv420p", "-pix_fmt:v:1", "gray",
        *_container_args(settings),
    ]


def _audio_args(settings: AudioSettings, capabilities: Capabilities) -> list[str]:
    encoder = select_encoder(settings, capabilities)
    args = ["-vn"]
    if encoder is not None:
        args += ["-c:a", encoder]
        if encoder in EXPERIMENTAL_ENCODERS:
            args += ["-strict", "-2"]
    args += ["-b:a", f"{_round_half_up(settings.bitrate_kbps)}k"]
    return args


def _fallback_args(settings: CompressionSettings, geometry: str | None) -> list[str]:
    """No capable encoder: let ffmpeg pick its default for the output extension."""
    args: list[str] = []
    if geometry:
        args += ["-vf", geometry]
    if isinstance(settings, VideoSettings):
        args += ["-b:v", f"{_round_half_up(settings.bitrate_kbps)}k"]
    args += _container_args(settings)
    return args
