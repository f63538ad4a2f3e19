"""
MediaSqueeze command-line front end.

    mediasqueeze clip.mov photo.png song.wav --bitrate 2500 --quality 70
    mediasqueeze clip.mov --preview 0.4 --video-format av1

Every file is exported with the settings for its media kind into a
``Batch_Compressed_<timestamp>`` folder. Exit code is 1 if any file failed.

With ``--preview`` only the first file is used: a short before/after clip
around that position is rendered next to it (or into ``--dest``) and
nothing is exported.
"""

import argparse
import sys
from pathlib import Path

from loguru import logger
from PySide6.QtCore import QCoreApplication

from mediasqueeze.batch import BatchCoordinator, batch_destination
from mediasqueeze.config import Preferences, config_dir, load_preferences, save_preferences
from mediasqueeze.exceptions import ToolUnavailableError, UnsupportedInputError
from mediasqueeze.formatting import format_bytes
from mediasqueeze.log import LOG_FILE_NAME, setup_logging
from mediasqueeze.models import (
    AUDIO_FORMATS,
    IMAGE_FORMATS,
    RESOLUTION_SCALES,
    VIDEO_FORMATS,
    MediaKind,
)
from mediasqueeze.supervisor import TaskSupervisor
from mediasqueeze.toolchain import Toolchain


def _position(text: str) -> float:
    value = float(text)
    if not 0.0 <= value <= 1.0:
        raise argparse.ArgumentTypeError(f"position must be within [0, 1], got {value}")
    return value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mediasqueeze",
        description="Compress images, audio and video with ffmpeg.",
    )
    parser.add_argument("files", nargs="+", type=Path, help="files to compress")
    parser.add_argument("--dest", type=Path, default=None,
                        help="parent folder for the batch output (default: next to the first file)")
    parser.add_argument("--preview", type=_position, default=None, metavar="POSITION",
                        help="render a before/after preview of the first file at POSITION (0-1) "
                             "instead of exporting")

    video = parser.add_argument_group("video")
    video.add_argument("--video-format", choices=VIDEO_FORMATS)
    video.add_argument("--bitrate", type=float, help="video bitrate in kbps")

    image = parser.add_argument_group("image")
    image.add_argument("--image-format", choices=IMAGE_FORMATS)
    image.add_argument("--quality", type=float, help="image quality 1-100")

    parser.add_argument("--resolution", type=float, choices=RESOLUTION_SCALES,
                        help="scale factor for video and images")

    audio = parser.add_argument_group("audio")
    audio.add_argument("--audio-format", choices=AUDIO_FORMATS)
    audio.add_argument("--audio-bitrate", type=float, help="audio bitrate in kbps")

    parser.add_argument("--ffmpeg", default=None, help="path to the ffmpeg executable")
    parser.add_argument("--log-level", default=None,
                        choices=("TRACE", "DEBUG", "INFO", "WARNING", "ERROR"))
    return parser


def resolve_settings(args: argparse.Namespace, prefs: Preferences) -> dict:
    """Per-kind settings: saved preferences with the command-line flags on top."""
    video = prefs.settings_for(MediaKind.VIDEO)
    image = prefs.settings_for(MediaKind.IMAGE)
    audio = prefs.settings_for(MediaKind.AUDIO)

    video_changes = {}
    if args.video_format:
        video_changes["output_format"] = args.video_format
    if args.bitrate is not None:
        video_changes["bitrate_kbps"] = args.bitrate
    if args.resolution is not None:
        video_changes["resolution"] = args.resolution

    image_changes = {}
    if args.image_format:
        image_changes["output_format"] = args.image_format
    if args.quality is not None:
        image_changes["quality"] = args.quality
    if args.resolution is not None:
        image_changes["resolution"] = args.resolution

    audio_changes = {}
    if args.audio_format:
        audio_changes["output_format"] = args.audio_format
    if args.audio_bitrate is not None:
        audio_changes["bitrate_kbps"] = args.audio_bitrate

    return {
        MediaKind.VIDEO: video.with_changes(**video_changes),
        MediaKind.IMAGE: image.with_changes(**image_changes),
        MediaKind.AUDIO: audio.with_changes(**audio_changes),
    }


def run_preview(app, toolchain: Toolchain, source: Path, settings: dict,
                position: float, destination: Path, debounce_ms: int) -> int:
    """Render one preview through the debounced supervisor and keep its files."""
    destination.mkdir(parents=True, exist_ok=True)
    supervisor = TaskSupervisor(toolchain, debounce_ms=debounce_ms, preview_directory=destination)
    try:
        result = supervisor.load(source)
    except (FileNotFoundError, ToolUnavailableError, UnsupportedInputError) as exc:
        logger.error(f"[CLI] {exc}")
        return 1

    errors = []

    def on_failed(stream, diagnostics: str):
        errors.append(diagnostics)
        app.quit()

    supervisor.progress.connect(lambda stream, fraction: logger.debug(f"[CLI] preview {fraction:.0%}"))
    supervisor.completed.connect(lambda stream, path: app.quit())
    supervisor.failed.connect(on_failed)
    supervisor.fatal_error.connect(lambda message: on_failed(None, message))

    supervisor.on_scrub(position)
    supervisor.on_settings_changed(settings[result.kind])
    app.exec()

    artifacts = supervisor.take_last_good_preview()
    supervisor.shutdown()
    if artifacts is None:
        last_line = errors[-1].splitlines()[-1] if errors and errors[-1] else "no preview produced"
        logger.error(f"[CLI] ❌ preview of {source.name}: {last_line}")
        return 1
    for path in artifacts.paths():
        logger.info(f"[CLI] 🎞 {path}")
    return 0


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    prefs = load_preferences()
    setup_logging(args.log_level or prefs.log_level, config_dir() / LOG_FILE_NAME)

    try:
        settings = resolve_settings(args, prefs)
    except ValueError as exc:
        parser.error(str(exc))

    app = QCoreApplication.instance() or QCoreApplication(sys.argv[:1])

    try:
        toolchain = Toolchain.discover(args.ffmpeg or prefs.ffmpeg_path)
    except ToolUnavailableError as exc:
        logger.error(str(exc))
        return 1

    if args.preview is not None:
        source = args.files[0]
        return run_preview(app, toolchain, source, settings, args.preview,
                           args.dest or source.resolve().parent, prefs.debounce_ms)

    destination = batch_destination(args.dest or args.files[0].resolve().parent)
    coordinator = BatchCoordinator(toolchain)
    outcome = {}

    def on_progress(fraction: float, label: str):
        logger.info(f"[CLI] {label}")

    def on_finished(report):
        outcome["report"] = report
        app.quit()

    coordinator.progress.connect(on_progress)
    coordinator.finished.connect(on_finished)
    coordinator.run(args.files, lambda result, info: settings.get(result.kind), destination)

    # An empty or fully-rejected batch finishes synchronously inside run()
    if "report" not in outcome:
        app.exec()

    report = outcome["report"]
    for source, produced in zip(report.succeeded, report.outputs):
        size = format_bytes(produced.stat().st_size) if produced.exists() else "?"
        logger.info(f"[CLI] ✅ {source.name} → {produced.name} ({size})")
    for source, message in report.failures:
        last_line = message.splitlines()[-1] if message else "failed"
        logger.error(f"[CLI] ❌ {source.name}: {last_line}")

    for kind_settings in settings.values():
        prefs.remember(kind_settings)
    if args.ffmpeg:
        prefs.ffmpeg_path = args.ffmpeg
    save_preferences(prefs)

    logger.info(f"[CLI] {len(report.succeeded)}/{report.total} compressed → '{report.destination}'")
    return 1 if report.failure_count else 0


if __name__ == "__main__":
    sys.exit(main())
