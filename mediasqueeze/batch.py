"""
mediasqueeze.batch
~~~~~~~~~~~~~~~~~~
BatchCoordinator exports a list of files one after another.

Files are never processed in parallel: that bounds CPU/disk use and keeps
two exports from racing for the same output name. A failing file is
recorded and the batch moves on; the final report carries the destination
and every failure.

Signals
-------
progress(float, str)          overall 0.0 – 1.0 and a "42% (3/7)" label
file_finished(Path, bool, str)
finished(BatchReport)
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Callable, Collection

from loguru import logger
from PySide6.QtCore import QObject, Signal, Slot

from mediasqueeze.exceptions import ToolUnavailableError, UnsupportedInputError
from mediasqueeze.formatting import estimate_video_size, format_estimate
from mediasqueeze.models import (
    BatchReport,
    CompressionSettings,
    MediaInfo,
    ProbeResult,
    VideoSettings,
    WorkStream,
)
from mediasqueeze.supervisor import TaskSupervisor
from mediasqueeze.toolchain import Toolchain

SettingsResolver = Callable[[ProbeResult, MediaInfo], "CompressionSettings | None"]


def batch_destination(parent: Path) -> Path:
    """Create and return ``parent/Batch_Compressed_<timestamp>``."""
    folder = Path(parent) / f"Batch_Compressed_{datetime.now():%Y%m%d_%H%M%S}"
    folder.mkdir(parents=True, exist_ok=True)
    return folder


def output_path_for(
    source: Path,
    destination: Path,
    settings: CompressionSettings,
    taken: Collection[Path] = (),
) -> Path:
    """
    Example:
        source      = Path("/rushes/clip001.mov")
        destination = Path("/out")
        settings    = VideoSettings(output_format="vp9")
        → Path("/out/clip001_compressed.webm")

    A name in *taken* or already on disk gets a counter instead:
    ``clip001_compressed_1.webm``, ``clip001_compressed_2.webm``, …
    """
    stem = f"{source.stem}_compressed"
    candidate = destination / f"{stem}.{settings.extension}"
    counter = 1
    while candidate in taken or candidate.exists():
        candidate = destination / f"{stem}_{counter}.{settings.extension}"
        counter += 1
    return candidate


class BatchCoordinator(QObject):

    progress      = Signal(float, str)
    file_finished = Signal(object, bool, str)
    finished      = Signal(object)

    def __init__(self, toolchain: Toolchain, parent=None):
        super().__init__(parent)
        self._toolchain = toolchain
        self._supervisor: TaskSupervisor | None = None
        self._files: list[Path] = []
        self._resolver: SettingsResolver | None = None
        self._report: BatchReport | None = None
        self._claimed: set[Path] = set()
        self._index = 0
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def report(self) -> BatchReport | None:
        return self._report

    # ── Public API ────────────────────────────────────────────────────────────

    def run(self, files: list[Path], settings_resolver: SettingsResolver, destination: Path) -> bool:
        """
        Start the batch. Returns False if a batch is already running.
        Completion arrives through ``finished``.
        """
        if self._running:
            logger.warning("[BATCH] run() ignored: a batch is already running")
            return False

        destination = Path(destination)
        destination.mkdir(parents=True, exist_ok=True)
        self._files = [Path(f) for f in files]
        self._resolver = settings_resolver
        self._report = BatchReport(destination=destination)
        self._claimed = set()
        self._index = 0
        self._running = True

        self._supervisor = TaskSupervisor(self._toolchain, parent=self)
        self._supervisor.progress.connect(self._on_progress)
        self._supervisor.completed.connect(self._on_completed)
        self._supervisor.failed.connect(self._on_failed)
        self._supervisor.cancelled.connect(self._on_cancelled)

        logger.info(f"[BATCH] {len(self._files)} file(s) → '{destination}'")
        self._emit_progress(0.0)
        self._start_next()
        return True

    def cancel(self) -> None:
        """Stop after cancelling the current file; unprocessed files are reported as failures."""
        if not self._running:
            return
        logger.info("[BATCH] cancel() requested")
        self._running = False
        if self._supervisor is not None:
            self._supervisor.cancel_export()
        self._abort_remaining("batch cancelled")

    # ── Sequencing ────────────────────────────────────────────────────────────

    def _start_next(self) -> None:
        while self._running and self._index < len(self._files):
            source = self._files[self._index]
            try:
                if self._begin(source):
                    return
            except ToolUnavailableError as exc:
                logger.error(f"[BATCH] {exc}, aborting")
                self._running = False
                self._abort_remaining(str(exc))
                return
            # _begin recorded a failure; move on to the next file
        self._complete()

    def _begin(self, source: Path) -> bool:
        """Start exporting *source*. Returns False if it failed before spawning."""
        try:
            result = self._supervisor.load(source)
        except (FileNotFoundError, UnsupportedInputError) as exc:
            self._record(source, False, str(exc))
            return False

        settings = self._resolver(result, self._supervisor.media_info)
        if settings is None or settings.media_kind is not result.kind:
            self._record(source, False, f"no {result.kind.value} settings for this batch")
            return False

        output = output_path_for(source, self._report.destination, settings, self._claimed)
        self._claimed.add(output)
        estimate = ""
        if isinstance(settings, VideoSettings):
            size = estimate_video_size(settings.bitrate_kbps, self._supervisor.media_info.duration_seconds)
            estimate = f" ({format_estimate(size)})"
        logger.info(f"[BATCH] ({self._index + 1}/{len(self._files)}) '{source.name}' → '{output.name}'{estimate}")
        self._supervisor.request_export(settings, output)
        return True

    def _record(self, source: Path, ok: bool, message: str = "", output: Path | None = None) -> None:
        if ok:
            self._report.succeeded.append(source)
            self._report.outputs.append(output)
        else:
            logger.warning(f"[BATCH] '{source.name}' failed: {message.splitlines()[-1] if message else ''}")
            self._report.failures.append((source, message))
        self.file_finished.emit(source, ok, message)
        self._index += 1
        self._emit_progress(0.0)

    def _abort_remaining(self, reason: str) -> None:
        while self._index < len(self._files):
            self._record(self._files[self._index], False, reason)
        self._complete()

    def _complete(self) -> None:
        self._running = False
        if self._supervisor is not None:
            self._supervisor.shutdown()
        report = self._report
        logger.info(f"[BATCH] Done: {len(report.succeeded)} ok, {report.failure_count} failed "
                    f"→ '{report.destination}'")
        self.progress.emit(1.0, "100%")
        self.finished.emit(report)

    # ── Supervisor callbacks ──────────────────────────────────────────────────

    @Slot(object, float)
    def _on_progress(self, stream: WorkStream, fraction: float) -> None:
        if stream is WorkStream.EXPORT and self._running:
            self._emit_progress(fraction)

    @Slot(object, object)
    def _on_completed(self, stream: WorkStream, output: Path) -> None:
        if stream is not WorkStream.EXPORT or not self._running:
            return
        self._record(self._files[self._index], True, output=output)
        self._start_next()

    @Slot(object, str)
    def _on_failed(self, stream: WorkStream, diagnostics: str) -> None:
        if stream is not WorkStream.EXPORT or not self._running:
            return
        self._record(self._files[self._index], False, diagnostics)
        self._start_next()

    @Slot(object)
    def _on_cancelled(self, stream: WorkStream) -> None:
        if stream is not WorkStream.EXPORT or not self._running:
            return
        self._record(self._files[self._index], False, "cancelled")
        self._start_next()

    def _emit_progress(self, fraction: float) -> None:
        total = len(self._files)
        if total == 0:
            return
        overall = min((self._index + fraction) / total, 1.0)
        current = min(self._index + 1, total)
        self.progress.emit(overall, f"{round(overall * 100)}% ({current}/{total})")
