"""
mediasqueeze.supervisor
~~~~~~~~~~~~~~~~~~~~~~~
TaskSupervisor owns the preview and export work-streams of one editor.

Each work-stream has a generation counter and at most one current task.
A completion whose captured generation is behind the counter is stale and
is dropped without a signal; its output file is removed.

    Idle → Running → {Completed, Failed, Cancelled} → Idle

Preview requests are debounced: a slider drag produces one preview once
the drag settles, not one per tick. A video preview is a chain of three
ffmpeg runs (reference clip, compressed clip, side-by-side composite) and
an audio preview a chain of two; the runs go one at a time, and
superseding the preview stops the chain wherever it is.
"""

from __future__ import annotations

from pathlib import Path

from loguru import logger
from PySide6.QtCore import QObject, QTimer, Signal, Slot

from mediasqueeze import command_builder
from mediasqueeze.exceptions import ToolUnavailableError, UnsupportedInputError
from mediasqueeze.formatting import format_duration
from mediasqueeze.models import (
    ClipWindow,
    CompressionSettings,
    ExitOutcome,
    ExitStatus,
    MediaInfo,
    MediaKind,
    PreviewArtifacts,
    ProbeResult,
    StreamState,
    TranscodeTask,
    WorkStream,
)
from mediasqueeze.paths import preview_dir
from mediasqueeze.toolchain import Toolchain

DEFAULT_DEBOUNCE_MS = 500

PREVIEW_CLIP_SECONDS = {
    MediaKind.VIDEO: 2.0,
    MediaKind.AUDIO: 5.0,
}


class TaskSupervisor(QObject):

    state_changed = Signal(object, object)   # (WorkStream, StreamState)
    started       = Signal(object, int)      # (WorkStream, generation)
    progress      = Signal(object, float)    # (WorkStream, 0.0 – 1.0)
    completed     = Signal(object, object)   # (WorkStream, output Path)
    failed        = Signal(object, str)      # (WorkStream, diagnostics)
    cancelled     = Signal(object)           # (WorkStream)
    fatal_error   = Signal(str)              # tool unavailable during a debounced preview

    def __init__(
        self,
        toolchain: Toolchain,
        debounce_ms: int = DEFAULT_DEBOUNCE_MS,
        preview_directory: Path | None = None,
        parent=None,
    ):
        super().__init__(parent)
        self._toolchain = toolchain
        self._preview_directory = preview_directory

        self._source: Path | None = None
        self._probe_result: ProbeResult | None = None
        self._media_info: MediaInfo | None = None

        self._generations: dict[WorkStream, int] = {s: 0 for s in WorkStream}
        self._states: dict[WorkStream, StreamState] = {s: StreamState.IDLE for s in WorkStream}
        self._current: dict[WorkStream, TranscodeTask | None] = {s: None for s in WorkStream}
        self._live: dict[object, TranscodeTask] = {}   # handle → task, until its completion arrives

        self._pending_preview: tuple[CompressionSettings, ClipWindow | None] | None = None
        self._last_good_preview: PreviewArtifacts | None = None
        self._settings: CompressionSettings | None = None
        self._scrub_position = 0.0

        self._debounce = QTimer(self)
        self._debounce.setSingleShot(True)
        self._debounce.setInterval(debounce_ms)
        self._debounce.timeout.connect(self._launch_preview)

    # ── Source management ─────────────────────────────────────────────────────

    def load(self, path: Path) -> ProbeResult:
        """
        Probe *path* and make it the current source.

        Raises:
            FileNotFoundError      – if the file does not exist
            ToolUnavailableError   – if the probe tool cannot run
            UnsupportedInputError  – if the file is unreadable or of no known kind
        """
        path = Path(path)
        result, info = self._toolchain.probe.examine(path)
        if not result.supported or result.kind is MediaKind.UNKNOWN:
            raise UnsupportedInputError(path, f"cannot compress {result.kind.value} media")

        self.cancel_preview()
        self._source = path
        self._probe_result = result
        self._media_info = info
        self._scrub_position = 0.0
        self._discard_last_good_preview()
        logger.info(f"[SUPERVISOR] Loaded '{path.name}' as {result.kind.value} "
                    f"({format_duration(info.duration_seconds)}, {info.width}x{info.height})")
        return result

    @property
    def source(self) -> Path | None:
        return self._source

    @property
    def probe_result(self) -> ProbeResult | None:
        return self._probe_result

    @property
    def media_info(self) -> MediaInfo | None:
        return self._media_info

    def state(self, stream: WorkStream) -> StreamState:
        return self._states[stream]

    def generation(self, stream: WorkStream) -> int:
        return self._generations[stream]

    def current_task(self, stream: WorkStream) -> TranscodeTask | None:
        return self._current[stream]

    @property
    def last_good_preview(self) -> Path | None:
        """The file to show: the side-by-side composite for video."""
        return self._last_good_preview.primary if self._last_good_preview else None

    @property
    def last_good_artifacts(self) -> PreviewArtifacts | None:
        return self._last_good_preview

    def take_last_good_preview(self) -> PreviewArtifacts | None:
        """Hand the last good preview's files to the caller; shutdown() will no longer delete them."""
        artifacts, self._last_good_preview = self._last_good_preview, None
        return artifacts

    @property
    def preview_pending(self) -> bool:
        return self._pending_preview is not None

    # ── Editor surface ────────────────────────────────────────────────────────

    def on_settings_changed(self, settings: CompressionSettings) -> None:
        self._settings = settings
        self.request_preview(settings, self._clip_for(self._scrub_position))

    def on_scrub(self, position: float) -> None:
        self._scrub_position = min(max(position, 0.0), 1.0)
        if self._settings is not None:
            self.request_preview(self._settings, self._clip_for(self._scrub_position))

    def on_save(self, output_path: Path) -> bool:
        if self._settings is None:
            logger.warning("[SUPERVISOR] on_save() before any settings were chosen")
            return False
        return self.request_export(self._settings, output_path)

    # ── Preview work-stream ───────────────────────────────────────────────────

    def request_preview(self, settings: CompressionSettings, clip: ClipWindow | None = None) -> int:
        """
        Supersede any in-flight preview and schedule a new one after the
        debounce window. Returns the generation the preview will carry.
        """
        self._require_source()
        generation = self._advance(WorkStream.PREVIEW)
        self._cancel_current(WorkStream.PREVIEW)
        self._pending_preview = (settings, clip)
        self._debounce.start()
        logger.debug(f"[SUPERVISOR] Preview gen {generation} scheduled "
                     f"({self._debounce.interval()}ms debounce)")
        return generation

    def flush_preview(self) -> None:
        """Launch a pending preview now instead of waiting for the timer."""
        if self._pending_preview is None:
            return
        self._debounce.stop()
        self._launch_preview()

    def cancel_preview(self) -> None:
        self._debounce.stop()
        had_work = self._pending_preview is not None or self._current[WorkStream.PREVIEW] is not None
        self._pending_preview = None
        self._advance(WorkStream.PREVIEW)
        self._cancel_current(WorkStream.PREVIEW)
        if had_work:
            self._finish(WorkStream.PREVIEW, StreamState.CANCELLED)
            self.cancelled.emit(WorkStream.PREVIEW)

    @Slot()
    def _launch_preview(self) -> None:
        if self._pending_preview is None:
            return
        settings, clip = self._pending_preview
        self._pending_preview = None

        generation = self._generations[WorkStream.PREVIEW]
        try:
            directory = self._preview_directory or preview_dir()
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            logger.error(f"[SUPERVISOR] Preview gen {generation}: no scratch directory: {exc}")
            self._finish(WorkStream.PREVIEW, StreamState.FAILED)
            self.failed.emit(WorkStream.PREVIEW, f"Cannot create preview directory: {exc}")
            return

        self._warn_if_no_encoder(settings)
        steps = command_builder.preview_steps(
            self._source, self._probe_result.kind, settings, directory,
            f"preview_{id(self):x}_{generation}", self._toolchain.capabilities,
            media_info=self._media_info, clip=clip,
        )
        total = clip.duration_seconds if clip else self._media_info.duration_seconds
        task = TranscodeTask(
            WorkStream.PREVIEW, generation, steps[0].args, settings, steps[-1].output_path,
            total_duration=total or None, steps=steps,
        )
        self._current[WorkStream.PREVIEW] = task
        if self._run_step(task):
            self._set_state(WorkStream.PREVIEW, StreamState.RUNNING)
            logger.info(f"[SUPERVISOR] PREVIEW gen {generation} started "
                        f"({' → '.join(s.name for s in steps)})")
            self.started.emit(WorkStream.PREVIEW, generation)

    # ── Export work-stream ────────────────────────────────────────────────────

    def request_export(self, settings: CompressionSettings, output_path: Path) -> bool:
        """
        Start the full-length export. Returns False (and does nothing) while
        another export is still running.

        Raises:
            ToolUnavailableError – if ffmpeg cannot be spawned
        """
        self._require_source()
        if self._states[WorkStream.EXPORT] is StreamState.RUNNING:
            logger.warning("[SUPERVISOR] request_export rejected: an export is already running")
            return False

        output_path = Path(output_path)
        if output_path.resolve() == self._source.resolve():
            raise ValueError("Export output must not overwrite the source file")
        output_path.parent.mkdir(parents=True, exist_ok=True)

        generation = self._advance(WorkStream.EXPORT)
        total = self._media_info.duration_seconds or None
        try:
            self._submit(WorkStream.EXPORT, generation, settings, output_path, None, total)
        except ToolUnavailableError:
            self._finish(WorkStream.EXPORT, StreamState.FAILED)
            raise
        return True

    def cancel_export(self) -> None:
        if self._current[WorkStream.EXPORT] is None:
            return
        self._advance(WorkStream.EXPORT)
        task = self._cancel_current(WorkStream.EXPORT)
        if task is not None:
            _remove_quietly(task.output_path)
        self._finish(WorkStream.EXPORT, StreamState.CANCELLED)
        self.cancelled.emit(WorkStream.EXPORT)

    # ── Teardown ──────────────────────────────────────────────────────────────

    def shutdown(self) -> None:
        """Cancel everything this editor started; call when the editor goes away."""
        logger.debug("[SUPERVISOR] shutdown()")
        self.cancel_preview()
        self.cancel_export()
        for handle in list(self._live):
            handle.wait()
        tasks = list(self._live.values())
        self._live.clear()
        for task in tasks:
            for path in task.outputs():
                _remove_quietly(path)
        self._discard_last_good_preview()

    # ── Task lifecycle ────────────────────────────────────────────────────────

    def _submit(
        self,
        stream: WorkStream,
        generation: int,
        settings: CompressionSettings,
        output: Path,
        clip: ClipWindow | None,
        total_duration: float | None,
    ) -> None:
        self._warn_if_no_encoder(settings)
        args = command_builder.build(
            self._source, settings, output, self._toolchain.capabilities,
            media_info=self._media_info, clip=clip,
        )
        task = TranscodeTask(stream, generation, args, settings, output, total_duration=total_duration)
        self._spawn(task)

        self._current[stream] = task
        self._set_state(stream, StreamState.RUNNING)
        logger.info(f"[SUPERVISOR] {stream.name} gen {generation} started → '{output.name}'")
        self.started.emit(stream, generation)

    def _spawn(self, task: TranscodeTask) -> None:
        handle = self._toolchain.runner.run(
            self._toolchain.ffmpeg, task.args, total_duration=task.total_duration,
        )
        task.handle = handle
        handle.progress_changed.connect(self._on_handle_progress)
        handle.completed.connect(self._on_handle_completed)
        self._live[handle] = task

    def _run_step(self, task: TranscodeTask) -> bool:
        """
        Spawn the preview chain's current step (or its fallback). On a
        missing tool the chain ends as FAILED with ``fatal_error``.
        """
        step = task.step
        task.args = step.fallback_args if task.fallback_used else step.args
        try:
            self._spawn(task)
        except ToolUnavailableError as exc:
            logger.error(f"[SUPERVISOR] Preview gen {task.generation}: {exc}")
            self._current[WorkStream.PREVIEW] = None
            self._remove_outputs(task)
            self._finish(WorkStream.PREVIEW, StreamState.FAILED)
            self.fatal_error.emit(str(exc))
            return False
        logger.debug(f"[SUPERVISOR] PREVIEW gen {task.generation} step "
                     f"{task.step_index + 1}/{len(task.steps)}: {step.name}"
                     f"{' (libx264 fallback)' if task.fallback_used else ''}")
        return True

    @Slot(object, float)
    def _on_handle_progress(self, handle, fraction: float) -> None:
        task = self._live.get(handle)
        if task is None or not self._is_current(task):
            return
        if task.steps:
            fraction = (task.step_index + fraction) / len(task.steps)
        if fraction < task.progress:
            return
        task.progress = fraction
        self.progress.emit(task.stream, fraction)

    @Slot(object, object)
    def _on_handle_completed(self, handle, outcome: ExitOutcome) -> None:
        handle.wait()
        task = self._live.pop(handle, None)
        if task is None:
            return

        if not self._is_current(task):
            logger.debug(f"[SUPERVISOR] {task.stream.name} gen {task.generation} stale "
                         f"(now {self._generations[task.stream]}), discarding")
            self._remove_outputs(task)
            return

        stream = task.stream

        if outcome.status is ExitStatus.SUCCESS and task.has_next_step:
            task.step_index += 1
            task.fallback_used = False
            self._run_step(task)
            return

        step = task.step
        if (outcome.status is ExitStatus.NON_ZERO_EXIT and step is not None
                and step.fallback_args and not task.fallback_used):
            logger.warning(f"[SUPERVISOR] Preview gen {task.generation}: {step.name} step failed "
                           f"(exit {outcome.exit_code}), retrying with libx264")
            task.fallback_used = True
            self._run_step(task)
            return

        self._current[stream] = None

        if outcome.status is ExitStatus.SUCCESS:
            if stream is WorkStream.PREVIEW:
                self._discard_last_good_preview()
                self._last_good_preview = command_builder.artifacts_for(task.steps)
            logger.info(f"[SUPERVISOR] {stream.name} gen {task.generation} ✅ '{task.output_path.name}'")
            self._finish(stream, StreamState.COMPLETED)
            self.completed.emit(stream, task.output_path)

        elif outcome.status is ExitStatus.NON_ZERO_EXIT:
            self._remove_outputs(task)
            logger.error(f"[SUPERVISOR] {stream.name} gen {task.generation} ❌ "
                         f"exit {outcome.exit_code}:\n{outcome.diagnostics}")
            self._finish(stream, StreamState.FAILED)
            self.failed.emit(stream, outcome.diagnostics or f"ffmpeg exited with code {outcome.exit_code}")

        else:
            # Cancelled without a generation bump (the runner was cancelled directly)
            self._remove_outputs(task)
            self._finish(stream, StreamState.CANCELLED)
            self.cancelled.emit(stream)

    # ── Helpers ───────────────────────────────────────────────────────────────

    def _advance(self, stream: WorkStream) -> int:
        self._generations[stream] += 1
        return self._generations[stream]

    def _is_current(self, task: TranscodeTask) -> bool:
        return (
            task.generation == self._generations[task.stream]
            and self._current[task.stream] is task
        )

    def _cancel_current(self, stream: WorkStream) -> TranscodeTask | None:
        task = self._current[stream]
        self._current[stream] = None
        if task is not None and task.handle is not None:
            logger.debug(f"[SUPERVISOR] Cancelling {stream.name} gen {task.generation}")
            task.handle.cancel()
        return task

    def _finish(self, stream: WorkStream, terminal: StreamState) -> None:
        self._set_state(stream, terminal)
        self._set_state(stream, StreamState.IDLE)

    def _set_state(self, stream: WorkStream, state: StreamState) -> None:
        if self._states[stream] is state:
            return
        logger.debug(f"[SUPERVISOR] {stream.name}: {self._states[stream].name} → {state.name}")
        self._states[stream] = state
        self.state_changed.emit(stream, state)

    def _clip_for(self, position: float) -> ClipWindow | None:
        if self._probe_result is None or self._media_info is None:
            return None
        length = PREVIEW_CLIP_SECONDS.get(self._probe_result.kind)
        if length is None:
            return None
        # Unknown duration (0.0) still gets a fixed-length clip from the start
        return ClipWindow.from_scrub(position, self._media_info.duration_seconds, length)

    def _warn_if_no_encoder(self, settings: CompressionSettings) -> None:
        if command_builder.select_encoder(settings, self._toolchain.capabilities) is None:
            logger.warning(f"[SUPERVISOR] No encoder for '{settings.output_format}' in this "
                           f"ffmpeg build, falling back to a basic conversion")

    def _path_in_use(self, path: Path) -> bool:
        """A re-export may reuse the path of a cancelled one."""
        return any(path in t.outputs() for t in self._live.values()) or any(
            t is not None and path in t.outputs() for t in self._current.values()
        )

    def _remove_outputs(self, task: TranscodeTask) -> None:
        for path in task.outputs():
            if not self._path_in_use(path):
                _remove_quietly(path)

    def _require_source(self) -> None:
        if self._source is None:
            raise RuntimeError("No source loaded; call load() first")

    def _discard_last_good_preview(self) -> None:
        if self._last_good_preview is not None:
            for path in self._last_good_preview.paths():
                _remove_quietly(path)
            self._last_good_preview = None


def _remove_quietly(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as exc:
        logger.warning(f"[SUPERVISOR] Could not remove '{path}': {exc}")
