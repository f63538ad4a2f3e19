"""
mediasqueeze.runner
~~~~~~~~~~~~~~~~~~~
Runs one ffmpeg process and reports on it through Qt signals.

The process is spawned synchronously by ``ProcessRunner.run`` so a missing
binary fails in the caller; the returned ``ProcessHandle`` is a QThread that
drains stderr, reports progress and resolves the outcome.

Signals (ProcessHandle)
-----------------------
progress_changed(handle, float)   0.0 – 1.0, never decreasing
completed(handle, ExitOutcome)    emitted once, after ``completion`` resolves
"""

from __future__ import annotations

import os
import re
import subprocess
from collections import deque
from concurrent.futures import Future
from pathlib import Path

from loguru import logger
from PySide6.QtCore import QThread, Signal

from mediasqueeze.command_builder import command_as_string
from mediasqueeze.exceptions import ProcessFailedError, ToolUnavailableError
from mediasqueeze.models import ExitOutcome, ExitStatus

# time=00:01:23.45  (ffmpeg prints time=N/A before the first frame)
_TIME_RE = re.compile(r"time=\s*(\d+):(\d{2}):(\d{2}(?:\.\d+)?)")

DIAGNOSTIC_TAIL_LINES = 200
KILL_GRACE_SECONDS = 2.0


class ProcessHandle(QThread):

    progress_changed = Signal(object, float)
    completed        = Signal(object, object)

    def __init__(self, process: subprocess.Popen, total_duration: float | None = None, parent=None):
        super().__init__(parent)
        self._process = process
        self._total_duration = total_duration
        self._cancel_requested = False
        self._last_progress = 0.0
        self._diagnostics: deque[str] = deque(maxlen=DIAGNOSTIC_TAIL_LINES)
        self.completion: Future = Future()

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def last_progress(self) -> float:
        return self._last_progress

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_requested

    def result(self, timeout: float | None = None) -> ExitOutcome:
        """
        Block until the process exits. For scripts and tests; the UI listens
        to ``completed`` instead.

        Raises:
            ProcessFailedError – on a non-zero exit (cancellation is returned, not raised)
        """
        outcome = self.completion.result(timeout)
        if outcome.status is ExitStatus.NON_ZERO_EXIT:
            raise ProcessFailedError(outcome.exit_code, outcome.diagnostics)
        return outcome

    # ── QThread entry point ───────────────────────────────────────────────────

    def run(self):
        for line in self._process.stderr:
            stripped = line.rstrip()
            if not stripped:
                continue
            self._diagnostics.append(stripped)
            fraction = parse_progress_line(stripped, self._total_duration)
            if fraction is not None and fraction >= self._last_progress:
                self._last_progress = fraction
                self.progress_changed.emit(self, fraction)

        returncode = self._process.wait()
        outcome = self._outcome(returncode)
        logger.debug(f"[RUNNER] pid {self._process.pid} exited with {returncode} → {outcome.status.name}")

        self.completion.set_result(outcome)
        self.completed.emit(self, outcome)

    # ── Cancel ────────────────────────────────────────────────────────────────

    def cancel(self) -> None:
        """
        Terminate the child and reap it before returning, so the output path
        can be reused right away. Safe to call any number of times.
        """
        if self._cancel_requested:
            return
        self._cancel_requested = True

        if self._process.poll() is not None:
            logger.debug(f"[RUNNER] cancel(): pid {self._process.pid} already exited")
            return

        logger.debug(f"[RUNNER] cancel(): terminating pid {self._process.pid}")
        try:
            self._process.terminate()
            self._process.wait(timeout=KILL_GRACE_SECONDS)
        except subprocess.TimeoutExpired:
            logger.warning(f"[RUNNER] pid {self._process.pid} ignored SIGTERM, killing")
            self._process.kill()
            self._process.wait()
        except ProcessLookupError:
            pass

    # ── Internal ──────────────────────────────────────────────────────────────

    def _outcome(self, returncode: int) -> ExitOutcome:
        if self._cancel_requested:
            return ExitOutcome.cancelled()
        if returncode == 0:
            return ExitOutcome.success()
        return ExitOutcome.non_zero_exit(returncode, "\n".join(self._diagnostics))


class ProcessRunner:
    """Spawns the transcoding executable and hands back a started ProcessHandle."""

    def run(
        self,
        executable: Path | str,
        args: list[str],
        env: dict[str, str] | None = None,
        total_duration: float | None = None,
    ) -> ProcessHandle:
        """
        Raises:
            ToolUnavailableError – if the executable cannot be spawned
        """
        logger.debug(f"[RUNNER] {command_as_string(executable, args)}")
        try:
            process = subprocess.Popen(
                [str(executable), *args],
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                text=True,
                errors="replace",
                env={**os.environ, **env} if env else None,
            )
        except OSError as exc:
            raise ToolUnavailableError(executable, str(exc)) from exc

        logger.debug(f"[RUNNER] PID = {process.pid}")
        handle = ProcessHandle(process, total_duration)
        handle.start()
        return handle


# ── Progress line parser ──────────────────────────────────────────────────────

def parse_progress_line(line: str, duration: float | None) -> float | None:
    """Fraction of *duration* reached according to a ``time=`` marker, clamped to [0, 1]."""
    if not duration or duration <= 0:
        return None
    match = _TIME_RE.search(line)
    if match is None:
        return None
    return min(max(hhmmss_to_seconds(*match.groups()) / duration, 0.0), 1.0)


def hhmmss_to_seconds(hours: str, minutes: str, seconds: str) -> float:
    return int(hours) * 3600 + int(minutes) * 60 + float(seconds)
