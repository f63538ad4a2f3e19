"""
Shared fixtures for all tests.

Supervisor and batch tests run against a fake runner whose handles are
finished by hand, so no ffmpeg install is needed. Runner tests spawn the
running Python interpreter as a stand-in executable.
"""

from pathlib import Path

import pytest
from PySide6.QtCore import QCoreApplication, QObject, Signal

from mediasqueeze.exceptions import ToolUnavailableError
from mediasqueeze.models import Capabilities, ExitOutcome, MediaInfo, MediaKind, ProbeResult
from mediasqueeze.probe import MediaProbe
from mediasqueeze.toolchain import Toolchain


class FakeHandle(QObject):
    """Stands in for ProcessHandle; the test decides when and how it finishes."""

    progress_changed = Signal(object, float)
    completed        = Signal(object, object)

    def __init__(self, executable, args, total_duration=None):
        super().__init__()
        self.executable = executable
        self.args = list(args)
        self.total_duration = total_duration
        self.cancel_calls = 0
        self.finished = False

    @property
    def output(self) -> Path:
        return Path(self.args[-1])

    @property
    def cancel_requested(self) -> bool:
        return self.cancel_calls > 0

    def cancel(self):
        self.cancel_calls += 1

    def wait(self, *args):
        return True

    def report(self, fraction: float):
        self.progress_changed.emit(self, fraction)

    def finish(self, outcome: ExitOutcome | None = None):
        if outcome is None:
            outcome = ExitOutcome.cancelled() if self.cancel_requested else ExitOutcome.success()
        self.finished = True
        self.completed.emit(self, outcome)

    def succeed(self, write_output: bool = True):
        if write_output:
            self.output.write_bytes(b"encoded")
        self.finish(ExitOutcome.success())

    def fail(self, code: int = 1, diagnostics: str = "Error while encoding"):
        self.finish(ExitOutcome.non_zero_exit(code, diagnostics))


class FakeRunner:
    """Records every spawn; set ``unavailable`` to simulate a missing ffmpeg."""

    def __init__(self):
        self.handles: list[FakeHandle] = []
        self.unavailable = False

    def run(self, executable, args, env=None, total_duration=None):
        if self.unavailable:
            raise ToolUnavailableError(executable, "No such file or directory")
        handle = FakeHandle(executable, args, total_duration)
        self.handles.append(handle)
        return handle

    @property
    def running(self) -> list[FakeHandle]:
        return [h for h in self.handles if not h.finished and not h.cancel_requested]


class FakeProbe(MediaProbe):
    """Answers from a table keyed by file name; unknown names are 10 s 1080p video."""

    tool = Path("ffprobe")

    def __init__(self):
        self.table: dict[str, tuple[MediaKind, bool, MediaInfo]] = {}

    def add(self, name: str, kind: MediaKind, supported: bool = True, info: MediaInfo | None = None):
        self.table[name] = (kind, supported, info or MediaInfo())

    def examine(self, path: Path):
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Input file not found: {path}")
        kind, supported, info = self.table.get(
            path.name,
            (MediaKind.VIDEO, True, MediaInfo(duration_seconds=10.0, width=1920, height=1080,
                                              pixel_format="yuv420p")),
        )
        return ProbeResult(path=path, kind=kind, supported=supported), info


@pytest.fixture(scope="session")
def qapp():
    """The single QCoreApplication every Qt-based test needs."""
    return QCoreApplication.instance() or QCoreApplication([])


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def fake_probe() -> FakeProbe:
    return FakeProbe()


@pytest.fixture
def toolchain(qapp, fake_runner, fake_probe) -> Toolchain:
    return Toolchain(
        ffmpeg=Path("ffmpeg"),
        probe=fake_probe,
        runner=fake_runner,
        capabilities=Capabilities(),
    )


@pytest.fixture
def preview_directory(tmp_path: Path) -> Path:
    directory = tmp_path / "previews"
    directory.mkdir()
    return directory


@pytest.fixture
def source_file(tmp_path: Path) -> Path:
    """An existing input file (contents are never read by the fake probe)."""
    path = tmp_path / "clip.mov"
    path.write_bytes(b"\x00" * 16)
    return path
