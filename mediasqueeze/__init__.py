from .models import (
    AudioSettings, BatchReport, Capabilities, ClipWindow, CompressionSettings,
    ExitOutcome, ExitStatus, ImageSettings, MediaInfo, MediaKind, PreviewArtifacts, ProbeResult,
    StreamState, VideoSettings, WorkStream,
)
from .exceptions import (
    MediaSqueezeError, ProcessFailedError, ToolUnavailableError, UnsupportedInputError,
)
from .command_builder import build as build_command
from .probe import MediaProbe, create_media_probe
from .runner import ProcessHandle, ProcessRunner
from .toolchain import Toolchain
from .supervisor import TaskSupervisor
from .batch import BatchCoordinator

__version__ = "0.1.0"

__all__ = [
    "AudioSettings", "BatchReport", "Capabilities", "ClipWindow", "CompressionSettings",
    "ExitOutcome", "ExitStatus", "ImageSettings", "MediaInfo", "MediaKind", "PreviewArtifacts", "ProbeResult",
    "StreamState", "VideoSettings", "WorkStream",
    "MediaSqueezeError", "ProcessFailedError", "ToolUnavailableError", "UnsupportedInputError",
    "build_command",
    "MediaProbe", "create_media_probe",
    "ProcessHandle", "ProcessRunner",
    "Toolchain",
    "TaskSupervisor",
    "BatchCoordinator",
]
