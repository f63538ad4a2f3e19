"""
mediasqueeze.exceptions
~~~~~~~~~~~~~~~~~~~~~~~
Error taxonomy shared by the probe, runner and supervisor.

Cancelled and superseded work is *not* represented here: those are
normal outcomes (see ``ExitStatus``), never exceptions.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any


class MediaSqueezeError(Exception):
    """Base error carrying an optional context dict for diagnostics."""

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        if not self.context:
            return self.message
        context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
        return f"{self.message} [{context_str}]"


class ToolUnavailableError(MediaSqueezeError):
    """The external transcoding tool could not be located or executed. Fatal."""

    def __init__(self, tool: str | Path, reason: str = ""):
        message = f"FFmpeg tool not available: {tool}"
        if reason:
            message += f" ({reason})"
        message += ". Install FFmpeg or point MEDIASQUEEZE_FFMPEG at the binary."
        super().__init__(message, context={"tool": str(tool)})
        self.tool = str(tool)


class ProcessFailedError(MediaSqueezeError):
    """The tool ran but exited non-zero; ``diagnostics`` is its stderr tail."""

    def __init__(self, exit_code: int, diagnostics: str):
        super().__init__(f"ffmpeg exited with code {exit_code}", context={"exit_code": exit_code})
        self.exit_code = exit_code
        self.diagnostics = diagnostics


class UnsupportedInputError(MediaSqueezeError):
    """The source file is unreadable or of a kind we cannot compress."""

    def __init__(self, path: str | Path, reason: str = ""):
        message = f"Unsupported input: {Path(path).name}"
        if reason:
            message += f": {reason}"
        super().__init__(message, context={"path": str(path)})
        self.path = Path(path)
