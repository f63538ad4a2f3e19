"""
mediasqueeze.paths
~~~~~~~~~~~~~~~~~~
Where ffmpeg/ffprobe live and where preview clips are rendered.

Binary lookup order
-------------------
  1. explicit override (CLI flag / saved preference)
  2. MEDIASQUEEZE_FFMPEG / MEDIASQUEEZE_FFPROBE environment variables
  3. bundled ``bin/`` next to the project
  4. PATH
  5. well-known install locations (Homebrew, /usr/bin)
"""

from __future__ import annotations

import os
import shutil
import sys
import tempfile
from pathlib import Path

from mediasqueeze.exceptions import ToolUnavailableError

PACKAGE_PARENT = Path(__file__).resolve().parent.parent

# Optional static ffmpeg/ffprobe builds shipped alongside the checkout
BIN_DIR = PACKAGE_PARENT / "bin"

SYSTEM_BIN_DIRS = (
    Path("/opt/homebrew/bin"),   # Apple Silicon Homebrew
    Path("/usr/local/bin"),      # Intel Homebrew
    Path("/usr/bin"),
)

PREVIEW_DIR = Path(tempfile.gettempdir()) / "mediasqueeze-previews"


def _exe_name(name: str) -> str:
    return f"{name}.exe" if sys.platform == "win32" else name


def find_binary(name: str, override: str | Path | None = None) -> Path:
    """
    Locate *name* ("ffmpeg" or "ffprobe").

    Raises:
        ToolUnavailableError – if no executable candidate exists
    """
    if override:
        candidate = Path(override).expanduser()
        if _is_executable(candidate):
            return candidate
        raise ToolUnavailableError(candidate, "override is not an executable file")

    env_value = os.environ.get(f"MEDIASQUEEZE_{name.upper()}")
    if env_value:
        candidate = Path(env_value).expanduser()
        if _is_executable(candidate):
            return candidate
        raise ToolUnavailableError(candidate, f"MEDIASQUEEZE_{name.upper()} is not executable")

    bundled = BIN_DIR / _exe_name(name)
    if _is_executable(bundled):
        return bundled

    on_path = shutil.which(name)
    if on_path:
        return Path(on_path)

    for directory in SYSTEM_BIN_DIRS:
        candidate = directory / _exe_name(name)
        if _is_executable(candidate):
            return candidate

    raise ToolUnavailableError(name, "not found in bin/, PATH or the usual install locations")


def validate_binaries(*binaries: Path) -> list[str]:
    """
    Return a list of error strings for any missing/non-executable binaries.
    Empty list means all good.
    """
    errors: list[str] = []
    for binary in binaries:
        if not binary.exists():
            errors.append(f"Binary not found: {binary}")
        elif not binary.is_file():
            errors.append(f"Not a file: {binary}")
        elif not os.access(binary, os.X_OK):
            errors.append(f"Not executable: {binary}")
    return errors


def preview_dir() -> Path:
    """Process-owned scratch directory for preview renders."""
    PREVIEW_DIR.mkdir(parents=True, exist_ok=True)
    return PREVIEW_DIR


def _is_executable(path: Path) -> bool:
    return path.is_file() and os.access(path, os.X_OK)
