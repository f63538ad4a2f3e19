"""
mediasqueeze.capabilities
~~~~~~~~~~~~~~~~~~~~~~~~~
Asks the local ffmpeg build which encoders and pixel formats it has.

The parsing helpers are pure so the command builder can be tested against
canned ``-encoders`` output without an ffmpeg install.
"""

from __future__ import annotations

import re
import subprocess
from pathlib import Path
from typing import Iterable

from loguru import logger

from mediasqueeze.exceptions import ToolUnavailableError
from mediasqueeze.models import Capabilities

# " V....D libx264              libx264 H.264 / AVC / MPEG-4 AVC"
_ENCODER_LINE = re.compile(r"^\s*([VAS][A-Z.]{5})\s+(\S+)\s")
_PIX_FMT_LINE = re.compile(r"Supported pixel formats:\s*(.+)")

QUERY_TIMEOUT_SECONDS = 15


# ── Public API ────────────────────────────────────────────────────────────────

def parse_encoder_list(text: str) -> frozenset[str]:
    """Encoder names from ``ffmpeg -encoders`` output (the legend is skipped)."""
    names: set[str] = set()
    in_table = False
    for line in text.splitlines():
        if line.strip().startswith("------"):
            in_table = True
            continue
        if not in_table:
            continue
        match = _ENCODER_LINE.match(line)
        if match:
            names.add(match.group(2))
    return frozenset(names)


def parse_pixel_formats(text: str) -> tuple[str, ...]:
    """Pixel formats listed by ``ffmpeg -h encoder=NAME``; empty if none are listed."""
    match = _PIX_FMT_LINE.search(text)
    if not match:
        return ()
    return tuple(match.group(1).split())


def query_capabilities(ffmpeg: Path, encoders_of_interest: Iterable[str]) -> Capabilities:
    """
    Run ``-encoders`` once, then ``-h encoder=NAME`` for each interesting
    encoder the build actually has.

    Raises:
        ToolUnavailableError – if ffmpeg cannot be executed
    """
    encoders = parse_encoder_list(_run(ffmpeg, ["-hide_banner", "-encoders"]))
    logger.info(f"[CAPS] {len(encoders)} encoders available in {ffmpeg}")

    pixel_formats: dict[str, tuple[str, ...]] = {}
    for name in sorted(set(encoders_of_interest) & encoders):
        formats = parse_pixel_formats(_run(ffmpeg, ["-hide_banner", "-h", f"encoder={name}"]))
        if formats:
            pixel_formats[name] = formats
        logger.debug(f"[CAPS] {name}: {' '.join(formats) or '(no pixel formats)'}")

    return Capabilities(encoders=encoders, pixel_formats=pixel_formats)


# ── Internal helpers ──────────────────────────────────────────────────────────

def _run(ffmpeg: Path, args: list[str]) -> str:
    try:
        result = subprocess.run(
            [str(ffmpeg), *args],
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            timeout=QUERY_TIMEOUT_SECONDS,
        )
    except (OSError, subprocess.TimeoutExpired) as exc:
        raise ToolUnavailableError(ffmpeg, str(exc)) from exc
    return result.stdout
