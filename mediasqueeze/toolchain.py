"""
mediasqueeze.toolchain
~~~~~~~~~~~~~~~~~~~~~~
The ffmpeg binary, probe strategy, process runner and capability set the
rest of the app uses, negotiated once at startup.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from loguru import logger

from mediasqueeze.capabilities import query_capabilities
from mediasqueeze.command_builder import all_known_encoders
from mediasqueeze.exceptions import ToolUnavailableError
from mediasqueeze.models import Capabilities
from mediasqueeze.paths import find_binary
from mediasqueeze.probe import MediaProbe, create_media_probe
from mediasqueeze.runner import ProcessRunner


@dataclass
class Toolchain:
    ffmpeg: Path
    probe: MediaProbe
    runner: ProcessRunner
    capabilities: Capabilities

    @classmethod
    def discover(
        cls,
        ffmpeg_override: str | Path | None = None,
        ffprobe_override: str | Path | None = None,
        query_encoders: bool = True,
    ) -> "Toolchain":
        """
        Locate ffmpeg (required) and ffprobe (optional) and query what the
        build can encode.

        Raises:
            ToolUnavailableError – if ffmpeg cannot be found or executed
        """
        ffmpeg = find_binary("ffmpeg", ffmpeg_override)
        try:
            ffprobe = find_binary("ffprobe", ffprobe_override)
        except ToolUnavailableError:
            if ffprobe_override:
                raise
            ffprobe = None

        capabilities = (
            query_capabilities(ffmpeg, all_known_encoders()) if query_encoders else Capabilities()
        )
        logger.info(f"[TOOLCHAIN] ffmpeg={ffmpeg} ffprobe={ffprobe or '(none)'}")
        return cls(
            ffmpeg=ffmpeg,
            probe=create_media_probe(ffmpeg, ffprobe),
            runner=ProcessRunner(),
            capabilities=capabilities,
        )
