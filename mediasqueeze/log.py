"""
mediasqueeze.log
~~~~~~~~~~~~~~~~
loguru configuration: console, a size-capped file in the config dir, and an
in-memory ring of recent entries the UI can show in a "logs" panel.
"""

from __future__ import annotations

import sys
from collections import deque
from pathlib import Path

from loguru import logger

MAX_RECENT_ENTRIES = 1000
LOG_FILE_NAME = "app_logs.txt"

_recent: deque[str] = deque(maxlen=MAX_RECENT_ENTRIES)


def _remember(message) -> None:
    _recent.append(str(message).rstrip("\n"))


def setup_logging(level: str = "INFO", log_file: Path | None = None) -> Path | None:
    """
    Replace loguru's default sink. Returns the log file path, if one was added.
    """
    logger.remove()
    logger.add(
        sys.stderr,
        level=level,
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | {message}",
    )
    logger.add(
        _remember,
        level="DEBUG",
        format="[{time:YYYY-MM-DD HH:mm:ss.SSS}] {level}: {message}",
    )

    if log_file is not None:
        try:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            logger.add(
                log_file,
                level="DEBUG",
                format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} - {message}",
                rotation="1 MB",
                retention=1,
                enqueue=True,
            )
        except OSError as exc:
            logger.warning(f"[LOG] File logging disabled ({log_file}): {exc}")
            return None

    logger.debug(f"[LOG] Logging initialised (console: {level}, file: {log_file or 'off'})")
    return log_file


def recent_logs() -> str:
    return "\n".join(_recent)


def clear_recent_logs() -> None:
    _recent.clear()
