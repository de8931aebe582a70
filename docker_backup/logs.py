"""Daily log sink for backup runs."""
from __future__ import annotations

import logging
import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

from .utils import DATETIME_FORMAT, date_stamp, ensure_directory

PACKAGE_LOGGER = logging.getLogger("docker_backup")


def daily_log_file(log_path: Path, when: Optional[datetime] = None) -> Path:
    return Path(log_path) / f"Backup-{date_stamp(when)}.log"


def attach_daily_log(log_path: Path, when: Optional[datetime] = None) -> Path:
    """Route the package logger to ``{log_path}/Backup-{date}.log``.

    The file is opened in append mode so that several runs on the same day
    share one log. Attaching twice for the same file is a no-op.
    """

    ensure_directory(Path(log_path))
    log_file = daily_log_file(log_path, when)

    if not any(
        isinstance(handler, logging.FileHandler) and handler.baseFilename == os.path.abspath(log_file)
        for handler in PACKAGE_LOGGER.handlers
    ):
        file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
        file_handler.setFormatter(logging.Formatter("%(asctime)s %(message)s", datefmt=DATETIME_FORMAT))
        file_handler.setLevel(logging.INFO)
        PACKAGE_LOGGER.addHandler(file_handler)
    if PACKAGE_LOGGER.getEffectiveLevel() > logging.INFO:
        PACKAGE_LOGGER.setLevel(logging.INFO)
    return log_file


def detach_daily_log() -> None:
    for handler in list(PACKAGE_LOGGER.handlers):
        if isinstance(handler, logging.FileHandler):
            PACKAGE_LOGGER.removeHandler(handler)
            handler.close()


def report_failure(message: str, log_file: Optional[Path] = None, logger: logging.Logger = PACKAGE_LOGGER) -> None:
    """Log *message* and print a user-facing failure line to stderr."""

    logger.error(message)
    hint = f" See {log_file} for details." if log_file else ""
    print(f"Backup failed: {message}{hint}", file=sys.stderr)


__all__ = ["attach_daily_log", "daily_log_file", "detach_daily_log", "report_failure"]
