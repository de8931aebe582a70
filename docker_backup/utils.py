"""Helper utilities for the docker backup orchestrator."""
from __future__ import annotations

import os
import stat
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional

DATE_FORMAT = "%Y_%m_%d"
DATETIME_FORMAT = "%Y_%m_%d %H:%M:%S"


def ensure_directory(path: Path) -> Path:
    """Create *path* if it does not exist and return it."""

    path = Path(path)
    path.mkdir(parents=True, exist_ok=True)
    return path


def date_stamp(dt: Optional[datetime] = None) -> str:
    dt = dt or datetime.now()
    return dt.strftime(DATE_FORMAT)


def expand_path(value: str) -> Path:
    """Expand ``~`` and environment variables (``$HOME/...``) in *value*."""

    return Path(os.path.expandvars(os.path.expanduser(value))).expanduser()


def file_mode(path: Path) -> int:
    return stat.S_IMODE(Path(path).stat().st_mode)


def mask_sensitive(value: str, secrets: Iterable[str]) -> str:
    """Replace occurrences of secret values in *value* with '***'."""

    masked = value
    for secret in secrets:
        if secret:
            masked = masked.replace(secret, "***")
    return masked


__all__ = [
    "DATE_FORMAT",
    "DATETIME_FORMAT",
    "ensure_directory",
    "date_stamp",
    "expand_path",
    "file_mode",
    "mask_sensitive",
]
