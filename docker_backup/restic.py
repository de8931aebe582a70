"""Thin wrapper around the restic command line."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from .commands import Command, CommandRunner
from .config import RetentionPolicy
from .logs import report_failure

LOGGER = logging.getLogger(__name__)


class RepositoryCheckError(Exception):
    """Raised when ``restic check`` reports a broken repository."""


@dataclass
class ResticRepository:
    repository: str
    password: str
    runner: CommandRunner
    log_file: Optional[Path] = None
    settle_delay: float = 0.4
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)
    executable: str = "restic"

    def _command(self, *args: str) -> Command:
        return Command(argv=(self.executable, "-r", self.repository) + args)

    def _env(self):
        return {"RESTIC_PASSWORD": self.password}

    def backup(self, tag: str, path: Path, cwd: Optional[Path] = None) -> bool:
        """Snapshot *path* under *tag*. Returns ``False`` on failure."""

        LOGGER.info("Creating backup of %s (%s)...", tag, path)
        ok = self.runner.run(
            self._command("backup", str(path), "--tag", tag, "--verbose=2"),
            cwd=cwd,
            env=self._env(),
            description=f"restic backup {tag}",
        )
        if not ok:
            report_failure(f"Error creating backup of {tag}.", self.log_file, LOGGER)
        # restic holds repository locks briefly after each run
        self.sleep(self.settle_delay)
        return ok

    def check(self) -> bool:
        LOGGER.info("Checking restic repository integrity...")
        ok = self.runner.run(self._command("check"), env=self._env(), description="restic check")
        if ok:
            LOGGER.info("Restic repository is healthy.")
        else:
            report_failure("Error checking restic repository.", self.log_file, LOGGER)
        return ok

    def forget_preview(self, policy: RetentionPolicy) -> bool:
        """Dry-run the retention policy; nothing is removed."""

        LOGGER.info("Previewing retention policy...")
        ok = self.runner.run(
            self._command("forget", *policy.to_args(), "--dry-run"),
            env=self._env(),
            description="restic forget --dry-run",
        )
        if not ok:
            LOGGER.warning("Retention preview failed.")
        return ok


__all__ = ["RepositoryCheckError", "ResticRepository"]
