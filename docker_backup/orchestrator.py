"""Top level run: secrets, applications, additional backups, check, retention preview."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from .backup import AppResult, BackupRunner
from .commands import CommandRunner
from .config import AppSpec, BackupConfig
from .logs import attach_daily_log
from .restic import RepositoryCheckError, ResticRepository
from .secrets import SecretResolver, describe_method

LOGGER = logging.getLogger(__name__)


@dataclass
class RunSummary:
    apps: List[AppResult] = field(default_factory=list)
    additional: List[Tuple[str, bool]] = field(default_factory=list)
    check_ok: Optional[bool] = None
    preview_ok: Optional[bool] = None

    @property
    def failures(self) -> List[str]:
        messages: List[str] = []
        for app in self.apps:
            for step in app.failed_steps:
                messages.append(f"{app.name}: {step.step} failed")
        for name, ok in self.additional:
            if not ok:
                messages.append(f"{name}: backup failed")
        return messages

    @property
    def has_failures(self) -> bool:
        return bool(self.failures)


@dataclass
class Orchestrator:
    config: BackupConfig
    resolver: SecretResolver = field(default_factory=SecretResolver)
    runner: CommandRunner = field(default_factory=CommandRunner)
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)
    log_file: Optional[Path] = None

    def run(self) -> RunSummary:
        """Execute a full backup run.

        Raises :class:`~docker_backup.secrets.SecretResolutionError` before any
        backup when the password cannot be obtained and
        :class:`~docker_backup.restic.RepositoryCheckError` when the final
        integrity check fails. Other failures are collected in the summary.
        """

        config = self.config
        if self.log_file is None:
            self.log_file = attach_daily_log(config.log_path)
        LOGGER.info("BACKUP INIT")
        LOGGER.info("Using secrets method: %s", describe_method(config.secrets))

        password = self.resolver.resolve(config.secrets)
        if password not in self.runner.secrets:
            self.runner.secrets.append(password)

        repository = ResticRepository(
            repository=config.restic_repo,
            password=password,
            runner=self.runner,
            log_file=self.log_file,
            settle_delay=config.settle_delay,
            sleep=self.sleep,
        )
        backup_runner = BackupRunner(
            repository=repository,
            runner=self.runner,
            command_timeout=config.command_timeout,
            restart_after_stop_failure=config.restart_after_stop_failure,
            log_file=self.log_file,
        )

        summary = RunSummary()
        for app in config.apps:
            summary.apps.append(self._backup_app(backup_runner, app))

        for extra in config.additional_backups:
            LOGGER.info("Additional backup: %s (%s)", extra.name, extra.path)
            summary.additional.append((extra.name, repository.backup(extra.name, extra.path)))

        summary.check_ok = repository.check()
        if not summary.check_ok:
            raise RepositoryCheckError(f"restic check failed for repository {config.restic_repo}")

        summary.preview_ok = repository.forget_preview(config.retention)

        for message in summary.failures:
            LOGGER.warning("Failure: %s", message)
        LOGGER.info("Backup run finished with %d failure(s).", len(summary.failures))
        return summary

    def _backup_app(self, backup_runner: BackupRunner, app: AppSpec) -> AppResult:
        try:
            return backup_runner.backup_app(app)
        except Exception as exc:
            LOGGER.exception("Unexpected error while backing up '%s': %s", app.name, exc)
            result = AppResult(app.name, app.mode)
            result.record("unexpected", False, str(exc))
            return result


__all__ = ["Orchestrator", "RunSummary"]
