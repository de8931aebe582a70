"""Per-application backup workflows.

Two strictly linear workflows exist:

* suspend-cycle: stop the containers, back up the app folder and its
  additional paths, start the containers again;
* command-snapshot: run a dump command into ``.backup-tmp`` inside the app
  folder, back that directory up and remove it.

Every step returns a :class:`StepResult`; the decisions of a workflow read
only the results of its own earlier steps.
"""
from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional

from .commands import Command, CommandRunner
from .config import AppSpec, BackupMode, DEFAULT_COMMAND_TIMEOUT
from .logs import report_failure
from .restic import ResticRepository

LOGGER = logging.getLogger(__name__)

TEMP_DIR_NAME = ".backup-tmp"


class StepStatus(str, Enum):
    OK = "ok"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class StepResult:
    step: str
    status: StepStatus
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.status is StepStatus.OK

    @property
    def failed(self) -> bool:
        return self.status is StepStatus.FAILED


@dataclass
class AppResult:
    name: str
    mode: BackupMode
    steps: List[StepResult] = field(default_factory=list)

    def record(self, step: str, ok: bool, detail: str = "") -> StepResult:
        result = StepResult(step, StepStatus.OK if ok else StepStatus.FAILED, detail)
        self.steps.append(result)
        return result

    def skip(self, step: str, detail: str = "") -> StepResult:
        result = StepResult(step, StepStatus.SKIPPED, detail)
        self.steps.append(result)
        return result

    def get(self, step: str) -> Optional[StepResult]:
        for result in self.steps:
            if result.step == step:
                return result
        return None

    @property
    def failed_steps(self) -> List[StepResult]:
        return [result for result in self.steps if result.failed]

    @property
    def ok(self) -> bool:
        return not self.failed_steps


@dataclass
class BackupRunner:
    repository: ResticRepository
    runner: CommandRunner
    command_timeout: int = DEFAULT_COMMAND_TIMEOUT
    restart_after_stop_failure: bool = False
    log_file: Optional[Path] = None
    logger: logging.Logger = LOGGER

    def backup_app(self, app: AppSpec) -> AppResult:
        self.logger.info("Processing app '%s' (%s, mode: %s)", app.name, app.path, app.mode.value)
        if app.mode is BackupMode.COMMAND_SNAPSHOT:
            return self.command_snapshot(app)
        return self.suspend_cycle(app)

    # ------------------------------------------------------------------
    def suspend_cycle(self, app: AppSpec) -> AppResult:
        result = AppResult(app.name, BackupMode.SUSPEND_CYCLE)
        timeout_args = ("--timeout", str(self.command_timeout))

        self.logger.info("Stopping containers for %s...", app.name)
        stopped = result.record("stop", self._run_app_command(app, app.stop_command, "stop", timeout_args))
        if stopped.failed:
            report_failure(f"Error stopping containers for {app.name}.", self.log_file, self.logger)

        try:
            main = result.record("backup", self.repository.backup(app.name, app.path, cwd=app.path))

            if stopped.ok and main.ok:
                for path in app.additional_paths:
                    self.logger.info("- add-path: %s", path)
                    result.record(f"backup:{path}", self.repository.backup(app.name, path, cwd=app.path))
            elif app.additional_paths:
                result.skip("additional-paths", "earlier step failed")
        finally:
            if stopped.ok or self.restart_after_stop_failure:
                self.logger.info("Starting containers for %s...", app.name)
                started = result.record("start", self._run_app_command(app, app.start_command, "start", timeout_args))
                if started.failed:
                    report_failure(f"Error starting containers for {app.name}.", self.log_file, self.logger)
            else:
                self.logger.warning("Not starting containers for %s: stop command failed.", app.name)
                result.skip("start", "stop command failed")
        return result

    def _run_app_command(self, app: AppSpec, command: Optional[Command], action: str, extra) -> bool:
        if command is None:
            self.logger.error("App '%s' has no %s command.", app.name, action)
            return False
        return self.runner.run(
            command.with_args(*extra),
            cwd=app.path,
            description=f"{action} {app.name}",
        )

    # ------------------------------------------------------------------
    def command_snapshot(self, app: AppSpec) -> AppResult:
        result = AppResult(app.name, BackupMode.COMMAND_SNAPSHOT)
        tmp_dir = Path(app.path) / TEMP_DIR_NAME

        self.logger.info("Creating temporary backup directory for %s: %s", app.name, tmp_dir)
        try:
            if tmp_dir.exists():
                shutil.rmtree(tmp_dir)
            tmp_dir.mkdir(parents=True)
        except OSError as exc:
            result.record("prepare", False, str(exc))
            report_failure(f"Error creating temporary directory for {app.name}: {exc}", self.log_file, self.logger)
            return result
        result.record("prepare", True)

        try:
            self.logger.info("Executing backup command for %s", app.name)
            dumped = result.record(
                "snapshot-command",
                self.runner.run(app.snapshot_command, cwd=tmp_dir, description=f"backup command {app.name}"),
            )
            if dumped.failed:
                report_failure(f"Error executing backup command for {app.name}.", self.log_file, self.logger)
                result.skip("backup", "backup command failed")
            else:
                result.record("backup", self.repository.backup(app.name, tmp_dir, cwd=app.path))
        finally:
            self.logger.info("Cleaning up temporary backup directory for %s", app.name)
            self._cleanup(tmp_dir, result)
        return result

    def _cleanup(self, tmp_dir: Path, result: AppResult) -> None:
        try:
            shutil.rmtree(tmp_dir)
        except FileNotFoundError:
            result.record("cleanup", True)
        except OSError as exc:
            self.logger.warning("Could not remove temporary directory %s: %s", tmp_dir, exc)
            result.skip("cleanup", str(exc))
        else:
            result.record("cleanup", True)


__all__ = ["AppResult", "BackupRunner", "StepResult", "StepStatus", "TEMP_DIR_NAME"]
