import logging
from pathlib import Path
from typing import Callable, List, Optional

import pytest

from docker_backup.commands import Command


class RecordingRunner:
    """Stand-in for CommandRunner that records calls instead of spawning processes."""

    def __init__(self, fail_when: Optional[Callable[[Command, Optional[Path]], bool]] = None, on_run=None):
        self.calls: List[tuple] = []
        self.secrets: List[str] = []
        self.fail_when = fail_when or (lambda command, cwd: False)
        self.on_run = on_run

    def run(self, command, cwd=None, *, env=None, description=None):
        self.calls.append((command, cwd, env))
        if self.on_run is not None:
            self.on_run(command, cwd)
        return not self.fail_when(command, cwd)

    @property
    def argvs(self):
        return [command.argv for command, _, _ in self.calls]

    def restic_calls(self, verb: Optional[str] = None):
        calls = [argv for argv in self.argvs if argv[0] == "restic"]
        if verb is not None:
            calls = [argv for argv in calls if argv[3] == verb]
        return calls

    def docker_calls(self):
        return [argv for argv in self.argvs if argv[0] == "docker"]


@pytest.fixture
def recording_runner():
    return RecordingRunner()


@pytest.fixture(autouse=True)
def _reset_package_log_handlers():
    yield
    from docker_backup.logs import detach_daily_log

    detach_daily_log()
    logging.getLogger("docker_backup").setLevel(logging.NOTSET)


@pytest.fixture
def runner_factory():
    return RecordingRunner
