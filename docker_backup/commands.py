"""Structured external commands and the runner that executes them."""
from __future__ import annotations

import logging
import os
import shlex
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence, Tuple, Union

from .utils import mask_sensitive

LOGGER = logging.getLogger(__name__)

# JSON configs written for the original tooling encode spaces as '#'.
SPACE_PLACEHOLDER = "#"


class CommandError(Exception):
    """Raised when a command descriptor cannot be built from configuration."""


@dataclass(frozen=True)
class Command:
    """An argument vector, optionally with stdout redirected to a file.

    ``stdout`` is a file name resolved against the working directory the
    command runs in.
    """

    argv: Tuple[str, ...]
    stdout: Optional[str] = None

    def with_args(self, *extra: str) -> "Command":
        return Command(argv=self.argv + tuple(extra), stdout=self.stdout)

    def display(self) -> str:
        text = " ".join(shlex.quote(arg) for arg in self.argv)
        if self.stdout:
            text += f" > {shlex.quote(self.stdout)}"
        return text

    @classmethod
    def parse(cls, value: Union[str, Sequence[str], Mapping[str, object], "Command"]) -> "Command":
        """Build a command from a config value.

        Accepted forms: a string (``#`` placeholders decoded to spaces, then
        split shell-style), a list of arguments, or a mapping with ``cmd``
        (string or list) and an optional ``stdout`` file name.
        """

        if isinstance(value, Command):
            return value
        if isinstance(value, Mapping):
            if "cmd" not in value:
                raise CommandError("Command mapping requires a 'cmd' field.")
            inner = cls.parse(value["cmd"])  # type: ignore[arg-type]
            stdout = value.get("stdout")
            return cls(argv=inner.argv, stdout=str(stdout) if stdout else None)
        if isinstance(value, str):
            decoded = value.replace(SPACE_PLACEHOLDER, " ")
            try:
                argv = shlex.split(decoded)
            except ValueError as exc:
                raise CommandError(f"Cannot parse command '{value}': {exc}") from exc
        elif isinstance(value, (list, tuple)):
            argv = [str(item) for item in value]
        else:
            raise CommandError(f"Unsupported command value: {value!r}")
        if not argv:
            raise CommandError("Command must not be empty.")
        return cls(argv=tuple(argv))


@dataclass
class CommandRunner:
    """Run external commands and report success as a boolean.

    Failures (non-zero exit, missing executable, OS errors) are logged and
    returned as ``False`` so the caller decides whether to continue.
    """

    logger: logging.Logger = LOGGER
    secrets: List[str] = field(default_factory=list)

    def run(
        self,
        command: Command,
        cwd: Optional[Path] = None,
        *,
        env: Optional[Dict[str, str]] = None,
        description: Optional[str] = None,
    ) -> bool:
        desc = f" ({description})" if description else ""
        where = f" in {cwd}" if cwd else ""
        self.logger.info("Running command%s%s: %s", desc, where, self._mask(command.display()))

        child_env = None
        if env:
            child_env = os.environ.copy()
            child_env.update(env)

        try:
            if command.stdout:
                target = Path(cwd or ".") / command.stdout
                with target.open("wb") as handle:
                    result = subprocess.run(
                        list(command.argv),
                        cwd=str(cwd) if cwd else None,
                        env=child_env,
                        stdout=handle,
                        stderr=subprocess.PIPE,
                    )
                stdout_text = ""
                stderr_text = (result.stderr or b"").decode("utf-8", errors="replace")
            else:
                result = subprocess.run(
                    list(command.argv),
                    cwd=str(cwd) if cwd else None,
                    env=child_env,
                    capture_output=True,
                    text=True,
                    encoding="utf-8",
                    errors="replace",
                )
                stdout_text = result.stdout or ""
                stderr_text = result.stderr or ""
        except (OSError, subprocess.SubprocessError) as exc:
            self.logger.error("Command%s could not be started: %s (%s)", desc, self._mask(command.display()), exc)
            return False

        if stdout_text.strip():
            self.logger.debug("STDOUT: %s", self._mask(stdout_text.strip()))
        if stderr_text.strip():
            self.logger.warning("STDERR: %s", self._mask(stderr_text.strip()))
        if result.returncode != 0:
            self.logger.error(
                "Command%s exited with code %s: %s",
                desc,
                result.returncode,
                self._mask(command.display()),
            )
            return False
        return True

    def _mask(self, text: str) -> str:
        return mask_sensitive(text, self.secrets)


__all__ = ["Command", "CommandError", "CommandRunner", "SPACE_PLACEHOLDER"]
