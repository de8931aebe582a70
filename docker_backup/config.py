"""Configuration models and helpers for the backup orchestrator."""
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

import yaml

from .commands import Command, CommandError
from .utils import expand_path

LOGGER = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("/root/.config/restic-backup/backup-config.json")
DEFAULT_START_COMMAND = "docker compose up -d"
DEFAULT_STOP_COMMAND = "docker compose down"
DEFAULT_COMMAND_TIMEOUT = 300
DEFAULT_SETTLE_DELAY = 0.4
DEFAULT_PASS_ENTRY = "infra/restic/local"
DEFAULT_VAULT_ITEM = "Restic Backup Password"
DEFAULT_VAULT_SESSION_FILE = "$HOME/.bw-session"
DEFAULT_SECRETS_FILE = "~/.secrets"
SECRETS_METHODS = ("gpg", "pass", "vaultwarden")


class ConfigError(Exception):
    """Raised when configuration loading or validation fails."""


class BackupMode(str, Enum):
    SUSPEND_CYCLE = "stop-backup-start"
    COMMAND_SNAPSHOT = "bkp_cmd"


@dataclass(frozen=True)
class GpgSecrets:
    secrets_file: Path
    passphrase_file: Path


@dataclass(frozen=True)
class PassSecrets:
    entry: str = DEFAULT_PASS_ENTRY


@dataclass(frozen=True)
class VaultSecrets:
    item: str = DEFAULT_VAULT_ITEM
    session_file: Path = field(default_factory=lambda: expand_path(DEFAULT_VAULT_SESSION_FILE))


SecretsConfig = Union[GpgSecrets, PassSecrets, VaultSecrets]


def secrets_from_dict(data: Dict) -> SecretsConfig:
    method = data.get("secrets-method") or "gpg"
    if method == "gpg":
        passphrase_file = data.get("decr_pwd_file")
        if not passphrase_file:
            raise ConfigError("Secrets method 'gpg' requires 'decr_pwd_file'.")
        secrets_file = data.get("secrets-file") or os.environ.get("SECRETS_FILE") or DEFAULT_SECRETS_FILE
        return GpgSecrets(secrets_file=expand_path(secrets_file), passphrase_file=expand_path(passphrase_file))
    if method == "pass":
        return PassSecrets(entry=data.get("pass-entry") or DEFAULT_PASS_ENTRY)
    if method == "vaultwarden":
        return VaultSecrets(
            item=data.get("vaultwarden-item") or DEFAULT_VAULT_ITEM,
            session_file=expand_path(data.get("vaultwarden-session-file") or DEFAULT_VAULT_SESSION_FILE),
        )
    raise ConfigError(
        f"Unknown secrets method '{method}'. Supported: {', '.join(SECRETS_METHODS)}"
    )


@dataclass(frozen=True)
class AppSpec:
    name: str
    path: Path
    additional_paths: Tuple[Path, ...] = ()
    start_command: Optional[Command] = None
    stop_command: Optional[Command] = None
    snapshot_command: Optional[Command] = None

    @property
    def mode(self) -> BackupMode:
        if self.snapshot_command is not None:
            return BackupMode.COMMAND_SNAPSHOT
        return BackupMode.SUSPEND_CYCLE

    @classmethod
    def from_dict(cls, data: Dict) -> "AppSpec":
        if not isinstance(data, dict):
            raise ConfigError(f"Each docker app must be a mapping, got {data!r}.")
        name = data.get("name")
        path = data.get("path")
        if not name:
            raise ConfigError("Each docker app must have a 'name'.")
        if not path:
            raise ConfigError(f"Docker app '{name}' must have a 'path'.")

        try:
            snapshot_command = _optional_command(data.get("bkp_cmd"))
            if snapshot_command is not None:
                if data.get("start_cmd") or data.get("stop_cmd"):
                    LOGGER.warning("App '%s' uses bkp_cmd; start_cmd/stop_cmd are ignored.", name)
                return cls(name=str(name), path=Path(path), snapshot_command=snapshot_command)

            start_command = _optional_command(data.get("start_cmd")) or Command.parse(DEFAULT_START_COMMAND)
            stop_command = _optional_command(data.get("stop_cmd")) or Command.parse(DEFAULT_STOP_COMMAND)
        except CommandError as exc:
            raise ConfigError(f"Docker app '{name}': {exc}") from exc

        additional = data.get("additional-paths") or []
        if not isinstance(additional, list):
            raise ConfigError(f"Docker app '{name}': 'additional-paths' must be a list.")
        return cls(
            name=str(name),
            path=Path(path),
            additional_paths=tuple(Path(item) for item in additional),
            start_command=start_command,
            stop_command=stop_command,
        )


@dataclass(frozen=True)
class AdditionalBackup:
    name: str
    path: Path

    @classmethod
    def from_dict(cls, data: Dict) -> "AdditionalBackup":
        if not isinstance(data, dict) or not data.get("name") or not data.get("path"):
            raise ConfigError(f"Additional backup entries need 'name' and 'path': {data!r}")
        return cls(name=str(data["name"]), path=Path(data["path"]))


@dataclass(frozen=True)
class RetentionPolicy:
    keep_within_weekly: str = "15d"
    keep_within_monthly: str = "3m"

    @classmethod
    def from_dict(cls, data: Optional[Dict]) -> "RetentionPolicy":
        data = data or {}
        return cls(
            keep_within_weekly=str(data.get("keep-within-weekly", "15d")),
            keep_within_monthly=str(data.get("keep-within-monthly", "3m")),
        )

    def to_args(self) -> List[str]:
        return [
            "--keep-within-weekly",
            self.keep_within_weekly,
            "--keep-within-monthly",
            self.keep_within_monthly,
        ]


@dataclass(frozen=True)
class BackupConfig:
    log_path: Path
    restic_repo: str
    secrets: SecretsConfig
    apps: Tuple[AppSpec, ...] = ()
    additional_backups: Tuple[AdditionalBackup, ...] = ()
    retention: RetentionPolicy = field(default_factory=RetentionPolicy)
    command_timeout: int = DEFAULT_COMMAND_TIMEOUT
    settle_delay: float = DEFAULT_SETTLE_DELAY
    fail_on_app_error: bool = False
    restart_after_stop_failure: bool = False

    @classmethod
    def from_dict(cls, data: Dict) -> "BackupConfig":
        if not isinstance(data, dict):
            raise ConfigError("Configuration document must be a mapping.")
        log_path = data.get("log-path")
        restic_repo = data.get("restic-repo")
        if not log_path:
            raise ConfigError("Configuration requires 'log-path'.")
        if not restic_repo:
            raise ConfigError("Configuration requires 'restic-repo'.")

        apps_data = data.get("docker-apps") or []
        additional_data = data.get("additional-backups") or []
        if not isinstance(apps_data, list):
            raise ConfigError("'docker-apps' must be a list.")
        if not isinstance(additional_data, list):
            raise ConfigError("'additional-backups' must be a list.")

        apps = tuple(AppSpec.from_dict(item) for item in apps_data)
        _warn_duplicate_names(app.name for app in apps)

        return cls(
            log_path=expand_path(str(log_path)),
            restic_repo=str(restic_repo),
            secrets=secrets_from_dict(data),
            apps=apps,
            additional_backups=tuple(AdditionalBackup.from_dict(item) for item in additional_data),
            retention=RetentionPolicy.from_dict(data.get("retention")),
            command_timeout=_safe_int(data.get("command-timeout"), default=DEFAULT_COMMAND_TIMEOUT),
            settle_delay=_safe_float(data.get("settle-delay"), default=DEFAULT_SETTLE_DELAY),
            fail_on_app_error=_safe_bool(data.get("fail-on-app-error"), "fail-on-app-error"),
            restart_after_stop_failure=_safe_bool(
                data.get("restart-after-stop-failure"), "restart-after-stop-failure"
            ),
        )


# ---------------------------------------------------------------------------
def _optional_command(value) -> Optional[Command]:
    if value in (None, "", "null", []):
        return None
    return Command.parse(value)


def _warn_duplicate_names(names) -> None:
    seen = set()
    for name in names:
        if name in seen:
            LOGGER.warning("Docker app name '%s' is used more than once; backup tags will merge.", name)
        seen.add(name)


def _safe_int(value, default: int) -> int:
    if value is None:
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"Value '{value}' is not an integer.")


def _safe_bool(value, key: str, default: bool = False) -> bool:
    if value is None:
        return default
    if not isinstance(value, bool):
        raise ConfigError(f"'{key}' must be true or false, got {value!r}.")
    return value


def _safe_float(value, default: float) -> float:
    if value is None:
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"Value '{value}' is not a number.")


# ---------------------------------------------------------------------------
def load_config(path: Path = DEFAULT_CONFIG_PATH) -> BackupConfig:
    """Read a JSON (or YAML) configuration document from *path*."""

    path = Path(path)
    if not path.exists():
        raise ConfigError(f"Configuration file '{path}' not found.")
    text = path.read_text(encoding="utf-8")
    try:
        if path.suffix.lower() == ".json":
            data = json.loads(text)
        else:
            data = yaml.safe_load(text)
    except (ValueError, yaml.YAMLError) as exc:
        raise ConfigError(f"Cannot parse configuration file '{path}': {exc}") from exc
    if not data:
        raise ConfigError(f"Configuration file '{path}' is empty.")
    return BackupConfig.from_dict(data)


__all__ = [
    "AdditionalBackup",
    "AppSpec",
    "BackupConfig",
    "BackupMode",
    "ConfigError",
    "GpgSecrets",
    "PassSecrets",
    "RetentionPolicy",
    "SecretsConfig",
    "VaultSecrets",
    "load_config",
]
