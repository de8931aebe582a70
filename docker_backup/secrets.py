"""Retrieval of the restic repository password from a secrets backend.

Three interchangeable backends are supported, selected by the configuration's
``secrets-method``:

* ``gpg`` -- a gpg-encrypted file containing a ``RESTIC_LOCAL_PWD=...`` line,
  decrypted with a passphrase file;
* ``pass`` -- an entry of the standard unix password store;
* ``vaultwarden`` -- an item read with the Bitwarden CLI using an unlocked
  session token.

Whatever the backend, :meth:`SecretResolver.resolve` yields one non-empty
string or raises a :class:`SecretResolutionError`.
"""
from __future__ import annotations

import logging
import os
import shutil
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from .config import GpgSecrets, PassSecrets, SecretsConfig, VaultSecrets
from .utils import expand_path, file_mode

LOGGER = logging.getLogger(__name__)

PASSWORD_LINE_KEY = "RESTIC_LOCAL_PWD"
SAFE_MODES = (0o600, 0o400)


class SecretResolutionError(Exception):
    """Raised when the repository password cannot be obtained."""


class MissingFileError(SecretResolutionError):
    """A file required by the gpg backend does not exist."""


class DecryptionError(SecretResolutionError):
    """gpg could not decrypt the secrets file."""


class ToolNotFoundError(SecretResolutionError):
    """The backend's command line tool is not on PATH."""


class StoreNotInitializedError(SecretResolutionError):
    """The password store directory does not exist."""


class EntryNotFoundError(SecretResolutionError):
    """The password store has no such entry."""


class NoSessionError(SecretResolutionError):
    """No Bitwarden session token is available."""


class ItemNotFoundError(SecretResolutionError):
    """The Bitwarden CLI returned neither notes nor a password for the item."""


def _capture(argv: List[str], env: Optional[Dict[str, str]] = None) -> subprocess.CompletedProcess:
    # Output carries the secret: never log it.
    try:
        return subprocess.run(
            argv, capture_output=True, text=True, encoding="utf-8", errors="replace", env=env
        )
    except OSError as exc:
        raise ToolNotFoundError(f"Cannot run '{argv[0]}': {exc}") from exc


def _require_tool(name: str, install_hint: str) -> None:
    if shutil.which(name) is None:
        raise ToolNotFoundError(f"'{name}' command not found. {install_hint}")


def _check_permissions(path: Path) -> None:
    mode = file_mode(path)
    if mode not in SAFE_MODES:
        LOGGER.warning(
            "%s has permissions %o (should be 600 or 400). Run: chmod 600 %s", path, mode, path
        )


def _strip_quotes(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in {"'", '"'}:
        return value[1:-1]
    return value


def extract_password_line(text: str, key: str = PASSWORD_LINE_KEY) -> Optional[str]:
    """Return the value of the first ``KEY=value`` line in *text*."""

    prefix = f"{key}="
    for line in text.splitlines():
        if line.startswith(prefix):
            return _strip_quotes(line[len(prefix):].strip())
    return None


@dataclass
class SecretResolver:
    """Resolve the repository password, at most once per configuration."""

    environ: Dict[str, str] = field(default_factory=lambda: dict(os.environ))
    _cache: Dict[SecretsConfig, str] = field(default_factory=dict, init=False, repr=False)

    def resolve(self, config: SecretsConfig) -> str:
        if config in self._cache:
            return self._cache[config]

        if isinstance(config, GpgSecrets):
            secret = self._from_gpg(config)
        elif isinstance(config, PassSecrets):
            secret = self._from_pass(config)
        elif isinstance(config, VaultSecrets):
            secret = self._from_vault(config)
        else:
            raise TypeError(f"Unsupported secrets configuration: {type(config).__name__}")

        if not secret:
            raise SecretResolutionError(
                f"Failed to retrieve restic password using method: {describe_method(config)}"
            )
        self._cache[config] = secret
        LOGGER.info("Restic password retrieved successfully")
        return secret

    # ------------------------------------------------------------------
    def _from_gpg(self, config: GpgSecrets) -> str:
        LOGGER.info("Retrieving restic password using GPG method")
        _require_tool("gpg", "Install it with: apt install gnupg")
        for label, path in (("Secrets file", config.secrets_file), ("GPG passphrase file", config.passphrase_file)):
            if not Path(path).is_file():
                raise MissingFileError(f"{label} not found: {path}")
            _check_permissions(Path(path))

        result = _capture(
            [
                "gpg",
                "--batch",
                "--passphrase-file",
                str(config.passphrase_file),
                "--decrypt",
                str(config.secrets_file),
            ]
        )
        if result.returncode != 0:
            raise DecryptionError(
                f"gpg could not decrypt {config.secrets_file} (exit code {result.returncode})."
            )
        value = extract_password_line(result.stdout)
        if value is None:
            raise SecretResolutionError(
                f"No {PASSWORD_LINE_KEY}= line found in {config.secrets_file}."
            )
        return value

    # ------------------------------------------------------------------
    def _from_pass(self, config: PassSecrets) -> str:
        LOGGER.info("Retrieving restic password from pass entry: %s", config.entry)
        _require_tool("pass", "Install it with: apt install pass")

        store_dir = self.environ.get("PASSWORD_STORE_DIR") or "~/.password-store"
        if not expand_path(store_dir).is_dir():
            raise StoreNotInitializedError("pass store not initialized. Run: pass init <gpg-key-id>")

        result = _capture(["pass", "show", config.entry], env=self.environ)
        if result.returncode != 0:
            raise EntryNotFoundError(
                f"pass entry '{config.entry}' not found. Create it with: pass insert {config.entry}"
            )
        return result.stdout.rstrip("\n")

    # ------------------------------------------------------------------
    def _from_vault(self, config: VaultSecrets) -> str:
        LOGGER.info("Retrieving restic password from Vaultwarden item: %s", config.item)
        _require_tool("bw", "Install it with: npm install -g @bitwarden/cli")

        session = self._vault_session(config)
        for field_name in ("notes", "password"):
            result = _capture(["bw", "get", field_name, config.item, "--session", session], env=self.environ)
            if result.returncode == 0:
                return result.stdout.rstrip("\n")
            LOGGER.debug("bw get %s failed for item '%s'", field_name, config.item)
        raise ItemNotFoundError(f"Vaultwarden item '{config.item}' has neither notes nor a password.")

    def _vault_session(self, config: VaultSecrets) -> str:
        session = self.environ.get("BW_SESSION")
        if session:
            return session
        session_file = Path(config.session_file)
        if session_file.is_file():
            session = session_file.read_text(encoding="utf-8").strip()
            if session:
                return session
        raise NoSessionError(f"BW_SESSION not found. Run: bw unlock --raw > {session_file}")


def describe_method(config: SecretsConfig) -> str:
    if isinstance(config, GpgSecrets):
        return "gpg"
    if isinstance(config, PassSecrets):
        return "pass"
    if isinstance(config, VaultSecrets):
        return "vaultwarden"
    raise TypeError(f"Unsupported secrets configuration: {type(config).__name__}")


__all__ = [
    "DecryptionError",
    "EntryNotFoundError",
    "ItemNotFoundError",
    "MissingFileError",
    "NoSessionError",
    "SecretResolutionError",
    "SecretResolver",
    "StoreNotInitializedError",
    "ToolNotFoundError",
    "describe_method",
    "extract_password_line",
]
