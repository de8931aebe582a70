"""Command line interface for the docker application backup tool."""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Iterable, Optional

from docker_backup.config import DEFAULT_CONFIG_PATH, BackupConfig, ConfigError, load_config
from docker_backup.orchestrator import Orchestrator
from docker_backup.restic import RepositoryCheckError
from docker_backup.secrets import SecretResolutionError, SecretResolver, describe_method


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Back up docker applications and extra paths into a restic repository.",
    )
    parser.add_argument("--config", default=str(DEFAULT_CONFIG_PATH), help="Path to the configuration file.")
    parser.add_argument("-v", "--verbose", action="count", default=0, help="Increase logging verbosity.")

    subparsers = parser.add_subparsers(dest="command")
    subparsers.add_parser("run", help="Run all configured backups, check the repository and preview retention.")
    subparsers.add_parser("check-secrets", help="Verify that the restic password can be retrieved.")
    subparsers.add_parser("list-apps", help="Show the configured applications and their backup mode.")
    return parser


def configure_logging(level: int) -> None:
    if level >= 2:
        log_level = logging.DEBUG
    elif level == 1:
        log_level = logging.INFO
    else:
        log_level = logging.WARNING
    # the daily log file lowers the package logger to INFO; the console keeps the requested level
    console = logging.StreamHandler()
    console.setLevel(log_level)
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[console],
    )


def load_application_config(path: Path) -> BackupConfig:
    try:
        return load_config(path)
    except ConfigError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        sys.exit(1)


def handle_run(config: BackupConfig) -> None:
    orchestrator = Orchestrator(config)
    try:
        summary = orchestrator.run()
    except SecretResolutionError as exc:
        logging.getLogger("docker_backup").error("Failed to retrieve restic password: %s", exc)
        print(f"ERROR: {exc}", file=sys.stderr)
        sys.exit(1)
    except RepositoryCheckError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        sys.exit(1)

    if summary.has_failures:
        print("Backup finished with failures:", file=sys.stderr)
        for message in summary.failures:
            print(f"  - {message}", file=sys.stderr)
        if config.fail_on_app_error:
            sys.exit(1)
    else:
        print("Backup completed successfully.")


def handle_check_secrets(config: BackupConfig) -> None:
    method = describe_method(config.secrets)
    try:
        SecretResolver().resolve(config.secrets)
    except SecretResolutionError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        sys.exit(1)
    print(f"Restic password retrieved successfully using method: {method}")


def handle_list_apps(config: BackupConfig) -> None:
    if not config.apps and not config.additional_backups:
        print("No applications configured.")
        return
    for app in config.apps:
        print(f"{app.name} ({app.path})")
        print(f"  mode: {app.mode.value}")
        if app.snapshot_command is not None:
            print(f"  bkp_cmd: {app.snapshot_command.display()}")
        else:
            print(f"  stop_cmd: {app.stop_command.display()}")
            print(f"  start_cmd: {app.start_command.display()}")
            for path in app.additional_paths:
                print(f"  additional path: {path}")
    for extra in config.additional_backups:
        print(f"{extra.name} ({extra.path})")
        print("  mode: additional")


def main(argv: Optional[Iterable[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return

    configure_logging(args.verbose)
    config = load_application_config(Path(args.config))

    if args.command == "run":
        handle_run(config)
    elif args.command == "check-secrets":
        handle_check_secrets(config)
    elif args.command == "list-apps":
        handle_list_apps(config)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
