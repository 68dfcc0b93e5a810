"""
Command-line entry points: plex-update and plex-rollback.

Exit status is 0 on success, when no update is needed, and when a rollback is
cancelled; 1 on any updater or configuration error; 130 when interrupted.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Any

from plex_updater import __version__
from plex_updater.config import AppConfig, load_config
from plex_updater.errors import ConfigError, UpdaterError
from plex_updater.logging import get_logger, setup_logging
from plex_updater.updates.archive import TarArchiver
from plex_updater.updates.backups import BackupStore
from plex_updater.updates.lock import RunLock
from plex_updater.updates.rollback import RollbackOrchestrator
from plex_updater.updates.update import UpdateOrchestrator, UpdateOutcome

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_INTERRUPTED = 130

LOG_LEVEL_CHOICES = ["debug", "info", "warning", "error"]

_SIZE_UNITS = ("B", "K", "M", "G", "T")


def format_size(num_bytes: int) -> str:
    """Format a byte count the way `du -h` does, e.g. "512K" or "1.5G"."""
    size = float(num_bytes)
    for unit in _SIZE_UNITS:
        if size < 1024 or unit == _SIZE_UNITS[-1]:
            break
        size /= 1024

    if unit == "B":
        return f"{int(size)}{unit}"
    if size < 10:
        return f"{size:.1f}{unit}"
    return f"{size:.0f}{unit}"


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config",
        "-c",
        type=str,
        help="Path to configuration file (YAML, or a legacy config.conf)",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=LOG_LEVEL_CHOICES,
        help="Override log level",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )


def build_update_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="plex-update",
        description="Update Plex Media Server to the latest published release",
    )
    _add_common_arguments(parser)
    return parser


def build_rollback_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="plex-rollback",
        description="Restore the Plex configuration from a backup",
        epilog=(
            "Examples:\n"
            "  sudo plex-rollback                 # most recent backup\n"
            "  sudo plex-rollback <backup-file>   # specific backup\n"
            "  sudo plex-rollback --list          # list available backups"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    _add_common_arguments(parser)
    parser.add_argument(
        "--list",
        "-l",
        action="store_true",
        help="List available backups and exit",
    )
    parser.add_argument(
        "backup",
        nargs="?",
        help="Backup file path, or file name inside the backup directory",
    )
    return parser


def _load(parsed: argparse.Namespace) -> AppConfig:
    overrides: dict[str, Any] = {}
    if parsed.log_level:
        overrides["logging"] = {"level": parsed.log_level}
    return load_config(config_path=parsed.config, overrides=overrides)


def _report_config_error(error: ConfigError) -> None:
    # Logging is not configured before the configuration is loaded
    print(f"ERROR: {error.message}", file=sys.stderr)
    for key, value in error.details.items():
        print(f"  {key}: {value}", file=sys.stderr)


def _start_logging(config: AppConfig) -> bool:
    """Configure logging; report to stderr and return False if that fails."""
    try:
        setup_logging(config.logging)
    except OSError as e:
        print(
            f"ERROR: Cannot open log file: {config.logging.log_file}", file=sys.stderr
        )
        print(f"  error: {e}", file=sys.stderr)
        return False
    return True


def _report_failure(error: UpdaterError) -> None:
    logger.error(error.message)
    logger.debug("Failure details", extra={"error": error.to_dict()})


def print_backup_list(config: AppConfig) -> None:
    """Print the available backups, newest first."""
    backup_dir = config.paths.backup_dir
    if not backup_dir.is_dir():
        print(f"No backup directory found: {backup_dir}")
        return

    backups = BackupStore(backup_dir, TarArchiver()).list_backups()
    if not backups:
        print(f"No backups found in {backup_dir}")
        return

    print("Available Plex backups:")
    print("========================================")
    for number, record in enumerate(backups, start=1):
        print(f"{number}. {record.name}")
        print(f"   Size: {format_size(record.size)}")
        print(f"   Date: {record.mtime:%Y-%m-%d %H:%M:%S}")
        print()
    print(f"Total backups: {len(backups)}")


def update_main(argv: list[str] | None = None) -> int:
    """Entry point for plex-update."""
    parsed = build_update_parser().parse_args(argv)

    try:
        config = _load(parsed)
    except ConfigError as e:
        _report_config_error(e)
        return EXIT_FAILURE

    if not _start_logging(config):
        return EXIT_FAILURE

    try:
        with RunLock(config.paths.lock_file):
            result = asyncio.run(UpdateOrchestrator.from_config(config).run())
    except UpdaterError as e:
        _report_failure(e)
        return EXIT_FAILURE
    except KeyboardInterrupt:
        logger.error("Update interrupted")
        return EXIT_INTERRUPTED

    if result.outcome == UpdateOutcome.VERSION_MISMATCH:
        return EXIT_FAILURE
    return EXIT_OK


def rollback_main(argv: list[str] | None = None) -> int:
    """Entry point for plex-rollback."""
    parsed = build_rollback_parser().parse_args(argv)

    try:
        config = _load(parsed)
    except ConfigError as e:
        _report_config_error(e)
        return EXIT_FAILURE

    if parsed.list:
        print_backup_list(config)
        return EXIT_OK

    if not _start_logging(config):
        return EXIT_FAILURE

    backup = Path(parsed.backup) if parsed.backup else None
    try:
        with RunLock(config.paths.lock_file):
            orchestrator = RollbackOrchestrator.from_config(config)
            asyncio.run(orchestrator.run(backup))
    except UpdaterError as e:
        _report_failure(e)
        return EXIT_FAILURE
    except KeyboardInterrupt:
        logger.error("Rollback interrupted")
        return EXIT_INTERRUPTED

    return EXIT_OK


if __name__ == "__main__":
    sys.exit(update_main())
