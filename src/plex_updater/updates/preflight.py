"""
Preflight checks run before any update or rollback step.

All checks raise before anything on the system has been changed, so a failed
preflight is always safe to retry.
"""

from __future__ import annotations

import os
import shutil
from collections.abc import Iterable
from pathlib import Path

import psutil

from plex_updater.errors import DependencyMissingError, DiskSpaceError, PrivilegeError
from plex_updater.logging import get_logger
from plex_updater.updates.operations import ensure_directory

logger = get_logger(__name__)

UPDATE_DEPENDENCIES = ("dpkg", "systemctl")
ROLLBACK_DEPENDENCIES = ("systemctl", "dpkg")

DEFAULT_MIN_FREE_SPACE_MB = 500


def check_privileges() -> None:
    """
    Raises:
        PrivilegeError: If the process is not running as root.
    """
    if os.geteuid() != 0:
        raise PrivilegeError(
            "This command must be run as root (use sudo)",
            details={"euid": os.geteuid()},
        )


def check_dependencies(commands: Iterable[str]) -> None:
    """
    Raises:
        DependencyMissingError: For the first command not found on PATH.
    """
    for command in commands:
        if shutil.which(command) is None:
            raise DependencyMissingError(
                f"Required command not found: {command}",
                details={"command": command},
            )


def ensure_directories(paths: Iterable[Path]) -> None:
    for path in paths:
        ensure_directory(path)


def free_space_mb(path: Path) -> int:
    """Return the free space of the filesystem holding path, in whole MB."""
    return int(psutil.disk_usage(str(path)).free // (1024 * 1024))


def check_disk_space(path: Path, required_mb: int = DEFAULT_MIN_FREE_SPACE_MB) -> int:
    """
    Check that the filesystem holding path has at least required_mb free.

    Returns:
        Available space in MB.

    Raises:
        DiskSpaceError: If less space is available.
    """
    available = free_space_mb(path)
    if available < required_mb:
        raise DiskSpaceError(
            f"Insufficient disk space. Required: {required_mb}MB, "
            f"Available: {available}MB",
            details={
                "path": str(path),
                "required_mb": required_mb,
                "available_mb": available,
            },
        )

    logger.info(f"Disk space check passed ({available}MB available)")
    return available


class Preflight:
    """
    The preflight sequence for each entry point.

    Attributes:
        download_dir: Staging directory for packages.
        backup_dir: Directory holding backups.
        log_dir: Directory of the persistent log file.
        min_free_space_mb: Required free space in the download directory.
    """

    def __init__(
        self,
        download_dir: Path,
        backup_dir: Path,
        log_dir: Path,
        min_free_space_mb: int = DEFAULT_MIN_FREE_SPACE_MB,
    ) -> None:
        self.download_dir = download_dir
        self.backup_dir = backup_dir
        self.log_dir = log_dir
        self.min_free_space_mb = min_free_space_mb

    def run_for_update(self) -> None:
        """Privileges, dependencies, working directories, disk space."""
        check_privileges()
        check_dependencies(UPDATE_DEPENDENCIES)
        ensure_directories([self.download_dir, self.backup_dir, self.log_dir])
        check_disk_space(self.download_dir, self.min_free_space_mb)

    def run_for_rollback(self) -> None:
        """Privileges and dependencies only."""
        check_privileges()
        check_dependencies(ROLLBACK_DEPENDENCIES)
