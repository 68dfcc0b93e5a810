"""
Filesystem operations for the Plex updater.

This module implements the filesystem steps shared by the update and rollback
runs:
- Directory creation and removal
- Reapplying ownership of a restored directory to the service account
- Removing downloaded packages after an update
"""

from __future__ import annotations

import grp
import os
import pwd
import shutil
from pathlib import Path

from plex_updater.errors import ArchiveError, UpdaterError
from plex_updater.logging import get_logger

logger = get_logger(__name__)


def ensure_directory(path: Path, *, parents: bool = True, mode: int = 0o755) -> Path:
    """
    Ensure a directory exists, creating it if necessary.

    Args:
        path: Path to the directory.
        parents: If True, create parent directories as needed.
        mode: Directory permissions (default 0o755).

    Returns:
        The directory path.

    Raises:
        UpdaterError: If directory cannot be created.
    """
    try:
        path.mkdir(parents=parents, mode=mode, exist_ok=True)
        return path
    except OSError as e:
        raise UpdaterError(
            error_code="directory_unavailable",
            message=f"Failed to create directory: {path}",
            details={"path": str(path), "error": str(e)},
        ) from e


def remove_directory(path: Path) -> bool:
    """
    Remove a directory tree.

    Args:
        path: Path to the directory to remove.

    Returns:
        True if the directory was removed, False if it didn't exist.

    Raises:
        ArchiveError: If removal fails; the restore cannot continue over a
            partially removed tree.
    """
    if not path.exists() and not path.is_symlink():
        return False

    try:
        if path.is_symlink() or not path.is_dir():
            path.unlink()
        else:
            shutil.rmtree(path)
    except OSError as e:
        raise ArchiveError(
            f"Failed to remove directory: {path}",
            details={"path": str(path), "error": str(e)},
        ) from e

    logger.debug("Removed directory", extra={"path": str(path)})
    return True


def restore_ownership(path: Path, user: str) -> bool:
    """
    Recursively chown a directory tree to user and the group of the same name.

    The user's primary group is used when no group named after the user
    exists. Nothing is changed when the account does not exist.

    Args:
        path: Root of the tree.
        user: Owning account name.

    Returns:
        True if ownership was applied, False if the account does not exist.
    """
    try:
        passwd = pwd.getpwnam(user)
    except KeyError:
        logger.debug("Service account not found", extra={"user": user})
        return False

    try:
        gid = grp.getgrnam(user).gr_gid
    except KeyError:
        gid = passwd.pw_gid

    uid = passwd.pw_uid
    try:
        os.chown(path, uid, gid, follow_symlinks=False)
        for root, dirs, files in os.walk(path):
            for entry in dirs + files:
                os.chown(os.path.join(root, entry), uid, gid, follow_symlinks=False)
    except OSError as e:
        raise UpdaterError(
            error_code="ownership_failed",
            message=f"Failed to restore ownership of {path} to {user}",
            details={"path": str(path), "user": user, "error": str(e)},
        ) from e

    return True


def cleanup_downloads(download_dir: Path, extension: str) -> list[Path]:
    """
    Remove every file with the given extension from the download directory.

    Args:
        download_dir: Staging directory for downloaded packages.
        extension: Package file extension, including the dot (e.g. ".deb").

    Returns:
        The removed paths.
    """
    if not download_dir.is_dir():
        return []

    removed = []
    for package in sorted(download_dir.glob(f"*{extension}")):
        if package.is_file():
            package.unlink()
            removed.append(package)

    logger.debug(
        "Removed downloaded packages",
        extra={"download_dir": str(download_dir), "count": len(removed)},
    )
    return removed

