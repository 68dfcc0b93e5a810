"""
Backup store for the Plex data directory.

Backups are gzip tar archives in a single backup directory, named
"plex-backup-YYYYMMDD-HHMMSS.tar.gz" for regular update backups and
"plex-backup-pre-rollback-YYYYMMDD-HHMMSS.tar.gz" for the safety copy taken
before a rollback. Archives are never modified after creation.

Backups are identified and ordered by file modification time, newest first.
The timestamp embedded in the name is informational only.

Retention applies to regular backups only: after each new update backup the
newest `keep` regular archives are kept and older ones deleted. Safety backups
never match the regular pattern, so they are neither counted nor pruned.
"""

from __future__ import annotations

import re
from datetime import datetime
from pathlib import Path

from pydantic import BaseModel, Field

from plex_updater.errors import (
    ArchiveError,
    BackupNotFoundError,
    InvalidBackupError,
    SourceMissingError,
)
from plex_updater.logging import get_logger
from plex_updater.updates.backends import Archiver

logger = get_logger(__name__)

STANDARD_PREFIX = "plex-backup"
SAFETY_PREFIX = "plex-backup-pre-rollback"
ARCHIVE_SUFFIX = ".tar.gz"
TIMESTAMP_FORMAT = "%Y%m%d-%H%M%S"

# Regular update backups only.
STANDARD_BACKUP_PATTERN = re.compile(r"^plex-backup-\d{8}-\d{6}\.tar\.gz$")
# Every backup, safety copies included.
ANY_BACKUP_PATTERN = re.compile(r"^plex-backup-.*\.tar\.gz$")

_TIMESTAMP_IN_NAME = re.compile(r"(\d{8}-\d{6})\.tar\.gz$")

DEFAULT_KEEP = 5


class BackupRecord(BaseModel):
    """
    One backup archive on disk.

    Attributes:
        path: Path of the archive.
        size: Size in bytes.
        mtime: Modification time; the ordering key.
    """

    path: Path = Field(..., description="Archive path")
    size: int = Field(..., ge=0, description="Archive size in bytes")
    mtime: datetime = Field(..., description="Archive modification time")

    @property
    def name(self) -> str:
        return self.path.name

    @property
    def timestamp(self) -> datetime | None:
        """Creation timestamp encoded in the file name, if any."""
        match = _TIMESTAMP_IN_NAME.search(self.name)
        if match is None:
            return None
        try:
            return datetime.strptime(match.group(1), TIMESTAMP_FORMAT)
        except ValueError:
            return None

    @property
    def is_safety_backup(self) -> bool:
        return self.name.startswith(f"{SAFETY_PREFIX}-")

    @classmethod
    def from_path(cls, path: Path) -> BackupRecord:
        stat = path.stat()
        return cls(
            path=path,
            size=stat.st_size,
            mtime=datetime.fromtimestamp(stat.st_mtime),
        )


def backup_filename(prefix: str, timestamp: datetime) -> str:
    """Build "<prefix>-YYYYMMDD-HHMMSS.tar.gz"."""
    return f"{prefix}-{timestamp.strftime(TIMESTAMP_FORMAT)}{ARCHIVE_SUFFIX}"


class BackupStore:
    """
    Creates, lists, validates and prunes backups in one backup directory.

    Attributes:
        backup_dir: Directory holding the archives.
        archiver: Archiver used to write and read archives.
    """

    def __init__(self, backup_dir: Path | str, archiver: Archiver) -> None:
        self.backup_dir = Path(backup_dir)
        self.archiver = archiver

    def list_backups(
        self,
        pattern: re.Pattern[str] = ANY_BACKUP_PATTERN,
    ) -> list[BackupRecord]:
        """
        List backups whose file name matches pattern, newest first.

        A missing directory or no matches gives an empty list.
        """
        if not self.backup_dir.is_dir():
            return []

        records = []
        for entry in self.backup_dir.iterdir():
            if not pattern.match(entry.name) or not entry.is_file():
                continue
            try:
                records.append(BackupRecord.from_path(entry))
            except FileNotFoundError:
                # Deleted between iterdir() and stat()
                continue

        records.sort(key=lambda record: record.mtime, reverse=True)
        return records

    def latest_backup(
        self,
        pattern: re.Pattern[str] = ANY_BACKUP_PATTERN,
    ) -> BackupRecord:
        """
        Return the most recently modified backup.

        Raises:
            BackupNotFoundError: If there are no backups.
        """
        backups = self.list_backups(pattern)
        if not backups:
            raise BackupNotFoundError(
                f"No backups found in {self.backup_dir}",
                details={"backup_dir": str(self.backup_dir)},
            )
        return backups[0]

    def create_backup(
        self,
        source_dir: Path,
        prefix: str = STANDARD_PREFIX,
        timestamp: datetime | None = None,
    ) -> BackupRecord:
        """
        Archive source_dir into a new timestamped backup.

        Args:
            source_dir: Directory to archive.
            prefix: File name prefix (STANDARD_PREFIX or SAFETY_PREFIX).
            timestamp: Name timestamp; defaults to the current local time.

        Returns:
            The record of the new archive.

        Raises:
            SourceMissingError: If source_dir is not an existing directory.
            ArchiveError: If a backup of that name already exists or the
                archive cannot be written.
        """
        if not source_dir.is_dir():
            raise SourceMissingError(
                f"Plex directory not found: {source_dir}",
                details={"source_dir": str(source_dir)},
            )

        try:
            self.backup_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ArchiveError(
                f"Backup directory unavailable: {self.backup_dir}",
                details={"backup_dir": str(self.backup_dir), "error": str(e)},
            ) from e

        name = backup_filename(prefix, timestamp or datetime.now())
        backup_path = self.backup_dir / name
        if backup_path.exists():
            raise ArchiveError(
                f"Backup already exists: {backup_path}",
                details={"backup": str(backup_path)},
            )
        self.archiver.archive(source_dir, backup_path)

        record = BackupRecord.from_path(backup_path)
        logger.info(
            f"Backup created: {backup_path}",
            extra={"backup": str(backup_path), "size": record.size},
        )
        return record

    def prune_backups(
        self,
        keep: int = DEFAULT_KEEP,
        pattern: re.Pattern[str] = STANDARD_BACKUP_PATTERN,
    ) -> list[Path]:
        """
        Delete every matching backup beyond the newest `keep`.

        Returns:
            Paths of the deleted archives.

        Raises:
            ValueError: If keep is less than 1.
        """
        if keep < 1:
            raise ValueError(f"keep must be at least 1, got {keep}")

        removed = []
        for record in self.list_backups(pattern)[keep:]:
            record.path.unlink(missing_ok=True)
            removed.append(record.path)
            logger.info(f"Removed old backup: {record.name}")

        return removed

    def validate_backup(self, path: Path) -> BackupRecord:
        """
        Check that path is a readable backup archive.

        Returns:
            The record of the archive.

        Raises:
            InvalidBackupError: If the file is missing or cannot be read.
        """
        if not path.is_file():
            raise InvalidBackupError(
                f"Backup file not found: {path}",
                details={"backup": str(path)},
            )

        try:
            self.archiver.list_members(path)
        except ArchiveError as e:
            raise InvalidBackupError(
                f"Invalid or corrupted backup file: {path}",
                details={
                    "backup": str(path),
                    "error": e.details.get("error", e.message),
                },
            ) from e

        logger.info(f"Backup file validated: {path}")
        return BackupRecord.from_path(path)

    def resolve_backup(self, argument: str | Path) -> Path:
        """
        Resolve an operator-supplied backup argument.

        The argument is tried as a literal path first, then as a file name in
        the backup directory. When neither exists the literal path is returned
        so that validation reports it as missing.
        """
        literal = Path(argument)
        if literal.is_file():
            return literal

        in_backup_dir = self.backup_dir / literal
        if in_backup_dir.is_file():
            return in_backup_dir

        return literal
