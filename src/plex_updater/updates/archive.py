"""
Gzip tar archiver for Plex data directory backups.

Archives use the data directory's basename as their content root, so a backup
of ".../Plex Media Server" extracts to "<parent>/Plex Media Server".
"""

from __future__ import annotations

import gzip
import tarfile
from pathlib import Path

from plex_updater.errors import ArchiveError
from plex_updater.logging import get_logger
from plex_updater.updates.backends import Archiver

logger = get_logger(__name__)

_READ_CHUNK_SIZE = 1024 * 1024


class TarArchiver(Archiver):
    """Archiver backed by the tarfile module (gzip-compressed tar)."""

    def archive(self, src_dir: Path, dest_file: Path) -> None:
        try:
            with tarfile.open(dest_file, "w:gz") as tar:
                tar.add(src_dir, arcname=src_dir.name)
        except (OSError, tarfile.TarError) as e:
            dest_file.unlink(missing_ok=True)
            raise ArchiveError(
                f"Failed to create archive: {dest_file}",
                details={
                    "source": str(src_dir),
                    "archive": str(dest_file),
                    "error": str(e),
                },
            ) from e

        logger.debug(
            "Archive created",
            extra={"source": str(src_dir), "archive": str(dest_file)},
        )

    def extract(self, src_file: Path, dest_dir: Path) -> None:
        try:
            with tarfile.open(src_file, "r:gz") as tar:
                tar.extractall(dest_dir, filter="data")
        except (OSError, EOFError, tarfile.TarError) as e:
            raise ArchiveError(
                f"Failed to extract archive: {src_file}",
                details={
                    "archive": str(src_file),
                    "destination": str(dest_dir),
                    "error": str(e),
                },
            ) from e

        logger.debug(
            "Archive extracted",
            extra={"archive": str(src_file), "destination": str(dest_dir)},
        )

    def list_members(self, src_file: Path) -> list[str]:
        try:
            # Read the whole gzip stream first so the trailing CRC is checked.
            with gzip.open(src_file, "rb") as stream:
                while stream.read(_READ_CHUNK_SIZE):
                    pass

            with tarfile.open(src_file, "r:gz") as tar:
                return tar.getnames()
        except (OSError, EOFError, tarfile.TarError) as e:
            raise ArchiveError(
                f"Failed to read archive: {src_file}",
                details={"archive": str(src_file), "error": str(e)},
            ) from e
