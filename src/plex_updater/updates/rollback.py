"""
Rollback of the Plex data directory to a backup archive.

A rollback restores configuration and metadata only; the installed package is
left as it is. The run is:

    preflight -> choose backup -> validate -> confirm
              -> safety backup -> stop -> replace directory -> chown
              -> start -> verify

Nothing is changed until the operator confirms. The safety backup taken just
before the directory is replaced is the way back from a mistaken rollback; it
is skipped, with a log line, when the directory does not exist. Rollback never
prunes backups.
"""

from __future__ import annotations

from collections.abc import Callable
from enum import Enum
from pathlib import Path

from pydantic import BaseModel

from plex_updater.config import AppConfig
from plex_updater.errors import SourceMissingError, VerificationMismatchError
from plex_updater.logging import get_logger
from plex_updater.updates.archive import TarArchiver
from plex_updater.updates.backends import PackageManager
from plex_updater.updates.backups import SAFETY_PREFIX, BackupStore
from plex_updater.updates.dpkg_backend import DpkgPackageManager
from plex_updater.updates.operations import remove_directory, restore_ownership
from plex_updater.updates.preflight import Preflight
from plex_updater.updates.systemd_service import ServiceController
from plex_updater.updates.update import build_service_controller
from plex_updater.updates.version import describe_version

logger = get_logger(__name__)

CONFIRMATION_WARNING = (
    "This will replace your current Plex configuration with the backup."
)
CONFIRMATION_PROMPT = "Are you sure you want to continue? (yes/no): "


class RollbackOutcome(str, Enum):
    """How a rollback run that did not raise ended."""

    CANCELLED = "cancelled"
    RESTORED = "restored"


class RollbackResult(BaseModel):
    """Summary of a completed or cancelled rollback run."""

    outcome: RollbackOutcome
    backup_path: Path
    safety_backup_path: Path | None = None
    previous_version: str | None = None
    current_version: str | None = None


def is_confirmed(answer: str) -> bool:
    """Only "yes", in any letter case, confirms."""
    return answer.lower() == "yes"


class RollbackOrchestrator:
    """
    Restores the Plex data directory from a backup.

    Attributes:
        config: Application configuration.
        packages: Package manager, used for the informational version lines.
        backups: Backup store holding the archives.
        service: Service controller for the Plex service.
        preflight: Preflight checks; None skips them.
        confirm: Prompt function returning the operator's answer.
    """

    def __init__(
        self,
        config: AppConfig,
        packages: PackageManager,
        backups: BackupStore,
        service: ServiceController,
        preflight: Preflight | None = None,
        confirm: Callable[[str], str] = input,
    ) -> None:
        self.config = config
        self.packages = packages
        self.backups = backups
        self.service = service
        self.preflight = preflight
        self.confirm = confirm

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        confirm: Callable[[str], str] = input,
    ) -> RollbackOrchestrator:
        """Build an orchestrator wired to dpkg, systemd and tar archives."""
        return cls(
            config=config,
            packages=DpkgPackageManager(
                config.plex.package_name,
                timeout=config.service.command_timeout_seconds,
            ),
            backups=BackupStore(config.paths.backup_dir, TarArchiver()),
            service=build_service_controller(config),
            preflight=Preflight(
                config.paths.download_dir,
                config.paths.backup_dir,
                config.logging.log_file.parent,
                config.backup.min_free_space_mb,
            ),
            confirm=confirm,
        )

    async def run(self, backup: str | Path | None = None) -> RollbackResult:
        """
        Roll back to a backup.

        Args:
            backup: Path or file name of the archive to restore. Defaults to
                the most recently modified backup.

        Returns:
            RollbackResult with outcome CANCELLED or RESTORED.

        Raises:
            UpdaterError: On any fatal condition.
        """
        logger.info("========================================")
        logger.info("Plex Media Server Rollback Started")
        logger.info("========================================")

        if self.preflight is not None:
            self.preflight.run_for_rollback()

        previous_version = await self.packages.query_installed_version()
        logger.info(f"Current Plex version: {describe_version(previous_version)}")

        if backup is None:
            logger.info("No backup specified, using most recent backup")
            backup_path = self.backups.latest_backup().path
        else:
            backup_path = self.backups.resolve_backup(backup)
        logger.info(f"Selected backup: {backup_path}")

        self.backups.validate_backup(backup_path)

        if not self._ask_confirmation():
            logger.info("Rollback cancelled by user")
            return RollbackResult(
                outcome=RollbackOutcome.CANCELLED,
                backup_path=backup_path,
                previous_version=previous_version,
                current_version=previous_version,
            )

        data_dir = self.config.plex.data_dir
        safety_backup_path = self._create_safety_backup(data_dir)

        await self.service.stop()

        logger.info(f"Restoring configuration from backup: {backup_path}")
        remove_directory(data_dir)
        self.backups.archiver.extract(backup_path, data_dir.parent)

        user = self.config.plex.service_user
        if restore_ownership(data_dir, user):
            logger.info(f"Ownership of {data_dir} restored to {user}")
        else:
            logger.warning(f"User {user} not found, skipping ownership change")
        logger.info("Configuration restored successfully")

        await self.service.start()

        if not await self.service.verify():
            message = "Rollback completed but Plex service failed to start"
            if safety_backup_path is not None:
                message += (
                    f". Configuration before rollback saved at: {safety_backup_path}"
                )
            raise VerificationMismatchError(
                message,
                details={
                    "service": self.config.plex.service_name,
                    "backup": str(backup_path),
                    "safety_backup": (
                        str(safety_backup_path) if safety_backup_path else None
                    ),
                },
            )

        current_version = await self.packages.query_installed_version()

        logger.info("========================================")
        logger.info("Rollback completed successfully!")
        logger.info(f"Previous version: {describe_version(previous_version)}")
        logger.info(f"Current version: {describe_version(current_version)}")
        if safety_backup_path is not None:
            logger.info(
                f"Configuration before rollback saved at: {safety_backup_path}"
            )
        logger.info("========================================")

        return RollbackResult(
            outcome=RollbackOutcome.RESTORED,
            backup_path=backup_path,
            safety_backup_path=safety_backup_path,
            previous_version=previous_version,
            current_version=current_version,
        )

    def _ask_confirmation(self) -> bool:
        logger.warning(CONFIRMATION_WARNING)
        try:
            answer = self.confirm(CONFIRMATION_PROMPT)
        except EOFError:
            # stdin closed
            return False
        return is_confirmed(answer)

    def _create_safety_backup(self, data_dir: Path) -> Path | None:
        logger.info("Creating safety backup of current configuration...")
        try:
            record = self.backups.create_backup(data_dir, prefix=SAFETY_PREFIX)
        except SourceMissingError:
            logger.warning(
                f"Plex directory not found: {data_dir} (skipping safety backup)"
            )
            return None
        return record.path
