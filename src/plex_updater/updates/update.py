"""
Update orchestration for Plex Media Server.

The update run is a strictly linear sequence:

    preflight -> resolve versions -> (equal: done)
              -> backup -> prune -> download -> stop -> install
              -> start -> verify -> confirm version -> cleanup

Every step before the service is stopped is safe to retry. Running the update
when the installed version already equals the published one changes nothing.

Failure handling:
- Preflight, version resolution, backup, download, stop: abort.
- Install: try to start the service again so Plex is not left down, then
  abort with the install error.
- Start: abort.
- Verify: abort; no automatic rollback and no cleanup. The backup taken in
  this run is the recovery point for a manual rollback.
- Version confirmation: a mismatch is reported and recorded in the result,
  the install is not undone and cleanup still runs.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path

from pydantic import BaseModel, Field

from plex_updater.config import AppConfig
from plex_updater.errors import (
    NotInstalledError,
    ServiceControlError,
    UpdaterError,
    VerificationMismatchError,
)
from plex_updater.logging import get_logger
from plex_updater.updates.archive import TarArchiver
from plex_updater.updates.backends import ReleaseFeed
from plex_updater.updates.backups import STANDARD_BACKUP_PATTERN, BackupStore
from plex_updater.updates.dpkg_backend import DpkgPackageManager
from plex_updater.updates.operations import cleanup_downloads
from plex_updater.updates.plex_feed import PlexReleaseFeed
from plex_updater.updates.preflight import Preflight
from plex_updater.updates.systemd_service import (
    ServiceController,
    SystemdServiceManager,
)
from plex_updater.updates.version import VersionComparison, VersionResolver

logger = get_logger(__name__)


class UpdateStep(str, Enum):
    """Steps of an update run, in order."""

    PREFLIGHT = "preflight"
    RESOLVING = "resolving"
    BACKING_UP = "backing_up"
    DOWNLOADING = "downloading"
    STOPPING = "stopping"
    INSTALLING = "installing"
    STARTING = "starting"
    VERIFYING = "verifying"
    CLEANING_UP = "cleaning_up"
    DONE = "done"


class UpdateOutcome(str, Enum):
    """How an update run that did not raise ended."""

    UP_TO_DATE = "up_to_date"
    UPDATED = "updated"
    VERSION_MISMATCH = "version_mismatch"


class UpdateResult(BaseModel):
    """Summary of a completed update run."""

    outcome: UpdateOutcome
    previous_version: str
    target_version: str
    installed_version: str | None = Field(
        default=None,
        description="Version reported by the package manager after install",
    )
    backup_path: Path | None = None
    package_path: Path | None = None

    @property
    def succeeded(self) -> bool:
        return self.outcome != UpdateOutcome.VERSION_MISMATCH


class UpdateOrchestrator:
    """
    Runs the update sequence against injected collaborators.

    Attributes:
        config: Application configuration.
        resolver: Installed/latest version lookups.
        backups: Backup store for the Plex data directory.
        service: Service controller for the Plex service.
        feed: Release feed used to download the package.
        preflight: Preflight checks; None skips them.
    """

    def __init__(
        self,
        config: AppConfig,
        resolver: VersionResolver,
        backups: BackupStore,
        service: ServiceController,
        feed: ReleaseFeed,
        preflight: Preflight | None = None,
    ) -> None:
        self.config = config
        self.resolver = resolver
        self.backups = backups
        self.service = service
        self.feed = feed
        self.preflight = preflight
        self._step = UpdateStep.PREFLIGHT

    @classmethod
    def from_config(cls, config: AppConfig) -> UpdateOrchestrator:
        """Build an orchestrator wired to dpkg, systemd and the Plex feed."""
        packages = DpkgPackageManager(
            config.plex.package_name,
            timeout=config.service.command_timeout_seconds,
        )
        feed = PlexReleaseFeed(
            config.plex.feed_url,
            timeout=config.network.feed_timeout_seconds,
            download_timeout=config.network.download_timeout_seconds,
        )
        return cls(
            config=config,
            resolver=VersionResolver(
                packages, feed, config.plex.arch, config.plex.distro
            ),
            backups=BackupStore(config.paths.backup_dir, TarArchiver()),
            service=build_service_controller(config),
            feed=feed,
            preflight=Preflight(
                config.paths.download_dir,
                config.paths.backup_dir,
                config.logging.log_file.parent,
                config.backup.min_free_space_mb,
            ),
        )

    @property
    def step(self) -> UpdateStep:
        """The step the run is in, or failed in."""
        return self._step

    def _enter(self, step: UpdateStep) -> None:
        logger.debug(
            f"Update step: {self._step.value} -> {step.value}",
            extra={"old_step": self._step.value, "new_step": step.value},
        )
        self._step = step

    async def run(self) -> UpdateResult:
        """
        Run the update.

        Returns:
            UpdateResult describing an up-to-date, updated, or version-mismatch
            outcome.

        Raises:
            UpdaterError: On any fatal condition; see the module docstring.
        """
        logger.info("========================================")
        logger.info("Plex Media Server Update Started")
        logger.info("========================================")

        self._enter(UpdateStep.PREFLIGHT)
        if self.preflight is not None:
            self.preflight.run_for_update()

        self._enter(UpdateStep.RESOLVING)
        current_version = await self.resolver.installed_version()
        if current_version is None:
            raise NotInstalledError(
                "Plex Media Server is not installed",
                details={"package": self.config.plex.package_name},
            )
        logger.info(f"Current installed version: {current_version}")

        release = await self.resolver.latest_version()
        logger.info(f"Latest available version: {release.version}")

        if self.resolver.compare(current_version, release.version) == (
            VersionComparison.UP_TO_DATE
        ):
            logger.info("Plex is already up to date. No update needed.")
            logger.info("========================================")
            self._enter(UpdateStep.DONE)
            return UpdateResult(
                outcome=UpdateOutcome.UP_TO_DATE,
                previous_version=current_version,
                target_version=release.version,
                installed_version=current_version,
            )

        logger.info(f"Update available: {current_version} -> {release.version}")

        self._enter(UpdateStep.BACKING_UP)
        logger.info("Creating backup of Plex configuration...")
        backup = self.backups.create_backup(self.config.plex.data_dir)
        self.backups.prune_backups(
            keep=self.config.backup.keep, pattern=STANDARD_BACKUP_PATTERN
        )

        self._enter(UpdateStep.DOWNLOADING)
        package_path = await self.feed.download(
            release.url, self.config.paths.download_dir
        )
        await self.feed.verify_download(package_path, release)

        self._enter(UpdateStep.STOPPING)
        await self.service.stop()

        self._enter(UpdateStep.INSTALLING)
        try:
            await self.resolver.packages.install_package(package_path)
        except UpdaterError:
            logger.error("Package installation failed, restarting Plex service")
            await self._restart_after_failed_install()
            raise

        self._enter(UpdateStep.STARTING)
        await self.service.start()

        self._enter(UpdateStep.VERIFYING)
        if not await self.service.verify():
            raise VerificationMismatchError(
                "Update completed but service verification failed",
                details={
                    "service": self.config.plex.service_name,
                    "backup": str(backup.path),
                },
            )

        new_version = await self.resolver.installed_version()
        logger.info(f"New installed version: {new_version}")

        if new_version == release.version:
            outcome = UpdateOutcome.UPDATED
            logger.info(
                f"SUCCESS: Plex updated successfully from {current_version} "
                f"to {new_version}"
            )
        else:
            outcome = UpdateOutcome.VERSION_MISMATCH
            logger.error(
                f"Version mismatch after update. Expected: {release.version}, "
                f"Got: {new_version}"
            )

        self._enter(UpdateStep.CLEANING_UP)
        logger.info("Cleaning up downloaded packages...")
        cleanup_downloads(
            self.config.paths.download_dir, self.config.plex.package_extension
        )

        self._enter(UpdateStep.DONE)
        logger.info("========================================")
        logger.info("Plex Media Server Update Completed")
        logger.info("========================================")

        return UpdateResult(
            outcome=outcome,
            previous_version=current_version,
            target_version=release.version,
            installed_version=new_version,
            backup_path=backup.path,
            package_path=package_path,
        )

    async def _restart_after_failed_install(self) -> None:
        try:
            await self.service.start()
        except ServiceControlError as e:
            # The install error is what gets reported
            logger.error(f"Failed to restart Plex service: {e.message}")


def build_service_controller(config: AppConfig) -> ServiceController:
    """Build a ServiceController for the configured systemd unit."""
    return ServiceController(
        SystemdServiceManager(
            config.plex.service_name,
            timeout=config.service.command_timeout_seconds,
        ),
        stop_settle=config.service.stop_settle_seconds,
        start_settle=config.service.start_settle_seconds,
        poll_interval=config.service.poll_interval_seconds,
    )
