"""
Version resolution for the Plex updater.

Versions are opaque strings. The installed version comes from the package
manager and the latest version from the release feed; the two are compared
by exact string equality. No ordering is ever computed, so a feed that
publishes an older version than the installed one is treated as an update.
"""

from __future__ import annotations

from enum import Enum

from plex_updater.logging import get_logger
from plex_updater.updates.backends import PackageManager, PlexRelease, ReleaseFeed

logger = get_logger(__name__)

NOT_INSTALLED_LABEL = "Not installed"


class VersionComparison(str, Enum):
    """Result of comparing the installed and latest versions."""

    UP_TO_DATE = "up_to_date"
    UPDATE_AVAILABLE = "update_available"


def compare_versions(installed: str, latest: str) -> VersionComparison:
    """Compare two version strings by equality only."""
    if installed == latest:
        return VersionComparison.UP_TO_DATE
    return VersionComparison.UPDATE_AVAILABLE


def describe_version(version: str | None) -> str:
    """Return the version for log lines, or "Not installed"."""
    return version if version is not None else NOT_INSTALLED_LABEL


class VersionResolver:
    """
    Looks up the installed and latest Plex versions.

    Attributes:
        packages: Package manager for the installed version.
        feed: Release feed for the latest version.
        arch: Build architecture to select from the feed.
        distro: Distro label to select from the feed.
    """

    def __init__(
        self,
        packages: PackageManager,
        feed: ReleaseFeed,
        arch: str,
        distro: str,
    ) -> None:
        self.packages = packages
        self.feed = feed
        self.arch = arch
        self.distro = distro

    async def installed_version(self) -> str | None:
        """Return the installed version, or None if not installed."""
        return await self.packages.query_installed_version()

    async def latest_version(self) -> PlexRelease:
        """
        Return the latest release for this host.

        Raises:
            FetchError: If the feed cannot be read or has no matching release.
        """
        release = await self.feed.fetch_latest_release(self.arch, self.distro)
        logger.debug(
            "Selected release",
            extra={
                "build": release.build,
                "distro": release.distro,
                "url": release.url,
            },
        )
        return release

    def compare(self, installed: str, latest: str) -> VersionComparison:
        return compare_versions(installed, latest)
