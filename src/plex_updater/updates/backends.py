"""
Backend abstractions for the Plex updater.

The update and rollback runs talk to the outside world only through the narrow
interfaces defined here:

- PackageManager: query the installed version, install a package file
- ServiceManager: stop, start and query the managed service
- ReleaseFeed: fetch the latest release and download its package
- Archiver: create, list and extract backup archives

Each interface has one production implementation (dpkg, systemctl, the Plex
downloads API, tarfile) and the test suite provides fakes.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path

from pydantic import BaseModel, Field


class PlexRelease(BaseModel):
    """
    A release entry selected from the release feed.

    Attributes:
        version: Published version string, compared to the installed one by
            equality only.
        url: Download URL of the package.
        build: Build label of the entry (e.g. "linux-aarch64").
        distro: Distro label of the entry (e.g. "debian").
    """

    version: str = Field(..., description="Published version string")
    url: str = Field(..., description="Package download URL")
    build: str = Field(default="", description="Build label of the release")
    distro: str = Field(default="", description="Distro label of the release")


class PackageManager(ABC):
    """Access to the system package database for the managed package."""

    @abstractmethod
    async def query_installed_version(self) -> str | None:
        """
        Return the installed version of the managed package.

        Returns:
            Version string, or None if the package is not installed.
        """

    @abstractmethod
    async def install_package(self, package_path: Path) -> None:
        """
        Install a package file.

        Raises:
            InstallError: If installation fails.
        """


class ServiceManager(ABC):
    """Control of the managed service."""

    @abstractmethod
    async def stop(self) -> None:
        """
        Issue a stop command.

        Raises:
            ServiceControlError: If the stop command fails.
        """

    @abstractmethod
    async def start(self) -> None:
        """
        Issue a start command.

        Raises:
            ServiceControlError: If the start command fails.
        """

    @abstractmethod
    async def is_active(self) -> bool:
        """Return True if the service is currently active."""


class ReleaseFeed(ABC):
    """Source of published releases."""

    @abstractmethod
    async def fetch_latest_release(self, arch: str, distro: str) -> PlexRelease:
        """
        Fetch the latest release for a build architecture and distro.

        Raises:
            FetchError: If the feed is unreachable, unparsable, or has no
                matching release.
        """

    @abstractmethod
    async def download(self, url: str, dest_dir: Path) -> Path:
        """
        Download a package into dest_dir.

        Returns:
            Path of the downloaded file.

        Raises:
            DownloadError: If the download fails.
        """

    async def verify_download(self, package_path: Path, release: PlexRelease) -> None:
        """
        Verify a downloaded package before it is installed.

        Extension point for checksum or signature verification. The feed does
        not publish anything this implementation checks, so no verification is
        performed.
        """
        return None


class Archiver(ABC):
    """Creation and extraction of directory archives."""

    @abstractmethod
    def archive(self, src_dir: Path, dest_file: Path) -> None:
        """
        Archive src_dir into dest_file with src_dir's basename as content root.

        Raises:
            ArchiveError: If the archive cannot be written.
        """

    @abstractmethod
    def extract(self, src_file: Path, dest_dir: Path) -> None:
        """
        Extract src_file into dest_dir.

        Raises:
            ArchiveError: If the archive cannot be extracted.
        """

    @abstractmethod
    def list_members(self, src_file: Path) -> list[str]:
        """
        List the member names of an archive, reading it completely.

        Raises:
            ArchiveError: If the archive cannot be read.
        """
