"""
Pytest configuration and shared fixtures for the Plex updater tests.

The four backend interfaces get in-memory fakes here; archives use the real
TarArchiver under tmp_path. No test needs root, systemd, dpkg or network.
"""

from __future__ import annotations

import logging
import os
from datetime import datetime
from pathlib import Path

import pytest

from plex_updater.config import AppConfig
from plex_updater.updates.archive import TarArchiver
from plex_updater.updates.backends import (
    PackageManager,
    PlexRelease,
    ReleaseFeed,
    ServiceManager,
)
from plex_updater.updates.backups import BackupStore, backup_filename
from plex_updater.updates.systemd_service import ServiceController

# Configure pytest-asyncio mode
pytest_plugins = ["pytest_asyncio"]


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers",
        "integration: marks tests as integration tests "
        "(deselect with '-m \"not integration\"')",
    )


# =============================================================================
# Backend Fakes
# =============================================================================


class FakePackageManager(PackageManager):
    """In-memory package database for one package."""

    def __init__(
        self,
        installed: str | None = "1.40.0.7998-c29d4c0c8",
        version_after_install: str | None = None,
        install_error: Exception | None = None,
    ) -> None:
        self.installed = installed
        self.version_after_install = version_after_install
        self.install_error = install_error
        self.installed_packages: list[Path] = []
        self.query_count = 0

    async def query_installed_version(self) -> str | None:
        self.query_count += 1
        return self.installed

    async def install_package(self, package_path: Path) -> None:
        self.installed_packages.append(package_path)
        if self.install_error is not None:
            raise self.install_error
        if self.version_after_install is not None:
            self.installed = self.version_after_install


class FakeServiceManager(ServiceManager):
    """Service whose state follows stop/start unless told otherwise."""

    def __init__(
        self,
        active: bool = True,
        stop_error: Exception | None = None,
        start_error: Exception | None = None,
        fails_to_start: bool = False,
    ) -> None:
        self.active = active
        self.stop_error = stop_error
        self.start_error = start_error
        self.fails_to_start = fails_to_start
        self.calls: list[str] = []

    async def stop(self) -> None:
        self.calls.append("stop")
        if self.stop_error is not None:
            raise self.stop_error
        self.active = False

    async def start(self) -> None:
        self.calls.append("start")
        if self.start_error is not None:
            raise self.start_error
        self.active = not self.fails_to_start

    async def is_active(self) -> bool:
        return self.active


class FakeReleaseFeed(ReleaseFeed):
    """Feed returning a fixed release and writing a small package file."""

    def __init__(
        self,
        release: PlexRelease | None = None,
        fetch_error: Exception | None = None,
        download_error: Exception | None = None,
    ) -> None:
        self.release = release or PlexRelease(
            version="1.41.4.9463-630c9f557",
            url=(
                "https://downloads.plex.tv/plex-media-server-new/"
                "1.41.4.9463-630c9f557/debian/"
                "plexmediaserver_1.41.4.9463-630c9f557_arm64.deb"
            ),
            build="linux-aarch64",
            distro="debian",
        )
        self.fetch_error = fetch_error
        self.download_error = download_error
        self.downloads: list[str] = []
        self.verified: list[Path] = []

    async def fetch_latest_release(self, arch: str, distro: str) -> PlexRelease:
        if self.fetch_error is not None:
            raise self.fetch_error
        return self.release

    async def download(self, url: str, dest_dir: Path) -> Path:
        self.downloads.append(url)
        if self.download_error is not None:
            raise self.download_error
        package_path = dest_dir / url.rsplit("/", 1)[-1]
        package_path.write_bytes(b"!<arch>\n")
        return package_path

    async def verify_download(self, package_path: Path, release: PlexRelease) -> None:
        self.verified.append(package_path)


# =============================================================================
# Helpers
# =============================================================================


def make_backup_file(
    backup_dir: Path,
    name: str,
    mtime: float,
    content: bytes = b"backup",
) -> Path:
    """Create a file in backup_dir with the given modification time."""
    backup_dir.mkdir(parents=True, exist_ok=True)
    path = backup_dir / name
    path.write_bytes(content)
    os.utime(path, (mtime, mtime))
    return path


def standard_name(day: int) -> str:
    """Regular backup file name for 2026-01-<day> 12:00:00."""
    return backup_filename("plex-backup", datetime(2026, 1, day, 12, 0, 0))


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    """A populated Plex data directory."""
    path = tmp_path / "plex" / "Library" / "Plex Media Server"
    (path / "Plug-in Support" / "Databases").mkdir(parents=True)
    (path / "Preferences.xml").write_text('<Preferences FriendlyName="pi"/>')
    (path / "Plug-in Support" / "Databases" / "library.db").write_bytes(b"db")
    return path


@pytest.fixture
def app_config(tmp_path: Path, data_dir: Path) -> AppConfig:
    """Configuration pointing every path into tmp_path, with no settle delay."""
    (tmp_path / "downloads").mkdir()
    return AppConfig(
        plex={"data_dir": data_dir, "service_user": "plex-test-no-such-user"},
        paths={
            "download_dir": tmp_path / "downloads",
            "backup_dir": tmp_path / "backups",
            "lock_file": tmp_path / "run" / "plex-updater.lock",
        },
        service={
            "stop_settle_seconds": 0,
            "start_settle_seconds": 0,
            "poll_interval_seconds": 0.01,
        },
        logging={"log_file": tmp_path / "log" / "plex-update.log"},
    )


@pytest.fixture
def backup_store(app_config: AppConfig) -> BackupStore:
    return BackupStore(app_config.paths.backup_dir, TarArchiver())


@pytest.fixture
def package_manager() -> FakePackageManager:
    return FakePackageManager()


@pytest.fixture
def service_manager() -> FakeServiceManager:
    return FakeServiceManager()


@pytest.fixture
def service_controller(service_manager: FakeServiceManager) -> ServiceController:
    return ServiceController(
        service_manager, stop_settle=0, start_settle=0, poll_interval=0.01
    )


@pytest.fixture
def release_feed() -> FakeReleaseFeed:
    return FakeReleaseFeed()


@pytest.fixture(autouse=True)
def _cleanup_loggers() -> None:
    """Remove handlers installed by setup_logging after each test."""
    yield
    logger = logging.getLogger("plex_updater")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(logging.NOTSET)
    logger.propagate = True
