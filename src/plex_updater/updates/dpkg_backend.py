"""
dpkg package manager backend for the Plex updater.

Queries and installs the Plex Media Server Debian package with dpkg, run as an
asyncio subprocess.
"""

from __future__ import annotations

from pathlib import Path

from plex_updater.errors import InstallError
from plex_updater.logging import get_logger
from plex_updater.process_utils import CommandUnavailableError, run_command
from plex_updater.updates.backends import PackageManager

logger = get_logger(__name__)

DEFAULT_PACKAGE_NAME = "plexmediaserver"


def parse_dpkg_list(output: str) -> str | None:
    """
    Extract the version from `dpkg -l <package>` output.

    Only a row whose status is "ii" (desired install, currently installed)
    counts; its third column is the version.
    """
    for line in output.splitlines():
        fields = line.split()
        if len(fields) >= 3 and fields[0] == "ii":
            return fields[2]
    return None


class DpkgPackageManager(PackageManager):
    """
    Package manager backed by dpkg.

    Attributes:
        package_name: Name of the managed Debian package.
        timeout: Timeout for each dpkg invocation in seconds.
    """

    def __init__(
        self,
        package_name: str = DEFAULT_PACKAGE_NAME,
        timeout: float = 120.0,
    ) -> None:
        self.package_name = package_name
        self.timeout = timeout

    async def query_installed_version(self) -> str | None:
        try:
            returncode, stdout, stderr = await run_command(
                "dpkg", "-l", self.package_name, timeout=self.timeout
            )
        except CommandUnavailableError as e:
            logger.warning(f"Could not query installed package: {e}")
            return None

        # dpkg -l exits non-zero when the package is unknown
        if returncode != 0:
            logger.debug(
                "Package not known to dpkg",
                extra={"package": self.package_name, "stderr": stderr.strip()},
            )
            return None

        return parse_dpkg_list(stdout)

    async def install_package(self, package_path: Path) -> None:
        logger.info(f"Installing Plex package: {package_path}")

        try:
            returncode, stdout, stderr = await run_command(
                "dpkg", "-i", str(package_path), timeout=self.timeout
            )
        except CommandUnavailableError as e:
            raise InstallError(
                f"Failed to install package: {e}",
                details={"package": str(package_path)},
            ) from e

        if returncode != 0:
            output = (stderr or stdout).strip()
            raise InstallError(
                "Failed to install package",
                details={
                    "package": str(package_path),
                    "returncode": returncode,
                    "output": output,
                },
            )

        logger.info("Package installed successfully")
