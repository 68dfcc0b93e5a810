"""
Plex downloads API release feed.

The feed is a JSON document of the form:

    {"computer": {"Linux": {"version": "1.41.4.9463-630c9f557",
                            "releases": [{"build": "linux-aarch64",
                                          "distro": "debian",
                                          "url": "https://..."}, ...]}}}

The release for this host is the first entry whose build is exactly
"linux-<arch>" and whose distro is the configured one or "ubuntu" (the Debian
and Ubuntu packages are the same build).
"""

from __future__ import annotations

from pathlib import Path
from typing import Any
from urllib.parse import unquote, urlparse

import httpx
from pydantic import BaseModel, Field, ValidationError

from plex_updater.config import PLEX_DOWNLOADS_URL
from plex_updater.errors import DownloadError, FetchError
from plex_updater.logging import get_logger
from plex_updater.updates.backends import PlexRelease, ReleaseFeed

logger = get_logger(__name__)

FALLBACK_DISTRO = "ubuntu"

_DOWNLOAD_CHUNK_SIZE = 64 * 1024


class FeedRelease(BaseModel):
    """One entry of computer.Linux.releases."""

    build: str = ""
    distro: str = ""
    url: str = ""


class FeedPlatform(BaseModel):
    """The computer.Linux section of the feed."""

    version: str
    releases: list[FeedRelease] = Field(default_factory=list)


def select_release(
    platform: FeedPlatform,
    arch: str,
    distro: str,
) -> PlexRelease | None:
    """
    Pick the first release matching the build architecture and distro.

    Returns:
        The matching release, or None.
    """
    build = f"linux-{arch}"
    accepted = {distro, FALLBACK_DISTRO}

    for release in platform.releases:
        if release.build == build and release.distro in accepted and release.url:
            return PlexRelease(
                version=platform.version,
                url=release.url,
                build=release.build,
                distro=release.distro,
            )
    return None


def parse_feed(data: Any) -> FeedPlatform:
    """
    Extract the Linux platform section from a decoded feed document.

    Raises:
        FetchError: If the document does not have the expected shape.
    """
    try:
        linux = data["computer"]["Linux"]
        return FeedPlatform.model_validate(linux)
    except (KeyError, TypeError, ValidationError) as e:
        raise FetchError(
            "Unexpected release feed format",
            details={"error": str(e)},
        ) from e


def package_filename(url: str) -> str:
    """Return the file name a download URL should be saved as."""
    name = Path(unquote(urlparse(url).path)).name
    if not name:
        raise DownloadError(
            f"Cannot derive a file name from download URL: {url}",
            details={"url": url},
        )
    return name


class PlexReleaseFeed(ReleaseFeed):
    """
    ReleaseFeed backed by the Plex downloads API.

    Attributes:
        feed_url: URL of the JSON release feed.
        timeout: Timeout for the feed request in seconds.
        download_timeout: Timeout for package downloads in seconds.
    """

    def __init__(
        self,
        feed_url: str = PLEX_DOWNLOADS_URL,
        timeout: float = 30.0,
        download_timeout: float = 600.0,
    ) -> None:
        self.feed_url = feed_url
        self.timeout = timeout
        self.download_timeout = download_timeout

    async def fetch_latest_release(self, arch: str, distro: str) -> PlexRelease:
        logger.info("Fetching latest version information...")

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(self.feed_url)
                response.raise_for_status()
        except httpx.HTTPError as e:
            raise FetchError(
                "Failed to fetch version information from Plex",
                details={"url": self.feed_url, "error": str(e)},
            ) from e

        if not response.content.strip():
            raise FetchError(
                "Failed to fetch version information from Plex",
                details={"url": self.feed_url, "error": "empty response"},
            )

        try:
            data = response.json()
        except ValueError as e:
            raise FetchError(
                "Invalid version information from Plex",
                details={"url": self.feed_url, "error": str(e)},
            ) from e

        platform = parse_feed(data)
        if not platform.version:
            raise FetchError(
                "Release feed did not include a version",
                details={"url": self.feed_url},
            )

        release = select_release(platform, arch, distro)
        if release is None:
            raise FetchError(
                f"Could not find download URL for {distro}/{arch}",
                details={"arch": arch, "distro": distro, "version": platform.version},
            )

        return release

    async def download(self, url: str, dest_dir: Path) -> Path:
        output_path = dest_dir / package_filename(url)
        logger.info(f"Downloading Plex package from: {url}")

        try:
            async with httpx.AsyncClient(
                timeout=self.download_timeout, follow_redirects=True
            ) as client:
                async with client.stream("GET", url) as response:
                    response.raise_for_status()
                    with open(output_path, "wb") as f:
                        async for chunk in response.aiter_bytes(_DOWNLOAD_CHUNK_SIZE):
                            f.write(chunk)
        except (httpx.HTTPError, OSError) as e:
            output_path.unlink(missing_ok=True)
            raise DownloadError(
                "Failed to download package",
                details={"url": url, "path": str(output_path), "error": str(e)},
            ) from e

        logger.info(f"Download complete: {output_path}")
        return output_path
