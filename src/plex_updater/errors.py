"""
Error types for the Plex updater.

This module defines the UpdaterError base class and one subclass per failure
kind the update and rollback runs can hit. Every failure is raised as an
UpdaterError (or subclass) and surfaces at the command-line layer as a logged
line and a non-zero exit status.
"""

from __future__ import annotations

from typing import Any


class UpdaterError(Exception):
    """
    Base exception class for updater errors.

    Attributes:
        error_code: Internal error code string (e.g., "fetch_failed",
            "install_failed", "not_found").
        message: Human-readable error message.
        details: Optional structured details (e.g., paths, versions).

    Example:
        >>> raise UpdaterError(
        ...     error_code="fetch_failed",
        ...     message="Failed to fetch version information from Plex",
        ...     details={"url": "https://plex.tv/api/downloads/5.json"},
        ... )
    """

    def __init__(
        self,
        error_code: str,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        """
        Initialize an UpdaterError.

        Args:
            error_code: Internal error code string identifying the error category.
            message: Human-readable error message.
            details: Optional dictionary with structured error details.
        """
        super().__init__(message)
        self.error_code = error_code
        self.message = message
        self.details = details or {}

    def __repr__(self) -> str:
        """Return a detailed string representation."""
        return (
            f"{self.__class__.__name__}("
            f"error_code={self.error_code!r}, "
            f"message={self.message!r}, "
            f"details={self.details!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """
        Convert the error to a dictionary for serialization.

        Returns:
            Dictionary with error_code, message, and details.
        """
        return {
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class PrivilegeError(UpdaterError):
    """Raised when the process is not running with root privileges."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a PrivilegeError."""
        super().__init__(
            error_code="privilege_required", message=message, details=details
        )


class DependencyMissingError(UpdaterError):
    """Raised when a required external command is not on PATH."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a DependencyMissingError."""
        super().__init__(
            error_code="dependency_missing", message=message, details=details
        )


class DiskSpaceError(UpdaterError):
    """Raised when the download directory has less free space than required."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a DiskSpaceError."""
        super().__init__(error_code="disk_space", message=message, details=details)


class FetchError(UpdaterError):
    """
    Raised when the release feed is unreachable, unparsable, or has no
    release matching the configured architecture and distro.
    """

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        *,
        error_code: str = "fetch_failed",
    ) -> None:
        """Initialize a FetchError."""
        super().__init__(error_code=error_code, message=message, details=details)


class DownloadError(FetchError):
    """Raised when the package download fails."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a DownloadError."""
        super().__init__(message, details, error_code="download_failed")


class NotInstalledError(UpdaterError):
    """Raised when an update is requested but the package is not installed."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a NotInstalledError."""
        super().__init__(error_code="not_installed", message=message, details=details)


class BackupNotFoundError(UpdaterError):
    """Raised when no backup is available to restore."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a BackupNotFoundError."""
        super().__init__(error_code="not_found", message=message, details=details)


class InvalidBackupError(UpdaterError):
    """Raised when a backup archive is missing or cannot be read."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize an InvalidBackupError."""
        super().__init__(error_code="invalid_backup", message=message, details=details)


class SourceMissingError(UpdaterError):
    """Raised when the directory to back up does not exist."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a SourceMissingError."""
        super().__init__(error_code="source_missing", message=message, details=details)


class ArchiveError(UpdaterError):
    """Raised when creating or extracting a backup archive fails."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize an ArchiveError."""
        super().__init__(error_code="archive_failed", message=message, details=details)


class ServiceControlError(UpdaterError):
    """Raised when a service stop or start command fails."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a ServiceControlError."""
        super().__init__(
            error_code="service_control", message=message, details=details
        )


class InstallError(UpdaterError):
    """Raised when the package manager fails to install the downloaded package."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize an InstallError."""
        super().__init__(error_code="install_failed", message=message, details=details)


class VerificationMismatchError(UpdaterError):
    """
    Raised when the post-operation check fails: the service is not active,
    or the installed version is not the expected one.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a VerificationMismatchError."""
        super().__init__(
            error_code="verification_mismatch", message=message, details=details
        )


class ConcurrentRunError(UpdaterError):
    """Raised when another update or rollback run holds the run lock."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a ConcurrentRunError."""
        super().__init__(error_code="busy", message=message, details=details)


class ConfigError(UpdaterError):
    """Raised when the configuration cannot be loaded or is invalid."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a ConfigError."""
        super().__init__(error_code="invalid_config", message=message, details=details)
