"""
Configuration management for the Plex updater.

This module implements the AppConfig Pydantic model and configuration loading.
The configuration is built once at startup, frozen, and passed explicitly to
every component.

Configuration is loaded from multiple sources with layered precedence:
1. Built-in defaults (Pydantic model defaults)
2. Config file (/etc/plex-updater/config.yml or --config path); YAML, or a
   legacy shell-style config.conf
3. Environment variables (PLEX_UPDATER_* prefix, __ for nesting)
4. Command-line overrides (highest precedence)
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from plex_updater.errors import ConfigError

DEFAULT_CONFIG_PATH = Path("/etc/plex-updater/config.yml")
DEFAULT_ENV_PREFIX = "PLEX_UPDATER_"

PLEX_DOWNLOADS_URL = "https://plex.tv/api/downloads/5.json"


class _FrozenModel(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        coerce_numbers_to_str=True,
    )


# =============================================================================
# Plex Configuration
# =============================================================================


class PlexConfig(_FrozenModel):
    """Settings describing the managed Plex installation.

    Attributes:
        arch: Build architecture as used in the release feed ("linux-<arch>").
        distro: Distro label of the release to install.
        package_name: Debian package name.
        service_name: systemd unit name.
        service_user: Account that owns the data directory.
        data_dir: The managed directory that is backed up and restored.
        feed_url: Release feed URL.
        package_extension: File extension of downloaded packages.
    """

    arch: str = Field(
        default="aarch64",
        description="Build architecture, e.g. 'aarch64', 'armv7hf_neon', 'x86_64'",
    )
    distro: str = Field(
        default="debian",
        description="Distro label of the release ('ubuntu' is always accepted too)",
    )
    package_name: str = Field(
        default="plexmediaserver",
        description="Package name known to dpkg",
    )
    service_name: str = Field(
        default="plexmediaserver",
        description="systemd service name",
    )
    service_user: str = Field(
        default="plex",
        description="Account owning the restored data directory",
    )
    data_dir: Path = Field(
        default=Path(
            "/var/lib/plexmediaserver/Library/Application Support/Plex Media Server"
        ),
        description="Plex data directory archived before updates",
    )
    feed_url: str = Field(
        default=PLEX_DOWNLOADS_URL,
        description="JSON release feed URL",
    )
    package_extension: str = Field(
        default=".deb",
        description="Extension of downloaded package files removed on cleanup",
    )

    @field_validator("arch", "distro", "package_name", "service_name")
    @classmethod
    def validate_not_blank(cls, v: str) -> str:
        """Reject empty identifiers."""
        v = v.strip()
        if not v:
            raise ValueError("Value must not be empty")
        return v

    @field_validator("package_extension")
    @classmethod
    def validate_extension(cls, v: str) -> str:
        """Normalize the extension to start with a dot."""
        v = v.strip()
        if not v:
            raise ValueError("Package extension must not be empty")
        return v if v.startswith(".") else f".{v}"


# =============================================================================
# Paths Configuration
# =============================================================================


class PathsConfig(_FrozenModel):
    """Working directories.

    Attributes:
        download_dir: Staging directory for downloaded packages.
        backup_dir: Directory holding backup archives.
        lock_file: Advisory lock held for the duration of a run.
    """

    download_dir: Path = Field(
        default=Path("/tmp/plex-updates"),
        description="Staging directory for downloaded packages",
    )
    backup_dir: Path = Field(
        default=Path("/var/backups/plex"),
        description="Directory holding backup archives",
    )
    lock_file: Path = Field(
        default=Path("/run/lock/plex-updater.lock"),
        description="Lock file preventing concurrent update/rollback runs",
    )


# =============================================================================
# Backup Configuration
# =============================================================================


class BackupConfig(_FrozenModel):
    """Backup retention and disk-space thresholds.

    Attributes:
        keep: Number of regular backups kept after each new one.
        min_free_space_mb: Minimum free space required in the download directory.
    """

    keep: int = Field(
        default=5,
        ge=1,
        description="Number of regular backups to keep",
    )
    min_free_space_mb: int = Field(
        default=500,
        ge=0,
        description="Minimum free space (MB) in the download directory",
    )


# =============================================================================
# Service Configuration
# =============================================================================


class ServiceConfig(_FrozenModel):
    """Service control timing.

    Attributes:
        stop_settle_seconds: Maximum wait for the service to become inactive.
        start_settle_seconds: Maximum wait for the service to become active.
        poll_interval_seconds: Interval between state checks while settling.
        command_timeout_seconds: Timeout for systemctl and dpkg commands.
    """

    stop_settle_seconds: float = Field(default=3.0, ge=0)
    start_settle_seconds: float = Field(default=5.0, ge=0)
    poll_interval_seconds: float = Field(default=1.0, gt=0)
    command_timeout_seconds: float = Field(default=120.0, gt=0)


# =============================================================================
# Network Configuration
# =============================================================================


class NetworkConfig(_FrozenModel):
    """HTTP timeouts.

    Attributes:
        feed_timeout_seconds: Timeout for the release feed request.
        download_timeout_seconds: Timeout for the package download.
    """

    feed_timeout_seconds: float = Field(default=30.0, gt=0)
    download_timeout_seconds: float = Field(default=600.0, gt=0)


# =============================================================================
# Logging Configuration
# =============================================================================


class LoggingConfig(_FrozenModel):
    """Logging configuration.

    Attributes:
        log_file: Persistent log file every run appends to.
        level: Log level.
        json_format: Emit JSON lines instead of plain audit lines.
        log_to_stdout: Whether to log to the console.
    """

    log_file: Path = Field(
        default=Path("/var/log/plex-updater/plex-update.log"),
        description="Persistent log file path",
    )
    level: str = Field(
        default="info",
        description="Log level: debug, info, warn, error",
    )
    json_format: bool = Field(
        default=False,
        description="Emit JSON-formatted log lines",
    )
    log_to_stdout: bool = Field(
        default=True,
        description="Whether to log to the console",
    )

    @field_validator("level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate and normalize log level."""
        valid_levels = {"debug", "info", "warn", "warning", "error", "critical"}
        v_lower = v.lower()
        if v_lower not in valid_levels:
            allowed = ", ".join(sorted(valid_levels))
            raise ValueError(f"Invalid log level: {v}. Must be one of: {allowed}")
        if v_lower == "warn":
            return "warning"
        return v_lower


# =============================================================================
# Main Application Configuration
# =============================================================================


class AppConfig(_FrozenModel):
    """
    Main application configuration model.

    Attributes:
        plex: Managed Plex installation settings.
        paths: Working directories.
        backup: Backup retention settings.
        service: Service control timing.
        network: HTTP timeouts.
        logging: Logging configuration.
    """

    plex: PlexConfig = Field(default_factory=PlexConfig)
    paths: PathsConfig = Field(default_factory=PathsConfig)
    backup: BackupConfig = Field(default_factory=BackupConfig)
    service: ServiceConfig = Field(default_factory=ServiceConfig)
    network: NetworkConfig = Field(default_factory=NetworkConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


# =============================================================================
# Configuration Loading Functions
# =============================================================================

# Variables of the shell config.conf used by earlier script-based installs.
LEGACY_KEY_MAP: dict[str, tuple[str, str]] = {
    "ARCH": ("plex", "arch"),
    "DISTRO": ("plex", "distro"),
    "PLEX_DIR": ("plex", "data_dir"),
    "SERVICE_NAME": ("plex", "service_name"),
    "DOWNLOAD_DIR": ("paths", "download_dir"),
    "BACKUP_DIR": ("paths", "backup_dir"),
    "LOG_FILE": ("logging", "log_file"),
}

_LEGACY_LINE = re.compile(r"^(?:export\s+)?([A-Z_][A-Z0-9_]*)=(.*)$")


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """
    Deep merge two dictionaries.

    Args:
        base: The base dictionary.
        override: The dictionary with values to override.

    Returns:
        A new dictionary with merged values.
    """
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _load_yaml_config(config_path: Path) -> dict[str, Any]:
    """
    Load configuration from a YAML file.

    Raises:
        FileNotFoundError: If the config file doesn't exist.
        yaml.YAMLError: If the YAML is invalid.
    """
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path) as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ValueError(f"Configuration file must contain a mapping: {config_path}")
    return data


def _load_legacy_config(config_path: Path) -> dict[str, Any]:
    """
    Load a shell-style config.conf of KEY="value" assignments.

    Comments, blank lines and unknown keys are ignored.

    Raises:
        FileNotFoundError: If the config file doesn't exist.
    """
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    result: dict[str, Any] = {}
    for raw_line in config_path.read_text().splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue

        match = _LEGACY_LINE.match(line)
        if match is None:
            continue

        key, value = match.groups()
        if key not in LEGACY_KEY_MAP:
            continue

        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
            value = value[1:-1]

        section, field = LEGACY_KEY_MAP[key]
        result.setdefault(section, {})[field] = value

    return result


def _load_config_file(config_path: Path) -> dict[str, Any]:
    """Load a config file, choosing the parser from its suffix."""
    if config_path.suffix == ".conf":
        return _load_legacy_config(config_path)
    return _load_yaml_config(config_path)


def _parse_env_value(value: str) -> Any:
    """
    Parse an environment variable value to appropriate Python type.

    Args:
        value: String value from environment variable.

    Returns:
        Parsed value (bool, int, float, or string).
    """
    if value.lower() in ("true", "yes", "on"):
        return True
    if value.lower() in ("false", "no", "off"):
        return False

    try:
        return int(value)
    except ValueError:
        pass

    try:
        return float(value)
    except ValueError:
        pass

    return value


def _load_env_config(prefix: str = DEFAULT_ENV_PREFIX) -> dict[str, Any]:
    """
    Load configuration from environment variables.

    Environment variables are parsed with the following rules:
    - Prefix: PLEX_UPDATER_ (configurable)
    - Nested keys: Double underscore (__) separator
    - Example: PLEX_UPDATER_BACKUP__KEEP=7

    Args:
        prefix: Environment variable prefix.

    Returns:
        Dictionary with configuration values.
    """
    result: dict[str, Any] = {}

    for key, value in os.environ.items():
        if not key.startswith(prefix):
            continue

        config_key = key[len(prefix) :].lower()
        parts = config_key.split("__")

        current = result
        for part in parts[:-1]:
            if part not in current:
                current[part] = {}
            current = current[part]

        current[parts[-1]] = _parse_env_value(value)

    return result


def load_config(
    config_path: Path | str | None = None,
    env_prefix: str = DEFAULT_ENV_PREFIX,
    overrides: dict[str, Any] | None = None,
) -> AppConfig:
    """
    Load configuration from all sources with layered precedence.

    Configuration is loaded from multiple sources in order:
    1. Built-in defaults (from AppConfig model)
    2. Config file (if specified or default exists)
    3. Environment variables (PLEX_UPDATER_* prefix)
    4. Explicit overrides (from the command line)

    Later sources override earlier ones.

    Args:
        config_path: Path to a YAML or legacy .conf file. If None, the default
            path is used when it exists.
        env_prefix: Prefix for environment variables.
        overrides: Nested dictionary of command-line overrides.

    Returns:
        Fully configured, frozen AppConfig instance.

    Raises:
        ConfigError: If the file is missing or unreadable, or a value is invalid.

    Example:
        >>> config = load_config(config_path="/etc/plex-updater/config.yml")
        >>> config.backup.keep
        5
    """
    config_dict: dict[str, Any] = {}

    if config_path is None:
        if DEFAULT_CONFIG_PATH.exists():
            config_path = DEFAULT_CONFIG_PATH
    elif isinstance(config_path, str):
        config_path = Path(config_path)

    if config_path is not None:
        try:
            file_config = _load_config_file(config_path)
        except (OSError, ValueError, yaml.YAMLError) as e:
            raise ConfigError(
                f"Failed to load configuration file: {config_path}",
                details={"path": str(config_path), "error": str(e)},
            ) from e
        config_dict = _deep_merge(config_dict, file_config)

    config_dict = _deep_merge(config_dict, _load_env_config(env_prefix))

    if overrides:
        config_dict = _deep_merge(config_dict, overrides)

    try:
        return AppConfig(**config_dict)
    except ValidationError as e:
        raise ConfigError(
            "Invalid configuration",
            details={"errors": e.errors(include_url=False, include_context=False)},
        ) from e
