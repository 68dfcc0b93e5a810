"""
Update and rollback machinery for Plex Media Server.

This package implements:
- Backend interfaces for the package manager, service, release feed and
  archiver, with dpkg, systemd, Plex downloads API and tarfile implementations
- The backup store with retention of regular backups
- Service control with a settle period after each transition
- Version resolution by exact string equality
- The update and rollback orchestrators
"""

from plex_updater.updates.archive import TarArchiver
from plex_updater.updates.backends import (
    Archiver,
    PackageManager,
    PlexRelease,
    ReleaseFeed,
    ServiceManager,
)
from plex_updater.updates.backups import (
    ANY_BACKUP_PATTERN,
    SAFETY_PREFIX,
    STANDARD_BACKUP_PATTERN,
    STANDARD_PREFIX,
    BackupRecord,
    BackupStore,
)
from plex_updater.updates.dpkg_backend import DpkgPackageManager
from plex_updater.updates.lock import RunLock
from plex_updater.updates.plex_feed import PlexReleaseFeed
from plex_updater.updates.preflight import Preflight
from plex_updater.updates.rollback import (
    RollbackOrchestrator,
    RollbackOutcome,
    RollbackResult,
)
from plex_updater.updates.systemd_service import (
    ServiceController,
    SystemdServiceManager,
)
from plex_updater.updates.update import (
    UpdateOrchestrator,
    UpdateOutcome,
    UpdateResult,
    UpdateStep,
)
from plex_updater.updates.version import (
    VersionComparison,
    VersionResolver,
    compare_versions,
)

__all__ = [
    # Backends
    "Archiver",
    "PackageManager",
    "PlexRelease",
    "ReleaseFeed",
    "ServiceManager",
    "DpkgPackageManager",
    "PlexReleaseFeed",
    "SystemdServiceManager",
    "TarArchiver",
    # Backups
    "BackupRecord",
    "BackupStore",
    "ANY_BACKUP_PATTERN",
    "STANDARD_BACKUP_PATTERN",
    "STANDARD_PREFIX",
    "SAFETY_PREFIX",
    # Service control
    "ServiceController",
    # Versions
    "VersionComparison",
    "VersionResolver",
    "compare_versions",
    # Orchestration
    "Preflight",
    "RunLock",
    "UpdateOrchestrator",
    "UpdateOutcome",
    "UpdateResult",
    "UpdateStep",
    "RollbackOrchestrator",
    "RollbackOutcome",
    "RollbackResult",
]
