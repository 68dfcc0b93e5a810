"""
Plex Media Server updater.

This package checks the installed Plex Media Server package against the
latest published release, backs up the server's data directory, installs the
new package and restarts the service. A companion rollback path restores a
previous backup of the data directory.
"""

__version__ = "0.1.0"
