"""
Tests for the rollback orchestrator.

Tests cover:
- Restoring the most recent backup and an explicitly named one
- Confirmation handling and cancellation
- The pre-rollback safety backup
- Failure handling
"""

from __future__ import annotations

import os
import shutil
import time
from datetime import datetime, timedelta
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from conftest import FakePackageManager, FakeServiceManager

from plex_updater.config import AppConfig
from plex_updater.errors import (
    BackupNotFoundError,
    InvalidBackupError,
    ServiceControlError,
    VerificationMismatchError,
)
from plex_updater.updates.backups import BackupStore
from plex_updater.updates.rollback import (
    CONFIRMATION_PROMPT,
    RollbackOrchestrator,
    RollbackOutcome,
    is_confirmed,
)
from plex_updater.updates.systemd_service import ServiceController


def make_orchestrator(
    config: AppConfig,
    backups: BackupStore,
    service: ServiceController,
    answer: str = "yes",
    packages: FakePackageManager | None = None,
    preflight: MagicMock | None = None,
) -> RollbackOrchestrator:
    return RollbackOrchestrator(
        config=config,
        packages=packages or FakePackageManager(),
        backups=backups,
        service=service,
        preflight=preflight,
        confirm=lambda _prompt: answer,
    )


def snapshot_backup(
    backup_store: BackupStore,
    data_dir: Path,
    preferences: str,
    age_seconds: int,
) -> Path:
    """Back up data_dir with the given Preferences.xml and age the archive."""
    (data_dir / "Preferences.xml").write_text(preferences)
    record = backup_store.create_backup(
        data_dir, timestamp=_unique_timestamp(age_seconds)
    )
    mtime = time.time() - age_seconds
    os.utime(record.path, (mtime, mtime))
    return record.path


def _unique_timestamp(age_seconds: int) -> datetime:
    return datetime(2026, 1, 10, 12, 0, 0) - timedelta(seconds=age_seconds)


# =============================================================================
# is_confirmed Tests
# =============================================================================


class TestIsConfirmed:
    """Tests for is_confirmed."""

    @pytest.mark.parametrize("answer", ["yes", "YES", "Yes", "yEs"])
    def test_yes_confirms(self, answer: str) -> None:
        """Test "yes" in any case confirms."""
        assert is_confirmed(answer) is True

    @pytest.mark.parametrize(
        "answer", ["", "y", "no", "yess", "yes please", "ok", " yes", "yes "]
    )
    def test_anything_else_declines(self, answer: str) -> None:
        """Test other answers, including padded "yes", decline."""
        assert is_confirmed(answer) is False


# =============================================================================
# Restore Tests
# =============================================================================


class TestRollbackRestore:
    """Tests for successful rollbacks."""

    @pytest.mark.asyncio
    async def test_restores_most_recent_backup(
        self,
        app_config: AppConfig,
        data_dir: Path,
        backup_store: BackupStore,
        service_manager: FakeServiceManager,
        service_controller: ServiceController,
    ) -> None:
        """Test the newest backup by mtime is restored by default."""
        snapshot_backup(backup_store, data_dir, "older", age_seconds=7200)
        newest = snapshot_backup(backup_store, data_dir, "newer", age_seconds=60)
        (data_dir / "Preferences.xml").write_text("broken")
        (data_dir / "junk.tmp").write_text("x")

        result = await make_orchestrator(
            app_config, backup_store, service_controller
        ).run()

        assert result.outcome == RollbackOutcome.RESTORED
        assert result.backup_path == newest
        assert (data_dir / "Preferences.xml").read_text() == "newer"
        assert not (data_dir / "junk.tmp").exists()
        assert (data_dir / "Plug-in Support" / "Databases" / "library.db").exists()
        assert service_manager.calls == ["stop", "start"]

    @pytest.mark.asyncio
    async def test_restores_named_backup(
        self,
        app_config: AppConfig,
        data_dir: Path,
        backup_store: BackupStore,
        service_controller: ServiceController,
    ) -> None:
        """Test a backup given by file name is looked up in the backup dir."""
        older = snapshot_backup(backup_store, data_dir, "older", age_seconds=7200)
        snapshot_backup(backup_store, data_dir, "newer", age_seconds=60)

        result = await make_orchestrator(
            app_config, backup_store, service_controller
        ).run(older.name)

        assert result.backup_path == older
        assert (data_dir / "Preferences.xml").read_text() == "older"

    @pytest.mark.asyncio
    async def test_restores_backup_by_path(
        self,
        tmp_path: Path,
        app_config: AppConfig,
        data_dir: Path,
        backup_store: BackupStore,
        service_controller: ServiceController,
    ) -> None:
        """Test a backup given as a path outside the backup dir is used."""
        archive = snapshot_backup(backup_store, data_dir, "elsewhere", age_seconds=60)
        moved = tmp_path / archive.name
        archive.rename(moved)

        result = await make_orchestrator(
            app_config, backup_store, service_controller
        ).run(moved)

        assert result.backup_path == moved
        assert (data_dir / "Preferences.xml").read_text() == "elsewhere"

    @pytest.mark.asyncio
    async def test_takes_safety_backup(
        self,
        app_config: AppConfig,
        data_dir: Path,
        backup_store: BackupStore,
        service_controller: ServiceController,
    ) -> None:
        """Test the current directory is saved before it is replaced."""
        snapshot_backup(backup_store, data_dir, "restored", age_seconds=60)
        (data_dir / "Preferences.xml").write_text("current")

        result = await make_orchestrator(
            app_config, backup_store, service_controller
        ).run()

        assert result.safety_backup_path is not None
        assert result.safety_backup_path.name.startswith("plex-backup-pre-rollback-")

        restore_dir = data_dir.parent / "check"
        restore_dir.mkdir()
        backup_store.archiver.extract(result.safety_backup_path, restore_dir)
        saved = restore_dir / data_dir.name / "Preferences.xml"
        assert saved.read_text() == "current"

    @pytest.mark.asyncio
    async def test_missing_data_dir_skips_safety_backup(
        self,
        app_config: AppConfig,
        data_dir: Path,
        backup_store: BackupStore,
        service_controller: ServiceController,
    ) -> None:
        """Test a rollback proceeds without a safety backup if nothing exists."""
        archive = snapshot_backup(backup_store, data_dir, "restored", age_seconds=60)
        shutil.rmtree(data_dir)

        result = await make_orchestrator(
            app_config, backup_store, service_controller
        ).run()

        assert result.outcome == RollbackOutcome.RESTORED
        assert result.safety_backup_path is None
        assert [r.path for r in backup_store.list_backups()] == [archive]
        assert (data_dir / "Preferences.xml").read_text() == "restored"

    @pytest.mark.asyncio
    async def test_does_not_prune(
        self,
        app_config: AppConfig,
        data_dir: Path,
        backup_store: BackupStore,
        service_controller: ServiceController,
    ) -> None:
        """Test rollback never deletes backups."""
        for i in range(app_config.backup.keep + 2):
            snapshot_backup(backup_store, data_dir, f"v{i}", age_seconds=600 + i)

        await make_orchestrator(app_config, backup_store, service_controller).run()

        # Every regular backup plus the new safety backup
        assert len(backup_store.list_backups()) == app_config.backup.keep + 3

    @pytest.mark.asyncio
    async def test_applies_ownership(
        self,
        app_config: AppConfig,
        data_dir: Path,
        backup_store: BackupStore,
        service_controller: ServiceController,
    ) -> None:
        """Test ownership is reapplied to the configured service user."""
        snapshot_backup(backup_store, data_dir, "restored", age_seconds=60)

        with patch(
            "plex_updater.updates.rollback.restore_ownership", return_value=True
        ) as mock_chown:
            await make_orchestrator(
                app_config, backup_store, service_controller
            ).run()

        mock_chown.assert_called_once_with(data_dir, app_config.plex.service_user)

    @pytest.mark.asyncio
    async def test_runs_rollback_preflight(
        self,
        app_config: AppConfig,
        data_dir: Path,
        backup_store: BackupStore,
        service_controller: ServiceController,
    ) -> None:
        """Test the rollback preflight is run."""
        snapshot_backup(backup_store, data_dir, "restored", age_seconds=60)
        preflight = MagicMock()

        await make_orchestrator(
            app_config, backup_store, service_controller, preflight=preflight
        ).run()

        preflight.run_for_rollback.assert_called_once()
        preflight.run_for_update.assert_not_called()


# =============================================================================
# Cancellation Tests
# =============================================================================


class TestRollbackCancellation:
    """Tests for declining the confirmation prompt."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("answer", ["no", "", "y"])
    async def test_decline_touches_nothing(
        self,
        answer: str,
        app_config: AppConfig,
        data_dir: Path,
        backup_store: BackupStore,
        service_manager: FakeServiceManager,
        service_controller: ServiceController,
    ) -> None:
        """Test a declined prompt leaves files, backups and service alone."""
        snapshot_backup(backup_store, data_dir, "backup", age_seconds=60)
        (data_dir / "Preferences.xml").write_text("current")
        backups_before = backup_store.list_backups()

        result = await make_orchestrator(
            app_config, backup_store, service_controller, answer=answer
        ).run()

        assert result.outcome == RollbackOutcome.CANCELLED
        assert (data_dir / "Preferences.xml").read_text() == "current"
        assert backup_store.list_backups() == backups_before
        assert service_manager.calls == []

    @pytest.mark.asyncio
    async def test_eof_cancels(
        self,
        app_config: AppConfig,
        data_dir: Path,
        backup_store: BackupStore,
        service_manager: FakeServiceManager,
        service_controller: ServiceController,
    ) -> None:
        """Test closed stdin at the prompt cancels the rollback."""
        snapshot_backup(backup_store, data_dir, "backup", age_seconds=60)
        confirm = MagicMock(side_effect=EOFError)

        orchestrator = RollbackOrchestrator(
            config=app_config,
            packages=FakePackageManager(),
            backups=backup_store,
            service=service_controller,
            confirm=confirm,
        )
        result = await orchestrator.run()

        assert result.outcome == RollbackOutcome.CANCELLED
        confirm.assert_called_once_with(CONFIRMATION_PROMPT)
        assert service_manager.calls == []


# =============================================================================
# Failure Tests
# =============================================================================


class TestRollbackFailures:
    """Tests for rollback failure handling."""

    @pytest.mark.asyncio
    async def test_no_backups(
        self,
        app_config: AppConfig,
        backup_store: BackupStore,
        service_controller: ServiceController,
    ) -> None:
        """Test an empty backup directory raises BackupNotFoundError."""
        with pytest.raises(BackupNotFoundError):
            await make_orchestrator(
                app_config, backup_store, service_controller
            ).run()

    @pytest.mark.asyncio
    async def test_unknown_backup_name(
        self,
        app_config: AppConfig,
        backup_store: BackupStore,
        service_manager: FakeServiceManager,
        service_controller: ServiceController,
    ) -> None:
        """Test a name that resolves to nothing is reported as invalid."""
        with pytest.raises(InvalidBackupError) as exc_info:
            await make_orchestrator(
                app_config, backup_store, service_controller
            ).run("plex-backup-19990101-000000.tar.gz")

        assert "Backup file not found" in exc_info.value.message
        assert service_manager.calls == []

    @pytest.mark.asyncio
    async def test_corrupted_backup_rejected_before_prompt(
        self,
        app_config: AppConfig,
        data_dir: Path,
        backup_store: BackupStore,
        service_controller: ServiceController,
    ) -> None:
        """Test a corrupted archive fails validation before confirmation."""
        backup_dir = app_config.paths.backup_dir
        backup_dir.mkdir(parents=True, exist_ok=True)
        bad = backup_dir / "plex-backup-20260101-120000.tar.gz"
        bad.write_bytes(b"not a tarball")
        confirm = MagicMock(return_value="yes")

        orchestrator = RollbackOrchestrator(
            config=app_config,
            packages=FakePackageManager(),
            backups=backup_store,
            service=service_controller,
            confirm=confirm,
        )
        with pytest.raises(InvalidBackupError):
            await orchestrator.run()

        confirm.assert_not_called()
        assert (data_dir / "Preferences.xml").exists()

    @pytest.mark.asyncio
    async def test_stop_failure_leaves_directory(
        self,
        app_config: AppConfig,
        data_dir: Path,
        backup_store: BackupStore,
    ) -> None:
        """Test a failed stop aborts before the directory is replaced."""
        snapshot_backup(backup_store, data_dir, "backup", age_seconds=60)
        (data_dir / "Preferences.xml").write_text("current")
        manager = FakeServiceManager(stop_error=ServiceControlError("stop failed"))
        controller = ServiceController(manager, stop_settle=0, start_settle=0)

        with pytest.raises(ServiceControlError):
            await make_orchestrator(app_config, backup_store, controller).run()

        assert (data_dir / "Preferences.xml").read_text() == "current"

    @pytest.mark.asyncio
    async def test_service_not_running_after_restore(
        self,
        app_config: AppConfig,
        data_dir: Path,
        backup_store: BackupStore,
    ) -> None:
        """Test verification failure names the safety backup."""
        snapshot_backup(backup_store, data_dir, "backup", age_seconds=60)
        manager = FakeServiceManager(fails_to_start=True)
        controller = ServiceController(manager, stop_settle=0, start_settle=0)

        with pytest.raises(VerificationMismatchError) as exc_info:
            await make_orchestrator(app_config, backup_store, controller).run()

        safety = exc_info.value.details["safety_backup"]
        assert safety is not None
        assert safety in exc_info.value.message
        assert (data_dir / "Preferences.xml").read_text() == "backup"
