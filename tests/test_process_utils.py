"""
Tests for subprocess helpers.
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from plex_updater.process_utils import CommandUnavailableError, run_command


class TestRunCommand:
    """Tests for run_command function."""

    @pytest.mark.asyncio
    async def test_success(self) -> None:
        """Test output is decoded and the return code passed through."""
        mock_process = MagicMock()
        mock_process.communicate = AsyncMock(return_value=(b"active\n", b""))
        mock_process.returncode = 0

        with patch(
            "asyncio.create_subprocess_exec", return_value=mock_process
        ) as mock_exec:
            result = await run_command("systemctl", "is-active", "plexmediaserver")

        assert result == (0, "active\n", "")
        assert mock_exec.call_args.args == (
            "systemctl",
            "is-active",
            "plexmediaserver",
        )

    @pytest.mark.asyncio
    async def test_nonzero_exit(self) -> None:
        """Test a failing command is not an exception."""
        mock_process = MagicMock()
        mock_process.communicate = AsyncMock(return_value=(b"", b"\xffbad\n"))
        mock_process.returncode = 3

        with patch("asyncio.create_subprocess_exec", return_value=mock_process):
            code, stdout, stderr = await run_command("dpkg", "-l", "plex")

        assert code == 3
        assert stdout == ""
        assert stderr.endswith("bad\n")

    @pytest.mark.asyncio
    async def test_command_not_found(self) -> None:
        """Test a missing executable raises CommandUnavailableError."""
        with patch(
            "asyncio.create_subprocess_exec",
            side_effect=FileNotFoundError("No such file"),
        ):
            with pytest.raises(CommandUnavailableError, match="Failed to execute dpkg"):
                await run_command("dpkg", "-i", "/tmp/p.deb")

    @pytest.mark.asyncio
    async def test_timeout_kills_process(self) -> None:
        """Test a command that does not finish in time is killed and reaped."""

        async def hang() -> tuple[bytes, bytes]:
            await asyncio.sleep(10)
            return b"", b""

        mock_process = MagicMock()
        mock_process.communicate = hang
        mock_process.returncode = None
        mock_process.wait = AsyncMock(return_value=-9)

        with patch("asyncio.create_subprocess_exec", return_value=mock_process):
            with pytest.raises(CommandUnavailableError, match="timed out after"):
                await run_command("dpkg", "-i", "/tmp/p.deb", timeout=0.01)

        mock_process.kill.assert_called_once()
        mock_process.wait.assert_awaited_once()
