"""
Subprocess helpers shared by the dpkg and systemctl backends.
"""

from __future__ import annotations

import asyncio


class CommandUnavailableError(Exception):
    """A command could not be executed or did not finish in time."""


async def run_command(
    *args: str,
    timeout: float = 120.0,
) -> tuple[int, str, str]:
    """
    Run a subprocess command asynchronously.

    Args:
        *args: Command and arguments.
        timeout: Command timeout in seconds.

    Returns:
        Tuple of (return_code, stdout, stderr).

    Raises:
        CommandUnavailableError: If the command times out or fails to execute.
    """
    try:
        process = await asyncio.create_subprocess_exec(
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        raise CommandUnavailableError(f"Failed to execute {args[0]}: {e}") from e

    try:
        stdout, stderr = await asyncio.wait_for(
            process.communicate(),
            timeout=timeout,
        )
    except TimeoutError as e:
        if process.returncode is None:
            process.kill()
            await process.wait()
        raise CommandUnavailableError(
            f"Command timed out after {timeout}s: {' '.join(args)}"
        ) from e

    return (
        process.returncode or 0,
        stdout.decode("utf-8", errors="replace") if stdout else "",
        stderr.decode("utf-8", errors="replace") if stderr else "",
    )
