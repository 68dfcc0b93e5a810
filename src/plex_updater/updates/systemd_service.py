"""
Systemd service control for the Plex updater.

SystemdServiceManager issues systemctl commands for the Plex unit.
ServiceController wraps any ServiceManager with the settle period that follows
each transition: after a stop or start command it polls the service state
until it reaches the expected state or the settle time runs out. Callers must
not assume the state is correct after stop()/start() returns; verify() is the
authoritative check.
"""

from __future__ import annotations

import asyncio

from plex_updater.errors import ServiceControlError
from plex_updater.logging import get_logger
from plex_updater.process_utils import CommandUnavailableError, run_command
from plex_updater.updates.backends import ServiceManager

logger = get_logger(__name__)

DEFAULT_SERVICE_NAME = "plexmediaserver"

# Time for Plex to release file handles after stopping, and to bind its ports
# after starting.
DEFAULT_STOP_SETTLE_SECONDS = 3.0
DEFAULT_START_SETTLE_SECONDS = 5.0
DEFAULT_POLL_INTERVAL_SECONDS = 1.0


class SystemdServiceManager(ServiceManager):
    """
    ServiceManager backed by systemctl.

    Attributes:
        service_name: Name of the systemd unit.
        timeout: Timeout for each systemctl invocation in seconds.
    """

    def __init__(
        self,
        service_name: str = DEFAULT_SERVICE_NAME,
        timeout: float = 120.0,
    ) -> None:
        self.service_name = service_name
        self.timeout = timeout

    async def _systemctl(self, action: str) -> None:
        try:
            returncode, stdout, stderr = await run_command(
                "systemctl", action, self.service_name, timeout=self.timeout
            )
        except CommandUnavailableError as e:
            raise ServiceControlError(
                f"Failed to {action} {self.service_name}: {e}",
                details={"service": self.service_name, "action": action},
            ) from e

        if returncode != 0:
            raise ServiceControlError(
                f"Failed to {action} {self.service_name}",
                details={
                    "service": self.service_name,
                    "action": action,
                    "returncode": returncode,
                    "output": (stderr or stdout).strip(),
                },
            )

    async def stop(self) -> None:
        await self._systemctl("stop")

    async def start(self) -> None:
        await self._systemctl("start")

    async def is_active(self) -> bool:
        try:
            returncode, _, _ = await run_command(
                "systemctl", "is-active", "--quiet", self.service_name, timeout=10.0
            )
        except CommandUnavailableError as e:
            logger.warning(f"Could not query service state: {e}")
            return False
        return returncode == 0


class ServiceController:
    """
    Stop/start/verify state transitions with a settle period.

    Attributes:
        manager: The underlying ServiceManager.
        stop_settle: Maximum seconds to wait for the service to stop.
        start_settle: Maximum seconds to wait for the service to start.
        poll_interval: Seconds between state checks while settling.
    """

    def __init__(
        self,
        manager: ServiceManager,
        stop_settle: float = DEFAULT_STOP_SETTLE_SECONDS,
        start_settle: float = DEFAULT_START_SETTLE_SECONDS,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
    ) -> None:
        self.manager = manager
        self.stop_settle = stop_settle
        self.start_settle = start_settle
        self.poll_interval = poll_interval

    async def stop(self) -> None:
        """
        Stop the service and wait for it to settle.

        Raises:
            ServiceControlError: If the stop command fails.
        """
        logger.info("Stopping Plex Media Server service...")
        await self.manager.stop()

        if not await self.wait_for_state(active=False, timeout=self.stop_settle):
            logger.warning(
                f"Plex service still active after {self.stop_settle}s settle period"
            )
        logger.info("Plex service stopped")

    async def start(self) -> None:
        """
        Start the service and wait for it to settle.

        Raises:
            ServiceControlError: If the start command fails.
        """
        logger.info("Starting Plex Media Server service...")
        await self.manager.start()

        if not await self.wait_for_state(active=True, timeout=self.start_settle):
            logger.warning(
                f"Plex service not active after {self.start_settle}s settle period"
            )
        logger.info("Plex service started")

    async def verify(self) -> bool:
        """Return whether the service is active. Does not wait or retry."""
        logger.info("Verifying Plex service is running...")
        active = await self.manager.is_active()
        if active:
            logger.info("Plex service is running")
        else:
            logger.error("Plex service is not running")
        return active

    async def wait_for_state(self, *, active: bool, timeout: float) -> bool:
        """
        Poll the service until it reaches the wanted state.

        Args:
            active: Wanted state.
            timeout: Maximum time to wait in seconds. Zero checks once.

        Returns:
            True if the state was reached, False on timeout.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        while True:
            if await self.manager.is_active() == active:
                return True

            remaining = deadline - loop.time()
            if remaining <= 0:
                return False

            await asyncio.sleep(min(self.poll_interval, remaining))
