"""Startup update check against the configured update URL."""

import asyncio
import logging
from typing import Optional

from ota_updater.errors import BusyError, InvalidArgumentError
from ota_updater.services.update_service import UpdateService


class UpdateChecker:
    """Submits one install-from-URL request shortly after startup.

    Retries while the service is busy; stops after the first accepted
    request or when stopped.
    """

    def __init__(self, service: UpdateService, update_url: str, delay: float = 0.5):
        self.logger = logging.getLogger("ota_updater.checker")
        self.service = service
        self.update_url = update_url
        self.delay = delay
        self._stop = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self.requested = False

    def start(self) -> None:
        self._task = asyncio.get_running_loop().create_task(
            self.run(), name="update-checker"
        )

    async def stop(self) -> None:
        self._stop.set()
        if self._task is not None:
            await self._task
            self._task = None

    async def run(self) -> None:
        self.logger.info(f"Periodic URL checker started for {self.update_url}")

        while not self.requested:
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.delay)
                self.logger.info("Periodic URL checker received termination signal")
                break
            except asyncio.TimeoutError:
                pass

            self.logger.info(f"Checking for updates at {self.update_url}")
            try:
                self.service.install_from_url(self.update_url)
                self.requested = True
                self.logger.info("Periodic update request sent")
            except BusyError as e:
                self.logger.info(f"Update check postponed: {e}")
            except InvalidArgumentError as e:
                self.logger.error(f"Update URL rejected: {e}")
                break

        self.logger.info("Periodic URL checker stopped")
