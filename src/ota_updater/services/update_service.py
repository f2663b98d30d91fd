"""Command surface of the update service."""

import asyncio
import logging
from pathlib import Path
from typing import Optional

from ota_updater.config import Settings
from ota_updater.errors import InvalidArgumentError
from ota_updater.models.session import PendingUpdate, SessionSnapshot
from ota_updater.services.deploy import DeployService
from ota_updater.services.download import DownloadService
from ota_updater.services.notification import NotificationChannel, Watcher
from ota_updater.services.pipeline import SourceKind, UpdatePipeline, UpdateSource
from ota_updater.services.state_machine import UpdateStateMachine


class UpdateService:
    """Owns the session state and serializes every command against it.

    Must be created and used on the service event loop. Install commands
    apply their first transition before returning, so the busy check and the
    transition cannot be separated by another command.
    """

    def __init__(
        self,
        settings: Settings,
        pipeline: Optional[UpdatePipeline] = None,
    ):
        self.logger = logging.getLogger("ota_updater.service")
        self.settings = settings
        self.channel = NotificationChannel(max_backlog=settings.watcher_backlog)
        self.state_machine = UpdateStateMachine(self.channel)
        self.pipeline = pipeline or UpdatePipeline(
            self.state_machine,
            DownloadService(settings.work_dir, timeout=settings.download_timeout),
            DeployService(settings.deployments_dir),
            auto_install=settings.auto_install_updates,
        )
        self._tasks: set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def get_status(self) -> SessionSnapshot:
        return self.state_machine.snapshot()

    def install_from_file(self, path: str) -> str:
        """Start installing a local package file.

        Raises:
            InvalidArgumentError: If the path is empty or not a file
            BusyError: If a pipeline is active
        """
        self.state_machine.check_installable()
        if not path:
            raise InvalidArgumentError("File path must not be empty")
        if not Path(path).is_file():
            raise InvalidArgumentError(f"File does not exist: {path}")
        self._start(UpdateSource(SourceKind.FILE, path))
        return f"Update request queued for file: {path}"

    def install_from_url(self, url: str) -> str:
        """Start installing a package downloaded from a URL.

        Raises:
            InvalidArgumentError: If the URL is not http(s)
            BusyError: If a pipeline is active
        """
        self.state_machine.check_installable()
        if not url.startswith(("http://", "https://")):
            raise InvalidArgumentError(f"Unsupported update URL: {url!r}")
        self._start(UpdateSource(SourceKind.URL, url))
        return f"Update request queued for URL: {url}"

    def get_pending_update(self) -> PendingUpdate:
        """Raises NoPendingUpdateError outside AwaitingConfirmation."""
        return self.state_machine.pending_update()

    def confirm_update(self, accept: bool) -> str:
        """Raises NoPendingUpdateError outside AwaitingConfirmation."""
        message = self.state_machine.confirm(accept)
        self.logger.info(f"Confirmation received: accept={accept}")
        return message

    def subscribe(self) -> Watcher:
        """Register a watcher; the current snapshot is its first event."""
        return self.channel.subscribe(self.state_machine.snapshot())

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def shutdown(self) -> None:
        """Cancel every pipeline task still running and end every watch stream."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks.clear()
        self.channel.close_all()
        self.logger.info("Update service stopped")

    async def wait_idle(self) -> None:
        """Wait for every pipeline task, including ones still unwinding."""
        while self._tasks:
            await asyncio.shield(asyncio.gather(*self._tasks))

    def _start(self, source: UpdateSource) -> None:
        self.state_machine.begin_install(source.describe())
        # A rejected run may still be unwinding when the next one starts
        task = asyncio.get_running_loop().create_task(
            self.pipeline.run(source), name=f"update-pipeline:{source.kind.value}"
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        self.logger.info(f"Update request accepted: {source.kind.value} {source.location}")
