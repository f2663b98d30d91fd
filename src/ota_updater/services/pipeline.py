"""Install pipeline: drives one update request through the state machine."""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

from ota_updater.errors import NoUpdateAvailableError
from ota_updater.models.session import PendingUpdate
from ota_updater.services.deploy import DeployService, StagedPackage
from ota_updater.services.download import DownloadService
from ota_updater.services.state_machine import UpdateStateMachine


class SourceKind(str, Enum):
    FILE = "file"
    URL = "url"


@dataclass(frozen=True)
class UpdateSource:
    """Where an update package comes from."""

    kind: SourceKind
    location: str

    def describe(self) -> str:
        return self.location


class UpdatePipeline:
    """Runs pre-flight, confirmation and deployment for one request at a time.

    The state machine guarantees at most one run is active; the pipeline only
    performs the work and reports each step as a transition.
    """

    def __init__(
        self,
        state_machine: UpdateStateMachine,
        download_service: DownloadService,
        deploy_service: DeployService,
        auto_install: bool = False,
    ):
        self.logger = logging.getLogger("ota_updater.pipeline")
        self.state_machine = state_machine
        self.download_service = download_service
        self.deploy_service = deploy_service
        self.auto_install = auto_install

    async def run(self, source: UpdateSource) -> None:
        """Process an accepted install request.

        Expects the state machine in Clearing (begin_install already applied).
        Errors end the session in Failed and are not raised; cancellation fails
        the session and is re-raised.
        """
        sm = self.state_machine
        staged_download: Optional[Path] = None

        try:
            # Pre-flight (Clearing)
            try:
                self.download_service.clear_staging()
                removed = self.deploy_service.clear_old_deployments()
                if removed:
                    self.logger.info(f"Cleared {removed} old deployment(s)")

                if source.kind == SourceKind.URL:
                    sm.update_details(f"Downloading {source.location}")
                    staged_download = await self.download_service.fetch_url(
                        source.location,
                        on_progress=lambda pct: sm.update_details(
                            f"Downloading {source.location} ({pct}%)"
                        ),
                    )
                    package_path = staged_download
                else:
                    package_path = self.download_service.resolve_file(source.location)

                sm.update_details(f"Verifying {source.describe()}")
                package = await self.deploy_service.inspect_package(package_path)
            except NoUpdateAvailableError as e:
                self.logger.info(str(e))
                sm.nothing_to_install(str(e))
                return

            sm.preflight_passed()

            if self._requires_confirmation(package):
                if not await self._wait_for_confirmation(package, source):
                    return

            deployment = await self.deploy_service.deploy_package(
                package, on_progress=sm.report_progress
            )
            sm.complete(deployment)

        except asyncio.CancelledError:
            self.logger.warning(f"Update pipeline for {source.describe()} cancelled")
            if sm.is_active:
                sm.fail("Update pipeline cancelled")
            raise
        except Exception as e:
            self.logger.error(f"Failed to install update from {source.describe()}: {e}", exc_info=True)
            if sm.is_active:
                sm.fail(str(e))
        finally:
            if staged_download is not None:
                staged_download.unlink(missing_ok=True)

    def _requires_confirmation(self, package: StagedPackage) -> bool:
        return not self.auto_install or package.manifest.requires_confirmation

    async def _wait_for_confirmation(
        self, package: StagedPackage, source: UpdateSource
    ) -> bool:
        """Surface the pending update and wait for the decision.

        Returns:
            True if accepted, False if rejected or the episode ended otherwise
        """
        pending = PendingUpdate(
            version=package.version,
            changelog=package.changelog,
            source=source.describe(),
        )
        self.logger.info(f"Waiting for user confirmation to install {package.version}...")
        decision = self.state_machine.await_confirmation(pending)

        try:
            accepted = await asyncio.shield(decision)
        except asyncio.CancelledError:
            if not decision.cancelled():
                # The pipeline task itself was cancelled
                raise
            self.logger.warning("Confirmation episode ended without a decision")
            return False

        if accepted:
            self.logger.info("Update accepted by user: proceeding...")
            return True

        self.logger.info("Update rejected by user")
        return False
