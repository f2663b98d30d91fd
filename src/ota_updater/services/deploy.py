"""Deployment service: package inspection, extraction and activation.

Directory structure:
    deployments/
    ├── v1.0.0/              # Deployment directory
    ├── v2.0.0/
    └── current -> v2.0.0/   # Active deployment (symlink)
"""

import asyncio
import json
import os
import shutil
import threading
import zipfile
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional
import logging

from pydantic import ValidationError

from ota_updater.models.manifest import PackageManifest, extract_version_from_changelog
from ota_updater.services.process import ProcessManager
from ota_updater.utils.verification import verify_sha512_or_raise


@dataclass(frozen=True)
class StagedPackage:
    """A package that passed inspection and checksum verification."""

    path: Path
    manifest: PackageManifest
    changelog: str
    version: str


class DeployService:
    """Handles manifest-driven package deployment with atomic activation."""

    def __init__(
        self,
        deployments_dir: Path,
        process_manager: Optional[ProcessManager] = None,
    ):
        """Initialize deployment service.

        Args:
            deployments_dir: Root directory holding one directory per deployment
            process_manager: Runner for install scripts (created if None)
        """
        self.logger = logging.getLogger("ota_updater.deploy")
        self.deployments_dir = Path(deployments_dir)
        self.current_link = self.deployments_dir / "current"
        self.process_manager = process_manager or ProcessManager()

        self.deployments_dir.mkdir(parents=True, exist_ok=True)
        # The deployment active at service start is never pruned
        self.booted_deployment = self.current_deployment()

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    async def inspect_package(self, package_path: Path) -> StagedPackage:
        """Read manifest.json and CHANGELOG and verify every payload checksum.

        Hashing runs in a worker thread; the event loop keeps serving
        commands and watchers meanwhile.

        Raises:
            FileNotFoundError: If manifest.json, CHANGELOG or a payload member is missing
            ValueError: If the archive, manifest or a checksum is invalid
        """
        return await asyncio.to_thread(self._inspect, package_path)

    def _inspect(self, package_path: Path) -> StagedPackage:
        try:
            with zipfile.ZipFile(package_path, "r") as zf:
                names = set(zf.namelist())
                if "manifest.json" not in names:
                    raise FileNotFoundError("manifest.json not found in package root")
                if "CHANGELOG" not in names:
                    raise FileNotFoundError("CHANGELOG not found in package root")

                manifest = PackageManifest(**json.loads(zf.read("manifest.json").decode("utf-8")))
                changelog = zf.read("CHANGELOG").decode("utf-8")
                self.logger.info(f"Read CHANGELOG file: {len(changelog)} bytes")

                for entry in manifest.files:
                    if entry.src not in names:
                        raise FileNotFoundError(f"Source file {entry.src} not found in package")
                    with zf.open(entry.src) as member:
                        verify_sha512_or_raise(member, entry.sha512, entry.src)

        except zipfile.BadZipFile as e:
            raise ValueError(f"Invalid ZIP package: {e}")
        except UnicodeDecodeError as e:
            raise ValueError(f"Package text is not valid UTF-8: {e}")
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid manifest JSON: {e}")
        except ValidationError as e:
            raise ValueError(f"Invalid manifest: {e.error_count()} validation error(s)")

        version = manifest.version or extract_version_from_changelog(changelog)
        self.logger.info(
            f"Package verified: version={version}, files={len(manifest.files)}"
        )
        return StagedPackage(
            path=package_path, manifest=manifest, changelog=changelog, version=version
        )

    # ------------------------------------------------------------------
    # Deployment
    # ------------------------------------------------------------------

    async def deploy_package(
        self,
        package: StagedPackage,
        on_progress: Optional[Callable[[int], None]] = None,
    ) -> str:
        """Extract the package into a new deployment and make it current.

        Extraction runs in a worker thread; on_progress is always invoked on
        the calling event loop, in order. Cancelling the call stops the
        extraction at the next chunk and removes the partial directory.

        Args:
            package: Verified package from inspect_package
            on_progress: Called with percentages in 5% steps

        Returns:
            Name of the new deployment

        Raises:
            IOError: If file operations fail
        """
        name = self._deployment_name(package.version)
        final_dir = self.deployments_dir / name
        partial_dir = self.deployments_dir / f".{name}.partial"
        previous = self.current_deployment()

        self.logger.info(f"Starting deployment {name} for version {package.version}")

        loop = asyncio.get_running_loop()
        stop = threading.Event()

        def deliver(pct: int) -> None:
            # Runs on the loop; nothing is reported once the call was cancelled
            if on_progress is not None and not stop.is_set():
                on_progress(pct)

        def report(pct: int) -> None:
            loop.call_soon_threadsafe(deliver, pct)

        try:
            await asyncio.to_thread(
                self._extract, package, partial_dir, final_dir, report, stop
            )
        except asyncio.CancelledError:
            stop.set()
            raise

        if package.manifest.install_script:
            await self.process_manager.run_install_script(
                final_dir / package.manifest.install_script,
                final_dir,
                self.deployments_dir,
                name,
                previous or "",
            )

        self.set_current(final_dir)
        self.logger.info(f"Installed deployment {name}")
        return name

    def _extract(
        self,
        package: StagedPackage,
        partial_dir: Path,
        final_dir: Path,
        report: Callable[[int], None],
        stop: threading.Event,
    ) -> None:
        shutil.rmtree(partial_dir, ignore_errors=True)
        partial_dir.mkdir(parents=True)

        try:
            with zipfile.ZipFile(package.path, "r") as zf:
                total = sum(zf.getinfo(f.src).file_size for f in package.manifest.files) or 1
                written = 0
                last_progress = -5
                for entry in package.manifest.files:
                    dst_path = partial_dir / entry.dst
                    dst_path.parent.mkdir(parents=True, exist_ok=True)
                    with zf.open(entry.src) as src_file, open(dst_path, "wb") as dst_file:
                        while chunk := src_file.read(64 * 1024):
                            if stop.is_set():
                                raise InterruptedError("Extraction cancelled")
                            dst_file.write(chunk)
                            written += len(chunk)
                            current = int(written * 100 / total)
                            if current >= last_progress + 5 or (
                                current == 100 and last_progress != 100
                            ):
                                last_progress = current
                                report(current)
                    if entry.mode is not None:
                        dst_path.chmod(entry.mode)
                    self.logger.debug(f"Deployed {entry.src} -> {entry.dst}")

            # Atomic rename to final destination
            partial_dir.rename(final_dir)
        except Exception as e:
            shutil.rmtree(partial_dir, ignore_errors=True)
            self.logger.error(f"Failed to deploy {final_dir.name}: {e}")
            raise

    def set_current(self, target: Path) -> None:
        """Atomically point the current symlink at a deployment directory.

        Raises:
            FileNotFoundError: If target does not exist
            OSError: If symlink update fails
        """
        if not target.exists():
            raise FileNotFoundError(f"Target does not exist: {target}")

        temp_link = self.deployments_dir / f".current.tmp.{os.getpid()}"
        try:
            temp_link.symlink_to(os.path.relpath(target, self.deployments_dir))
            temp_link.replace(self.current_link)
        except OSError as e:
            temp_link.unlink(missing_ok=True)
            raise OSError(f"Failed to update symlink {self.current_link}: {e}") from e

        self.logger.info(f"Updated symlink: {self.current_link} -> {target.name}")

    def current_deployment(self) -> Optional[str]:
        """Name of the active deployment, or None if none is set."""
        if not self.current_link.is_symlink():
            return None
        return self.current_link.resolve().name

    def list_deployments(self) -> list[str]:
        """Names of all complete deployment directories."""
        return sorted(
            p.name
            for p in self.deployments_dir.iterdir()
            if p.is_dir() and not p.is_symlink() and not p.name.startswith(".")
        )

    def clear_old_deployments(self) -> int:
        """Delete deployments other than the booted and the current one.

        Leftover partial extractions are removed as well.

        Returns:
            Number of deployments removed
        """
        keep = {self.booted_deployment, self.current_deployment()}
        removed = 0

        for partial in self.deployments_dir.glob(".*.partial"):
            shutil.rmtree(partial, ignore_errors=True)

        for name in self.list_deployments():
            if name in keep:
                continue
            self.logger.info(f"Deleting old deployment {name}")
            shutil.rmtree(self.deployments_dir / name)
            removed += 1
        return removed

    def _deployment_name(self, version: str) -> str:
        safe = "".join(c if c.isalnum() or c in ".-_" else "_" for c in version)
        name = f"v{safe}"
        if (self.deployments_dir / name).exists():
            name = f"{name}-{datetime.now().strftime('%Y%m%d_%H%M%S_%f')}"
        return name
