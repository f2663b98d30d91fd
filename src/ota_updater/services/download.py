"""Package fetching for URL and file sources."""

import logging
from pathlib import Path
from typing import Callable, Optional
from urllib.parse import urlparse

import aiofiles
import httpx

from ota_updater.errors import NoUpdateAvailableError


class DownloadService:
    """Resolves an update source to a local package file."""

    def __init__(self, work_dir: Path, timeout: float = 30.0):
        """Initialize download service.

        Args:
            work_dir: Staging directory for downloaded packages
            timeout: HTTP timeout in seconds
        """
        self.logger = logging.getLogger("ota_updater.download")
        self.work_dir = Path(work_dir)
        self.timeout = timeout
        self.chunk_size = 64 * 1024  # 64KB chunks for progress granularity

    def staging_path(self, url: str) -> Path:
        """Local file a URL is downloaded to."""
        name = Path(urlparse(url).path).name or "package.zip"
        return self.work_dir / f"download-{name}"

    def clear_staging(self) -> int:
        """Delete leftover downloads from earlier sessions.

        Returns:
            Number of files removed
        """
        if not self.work_dir.exists():
            return 0
        removed = 0
        for stale in self.work_dir.glob("download-*"):
            stale.unlink(missing_ok=True)
            removed += 1
        if removed:
            self.logger.info(f"Removed {removed} stale staged package(s)")
        return removed

    async def fetch_url(
        self,
        url: str,
        on_progress: Optional[Callable[[int], None]] = None,
    ) -> Path:
        """Download a package into the staging directory.

        Args:
            url: HTTP/HTTPS URL of the package
            on_progress: Called with whole percentages (every 5%) when the
                server announces Content-Length

        Returns:
            Path to the downloaded file

        Raises:
            NoUpdateAvailableError: If the server answers with a non-2xx status
            httpx.HTTPError: On transport failures
        """
        target_path = self.staging_path(url)
        target_path.parent.mkdir(parents=True, exist_ok=True)
        self.logger.info(f"Downloading update from {url}")

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                async with client.stream("GET", url) as response:
                    if not response.is_success:
                        if response.status_code == 404:
                            self.logger.info(f"No update available (404 Not Found) at {url}")
                        else:
                            self.logger.info(
                                f"Server returned {response.status_code} at {url}: "
                                f"treating as no update available"
                            )
                        raise NoUpdateAvailableError(
                            f"No update available at {url} (HTTP {response.status_code})"
                        )

                    total = int(response.headers.get("content-length", 0) or 0)
                    if total:
                        self.logger.info(f"Download size: {total} bytes")

                    received = 0
                    last_progress = -5
                    async with aiofiles.open(target_path, "wb") as f:
                        async for chunk in response.aiter_bytes(chunk_size=self.chunk_size):
                            await f.write(chunk)
                            received += len(chunk)

                            if total and on_progress is not None:
                                current = min(100, int(received * 100 / total))
                                step = current >= last_progress + 5
                                if step or (current == 100 and last_progress != 100):
                                    last_progress = current
                                    on_progress(current)
        except BaseException:
            target_path.unlink(missing_ok=True)
            raise

        self.logger.info(f"Downloaded {received} bytes to {target_path}")
        return target_path

    def resolve_file(self, path: str) -> Path:
        """Validate a local package path.

        Raises:
            FileNotFoundError: If the path is missing or not a regular file
        """
        package_path = Path(path)
        if not package_path.is_file():
            raise FileNotFoundError(f"File does not exist: {path}")
        self.logger.info(f"Opening update archive from file: {package_path}")
        return package_path
