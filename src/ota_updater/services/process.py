"""Process management for deployment install scripts."""

import asyncio
import logging
from pathlib import Path


class ProcessManager:
    """Runs the install script shipped inside a deployment."""

    def __init__(self):
        """Initialize process manager."""
        self.logger = logging.getLogger("ota_updater.process")

    async def run_install_script(self, script_path: Path, *args: object) -> int:
        """Execute an install script with the given arguments.

        A non-zero exit status is logged but not raised: the deployment is
        already extracted and remains usable.

        Args:
            script_path: Executable inside the new deployment
            *args: Positional arguments passed to the script

        Returns:
            Script exit code

        Raises:
            RuntimeError: If the script is missing or cannot be executed
        """
        if not script_path.is_file():
            raise RuntimeError(f"Install script does not exist: {script_path}")

        self.logger.info(f"Running install script {script_path.name}")
        try:
            process = await asyncio.create_subprocess_exec(
                str(script_path),
                *[str(a) for a in args],
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise RuntimeError(f"Failed to execute install script: {e}") from e

        stdout, stderr = await process.communicate()
        if stdout:
            self.logger.debug(f"Install script stdout: {stdout.decode(errors='replace')}")

        if process.returncode != 0:
            self.logger.warning(
                f"Install script exited with non-zero status {process.returncode}: "
                f"{stderr.decode(errors='replace').strip()}"
            )
        else:
            self.logger.info("Install script completed successfully")
        return process.returncode
