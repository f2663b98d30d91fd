"""Global pytest fixtures and configuration."""

import asyncio
import hashlib
import json
import sys
import zipfile
from pathlib import Path

import pytest

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from ota_updater.config import Settings  # noqa: E402


@pytest.fixture
def temp_dir(tmp_path):
    """Create a temporary directory for test files."""
    yield tmp_path


@pytest.fixture
def settings(tmp_path):
    """Settings pointing every path into the test's temporary directory."""
    return Settings(
        work_dir=tmp_path / "work",
        deployments_dir=tmp_path / "deployments",
        log_file=str(tmp_path / "logs" / "ota-updater.log"),
        update_url=None,
        watch_keepalive=0.05,
    )


def sha512_hex(data: bytes) -> str:
    return hashlib.sha512(data).hexdigest()


@pytest.fixture
def make_package(tmp_path):
    """Factory building update packages (ZIP with manifest.json and CHANGELOG).

    Usage:
        path = make_package(version="2.0.0", files={"bin/app": b"..."})
    """
    counter = {"n": 0}

    def _build(
        version="2.0.0",
        files=None,
        changelog=None,
        requires_confirmation=False,
        install_script=None,
        manifest=None,
        tamper=None,
        include_changelog=True,
        name=None,
    ) -> Path:
        counter["n"] += 1
        files = files if files is not None else {"bin/app": b"app payload v" + (version or "").encode()}
        if changelog is None:
            changelog = f"Version {version}\n\nNew Features:\n- Faster boot\n"

        if manifest is None:
            manifest = {
                "requires_confirmation": requires_confirmation,
                "files": [
                    {"src": src, "dst": src, "sha512": sha512_hex(content)}
                    for src, content in files.items()
                ],
            }
            if version is not None:
                manifest["version"] = version
            if install_script is not None:
                manifest["install_script"] = install_script

        package_path = tmp_path / (name or f"package-{counter['n']}.zip")
        with zipfile.ZipFile(package_path, "w") as zf:
            zf.writestr("manifest.json", json.dumps(manifest))
            if include_changelog:
                zf.writestr("CHANGELOG", changelog)
            for index, (src, content) in enumerate(files.items()):
                # tamper replaces the first payload after its hash was recorded
                if index == 0 and tamper is not None:
                    content = tamper
                zf.writestr(src, content)
        return package_path

    return _build


@pytest.fixture
def wait_for_phase():
    """Return a coroutine function waiting until a state machine reaches a phase."""

    async def _wait(state_machine, phase, timeout=2.0):
        async def _poll():
            while state_machine.phase != phase:
                await asyncio.sleep(0.01)

        await asyncio.wait_for(_poll(), timeout)

    return _wait
