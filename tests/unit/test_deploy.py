"""Unit tests for DeployService."""

import asyncio
import os
import threading
import zipfile
from unittest.mock import AsyncMock, MagicMock

import pytest

from ota_updater.services.deploy import DeployService


@pytest.mark.unit
class TestInspectPackage:
    """Manifest parsing and checksum verification."""

    @pytest.fixture
    def deploy_service(self, tmp_path):
        return DeployService(tmp_path / "deployments")

    @pytest.mark.asyncio
    async def test_inspect_valid_package(self, deploy_service, make_package):
        path = make_package(version="2.0.0", files={"bin/app": b"a", "etc/app.conf": b"b"})

        package = await deploy_service.inspect_package(path)

        assert package.version == "2.0.0"
        assert package.changelog.startswith("Version 2.0.0")
        assert [f.dst for f in package.manifest.files] == ["bin/app", "etc/app.conf"]

    @pytest.mark.asyncio
    async def test_version_falls_back_to_changelog(self, deploy_service, make_package):
        path = make_package(version=None, changelog="v1.5.0\n- Fixes\n")
        package = await deploy_service.inspect_package(path)
        assert package.version == "1.5.0"

    @pytest.mark.asyncio
    async def test_missing_changelog(self, deploy_service, make_package):
        path = make_package(include_changelog=False)
        with pytest.raises(FileNotFoundError, match="CHANGELOG"):
            await deploy_service.inspect_package(path)

    @pytest.mark.asyncio
    async def test_missing_payload(self, deploy_service, make_package):
        manifest = {"files": [{"src": "bin/ghost", "dst": "bin/ghost", "sha512": "0" * 128}]}
        path = make_package(manifest=manifest)
        with pytest.raises(FileNotFoundError, match="bin/ghost"):
            await deploy_service.inspect_package(path)

    @pytest.mark.asyncio
    async def test_checksum_mismatch(self, deploy_service, make_package):
        path = make_package(files={"bin/app": b"genuine"}, tamper=b"tampered")
        with pytest.raises(ValueError, match="CHECKSUM_MISMATCH: bin/app"):
            await deploy_service.inspect_package(path)

    @pytest.mark.asyncio
    async def test_not_a_zip(self, deploy_service, tmp_path):
        path = tmp_path / "garbage.zip"
        path.write_bytes(b"this is not a zip archive")
        with pytest.raises(ValueError, match="Invalid ZIP"):
            await deploy_service.inspect_package(path)

    @pytest.mark.asyncio
    async def test_invalid_manifest(self, deploy_service, make_package):
        path = make_package(manifest={"version": "1.0.0", "files": []})
        with pytest.raises(ValueError, match="Invalid manifest"):
            await deploy_service.inspect_package(path)

    @pytest.mark.asyncio
    async def test_manifest_not_json(self, deploy_service, tmp_path):
        path = tmp_path / "pkg.zip"
        with zipfile.ZipFile(path, "w") as zf:
            zf.writestr("manifest.json", "{broken")
            zf.writestr("CHANGELOG", "Version 1.0.0")
        with pytest.raises(ValueError, match="Invalid manifest JSON"):
            await deploy_service.inspect_package(path)


@pytest.mark.unit
class TestDeployPackage:
    """Extraction, activation and pruning."""

    @pytest.fixture
    def process_manager(self):
        manager = MagicMock()
        manager.run_install_script = AsyncMock(return_value=0)
        return manager

    @pytest.fixture
    def deploy_service(self, tmp_path, process_manager):
        return DeployService(tmp_path / "deployments", process_manager=process_manager)

    @pytest.mark.asyncio
    async def test_deploy_creates_deployment_and_switches_current(
        self, deploy_service, make_package, tmp_path
    ):
        path = make_package(version="2.0.0", files={"bin/app": b"binary" * 1000})
        package = await deploy_service.inspect_package(path)
        progress = []

        name = await deploy_service.deploy_package(package, on_progress=progress.append)

        deployments = tmp_path / "deployments"
        assert name == "v2.0.0"
        assert (deployments / "v2.0.0" / "bin" / "app").read_bytes() == b"binary" * 1000
        assert deploy_service.current_deployment() == "v2.0.0"
        assert os.readlink(deployments / "current") == "v2.0.0"
        assert progress[-1] == 100
        assert not list(deployments.glob(".*.partial"))

    @pytest.mark.asyncio
    async def test_file_mode_applied(self, deploy_service, make_package, tmp_path):
        path = make_package(files={"bin/app": b"#!/bin/sh\n"})
        package = await deploy_service.inspect_package(path)
        package.manifest.files[0].mode = 0o750

        await deploy_service.deploy_package(package)

        mode = (tmp_path / "deployments" / "v2.0.0" / "bin" / "app").stat().st_mode
        assert mode & 0o777 == 0o750

    @pytest.mark.asyncio
    async def test_same_version_gets_unique_name(self, deploy_service, make_package):
        first = await deploy_service.deploy_package(
            await deploy_service.inspect_package(make_package(version="2.0.0"))
        )
        second = await deploy_service.deploy_package(
            await deploy_service.inspect_package(make_package(version="2.0.0"))
        )
        assert first == "v2.0.0"
        assert second.startswith("v2.0.0-")
        assert deploy_service.current_deployment() == second

    @pytest.mark.asyncio
    async def test_install_script_invoked(
        self, deploy_service, process_manager, make_package, tmp_path
    ):
        path = make_package(
            files={"bin/app": b"app", "install.sh": b"#!/bin/sh\nexit 0\n"},
            install_script="install.sh",
        )
        package = await deploy_service.inspect_package(path)

        await deploy_service.deploy_package(package)

        final_dir = tmp_path / "deployments" / "v2.0.0"
        process_manager.run_install_script.assert_awaited_once_with(
            final_dir / "install.sh", final_dir, tmp_path / "deployments", "v2.0.0", ""
        )

    @pytest.mark.asyncio
    async def test_failed_install_script_keeps_previous_current(
        self, deploy_service, process_manager, make_package
    ):
        await deploy_service.deploy_package(
            await deploy_service.inspect_package(make_package(version="1.0.0"))
        )
        process_manager.run_install_script.side_effect = RuntimeError("cannot execute")
        path = make_package(
            version="2.0.0",
            files={"bin/app": b"app", "install.sh": b"#!/bin/sh\n"},
            install_script="install.sh",
        )

        with pytest.raises(RuntimeError):
            await deploy_service.deploy_package(await deploy_service.inspect_package(path))

        assert deploy_service.current_deployment() == "v1.0.0"

    def test_clear_old_deployments_keeps_booted_and_current(self, tmp_path, process_manager):
        deployments = tmp_path / "deployments"
        for name in ("v1.0.0", "v2.0.0", "v3.0.0"):
            (deployments / name).mkdir(parents=True)
        (deployments / ".v4.0.0.partial").mkdir()
        (deployments / "current").symlink_to("v1.0.0")

        service = DeployService(deployments, process_manager=process_manager)
        service.set_current(deployments / "v3.0.0")

        assert service.booted_deployment == "v1.0.0"
        assert service.clear_old_deployments() == 1
        assert service.list_deployments() == ["v1.0.0", "v3.0.0"]
        assert not (deployments / ".v4.0.0.partial").exists()

    def test_set_current_missing_target(self, deploy_service, tmp_path):
        with pytest.raises(FileNotFoundError):
            deploy_service.set_current(tmp_path / "deployments" / "nope")


@pytest.mark.unit
class TestExtractionThread:
    """Extraction runs off the event loop and can be cancelled."""

    @pytest.fixture
    def deploy_service(self, tmp_path):
        manager = MagicMock()
        manager.run_install_script = AsyncMock(return_value=0)
        return DeployService(tmp_path / "deployments", process_manager=manager)

    @pytest.mark.asyncio
    async def test_progress_delivered_on_loop_thread(self, deploy_service, make_package):
        path = make_package(files={"bin/app": b"x" * (4 * 1024 * 1024)})
        package = await deploy_service.inspect_package(path)
        threads = set()

        await deploy_service.deploy_package(
            package, on_progress=lambda pct: threads.add(threading.get_ident())
        )

        assert threads == {threading.get_ident()}

    @pytest.mark.asyncio
    async def test_cancel_stops_extraction(self, deploy_service, make_package, tmp_path):
        path = make_package(files={"image.bin": b"\x5a" * (64 * 1024 * 1024)})
        package = await deploy_service.inspect_package(path)
        started = asyncio.Event()
        progress = []

        def on_progress(pct):
            progress.append(pct)
            started.set()

        task = asyncio.create_task(deploy_service.deploy_package(package, on_progress=on_progress))
        await asyncio.wait_for(started.wait(), timeout=5)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        reported = list(progress)

        deployments = tmp_path / "deployments"
        for _ in range(500):
            if not list(deployments.glob(".*.partial")):
                break
            await asyncio.sleep(0.01)

        assert not list(deployments.glob(".*.partial"))
        assert deploy_service.list_deployments() == []
        assert deploy_service.current_deployment() is None
        assert progress == reported
        assert 100 not in progress
