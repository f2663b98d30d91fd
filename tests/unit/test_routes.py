"""Tests for API routes (routes.py + main.py)."""

import time
from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from ota_updater.api.routes import status_events
from ota_updater.main import create_app
from ota_updater.models.session import SessionSnapshot
from ota_updater.models.status import PhaseEnum
from ota_updater.services.notification import NotificationChannel
from ota_updater.utils.sse import iter_sse

API = "/api/v1.0"


@pytest.fixture
def app_settings(settings):
    return settings


@pytest.fixture
def client(app_settings):
    """TestClient running the real lifespan with a silenced logger."""
    with patch("ota_updater.main.setup_logger") as mock_log:
        mock_log.return_value = MagicMock()
        with TestClient(create_app(app_settings)) as c:
            yield c


def _wait_phase(client, phase, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        data = client.get(f"{API}/status").json()["data"]
        if data["phase"] == phase:
            return data
        time.sleep(0.02)
    raise AssertionError(f"phase {phase} not reached, last: {data}")


@pytest.mark.unit
class TestHealthAndStatus:

    def test_root(self, client):
        body = client.get("/").json()
        assert body["status"] == "ok"
        assert body["service"] == "ota-updater"

    def test_initial_status(self, client):
        response = client.get(f"{API}/status")
        assert response.status_code == 200
        body = response.json()
        assert body["code"] == 200
        assert body["msg"] == "success"
        assert body["data"] == {
            "sequence": 0,
            "phase": "Idle",
            "details": "",
            "progress": -1,
            "pending_update": None,
        }

    def test_lifespan_creates_directories(self, client, app_settings):
        assert app_settings.work_dir.is_dir()
        assert app_settings.deployments_dir.is_dir()


@pytest.mark.unit
class TestCommands:
    """Command endpoints use HTTP 200 with the real status in 'code'."""

    def test_install_file_missing(self, client, tmp_path):
        body = client.post(f"{API}/install/file", json={"path": str(tmp_path / "nope.zip")}).json()
        assert body["code"] == 400
        assert body["error"] == "INVALID_ARGUMENT"
        assert body["phase"] == "Idle"

    def test_install_url_bad_scheme(self, client):
        body = client.post(f"{API}/install/url", json={"url": "file:///etc/passwd"}).json()
        assert body["code"] == 400

    def test_missing_field_is_422(self, client):
        assert client.post(f"{API}/install/file", json={}).status_code == 422

    def test_pending_update_when_idle(self, client):
        body = client.get(f"{API}/pending-update").json()
        assert body["code"] == 404
        assert body["error"] == "NO_PENDING_UPDATE"

    def test_confirm_when_idle(self, client):
        body = client.post(f"{API}/confirm", json={"accept": True}).json()
        assert body["code"] == 404
        assert "no update is awaiting confirmation" in body["msg"]

    def test_install_confirm_flow(self, client, make_package):
        package = make_package(version="2.5.0")

        body = client.post(f"{API}/install/file", json={"path": str(package)}).json()
        assert body["code"] == 200
        assert body["data"]["message"] == f"Update request queued for file: {package}"

        status = _wait_phase(client, "AwaitingConfirmation")
        assert status["pending_update"]["version"] == "2.5.0"

        busy = client.post(f"{API}/install/file", json={"path": str(package)}).json()
        assert busy["code"] == 409
        assert busy["error"] == "BUSY"
        assert busy["phase"] == "AwaitingConfirmation"

        pending = client.get(f"{API}/pending-update").json()
        assert pending["code"] == 200
        assert pending["data"]["source"] == str(package)

        confirm = client.post(f"{API}/confirm", json={"accept": True}).json()
        assert confirm["data"]["message"] == "Update accepted, installation will proceed"

        final = _wait_phase(client, "Completed")
        assert final["progress"] == 100

    def test_reject_returns_to_idle(self, client, make_package):
        client.post(f"{API}/install/file", json={"path": str(make_package())})
        _wait_phase(client, "AwaitingConfirmation")

        body = client.post(f"{API}/confirm", json={"accept": False}).json()

        assert body["data"]["message"] == "Update rejected"
        assert _wait_phase(client, "Idle")["pending_update"] is None

    def test_watch_rejects_bad_keepalive(self, client):
        assert client.get(f"{API}/watch", params={"keepalive": 0}).status_code == 422


@pytest.mark.unit
class TestStatusEvents:
    """SSE body generator."""

    @pytest.mark.asyncio
    async def test_baseline_ping_and_end(self):
        channel = NotificationChannel()
        channel.publish(SessionSnapshot(phase=PhaseEnum.IDLE))
        watcher = channel.subscribe()
        events = status_events(watcher, keepalive=0.01)

        first = await events.__anext__()
        ping = await events.__anext__()
        channel.publish(SessionSnapshot(sequence=1, phase=PhaseEnum.CLEARING, details="/pkg.zip"))
        second = await events.__anext__()
        watcher.close()
        rest = [chunk async for chunk in events]

        messages = list(iter_sse((first + ping + second).splitlines()))
        assert [m.event for m in messages] == ["status", "ping", "status"]
        assert messages[0].id == "0"
        assert messages[2].id == "1"
        assert messages[2].json()["details"] == "/pkg.zip"
        assert rest == []

    @pytest.mark.asyncio
    async def test_generator_close_releases_watcher(self):
        channel = NotificationChannel()
        channel.publish(SessionSnapshot(phase=PhaseEnum.IDLE))
        watcher = channel.subscribe()
        events = status_events(watcher, keepalive=1)

        await events.__anext__()
        await events.aclose()

        assert watcher.closed
        assert channel.watcher_count == 0

    @pytest.mark.asyncio
    async def test_overflowed_watcher_gets_final_overflow_event(self):
        channel = NotificationChannel(max_backlog=2)
        channel.publish(SessionSnapshot(phase=PhaseEnum.IDLE))
        watcher = channel.subscribe()
        events = status_events(watcher, keepalive=1)

        channel.publish(SessionSnapshot(sequence=1, phase=PhaseEnum.CLEARING))
        channel.publish(SessionSnapshot(sequence=2, phase=PhaseEnum.CLEARING, details="x"))
        chunks = [chunk async for chunk in events]

        messages = list(iter_sse("".join(chunks).splitlines()))
        assert [m.event for m in messages] == ["status", "status", "overflow"]
        assert [m.id for m in messages[:2]] == ["0", "1"]

    @pytest.mark.asyncio
    async def test_shutdown_close_ends_without_overflow_event(self):
        channel = NotificationChannel()
        channel.publish(SessionSnapshot(phase=PhaseEnum.IDLE))
        watcher = channel.subscribe()
        events = status_events(watcher, keepalive=1)

        channel.close_all()
        chunks = [chunk async for chunk in events]

        messages = list(iter_sse("".join(chunks).splitlines()))
        assert [m.event for m in messages] == ["status"]
