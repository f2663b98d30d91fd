"""Blocking client for the update service HTTP API."""

import logging
import threading
from typing import Any, Callable, Iterator, Optional

import httpx
from pydantic import ValidationError

from ota_updater.errors import (
    ERRORS_BY_HTTP_CODE,
    EncodingFaultError,
    InvalidArgumentError,
    RuntimeFaultError,
    ServiceConnectionError,
    ServiceFaultError,
)
from ota_updater.models.session import PendingUpdate, SessionSnapshot
from ota_updater.models.status import PhaseEnum
from ota_updater.utils.sse import iter_sse

DEFAULT_SERVICE_URL = "http://127.0.0.1:12315"
API_PREFIX = "/api/v1.0"

# Heartbeat interval requested for watch streams; bounds how long cancel() takes
WATCH_KEEPALIVE = 1.0

StatusCallback = Callable[[PhaseEnum, str, Optional[int]], None]


def _unwrap(response: httpx.Response) -> Any:
    """Return the envelope's data, or raise the error it reports."""
    if response.status_code == 422:
        raise InvalidArgumentError(f"Request rejected by service: {response.text}")
    if not response.is_success:
        raise ServiceFaultError(f"Service returned HTTP {response.status_code}")

    try:
        body = response.json()
    except ValueError as e:
        # json.JSONDecodeError and UnicodeDecodeError are both ValueErrors
        raise EncodingFaultError(f"Undecodable response: {e}") from e

    if not isinstance(body, dict) or "code" not in body:
        raise EncodingFaultError("Malformed response envelope")

    code = body["code"]
    if code == 200:
        return body.get("data")

    error_cls = ERRORS_BY_HTTP_CODE.get(code, RuntimeFaultError)
    raise error_cls(body.get("msg") or f"Service error {code}")


def _parse(model, data: Any):
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise EncodingFaultError(f"Malformed {model.__name__}: {e}") from e


class StatusWatch:
    """Lazy iterator over session snapshots streamed by the service.

    The stream is opened on first iteration and cannot be restarted. The
    first snapshot is the service's current state; later ones arrive in
    order and stale ones (sequence not increasing) are dropped.

    cancel() may be called from any thread. The iterator then ends at the
    next event or heartbeat, whichever arrives first.
    """

    def __init__(
        self,
        client: "UpdaterClient",
        cancel_event: Optional[threading.Event] = None,
        keepalive: float = WATCH_KEEPALIVE,
    ):
        self._client = client
        self._cancelled = cancel_event or threading.Event()
        self._keepalive = keepalive
        self._started = False
        self._last_sequence = -1

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        self._cancelled.set()

    def __iter__(self) -> Iterator[SessionSnapshot]:
        if self._started:
            raise RuntimeError("A status watch cannot be restarted; call watch() again")
        self._started = True
        return self._events()

    def _events(self) -> Iterator[SessionSnapshot]:
        # Registered only once iteration starts, so the finally below always releases it
        self._client._register(self)
        # A silent connection for several heartbeats counts as lost
        timeout = httpx.Timeout(self._client.timeout, read=self._keepalive * 5)
        try:
            with self._client.http.stream(
                "GET",
                f"{API_PREFIX}/watch",
                params={"keepalive": self._keepalive},
                headers={"Accept": "text/event-stream"},
                timeout=timeout,
            ) as response:
                if not response.is_success:
                    raise ServiceFaultError(
                        f"Watch request failed with HTTP {response.status_code}"
                    )
                for message in iter_sse(response.iter_lines()):
                    if self.cancelled:
                        return
                    if message.event == "overflow":
                        # Events were lost; the caller must re-subscribe
                        raise ServiceConnectionError(
                            "Watch dropped by update service: backlog exceeded"
                        )
                    if message.event != "status":
                        continue
                    try:
                        data = message.json()
                    except ValueError as e:
                        raise EncodingFaultError(f"Undecodable status event: {e}") from e
                    snapshot = _parse(SessionSnapshot, data)
                    if snapshot.sequence <= self._last_sequence:
                        continue
                    self._last_sequence = snapshot.sequence
                    yield snapshot
        except httpx.HTTPError as e:
            if self.cancelled:
                return
            raise ServiceConnectionError(f"Lost connection to update service: {e}") from e
        finally:
            self._client._release(self)


class UpdaterClient:
    """Handle to one update service.

    The underlying HTTP connection is opened once per handle. Calls may be
    made from several threads; close() cancels outstanding watches first.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_SERVICE_URL,
        timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        if not base_url:
            raise InvalidArgumentError("Service URL must not be empty")
        self.logger = logging.getLogger("ota_updater.client")
        self.base_url = base_url
        self.timeout = timeout
        self.http = httpx.Client(base_url=base_url, timeout=timeout, transport=transport)
        self._watches: set[StatusWatch] = set()
        self._lock = threading.Lock()
        self._closed = False

    def __enter__(self) -> "UpdaterClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def get_status(self) -> SessionSnapshot:
        return _parse(SessionSnapshot, self._call("GET", "/status"))

    def install_from_file(self, path: str) -> str:
        if not path:
            raise InvalidArgumentError("File path must not be empty")
        return self._message(self._call("POST", "/install/file", {"path": path}))

    def install_from_url(self, url: str) -> str:
        if not url:
            raise InvalidArgumentError("Update URL must not be empty")
        return self._message(self._call("POST", "/install/url", {"url": url}))

    def get_pending_update(self) -> PendingUpdate:
        return _parse(PendingUpdate, self._call("GET", "/pending-update"))

    def confirm_update(self, accept: bool) -> str:
        return self._message(self._call("POST", "/confirm", {"accept": bool(accept)}))

    def watch(self, cancel_event: Optional[threading.Event] = None) -> StatusWatch:
        """Create a status watch; nothing is sent until it is iterated."""
        self._ensure_open()
        return StatusWatch(self, cancel_event=cancel_event)

    def watch_status(
        self,
        on_change: StatusCallback,
        stop_event: Optional[threading.Event] = None,
    ) -> None:
        """Block, calling on_change(phase, details, progress) for every event.

        The current state is reported first. Returns once stop_event is set
        or the client is closed; raises if the connection is lost.
        """
        for snapshot in self.watch(cancel_event=stop_event):
            on_change(snapshot.phase, snapshot.details, snapshot.progress_or_none)

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            watches = list(self._watches)
        for status_watch in watches:
            status_watch.cancel()
        self.http.close()
        self.logger.debug(f"Client for {self.base_url} closed")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _ensure_open(self) -> None:
        if self._closed:
            raise InvalidArgumentError("Client handle is closed")

    def _register(self, status_watch: StatusWatch) -> None:
        with self._lock:
            if self._closed:
                raise InvalidArgumentError("Client handle is closed")
            self._watches.add(status_watch)

    def _release(self, status_watch: StatusWatch) -> None:
        with self._lock:
            self._watches.discard(status_watch)

    def _call(self, method: str, path: str, payload: Optional[dict] = None) -> Any:
        self._ensure_open()
        try:
            response = self.http.request(method, f"{API_PREFIX}{path}", json=payload)
        except httpx.TransportError as e:
            raise ServiceConnectionError(
                f"Cannot reach update service at {self.base_url}: {e}"
            ) from e
        return _unwrap(response)

    @staticmethod
    def _message(data: Any) -> str:
        if not isinstance(data, dict) or not isinstance(data.get("message"), str):
            raise EncodingFaultError("Response carries no message")
        return data["message"]
