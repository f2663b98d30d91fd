"""API route handlers for the update service."""

import asyncio
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse, StreamingResponse

from ota_updater.api.models import (
    CommandResponse,
    ConfirmRequest,
    ErrorResponse,
    InstallFileRequest,
    InstallUrlRequest,
    MessageData,
    PendingUpdateResponse,
    StatusResponse,
)
from ota_updater.errors import UpdaterError
from ota_updater.services.notification import Watcher
from ota_updater.services.update_service import UpdateService
from ota_updater.utils.sse import sse_format

router = APIRouter(prefix="/api/v1.0")


def get_service(request: Request) -> UpdateService:
    """Dependency returning the service created by the application lifespan."""
    return request.app.state.update_service


def _error_response(exc: UpdaterError, service: UpdateService) -> JSONResponse:
    """Envelope for a failed command: HTTP 200, real status in 'code'."""
    body = ErrorResponse(
        code=exc.http_code,
        msg=str(exc),
        error=exc.code.name,
        phase=service.get_status().phase.value,
    )
    return JSONResponse(status_code=200, content=body.model_dump())


@router.get("/status", response_model=StatusResponse)
async def get_status(service: UpdateService = Depends(get_service)):
    """GET /api/v1.0/status - Current session snapshot.

    Response format:
        {
            "code": 200,
            "msg": "success",
            "data": {
                "sequence": 7,
                "phase": "Installing",
                "details": "/var/lib/updates/pkg.zip",
                "progress": 45,
                "pending_update": null
            }
        }
    """
    return StatusResponse(data=service.get_status())


@router.post("/install/file", response_model=CommandResponse)
async def post_install_file(
    request: InstallFileRequest, service: UpdateService = Depends(get_service)
):
    """POST /api/v1.0/install/file - Start installing a local package.

    Returns code 409 if a pipeline is already active, 400 if the path is
    empty or does not name a file.
    """
    try:
        message = service.install_from_file(request.path)
    except UpdaterError as e:
        return _error_response(e, service)
    return CommandResponse(data=MessageData(message=message))


@router.post("/install/url", response_model=CommandResponse)
async def post_install_url(
    request: InstallUrlRequest, service: UpdateService = Depends(get_service)
):
    """POST /api/v1.0/install/url - Start installing a package from a URL.

    Returns code 409 if a pipeline is already active, 400 for a non-http(s) URL.
    """
    try:
        message = service.install_from_url(request.url)
    except UpdaterError as e:
        return _error_response(e, service)
    return CommandResponse(data=MessageData(message=message))


@router.get("/pending-update", response_model=PendingUpdateResponse)
async def get_pending_update(service: UpdateService = Depends(get_service)):
    """GET /api/v1.0/pending-update - Update awaiting confirmation.

    Read-only and repeatable; returns code 404 outside AwaitingConfirmation.
    """
    try:
        pending = service.get_pending_update()
    except UpdaterError as e:
        return _error_response(e, service)
    return PendingUpdateResponse(data=pending)


@router.post("/confirm", response_model=CommandResponse)
async def post_confirm(
    request: ConfirmRequest, service: UpdateService = Depends(get_service)
):
    """POST /api/v1.0/confirm - Accept or reject the pending update.

    Returns code 404 if no update is awaiting confirmation.
    """
    try:
        message = service.confirm_update(request.accept)
    except UpdaterError as e:
        return _error_response(e, service)
    return CommandResponse(data=MessageData(message=message))


async def status_events(watcher: Watcher, keepalive: float):
    """SSE body: one 'status' event per snapshot, 'ping' heartbeats in between.

    Ends when the watcher is closed. A watcher dropped for falling behind
    gets a final 'overflow' event so the client knows to re-subscribe. The
    watcher is released when the client goes away.
    """
    try:
        while True:
            try:
                snapshot = await watcher.next(timeout=keepalive)
            except asyncio.TimeoutError:
                yield sse_format("ping", {"ts": datetime.now(timezone.utc).isoformat()})
                continue
            if snapshot is None:
                if watcher.overflowed:
                    yield sse_format("overflow", {"reason": "watcher backlog exceeded"})
                break
            yield sse_format(
                "status",
                snapshot.model_dump(mode="json"),
                event_id=str(snapshot.sequence),
            )
    finally:
        watcher.close()


@router.get("/watch")
async def watch_status(
    keepalive: Optional[float] = Query(None, gt=0, le=60),
    service: UpdateService = Depends(get_service),
):
    """GET /api/v1.0/watch - Stream session snapshots as Server-Sent Events.

    The first event is the current snapshot; every later state change
    follows in order. A client may ask for a shorter heartbeat interval
    (keepalive, seconds) so it can notice its own cancellation sooner.
    """
    watcher = service.subscribe()
    headers = {
        "Cache-Control": "no-cache",
        "Connection": "keep-alive",
        "X-Accel-Buffering": "no",
    }
    return StreamingResponse(
        status_events(watcher, keepalive or service.settings.watch_keepalive),
        media_type="text/event-stream",
        headers=headers,
    )
