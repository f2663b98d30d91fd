"""Pydantic models for HTTP API requests and responses."""

from typing import Optional
from pydantic import BaseModel, Field

from ota_updater.models.session import PendingUpdate, SessionSnapshot


class InstallFileRequest(BaseModel):
    """POST /api/v1.0/install/file payload.

    Example:
        {"path": "/var/lib/updates/pkg.zip"}
    """

    path: str = Field(
        ...,
        description="Path of the package on the device",
        examples=["/var/lib/updates/pkg.zip"],
    )


class InstallUrlRequest(BaseModel):
    """POST /api/v1.0/install/url payload.

    Example:
        {"url": "https://updates.example.com/pkg-2.0.0.zip"}
    """

    url: str = Field(
        ...,
        description="HTTP/HTTPS URL to download the package from",
        examples=["https://updates.example.com/pkg-2.0.0.zip"],
    )


class ConfirmRequest(BaseModel):
    """POST /api/v1.0/confirm payload.

    Example:
        {"accept": true}
    """

    accept: bool = Field(..., description="True installs the pending update, False discards it")


class MessageData(BaseModel):
    message: str = Field(..., description="Result message of a command")


class StatusResponse(BaseModel):
    """GET /api/v1.0/status response."""

    code: int = Field(default=200, description="Application-level status code")
    msg: str = Field(default="success", description="Status message")
    data: SessionSnapshot = Field(..., description="Current session snapshot")


class PendingUpdateResponse(BaseModel):
    """GET /api/v1.0/pending-update response."""

    code: int = Field(default=200, description="Application-level status code")
    msg: str = Field(default="success", description="Status message")
    data: PendingUpdate = Field(..., description="Update awaiting confirmation")


class CommandResponse(BaseModel):
    """Response for install and confirm commands."""

    code: int = Field(default=200, description="Application-level status code")
    msg: str = Field(default="success", description="Status message")
    data: MessageData = Field(..., description="Command result")


class ErrorResponse(BaseModel):
    """Error response for all endpoints.

    HTTP status code is always 200, real status in 'code' field.
    """

    code: int = Field(..., description="Application-level error code (400/404/409/500)")
    msg: str = Field(..., description="Error message")
    error: str = Field(..., description="Error category (ErrorCode name)")
    phase: Optional[str] = Field(None, description="Session phase when the error occurred")
