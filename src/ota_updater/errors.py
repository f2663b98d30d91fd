"""Error taxonomy shared by the service, the API and the client."""

from enum import IntEnum


class ErrorCode(IntEnum):
    """Result codes surfaced to callers (CLI exit status is the absolute value)."""

    OK = 0
    INVALID_ARGUMENT = -1
    CONNECTION = -2
    SERVICE = -3
    ENCODING = -4
    RUNTIME = -5
    BUSY = -6
    NO_PENDING_UPDATE = -7


class UpdaterError(Exception):
    """Base class for all updater errors."""

    code: ErrorCode = ErrorCode.RUNTIME
    http_code: int = 500


class InvalidArgumentError(UpdaterError):
    """A caller passed a missing or malformed argument."""

    code = ErrorCode.INVALID_ARGUMENT
    http_code = 400


class ServiceConnectionError(UpdaterError):
    """The service could not be reached or the connection was lost."""

    code = ErrorCode.CONNECTION
    http_code = 503


class ServiceFaultError(UpdaterError):
    """The service reported an internal error."""

    code = ErrorCode.SERVICE
    http_code = 500


class EncodingFaultError(UpdaterError):
    """Text crossing the service boundary could not be decoded."""

    code = ErrorCode.ENCODING
    http_code = 500


class BusyError(UpdaterError):
    """An install pipeline is already active; the request was not queued."""

    code = ErrorCode.BUSY
    http_code = 409


class NoPendingUpdateError(UpdaterError):
    """No update is awaiting confirmation."""

    code = ErrorCode.NO_PENDING_UPDATE
    http_code = 404


class RuntimeFaultError(UpdaterError):
    """Catch-all runtime failure."""

    code = ErrorCode.RUNTIME
    http_code = 500


class InvalidTransitionError(RuntimeFaultError):
    """The state machine was asked for a transition its table does not allow."""


class NoUpdateAvailableError(UpdaterError):
    """The update URL answered without a package (e.g. 404)."""


# Envelope code -> exception class, used by the client to rebuild errors
ERRORS_BY_HTTP_CODE = {
    400: InvalidArgumentError,
    404: NoPendingUpdateError,
    409: BusyError,
    422: InvalidArgumentError,
    500: ServiceFaultError,
}
