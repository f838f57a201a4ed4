"""Error taxonomy shared by the controllers and the relay."""

from __future__ import annotations

from typing import Any, Dict


class AssistantError(Exception):
    """Base class for every error raised by the assistant."""

    code = "assistant_error"

    def __init__(self, message: str = "", *, details: Any | None = None) -> None:
        super().__init__(message or self.code)
        self.message = message or self.code
        self.details = details

    def to_payload(self) -> Dict[str, Any]:
        return error_payload(self.code, self.message, details=self.details)


class PermissionDenied(AssistantError):
    """The user or the system refused access to a resource."""

    code = "permission_denied"


class DeviceUnavailable(AssistantError):
    """A capture or audio device is missing or stopped working."""

    code = "device_unavailable"


class RequestTimeout(AssistantError):
    """A remote call did not answer in time."""

    code = "timeout"


class TransportFailure(AssistantError):
    """The network call itself failed (connection, HTTP status)."""

    code = "transport_failure"


class RemoteError(TransportFailure):
    """The remote answered with a non-success status."""

    code = "remote_error"


class InvalidResponseShape(AssistantError):
    """The remote answered with a payload that breaks the contract."""

    code = "invalid_response"


class ResourceBusy(AssistantError):
    """The resource is already started (transient)."""

    code = "resource_busy"


class Unsupported(AssistantError):
    """A capability is missing in the runtime environment."""

    code = "unsupported"


def error_payload(
    code: str,
    message: str,
    *,
    details: Any | None = None,
) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "status": "error",
        "error": {
            "code": code,
            "message": message,
        },
    }
    if details is not None:
        payload["error"]["details"] = details
    return payload
