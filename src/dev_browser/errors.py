"""Error taxonomy shared by the registry, the gated actions and the HTTP API."""

from __future__ import annotations

from typing import Any, Dict


class DevBrowserError(Exception):
    """Base error carrying a stable ``kind`` and the HTTP status it maps to."""

    kind = "internal"
    status_code = 500
    default_message = "internal error"

    def __init__(self, message: str = "") -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_payload(self) -> Dict[str, Any]:
        return {"error": self.kind, "message": self.message}


class ValidationError(DevBrowserError):
    kind = "validation_error"
    status_code = 400
    default_message = "invalid request"


class Unauthorized(DevBrowserError):
    kind = "unauthorized"
    status_code = 401
    default_message = "unauthorized"


class Forbidden(DevBrowserError):
    kind = "forbidden"
    status_code = 403
    default_message = "forbidden"


class NotFound(DevBrowserError):
    kind = "not_found"
    status_code = 404
    default_message = "not found"


class PreconditionFailed(DevBrowserError):
    kind = "precondition_failed"
    status_code = 409
    default_message = "precondition failed"


class Timeout(DevBrowserError):
    kind = "timeout"
    status_code = 504
    default_message = "operation timed out"


class Unavailable(DevBrowserError):
    kind = "unavailable"
    status_code = 501
    default_message = "operation unavailable in this mode"


class Internal(DevBrowserError):
    pass


class ConfigurationError(DevBrowserError):
    """Raised at startup; never rendered to an HTTP caller."""

    kind = "configuration_error"
    default_message = "invalid configuration"


class StartupError(DevBrowserError):
    kind = "startup_error"
    default_message = "server failed to start"
