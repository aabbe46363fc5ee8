"""Error taxonomy for gateway interactions.

Every error carries a machine-readable `code`, a human message, the HTTP status
to surface to callers, and the raw upstream body (if any) for diagnostics.
"""

from typing import Any


class GatewayError(Exception):
    """Base class for all errors surfaced to callers of the proxy."""

    code = "gateway_error"
    default_status = 500
    transient = False

    def __init__(self, message: str, status_code: int | None = None, details: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code or self.default_status
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        return {"error": {"code": self.code, "message": self.message, "details": self.details}}


class ValidationError(GatewayError):
    """Order is missing required fields; raised before any network call."""

    code = "validation_error"
    default_status = 400

    def __init__(self, message: str, fields: list[str] | None = None) -> None:
        super().__init__(message, status_code=400, details={"fields": fields or []})
        self.fields = fields or []


class AuthError(GatewayError):
    code = "auth_error"


class OrderError(GatewayError):
    code = "order_error"


class InvalidNotificationIdError(OrderError):
    """The gateway rejected the configured IPN notification id."""

    code = "invalid_notification_id"


class StatusError(GatewayError):
    code = "status_error"


class NetworkError(GatewayError):
    """No usable response from the gateway (connection, DNS, protocol)."""

    code = "network_error"
    default_status = 502
    transient = True


class GatewayTimeoutError(NetworkError):
    code = "gateway_timeout"
    default_status = 504
