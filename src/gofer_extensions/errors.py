"""Request-scoped failures surfaced to the host as ``{message, request_id}``."""

from __future__ import annotations


class ExtensionError(Exception):
    """Base for errors that map onto an HTTP status returned to the host."""

    status_code: int = 500

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)


class SubscriptionValidationError(ExtensionError):
    """Subscription parameters are missing or malformed."""

    status_code = 400


class SignatureError(ExtensionError):
    """An external event failed payload signature validation."""

    status_code = 400


class PayloadError(ExtensionError):
    """An external event body could not be decoded for its declared event type."""

    status_code = 400


class AuthError(ExtensionError):
    """Inbound bearer authentication failed."""

    status_code = 401
