# =============================================================================
# Domain Exceptions
# =============================================================================
#
# Raised by services and translated to JSON responses by the exception
# handlers registered in grooshub.main. Route handlers still raise
# HTTPException directly for plain request errors.
# =============================================================================

from __future__ import annotations


class GroosHubError(Exception):
    """Base class for application errors with an HTTP mapping."""

    status_code: int = 500
    error_code: str = "internal_error"

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        body = {"error": self.error_code, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


class NotFoundError(GroosHubError):
    """Resource missing, or not visible to the caller."""

    status_code = 404
    error_code = "not_found"


class ForbiddenError(GroosHubError):
    status_code = 403
    error_code = "forbidden"


class UnknownModelError(GroosHubError):
    """Model ID is not in the registry."""

    status_code = 400
    error_code = "invalid_model"

    def __init__(self, model_id: str):
        super().__init__(f"Invalid model ID: {model_id}")
        self.model_id = model_id


class QuotaExceededError(GroosHubError):
    """Monthly external-API quota for a service is exhausted."""

    status_code = 429
    error_code = "quota_exceeded"

    def __init__(self, service: str, limit: int, details: dict | None = None):
        super().__init__(
            f"Monthly quota limit reached for {service} "
            f"({limit} requests).",
            details=details,
        )
        self.service = service
        self.limit = limit


class ConfigurationError(ValueError):
    """
    A required setting, usually a vendor API key, is missing.

    Subclasses ValueError: routes map configuration errors to 503.
    """
