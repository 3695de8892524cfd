"""
Prep — API errors.

Every failure a route can report is a PrepAPIError.  The subclass fixes
the HTTP status; the error code says what went wrong in Prep's terms
(GAME_NOT_STARTED, CHALLENGE_ACTIVE, INVITE_NOT_FOUND, ...) so the
dashboard can branch on it instead of parsing messages.

Envelope:
    {"success": false, "error": <message>, "error_code": <code>, "details": {...}}
"details" is left out when there is nothing to add.
"""

from typing import Optional

from fastapi import status
from fastapi.responses import JSONResponse


def envelope(message: str, error_code: str, details: Optional[dict] = None) -> dict:
    body = {"success": False, "error": message, "error_code": error_code}
    if details:
        body["details"] = details
    return body


class PrepAPIError(Exception):
    status_code = status.HTTP_400_BAD_REQUEST
    error_code  = "BAD_REQUEST"

    def __init__(self, message: str, error_code: Optional[str] = None, details: Optional[dict] = None):
        self.message = message
        if error_code:
            self.error_code = error_code
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> JSONResponse:
        return JSONResponse(status_code=self.status_code,
                            content=envelope(self.message, self.error_code, self.details))


class AuthenticationError(PrepAPIError):
    """No session, an expired session, or bad credentials."""
    status_code = status.HTTP_401_UNAUTHORIZED
    error_code  = "AUTH_FAILED"


class ValidationError(PrepAPIError):
    """Input pydantic accepts but Prep does not (survey answers, usernames, strategies)."""
    status_code = 422
    error_code  = "VALIDATION_ERROR"

    def __init__(self, message: str, field: Optional[str] = None,
                 error_code: Optional[str] = None, details: Optional[dict] = None):
        details = dict(details or {})
        if field:
            details["field"] = field
        super().__init__(message, error_code, details)


class ResourceNotFoundError(PrepAPIError):
    """
    A user, challenge, game or invite that does not exist.

    The code defaults to "<RESOURCE>_NOT_FOUND", e.g. "Invite" -> INVITE_NOT_FOUND.
    """
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, resource: str, identifier: str, error_code: Optional[str] = None):
        super().__init__(
            f"{resource} not found: {identifier}",
            error_code or resource.upper().replace(" ", "_") + "_NOT_FOUND",
            {"resource": resource, "identifier": identifier},
        )


class ConflictError(PrepAPIError):
    """The request clashes with what is already stored (taken username, active challenge, ...)."""
    status_code = status.HTTP_409_CONFLICT
    error_code  = "CONFLICT"


class RateLimitError(PrepAPIError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    error_code  = "RATE_LIMIT_EXCEEDED"

    def __init__(self, retry_after: int = 60):
        super().__init__(
            f"Rate limit exceeded. Try again in {retry_after} seconds.",
            details={"retry_after": retry_after},
        )


class ExternalServiceError(PrepAPIError):
    """Supabase or the local store failed; the code names the service (STORE_UNAVAILABLE)."""
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    def __init__(self, service: str, message: str, details: Optional[dict] = None):
        super().__init__(message, f"{service.upper()}_UNAVAILABLE", {**(details or {}), "service": service})
