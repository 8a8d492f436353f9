"""
Relay error taxonomy and error response utilities.

Every failure the relay surfaces is rendered with one flat JSON shape:
{
    "error": "Human-readable error description",
    "status": 429,            # upstream HTTP status, when relevant
    "body": "raw payload",    # upstream body or exception text, when relevant
    "details": {...}          # structured upstream error, when relevant
}

Error Types:
    - ConfigurationError: credential/URL missing (500, no upstream call)
    - TransportError: upstream unreachable or failed mid-transfer (502)
    - UpstreamStatusError: upstream answered with a non-success status (502)
    - UpstreamProtocolError: upstream answered 2xx with an unexpected shape (502)
    - InvalidRequestError: malformed request body (400)
    - MalformedEventError: one unparseable SSE line; absorbed by the
      stream assembler and never rendered

No error is retried. Each one is either absorbed locally (malformed
events) or surfaced once to the caller.

Last Grunted: 10/19/2026 09:40:00 AM UTC
"""
from typing import Any, Dict, Optional

from fastapi.responses import JSONResponse

# Relay payloads are per-request and must never be cached
NO_STORE_HEADERS: Dict[str, str] = {"cache-control": "no-store"}


# ============================================================================
# Error Taxonomy
# ============================================================================

class RelayError(Exception):
    """
    Base class for errors rendered to relay callers.

    Attributes:
        message: Human-readable error description (the "error" field)
        status_code: HTTP status returned to the caller
        upstream_status: Status code returned by the upstream API, if any
        body: Raw upstream payload or exception text, for diagnostics
        details: Structured upstream error object, if any

    Last Grunted: 10/19/2026 09:40:00 AM UTC
    """
    status_code: int = 500

    def __init__(
        self,
        message: str,
        *,
        upstream_status: Optional[int] = None,
        body: Optional[str] = None,
        details: Optional[Any] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.upstream_status = upstream_status
        self.body = body
        self.details = details

    def to_response(self) -> JSONResponse:
        return error_response(
            self.message,
            status_code=self.status_code,
            upstream_status=self.upstream_status,
            body=self.body,
            details=self.details,
        )


class ConfigurationError(RelayError):
    """Required upstream URL or credential missing from server configuration."""
    status_code = 500


class TransportError(RelayError):
    """Network failure reaching upstream or reading its response."""
    status_code = 502


class UpstreamStatusError(TransportError):
    """Upstream responded with a non-success HTTP status."""


class UpstreamProtocolError(RelayError):
    """Upstream succeeded at the transport level but the payload has an unexpected shape."""
    status_code = 502


class InvalidRequestError(RelayError):
    """Malformed request body (missing or invalid messages, unknown action, ...)."""
    status_code = 400


class MalformedEventError(ValueError):
    """A single SSE data line could not be parsed. Never leaves the assembler."""


# ============================================================================
# Error Response Factory
# ============================================================================

def error_response(
    message: str,
    status_code: int = 400,
    upstream_status: Optional[int] = None,
    body: Optional[str] = None,
    details: Optional[Any] = None,
) -> JSONResponse:
    """
    Create a relay error response.

    Optional fields are omitted from the payload when unset, so the
    smallest response is just {"error": "..."}.

    Args:
        message: Human-readable error description
        status_code: HTTP status code
        upstream_status: Upstream HTTP status (rendered as "status")
        body: Raw upstream body or exception text
        details: Structured upstream error object

    Returns:
        JSONResponse with the flat relay error format

    Example:
        >>> error_response("Upstream error", 502, upstream_status=429, body="rate limited")

    Last Grunted: 10/19/2026 09:40:00 AM UTC
    """
    content: Dict[str, Any] = {"error": message}
    if upstream_status is not None:
        content["status"] = upstream_status
    if body is not None:
        content["body"] = body
    if details is not None:
        content["details"] = details

    return JSONResponse(status_code=status_code, content=content)


def method_not_allowed_error() -> JSONResponse:
    """Create the 405 response used by the method-check middleware."""
    return error_response("Method Not Allowed", status_code=405)


def internal_error() -> JSONResponse:
    """
    Create error response for an unhandled server error.

    The exception text is logged, never returned.
    """
    response = error_response("Internal error", status_code=500)
    # Rendered by ServerErrorMiddleware, outside the header middleware
    response.headers["x-frame-options"] = "DENY"
    return response
