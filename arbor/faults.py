"""
Arbor faults - structured error types.

Defines:
- ArborFault base class (stable code, message, status, public flag)
- ConfigurationFault (raised while composing routes, fail fast)
- RequestFault / ResponseFault (runtime transport misuse)
- HTTPError (user-raised errors carrying an HTTP status)
"""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional


# ============================================================================
# Fault - Base Class
# ============================================================================

class ArborFault(Exception):
    """
    Base fault class - structured, typed error object.

    Attributes:
        code: Stable machine-readable identifier (e.g., "ROUTER_DECORATOR_MISSING")
        message: Human-readable summary
        domain: Functional area ("config", "request", "response", "http")
        status: HTTP status the fault maps to when it reaches an error handler
        public: Whether the message is safe to expose to the client
        metadata: Additional context data
    """

    code: str = "ARBOR_FAULT"
    message: str = "Unexpected fault"
    domain: str = "system"
    status: int = 500
    public: bool = False

    def __init__(
        self,
        code: Optional[str] = None,
        message: Optional[str] = None,
        *,
        status: Optional[int] = None,
        public: Optional[bool] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ):
        self.code = code if code is not None else type(self).code
        self.message = message if message is not None else type(self).message
        if status is not None:
            self.status = status
        if public is not None:
            self.public = public
        self.metadata = metadata or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, status={self.status})"

    def to_dict(self) -> Dict[str, Any]:
        """Serialize fault to a JSON-friendly dictionary."""
        data: Dict[str, Any] = {
            "name": type(self).__name__,
            "code": self.code,
            "message": self.message,
            "status": self.status,
        }
        if self.metadata:
            data["metadata"] = self.metadata
        return data


# ============================================================================
# Composition Faults
# ============================================================================

class ConfigurationFault(ArborFault):
    """
    Invalid controller or application declaration.

    Raised at registration time, never while serving requests.
    """
    code = "CONFIGURATION_ERROR"
    message = "Invalid configuration"
    domain = "config"


# ============================================================================
# Runtime Faults
# ============================================================================

class RequestFault(ArborFault):
    """Base class for request-related faults."""
    domain = "request"
    status = 400
    public = True


class BodyAlreadyConsumed(RequestFault):
    """The request body stream was read twice (500)."""
    code = "BODY_ALREADY_CONSUMED"
    message = "Request body stream has already been consumed"
    status = 500
    public = False


class InvalidJSON(RequestFault):
    """Invalid JSON payload (400)."""
    code = "INVALID_JSON"
    message = "Invalid JSON"


class PayloadTooLarge(RequestFault):
    """Request payload exceeds limits (413)."""
    code = "PAYLOAD_TOO_LARGE"
    message = "Payload too large"
    status = 413


class ResponseFault(ArborFault):
    """Programmer misuse of the response object."""
    code = "RESPONSE_ERROR"
    domain = "response"


class ResponseObjectSent(ResponseFault):
    """A handler returned the live response object without piping into it."""
    code = "RESPONSE_OBJECT_SENT"
    message = "Cannot send the response object."


class HeadersAlreadySent(ResponseFault):
    """Attempt to modify or send a response that is already committed."""
    code = "HEADERS_ALREADY_SENT"
    message = "Cannot send a response twice."


# ============================================================================
# HTTP Errors
# ============================================================================

class HTTPError(ArborFault):
    """
    Error carrying an HTTP status, meant to be raised from handlers.

    Example:
        ```python
        raise HTTPError(404, "User not found", headers={"x-reason": "gone"})
        ```
    """
    code = "HTTP_ERROR"
    domain = "http"

    def __init__(
        self,
        status: int = 500,
        message: Optional[str] = None,
        *,
        headers: Optional[Mapping[str, str]] = None,
        **metadata: Any,
    ):
        from .response import reason_phrase

        super().__init__(
            message=message if message is not None else reason_phrase(status),
            status=status,
            public=status < 500,
            metadata=metadata,
        )
        self.headers = dict(headers) if headers else None
