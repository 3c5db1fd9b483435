"""
Shared error handling for the scoped ACL engine.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel, Field

try:
    from opentelemetry import trace
    HAS_OPENTELEMETRY = True
except ImportError:
    HAS_OPENTELEMETRY = False


class ErrorResponse(BaseModel):
    """Standard error response format."""

    trace_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class AccessControlException(Exception):
    """Base exception for the ACL engine."""

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        trace_id = None
        if HAS_OPENTELEMETRY:
            current_span = trace.get_current_span()
            if current_span and current_span.is_recording():
                span_context = current_span.get_span_context()
                if span_context.trace_id != 0:
                    trace_id = f"{span_context.trace_id:032x}"

        return ErrorResponse(
            trace_id=trace_id,
            code=self.code,
            message=self.message,
            details=self.details
        )


class InvalidRuleError(AccessControlException):
    """A rule failed validation and was not registered."""

    def __init__(self, message: str = "The ACL rule was invalid and could not be added.",
                 details: Optional[Dict[str, Any]] = None):
        super().__init__("INVALID_RULE", message, details)


class MalformedScopeError(AccessControlException):
    """A scope component cannot be encoded into a key."""

    def __init__(self, message: str = "Malformed scope", details: Optional[Dict[str, Any]] = None):
        super().__init__("MALFORMED_SCOPE", message, details)


class UnknownCallbackError(AccessControlException):
    """A denial callback handle has no registered function."""

    def __init__(self, handle: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("UNKNOWN_CALLBACK", f"No callback registered for handle '{handle}'", details)


class AccessDeniedError(AccessControlException):
    """Access to a scope was denied.

    The engine reports denials as a ``Decision``; this error is for callers
    that prefer to signal a denial by raising.
    """

    def __init__(self, message: str = "You are not authorized to access this resource.",
                 status_code: int = 401, details: Optional[Dict[str, Any]] = None):
        self.status_code = status_code
        super().__init__("ACCESS_DENIED", message, details)
