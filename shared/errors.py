"""
Shared error handling for the Delay Repay eligibility services.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel
from opentelemetry import trace


class ErrorResponse(BaseModel):
    """Standard error response format."""

    trace_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = {}


class EligibilityEngineError(Exception):
    """Base exception for eligibility services."""

    status_code: int = 400

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        # Get trace ID from current span
        trace_id = None
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


class ValidationError(EligibilityEngineError):
    """Malformed or missing input. Never retried."""

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class UnknownReferenceDataError(EligibilityEngineError):
    """A lookup key (e.g. a TOC code) has no reference data row."""

    def __init__(self, message: str = "Unknown reference data", details: Optional[Dict[str, Any]] = None):
        super().__init__("UNKNOWN_REFERENCE_DATA", message, details)


class InactiveOperatorError(EligibilityEngineError):
    """The TOC exists but does not currently accept delay repay claims."""

    status_code = 422

    def __init__(self, message: str = "Operator is not active", details: Optional[Dict[str, Any]] = None):
        super().__init__("INACTIVE_OPERATOR", message, details)


class NotFoundError(EligibilityEngineError):
    """Requested record does not exist."""

    status_code = 404

    def __init__(self, message: str = "Not found", details: Optional[Dict[str, Any]] = None):
        super().__init__("NOT_FOUND", message, details)


class ReferenceDataError(EligibilityEngineError):
    """Reference data is internally inconsistent (rejected at load time)."""

    status_code = 500

    def __init__(self, message: str = "Invalid reference data", details: Optional[Dict[str, Any]] = None):
        super().__init__("REFERENCE_DATA_ERROR", message, details)


class StorageError(EligibilityEngineError):
    """Connectivity or transaction failure. Safe to retry the whole request."""

    status_code = 503

    def __init__(self, message: str = "Storage error", details: Optional[Dict[str, Any]] = None):
        super().__init__("STORAGE_ERROR", message, details)
