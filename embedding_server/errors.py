"""Typed error taxonomy shared by the pipeline and the HTTP layer.

Every failure that can leave the core carries an ``ErrorKind`` so callers
can tell permanent failures (bad input, unknown id) from retryable upstream
failures without inspecting messages.
"""
from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(str, Enum):
    """Distinct failure kinds surfaced at the service boundary."""

    VALIDATION = "validation_error"
    NOT_FOUND = "not_found"
    UPSTREAM_UNAVAILABLE = "upstream_unavailable"
    UPSTREAM_TIMEOUT = "upstream_timeout"
    EMPTY_RESULT = "empty_result"
    DIMENSION_MISMATCH = "dimension_mismatch"


class EmbeddingServerError(Exception):
    """Base class for all errors raised by the embedding server."""

    kind: ErrorKind = ErrorKind.VALIDATION
    retryable: bool = False

    def __init__(self, message: str, details: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        """Render the error as a response body."""
        body = {"error": self.message, "kind": self.kind.value}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(EmbeddingServerError, ValueError):
    """Input rejected before any work was done."""

    kind = ErrorKind.VALIDATION


class NotFoundError(EmbeddingServerError, LookupError):
    """Unknown record, document or chunk id."""

    kind = ErrorKind.NOT_FOUND


class UpstreamError(EmbeddingServerError):
    """The embedding/generation backend failed."""

    kind = ErrorKind.UPSTREAM_UNAVAILABLE
    retryable = True


class UpstreamUnavailable(UpstreamError):
    """Backend unreachable or answered with an error status."""

    kind = ErrorKind.UPSTREAM_UNAVAILABLE


class UpstreamTimeout(UpstreamError):
    """Backend did not answer within the configured timeout."""

    kind = ErrorKind.UPSTREAM_TIMEOUT


class EmptyResult(UpstreamError):
    """Backend answered but returned no vector or no text."""

    kind = ErrorKind.EMPTY_RESULT
    retryable = False


class DimensionMismatch(EmbeddingServerError, ValueError):
    """Two vectors of different dimensionality were compared."""

    kind = ErrorKind.DIMENSION_MISMATCH
