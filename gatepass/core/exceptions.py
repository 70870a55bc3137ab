"""Error taxonomy for the Gatepass workflow engine.

Every error raised by the engine derives from GatepassError and carries the
status code the (external) HTTP layer should answer with, plus whether the
message is safe to show to the caller.
"""

import logging
from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel

logger = logging.getLogger(__name__)


class GatepassError(Exception):
    """Base class for all workflow engine errors."""

    status_code: int = 500
    code: str = "internal_error"
    expose: bool = True

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(GatepassError):
    """Malformed or out-of-range input."""

    status_code = 400
    code = "validation_error"


class UnknownRoleError(ValidationError):
    """Role name matches neither a canonical role nor a legacy alias."""

    code = "unknown_role"

    def __init__(self, role: str):
        super().__init__(f"Unknown role: {role}", details={"role": role})
        self.role = role


class AuthorizationError(GatepassError):
    """Approver is not entitled to decide for this role on this request."""

    status_code = 403
    code = "forbidden"


class NotFoundError(GatepassError):
    """Unknown request, requester or approver."""

    status_code = 404
    code = "not_found"


class InvalidStateError(GatepassError):
    """Operation not allowed in the current state of the request."""

    status_code = 409
    code = "invalid_state"


class TransientStoreError(GatepassError):
    """Retryable persistence failure (contention, lost connection)."""

    status_code = 503
    code = "service_unavailable"
    expose = False


class WriteConflictError(TransientStoreError):
    """Conditional write lost against a concurrent writer."""

    code = "write_conflict"

    def __init__(self, kind: str, doc_id: str, expected_version: int):
        super().__init__(
            f"Version conflict on {kind}/{doc_id} (expected version {expected_version})"
        )
        self.kind = kind
        self.doc_id = doc_id
        self.expected_version = expected_version


class ErrorResponse(BaseModel):
    """Error body handed to the transport layer."""
    error: str
    detail: Optional[str] = None
    code: Optional[str] = None


def error_response(exc: Exception) -> Tuple[int, ErrorResponse]:
    """
    Map an exception to a status code and a client-safe error body.

    Validation, authorization, state and role errors keep their message.
    Transient store errors become a generic service-unavailable answer.
    Anything else is logged with its traceback and reported generically.
    """
    if isinstance(exc, GatepassError) and exc.expose:
        return exc.status_code, ErrorResponse(
            error=exc.message,
            detail=str(exc.details) if exc.details else None,
            code=exc.code,
        )

    if isinstance(exc, TransientStoreError):
        logger.warning(f"Transient store failure surfaced to caller: {exc}")
        return exc.status_code, ErrorResponse(
            error="Service temporarily unavailable, please retry",
            code=exc.code,
        )

    logger.exception("Unexpected error in workflow engine", exc_info=exc)
    return 500, ErrorResponse(error="Internal server error", code="internal_error")
