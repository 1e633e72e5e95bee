"""
Engine error → HTTP mapping

Routes catch SwapError and re-raise the HTTPException built here, so every
endpoint reports failures the same way:

- NotFoundError          → 404
- ForbiddenError         → 403
- InvalidStateError      → 409
- ConflictError          → 409
- InvalidOperationError  → 400
- TransientStorageError  → 503 (nothing committed, client may retry)

The detail string is "<CODE>: <message>".
"""

from fastapi import HTTPException

from slotswap.services.errors import (
    ConflictError,
    ForbiddenError,
    InvalidOperationError,
    InvalidStateError,
    NotFoundError,
    SwapError,
    TransientStorageError,
)

_STATUS_BY_ERROR = (
    (NotFoundError, 404),
    (ForbiddenError, 403),
    (InvalidStateError, 409),
    (ConflictError, 409),
    (InvalidOperationError, 400),
    (TransientStorageError, 503),
)


def status_code_for(error: SwapError) -> int:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(error, error_type):
            return status_code
    return 400


def to_http_exception(error: SwapError) -> HTTPException:
    """
    Build the HTTPException for an engine error.

    Args:
        error: Raised SwapError

    Returns:
        HTTPException with mapped status and "<CODE>: <message>" detail
    """
    headers = {"Retry-After": "1"} if isinstance(error, TransientStorageError) else None
    return HTTPException(
        status_code=status_code_for(error),
        detail=f"{error.code}: {error.message}",
        headers=headers,
    )
