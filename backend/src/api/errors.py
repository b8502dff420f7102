"""
Translation of service-layer exceptions to HTTP responses.

Status mapping:
- NotFoundError -> 404
- ValidationError -> 400
- PermissionDeniedError -> 403
- ConflictError -> 409 (detail carries current_status/current_version)
- OperationCancelledError -> 409 (detail carries processed/total)
- ExternalSourceError -> 502
"""

from fastapi import HTTPException, status

from backend.src.services.exceptions import (
    ConflictError,
    ExternalSourceError,
    NotFoundError,
    OperationCancelledError,
    PermissionDeniedError,
    ServiceError,
    ValidationError,
)
from backend.src.utils.logging_config import get_logger


logger = get_logger("api")


def to_http_exception(error: ServiceError) -> HTTPException:
    """
    Build the HTTPException for a service error.

    Args:
        error: Exception raised by a service

    Returns:
        HTTPException to raise from the endpoint
    """
    if isinstance(error, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(error))

    if isinstance(error, ValidationError):
        detail = {"message": error.message, "field": error.field} if error.field else error.message
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)

    if isinstance(error, PermissionDeniedError):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=error.message)

    if isinstance(error, ConflictError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=error.to_detail())

    if isinstance(error, OperationCancelledError):
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={
                "message": error.message,
                "operation": error.operation,
                "processed": error.processed,
                "total": error.total,
            },
        )

    if isinstance(error, ExternalSourceError):
        logger.warning(f"External calendar failure ({error.operation}): {error.message}")
        return HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"External calendar error: {error.message}",
        )

    logger.error(f"Unmapped service error: {error}", exc_info=True)
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(error))
