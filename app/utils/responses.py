"""
Standardized response utilities
"""

import logging
from typing import Any, Optional
from fastapi import Request, status
from fastapi.responses import JSONResponse

from app.core.errors import AdmissionError, PreconditionFailed, TransientStoreError
from app.schemas.common import StandardResponse, ErrorResponse

logger = logging.getLogger(__name__)

def success_response(
    message: str,
    data: Any = None,
    status_code: int = 200
) -> JSONResponse:
    """Create standardized success response"""
    response = StandardResponse(
        success=True,
        message=message,
        data=data
    )
    return JSONResponse(
        content=response.dict(),
        status_code=status_code
    )

def error_response(
    message: str,
    error_code: Optional[str] = None,
    details: Any = None,
    status_code: int = 400
) -> JSONResponse:
    """Create standardized error response"""
    response = ErrorResponse(
        message=message,
        error_code=error_code,
        details=details
    )
    return JSONResponse(
        content=response.dict(),
        status_code=status_code
    )

async def admission_error_handler(request: Request, exc: AdmissionError) -> JSONResponse:
    """Map lifecycle errors to the standard error body"""
    logger.info(f"{request.method} {request.url.path} rejected: {exc.error_code}")
    return error_response(
        message=exc.message,
        error_code=exc.error_code,
        details=exc.details,
        status_code=exc.status_code
    )

async def store_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Store outages and lost races are retryable by the caller"""
    logger.error(f"{request.method} {request.url.path} failed: {exc}")
    if isinstance(exc, PreconditionFailed):
        return error_response(
            message="This item was updated by someone else. Please try again.",
            error_code="conflict",
            status_code=status.HTTP_409_CONFLICT
        )
    return error_response(
        message="The service is temporarily unavailable. Please try again shortly.",
        error_code="store_unavailable",
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE
    )

EXCEPTION_HANDLERS = {
    AdmissionError: admission_error_handler,
    TransientStoreError: store_error_handler,
    PreconditionFailed: store_error_handler,
}
