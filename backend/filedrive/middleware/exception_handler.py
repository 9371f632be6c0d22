"""Exception handler middleware for structured error responses."""

import logging
from fastapi import Request
from fastapi.responses import JSONResponse
from ..exceptions import DriveException

logger = logging.getLogger(__name__)


async def drive_exception_handler(request: Request, exc: DriveException) -> JSONResponse:
    """
    Handle custom exceptions and return structured JSON responses.

    Client errors (4xx) are logged at INFO, everything else at ERROR.

    Args:
        request: FastAPI request object
        exc: DriveException instance

    Returns:
        JSONResponse with error details
    """
    level = logging.INFO if exc.status_code < 500 else logging.ERROR
    logger.log(
        level,
        f"DriveException: {exc.error_code.value}",
        extra={
            "error_code": exc.error_code.value,
            "path": request.url.path,
            "method": request.method,
            "details": exc.details,
            "status_code": exc.status_code
        }
    )

    headers = {"WWW-Authenticate": "Owner"} if exc.status_code == 401 else None
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict(),
        headers=headers,
    )
