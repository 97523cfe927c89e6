"""
api/errors.py -- AppError -> ErrorResponse envelope conversion.

Shared by the exception handlers in api/main.py and by routes that need to
decorate an error response (e.g. Cache-Control on sign-in failures).

Security note: detail is copied into the body only for 4xx errors. For
InternalError and DeliveryError it goes to the log, never to the client.
"""

from __future__ import annotations

import logging

from fastapi.responses import JSONResponse

from api.models import ErrorDetail, ErrorResponse
from core.errors import AppError

logger = logging.getLogger("gatehouse.api")


def app_error_response(exc: AppError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s: %s (%s)", exc.error_code, exc.message, exc.detail)
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=exc.error_code,
                message=exc.message,
                detail=exc.detail if exc.exposes_detail else None,
            )
        ).model_dump(),
    )
