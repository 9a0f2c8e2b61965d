from __future__ import annotations

import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from src.application.dtos.common_dto import ErrorResponse
from src.domain.errors import (
    IMAGE_UNAVAILABLE,
    NotAuthorizedError,
    NotFoundError,
    StorageFailure,
    ValidationError,
)

logger = logging.getLogger(__name__)

STORAGE_FAILURE_DETAIL = "Storage is temporarily unavailable, please retry later"


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND, content=ErrorResponse(detail=exc.message).model_dump()
        )

    @app.exception_handler(NotAuthorizedError)
    async def not_authorized_handler(request: Request, exc: NotAuthorizedError) -> JSONResponse:
        logger.info("Access denied: %s", exc.message, extra={"event": "auth"})
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND, content=ErrorResponse(detail=IMAGE_UNAVAILABLE).model_dump()
        )

    @app.exception_handler(ValidationError)
    async def validation_handler(request: Request, exc: ValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST, content=ErrorResponse(detail=exc.message).model_dump()
        )

    @app.exception_handler(StorageFailure)
    async def storage_failure_handler(request: Request, exc: StorageFailure) -> JSONResponse:
        logger.error("Storage failure: %s", exc.message, exc_info=exc, extra={"event": "storage"})
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content=ErrorResponse(detail=STORAGE_FAILURE_DETAIL).model_dump()
        )
