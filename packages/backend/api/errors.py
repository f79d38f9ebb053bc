"""Mapping of service errors to HTTP responses."""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse

from core.exceptions import (
    AlreadyInProgressError,
    ChatError,
    DownloadCancelledError,
    ModelInitializationError,
    ModelNotReadyError,
    NotFoundError,
    RateLimitedError,
    TransferFailedError,
)

logger = logging.getLogger(__name__)

_STATUS_CODES: list[tuple[type[ChatError], int]] = [
    (NotFoundError, 404),
    (AlreadyInProgressError, 409),
    (DownloadCancelledError, 409),
    (RateLimitedError, 429),
    (TransferFailedError, 502),
    (ModelNotReadyError, 503),
    (ModelInitializationError, 503),
]


def status_code_for(exc: ChatError) -> int:
    for error_type, status_code in _STATUS_CODES:
        if isinstance(exc, error_type):
            return status_code
    return 400


def error_type_name(exc: ChatError) -> str:
    return type(exc).__name__


async def chat_error_handler(request: Request, exc: ChatError) -> JSONResponse:
    status_code = status_code_for(exc)
    logger.info("%s %s -> %d %s", request.method, request.url.path, status_code, error_type_name(exc))
    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "error": error_type_name(exc)},
    )
