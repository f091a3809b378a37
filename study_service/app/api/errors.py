"""도메인 예외를 HTTP 응답으로 바꾸는 핸들러.

응답 본문은 {"detail": {"code": ..., "message": ...}} 형태로 맞춘다.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from ..exceptions import (
    ConcurrentSpendError,
    CorruptLedgerDataError,
    CreditStoreUnavailableError,
    GenerationError,
    IdentityMismatchError,
    IdentityRequiredError,
    RecordNotFoundError,
    ServiceTokenRequiredError,
    StudyServiceError,
)


logger = logging.getLogger(__name__)


# 순서가 중요하다. 먼저 일치하는 항목을 쓴다.
_ERROR_MAP: list[tuple[type[Exception], int, str]] = [
    (CreditStoreUnavailableError, status.HTTP_503_SERVICE_UNAVAILABLE, "store_unavailable"),
    (CorruptLedgerDataError, status.HTTP_500_INTERNAL_SERVER_ERROR, "corrupt_ledger_data"),
    (IdentityRequiredError, status.HTTP_401_UNAUTHORIZED, "identity_required"),
    (IdentityMismatchError, status.HTTP_403_FORBIDDEN, "identity_mismatch"),
    (ServiceTokenRequiredError, status.HTTP_403_FORBIDDEN, "service_token_required"),
    (ConcurrentSpendError, status.HTTP_409_CONFLICT, "concurrent_spend"),
    (GenerationError, status.HTTP_502_BAD_GATEWAY, "generation_failed"),
    (RecordNotFoundError, status.HTTP_404_NOT_FOUND, "not_found"),
]


def error_response(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"detail": {"code": code, "message": message}},
    )


async def study_service_error_handler(request: Request, exc: Exception) -> JSONResponse:
    for exc_type, status_code, code in _ERROR_MAP:
        if isinstance(exc, exc_type):
            if status_code >= 500:
                logger.error("%s on %s %s: %s", code, request.method, request.url.path, exc)
            return error_response(status_code, code, str(exc))
    logger.exception("unhandled study service error", exc_info=exc)
    return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "internal_error", "internal error")


async def value_error_handler(request: Request, exc: Exception) -> JSONResponse:
    return error_response(status.HTTP_400_BAD_REQUEST, "invalid_request", str(exc))


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(StudyServiceError, study_service_error_handler)
    app.add_exception_handler(ValueError, value_error_handler)
