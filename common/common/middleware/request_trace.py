import logging
import time
import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response


REQUEST_ID_HEADER = "X-Request-Id"
SPAN_ID_HEADER = "X-Span-Id"

# 로그에서 제외할 엔드포인트 경로 목록
IGNORED_LOG_PATHS: set[str] = {"/health"}


class RequestTraceMiddleware(BaseHTTPMiddleware):
    """Request/Span ID 를 부여하고 요청 단위 로그를 남기는 미들웨어.

    - X-Request-Id 가 없으면 새로 생성하고, X-Span-Id 가 없으면 "0" 을 쓴다.
    - request.state 에 두 값을 저장하고 응답 헤더에도 그대로 돌려준다.
    - 요청 바디는 이미지(base64)나 토큰이 섞일 수 있으므로 로그에 남기지 않는다.
    """

    def __init__(self, app, logger: logging.Logger | None = None) -> None:  # type: ignore[override]
        super().__init__(app)
        self._logger = logger or logging.getLogger("request_trace")

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        span_id = request.headers.get(SPAN_ID_HEADER) or "0"
        request.state.request_id = request_id
        request.state.span_id = span_id

        should_log = request.url.path not in IGNORED_LOG_PATHS
        start = time.monotonic()

        try:
            response = await call_next(request)
        except Exception:
            if should_log:
                self._logger.exception(
                    "request failed",
                    extra=self._build_extra(request, request_id, span_id, start),
                )
            raise

        response.headers.setdefault(REQUEST_ID_HEADER, request_id)
        response.headers.setdefault(SPAN_ID_HEADER, span_id)

        if should_log:
            self._logger.info(
                "completed request",
                extra=self._build_extra(
                    request, request_id, span_id, start, status=response.status_code
                ),
            )
        return response

    @staticmethod
    def _build_extra(
        request: Request,
        request_id: str,
        span_id: str,
        start: float,
        status: int | None = None,
    ) -> dict[str, object]:
        extra: dict[str, object] = {
            "request_id": request_id,
            "span_id": span_id,
            "method": request.method,
            "path": request.url.path,
            "duration": f"{(time.monotonic() - start) * 1000:.3f}ms",
        }
        if status is not None:
            extra["status"] = status
        return extra
