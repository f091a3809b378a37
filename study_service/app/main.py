from __future__ import annotations

import logging
import os
import threading
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI

from common.logger import setup_logger
from common.middleware.request_trace import RequestTraceMiddleware

from .api.errors import register_exception_handlers
from .api.health import router as health_router
from .api.v1 import api_router
from .event_handlers import run_purchase_consumer


load_dotenv()

logger = logging.getLogger(__name__)

PURCHASE_CONSUMER_ENABLED = "PURCHASE_CONSUMER_ENABLED"


def _consumer_enabled() -> bool:
    return os.getenv(PURCHASE_CONSUMER_ENABLED, "").strip().lower() in {"1", "true", "yes", "on"}


@asynccontextmanager
async def lifespan(app: FastAPI):  # pragma: no cover - framework hook
    """PURCHASE_CONSUMER_ENABLED 이면 구매 이벤트 Kafka 컨슈머 스레드를 함께 띄운다."""

    if not _consumer_enabled():
        yield
        return

    stop_flag = [False]
    consumer_thread = threading.Thread(
        target=run_purchase_consumer,
        args=(stop_flag,),
        name="purchase-consumer",
        daemon=True,
    )
    consumer_thread.start()

    try:
        yield
    finally:
        stop_flag[0] = True
        consumer_thread.join(timeout=10.0)


def create_app() -> FastAPI:
    setup_logger(name="study-service")
    app = FastAPI(
        title="Study Assistant Service",
        version="0.1.0",
        lifespan=lifespan,
    )

    # 공통 Request/Span ID 로그 미들웨어
    app.add_middleware(RequestTraceMiddleware)
    register_exception_handlers(app)

    app.include_router(health_router, tags=["health"])
    app.include_router(api_router, prefix="/api/v1")

    return app


app = create_app()


def main() -> None:
    import uvicorn

    port = int(os.getenv("STUDY_SERVICE_PORT", "8003"))
    uvicorn.run(
        "study_service.app.main:app",
        host="0.0.0.0",
        port=port,
        reload=False,
        access_log=False,
    )


if __name__ == "__main__":  # pragma: no cover - CLI entrypoint
    main()
