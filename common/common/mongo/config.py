from __future__ import annotations

import os


MONGO_URI_ENV = "MONGO_URI"
MONGO_DB_NAME_ENV = "MONGO_DB_NAME"
MONGO_SERVER_SELECTION_TIMEOUT_MS_ENV = "MONGO_SERVER_SELECTION_TIMEOUT_MS"

DEFAULT_SERVER_SELECTION_TIMEOUT_MS = 5000


def get_mongo_uri() -> str:
    """원격 저장소(MongoDB) 연결 URI 를 반환한다.

    설정되지 않았으면 원격 계정을 쓸 수 없으므로 즉시 RuntimeError 를 발생시킨다.
    """

    value = os.getenv(MONGO_URI_ENV)
    if not value:
        raise RuntimeError(
            f"{MONGO_URI_ENV} environment variable is required for MongoDB",
        )
    return value


def get_mongo_db_name() -> str | None:
    """MONGO_DB_NAME 이 비어 있으면 None (URI 의 기본 DB 사용)."""

    value = os.getenv(MONGO_DB_NAME_ENV, "").strip()
    return value or None


def get_server_selection_timeout_ms() -> int:
    """서버 선택 타임아웃(ms). 네트워크 단절 시 무한 대기하지 않도록 상한을 둔다."""

    raw_value = os.getenv(MONGO_SERVER_SELECTION_TIMEOUT_MS_ENV, "").strip()
    if not raw_value:
        return DEFAULT_SERVER_SELECTION_TIMEOUT_MS

    try:
        value = int(raw_value)
    except ValueError as exc:  # noqa: TRY003
        raise RuntimeError(
            f"{MONGO_SERVER_SELECTION_TIMEOUT_MS_ENV} must be an integer value, "
            f"got: {raw_value!r}"
        ) from exc

    if value <= 0:
        return DEFAULT_SERVER_SELECTION_TIMEOUT_MS
    return value
