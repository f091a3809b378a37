import json
import logging
import os
import sys


# JsonFormatter 가 extra 로부터 그대로 옮겨 담는 필드 목록
EXTRA_LOG_KEYS: tuple[str, ...] = (
    "request_id",
    "span_id",
    "method",
    "path",
    "status",
    "duration",
    "user_id",
    "identity_kind",
    "transaction_id",
    "feature",
)


def setup_logger(name: str = "study-assistant", level: str | None = None) -> logging.Logger:
    """프로세스 전역 로거를 설정하고 반환한다.

    Args:
        name: 로거 이름 (SERVICE_NAME 환경변수가 있으면 그 값을 우선 사용)
        level: 로그 레벨 (None 이면 LOG_LEVEL 환경변수, 없으면 INFO)

    Returns:
        JSON 포맷 핸들러가 연결된 logging.Logger
    """
    if level is None:
        level = os.getenv("LOG_LEVEL", "INFO")

    log_level = getattr(logging, level.upper(), logging.INFO)

    service_name = os.getenv("SERVICE_NAME", name)
    logger = logging.getLogger(service_name)
    logger.setLevel(log_level)

    # 중복 출력 방지
    if logger.handlers:
        logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    handler.setFormatter(JsonFormatter(service_name=service_name))
    logger.addHandler(handler)

    # 모듈 로거(getLogger(__name__))들은 루트로 전파되므로 루트에도 같은 핸들러를 건다.
    root_logger = logging.getLogger()
    if not root_logger.handlers:
        root_logger.addHandler(handler)
        root_logger.setLevel(log_level)

    return logger


def get_logger(name: str) -> logging.Logger:
    """모듈별 로거를 가져온다."""
    return logging.getLogger(name)


class JsonFormatter(logging.Formatter):
    """한 줄에 하나의 JSON 객체를 출력하는 포맷터.

    - datetime, level, logger, message 를 기본으로 포함한다.
    - EXTRA_LOG_KEYS 에 해당하는 extra 값이 있으면 함께 기록한다.
    - 예외 정보는 exc_info 필드에 문자열로 추가한다.
    """

    def __init__(self, service_name: str | None = None) -> None:
        super().__init__(datefmt="%Y-%m-%dT%H:%M:%S")
        self._service_name = service_name

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        log_record: dict[str, object] = {
            "datetime": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for key in EXTRA_LOG_KEYS:
            if hasattr(record, key):
                log_record[key] = getattr(record, key)

        service_name = getattr(record, "service_name", None) or self._service_name
        if service_name:
            log_record["service_name"] = service_name

        if record.exc_info:
            log_record["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(log_record, ensure_ascii=False, default=str)
