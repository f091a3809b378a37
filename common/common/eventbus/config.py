from __future__ import annotations

import os


KAFKA_BOOTSTRAP_SERVERS_ENV = "KAFKA_BOOTSTRAP_SERVERS"
KAFKA_GROUP_ID_ENV = "KAFKA_GROUP_ID"


def get_brokers() -> str:
    value = os.getenv(KAFKA_BOOTSTRAP_SERVERS_ENV)
    if not value:
        raise RuntimeError(f"{KAFKA_BOOTSTRAP_SERVERS_ENV} environment variable is required")
    return value


def get_group_id() -> str:
    value = os.getenv(KAFKA_GROUP_ID_ENV)
    if not value:
        raise RuntimeError(f"{KAFKA_GROUP_ID_ENV} environment variable is required")
    return value


def is_kafka_configured() -> bool:
    """브로커 주소가 설정되어 있는지. 로컬 단독 실행 시에는 이벤트 발행을 건너뛴다."""
    return bool(os.getenv(KAFKA_BOOTSTRAP_SERVERS_ENV, "").strip())
