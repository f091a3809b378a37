"""FastAPI DI 용 공용 구성요소 팩토리.

설정과 로컬 DB, 이벤트 발행기처럼 프로세스 동안 한 번만 만들면 되는 것들을 모은다.
원격 DB 는 인증 사용자 요청에서만 연결한다.
"""

from __future__ import annotations

import logging
import secrets
from functools import lru_cache

from fastapi import Depends, Header, Security
from fastapi.security import APIKeyHeader
from pymongo.database import Database

from common.eventbus.config import is_kafka_configured
from common.eventbus.kafka import get_kafka_event_bus
from common.mongo.client import get_database

from .config import (
    AuthConfig,
    CatalogConfig,
    LedgerSettings,
    LocalStoreConfig,
    load_auth_config,
    load_catalog_config,
    load_generation_config,
    load_ledger_settings,
    load_local_store_config,
)
from .exceptions import CreditStoreUnavailableError, ServiceTokenRequiredError
from .models.identity import Identity
from .repositories.local_db import LocalDatabase, get_local_database
from .services.credit_events import CreditEventPublisher
from .services.generation_client import GenerationClient
from .services.identity import IdentityResolver, bearer_token


logger = logging.getLogger(__name__)

service_token_header = APIKeyHeader(name="X-Service-Token", auto_error=False)


@lru_cache(maxsize=1)
def get_ledger_settings() -> LedgerSettings:
    return load_ledger_settings()


@lru_cache(maxsize=1)
def get_local_store_config() -> LocalStoreConfig:
    return load_local_store_config()


@lru_cache(maxsize=1)
def get_catalog() -> CatalogConfig:
    return load_catalog_config()


@lru_cache(maxsize=1)
def get_auth_config() -> AuthConfig:
    return load_auth_config()


@lru_cache(maxsize=1)
def get_identity_resolver() -> IdentityResolver:
    return IdentityResolver(get_auth_config(), get_local_store_config().profile_id)


@lru_cache(maxsize=1)
def get_generation_client() -> GenerationClient:
    return GenerationClient(load_generation_config())


@lru_cache(maxsize=1)
def get_credit_event_publisher() -> CreditEventPublisher:
    if not is_kafka_configured():
        logger.info("KAFKA_BOOTSTRAP_SERVERS not set, credit events are not published")
        return CreditEventPublisher(None)
    return CreditEventPublisher(get_kafka_event_bus())


def get_local_db(
    config: LocalStoreConfig = Depends(get_local_store_config),
) -> LocalDatabase:
    return get_local_database(config.db_path)


def remote_database() -> Database:
    """원격 DB 를 연결해 반환한다. 연결 실패는 저장소 장애로 취급한다."""
    try:
        return get_database()
    except RuntimeError as exc:
        logger.error("remote database unavailable: %s", exc)
        raise CreditStoreUnavailableError("remote store unavailable") from exc


def get_identity(
    authorization: str | None = Header(default=None),
    resolver: IdentityResolver = Depends(get_identity_resolver),
) -> Identity:
    """요청마다 Authorization 헤더로 identity 를 새로 결정한다."""
    return resolver.resolve(bearer_token(authorization))


def require_service_token(
    token: str | None = Security(service_token_header),
    config: AuthConfig = Depends(get_auth_config),
) -> None:
    """내부 서비스 전용 경로 보호. 토큰이 설정되지 않았으면 모든 호출을 거절한다."""
    if not config.service_token:
        raise ServiceTokenRequiredError("service token is not configured for this endpoint")
    if not token or not secrets.compare_digest(token, config.service_token):
        logger.warning("rejected internal call with missing or invalid service token")
        raise ServiceTokenRequiredError("valid X-Service-Token header required")
