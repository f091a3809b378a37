from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from .models.credit import CreditKind
from .models.purchase import ProductGrant


DEFAULT_CONFIG_FILE_NAME = "config.yaml"

LEDGER_REMOTE_TIMEOUT_SECONDS = "LEDGER_REMOTE_TIMEOUT_SECONDS"
LEDGER_READ_RETRIES = "LEDGER_READ_RETRIES"
LEDGER_READ_RETRY_DELAY_SECONDS = "LEDGER_READ_RETRY_DELAY_SECONDS"
LEDGER_SPEND_MAX_ATTEMPTS = "LEDGER_SPEND_MAX_ATTEMPTS"
LEDGER_SWEEP_ON_READ = "LEDGER_SWEEP_ON_READ"
LOCAL_DB_PATH = "LOCAL_DB_PATH"
LOCAL_PROFILE_ID = "LOCAL_PROFILE_ID"
AUTH_JWT_SECRET = "AUTH_JWT_SECRET"
AUTH_JWT_AUDIENCE = "AUTH_JWT_AUDIENCE"
AUTH_SERVICE_TOKEN = "AUTH_SERVICE_TOKEN"
GENERATION_BASE_URL = "GENERATION_BASE_URL"
GENERATION_BEARER_TOKEN = "GENERATION_BEARER_TOKEN"
GENERATION_TIMEOUT_SECONDS = "GENERATION_TIMEOUT_SECONDS"


@dataclass(slots=True)
class LedgerSettings:
    """원장 엔진 동작 설정.

    원격 호출은 remote_timeout_seconds 안에 끝나지 않으면 실패로 간주한다.
    생성(AI) 호출의 30초보다 짧게 잡는다.
    """

    remote_timeout_seconds: float = 8.0
    read_retries: int = 2
    read_retry_delay_seconds: float = 0.2
    spend_max_attempts: int = 3
    sweep_on_read: bool = True


@dataclass(slots=True)
class LocalStoreConfig:
    db_path: str = "data/local.db"
    profile_id: str = "local"


@dataclass(slots=True)
class AuthConfig:
    jwt_secret: str | None = None
    jwt_audience: str = "authenticated"
    # 내부 서비스(관리자/이벤트 지급) 호출용 공유 토큰. 비어 있으면 지급 API 를 닫는다.
    service_token: str | None = None


@dataclass(slots=True)
class GenerationConfig:
    base_url: str | None = None
    bearer_token: str | None = None
    timeout_seconds: float = 30.0


@dataclass(slots=True)
class CatalogConfig:
    """config.yaml 의 상품 카탈로그와 기능별 크레딧 가격."""

    products: dict[str, ProductGrant] = field(default_factory=dict)
    feature_costs: dict[str, int] = field(default_factory=dict)

    def find_product(self, product_id: str) -> ProductGrant | None:
        return self.products.get(product_id.strip().lower())


def _read_int(name: str, default: int, minimum: int = 0) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be an integer if set, got: {raw!r}") from exc
    if value < minimum:
        raise RuntimeError(f"{name} must be >= {minimum}, got: {value}")
    return value


def _read_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be a number if set, got: {raw!r}") from exc
    if value <= 0:
        raise RuntimeError(f"{name} must be positive, got: {value}")
    return value


def _read_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name, "").strip().lower()
    if not raw:
        return default
    return raw in {"1", "true", "yes", "on"}


def load_ledger_settings() -> LedgerSettings:
    return LedgerSettings(
        remote_timeout_seconds=_read_float(LEDGER_REMOTE_TIMEOUT_SECONDS, 8.0),
        read_retries=_read_int(LEDGER_READ_RETRIES, 2),
        read_retry_delay_seconds=_read_float(LEDGER_READ_RETRY_DELAY_SECONDS, 0.2),
        spend_max_attempts=_read_int(LEDGER_SPEND_MAX_ATTEMPTS, 3, minimum=1),
        sweep_on_read=_read_bool(LEDGER_SWEEP_ON_READ, True),
    )


def load_local_store_config() -> LocalStoreConfig:
    return LocalStoreConfig(
        db_path=os.getenv(LOCAL_DB_PATH) or "data/local.db",
        profile_id=os.getenv(LOCAL_PROFILE_ID) or "local",
    )


def load_auth_config() -> AuthConfig:
    return AuthConfig(
        jwt_secret=os.getenv(AUTH_JWT_SECRET) or None,
        jwt_audience=os.getenv(AUTH_JWT_AUDIENCE) or "authenticated",
        service_token=os.getenv(AUTH_SERVICE_TOKEN) or None,
    )


def load_generation_config() -> GenerationConfig:
    return GenerationConfig(
        base_url=os.getenv(GENERATION_BASE_URL) or None,
        bearer_token=os.getenv(GENERATION_BEARER_TOKEN) or None,
        timeout_seconds=_read_float(GENERATION_TIMEOUT_SECONDS, 30.0),
    )


def _find_config_path() -> Path:
    """현재 작업 디렉토리에서 상위로 올라가며 config.yaml 을 찾는다."""

    current = Path.cwd()
    for directory in (current, *current.parents):
        candidate = directory / DEFAULT_CONFIG_FILE_NAME
        if candidate.is_file():
            return candidate

    raise RuntimeError(
        f"{DEFAULT_CONFIG_FILE_NAME} not found. Place config.yaml in project root.",
    )


def parse_catalog(data: dict, source: str = DEFAULT_CONFIG_FILE_NAME) -> CatalogConfig:
    """config.yaml 내용(dict)에서 상품/기능 가격표를 읽는다."""

    products: dict[str, ProductGrant] = {}
    for product_id, item in (data.get("products") or {}).items():
        if not isinstance(item, dict):
            continue
        key = str(product_id).strip().lower()
        try:
            credits = int(item.get("credits", 0))
            kind = CreditKind(str(item.get("kind") or CreditKind.PERMANENT))
            duration_days = item.get("duration_days")
            duration_days = int(duration_days) if duration_days is not None else None
            bonus_permanent = int(item.get("bonus_permanent", 0))
        except (TypeError, ValueError) as exc:  # noqa: TRY003
            raise RuntimeError(f"invalid product {product_id!r} in {source}: {item!r}") from exc

        if kind is CreditKind.EXPIRING:
            if not duration_days or duration_days <= 0:
                raise RuntimeError(
                    f"expiring product {product_id!r} in {source} needs a positive duration_days"
                )
            grant = ProductGrant(
                product_id=key,
                permanent=bonus_permanent,
                expiring=credits,
                duration_days=duration_days,
            )
        else:
            grant = ProductGrant(product_id=key, permanent=credits + bonus_permanent)
        products[key] = grant

    feature_costs: dict[str, int] = {}
    for feature, cost in (data.get("features") or {}).items():
        try:
            value = int(cost)
        except (TypeError, ValueError) as exc:  # noqa: TRY003
            raise RuntimeError(f"invalid cost for feature {feature!r} in {source}: {cost!r}") from exc
        if value <= 0:
            raise RuntimeError(f"feature {feature!r} cost must be positive in {source}")
        feature_costs[str(feature)] = value

    return CatalogConfig(products=products, feature_costs=feature_costs)


def load_catalog_config() -> CatalogConfig:
    path = _find_config_path()
    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    return parse_catalog(data, source=str(path))
