from __future__ import annotations

import logging
import threading
from typing import Optional

from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database

from .config import (
    get_mongo_db_name,
    get_mongo_uri,
    get_server_selection_timeout_ms,
)


logger = logging.getLogger(__name__)


_client: Optional[MongoClient] = None
_db: Optional[Database] = None
_lock = threading.Lock()

# 유저 소유 학습 기록 컬렉션 (user_id + created_at desc 인덱스를 공유한다)
STUDY_RECORD_COLLECTIONS: tuple[str, ...] = (
    "history",
    "notes",
    "scan_notes",
    "quiz_maker",
    "flash_card_sets",
)


def get_client() -> MongoClient:
    """전역 MongoClient 싱글톤을 반환한다.

    - MONGO_URI 로 접속하고 ping 으로 연결을 검증한다.
    - 서버 선택 타임아웃을 걸어 원격 장애 시 호출이 무한정 걸려 있지 않게 한다.
    - 크레딧/구매 컬렉션의 인덱스를 한 번만 생성한다.
    """

    global _client, _db

    if _client is not None:
        return _client

    with _lock:
        if _client is not None:
            return _client

        client = MongoClient(
            get_mongo_uri(),
            serverSelectionTimeoutMS=get_server_selection_timeout_ms(),
            tz_aware=True,
        )

        try:
            client.admin.command("ping")
        except Exception as exc:  # noqa: BLE001
            client.close()
            raise RuntimeError(f"failed to connect to MongoDB: {exc}") from exc

        db_name = get_mongo_db_name()
        try:
            db = client[db_name] if db_name else client.get_default_database()
        except Exception as exc:  # noqa: BLE001
            client.close()
            raise RuntimeError(
                "MongoDB database name must be specified via MONGO_DB_NAME or in MONGO_URI (mongodb://.../db_name)",
            ) from exc

        try:
            ensure_indexes(db)
        except Exception as exc:  # noqa: BLE001
            logger.error("failed to ensure MongoDB indexes: %s", exc)
            client.close()
            raise

        _client = client
        _db = db
        logger.info("MongoDB connected and indexes ensured (db=%s)", db.name)
        return _client


def get_database() -> Database:
    """전역 기본 Database 객체를 반환한다."""

    if _db is None:
        get_client()
    assert _db is not None  # get_client 가 실패했다면 이미 예외가 발생했다.
    return _db


def ensure_indexes(db: Database) -> None:
    """원격 저장소 인덱스를 생성한다. 중복 호출해도 안전하다."""

    # 유저당 영구 크레딧 행은 하나
    db["credits"].create_index(
        [("user_id", ASCENDING)],
        name="uniq_user_id",
        unique=True,
    )

    expiring = db["expiring_credits"]
    expiring.create_index(
        [("user_id", ASCENDING), ("expires_at", ASCENDING)],
        name="idx_user_expires_at",
    )
    expiring.create_index([("expires_at", ASCENDING)], name="idx_expires_at")

    # transaction_id 는 전역적으로 유일해야 중복 지급을 막을 수 있다.
    purchases = db["purchases"]
    purchases.create_index(
        [("transaction_id", ASCENDING)],
        name="uniq_transaction_id",
        unique=True,
    )
    purchases.create_index(
        [("user_id", ASCENDING), ("created_at", DESCENDING)],
        name="idx_user_created_at",
    )

    restorations = db["credit_restorations"]
    restorations.create_index(
        [("user_id", ASCENDING), ("transaction_id", ASCENDING)],
        name="idx_user_transaction_id",
    )
    restorations.create_index(
        [("user_id", ASCENDING), ("created_at", DESCENDING)],
        name="idx_user_created_at",
    )

    for name in STUDY_RECORD_COLLECTIONS:
        db[name].create_index(
            [("user_id", ASCENDING), ("created_at", DESCENDING), ("_id", DESCENDING)],
            name="idx_user_created_at_id",
        )
