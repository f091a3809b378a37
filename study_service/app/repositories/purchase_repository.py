"""구매 기록 / 크레딧 정산 감사 레포지토리 구현체."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator

import pymongo
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError

from common.types.datetime import utc_now

from .documents.purchase_document import CreditRestorationDocument, PurchaseDocument
from .interfaces import CreditRestorationRepositoryInterface, PurchaseRepositoryInterface
from ..config import LedgerSettings
from ..exceptions import CreditStoreUnavailableError
from ..models.credit import CreditKind
from ..models.purchase import (
    CreditRestoration,
    PurchaseRecord,
    PurchaseStats,
    PurchaseStatus,
    RestorationStats,
    RestorationStatus,
)


logger = logging.getLogger(__name__)


def _normalize_page(page: int, page_size: int) -> tuple[int, int]:
    if page <= 0:
        page = 1
    if page_size <= 0 or page_size > 100:
        page_size = 20
    return page, page_size


@contextmanager
def _bounded(timeout: float, operation: str) -> Iterator[None]:
    try:
        with pymongo.timeout(timeout):
            yield
    except PyMongoError as exc:
        logger.error("remote purchase store %s failed: %s", operation, exc)
        raise CreditStoreUnavailableError(f"remote purchase store {operation} failed") from exc


class PurchaseRepository(PurchaseRepositoryInterface):
    """purchases 컬렉션에 대한 MongoDB 접근 레이어."""

    def __init__(self, database: Database, settings: LedgerSettings) -> None:
        self._db = database
        self._col = database["purchases"]
        self._timeout = settings.remote_timeout_seconds

    def claim(self, record: PurchaseRecord) -> PurchaseRecord:
        payload = PurchaseDocument.from_domain(record).to_mongo_record()
        with _bounded(self._timeout, "claim"):
            try:
                self._col.update_one(
                    {"transaction_id": record.transaction_id},
                    {"$setOnInsert": payload},
                    upsert=True,
                )
            except DuplicateKeyError:
                # 동시에 같은 거래를 선점하려 한 경우. 아래에서 저장된 행을 다시 읽는다.
                logger.info("purchase claim raced transaction_id=%s", record.transaction_id)
            # 이미 존재하던 경우에도 현재 값을 다시 읽어온다.
            found = self._col.find_one({"transaction_id": record.transaction_id})
        if found is None:
            raise CreditStoreUnavailableError(
                f"purchase {record.transaction_id} vanished after claim"
            )
        return PurchaseDocument.model_validate(found).to_domain()

    def claim_component(
        self, user_id: str, transaction_id: str, component: CreditKind
    ) -> bool:
        # 같은 거래를 동시에 정산해도 구성분마다 한 호출만 이 갱신에 성공한다.
        with _bounded(self._timeout, "claim_component"):
            result = self._col.update_one(
                {
                    "user_id": user_id,
                    "transaction_id": transaction_id,
                    "credited_components": {"$ne": component.value},
                },
                {
                    "$addToSet": {"credited_components": component.value},
                    "$set": {"updated_at": utc_now()},
                },
            )
        return result.modified_count == 1

    def release_component(
        self, user_id: str, transaction_id: str, component: CreditKind
    ) -> None:
        with _bounded(self._timeout, "release_component"):
            self._col.update_one(
                {"user_id": user_id, "transaction_id": transaction_id},
                {
                    "$pull": {"credited_components": component.value},
                    "$set": {"updated_at": utc_now()},
                },
            )

    def find_by_transaction(self, user_id: str, transaction_id: str) -> PurchaseRecord | None:
        with _bounded(self._timeout, "find_by_transaction"):
            found = self._col.find_one({"user_id": user_id, "transaction_id": transaction_id})
        if not found:
            return None
        return PurchaseDocument.model_validate(found).to_domain()

    def mark_status(
        self,
        user_id: str,
        transaction_id: str,
        status: PurchaseStatus,
        processed_at: datetime | None,
    ) -> None:
        update: dict = {"status": status.value, "updated_at": utc_now()}
        if processed_at is not None:
            update["processed_at"] = processed_at
        with _bounded(self._timeout, "mark_status"):
            self._col.update_one(
                {"user_id": user_id, "transaction_id": transaction_id},
                {"$set": update},
            )

    def list_by_user(
        self, user_id: str, page: int, page_size: int
    ) -> tuple[list[PurchaseRecord], int]:
        page, page_size = _normalize_page(page, page_size)
        skip = (page - 1) * page_size

        with _bounded(self._timeout, "list_by_user"):
            total = self._col.count_documents({"user_id": user_id})
            raws = list(
                self._col.find(
                    {"user_id": user_id},
                    sort=[("created_at", -1), ("_id", -1)],
                    skip=skip,
                    limit=page_size,
                )
            )

        items = [PurchaseDocument.model_validate(raw).to_domain() for raw in raws]
        return items, total

    def stats(self, user_id: str) -> PurchaseStats:
        pipeline = [
            {"$match": {"user_id": user_id}},
            {
                "$group": {
                    "_id": None,
                    "total": {"$sum": 1},
                    "completed": {
                        "$sum": {"$cond": [{"$eq": ["$status", PurchaseStatus.COMPLETED.value]}, 1, 0]}
                    },
                    "failed": {
                        "$sum": {"$cond": [{"$eq": ["$status", PurchaseStatus.FAILED.value]}, 1, 0]}
                    },
                    "last": {"$max": "$purchase_date"},
                }
            },
        ]
        with _bounded(self._timeout, "stats"):
            rows = list(self._col.aggregate(pipeline))

        if not rows:
            return PurchaseStats()
        row = rows[0]
        return PurchaseStats(
            total_purchases=row["total"],
            successful_purchases=row["completed"],
            failed_purchases=row["failed"],
            last_purchase_date=row.get("last"),
        )


class CreditRestorationRepository(CreditRestorationRepositoryInterface):
    """credit_restorations 컬렉션에 대한 MongoDB 접근 레이어."""

    def __init__(self, database: Database, settings: LedgerSettings) -> None:
        self._db = database
        self._col = database["credit_restorations"]
        self._timeout = settings.remote_timeout_seconds

    def create(self, restoration: CreditRestoration) -> CreditRestoration:
        payload = CreditRestorationDocument.from_domain(restoration).to_mongo_record()
        with _bounded(self._timeout, "create_restoration"):
            result = self._col.insert_one(payload)
        return restoration.model_copy(update={"id": str(result.inserted_id)})

    def list_by_user(
        self, user_id: str, page: int, page_size: int
    ) -> tuple[list[CreditRestoration], int]:
        page, page_size = _normalize_page(page, page_size)
        skip = (page - 1) * page_size

        with _bounded(self._timeout, "list_restorations"):
            total = self._col.count_documents({"user_id": user_id})
            raws = list(
                self._col.find(
                    {"user_id": user_id},
                    sort=[("created_at", -1), ("_id", -1)],
                    skip=skip,
                    limit=page_size,
                )
            )

        items = [CreditRestorationDocument.model_validate(raw).to_domain() for raw in raws]
        return items, total

    def stats(self, user_id: str) -> RestorationStats:
        pipeline = [
            {"$match": {"user_id": user_id}},
            {
                "$group": {
                    "_id": None,
                    "total": {"$sum": 1},
                    "success": {
                        "$sum": {"$cond": [{"$eq": ["$status", RestorationStatus.SUCCESS.value]}, 1, 0]}
                    },
                    "credits": {"$sum": "$actual_credits_added"},
                    "last": {"$max": "$created_at"},
                }
            },
        ]
        with _bounded(self._timeout, "restoration_stats"):
            rows = list(self._col.aggregate(pipeline))

        if not rows:
            return RestorationStats()
        row = rows[0]
        return RestorationStats(
            total_restorations=row["total"],
            successful_restorations=row["success"],
            total_credits_restored=row["credits"],
            last_restoration_date=row.get("last"),
        )
