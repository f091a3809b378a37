"""원격 크레딧 레포지토리 구현체.

credits(영구 잔액 1행) + expiring_credits(지급분 N행) 두 컬렉션을 다룬다.
차감은 read-modify-write 대신 조건부 갱신($gte 바닥 검사 + $inc)으로 수행하며,
여러 문서에 걸친 차감 중 하나라도 조건이 깨지면 이미 적용한 단계를 되돌리고 False 를 반환한다.
차감한 문서에는 spend_id 를 남겨, 시간 초과처럼 결과가 불분명한 단계도 정확히 되돌린다.
"""

from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator

import pymongo
from pydantic import ValidationError
from pymongo.database import Database
from pymongo.errors import PyMongoError

from common.mongo.types import to_object_id
from common.types.datetime import utc_now

from .documents.credit_document import ExpiringCreditDocument, PermanentCreditDocument
from .interfaces import CreditStoreInterface
from ..config import LedgerSettings
from ..exceptions import CorruptLedgerDataError, CreditStoreUnavailableError
from ..models.credit import CreditAccount, DeductionPlan, ExpiringGrant


logger = logging.getLogger(__name__)


class RemoteCreditRepository(CreditStoreInterface):
    """credits / expiring_credits 컬렉션에 대한 MongoDB 접근 레이어."""

    def __init__(self, database: Database, settings: LedgerSettings) -> None:
        self._db = database
        self._credits = database["credits"]
        self._grants = database["expiring_credits"]
        self._timeout = settings.remote_timeout_seconds

    @contextmanager
    def _bounded(self, operation: str) -> Iterator[None]:
        """원격 호출을 타임아웃으로 감싸고 드라이버 오류를 도메인 예외로 바꾼다."""
        try:
            with pymongo.timeout(self._timeout):
                yield
        except PyMongoError as exc:
            logger.error("remote credit store %s failed: %s", operation, exc)
            raise CreditStoreUnavailableError(f"remote credit store {operation} failed") from exc

    def load_account(self, user_id: str) -> CreditAccount:
        with self._bounded("load_account"):
            row = self._credits.find_one({"user_id": user_id})
            raw_grants = list(
                self._grants.find({"user_id": user_id}, sort=[("expires_at", 1)])
            )

        try:
            balance = PermanentCreditDocument.model_validate(row).balance if row else 0
            grants = [ExpiringCreditDocument.model_validate(g).to_domain() for g in raw_grants]
        except ValidationError as exc:
            logger.error("corrupt credit data for user_id=%s: %s", user_id, exc)
            raise CorruptLedgerDataError(f"corrupt credit data for user {user_id}") from exc

        return CreditAccount(
            user_id=user_id,
            permanent_balance=balance,
            expiring_grants=grants,
        )

    def apply_deduction(self, user_id: str, plan: DeductionPlan, now: datetime) -> bool:
        # 이번 차감이 건드린 문서에는 spend_id 를 남긴다. 되돌리기는 이 표시가 있는 문서만 대상으로 한다.
        spend_id = uuid.uuid4().hex
        try:
            with pymongo.timeout(self._timeout):
                applied = self._apply_steps(user_id, plan, now, spend_id)
        except PyMongoError as exc:
            # 실패한 단계도 서버에는 반영됐을 수 있다. 표시를 기준으로 전부 되돌린다.
            logger.error("remote credit store apply_deduction failed: %s", exc)
            self._roll_back(user_id, plan, now, spend_id)
            raise CreditStoreUnavailableError("remote credit store apply_deduction failed") from exc

        if not applied:
            self._roll_back(user_id, plan, now, spend_id)
            return False

        self._settle(user_id, plan, spend_id)
        return True

    def _apply_steps(
        self, user_id: str, plan: DeductionPlan, now: datetime, spend_id: str
    ) -> bool:
        for step in plan.grant_steps:
            result = self._grants.update_one(
                {
                    "_id": to_object_id(step.grant_id),
                    "user_id": user_id,
                    "amount": {"$gte": step.deduct},
                    "expires_at": {"$gt": now},
                },
                {
                    "$inc": {"amount": -step.deduct},
                    "$set": {"updated_at": now},
                    "$push": {"spend_ids": spend_id},
                },
            )
            if result.modified_count != 1:
                logger.info(
                    "grant changed under spend, rolling back user_id=%s grant_id=%s",
                    user_id,
                    step.grant_id,
                )
                return False

        if plan.permanent_deduct > 0:
            result = self._credits.update_one(
                {"user_id": user_id, "balance": {"$gte": plan.permanent_deduct}},
                {
                    "$inc": {"balance": -plan.permanent_deduct},
                    "$set": {"updated_at": now},
                    "$push": {"spend_ids": spend_id},
                },
            )
            if result.modified_count != 1:
                logger.info(
                    "permanent balance changed under spend, rolling back user_id=%s", user_id
                )
                return False
        return True

    def _roll_back(
        self, user_id: str, plan: DeductionPlan, now: datetime, spend_id: str
    ) -> None:
        """spend_id 표시가 남은 문서에만 차감량을 돌려준다.

        차감 단계의 타임아웃이 이미 지났을 수 있어 새 타임아웃 안에서 실행한다.
        표시 제거와 환원이 한 번의 갱신이라 다시 실행해도 두 번 돌려주지 않는다.
        """
        try:
            with pymongo.timeout(self._timeout):
                for step in plan.grant_steps:
                    self._grants.update_one(
                        {
                            "_id": to_object_id(step.grant_id),
                            "user_id": user_id,
                            "spend_ids": spend_id,
                        },
                        {
                            "$inc": {"amount": step.deduct},
                            "$pull": {"spend_ids": spend_id},
                            "$set": {"updated_at": now},
                        },
                    )
                if plan.permanent_deduct > 0:
                    self._credits.update_one(
                        {"user_id": user_id, "spend_ids": spend_id},
                        {
                            "$inc": {"balance": plan.permanent_deduct},
                            "$pull": {"spend_ids": spend_id},
                            "$set": {"updated_at": now},
                        },
                    )
        except PyMongoError as exc:
            logger.exception(
                "failed to roll back partial deduction user_id=%s spend_id=%s", user_id, spend_id
            )
            raise CreditStoreUnavailableError("remote credit store rollback failed") from exc

    def _settle(self, user_id: str, plan: DeductionPlan, spend_id: str) -> None:
        """성공한 차감의 표시를 지우고 다 쓴 grant 를 정리한다.

        차감 자체는 이미 끝났으므로 여기서의 실패는 기록만 한다.
        """
        try:
            with pymongo.timeout(self._timeout):
                if plan.grant_steps:
                    self._grants.update_many(
                        {"user_id": user_id, "spend_ids": spend_id},
                        {"$pull": {"spend_ids": spend_id}},
                    )
                    # 다른 차감이 진행 중인(표시가 남은) grant 는 되돌릴 수 있도록 남겨 둔다.
                    self._grants.delete_many(
                        {
                            "user_id": user_id,
                            "amount": {"$lte": 0},
                            "$or": [
                                {"spend_ids": {"$exists": False}},
                                {"spend_ids": {"$size": 0}},
                            ],
                        }
                    )
                if plan.permanent_deduct > 0:
                    self._credits.update_one(
                        {"user_id": user_id, "spend_ids": spend_id},
                        {"$pull": {"spend_ids": spend_id}},
                    )
        except PyMongoError:
            logger.warning(
                "could not clear spend markers user_id=%s spend_id=%s",
                user_id,
                spend_id,
                exc_info=True,
            )

    def add_permanent(self, user_id: str, amount: int) -> int:
        if amount <= 0:
            raise ValueError("amount must be positive")
        now = utc_now()
        with self._bounded("add_permanent"):
            doc = self._credits.find_one_and_update(
                {"user_id": user_id},
                {
                    "$inc": {"balance": amount},
                    "$set": {"updated_at": now},
                    "$setOnInsert": {"created_at": now},
                },
                upsert=True,
                return_document=pymongo.ReturnDocument.AFTER,
            )
        return int(doc["balance"])

    def add_expiring(
        self, user_id: str, amount: int, expires_at: datetime, now: datetime
    ) -> ExpiringGrant:
        if amount <= 0:
            raise ValueError("amount must be positive")
        grant = ExpiringGrant(
            user_id=user_id,
            amount=amount,
            original_amount=amount,
            expires_at=expires_at,
            created_at=now,
        )
        payload = ExpiringCreditDocument.from_domain(grant).to_mongo_record()
        with self._bounded("add_expiring"):
            result = self._grants.insert_one(payload)
        return grant.model_copy(update={"id": str(result.inserted_id)})

    def remove_expired(self, user_id: str, now: datetime) -> int:
        with self._bounded("remove_expired"):
            result = self._grants.delete_many(
                {"user_id": user_id, "expires_at": {"$lte": now}}
            )
        return result.deleted_count
