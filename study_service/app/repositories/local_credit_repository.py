from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.dialects.sqlite import insert
from sqlalchemy.exc import SQLAlchemyError

from common.mongo.types import ensure_utc_datetime
from common.types.datetime import utc_now

from .interfaces import CreditSnapshotCacheInterface, CreditStoreInterface
from .local_db import CreditSnapshot, LocalCredit, LocalDatabase
from ..exceptions import (
    CorruptLedgerDataError,
    CreditStoreUnavailableError,
    IdentityRequiredError,
)
from ..models.credit import CreditAccount, CreditBalance, DeductionPlan, ExpiringGrant


logger = logging.getLogger(__name__)


class LocalCreditRepository(CreditStoreInterface, CreditSnapshotCacheInterface):
    """기기 로컬 SQLite 의 크레딧 카운터와 원격 잔액 캐시.

    - 로컬 계정은 영구 크레딧만 가진다.
    - 차감은 UPDATE ... WHERE balance >= n 한 문장으로 처리한다.
    """

    def __init__(self, database: LocalDatabase) -> None:
        self._db = database

    def load_account(self, user_id: str) -> CreditAccount:
        try:
            with self._db.session() as session:
                row = session.get(LocalCredit, user_id)
                balance = row.balance if row is not None else 0
        except SQLAlchemyError as exc:
            logger.error("local credit read failed: %s", exc)
            raise CreditStoreUnavailableError("local credit store unavailable") from exc

        if balance < 0:
            raise CorruptLedgerDataError(f"negative local balance for profile {user_id}")
        return CreditAccount(user_id=user_id, permanent_balance=balance)

    def apply_deduction(self, user_id: str, plan: DeductionPlan, now: datetime) -> bool:
        if plan.grant_steps:
            # 로컬에는 grant 가 없으므로 이런 계획은 다른 계정에서 세운 것이다.
            return False
        if plan.permanent_deduct <= 0:
            return True

        stmt = (
            update(LocalCredit)
            .where(
                LocalCredit.profile_id == user_id,
                LocalCredit.balance >= plan.permanent_deduct,
            )
            .values(balance=LocalCredit.balance - plan.permanent_deduct, updated_at=now)
        )
        try:
            with self._db.session() as session, session.begin():
                result = session.execute(stmt)
                return result.rowcount == 1
        except SQLAlchemyError as exc:
            logger.error("local credit deduction failed: %s", exc)
            raise CreditStoreUnavailableError("local credit store unavailable") from exc

    def add_permanent(self, user_id: str, amount: int) -> int:
        if amount <= 0:
            raise ValueError("amount must be positive")
        now = utc_now()
        stmt = insert(LocalCredit).values(profile_id=user_id, balance=amount, updated_at=now)
        stmt = stmt.on_conflict_do_update(
            index_elements=[LocalCredit.profile_id],
            set_={"balance": LocalCredit.balance + amount, "updated_at": now},
        )
        try:
            with self._db.session() as session, session.begin():
                session.execute(stmt)
                balance = session.scalar(
                    select(LocalCredit.balance).where(LocalCredit.profile_id == user_id)
                )
        except SQLAlchemyError as exc:
            logger.error("local credit grant failed: %s", exc)
            raise CreditStoreUnavailableError("local credit store unavailable") from exc
        return int(balance or 0)

    def add_expiring(
        self, user_id: str, amount: int, expires_at: datetime, now: datetime
    ) -> ExpiringGrant:
        raise IdentityRequiredError("expiring credits require a signed-in account")

    def remove_expired(self, user_id: str, now: datetime) -> int:
        return 0

    def save_snapshot(self, balance: CreditBalance) -> None:
        stmt = insert(CreditSnapshot).values(
            user_id=balance.user_id,
            permanent=balance.permanent,
            expiring=balance.expiring,
            total=balance.total,
            as_of=balance.as_of,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[CreditSnapshot.user_id],
            set_={
                "permanent": balance.permanent,
                "expiring": balance.expiring,
                "total": balance.total,
                "as_of": balance.as_of,
            },
        )
        try:
            with self._db.session() as session, session.begin():
                session.execute(stmt)
        except SQLAlchemyError as exc:
            logger.error("credit snapshot write failed: %s", exc)
            raise CreditStoreUnavailableError("local credit store unavailable") from exc

    def load_snapshot(self, user_id: str) -> CreditBalance | None:
        try:
            with self._db.session() as session:
                row = session.get(CreditSnapshot, user_id)
                if row is None:
                    return None
                return CreditBalance(
                    user_id=row.user_id,
                    permanent=row.permanent,
                    expiring=row.expiring,
                    total=row.total,
                    stale=True,
                    as_of=ensure_utc_datetime(row.as_of),
                )
        except SQLAlchemyError as exc:
            logger.error("credit snapshot read failed: %s", exc)
            raise CreditStoreUnavailableError("local credit store unavailable") from exc
