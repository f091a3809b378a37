"""크레딧 원장 서비스.

identity 에 따라 원격(인증 사용자) 또는 로컬(익명 프로필) 저장소를 호출마다 고른다.
잔액은 캐시하지 않고 매번 저장소에서 다시 읽으며, 차감은 저장소의 조건부 갱신으로만 수행한다.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import Callable

from fastapi import Depends

from common.types.datetime import utc_now

from ..config import LedgerSettings
from ..dependencies import get_ledger_settings, get_local_db, remote_database
from ..exceptions import ConcurrentSpendError, CreditStoreUnavailableError, IdentityRequiredError
from ..models.credit import CreditAccount, CreditBalance, CreditKind, SpendResult
from ..models.identity import Identity
from ..repositories.interfaces import CreditSnapshotCacheInterface, CreditStoreInterface
from ..repositories.local_credit_repository import LocalCreditRepository
from ..repositories.local_db import LocalDatabase
from ..repositories.remote_credit_repository import RemoteCreditRepository


logger = logging.getLogger(__name__)


class CreditLedgerService:
    """크레딧 잔액 조회, 차감, 지급, 만료 정리."""

    def __init__(
        self,
        remote_store_provider: Callable[[], CreditStoreInterface],
        local_store: CreditStoreInterface,
        snapshot_cache: CreditSnapshotCacheInterface,
        settings: LedgerSettings,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._remote_store_provider = remote_store_provider
        self._local_store = local_store
        self._snapshot_cache = snapshot_cache
        self._settings = settings
        self._clock = clock
        self._sleep = sleep

    def _store_for(self, identity: Identity) -> CreditStoreInterface:
        if identity.is_authenticated:
            return self._remote_store_provider()
        return self._local_store

    def _read_account(self, identity: Identity) -> CreditAccount:
        """읽기 전용 조회. 원격 장애 시 정해진 횟수만큼 자동 재시도한다."""
        attempts = 1 + (self._settings.read_retries if identity.is_authenticated else 0)
        attempt = 1
        while attempt < attempts:
            try:
                return self._store_for(identity).load_account(identity.user_id)
            except CreditStoreUnavailableError:
                logger.warning(
                    "credit read failed, retrying (attempt=%d/%d)",
                    attempt,
                    attempts,
                    extra={"user_id": identity.user_id},
                )
                self._sleep(self._settings.read_retry_delay_seconds)
            attempt += 1
        # 마지막 시도의 오류는 그대로 호출 측으로 전파한다.
        return self._store_for(identity).load_account(identity.user_id)

    def get_current_credits(self, identity: Identity) -> CreditBalance:
        if not identity.is_authenticated:
            account = self._read_account(identity)
            return account.to_balance(self._clock())

        try:
            account = self._read_account(identity)
        except CreditStoreUnavailableError:
            snapshot = self._snapshot_cache.load_snapshot(identity.user_id)
            if snapshot is None:
                raise
            logger.warning(
                "remote credit store unavailable, serving cached balance as of %s",
                snapshot.as_of.isoformat(),
                extra={"user_id": identity.user_id},
            )
            return snapshot.model_copy(update={"stale": True})

        now = self._clock()
        if self._settings.sweep_on_read:
            self._sweep_quietly(identity, now)

        balance = account.to_balance(now)
        try:
            self._snapshot_cache.save_snapshot(balance)
        except CreditStoreUnavailableError:
            logger.warning("failed to cache credit snapshot", extra={"user_id": identity.user_id})
        return balance

    def _sweep_quietly(self, identity: Identity, now: datetime) -> None:
        try:
            removed = self._store_for(identity).remove_expired(identity.user_id, now)
        except CreditStoreUnavailableError:
            logger.warning("opportunistic expiry sweep failed", extra={"user_id": identity.user_id})
            return
        if removed:
            logger.info(
                "swept %d expired grants on read", removed, extra={"user_id": identity.user_id}
            )

    def spend_credits(self, identity: Identity, amount: int) -> SpendResult:
        """amount 만큼 차감한다. 잔액이 부족하면 아무것도 바꾸지 않고 실패 결과를 돌려준다.

        조건부 갱신이 다른 쓰기와 충돌하면 다시 읽고 재계획한다.
        저장소 장애는 재시도하지 않고 그대로 전파한다.
        """
        if amount <= 0:
            raise ValueError("amount must be positive")

        store = self._store_for(identity)
        max_attempts = self._settings.spend_max_attempts
        for attempt in range(1, max_attempts + 1):
            now = self._clock()
            account = store.load_account(identity.user_id)
            plan = account.plan_deduction(amount, now)
            if plan is None:
                available = account.total_available(now)
                logger.info(
                    "insufficient credits (requested=%d, available=%d)",
                    amount,
                    available,
                    extra={"user_id": identity.user_id},
                )
                return SpendResult.insufficient(amount, available)

            if store.apply_deduction(identity.user_id, plan, now):
                remaining = account.total_available(now) - amount
                logger.info(
                    "spent %d credits (expiring=%d, permanent=%d, remaining=%d)",
                    amount,
                    amount - plan.permanent_deduct,
                    plan.permanent_deduct,
                    remaining,
                    extra={"user_id": identity.user_id},
                )
                return SpendResult(
                    success=True,
                    amount=amount,
                    remaining=remaining,
                    consumed_grant_ids=plan.grant_ids,
                )

            logger.info(
                "credit spend conflicted with another writer (attempt=%d/%d)",
                attempt,
                max_attempts,
                extra={"user_id": identity.user_id},
            )

        logger.error(
            "credit spend gave up after %d conflicting attempts",
            max_attempts,
            extra={"user_id": identity.user_id},
        )
        raise ConcurrentSpendError(
            f"spend of {amount} credits kept conflicting after {max_attempts} attempts"
        )

    def add_credits(
        self,
        identity: Identity,
        amount: int,
        kind: CreditKind = CreditKind.PERMANENT,
        expires_at: datetime | None = None,
    ) -> None:
        if amount <= 0:
            raise ValueError("amount must be positive")

        if kind == CreditKind.PERMANENT:
            if expires_at is not None:
                raise ValueError("permanent credits cannot have an expiry")
            balance = self._store_for(identity).add_permanent(identity.user_id, amount)
            logger.info(
                "granted %d permanent credits (permanent balance=%d)",
                amount,
                balance,
                extra={"user_id": identity.user_id},
            )
            return

        if not identity.is_authenticated:
            raise IdentityRequiredError("expiring credits require a signed-in account")
        now = self._clock()
        if expires_at is None or expires_at <= now:
            raise ValueError("expiring credits need an expires_at in the future")

        grant = self._store_for(identity).add_expiring(identity.user_id, amount, expires_at, now)
        logger.info(
            "granted %d expiring credits until %s (grant_id=%s)",
            amount,
            expires_at.isoformat(),
            grant.id,
            extra={"user_id": identity.user_id},
        )

    def sweep_expired_grants(self, identity: Identity) -> int:
        removed = self._store_for(identity).remove_expired(identity.user_id, self._clock())
        if removed:
            logger.info("swept %d expired grants", removed, extra={"user_id": identity.user_id})
        return removed


def get_credit_ledger_service(
    settings: LedgerSettings = Depends(get_ledger_settings),
    local_db: LocalDatabase = Depends(get_local_db),
) -> CreditLedgerService:
    """FastAPI DI용 CreditLedgerService 팩토리."""

    local_repo = LocalCreditRepository(local_db)
    return CreditLedgerService(
        remote_store_provider=lambda: RemoteCreditRepository(remote_database(), settings),
        local_store=local_repo,
        snapshot_cache=local_repo,
        settings=settings,
    )
