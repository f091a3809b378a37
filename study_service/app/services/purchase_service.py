"""구매/복원 이벤트를 원장 변경으로 정산하는 서비스.

거래 하나는 정확히 한 번만 크레딧으로 바뀐다.
- purchases.transaction_id 유니크 제약으로 거래를 선점하고
- 지급 구성분(영구분, 만료분)마다 구매 행에 원자적으로 표시한 뒤에만 크레딧을 지급한다.
같은 거래가 다시 들어오거나 동시에 들어와도 표시된 구성분은 다시 지급하지 않는다.
credit_restorations 는 감사 기록이다.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable

from fastapi import Depends

from common.events.purchase import PurchaseEvent, PurchaseEventStatus
from common.types.datetime import parse_iso8601, utc_now

from .credit_ledger_service import CreditLedgerService, get_credit_ledger_service
from ..config import CatalogConfig, LedgerSettings
from ..dependencies import get_catalog, get_identity, get_ledger_settings, remote_database
from ..exceptions import (
    CreditStoreUnavailableError,
    IdentityMismatchError,
    IdentityRequiredError,
)
from ..models.credit import CreditKind
from ..models.identity import Identity
from ..models.purchase import (
    CreditRestoration,
    ProductGrant,
    PurchaseRecord,
    PurchaseStats,
    PurchaseStatus,
    ReconcileOutcome,
    ReconcileResult,
    RestorationReason,
    RestorationStats,
    RestorationStatus,
    VerificationDetail,
    VerificationReport,
)
from ..repositories.interfaces import (
    CreditRestorationRepositoryInterface,
    PurchaseRepositoryInterface,
)
from ..repositories.purchase_repository import CreditRestorationRepository, PurchaseRepository


logger = logging.getLogger(__name__)

PARTIAL_NOTICE = (
    "Only {added} of {expected} credits were added for this purchase. "
    "Restore purchases to receive the rest."
)


def _require_authenticated(identity: Identity) -> None:
    if not identity.is_authenticated:
        raise IdentityRequiredError("purchase reconciliation requires a signed-in account")


class PurchaseReconciliationService:
    """구매 이벤트 정산, 구매 검증/복원, 구매·정산 이력 조회."""

    def __init__(
        self,
        ledger: CreditLedgerService,
        purchase_repo: PurchaseRepositoryInterface,
        restoration_repo: CreditRestorationRepositoryInterface,
        catalog: CatalogConfig,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._ledger = ledger
        self._purchase_repo = purchase_repo
        self._restoration_repo = restoration_repo
        self._catalog = catalog
        self._clock = clock

    def reconcile_purchase(
        self,
        identity: Identity,
        transaction_id: str,
        product_id: str,
        grant: ProductGrant,
        *,
        reason: RestorationReason = RestorationReason.INITIAL_PURCHASE,
        price: float | None = None,
        currency: str | None = None,
        purchase_date: datetime | None = None,
    ) -> ReconcileResult:
        _require_authenticated(identity)
        transaction_id = transaction_id.strip()
        if not transaction_id:
            raise ValueError("transaction_id must not be blank")

        log_extra = {"user_id": identity.user_id, "transaction_id": transaction_id}
        now = self._clock()
        record = self._purchase_repo.claim(
            PurchaseRecord(
                user_id=identity.user_id,
                transaction_id=transaction_id,
                product_id=product_id,
                amount=price or 0.0,
                currency=currency or "INR",
                status=PurchaseStatus.PENDING,
                purchase_date=purchase_date or now,
                created_at=now,
                updated_at=now,
            )
        )
        if record.user_id != identity.user_id:
            logger.warning("transaction belongs to another account", extra=log_extra)
            raise IdentityMismatchError(f"transaction {transaction_id} belongs to another account")

        expected = grant.total
        pending = [
            component
            for component in self._components(grant, now)
            if component[0] not in record.credited_components
        ]
        if not pending:
            if record.status != PurchaseStatus.COMPLETED:
                self._purchase_repo.mark_status(
                    identity.user_id, transaction_id, PurchaseStatus.COMPLETED, now
                )
            logger.info("duplicate purchase event ignored", extra=log_extra)
            return self._duplicate(transaction_id, product_id, expected)

        added, unapplied, claimed_any, error = self._apply_components(
            identity, transaction_id, pending
        )
        if not claimed_any and error is None:
            # 남은 구성분을 동시에 들어온 다른 정산이 모두 가져갔다.
            logger.info("purchase is being credited by another delivery", extra=log_extra)
            return self._duplicate(transaction_id, product_id, expected)

        credited = expected - unapplied
        if unapplied == 0:
            status = RestorationStatus.SUCCESS
        elif added > 0:
            status = RestorationStatus.PARTIAL
        else:
            status = RestorationStatus.FAILED

        restoration = CreditRestoration(
            user_id=identity.user_id,
            product_id=product_id,
            transaction_id=transaction_id,
            expected_credits=expected,
            actual_credits_added=added,
            reason=reason,
            status=status,
            created_at=now,
        )

        if status is RestorationStatus.FAILED:
            self._record_failure(identity, transaction_id, restoration, now)
            raise error or CreditStoreUnavailableError("no credits could be applied")

        self._write_restoration(restoration, log_extra)

        if status is RestorationStatus.SUCCESS:
            self._purchase_repo.mark_status(
                identity.user_id, transaction_id, PurchaseStatus.COMPLETED, now
            )
            logger.info("purchase credited (%d credits)", added, extra=log_extra)
            return ReconcileResult(
                transaction_id=transaction_id,
                product_id=product_id,
                outcome=ReconcileOutcome.CREDITED,
                expected_credits=expected,
                credits_added=added,
            )

        # 부분 지급: 구매는 pending 으로 남겨 재정산 시 나머지를 지급한다.
        logger.warning(
            "purchase only partially credited (%d of %d)", credited, expected, extra=log_extra
        )
        return ReconcileResult(
            transaction_id=transaction_id,
            product_id=product_id,
            outcome=ReconcileOutcome.PARTIAL,
            expected_credits=expected,
            credits_added=added,
            notice=PARTIAL_NOTICE.format(added=credited, expected=expected),
        )

    @staticmethod
    def _duplicate(transaction_id: str, product_id: str, expected: int) -> ReconcileResult:
        return ReconcileResult(
            transaction_id=transaction_id,
            product_id=product_id,
            outcome=ReconcileOutcome.DUPLICATE,
            expected_credits=expected,
        )

    @staticmethod
    def _components(
        grant: ProductGrant, now: datetime
    ) -> list[tuple[CreditKind, int, datetime | None]]:
        """상품 지급분을 구성분 단위로 나눈다. 영구분이 먼저다."""
        components: list[tuple[CreditKind, int, datetime | None]] = []
        if grant.permanent > 0:
            components.append((CreditKind.PERMANENT, grant.permanent, None))
        if grant.expiring > 0:
            expires_at = now + timedelta(days=grant.duration_days or 0)
            components.append((CreditKind.EXPIRING, grant.expiring, expires_at))
        return components

    def _apply_components(
        self,
        identity: Identity,
        transaction_id: str,
        pending: list[tuple[CreditKind, int, datetime | None]],
    ) -> tuple[int, int, bool, CreditStoreUnavailableError | None]:
        """남은 구성분을 선점한 뒤 지급한다.

        (지급한 양, 지급하지 못한 양, 하나라도 선점했는지, 첫 오류) 를 반환한다.
        첫 오류 이후의 구성분은 시도하지 않고 지급하지 못한 양에 더한다.
        """
        log_extra = {"user_id": identity.user_id, "transaction_id": transaction_id}
        added = 0
        unapplied = 0
        claimed_any = False
        error: CreditStoreUnavailableError | None = None
        for kind, amount, expires_at in pending:
            if error is not None:
                unapplied += amount
                continue
            try:
                claimed = self._purchase_repo.claim_component(
                    identity.user_id, transaction_id, kind
                )
            except CreditStoreUnavailableError as exc:
                error = exc
                unapplied += amount
                continue
            if not claimed:
                logger.info("%s credits already taken by another delivery", kind, extra=log_extra)
                continue

            claimed_any = True
            try:
                self._ledger.add_credits(identity, amount, kind, expires_at)
            except CreditStoreUnavailableError as exc:
                logger.error("failed to apply %s credits for purchase: %s", kind, exc, extra=log_extra)
                self._release_component(identity, transaction_id, kind)
                error = exc
                unapplied += amount
                continue
            added += amount
        return added, unapplied, claimed_any, error

    def _release_component(self, identity: Identity, transaction_id: str, kind: CreditKind) -> None:
        try:
            self._purchase_repo.release_component(identity.user_id, transaction_id, kind)
        except CreditStoreUnavailableError:
            # 선점이 남으면 이 구성분은 자동으로 다시 지급되지 않는다.
            logger.exception(
                "could not release %s component after failed credit",
                kind,
                extra={"user_id": identity.user_id, "transaction_id": transaction_id},
            )

    def _write_restoration(self, restoration: CreditRestoration, log_extra: dict) -> None:
        """지급이 끝난 뒤의 감사 기록. 지급 여부는 구매 행의 구성분으로 판단하므로 실패해도 되돌리지 않는다."""
        try:
            self._restoration_repo.create(restoration)
        except CreditStoreUnavailableError:
            logger.exception(
                "credits applied but restoration row could not be written (%d credits)",
                restoration.actual_credits_added,
                extra=log_extra,
            )

    def _record_failure(
        self,
        identity: Identity,
        transaction_id: str,
        restoration: CreditRestoration,
        now: datetime,
    ) -> None:
        """크레딧을 하나도 지급하지 못한 경우. 저장소가 내려가 있을 수 있어 기록은 가능한 만큼만 남긴다."""
        try:
            self._purchase_repo.mark_status(
                identity.user_id, transaction_id, PurchaseStatus.FAILED, now
            )
            self._restoration_repo.create(restoration)
        except CreditStoreUnavailableError:
            logger.error(
                "could not record failed purchase",
                extra={"user_id": identity.user_id, "transaction_id": transaction_id},
            )

    def handle_event(self, identity: Identity, event: PurchaseEvent) -> ReconcileResult:
        """결제 SDK 결과 이벤트 하나를 처리한다. cancelled 와 알 수 없는 상품은 무시한다."""
        _require_authenticated(identity)
        if event.user_id and event.user_id != identity.user_id:
            raise IdentityMismatchError("purchase event is addressed to another account")

        if not event.should_credit:
            logger.info(
                "purchase event %s ignored",
                event.status,
                extra={"user_id": identity.user_id, "transaction_id": event.transaction_id},
            )
            return ReconcileResult(
                transaction_id=event.transaction_id,
                product_id=event.product_id,
                outcome=ReconcileOutcome.IGNORED,
            )

        grant = self._catalog.find_product(event.product_id)
        if grant is None:
            logger.warning(
                "unknown product %s, no credits granted",
                event.product_id,
                extra={"user_id": identity.user_id, "transaction_id": event.transaction_id},
            )
            return ReconcileResult(
                transaction_id=event.transaction_id,
                product_id=event.product_id,
                outcome=ReconcileOutcome.IGNORED,
            )

        reason = (
            RestorationReason.INITIAL_PURCHASE
            if event.status == PurchaseEventStatus.PURCHASED
            else RestorationReason.VERIFICATION
        )
        return self.reconcile_purchase(
            identity,
            event.transaction_id,
            grant.product_id,
            grant,
            reason=reason,
            price=event.price,
            currency=event.currency,
            purchase_date=parse_iso8601(event.purchase_date) if event.purchase_date else None,
        )

    def verify_and_restore(
        self, identity: Identity, transactions: list[PurchaseEvent]
    ) -> VerificationReport:
        """결제 제공자의 거래 목록을 원장과 대조해 누락된 크레딧을 지급한다."""
        _require_authenticated(identity)

        restored = 0
        errors = 0
        details: list[VerificationDetail] = []
        for event in transactions:
            if not event.should_credit:
                continue
            grant = self._catalog.find_product(event.product_id)
            if grant is None:
                details.append(
                    VerificationDetail(
                        transaction_id=event.transaction_id,
                        product_id=event.product_id,
                        credits=0,
                        status="unknown_product",
                    )
                )
                continue
            try:
                result = self.reconcile_purchase(
                    identity,
                    event.transaction_id,
                    grant.product_id,
                    grant,
                    reason=RestorationReason.VERIFICATION,
                    price=event.price,
                    currency=event.currency,
                    purchase_date=(
                        parse_iso8601(event.purchase_date) if event.purchase_date else None
                    ),
                )
            except (CreditStoreUnavailableError, IdentityMismatchError) as exc:
                errors += 1
                logger.warning(
                    "verification failed for transaction: %s",
                    exc,
                    extra={"user_id": identity.user_id, "transaction_id": event.transaction_id},
                )
                details.append(
                    VerificationDetail(
                        transaction_id=event.transaction_id,
                        product_id=event.product_id,
                        credits=0,
                        status="error",
                    )
                )
                continue

            restored += result.credits_added
            details.append(
                VerificationDetail(
                    transaction_id=event.transaction_id,
                    product_id=grant.product_id,
                    credits=result.credits_added,
                    status=result.outcome.value,
                )
            )

        if restored > 0:
            message = f"Restored {restored} credits."
        elif errors:
            message = "Some purchases could not be verified. Please try again."
        else:
            message = "All purchases are already credited."
        logger.info(
            "purchase verification done (restored=%d, errors=%d)",
            restored,
            errors,
            extra={"user_id": identity.user_id},
        )
        return VerificationReport(
            success=errors == 0,
            restored=restored,
            errors=errors,
            message=message,
            details=details,
        )

    def restore_transaction(self, identity: Identity, transaction_id: str) -> ReconcileResult:
        """이미 기록된 구매 한 건을 수동으로 다시 정산한다."""
        _require_authenticated(identity)
        record = self._purchase_repo.find_by_transaction(identity.user_id, transaction_id)
        if record is None:
            return ReconcileResult(
                transaction_id=transaction_id,
                product_id="",
                outcome=ReconcileOutcome.IGNORED,
            )
        grant = self._catalog.find_product(record.product_id)
        if grant is None:
            logger.warning(
                "stored purchase has unknown product %s",
                record.product_id,
                extra={"user_id": identity.user_id, "transaction_id": transaction_id},
            )
            return ReconcileResult(
                transaction_id=transaction_id,
                product_id=record.product_id,
                outcome=ReconcileOutcome.IGNORED,
            )
        return self.reconcile_purchase(
            identity,
            transaction_id,
            record.product_id,
            grant,
            reason=RestorationReason.MANUAL_RESTORE,
            price=record.amount,
            currency=record.currency,
            purchase_date=record.purchase_date,
        )

    def purchase_history(
        self, identity: Identity, page: int = 1, page_size: int = 20
    ) -> tuple[list[PurchaseRecord], int]:
        _require_authenticated(identity)
        return self._purchase_repo.list_by_user(identity.user_id, page, page_size)

    def restoration_history(
        self, identity: Identity, page: int = 1, page_size: int = 20
    ) -> tuple[list[CreditRestoration], int]:
        _require_authenticated(identity)
        return self._restoration_repo.list_by_user(identity.user_id, page, page_size)

    def purchase_stats(self, identity: Identity) -> PurchaseStats:
        _require_authenticated(identity)
        return self._purchase_repo.stats(identity.user_id)

    def restoration_stats(self, identity: Identity) -> RestorationStats:
        _require_authenticated(identity)
        return self._restoration_repo.stats(identity.user_id)


def get_purchase_service(
    identity: Identity = Depends(get_identity),
    ledger: CreditLedgerService = Depends(get_credit_ledger_service),
    settings: LedgerSettings = Depends(get_ledger_settings),
    catalog: CatalogConfig = Depends(get_catalog),
) -> PurchaseReconciliationService:
    """FastAPI DI용 PurchaseReconciliationService 팩토리.

    구매 기능은 원격 계정 전용이라 익명 요청이면 원격 DB 에 연결하기 전에 거절한다.
    """

    _require_authenticated(identity)
    db = remote_database()
    return PurchaseReconciliationService(
        ledger=ledger,
        purchase_repo=PurchaseRepository(db, settings),
        restoration_repo=CreditRestorationRepository(db, settings),
        catalog=catalog,
    )
