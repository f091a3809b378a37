from __future__ import annotations

from datetime import datetime
from typing import Protocol

from ..models.credit import CreditAccount, CreditBalance, CreditKind, DeductionPlan, ExpiringGrant
from ..models.purchase import (
    CreditRestoration,
    PurchaseRecord,
    PurchaseStats,
    PurchaseStatus,
    RestorationStats,
)
from ..models.study_record import StudyRecord, StudyRecordKind


class CreditStoreInterface(Protocol):
    """원장 엔진이 의존하는 크레딧 저장소 계약 (원격/로컬 공통).

    - 모든 메서드는 user_id 로 한정된 계정만 다룬다.
    - 저장소에 닿지 못하면 CreditStoreUnavailableError 를 발생시킨다.
    """

    def load_account(self, user_id: str) -> CreditAccount:  # pragma: no cover - Protocol
        """계정이 없으면 잔액 0 인 계정을 반환한다."""
        ...

    def apply_deduction(
        self, user_id: str, plan: DeductionPlan, now: datetime
    ) -> bool:  # pragma: no cover - Protocol
        """계획을 원자적으로 적용한다.

        계획 이후 다른 쓰기로 잔액이 바뀌어 조건부 갱신이 실패하면 아무것도 바꾸지 않고 False.
        """
        ...

    def add_permanent(self, user_id: str, amount: int) -> int:  # pragma: no cover - Protocol
        """영구 잔액을 늘리고 갱신 후 잔액을 반환한다."""
        ...

    def add_expiring(
        self, user_id: str, amount: int, expires_at: datetime, now: datetime
    ) -> ExpiringGrant:  # pragma: no cover - Protocol
        ...

    def remove_expired(self, user_id: str, now: datetime) -> int:  # pragma: no cover - Protocol
        """expires_at <= now 인 grant 를 삭제하고 삭제 건수를 반환한다."""
        ...


class CreditSnapshotCacheInterface(Protocol):
    """원격 잔액의 마지막 조회 결과를 기기에 보관하는 캐시."""

    def save_snapshot(self, balance: CreditBalance) -> None:  # pragma: no cover - Protocol
        ...

    def load_snapshot(self, user_id: str) -> CreditBalance | None:  # pragma: no cover - Protocol
        ...


class PurchaseRepositoryInterface(Protocol):
    """purchases 저장소 계약. transaction_id 유니크 제약을 전제로 한다."""

    def claim(self, record: PurchaseRecord) -> PurchaseRecord:  # pragma: no cover - Protocol
        """transaction_id 로 행을 선점한다. 이미 있으면 저장된 행을 그대로 반환한다."""
        ...

    def claim_component(
        self, user_id: str, transaction_id: str, component: CreditKind
    ) -> bool:  # pragma: no cover - Protocol
        """거래의 지급 구성분 하나를 원자적으로 선점한다.

        이미 다른 정산이 선점했거나 지급을 마친 구성분이면 False. True 를 받은 호출만 크레딧을 지급한다.
        """
        ...

    def release_component(
        self, user_id: str, transaction_id: str, component: CreditKind
    ) -> None:  # pragma: no cover - Protocol
        """지급에 실패한 구성분의 선점을 풀어 다음 정산이 다시 시도할 수 있게 한다."""
        ...

    def find_by_transaction(
        self, user_id: str, transaction_id: str
    ) -> PurchaseRecord | None:  # pragma: no cover - Protocol
        ...

    def mark_status(
        self,
        user_id: str,
        transaction_id: str,
        status: PurchaseStatus,
        processed_at: datetime | None,
    ) -> None:  # pragma: no cover - Protocol
        ...

    def list_by_user(
        self, user_id: str, page: int, page_size: int
    ) -> tuple[list[PurchaseRecord], int]:  # pragma: no cover - Protocol
        ...

    def stats(self, user_id: str) -> PurchaseStats:  # pragma: no cover - Protocol
        ...


class CreditRestorationRepositoryInterface(Protocol):
    """credit_restorations 감사 기록 저장소 계약."""

    def create(self, restoration: CreditRestoration) -> CreditRestoration:  # pragma: no cover - Protocol
        ...

    def list_by_user(
        self, user_id: str, page: int, page_size: int
    ) -> tuple[list[CreditRestoration], int]:  # pragma: no cover - Protocol
        ...

    def stats(self, user_id: str) -> RestorationStats:  # pragma: no cover - Protocol
        ...


class StudyRecordRepositoryInterface(Protocol):
    """학습 기록 저장소 계약 (원격/로컬 공통)."""

    def add(self, record: StudyRecord) -> StudyRecord:  # pragma: no cover - Protocol
        ...

    def list_by_user(
        self, user_id: str, kind: StudyRecordKind, page: int, page_size: int
    ) -> tuple[list[StudyRecord], int]:  # pragma: no cover - Protocol
        ...

    def get(
        self, user_id: str, kind: StudyRecordKind, record_id: str
    ) -> StudyRecord | None:  # pragma: no cover - Protocol
        ...

    def update(
        self,
        user_id: str,
        kind: StudyRecordKind,
        record_id: str,
        fields: dict[str, str | None],
        now: datetime,
    ) -> StudyRecord | None:  # pragma: no cover - Protocol
        ...

    def delete(
        self, user_id: str, kind: StudyRecordKind, record_id: str
    ) -> bool:  # pragma: no cover - Protocol
        ...
