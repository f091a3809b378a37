"""구매 기록 / 크레딧 정산 감사 기록 도메인 모델."""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, Field

from common.types.datetime import UtcDateTime

from .credit import CreditKind


class PurchaseStatus(StrEnum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class RestorationReason(StrEnum):
    INITIAL_PURCHASE = "initial_purchase"
    VERIFICATION = "verification"
    MANUAL_RESTORE = "manual_restore"


class RestorationStatus(StrEnum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


class ReconcileOutcome(StrEnum):
    CREDITED = "credited"
    PARTIAL = "partial"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"


class ProductGrant(BaseModel):
    """상품 하나를 구매했을 때 지급할 크레딧.

    영구분을 먼저, 만료분을 나중에 지급한다. 두 구성분은 따로 지급 여부가 기록된다.
    """

    product_id: str
    permanent: int = 0
    expiring: int = 0
    duration_days: int | None = None

    @property
    def total(self) -> int:
        return self.permanent + self.expiring

    @classmethod
    def permanent_only(cls, product_id: str, credits: int) -> "ProductGrant":
        return cls(product_id=product_id, permanent=credits)


class PurchaseRecord(BaseModel):
    """결제 제공자 거래 한 건. transaction_id 는 전역적으로 유일하다."""

    id: str | None = None
    user_id: str
    transaction_id: str
    product_id: str
    amount: float = 0.0  # 결제 금액
    currency: str = "INR"
    status: PurchaseStatus = PurchaseStatus.PENDING
    purchase_date: UtcDateTime
    processed_at: UtcDateTime | None = None
    # 지급을 마쳤거나 진행 중인 구성분. 구성분마다 한 번만 들어간다.
    credited_components: list[CreditKind] = Field(default_factory=list)
    created_at: UtcDateTime
    updated_at: UtcDateTime


class CreditRestoration(BaseModel):
    """거래 하나에 대해 크레딧을 지급하려 한 시도의 감사 기록."""

    id: str | None = None
    user_id: str
    product_id: str
    transaction_id: str
    expected_credits: int
    actual_credits_added: int
    reason: RestorationReason
    status: RestorationStatus
    created_at: UtcDateTime


class ReconcileResult(BaseModel):
    """reconcile_purchase 결과.

    partial 이면 notice 에 사용자에게 보여줄 안내 문구가 담긴다.
    """

    transaction_id: str
    product_id: str
    outcome: ReconcileOutcome
    expected_credits: int = 0
    credits_added: int = 0
    notice: str | None = None


class PurchaseStats(BaseModel):
    total_purchases: int = 0
    successful_purchases: int = 0
    failed_purchases: int = 0
    last_purchase_date: UtcDateTime | None = None


class RestorationStats(BaseModel):
    total_restorations: int = 0
    successful_restorations: int = 0
    total_credits_restored: int = 0
    last_restoration_date: UtcDateTime | None = None


class VerificationDetail(BaseModel):
    transaction_id: str
    product_id: str
    credits: int
    status: str


class VerificationReport(BaseModel):
    """결제 제공자의 거래 목록을 원장과 대조한 결과."""

    success: bool
    restored: int
    errors: int
    message: str
    details: list[VerificationDetail] = Field(default_factory=list)
