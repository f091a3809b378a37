"""구매 / 크레딧 정산 감사 MongoDB 도큐먼트."""

from __future__ import annotations

from typing import Optional

from pydantic import Field

from common.mongo.types import BaseDocument, MongoDateTime

from ...models.credit import CreditKind
from ...models.purchase import (
    CreditRestoration,
    PurchaseRecord,
    PurchaseStatus,
    RestorationReason,
    RestorationStatus,
)


class PurchaseDocument(BaseDocument):
    """MongoDB purchases 컬렉션 도큐먼트 모델."""

    user_id: str
    transaction_id: str
    product_id: str
    amount: float = 0.0
    currency: str = "INR"
    status: PurchaseStatus = PurchaseStatus.PENDING
    purchase_date: MongoDateTime
    processed_at: Optional[MongoDateTime] = None
    credited_components: list[CreditKind] = Field(default_factory=list)

    @classmethod
    def from_domain(cls, record: PurchaseRecord) -> "PurchaseDocument":
        data = record.model_dump(exclude={"id"})
        return cls.model_validate(data)

    def to_domain(self) -> PurchaseRecord:
        return PurchaseRecord(
            id=self.str_id,
            user_id=self.user_id,
            transaction_id=self.transaction_id,
            product_id=self.product_id,
            amount=self.amount,
            currency=self.currency,
            status=self.status,
            purchase_date=self.purchase_date,
            processed_at=self.processed_at,
            credited_components=list(self.credited_components),
            created_at=self.created_at,
            updated_at=self.updated_at or self.created_at,
        )


class CreditRestorationDocument(BaseDocument):
    """MongoDB credit_restorations 컬렉션 도큐먼트 모델."""

    user_id: str
    product_id: str
    transaction_id: str
    expected_credits: int
    actual_credits_added: int
    reason: RestorationReason
    status: RestorationStatus

    @classmethod
    def from_domain(cls, restoration: CreditRestoration) -> "CreditRestorationDocument":
        data = restoration.model_dump(exclude={"id"})
        return cls.model_validate(data)

    def to_domain(self) -> CreditRestoration:
        return CreditRestoration(
            id=self.str_id,
            user_id=self.user_id,
            product_id=self.product_id,
            transaction_id=self.transaction_id,
            expected_credits=self.expected_credits,
            actual_credits_added=self.actual_credits_added,
            reason=self.reason,
            status=self.status,
            created_at=self.created_at,
        )
