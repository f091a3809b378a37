from __future__ import annotations

from pydantic import BaseModel, Field


class PurchaseEventRequest(BaseModel):
    """결제 SDK 결과 이벤트."""

    transaction_id: str = Field(..., min_length=1)
    product_id: str = Field(..., min_length=1)
    status: str
    price: float | None = None
    currency: str | None = None
    purchase_date: str | None = None


class VerifyRequest(BaseModel):
    """결제 제공자에서 조회한 이 사용자의 거래 목록."""

    transactions: list[PurchaseEventRequest] = Field(default_factory=list)
