"""결제 SDK(인앱 결제) 결과 이벤트 정의."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Self


class PurchaseEventStatus:
    """결제 결과 상태 상수. purchased / restored 만 크레딧 정산을 유발한다."""

    PURCHASED = "purchased"
    RESTORED = "restored"
    CANCELLED = "cancelled"

    ALL = (PURCHASED, RESTORED, CANCELLED)


@dataclass(slots=True)
class PurchaseEvent:
    """결제 제공자에서 관측된 거래 한 건.

    같은 transaction_id 가 앱 재실행, 영수증 재전송 등으로 여러 번 도착할 수 있다.
    """

    transaction_id: str
    product_id: str
    status: str
    user_id: str | None = None
    price: float | None = None
    currency: str | None = None
    purchase_date: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Self:
        status = str(data["status"]).strip().lower()
        if status not in PurchaseEventStatus.ALL:
            raise ValueError(f"unknown purchase event status: {status!r}")

        transaction_id = str(data["transaction_id"]).strip()
        if not transaction_id:
            raise ValueError("transaction_id must not be blank")

        price = data.get("price")
        user_id = data.get("user_id")
        return cls(
            transaction_id=transaction_id,
            product_id=str(data["product_id"]).strip(),
            status=status,
            user_id=str(user_id) if user_id else None,
            price=float(price) if price is not None else None,
            currency=data.get("currency"),
            purchase_date=data.get("purchase_date"),
        )

    @property
    def should_credit(self) -> bool:
        return self.status in (PurchaseEventStatus.PURCHASED, PurchaseEventStatus.RESTORED)
