"""크레딧 원장 변경 이벤트 정의."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Self


class CreditEventType:
    """크레딧 이벤트 타입 상수."""

    CREDIT_SPENT = "credit.spent"
    CREDIT_GRANTED = "credit.granted"


@dataclass(slots=True)
class CreditSpentEvent:
    """크레딧 소비 이벤트. 기능 실행 전 차감이 성공하면 발행된다."""

    id: str
    type: str
    timestamp: str
    source: str
    version: str
    user_id: str
    amount: int
    remaining: int
    feature: str | None
    consumed_grant_ids: list[str]

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Self:
        return cls(
            id=str(data["id"]),
            type=str(data["type"]),
            timestamp=str(data["timestamp"]),
            source=str(data["source"]),
            version=str(data.get("version", "1.0")),
            user_id=str(data["user_id"]),
            amount=int(data["amount"]),
            remaining=int(data["remaining"]),
            feature=data.get("feature"),
            consumed_grant_ids=[str(v) for v in data.get("consumed_grant_ids") or []],
        )


@dataclass(slots=True)
class CreditGrantedEvent:
    """크레딧 지급 이벤트. 프로모션 지급이나 구매 정산 후 발행된다."""

    id: str
    type: str
    timestamp: str
    source: str
    version: str
    user_id: str
    amount: int
    kind: str
    expires_at: str | None
    reason: str

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Self:
        return cls(
            id=str(data["id"]),
            type=str(data["type"]),
            timestamp=str(data["timestamp"]),
            source=str(data["source"]),
            version=str(data.get("version", "1.0")),
            user_id=str(data["user_id"]),
            amount=int(data["amount"]),
            kind=str(data["kind"]),
            expires_at=data.get("expires_at"),
            reason=str(data["reason"]),
        )
