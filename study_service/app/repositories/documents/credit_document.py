"""크레딧 MongoDB 도큐먼트.

- credits: 유저당 한 행. 영구 잔액(balance)만 가진다.
- expiring_credits: 유저당 여러 행. 지급분마다 만료 시각을 가진다.
"""

from __future__ import annotations

from pydantic import field_validator

from common.mongo.types import BaseDocument, MongoDateTime

from ...models.credit import ExpiringGrant


class PermanentCreditDocument(BaseDocument):
    """MongoDB credits 컬렉션 도큐먼트 모델."""

    user_id: str
    balance: int = 0

    @field_validator("balance")
    @classmethod
    def _non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("permanent balance must not be negative")
        return value


class ExpiringCreditDocument(BaseDocument):
    """MongoDB expiring_credits 컬렉션 도큐먼트 모델."""

    user_id: str
    amount: int
    original_amount: int
    expires_at: MongoDateTime

    @field_validator("amount")
    @classmethod
    def _non_negative(cls, value: int) -> int:
        # 0 은 차감 직후 정리 전 상태라 허용한다.
        if value < 0:
            raise ValueError("grant amount must not be negative")
        return value

    @classmethod
    def from_domain(cls, grant: ExpiringGrant) -> "ExpiringCreditDocument":
        return cls(
            user_id=grant.user_id,
            amount=grant.amount,
            original_amount=grant.original_amount,
            expires_at=grant.expires_at,
            created_at=grant.created_at,
        )

    def to_domain(self) -> ExpiringGrant:
        return ExpiringGrant(
            id=self.str_id,
            user_id=self.user_id,
            amount=self.amount,
            original_amount=self.original_amount,
            expires_at=self.expires_at,
            created_at=self.created_at,
        )
