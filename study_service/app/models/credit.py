"""크레딧 원장 도메인 모델.

한 identity 의 크레딧은 두 풀로 나뉜다.
- 영구 크레딧: 만료되지 않는 잔액 하나
- 만료 크레딧: 각자 만료 시각을 가진 독립적인 지급분(grant) 목록

사용 가능 합계는 저장하지 않고 매번 계산하며, 만료된 grant 는 정리 전이라도 합계에서 제외한다.
소비 시에는 만료가 임박한 grant 부터 차감하고 남는 양을 영구 잔액에서 차감한다.
"""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, Field

from common.types.datetime import UtcDateTime


INSUFFICIENT_CREDITS = "insufficient credits"


class CreditKind(StrEnum):
    PERMANENT = "permanent"
    EXPIRING = "expiring"


class ExpiringGrant(BaseModel):
    """만료 시각이 있는 개별 지급분."""

    id: str | None = None
    user_id: str
    amount: int  # 현재 남은 수량
    original_amount: int  # 최초 지급량
    expires_at: datetime
    created_at: datetime

    def is_active(self, now: datetime) -> bool:
        return self.amount > 0 and self.expires_at > now


class GrantDeduction(BaseModel):
    """grant 하나에서 차감할 양. expected_amount 는 계획 시점에 읽은 잔량이다."""

    grant_id: str
    expected_amount: int
    deduct: int


class DeductionPlan(BaseModel):
    """spend 한 번을 어느 풀에서 얼마씩 차감할지에 대한 계획."""

    amount: int
    grant_steps: list[GrantDeduction] = Field(default_factory=list)
    permanent_deduct: int = 0

    @property
    def grant_ids(self) -> list[str]:
        return [step.grant_id for step in self.grant_steps]


class CreditAccount(BaseModel):
    """identity 하나의 크레딧 계정 스냅샷."""

    user_id: str
    permanent_balance: int = 0
    expiring_grants: list[ExpiringGrant] = Field(default_factory=list)

    def active_grants(self, now: datetime) -> list[ExpiringGrant]:
        """만료되지 않고 잔량이 있는 grant 를 만료 임박 순으로 반환한다."""
        grants = [g for g in self.expiring_grants if g.is_active(now)]
        grants.sort(key=lambda g: g.expires_at)
        return grants

    def expiring_available(self, now: datetime) -> int:
        return sum(g.amount for g in self.active_grants(now))

    def total_available(self, now: datetime) -> int:
        return self.permanent_balance + self.expiring_available(now)

    def plan_deduction(self, amount: int, now: datetime) -> DeductionPlan | None:
        """amount 만큼 차감할 계획을 세운다. 잔액이 부족하면 None.

        만료 크레딧을 먼저 (만료 임박 순으로) 쓰고, 나머지를 영구 잔액에서 쓴다.
        """
        if amount <= 0:
            raise ValueError("amount must be positive")
        if self.total_available(now) < amount:
            return None

        remaining = amount
        steps: list[GrantDeduction] = []
        for grant in self.active_grants(now):
            if remaining <= 0:
                break
            deduct = min(grant.amount, remaining)
            if grant.id is None:
                raise ValueError("cannot plan a deduction against an unsaved grant")
            steps.append(
                GrantDeduction(
                    grant_id=grant.id,
                    expected_amount=grant.amount,
                    deduct=deduct,
                )
            )
            remaining -= deduct

        return DeductionPlan(amount=amount, grant_steps=steps, permanent_deduct=remaining)

    def to_balance(self, now: datetime, *, stale: bool = False) -> "CreditBalance":
        expiring = self.expiring_available(now)
        return CreditBalance(
            user_id=self.user_id,
            permanent=self.permanent_balance,
            expiring=expiring,
            total=self.permanent_balance + expiring,
            stale=stale,
            as_of=now,
        )


class CreditBalance(BaseModel):
    """get_current_credits 결과.

    stale=True 이면 원격 저장소에 닿지 못해 마지막으로 캐시한 값을 돌려준 것이다.
    """

    user_id: str
    permanent: int
    expiring: int
    total: int
    stale: bool = False
    as_of: UtcDateTime


class SpendResult(BaseModel):
    """spend_credits 결과. 잔액 부족은 예외가 아니라 success=False 로 표현한다."""

    success: bool
    error: str | None = None
    amount: int = 0
    remaining: int | None = None
    consumed_grant_ids: list[str] = Field(default_factory=list)

    @classmethod
    def insufficient(cls, amount: int, available: int) -> "SpendResult":
        return cls(
            success=False,
            error=INSUFFICIENT_CREDITS,
            amount=amount,
            remaining=available,
        )
