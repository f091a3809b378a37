from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from ...models.credit import CreditKind


class SpendRequest(BaseModel):
    """크레딧 소비 요청."""

    amount: int = Field(1, gt=0)
    feature: str | None = None


class SpendResponse(BaseModel):
    """크레딧 소비 결과."""

    success: bool
    amount: int
    remaining: int | None
    consumed_grant_ids: list[str]


class GrantRequest(BaseModel):
    """프로모션 크레딧 지급 요청. expiring 이면 expires_at 이 필요하다."""

    amount: int = Field(..., gt=0)
    kind: CreditKind = CreditKind.PERMANENT
    expires_at: datetime | None = None
    reason: str = "promotion"


class SweepResponse(BaseModel):
    removed: int
