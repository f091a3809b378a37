"""크레딧 잔액 조회 / 소비 / 지급 / 만료 정리 API."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status

from common.mongo.types import ensure_utc_datetime

from ..schemas.credits import GrantRequest, SpendRequest, SpendResponse, SweepResponse
from ...dependencies import get_credit_event_publisher, get_identity, require_service_token
from ...models.credit import CreditBalance
from ...models.identity import Identity
from ...services.credit_events import CreditEventPublisher
from ...services.credit_ledger_service import CreditLedgerService, get_credit_ledger_service


router = APIRouter(prefix="/credits", tags=["credits"])


@router.get("", response_model=CreditBalance, summary="현재 크레딧 잔액 조회")
def get_credits(
    identity: Annotated[Identity, Depends(get_identity)],
    ledger: Annotated[CreditLedgerService, Depends(get_credit_ledger_service)],
) -> CreditBalance:
    """원격 저장소에 닿지 못하면 마지막 캐시 값을 stale=true 로 돌려준다."""
    return ledger.get_current_credits(identity)


@router.post("/spend", response_model=SpendResponse, summary="크레딧 소비")
def spend_credits(
    req: SpendRequest,
    identity: Annotated[Identity, Depends(get_identity)],
    ledger: Annotated[CreditLedgerService, Depends(get_credit_ledger_service)],
    publisher: Annotated[CreditEventPublisher, Depends(get_credit_event_publisher)],
) -> SpendResponse:
    """잔액 부족 시 402."""
    result = ledger.spend_credits(identity, req.amount)
    if not result.success:
        raise HTTPException(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            detail={
                "code": "insufficient_credits",
                "message": "크레딧이 부족합니다.",
                "remaining": result.remaining,
            },
        )

    publisher.credit_spent(identity.user_id, result, req.feature)
    return SpendResponse(
        success=True,
        amount=result.amount,
        remaining=result.remaining,
        consumed_grant_ids=result.consumed_grant_ids,
    )


@router.post(
    "/grant",
    response_model=CreditBalance,
    summary="프로모션 크레딧 지급",
    dependencies=[Depends(require_service_token)],
)
def grant_credits(
    req: GrantRequest,
    identity: Annotated[Identity, Depends(get_identity)],
    ledger: Annotated[CreditLedgerService, Depends(get_credit_ledger_service)],
    publisher: Annotated[CreditEventPublisher, Depends(get_credit_event_publisher)],
) -> CreditBalance:
    """관리자/이벤트 크레딧 부여. X-Service-Token 을 가진 내부 호출만 허용한다.

    구매 크레딧은 /purchases 경로로만 지급된다.
    """
    expires_at = ensure_utc_datetime(req.expires_at) if req.expires_at else None
    ledger.add_credits(identity, req.amount, req.kind, expires_at)
    publisher.credit_granted(
        identity.user_id, req.amount, req.kind.value, req.reason, expires_at
    )

    # 새 잔액 반환
    return ledger.get_current_credits(identity)


@router.post("/sweep", response_model=SweepResponse, summary="만료 크레딧 정리")
def sweep_expired(
    identity: Annotated[Identity, Depends(get_identity)],
    ledger: Annotated[CreditLedgerService, Depends(get_credit_ledger_service)],
) -> SweepResponse:
    return SweepResponse(removed=ledger.sweep_expired_grants(identity))
