"""구매 이벤트 정산 / 구매 검증·복원 / 구매 이력 API. 인증 사용자 전용."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query

from common.events.purchase import PurchaseEvent

from ..schemas.common import PaginatedResponse
from ..schemas.purchases import PurchaseEventRequest, VerifyRequest
from ...dependencies import get_identity
from ...models.identity import Identity
from ...models.purchase import (
    CreditRestoration,
    PurchaseRecord,
    PurchaseStats,
    ReconcileResult,
    RestorationStats,
    VerificationReport,
)
from ...services.purchase_service import PurchaseReconciliationService, get_purchase_service


router = APIRouter(prefix="/purchases", tags=["purchases"])


def _to_event(identity: Identity, body: PurchaseEventRequest) -> PurchaseEvent:
    return PurchaseEvent.from_dict({**body.model_dump(), "user_id": identity.user_id})


class PurchaseStatsResponse(PurchaseStats):
    restorations: RestorationStats


@router.post("/events", response_model=ReconcileResult, summary="결제 결과 이벤트 정산")
def handle_purchase_event(
    body: PurchaseEventRequest,
    identity: Annotated[Identity, Depends(get_identity)],
    service: Annotated[PurchaseReconciliationService, Depends(get_purchase_service)],
) -> ReconcileResult:
    """같은 거래가 여러 번 들어와도 크레딧은 한 번만 지급된다."""
    return service.handle_event(identity, _to_event(identity, body))


@router.post("/verify", response_model=VerificationReport, summary="구매 검증 및 크레딧 복원")
def verify_purchases(
    body: VerifyRequest,
    identity: Annotated[Identity, Depends(get_identity)],
    service: Annotated[PurchaseReconciliationService, Depends(get_purchase_service)],
) -> VerificationReport:
    events = [_to_event(identity, tx) for tx in body.transactions]
    return service.verify_and_restore(identity, events)


@router.post(
    "/{transaction_id}/restore",
    response_model=ReconcileResult,
    summary="기록된 구매 한 건 수동 복원",
)
def restore_purchase(
    transaction_id: str,
    identity: Annotated[Identity, Depends(get_identity)],
    service: Annotated[PurchaseReconciliationService, Depends(get_purchase_service)],
) -> ReconcileResult:
    return service.restore_transaction(identity, transaction_id)


@router.get("", response_model=PaginatedResponse[PurchaseRecord], summary="구매 이력")
def list_purchases(
    identity: Annotated[Identity, Depends(get_identity)],
    service: Annotated[PurchaseReconciliationService, Depends(get_purchase_service)],
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
) -> PaginatedResponse[PurchaseRecord]:
    items, total = service.purchase_history(identity, page, page_size)
    return PaginatedResponse(items=items, total=total, page=page, page_size=page_size)


@router.get(
    "/restorations",
    response_model=PaginatedResponse[CreditRestoration],
    summary="크레딧 정산 감사 이력",
)
def list_restorations(
    identity: Annotated[Identity, Depends(get_identity)],
    service: Annotated[PurchaseReconciliationService, Depends(get_purchase_service)],
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
) -> PaginatedResponse[CreditRestoration]:
    items, total = service.restoration_history(identity, page, page_size)
    return PaginatedResponse(items=items, total=total, page=page, page_size=page_size)


@router.get("/stats", response_model=PurchaseStatsResponse, summary="구매 / 정산 통계")
def purchase_stats(
    identity: Annotated[Identity, Depends(get_identity)],
    service: Annotated[PurchaseReconciliationService, Depends(get_purchase_service)],
) -> PurchaseStatsResponse:
    stats = service.purchase_stats(identity)
    return PurchaseStatsResponse(
        **stats.model_dump(),
        restorations=service.restoration_stats(identity),
    )
