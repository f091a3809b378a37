"""크레딧을 소비하는 생성 기능 API.

잔액이 부족하면 생성 함수를 호출하지 않고 402 와 upsell 안내를 돌려준다.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status

from ..schemas.features import (
    ChatRequest,
    EnhanceNotesRequest,
    FlashCardsRequest,
    MindMapRequest,
    QuizRequest,
    ScanRequest,
)
from ...dependencies import get_identity
from ...models.identity import Identity
from ...services.feature_service import FeatureResult, FeatureService, get_feature_service


router = APIRouter(prefix="/features", tags=["features"])


def _ensure_paid(result: FeatureResult) -> FeatureResult:
    if result.upsell:
        raise HTTPException(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            detail={
                "code": "insufficient_credits",
                "message": "크레딧이 부족합니다.",
                "feature": result.feature,
                "cost": result.cost,
                "remaining": result.remaining,
            },
        )
    return result


@router.post("/scan", response_model=FeatureResult, summary="이미지 스캔 후 AI 답변")
def scan(
    body: ScanRequest,
    identity: Annotated[Identity, Depends(get_identity)],
    service: Annotated[FeatureService, Depends(get_feature_service)],
) -> FeatureResult:
    return _ensure_paid(service.scan(identity, body.image_base64, body.feature))


@router.post("/chat", response_model=FeatureResult, summary="노트에 대한 질문")
def chat(
    body: ChatRequest,
    identity: Annotated[Identity, Depends(get_identity)],
    service: Annotated[FeatureService, Depends(get_feature_service)],
) -> FeatureResult:
    return _ensure_paid(
        service.chat(identity, body.note_title, body.note_content, body.question)
    )


@router.post("/quiz", response_model=FeatureResult, summary="노트로 퀴즈 생성")
def generate_quiz(
    body: QuizRequest,
    identity: Annotated[Identity, Depends(get_identity)],
    service: Annotated[FeatureService, Depends(get_feature_service)],
) -> FeatureResult:
    return _ensure_paid(
        service.generate_quiz(
            identity,
            body.notes_content,
            body.quiz_type,
            title=body.title,
            source_note_id=body.source_note_id,
            source_note_type=body.source_note_type,
        )
    )


@router.post("/flash-cards", response_model=FeatureResult, summary="노트로 플래시카드 생성")
def generate_flash_cards(
    body: FlashCardsRequest,
    identity: Annotated[Identity, Depends(get_identity)],
    service: Annotated[FeatureService, Depends(get_feature_service)],
) -> FeatureResult:
    return _ensure_paid(
        service.generate_flash_cards(
            identity,
            body.notes_content,
            body.card_type,
            title=body.title,
            source_note_id=body.source_note_id,
            source_note_type=body.source_note_type,
        )
    )


@router.post("/mind-map", response_model=FeatureResult, summary="노트로 마인드맵 생성")
def generate_mind_map(
    body: MindMapRequest,
    identity: Annotated[Identity, Depends(get_identity)],
    service: Annotated[FeatureService, Depends(get_feature_service)],
) -> FeatureResult:
    return _ensure_paid(
        service.generate_mind_map(
            identity,
            body.notes_content,
            body.mode,
            title=body.title,
            source_note_id=body.source_note_id,
            source_note_type=body.source_note_type,
        )
    )


@router.post("/enhance-notes", response_model=FeatureResult, summary="노트 보강")
def enhance_notes(
    body: EnhanceNotesRequest,
    identity: Annotated[Identity, Depends(get_identity)],
    service: Annotated[FeatureService, Depends(get_feature_service)],
) -> FeatureResult:
    return _ensure_paid(service.enhance_notes(identity, body.notes_content))
