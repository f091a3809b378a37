"""크레딧을 소비하는 기능(스캔, 노트 채팅, 퀴즈, 플래시카드, 마인드맵, 노트 보강).

모든 기능은 같은 순서를 따른다.
1. 기능 가격만큼 차감한다. 잔액이 부족하면 생성 호출 없이 upsell 결과를 돌려준다.
2. 생성 함수를 호출한다. 실패하면 차감한 만큼 영구 크레딧으로 환불하고 오류를 전파한다.
3. 결과를 학습 기록으로 저장한다.
"""

from __future__ import annotations

import logging
from typing import Callable

from fastapi import Depends
from pydantic import BaseModel

from .credit_events import CreditEventPublisher
from .credit_ledger_service import CreditLedgerService, get_credit_ledger_service
from .generation_client import GenerationClient
from .study_records_service import StudyRecordsService, get_study_records_service
from ..config import CatalogConfig
from ..dependencies import get_catalog, get_credit_event_publisher, get_generation_client
from ..exceptions import CreditStoreUnavailableError, GenerationError
from ..models.credit import CreditKind
from ..models.identity import Identity
from ..models.study_record import StudyRecord, StudyRecordKind


logger = logging.getLogger(__name__)


class Feature:
    SCAN = "scan"
    CHAT = "chat"
    QUIZ = "quiz"
    FLASH_CARDS = "flash_cards"
    MIND_MAP = "mind_map"
    ENHANCE_NOTES = "enhance_notes"


# config.yaml 에 가격이 없을 때 쓰는 기본값
DEFAULT_FEATURE_COSTS: dict[str, int] = {
    Feature.SCAN: 1,
    Feature.CHAT: 1,
    Feature.QUIZ: 2,
    Feature.FLASH_CARDS: 2,
    Feature.MIND_MAP: 2,
    Feature.ENHANCE_NOTES: 2,
}

TITLE_MAX_LENGTH = 60


class FeatureResult(BaseModel):
    """기능 실행 결과. upsell=True 이면 잔액 부족으로 실행하지 않은 것이다."""

    success: bool
    feature: str
    cost: int = 0
    upsell: bool = False
    error: str | None = None
    remaining: int | None = None
    output: str | None = None
    extracted_text: str | None = None
    record: StudyRecord | None = None


def _title_from(text: str, fallback: str) -> str:
    first_line = next((line.strip() for line in text.splitlines() if line.strip()), "")
    if not first_line:
        return fallback
    return first_line[:TITLE_MAX_LENGTH]


def _require_text(value: str, name: str) -> str:
    if not value or not value.strip():
        raise ValueError(f"{name} must not be blank")
    return value


class FeatureService:
    def __init__(
        self,
        ledger: CreditLedgerService,
        records: StudyRecordsService,
        generation: GenerationClient,
        catalog: CatalogConfig,
        publisher: CreditEventPublisher | None = None,
    ) -> None:
        self._ledger = ledger
        self._records = records
        self._generation = generation
        self._catalog = catalog
        self._publisher = publisher

    def cost_of(self, feature: str) -> int:
        cost = self._catalog.feature_costs.get(feature)
        if cost is None:
            cost = DEFAULT_FEATURE_COSTS[feature]
        return cost

    def run_metered(
        self,
        identity: Identity,
        feature: str,
        action: Callable[[], FeatureResult],
    ) -> FeatureResult:
        cost = self.cost_of(feature)
        spent = self._ledger.spend_credits(identity, cost)
        if not spent.success:
            return FeatureResult(
                success=False,
                feature=feature,
                cost=cost,
                upsell=True,
                error=spent.error,
                remaining=spent.remaining,
            )
        if self._publisher is not None:
            self._publisher.credit_spent(identity.user_id, spent, feature)

        try:
            result = action()
        except GenerationError:
            self._refund(identity, feature, cost)
            raise
        return result.model_copy(update={"cost": cost, "remaining": spent.remaining})

    def _refund(self, identity: Identity, feature: str, cost: int) -> None:
        try:
            self._ledger.add_credits(identity, cost, CreditKind.PERMANENT)
        except CreditStoreUnavailableError:
            logger.exception(
                "failed to refund %d credits after generation error",
                cost,
                extra={"user_id": identity.user_id, "feature": feature},
            )
            return
        logger.info(
            "refunded %d credits after generation error",
            cost,
            extra={"user_id": identity.user_id, "feature": feature},
        )
        if self._publisher is not None:
            self._publisher.credit_granted(
                identity.user_id, cost, CreditKind.PERMANENT.value, reason=f"{feature}_refund"
            )

    def _save_quietly(self, identity: Identity, metered_feature: str, **kwargs) -> StudyRecord | None:
        """생성 결과 저장. 이미 과금과 생성이 끝났으므로 저장 실패는 결과를 막지 않는다."""
        try:
            return self._records.add_record(identity, **kwargs)
        except CreditStoreUnavailableError:
            logger.error(
                "failed to save generated result",
                extra={"user_id": identity.user_id, "feature": metered_feature},
            )
            return None

    def scan(self, identity: Identity, image_base64: str, feature_tag: str = "ai-scan") -> FeatureResult:
        _require_text(image_base64, "image")

        def action() -> FeatureResult:
            text = self._generation.extract_text(image_base64)
            answer = self._generation.answer(text, feature_tag)
            record = self._save_quietly(
                identity,
                Feature.SCAN,
                kind=StudyRecordKind.HISTORY,
                title=_title_from(text, "Scan"),
                content=text,
                feature=feature_tag,
                answer=answer,
            )
            return FeatureResult(
                success=True,
                feature=Feature.SCAN,
                output=answer,
                extracted_text=text,
                record=record,
            )

        return self.run_metered(identity, Feature.SCAN, action)

    def chat(
        self, identity: Identity, note_title: str, note_content: str, question: str
    ) -> FeatureResult:
        _require_text(note_content, "note_content")
        _require_text(question, "question")
        context = (
            f'Based on this note titled "{note_title}" with the following content:\n\n'
            f"{note_content}\n\nPlease answer this question: {question.strip()}"
        )

        def action() -> FeatureResult:
            answer = self._generation.answer(context, "note-chat")
            return FeatureResult(success=True, feature=Feature.CHAT, output=answer)

        return self.run_metered(identity, Feature.CHAT, action)

    def generate_quiz(
        self,
        identity: Identity,
        notes_content: str,
        quiz_type: str = "multiple-choice",
        title: str | None = None,
        source_note_id: str | None = None,
        source_note_type: str | None = None,
    ) -> FeatureResult:
        _require_text(notes_content, "notes_content")

        def action() -> FeatureResult:
            quiz = self._generation.generate_quiz(notes_content, quiz_type)
            record = self._save_quietly(
                identity,
                Feature.QUIZ,
                kind=StudyRecordKind.QUIZ,
                title=title or _title_from(notes_content, "Quiz"),
                content=quiz,
                feature="quiz-maker",
                variant=quiz_type,
                source_note_id=source_note_id,
                source_note_type=source_note_type,
            )
            return FeatureResult(success=True, feature=Feature.QUIZ, output=quiz, record=record)

        return self.run_metered(identity, Feature.QUIZ, action)

    def generate_flash_cards(
        self,
        identity: Identity,
        notes_content: str,
        card_type: str = "term-definition",
        title: str | None = None,
        source_note_id: str | None = None,
        source_note_type: str | None = None,
    ) -> FeatureResult:
        _require_text(notes_content, "notes_content")

        def action() -> FeatureResult:
            cards = self._generation.generate_flash_cards(notes_content, card_type)
            record = self._save_quietly(
                identity,
                Feature.FLASH_CARDS,
                kind=StudyRecordKind.FLASH_CARD_SET,
                title=title or _title_from(notes_content, "Flash cards"),
                content=cards,
                feature="flash-cards",
                variant=card_type,
                source_note_id=source_note_id,
                source_note_type=source_note_type,
            )
            return FeatureResult(
                success=True, feature=Feature.FLASH_CARDS, output=cards, record=record
            )

        return self.run_metered(identity, Feature.FLASH_CARDS, action)

    def generate_mind_map(
        self,
        identity: Identity,
        notes_content: str,
        mode: str = "topic",
        title: str | None = None,
        source_note_id: str | None = None,
        source_note_type: str | None = None,
    ) -> FeatureResult:
        """노트로 마인드맵을 만든다. 결과는 {"root", "nodes"} JSON 문자열이다."""
        _require_text(notes_content, "notes_content")

        def action() -> FeatureResult:
            mind_map = self._generation.generate_mind_map(notes_content, mode)
            base_title = title or _title_from(notes_content, "Notes")
            record = self._save_quietly(
                identity,
                Feature.MIND_MAP,
                kind=StudyRecordKind.MIND_MAP,
                title=f"{base_title} - Mind Map"[:TITLE_MAX_LENGTH],
                content=mind_map,
                feature="mind-maps",
                variant=mode,
                source_note_id=source_note_id,
                source_note_type=source_note_type,
            )
            return FeatureResult(
                success=True, feature=Feature.MIND_MAP, output=mind_map, record=record
            )

        return self.run_metered(identity, Feature.MIND_MAP, action)

    def enhance_notes(self, identity: Identity, notes_content: str) -> FeatureResult:
        _require_text(notes_content, "notes_content")

        def action() -> FeatureResult:
            enhanced = self._generation.enhance_notes(notes_content)
            return FeatureResult(success=True, feature=Feature.ENHANCE_NOTES, output=enhanced)

        return self.run_metered(identity, Feature.ENHANCE_NOTES, action)


def get_feature_service(
    ledger: CreditLedgerService = Depends(get_credit_ledger_service),
    records: StudyRecordsService = Depends(get_study_records_service),
    generation: GenerationClient = Depends(get_generation_client),
    catalog: CatalogConfig = Depends(get_catalog),
    publisher: CreditEventPublisher = Depends(get_credit_event_publisher),
) -> FeatureService:
    """FastAPI DI용 FeatureService 팩토리."""

    return FeatureService(ledger, records, generation, catalog, publisher)
