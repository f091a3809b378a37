"""유저 소유 학습 기록 도메인 모델 (스캔 이력, 노트, 스캔 노트, 퀴즈, 플래시카드 세트, 마인드맵)."""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, field_validator

from common.types.datetime import UtcDateTime


class StudyRecordKind(StrEnum):
    HISTORY = "history"
    NOTE = "note"
    SCAN_NOTE = "scan_note"
    QUIZ = "quiz"
    FLASH_CARD_SET = "flash_card_set"
    MIND_MAP = "mind_map"


# 원격 저장소 컬렉션 이름
REMOTE_COLLECTIONS: dict[StudyRecordKind, str] = {
    StudyRecordKind.HISTORY: "history",
    StudyRecordKind.NOTE: "notes",
    StudyRecordKind.SCAN_NOTE: "scan_notes",
    StudyRecordKind.QUIZ: "quiz_maker",
    StudyRecordKind.FLASH_CARD_SET: "flash_card_sets",
    StudyRecordKind.MIND_MAP: "mind_maps",
}


class StudyRecord(BaseModel):
    """학습 기록 한 건.

    - feature: 기록을 만든 기능 태그 (ai-scan, quiz-maker 등)
    - answer: 스캔 이력의 AI 답변
    - variant: 퀴즈 유형(multiple-choice 등)이나 카드 유형(term-definition 등)
    """

    id: str | None = None
    user_id: str
    kind: StudyRecordKind
    title: str
    content: str
    feature: str | None = None
    answer: str | None = None
    variant: str | None = None
    source_note_id: str | None = None
    source_note_type: str | None = None
    created_at: UtcDateTime
    updated_at: UtcDateTime

    @field_validator("title")
    @classmethod
    def _title_not_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("title must not be blank")
        return value.strip()
