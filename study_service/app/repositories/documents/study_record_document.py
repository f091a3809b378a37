from __future__ import annotations

from typing import Optional

from common.mongo.types import BaseDocument

from ...models.study_record import StudyRecord, StudyRecordKind


class StudyRecordDocument(BaseDocument):
    """history / notes / scan_notes / quiz_maker / flash_card_sets / mind_maps 공용 도큐먼트 모델.

    kind 는 컬렉션으로 구분되므로 저장하지 않는다.
    """

    user_id: str
    title: str
    content: str
    feature: Optional[str] = None
    answer: Optional[str] = None
    variant: Optional[str] = None
    source_note_id: Optional[str] = None
    source_note_type: Optional[str] = None

    @classmethod
    def from_domain(cls, record: StudyRecord) -> "StudyRecordDocument":
        data = record.model_dump(exclude={"id", "kind"})
        return cls.model_validate(data)

    def to_domain(self, kind: StudyRecordKind) -> StudyRecord:
        return StudyRecord(
            id=self.str_id,
            user_id=self.user_id,
            kind=kind,
            title=self.title,
            content=self.content,
            feature=self.feature,
            answer=self.answer,
            variant=self.variant,
            source_note_id=self.source_note_id,
            source_note_type=self.source_note_type,
            created_at=self.created_at,
            updated_at=self.updated_at or self.created_at,
        )
