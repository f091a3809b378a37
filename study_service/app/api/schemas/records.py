from __future__ import annotations

from pydantic import BaseModel, Field


class RecordCreateRequest(BaseModel):
    title: str = Field(..., min_length=1)
    content: str
    feature: str | None = None
    answer: str | None = None
    variant: str | None = None
    source_note_id: str | None = None
    source_note_type: str | None = None


class RecordUpdateRequest(BaseModel):
    """보낸 필드만 갱신한다."""

    title: str | None = None
    content: str | None = None
    answer: str | None = None
    variant: str | None = None


class AnswerUpdateRequest(BaseModel):
    answer: str = Field(..., min_length=1)
