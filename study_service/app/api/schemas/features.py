from __future__ import annotations

from pydantic import BaseModel, Field


class ScanRequest(BaseModel):
    image_base64: str = Field(..., min_length=1)
    feature: str = "ai-scan"


class ChatRequest(BaseModel):
    note_title: str = ""
    note_content: str = Field(..., min_length=1)
    question: str = Field(..., min_length=1)


class QuizRequest(BaseModel):
    notes_content: str = Field(..., min_length=1)
    quiz_type: str = "multiple-choice"
    title: str | None = None
    source_note_id: str | None = None
    source_note_type: str | None = None


class FlashCardsRequest(BaseModel):
    notes_content: str = Field(..., min_length=1)
    card_type: str = "term-definition"
    title: str | None = None
    source_note_id: str | None = None
    source_note_type: str | None = None


class EnhanceNotesRequest(BaseModel):
    notes_content: str = Field(..., min_length=1)


class MindMapRequest(BaseModel):
    notes_content: str = Field(..., min_length=1)
    mode: str = "topic"
    title: str | None = None
    source_note_id: str | None = None
    source_note_type: str | None = None
