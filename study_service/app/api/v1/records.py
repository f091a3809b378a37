"""학습 기록(스캔 이력, 노트, 스캔 노트, 퀴즈, 플래시카드 세트) CRUD API."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query, status

from ..schemas.common import PaginatedResponse
from ..schemas.records import AnswerUpdateRequest, RecordCreateRequest, RecordUpdateRequest
from ...dependencies import get_identity
from ...models.identity import Identity
from ...models.study_record import StudyRecord, StudyRecordKind
from ...services.study_records_service import StudyRecordsService, get_study_records_service


router = APIRouter(prefix="/records", tags=["records"])


@router.get("/{kind}", response_model=PaginatedResponse[StudyRecord], summary="기록 목록")
def list_records(
    kind: StudyRecordKind,
    identity: Annotated[Identity, Depends(get_identity)],
    service: Annotated[StudyRecordsService, Depends(get_study_records_service)],
    page: int = Query(1, ge=1, description="조회할 페이지 (1부터 시작)"),
    page_size: int = Query(20, ge=1, le=100, description="페이지당 아이템 개수 (1~100)"),
) -> PaginatedResponse[StudyRecord]:
    items, total = service.list_records(identity, kind, page, page_size)
    return PaginatedResponse(items=items, total=total, page=page, page_size=page_size)


@router.post(
    "/{kind}",
    response_model=StudyRecord,
    status_code=status.HTTP_201_CREATED,
    summary="기록 추가",
)
def create_record(
    kind: StudyRecordKind,
    body: RecordCreateRequest,
    identity: Annotated[Identity, Depends(get_identity)],
    service: Annotated[StudyRecordsService, Depends(get_study_records_service)],
) -> StudyRecord:
    return service.add_record(identity, kind, **body.model_dump())


@router.get("/{kind}/{record_id}", response_model=StudyRecord, summary="기록 조회")
def get_record(
    kind: StudyRecordKind,
    record_id: str,
    identity: Annotated[Identity, Depends(get_identity)],
    service: Annotated[StudyRecordsService, Depends(get_study_records_service)],
) -> StudyRecord:
    return service.get_record(identity, kind, record_id)


@router.put("/{kind}/{record_id}", response_model=StudyRecord, summary="기록 수정")
def update_record(
    kind: StudyRecordKind,
    record_id: str,
    body: RecordUpdateRequest,
    identity: Annotated[Identity, Depends(get_identity)],
    service: Annotated[StudyRecordsService, Depends(get_study_records_service)],
) -> StudyRecord:
    return service.update_record(identity, kind, record_id, body.model_dump(exclude_unset=True))


@router.delete("/{kind}/{record_id}", summary="기록 삭제")
def delete_record(
    kind: StudyRecordKind,
    record_id: str,
    identity: Annotated[Identity, Depends(get_identity)],
    service: Annotated[StudyRecordsService, Depends(get_study_records_service)],
) -> dict[str, str]:
    service.delete_record(identity, kind, record_id)
    return {"message": "record_deleted"}


@router.put("/history/{record_id}/answer", response_model=StudyRecord, summary="스캔 답변 수정")
def update_answer(
    record_id: str,
    body: AnswerUpdateRequest,
    identity: Annotated[Identity, Depends(get_identity)],
    service: Annotated[StudyRecordsService, Depends(get_study_records_service)],
) -> StudyRecord:
    return service.update_answer(identity, record_id, body.answer)
