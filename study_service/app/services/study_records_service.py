from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from fastapi import Depends

from common.types.datetime import utc_now

from ..config import LedgerSettings
from ..dependencies import get_ledger_settings, get_local_db, remote_database
from ..exceptions import RecordNotFoundError
from ..models.identity import Identity
from ..models.study_record import StudyRecord, StudyRecordKind
from ..repositories.interfaces import StudyRecordRepositoryInterface
from ..repositories.local_db import LocalDatabase
from ..repositories.local_study_record_repository import LocalStudyRecordRepository
from ..repositories.remote_study_record_repository import RemoteStudyRecordRepository


logger = logging.getLogger(__name__)


class StudyRecordsService:
    """identity 가 소유한 학습 기록 CRUD. 저장소는 원장과 같은 규칙으로 고른다."""

    def __init__(
        self,
        remote_repo_provider: Callable[[], StudyRecordRepositoryInterface],
        local_repo: StudyRecordRepositoryInterface,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._remote_repo_provider = remote_repo_provider
        self._local_repo = local_repo
        self._clock = clock

    def _repo_for(self, identity: Identity) -> StudyRecordRepositoryInterface:
        if identity.is_authenticated:
            return self._remote_repo_provider()
        return self._local_repo

    def add_record(
        self,
        identity: Identity,
        kind: StudyRecordKind,
        title: str,
        content: str,
        *,
        feature: str | None = None,
        answer: str | None = None,
        variant: str | None = None,
        source_note_id: str | None = None,
        source_note_type: str | None = None,
    ) -> StudyRecord:
        now = self._clock()
        record = StudyRecord(
            user_id=identity.user_id,
            kind=kind,
            title=title,
            content=content,
            feature=feature,
            answer=answer,
            variant=variant,
            source_note_id=source_note_id,
            source_note_type=source_note_type,
            created_at=now,
            updated_at=now,
        )
        saved = self._repo_for(identity).add(record)
        logger.info("saved %s record id=%s", kind, saved.id, extra={"user_id": identity.user_id})
        return saved

    def list_records(
        self, identity: Identity, kind: StudyRecordKind, page: int = 1, page_size: int = 20
    ) -> tuple[list[StudyRecord], int]:
        return self._repo_for(identity).list_by_user(identity.user_id, kind, page, page_size)

    def get_record(self, identity: Identity, kind: StudyRecordKind, record_id: str) -> StudyRecord:
        record = self._repo_for(identity).get(identity.user_id, kind, record_id)
        if record is None:
            raise RecordNotFoundError(f"{kind} record {record_id} not found")
        return record

    def update_record(
        self,
        identity: Identity,
        kind: StudyRecordKind,
        record_id: str,
        fields: dict[str, str | None],
    ) -> StudyRecord:
        if "title" in fields and not (fields["title"] or "").strip():
            raise ValueError("title must not be blank")
        record = self._repo_for(identity).update(
            identity.user_id, kind, record_id, fields, self._clock()
        )
        if record is None:
            raise RecordNotFoundError(f"{kind} record {record_id} not found")
        return record

    def update_answer(self, identity: Identity, record_id: str, answer: str) -> StudyRecord:
        """스캔 이력의 AI 답변만 교체한다."""
        return self.update_record(identity, StudyRecordKind.HISTORY, record_id, {"answer": answer})

    def delete_record(self, identity: Identity, kind: StudyRecordKind, record_id: str) -> None:
        if not self._repo_for(identity).delete(identity.user_id, kind, record_id):
            raise RecordNotFoundError(f"{kind} record {record_id} not found")
        logger.info("deleted %s record id=%s", kind, record_id, extra={"user_id": identity.user_id})


def get_study_records_service(
    settings: LedgerSettings = Depends(get_ledger_settings),
    local_db: LocalDatabase = Depends(get_local_db),
) -> StudyRecordsService:
    """FastAPI DI용 StudyRecordsService 팩토리."""

    return StudyRecordsService(
        remote_repo_provider=lambda: RemoteStudyRecordRepository(remote_database(), settings),
        local_repo=LocalStudyRecordRepository(local_db),
    )
