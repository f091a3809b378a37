from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from common.mongo.types import ensure_utc_datetime

from .interfaces import StudyRecordRepositoryInterface
from .local_db import LocalDatabase, StudyRecordRow
from ..exceptions import CreditStoreUnavailableError
from ..models.study_record import StudyRecord, StudyRecordKind


logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = frozenset({"title", "content", "answer", "variant"})


def _to_domain(row: StudyRecordRow) -> StudyRecord:
    return StudyRecord(
        id=str(row.id),
        user_id=row.user_id,
        kind=StudyRecordKind(row.kind),
        title=row.title,
        content=row.content,
        feature=row.feature,
        answer=row.answer,
        variant=row.variant,
        source_note_id=row.source_note_id,
        source_note_type=row.source_note_type,
        created_at=ensure_utc_datetime(row.created_at),
        updated_at=ensure_utc_datetime(row.updated_at),
    )


def _parse_id(record_id: str) -> int | None:
    try:
        return int(record_id)
    except (TypeError, ValueError):
        return None


class LocalStudyRecordRepository(StudyRecordRepositoryInterface):
    """study_records 테이블에 대한 SQLite 접근 레이어."""

    def __init__(self, database: LocalDatabase) -> None:
        self._db = database

    def add(self, record: StudyRecord) -> StudyRecord:
        row = StudyRecordRow(
            user_id=record.user_id,
            kind=record.kind.value,
            title=record.title,
            content=record.content,
            feature=record.feature,
            answer=record.answer,
            variant=record.variant,
            source_note_id=record.source_note_id,
            source_note_type=record.source_note_type,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )
        try:
            with self._db.session() as session, session.begin():
                session.add(row)
                session.flush()
                new_id = row.id
        except SQLAlchemyError as exc:
            logger.error("local record insert failed: %s", exc)
            raise CreditStoreUnavailableError("local record store unavailable") from exc
        return record.model_copy(update={"id": str(new_id)})

    def list_by_user(
        self, user_id: str, kind: StudyRecordKind, page: int, page_size: int
    ) -> tuple[list[StudyRecord], int]:
        if page <= 0:
            page = 1
        if page_size <= 0 or page_size > 100:
            page_size = 20

        where = (StudyRecordRow.user_id == user_id, StudyRecordRow.kind == kind.value)
        try:
            with self._db.session() as session:
                total = session.scalar(select(func.count()).select_from(StudyRecordRow).where(*where))
                rows = session.scalars(
                    select(StudyRecordRow)
                    .where(*where)
                    .order_by(StudyRecordRow.created_at.desc(), StudyRecordRow.id.desc())
                    .offset((page - 1) * page_size)
                    .limit(page_size)
                ).all()
                items = [_to_domain(row) for row in rows]
        except SQLAlchemyError as exc:
            logger.error("local record list failed: %s", exc)
            raise CreditStoreUnavailableError("local record store unavailable") from exc
        return items, int(total or 0)

    def _find(self, session, user_id: str, kind: StudyRecordKind, record_id: str):
        pk = _parse_id(record_id)
        if pk is None:
            return None
        row = session.get(StudyRecordRow, pk)
        if row is None or row.user_id != user_id or row.kind != kind.value:
            return None
        return row

    def get(self, user_id: str, kind: StudyRecordKind, record_id: str) -> StudyRecord | None:
        try:
            with self._db.session() as session:
                row = self._find(session, user_id, kind, record_id)
                return _to_domain(row) if row is not None else None
        except SQLAlchemyError as exc:
            logger.error("local record read failed: %s", exc)
            raise CreditStoreUnavailableError("local record store unavailable") from exc

    def update(
        self,
        user_id: str,
        kind: StudyRecordKind,
        record_id: str,
        fields: dict[str, str | None],
        now: datetime,
    ) -> StudyRecord | None:
        try:
            with self._db.session() as session, session.begin():
                row = self._find(session, user_id, kind, record_id)
                if row is None:
                    return None
                for key, value in fields.items():
                    if key in UPDATABLE_FIELDS:
                        setattr(row, key, value)
                row.updated_at = now
                session.flush()
                return _to_domain(row)
        except SQLAlchemyError as exc:
            logger.error("local record update failed: %s", exc)
            raise CreditStoreUnavailableError("local record store unavailable") from exc

    def delete(self, user_id: str, kind: StudyRecordKind, record_id: str) -> bool:
        try:
            with self._db.session() as session, session.begin():
                row = self._find(session, user_id, kind, record_id)
                if row is None:
                    return False
                session.delete(row)
                return True
        except SQLAlchemyError as exc:
            logger.error("local record delete failed: %s", exc)
            raise CreditStoreUnavailableError("local record store unavailable") from exc
