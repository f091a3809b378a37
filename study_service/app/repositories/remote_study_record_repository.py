from __future__ import annotations

import logging
from datetime import datetime

import pymongo
from pymongo.collection import Collection
from pymongo.database import Database
from pymongo.errors import PyMongoError

from common.mongo.types import to_object_id

from .documents.study_record_document import StudyRecordDocument
from .interfaces import StudyRecordRepositoryInterface
from ..config import LedgerSettings
from ..exceptions import CreditStoreUnavailableError
from ..models.study_record import REMOTE_COLLECTIONS, StudyRecord, StudyRecordKind


logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = frozenset({"title", "content", "answer", "variant"})


class RemoteStudyRecordRepository(StudyRecordRepositoryInterface):
    """학습 기록 컬렉션들에 대한 MongoDB 접근 레이어.

    모든 쿼리는 user_id 로 한정한다.
    """

    def __init__(self, database: Database, settings: LedgerSettings) -> None:
        self._db = database
        self._timeout = settings.remote_timeout_seconds

    def _col(self, kind: StudyRecordKind) -> Collection:
        return self._db[REMOTE_COLLECTIONS[kind]]

    def add(self, record: StudyRecord) -> StudyRecord:
        payload = StudyRecordDocument.from_domain(record).to_mongo_record()
        try:
            with pymongo.timeout(self._timeout):
                result = self._col(record.kind).insert_one(payload)
        except PyMongoError as exc:
            logger.error("failed to insert %s record: %s", record.kind, exc)
            raise CreditStoreUnavailableError("remote record store unavailable") from exc
        return record.model_copy(update={"id": str(result.inserted_id)})

    def list_by_user(
        self, user_id: str, kind: StudyRecordKind, page: int, page_size: int
    ) -> tuple[list[StudyRecord], int]:
        if page <= 0:
            page = 1
        if page_size <= 0 or page_size > 100:
            page_size = 20

        skip = (page - 1) * page_size

        try:
            with pymongo.timeout(self._timeout):
                total = self._col(kind).count_documents({"user_id": user_id})
                raws = list(
                    self._col(kind).find(
                        {"user_id": user_id},
                        sort=[("created_at", -1), ("_id", -1)],
                        skip=skip,
                        limit=page_size,
                    )
                )
        except PyMongoError as exc:
            logger.error("failed to list %s records: %s", kind, exc)
            raise CreditStoreUnavailableError("remote record store unavailable") from exc

        items = [StudyRecordDocument.model_validate(raw).to_domain(kind) for raw in raws]
        return items, total

    def get(self, user_id: str, kind: StudyRecordKind, record_id: str) -> StudyRecord | None:
        try:
            with pymongo.timeout(self._timeout):
                found = self._col(kind).find_one(
                    {"_id": to_object_id(record_id), "user_id": user_id}
                )
        except PyMongoError as exc:
            logger.error("failed to read %s record: %s", kind, exc)
            raise CreditStoreUnavailableError("remote record store unavailable") from exc
        if not found:
            return None
        return StudyRecordDocument.model_validate(found).to_domain(kind)

    def update(
        self,
        user_id: str,
        kind: StudyRecordKind,
        record_id: str,
        fields: dict[str, str | None],
        now: datetime,
    ) -> StudyRecord | None:
        update = {k: v for k, v in fields.items() if k in UPDATABLE_FIELDS}
        update["updated_at"] = now
        try:
            with pymongo.timeout(self._timeout):
                found = self._col(kind).find_one_and_update(
                    {"_id": to_object_id(record_id), "user_id": user_id},
                    {"$set": update},
                    return_document=pymongo.ReturnDocument.AFTER,
                )
        except PyMongoError as exc:
            logger.error("failed to update %s record: %s", kind, exc)
            raise CreditStoreUnavailableError("remote record store unavailable") from exc
        if not found:
            return None
        return StudyRecordDocument.model_validate(found).to_domain(kind)

    def delete(self, user_id: str, kind: StudyRecordKind, record_id: str) -> bool:
        try:
            with pymongo.timeout(self._timeout):
                result = self._col(kind).delete_one(
                    {"_id": to_object_id(record_id), "user_id": user_id}
                )
        except PyMongoError as exc:
            logger.error("failed to delete %s record: %s", kind, exc)
            raise CreditStoreUnavailableError("remote record store unavailable") from exc
        return result.deleted_count > 0
