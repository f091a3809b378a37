from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel, ConfigDict, Field
from pydantic.functional_validators import BeforeValidator
from typing_extensions import Annotated


def ensure_utc_datetime(value: datetime) -> datetime:
    """naive datetime 은 UTC 로 간주하고, aware datetime 은 UTC 로 변환한다.

    Mongo 와 SQLite 모두 tzinfo 를 잃은 채 돌려주는 경우가 있어 읽기 경로마다 거친다.
    """

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_object_id(value: Any) -> ObjectId:
    """문자열 id 를 ObjectId 로 바꾼다. 형식 오류는 ValueError 로 올린다."""

    if isinstance(value, ObjectId):
        return value
    if value is None:
        raise TypeError("ObjectId cannot be None")
    try:
        return ObjectId(str(value))
    except InvalidId as exc:
        raise ValueError(f"invalid object id: {value!r}") from exc


DocumentId = Annotated[ObjectId, BeforeValidator(to_object_id)]
MongoDateTime = Annotated[datetime, BeforeValidator(ensure_utc_datetime)]


class BaseDocument(BaseModel):
    """컬렉션 도큐먼트 공통 필드(_id, created_at, updated_at)."""

    model_config = ConfigDict(arbitrary_types_allowed=True, populate_by_name=True)

    id: Optional[DocumentId] = Field(default=None, alias="_id")
    created_at: MongoDateTime
    updated_at: Optional[MongoDateTime] = None

    @property
    def str_id(self) -> Optional[str]:
        return str(self.id) if self.id is not None else None

    def to_mongo_record(self) -> dict[str, Any]:
        # _id 가 비어 있으면 빼서 Mongo 가 새로 발급하게 한다.
        return self.model_dump(by_alias=True, exclude_none=True)
