from __future__ import annotations

import uuid
from typing import Any, Mapping

from .core import Event


def new_json_event(
    payload: Mapping[str, Any],
    *,
    key: str | None = None,
    max_retry: int | None = None,
    event_id: str | None = None,
) -> Event:
    """dict 페이로드를 Event 로 감싼다. event_id 가 비어 있으면 uuid4 를 쓴다."""
    return Event(
        id=event_id or str(uuid.uuid4()),
        payload=dict(payload),
        key=key,
        max_retry=max_retry or 0,
    )
