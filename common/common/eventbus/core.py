from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Mapping, Self


# 재시도 토픽 단계별 지연(초). 단계 수가 곧 최대 재시도 횟수다.
RetryDelays: list[float] = [
    30.0,
    120.0,
    600.0,
    1800.0,
]


@dataclass(frozen=True, slots=True)
class Topic:
    """기본 토픽 이름과 거기서 파생되는 재시도/DLQ 토픽 이름."""

    base: str

    def dlq(self) -> str:
        return f"{self.base}.dlq"

    def retry(self, attempt: int) -> str:
        if not 1 <= attempt <= len(RetryDelays):
            raise ValueError(f"retry attempt out of range: {attempt}")
        return f"{self.base}.retry.{attempt}"

    def subscriptions(self) -> list[str]:
        """컨슈머가 함께 구독해야 하는 토픽 (기본 + 모든 재시도 단계)."""
        return [self.base, *(self.retry(i) for i in range(1, len(RetryDelays) + 1))]


@dataclass(slots=True)
class Event:
    """Kafka 메시지 한 건.

    payload 는 JSON 으로 직렬화 가능한 dict 를 담고,
    key 는 파티션 순서를 보장할 단위(예: user_id)를 담는다.
    """

    id: str
    payload: Any
    key: str | None = None
    retry: int = 0
    max_retry: int = 0
    last_error: str | None = None

    def __post_init__(self) -> None:
        if self.max_retry <= 0 or self.max_retry > len(RetryDelays):
            self.max_retry = len(RetryDelays)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> Self:
        """Kafka 에서 읽은 dict 를 복원한다. 누락된 필드는 기본값을 쓴다."""
        key = raw.get("key")
        return cls(
            id=str(raw.get("id", "")),
            payload=raw.get("payload"),
            key=str(key) if key is not None else None,
            retry=int(raw.get("retry", 0)),
            max_retry=int(raw.get("max_retry", 0)),
            last_error=raw.get("last_error"),
        )

    def route_failure(self, topic: Topic, error: str) -> str:
        """핸들러 실패를 기록하고 다시 발행할 토픽을 정한다.

        재시도가 남아 있으면 retry 를 올리고 다음 재시도 토픽을, 다 썼으면 DLQ 를 돌려준다.
        """
        self.last_error = error
        if self.retry >= self.max_retry:
            return topic.dlq()
        self.retry += 1
        return topic.retry(self.retry)
