"""원장 변경 알림 이벤트 발행."""

from __future__ import annotations

import logging
import uuid
from dataclasses import asdict
from datetime import datetime

from confluent_kafka import KafkaException

from common.eventbus.helpers import new_json_event
from common.eventbus.kafka import KafkaEventBus
from common.eventbus.topics import TOPIC_CREDIT
from common.events.credit import CreditEventType, CreditGrantedEvent, CreditSpentEvent
from common.types.datetime import utc_now

from ..models.credit import SpendResult


logger = logging.getLogger(__name__)

EVENT_SOURCE = "study-service"


class CreditEventPublisher:
    """credit.spent / credit.granted 이벤트를 TOPIC_CREDIT 으로 발행한다.

    bus 가 None 이면(Kafka 미설정) 아무것도 하지 않는다.
    알림 발행 실패는 이미 끝난 원장 변경을 되돌리지 않으므로 로그만 남긴다.
    """

    def __init__(self, bus: KafkaEventBus | None) -> None:
        self._bus = bus

    def _publish(self, payload: dict, event_id: str, key: str) -> None:
        if self._bus is None:
            return
        wrapped = new_json_event(payload=payload, key=key, event_id=event_id)
        try:
            self._bus.publish(TOPIC_CREDIT.base, wrapped)
        except (KafkaException, BufferError):
            logger.exception("failed to publish %s event id=%s", payload.get("type"), event_id)

    def credit_spent(self, user_id: str, result: SpendResult, feature: str | None = None) -> None:
        event_id = str(uuid.uuid4())
        event = CreditSpentEvent(
            id=event_id,
            type=CreditEventType.CREDIT_SPENT,
            timestamp=utc_now().isoformat(),
            source=EVENT_SOURCE,
            version="1.0",
            user_id=user_id,
            amount=result.amount,
            remaining=result.remaining or 0,
            feature=feature,
            consumed_grant_ids=list(result.consumed_grant_ids),
        )
        self._publish(asdict(event), event_id, key=user_id)

    def credit_granted(
        self,
        user_id: str,
        amount: int,
        kind: str,
        reason: str,
        expires_at: datetime | None = None,
    ) -> None:
        event_id = str(uuid.uuid4())
        event = CreditGrantedEvent(
            id=event_id,
            type=CreditEventType.CREDIT_GRANTED,
            timestamp=utc_now().isoformat(),
            source=EVENT_SOURCE,
            version="1.0",
            user_id=user_id,
            amount=amount,
            kind=kind,
            expires_at=expires_at.isoformat() if expires_at else None,
            reason=reason,
        )
        self._publish(asdict(event), event_id, key=user_id)
