from __future__ import annotations

import json
import logging
import threading
from typing import Callable, Optional

from confluent_kafka import Consumer, KafkaError, Message, Producer

from .config import get_brokers
from .core import Event, Topic

logger = logging.getLogger(__name__)


class KafkaEventBus:
    """Kafka 기반 EventBus.

    - publish: Event 를 JSON 으로 직렬화해 발행한다. key 가 있으면 메시지 키로 쓴다.
    - subscribe: 기본 토픽과 재시도 토픽을 함께 구독하고, 핸들러 실패 시
      다음 재시도 토픽으로, 재시도를 모두 소진하면 DLQ 로 보낸다.
    """

    def __init__(self, brokers: str) -> None:
        self._producer = Producer({"bootstrap.servers": brokers})
        self._brokers = brokers

    def close(self) -> None:
        self._producer.flush()

    # 발행 -----------------------------------------------------------------
    def publish(self, topic: str, event: Event) -> None:
        payload = json.dumps(event.to_dict(), ensure_ascii=False, default=str).encode(
            "utf-8"
        )

        def _delivery_callback(err, msg) -> None:  # type: ignore[no-untyped-def]
            if err is not None:
                logger.error("failed to deliver message to %s: %s", msg.topic(), err)

        self._producer.produce(
            topic=topic,
            value=payload,
            key=(event.key or event.id).encode("utf-8"),
            callback=_delivery_callback,
        )
        self._producer.poll(0)

    # 구독 -----------------------------------------------------------------
    def subscribe(
        self,
        group_id: str,
        topic: Topic,
        handler: Callable[[Event], None],
        *,
        poll_timeout: float = 0.5,
        stop_flag: list[bool] | None = None,
    ) -> None:
        consumer = Consumer(
            {
                "bootstrap.servers": self._brokers,
                "group.id": group_id,
                "auto.offset.reset": "earliest",
                "enable.auto.commit": False,
            }
        )
        consumer.subscribe(topic.subscriptions())

        try:
            logger.info(
                "Kafka consumer started. group_id=%s topic=%s", group_id, topic.base
            )
            while not (stop_flag and stop_flag[0]):
                msg = consumer.poll(poll_timeout)
                if msg is None:
                    continue
                if msg.error():
                    if msg.error().code() != KafkaError._PARTITION_EOF:
                        logger.error("consumer error: %s", msg.error())
                    continue

                if self._dispatch(msg, topic, handler):
                    try:
                        consumer.commit(message=msg, asynchronous=False)
                    except Exception as exc:  # noqa: BLE001
                        logger.error("offset commit error: %s", exc)
        finally:
            consumer.close()

    def _dispatch(
        self, msg: Message, topic: Topic, handler: Callable[[Event], None]
    ) -> bool:
        """메시지 하나를 처리한다. 오프셋을 커밋해도 되면 True."""

        try:
            raw = json.loads(msg.value())
        except Exception as exc:  # noqa: BLE001
            # 디코딩 불가 메시지는 재처리해도 소용이 없으므로 건너뛴다.
            logger.error("invalid event payload on topic %s: %s", msg.topic(), exc)
            return True
        if not isinstance(raw, dict):
            logger.error("event on topic %s is not a JSON object, skipping", msg.topic())
            return True

        evt = Event.from_dict(raw)

        try:
            handler(evt)
            return True
        except Exception as exc:  # noqa: BLE001
            target = evt.route_failure(topic, str(exc))

        if target == topic.dlq():
            logger.error(
                "event %s exceeded max retry, sending to DLQ %s: %s",
                evt.id,
                target,
                evt.last_error,
            )
        else:
            logger.warning(
                "event %s failed, scheduling retry %d/%d to %s",
                evt.id,
                evt.retry,
                evt.max_retry,
                target,
            )

        try:
            self.publish(target, evt)
        except Exception as pub_exc:  # noqa: BLE001
            logger.error("failed to publish event %s to %s: %s", evt.id, target, pub_exc)
            return False  # 커밋하지 않음 -> 다시 처리 시도
        return True


_bus: Optional[KafkaEventBus] = None
_bus_lock = threading.Lock()


def get_kafka_event_bus() -> KafkaEventBus:
    """KAFKA_BOOTSTRAP_SERVERS 로 생성한 프로세스 전역 발행용 EventBus."""

    global _bus

    if _bus is not None:
        return _bus

    with _bus_lock:
        if _bus is None:
            _bus = KafkaEventBus(get_brokers())
        return _bus
