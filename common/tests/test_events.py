from __future__ import annotations

from dataclasses import asdict

import pytest

from common.eventbus.core import Event, RetryDelays, Topic
from common.eventbus.helpers import new_json_event
from common.events.credit import CreditEventType, CreditSpentEvent
from common.events.purchase import PurchaseEvent, PurchaseEventStatus
from common.types.datetime import parse_iso8601, serialize_datetime_to_utc_iso8601


def test_purchase_event_normalizes_status_and_fields() -> None:
    event = PurchaseEvent.from_dict(
        {
            "transaction_id": " tx-1 ",
            "product_id": "monthly",
            "status": "Restored",
            "user_id": "user-001",
            "price": "199",
        }
    )

    assert event.transaction_id == "tx-1"
    assert event.status == PurchaseEventStatus.RESTORED
    assert event.price == 199.0
    assert event.should_credit is True


def test_cancelled_purchase_does_not_credit() -> None:
    event = PurchaseEvent.from_dict(
        {"transaction_id": "tx-1", "product_id": "monthly", "status": "cancelled"}
    )

    assert event.should_credit is False
    assert event.user_id is None


@pytest.mark.parametrize(
    "data",
    [
        {"transaction_id": "tx-1", "product_id": "monthly", "status": "refunded"},
        {"transaction_id": "  ", "product_id": "monthly", "status": "purchased"},
    ],
)
def test_purchase_event_rejects_bad_payload(data: dict) -> None:
    with pytest.raises(ValueError):
        PurchaseEvent.from_dict(data)


def test_credit_spent_event_survives_the_bus_envelope() -> None:
    spent = CreditSpentEvent(
        id="evt-1",
        type=CreditEventType.CREDIT_SPENT,
        timestamp="2026-03-01T12:00:00+00:00",
        source="study-service",
        version="1.0",
        user_id="user-001",
        amount=2,
        remaining=3,
        feature="quiz",
        consumed_grant_ids=["g-1"],
    )

    wrapped = new_json_event(asdict(spent), key="user-001", event_id="evt-1")
    restored = Event.from_dict(wrapped.to_dict())

    assert restored.max_retry == len(RetryDelays)
    assert CreditSpentEvent.from_dict(restored.payload) == spent


def test_topic_names() -> None:
    topic = Topic("study-assistant.purchase")

    assert topic.dlq() == "study-assistant.purchase.dlq"
    assert topic.subscriptions() == [
        "study-assistant.purchase",
        *(f"study-assistant.purchase.retry.{i}" for i in range(1, len(RetryDelays) + 1)),
    ]
    with pytest.raises(ValueError):
        topic.retry(0)


def test_failed_event_walks_retry_topics_then_dlq() -> None:
    topic = Topic("study-assistant.purchase")
    evt = new_json_event({"transaction_id": "tx-1"}, max_retry=2)

    assert evt.route_failure(topic, "store down") == "study-assistant.purchase.retry.1"
    assert evt.route_failure(topic, "store down") == "study-assistant.purchase.retry.2"
    assert evt.route_failure(topic, "still down") == "study-assistant.purchase.dlq"
    assert evt.retry == 2
    assert evt.last_error == "still down"


def test_iso8601_helpers_normalize_to_utc() -> None:
    parsed = parse_iso8601("2026-03-01T21:00:00+09:00")

    assert serialize_datetime_to_utc_iso8601(parsed) == "2026-03-01T12:00:00+00:00"
    assert parse_iso8601("2026-03-01T12:00:00Z") == parsed
