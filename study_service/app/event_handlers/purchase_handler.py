"""구매 이벤트 핸들러.

결제 SDK 웹훅이 TOPIC_PURCHASE 로 넘긴 구매/복원/취소 이벤트를 소비해 크레딧을 정산한다.
핸들러가 예외를 던지면 이벤트 버스가 재시도 토픽을 거쳐 DLQ 로 보낸다.
"""

from __future__ import annotations

import logging

from common.eventbus.config import get_brokers, get_group_id
from common.eventbus.core import Event
from common.eventbus.kafka import KafkaEventBus
from common.eventbus.topics import TOPIC_PURCHASE
from common.events.purchase import PurchaseEvent
from common.mongo.client import get_database

from ..config import load_catalog_config, load_ledger_settings, load_local_store_config
from ..models.identity import Identity
from ..repositories.local_credit_repository import LocalCreditRepository
from ..repositories.local_db import get_local_database
from ..repositories.purchase_repository import CreditRestorationRepository, PurchaseRepository
from ..repositories.remote_credit_repository import RemoteCreditRepository
from ..services.credit_ledger_service import CreditLedgerService
from ..services.purchase_service import PurchaseReconciliationService


logger = logging.getLogger(__name__)


def handle_purchase_event(evt: Event, *, service: PurchaseReconciliationService) -> None:
    """이벤트 한 건을 정산한다. user_id 가 없는 이벤트는 처리할 수 없으므로 버린다."""
    payload = evt.payload
    if not isinstance(payload, dict):
        logger.error("unexpected payload type for event %s: %r", evt.id, type(payload))
        return

    try:
        event = PurchaseEvent.from_dict(payload)
    except (KeyError, ValueError):
        logger.exception("failed to decode PurchaseEvent payload=%r", payload)
        return

    if not event.user_id:
        logger.error(
            "purchase event %s has no user_id, dropping",
            evt.id,
            extra={"transaction_id": event.transaction_id},
        )
        return

    logger.info(
        "handling purchase event id=%s status=%s product_id=%s",
        evt.id,
        event.status,
        event.product_id,
        extra={"user_id": event.user_id, "transaction_id": event.transaction_id},
    )
    result = service.handle_event(Identity.authenticated(event.user_id), event)
    logger.info(
        "purchase event id=%s reconciled outcome=%s credits_added=%d",
        evt.id,
        result.outcome,
        result.credits_added,
        extra={"user_id": event.user_id, "transaction_id": event.transaction_id},
    )


def build_purchase_service() -> PurchaseReconciliationService:
    settings = load_ledger_settings()
    database = get_database()
    local_repo = LocalCreditRepository(get_local_database(load_local_store_config().db_path))
    remote_repo = RemoteCreditRepository(database, settings)
    ledger = CreditLedgerService(
        remote_store_provider=lambda: remote_repo,
        local_store=local_repo,
        snapshot_cache=local_repo,
        settings=settings,
    )
    return PurchaseReconciliationService(
        ledger=ledger,
        purchase_repo=PurchaseRepository(database, settings),
        restoration_repo=CreditRestorationRepository(database, settings),
        catalog=load_catalog_config(),
    )


def run_purchase_consumer(stop_flag: list[bool]) -> None:
    """구매 이벤트를 소비하는 구독 루프를 실행한다."""
    logger.info("purchase-consumer starting up")

    brokers = get_brokers()
    group_id = get_group_id() + "-purchase"

    bus = KafkaEventBus(brokers)
    service = build_purchase_service()

    try:
        logger.info("subscribing to topic=%s group_id=%s", TOPIC_PURCHASE.base, group_id)
        bus.subscribe(
            group_id=group_id,
            topic=TOPIC_PURCHASE,
            handler=lambda evt: handle_purchase_event(evt, service=service),
            stop_flag=stop_flag,
        )
    finally:
        bus.close()
        logger.info("purchase-consumer stopped")
