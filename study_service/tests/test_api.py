from __future__ import annotations

from dataclasses import dataclass

import pytest
from fastapi.testclient import TestClient

from study_service.app.config import AuthConfig, CatalogConfig, LedgerSettings
from study_service.app.dependencies import (
    get_auth_config,
    get_catalog,
    get_credit_event_publisher,
    get_identity,
)
from study_service.app.main import create_app
from study_service.app.models.identity import Identity
from study_service.app.models.purchase import ProductGrant
from study_service.app.services.credit_events import CreditEventPublisher
from study_service.app.services.credit_ledger_service import (
    CreditLedgerService,
    get_credit_ledger_service,
)
from study_service.app.services.feature_service import FeatureService, get_feature_service
from study_service.app.services.purchase_service import (
    PurchaseReconciliationService,
    get_purchase_service,
)
from study_service.app.services.study_records_service import (
    StudyRecordsService,
    get_study_records_service,
)
from study_service.tests.fakes import (
    NOW,
    FakeCreditStore,
    FakeGenerationClient,
    FakePurchaseRepository,
    FakeRestorationRepository,
    FakeSnapshotCache,
    FakeStudyRecordRepository,
)


USER = "user-001"
CATALOG = CatalogConfig(products={"credits_10": ProductGrant.permanent_only("credits_10", 10)})
SERVICE_HEADERS = {"X-Service-Token": "svc-token"}


@dataclass
class ApiFixture:
    client: TestClient
    remote: FakeCreditStore
    local: FakeCreditStore
    records: FakeStudyRecordRepository
    identity: list[Identity]


@pytest.fixture
def api() -> ApiFixture:
    remote = FakeCreditStore()
    local = FakeCreditStore()
    ledger = CreditLedgerService(
        remote_store_provider=lambda: remote,
        local_store=local,
        snapshot_cache=FakeSnapshotCache(),
        settings=LedgerSettings(read_retries=0),
        clock=lambda: NOW,
        sleep=lambda _: None,
    )
    records = FakeStudyRecordRepository()
    records_service = StudyRecordsService(
        remote_repo_provider=lambda: records, local_repo=records, clock=lambda: NOW
    )
    purchases = PurchaseReconciliationService(
        ledger=ledger,
        purchase_repo=FakePurchaseRepository(),
        restoration_repo=FakeRestorationRepository(),
        catalog=CATALOG,
        clock=lambda: NOW,
    )
    features = FeatureService(
        ledger, records_service, FakeGenerationClient(), CATALOG  # type: ignore[arg-type]
    )
    identity = [Identity.anonymous()]

    app = create_app()
    app.dependency_overrides[get_identity] = lambda: identity[0]
    app.dependency_overrides[get_credit_ledger_service] = lambda: ledger
    app.dependency_overrides[get_credit_event_publisher] = lambda: CreditEventPublisher(None)
    app.dependency_overrides[get_study_records_service] = lambda: records_service
    app.dependency_overrides[get_feature_service] = lambda: features
    app.dependency_overrides[get_catalog] = lambda: CATALOG
    app.dependency_overrides[get_auth_config] = lambda: AuthConfig(service_token="svc-token")

    fixture = ApiFixture(
        client=TestClient(app),
        remote=remote,
        local=local,
        records=records,
        identity=identity,
    )

    def purchase_service_for_identity() -> PurchaseReconciliationService:
        if not identity[0].is_authenticated:
            # 실제 팩토리로 익명 거절 경로를 태운다.
            return get_purchase_service(identity[0], ledger, LedgerSettings(), CATALOG)
        return purchases

    app.dependency_overrides[get_purchase_service] = purchase_service_for_identity
    return fixture


def _sign_in(api: ApiFixture) -> None:
    api.identity[0] = Identity.authenticated(USER)


def test_health(api: ApiFixture) -> None:
    resp = api.client.get("/health")

    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


def test_anonymous_balance_starts_empty(api: ApiFixture) -> None:
    resp = api.client.get("/api/v1/credits")

    assert resp.status_code == 200
    body = resp.json()
    assert (body["permanent"], body["expiring"], body["total"], body["stale"]) == (0, 0, 0, False)


def test_spend_without_credits_returns_402(api: ApiFixture) -> None:
    resp = api.client.post("/api/v1/credits/spend", json={"amount": 1})

    assert resp.status_code == 402
    detail = resp.json()["detail"]
    assert detail["code"] == "insufficient_credits"
    assert detail["remaining"] == 0


def test_grant_then_spend(api: ApiFixture) -> None:
    granted = api.client.post(
        "/api/v1/credits/grant", json={"amount": 3}, headers=SERVICE_HEADERS
    )
    assert granted.status_code == 200
    assert granted.json()["total"] == 3

    spent = api.client.post("/api/v1/credits/spend", json={"amount": 2, "feature": "scan"})

    assert spent.status_code == 200
    assert spent.json()["remaining"] == 1
    assert api.local.permanent["local"] == 1


@pytest.mark.parametrize(
    "headers",
    [{}, {"X-Service-Token": "guess"}],
    ids=["missing", "wrong"],
)
def test_grant_without_service_token_is_403(api: ApiFixture, headers: dict) -> None:
    resp = api.client.post("/api/v1/credits/grant", json={"amount": 1000}, headers=headers)

    assert resp.status_code == 403
    assert resp.json()["detail"]["code"] == "service_token_required"
    assert api.local.permanent.get("local", 0) == 0


def test_signed_in_user_cannot_grant_without_service_token(api: ApiFixture) -> None:
    _sign_in(api)

    resp = api.client.post("/api/v1/credits/grant", json={"amount": 50})

    assert resp.status_code == 403
    assert api.remote.permanent.get(USER, 0) == 0


def test_grant_is_closed_when_no_service_token_configured(api: ApiFixture) -> None:
    api.client.app.dependency_overrides[get_auth_config] = lambda: AuthConfig()

    resp = api.client.post("/api/v1/credits/grant", json={"amount": 3}, headers=SERVICE_HEADERS)

    assert resp.status_code == 403
    assert api.local.permanent.get("local", 0) == 0


def test_spend_rejects_non_positive_amount(api: ApiFixture) -> None:
    resp = api.client.post("/api/v1/credits/spend", json={"amount": 0})

    assert resp.status_code == 422


def test_expiring_grant_for_anonymous_is_401(api: ApiFixture) -> None:
    resp = api.client.post(
        "/api/v1/credits/grant",
        json={"amount": 5, "kind": "expiring", "expires_at": "2030-01-01T00:00:00Z"},
        headers=SERVICE_HEADERS,
    )

    assert resp.status_code == 401
    assert resp.json()["detail"]["code"] == "identity_required"


def test_expiring_grant_in_the_past_is_400(api: ApiFixture) -> None:
    _sign_in(api)

    resp = api.client.post(
        "/api/v1/credits/grant",
        json={"amount": 5, "kind": "expiring", "expires_at": "2020-01-01T00:00:00Z"},
        headers=SERVICE_HEADERS,
    )

    assert resp.status_code == 400
    assert resp.json()["detail"]["code"] == "invalid_request"


def test_remote_outage_without_snapshot_is_503(api: ApiFixture) -> None:
    _sign_in(api)
    api.remote.unavailable = True

    resp = api.client.get("/api/v1/credits")

    assert resp.status_code == 503
    assert resp.json()["detail"]["code"] == "store_unavailable"


def test_remote_outage_with_snapshot_is_stale(api: ApiFixture) -> None:
    _sign_in(api)
    api.remote.permanent[USER] = 4
    assert api.client.get("/api/v1/credits").json()["stale"] is False

    api.remote.unavailable = True
    resp = api.client.get("/api/v1/credits")

    assert resp.status_code == 200
    assert resp.json()["stale"] is True
    assert resp.json()["total"] == 4


def test_purchase_routes_require_sign_in(api: ApiFixture) -> None:
    resp = api.client.post(
        "/api/v1/purchases/events",
        json={"transaction_id": "tx-1", "product_id": "credits_10", "status": "purchased"},
    )

    assert resp.status_code == 401


def test_replayed_purchase_event_is_credited_once(api: ApiFixture) -> None:
    _sign_in(api)
    body = {"transaction_id": "tx-1", "product_id": "credits_10", "status": "purchased"}

    first = api.client.post("/api/v1/purchases/events", json=body)
    second = api.client.post("/api/v1/purchases/events", json=body)

    assert first.json()["outcome"] == "credited"
    assert second.json()["outcome"] == "duplicate"
    assert api.remote.permanent[USER] == 10

    stats = api.client.get("/api/v1/purchases/stats").json()
    assert stats["successful_purchases"] == 1
    assert stats["restorations"]["total_credits_restored"] == 10


def test_unknown_purchase_status_is_400(api: ApiFixture) -> None:
    _sign_in(api)

    resp = api.client.post(
        "/api/v1/purchases/events",
        json={"transaction_id": "tx-1", "product_id": "credits_10", "status": "refunded"},
    )

    assert resp.status_code == 400


def test_records_crud(api: ApiFixture) -> None:
    created = api.client.post(
        "/api/v1/records/note", json={"title": "Cells", "content": "Cells divide."}
    )
    assert created.status_code == 201
    record_id = created.json()["id"]

    listed = api.client.get("/api/v1/records/note").json()
    assert listed["total"] == 1

    updated = api.client.put(f"/api/v1/records/note/{record_id}", json={"content": "Mitosis."})
    assert updated.json()["content"] == "Mitosis."
    assert updated.json()["title"] == "Cells"

    deleted = api.client.delete(f"/api/v1/records/note/{record_id}")
    assert deleted.json() == {"message": "record_deleted"}

    missing = api.client.get(f"/api/v1/records/note/{record_id}")
    assert missing.status_code == 404
    assert missing.json()["detail"]["code"] == "not_found"


def test_history_answer_update(api: ApiFixture) -> None:
    created = api.client.post(
        "/api/v1/records/history",
        json={"title": "Scan", "content": "text", "answer": "old"},
    ).json()

    resp = api.client.put(
        f"/api/v1/records/history/{created['id']}/answer", json={"answer": "new"}
    )

    assert resp.status_code == 200
    assert resp.json()["answer"] == "new"


def test_unknown_record_kind_is_422(api: ApiFixture) -> None:
    resp = api.client.get("/api/v1/records/diary")

    assert resp.status_code == 422


def test_feature_without_credits_is_402(api: ApiFixture) -> None:
    resp = api.client.post("/api/v1/features/quiz", json={"notes_content": "Notes"})

    assert resp.status_code == 402
    detail = resp.json()["detail"]
    assert detail["feature"] == "quiz"
    assert detail["cost"] == 2


def test_feature_with_credits_runs(api: ApiFixture) -> None:
    api.local.permanent["local"] = 1

    resp = api.client.post("/api/v1/features/scan", json={"image_base64": "aW1hZ2U="})

    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["remaining"] == 0
    assert body["record"]["kind"] == "history"


def test_mind_map_is_saved_and_listed_with_records(api: ApiFixture) -> None:
    api.local.permanent["local"] = 2

    resp = api.client.post(
        "/api/v1/features/mind-map", json={"notes_content": "Cells", "title": "Biology"}
    )

    assert resp.status_code == 200
    body = resp.json()
    assert body["cost"] == 2
    assert body["record"]["kind"] == "mind_map"

    listed = api.client.get("/api/v1/records/mind_map")

    assert listed.status_code == 200
    assert [item["title"] for item in listed.json()["items"]] == ["Biology - Mind Map"]
