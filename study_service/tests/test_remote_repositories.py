from __future__ import annotations

from datetime import timedelta

import mongomock
import pytest
from pymongo.errors import ExecutionTimeout

from study_service.app.config import LedgerSettings
from study_service.app.exceptions import CreditStoreUnavailableError
from study_service.app.models.credit import CreditKind, DeductionPlan
from study_service.app.models.purchase import PurchaseRecord, PurchaseStatus
from study_service.app.repositories.purchase_repository import PurchaseRepository
from study_service.app.repositories.remote_credit_repository import RemoteCreditRepository
from study_service.tests.fakes import NOW


USER = "user-001"


class TimeoutOnce:
    """컬렉션의 첫 update_one 을 시간 초과로 만든다.

    applied=True 이면 서버에는 반영된 뒤 응답만 늦은 경우를 흉내 낸다.
    """

    def __init__(self, collection, *, applied: bool) -> None:
        self._collection = collection
        self._applied = applied
        self.tripped = False

    def update_one(self, *args, **kwargs):
        if not self.tripped:
            self.tripped = True
            if self._applied:
                self._collection.update_one(*args, **kwargs)
            raise ExecutionTimeout("operation exceeded time limit")
        return self._collection.update_one(*args, **kwargs)

    def __getattr__(self, name):
        return getattr(self._collection, name)


@pytest.fixture
def database():
    return mongomock.MongoClient(tz_aware=True)["study_test"]


@pytest.fixture
def repo(database) -> RemoteCreditRepository:
    return RemoteCreditRepository(database, LedgerSettings())


def _seed(repo: RemoteCreditRepository, permanent: int, grant: int) -> str:
    if permanent:
        repo.add_permanent(USER, permanent)
    created = repo.add_expiring(USER, grant, NOW + timedelta(days=7), NOW)
    assert created.id is not None
    return created.id


def _grant_amount(database, grant_id: str) -> int:
    doc = database["expiring_credits"].find_one({"user_id": USER})
    assert doc is not None and str(doc["_id"]) == grant_id
    return doc["amount"]


def test_spend_draws_grant_first_and_removes_drained_grant(repo, database) -> None:
    _seed(repo, permanent=5, grant=3)
    plan = repo.load_account(USER).plan_deduction(4, NOW)

    assert repo.apply_deduction(USER, plan, NOW) is True

    account = repo.load_account(USER)
    assert account.permanent_balance == 4
    assert account.expiring_grants == []
    assert database["credits"].find_one({"user_id": USER})["spend_ids"] == []


def test_grant_drained_by_another_spend_rejects_stale_plan(repo, database) -> None:
    grant_id = _seed(repo, permanent=0, grant=3)
    stale_plan = repo.load_account(USER).plan_deduction(3, NOW)
    concurrent = repo.load_account(USER).plan_deduction(1, NOW)
    assert repo.apply_deduction(USER, concurrent, NOW) is True

    assert repo.apply_deduction(USER, stale_plan, NOW) is False

    assert _grant_amount(database, grant_id) == 2


def test_permanent_conflict_rolls_back_applied_grant_step(repo, database) -> None:
    grant_id = _seed(repo, permanent=2, grant=3)
    plan = repo.load_account(USER).plan_deduction(5, NOW)
    assert plan is not None and plan.permanent_deduct == 2
    repo.apply_deduction(USER, DeductionPlan(amount=1, permanent_deduct=1), NOW)

    assert repo.apply_deduction(USER, plan, NOW) is False

    assert _grant_amount(database, grant_id) == 3
    assert database["expiring_credits"].find_one({"user_id": USER})["spend_ids"] == []
    assert repo.load_account(USER).permanent_balance == 1


def test_grant_expired_after_planning_is_not_charged(repo, database) -> None:
    grant_id = repo.add_expiring(USER, 3, NOW + timedelta(hours=1), NOW).id
    plan = repo.load_account(USER).plan_deduction(2, NOW)

    assert repo.apply_deduction(USER, plan, NOW + timedelta(hours=2)) is False

    assert _grant_amount(database, grant_id) == 3


def test_timed_out_permanent_step_is_rolled_back_even_if_applied(repo, database) -> None:
    grant_id = _seed(repo, permanent=2, grant=3)
    plan = repo.load_account(USER).plan_deduction(5, NOW)
    repo._credits = TimeoutOnce(repo._credits, applied=True)

    with pytest.raises(CreditStoreUnavailableError):
        repo.apply_deduction(USER, plan, NOW)

    assert _grant_amount(database, grant_id) == 3
    assert repo.load_account(USER).permanent_balance == 2


def test_timed_out_permanent_step_that_never_landed_restores_only_grants(repo, database) -> None:
    grant_id = _seed(repo, permanent=2, grant=3)
    plan = repo.load_account(USER).plan_deduction(5, NOW)
    repo._credits = TimeoutOnce(repo._credits, applied=False)

    with pytest.raises(CreditStoreUnavailableError):
        repo.apply_deduction(USER, plan, NOW)

    assert _grant_amount(database, grant_id) == 3
    assert repo.load_account(USER).permanent_balance == 2


def test_remove_expired_deletes_only_expired_grants(repo) -> None:
    repo.add_expiring(USER, 2, NOW - timedelta(minutes=1), NOW - timedelta(days=1))
    repo.add_expiring(USER, 4, NOW + timedelta(days=1), NOW)

    assert repo.remove_expired(USER, NOW) == 1
    assert [g.amount for g in repo.load_account(USER).expiring_grants] == [4]


def test_purchase_component_is_claimed_once_until_released(database) -> None:
    purchases = PurchaseRepository(database, LedgerSettings())
    stored = purchases.claim(
        PurchaseRecord(
            user_id=USER,
            transaction_id="tx-1",
            product_id="credits_10",
            status=PurchaseStatus.PENDING,
            purchase_date=NOW,
            created_at=NOW,
            updated_at=NOW,
        )
    )
    assert stored.credited_components == []

    assert purchases.claim_component(USER, "tx-1", CreditKind.PERMANENT) is True
    assert purchases.claim_component(USER, "tx-1", CreditKind.PERMANENT) is False
    assert purchases.claim_component("user-002", "tx-1", CreditKind.EXPIRING) is False

    purchases.release_component(USER, "tx-1", CreditKind.PERMANENT)

    assert purchases.claim_component(USER, "tx-1", CreditKind.PERMANENT) is True
    found = purchases.find_by_transaction(USER, "tx-1")
    assert found is not None
    assert found.credited_components == [CreditKind.PERMANENT]
