from __future__ import annotations

from datetime import timedelta

import pytest

from study_service.app.config import LedgerSettings
from study_service.app.exceptions import IdentityRequiredError
from study_service.app.models.credit import CreditBalance, CreditKind, DeductionPlan, GrantDeduction
from study_service.app.models.identity import Identity
from study_service.app.models.study_record import StudyRecord, StudyRecordKind
from study_service.app.repositories.local_credit_repository import LocalCreditRepository
from study_service.app.repositories.local_db import LocalDatabase
from study_service.app.repositories.local_study_record_repository import (
    LocalStudyRecordRepository,
)
from study_service.app.services.credit_ledger_service import CreditLedgerService
from study_service.tests.fakes import NOW


PROFILE = "local"


@pytest.fixture
def local_db(tmp_path) -> LocalDatabase:
    db = LocalDatabase(str(tmp_path / "nested" / "local.db"))
    db.init_schema()
    yield db
    db.dispose()


def _record(user_id: str, kind: StudyRecordKind, title: str) -> StudyRecord:
    return StudyRecord(
        user_id=user_id,
        kind=kind,
        title=title,
        content=f"{title} content",
        created_at=NOW,
        updated_at=NOW,
    )


def test_local_counter_add_and_conditional_deduct(local_db: LocalDatabase) -> None:
    repo = LocalCreditRepository(local_db)

    assert repo.load_account(PROFILE).permanent_balance == 0
    assert repo.add_permanent(PROFILE, 3) == 3
    assert repo.add_permanent(PROFILE, 2) == 5

    assert repo.apply_deduction(PROFILE, DeductionPlan(amount=4, permanent_deduct=4), NOW) is True
    assert repo.load_account(PROFILE).permanent_balance == 1

    # 남은 잔액보다 큰 차감은 아무것도 바꾸지 않는다.
    assert repo.apply_deduction(PROFILE, DeductionPlan(amount=2, permanent_deduct=2), NOW) is False
    assert repo.load_account(PROFILE).permanent_balance == 1


def test_local_store_has_no_expiring_pool(local_db: LocalDatabase) -> None:
    repo = LocalCreditRepository(local_db)
    repo.add_permanent(PROFILE, 5)
    plan = DeductionPlan(
        amount=1,
        grant_steps=[GrantDeduction(grant_id="g-1", expected_amount=1, deduct=1)],
    )

    assert repo.apply_deduction(PROFILE, plan, NOW) is False
    assert repo.remove_expired(PROFILE, NOW) == 0
    with pytest.raises(IdentityRequiredError):
        repo.add_expiring(PROFILE, 1, NOW + timedelta(days=1), NOW)


def test_profiles_are_isolated(local_db: LocalDatabase) -> None:
    repo = LocalCreditRepository(local_db)
    repo.add_permanent("profile-a", 4)

    assert repo.load_account("profile-b").permanent_balance == 0
    assert repo.apply_deduction("profile-b", DeductionPlan(amount=1, permanent_deduct=1), NOW) is False


def test_snapshot_round_trip_is_marked_stale(local_db: LocalDatabase) -> None:
    repo = LocalCreditRepository(local_db)
    assert repo.load_snapshot("user-001") is None

    repo.save_snapshot(
        CreditBalance(user_id="user-001", permanent=2, expiring=3, total=5, as_of=NOW)
    )
    repo.save_snapshot(
        CreditBalance(user_id="user-001", permanent=1, expiring=3, total=4, as_of=NOW)
    )

    snapshot = repo.load_snapshot("user-001")
    assert snapshot is not None
    assert snapshot.total == 4
    assert snapshot.stale is True
    assert snapshot.as_of == NOW


def test_anonymous_scenario_against_sqlite(local_db: LocalDatabase) -> None:
    repo = LocalCreditRepository(local_db)

    def no_remote():
        raise AssertionError("anonymous requests must not touch the remote store")

    ledger = CreditLedgerService(
        remote_store_provider=no_remote,
        local_store=repo,
        snapshot_cache=repo,
        settings=LedgerSettings(),
        clock=lambda: NOW,
    )
    anon = Identity.anonymous(PROFILE)

    assert ledger.get_current_credits(anon).total == 0
    ledger.add_credits(anon, 1, CreditKind.PERMANENT)
    assert ledger.get_current_credits(anon).total == 1
    assert ledger.spend_credits(anon, 1).success is True
    assert ledger.get_current_credits(anon).total == 0
    assert ledger.spend_credits(anon, 1).success is False
    assert ledger.get_current_credits(anon).total == 0


def test_study_records_crud(local_db: LocalDatabase) -> None:
    repo = LocalStudyRecordRepository(local_db)
    first = repo.add(_record(PROFILE, StudyRecordKind.NOTE, "First"))
    second = repo.add(_record(PROFILE, StudyRecordKind.NOTE, "Second"))
    repo.add(_record(PROFILE, StudyRecordKind.QUIZ, "Quiz"))

    items, total = repo.list_by_user(PROFILE, StudyRecordKind.NOTE, page=1, page_size=20)
    assert total == 2
    # 같은 시각이면 나중에 넣은 것이 먼저 나온다.
    assert [r.id for r in items] == [second.id, first.id]

    later = NOW + timedelta(minutes=1)
    updated = repo.update(
        PROFILE, StudyRecordKind.NOTE, first.id, {"title": "Renamed", "user_id": "x"}, later
    )
    assert updated is not None
    assert updated.title == "Renamed"
    assert updated.user_id == PROFILE
    assert updated.updated_at == later

    assert repo.delete(PROFILE, StudyRecordKind.NOTE, first.id) is True
    assert repo.get(PROFILE, StudyRecordKind.NOTE, first.id) is None
    assert repo.delete(PROFILE, StudyRecordKind.NOTE, first.id) is False


def test_study_records_are_scoped_by_owner_and_kind(local_db: LocalDatabase) -> None:
    repo = LocalStudyRecordRepository(local_db)
    saved = repo.add(_record(PROFILE, StudyRecordKind.HISTORY, "Scan"))

    assert repo.get("someone-else", StudyRecordKind.HISTORY, saved.id) is None
    assert repo.get(PROFILE, StudyRecordKind.NOTE, saved.id) is None
    assert repo.get(PROFILE, StudyRecordKind.HISTORY, "not-a-number") is None
    assert repo.update("someone-else", StudyRecordKind.HISTORY, saved.id, {"answer": "x"}, NOW) is None
