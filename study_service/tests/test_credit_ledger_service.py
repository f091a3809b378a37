from __future__ import annotations

import random
from dataclasses import dataclass, field
from datetime import timedelta

import pytest

from study_service.app.config import LedgerSettings
from study_service.app.exceptions import (
    ConcurrentSpendError,
    CreditStoreUnavailableError,
    IdentityRequiredError,
)
from study_service.app.models.credit import INSUFFICIENT_CREDITS, CreditKind
from study_service.app.models.identity import Identity
from study_service.app.services.credit_ledger_service import CreditLedgerService
from study_service.tests.fakes import NOW, FakeCreditStore, FakeSnapshotCache


USER = "user-001"


@dataclass
class LedgerFixture:
    service: CreditLedgerService
    remote: FakeCreditStore
    local: FakeCreditStore
    cache: FakeSnapshotCache
    sleeps: list[float] = field(default_factory=list)
    remote_provider_calls: int = 0


def _build_fixture(**settings_overrides) -> LedgerFixture:
    remote = FakeCreditStore()
    local = FakeCreditStore()
    cache = FakeSnapshotCache()
    settings = LedgerSettings(read_retry_delay_seconds=0.01, **settings_overrides)
    fixture = LedgerFixture(service=None, remote=remote, local=local, cache=cache)  # type: ignore[arg-type]

    def remote_provider() -> FakeCreditStore:
        fixture.remote_provider_calls += 1
        return remote

    fixture.service = CreditLedgerService(
        remote_store_provider=remote_provider,
        local_store=local,
        snapshot_cache=cache,
        settings=settings,
        clock=lambda: NOW,
        sleep=fixture.sleeps.append,
    )
    return fixture


def _user() -> Identity:
    return Identity.authenticated(USER)


def test_fresh_anonymous_profile_scenario() -> None:
    fixture = _build_fixture()
    anon = Identity.anonymous()

    balance = fixture.service.get_current_credits(anon)
    assert (balance.permanent, balance.expiring, balance.total) == (0, 0, 0)

    fixture.service.add_credits(anon, 1, CreditKind.PERMANENT)
    assert fixture.service.get_current_credits(anon).total == 1

    assert fixture.service.spend_credits(anon, 1).success is True
    assert fixture.service.get_current_credits(anon).total == 0

    second = fixture.service.spend_credits(anon, 1)
    assert second.success is False
    assert second.error == INSUFFICIENT_CREDITS
    assert fixture.service.get_current_credits(anon).total == 0

    # 익명 요청은 원격 저장소를 만들지도 않는다.
    assert fixture.remote_provider_calls == 0


def test_identity_is_resolved_per_call() -> None:
    fixture = _build_fixture()
    fixture.local.permanent["local"] = 3
    fixture.remote.permanent[USER] = 7

    assert fixture.service.get_current_credits(Identity.anonymous()).total == 3
    assert fixture.service.get_current_credits(_user()).total == 7
    assert fixture.service.get_current_credits(Identity.anonymous()).total == 3


def test_expiring_credits_are_drawn_before_permanent() -> None:
    fixture = _build_fixture()
    fixture.remote.permanent[USER] = 5
    grant_id = fixture.remote.seed_grant(USER, 3, NOW + timedelta(days=3))

    result = fixture.service.spend_credits(_user(), 4)

    assert result.success is True
    assert result.remaining == 4
    assert result.consumed_grant_ids == [grant_id]
    assert fixture.remote.permanent[USER] == 2
    assert fixture.remote.grants_of(USER) == []


def test_soonest_expiring_grant_is_consumed_first() -> None:
    fixture = _build_fixture()
    later = fixture.remote.seed_grant(USER, 5, NOW + timedelta(days=30))
    sooner = fixture.remote.seed_grant(USER, 2, NOW + timedelta(days=1))

    result = fixture.service.spend_credits(_user(), 3)

    assert result.consumed_grant_ids == [sooner, later]
    remaining = fixture.remote.grants_of(USER)
    assert [(g.id, g.amount) for g in remaining] == [(later, 4)]


def test_insufficient_funds_leaves_both_pools_unchanged() -> None:
    fixture = _build_fixture()
    fixture.remote.permanent[USER] = 1
    grant_id = fixture.remote.seed_grant(USER, 1, NOW + timedelta(days=1))

    result = fixture.service.spend_credits(_user(), 5)

    assert result.success is False
    assert result.error == INSUFFICIENT_CREDITS
    assert result.remaining == 2
    assert fixture.remote.permanent[USER] == 1
    assert fixture.remote.grants[grant_id].amount == 1
    assert fixture.remote.apply_calls == 0


def test_expired_grant_never_counts_even_before_sweep() -> None:
    fixture = _build_fixture(sweep_on_read=False)
    fixture.remote.seed_grant(USER, 2, NOW - timedelta(seconds=1))

    assert fixture.service.get_current_credits(_user()).total == 0
    assert fixture.service.spend_credits(_user(), 1).success is False

    removed = fixture.service.sweep_expired_grants(_user())

    assert removed == 1
    assert fixture.remote.grants_of(USER) == []


def test_read_sweeps_expired_grants_opportunistically() -> None:
    fixture = _build_fixture()
    fixture.remote.seed_grant(USER, 2, NOW - timedelta(seconds=1))
    fixture.remote.seed_grant(USER, 4, NOW + timedelta(days=1))

    balance = fixture.service.get_current_credits(_user())

    assert balance.expiring == 4
    assert len(fixture.remote.grants_of(USER)) == 1


def test_failed_sweep_does_not_fail_the_read() -> None:
    fixture = _build_fixture()
    fixture.remote.permanent[USER] = 2
    fixture.remote.fail_sweep = True

    balance = fixture.service.get_current_credits(_user())

    assert balance.total == 2
    assert balance.stale is False


def test_spend_then_add_restores_total() -> None:
    fixture = _build_fixture()
    fixture.remote.permanent[USER] = 4
    fixture.remote.seed_grant(USER, 6, NOW + timedelta(days=2))
    before = fixture.service.get_current_credits(_user()).total

    assert fixture.service.spend_credits(_user(), 7).success is True
    fixture.service.add_credits(_user(), 7, CreditKind.PERMANENT)

    assert fixture.service.get_current_credits(_user()).total == before


def test_balances_never_go_negative_over_random_operations() -> None:
    fixture = _build_fixture()
    rng = random.Random(20240601)
    identity = _user()

    for _ in range(300):
        op = rng.choice(["spend", "spend", "add_permanent", "add_expiring"])
        amount = rng.randint(1, 6)
        if op == "spend":
            before = fixture.service.get_current_credits(identity).total
            result = fixture.service.spend_credits(identity, amount)
            after = fixture.service.get_current_credits(identity).total
            if result.success:
                assert after == before - amount
            else:
                assert after == before
        elif op == "add_permanent":
            fixture.service.add_credits(identity, amount, CreditKind.PERMANENT)
        else:
            expires_at = NOW + timedelta(hours=rng.randint(1, 72))
            fixture.service.add_credits(identity, amount, CreditKind.EXPIRING, expires_at)

        assert fixture.remote.permanent.get(USER, 0) >= 0
        assert all(g.amount >= 0 for g in fixture.remote.grants_of(USER))


def test_spend_retries_after_conflicting_update() -> None:
    fixture = _build_fixture(spend_max_attempts=3)
    fixture.remote.permanent[USER] = 5
    fixture.remote.conflicts = 1

    result = fixture.service.spend_credits(_user(), 2)

    assert result.success is True
    assert fixture.remote.apply_calls == 2
    assert fixture.remote.load_calls == 2
    assert fixture.remote.permanent[USER] == 3


def test_spend_gives_up_after_persistent_conflicts() -> None:
    fixture = _build_fixture(spend_max_attempts=3)
    fixture.remote.permanent[USER] = 5
    fixture.remote.conflicts = 10

    with pytest.raises(ConcurrentSpendError):
        fixture.service.spend_credits(_user(), 2)

    assert fixture.remote.apply_calls == 3
    assert fixture.remote.permanent[USER] == 5


def test_concurrent_spend_from_another_device_cannot_overdraw() -> None:
    fixture = _build_fixture()
    fixture.remote.permanent[USER] = 5

    def other_device_spends() -> None:
        fixture.remote.permanent[USER] -= 4

    fixture.remote.before_apply = other_device_spends

    result = fixture.service.spend_credits(_user(), 4)

    # 계획 시점의 잔액 5 를 믿고 덮어쓰지 않고, 다시 읽어 잔액 부족으로 끝난다.
    assert result.success is False
    assert result.remaining == 1
    assert fixture.remote.permanent[USER] == 1


def test_concurrent_grant_drain_replans_against_fresh_state() -> None:
    fixture = _build_fixture()
    fixture.remote.permanent[USER] = 10
    grant_id = fixture.remote.seed_grant(USER, 3, NOW + timedelta(days=1))

    def other_device_drains_grant() -> None:
        del fixture.remote.grants[grant_id]

    fixture.remote.before_apply = other_device_drains_grant

    result = fixture.service.spend_credits(_user(), 3)

    assert result.success is True
    assert result.consumed_grant_ids == []
    assert fixture.remote.permanent[USER] == 7


def test_degraded_read_serves_cached_snapshot() -> None:
    fixture = _build_fixture(read_retries=2)
    fixture.remote.permanent[USER] = 9
    fresh = fixture.service.get_current_credits(_user())
    assert fresh.stale is False

    fixture.remote.unavailable = True
    fixture.remote.load_calls = 0
    degraded = fixture.service.get_current_credits(_user())

    assert degraded.stale is True
    assert degraded.total == 9
    assert fixture.remote.load_calls == 3
    assert fixture.sleeps == [0.01, 0.01]


def test_degraded_read_without_snapshot_raises() -> None:
    fixture = _build_fixture(read_retries=1)
    fixture.remote.unavailable = True

    with pytest.raises(CreditStoreUnavailableError):
        fixture.service.get_current_credits(_user())


def test_read_recovering_on_last_retry_returns_fresh_balance() -> None:
    fixture = _build_fixture(read_retries=2)
    fixture.remote.permanent[USER] = 4
    fixture.remote.failing_loads = 2

    balance = fixture.service.get_current_credits(_user())

    assert balance.stale is False
    assert balance.total == 4
    assert fixture.remote.load_calls == 3
    assert fixture.sleeps == [0.01, 0.01]


def test_spend_fails_closed_without_retry_when_store_is_down() -> None:
    fixture = _build_fixture(read_retries=2)
    fixture.remote.permanent[USER] = 5
    fixture.service.get_current_credits(_user())
    fixture.remote.unavailable = True
    fixture.remote.load_calls = 0

    with pytest.raises(CreditStoreUnavailableError):
        fixture.service.spend_credits(_user(), 1)

    assert fixture.remote.load_calls == 1
    assert fixture.sleeps == []


def test_add_credits_fails_closed_when_store_is_down() -> None:
    fixture = _build_fixture()
    fixture.remote.unavailable = True

    with pytest.raises(CreditStoreUnavailableError):
        fixture.service.add_credits(_user(), 5, CreditKind.PERMANENT)


def test_expiring_grants_stay_independent() -> None:
    fixture = _build_fixture()
    expires_at = NOW + timedelta(days=7)

    fixture.service.add_credits(_user(), 5, CreditKind.EXPIRING, expires_at)
    fixture.service.add_credits(_user(), 5, CreditKind.EXPIRING, expires_at)

    grants = fixture.remote.grants_of(USER)
    assert len(grants) == 2
    assert fixture.service.get_current_credits(_user()).expiring == 10


@pytest.mark.parametrize(
    ("kind", "amount", "expires_at"),
    [
        (CreditKind.PERMANENT, 0, None),
        (CreditKind.PERMANENT, 5, NOW + timedelta(days=1)),
        (CreditKind.EXPIRING, 5, None),
        (CreditKind.EXPIRING, 5, NOW),
        (CreditKind.EXPIRING, 5, NOW - timedelta(days=1)),
    ],
)
def test_add_credits_rejects_invalid_arguments(kind, amount, expires_at) -> None:
    fixture = _build_fixture()

    with pytest.raises(ValueError):
        fixture.service.add_credits(_user(), amount, kind, expires_at)


def test_expiring_credits_need_a_signed_in_account() -> None:
    fixture = _build_fixture()

    with pytest.raises(IdentityRequiredError):
        fixture.service.add_credits(
            Identity.anonymous(), 5, CreditKind.EXPIRING, NOW + timedelta(days=1)
        )


def test_spend_rejects_non_positive_amount() -> None:
    fixture = _build_fixture()

    with pytest.raises(ValueError):
        fixture.service.spend_credits(_user(), 0)
