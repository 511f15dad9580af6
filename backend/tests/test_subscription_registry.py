"""Tests for SubscriptionRegistry validation, locking and the claim protocol."""

import threading
import uuid
from datetime import timedelta
from unittest.mock import patch

import pytest

from covenant.core.errors import (
    DuplicateSubscriptionError,
    InvalidFrequencyError,
    InvalidSubscriptionError,
    SubscriptionClaimedError,
    SubscriptionConflictError,
)
from covenant.core.locks import KeyedLocks
from covenant.models.subscription import Frequency, SubscriptionStatus
from covenant.schemas.subscription import SubscriptionCreate, SubscriptionUpdate
from covenant.services.frequency import next_due
from covenant.services.subscription_registry import SubscriptionRegistry
from tests.conftest import T0


def create_data(**overrides) -> SubscriptionCreate:
    data = {
        "user_id": "user-1",
        "vendor_id": "roaster-1",
        "item_id": "house-blend",
        "frequency": "weekly",
    }
    data.update(overrides)
    return SubscriptionCreate(**data)


class TestInsert:
    def test_weekly_due_seven_days_after_insert(self, registry):
        sub = registry.insert(create_data())
        assert sub.status == SubscriptionStatus.ACTIVE
        assert sub.created_at == T0
        assert sub.last_fulfilled_at is None
        assert sub.next_due_at == T0 + timedelta(days=7)

    def test_uses_explicit_now(self, registry):
        when = T0 + timedelta(days=3)
        sub = registry.insert(create_data(frequency="biweekly"), now=when)
        assert sub.next_due_at == when + timedelta(days=14)

    def test_identifiers_stripped(self, registry):
        sub = registry.insert(create_data(user_id="  user-9 "))
        assert sub.user_id == "user-9"

    @pytest.mark.parametrize("field", ["user_id", "vendor_id", "item_id"])
    @pytest.mark.parametrize("value", ["", "   "])
    def test_empty_identifier_rejected(self, registry, field, value):
        with pytest.raises(InvalidSubscriptionError, match=field):
            registry.insert(create_data(**{field: value}))
        assert registry.count() == 0

    def test_unknown_frequency_rejected(self, registry):
        with pytest.raises(InvalidFrequencyError):
            registry.insert(create_data(frequency="daily"))

    def test_frequency_normalized(self, registry):
        sub = registry.insert(create_data(frequency="MONTHLY"))
        assert sub.frequency == Frequency.MONTHLY.value

    def test_supplied_id_kept_and_unique(self, registry):
        sub_id = uuid.uuid4()
        sub = registry.insert(create_data(id=sub_id))
        assert sub.id == sub_id
        with pytest.raises(DuplicateSubscriptionError):
            registry.insert(create_data(id=sub_id))


class TestLookups:
    def test_get_by_id(self, registry):
        sub = registry.insert(create_data())
        assert registry.get_by_id(sub.id) == sub

    def test_missing_is_none_not_error(self, registry):
        assert registry.get_by_id(uuid.uuid4()) is None

    def test_user_and_vendor_filters(self, registry):
        registry.insert(create_data(user_id="u1", vendor_id="v1"))
        registry.insert(create_data(user_id="u1", vendor_id="v2"), now=T0 + timedelta(seconds=1))
        registry.insert(create_data(user_id="u2", vendor_id="v1"), now=T0 + timedelta(seconds=2))

        assert [s.vendor_id for s in registry.get_by_user("u1")] == ["v1", "v2"]
        assert [s.user_id for s in registry.get_by_vendor("v1")] == ["u1", "u2"]
        assert registry.count(vendor_id="v1") == 2

    def test_get_all_paging(self, registry):
        for i in range(15):
            registry.insert(create_data(user_id=f"u{i}"), now=T0 + timedelta(seconds=i))
        assert len(registry.get_all(0, 10)) == 10
        assert [s.user_id for s in registry.get_all(10, 10)] == [f"u{i}" for i in range(10, 15)]
        assert registry.get_all(100, 10) == []


class TestUpdate:
    def test_frequency_change_recomputes_due(self, registry):
        sub = registry.insert(create_data())
        updated = registry.update(sub.id, SubscriptionUpdate(frequency="monthly"))
        assert updated is not None
        assert updated.frequency == "monthly"
        assert updated.next_due_at == next_due(Frequency.MONTHLY, T0)

    def test_recomputes_from_last_fulfillment(self, registry):
        sub = registry.insert(create_data())
        fulfilled = T0 + timedelta(days=8)
        registry.claim(sub.id, fulfilled)
        registry.release(sub.id, fulfilled)
        updated = registry.update(sub.id, SubscriptionUpdate(frequency="biweekly"))
        assert updated.next_due_at == fulfilled + timedelta(days=14)

    def test_vendor_and_item_change(self, registry):
        sub = registry.insert(create_data())
        updated = registry.update(sub.id, SubscriptionUpdate(vendor_id="roaster-2", item_id="decaf"))
        assert (updated.vendor_id, updated.item_id) == ("roaster-2", "decaf")
        assert updated.user_id == "user-1"
        assert updated.next_due_at == T0 + timedelta(days=7)

    def test_pause_and_resume(self, registry):
        sub = registry.insert(create_data())
        paused = registry.update(sub.id, SubscriptionUpdate(status=SubscriptionStatus.PAUSED))
        assert paused.status == SubscriptionStatus.PAUSED
        resumed = registry.update(sub.id, SubscriptionUpdate(status=SubscriptionStatus.ACTIVE))
        assert resumed.status == SubscriptionStatus.ACTIVE

    def test_status_deleted_rejected(self, registry):
        sub = registry.insert(create_data())
        with pytest.raises(InvalidSubscriptionError, match="delete"):
            registry.update(sub.id, SubscriptionUpdate(status=SubscriptionStatus.DELETED))

    def test_invalid_values_rejected(self, registry):
        sub = registry.insert(create_data())
        with pytest.raises(InvalidFrequencyError):
            registry.update(sub.id, SubscriptionUpdate(frequency="yearly-ish"))
        with pytest.raises(InvalidSubscriptionError):
            registry.update(sub.id, SubscriptionUpdate(item_id=" "))
        assert registry.get_by_id(sub.id).frequency == "weekly"

    def test_missing_or_deleted_returns_none(self, registry):
        assert registry.update(uuid.uuid4(), SubscriptionUpdate(item_id="x")) is None
        sub = registry.insert(create_data())
        registry.delete(sub.id)
        assert registry.update(sub.id, SubscriptionUpdate(item_id="x")) is None

    def test_gives_up_when_record_keeps_changing(self, memory_store, clock):
        registry = SubscriptionRegistry(memory_store, locks=KeyedLocks(), clock=clock)
        sub = registry.insert(create_data())
        with (
            patch.object(memory_store, "update", return_value=False) as mock_update,
            pytest.raises(SubscriptionConflictError),
        ):
            registry.update(sub.id, SubscriptionUpdate(item_id="decaf"))
        assert mock_update.call_count > 1
        assert registry.get_by_id(sub.id).item_id == "house-blend"


class TestDelete:
    def test_delete_hides_record(self, registry):
        sub = registry.insert(create_data())
        assert registry.delete(sub.id) is True
        assert registry.get_by_id(sub.id) is None
        assert registry.get_all() == []
        assert registry.select_due(T0 + timedelta(days=30), 10) == []

    def test_delete_missing(self, registry):
        assert registry.delete(uuid.uuid4()) is False

    def test_delete_rejected_while_claimed(self, registry, clock):
        sub = registry.insert(create_data())
        fire_at = T0 + timedelta(days=8)
        clock.now = fire_at
        _, claimed = registry.claim(sub.id, fire_at)
        assert claimed

        with pytest.raises(SubscriptionClaimedError):
            registry.delete(sub.id)

        registry.release(sub.id, fire_at)
        assert registry.delete(sub.id) is True

    def test_delete_allowed_after_claim_goes_stale(self, registry, clock):
        sub = registry.insert(create_data())
        fire_at = T0 + timedelta(days=8)
        registry.claim(sub.id, fire_at)
        clock.now = fire_at + registry.claim_ttl + timedelta(seconds=1)
        assert registry.delete(sub.id) is True


class TestClaimRelease:
    def test_claim_returns_pre_claim_snapshot(self, registry):
        sub = registry.insert(create_data())
        snapshot, claimed = registry.claim(sub.id, T0 + timedelta(days=7))
        assert claimed is True
        assert snapshot.id == sub.id
        assert snapshot.claimed_at is None
        assert registry.get_by_id(sub.id).claimed_at == T0 + timedelta(days=7)

    def test_second_claim_fails_without_error(self, registry):
        sub = registry.insert(create_data())
        now = T0 + timedelta(days=8)
        assert registry.claim(sub.id, now)[1] is True
        assert registry.claim(sub.id, now) == (None, False)

    def test_not_due_not_claimable(self, registry):
        sub = registry.insert(create_data())
        assert registry.claim(sub.id, T0 + timedelta(days=6)) == (None, False)

    def test_paused_missing_deleted_not_claimable(self, registry):
        now = T0 + timedelta(days=8)
        paused = registry.insert(create_data())
        registry.update(paused.id, SubscriptionUpdate(status=SubscriptionStatus.PAUSED))
        deleted = registry.insert(create_data())
        registry.delete(deleted.id)

        assert registry.claim(paused.id, now) == (None, False)
        assert registry.claim(deleted.id, now) == (None, False)
        assert registry.claim(uuid.uuid4(), now) == (None, False)

    def test_release_advances_one_interval(self, registry):
        sub = registry.insert(create_data())
        t = T0 + timedelta(days=8)
        registry.claim(sub.id, t)
        released = registry.release(sub.id, t)
        assert released.last_fulfilled_at == t
        assert released.next_due_at == next_due(Frequency.WEEKLY, t)
        assert released.claimed_at is None

    def test_release_keeps_concurrent_frequency_change(self, registry):
        sub = registry.insert(create_data())
        t = T0 + timedelta(days=8)
        registry.claim(sub.id, t)
        registry.update(sub.id, SubscriptionUpdate(frequency="monthly"))
        released = registry.release(sub.id, t)
        assert released.frequency == "monthly"
        assert released.next_due_at == next_due(Frequency.MONTHLY, t)

    def test_release_after_abort_records_nothing(self, registry):
        sub = registry.insert(create_data())
        t = T0 + timedelta(days=8)
        registry.claim(sub.id, t)
        registry.abort(sub.id)
        assert registry.release(sub.id, t) is None
        current = registry.get_by_id(sub.id)
        assert current.last_fulfilled_at is None
        assert current.next_due_at == T0 + timedelta(days=7)

    def test_abort_restores_unclaimed_state(self, registry):
        sub = registry.insert(create_data())
        t = T0 + timedelta(days=8)
        registry.claim(sub.id, t)
        registry.abort(sub.id)
        current = registry.get_by_id(sub.id)
        assert current.claimed_at is None
        assert current.last_fulfilled_at is None
        assert current.next_due_at == T0 + timedelta(days=7)
        assert registry.claim(sub.id, t)[1] is True

    def test_stale_claim_taken_over(self, registry):
        sub = registry.insert(create_data())
        t = T0 + timedelta(days=8)
        registry.claim(sub.id, t)
        later = t + registry.claim_ttl + timedelta(seconds=1)
        snapshot, claimed = registry.claim(sub.id, later)
        assert claimed is True
        assert snapshot.claimed_at == t

    def test_claim_gives_up_when_lock_busy(self, memory_store, clock):
        locks = KeyedLocks()
        registry = SubscriptionRegistry(memory_store, locks=locks, clock=clock, claim_wait_seconds=0.01)
        sub = registry.insert(create_data())
        now = T0 + timedelta(days=8)

        holding, done = threading.Event(), threading.Event()

        def hold():
            with locks.hold(sub.id):
                holding.set()
                done.wait(5)

        thread = threading.Thread(target=hold)
        thread.start()
        try:
            assert holding.wait(5)
            assert registry.claim(sub.id, now) == (None, False)
        finally:
            done.set()
            thread.join()
        assert registry.claim(sub.id, now)[1] is True


class TestConcurrentClaims:
    def test_exactly_one_of_many_claims_succeeds(self, memory_registry):
        sub = memory_registry.insert(create_data())
        now = T0 + timedelta(days=8)
        workers = 8
        barrier = threading.Barrier(workers)
        results: list[bool] = []
        results_lock = threading.Lock()

        def attempt():
            barrier.wait(5)
            _, claimed = memory_registry.claim(sub.id, now)
            with results_lock:
                results.append(claimed)

        threads = [threading.Thread(target=attempt) for _ in range(workers)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(results) == workers
        assert results.count(True) == 1

    def test_concurrent_updates_on_different_ids_do_not_block(self, memory_registry):
        subs = [memory_registry.insert(create_data(user_id=f"u{i}")) for i in range(4)]
        errors: list[Exception] = []

        def touch(sub_id):
            try:
                for n in range(20):
                    memory_registry.update(sub_id, SubscriptionUpdate(item_id=f"item-{n}"))
            except Exception as exc:  # noqa: BLE001
                errors.append(exc)

        threads = [threading.Thread(target=touch, args=(s.id,)) for s in subs]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        assert all(memory_registry.get_by_id(s.id).item_id == "item-19" for s in subs)
