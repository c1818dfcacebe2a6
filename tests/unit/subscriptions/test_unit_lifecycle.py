# tests/unit/subscriptions/test_unit_lifecycle.py — v1
"""Tests for subscriptions/lifecycle.py — status, visibility and the sweep."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from fansync.core.models import ArchivedSubscription, SubscriptionRecord, SubscriptionState
from fansync.store.base_document_store import DocumentStoreError
from fansync.store.memory_store import InMemoryDocumentStore
from fansync.subscriptions.lifecycle import (
    SubscriptionLifecycleManager,
    active_creator_ids,
    dedupe_archived,
    subscription_state,
    visible_subscriptions,
)

SWEEP_DAY = datetime(2024, 6, 1, tzinfo=timezone.utc)
LIVE = "active_subscriptions"
ARCHIVE = "cancelled_subscriptions"


class FailingArchiveStore(InMemoryDocumentStore):
    """Archive writes fail after ``allowed`` successful copies."""

    def __init__(self, seed, allowed: int = 0) -> None:
        super().__init__(seed)
        self.allowed = allowed

    async def create(self, collection, doc_id, fields):
        if collection == ARCHIVE:
            if self.allowed <= 0:
                raise DocumentStoreError("archive unavailable")
            self.allowed -= 1
        return await super().create(collection, doc_id, fields)


class FailingListStore(InMemoryDocumentStore):
    async def list(self, collection, filters=None):
        raise DocumentStoreError("network down")


class CountingListStore(InMemoryDocumentStore):
    def __init__(self, seed=None) -> None:
        super().__init__(seed)
        self.list_calls: list[str] = []

    async def list(self, collection, filters=None):
        self.list_calls.append(collection)
        await asyncio.sleep(0)
        return await super().list(collection, filters)


def _records(docs) -> list[SubscriptionRecord]:
    return [SubscriptionRecord.model_validate(d) for d in docs]


@pytest.fixture
def manager_for(settings):
    def make(store, **kwargs):
        return SubscriptionLifecycleManager(
            store, settings, clock=lambda: SWEEP_DAY, **kwargs
        )

    return make


class TestPureHelpers:
    def test_active_wins_over_pending(self, subscription_doc):
        records = _records([
            subscription_doc("a", status="cancelled", ends_at="2024-07-01"),
            subscription_doc("b", stripe_id="sub_2"),
        ])
        assert subscription_state(records, "alice", SWEEP_DAY) is SubscriptionState.ACTIVE

    def test_pending_cancellation(self, subscription_doc):
        records = _records([subscription_doc("a", status="cancelled", ends_at="2024-07-01")])
        assert (
            subscription_state(records, "alice", SWEEP_DAY)
            is SubscriptionState.PENDING_CANCELLATION
        )

    def test_none_for_other_creator_or_lapsed(self, subscription_doc):
        records = _records([
            subscription_doc("a", creator="bob"),
            subscription_doc("b", status="cancelled", ends_at="2024-01-01"),
        ])
        assert subscription_state(records, "alice", SWEEP_DAY) is SubscriptionState.NONE

    def test_visible_hides_superseded_active_row(self, subscription_doc):
        records = _records([
            subscription_doc("a"),
            subscription_doc("b", status="cancelled", ends_at="2024-07-01"),
            subscription_doc("c", creator="bob", stripe_id="sub_2"),
        ])
        assert [r.id for r in visible_subscriptions(records)] == ["b", "c"]

    def test_active_creator_ids_distinct(self, subscription_doc):
        records = _records([
            subscription_doc("a"),
            subscription_doc("b", stripe_id="sub_2"),
            subscription_doc("c", creator="bob", stripe_id="sub_3", ends_at="2024-01-01"),
        ])
        assert active_creator_ids(records, SWEEP_DAY) == ["alice"]

    def test_dedupe_archived_keeps_earliest(self, subscription_doc):
        record = _records([subscription_doc("a")])[0]
        first = record.to_archive(SWEEP_DAY)
        retry = record.to_archive(SWEEP_DAY + timedelta(hours=1))
        kept = dedupe_archived([retry, first])
        assert kept == [first]


class TestReads:
    @pytest.mark.asyncio
    async def test_list_all_scoped_to_identity(self, manager_for, subscription_doc):
        store = InMemoryDocumentStore(seed={LIVE: [
            subscription_doc("a"), subscription_doc("b", user_id="u2"),
        ]})
        records = await manager_for(store).list_all("u1")
        assert [r.id for r in records] == ["a"]

    @pytest.mark.asyncio
    async def test_malformed_rows_skipped(self, manager_for, subscription_doc):
        store = InMemoryDocumentStore(seed={LIVE: [
            subscription_doc("a"), {"$id": "bad", "userId": "u1", "status": "weird"},
        ]})
        assert [r.id for r in await manager_for(store).list_all("u1")] == ["a"]

    @pytest.mark.asyncio
    async def test_listing_error_is_empty(self, manager_for):
        assert await manager_for(FailingListStore()).list_all("u1") == []

    @pytest.mark.asyncio
    async def test_status_queries(self, manager_for, subscription_doc):
        store = InMemoryDocumentStore(seed={LIVE: [
            subscription_doc("a"),
            subscription_doc("b", creator="bob", stripe_id="sub_2", status="cancelled",
                             ends_at="2024-07-01"),
        ]})
        manager = manager_for(store)
        assert await manager.is_subscribed("u1", "alice")
        assert not await manager.is_subscribed("u1", "bob")
        assert (
            await manager.get_subscription_status("u1", "bob")
            is SubscriptionState.PENDING_CANCELLATION
        )
        assert [r.id for r in await manager.list_active("u1")] == ["a"]
        assert len(await manager.list_visible("u1")) == 2

    @pytest.mark.asyncio
    async def test_subscriber_count_cached(self, manager_for):
        store = InMemoryDocumentStore(seed={"creators": [{
            "creators_public_name": "alice",
            "number_of_monthly_subscribers": 3,
            "number_of_yearly_subscriptions": 2,
        }]})
        manager = manager_for(store)
        assert await manager.subscriber_count("alice") == 5
        await store.update("creators", store.snapshot("creators")[0]["$id"],
                           {"number_of_monthly_subscribers": 10})
        assert await manager.subscriber_count("alice") == 5

    @pytest.mark.asyncio
    async def test_creator_profile_cached(self, manager_for):
        store = InMemoryDocumentStore(seed={"creators": [
            {"$id": "cr1", "creators_public_name": "alice", "bio": "hi"},
        ]})
        manager = manager_for(store)
        assert (await manager.creator_profile("alice"))["bio"] == "hi"
        await store.update("creators", "cr1", {"bio": "changed"})
        assert (await manager.creator_profile("alice"))["bio"] == "hi"
        assert await manager.creator_profile("nobody") is None

    @pytest.mark.asyncio
    async def test_subscriber_count_unknown_creator(self, manager_for, document_store):
        assert await manager_for(document_store).subscriber_count("nobody") == 0

    @pytest.mark.asyncio
    async def test_concurrent_profile_lookups_query_once(self, manager_for):
        store = CountingListStore(seed={"creators": [
            {"$id": "cr1", "creators_public_name": "alice"},
        ]})
        manager = manager_for(store)
        profiles = await asyncio.gather(
            *(manager.creator_profile("alice") for _ in range(3))
        )
        assert [p["$id"] for p in profiles] == ["cr1"] * 3
        assert store.list_calls == ["creators"]

    @pytest.mark.asyncio
    async def test_profile_lookup_error_is_none(self, manager_for):
        manager = manager_for(FailingListStore())
        assert await manager.creator_profile("alice") is None
        assert await manager.subscriber_count("alice") == 0


class TestSweep:
    @pytest.mark.asyncio
    async def test_expired_row_and_sibling_move_to_archive(self, manager_for, subscription_doc):
        store = InMemoryDocumentStore(seed={LIVE: [
            subscription_doc("active_row", ends_at="2024-01-01"),
            subscription_doc("cancel_row", status="cancelled"),
        ]})
        deleted = await manager_for(store).sweep_expired("u1")
        assert deleted == 2
        assert store.snapshot(LIVE) == []
        archived = store.snapshot(ARCHIVE)
        assert sorted(d["status"] for d in archived) == ["active", "cancelled"]
        assert {d["stripeSubscriptionId"] for d in archived} == {"sub_1"}
        assert all(d["cancelledAt"].startswith("2024-06-01") for d in archived)

    @pytest.mark.asyncio
    async def test_unrelated_rows_untouched(self, manager_for, subscription_doc):
        store = InMemoryDocumentStore(seed={LIVE: [
            subscription_doc("old", ends_at="2024-01-01"),
            subscription_doc("current", creator="bob", stripe_id="sub_2", ends_at="2024-12-01"),
            subscription_doc("other_user", user_id="u2", ends_at="2024-01-01", stripe_id="sub_9"),
        ]})
        assert await manager_for(store).sweep_expired("u1") == 1
        assert {d["$id"] for d in store.snapshot(LIVE)} == {"current", "other_user"}

    @pytest.mark.asyncio
    async def test_nothing_expired(self, manager_for, subscription_doc):
        store = InMemoryDocumentStore(seed={LIVE: [subscription_doc("a", ends_at="2024-12-01")]})
        assert await manager_for(store).sweep_expired("u1") == 0
        assert store.snapshot(ARCHIVE) == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("allowed", [0, 1])
    async def test_archive_failure_leaves_live_store_unchanged(
        self, manager_for, subscription_doc, allowed
    ):
        seed = {LIVE: [
            subscription_doc("active_row", ends_at="2024-01-01"),
            subscription_doc("cancel_row", status="cancelled"),
        ]}
        store = FailingArchiveStore(seed, allowed=allowed)
        before = store.snapshot(LIVE)
        assert await manager_for(store).sweep_expired("u1") == 0
        assert store.snapshot(LIVE) == before

    @pytest.mark.asyncio
    async def test_listing_failure_returns_zero(self, manager_for):
        assert await manager_for(FailingListStore()).sweep_expired("u1") == 0

    @pytest.mark.asyncio
    async def test_rerun_after_crash_dedupes_on_read(self, manager_for, subscription_doc):
        store = InMemoryDocumentStore(seed={LIVE: [subscription_doc("a", ends_at="2024-01-01")]})
        manager = manager_for(store)
        # Copy landed, delete never happened.
        record = (await manager.list_all("u1"))[0]
        await store.create(ARCHIVE, None, record.to_archive(SWEEP_DAY).to_document())
        await manager.sweep_expired("u1", now=SWEEP_DAY + timedelta(minutes=5))
        assert len(store.snapshot(ARCHIVE)) == 2
        archived = await manager.list_archived("u1")
        assert len(archived) == 1
        assert isinstance(archived[0], ArchivedSubscription)
        assert archived[0].cancelled_at == SWEEP_DAY
