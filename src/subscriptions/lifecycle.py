# src/subscriptions/lifecycle.py — v1
"""Subscription lifecycle: listing, effective status and archival sweep.

One billing subscription can be represented by several live rows (e.g. the
original active row plus a cancellation row written by the billing webhook).
Such siblings share ``stripeSubscriptionId`` and always move together.

Sweep ordering is copy-then-delete: every selected row is copied into the
archive collection first, and originals are deleted only once all copies
succeeded. A crash in between can duplicate archive rows but never lose one;
``list_archived`` collapses such duplicates on read.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, Iterable

from pydantic import ValidationError

from fansync.cache.data_cache import DataCache
from fansync.config.settings import Settings
from fansync.core.models import (
    ArchivedSubscription,
    SubscriptionRecord,
    SubscriptionState,
    SubscriptionStatus,
    utc_now,
)
from fansync.store.base_document_store import BaseDocumentStore, DocumentStoreError

logger = logging.getLogger(__name__)


def subscription_state(
    records: Iterable[SubscriptionRecord], creator: str, now: datetime
) -> SubscriptionState:
    """Effective access state towards ``creator`` (id or public name).

    An effectively active row wins over a pending cancellation.
    """
    pending = False
    for record in records:
        if not record.matches_creator(creator):
            continue
        if record.is_effectively_active(now):
            return SubscriptionState.ACTIVE
        if record.is_pending_cancellation(now):
            pending = True
    return SubscriptionState.PENDING_CANCELLATION if pending else SubscriptionState.NONE


def visible_subscriptions(records: list[SubscriptionRecord]) -> list[SubscriptionRecord]:
    """Hide active rows superseded by a cancellation row of the same billing id."""
    cancelled_ids = {
        r.stripe_subscription_id for r in records if r.status is SubscriptionStatus.CANCELLED
    }
    return [
        r
        for r in records
        if r.status is SubscriptionStatus.CANCELLED
        or r.stripe_subscription_id not in cancelled_ids
    ]


def active_creator_ids(records: Iterable[SubscriptionRecord], now: datetime) -> list[str]:
    """Distinct creator ids with an effectively active subscription."""
    ids = [r.creator_id for r in records if r.creator_id and r.is_effectively_active(now)]
    return list(dict.fromkeys(ids))


def dedupe_archived(records: list[ArchivedSubscription]) -> list[ArchivedSubscription]:
    """Keep the earliest archive copy per (billing id, status)."""
    kept: dict[tuple[str, SubscriptionStatus], ArchivedSubscription] = {}
    for record in sorted(records, key=lambda r: r.cancelled_at):
        kept.setdefault((record.stripe_subscription_id, record.status), record)
    return list(kept.values())


class SubscriptionLifecycleManager:
    """Read and archive an identity's subscription records.

    Args:
        store: Document store holding live and archived subscriptions.
        settings: Collection names and cache TTLs.
        data_cache: Shared TTL cache for subscriber counts.
        clock: Source of "now" (injectable for tests).
    """

    def __init__(
        self,
        store: BaseDocumentStore,
        settings: Settings | None = None,
        data_cache: DataCache | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._settings = settings or Settings()
        self._cache = data_cache or DataCache(self._settings.data_cache_default_ttl_s)
        self._clock = clock

    @property
    def live_collection(self) -> str:
        return self._settings.active_subscriptions_collection

    @property
    def archive_collection(self) -> str:
        return self._settings.cancelled_subscriptions_collection

    # --- Reads ---

    async def _fetch(self, identity: str) -> list[SubscriptionRecord]:
        docs = await self._store.list(self.live_collection, {"userId": identity})
        return _parse_records(docs)

    async def list_all(self, identity: str) -> list[SubscriptionRecord]:
        """Every live row of ``identity``; empty on remote failure."""
        try:
            return await self._fetch(identity)
        except DocumentStoreError as e:
            logger.error("Error listing subscriptions for %s: %s", identity, e)
            return []

    async def list_active(self, identity: str) -> list[SubscriptionRecord]:
        now = self._clock()
        return [r for r in await self.list_all(identity) if r.is_effectively_active(now)]

    async def list_visible(self, identity: str) -> list[SubscriptionRecord]:
        return visible_subscriptions(await self.list_all(identity))

    async def is_subscribed(self, identity: str, creator: str) -> bool:
        return await self.get_subscription_status(identity, creator) is SubscriptionState.ACTIVE

    async def get_subscription_status(self, identity: str, creator: str) -> SubscriptionState:
        return subscription_state(await self.list_all(identity), creator, self._clock())

    async def list_archived(self, identity: str) -> list[ArchivedSubscription]:
        """Archived rows of ``identity`` with sweep duplicates collapsed."""
        try:
            docs = await self._store.list(self.archive_collection, {"userId": identity})
        except DocumentStoreError as e:
            logger.error("Error listing archived subscriptions for %s: %s", identity, e)
            return []
        archived: list[ArchivedSubscription] = []
        for doc in docs:
            try:
                archived.append(ArchivedSubscription.model_validate(doc))
            except ValidationError as e:
                logger.warning("Skipping malformed archived subscription %s: %s", doc.get("$id"), e)
        return dedupe_archived(archived)

    async def _fetch_creator(self, creator_name: str) -> dict[str, Any] | None:
        docs = await self._store.list(
            self._settings.creator_collection, {"creators_public_name": creator_name}
        )
        return docs[0] if docs else None

    async def creator_profile(self, creator_name: str) -> dict[str, Any] | None:
        """Public creator document by display name (cached)."""
        try:
            return await self._cache.get_or_fetch(
                f"creator_{creator_name}",
                lambda: self._fetch_creator(creator_name),
                self._settings.creator_profile_ttl_s,
                cache_none=False,
            )
        except DocumentStoreError as e:
            logger.error("Error getting creator profile for %s: %s", creator_name, e)
            return None

    async def subscriber_count(self, creator_name: str) -> int:
        """Monthly plus yearly subscribers of a creator (cached)."""

        async def count() -> int:
            creator = await self._fetch_creator(creator_name)
            if not creator:
                return 0
            return _as_int(creator.get("number_of_monthly_subscribers")) + _as_int(
                creator.get("number_of_yearly_subscriptions")
            )

        try:
            return await self._cache.get_or_fetch(
                f"followers_{creator_name}", count, self._settings.follower_count_ttl_s
            )
        except DocumentStoreError as e:
            logger.error("Error getting subscriber count for %s: %s", creator_name, e)
            return 0

    # --- Sweep ---

    async def sweep_expired(self, identity: str, now: datetime | None = None) -> int:
        """Archive and delete expired subscriptions with all their siblings.

        Returns:
            Number of live rows deleted. 0 when nothing expired, when listing
            failed, or when any archive copy failed (nothing is deleted then).
        """
        now = now or self._clock()
        try:
            records = await self._fetch(identity)
        except DocumentStoreError as e:
            logger.error("Sweep aborted, cannot list subscriptions for %s: %s", identity, e)
            return 0

        expired_ids = {r.stripe_subscription_id for r in records if r.is_expired(now)}
        if not expired_ids:
            return 0
        batch = [r for r in records if r.stripe_subscription_id in expired_ids]
        logger.info(
            "Sweeping %d rows for %d expired billing subscriptions of %s",
            len(batch), len(expired_ids), identity,
        )

        copies = await asyncio.gather(
            *(
                self._store.create(self.archive_collection, None, r.to_archive(now).to_document())
                for r in batch
            ),
            return_exceptions=True,
        )
        copy_errors = [c for c in copies if isinstance(c, BaseException)]
        if copy_errors:
            logger.error(
                "Archive copy failed for %d/%d rows, live rows left untouched: %s",
                len(copy_errors), len(batch), copy_errors[0],
            )
            return 0

        deletions = await asyncio.gather(
            *(self._store.delete(self.live_collection, r.id) for r in batch),
            return_exceptions=True,
        )
        deleted = 0
        for record, outcome in zip(batch, deletions):
            if isinstance(outcome, BaseException):
                logger.warning("Failed to delete archived row %s: %s", record.id, outcome)
            else:
                deleted += 1
        logger.info("Sweep archived %d rows, deleted %d", len(batch), deleted)
        return deleted


def _parse_records(docs: list[dict[str, Any]]) -> list[SubscriptionRecord]:
    records: list[SubscriptionRecord] = []
    for doc in docs:
        try:
            records.append(SubscriptionRecord.model_validate(doc))
        except ValidationError as e:
            logger.warning("Skipping malformed subscription %s: %s", doc.get("$id"), e)
    return records


def _as_int(value: Any) -> int:
    return value if isinstance(value, int) else 0
