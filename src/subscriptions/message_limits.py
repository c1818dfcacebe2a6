# src/subscriptions/message_limits.py — v1
"""Daily chat message quota for identities without a chat subscription.

Counts are kept per identity and UTC day in the daily-limits collection.
Subscribers are never limited but their messages are still counted.
Remote failures resolve to the permissive answer so a flaky backend never
blocks a user from chatting.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from fansync.config.settings import Settings
from fansync.core.models import DailyLimit, utc_now
from fansync.store.base_document_store import BaseDocumentStore, DocumentStoreError

logger = logging.getLogger(__name__)

UNLIMITED = 999_999


class MessageLimiter:
    """Read and bump the per-day message counter of an identity."""

    def __init__(
        self,
        store: BaseDocumentStore,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._settings = settings or Settings()
        self._clock = clock

    @property
    def _collection(self) -> str:
        return self._settings.daily_limits_collection

    def _today(self) -> str:
        return self._clock().date().isoformat()

    async def has_chat_subscription(self, identity: str) -> bool:
        try:
            docs = await self._store.list(
                self._settings.chat_subscriptions_collection,
                {"userId": identity, "status": "active"},
            )
        except DocumentStoreError as e:
            logger.error("Error checking chat subscription for %s: %s", identity, e)
            return False
        return bool(docs)

    async def _today_record(self, identity: str) -> dict | None:
        docs = await self._store.list(self._collection, {"userId": identity, "date": self._today()})
        return docs[0] if docs else None

    async def get_limit(self, identity: str) -> DailyLimit:
        free = self._settings.daily_free_messages
        has_subscription = await self.has_chat_subscription(identity)
        try:
            record = await self._today_record(identity)
        except DocumentStoreError as e:
            logger.error("Error checking daily limit for %s: %s", identity, e)
            return DailyLimit(count=0, can_send=True, remaining=free, has_subscription=has_subscription)

        count = int(record.get("totalMessages", 0)) if record else 0
        if has_subscription:
            return DailyLimit(count=count, can_send=True, remaining=UNLIMITED, has_subscription=True)
        return DailyLimit(
            count=count,
            can_send=count < free,
            remaining=max(0, free - count),
            has_subscription=False,
        )

    async def increment(self, identity: str) -> tuple[bool, int]:
        """Count one more message today. Returns ``(ok, new_count)``."""
        now = self._clock().isoformat()
        try:
            record = await self._today_record(identity)
            if record:
                new_count = int(record.get("totalMessages", 0)) + 1
                await self._store.update(
                    self._collection, record["$id"], {"totalMessages": new_count, "lastMessageAt": now}
                )
            else:
                new_count = 1
                await self._store.create(
                    self._collection,
                    None,
                    {"userId": identity, "date": self._today(), "totalMessages": 1, "lastMessageAt": now},
                )
        except DocumentStoreError as e:
            logger.error("Error incrementing message count for %s: %s", identity, e)
            return False, 0
        return True, new_count

    async def reset(self, identity: str) -> bool:
        try:
            record = await self._today_record(identity)
            if record:
                await self._store.update(
                    self._collection,
                    record["$id"],
                    {"totalMessages": 0, "lastMessageAt": self._clock().isoformat()},
                )
        except DocumentStoreError as e:
            logger.error("Error resetting daily limit for %s: %s", identity, e)
            return False
        return True
