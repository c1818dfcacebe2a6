# src/payments/purchases.py — v1
"""Paid content unlocks and tips.

Purchase status is read through the shared TTL cache; recording a purchase
invalidates the cached answer so the unlocked content shows up immediately.
"""

from __future__ import annotations

import logging
import time

from pydantic import ValidationError

from fansync.cache.data_cache import DataCache
from fansync.config.settings import Settings
from fansync.core.models import PaymentIntent, PurchaseRecord
from fansync.payments.base_payment_processor import BasePaymentProcessor, PaymentError
from fansync.payments.currency import to_minor_units
from fansync.store.base_document_store import BaseDocumentStore, DocumentStoreError

logger = logging.getLogger(__name__)


def _purchase_key(identity: str, content_id: str) -> str:
    return f"purchase_{identity}_{content_id}"


class PurchaseLedger:
    """Create payment intents and track completed purchases."""

    def __init__(
        self,
        store: BaseDocumentStore,
        processor: BasePaymentProcessor,
        settings: Settings | None = None,
        data_cache: DataCache | None = None,
    ) -> None:
        self._store = store
        self._processor = processor
        self._settings = settings or Settings()
        self._cache = data_cache or DataCache(self._settings.data_cache_default_ttl_s)

    @property
    def _collection(self) -> str:
        return self._settings.purchases_collection

    async def create_unlock_intent(
        self,
        identity: str,
        creator_id: str,
        content_id: str,
        amount: float,
        currency: str | None = None,
        content_type: str = "content",
    ) -> PaymentIntent | None:
        """Payment intent for unlocking one piece of paid content."""
        currency = (currency or self._settings.default_currency).lower()
        metadata = {
            "userId": identity,
            "creatorId": creator_id,
            "contentId": content_id,
            "contentType": content_type,
        }
        try:
            return await self._processor.create_payment_intent(
                to_minor_units(amount, currency), currency, metadata
            )
        except PaymentError as e:
            logger.error("Error creating payment intent for %s: %s", content_id, e)
            return None

    async def create_tip_intent(
        self, identity: str, creator_id: str, amount: float, currency: str | None = None
    ) -> PaymentIntent | None:
        content_id = f"tip_{int(time.time() * 1000)}"
        return await self.create_unlock_intent(
            identity, creator_id, content_id, amount, currency, content_type="tip"
        )

    async def confirm(self, client_secret: str) -> bool:
        try:
            return await self._processor.confirm_payment(client_secret)
        except PaymentError as e:
            logger.error("Payment confirmation failed: %s", e)
            return False

    async def record_purchase(
        self,
        identity: str,
        creator_id: str,
        content_id: str,
        payment_intent_id: str,
        amount: float,
    ) -> PurchaseRecord | None:
        record = PurchaseRecord(
            user_id=identity,
            creator_id=creator_id,
            content_id=content_id,
            payment_intent_id=payment_intent_id,
            amount=amount,
        )
        try:
            doc = await self._store.create(self._collection, None, record.to_document())
        except DocumentStoreError as e:
            logger.error("Error recording purchase of %s: %s", content_id, e)
            return None
        self._cache.delete(_purchase_key(identity, content_id))
        return PurchaseRecord.model_validate(doc)

    async def has_purchased(self, identity: str, content_id: str) -> bool:
        async def lookup() -> bool:
            docs = await self._store.list(
                self._collection, {"userId": identity, "contentId": content_id}
            )
            return bool(docs)

        try:
            return await self._cache.get_or_fetch(
                _purchase_key(identity, content_id), lookup, self._settings.purchase_status_ttl_s
            )
        except DocumentStoreError as e:
            logger.error("Error checking purchase of %s: %s", content_id, e)
            return False

    async def purchased_content(
        self, identity: str, creator_id: str | None = None
    ) -> list[PurchaseRecord]:
        filters = {"userId": identity}
        if creator_id:
            filters["creatorId"] = creator_id
        try:
            docs = await self._store.list(self._collection, filters)
        except DocumentStoreError as e:
            logger.error("Error listing purchases of %s: %s", identity, e)
            return []
        records: list[PurchaseRecord] = []
        for doc in docs:
            try:
                records.append(PurchaseRecord.model_validate(doc))
            except ValidationError as e:
                logger.warning("Skipping malformed purchase %s: %s", doc.get("$id"), e)
        return records
