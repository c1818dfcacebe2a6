# tests/unit/payments/test_unit_purchases.py — v1
"""Tests for payments/purchases.py — intents and purchase tracking."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from fansync.cache.data_cache import DataCache
from fansync.core.models import PaymentIntent
from fansync.payments.base_payment_processor import BasePaymentProcessor, PaymentError
from fansync.payments.purchases import PurchaseLedger


@pytest.fixture
def processor():
    mock = MagicMock(spec=BasePaymentProcessor)
    mock.create_payment_intent = AsyncMock(
        return_value=PaymentIntent(client_secret="pi_secret", account_id="acct_1")
    )
    mock.confirm_payment = AsyncMock(return_value=True)
    return mock


@pytest.fixture
def ledger(document_store, processor, settings):
    return PurchaseLedger(document_store, processor, settings, DataCache())


class TestIntents:
    @pytest.mark.asyncio
    async def test_unlock_intent_in_minor_units(self, ledger, processor):
        intent = await ledger.create_unlock_intent("u1", "c1", "post_1", 4.99)
        assert intent.client_secret == "pi_secret"
        amount, currency, metadata = processor.create_payment_intent.await_args.args
        assert amount == 499
        assert currency == "usd"
        assert metadata["contentId"] == "post_1"
        assert metadata["contentType"] == "content"

    @pytest.mark.asyncio
    async def test_tip_intent(self, ledger, processor):
        await ledger.create_tip_intent("u1", "c1", 5, currency="EUR")
        amount, currency, metadata = processor.create_payment_intent.await_args.args
        assert (amount, currency) == (500, "eur")
        assert metadata["contentType"] == "tip"
        assert metadata["contentId"].startswith("tip_")

    @pytest.mark.asyncio
    async def test_processor_error(self, ledger, processor):
        processor.create_payment_intent.side_effect = PaymentError("card declined")
        assert await ledger.create_unlock_intent("u1", "c1", "post_1", 1) is None

    @pytest.mark.asyncio
    async def test_confirm(self, ledger, processor):
        assert await ledger.confirm("pi_secret") is True
        processor.confirm_payment.side_effect = PaymentError("expired")
        assert await ledger.confirm("pi_secret") is False


class TestPurchases:
    @pytest.mark.asyncio
    async def test_record_invalidates_cached_status(self, ledger):
        assert await ledger.has_purchased("u1", "post_1") is False
        record = await ledger.record_purchase("u1", "c1", "post_1", "pi_1", 4.99)
        assert record.id
        assert await ledger.has_purchased("u1", "post_1") is True

    @pytest.mark.asyncio
    async def test_status_is_cached(self, ledger, document_store):
        await ledger.has_purchased("u1", "post_1")
        await document_store.create(
            "paid_content_purchases", None,
            {"userId": "u1", "contentId": "post_1", "creatorId": "c1",
             "paymentIntentId": "pi_x", "amount": 1.0},
        )
        assert await ledger.has_purchased("u1", "post_1") is False

    @pytest.mark.asyncio
    async def test_purchased_content_by_creator(self, ledger):
        await ledger.record_purchase("u1", "c1", "post_1", "pi_1", 1)
        await ledger.record_purchase("u1", "c2", "post_2", "pi_2", 2)
        records = await ledger.purchased_content("u1", creator_id="c2")
        assert [r.content_id for r in records] == ["post_2"]
        assert len(await ledger.purchased_content("u1")) == 2
