# src/payments/base_payment_processor.py — v1
"""Abstract payment processor interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from fansync.core.models import PaymentIntent


class PaymentError(Exception):
    """Raised by payment backends when an intent cannot be created or confirmed."""


class BasePaymentProcessor(ABC):
    """Unified interface for payment backends."""

    @abstractmethod
    async def create_payment_intent(
        self, amount: int, currency: str, metadata: dict[str, Any]
    ) -> PaymentIntent:
        """Create an intent for ``amount`` minor units of ``currency``."""

    @abstractmethod
    async def confirm_payment(self, client_secret: str) -> bool:
        """Confirm a previously created intent."""
