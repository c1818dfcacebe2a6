# src/core/models.py — v1
"""Core domain models shared by the cache, subscription, chat and session
components.

Remote documents use camelCase field names and a ``$id`` key; models expose
snake_case attributes and accept either form on input (``populate_by_name``).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> datetime | None:
    """Coerce ISO strings, dates and naive datetimes to aware UTC datetimes."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if isinstance(value, str):
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    raise ValueError(f"Unsupported timestamp value: {value!r}")


class _Document(BaseModel):
    """Base for models backed by a document-store record."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def to_document(self) -> dict[str, Any]:
        """Fields as stored remotely (camelCase, ISO timestamps, no ``$id``)."""
        return self.model_dump(by_alias=True, exclude={"id"}, mode="json")


# === IMAGE CACHE ===


class CacheEntry(BaseModel):
    """Single downloaded asset: remote URL mapped to a local file."""

    source_url: str
    cache_key: str
    local_path: str
    cached_at: datetime = Field(default_factory=utc_now)
    size: int = 0


class CacheManifest(BaseModel):
    """Durable index of cached assets keyed by source URL."""

    version: str = ""
    entries: dict[str, CacheEntry] = Field(default_factory=dict)

    def as_flat(self) -> dict[str, str]:
        """Flat ``source_url -> local_path`` view."""
        return {url: entry.local_path for url, entry in self.entries.items()}


@dataclass
class PreloadResult:
    """Outcome of a batch preload."""

    cached: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)


# === SUBSCRIPTIONS ===


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    CANCELLED = "cancelled"


class SubscriptionState(str, Enum):
    """Effective access state of an identity towards one creator."""

    ACTIVE = "active"
    PENDING_CANCELLATION = "pending_cancellation"
    NONE = "none"


_TIMESTAMP_FIELDS = ("created_at", "ends_at", "renewal_date", "billing_cycle_anchor")


class _BillingFields(_Document):
    """Fields a subscription row keeps when it moves to the archive."""

    user_id: str = Field(alias="userId")
    creator_id: str = Field(default="", alias="creatorId")
    creator_name: str = Field(default="", alias="creatorName")
    stripe_subscription_id: str = Field(alias="stripeSubscriptionId")
    stripe_customer_id: str | None = Field(default=None, alias="stripeCustomerId")
    status: SubscriptionStatus
    created_at: datetime | None = Field(default=None, alias="createdAt")
    ends_at: datetime | None = Field(default=None, alias="endsAt")
    renewal_date: datetime | None = Field(default=None, alias="renewalDate")
    billing_cycle_anchor: datetime | None = Field(default=None, alias="billingCycleAnchor")
    plan_amount: float | None = Field(default=None, alias="planAmount")
    plan_interval: str | None = Field(default=None, alias="planInterval")
    plan_currency: str | None = Field(default=None, alias="planCurrency")
    customer_email: str | None = Field(default=None, alias="customerEmail")
    customer_name: str | None = Field(default=None, alias="customerName")
    payment_status: str | None = Field(default=None, alias="paymentStatus")
    amount_total: float | None = Field(default=None, alias="amountTotal")
    amount_subtotal: float | None = Field(default=None, alias="amountSubtotal")

    @field_validator(*_TIMESTAMP_FIELDS, mode="before")
    @classmethod
    def _coerce_timestamp(cls, v: Any) -> datetime | None:
        return parse_timestamp(v)

    def billing_fields(self) -> dict[str, Any]:
        return self.model_dump(include=set(_BillingFields.model_fields))


class SubscriptionRecord(_BillingFields):
    """Live subscription row. One billing subscription may span several rows."""

    id: str = Field(alias="$id")

    def is_effectively_active(self, now: datetime) -> bool:
        """Active and not yet ended."""
        return self.status is SubscriptionStatus.ACTIVE and (
            self.ends_at is None or self.ends_at > now
        )

    def is_pending_cancellation(self, now: datetime) -> bool:
        """Cancelled, but access continues until ``ends_at``."""
        return (
            self.status is SubscriptionStatus.CANCELLED
            and self.ends_at is not None
            and self.ends_at > now
        )

    def is_expired(self, now: datetime) -> bool:
        """Active row whose end date has passed (candidate for archival)."""
        return (
            self.status is SubscriptionStatus.ACTIVE
            and self.ends_at is not None
            and self.ends_at < now
        )

    def matches_creator(self, creator: str) -> bool:
        return creator in (self.creator_id, self.creator_name)

    def to_archive(self, cancelled_at: datetime) -> ArchivedSubscription:
        return ArchivedSubscription(cancelled_at=cancelled_at, **self.billing_fields())


class ArchivedSubscription(_BillingFields):
    """Billing-relevant copy of a subscription row moved out of the live store."""

    cancelled_at: datetime = Field(alias="cancelledAt")

    @field_validator("cancelled_at", mode="before")
    @classmethod
    def _coerce_cancelled_at(cls, v: Any) -> datetime | None:
        return parse_timestamp(v)


class DailyLimit(BaseModel):
    """Messaging quota for one identity on the current UTC day."""

    count: int = 0
    can_send: bool = True
    remaining: int = 0
    has_subscription: bool = False


# === CHAT ===


class ChannelKind(str, Enum):
    GROUP = "group"
    DIRECT_MESSAGE = "direct_message"


class ChannelDescriptor(BaseModel):
    """Addressable chat conversation with its expected members."""

    model_config = ConfigDict(frozen=True)

    id: str
    kind: ChannelKind
    members: frozenset[str] = frozenset()


class ConnectionState(BaseModel):
    """Chat connectivity of one connection manager."""

    model_config = ConfigDict(frozen=True)

    phase: Literal["disconnected", "connecting", "connected"] = "disconnected"
    identity: str | None = None

    @classmethod
    def disconnected(cls) -> ConnectionState:
        return cls()

    @classmethod
    def connecting(cls, identity: str) -> ConnectionState:
        return cls(phase="connecting", identity=identity)

    @classmethod
    def connected(cls, identity: str) -> ConnectionState:
        return cls(phase="connected", identity=identity)

    @property
    def is_connected(self) -> bool:
        return self.phase == "connected"

    def is_connected_as(self, identity: str) -> bool:
        return self.phase == "connected" and self.identity == identity


@dataclass
class ProvisionResult:
    """Success/failure partition of a channel provisioning batch."""

    successful: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    errors: dict[str, str] = field(default_factory=dict)


# === PROFILE & CONTENT ===


class UserProfile(_Document):
    id: str = Field(default="", alias="$id")
    user_id: str = Field(alias="userId")
    profile_image_uri: str | None = Field(default=None, alias="profileImageUri")
    chat_token: str | None = Field(default=None, alias="streamChatToken")


class Post(_Document):
    """Content listing item with the viewer's subscription state."""

    id: str = Field(alias="$id")
    type: Literal["photo", "video"] = "photo"
    title: str | None = None
    creator_id: str | None = Field(default=None, alias="creatorId")
    thumbnail: str | None = None
    image_url: str | None = Field(default=None, alias="imageUrl")
    file_url: str | None = Field(default=None, alias="fileUrl")
    created_at: datetime | None = Field(default=None, alias="$createdAt")
    is_subscribed: bool = Field(default=False, alias="isSubscribed")
    is_cancelled: bool = Field(default=False, alias="isCancelled")

    @field_validator("created_at", mode="before")
    @classmethod
    def _coerce_timestamp(cls, v: Any) -> datetime | None:
        return parse_timestamp(v)

    @property
    def preview_url(self) -> str | None:
        return self.thumbnail or self.image_url or self.file_url

    @property
    def creator_key(self) -> str:
        return self.creator_id or self.title or ""


# === PAYMENTS ===


class PaymentIntent(BaseModel):
    client_secret: str
    account_id: str | None = None


class PurchaseRecord(_Document):
    id: str = Field(default="", alias="$id")
    user_id: str = Field(alias="userId")
    creator_id: str = Field(alias="creatorId")
    content_id: str = Field(alias="contentId")
    payment_intent_id: str = Field(alias="paymentIntentId")
    amount: float
    purchase_date: datetime = Field(default_factory=utc_now, alias="purchaseDate")
    status: str = "completed"

    @field_validator("purchase_date", mode="before")
    @classmethod
    def _coerce_timestamp(cls, v: Any) -> datetime | None:
        return parse_timestamp(v)
