# src/session/factory.py — v1
"""Wire all session components from settings and injected ports."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from fansync.cache.data_cache import DataCache
from fansync.cache.image_cache import ImageCacheManager
from fansync.chat.base_chat_service import BaseChatService
from fansync.chat.connection import ChatConnectionManager
from fansync.chat.tokens import ChatTokenProvider, TokenIssuer
from fansync.config.settings import Settings
from fansync.logging.logger import setup_logging_from_settings
from fansync.payments.base_payment_processor import BasePaymentProcessor
from fansync.payments.purchases import PurchaseLedger
from fansync.session.events import SessionEvents
from fansync.session.orchestrator import SessionOrchestrator
from fansync.storage.base_local_storage import BaseLocalStorage
from fansync.store.base_document_store import BaseDocumentStore
from fansync.subscriptions.lifecycle import SubscriptionLifecycleManager
from fansync.subscriptions.message_limits import MessageLimiter

logger = logging.getLogger(__name__)


@dataclass
class Session:
    """All components of one client session, sharing settings and caches."""

    settings: Settings
    orchestrator: SessionOrchestrator
    chat: ChatConnectionManager
    tokens: ChatTokenProvider
    subscriptions: SubscriptionLifecycleManager
    images: ImageCacheManager
    data_cache: DataCache
    limiter: MessageLimiter
    events: SessionEvents
    purchases: PurchaseLedger | None = None

    async def start(self) -> None:
        """Load the persisted image cache before the first identity change."""
        await self.images.load()


def create_session(
    settings: Settings | None,
    document_store: BaseDocumentStore,
    chat_service: BaseChatService,
    local_storage: BaseLocalStorage | None,
    token_issuer: TokenIssuer,
    payment_processor: BasePaymentProcessor | None = None,
    configure_logging: bool = False,
) -> Session:
    """Build a fully wired session.

    Args:
        settings: Application settings. Loaded from .env if None.
        document_store: Remote document database.
        chat_service: Chat backend.
        local_storage: Cache storage; a ``FileSystemStorage`` under
            ``settings.cache_root`` if None.
        token_issuer: Async callable issuing chat tokens for an identity.
        payment_processor: Payment backend. None = purchases disabled.
        configure_logging: Apply the logging section of ``settings``.

    Returns:
        Session with every component constructed but not started.
    """
    settings = settings or Settings()
    if configure_logging:
        setup_logging_from_settings(settings)
    if local_storage is None:
        from fansync.storage.fs_storage import FileSystemStorage
        local_storage = FileSystemStorage(
            settings.manifest_path, timeout_s=settings.download_timeout_s
        )

    data_cache = DataCache(settings.data_cache_default_ttl_s)
    events = SessionEvents()
    tokens = ChatTokenProvider(document_store, token_issuer, settings.profile_collection)
    chat = ChatConnectionManager(chat_service, tokens, settings)
    subscriptions = SubscriptionLifecycleManager(document_store, settings, data_cache)
    images = ImageCacheManager(local_storage, settings)
    orchestrator = SessionOrchestrator(
        document_store,
        chat,
        subscriptions,
        images,
        settings=settings,
        events=events,
        data_cache=data_cache,
    )
    purchases = None
    if payment_processor is not None:
        purchases = PurchaseLedger(document_store, payment_processor, settings, data_cache)

    logger.debug("Session components created (app version %s)", settings.app_version)
    return Session(
        settings=settings,
        orchestrator=orchestrator,
        chat=chat,
        tokens=tokens,
        subscriptions=subscriptions,
        images=images,
        data_cache=data_cache,
        limiter=MessageLimiter(document_store, settings),
        events=events,
        purchases=purchases,
    )
