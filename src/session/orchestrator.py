# src/session/orchestrator.py — v1
"""Session orchestrator: reacts to identity changes.

Login sequence for a new identity:
  1. Disconnect the previous chat identity, connect the new one
  2. Load subscriptions, profile and posts concurrently (all-settled)
  3. Sweep expired subscriptions (background)
  4. Provision chat channels for active creators (background, connected only)
  5. Preload profile image and recent post previews (background)

Logout disconnects chat, clears the image cache and drops in-memory data.

Every identity change bumps ``generation``. Work started for an older
generation may still finish, but its results are dropped instead of being
written into the current session.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

from pydantic import ValidationError

from fansync.cache.data_cache import DataCache
from fansync.cache.image_cache import ImageCacheManager
from fansync.chat.connection import ChatConnectionManager
from fansync.config.settings import Settings
from fansync.core.models import (
    ConnectionState,
    Post,
    ProvisionResult,
    SubscriptionRecord,
    UserProfile,
    utc_now,
)
from fansync.logging.context import set_component_context, set_session_context
from fansync.session import events as ev
from fansync.session.events import SessionEvents
from fansync.store.base_document_store import BaseDocumentStore, DocumentStoreError
from fansync.subscriptions.lifecycle import (
    SubscriptionLifecycleManager,
    active_creator_ids,
    visible_subscriptions,
)

logger = logging.getLogger(__name__)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


@dataclass
class SessionView:
    """Read-only snapshot of the current session."""

    identity: str | None = None
    generation: int = 0
    profile: UserProfile | None = None
    creators: list[SubscriptionRecord] = field(default_factory=list)
    posts: list[Post] = field(default_factory=list)
    chat_state: ConnectionState = field(default_factory=ConnectionState.disconnected)
    profile_loaded: bool = False
    posts_loaded: bool = False
    images_preloaded: bool = False
    last_provision: ProvisionResult | None = None


def annotate_posts(
    posts: list[Post], records: list[SubscriptionRecord], now: datetime
) -> list[Post]:
    """Mark each post with the viewer's subscription state and sort.

    Order: subscribed (not cancelling) first, then pending cancellation,
    then everything else; newest first within each group.
    """
    annotated: list[Post] = []
    for post in posts:
        matching = [r for r in records if r.matches_creator(post.creator_key)]
        annotated.append(
            post.model_copy(
                update={
                    "is_subscribed": any(r.is_effectively_active(now) for r in matching),
                    "is_cancelled": any(r.is_pending_cancellation(now) for r in matching),
                }
            )
        )

    def rank(post: Post) -> tuple[int, float]:
        if post.is_subscribed and not post.is_cancelled:
            group = 0
        elif post.is_cancelled:
            group = 1
        else:
            group = 2
        return group, -(post.created_at or _EPOCH).timestamp()

    return sorted(annotated, key=rank)


def recent_preview_urls(posts: list[Post], limit: int) -> list[str]:
    """Preview URLs of the ``limit`` most recently created posts."""
    newest = sorted(posts, key=lambda p: p.created_at or _EPOCH, reverse=True)
    urls = [p.preview_url for p in newest[:limit]]
    return [u for u in urls if u]


class SessionOrchestrator:
    """Coordinate chat, subscriptions, content and image cache per identity.

    Args:
        store: Document store for profiles and posts.
        chat: Chat connection manager.
        subscriptions: Subscription lifecycle manager.
        images: Image cache manager.
        settings: Collection names and preload size.
        events: Event emitter; a private one is created if omitted.
        data_cache: TTL cache cleared on logout.
        clock: Source of "now" (injectable for tests).
    """

    def __init__(
        self,
        store: BaseDocumentStore,
        chat: ChatConnectionManager,
        subscriptions: SubscriptionLifecycleManager,
        images: ImageCacheManager,
        settings: Settings | None = None,
        events: SessionEvents | None = None,
        data_cache: DataCache | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._chat = chat
        self._subscriptions = subscriptions
        self._images = images
        self._settings = settings or Settings()
        self.events = events or SessionEvents()
        self._data_cache = data_cache
        self._clock = clock

        self._generation = 0
        self._identity: str | None = None
        self._profile: UserProfile | None = None
        self._records: list[SubscriptionRecord] = []
        self._creators: list[SubscriptionRecord] = []
        self._posts: list[Post] = []
        self._profile_loaded = False
        self._posts_loaded = False
        self._images_preloaded = False
        self._last_provision: ProvisionResult | None = None
        self._background: set[asyncio.Task[None]] = set()

        chat.add_state_listener(lambda state: self.events.emit(ev.CHAT_STATE_CHANGED, state))

    # --- Read model ---

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def identity(self) -> str | None:
        return self._identity

    @property
    def view(self) -> SessionView:
        return SessionView(
            identity=self._identity,
            generation=self._generation,
            profile=self._profile,
            creators=list(self._creators),
            posts=list(self._posts),
            chat_state=self._chat.state,
            profile_loaded=self._profile_loaded,
            posts_loaded=self._posts_loaded,
            images_preloaded=self._images_preloaded,
            last_provision=self._last_provision,
        )

    def cached_image_url(self, url: str | None) -> str | None:
        return self._images.resolve(url)

    def is_current(self, generation: int) -> bool:
        return generation == self._generation

    # --- Identity transitions ---

    async def on_identity_changed(
        self, identity: str | None, profile: dict[str, Any] | None = None
    ) -> None:
        """Switch the session to ``identity`` (None means logged out)."""
        if identity == self._identity:
            logger.debug("Identity unchanged (%s), nothing to do", identity)
            return

        self._generation += 1
        generation = self._generation
        set_session_context(identity, generation)
        previous = self._identity
        self._identity = identity
        self._reset_data()
        logger.info("Identity changed: %s -> %s (generation %d)", previous, identity, generation)
        self.events.emit(ev.IDENTITY_CHANGED, identity)

        if identity is None:
            await self._logout()
        else:
            await self._login(identity, generation, profile)

    async def _logout(self) -> None:
        await self._chat.disconnect()
        await self._images.clear()
        if self._data_cache is not None:
            self._data_cache.clear()
        logger.info("Session cleared")

    async def _login(
        self, identity: str, generation: int, profile: dict[str, Any] | None
    ) -> None:
        chat_identity = self._chat.state.identity
        if chat_identity is not None and chat_identity != identity:
            await self._chat.disconnect()
        connected = await self._chat.connect(identity, profile)
        if not self.is_current(generation):
            logger.info("Identity changed during chat connect, abandoning login of %s", identity)
            return
        if not connected:
            logger.warning("Continuing session for %s without chat", identity)

        records, user_profile, posts = await asyncio.gather(
            self._subscriptions.list_all(identity),
            self._load_profile(identity),
            self._load_posts(),
            return_exceptions=True,
        )
        if not self.is_current(generation):
            logger.info("Discarding stale session data for %s", identity)
            return

        records = _settled(records, [], "subscriptions")
        user_profile = _settled(user_profile, None, "profile")
        posts = _settled(posts, [], "posts")

        now = self._clock()
        self._apply_records(records)
        self._profile = user_profile
        self._profile_loaded = True
        self._posts = annotate_posts(posts, records, now)
        self._posts_loaded = True
        self.events.emit(ev.SUBSCRIPTIONS_LOADED, list(self._creators))
        self.events.emit(ev.POSTS_LOADED, list(self._posts))

        self._spawn(self._run_sweep(identity, generation), "sweep")
        creators = active_creator_ids(self._creators, now)
        if creators and self._chat.state.is_connected_as(identity):
            self._spawn(self._run_provisioning(identity, creators, generation), "chat")
        urls: list[str] = []
        if user_profile is not None and user_profile.profile_image_uri:
            urls.append(user_profile.profile_image_uri)
        urls.extend(recent_preview_urls(self._posts, self._settings.preload_recent_posts))
        self._spawn(self._run_preload(urls, generation), "images")

    def _reset_data(self) -> None:
        self._profile = None
        self._records = []
        self._creators = []
        self._posts = []
        self._profile_loaded = False
        self._posts_loaded = False
        self._images_preloaded = False
        self._last_provision = None

    def _apply_records(self, records: list[SubscriptionRecord]) -> None:
        self._records = records
        self._creators = visible_subscriptions(records)

    # --- Loads ---

    async def _load_profile(self, identity: str) -> UserProfile | None:
        try:
            docs = await self._store.list(self._settings.profile_collection, {"userId": identity})
        except DocumentStoreError as e:
            logger.error("Error loading profile for %s: %s", identity, e)
            return None
        if not docs:
            return None
        try:
            return UserProfile.model_validate(docs[0])
        except ValidationError as e:
            logger.warning("Malformed profile for %s: %s", identity, e)
            return None

    async def _load_posts(self) -> list[Post]:
        try:
            docs = await self._store.list(self._settings.posts_collection)
        except DocumentStoreError as e:
            logger.error("Error loading posts: %s", e)
            return []
        posts: list[Post] = []
        for doc in docs:
            try:
                posts.append(Post.model_validate(doc))
            except ValidationError as e:
                logger.warning("Skipping malformed post %s: %s", doc.get("$id"), e)
        return posts

    async def refresh_creators(self) -> list[SubscriptionRecord]:
        identity, generation = self._identity, self._generation
        if identity is None:
            return []
        records = await self._subscriptions.list_all(identity)
        if not self.is_current(generation):
            logger.info("Discarding stale subscription refresh for %s", identity)
            return []
        self._apply_records(records)
        self._posts = annotate_posts(self._posts, records, self._clock())
        self.events.emit(ev.SUBSCRIPTIONS_LOADED, list(self._creators))
        return list(self._creators)

    async def refresh_posts(self) -> list[Post]:
        identity, generation = self._identity, self._generation
        if identity is None:
            return []
        posts = await self._load_posts()
        if not self.is_current(generation):
            logger.info("Discarding stale posts refresh for %s", identity)
            return []
        self._posts = annotate_posts(posts, self._records, self._clock())
        self._posts_loaded = True
        self.events.emit(ev.POSTS_LOADED, list(self._posts))
        return list(self._posts)

    # --- Background work ---

    async def _run_sweep(self, identity: str, generation: int) -> None:
        if not self.is_current(generation):
            return
        deleted = await self._subscriptions.sweep_expired(identity)
        if not deleted:
            return
        records = await self._subscriptions.list_all(identity)
        if not self.is_current(generation):
            logger.info("Discarding post-sweep subscriptions of stale session %s", identity)
            return
        self._apply_records(records)
        self.events.emit(ev.SUBSCRIPTIONS_LOADED, list(self._creators))

    async def _run_provisioning(
        self, identity: str, creators: list[str], generation: int
    ) -> None:
        # Provisioning connects on demand; never let a stale session reconnect.
        if not self.is_current(generation) or not self._chat.state.is_connected_as(identity):
            logger.info("Skipping channel provisioning for stale session %s", identity)
            return
        result = await self._chat.provision_channels(identity, creators)
        if not self.is_current(generation):
            logger.info("Discarding channel provisioning result of stale session %s", identity)
            return
        self._last_provision = result
        self.events.emit(ev.CHANNELS_PROVISIONED, result)

    async def _run_preload(self, urls: list[str], generation: int) -> None:
        if not self.is_current(generation):
            return
        result = await self._images.preload(urls)
        if not self.is_current(generation):
            logger.info("Discarding preload result of stale session")
            return
        self._images_preloaded = True
        self.events.emit(ev.IMAGES_PRELOADED, result)

    def _spawn(self, coro: Awaitable[None], component: str) -> None:
        async def runner() -> None:
            set_component_context(component)
            try:
                await coro
            except Exception:
                logger.exception("Background %s task failed", component)

        task = asyncio.get_running_loop().create_task(runner())
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def wait_idle(self) -> None:
        """Wait for all background work, including image caching, to finish."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
        await self._images.wait_idle()


def _settled(outcome: Any, fallback: Any, what: str) -> Any:
    if isinstance(outcome, BaseException):
        logger.error("Loading %s failed: %s", what, outcome)
        return fallback
    return outcome
