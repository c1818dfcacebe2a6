# src/chat/connection.py — v1
"""Chat connection manager: one logical connection per manager instance,
plus per-creator channel provisioning.

State machine::

    disconnected -> connecting(identity) -> connected(identity)
          ^                |                      |
          +---- failure ---+---- disconnect() ----+

Switching identity always goes through ``disconnected``: the previous
session is torn down (best effort) before the new token is even requested.
connect() and disconnect() are serialized by a lock so that a disconnect
issued by one task always completes before another task's connect starts.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable

from fansync.chat.base_chat_service import (
    BaseChannelHandle,
    BaseChatService,
    is_already_exists,
)
from fansync.chat.channels import descriptors_for, derive_dm_channel_id
from fansync.chat.tokens import ChatTokenProvider
from fansync.config.settings import Settings
from fansync.core.models import ChannelDescriptor, ChannelKind, ConnectionState, ProvisionResult
from fansync.core.retry import RetryConfig, with_retry

logger = logging.getLogger(__name__)

StateListener = Callable[[ConnectionState], None]


class ChatConnectionManager:
    """Own the chat connection for the active identity.

    Args:
        service: Chat backend.
        tokens: Token provider used on every fresh connection.
        settings: Channel naming and retry settings.
    """

    def __init__(
        self,
        service: BaseChatService,
        tokens: ChatTokenProvider,
        settings: Settings | None = None,
    ) -> None:
        self._service = service
        self._tokens = tokens
        self._settings = settings or Settings()
        self._state = ConnectionState.disconnected()
        self._lock = asyncio.Lock()
        self._listeners: list[StateListener] = []

    @property
    def state(self) -> ConnectionState:
        return self._state

    def add_state_listener(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    def _set_state(self, state: ConnectionState) -> None:
        if state == self._state:
            return
        logger.debug("Chat state %s -> %s", self._state, state)
        self._state = state
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:
                logger.exception("Chat state listener failed")

    # --- Connection ---

    async def connect(self, identity: str, profile: dict[str, Any] | None = None) -> bool:
        """Connect ``identity``. Returns False on any failure."""
        async with self._lock:
            if self._state.is_connected_as(identity):
                logger.debug("Already connected as %s, skipping handshake", identity)
                return True

            if self._state.identity is not None:
                logger.info("Disconnecting previous chat identity %s", self._state.identity)
                await self._disconnect_locked()

            self._set_state(ConnectionState.connecting(identity))
            try:
                token = await with_retry(
                    self._tokens.get_or_generate,
                    identity,
                    operation="chat token",
                    config=RetryConfig(max_retries=self._settings.chat_connect_retries),
                )
                await self._service.authenticate(identity, token, profile)
                self._set_state(ConnectionState.connected(identity))
            except Exception as e:
                logger.error("Chat connection failed for %s: %s", identity, e)
                self._set_state(ConnectionState.disconnected())
                return False
            finally:
                # Cancellation must not strand the manager in "connecting".
                if self._state.phase == "connecting":
                    self._set_state(ConnectionState.disconnected())

            logger.info("Chat connected as %s", identity)
            return True

    async def disconnect(self) -> bool:
        """Close the connection. State ends ``disconnected`` either way."""
        async with self._lock:
            return await self._disconnect_locked()

    async def _disconnect_locked(self) -> bool:
        if self._state.identity is None:
            return True
        previous = self._state.identity
        try:
            await self._service.disconnect()
        except Exception as e:
            logger.warning("Error disconnecting chat identity %s: %s", previous, e)
            return False
        finally:
            self._set_state(ConnectionState.disconnected())
        logger.info("Chat disconnected (%s)", previous)
        return True

    # --- Channels ---

    async def provision_channels(
        self, identity: str, counterpart_ids: list[str]
    ) -> ProvisionResult:
        """Ensure broadcast and DM channels exist for every counterpart.

        Counterparts are provisioned concurrently and independently; the
        result partitions them into fully successful and failed ones.
        """
        counterparts = list(dict.fromkeys(counterpart_ids))
        result = ProvisionResult()
        if not counterparts:
            return result

        if not self._state.is_connected_as(identity) and not await self.connect(identity):
            result.failed = counterparts
            result.errors = {c: "chat not connected" for c in counterparts}
            logger.warning(
                "Channel provisioning skipped for %d counterparts: chat not connected",
                len(counterparts),
            )
            return result

        outcomes = await asyncio.gather(
            *(self._provision_counterpart(identity, c) for c in counterparts),
            return_exceptions=True,
        )
        for counterpart, outcome in zip(counterparts, outcomes):
            if isinstance(outcome, BaseException):
                result.failed.append(counterpart)
                result.errors[counterpart] = str(outcome) or type(outcome).__name__
            elif outcome:
                result.failed.append(counterpart)
                result.errors[counterpart] = "; ".join(outcome)
            else:
                result.successful.append(counterpart)

        logger.info(
            "Channel provisioning complete: total=%d successful=%d failed=%d",
            len(counterparts), len(result.successful), len(result.failed),
        )
        if result.failed:
            logger.warning("Failed channel provisioning: %s", result.errors)
        return result

    async def _provision_counterpart(self, identity: str, counterpart: str) -> list[str]:
        """Provision both channels for one counterpart; return error messages."""
        errors: list[str] = []
        for descriptor in descriptors_for(
            identity,
            counterpart,
            dm_prefix=self._settings.dm_channel_prefix,
            group_prefix=self._settings.group_channel_prefix,
        ):
            try:
                await self._ensure_channel(descriptor)
            except Exception as e:
                logger.error(
                    "Error provisioning %s channel %s: %s", descriptor.kind.value, descriptor.id, e
                )
                errors.append(f"{descriptor.id}: {e}")
        return errors

    async def _ensure_channel(self, descriptor: ChannelDescriptor) -> BaseChannelHandle:
        channel_type = self._settings.chat_channel_type
        if descriptor.kind is ChannelKind.DIRECT_MESSAGE:
            handle = self._service.channel(channel_type, descriptor.id, sorted(descriptor.members))
            try:
                await handle.create()
            except Exception as e:
                if not is_already_exists(e):
                    raise
        else:
            handle = self._service.channel(channel_type, descriptor.id)

        await handle.watch()
        missing = sorted(descriptor.members - handle.members)
        if missing:
            await handle.add_members(missing)
        return handle

    async def create_direct_message_channel(
        self, identity_a: str, identity_b: str
    ) -> BaseChannelHandle | None:
        """Create (or open, if it exists) the DM channel between two identities.

        The channel is always created as ``identity_a``; a session connected
        as anyone else is switched over first.
        """
        if not self._state.is_connected_as(identity_a) and not await self.connect(identity_a):
            return None

        channel_id = derive_dm_channel_id(
            identity_a, identity_b, prefix=self._settings.dm_channel_prefix
        )
        handle = self._service.channel(
            self._settings.chat_channel_type, channel_id, sorted({identity_a, identity_b})
        )
        try:
            try:
                await handle.create()
            except Exception as e:
                if not is_already_exists(e):
                    raise
                logger.debug("Channel %s already exists, watching instead", channel_id)
                await handle.watch()
        except Exception as e:
            logger.error("Error creating direct message channel %s: %s", channel_id, e)
            return None
        return handle
