# src/chat/channels.py — v1
"""Deterministic channel naming.

A direct-message channel id depends only on the unordered pair of
identities; a broadcast (group) channel is scoped to one creator.
"""

from __future__ import annotations

from fansync.core.models import ChannelDescriptor, ChannelKind

DEFAULT_DM_PREFIX = "dm"
DEFAULT_GROUP_PREFIX = "creator"


def derive_dm_channel_id(
    identity_a: str, identity_b: str, prefix: str = DEFAULT_DM_PREFIX
) -> str:
    """Symmetric id for the DM channel between two identities."""
    first, second = sorted((identity_a, identity_b))
    return f"{prefix}-{first}-{second}"


def broadcast_channel_id(counterpart: str, prefix: str = DEFAULT_GROUP_PREFIX) -> str:
    return f"{prefix}-{counterpart}"


def descriptors_for(
    identity: str,
    counterpart: str,
    dm_prefix: str = DEFAULT_DM_PREFIX,
    group_prefix: str = DEFAULT_GROUP_PREFIX,
) -> tuple[ChannelDescriptor, ChannelDescriptor]:
    """Broadcast and DM descriptors an identity needs for one counterpart.

    The broadcast descriptor only lists ``identity`` as a required member;
    the counterpart owns that channel. The DM descriptor requires both.
    """
    group = ChannelDescriptor(
        id=broadcast_channel_id(counterpart, group_prefix),
        kind=ChannelKind.GROUP,
        members=frozenset({identity}),
    )
    dm = ChannelDescriptor(
        id=derive_dm_channel_id(identity, counterpart, dm_prefix),
        kind=ChannelKind.DIRECT_MESSAGE,
        members=frozenset({identity, counterpart}),
    )
    return group, dm
