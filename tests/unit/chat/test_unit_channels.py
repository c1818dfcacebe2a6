# tests/unit/chat/test_unit_channels.py — v1
"""Tests for chat/channels.py — deterministic channel naming."""

from __future__ import annotations

import itertools

from fansync.chat.channels import broadcast_channel_id, derive_dm_channel_id, descriptors_for
from fansync.core.models import ChannelKind

IDENTITIES = ["u1", "c1", "alice", "Bob", "user_99", "a-b"]


class TestDmChannelId:
    def test_symmetric_for_all_pairs(self):
        for a, b in itertools.permutations(IDENTITIES, 2):
            assert derive_dm_channel_id(a, b) == derive_dm_channel_id(b, a)

    def test_format(self):
        assert derive_dm_channel_id("u2", "u1") == "dm-u1-u2"

    def test_custom_prefix(self):
        assert derive_dm_channel_id("a", "b", prefix="pm") == "pm-a-b"

    def test_distinct_pairs_distinct_ids(self):
        ids = {derive_dm_channel_id(a, b) for a, b in itertools.combinations(IDENTITIES[:5], 2)}
        assert len(ids) == 10


class TestDescriptors:
    def test_broadcast_id(self):
        assert broadcast_channel_id("c1") == "creator-c1"

    def test_descriptors_for(self):
        group, dm = descriptors_for("u1", "c1")
        assert group.kind is ChannelKind.GROUP
        assert group.id == "creator-c1"
        assert group.members == frozenset({"u1"})
        assert dm.kind is ChannelKind.DIRECT_MESSAGE
        assert dm.id == "dm-c1-u1"
        assert dm.members == frozenset({"u1", "c1"})
