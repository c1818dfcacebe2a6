# src/session/optimistic.py — v1
"""Optimistic local mutations backed by a confirmed snapshot.

The command applies a provisional state immediately, performs the remote
call, and then either adopts the server's answer or restores the last
server-confirmed snapshot. Only a succeeded transition ever reaches the
confirmed snapshot; the visible state is rebuilt from that snapshot plus
the transitions still in flight, so overlapping updates (e.g. two quick
poll votes) never drift away from what the server actually holds.
"""

from __future__ import annotations

import copy
import logging
from typing import Awaitable, Callable, Generic, TypeVar

logger = logging.getLogger(__name__)

S = TypeVar("S")


class OptimisticCommand(Generic[S]):
    """Hold the current and last confirmed state of one piece of UI data.

    Args:
        confirmed: Initial server-confirmed state.
        on_change: Called with the new visible state after every transition.
    """

    def __init__(self, confirmed: S, on_change: Callable[[S], None] | None = None) -> None:
        self._confirmed = copy.deepcopy(confirmed)
        self._current = copy.deepcopy(confirmed)
        self._pending: dict[int, Callable[[S], S]] = {}
        self._next_id = 0
        self._on_change = on_change

    @property
    def current(self) -> S:
        return self._current

    @property
    def confirmed(self) -> S:
        return self._confirmed

    @property
    def pending(self) -> int:
        return len(self._pending)

    def _publish(self, state: S) -> None:
        self._current = state
        if self._on_change is not None:
            self._on_change(state)

    def _rebuild(self) -> None:
        """Visible state = confirmed snapshot plus every transition still in flight."""
        state = copy.deepcopy(self._confirmed)
        for transition in self._pending.values():
            state = transition(state)
        self._publish(state)

    async def execute(
        self,
        apply: Callable[[S], S],
        remote: Callable[[], Awaitable[S | None]],
    ) -> bool:
        """Run one optimistic transition.

        Args:
            apply: Pure function computing the provisional state.
            remote: Remote call; may return the authoritative server state.

        Returns:
            True if the remote call succeeded.
        """
        token = self._next_id
        self._next_id += 1
        self._pending[token] = apply
        self._publish(apply(copy.deepcopy(self._current)))
        try:
            server_state = await remote()
        except Exception as e:
            logger.warning("Remote update failed, restoring confirmed state: %s", e)
            del self._pending[token]
            self._rebuild()
            return False

        del self._pending[token]
        if server_state is not None:
            self._confirmed = copy.deepcopy(server_state)
        else:
            self._confirmed = apply(copy.deepcopy(self._confirmed))
        self._rebuild()
        return True


def vote(counts: dict[str, int], option: str, previous: str | None = None) -> dict[str, int]:
    """Poll vote transition: move one vote from ``previous`` to ``option``."""
    updated = dict(counts)
    if previous is not None and updated.get(previous, 0) > 0:
        updated[previous] -= 1
    updated[option] = updated.get(option, 0) + 1
    return updated
