"""
Active Channel Tracker - Which channels of each fixture get saved

A fixture with no tracked set has every channel active. A tracked set,
even an empty one, is authoritative. Callers see membership as ActiveSpec
so the default never hides behind a missing dict key.
"""

from typing import Iterable, Optional, FrozenSet
import logging

from .types import ActiveSpec, ALL_ACTIVE, EditSessionState, SparseEntry
from .conversion import active_offsets

logger = logging.getLogger(__name__)


class ActiveChannelTracker:
    """Per-fixture active-channel membership over an EditSessionState."""

    def __init__(self, state: EditSessionState):
        self.state = state

    def is_active(self, fixture_id: str, channel_index: int) -> bool:
        members = self.state.active.get(fixture_id)
        if members is None:
            return True
        return channel_index in members

    def spec(self, fixture_id: str) -> ActiveSpec:
        members = self.state.active.get(fixture_id)
        if members is None:
            return ALL_ACTIVE
        return ActiveSpec.explicit(members)

    def members(self, fixture_id: str) -> Optional[FrozenSet[int]]:
        """Explicit members, or None when every channel is active."""
        return self.state.active.get(fixture_id)

    def set_active(
        self,
        fixture_id: str,
        channel_index: int,
        is_active: bool,
        channel_count: int,
    ) -> ActiveSpec:
        """
        Toggle one channel.

        Switching a channel off on an untracked fixture tracks the remaining
        channels explicitly. Switching one on leaves an untracked fixture
        untracked, since it is already active.

        Returns:
            Membership after the change
        """
        members = self.state.active.get(fixture_id)
        if members is None:
            if is_active:
                return ALL_ACTIVE
            members = frozenset(i for i in range(channel_count) if i != channel_index)
        elif is_active:
            members = members | {channel_index}
        else:
            members = members - {channel_index}
        self.state.active[fixture_id] = members
        return ActiveSpec.explicit(members)

    def restore(self, fixture_id: str, spec: ActiveSpec) -> None:
        """Put back a membership captured earlier (undo/redo, paste)."""
        if spec.is_all:
            self.state.active.pop(fixture_id, None)
        else:
            self.state.active[fixture_id] = frozenset(spec.channels)

    def forget(self, fixture_id: str) -> None:
        self.state.active.pop(fixture_id, None)

    def initialize_from_sparse(self, fixture_id: str, entries: Iterable[SparseEntry]) -> None:
        """
        Seed membership from a persisted fixture.

        Sets both the working membership and the baseline used for dirty
        comparison.
        """
        members = active_offsets(entries)
        self.state.active[fixture_id] = members
        self.state.initial_active[fixture_id] = members

    def mark_baseline(self) -> None:
        """Current membership becomes the clean baseline (after save)."""
        self.state.initial_active = dict(self.state.active)

    def reset_to_baseline(self) -> None:
        """Throw away membership edits (discard)."""
        self.state.active = dict(self.state.initial_active)
