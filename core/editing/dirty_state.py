"""
Dirty State - Working state vs. last-known server snapshot

Evaluated on demand, never maintained incrementally. Cost is linear in the
number of fixtures and channels; is_dirty stops at the first difference.
"""

from typing import List

from .types import EditSessionState


class DirtyStateComputer:
    """Answers "are there unsaved changes?" for an EditSessionState."""

    @staticmethod
    def _values_differ(state: EditSessionState, fixture_id: str) -> bool:
        local = state.working.get(fixture_id)
        if local is None:
            return False
        server = state.server_snapshot.get(fixture_id)
        if server is None:
            return True
        if len(local) != len(server):
            return True
        return any(a != b for a, b in zip(local, server))

    @staticmethod
    def _membership_differs(state: EditSessionState, fixture_id: str) -> bool:
        current = state.active.get(fixture_id)
        initial = state.initial_active.get(fixture_id)
        if current is None:
            return initial is not None
        if initial is None:
            return len(current) > 0
        if len(current) != len(initial):
            return True
        return any(channel not in initial for channel in current)

    def is_dirty(self, state: EditSessionState) -> bool:
        if state.removed:
            return True

        for fixture_id in state.working:
            if self._values_differ(state, fixture_id):
                return True

        for fixture_id in state.active:
            if self._membership_differs(state, fixture_id):
                return True

        for fixture_id in state.initial_active:
            if fixture_id not in state.active:
                return True

        return False

    def dirty_fixtures(self, state: EditSessionState) -> List[str]:
        """Fixture ids with unsaved value, membership or removal changes."""
        candidates = list(state.working)
        candidates += [fid for fid in state.active if fid not in candidates]
        candidates += [fid for fid in state.initial_active if fid not in candidates]
        dirty = [
            fid for fid in candidates
            if fid in state.removed
            or self._values_differ(state, fid)
            or self._membership_differs(state, fid)
        ]
        dirty += sorted(fid for fid in state.removed if fid not in dirty)
        return dirty
