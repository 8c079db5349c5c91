"""
Unit Tests for ActiveChannelTracker and ActiveSpec
"""

import pytest

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))

from core.editing.active_channels import ActiveChannelTracker
from core.editing.types import EditSessionState, ActiveSpec, ActiveKind, ALL_ACTIVE, SparseEntry


@pytest.fixture
def tracker():
    return ActiveChannelTracker(EditSessionState())


class TestActiveSpec:
    """Tests for the ActiveSpec variant."""

    def test_all_active_contains_everything(self):
        assert ALL_ACTIVE.is_all
        assert ALL_ACTIVE.contains(0)
        assert ALL_ACTIVE.contains(511)

    def test_explicit_empty_contains_nothing(self):
        spec = ActiveSpec.explicit([])
        assert spec.kind == ActiveKind.EXPLICIT
        assert not spec.contains(0)

    def test_to_dict(self):
        assert ActiveSpec.explicit([2, 0]).to_dict() == {"kind": "explicit", "channels": [0, 2]}
        assert ALL_ACTIVE.to_dict() == {"kind": "all", "channels": None}


class TestTracker:
    """Tests for membership tracking."""

    def test_untracked_fixture_is_all_active(self, tracker):
        assert all(tracker.is_active("fx", i) for i in range(8))
        assert tracker.spec("fx") == ALL_ACTIVE
        assert tracker.members("fx") is None

    def test_toggle_off_untracked_tracks_the_others(self, tracker):
        spec = tracker.set_active("fx", 1, False, 4)
        assert spec == ActiveSpec.explicit({0, 2, 3})
        assert not tracker.is_active("fx", 1)

    def test_toggle_on_untracked_stays_untracked(self, tracker):
        assert tracker.set_active("fx", 1, True, 4) == ALL_ACTIVE
        assert "fx" not in tracker.state.active

    def test_toggle_on_tracked(self, tracker):
        tracker.set_active("fx", 1, False, 2)
        tracker.set_active("fx", 1, True, 2)
        assert tracker.members("fx") == frozenset({0, 1})

    def test_initialize_from_sparse_sets_baseline(self, tracker):
        tracker.initialize_from_sparse("fx", [SparseEntry(0, 5), SparseEntry(2, 0)])
        assert tracker.members("fx") == frozenset({0, 2})
        assert tracker.state.initial_active["fx"] == frozenset({0, 2})

    def test_empty_sparse_means_no_channels(self, tracker):
        tracker.initialize_from_sparse("fx", [])
        assert not tracker.is_active("fx", 0)

    def test_restore(self, tracker):
        tracker.restore("fx", ActiveSpec.explicit({3}))
        assert tracker.members("fx") == frozenset({3})
        tracker.restore("fx", ALL_ACTIVE)
        assert tracker.members("fx") is None

    def test_baseline_round_trip(self, tracker):
        tracker.initialize_from_sparse("fx", [SparseEntry(0, 1)])
        tracker.set_active("fx", 1, True, 2)
        tracker.reset_to_baseline()
        assert tracker.members("fx") == frozenset({0})
        tracker.set_active("fx", 1, True, 2)
        tracker.mark_baseline()
        assert tracker.state.initial_active["fx"] == frozenset({0, 1})
