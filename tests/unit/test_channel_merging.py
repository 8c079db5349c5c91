"""
Unit Tests for multi-select channel merging
"""

import pytest

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))

from core.editing.channel_merging import (
    MergedChannel,
    merge_fixture_channels,
    sort_merged_channels,
)
from core.editing.types import ChannelDefinition, ChannelType


DIMMER = ChannelDefinition(name="Dimmer", type=ChannelType.INTENSITY)
RED = ChannelDefinition(name="Red", type=ChannelType.RED)
GREEN = ChannelDefinition(name="Green", type=ChannelType.GREEN)
PAN = ChannelDefinition(name="Pan", type=ChannelType.PAN, min_value=10, max_value=200)


@pytest.fixture
def merged():
    fixtures = {
        "par-1": [RED, GREEN, DIMMER],
        "par-2": [DIMMER, RED],
    }
    values = {
        "par-1": [255, 10, 100],
        "par-2": [100, 0],
    }
    return merge_fixture_channels(fixtures, values)


class TestMerge:
    """Tests for grouping by channel type."""

    def test_groups_by_type(self, merged):
        assert set(merged) == {ChannelType.INTENSITY, ChannelType.RED, ChannelType.GREEN}
        red = merged[ChannelType.RED]
        assert red.fixture_ids == ["par-1", "par-2"]
        assert red.channel_indices == [0, 1]
        assert red.values == [255, 0]

    def test_average_and_variation(self, merged):
        dimmer = merged[ChannelType.INTENSITY]
        assert dimmer.average_value == 100
        assert dimmer.has_variation is False
        assert merged[ChannelType.RED].average_value == 127.5
        assert merged[ChannelType.RED].has_variation is True

    def test_missing_value_uses_default(self):
        dimmer = ChannelDefinition(name="Dimmer", type=ChannelType.INTENSITY, default_value=42)
        merged = merge_fixture_channels({"fx": [dimmer]}, {"fx": []})
        assert merged[ChannelType.INTENSITY].values == [42]

    def test_first_definition_sets_bounds(self):
        other_pan = ChannelDefinition(name="Pan Coarse", type=ChannelType.PAN)
        merged = merge_fixture_channels({"a": [PAN], "b": [other_pan]}, {"a": [20], "b": [30]})
        pan = merged[ChannelType.PAN]
        assert pan.name == "Pan"
        assert (pan.min_value, pan.max_value) == (10, 200)

    def test_duplicate_type_on_one_fixture(self):
        merged = merge_fixture_channels({"fx": [RED, RED]}, {"fx": [1, 2]})
        assert merged[ChannelType.RED].channel_indices == [0, 1]

    def test_empty_selection(self):
        assert merge_fixture_channels({}, {}) == {}


class TestMergedChannel:
    """Tests for MergedChannel helpers."""

    def test_changes_for(self, merged):
        changes = merged[ChannelType.INTENSITY].changes_for(180)
        assert [(c.fixture_id, c.channel_index, c.value) for c in changes] == [
            ("par-1", 2, 180),
            ("par-2", 0, 180),
        ]

    def test_to_dict(self, merged):
        data = merged[ChannelType.GREEN].to_dict()
        assert data["type"] == "GREEN"
        assert data["fixture_ids"] == ["par-1"]
        assert data["values"] == [10]

    def test_sort_by_priority(self, merged):
        ordered = sort_merged_channels(list(merged.values()))
        assert [c.type for c in ordered] == [
            ChannelType.INTENSITY,
            ChannelType.RED,
            ChannelType.GREEN,
        ]

    def test_sort_puts_other_last(self):
        channels = [
            MergedChannel(name="Aux", type=ChannelType.OTHER),
            MergedChannel(name="Tilt", type=ChannelType.TILT),
        ]
        assert [c.type for c in sort_merged_channels(channels)] == [ChannelType.TILT, ChannelType.OTHER]
