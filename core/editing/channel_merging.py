"""
Channel Merging - Group view of channels across selected fixtures

When several fixtures are selected, their channels are grouped by type
so one control can drive every fixture's "Red" at once. Setting a merged
channel becomes a single batch_apply.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Sequence

from .types import ChannelType, ChannelChange, ChannelDefinition


PRIORITY_CHANNEL_TYPES: List[ChannelType] = [
    ChannelType.INTENSITY,
    ChannelType.RED,
    ChannelType.GREEN,
    ChannelType.BLUE,
    ChannelType.WHITE,
    ChannelType.AMBER,
    ChannelType.UV,
    ChannelType.PAN,
    ChannelType.TILT,
    ChannelType.ZOOM,
    ChannelType.FOCUS,
    ChannelType.IRIS,
    ChannelType.GOBO,
    ChannelType.COLOR_WHEEL,
    ChannelType.EFFECT,
    ChannelType.STROBE,
    ChannelType.MACRO,
    ChannelType.OTHER,
]


@dataclass
class MergedChannel:
    """One channel type across several fixtures."""
    name: str
    type: ChannelType
    fixture_ids: List[str] = field(default_factory=list)
    channel_indices: List[int] = field(default_factory=list)
    values: List[int] = field(default_factory=list)
    average_value: float = 0.0
    has_variation: bool = False
    min_value: int = 0
    max_value: int = 255

    def changes_for(self, value: int) -> List[ChannelChange]:
        """Writes that set every member channel to value."""
        return [
            ChannelChange(fixture_id, channel_index, value)
            for fixture_id, channel_index in zip(self.fixture_ids, self.channel_indices)
        ]

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "type": self.type.value,
            "fixture_ids": self.fixture_ids,
            "channel_indices": self.channel_indices,
            "values": self.values,
            "average_value": self.average_value,
            "has_variation": self.has_variation,
            "min_value": self.min_value,
            "max_value": self.max_value,
        }


def merge_fixture_channels(
    fixtures: Dict[str, Sequence[ChannelDefinition]],
    values: Dict[str, Sequence[int]],
) -> Dict[ChannelType, MergedChannel]:
    """
    Group channels of the given fixtures by channel type.

    Args:
        fixtures: Channel definitions per fixture, in selection order
        values: Current dense values per fixture

    A fixture with two channels of the same type contributes both.
    """
    merged: Dict[ChannelType, MergedChannel] = {}

    for fixture_id, definitions in fixtures.items():
        fixture_values = values.get(fixture_id, [])
        for index, definition in enumerate(definitions):
            channel = merged.get(definition.type)
            if channel is None:
                channel = MergedChannel(
                    name=definition.name,
                    type=definition.type,
                    min_value=definition.min_value,
                    max_value=definition.max_value,
                )
                merged[definition.type] = channel

            channel.fixture_ids.append(fixture_id)
            channel.channel_indices.append(index)
            if index < len(fixture_values):
                channel.values.append(fixture_values[index])
            else:
                channel.values.append(definition.default_value)

    for channel in merged.values():
        if channel.values:
            channel.average_value = sum(channel.values) / len(channel.values)
            first = channel.values[0]
            channel.has_variation = any(v != first for v in channel.values)

    return merged


def sort_merged_channels(channels: Sequence[MergedChannel]) -> List[MergedChannel]:
    """Order merged channels by display priority (intensity, colour, position, ...)."""
    return sorted(channels, key=lambda c: PRIORITY_CHANNEL_TYPES.index(c.type))
