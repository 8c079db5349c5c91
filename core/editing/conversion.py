"""
Channel Conversion - Sparse <-> Dense channel arrays

Looks persist only active channels as sparse (offset, value) entries.
The editor works on dense arrays with one slot per channel.
"""

from typing import List, Iterable, Optional, AbstractSet, Sequence

from .types import SparseEntry, FixturePayload


def sparse_to_dense(entries: Iterable[SparseEntry], channel_count: int) -> List[int]:
    """
    Expand sparse entries into a dense array.

    Offsets at or beyond channel_count are dropped; missing offsets read 0.
    """
    dense = [0] * channel_count
    for entry in entries:
        if 0 <= entry.offset < channel_count:
            dense[entry.offset] = entry.value
    return dense


def dense_to_sparse(
    values: Sequence[int],
    active: Optional[AbstractSet[int]] = None,
) -> List[SparseEntry]:
    """
    Collapse a dense array to sparse entries.

    Args:
        values: Dense channel values
        active: Channels to keep; None keeps every channel

    Zero values are kept: an active channel at 0 is an explicit blackout
    for that channel, not an omission.
    """
    return [
        SparseEntry(offset=offset, value=int(value))
        for offset, value in enumerate(values)
        if active is None or offset in active
    ]


def active_offsets(entries: Iterable[SparseEntry]) -> frozenset:
    """Membership implied by a persisted sparse array."""
    return frozenset(entry.offset for entry in entries)


def build_fixture_payload(
    fixture_id: str,
    values: Sequence[int],
    active: Optional[AbstractSet[int]],
) -> FixturePayload:
    """Build the save payload for one fixture, filtered by membership."""
    return FixturePayload(fixture_id=fixture_id, channels=dense_to_sparse(values, active))
