"""
Channel Store - Working channel values per fixture

Reads fall through working -> server snapshot. Writes are copy-on-write:
the first edit of a fixture copies its snapshot array into working.
Fixtures are keyed by id, never by position, so a reordered snapshot
loads the same way.
"""

from typing import Dict, List, Optional, Iterable, Sequence
import logging

from .types import (
    ChannelChange,
    ChannelDefinition,
    DEFAULT_CHANNEL,
    EditSessionState,
    FixtureSnapshot,
    UndoDelta,
    CellKey,
)
from .conversion import sparse_to_dense
from .errors import UnknownFixtureError, ChannelIndexError

logger = logging.getLogger(__name__)


class ChannelStore:
    """
    Dense channel-value repository over an EditSessionState.

    The store does not own the state object; EditSession does. Several
    components read the same state, the store is the only one writing
    channel values.
    """

    def __init__(self, state: EditSessionState):
        self.state = state

    # ─────────────────────────────────────────────────────────
    # Seeding
    # ─────────────────────────────────────────────────────────

    def seed(self, fixtures: Iterable[FixtureSnapshot]) -> None:
        """Replace the server snapshot with freshly fetched fixtures."""
        self.state.server_snapshot.clear()
        self.state.definitions.clear()
        self.state.order.clear()
        for fixture in fixtures:
            self.state.server_snapshot[fixture.fixture_id] = sparse_to_dense(
                fixture.sparse_channels, fixture.channel_count
            )
            self.state.definitions[fixture.fixture_id] = fixture.definitions()
            if fixture.fixture_id not in self.state.order:
                self.state.order.append(fixture.fixture_id)

    def add(
        self,
        fixture_id: str,
        channel_count: int,
        definitions: Optional[Sequence[ChannelDefinition]] = None,
    ) -> List[int]:
        """
        Add a fixture that is not in the snapshot yet.

        Values start at each channel's default. The fixture lives in working
        only, which makes the session dirty until it is saved.
        """
        defs = list(definitions or [])[:channel_count]
        while len(defs) < channel_count:
            defs.append(DEFAULT_CHANNEL)
        self.state.definitions[fixture_id] = defs
        values = [d.clamp(d.default_value) for d in defs]
        self.state.working[fixture_id] = values
        if fixture_id not in self.state.order:
            self.state.order.append(fixture_id)
        return list(values)

    def drop(self, fixture_id: str) -> None:
        """Forget working values for a fixture (snapshot untouched)."""
        self.state.working.pop(fixture_id, None)
        if fixture_id not in self.state.server_snapshot:
            self.state.definitions.pop(fixture_id, None)
            if fixture_id in self.state.order:
                self.state.order.remove(fixture_id)

    def discard(self) -> None:
        """Drop every working edit, including fixtures added this session."""
        for fixture_id in list(self.state.working):
            self.drop(fixture_id)

    def commit(self, saved: Dict[str, List[int]]) -> None:
        """
        Make saved values the new server snapshot and clear working.

        Fixtures missing from saved were removed by the save.
        """
        self.state.server_snapshot = {fid: list(values) for fid, values in saved.items()}
        self.state.working.clear()
        self.state.definitions = {
            fid: defs for fid, defs in self.state.definitions.items() if fid in saved
        }
        self.state.order = [fid for fid in self.state.order if fid in saved]

    # ─────────────────────────────────────────────────────────
    # Reads
    # ─────────────────────────────────────────────────────────

    def has(self, fixture_id: str) -> bool:
        return fixture_id in self.state.working or fixture_id in self.state.server_snapshot

    def _base(self, fixture_id: str) -> List[int]:
        values = self.state.working.get(fixture_id)
        if values is None:
            values = self.state.server_snapshot.get(fixture_id)
        if values is None:
            raise UnknownFixtureError(fixture_id)
        return values

    def get(self, fixture_id: str) -> List[int]:
        """Current dense values (copy). Raises UnknownFixtureError."""
        return list(self._base(fixture_id))

    def get_value(self, fixture_id: str, channel_index: int) -> int:
        values = self._base(fixture_id)
        self._check_index(fixture_id, channel_index, len(values))
        return values[channel_index]

    def channel_count(self, fixture_id: str) -> int:
        return len(self._base(fixture_id))

    def definition(self, fixture_id: str, channel_index: int) -> ChannelDefinition:
        defs = self.state.definitions.get(fixture_id)
        if defs and 0 <= channel_index < len(defs):
            return defs[channel_index]
        return DEFAULT_CHANNEL

    def definitions(self, fixture_id: str) -> List[ChannelDefinition]:
        count = self.channel_count(fixture_id)
        return [self.definition(fixture_id, i) for i in range(count)]

    def fixture_ids(self) -> List[str]:
        """Snapshot fixtures in load order, then fixtures added this session."""
        ids = [fid for fid in self.state.order if self.has(fid)]
        for fid in self.state.working:
            if fid not in ids:
                ids.append(fid)
        return ids

    def values(self) -> Dict[str, List[int]]:
        return {fid: self.get(fid) for fid in self.fixture_ids()}

    # ─────────────────────────────────────────────────────────
    # Writes
    # ─────────────────────────────────────────────────────────

    def _check_index(self, fixture_id: str, channel_index: int, count: int) -> None:
        if not 0 <= channel_index < count:
            raise ChannelIndexError(fixture_id, channel_index, count)

    def _writable(self, fixture_id: str) -> List[int]:
        values = self.state.working.get(fixture_id)
        if values is None:
            values = list(self._base(fixture_id))
            self.state.working[fixture_id] = values
        return values

    def set_channel(self, fixture_id: str, channel_index: int, value: int) -> int:
        """
        Write one channel, clamped to its declared range.

        Returns:
            The value actually stored

        Raises:
            UnknownFixtureError: fixture not loaded
            ChannelIndexError: channel_index out of range
        """
        count = len(self._base(fixture_id))
        self._check_index(fixture_id, channel_index, count)
        clamped = self.definition(fixture_id, channel_index).clamp(value)
        self._writable(fixture_id)[channel_index] = clamped
        return clamped

    def batch_set(self, changes: Iterable[ChannelChange]) -> List[UndoDelta]:
        """
        Apply several writes against one snapshot of prior state.

        Every change is validated before anything is written. The result has
        one delta per distinct cell: previous_value is the value before the
        batch, new_value the last value written to the cell.
        """
        changes = list(changes)
        for change in changes:
            count = len(self._base(change.fixture_id))
            self._check_index(change.fixture_id, change.channel_index, count)

        deltas: Dict[CellKey, UndoDelta] = {}
        for change in changes:
            if change.key not in deltas:
                deltas[change.key] = UndoDelta(
                    fixture_id=change.fixture_id,
                    channel_index=change.channel_index,
                    previous_value=self._base(change.fixture_id)[change.channel_index],
                    new_value=0,
                )

        for change in changes:
            deltas[change.key].new_value = self.set_channel(
                change.fixture_id, change.channel_index, change.value
            )

        logger.debug(f"Batch wrote {len(deltas)} cells across {len({k[0] for k in deltas})} fixtures")
        return list(deltas.values())
