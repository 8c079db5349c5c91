"""
Look Editor Type Definitions - Dataclasses for Channel Editing

This module contains the data containers shared by the editing engine.
They carry no behaviour beyond small conversions and serialization.

Classes:
    ChannelDefinition: Per-channel metadata (name, type, clamp bounds, default)
    SparseEntry: One persisted (offset, value) pair
    ChannelChange: One requested write (fixture, channel, value)
    ActiveSpec: Active-channel membership (all active or explicit set)
    UndoDelta: Before/after pair for one channel cell
    ActiveDelta: Before/after membership for one fixture
    UndoAction: Smallest reversible unit on the undo stack
    FixtureSnapshot: One fixture as fetched from the look store
    EntitySnapshot: A fetched look/scene
    FixturePayload: One fixture as sent to the look store on save
    EditSessionState: Mutable state owned by one EditSession

Enums:
    ChannelType: Channel function, used for multi-select grouping
    ActiveKind: Tag for ActiveSpec
    UndoActionKind: What produced an UndoAction
    SessionState: EditSession lifecycle state
    SaveStatus: Save indicator shown to the operator
"""

from dataclasses import dataclass, field
from typing import Optional, List, Dict, Any, Iterable, FrozenSet, Set, Tuple
from enum import Enum


DEFAULT_MIN_VALUE = 0
DEFAULT_MAX_VALUE = 255

# (fixture_id, channel_index)
CellKey = Tuple[str, int]


# ============================================================
# Channel Metadata
# ============================================================

class ChannelType(Enum):
    """Channel function as declared by the fixture profile."""
    INTENSITY = "INTENSITY"
    RED = "RED"
    GREEN = "GREEN"
    BLUE = "BLUE"
    WHITE = "WHITE"
    AMBER = "AMBER"
    UV = "UV"
    PAN = "PAN"
    TILT = "TILT"
    ZOOM = "ZOOM"
    FOCUS = "FOCUS"
    IRIS = "IRIS"
    GOBO = "GOBO"
    COLOR_WHEEL = "COLOR_WHEEL"
    EFFECT = "EFFECT"
    STROBE = "STROBE"
    MACRO = "MACRO"
    OTHER = "OTHER"

    @classmethod
    def parse(cls, value: Optional[str]) -> "ChannelType":
        """Parse a profile string, falling back to OTHER."""
        if not value:
            return cls.OTHER
        try:
            return cls(str(value).upper())
        except ValueError:
            return cls.OTHER


@dataclass(frozen=True)
class ChannelDefinition:
    """
    Metadata for one fixture channel.

    Attributes:
        name: Display name ("Dimmer", "Red", ...)
        type: Channel function
        min_value: Lowest value a write is clamped to
        max_value: Highest value a write is clamped to
        default_value: Value a newly added fixture starts at
    """
    name: str = ""
    type: ChannelType = ChannelType.OTHER
    min_value: int = DEFAULT_MIN_VALUE
    max_value: int = DEFAULT_MAX_VALUE
    default_value: int = 0

    def clamp(self, value: int) -> int:
        return max(self.min_value, min(self.max_value, int(value)))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "type": self.type.value,
            "min_value": self.min_value,
            "max_value": self.max_value,
            "default_value": self.default_value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChannelDefinition":
        return cls(
            name=data.get("name", ""),
            type=ChannelType.parse(data.get("type")),
            min_value=int(data.get("min_value", DEFAULT_MIN_VALUE)),
            max_value=int(data.get("max_value", DEFAULT_MAX_VALUE)),
            default_value=int(data.get("default_value", 0)),
        )


DEFAULT_CHANNEL = ChannelDefinition()


@dataclass(frozen=True)
class SparseEntry:
    """A persisted channel value. Only active channels are stored."""
    offset: int
    value: int

    def to_dict(self) -> Dict[str, int]:
        return {"offset": self.offset, "value": self.value}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SparseEntry":
        return cls(offset=int(data["offset"]), value=int(data["value"]))


@dataclass(frozen=True)
class ChannelChange:
    """A requested write of one channel value."""
    fixture_id: str
    channel_index: int
    value: int

    @property
    def key(self) -> CellKey:
        return (self.fixture_id, self.channel_index)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChannelChange":
        return cls(
            fixture_id=str(data["fixture_id"]),
            channel_index=int(data["channel_index"]),
            value=int(data["value"]),
        )


# ============================================================
# Active Channel Membership
# ============================================================

class ActiveKind(Enum):
    ALL = "all"
    EXPLICIT = "explicit"


@dataclass(frozen=True)
class ActiveSpec:
    """
    Which channels of a fixture are saved.

    ALL is the default for a fixture nobody has touched. EXPLICIT carries
    the member set, which may be empty (nothing is saved for the fixture).
    """
    kind: ActiveKind = ActiveKind.ALL
    channels: FrozenSet[int] = frozenset()

    @classmethod
    def all_active(cls) -> "ActiveSpec":
        return cls(ActiveKind.ALL, frozenset())

    @classmethod
    def explicit(cls, channels: Iterable[int]) -> "ActiveSpec":
        return cls(ActiveKind.EXPLICIT, frozenset(int(c) for c in channels))

    @property
    def is_all(self) -> bool:
        return self.kind == ActiveKind.ALL

    def contains(self, channel_index: int) -> bool:
        return self.is_all or channel_index in self.channels

    def to_dict(self) -> Dict[str, Any]:
        if self.is_all:
            return {"kind": self.kind.value, "channels": None}
        return {"kind": self.kind.value, "channels": sorted(self.channels)}


ALL_ACTIVE = ActiveSpec.all_active()


# ============================================================
# Undo Records
# ============================================================

class UndoActionKind(Enum):
    CHANNEL_CHANGE = "CHANNEL_CHANGE"
    BATCH_CHANGE = "BATCH_CHANGE"
    ACTIVE_TOGGLE = "ACTIVE_TOGGLE"
    PASTE = "PASTE"


@dataclass
class UndoDelta:
    """Before/after values of one channel cell."""
    fixture_id: str
    channel_index: int
    previous_value: int
    new_value: int

    @property
    def key(self) -> CellKey:
        return (self.fixture_id, self.channel_index)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fixture_id": self.fixture_id,
            "channel_index": self.channel_index,
            "previous_value": self.previous_value,
            "new_value": self.new_value,
        }


@dataclass
class ActiveDelta:
    """
    Before/after membership of one fixture.

    channel_index names the toggled channel for ACTIVE_TOGGLE actions;
    it is None when the whole membership was replaced (paste).
    """
    fixture_id: str
    previous: ActiveSpec
    new: ActiveSpec
    channel_index: Optional[int] = None

    @property
    def key(self) -> Tuple[str, str, Optional[int]]:
        return ("active", self.fixture_id, self.channel_index)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fixture_id": self.fixture_id,
            "channel_index": self.channel_index,
            "previous": self.previous.to_dict(),
            "new": self.new.to_dict(),
        }


@dataclass
class UndoAction:
    """
    Smallest reversible unit of editing.

    Attributes:
        kind: What produced the action
        deltas: Channel value changes, applied in stored order
        timestamp: Milliseconds on the session clock, refreshed on coalesce
        active_deltas: Membership changes made by the same gesture
        description: Short label for history UI
    """
    kind: UndoActionKind
    deltas: List[UndoDelta] = field(default_factory=list)
    timestamp: float = 0.0
    active_deltas: List[ActiveDelta] = field(default_factory=list)
    description: str = ""

    def addressed_cells(self) -> Set[Any]:
        """Every (fixture, channel) pair and membership slot this action touches."""
        cells: Set[Any] = {d.key for d in self.deltas}
        cells.update(d.key for d in self.active_deltas)
        return cells

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "timestamp": self.timestamp,
            "description": self.description,
            "deltas": [d.to_dict() for d in self.deltas],
            "active_deltas": [d.to_dict() for d in self.active_deltas],
        }


# ============================================================
# Snapshots & Payloads
# ============================================================

@dataclass
class FixtureSnapshot:
    """One fixture of a look as stored: sparse values plus channel metadata."""
    fixture_id: str
    channel_count: int
    sparse_channels: List[SparseEntry] = field(default_factory=list)
    channels: Optional[List[ChannelDefinition]] = None

    def definitions(self) -> List[ChannelDefinition]:
        """Channel definitions padded to channel_count with defaults."""
        defs = list(self.channels or [])[: self.channel_count]
        while len(defs) < self.channel_count:
            defs.append(DEFAULT_CHANNEL)
        return defs

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fixture_id": self.fixture_id,
            "channel_count": self.channel_count,
            "sparse_channels": [e.to_dict() for e in self.sparse_channels],
            "channels": [c.to_dict() for c in self.channels] if self.channels is not None else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FixtureSnapshot":
        channels = data.get("channels")
        return cls(
            fixture_id=str(data["fixture_id"]),
            channel_count=int(data.get("channel_count", 0)),
            sparse_channels=[SparseEntry.from_dict(e) for e in data.get("sparse_channels", [])],
            channels=[ChannelDefinition.from_dict(c) for c in channels] if channels is not None else None,
        )


@dataclass
class EntitySnapshot:
    """A look (or scene) as fetched for editing."""
    entity_id: str
    fixtures: List[FixtureSnapshot] = field(default_factory=list)
    project_id: Optional[str] = None
    name: str = ""


@dataclass
class FixturePayload:
    """One fixture's persisted channels, already filtered by membership."""
    fixture_id: str
    channels: List[SparseEntry] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fixture_id": self.fixture_id,
            "channels": [e.to_dict() for e in self.channels],
        }


# ============================================================
# Session State
# ============================================================

class SessionState(Enum):
    LOADING = "loading"
    READY = "ready"
    EDITING = "editing"
    PREVIEW_ACTIVE = "preview_active"
    SAVING = "saving"
    ERROR = "error"
    CLOSED = "closed"


class SaveStatus(Enum):
    IDLE = "idle"
    SAVING = "saving"
    SAVED = "saved"
    ERROR = "error"


@dataclass
class EditSessionState:
    """
    Mutable editing state for one entity.

    working holds only fixtures that were edited (copy-on-write); readers
    fall back to server_snapshot. active holds explicit membership only;
    a fixture missing from it has every channel active.
    """
    working: Dict[str, List[int]] = field(default_factory=dict)
    server_snapshot: Dict[str, List[int]] = field(default_factory=dict)
    definitions: Dict[str, List[ChannelDefinition]] = field(default_factory=dict)
    active: Dict[str, FrozenSet[int]] = field(default_factory=dict)
    initial_active: Dict[str, FrozenSet[int]] = field(default_factory=dict)
    removed: Set[str] = field(default_factory=set)
    order: List[str] = field(default_factory=list)
