"""
AETHER Look Editor - Channel editing engine for looks

This module holds the editing engine behind the look editor: working
channel values, active-channel membership for partial saves, coalescing
undo/redo, dirty tracking against the saved look, and debounced pushes to
a live preview session.

Key Components:
- EditSession: Unified edit API and lifecycle for one open look
- ChannelStore: Dense working values over the saved snapshot
- ActiveChannelTracker: Which channels get saved
- UndoStack: Coalescing, bounded undo/redo log
- DirtyStateComputer: Unsaved-change detection
- PreviewSync: Debounced/batched preview updates

Usage:
    from core.editing import EditSession, LookStoreBackend, ChannelChange

    backend = LookStoreBackend(look_store)
    session = await EditSession.open(look_id, backend, backend)
    session.set_channel_value("fx-1", 0, 255)
    await session.save()

Persistence:
    Looks store only active channels, as sparse (offset, value) entries.
    The engine works on dense arrays and converts at load and save.

Version: 0.1.0
"""

from .types import (
    ChannelType,
    ChannelDefinition,
    SparseEntry,
    ChannelChange,
    ActiveKind,
    ActiveSpec,
    ALL_ACTIVE,
    UndoActionKind,
    UndoDelta,
    ActiveDelta,
    UndoAction,
    FixtureSnapshot,
    EntitySnapshot,
    FixturePayload,
    SessionState,
    SaveStatus,
    EditSessionState,
)

from .errors import (
    EditorError,
    UnknownFixtureError,
    ChannelIndexError,
    SaveInProgressError,
    SaveFailedError,
    SessionClosedError,
    SessionNotLoadedError,
    SessionAlreadyOpenError,
    PreviewError,
    PersistenceError,
)
from .conversion import sparse_to_dense, dense_to_sparse, build_fixture_payload
from .channel_store import ChannelStore
from .active_channels import ActiveChannelTracker
from .undo import UndoStack
from .dirty_state import DirtyStateComputer
from .preview_sync import PreviewSync
from .clipboard import ChannelClipboard, ClipboardContent
from .channel_merging import MergedChannel, merge_fixture_channels, sort_merged_channels
from .backends import (
    SnapshotSource,
    LookPersistence,
    PreviewBackend,
    LookStoreBackend,
    PreviewServiceBackend,
)
from .session import EditSession

__all__ = [
    # Types
    "ChannelType",
    "ChannelDefinition",
    "SparseEntry",
    "ChannelChange",
    "ActiveKind",
    "ActiveSpec",
    "ALL_ACTIVE",
    "UndoActionKind",
    "UndoDelta",
    "ActiveDelta",
    "UndoAction",
    "FixtureSnapshot",
    "EntitySnapshot",
    "FixturePayload",
    "SessionState",
    "SaveStatus",
    "EditSessionState",
    # Errors
    "EditorError",
    "UnknownFixtureError",
    "ChannelIndexError",
    "SaveInProgressError",
    "SaveFailedError",
    "SessionClosedError",
    "SessionNotLoadedError",
    "SessionAlreadyOpenError",
    "PreviewError",
    "PersistenceError",
    # Conversion
    "sparse_to_dense",
    "dense_to_sparse",
    "build_fixture_payload",
    # Components
    "ChannelStore",
    "ActiveChannelTracker",
    "UndoStack",
    "DirtyStateComputer",
    "PreviewSync",
    "ChannelClipboard",
    "ClipboardContent",
    "MergedChannel",
    "merge_fixture_channels",
    "sort_merged_channels",
    # Backends
    "SnapshotSource",
    "LookPersistence",
    "PreviewBackend",
    "LookStoreBackend",
    "PreviewServiceBackend",
    # Session
    "EditSession",
]

__version__ = "0.1.0"
