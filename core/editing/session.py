"""
Edit Session - Unified edit API and lifecycle for one look

This module ties the editing components together. Every edit follows the
same order inside one call: ChannelStore mutation, then UndoStack push,
then PreviewSync scheduling. The undo log therefore never records a write
that did not happen.

Classes:
    EditSession: Orchestrator for one open look

Usage:
    session = await EditSession.open(
        "look_1700000000000", backend, backend, preview_backend=preview
    )

    session.set_channel_value("fx-1", 0, 255)
    session.batch_apply([ChannelChange("fx-1", 1, 128), ChannelChange("fx-2", 1, 128)])
    session.undo()

    await session.start_preview()
    await session.save()
    await session.close()

Events:
    session.on('changed', handler)        # any edit, undo, redo, discard
    session.on('save_status', handler)    # SaveStatus transitions
    session.on('preview_error', handler)  # preview push failures
"""

from typing import Dict, List, Optional, Callable, Any, Iterable, Sequence
import asyncio
import logging
import time

from .types import (
    ChannelChange,
    ChannelDefinition,
    ActiveSpec,
    ActiveDelta,
    UndoAction,
    UndoActionKind,
    UndoDelta,
    EditSessionState,
    FixturePayload,
    SessionState,
    SaveStatus,
)
from .errors import (
    ChannelIndexError,
    UnknownFixtureError,
    SaveInProgressError,
    SaveFailedError,
    SessionClosedError,
    SessionNotLoadedError,
    PreviewError,
)
from .backends import SnapshotSource, LookPersistence, PreviewBackend
from .channel_store import ChannelStore
from .active_channels import ActiveChannelTracker
from .undo import UndoStack
from .dirty_state import DirtyStateComputer
from .preview_sync import PreviewSync, DEFAULT_DEBOUNCE_MS
from .clipboard import ChannelClipboard, ClipboardContent
from .conversion import build_fixture_payload
from .channel_merging import MergedChannel, merge_fixture_channels, sort_merged_channels

logger = logging.getLogger(__name__)

SAVED_RESET_S = 2.0
ERROR_RESET_S = 3.0


def _monotonic_ms() -> float:
    return time.monotonic() * 1000.0


class EditSession:
    """
    Editing state machine for one look.

    The session owns its EditSessionState exclusively. Collaborators are
    injected: a snapshot source, a persistence target and, optionally, a
    preview backend. The undo stack and clipboard may be injected too, so
    a parent editor and a child view can share one history.

    Attributes:
        entity_id: Look being edited
        project_id: Project of the look (used to start preview sessions)
        undo_stack: Undo history, possibly shared
        clipboard: Copy buffer, possibly shared
        save_status: Indicator for the last save
    """

    def __init__(
        self,
        entity_id: str,
        snapshot_source: SnapshotSource,
        persistence: LookPersistence,
        preview_backend: Optional[PreviewBackend] = None,
        undo_stack: Optional[UndoStack] = None,
        clipboard: Optional[ChannelClipboard] = None,
        clock: Callable[[], float] = _monotonic_ms,
        debounce_ms: float = DEFAULT_DEBOUNCE_MS,
        saved_reset_s: float = SAVED_RESET_S,
        error_reset_s: float = ERROR_RESET_S,
    ):
        self.entity_id = entity_id
        self.project_id: Optional[str] = None
        self.name = ""

        self.snapshot_source = snapshot_source
        self.persistence = persistence
        self.preview_backend = preview_backend

        self.state = EditSessionState()
        self.store = ChannelStore(self.state)
        self.tracker = ActiveChannelTracker(self.state)
        self.undo_stack = undo_stack if undo_stack is not None else UndoStack()
        self.clipboard = clipboard if clipboard is not None else ChannelClipboard()
        self.preview = PreviewSync(preview_backend, debounce_ms=debounce_ms)
        self.preview.on_error(lambda message: self._emit("preview_error", message))

        self._dirty = DirtyStateComputer()
        self._clock = clock
        self._saved_reset_s = saved_reset_s
        self._error_reset_s = error_reset_s

        self.save_status = SaveStatus.IDLE
        self.last_save_error: Optional[str] = None
        self._saving = False
        self._loaded = False
        self._closed = False
        self._status_timer: Optional[asyncio.TimerHandle] = None

        self._callbacks: Dict[str, List[Callable]] = {}

    @classmethod
    async def open(
        cls,
        entity_id: str,
        snapshot_source: SnapshotSource,
        persistence: LookPersistence,
        **kwargs: Any,
    ) -> "EditSession":
        """Create a session and load its snapshot."""
        session = cls(entity_id, snapshot_source, persistence, **kwargs)
        await session.load()
        return session

    # ─────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────

    async def load(self) -> None:
        """
        Fetch the look and seed the snapshot and baseline membership.

        Membership for every fetched fixture is taken from its sparse
        entries, so a fixture stored with no channels loads with none active.
        """
        self._check_open()
        snapshot = await self.snapshot_source.fetch(self.entity_id)

        self.project_id = snapshot.project_id
        self.name = snapshot.name
        self.state.working.clear()
        self.state.removed.clear()
        self.state.active.clear()
        self.state.initial_active.clear()
        self.store.seed(snapshot.fixtures)
        for fixture in snapshot.fixtures:
            self.tracker.initialize_from_sparse(fixture.fixture_id, fixture.sparse_channels)
        self.undo_stack.clear()
        self._loaded = True

        logger.info(f"Loaded look {self.entity_id} with {len(snapshot.fixtures)} fixtures")

    async def close(self) -> None:
        """
        Tear the session down.

        Cancels the debounce and save-status timers and makes a best-effort
        preview cancel. Always completes; a failing cancel is only logged.
        """
        if self._closed:
            return
        self._closed = True
        self._cancel_status_timer()

        session_id = self.preview.session_id
        self.preview.close()
        if session_id and self.preview_backend is not None:
            try:
                await self.preview_backend.cancel(session_id)
            except Exception as e:
                logger.warning(f"Failed to cancel preview session {session_id}: {e}")

        logger.info(f"Closed edit session for {self.entity_id}")
        self._emit("closed", self.entity_id)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def loaded(self) -> bool:
        return self._loaded

    @property
    def session_state(self) -> SessionState:
        """Lifecycle state derived from flags, highest priority first."""
        if self._closed:
            return SessionState.CLOSED
        if not self._loaded:
            return SessionState.LOADING
        if self._saving:
            return SessionState.SAVING
        if self.save_status == SaveStatus.ERROR:
            return SessionState.ERROR
        if self.preview.active:
            return SessionState.PREVIEW_ACTIVE
        if self.is_dirty():
            return SessionState.EDITING
        return SessionState.READY

    def _check_open(self) -> None:
        if self._closed:
            raise SessionClosedError(f"Edit session for {self.entity_id} is closed")

    def _check_ready(self) -> None:
        self._check_open()
        if not self._loaded:
            raise SessionNotLoadedError(f"Edit session for {self.entity_id} is still loading")

    def _check_editable(self) -> None:
        # save() commits the values captured before its await
        self._check_ready()
        if self._saving:
            raise SaveInProgressError(f"Cannot edit {self.entity_id} while saving")

    def _check_not_removed(self, fixture_id: str) -> None:
        if fixture_id in self.state.removed:
            raise UnknownFixtureError(fixture_id)

    # ─────────────────────────────────────────────────────────
    # Reads
    # ─────────────────────────────────────────────────────────

    def get(self, fixture_id: str) -> List[int]:
        """Current dense values for a fixture."""
        self._check_ready()
        return self.store.get(fixture_id)

    def fixture_ids(self) -> List[str]:
        return self.store.fixture_ids()

    def is_channel_active(self, fixture_id: str, channel_index: int) -> bool:
        return self.tracker.is_active(fixture_id, channel_index)

    def active_spec(self, fixture_id: str) -> ActiveSpec:
        return self.tracker.spec(fixture_id)

    def is_dirty(self) -> bool:
        return self._dirty.is_dirty(self.state)

    def dirty_fixtures(self) -> List[str]:
        return self._dirty.dirty_fixtures(self.state)

    @property
    def can_undo(self) -> bool:
        return self.undo_stack.can_undo

    @property
    def can_redo(self) -> bool:
        return self.undo_stack.can_redo

    def peek_undo(self) -> Optional[UndoAction]:
        return self.undo_stack.peek_undo()

    def peek_redo(self) -> Optional[UndoAction]:
        return self.undo_stack.peek_redo()

    @property
    def preview_error(self) -> Optional[str]:
        return self.preview.last_error

    # ─────────────────────────────────────────────────────────
    # Channel Edits
    # ─────────────────────────────────────────────────────────

    def set_channel_value(self, fixture_id: str, channel_index: int, value: int) -> int:
        """
        Write one channel and record it for undo.

        Rapid writes to the same channel coalesce into one undo step. Preview
        is debounced, so a fader drag sends one update per quiet period.

        Returns:
            The clamped value actually stored

        Raises:
            UnknownFixtureError: fixture not in the look, or removed
            ChannelIndexError: channel_index out of range
            SaveInProgressError: a save is running
        """
        self._check_editable()
        self._check_not_removed(fixture_id)
        previous = self.store.get_value(fixture_id, channel_index)
        stored = self.store.set_channel(fixture_id, channel_index, value)

        self.undo_stack.push(UndoAction(
            kind=UndoActionKind.CHANNEL_CHANGE,
            deltas=[UndoDelta(fixture_id, channel_index, previous, stored)],
            timestamp=self._clock(),
            description=f"Set {fixture_id} channel {channel_index + 1} to {stored}",
        ))
        self.preview.schedule_debounced([ChannelChange(fixture_id, channel_index, stored)])

        logger.debug(f"{self.entity_id}: {fixture_id}[{channel_index}] {previous} -> {stored}")
        self._emit("changed", self.entity_id)
        return stored

    def batch_apply(self, changes: Iterable[ChannelChange]) -> List[UndoDelta]:
        """
        Apply several writes as one undo step.

        Previous values are captured before any write in the batch. Preview
        gets the whole batch immediately.
        """
        self._check_editable()
        changes = list(changes)
        for change in changes:
            self._check_not_removed(change.fixture_id)
        deltas = self.store.batch_set(changes)
        if not deltas:
            return []

        self.undo_stack.push(UndoAction(
            kind=UndoActionKind.BATCH_CHANGE,
            deltas=deltas,
            timestamp=self._clock(),
            description=f"Change {len(deltas)} channels",
        ))
        self.preview.send_batched_immediate(self._changes_from(deltas, redo=True))

        self._emit("changed", self.entity_id)
        return deltas

    def apply_without_undo(
        self,
        changes: Iterable[ChannelChange],
        immediate: bool = False,
    ) -> List[UndoDelta]:
        """
        Write values without touching undo history.

        Used for intermediate drag positions (the final position goes through
        batch_apply) and by a child view replaying actions it popped from a
        shared undo stack.
        """
        self._check_editable()
        changes = list(changes)
        for change in changes:
            self._check_not_removed(change.fixture_id)
        deltas = self.store.batch_set(changes)
        updates = self._changes_from(deltas, redo=True)
        if immediate:
            self.preview.send_batched_immediate(updates)
        else:
            self.preview.schedule_debounced(updates)
        if deltas:
            self._emit("changed", self.entity_id)
        return deltas

    @staticmethod
    def _changes_from(deltas: Sequence[UndoDelta], redo: bool) -> List[ChannelChange]:
        return [
            ChannelChange(d.fixture_id, d.channel_index, d.new_value if redo else d.previous_value)
            for d in deltas
        ]

    # ─────────────────────────────────────────────────────────
    # Active Channels
    # ─────────────────────────────────────────────────────────

    def toggle_channel_active(
        self,
        fixture_id: str,
        channel_index: int,
        is_active: Optional[bool] = None,
    ) -> ActiveSpec:
        """
        Mark a channel as saved (active) or left alone (inactive).

        Args:
            is_active: Target state; None flips the current state

        Returns:
            Fixture membership after the change
        """
        self._check_editable()
        self._check_not_removed(fixture_id)
        count = self.store.channel_count(fixture_id)
        if not 0 <= channel_index < count:
            raise ChannelIndexError(fixture_id, channel_index, count)
        if is_active is None:
            is_active = not self.tracker.is_active(fixture_id, channel_index)

        previous = self.tracker.spec(fixture_id)
        current = self.tracker.set_active(fixture_id, channel_index, is_active, count)
        if current == previous:
            return current

        self.undo_stack.push(UndoAction(
            kind=UndoActionKind.ACTIVE_TOGGLE,
            active_deltas=[ActiveDelta(fixture_id, previous, current, channel_index)],
            timestamp=self._clock(),
            description=f"{'Enable' if is_active else 'Disable'} {fixture_id} channel {channel_index + 1}",
        ))
        self._emit("changed", self.entity_id)
        return current

    # ─────────────────────────────────────────────────────────
    # Clipboard
    # ─────────────────────────────────────────────────────────

    def copy(self, fixture_id: str) -> ClipboardContent:
        """Copy a fixture's values and membership to the clipboard."""
        self._check_ready()
        values = self.store.get(fixture_id)
        return self.clipboard.copy(fixture_id, values, self.tracker.members(fixture_id))

    def paste(self, target_ids: Sequence[str]) -> Optional[UndoAction]:
        """
        Paste the clipboard onto each target fixture as one undo step.

        Each target receives min(copied length, its channel count) values.
        When the copied fixture had explicit membership, each target's
        membership becomes the copied members that exist on the target.
        Copied from an all-active fixture, target membership is left alone.

        Returns:
            The recorded action, or None if the clipboard is empty or
            nothing was pasted
        """
        self._check_editable()
        content = self.clipboard.content
        if content is None:
            return None

        counts = {
            fid: self.store.channel_count(fid)
            for fid in target_ids
            if fid not in self.state.removed
        }

        changes: List[ChannelChange] = []
        for fixture_id, count in counts.items():
            limit = min(len(content.values), count)
            changes.extend(
                ChannelChange(fixture_id, i, content.values[i]) for i in range(limit)
            )

        active_deltas: List[ActiveDelta] = []
        if content.active is not None:
            for fixture_id, count in counts.items():
                limit = min(len(content.values), count)
                previous = self.tracker.spec(fixture_id)
                current = ActiveSpec.explicit(i for i in content.active if i < limit)
                if current != previous:
                    active_deltas.append(ActiveDelta(fixture_id, previous, current))

        deltas = self.store.batch_set(changes)
        for delta in active_deltas:
            self.tracker.restore(delta.fixture_id, delta.new)

        if not deltas and not active_deltas:
            return None

        action = UndoAction(
            kind=UndoActionKind.PASTE,
            deltas=deltas,
            active_deltas=active_deltas,
            timestamp=self._clock(),
            description=f"Paste {content.source_fixture_id} to {len(counts)} fixtures",
        )
        self.undo_stack.push(action)
        self.preview.send_batched_immediate(self._changes_from(deltas, redo=True))

        self._emit("changed", self.entity_id)
        return action

    # ─────────────────────────────────────────────────────────
    # Fixture Membership of the Look
    # ─────────────────────────────────────────────────────────

    def add_fixture(
        self,
        fixture_id: str,
        channel_count: int,
        definitions: Optional[Sequence[ChannelDefinition]] = None,
    ) -> List[int]:
        """
        Add a fixture to the look, starting at its channel defaults.

        Every channel of the new fixture is active. Re-adding a removed
        fixture brings it back with fresh default values.
        """
        self._check_editable()
        if channel_count < 0:
            raise ValueError(f"channel_count must not be negative: {channel_count}")
        if self.store.has(fixture_id) and fixture_id not in self.state.removed:
            raise ValueError(f"Fixture already in look: {fixture_id}")

        self.state.removed.discard(fixture_id)
        values = self.store.add(fixture_id, channel_count, definitions)
        self.tracker.forget(fixture_id)
        self.preview.send_batched_immediate(
            [ChannelChange(fixture_id, i, v) for i, v in enumerate(values)]
        )

        logger.info(f"{self.entity_id}: added fixture {fixture_id} ({channel_count} channels)")
        self._emit("changed", self.entity_id)
        return values

    def delete_fixture_values(self, fixture_id: str) -> None:
        """
        Drop a fixture's working values.

        For a fixture added this session this takes it back out of the
        look. For a saved fixture it reverts the values to the snapshot.
        """
        self._check_editable()
        added = fixture_id not in self.state.server_snapshot
        self.store.drop(fixture_id)
        if added:
            self.tracker.forget(fixture_id)
        self._emit("changed", self.entity_id)

    def remove_fixture(self, fixture_id: str) -> None:
        """
        Remove a fixture from the look on next save.

        Working values and membership are freed, not hidden, so nothing
        stale comes back with unremove_fixture().
        """
        self._check_editable()
        if not self.store.has(fixture_id):
            raise UnknownFixtureError(fixture_id)

        if fixture_id in self.state.server_snapshot:
            self.state.removed.add(fixture_id)
        self.store.drop(fixture_id)
        self.tracker.forget(fixture_id)

        logger.info(f"{self.entity_id}: removed fixture {fixture_id}")
        self._emit("changed", self.entity_id)

    def unremove_fixture(self, fixture_id: str) -> bool:
        """
        Take a fixture back off the removal list.

        Membership is rebuilt as every channel active only when working
        values exist for it; otherwise it stays untracked, which also
        means all active.

        Returns:
            False if the fixture was not removed
        """
        self._check_editable()
        if fixture_id not in self.state.removed:
            return False

        self.state.removed.discard(fixture_id)
        cached = self.state.working.get(fixture_id)
        if cached:
            self.tracker.restore(fixture_id, ActiveSpec.explicit(range(len(cached))))

        self._emit("changed", self.entity_id)
        return True

    @property
    def removed_fixtures(self) -> List[str]:
        return sorted(self.state.removed)

    # ─────────────────────────────────────────────────────────
    # Undo / Redo
    # ─────────────────────────────────────────────────────────

    def undo(self) -> Optional[UndoAction]:
        """Revert the newest action. None when there is nothing to undo."""
        self._check_editable()
        action = self.undo_stack.undo()
        if action is not None:
            self._replay(action, redo=False)
        return action

    def redo(self) -> Optional[UndoAction]:
        """Re-apply the newest undone action. None when there is nothing to redo."""
        self._check_editable()
        action = self.undo_stack.redo()
        if action is not None:
            self._replay(action, redo=True)
        return action

    def _replay(self, action: UndoAction, redo: bool) -> None:
        # History may still mention fixtures removed since the action was recorded
        deltas = [d for d in action.deltas if self.store.has(d.fixture_id)]
        skipped = len(action.deltas) - len(deltas)
        if skipped:
            logger.debug(f"{self.entity_id}: skipped {skipped} deltas for fixtures no longer loaded")

        for delta in deltas:
            self.store.set_channel(
                delta.fixture_id,
                delta.channel_index,
                delta.new_value if redo else delta.previous_value,
            )
        # Membership only for fixtures still in the look
        active_deltas = [
            d for d in action.active_deltas
            if self.store.has(d.fixture_id) and d.fixture_id not in self.state.removed
        ]
        for active_delta in active_deltas:
            self.tracker.restore(
                active_delta.fixture_id,
                active_delta.new if redo else active_delta.previous,
            )

        self.preview.send_batched_immediate(self._changes_from(deltas, redo=redo))
        self._emit("changed", self.entity_id)

    # ─────────────────────────────────────────────────────────
    # Save / Discard
    # ─────────────────────────────────────────────────────────

    def build_payload(self) -> List[FixturePayload]:
        """Sparse, membership-filtered payload for every fixture not removed."""
        return [
            build_fixture_payload(
                fixture_id,
                self.store.get(fixture_id),
                self.tracker.members(fixture_id),
            )
            for fixture_id in self.store.fixture_ids()
            if fixture_id not in self.state.removed
        ]

    async def save(self) -> List[FixturePayload]:
        """
        Persist the look.

        Not reentrant: a call while a save is running raises
        SaveInProgressError. On failure nothing local changes, the save
        status shows ERROR for a few seconds and SaveFailedError is raised.

        Returns:
            The payload that was saved
        """
        self._check_ready()
        if self._saving:
            raise SaveInProgressError(f"Save already in progress for {self.entity_id}")

        self._saving = True
        self._set_save_status(SaveStatus.SAVING)
        try:
            payload = self.build_payload()
            saved_values = {
                fixture_id: self.store.get(fixture_id)
                for fixture_id in self.store.fixture_ids()
                if fixture_id not in self.state.removed
            }
            try:
                ok = await self.persistence.save(self.entity_id, payload)
            except Exception as e:
                self._fail_save(str(e) or e.__class__.__name__)
                raise SaveFailedError(f"Failed to save {self.entity_id}: {e}") from e
            if not ok:
                self._fail_save("Look store rejected the save")
                raise SaveFailedError(f"Failed to save {self.entity_id}")

            self.store.commit(saved_values)
            self.state.removed.clear()
            self.tracker.mark_baseline()
            self.undo_stack.clear()
            self.last_save_error = None
            self._set_save_status(SaveStatus.SAVED, reset_after=self._saved_reset_s)

            logger.info(f"Saved look {self.entity_id} ({len(payload)} fixtures)")
            return payload
        finally:
            self._saving = False

    def _fail_save(self, message: str) -> None:
        self.last_save_error = message
        logger.warning(f"Save failed for {self.entity_id}: {message}")
        self._set_save_status(SaveStatus.ERROR, reset_after=self._error_reset_s)

    def discard(self) -> None:
        """Drop every unsaved edit and the undo history."""
        self._check_editable()

        touched = list(self.state.working)
        self.store.discard()
        self.state.removed.clear()
        self.tracker.reset_to_baseline()
        self.undo_stack.clear()

        # Push snapshot values back to preview for fixtures that had edits
        restore: List[ChannelChange] = []
        for fixture_id in touched:
            if self.store.has(fixture_id):
                restore.extend(
                    ChannelChange(fixture_id, i, v)
                    for i, v in enumerate(self.store.get(fixture_id))
                )
        self.preview.send_batched_immediate(restore)

        logger.info(f"Discarded edits for {self.entity_id}")
        self._emit("changed", self.entity_id)

    # ─────────────────────────────────────────────────────────
    # Save Status
    # ─────────────────────────────────────────────────────────

    def _set_save_status(self, status: SaveStatus, reset_after: Optional[float] = None) -> None:
        self._cancel_status_timer()
        self.save_status = status
        if reset_after is not None:
            loop = asyncio.get_running_loop()
            self._status_timer = loop.call_later(reset_after, self._reset_save_status)
        self._emit("save_status", status)

    def _reset_save_status(self) -> None:
        self._status_timer = None
        self.save_status = SaveStatus.IDLE
        self._emit("save_status", SaveStatus.IDLE)

    def _cancel_status_timer(self) -> None:
        if self._status_timer is not None:
            self._status_timer.cancel()
            self._status_timer = None

    # ─────────────────────────────────────────────────────────
    # Preview
    # ─────────────────────────────────────────────────────────

    async def start_preview(self) -> str:
        """
        Start live preview for this look.

        The preview session is seeded from the saved look in one call, then
        unsaved working values are pushed on top.

        Returns:
            Preview session id

        Raises:
            PreviewError: no preview backend, or the backend failed to start
        """
        self._check_ready()
        if self.preview.active:
            return self.preview.session_id
        if self.preview_backend is None:
            raise PreviewError("No preview backend configured")

        try:
            session_id = await self.preview_backend.start(self.project_id or "")
        except Exception as e:
            self.preview.last_error = str(e)
            logger.warning(f"Failed to start preview for {self.entity_id}: {e}")
            raise PreviewError(f"Failed to start preview: {e}") from e

        self.preview.attach(session_id)
        try:
            await self.preview_backend.initialize_from_entity(session_id, self.entity_id)
        except Exception as e:
            self.preview.last_error = f"Failed to initialize preview: {e}"
            logger.warning(self.preview.last_error)

        unsaved = [
            ChannelChange(fixture_id, i, v)
            for fixture_id, values in self.state.working.items()
            if fixture_id not in self.state.removed
            for i, v in enumerate(values)
        ]
        self.preview.send_batched_immediate(unsaved)

        logger.info(f"Preview started for {self.entity_id} ({session_id})")
        self._emit("changed", self.entity_id)
        return session_id

    async def stop_preview(self) -> bool:
        """
        Stop live preview. A failing cancel is recorded as a preview error.

        Returns:
            False if preview was not running
        """
        self._check_open()
        session_id = self.preview.detach()
        if session_id is None:
            return False

        await self.preview.drain()
        try:
            await self.preview_backend.cancel(session_id)
        except Exception as e:
            self.preview.last_error = f"Failed to cancel preview: {e}"
            logger.warning(self.preview.last_error)
        else:
            self.preview.clear_error()

        logger.info(f"Preview stopped for {self.entity_id}")
        self._emit("changed", self.entity_id)
        return True

    # ─────────────────────────────────────────────────────────
    # Multi-select
    # ─────────────────────────────────────────────────────────

    def merged_channels(self, fixture_ids: Sequence[str]) -> List[MergedChannel]:
        """Channels of the selected fixtures grouped by type, in display order."""
        self._check_ready()
        definitions = {fid: self.store.definitions(fid) for fid in fixture_ids}
        values = {fid: self.store.get(fid) for fid in fixture_ids}
        return sort_merged_channels(list(merge_fixture_channels(definitions, values).values()))

    def set_merged_channel(self, merged: MergedChannel, value: int) -> List[UndoDelta]:
        """Set every channel in a merged group as one undo step."""
        return self.batch_apply(merged.changes_for(value))

    # ─────────────────────────────────────────────────────────
    # Serialization
    # ─────────────────────────────────────────────────────────

    def to_dict(self) -> Dict[str, Any]:
        fixtures = []
        if self._loaded:
            for fixture_id in self.store.fixture_ids():
                fixtures.append({
                    "fixture_id": fixture_id,
                    "values": self.store.get(fixture_id),
                    "active": self.tracker.spec(fixture_id).to_dict(),
                    "channels": [d.to_dict() for d in self.store.definitions(fixture_id)],
                    "removed": fixture_id in self.state.removed,
                })

        top = self.undo_stack.peek_undo()
        return {
            "look_id": self.entity_id,
            "project_id": self.project_id,
            "name": self.name,
            "state": self.session_state.value,
            "dirty": self._loaded and not self._closed and self.is_dirty(),
            "dirty_fixtures": self.dirty_fixtures() if self._loaded else [],
            "removed_fixtures": self.removed_fixtures,
            "save_status": self.save_status.value,
            "save_error": self.last_save_error,
            "preview_session_id": self.preview.session_id,
            "preview_error": self.preview.last_error,
            "can_undo": self.can_undo,
            "can_redo": self.can_redo,
            "undo_description": top.description if top else None,
            "clipboard": self.clipboard.content.source_fixture_id if self.clipboard.content else None,
            "fixtures": fixtures,
        }

    # ─────────────────────────────────────────────────────────
    # Event System
    # ─────────────────────────────────────────────────────────

    def on(self, event: str, callback: Callable) -> None:
        """
        Register an event callback.

        Events:
            changed: (entity_id)
            save_status: (SaveStatus)
            preview_error: (message)
            closed: (entity_id)
        """
        if event not in self._callbacks:
            self._callbacks[event] = []
        self._callbacks[event].append(callback)

    def off(self, event: str, callback: Callable) -> None:
        if event in self._callbacks:
            self._callbacks[event] = [cb for cb in self._callbacks[event] if cb != callback]

    def _emit(self, event: str, data: Any) -> None:
        for callback in self._callbacks.get(event, []):
            try:
                callback(data)
            except Exception as e:
                logger.error(f"Error in {event} callback: {e}")
