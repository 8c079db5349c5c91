"""
Undo Stack - Coalescing, bounded undo/redo log

Actions are stored as deltas rather than full copies of state. A burst of
writes to the same cells (a fader drag) collapses into one action as long
as each write lands inside the coalesce window of the previous one.

One stack may be shared by a parent editor and a child view: the child
peeks to decide whether the next action is its own, and pops with
raw_undo/raw_redo to replay it itself.

Usage:
    stack = UndoStack(max_size=50, coalesce_window_ms=500)
    stack.push(action)
    action = stack.undo()
    if action:
        for delta in action.deltas:
            store.set_channel(delta.fixture_id, delta.channel_index, delta.previous_value)
"""

from typing import List, Optional
import logging

from .types import UndoAction

logger = logging.getLogger(__name__)

DEFAULT_MAX_SIZE = 50
DEFAULT_COALESCE_WINDOW_MS = 500


class UndoStack:
    """
    Bounded undo/redo stacks with time-windowed coalescing.

    Attributes:
        max_size: Oldest actions are dropped beyond this many
        coalesce_window_ms: Two pushes closer than this may merge
    """

    def __init__(
        self,
        max_size: int = DEFAULT_MAX_SIZE,
        coalesce_window_ms: float = DEFAULT_COALESCE_WINDOW_MS,
    ):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self.coalesce_window_ms = coalesce_window_ms
        self._undo: List[UndoAction] = []
        self._redo: List[UndoAction] = []

    # ─────────────────────────────────────────────────────────
    # Push
    # ─────────────────────────────────────────────────────────

    def _can_coalesce(self, top: UndoAction, action: UndoAction) -> bool:
        if top.kind != action.kind:
            return False
        if abs(action.timestamp - top.timestamp) >= self.coalesce_window_ms:
            return False
        return top.addressed_cells() == action.addressed_cells()

    def push(self, action: UndoAction) -> bool:
        """
        Record an action.

        Returns:
            True if the action was merged into the previous one
        """
        self._redo.clear()

        if self._undo and self._can_coalesce(self._undo[-1], action):
            top = self._undo[-1]
            by_cell = {d.key: d for d in top.deltas}
            for delta in action.deltas:
                by_cell[delta.key].new_value = delta.new_value
            by_slot = {d.key: d for d in top.active_deltas}
            for delta in action.active_deltas:
                by_slot[delta.key].new = delta.new
            top.timestamp = action.timestamp
            if action.description:
                top.description = action.description
            return True

        self._undo.append(action)
        if len(self._undo) > self.max_size:
            dropped = self._undo.pop(0)
            logger.debug(f"Undo history full, dropped oldest action ({dropped.description or dropped.kind.value})")
        return False

    # ─────────────────────────────────────────────────────────
    # Undo / Redo
    # ─────────────────────────────────────────────────────────

    def undo(self) -> Optional[UndoAction]:
        """Pop the newest action onto redo. None when there is nothing to undo."""
        if not self._undo:
            return None
        action = self._undo.pop()
        self._redo.append(action)
        return action

    def redo(self) -> Optional[UndoAction]:
        """Pop the newest undone action back onto undo. None when empty."""
        if not self._redo:
            return None
        action = self._redo.pop()
        self._undo.append(action)
        return action

    # A child view sharing this stack pops with these and applies the deltas itself
    raw_undo = undo
    raw_redo = redo

    def peek_undo(self) -> Optional[UndoAction]:
        return self._undo[-1] if self._undo else None

    def peek_redo(self) -> Optional[UndoAction]:
        return self._redo[-1] if self._redo else None

    def clear(self) -> None:
        self._undo.clear()
        self._redo.clear()

    # ─────────────────────────────────────────────────────────
    # Status
    # ─────────────────────────────────────────────────────────

    @property
    def can_undo(self) -> bool:
        return bool(self._undo)

    @property
    def can_redo(self) -> bool:
        return bool(self._redo)

    @property
    def undo_length(self) -> int:
        return len(self._undo)

    @property
    def redo_length(self) -> int:
        return len(self._redo)

    def history(self) -> List[UndoAction]:
        """Undo actions, oldest first."""
        return list(self._undo)
