"""
Preview Sync - Debounced/batched channel pushes to a live preview session

Fader drags produce a write per pointer event. Those go through
schedule_debounced(): pending writes are merged per cell and flushed once
the input has been quiet for debounce_ms. Discrete actions (mouse-up,
paste, undo) go through send_batched_immediate().

There is at most one pending timer. Every push runs its per-channel
updates in parallel. Failures land in last_error and never propagate
into the editing path.

Usage:
    sync = PreviewSync(backend, debounce_ms=50)
    sync.attach(session_id)
    sync.schedule_debounced([ChannelChange("fx-1", 0, 128)])
    await sync.drain()
"""

from typing import Dict, Iterable, List, Optional, Set, Callable
import asyncio
import logging

from .types import ChannelChange, CellKey
from .backends import PreviewBackend

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_MS = 50


class PreviewSync:
    """
    Dispatcher from edit operations to a PreviewBackend.

    Every call is a no-op until attach() supplies a preview session id.
    Timers are loop handles, so scheduling must happen on the event loop
    thread that owns the edit session.
    """

    def __init__(
        self,
        backend: Optional[PreviewBackend],
        debounce_ms: float = DEFAULT_DEBOUNCE_MS,
    ):
        self.backend = backend
        self.debounce_ms = debounce_ms
        self.session_id: Optional[str] = None
        self.last_error: Optional[str] = None

        self._pending: Dict[CellKey, int] = {}
        self._timer: Optional[asyncio.TimerHandle] = None
        self._inflight: Set["asyncio.Task[None]"] = set()
        self._error_callbacks: List[Callable[[str], None]] = []

    @property
    def active(self) -> bool:
        return self.backend is not None and self.session_id is not None

    @property
    def has_pending(self) -> bool:
        return self._timer is not None

    def on_error(self, callback: Callable[[str], None]) -> None:
        """Register a callback receiving preview error messages."""
        self._error_callbacks.append(callback)

    # ─────────────────────────────────────────────────────────
    # Session handle
    # ─────────────────────────────────────────────────────────

    def attach(self, session_id: str) -> None:
        self.session_id = session_id
        self.last_error = None

    def detach(self) -> Optional[str]:
        """Stop dispatching. Pending debounced writes are dropped."""
        self._cancel_timer()
        self._pending.clear()
        session_id, self.session_id = self.session_id, None
        return session_id

    # ─────────────────────────────────────────────────────────
    # Dispatch
    # ─────────────────────────────────────────────────────────

    def schedule_debounced(self, changes: Iterable[ChannelChange]) -> None:
        """Merge changes into the pending set and restart the debounce timer."""
        if not self.active:
            return
        changes = list(changes)
        if not changes:
            return

        self._cancel_timer()
        for change in changes:
            self._pending[change.key] = change.value

        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self.debounce_ms / 1000.0, self._fire)

    def send_batched_immediate(self, changes: Iterable[ChannelChange]) -> None:
        """
        Send changes now, without waiting for the debounce window.

        Writes still pending from a drag are sent in the same batch, with
        the new changes taking precedence for shared cells.
        """
        if not self.active:
            return
        self._cancel_timer()
        cells, self._pending = self._pending, {}
        for change in changes:
            cells[change.key] = change.value
        if cells:
            self._dispatch(cells)

    async def flush(self) -> None:
        """Send pending debounced writes now and wait for every push."""
        if self._timer is not None:
            self._cancel_timer()
            self._fire()
        await self.drain()

    async def drain(self) -> None:
        """Wait for in-flight pushes to finish."""
        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    def close(self) -> None:
        """Teardown: cancel the timer and any in-flight pushes."""
        self.detach()
        for task in list(self._inflight):
            task.cancel()

    def clear_error(self) -> None:
        self.last_error = None

    # ─────────────────────────────────────────────────────────
    # Internal
    # ─────────────────────────────────────────────────────────

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _fire(self) -> None:
        self._timer = None
        cells, self._pending = self._pending, {}
        if cells and self.active:
            self._dispatch(cells)

    def _dispatch(self, cells: Dict[CellKey, int]) -> None:
        loop = asyncio.get_running_loop()
        task = loop.create_task(self._send(self.session_id, cells))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    async def _send(self, session_id: str, cells: Dict[CellKey, int]) -> None:
        results = await asyncio.gather(
            *[
                self.backend.update_channel(session_id, fixture_id, channel_index, value)
                for (fixture_id, channel_index), value in cells.items()
            ],
            return_exceptions=True,
        )
        errors = [r for r in results if isinstance(r, Exception)]
        if errors:
            self._record_error(f"Failed to update preview channels: {errors[0]}")
        else:
            logger.debug(f"Pushed {len(cells)} channels to preview {session_id}")

    def _record_error(self, message: str) -> None:
        self.last_error = message
        logger.warning(message)
        for callback in self._error_callbacks:
            try:
                callback(message)
            except Exception as e:
                logger.error(f"Error in preview error callback: {e}")
