"""
AETHER Edit Session Manager - Open look editor sessions

Flask request threads never touch an EditSession directly. Every session
lives on one background asyncio loop owned by this manager; request
handlers submit work with run()/call() and block on the result. Debounce
and save-status timers therefore always fire on the loop that owns the
session.

At most one session is open per look.

Uses core_registry for the SocketIO instance.
"""

import asyncio
import threading
from typing import Dict, List, Optional, Any, Callable, Coroutine

import core_registry as reg
from core.editing import (
    EditSession,
    UndoStack,
    LookStoreBackend,
    PreviewServiceBackend,
    SessionAlreadyOpenError,
)
from core.editing.undo import DEFAULT_MAX_SIZE, DEFAULT_COALESCE_WINDOW_MS
from core.editing.preview_sync import DEFAULT_DEBOUNCE_MS

REQUEST_TIMEOUT_S = 10.0


class EditSessionManager:
    """Registry of open edit sessions plus the loop thread that runs them"""

    def __init__(
        self,
        look_store,
        preview_service=None,
        undo_max: int = DEFAULT_MAX_SIZE,
        coalesce_ms: float = DEFAULT_COALESCE_WINDOW_MS,
        debounce_ms: float = DEFAULT_DEBOUNCE_MS,
        request_timeout: float = REQUEST_TIMEOUT_S,
    ):
        self.look_store = look_store
        self.preview_service = preview_service
        self.undo_max = undo_max
        self.coalesce_ms = coalesce_ms
        self.debounce_ms = debounce_ms
        self.request_timeout = request_timeout

        self.backend = LookStoreBackend(look_store)
        self.preview_backend = (
            PreviewServiceBackend(preview_service, look_store) if preview_service else None
        )

        self._sessions: Dict[str, EditSession] = {}
        self._opening: set = set()
        self.lock = threading.Lock()

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None

    # ─────────────────────────────────────────────────────────
    # Event Loop Thread
    # ─────────────────────────────────────────────────────────

    def start(self):
        """Start the session loop thread (idempotent)"""
        with self.lock:
            if self._thread and self._thread.is_alive():
                return
            self._loop = asyncio.new_event_loop()
            self._thread = threading.Thread(
                target=self._run_loop, name='look-editor-loop', daemon=True
            )
            self._thread.start()
        print("✏️ Look editor session loop started")

    def _run_loop(self):
        asyncio.set_event_loop(self._loop)
        try:
            self._loop.run_forever()
        finally:
            self._loop.close()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run(self, coro: Coroutine, timeout: Optional[float] = None) -> Any:
        """Run a coroutine on the session loop and wait for its result"""
        if not self.running:
            self.start()
        future = asyncio.run_coroutine_threadsafe(coro, self._loop)
        return future.result(timeout if timeout is not None else self.request_timeout)

    def call(self, fn: Callable, *args, **kwargs) -> Any:
        """Run a plain function on the session loop thread"""
        async def _invoke():
            return fn(*args, **kwargs)
        return self.run(_invoke())

    # ─────────────────────────────────────────────────────────
    # Sessions
    # ─────────────────────────────────────────────────────────

    async def _open(self, look_id: str) -> EditSession:
        if look_id in self._sessions or look_id in self._opening:
            raise SessionAlreadyOpenError(look_id)

        self._opening.add(look_id)
        try:
            session = EditSession(
                look_id,
                self.backend,
                self.backend,
                preview_backend=self.preview_backend,
                undo_stack=UndoStack(self.undo_max, self.coalesce_ms),
                debounce_ms=self.debounce_ms,
            )
            await session.load()
        finally:
            self._opening.discard(look_id)

        session.on('changed', lambda _: self._notify(look_id, 'changed'))
        session.on('save_status', lambda status: self._notify(look_id, 'save_status', status=status.value))
        session.on('preview_error', lambda message: self._notify(look_id, 'preview_error', error=message))
        self._sessions[look_id] = session
        return session

    def open_session(self, look_id: str) -> EditSession:
        """
        Open a look for editing.

        Raises:
            SessionAlreadyOpenError: look already has an open session
            PersistenceError: look not found
        """
        session = self.run(self._open(look_id))
        print(f"✏️ Opened look editor session: {look_id}")
        return session

    def get(self, look_id: str) -> Optional[EditSession]:
        return self._sessions.get(look_id)

    async def _close(self, look_id: str) -> bool:
        session = self._sessions.pop(look_id, None)
        if session is None:
            return False
        await session.close()
        return True

    def close_session(self, look_id: str) -> bool:
        """Close a session. Teardown always completes."""
        closed = self.run(self._close(look_id))
        if closed:
            print(f"✏️ Closed look editor session: {look_id}")
            self._notify(look_id, 'closed')
        return closed

    def list_sessions(self) -> List[Dict[str, Any]]:
        async def _summaries():
            return [
                {
                    'look_id': s.entity_id,
                    'name': s.name,
                    'state': s.session_state.value,
                    'dirty': s.is_dirty(),
                    'preview_session_id': s.preview.session_id,
                }
                for s in self._sessions.values()
            ]
        if not self._sessions:
            return []
        return self.run(_summaries())

    def shutdown(self):
        """Close every session and stop the loop thread"""
        if not self.running:
            return

        async def _close_all():
            for look_id in list(self._sessions):
                await self._close(look_id)

        try:
            self.run(_close_all())
        finally:
            self._loop.call_soon_threadsafe(self._loop.stop)
            self._thread.join(timeout=5.0)
            self._thread = None
        print("✏️ Look editor session loop stopped")

    # ─────────────────────────────────────────────────────────
    # Notifications
    # ─────────────────────────────────────────────────────────

    def _notify(self, look_id: str, event: str, **data):
        if reg.socketio:
            reg.socketio.emit('look_editor_update', {'look_id': look_id, 'event': event, **data})
