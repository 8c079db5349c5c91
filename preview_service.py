"""
Live Preview Service - Preview look edits without affecting live output

This module provides:
- PreviewSession: Isolated per-fixture channel buffers for one editor
- Sandbox output: Edits land in the session buffer, not on stage
- Arm Live: Optional toggle to push session values to live output
- Update callback: Streams channel changes for UI visualization

Architecture:
- Preview sessions are isolated from live playback
- Each session holds dense channel values per fixture
- 'Armed' sessions forward every change through the live output callback
- Sessions are created by the look editor and cancelled when it closes

Safety:
- Preview is SAFE by default (sandbox mode)
- Explicit 'arm' action required to affect live output

Version: 1.1.0
"""

import itertools
import time
import threading
from typing import Dict, List, Optional, Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum

from core.editing.conversion import sparse_to_dense
from core.editing.types import FixtureSnapshot, DEFAULT_MIN_VALUE, DEFAULT_MAX_VALUE


# ============================================================
# Preview Mode
# ============================================================

class PreviewMode(Enum):
    SANDBOX = "sandbox"      # Preview only, no live output
    ARMED = "armed"          # Preview + live output


# ============================================================
# Preview Session
# ============================================================

@dataclass
class PreviewSession:
    """
    An isolated preview session for one look editor.

    Each session:
    - Holds dense channel values per fixture
    - Outputs to its own buffer (sandbox)
    - Can be 'armed' to output to live fixtures
    """
    session_id: str
    project_id: str

    fixtures: Dict[str, List[int]] = field(default_factory=dict)
    mode: PreviewMode = PreviewMode.SANDBOX

    # Runtime state
    created_at: float = 0.0
    update_count: int = 0

    def to_dict(self) -> dict:
        return {
            'session_id': self.session_id,
            'project_id': self.project_id,
            'mode': self.mode.value,
            'fixture_count': len(self.fixtures),
            'update_count': self.update_count,
        }


# ============================================================
# Preview Service
# ============================================================

class PreviewService:
    """
    Manages preview sessions for live editing.

    Features:
    - Multiple concurrent preview sessions
    - Sandbox mode by default (safe)
    - Arm/disarm for live output
    - Real-time update streaming
    """

    def __init__(self):
        self._sessions: Dict[str, PreviewSession] = {}
        self._lock = threading.Lock()
        self._ids = itertools.count(1)

        # Callbacks
        self._update_callback: Optional[Callable] = None  # For streaming to UI
        self._live_output_callback: Optional[Callable] = None  # For armed output

        # Stats
        self._total_updates = 0

    def set_update_callback(self, callback: Callable[[str, str, List[int]], None]):
        """Set callback for streaming changes: callback(session_id, fixture_id, channels)"""
        self._update_callback = callback

    def set_live_output_callback(self, callback: Callable[[str, List[int]], None]):
        """Set callback for armed live output: callback(fixture_id, channels)"""
        self._live_output_callback = callback

    # ─────────────────────────────────────────────────────────
    # Session Management
    # ─────────────────────────────────────────────────────────

    def start_edit_session(self, project_id: str) -> PreviewSession:
        """Create a new, empty preview session for a project"""
        session_id = f"preview_{int(time.time() * 1000)}_{next(self._ids)}"
        session = PreviewSession(
            session_id=session_id,
            project_id=project_id,
            mode=PreviewMode.SANDBOX,
            created_at=time.monotonic(),
        )

        with self._lock:
            self._sessions[session_id] = session

        print(f"🔍 Preview: Created session '{session_id}' (project {project_id or '-'})")
        return session

    def get_session(self, session_id: str) -> Optional[PreviewSession]:
        """Get a preview session by ID"""
        with self._lock:
            return self._sessions.get(session_id)

    def delete_session(self, session_id: str) -> bool:
        """Delete a preview session"""
        with self._lock:
            if session_id in self._sessions:
                del self._sessions[session_id]
                print(f"🔍 Preview: Deleted session '{session_id}'")
                return True
            return False

    def list_sessions(self) -> List[Dict]:
        """List all active sessions"""
        with self._lock:
            return [s.to_dict() for s in self._sessions.values()]

    # ─────────────────────────────────────────────────────────
    # Channel Updates
    # ─────────────────────────────────────────────────────────

    def load_fixtures(self, session_id: str, fixtures: Iterable[FixtureSnapshot]) -> bool:
        """Seed a session with saved fixture values in one call"""
        fixtures = list(fixtures)
        with self._lock:
            session = self._sessions.get(session_id)
            if not session:
                return False

            for fixture in fixtures:
                session.fixtures[fixture.fixture_id] = sparse_to_dense(
                    fixture.sparse_channels, fixture.channel_count
                )
            armed = session.mode == PreviewMode.ARMED
            loaded = {fid: list(values) for fid, values in session.fixtures.items()}

        if armed and self._live_output_callback:
            for fixture_id, values in loaded.items():
                self._live_output_callback(fixture_id, values)
        print(f"🔍 Preview: Loaded {len(fixtures)} fixtures into '{session_id}'")
        return True

    def update_fixture_channel(
        self,
        session_id: str,
        fixture_id: str,
        channel_index: int,
        value: int,
    ) -> bool:
        """Set one channel in a session (grows the fixture buffer as needed)"""
        if channel_index < 0:
            return False
        value = max(DEFAULT_MIN_VALUE, min(DEFAULT_MAX_VALUE, int(value)))

        with self._lock:
            session = self._sessions.get(session_id)
            if not session:
                return False

            values = session.fixtures.setdefault(fixture_id, [])
            if channel_index >= len(values):
                values.extend([0] * (channel_index + 1 - len(values)))
            values[channel_index] = value
            session.update_count += 1
            self._total_updates += 1

            armed = session.mode == PreviewMode.ARMED
            snapshot = list(values)

        if self._update_callback:
            self._update_callback(session_id, fixture_id, snapshot)
        if armed and self._live_output_callback:
            self._live_output_callback(fixture_id, snapshot)
        return True

    def get_fixture_values(self, session_id: str, fixture_id: str) -> Optional[List[int]]:
        with self._lock:
            session = self._sessions.get(session_id)
            if not session or fixture_id not in session.fixtures:
                return None
            return list(session.fixtures[fixture_id])

    # ─────────────────────────────────────────────────────────
    # Arm / Disarm (Live Output Control)
    # ─────────────────────────────────────────────────────────

    def arm_session(self, session_id: str) -> bool:
        """Arm a session for live output (preview affects real fixtures)"""
        with self._lock:
            session = self._sessions.get(session_id)
            if not session:
                return False

            session.mode = PreviewMode.ARMED
            print(f"🔴 Preview: Session '{session_id}' ARMED for live output")
            return True

    def disarm_session(self, session_id: str) -> bool:
        """Disarm a session (back to sandbox mode)"""
        with self._lock:
            session = self._sessions.get(session_id)
            if not session:
                return False

            session.mode = PreviewMode.SANDBOX
            print(f"🟢 Preview: Session '{session_id}' DISARMED (sandbox)")
            return True

    def is_armed(self, session_id: str) -> bool:
        """Check if a session is armed"""
        with self._lock:
            session = self._sessions.get(session_id)
            return session.mode == PreviewMode.ARMED if session else False

    def stop_all(self):
        """Drop every preview session"""
        with self._lock:
            count = len(self._sessions)
            self._sessions.clear()
        if count:
            print(f"🔍 Preview: Stopped {count} sessions")

    # ─────────────────────────────────────────────────────────
    # Status
    # ─────────────────────────────────────────────────────────

    def get_status(self) -> Dict:
        """Get preview service status"""
        sessions = self.list_sessions()
        return {
            'total_updates': self._total_updates,
            'session_count': len(sessions),
            'armed_count': sum(1 for s in sessions if s['mode'] == 'armed'),
            'sessions': sessions,
        }


# ============================================================
# Global Instance
# ============================================================

preview_service = PreviewService()
