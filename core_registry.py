"""
AETHER Core Registry - Shared Instance Registry

Modules import from here to access cross-dependencies.
editor_app.create_app() populates these during startup.

This pattern avoids circular imports while allowing modules to reference
each other. All attributes are None until create_app() initializes them,
but by the time any method is called during normal operation, everything
is wired up.
"""

# ── Look editor ──
look_store = None         # LookStore instance
preview_service = None    # PreviewService instance
edit_sessions = None      # EditSessionManager instance

# ── Infrastructure ──
socketio = None           # Flask-SocketIO instance

# ── Utilities ──
audit_log = None          # Function for persistent audit logging

# ── Constants (set during startup) ──
AETHER_EDITOR_PORT = 8893
DB_PATH = None            # Path to SQLite database
LOG_DIR = None            # Path to audit log directory
