#!/usr/bin/env python3
"""
AETHER Look Editor - Application factory and entry point

Hosts the look editing engine behind a Flask app:
- /api/look-editor/* REST routes (blueprints/look_editor_bp.py)
- SocketIO 'look_editor_update' events for open sessions
- SQLite look store, in-process preview service

Configuration - Environment-based with sensible defaults:
    AETHER_EDITOR_PORT          HTTP port (8893)
    AETHER_EDITOR_DB            SQLite path (~/aether-core.db)
    AETHER_UNDO_MAX             Undo history size (50)
    AETHER_UNDO_COALESCE_MS     Undo coalesce window (500)
    AETHER_PREVIEW_DEBOUNCE_MS  Preview debounce (50)
    AETHER_CORS_ORIGINS         Extra CORS origins, comma-separated
    AETHER_LOG_DIR              Audit log directory (~/aether-logs)
"""

import os
import json
import atexit
import logging
from logging.handlers import RotatingFileHandler
from typing import Optional

from flask import Flask, jsonify
from flask_cors import CORS
from flask_socketio import SocketIO

import core_registry as reg
from look_store import LookStore
from preview_service import PreviewService
from edit_session_manager import EditSessionManager
from blueprints.look_editor_bp import look_editor_bp, init_app as init_look_editor_bp

logger = logging.getLogger(__name__)


# ============================================================
# Configuration
# ============================================================
HOME_DIR = os.path.expanduser("~")

EDITOR_PORT = int(os.environ.get('AETHER_EDITOR_PORT', 8893))
DATABASE = os.environ.get('AETHER_EDITOR_DB', os.path.join(HOME_DIR, "aether-core.db"))
UNDO_MAX = int(os.environ.get('AETHER_UNDO_MAX', 50))
UNDO_COALESCE_MS = float(os.environ.get('AETHER_UNDO_COALESCE_MS', 500))
PREVIEW_DEBOUNCE_MS = float(os.environ.get('AETHER_PREVIEW_DEBOUNCE_MS', 50))
AUDIT_LOG_DIR = os.environ.get('AETHER_LOG_DIR', os.path.join(HOME_DIR, "aether-logs"))

# Default allowed origins for local deployment (Pi + local network)
# Add custom origins via AETHER_CORS_ORIGINS environment variable (comma-separated)
DEFAULT_CORS_ORIGINS = [
    "http://localhost:3000",
    "http://localhost:8893",
    "http://127.0.0.1:3000",
    "http://127.0.0.1:8893",
    "http://192.168.50.1:3000",
    "http://192.168.50.1:8893",
]


def get_allowed_origins():
    """Get list of allowed CORS origins from defaults + environment"""
    origins = DEFAULT_CORS_ORIGINS.copy()
    env_origins = os.environ.get('AETHER_CORS_ORIGINS', '')
    if env_origins:
        for origin in env_origins.split(','):
            origin = origin.strip()
            if origin and origin not in origins:
                origins.append(origin)
    return origins


# ============================================================
# Audit Log
# ============================================================
_audit_logger = logging.getLogger('aether.audit')
_audit_logger.setLevel(logging.INFO)
_audit_logger.propagate = False  # Don't spam console


def setup_audit_log(log_dir: str) -> str:
    """Attach a rotating file handler to the audit logger. Returns the log path."""
    os.makedirs(log_dir, exist_ok=True)
    log_path = os.path.join(log_dir, 'audit.log')
    for handler in list(_audit_logger.handlers):
        _audit_logger.removeHandler(handler)
        handler.close()
    handler = RotatingFileHandler(
        log_path,
        maxBytes=5 * 1024 * 1024,  # 5 MB per file
        backupCount=5,
        encoding='utf-8'
    )
    handler.setFormatter(logging.Formatter('%(asctime)s %(message)s', datefmt='%Y-%m-%dT%H:%M:%S'))
    _audit_logger.addHandler(handler)
    return log_path


def audit_log(event_type, **kwargs):
    """Write a structured audit log entry as one compact JSON line."""
    entry = json.dumps({'event': event_type, **kwargs}, separators=(',', ':'))
    _audit_logger.info(entry)


# ============================================================
# Application Factory
# ============================================================

def create_app(
    db_path: Optional[str] = None,
    log_dir: Optional[str] = None,
    undo_max: Optional[int] = None,
    coalesce_ms: Optional[float] = None,
    debounce_ms: Optional[float] = None,
    preview_service: Optional[PreviewService] = None,
):
    """
    Build the look editor app.

    Arguments override the environment configuration (used by tests).

    Returns:
        (app, socketio)
    """
    db_path = db_path or DATABASE
    log_dir = log_dir or AUDIT_LOG_DIR

    app = Flask(__name__)
    allowed_origins = get_allowed_origins()
    CORS(app, resources={r"/api/*": {"origins": allowed_origins}})
    socketio = SocketIO(app, cors_allowed_origins=allowed_origins, async_mode='threading')

    look_store = LookStore(db_path)
    if preview_service is None:
        preview_service = PreviewService()
    edit_sessions = EditSessionManager(
        look_store,
        preview_service,
        undo_max=undo_max if undo_max is not None else UNDO_MAX,
        coalesce_ms=coalesce_ms if coalesce_ms is not None else UNDO_COALESCE_MS,
        debounce_ms=debounce_ms if debounce_ms is not None else PREVIEW_DEBOUNCE_MS,
    )

    log_path = setup_audit_log(log_dir)

    # ── Populate core_registry ──
    reg.look_store = look_store
    reg.preview_service = preview_service
    reg.edit_sessions = edit_sessions
    reg.socketio = socketio
    reg.audit_log = audit_log
    reg.DB_PATH = db_path
    reg.LOG_DIR = log_dir
    reg.AETHER_EDITOR_PORT = EDITOR_PORT

    init_look_editor_bp(edit_sessions, audit_log)
    app.register_blueprint(look_editor_bp)

    @app.route('/api/health', methods=['GET'])
    def health():
        return jsonify({
            'status': 'healthy',
            'db_path': db_path,
            'audit_log': log_path,
            'open_sessions': len(edit_sessions.list_sessions()),
            'preview_sessions': preview_service.get_status()['session_count'],
        })

    app.extensions['aether_edit_sessions'] = edit_sessions
    logger.info(f"Look editor app created (db={db_path})")
    return app, socketio


def main():
    logging.basicConfig(level=logging.INFO, format='%(asctime)s %(levelname)s %(name)s: %(message)s')
    app, socketio = create_app()
    edit_sessions = reg.edit_sessions
    edit_sessions.start()
    atexit.register(edit_sessions.shutdown)

    print(f"🔒 CORS allowed origins: {get_allowed_origins()}")
    print(f"✏️ AETHER Look Editor on port {EDITOR_PORT} (db: {reg.DB_PATH})")
    socketio.run(app, host='0.0.0.0', port=EDITOR_PORT, debug=False, allow_unsafe_werkzeug=True)


if __name__ == '__main__':
    main()
