"""
AETHER Core — Look Editor Blueprint
Routes: /api/look-editor/*
Dependencies: edit_session_manager, audit_log
Imports: Look, Fixture, validate_look_data, validate_fixture_data from look_store
         ChannelChange and editor exceptions from core.editing
"""

from flask import Blueprint, jsonify, request
from look_store import Look, Fixture, validate_look_data, validate_fixture_data
from core.editing import (
    ChannelChange,
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

look_editor_bp = Blueprint('look_editor', __name__)

# Dependencies injected at registration time
_edit_sessions = None
_audit_log = None


def init_app(edit_session_manager, audit_log_fn=None):
    """Initialize blueprint with required dependencies."""
    global _edit_sessions, _audit_log
    _edit_sessions = edit_session_manager
    _audit_log = audit_log_fn


def _audit(event_type, **kwargs):
    if _audit_log:
        _audit_log(event_type, **kwargs)


def _error(message, status):
    return jsonify({'success': False, 'error': message}), status


def _error_for(e):
    """Map an editor exception to a JSON error response."""
    if isinstance(e, (SessionAlreadyOpenError, SaveInProgressError,
                      SessionClosedError, SessionNotLoadedError)):
        return _error(str(e), 409)
    if isinstance(e, (UnknownFixtureError, PersistenceError)):
        return _error(str(e), 404)
    if isinstance(e, (SaveFailedError, PreviewError)):
        return _error(str(e), 502)
    if isinstance(e, ChannelIndexError):
        return _error(str(e), 400)
    return _error(str(e), 500)


def _session_or_404(look_id):
    session = _edit_sessions.get(look_id)
    if session is None:
        return None, _error(f'No edit session for look {look_id}', 404)
    return session, None


def _session_response(session, **extra):
    return jsonify({'success': True, **extra,
                    'session': _edit_sessions.call(session.to_dict)})


def _parse_change(data):
    return ChannelChange(
        fixture_id=str(data['fixture_id']),
        channel_index=int(data['channel_index']),
        value=int(data['value']),
    )


# ─────────────────────────────────────────────────────────
# Fixtures & Looks
# ─────────────────────────────────────────────────────────

@look_editor_bp.route('/api/look-editor/fixtures', methods=['GET'])
def list_fixtures():
    """List patched fixtures"""
    return jsonify([f.to_dict() for f in _edit_sessions.look_store.get_all_fixtures()])


@look_editor_bp.route('/api/look-editor/fixtures', methods=['POST'])
def upsert_fixture():
    """Create or replace a fixture definition"""
    data = request.get_json() or {}
    valid, error = validate_fixture_data(data)
    if not valid:
        return _error(error, 400)
    try:
        fixture = Fixture.from_dict(data)
    except (TypeError, ValueError) as e:
        return _error(f'Invalid fixture: {e}', 400)
    _edit_sessions.look_store.upsert_fixture(fixture)
    return jsonify({'success': True, 'fixture': fixture.to_dict()})


@look_editor_bp.route('/api/look-editor/looks', methods=['GET'])
def list_looks():
    """List looks, optionally ?project_id=..."""
    looks = _edit_sessions.look_store.get_all_looks(request.args.get('project_id'))
    return jsonify([l.to_dict() for l in looks])


@look_editor_bp.route('/api/look-editor/looks', methods=['POST'])
def create_look():
    """Create an empty look, optionally seeded with fixtures"""
    data = request.get_json() or {}
    valid, error = validate_look_data(data)
    if not valid:
        return _error(error, 400)

    store = _edit_sessions.look_store
    look = store.create_look(Look(
        look_id=data.get('look_id', ''),
        name=data['name'],
        project_id=data.get('project_id'),
        description=data.get('description', ''),
    ))
    skipped = [fid for fid in data.get('fixture_ids', [])
               if not store.add_fixture_to_look(look.look_id, fid)]
    return jsonify({'success': True, 'look': look.to_dict(), 'skipped_fixtures': skipped})


@look_editor_bp.route('/api/look-editor/looks/<look_id>/versions', methods=['GET'])
def get_look_versions(look_id):
    """Saved versions of a look's fixture values, newest first"""
    return jsonify(_edit_sessions.look_store.get_versions(look_id, 'look'))


# ─────────────────────────────────────────────────────────
# Sessions
# ─────────────────────────────────────────────────────────

@look_editor_bp.route('/api/look-editor/sessions', methods=['GET'])
def list_sessions():
    """List open edit sessions"""
    return jsonify({'sessions': _edit_sessions.list_sessions()})


@look_editor_bp.route('/api/look-editor/sessions', methods=['POST'])
def open_session():
    """Open a look for editing"""
    data = request.get_json() or {}
    look_id = data.get('look_id')
    if not look_id:
        return _error('look_id is required', 400)

    try:
        session = _edit_sessions.open_session(look_id)
    except EditorError as e:
        return _error_for(e)
    return _session_response(session)


@look_editor_bp.route('/api/look-editor/sessions/<look_id>', methods=['GET'])
def get_session(look_id):
    """Current session state"""
    session, error = _session_or_404(look_id)
    if error:
        return error
    return _session_response(session)


@look_editor_bp.route('/api/look-editor/sessions/<look_id>', methods=['DELETE'])
def close_session(look_id):
    """Close a session. Unsaved edits are dropped."""
    if not _edit_sessions.close_session(look_id):
        return _error(f'No edit session for look {look_id}', 404)
    return jsonify({'success': True, 'look_id': look_id})


# ─────────────────────────────────────────────────────────
# Edits
# ─────────────────────────────────────────────────────────

@look_editor_bp.route('/api/look-editor/sessions/<look_id>/channel', methods=['POST'])
def set_channel(look_id):
    """Set one channel: {fixture_id, channel_index, value}"""
    session, error = _session_or_404(look_id)
    if error:
        return error
    data = request.get_json() or {}
    try:
        change = _parse_change(data)
    except (KeyError, TypeError, ValueError) as e:
        return _error(f'Invalid channel change: {e}', 400)

    try:
        if data.get('undoable', True):
            stored = _edit_sessions.call(session.set_channel_value,
                                         change.fixture_id, change.channel_index, change.value)
        else:
            _edit_sessions.call(session.apply_without_undo, [change])
            stored = _edit_sessions.call(session.get, change.fixture_id)[change.channel_index]
    except EditorError as e:
        return _error_for(e)
    return _session_response(session, value=stored)


@look_editor_bp.route('/api/look-editor/sessions/<look_id>/batch', methods=['POST'])
def batch_apply(look_id):
    """Apply several changes as one undo step: {changes: [...]}"""
    session, error = _session_or_404(look_id)
    if error:
        return error
    data = request.get_json() or {}
    try:
        changes = [_parse_change(c) for c in data.get('changes', [])]
    except (KeyError, TypeError, ValueError) as e:
        return _error(f'Invalid channel change: {e}', 400)

    try:
        deltas = _edit_sessions.call(session.batch_apply, changes)
    except EditorError as e:
        return _error_for(e)
    return _session_response(session, changed=len(deltas))


@look_editor_bp.route('/api/look-editor/sessions/<look_id>/active', methods=['POST'])
def toggle_active(look_id):
    """Toggle channel membership: {fixture_id, channel_index, active?}"""
    session, error = _session_or_404(look_id)
    if error:
        return error
    data = request.get_json() or {}
    try:
        fixture_id = str(data['fixture_id'])
        channel_index = int(data['channel_index'])
    except (KeyError, TypeError, ValueError) as e:
        return _error(f'Invalid request: {e}', 400)
    is_active = data.get('active')

    try:
        spec = _edit_sessions.call(session.toggle_channel_active,
                                   fixture_id, channel_index,
                                   None if is_active is None else bool(is_active))
    except EditorError as e:
        return _error_for(e)
    return _session_response(session, active=spec.to_dict())


@look_editor_bp.route('/api/look-editor/sessions/<look_id>/copy', methods=['POST'])
def copy_fixture(look_id):
    """Copy a fixture's values: {fixture_id}"""
    session, error = _session_or_404(look_id)
    if error:
        return error
    fixture_id = (request.get_json() or {}).get('fixture_id')
    if not fixture_id:
        return _error('fixture_id is required', 400)

    try:
        content = _edit_sessions.call(session.copy, fixture_id)
    except EditorError as e:
        return _error_for(e)
    return _session_response(session, copied=len(content.values))


@look_editor_bp.route('/api/look-editor/sessions/<look_id>/paste', methods=['POST'])
def paste_fixtures(look_id):
    """Paste the clipboard onto fixtures: {fixture_ids: [...]}"""
    session, error = _session_or_404(look_id)
    if error:
        return error
    fixture_ids = (request.get_json() or {}).get('fixture_ids') or []
    if not isinstance(fixture_ids, list):
        return _error('fixture_ids must be a list', 400)

    try:
        action = _edit_sessions.call(session.paste, [str(f) for f in fixture_ids])
    except EditorError as e:
        return _error_for(e)
    return _session_response(session, pasted=action is not None)


@look_editor_bp.route('/api/look-editor/sessions/<look_id>/fixtures', methods=['POST'])
def add_fixture(look_id):
    """Add a patched fixture to the look: {fixture_id}"""
    session, error = _session_or_404(look_id)
    if error:
        return error
    fixture_id = (request.get_json() or {}).get('fixture_id')
    fixture = _edit_sessions.look_store.get_fixture(fixture_id) if fixture_id else None
    if fixture is None:
        return _error(f'Fixture not found: {fixture_id}', 404)

    try:
        _edit_sessions.call(session.add_fixture, fixture.fixture_id,
                            fixture.channel_count, fixture.channels)
    except ValueError as e:
        return _error(str(e), 409)
    except EditorError as e:
        return _error_for(e)
    return _session_response(session)


@look_editor_bp.route('/api/look-editor/sessions/<look_id>/fixtures/<fixture_id>/remove', methods=['POST'])
def remove_fixture(look_id, fixture_id):
    """Remove a fixture from the look on next save"""
    session, error = _session_or_404(look_id)
    if error:
        return error
    try:
        _edit_sessions.call(session.remove_fixture, fixture_id)
    except EditorError as e:
        return _error_for(e)
    return _session_response(session)


@look_editor_bp.route('/api/look-editor/sessions/<look_id>/fixtures/<fixture_id>/restore', methods=['POST'])
def restore_fixture(look_id, fixture_id):
    """Take a fixture back off the removal list"""
    session, error = _session_or_404(look_id)
    if error:
        return error
    try:
        restored = _edit_sessions.call(session.unremove_fixture, fixture_id)
    except EditorError as e:
        return _error_for(e)
    if not restored:
        return _error(f'Fixture {fixture_id} is not removed', 404)
    return _session_response(session)


# ─────────────────────────────────────────────────────────
# History
# ─────────────────────────────────────────────────────────

@look_editor_bp.route('/api/look-editor/sessions/<look_id>/undo', methods=['POST'])
def undo(look_id):
    session, error = _session_or_404(look_id)
    if error:
        return error
    try:
        action = _edit_sessions.call(session.undo)
    except EditorError as e:
        return _error_for(e)
    return _session_response(session, undone=action.to_dict() if action else None)


@look_editor_bp.route('/api/look-editor/sessions/<look_id>/redo', methods=['POST'])
def redo(look_id):
    session, error = _session_or_404(look_id)
    if error:
        return error
    try:
        action = _edit_sessions.call(session.redo)
    except EditorError as e:
        return _error_for(e)
    return _session_response(session, redone=action.to_dict() if action else None)


# ─────────────────────────────────────────────────────────
# Save / Discard
# ─────────────────────────────────────────────────────────

@look_editor_bp.route('/api/look-editor/sessions/<look_id>/save', methods=['POST'])
def save(look_id):
    """Persist the look"""
    session, error = _session_or_404(look_id)
    if error:
        return error
    try:
        payload = _edit_sessions.run(session.save())
    except EditorError as e:
        _audit('look_save_failed', look_id=look_id, error=str(e))
        return _error_for(e)
    _audit('look_save', look_id=look_id, fixtures=len(payload),
           channels=sum(len(p.channels) for p in payload))
    return _session_response(session, saved=len(payload))


@look_editor_bp.route('/api/look-editor/sessions/<look_id>/discard', methods=['POST'])
def discard(look_id):
    """Drop unsaved edits"""
    session, error = _session_or_404(look_id)
    if error:
        return error
    try:
        _edit_sessions.call(session.discard)
    except EditorError as e:
        return _error_for(e)
    _audit('look_discard', look_id=look_id)
    return _session_response(session)


# ─────────────────────────────────────────────────────────
# Live Preview
# ─────────────────────────────────────────────────────────

@look_editor_bp.route('/api/look-editor/sessions/<look_id>/preview/start', methods=['POST'])
def start_preview(look_id):
    """Start live preview (sandboxed until armed)"""
    session, error = _session_or_404(look_id)
    if error:
        return error
    try:
        preview_session_id = _edit_sessions.run(session.start_preview())
    except EditorError as e:
        return _error_for(e)
    return _session_response(session, preview_session_id=preview_session_id)


@look_editor_bp.route('/api/look-editor/sessions/<look_id>/preview/stop', methods=['POST'])
def stop_preview(look_id):
    session, error = _session_or_404(look_id)
    if error:
        return error
    try:
        stopped = _edit_sessions.run(session.stop_preview())
    except EditorError as e:
        return _error_for(e)
    return _session_response(session, stopped=stopped)


@look_editor_bp.route('/api/look-editor/sessions/<look_id>/preview/arm', methods=['POST'])
def arm_preview(look_id):
    """Arm the preview for live output. WARNING: Armed previews drive real fixtures!"""
    session, error = _session_or_404(look_id)
    if error:
        return error
    preview_session_id = session.preview.session_id
    if not preview_session_id or not _edit_sessions.preview_service.arm_session(preview_session_id):
        return _error('Preview is not running', 409)
    _audit('look_preview_arm', look_id=look_id, preview_session_id=preview_session_id)
    return jsonify({
        'success': True,
        'preview_session_id': preview_session_id,
        'mode': 'armed',
        'warning': 'Preview is now outputting to live fixtures!'
    })


@look_editor_bp.route('/api/look-editor/sessions/<look_id>/preview/disarm', methods=['POST'])
def disarm_preview(look_id):
    """Disarm the preview (return to sandbox mode)"""
    session, error = _session_or_404(look_id)
    if error:
        return error
    preview_session_id = session.preview.session_id
    if not preview_session_id or not _edit_sessions.preview_service.disarm_session(preview_session_id):
        return _error('Preview is not running', 409)
    return jsonify({'success': True, 'preview_session_id': preview_session_id, 'mode': 'sandbox'})


# ─────────────────────────────────────────────────────────
# Multi-select
# ─────────────────────────────────────────────────────────

@look_editor_bp.route('/api/look-editor/sessions/<look_id>/merged', methods=['GET'])
def merged_channels(look_id):
    """Channels of several fixtures grouped by type: ?fixture_ids=a,b"""
    session, error = _session_or_404(look_id)
    if error:
        return error
    fixture_ids = [f for f in request.args.get('fixture_ids', '').split(',') if f]
    if not fixture_ids:
        return _error('fixture_ids is required', 400)
    try:
        merged = _edit_sessions.call(session.merged_channels, fixture_ids)
    except EditorError as e:
        return _error_for(e)
    return jsonify({'success': True, 'channels': [m.to_dict() for m in merged]})


@look_editor_bp.route('/api/look-editor/preview/status', methods=['GET'])
def preview_status():
    """Preview service status"""
    if not _edit_sessions.preview_service:
        return jsonify({'session_count': 0, 'sessions': []})
    return jsonify(_edit_sessions.preview_service.get_status())
