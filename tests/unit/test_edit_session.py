"""
Unit Tests for EditSession

Tests for:
- Loading and seeding from a snapshot
- Channel edits, batch edits and their undo steps
- Coalescing with an injected clock
- Active channel toggles and partial-save payloads
- Copy/paste truncation and membership
- Fixture add/remove/restore
- Save success, failure, reentrancy and status reset
- Live preview start/stop, debounce and error isolation
- Teardown
"""

import pytest
import asyncio
from unittest.mock import AsyncMock, Mock

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))

from core.editing import (
    EditSession,
    UndoStack,
    ChannelClipboard,
    ChannelChange,
    ChannelDefinition,
    ChannelType,
    EntitySnapshot,
    FixtureSnapshot,
    SparseEntry,
    ActiveSpec,
    ALL_ACTIVE,
    UndoActionKind,
    SessionState,
    SaveStatus,
    UnknownFixtureError,
    ChannelIndexError,
    SaveInProgressError,
    SaveFailedError,
    SessionClosedError,
    SessionNotLoadedError,
    PreviewError,
)


class FakeClock:
    """Millisecond clock the test advances by hand."""

    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now

    def advance(self, ms):
        self.now += ms


def _snapshot():
    return EntitySnapshot(
        entity_id="look-1",
        project_id="proj-1",
        name="Warm Wash",
        fixtures=[
            # F: 4 channels at 0, all stored (all active)
            FixtureSnapshot("F", 4, [SparseEntry(i, 0) for i in range(4)]),
            # G: 2 channels
            FixtureSnapshot("G", 2, [SparseEntry(0, 5), SparseEntry(1, 6)]),
            # H: 4 channels, only 0 and 2 stored
            FixtureSnapshot("H", 4, [SparseEntry(0, 100), SparseEntry(2, 50)]),
        ],
    )


def _collaborators():
    source = Mock()
    source.fetch = AsyncMock(return_value=_snapshot())
    persistence = Mock()
    persistence.save = AsyncMock(return_value=True)
    preview = Mock()
    preview.start = AsyncMock(return_value="preview-1")
    preview.cancel = AsyncMock(return_value=None)
    preview.update_channel = AsyncMock(return_value=None)
    preview.initialize_from_entity = AsyncMock(return_value=None)
    return source, persistence, preview


async def _open(clock=None, **kwargs):
    source, persistence, preview = _collaborators()
    session = await EditSession.open(
        "look-1",
        source,
        persistence,
        preview_backend=preview,
        clock=clock or FakeClock(),
        debounce_ms=10,
        **kwargs,
    )
    return session, persistence, preview


def _sent(preview):
    return {(c.args[1], c.args[2]): c.args[3] for c in preview.update_channel.await_args_list}


class TestLoad:
    """Tests for loading a look."""

    @pytest.mark.asyncio
    async def test_seeds_values_and_membership(self):
        session, _, _ = await _open()
        assert session.get("H") == [100, 0, 50, 0]
        assert session.active_spec("H") == ActiveSpec.explicit({0, 2})
        assert session.fixture_ids() == ["F", "G", "H"]
        assert session.project_id == "proj-1"
        assert session.is_dirty() is False
        assert session.session_state == SessionState.READY

    def test_edit_before_load_rejected(self):
        source, persistence, _ = _collaborators()
        session = EditSession("look-1", source, persistence)
        assert session.session_state == SessionState.LOADING
        with pytest.raises(SessionNotLoadedError):
            session.set_channel_value("F", 0, 1)


class TestChannelEdits:
    """Tests for set_channel_value and batch_apply."""

    @pytest.mark.asyncio
    async def test_set_then_undo_restores_clean_state(self):
        session, _, _ = await _open()
        session.set_channel_value("F", 1, 200)
        assert session.is_dirty() is True
        assert session.session_state == SessionState.EDITING

        session.undo()
        assert session.get("F") == [0, 0, 0, 0]
        assert session.is_dirty() is False

    @pytest.mark.asyncio
    async def test_returns_clamped_value(self):
        session, _, _ = await _open()
        assert session.set_channel_value("F", 0, 400) == 255
        assert session.peek_undo().deltas[0].new_value == 255

    @pytest.mark.asyncio
    async def test_undo_reversibility_outside_window(self):
        clock = FakeClock()
        session, _, _ = await _open(clock=clock)
        for i, value in enumerate([10, 20, 30]):
            session.set_channel_value("F", i % 2, value)
            clock.advance(1000)

        for _ in range(3):
            session.undo()
        assert session.get("F") == [0, 0, 0, 0]
        assert session.can_undo is False

    @pytest.mark.asyncio
    async def test_redo(self):
        session, _, _ = await _open()
        session.set_channel_value("G", 0, 99)
        session.undo()
        session.redo()
        assert session.get("G") == [99, 6]

    @pytest.mark.asyncio
    async def test_coalescing_keeps_first_previous(self):
        clock = FakeClock()
        session, _, _ = await _open(clock=clock)
        session.set_channel_value("G", 0, 50)
        clock.advance(200)
        session.set_channel_value("G", 0, 60)

        assert session.undo_stack.undo_length == 1
        delta = session.peek_undo().deltas[0]
        assert (delta.previous_value, delta.new_value) == (5, 60)
        session.undo()
        assert session.get("G") == [5, 6]

    @pytest.mark.asyncio
    async def test_batch_is_one_undo_step(self):
        session, _, _ = await _open()
        session.batch_apply([ChannelChange("F", 0, 10), ChannelChange("F", 1, 20)])
        assert session.get("F") == [10, 20, 0, 0]
        assert session.undo_stack.undo_length == 1
        assert session.peek_undo().kind == UndoActionKind.BATCH_CHANGE

        session.undo()
        assert session.get("F") == [0, 0, 0, 0]

    @pytest.mark.asyncio
    async def test_batch_after_edit_captures_committed_value(self):
        clock = FakeClock()
        session, _, _ = await _open(clock=clock)
        session.set_channel_value("F", 0, 10)
        session.batch_apply([ChannelChange("F", 0, 20)])
        session.undo()
        assert session.get("F")[0] == 10

    @pytest.mark.asyncio
    async def test_unknown_fixture(self):
        session, _, _ = await _open()
        with pytest.raises(UnknownFixtureError):
            session.set_channel_value("nope", 0, 1)
        assert session.can_undo is False

    @pytest.mark.asyncio
    async def test_out_of_range(self):
        session, _, _ = await _open()
        with pytest.raises(ChannelIndexError):
            session.set_channel_value("G", 2, 1)
        with pytest.raises(ChannelIndexError):
            session.batch_apply([ChannelChange("G", 0, 1), ChannelChange("G", 5, 1)])
        assert session.get("G") == [5, 6]
        assert session.can_undo is False

    @pytest.mark.asyncio
    async def test_apply_without_undo(self):
        session, _, _ = await _open()
        session.apply_without_undo([ChannelChange("F", 3, 77)])
        assert session.get("F")[3] == 77
        assert session.can_undo is False
        assert session.is_dirty() is True

    @pytest.mark.asyncio
    async def test_undo_on_empty_stack(self):
        session, _, _ = await _open()
        assert session.undo() is None
        assert session.redo() is None


class TestActiveChannels:
    """Tests for toggle_channel_active."""

    @pytest.mark.asyncio
    async def test_toggle_is_undoable(self):
        session, _, _ = await _open()
        spec = session.toggle_channel_active("F", 1)
        assert spec == ActiveSpec.explicit({0, 2, 3})
        assert session.is_channel_active("F", 1) is False
        assert session.is_dirty() is True

        session.undo()
        assert session.is_channel_active("F", 1) is True
        assert session.is_dirty() is False

    @pytest.mark.asyncio
    async def test_setting_current_state_records_nothing(self):
        session, _, _ = await _open()
        session.toggle_channel_active("F", 1, True)
        assert session.can_undo is False

    @pytest.mark.asyncio
    async def test_out_of_range(self):
        session, _, _ = await _open()
        with pytest.raises(ChannelIndexError):
            session.toggle_channel_active("G", 4)


class TestClipboard:
    """Tests for copy and paste."""

    @pytest.mark.asyncio
    async def test_paste_onto_shorter_fixture(self):
        """Copied membership {0,2} onto a 2-channel fixture keeps only {0}."""
        session, _, _ = await _open()
        session.copy("H")
        action = session.paste(["G"])

        assert action.kind == UndoActionKind.PASTE
        assert session.get("G") == [100, 0]
        assert session.active_spec("G") == ActiveSpec.explicit({0})

    @pytest.mark.asyncio
    async def test_paste_onto_longer_fixture_truncates(self):
        session, _, _ = await _open()
        session.copy("G")
        session.paste(["F"])
        assert session.get("F") == [5, 6, 0, 0]
        assert session.active_spec("F") == ActiveSpec.explicit({0, 1})

    @pytest.mark.asyncio
    async def test_paste_from_all_active_leaves_membership(self):
        session, _, _ = await _open()
        session.add_fixture("N", 2)
        session.copy("N")
        assert session.clipboard.content.active is None
        session.paste(["H"])
        assert session.active_spec("H") == ActiveSpec.explicit({0, 2})

    @pytest.mark.asyncio
    async def test_paste_undo_restores_values_and_membership(self):
        session, _, _ = await _open()
        session.copy("H")
        session.paste(["G", "F"])
        session.undo()
        assert session.get("G") == [5, 6]
        assert session.get("F") == [0, 0, 0, 0]
        assert session.active_spec("G") == ActiveSpec.explicit({0, 1})
        assert session.is_dirty() is False

    @pytest.mark.asyncio
    async def test_paste_with_empty_clipboard(self):
        session, _, _ = await _open()
        assert session.paste(["F"]) is None

    @pytest.mark.asyncio
    async def test_shared_clipboard(self):
        clipboard = ChannelClipboard()
        first, _, _ = await _open(clipboard=clipboard)
        second, _, _ = await _open(clipboard=clipboard)
        first.copy("G")
        second.paste(["F"])
        assert second.get("F")[:2] == [5, 6]


class TestFixtures:
    """Tests for add/remove/restore."""

    @pytest.mark.asyncio
    async def test_add_fixture_uses_defaults(self):
        session, _, _ = await _open()
        dimmer = ChannelDefinition(name="Dimmer", type=ChannelType.INTENSITY, default_value=255)
        values = session.add_fixture("N", 2, [dimmer])
        assert values == [255, 0]
        assert session.active_spec("N") == ALL_ACTIVE
        assert session.is_dirty() is True
        assert "N" in session.dirty_fixtures()

    @pytest.mark.asyncio
    async def test_add_existing_fixture_rejected(self):
        session, _, _ = await _open()
        with pytest.raises(ValueError):
            session.add_fixture("F", 4)

    @pytest.mark.asyncio
    async def test_delete_fixture_values_undoes_add(self):
        session, _, _ = await _open()
        session.add_fixture("N", 2)
        session.delete_fixture_values("N")
        assert "N" not in session.fixture_ids()
        assert session.is_dirty() is False

    @pytest.mark.asyncio
    async def test_remove_purges_working_and_membership(self):
        session, _, _ = await _open()
        session.set_channel_value("G", 0, 1)
        session.remove_fixture("G")
        assert "G" not in session.state.working
        assert "G" not in session.state.active
        assert session.is_dirty() is True
        assert session.removed_fixtures == ["G"]

    @pytest.mark.asyncio
    async def test_unremove_without_cached_values_stays_untracked(self):
        session, _, _ = await _open()
        session.remove_fixture("G")
        assert session.unremove_fixture("G") is True
        assert session.active_spec("G") == ALL_ACTIVE
        assert session.removed_fixtures == []

    @pytest.mark.asyncio
    async def test_unremove_with_cached_values_tracks_all(self):
        session, _, _ = await _open()
        session.set_channel_value("G", 0, 1)
        session.remove_fixture("G")
        session.undo()
        assert "G" in session.state.working
        session.unremove_fixture("G")
        assert session.active_spec("G") == ActiveSpec.explicit({0, 1})

    @pytest.mark.asyncio
    async def test_unremove_not_removed(self):
        session, _, _ = await _open()
        assert session.unremove_fixture("G") is False

    @pytest.mark.asyncio
    async def test_undo_skips_dropped_added_fixture(self):
        session, _, _ = await _open()
        session.add_fixture("N", 1)
        session.set_channel_value("N", 0, 9)
        session.remove_fixture("N")
        session.undo()
        assert "N" not in session.fixture_ids()

    @pytest.mark.asyncio
    async def test_membership_replay_skips_dropped_fixture(self):
        session, _, _ = await _open()
        session.add_fixture("N", 3)
        session.toggle_channel_active("N", 0, False)
        session.remove_fixture("N")
        assert session.is_dirty() is False

        session.undo()
        session.redo()

        assert "N" not in session.state.active
        assert session.fixture_ids() == ["F", "G", "H"]
        assert session.is_dirty() is False

    @pytest.mark.asyncio
    async def test_membership_replay_skips_removed_fixture(self):
        session, _, _ = await _open()
        session.toggle_channel_active("G", 0, False)
        session.remove_fixture("G")

        session.undo()
        assert "G" not in session.state.active
        assert session.removed_fixtures == ["G"]

    @pytest.mark.asyncio
    async def test_removed_fixture_rejects_edits(self):
        session, _, _ = await _open()
        session.remove_fixture("G")

        with pytest.raises(UnknownFixtureError):
            session.set_channel_value("G", 0, 1)
        with pytest.raises(UnknownFixtureError):
            session.batch_apply([ChannelChange("F", 0, 1), ChannelChange("G", 0, 1)])
        with pytest.raises(UnknownFixtureError):
            session.toggle_channel_active("G", 0)

        assert "G" not in session.state.working
        assert session.get("F") == [0, 0, 0, 0]
        session.unremove_fixture("G")
        assert session.active_spec("G") == ALL_ACTIVE


class TestSave:
    """Tests for save()."""

    @pytest.mark.asyncio
    async def test_save_success_resets_state(self):
        session, persistence, _ = await _open()
        session.set_channel_value("F", 1, 200)
        await session.save()

        assert session.is_dirty() is False
        assert session.can_undo is False
        assert session.save_status == SaveStatus.SAVED
        assert session.get("F") == [0, 200, 0, 0]
        persistence.save.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_payload_filters_membership_and_removals(self):
        session, persistence, _ = await _open()
        session.set_channel_value("F", 0, 10)
        session.toggle_channel_active("F", 1, False)
        session.remove_fixture("G")
        session.add_fixture("N", 2)

        await session.save()

        entity_id, payload = persistence.save.await_args.args
        assert entity_id == "look-1"
        by_id = {p.fixture_id: p for p in payload}
        assert list(by_id) == ["F", "H", "N"]
        assert [(e.offset, e.value) for e in by_id["F"].channels] == [(0, 10), (2, 0), (3, 0)]
        assert [e.offset for e in by_id["H"].channels] == [0, 2]
        assert len(by_id["N"].channels) == 2

        assert session.fixture_ids() == ["F", "H", "N"]
        assert session.removed_fixtures == []
        assert session.is_dirty() is False

    @pytest.mark.asyncio
    async def test_save_failure_preserves_state(self):
        session, persistence, _ = await _open()
        persistence.save.side_effect = ConnectionError("backend down")
        session.set_channel_value("F", 0, 10)

        with pytest.raises(SaveFailedError):
            await session.save()

        assert session.is_dirty() is True
        assert session.can_undo is True
        assert session.save_status == SaveStatus.ERROR
        assert session.session_state == SessionState.ERROR
        assert "backend down" in session.last_save_error

    @pytest.mark.asyncio
    async def test_rejected_save(self):
        session, persistence, _ = await _open()
        persistence.save.return_value = False
        session.set_channel_value("F", 0, 10)
        with pytest.raises(SaveFailedError):
            await session.save()
        assert session.get("F")[0] == 10
        assert session.state.server_snapshot["F"][0] == 0

    @pytest.mark.asyncio
    async def test_save_is_not_reentrant(self):
        session, persistence, _ = await _open()
        gate = asyncio.Event()

        async def slow_save(entity_id, fixtures):
            await gate.wait()
            return True

        persistence.save.side_effect = slow_save
        task = asyncio.create_task(session.save())
        await asyncio.sleep(0)

        assert session.session_state == SessionState.SAVING
        with pytest.raises(SaveInProgressError):
            await session.save()

        gate.set()
        await task
        assert persistence.save.await_count == 1

    @pytest.mark.asyncio
    async def test_edits_rejected_while_saving(self):
        session, persistence, _ = await _open()
        session.set_channel_value("F", 0, 10)
        gate = asyncio.Event()

        async def slow_save(entity_id, fixtures):
            await gate.wait()
            return True

        persistence.save.side_effect = slow_save
        task = asyncio.create_task(session.save())
        await asyncio.sleep(0)

        with pytest.raises(SaveInProgressError):
            session.set_channel_value("F", 1, 200)
        with pytest.raises(SaveInProgressError):
            session.batch_apply([ChannelChange("G", 0, 1)])
        with pytest.raises(SaveInProgressError):
            session.toggle_channel_active("F", 2, False)
        with pytest.raises(SaveInProgressError):
            session.undo()
        with pytest.raises(SaveInProgressError):
            session.remove_fixture("G")

        gate.set()
        await task

        assert session.get("F") == [10, 0, 0, 0]
        assert session.state.server_snapshot["F"] == [10, 0, 0, 0]
        assert session.is_dirty() is False

        session.set_channel_value("F", 1, 200)
        assert session.get("F") == [10, 200, 0, 0]
        assert session.can_undo is True

    @pytest.mark.asyncio
    async def test_status_resets_to_idle(self):
        session, persistence, _ = await _open(saved_reset_s=0.01, error_reset_s=0.01)
        await session.save()
        assert session.save_status == SaveStatus.SAVED
        await asyncio.sleep(0.05)
        assert session.save_status == SaveStatus.IDLE

        persistence.save.return_value = False
        with pytest.raises(SaveFailedError):
            await session.save()
        await asyncio.sleep(0.05)
        assert session.save_status == SaveStatus.IDLE
        assert session.session_state == SessionState.READY


class TestDiscard:
    """Tests for discard()."""

    @pytest.mark.asyncio
    async def test_discard_restores_loaded_state(self):
        session, _, _ = await _open()
        session.set_channel_value("F", 0, 10)
        session.toggle_channel_active("H", 0, False)
        session.remove_fixture("G")
        session.add_fixture("N", 1)

        session.discard()

        assert session.is_dirty() is False
        assert session.can_undo is False
        assert session.fixture_ids() == ["F", "G", "H"]
        assert session.active_spec("H") == ActiveSpec.explicit({0, 2})


class TestPreview:
    """Tests for live preview."""

    @pytest.mark.asyncio
    async def test_start_seeds_and_pushes_unsaved(self):
        session, _, preview = await _open()
        session.set_channel_value("G", 1, 42)

        session_id = await session.start_preview()
        await session.preview.drain()

        assert session_id == "preview-1"
        preview.start.assert_awaited_once_with("proj-1")
        preview.initialize_from_entity.assert_awaited_once_with("preview-1", "look-1")
        assert _sent(preview) == {("G", 0): 5, ("G", 1): 42}
        assert session.session_state == SessionState.PREVIEW_ACTIVE

    @pytest.mark.asyncio
    async def test_edits_are_debounced(self):
        session, _, preview = await _open()
        await session.start_preview()
        session.set_channel_value("F", 0, 1)
        session.set_channel_value("F", 0, 2)
        session.set_channel_value("F", 0, 3)
        preview.update_channel.assert_not_awaited()

        await session.preview.flush()
        preview.update_channel.assert_awaited_once_with("preview-1", "F", 0, 3)

    @pytest.mark.asyncio
    async def test_undo_is_sent_immediately(self):
        session, _, preview = await _open()
        await session.start_preview()
        session.batch_apply([ChannelChange("F", 0, 10)])
        await session.preview.drain()
        preview.update_channel.reset_mock()

        session.undo()
        await session.preview.drain()
        preview.update_channel.assert_awaited_once_with("preview-1", "F", 0, 0)

    @pytest.mark.asyncio
    async def test_preview_failure_never_rolls_back(self):
        session, _, preview = await _open()
        preview.update_channel.side_effect = RuntimeError("preview gone")
        await session.start_preview()

        session.batch_apply([ChannelChange("F", 0, 10)])
        await session.preview.drain()

        assert session.get("F")[0] == 10
        assert session.can_undo is True
        assert "preview gone" in session.preview_error
        assert session.save_status == SaveStatus.IDLE

    @pytest.mark.asyncio
    async def test_start_failure(self):
        session, _, preview = await _open()
        preview.start.side_effect = RuntimeError("no project")
        with pytest.raises(PreviewError):
            await session.start_preview()
        assert session.preview.active is False

    @pytest.mark.asyncio
    async def test_stop(self):
        session, _, preview = await _open()
        await session.start_preview()
        assert await session.stop_preview() is True
        preview.cancel.assert_awaited_once_with("preview-1")
        assert await session.stop_preview() is False

    @pytest.mark.asyncio
    async def test_no_preview_when_not_started(self):
        session, _, preview = await _open()
        session.set_channel_value("F", 0, 1)
        await session.preview.flush()
        preview.update_channel.assert_not_awaited()


class TestClose:
    """Tests for teardown."""

    @pytest.mark.asyncio
    async def test_close_swallows_cancel_failure(self):
        session, _, preview = await _open()
        preview.cancel.side_effect = RuntimeError("already gone")
        await session.start_preview()
        session.set_channel_value("F", 0, 1)

        await session.close()

        preview.cancel.assert_awaited_once_with("preview-1")
        assert session.session_state == SessionState.CLOSED
        assert session.preview.has_pending is False

    @pytest.mark.asyncio
    async def test_closed_session_rejects_edits(self):
        session, _, _ = await _open()
        await session.close()
        with pytest.raises(SessionClosedError):
            session.set_channel_value("F", 0, 1)
        with pytest.raises(SessionClosedError):
            await session.save()

    @pytest.mark.asyncio
    async def test_close_twice(self):
        session, _, _ = await _open()
        await session.close()
        await session.close()
        assert session.closed


class TestSharedUndo:
    """Tests for an undo stack shared with a child view."""

    @pytest.mark.asyncio
    async def test_child_replays_popped_action(self):
        stack = UndoStack()
        session, _, _ = await _open(undo_stack=stack)
        assert session.undo_stack is stack

        session.set_channel_value("G", 0, 77)
        action = stack.raw_undo()
        session.apply_without_undo(
            [ChannelChange(d.fixture_id, d.channel_index, d.previous_value) for d in action.deltas]
        )
        assert session.get("G") == [5, 6]
        assert session.can_redo is True


class TestViews:
    """Tests for merged channels and serialization."""

    @pytest.mark.asyncio
    async def test_merged_channels(self):
        session, _, _ = await _open()
        session.set_channel_value("F", 0, 100)
        merged = session.merged_channels(["F", "G"])
        assert len(merged) == 1
        assert merged[0].type == ChannelType.OTHER
        assert merged[0].values == [100, 0, 0, 0, 5, 6]
        assert merged[0].has_variation is True

    @pytest.mark.asyncio
    async def test_set_merged_channel(self):
        session, _, _ = await _open()
        merged = session.merged_channels(["G"])[0]
        session.set_merged_channel(merged, 9)
        assert session.get("G") == [9, 9]
        assert session.undo_stack.undo_length == 1

    @pytest.mark.asyncio
    async def test_to_dict(self):
        session, _, _ = await _open()
        session.set_channel_value("F", 0, 1)
        data = session.to_dict()
        assert data["look_id"] == "look-1"
        assert data["state"] == "editing"
        assert data["dirty"] is True
        assert data["can_undo"] is True
        assert data["dirty_fixtures"] == ["F"]
        assert [f["fixture_id"] for f in data["fixtures"]] == ["F", "G", "H"]
        assert data["fixtures"][2]["active"] == {"kind": "explicit", "channels": [0, 2]}

    @pytest.mark.asyncio
    async def test_changed_event(self):
        session, _, _ = await _open()
        events = []
        session.on('changed', events.append)
        session.set_channel_value("F", 0, 1)
        session.undo()
        assert events == ["look-1", "look-1"]
