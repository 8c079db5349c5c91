"""
Look Editor Exceptions

Programming errors (bad fixture id, channel out of range) derive from the
matching builtin so callers can catch them either way. Save failures are
recoverable and leave session state untouched.
"""


class EditorError(Exception):
    """Base exception for look editor errors."""
    pass


class UnknownFixtureError(EditorError, KeyError):
    """Fixture is neither in the working set nor in the server snapshot."""

    def __init__(self, fixture_id: str):
        super().__init__(fixture_id)
        self.fixture_id = fixture_id

    def __str__(self) -> str:
        return f"Unknown fixture: {self.fixture_id}"


class ChannelIndexError(EditorError, IndexError):
    """Channel index outside [0, channel_count)."""

    def __init__(self, fixture_id: str, channel_index: int, channel_count: int):
        super().__init__(
            f"Channel {channel_index} out of range for fixture {fixture_id} "
            f"({channel_count} channels)"
        )
        self.fixture_id = fixture_id
        self.channel_index = channel_index
        self.channel_count = channel_count


class SaveInProgressError(EditorError):
    """save() called while a save is already running."""
    pass


class SaveFailedError(EditorError):
    """The look store rejected or failed the save."""
    pass


class SessionClosedError(EditorError):
    """Operation on a session that has been torn down."""
    pass


class SessionNotLoadedError(EditorError):
    """Operation before the snapshot has been fetched."""
    pass


class SessionAlreadyOpenError(EditorError):
    """An edit session for this entity is already open."""

    def __init__(self, entity_id: str):
        super().__init__(f"An edit session is already open for {entity_id}")
        self.entity_id = entity_id


class PreviewError(EditorError):
    """Preview collaborator failed. Never fatal to editing."""
    pass


class PersistenceError(EditorError):
    """Look store failed to persist or fetch."""
    pass
