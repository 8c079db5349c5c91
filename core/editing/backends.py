"""
Look Editor Backends - Collaborators the edit session talks to

The edit session never touches sqlite or the preview service directly.
It talks to three async interfaces, so tests can substitute AsyncMocks and
a remote look store can be swapped in later.

Classes:
    SnapshotSource: Fetch a look for editing
    LookPersistence: Persist edited fixture values
    PreviewBackend: Live preview session control
    LookStoreBackend: SnapshotSource + LookPersistence over look_store.LookStore
    PreviewServiceBackend: PreviewBackend over preview_service.PreviewService

Example:
    backend = LookStoreBackend(look_store)
    snapshot = await backend.fetch("look_1700000000000")
"""

from abc import ABC, abstractmethod
from typing import List, Any
import asyncio
import logging

from .types import EntitySnapshot, FixturePayload
from .errors import PersistenceError, PreviewError

logger = logging.getLogger(__name__)


class SnapshotSource(ABC):
    """Source of the server snapshot an edit session starts from."""

    @abstractmethod
    async def fetch(self, entity_id: str) -> EntitySnapshot:
        """
        Fetch a look with its fixtures' sparse channel values.

        Args:
            entity_id: Look (or scene) identifier

        Returns:
            Snapshot with one FixtureSnapshot per fixture

        Raises:
            PersistenceError: If the look does not exist or cannot be read
        """
        pass


class LookPersistence(ABC):
    """Destination for saved edits."""

    @abstractmethod
    async def save(self, entity_id: str, fixtures: List[FixturePayload]) -> bool:
        """
        Replace a look's fixture values.

        Fixtures missing from the payload are removed from the look.

        Args:
            entity_id: Look identifier
            fixtures: Sparse, membership-filtered values per fixture

        Returns:
            True if saved. False or an exception means nothing was saved.
        """
        pass


class PreviewBackend(ABC):
    """Live preview session control."""

    @abstractmethod
    async def start(self, project_id: str) -> str:
        """Start a preview session for a project. Returns the session id."""
        pass

    @abstractmethod
    async def cancel(self, session_id: str) -> None:
        """End a preview session and restore live output."""
        pass

    @abstractmethod
    async def update_channel(
        self, session_id: str, fixture_id: str, channel_index: int, value: int
    ) -> None:
        """Set one channel in the preview session."""
        pass

    @abstractmethod
    async def initialize_from_entity(self, session_id: str, entity_id: str) -> None:
        """Seed the preview session from a saved look in one call."""
        pass


# ============================================================
# Local Adapters
# ============================================================

class LookStoreBackend(SnapshotSource, LookPersistence):
    """
    Adapter over the sqlite LookStore.

    LookStore is synchronous and uses connection-per-operation, so calls
    run in the default executor to keep the editor loop responsive.
    """

    def __init__(self, look_store: Any):
        self.look_store = look_store

    async def fetch(self, entity_id: str) -> EntitySnapshot:
        loop = asyncio.get_running_loop()
        snapshot = await loop.run_in_executor(None, self.look_store.get_snapshot, entity_id)
        if snapshot is None:
            raise PersistenceError(f"Look not found: {entity_id}")
        return snapshot

    async def save(self, entity_id: str, fixtures: List[FixturePayload]) -> bool:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None, self.look_store.save_fixture_values, entity_id, fixtures
        )


class PreviewServiceBackend(PreviewBackend):
    """Adapter over the in-process PreviewService."""

    def __init__(self, preview_service: Any, look_store: Any):
        self.preview_service = preview_service
        self.look_store = look_store

    async def start(self, project_id: str) -> str:
        session = self.preview_service.start_edit_session(project_id)
        return session.session_id

    async def cancel(self, session_id: str) -> None:
        if not self.preview_service.delete_session(session_id):
            raise PreviewError(f"Preview session not found: {session_id}")

    async def update_channel(
        self, session_id: str, fixture_id: str, channel_index: int, value: int
    ) -> None:
        if not self.preview_service.update_fixture_channel(
            session_id, fixture_id, channel_index, value
        ):
            raise PreviewError(f"Preview session not found: {session_id}")

    async def initialize_from_entity(self, session_id: str, entity_id: str) -> None:
        loop = asyncio.get_running_loop()
        snapshot = await loop.run_in_executor(None, self.look_store.get_snapshot, entity_id)
        if snapshot is None:
            raise PreviewError(f"Look not found: {entity_id}")
        if not self.preview_service.load_fixtures(session_id, snapshot.fixtures):
            raise PreviewError(f"Preview session not found: {session_id}")
