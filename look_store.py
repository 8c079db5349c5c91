"""
Look Store - SQLite persistence for looks edited in the look editor

This module stores:
- Fixture: Patched fixture with its channel definitions
- Look: Named set of per-fixture channel values
- Fixture values: Sparse (offset, value) entries, active channels only

Only channels that were active when a look was saved are stored. A
channel missing from a fixture's entries is left untouched on playback.

Every save snapshots the previous fixture values into artifact_versions
first, so a bad save can be inspected or rolled back.

Version: 1.0.0
"""

import json
import sqlite3
import time
import threading
from datetime import datetime
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Any, Sequence

from core.editing.types import (
    ChannelDefinition,
    SparseEntry,
    FixtureSnapshot,
    EntitySnapshot,
    FixturePayload,
)


# ============================================================
# Schema Version - For migrations
# ============================================================
SCHEMA_VERSION = 1

VERSION_KEEP_COUNT = 20


# ============================================================
# Data Models
# ============================================================

@dataclass
class Fixture:
    """A patched fixture. Looks reference fixtures by id."""
    fixture_id: str
    name: str
    channels: List[ChannelDefinition] = field(default_factory=list)

    @property
    def channel_count(self) -> int:
        return len(self.channels)

    def to_dict(self) -> dict:
        return {
            "fixture_id": self.fixture_id,
            "name": self.name,
            "channel_count": self.channel_count,
            "channels": [c.to_dict() for c in self.channels],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Fixture":
        channels = data.get("channels")
        if channels is None:
            channels = [{} for _ in range(int(data.get("channel_count", 0)))]
        return cls(
            fixture_id=data.get("fixture_id", ""),
            name=data.get("name", ""),
            channels=[ChannelDefinition.from_dict(c) for c in channels],
        )


@dataclass
class Look:
    """A look's header. Fixture values live in look_fixture_values."""
    look_id: str
    name: str
    project_id: Optional[str] = None
    description: str = ""
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "look_id": self.look_id,
            "name": self.name,
            "project_id": self.project_id,
            "description": self.description,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Look":
        return cls(
            look_id=data.get("look_id", ""),
            name=data.get("name", ""),
            project_id=data.get("project_id"),
            description=data.get("description", ""),
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
        )


# ============================================================
# Database Schema
# ============================================================

def init_look_store_tables(db_path: str):
    """Initialize the look editor tables"""
    conn = sqlite3.connect(db_path)
    c = conn.cursor()

    c.execute('''CREATE TABLE IF NOT EXISTS fixtures (
        fixture_id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        channels TEXT NOT NULL DEFAULT '[]',
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )''')

    c.execute('''CREATE TABLE IF NOT EXISTS looks (
        look_id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        project_id TEXT,
        description TEXT DEFAULT '',
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )''')

    # Sparse values: JSON list of {"offset": n, "value": v}, active channels only
    c.execute('''CREATE TABLE IF NOT EXISTS look_fixture_values (
        look_id TEXT NOT NULL,
        fixture_id TEXT NOT NULL,
        sort_order INTEGER DEFAULT 0,
        channels TEXT NOT NULL DEFAULT '[]',
        PRIMARY KEY (look_id, fixture_id)
    )''')

    c.execute('''CREATE TABLE IF NOT EXISTS schema_versions (
        module TEXT PRIMARY KEY,
        version INTEGER NOT NULL,
        migrated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )''')

    c.execute('''CREATE TABLE IF NOT EXISTS artifact_versions (
        version_id TEXT PRIMARY KEY,
        artifact_id TEXT NOT NULL,
        artifact_type TEXT NOT NULL,
        version_number INTEGER NOT NULL,
        data_json TEXT NOT NULL,
        author TEXT DEFAULT 'user',
        message TEXT DEFAULT '',
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )''')

    c.execute('''INSERT OR REPLACE INTO schema_versions (module, version, migrated_at)
                 VALUES ('look_store', ?, CURRENT_TIMESTAMP)''', (SCHEMA_VERSION,))

    c.execute('CREATE INDEX IF NOT EXISTS idx_looks_project ON looks(project_id)')
    c.execute('CREATE INDEX IF NOT EXISTS idx_look_fixture_values_look ON look_fixture_values(look_id, sort_order)')
    c.execute('CREATE INDEX IF NOT EXISTS idx_artifact_versions_artifact ON artifact_versions(artifact_id, artifact_type)')

    conn.commit()
    conn.close()
    print("✅ Look store tables initialized")


# ============================================================
# Store
# ============================================================

class LookStore:
    """
    Fixture, look and look-value persistence.
    Thread-safe with connection-per-operation pattern.
    """

    def __init__(self, db_path: str):
        self.db_path = db_path
        self.lock = threading.RLock()
        init_look_store_tables(db_path)

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    # ---- Fixtures ----

    def upsert_fixture(self, fixture: Fixture) -> Fixture:
        """Create or replace a fixture definition"""
        with self.lock:
            conn = self._get_conn()
            conn.execute('''INSERT OR REPLACE INTO fixtures (fixture_id, name, channels, created_at)
                            VALUES (?, ?, ?, ?)''',
                         (fixture.fixture_id, fixture.name,
                          json.dumps([c.to_dict() for c in fixture.channels]),
                          datetime.now().isoformat()))
            conn.commit()
            conn.close()
            print(f"✅ Saved fixture: {fixture.name} ({fixture.fixture_id}, {fixture.channel_count}ch)")
            return fixture

    def get_fixture(self, fixture_id: str) -> Optional[Fixture]:
        conn = self._get_conn()
        row = conn.execute('SELECT * FROM fixtures WHERE fixture_id = ?', (fixture_id,)).fetchone()
        conn.close()
        return self._row_to_fixture(row) if row else None

    def get_all_fixtures(self) -> List[Fixture]:
        conn = self._get_conn()
        rows = conn.execute('SELECT * FROM fixtures ORDER BY name').fetchall()
        conn.close()
        return [self._row_to_fixture(row) for row in rows]

    def _row_to_fixture(self, row: sqlite3.Row) -> Fixture:
        channels = json.loads(row["channels"]) if row["channels"] else []
        return Fixture(
            fixture_id=row["fixture_id"],
            name=row["name"],
            channels=[ChannelDefinition.from_dict(c) for c in channels],
        )

    # ---- Looks ----

    def create_look(self, look: Look) -> Look:
        """Create a new, empty Look"""
        with self.lock:
            conn = self._get_conn()

            now = datetime.now().isoformat()
            look.created_at = now
            look.updated_at = now

            if not look.look_id:
                look.look_id = f"look_{int(time.time() * 1000)}"

            conn.execute('''INSERT INTO looks
                            (look_id, name, project_id, description, created_at, updated_at)
                            VALUES (?, ?, ?, ?, ?, ?)''',
                         (look.look_id, look.name, look.project_id, look.description,
                          look.created_at, look.updated_at))
            conn.commit()
            conn.close()
            print(f"✅ Created look: {look.name} ({look.look_id})")
            return look

    def get_look(self, look_id: str) -> Optional[Look]:
        """Get a Look header by ID"""
        conn = self._get_conn()
        row = conn.execute('SELECT * FROM looks WHERE look_id = ?', (look_id,)).fetchone()
        conn.close()
        return self._row_to_look(row) if row else None

    def get_all_looks(self, project_id: Optional[str] = None) -> List[Look]:
        conn = self._get_conn()
        if project_id is None:
            rows = conn.execute('SELECT * FROM looks ORDER BY name').fetchall()
        else:
            rows = conn.execute('SELECT * FROM looks WHERE project_id = ? ORDER BY name',
                                (project_id,)).fetchall()
        conn.close()
        return [self._row_to_look(row) for row in rows]

    def delete_look(self, look_id: str) -> bool:
        """Delete a Look and its fixture values"""
        with self.lock:
            conn = self._get_conn()
            c = conn.cursor()
            c.execute('DELETE FROM look_fixture_values WHERE look_id = ?', (look_id,))
            c.execute('DELETE FROM looks WHERE look_id = ?', (look_id,))
            deleted = c.rowcount > 0
            conn.commit()
            conn.close()
            if deleted:
                print(f"🗑️ Deleted look: {look_id}")
            return deleted

    def _row_to_look(self, row: sqlite3.Row) -> Look:
        return Look(
            look_id=row["look_id"],
            name=row["name"],
            project_id=row["project_id"],
            description=row["description"] or "",
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    # ---- Fixture Values ----

    def add_fixture_to_look(
        self,
        look_id: str,
        fixture_id: str,
        values: Optional[Sequence[SparseEntry]] = None,
    ) -> bool:
        """
        Add a fixture to a look outside the editor.

        With no values given every channel is stored at its default, so the
        fixture loads fully active.
        """
        fixture = self.get_fixture(fixture_id)
        if fixture is None or self.get_look(look_id) is None:
            return False
        if values is None:
            values = [SparseEntry(i, c.clamp(c.default_value)) for i, c in enumerate(fixture.channels)]

        with self.lock:
            conn = self._get_conn()
            c = conn.cursor()
            c.execute('SELECT COALESCE(MAX(sort_order), -1) + 1 FROM look_fixture_values WHERE look_id = ?',
                      (look_id,))
            sort_order = c.fetchone()[0]
            c.execute('''INSERT OR REPLACE INTO look_fixture_values (look_id, fixture_id, sort_order, channels)
                         VALUES (?, ?, ?, ?)''',
                      (look_id, fixture_id, sort_order, json.dumps([e.to_dict() for e in values])))
            conn.commit()
            conn.close()
        return True

    def get_fixture_values(self, look_id: str) -> List[FixtureSnapshot]:
        """Fixture values of a look, in stored order, joined with their definitions"""
        conn = self._get_conn()
        rows = conn.execute('''SELECT v.fixture_id, v.channels AS sparse, f.channels AS definitions
                               FROM look_fixture_values v
                               LEFT JOIN fixtures f ON f.fixture_id = v.fixture_id
                               WHERE v.look_id = ?
                               ORDER BY v.sort_order, v.fixture_id''', (look_id,)).fetchall()
        conn.close()

        snapshots = []
        for row in rows:
            sparse = [SparseEntry.from_dict(e) for e in json.loads(row["sparse"] or "[]")]
            if row["definitions"] is not None:
                definitions = [ChannelDefinition.from_dict(d) for d in json.loads(row["definitions"])]
                channel_count = len(definitions)
            else:
                # Fixture deleted from the patch: size from the stored offsets
                definitions = None
                channel_count = max((e.offset for e in sparse), default=-1) + 1
            snapshots.append(FixtureSnapshot(
                fixture_id=row["fixture_id"],
                channel_count=channel_count,
                sparse_channels=sparse,
                channels=definitions,
            ))
        return snapshots

    def get_snapshot(self, look_id: str) -> Optional[EntitySnapshot]:
        """Look plus fixture values, as the editor loads it"""
        look = self.get_look(look_id)
        if not look:
            return None
        return EntitySnapshot(
            entity_id=look.look_id,
            fixtures=self.get_fixture_values(look_id),
            project_id=look.project_id,
            name=look.name,
        )

    def save_fixture_values(self, look_id: str, payloads: Sequence[FixturePayload]) -> bool:
        """
        Replace a look's fixture values.

        Fixtures missing from payloads are removed from the look. Every
        fixture in payloads must exist in the patch; otherwise nothing is
        written.

        Returns:
            False if the look or a referenced fixture does not exist
        """
        with self.lock:
            if self.get_look(look_id) is None:
                print(f"❌ Save rejected: look {look_id} not found")
                return False

            conn = self._get_conn()
            known = {row["fixture_id"] for row in conn.execute('SELECT fixture_id FROM fixtures')}
            conn.close()
            missing = [p.fixture_id for p in payloads if p.fixture_id not in known]
            if missing:
                print(f"❌ Save rejected: unknown fixtures {missing} in look {look_id}")
                return False

            previous = [f.to_dict() for f in self.get_fixture_values(look_id)]
            self._save_version(look_id, 'look', {"fixtures": previous}, 'Auto-save before edit')
            self.cleanup_old_versions(look_id, 'look')

            conn = self._get_conn()
            try:
                c = conn.cursor()
                c.execute('DELETE FROM look_fixture_values WHERE look_id = ?', (look_id,))
                c.executemany('''INSERT INTO look_fixture_values (look_id, fixture_id, sort_order, channels)
                                 VALUES (?, ?, ?, ?)''',
                              [(look_id, p.fixture_id, i, json.dumps([e.to_dict() for e in p.channels]))
                               for i, p in enumerate(payloads)])
                c.execute('UPDATE looks SET updated_at = ? WHERE look_id = ?',
                          (datetime.now().isoformat(), look_id))
                conn.commit()
            except sqlite3.Error:
                conn.rollback()
                raise
            finally:
                conn.close()

            print(f"✅ Saved look values: {look_id} ({len(payloads)} fixtures)")
            return True

    # ---- Version History ----

    def _save_version(self, artifact_id: str, artifact_type: str, data: dict, message: str = "") -> str:
        """Save a version snapshot of an artifact before modification"""
        conn = self._get_conn()
        c = conn.cursor()

        c.execute('''SELECT COALESCE(MAX(version_number), 0) + 1
                    FROM artifact_versions
                    WHERE artifact_id = ? AND artifact_type = ?''',
                  (artifact_id, artifact_type))
        version_number = c.fetchone()[0]

        version_id = f"ver_{artifact_id}_{version_number}_{int(time.time() * 1000)}"
        now = datetime.now().isoformat()

        c.execute('''INSERT INTO artifact_versions
                    (version_id, artifact_id, artifact_type, version_number, data_json, author, message, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)''',
                  (version_id, artifact_id, artifact_type, version_number,
                   json.dumps(data), 'user', message, now))

        conn.commit()
        conn.close()
        print(f"📜 Saved version {version_number} of {artifact_type} {artifact_id}")
        return version_id

    def get_versions(self, artifact_id: str, artifact_type: str = 'look') -> List[Dict[str, Any]]:
        """Get all versions of an artifact, newest first"""
        conn = self._get_conn()
        rows = conn.execute('''SELECT version_id, artifact_id, artifact_type, version_number,
                                      data_json, author, message, created_at
                               FROM artifact_versions
                               WHERE artifact_id = ? AND artifact_type = ?
                               ORDER BY version_number DESC''',
                            (artifact_id, artifact_type)).fetchall()
        conn.close()

        return [{
            'version_id': row['version_id'],
            'artifact_id': row['artifact_id'],
            'artifact_type': row['artifact_type'],
            'version_number': row['version_number'],
            'data': json.loads(row['data_json']),
            'author': row['author'],
            'message': row['message'],
            'created_at': row['created_at']
        } for row in rows]

    def cleanup_old_versions(self, artifact_id: str, artifact_type: str, keep_count: int = VERSION_KEEP_COUNT):
        """Keep only the most recent N versions of an artifact"""
        with self.lock:
            conn = self._get_conn()
            c = conn.cursor()

            c.execute('''SELECT version_id FROM artifact_versions
                        WHERE artifact_id = ? AND artifact_type = ?
                        ORDER BY version_number DESC
                        LIMIT -1 OFFSET ?''',
                      (artifact_id, artifact_type, keep_count))
            to_delete = [row['version_id'] for row in c.fetchall()]

            if to_delete:
                placeholders = ','.join('?' * len(to_delete))
                c.execute(f'DELETE FROM artifact_versions WHERE version_id IN ({placeholders})',
                          to_delete)
                conn.commit()
                print(f"🧹 Cleaned up {len(to_delete)} old versions of {artifact_type} {artifact_id}")

            conn.close()


# ============================================================
# API Helpers
# ============================================================

def validate_look_data(data: dict) -> tuple:
    """Validate Look creation data"""
    if not data.get("name"):
        return False, "Look name is required"
    return True, None


def validate_fixture_data(data: dict) -> tuple:
    """Validate Fixture creation data"""
    if not data.get("fixture_id"):
        return False, "fixture_id is required"
    if not data.get("name"):
        return False, "Fixture name is required"
    channels = data.get("channels")
    if channels is None and not isinstance(data.get("channel_count"), int):
        return False, "Fixture needs channels or channel_count"
    return True, None
