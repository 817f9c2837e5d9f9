"""SQLite storage for listening history and encrypted tokens."""

import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

import aiosqlite
from cryptography.fernet import Fernet

from listened_sweep.utils.credentials import CredentialStore


def parse_timestamp(value: str) -> datetime:
    """Parse a stored ISO-8601 date, assuming UTC when no offset is present."""
    if value.endswith('Z'):
        value = value[:-1] + '+00:00'
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class HistoryCache:
    """
    Append-only store of scrobbled tracks.

    Rows are unique on (artist, name); the check happens here rather than as a
    database constraint so existing databases keep working unchanged.
    """

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._ensure_directory()

    def _ensure_directory(self):
        """Ensure the database directory exists."""
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

    async def init_db(self):
        """Create the tracks table if it does not exist yet."""
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("""
                CREATE TABLE IF NOT EXISTS tracks (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    artist TEXT NOT NULL,
                    album TEXT NOT NULL,
                    name TEXT NOT NULL,
                    date TEXT NOT NULL
                )
            """)
            await db.commit()

    async def get_latest_record(self) -> Optional[Dict]:
        """Get the most recent record by date."""
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                "SELECT * FROM tracks ORDER BY date DESC, id DESC LIMIT 1"
            )
            row = await cursor.fetchone()
            if row:
                return dict(row)
            return None

    async def get_watermark(self) -> int:
        """Unix timestamp of the latest record, or 0 when the cache is empty."""
        latest = await self.get_latest_record()
        if not latest:
            return 0
        return int(parse_timestamp(latest['date']).timestamp())

    async def exists(self, artist: str, name: str) -> bool:
        """Check if an (artist, name) pair is already stored."""
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(
                "SELECT 1 FROM tracks WHERE artist = ? AND name = ? LIMIT 1",
                (artist, name)
            )
            row = await cursor.fetchone()
            return row is not None

    async def insert(self, record: Dict):
        """Append a record without checking for duplicates."""
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("""
                INSERT INTO tracks (artist, album, name, date)
                VALUES (?, ?, ?, ?)
            """, (record['artist'], record.get('album') or '', record['name'], record['date']))
            await db.commit()

    async def add_if_new(self, record: Dict) -> bool:
        """Insert a record unless its (artist, name) pair is stored. Returns True if inserted."""
        if await self.exists(record['artist'], record['name']):
            return False
        await self.insert(record)
        return True

    async def get_all_tracks(self) -> List[Dict]:
        """Get every stored record, oldest first."""
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute("SELECT * FROM tracks ORDER BY date ASC, id ASC")
            rows = await cursor.fetchall()
            return [dict(row) for row in rows]

    async def count(self) -> int:
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute("SELECT COUNT(*) FROM tracks")
            row = await cursor.fetchone()
            return row[0] if row else 0


class SqliteCredentialStore(CredentialStore):
    """Keeps tokens Fernet-encrypted in a credentials table beside the history."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._fernet = Fernet(self._get_or_create_key())

    def _get_or_create_key(self) -> bytes:
        """Get or create encryption key for token storage."""
        key_path = Path(self.db_path).parent / ".encryption_key"
        if key_path.exists():
            return key_path.read_bytes()
        key = Fernet.generate_key()
        key_path.write_bytes(key)
        os.chmod(key_path, 0o600)
        return key

    async def _init_table(self, db: aiosqlite.Connection):
        await db.execute("""
            CREATE TABLE IF NOT EXISTS credentials (
                key TEXT PRIMARY KEY,
                data TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)

    async def get(self, key: str) -> Optional[str]:
        async with aiosqlite.connect(self.db_path) as db:
            await self._init_table(db)
            cursor = await db.execute(
                "SELECT data FROM credentials WHERE key = ?",
                (key,)
            )
            row = await cursor.fetchone()
            if row:
                return self._fernet.decrypt(row[0].encode()).decode()
            return None

    async def set(self, key: str, value: str) -> None:
        encrypted = self._fernet.encrypt(value.encode()).decode()
        async with aiosqlite.connect(self.db_path) as db:
            await self._init_table(db)
            await db.execute("""
                INSERT OR REPLACE INTO credentials (key, data, updated_at)
                VALUES (?, ?, ?)
            """, (key, encrypted, datetime.now().isoformat()))
            await db.commit()
