"""SQLite storage for memory chunks (FTS5/BM25 search) and the user profile."""

from __future__ import annotations

import json
import re
import sqlite3
from datetime import datetime, timezone
from pathlib import Path

from mnemo.config.schema import MemoryConfig
from mnemo.logging import get_logger
from mnemo.memory.models import MemoryChunk, StoreResult, UserProfileEntry
from mnemo.memory.store import ANY_WORKSPACE, MemoryStoreClient, _AnyWorkspace

logger = get_logger(__name__)

_FTS_TOKEN_RE = re.compile(r"\w+", re.UNICODE)

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS memory_chunks (
        id              TEXT PRIMARY KEY,
        workspace       TEXT,
        conversation_id TEXT,
        type            TEXT NOT NULL,
        source          TEXT NOT NULL DEFAULT 'auto',
        content         TEXT NOT NULL,
        tags            TEXT,
        importance      INTEGER NOT NULL DEFAULT 5,
        access_count    INTEGER NOT NULL DEFAULT 0,
        last_accessed   REAL,
        created_at      REAL NOT NULL,
        updated_at      REAL NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_memory_workspace ON memory_chunks(workspace)",
    "CREATE INDEX IF NOT EXISTS idx_memory_type ON memory_chunks(type)",
    "CREATE INDEX IF NOT EXISTS idx_memory_importance ON memory_chunks(importance DESC)",
    "CREATE INDEX IF NOT EXISTS idx_memory_created ON memory_chunks(created_at DESC)",
    "CREATE INDEX IF NOT EXISTS idx_memory_conversation ON memory_chunks(conversation_id)",
    """
    CREATE VIRTUAL TABLE IF NOT EXISTS memory_chunks_fts USING fts5(
        content,
        tags,
        content='memory_chunks',
        content_rowid='rowid',
        tokenize='porter unicode61'
    )
    """,
    """
    CREATE TRIGGER IF NOT EXISTS memory_chunks_ai AFTER INSERT ON memory_chunks BEGIN
        INSERT INTO memory_chunks_fts(rowid, content, tags)
        VALUES (new.rowid, new.content, new.tags);
    END
    """,
    """
    CREATE TRIGGER IF NOT EXISTS memory_chunks_ad AFTER DELETE ON memory_chunks BEGIN
        INSERT INTO memory_chunks_fts(memory_chunks_fts, rowid, content, tags)
        VALUES ('delete', old.rowid, old.content, old.tags);
    END
    """,
    """
    CREATE TRIGGER IF NOT EXISTS memory_chunks_au AFTER UPDATE OF content, tags ON memory_chunks BEGIN
        INSERT INTO memory_chunks_fts(memory_chunks_fts, rowid, content, tags)
        VALUES ('delete', old.rowid, old.content, old.tags);
        INSERT INTO memory_chunks_fts(rowid, content, tags)
        VALUES (new.rowid, new.content, new.tags);
    END
    """,
    """
    CREATE TABLE IF NOT EXISTS user_profile (
        id              TEXT PRIMARY KEY,
        category        TEXT NOT NULL,
        key             TEXT NOT NULL,
        value           TEXT NOT NULL,
        confidence      REAL NOT NULL DEFAULT 0.5,
        evidence_count  INTEGER NOT NULL DEFAULT 1,
        created_at      REAL NOT NULL,
        updated_at      REAL NOT NULL,
        UNIQUE(category, key)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_profile_category ON user_profile(category)",
    "CREATE INDEX IF NOT EXISTS idx_profile_confidence ON user_profile(confidence DESC)",
)

_CHUNK_COLUMNS = (
    "m.id, m.workspace, m.conversation_id, m.type, m.source, m.content, m.tags, "
    "m.importance, m.access_count, m.last_accessed, m.created_at, m.updated_at"
)


def _to_ts(value: datetime) -> float:
    return value.timestamp()


def _from_ts(value: float | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc)


def build_fts_query(query: str) -> str:
    """Turn free text into an FTS5 OR-query of quoted terms ('' if no terms)."""
    terms = _FTS_TOKEN_RE.findall(query)
    return " OR ".join(f'"{term}"' for term in terms)


class SQLiteMemoryStore(MemoryStoreClient):
    """Persistent memory storage using SQLite with an FTS5 index.

    Project memories are stored with their workspace path; ``workspace=None``
    rows form the global tier, which is visible from every workspace.
    """

    def __init__(self, db_path: Path | str, *, default_confidence: float = 0.5) -> None:
        self.db_path = db_path
        self.default_confidence = default_confidence
        self._conn: sqlite3.Connection | None = None

    @classmethod
    def from_config(cls, config: MemoryConfig) -> SQLiteMemoryStore:
        return cls(config.db_path, default_confidence=config.default_profile_confidence)

    def _get_connection(self) -> sqlite3.Connection:
        """Get or create the database connection, creating tables on first use."""
        if self._conn is None:
            if isinstance(self.db_path, Path):
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(self.db_path)
            self._conn.row_factory = sqlite3.Row
            self.init_db()
        return self._conn

    def init_db(self) -> None:
        conn = self._conn if self._conn is not None else self._get_connection()
        for statement in _SCHEMA:
            conn.execute(statement)
        conn.commit()

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    @staticmethod
    def _workspace_clause(workspace: str | None) -> tuple[str, tuple]:
        if workspace is None:
            return "m.workspace IS NULL", ()
        return "(m.workspace = ? OR m.workspace IS NULL)", (workspace,)

    @staticmethod
    def _row_to_chunk(row: sqlite3.Row) -> MemoryChunk:
        return MemoryChunk(
            id=row["id"],
            workspace=row["workspace"],
            conversation_id=row["conversation_id"],
            type=row["type"],
            source=row["source"],
            content=row["content"],
            tags=json.loads(row["tags"]) if row["tags"] else [],
            importance=row["importance"],
            access_count=row["access_count"],
            last_accessed_at=_from_ts(row["last_accessed"]),
            created_at=_from_ts(row["created_at"]),
            updated_at=_from_ts(row["updated_at"]),
        )

    @staticmethod
    def _row_to_profile(row: sqlite3.Row) -> UserProfileEntry:
        return UserProfileEntry(
            id=row["id"],
            category=row["category"],
            key=row["key"],
            value=row["value"],
            confidence=row["confidence"],
            evidence_count=row["evidence_count"],
            created_at=_from_ts(row["created_at"]),
            updated_at=_from_ts(row["updated_at"]),
        )

    async def insert_memory_chunk(self, chunk: MemoryChunk) -> StoreResult[None]:
        try:
            conn = self._get_connection()
            conn.execute(
                """
                INSERT INTO memory_chunks (
                    id, workspace, conversation_id, type, source, content, tags,
                    importance, access_count, last_accessed, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    chunk.id,
                    chunk.workspace,
                    chunk.conversation_id,
                    chunk.type,
                    chunk.source,
                    chunk.content,
                    json.dumps(chunk.tags, ensure_ascii=False),
                    chunk.importance,
                    chunk.access_count,
                    _to_ts(chunk.last_accessed_at) if chunk.last_accessed_at else None,
                    _to_ts(chunk.created_at),
                    _to_ts(chunk.updated_at),
                ),
            )
            conn.commit()
            return StoreResult.ok()
        except sqlite3.Error as e:
            logger.warning("Failed to insert memory chunk", memory_id=chunk.id, error=str(e))
            return StoreResult.fail(str(e))

    async def search_memories(
        self, query: str, workspace: str | None, limit: int
    ) -> StoreResult[list[MemoryChunk]]:
        fts_query = build_fts_query(query)
        if not fts_query or limit <= 0:
            return StoreResult.ok([])
        clause, params = self._workspace_clause(workspace)
        try:
            cursor = self._get_connection().execute(
                f"""
                SELECT {_CHUNK_COLUMNS}
                FROM memory_chunks_fts f
                JOIN memory_chunks m ON m.rowid = f.rowid
                WHERE memory_chunks_fts MATCH ? AND {clause}
                ORDER BY bm25(memory_chunks_fts), m.importance DESC
                LIMIT ?
                """,
                (fts_query, *params, limit),
            )
            return StoreResult.ok([self._row_to_chunk(row) for row in cursor.fetchall()])
        except sqlite3.Error as e:
            logger.warning("Memory keyword search failed", query=query, error=str(e))
            return StoreResult.fail(str(e))

    async def get_memories_by_workspace(
        self, workspace: str | None, limit: int
    ) -> StoreResult[list[MemoryChunk]]:
        if limit <= 0:
            return StoreResult.ok([])
        clause, params = self._workspace_clause(workspace)
        try:
            cursor = self._get_connection().execute(
                f"""
                SELECT {_CHUNK_COLUMNS} FROM memory_chunks m
                WHERE {clause}
                ORDER BY m.importance DESC, m.created_at DESC
                LIMIT ?
                """,
                (*params, limit),
            )
            return StoreResult.ok([self._row_to_chunk(row) for row in cursor.fetchall()])
        except sqlite3.Error as e:
            logger.warning("Memory listing failed", workspace=workspace, error=str(e))
            return StoreResult.fail(str(e))

    async def get_memories_by_type(
        self, memory_type: str, workspace: str | None, limit: int
    ) -> StoreResult[list[MemoryChunk]]:
        clause, params = self._workspace_clause(workspace)
        try:
            cursor = self._get_connection().execute(
                f"""
                SELECT {_CHUNK_COLUMNS} FROM memory_chunks m
                WHERE m.type = ? AND {clause}
                ORDER BY m.created_at DESC
                LIMIT ?
                """,
                (memory_type, *params, limit),
            )
            return StoreResult.ok([self._row_to_chunk(row) for row in cursor.fetchall()])
        except sqlite3.Error as e:
            logger.warning("Memory listing by type failed", type=memory_type, error=str(e))
            return StoreResult.fail(str(e))

    async def touch_memory(self, memory_id: str) -> None:
        try:
            conn = self._get_connection()
            conn.execute(
                """
                UPDATE memory_chunks
                SET access_count = access_count + 1, last_accessed = ?
                WHERE id = ?
                """,
                (datetime.now(timezone.utc).timestamp(), memory_id),
            )
            conn.commit()
        except sqlite3.Error as e:
            logger.warning("Failed to touch memory", memory_id=memory_id, error=str(e))

    async def get_memory_count(
        self, workspace: str | None | _AnyWorkspace = ANY_WORKSPACE
    ) -> StoreResult[int]:
        if workspace is ANY_WORKSPACE:
            sql, params = "SELECT COUNT(*) FROM memory_chunks", ()
        elif workspace is None:
            sql, params = "SELECT COUNT(*) FROM memory_chunks WHERE workspace IS NULL", ()
        else:
            sql, params = "SELECT COUNT(*) FROM memory_chunks WHERE workspace = ?", (workspace,)
        try:
            row = self._get_connection().execute(sql, params).fetchone()
            return StoreResult.ok(int(row[0]))
        except sqlite3.Error as e:
            logger.warning("Memory count failed", error=str(e))
            return StoreResult.fail(str(e))

    async def get_memory_time_range(
        self, workspace: str | None | _AnyWorkspace = ANY_WORKSPACE
    ) -> StoreResult[tuple[datetime, datetime] | None]:
        if workspace is ANY_WORKSPACE:
            sql, params = "SELECT MIN(created_at), MAX(created_at) FROM memory_chunks", ()
        else:
            clause, params = self._workspace_clause(workspace)
            sql = f"SELECT MIN(m.created_at), MAX(m.created_at) FROM memory_chunks m WHERE {clause}"
        try:
            row = self._get_connection().execute(sql, params).fetchone()
            if row is None or row[0] is None:
                return StoreResult.ok(None)
            return StoreResult.ok((_from_ts(row[0]), _from_ts(row[1])))
        except sqlite3.Error as e:
            logger.warning("Memory time range query failed", error=str(e))
            return StoreResult.fail(str(e))

    async def delete_memory_chunk(self, memory_id: str) -> StoreResult[bool]:
        try:
            conn = self._get_connection()
            cursor = conn.execute("DELETE FROM memory_chunks WHERE id = ?", (memory_id,))
            conn.commit()
            return StoreResult.ok(cursor.rowcount > 0)
        except sqlite3.Error as e:
            logger.warning("Failed to delete memory", memory_id=memory_id, error=str(e))
            return StoreResult.fail(str(e))

    async def delete_workspace_memories(self, workspace: str) -> StoreResult[int]:
        try:
            conn = self._get_connection()
            cursor = conn.execute("DELETE FROM memory_chunks WHERE workspace = ?", (workspace,))
            conn.commit()
            return StoreResult.ok(cursor.rowcount)
        except sqlite3.Error as e:
            logger.warning("Failed to delete workspace memories", workspace=workspace, error=str(e))
            return StoreResult.fail(str(e))

    async def get_user_profile(self) -> StoreResult[list[UserProfileEntry]]:
        try:
            cursor = self._get_connection().execute(
                "SELECT * FROM user_profile ORDER BY confidence DESC, updated_at DESC"
            )
            return StoreResult.ok([self._row_to_profile(row) for row in cursor.fetchall()])
        except sqlite3.Error as e:
            logger.warning("Failed to load user profile", error=str(e))
            return StoreResult.fail(str(e))

    async def get_user_profile_by_category(self, category: str) -> StoreResult[list[UserProfileEntry]]:
        try:
            cursor = self._get_connection().execute(
                "SELECT * FROM user_profile WHERE category = ? ORDER BY confidence DESC",
                (category,),
            )
            return StoreResult.ok([self._row_to_profile(row) for row in cursor.fetchall()])
        except sqlite3.Error as e:
            logger.warning("Failed to load user profile category", category=category, error=str(e))
            return StoreResult.fail(str(e))

    async def upsert_user_profile(
        self,
        *,
        id: str,
        category: str,
        key: str,
        value: str,
        confidence: float | None = None,
    ) -> StoreResult[None]:
        """Insert or overwrite a profile entry.

        The value is last-write-wins. An explicit confidence replaces the
        stored one; ``None`` keeps it (new entries get the default).
        """
        now = datetime.now(timezone.utc).timestamp()
        try:
            conn = self._get_connection()
            conn.execute(
                """
                INSERT INTO user_profile (
                    id, category, key, value, confidence, evidence_count, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, 1, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    value = excluded.value,
                    confidence = COALESCE(?, user_profile.confidence),
                    evidence_count = user_profile.evidence_count + 1,
                    updated_at = excluded.updated_at
                """,
                (
                    id,
                    category,
                    key,
                    value,
                    confidence if confidence is not None else self.default_confidence,
                    now,
                    now,
                    confidence,
                ),
            )
            conn.commit()
            return StoreResult.ok()
        except sqlite3.Error as e:
            logger.warning("Failed to upsert user profile", entry_id=id, error=str(e))
            return StoreResult.fail(str(e))

    async def delete_user_profile_entry(self, entry_id: str) -> StoreResult[bool]:
        try:
            conn = self._get_connection()
            cursor = conn.execute("DELETE FROM user_profile WHERE id = ?", (entry_id,))
            conn.commit()
            return StoreResult.ok(cursor.rowcount > 0)
        except sqlite3.Error as e:
            logger.warning("Failed to delete profile entry", entry_id=entry_id, error=str(e))
            return StoreResult.fail(str(e))

    async def clear_user_profile(self) -> StoreResult[int]:
        try:
            conn = self._get_connection()
            cursor = conn.execute("DELETE FROM user_profile")
            conn.commit()
            return StoreResult.ok(cursor.rowcount)
        except sqlite3.Error as e:
            logger.warning("Failed to clear user profile", error=str(e))
            return StoreResult.fail(str(e))
