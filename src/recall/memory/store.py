"""Memory storage backend using SQLite."""

import aiosqlite
import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Optional

from .exceptions import InvalidMemoryIdError, MemoryNotFoundError, StoreError
from .types import (
    ImportanceLevel,
    Memory,
    MemoryQuery,
    MemoryRelation,
    MemoryType,
    ReviewSession,
    parse_timestamp,
    utcnow,
)
from ..config import config

logger = logging.getLogger(__name__)

# Spaced review intervals; a memory moves one stage up per recorded review.
REVIEW_INTERVALS = [
    timedelta(days=1),
    timedelta(days=2),
    timedelta(days=4),
    timedelta(days=7),
    timedelta(days=15),
    timedelta(days=30),
    timedelta(days=60),
    timedelta(days=120),
]

MEMORY_COUNTER_KEY = "memory_counter"
LAST_ORGANIZATION_KEY = "last_memory_organization"

_UPDATABLE_FIELDS = (
    "content",
    "keywords",
    "context",
    "importance",
    "importance_level",
    "memory_type",
    "memory_subtype",
    "is_pinned",
)

_LEVEL_ORDER = """
    CASE importance_level
        WHEN 'important' THEN 0
        WHEN 'moderate' THEN 1
        ELSE 2
    END
"""


def validate_memory_id(memory_id) -> int:
    """Return the id if it is a positive integer, raise otherwise."""
    if isinstance(memory_id, bool) or not isinstance(memory_id, int) or memory_id <= 0:
        raise InvalidMemoryIdError(memory_id)
    return memory_id


class MemoryStore:
    """
    SQLite-based memory storage.

    Stores memories persistently with support for:
    - CRUD operations with cascading relation cleanup
    - Keyword/content candidate search
    - Spaced-review scheduling queries
    - Review session history
    - Persistent counters
    """

    def __init__(
        self,
        db_path: Optional[Path] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db_path = db_path or config.paths.database
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.clock = clock
        self._initialized = False

    async def initialize(self):
        """Initialize database schema."""
        if self._initialized:
            return

        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("""
                CREATE TABLE IF NOT EXISTS memories (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    content TEXT NOT NULL,
                    keywords TEXT,
                    context TEXT,
                    importance REAL DEFAULT 0.5,
                    importance_level TEXT DEFAULT 'moderate',
                    memory_type TEXT DEFAULT 'factual',
                    memory_subtype TEXT,
                    is_pinned INTEGER DEFAULT 0,
                    created_at TEXT NOT NULL,
                    last_accessed TEXT
                )
            """)
            await db.execute("""
                CREATE TABLE IF NOT EXISTS memory_relations (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    memory_id INTEGER NOT NULL,
                    related_memory_id INTEGER NOT NULL,
                    relation_strength REAL DEFAULT 1.0,
                    created_at TEXT NOT NULL
                )
            """)
            await db.execute("""
                CREATE TABLE IF NOT EXISTS memory_reviews (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    memory_id INTEGER NOT NULL,
                    review_time TEXT NOT NULL
                )
            """)
            await db.execute("""
                CREATE TABLE IF NOT EXISTS memory_review_sessions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp TEXT NOT NULL,
                    reviewed_count INTEGER NOT NULL,
                    forgotten_count INTEGER NOT NULL,
                    unchanged_count INTEGER NOT NULL,
                    details TEXT,
                    trigger_type TEXT
                )
            """)
            await db.execute("""
                CREATE TABLE IF NOT EXISTS system_config (
                    key TEXT PRIMARY KEY,
                    value TEXT,
                    updated_at TEXT
                )
            """)

            # Indexes for common queries
            await db.execute(
                "CREATE INDEX IF NOT EXISTS idx_memory_type ON memories(memory_type)"
            )
            await db.execute(
                "CREATE INDEX IF NOT EXISTS idx_importance ON memories(importance)"
            )
            await db.execute(
                "CREATE INDEX IF NOT EXISTS idx_relation_source ON memory_relations(memory_id)"
            )
            await db.execute(
                "CREATE INDEX IF NOT EXISTS idx_review_memory ON memory_reviews(memory_id)"
            )

            await db.commit()

        self._initialized = True

    async def _fetch_memories(self, sql: str, params=()) -> list[Memory]:
        memories = []
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(sql, params) as cursor:
                async for row in cursor:
                    memories.append(Memory.from_dict(dict(row)))
        return memories

    # ==================== Memories ====================

    async def add(self, memory: Memory, related_ids: Optional[list[int]] = None) -> Memory:
        """Insert a memory (and its outgoing relations) and return it with its id."""
        await self.initialize()

        data = memory.to_dict()
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(
                """
                INSERT INTO memories
                (content, keywords, context, importance, importance_level,
                 memory_type, memory_subtype, is_pinned, created_at, last_accessed)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    data["content"],
                    data["keywords"],
                    data["context"],
                    data["importance"],
                    data["importance_level"],
                    data["memory_type"],
                    data["memory_subtype"],
                    data["is_pinned"],
                    data["created_at"],
                    data["last_accessed"],
                ),
            )
            memory.id = cursor.lastrowid

            for related_id in related_ids or []:
                await db.execute(
                    """
                    INSERT INTO memory_relations
                    (memory_id, related_memory_id, relation_strength, created_at)
                    VALUES (?, ?, ?, ?)
                    """,
                    (memory.id, related_id, 1.0, data["created_at"]),
                )
            await db.commit()

        return memory

    async def get(self, memory_id: int) -> Optional[Memory]:
        """Get memory by ID."""
        await self.initialize()

        memories = await self._fetch_memories(
            "SELECT * FROM memories WHERE id = ?", (memory_id,)
        )
        return memories[0] if memories else None

    async def get_many(self, memory_ids: list[int]) -> list[Memory]:
        """Get several memories by ID, silently skipping missing rows."""
        await self.initialize()

        if not memory_ids:
            return []
        placeholders = ", ".join("?" for _ in memory_ids)
        return await self._fetch_memories(
            f"SELECT * FROM memories WHERE id IN ({placeholders})", tuple(memory_ids)
        )

    async def exists(self, memory_id: int) -> bool:
        await self.initialize()

        async with aiosqlite.connect(self.db_path) as db:
            async with db.execute(
                "SELECT 1 FROM memories WHERE id = ?", (memory_id,)
            ) as cursor:
                return await cursor.fetchone() is not None

    async def update(self, memory_id: int, **fields) -> Memory:
        """
        Update selected fields of a memory.

        Also bumps last_accessed, like any other touch of the row.

        Raises:
            MemoryNotFoundError: if the row does not exist
        """
        await self.initialize()

        unknown = set(fields) - set(_UPDATABLE_FIELDS)
        if unknown:
            raise ValueError(f"Cannot update fields: {', '.join(sorted(unknown))}")

        assignments = []
        values = []
        for name, value in fields.items():
            if hasattr(value, "value"):
                value = value.value
            if name == "is_pinned":
                value = 1 if value else 0
            assignments.append(f"{name} = ?")
            values.append(value)

        assignments.append("last_accessed = ?")
        values.append(self.clock().isoformat())
        values.append(memory_id)

        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(
                f"UPDATE memories SET {', '.join(assignments)} WHERE id = ?",
                values,
            )
            await db.commit()
            if cursor.rowcount == 0:
                raise MemoryNotFoundError(memory_id)

        return await self.get(memory_id)

    async def touch(self, memory_id: int) -> None:
        """Bump last_accessed without recording a review."""
        await self.initialize()

        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                "UPDATE memories SET last_accessed = ? WHERE id = ?",
                (self.clock().isoformat(), memory_id),
            )
            await db.commit()

    async def delete(self, memory_id: int) -> bool:
        """Delete a memory together with its relations and review history."""
        await self.initialize()

        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                "DELETE FROM memory_relations WHERE memory_id = ? OR related_memory_id = ?",
                (memory_id, memory_id),
            )
            await db.execute(
                "DELETE FROM memory_reviews WHERE memory_id = ?", (memory_id,)
            )
            cursor = await db.execute(
                "DELETE FROM memories WHERE id = ?", (memory_id,)
            )
            await db.commit()
            return cursor.rowcount > 0

    async def delete_many(self, memory_ids: list[int]) -> list[int]:
        """Delete several memories in one transaction; returns the ids removed."""
        await self.initialize()

        deleted = []
        async with aiosqlite.connect(self.db_path) as db:
            try:
                for memory_id in memory_ids:
                    await db.execute(
                        "DELETE FROM memory_relations WHERE memory_id = ? OR related_memory_id = ?",
                        (memory_id, memory_id),
                    )
                    await db.execute(
                        "DELETE FROM memory_reviews WHERE memory_id = ?", (memory_id,)
                    )
                    cursor = await db.execute(
                        "DELETE FROM memories WHERE id = ?", (memory_id,)
                    )
                    if cursor.rowcount > 0:
                        deleted.append(memory_id)
                await db.commit()
            except aiosqlite.Error as e:
                await db.rollback()
                raise StoreError(f"Batch delete failed: {e}") from e
        return deleted

    async def get_all(self) -> list[Memory]:
        """All memories, newest first."""
        await self.initialize()
        return await self._fetch_memories(
            "SELECT * FROM memories ORDER BY created_at DESC, id DESC"
        )

    async def get_core_memories(self) -> list[Memory]:
        """All core memories, pinned first."""
        await self.initialize()
        return await self._fetch_memories(
            "SELECT * FROM memories WHERE memory_type = ? "
            "ORDER BY is_pinned DESC, importance DESC",
            (MemoryType.CORE.value,),
        )

    async def get_factual_memories(self, limit: int = 50) -> list[Memory]:
        """Factual memories by importance."""
        await self.initialize()
        return await self._fetch_memories(
            "SELECT * FROM memories WHERE memory_type = ? OR memory_type IS NULL "
            "ORDER BY importance DESC, created_at DESC LIMIT ?",
            (MemoryType.FACTUAL.value, limit),
        )

    async def search(self, query: MemoryQuery) -> list[Memory]:
        """Search memories by keyword/content substring and filters."""
        await self.initialize()

        sql = "SELECT * FROM memories WHERE 1=1"
        params: list = []

        if not query.is_wildcard:
            sql += " AND (keywords LIKE ? OR content LIKE ?)"
            params.extend([f"%{query.text}%", f"%{query.text}%"])

        if query.memory_type:
            sql += " AND memory_type = ?"
            params.append(query.memory_type.value)

        if query.memory_subtype:
            sql += " AND memory_subtype = ?"
            params.append(query.memory_subtype.value)

        if query.importance_level:
            sql += " AND importance_level = ?"
            params.append(query.importance_level.value)

        sql += " ORDER BY created_at DESC, id DESC LIMIT ?"
        params.append(query.limit)

        return await self._fetch_memories(sql, params)

    async def find_related_memories(
        self,
        query: str,
        limit: int = 5,
        terms: Optional[list[str]] = None,
    ) -> list[Memory]:
        """
        Candidate fetch for retrieval.

        Returns every core memory, followed by up to ``limit`` factual
        memories whose keywords or content contain the query or one of
        ``terms``. Factual matches are ordered important > moderate >
        unimportant, then newest first.
        """
        await self.initialize()

        core = await self.get_core_memories()

        needles = [query.strip()] if query.strip() else []
        for term in terms or []:
            if term and term not in needles:
                needles.append(term)
        if not needles:
            return core

        clauses = " OR ".join("(keywords LIKE ? OR content LIKE ?)" for _ in needles)
        params: list = []
        for needle in needles:
            params.extend([f"%{needle}%", f"%{needle}%"])

        sql = (
            "SELECT * FROM memories "
            "WHERE (memory_type = ? OR memory_type IS NULL) "
            f"AND ({clauses}) "
            f"ORDER BY {_LEVEL_ORDER}, created_at DESC LIMIT ?"
        )
        factual = await self._fetch_memories(
            sql, [MemoryType.FACTUAL.value, *params, limit]
        )
        return core + factual

    async def count(self, memory_type: Optional[MemoryType] = None) -> int:
        """Count memories."""
        await self.initialize()

        sql = "SELECT COUNT(*) FROM memories"
        params = []

        if memory_type:
            sql += " WHERE memory_type = ?"
            params.append(memory_type.value)

        async with aiosqlite.connect(self.db_path) as db:
            async with db.execute(sql, params) as cursor:
                row = await cursor.fetchone()
                return row[0] if row else 0

    async def count_by_level(self) -> dict[str, int]:
        await self.initialize()

        counts = {level.value: 0 for level in ImportanceLevel}
        async with aiosqlite.connect(self.db_path) as db:
            async with db.execute(
                "SELECT importance_level, COUNT(*) FROM memories GROUP BY importance_level"
            ) as cursor:
                async for level, total in cursor:
                    if level in counts:
                        counts[level] = total
        return counts

    # ==================== Relations ====================

    async def add_relation(
        self,
        memory_id: int,
        related_memory_id: int,
        relation_strength: float = 1.0,
    ) -> bool:
        """
        Create a relation edge. Returns False if it already existed.

        Raises:
            MemoryNotFoundError: if either endpoint does not exist
        """
        await self.initialize()

        for endpoint in (memory_id, related_memory_id):
            if not await self.exists(endpoint):
                raise MemoryNotFoundError(endpoint)

        async with aiosqlite.connect(self.db_path) as db:
            async with db.execute(
                "SELECT 1 FROM memory_relations WHERE memory_id = ? AND related_memory_id = ?",
                (memory_id, related_memory_id),
            ) as cursor:
                if await cursor.fetchone():
                    return False

            await db.execute(
                """
                INSERT INTO memory_relations
                (memory_id, related_memory_id, relation_strength, created_at)
                VALUES (?, ?, ?, ?)
                """,
                (memory_id, related_memory_id, relation_strength, self.clock().isoformat()),
            )
            await db.commit()
        return True

    async def delete_relation(self, memory_id: int, related_memory_id: int) -> bool:
        await self.initialize()

        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(
                "DELETE FROM memory_relations WHERE memory_id = ? AND related_memory_id = ?",
                (memory_id, related_memory_id),
            )
            await db.commit()
            return cursor.rowcount > 0

    async def get_relations(self, memory_id: int) -> list[MemoryRelation]:
        """Edges touching a memory in either direction."""
        await self.initialize()

        relations = []
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                "SELECT * FROM memory_relations WHERE memory_id = ? OR related_memory_id = ?",
                (memory_id, memory_id),
            ) as cursor:
                async for row in cursor:
                    relations.append(MemoryRelation(
                        memory_id=row["memory_id"],
                        related_memory_id=row["related_memory_id"],
                        relation_strength=row["relation_strength"],
                        created_at=parse_timestamp(row["created_at"]),
                    ))
        return relations

    async def get_related_memories(self, memory_id: int) -> list[Memory]:
        """Targets of outgoing edges from a memory."""
        await self.initialize()
        return await self._fetch_memories(
            """
            SELECT m.* FROM memories m
            JOIN memory_relations mr ON m.id = mr.related_memory_id
            WHERE mr.memory_id = ?
            """,
            (memory_id,),
        )

    # ==================== Reviews ====================

    async def record_review(self, memory_id: int) -> None:
        """
        Reinforce a memory: bump last_accessed and log a review event.

        Raises:
            InvalidMemoryIdError: if the id is not a positive integer
            MemoryNotFoundError: if the row does not exist
        """
        validate_memory_id(memory_id)
        await self.initialize()

        now = self.clock().isoformat()
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(
                "UPDATE memories SET last_accessed = ? WHERE id = ?", (now, memory_id)
            )
            if cursor.rowcount == 0:
                await db.rollback()
                raise MemoryNotFoundError(memory_id)
            await db.execute(
                "INSERT INTO memory_reviews (memory_id, review_time) VALUES (?, ?)",
                (memory_id, now),
            )
            await db.commit()

    async def review_count(self, memory_id: int) -> int:
        await self.initialize()

        async with aiosqlite.connect(self.db_path) as db:
            async with db.execute(
                "SELECT COUNT(*) FROM memory_reviews WHERE memory_id = ?", (memory_id,)
            ) as cursor:
                row = await cursor.fetchone()
                return row[0] if row else 0

    async def get_memories_to_review(self, now: Optional[datetime] = None) -> list[Memory]:
        """Memories whose next spaced-review time has passed."""
        await self.initialize()

        now = now or self.clock()
        counts: dict[int, int] = {}
        async with aiosqlite.connect(self.db_path) as db:
            async with db.execute(
                "SELECT memory_id, COUNT(*) FROM memory_reviews GROUP BY memory_id"
            ) as cursor:
                async for memory_id, total in cursor:
                    counts[memory_id] = total

        due = []
        for memory in await self.get_all():
            if memory.last_accessed is None:
                stage = 0
            else:
                stage = min(counts.get(memory.id, 0), len(REVIEW_INTERVALS) - 1)
            anchor = memory.last_accessed or memory.created_at
            if now >= anchor + REVIEW_INTERVALS[stage]:
                due.append(memory)
        return due

    async def get_recently_reviewed(self, days: int = 7, limit: int = 5) -> list[Memory]:
        """Memories reinforced within the last ``days`` days."""
        await self.initialize()

        since = (self.clock() - timedelta(days=days)).isoformat()
        return await self._fetch_memories(
            """
            SELECT m.* FROM memories m
            JOIN (
                SELECT memory_id, MAX(review_time) AS last_review
                FROM memory_reviews
                WHERE review_time > ?
                GROUP BY memory_id
            ) r ON m.id = r.memory_id
            ORDER BY r.last_review DESC
            LIMIT ?
            """,
            (since, limit),
        )

    async def add_review_session(self, session: ReviewSession) -> ReviewSession:
        await self.initialize()

        data = session.to_dict()
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(
                """
                INSERT INTO memory_review_sessions
                (timestamp, reviewed_count, forgotten_count, unchanged_count, details, trigger_type)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    data["timestamp"],
                    data["reviewed_count"],
                    data["forgotten_count"],
                    data["unchanged_count"],
                    data["details"],
                    data["trigger_type"],
                ),
            )
            await db.commit()
            session.id = cursor.lastrowid
        return session

    async def get_review_sessions(self, limit: int = 20) -> list[ReviewSession]:
        """Most recent review sessions first."""
        await self.initialize()

        sessions = []
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                "SELECT * FROM memory_review_sessions ORDER BY id DESC LIMIT ?",
                (limit,),
            ) as cursor:
                async for row in cursor:
                    sessions.append(ReviewSession.from_dict(dict(row)))
        return sessions

    # ==================== Counters ====================

    async def _get_value(self, key: str) -> Optional[str]:
        await self.initialize()

        async with aiosqlite.connect(self.db_path) as db:
            async with db.execute(
                "SELECT value FROM system_config WHERE key = ?", (key,)
            ) as cursor:
                row = await cursor.fetchone()
                return row[0] if row else None

    async def _set_value(self, key: str, value: str) -> None:
        await self.initialize()

        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                "INSERT OR REPLACE INTO system_config (key, value, updated_at) VALUES (?, ?, ?)",
                (key, value, self.clock().isoformat()),
            )
            await db.commit()

    async def get_counter(self, key: str = MEMORY_COUNTER_KEY) -> int:
        value = await self._get_value(key)
        try:
            return int(value) if value is not None else 0
        except ValueError:
            logger.warning("Counter %s holds a non-integer value %r, treating as 0", key, value)
            return 0

    async def set_counter(self, value: int, key: str = MEMORY_COUNTER_KEY) -> None:
        await self._set_value(key, str(value))

    async def increment_counter(self, key: str = MEMORY_COUNTER_KEY) -> int:
        """Atomically add one to a counter and return the new value."""
        await self.initialize()

        async with aiosqlite.connect(self.db_path, isolation_level=None) as db:
            await db.execute("BEGIN IMMEDIATE")
            try:
                async with db.execute(
                    "SELECT value FROM system_config WHERE key = ?", (key,)
                ) as cursor:
                    row = await cursor.fetchone()
                try:
                    current = int(row[0]) if row else 0
                except ValueError:
                    current = 0
                new_value = current + 1
                await db.execute(
                    "INSERT OR REPLACE INTO system_config (key, value, updated_at) VALUES (?, ?, ?)",
                    (key, str(new_value), self.clock().isoformat()),
                )
                await db.execute("COMMIT")
            except aiosqlite.Error:
                await db.execute("ROLLBACK")
                raise
        return new_value

    async def get_timestamp(self, key: str = LAST_ORGANIZATION_KEY) -> Optional[datetime]:
        value = await self._get_value(key)
        try:
            return parse_timestamp(value)
        except ValueError:
            logger.warning("Timestamp %s holds an unparsable value %r", key, value)
            return None

    async def set_timestamp(self, value: datetime, key: str = LAST_ORGANIZATION_KEY) -> None:
        await self._set_value(key, value.isoformat())
