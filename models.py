#!/usr/bin/env python3
"""
Database models and operations for the AI artifact cache.

This module contains the SQLite-backed cache used by the pretranslate
pipelines and the read path. All statements run on a single worker coroutine
fed by a queue, so callers never share a connection.
"""

from os import path, access, R_OK
from time import time
from sqlite3 import connect, Row, Error
from asyncio import Queue, create_task, wait_for, TimeoutError, CancelledError, Event
from uuid import uuid4
from typing import Dict, List, Optional, Any

from config import config, get_logger
from telemetry import trace_span

# Module-specific logger
logger = get_logger("models")


def initialize_database(conn) -> None:
    """Create the cache schema if it is missing."""
    cursor = conn.cursor()
    try:
        cursor.execute("SELECT name FROM sqlite_master WHERE type='table' AND name='ai_cache'")
        if cursor.fetchone() is None:
            logger.info("Database is new or empty. Initializing schema.")
            cursor.executescript(_read_schema_file())
            conn.commit()
            logger.info("Database schema initialized successfully")
        else:
            logger.debug("Database already exists with proper schema")
    except Exception as e:
        logger.error(f"Error initializing database: {e}")
        raise
    finally:
        cursor.close()


def _read_schema_file() -> str:
    """Read the schema from the SQL file."""
    schema_path = config.SCHEMA_FILE_PATH
    try:
        if not path.isfile(schema_path):
            raise FileNotFoundError(f"Schema file not found at {schema_path}")
        if not access(schema_path, R_OK):
            raise PermissionError(f"No read permission for schema file at {schema_path}")
        file_size = path.getsize(schema_path)
        max_size = config.SCHEMA_FILE_SIZE_LIMIT_MB * 1024 * 1024
        if file_size > max_size:
            raise ValueError(f"Schema file too large: {file_size} bytes (limit: {max_size} bytes)")
        with open(schema_path, 'r') as f:
            return f.read()
    except Exception as e:
        logger.error(f"Error reading schema file: {e}")
        raise


class DatabaseQueue:
    """A queue for database operations to ensure serialized access."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        self.queue = Queue()
        self.results: Dict[str, Dict] = {}
        self.events: Dict[str, Event] = {}
        self.conn = None
        self.running = False
        self.worker_task = None
        self._ready = Event()

    async def start(self) -> None:
        """Start the database worker and wait until the schema is ready."""
        if self.running:
            return
        self.running = True
        self.worker_task = create_task(self._worker())
        await self._ready.wait()
        if not self.running:
            # Surface the initialization error
            await self.worker_task
        logger.info("Database worker started")

    async def stop(self) -> None:
        """Stop the database worker."""
        if not self.running:
            return
        self.running = False
        if self.worker_task:
            self.worker_task.cancel()
            try:
                await self.worker_task
            except CancelledError:
                pass
        if self.conn:
            self.conn.close()
            self.conn = None
        for event in self.events.values():
            event.set()
        self.events.clear()
        self.results.clear()
        self._ready.clear()
        logger.info("Database worker stopped")

    async def _worker(self) -> None:
        """Worker coroutine processing database operations."""
        if not path.isfile(self.db_path):
            logger.info(f"Database file {self.db_path} does not exist. A new database will be created.")
        try:
            self.conn = connect(self.db_path)
            self.conn.row_factory = Row
            initialize_database(self.conn)
        except Exception:
            self.running = False
            raise
        finally:
            self._ready.set()

        while self.running:
            try:
                try:
                    operation_id, operation_name, params = await wait_for(self.queue.get(), timeout=1.0)
                except TimeoutError:
                    continue

                try:
                    method = getattr(self, operation_name, None)
                    if operation_name.startswith("_") or not callable(method):
                        self.results[operation_id] = {"error": f"Unknown operation: {operation_name}"}
                    else:
                        self.results[operation_id] = {"result": method(**params)}
                except Exception as e:
                    logger.error(f"Database operation error in {operation_name}: {e}")
                    self.results[operation_id] = {"error": str(e)}
                finally:
                    if operation_id in self.events:
                        self.events[operation_id].set()
                    self.queue.task_done()

            except CancelledError:
                logger.debug("Database worker cancelled")
                raise
            except Exception as e:
                logger.error(f"Unexpected error in database worker: {e}")

    @trace_span(
        "db.execute",
        tracer_name="db",
        static_attrs={"db.system": "sqlite"},
        attr_from_args=lambda self, operation_name, **params: {"db.operation": operation_name},
    )
    async def execute(self, operation_name: str, **params) -> Any:
        """Execute a database operation."""
        if not self.running:
            raise RuntimeError("Database worker is not running")
        operation_id = str(uuid4())
        event = Event()
        self.events[operation_id] = event
        try:
            await self.queue.put((operation_id, operation_name, params))
            await event.wait()
            result = self.results.pop(operation_id, {"error": "Database worker stopped"})
            if "error" in result:
                raise RuntimeError(result["error"])
            return result["result"]
        finally:
            self.events.pop(operation_id, None)

    # Cache operations
    def cache_get(self, user_id: str, key: str) -> Optional[str]:
        cursor = self.conn.cursor()
        try:
            cursor.execute("SELECT content FROM ai_cache WHERE user_id = ? AND key = ?", (user_id, key))
            row = cursor.fetchone()
            return row['content'] if row else None
        finally:
            cursor.close()

    def cache_set_many(self, user_id: str, entries: List[Dict[str, str]]) -> int:
        """Upsert entries ({key, content}) in one transaction, refreshing their timestamps."""
        if not entries:
            return 0
        now = int(time())
        cursor = self.conn.cursor()
        try:
            cursor.executemany(
                """
                INSERT INTO ai_cache (user_id, key, content, timestamp) VALUES (?, ?, ?, ?)
                ON CONFLICT(user_id, key) DO UPDATE SET content = excluded.content, timestamp = excluded.timestamp
                """,
                [(user_id, e['key'], e['content'], now) for e in entries],
            )
            self.conn.commit()
            return len(entries)
        except Error:
            self.conn.rollback()
            raise
        finally:
            cursor.close()

    def cache_get_many(self, user_id: str, keys: List[str]) -> Dict[str, str]:
        if not keys:
            return {}
        placeholders = ",".join("?" for _ in keys)
        cursor = self.conn.cursor()
        try:
            cursor.execute(
                f"SELECT key, content FROM ai_cache WHERE user_id = ? AND key IN ({placeholders})",
                (user_id, *keys),
            )
            return {row['key']: row['content'] for row in cursor.fetchall()}
        finally:
            cursor.close()

    def cache_get_by_prefix(self, user_id: str, prefix: str, limit: Optional[int] = None) -> List[Dict[str, str]]:
        """Entries whose key starts with prefix, newest first when limited."""
        escaped = prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        sql = "SELECT key, content FROM ai_cache WHERE user_id = ? AND key LIKE ? ESCAPE '\\'"
        params: List[Any] = [user_id, escaped + "%"]
        if limit and limit > 0:
            sql += " ORDER BY timestamp DESC LIMIT ?"
            params.append(limit)
        cursor = self.conn.cursor()
        try:
            cursor.execute(sql, params)
            return [{'key': row['key'], 'content': row['content']} for row in cursor.fetchall()]
        finally:
            cursor.close()

    def cache_delete(self, user_id: str, key: str) -> int:
        cursor = self.conn.cursor()
        try:
            cursor.execute("DELETE FROM ai_cache WHERE user_id = ? AND key = ?", (user_id, key))
            self.conn.commit()
            return cursor.rowcount
        finally:
            cursor.close()

    def cache_clear(self, user_id: str) -> int:
        cursor = self.conn.cursor()
        try:
            cursor.execute("DELETE FROM ai_cache WHERE user_id = ?", (user_id,))
            self.conn.commit()
            return cursor.rowcount
        finally:
            cursor.close()

    def cache_stats(self) -> Dict[str, int]:
        """Entry count per user."""
        cursor = self.conn.cursor()
        try:
            cursor.execute("SELECT user_id, COUNT(*) AS cnt FROM ai_cache GROUP BY user_id ORDER BY user_id")
            return {row['user_id']: row['cnt'] for row in cursor.fetchall()}
        finally:
            cursor.close()

    def cache_trim_excess(self, max_entries: int) -> int:
        """Delete the oldest entries of every user holding more than max_entries."""
        deleted = 0
        cursor = self.conn.cursor()
        try:
            cursor.execute(
                "SELECT user_id, COUNT(*) AS cnt FROM ai_cache GROUP BY user_id HAVING cnt > ?",
                (max_entries,),
            )
            for row in cursor.fetchall():
                excess = row['cnt'] - max_entries
                cursor.execute(
                    """
                    DELETE FROM ai_cache WHERE rowid IN (
                        SELECT rowid FROM ai_cache WHERE user_id = ? ORDER BY timestamp ASC LIMIT ?
                    )
                    """,
                    (row['user_id'], excess),
                )
                deleted += cursor.rowcount
                logger.info(f"Trimmed {excess} old cache entries for user {row['user_id']}")
            self.conn.commit()
            return deleted
        finally:
            cursor.close()


class CacheStore:
    """Per-user key/value cache for AI artifacts.

    Thin async facade over DatabaseQueue; the pipelines only need get/set/set_many.
    """

    def __init__(self, db_path: Optional[str] = None):
        self.db = DatabaseQueue(db_path or config.DATABASE_PATH)

    async def start(self) -> None:
        await self.db.start()

    async def close(self) -> None:
        await self.db.stop()

    async def get(self, user_id: str, key: str) -> Optional[str]:
        return await self.db.execute('cache_get', user_id=user_id, key=key)

    async def set(self, user_id: str, key: str, content: str) -> None:
        await self.db.execute('cache_set_many', user_id=user_id, entries=[{'key': key, 'content': content}])

    async def set_many(self, user_id: str, entries: List[Dict[str, str]]) -> int:
        return await self.db.execute('cache_set_many', user_id=user_id, entries=entries)

    async def get_many(self, user_id: str, keys: List[str]) -> Dict[str, str]:
        return await self.db.execute('cache_get_many', user_id=user_id, keys=keys)

    async def get_by_prefix(self, user_id: str, prefix: str, limit: Optional[int] = None) -> List[Dict[str, str]]:
        return await self.db.execute('cache_get_by_prefix', user_id=user_id, prefix=prefix, limit=limit)

    async def delete(self, user_id: str, key: str) -> int:
        return await self.db.execute('cache_delete', user_id=user_id, key=key)

    async def clear(self, user_id: str) -> int:
        return await self.db.execute('cache_clear', user_id=user_id)

    async def stats(self) -> Dict[str, int]:
        return await self.db.execute('cache_stats')

    async def trim_excess(self, max_entries: Optional[int] = None) -> int:
        return await self.db.execute('cache_trim_excess', max_entries=max_entries or config.CACHE_MAX_ENTRIES_PER_USER)
