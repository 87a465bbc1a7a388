"""PostgreSQL document store.

Documents live as JSONB rows in one table keyed by (collection, id).
Transactions run at SERIALIZABLE isolation; PostgreSQL aborts the loser of a
concurrent read-modify-write with a serialization failure, and the whole
transaction function is run again. Live subscriptions share one LISTEN
connection on a channel fed by a row trigger, so only committed changes are
delivered.
"""

import asyncio
import json
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager, suppress
from datetime import datetime
from typing import Any

import asyncpg

from tanam_store.config import StoreSettings
from tanam_store.database_operations import (
    CONFLICT_ERRORS,
    DatabaseOperations,
    translate_errors,
)
from tanam_store.db_context import DatabaseManager
from tanam_store.document_store import (
    DocumentSnapshot,
    DocumentStore,
    SnapshotFeed,
    Transaction,
    TransactionFunction,
    resolve_server_timestamps,
)
from tanam_store.errors import NotFound, TransactionConflict
from tanam_store.query_builder import DocumentQuery
from tanam_store.subscription import Subscription

logger = logging.getLogger(__name__)


def schema_sql(settings: StoreSettings) -> str:
    """DDL for the documents table and its change-notification trigger"""
    table = settings.qualified_table_name
    function = f"{table}_notify"
    trigger = f"{settings.table_name}_changes"
    create_schema = (
        f"CREATE SCHEMA IF NOT EXISTS {settings.db_schema};" if settings.db_schema else ""
    )
    return f"""
        {create_schema}
        CREATE TABLE IF NOT EXISTS {table} (
            collection TEXT NOT NULL,
            id TEXT NOT NULL,
            data JSONB NOT NULL,
            PRIMARY KEY (collection, id)
        );
        CREATE OR REPLACE FUNCTION {function}() RETURNS trigger AS $$
        DECLARE
            changed RECORD;
        BEGIN
            IF TG_OP = 'DELETE' THEN
                changed := OLD;
            ELSE
                changed := NEW;
            END IF;
            PERFORM pg_notify(
                '{settings.notify_channel}',
                json_build_object('collection', changed.collection, 'id', changed.id)::text
            );
            RETURN NULL;
        END;
        $$ LANGUAGE plpgsql;
        DROP TRIGGER IF EXISTS {trigger} ON {table};
        CREATE TRIGGER {trigger}
            AFTER INSERT OR UPDATE OR DELETE ON {table}
            FOR EACH ROW EXECUTE FUNCTION {function}();
    """


def _snapshot(document_id: str, raw: str | None) -> DocumentSnapshot:
    return DocumentSnapshot(id=document_id, data=json.loads(raw) if raw is not None else None)


class _Statements:
    """SQL for one documents table"""

    def __init__(self, table: str):
        self.select = f"SELECT data FROM {table} WHERE collection = $1 AND id = $2"
        self.upsert = (
            f"INSERT INTO {table} (collection, id, data) VALUES ($1, $2, $3::jsonb) "
            f"ON CONFLICT (collection, id) DO UPDATE SET data = EXCLUDED.data"
        )
        self.merge = (
            f"UPDATE {table} SET data = data || $3::jsonb "
            f"WHERE collection = $1 AND id = $2"
        )
        self.delete = f"DELETE FROM {table} WHERE collection = $1 AND id = $2"


class PostgresTransaction(Transaction):
    def __init__(self, db_ops: DatabaseOperations, statements: _Statements):
        self.db_ops = db_ops
        self.statements = statements
        self._now: datetime | None = None

    async def server_time(self) -> datetime:
        """Transaction timestamp from the database clock"""
        if self._now is None:
            self._now = await self.db_ops.fetch_value("SELECT now()", [])
        return self._now

    async def get(self, collection: str, document_id: str) -> DocumentSnapshot:
        with DatabaseManager.operation("get", collection, document_id):
            raw = await self.db_ops.fetch_value(
                self.statements.select, [collection, document_id]
            )
        return _snapshot(document_id, raw)

    async def set(
        self, collection: str, document_id: str, data: dict[str, Any]
    ) -> dict[str, Any]:
        with DatabaseManager.operation("set", collection, document_id):
            resolved = resolve_server_timestamps(data, await self.server_time())
            await self.db_ops.execute_query(
                self.statements.upsert, [collection, document_id, json.dumps(resolved)]
            )
        return resolved

    async def update(
        self, collection: str, document_id: str, data: dict[str, Any]
    ) -> dict[str, Any]:
        with DatabaseManager.operation("update", collection, document_id):
            resolved = resolve_server_timestamps(data, await self.server_time())
            result = await self.db_ops.execute_query(
                self.statements.merge, [collection, document_id, json.dumps(resolved)]
            )
        if result == "UPDATE 0":
            raise NotFound(collection, document_id)
        return resolved


ChangeHandler = Callable[[str, str], None]


class _ChangeListener:
    """One LISTEN connection shared by every live subscription of a store.

    The connection is opened outside the pool on the first subscription and
    closed when the last one is cancelled, so open subscriptions never hold
    pool connections.
    """

    def __init__(self, settings: StoreSettings):
        self.settings = settings
        self.handlers: list[ChangeHandler] = []
        self._conn: asyncpg.Connection | None = None
        self._lock = asyncio.Lock()

    async def add(self, handler: ChangeHandler) -> None:
        async with self._lock:
            if self._conn is None:
                self._conn = await self._open()
            self.handlers.append(handler)

    async def remove(self, handler: ChangeHandler) -> None:
        async with self._lock:
            self.handlers.remove(handler)
            if not self.handlers:
                await self._close()

    async def close(self) -> None:
        async with self._lock:
            self.handlers.clear()
            await self._close()

    async def _open(self) -> asyncpg.Connection:
        async with translate_errors():
            conn = await asyncpg.connect(self.settings.dsn)
            try:
                await conn.add_listener(self.settings.notify_channel, self._dispatch)
            except BaseException:
                await conn.close()
                raise
        logger.debug("Listening on %s", self.settings.notify_channel)
        return conn

    async def _close(self) -> None:
        if self._conn is None:
            return
        conn, self._conn = self._conn, None
        async with translate_errors():
            await conn.close()
        logger.debug("Stopped listening on %s", self.settings.notify_channel)

    def _dispatch(self, connection, pid, channel, payload) -> None:
        change = json.loads(payload)
        for handler in list(self.handlers):
            handler(change["collection"], change["id"])


class PostgresDocumentStore(DocumentStore):
    """Document store backed by an asyncpg pool.

    Statements run on pool connections. Live subscriptions share one extra
    connection opened from settings.dsn, which must reach the same database.

    Usage:
        store = await PostgresDocumentStore.connect(StoreSettings())
        await store.install_schema()
        entries = EntryRepository(store)
    """

    def __init__(self, pool: asyncpg.Pool, settings: StoreSettings | None = None):
        if pool is None:
            raise ValueError("pool is required")
        self.pool = pool
        self.settings = settings or StoreSettings()
        self.statements = _Statements(self.settings.qualified_table_name)
        self._listener = _ChangeListener(self.settings)

    @classmethod
    async def connect(cls, settings: StoreSettings | None = None) -> "PostgresDocumentStore":
        """Create a pool from settings and wrap it"""
        settings = settings or StoreSettings()
        async with translate_errors():
            pool = await asyncpg.create_pool(
                settings.dsn,
                min_size=settings.min_pool_size,
                max_size=settings.max_pool_size,
            )
        return cls(pool, settings)

    async def close(self) -> None:
        await self._listener.close()
        await self.pool.close()

    def listener_count(self) -> int:
        """Number of live subscriptions still registered"""
        return len(self._listener.handlers)

    async def install_schema(self) -> None:
        """Create the documents table and notification trigger if missing"""
        with DatabaseManager.operation("install_schema"):
            async with self._connection() as conn:
                await DatabaseOperations(conn).execute_query(schema_sql(self.settings), [])

    @asynccontextmanager
    async def _connection(self) -> AsyncIterator[asyncpg.Connection]:
        async with translate_errors(), self.pool.acquire() as conn:
            yield conn

    @asynccontextmanager
    async def _transaction(
        self, isolation: str | None = None
    ) -> AsyncIterator[PostgresTransaction]:
        async with self._connection() as conn, conn.transaction(isolation=isolation):
            yield PostgresTransaction(DatabaseOperations(conn), self.statements)

    async def get(self, collection: str, document_id: str) -> DocumentSnapshot:
        with DatabaseManager.operation("get", collection, document_id):
            async with self._connection() as conn:
                raw = await DatabaseOperations(conn).fetch_value(
                    self.statements.select, [collection, document_id]
                )
        return _snapshot(document_id, raw)

    async def set(
        self, collection: str, document_id: str, data: dict[str, Any]
    ) -> dict[str, Any]:
        async with self._transaction() as tx:
            return await tx.set(collection, document_id, data)

    async def update(
        self, collection: str, document_id: str, data: dict[str, Any]
    ) -> dict[str, Any]:
        async with self._transaction() as tx:
            return await tx.update(collection, document_id, data)

    async def delete(self, collection: str, document_id: str) -> bool:
        with DatabaseManager.operation("delete", collection, document_id):
            async with self._connection() as conn:
                result = await DatabaseOperations(conn).execute_query(
                    self.statements.delete, [collection, document_id]
                )
        return result != "DELETE 0"

    async def query(
        self, collection: str, query: DocumentQuery
    ) -> list[DocumentSnapshot]:
        sql, params = query.build(self.settings.qualified_table_name, collection)
        with DatabaseManager.operation("query", collection):
            async with self._connection() as conn:
                rows = await DatabaseOperations(conn).fetch_all(sql, params)
        return [_snapshot(row["id"], row["data"]) for row in rows]

    async def run_transaction(
        self, fn: TransactionFunction, max_attempts: int | None = None
    ) -> Any:
        attempts = max_attempts or self.settings.max_transaction_attempts
        for attempt in range(1, attempts + 1):
            try:
                with DatabaseManager.operation("transaction"):
                    async with self._transaction(isolation="serializable") as tx:
                        return await fn(tx)
            except CONFLICT_ERRORS as exc:
                logger.warning(
                    "Transaction conflict on attempt %d of %d: %s", attempt, attempts, exc
                )
        raise TransactionConflict(attempts)

    async def watch_document(
        self, collection: str, document_id: str
    ) -> Subscription[DocumentSnapshot]:
        return await self._watch(
            collection, document_id, lambda: self.get(collection, document_id)
        )

    async def watch_query(
        self, collection: str, query: DocumentQuery
    ) -> Subscription[list[DocumentSnapshot]]:
        return await self._watch(collection, None, lambda: self.query(collection, query))

    async def _watch(
        self,
        collection: str,
        document_id: str | None,
        fetch: Callable[[], Awaitable[Any]],
    ) -> Subscription[Any]:
        """Refetch on every change notification until the subscription is cancelled"""
        changed = asyncio.Event()

        def on_change(changed_collection: str, changed_id: str) -> None:
            if changed_collection != collection:
                return
            if document_id is not None and changed_id != document_id:
                return
            changed.set()

        async def pump() -> None:
            try:
                feed.publish(await fetch())
                while True:
                    await changed.wait()
                    changed.clear()
                    feed.publish(await fetch())
            except Exception as exc:
                subscription.fail(exc)

        async def release() -> None:
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task
            await self._listener.remove(on_change)

        await self._listener.add(on_change)
        subscription: Subscription[Any] = Subscription(on_cancel=release)
        feed = SnapshotFeed(subscription)
        task = asyncio.create_task(pump())
        logger.debug("Watching %s/%s", collection, document_id or "*")
        return subscription
