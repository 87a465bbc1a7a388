import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import asyncpg

from tanam_store.db_context import DatabaseManager
from tanam_store.errors import StoreUnavailable

logger = logging.getLogger(__name__)

CONNECTION_ERRORS = (
    OSError,
    asyncpg.exceptions.PostgresConnectionError,
    asyncpg.exceptions.InterfaceError,
)

CONFLICT_ERRORS = (
    asyncpg.exceptions.SerializationError,
    asyncpg.exceptions.DeadlockDetectedError,
)


@asynccontextmanager
async def translate_errors() -> AsyncIterator[None]:
    """Re-raise driver connectivity failures as StoreUnavailable"""
    try:
        yield
    except CONNECTION_ERRORS as exc:
        raise StoreUnavailable(f"Database unavailable: {exc}") from exc


class DatabaseOperations:
    """Composition class for statements run on one connection"""

    def __init__(self, connection: asyncpg.Connection):
        self.connection = connection

    @staticmethod
    def _log(query: str, params: list[Any]):
        logger.debug("SQL %s %r", query, params)
        DatabaseManager.log_query(query, params)

    async def fetch_all(self, query: str, params: list[Any]) -> list[Any]:
        """Execute query and fetch all rows"""
        self._log(query, params)
        async with translate_errors():
            return await self.connection.fetch(query, *params)

    async def fetch_value(self, query: str, params: list[Any]) -> Any:
        """Execute query and fetch single value"""
        self._log(query, params)
        async with translate_errors():
            return await self.connection.fetchval(query, *params)

    async def execute_query(self, query: str, params: list[Any]) -> str:
        """Execute query and return the status string"""
        self._log(query, params)
        async with translate_errors():
            return await self.connection.execute(query, *params)
