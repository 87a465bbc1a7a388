"""
Pytest configuration for PostgreSQL document store tests

Tests in this directory need Docker and are skipped without it.
"""

import pytest
import pytest_asyncio
from testcontainers.postgres import PostgresContainer

from tanam_store.config import StoreSettings
from tanam_store.postgres_store import PostgresDocumentStore


@pytest.fixture(scope="session")
def postgres_container():
    """Start a PostgreSQL test container for the session."""
    try:
        container = PostgresContainer("postgres:17")
        container.start()
    except Exception as exc:
        pytest.skip(f"Docker is not available: {exc}")
    yield container
    container.stop()


@pytest.fixture
def pg_settings(postgres_container):
    host = postgres_container.get_container_host_ip()
    port = postgres_container.get_exposed_port(5432)
    dsn = f"postgresql://{postgres_container.username}:{postgres_container.password}@{host}:{port}/{postgres_container.dbname}"
    return StoreSettings(dsn=dsn, db_schema="app")


@pytest_asyncio.fixture
async def pg_store(pg_settings):
    """Create a store connected to the test container for each test."""
    store = await PostgresDocumentStore.connect(pg_settings)
    await store.install_schema()

    yield store

    async with store.pool.acquire() as conn:
        await conn.execute(f"TRUNCATE TABLE {pg_settings.qualified_table_name};")
    await store.close()
