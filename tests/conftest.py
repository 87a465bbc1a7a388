from datetime import UTC, datetime, timedelta

import pytest

from tanam_store.config import RepositoryConfig, UrlMatchPolicy
from tanam_store.entry_repository import EntryRepository
from tanam_store.memory_store import MemoryDocumentStore
from tanam_store.theme_repository import ThemeRepository


class StepClock:
    """Clock that advances one second per reading"""

    def __init__(self, start: datetime = datetime(2024, 1, 1, tzinfo=UTC)):
        self.now = start

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now


@pytest.fixture
def clock():
    return StepClock()


@pytest.fixture
def store(clock):
    """In-memory document store with a deterministic clock."""
    return MemoryDocumentStore(clock=clock)


@pytest.fixture
def entry_repo(store):
    return EntryRepository(store)


@pytest.fixture
def strict_entry_repo(store):
    return EntryRepository(
        store, RepositoryConfig(url_match_policy=UrlMatchPolicy.STRICT)
    )


@pytest.fixture
def theme_repo(store):
    return ThemeRepository(store)
