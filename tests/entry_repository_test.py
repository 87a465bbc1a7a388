import asyncio

import pytest

from tanam_store.config import RepositoryConfig
from tanam_store.entities import ContentEntry, EntryStatus, EntryUrl, OrderBy, QueryOptions
from tanam_store.entry_repository import EntryRepository
from tanam_store.errors import MultipleMatches, NotFound, StoreUnavailable, TransactionConflict


async def move_to(repo: EntryRepository, entry: ContentEntry, path: str) -> ContentEntry:
    entry.url = EntryUrl(root=entry.url.root, path=path)
    return await repo.save(entry)


class TestCreate:
    """Creating content entries."""

    @pytest.mark.asyncio
    async def test_create_defaults(self, entry_repo):
        """A new entry starts unpublished at revision 0, addressed by its id."""
        entry = await entry_repo.create("blog", "posts")

        assert entry.id
        assert entry.content_type == "blog"
        assert entry.title == entry.id
        assert entry.url.root == "posts"
        assert entry.url.path == entry.id
        assert entry.revision == 0
        assert entry.status == EntryStatus.UNPUBLISHED
        assert entry.tags == []
        assert entry.data == {}
        assert entry.created_at is not None
        assert entry.created_at == entry.updated_at

    @pytest.mark.asyncio
    async def test_create_persists_immediately(self, entry_repo, store):
        """create writes the document before returning."""
        entry = await entry_repo.create("blog", "posts")

        snapshot = await store.get(entry_repo.collection, entry.id)
        assert snapshot.exists
        assert "id" not in snapshot.data
        assert snapshot.data["contentType"] == "blog"
        assert snapshot.data["url"] == {"root": "posts", "path": entry.id}

    @pytest.mark.asyncio
    async def test_create_allocates_unique_ids(self, entry_repo):
        """Every create gets its own id."""
        entries = [await entry_repo.create("blog", "posts") for _ in range(20)]
        assert len({entry.id for entry in entries}) == 20

    @pytest.mark.asyncio
    async def test_create_store_unavailable(self, entry_repo, store):
        """create fails with StoreUnavailable when the store is offline."""
        store.available = False
        with pytest.raises(StoreUnavailable):
            await entry_repo.create("blog", "posts")


class TestSave:
    """Revision-checked saves."""

    @pytest.mark.asyncio
    async def test_save_increments_revision(self, entry_repo):
        """Saving stores the changes at the next revision."""
        entry = await entry_repo.create("blog", "posts")
        entry.title = "Hello"

        saved = await entry_repo.save(entry)

        assert saved is entry
        assert entry.revision == 1
        stored = await entry_repo.get(entry.id)
        assert stored.title == "Hello"
        assert stored.revision == 1

    @pytest.mark.asyncio
    async def test_revision_equals_number_of_saves(self, entry_repo):
        """The revision counts successful saves."""
        entry = await entry_repo.create("blog", "posts")
        for _ in range(7):
            await entry_repo.save(entry)

        assert entry.revision == 7
        assert (await entry_repo.get(entry.id)).revision == 7

    @pytest.mark.asyncio
    async def test_caller_revision_is_ignored(self, entry_repo):
        """A revision set by the caller is overwritten."""
        entry = await entry_repo.create("blog", "posts")
        entry.revision = 41

        await entry_repo.save(entry)

        assert entry.revision == 1

    @pytest.mark.asyncio
    async def test_stale_copy_gets_next_revision(self, entry_repo):
        """Saving an outdated copy still bumps the stored revision."""
        entry = await entry_repo.create("blog", "posts")
        stale = entry.model_copy()
        await entry_repo.save(entry)

        await entry_repo.save(stale)

        assert stale.revision == 2

    @pytest.mark.asyncio
    async def test_save_stamps_updated_at(self, entry_repo):
        """save restamps updatedAt and keeps createdAt."""
        entry = await entry_repo.create("blog", "posts")
        created_at = entry.created_at

        await entry_repo.save(entry)

        assert entry.updated_at > created_at
        stored = await entry_repo.get(entry.id)
        assert stored.updated_at == entry.updated_at
        assert stored.created_at == created_at

    @pytest.mark.asyncio
    async def test_save_missing_entry(self, entry_repo):
        """Saving an entry that was never created raises NotFound."""
        entry = ContentEntry(
            id="missing",
            content_type="blog",
            title="Ghost",
            url=EntryUrl(root="posts", path="missing"),
        )
        with pytest.raises(NotFound):
            await entry_repo.save(entry)
        assert entry.revision == 0

    @pytest.mark.asyncio
    async def test_save_without_id(self, entry_repo):
        """Saving an entry without an id is rejected."""
        entry = ContentEntry(
            content_type="blog", title="New", url=EntryUrl(root="posts", path="new")
        )
        with pytest.raises(ValueError):
            await entry_repo.save(entry)

    @pytest.mark.asyncio
    async def test_save_keeps_data_payload(self, entry_repo):
        """The open data payload and tags are stored as given."""
        entry = await entry_repo.create("blog", "posts")
        entry.data = {"body": "<p>Hi</p>", "rating": 4, "meta": {"draft": True}}
        entry.tags = ["news", "tech"]

        await entry_repo.save(entry)

        stored = await entry_repo.get(entry.id)
        assert stored.data == {"body": "<p>Hi</p>", "rating": 4, "meta": {"draft": True}}
        assert sorted(stored.tags) == ["news", "tech"]


class TestConcurrentSave:
    """Concurrent saves against the same entry."""

    @pytest.mark.asyncio
    async def test_conflicting_save_is_retried(self, entry_repo):
        """The losing save of a concurrent pair is retried on top of the winner."""
        entry = await entry_repo.create("blog", "posts")
        first, second = entry.model_copy(), entry.model_copy()
        first.title, second.title = "First", "Second"

        await asyncio.gather(entry_repo.save(first), entry_repo.save(second))

        assert sorted([first.revision, second.revision]) == [1, 2]
        stored = await entry_repo.get(entry.id)
        assert stored.revision == 2

    @pytest.mark.asyncio
    async def test_conflict_after_retry_budget(self, store):
        """With one attempt the losing save raises TransactionConflict."""
        repo = EntryRepository(store, RepositoryConfig(max_transaction_attempts=1))
        entry = await repo.create("blog", "posts")
        first, second = entry.model_copy(), entry.model_copy()

        results = await asyncio.gather(
            repo.save(first), repo.save(second), return_exceptions=True
        )

        assert results[0] is first
        assert isinstance(results[1], TransactionConflict)
        assert first.revision == 1
        assert second.revision == 0
        assert (await repo.get(entry.id)).revision == 1


class TestStatus:
    """Status changes go through save."""

    @pytest.mark.asyncio
    async def test_publish(self, entry_repo):
        """Publishing sets the status and stamps the publish time."""
        entry = await entry_repo.create("blog", "posts")

        await entry_repo.publish(entry)

        stored = await entry_repo.get(entry.id)
        assert stored.status == EntryStatus.PUBLISHED
        assert stored.publish_time is not None
        assert stored.publish_time == entry.publish_time
        assert stored.revision == 1

    @pytest.mark.asyncio
    async def test_delete_keeps_record(self, entry_repo):
        """Deleting only flags the entry."""
        entry = await entry_repo.create("blog", "posts")

        await entry_repo.delete(entry)

        stored = await entry_repo.get(entry.id)
        assert stored is not None
        assert stored.status == EntryStatus.DELETED
        assert stored.revision == 1

    @pytest.mark.asyncio
    async def test_any_status_transition(self, entry_repo):
        """Any status can follow any other."""
        entry = await entry_repo.create("blog", "posts")

        await entry_repo.set_status(entry, "deleted")
        await entry_repo.set_status(entry, "published")
        await entry_repo.set_status(entry, EntryStatus.UNPUBLISHED)

        stored = await entry_repo.get(entry.id)
        assert stored.status == EntryStatus.UNPUBLISHED
        assert stored.revision == 3

    @pytest.mark.asyncio
    async def test_unknown_status(self, entry_repo):
        """An unknown status value is rejected."""
        entry = await entry_repo.create("blog", "posts")
        with pytest.raises(ValueError):
            await entry_repo.set_status(entry, "archived")


class TestFindByUrl:
    """URL lookups."""

    @pytest.mark.asyncio
    async def test_scenario_create_save_save_find(self, entry_repo):
        """Create, save twice, then find the entry by URL at revision 2."""
        entry = await entry_repo.create("blog", "posts")
        assert entry.revision == 0
        assert entry.status == "unpublished"
        assert entry.url.path == entry.id

        entry.title = "Hello"
        await entry_repo.save(entry)
        assert entry.revision == 1
        await entry_repo.save(entry)
        assert entry.revision == 2

        async with await entry_repo.find_by_url("posts", entry.id) as found:
            latest = await found.latest()

        assert latest.id == entry.id
        assert latest.title == "Hello"
        assert latest.revision == 2

    @pytest.mark.asyncio
    async def test_no_match_emits_none(self, entry_repo):
        """A URL with no entry emits None."""
        async with await entry_repo.find_by_url("posts", "nothing-here") as found:
            assert await found.next() is None

    @pytest.mark.asyncio
    async def test_follows_later_changes(self, entry_repo):
        """The lookup picks up an entry moved to the URL later."""
        entry = await entry_repo.create("blog", "posts")

        async with await entry_repo.find_by_url("posts", "hello") as found:
            assert await found.next() is None
            await move_to(entry_repo, entry, "hello")
            moved = await found.next()

        assert moved.id == entry.id
        assert moved.revision == 1

    @pytest.mark.asyncio
    async def test_lenient_policy_picks_one(self, entry_repo):
        """With duplicates the default policy returns one of them."""
        first = await move_to(entry_repo, await entry_repo.create("blog", "posts"), "dup")
        second = await move_to(entry_repo, await entry_repo.create("blog", "posts"), "dup")

        async with await entry_repo.find_by_url("posts", "dup") as found:
            match = await found.next()

        assert match.id in {first.id, second.id}

    @pytest.mark.asyncio
    async def test_strict_policy_raises_on_duplicates(self, strict_entry_repo, store):
        """With duplicates the strict policy fails the stream."""
        await move_to(strict_entry_repo, await strict_entry_repo.create("blog", "posts"), "dup")
        await move_to(strict_entry_repo, await strict_entry_repo.create("blog", "posts"), "dup")

        found = await strict_entry_repo.find_by_url("posts", "dup")
        with pytest.raises(MultipleMatches):
            await found.next()

        assert found.closed
        assert store.listener_count() == 0

    @pytest.mark.asyncio
    async def test_deleted_entries_are_skipped(self, strict_entry_repo):
        """Deleted entries do not count as URL matches."""
        first = await move_to(strict_entry_repo, await strict_entry_repo.create("blog", "posts"), "dup")
        second = await move_to(strict_entry_repo, await strict_entry_repo.create("blog", "posts"), "dup")
        await strict_entry_repo.delete(first)

        async with await strict_entry_repo.find_by_url("posts", "dup") as found:
            match = await found.next()

        assert match.id == second.id

    @pytest.mark.asyncio
    async def test_root_must_match(self, entry_repo):
        """The URL root is part of the match."""
        entry = await entry_repo.create("blog", "posts")

        async with await entry_repo.find_by_url("pages", entry.id) as found:
            assert await found.next() is None


class TestLiveReads:
    """Live streams attach the document id to every value."""

    @pytest.mark.asyncio
    async def test_get_by_id_emits_updates(self, entry_repo):
        """get_by_id emits the entry and each saved change."""
        entry = await entry_repo.create("blog", "posts")

        async with await entry_repo.get_by_id("blog", entry.id) as stream:
            initial = await stream.next()
            entry.title = "Changed"
            await entry_repo.save(entry)
            changed = await stream.next()

        assert initial.id == entry.id
        assert initial.revision == 0
        assert changed.id == entry.id
        assert changed.title == "Changed"
        assert changed.revision == 1

    @pytest.mark.asyncio
    async def test_get_by_id_ignores_other_documents(self, entry_repo):
        """Changes to other entries are not emitted."""
        entry = await entry_repo.create("blog", "posts")
        other = await entry_repo.create("blog", "posts")

        async with await entry_repo.get_by_id("blog", entry.id) as stream:
            await stream.next()
            await entry_repo.save(other)
            with pytest.raises(asyncio.TimeoutError):
                await asyncio.wait_for(stream.next(), timeout=0.05)

    @pytest.mark.asyncio
    async def test_get_by_id_missing(self, entry_repo):
        """A missing entry is emitted as None."""
        async with await entry_repo.get_by_id("blog", "missing") as stream:
            assert await stream.next() is None

    @pytest.mark.asyncio
    async def test_list_by_content_type(self, entry_repo):
        """Only entries of the requested content type are listed."""
        blog = [await entry_repo.create("blog", "posts") for _ in range(3)]
        await entry_repo.create("page", "pages")

        async with await entry_repo.list_by_content_type("blog") as stream:
            entries = await stream.next()

        assert {entry.id for entry in entries} == {entry.id for entry in blog}
        assert all(entry.id for entry in entries)
        assert all(entry.content_type == "blog" for entry in entries)

    @pytest.mark.asyncio
    async def test_list_ordering_and_limit(self, entry_repo):
        """List options order and cap the result."""
        for title in ["b", "c", "a"]:
            entry = await entry_repo.create("blog", "posts")
            entry.title = title
            await entry_repo.save(entry)
        options = QueryOptions(limit=2, order_by=OrderBy(field="title", sort_order="desc"))

        async with await entry_repo.list_by_content_type("blog", options) as stream:
            entries = await stream.next()

        assert [entry.title for entry in entries] == ["c", "b"]

    @pytest.mark.asyncio
    async def test_list_emits_on_new_entry(self, entry_repo):
        """A newly created entry shows up in an open list."""
        async with await entry_repo.list_by_content_type("blog") as stream:
            assert await stream.next() == []
            created = await entry_repo.create("blog", "posts")
            entries = await stream.next()

        assert [entry.id for entry in entries] == [created.id]

    @pytest.mark.asyncio
    async def test_list_can_exclude_deleted(self, entry_repo):
        """Deleted entries are listed unless excluded."""
        kept = await entry_repo.create("blog", "posts")
        removed = await entry_repo.create("blog", "posts")
        await entry_repo.delete(removed)

        async with await entry_repo.list_by_content_type("blog") as stream:
            everything = await stream.next()
        async with await entry_repo.list_by_content_type("blog", include_deleted=False) as stream:
            live = await stream.next()

        assert len(everything) == 2
        assert [entry.id for entry in live] == [kept.id]

    @pytest.mark.asyncio
    async def test_cancel_releases_listener(self, entry_repo, store):
        """Cancelling a stream releases its store listener."""
        entry = await entry_repo.create("blog", "posts")
        stream = await entry_repo.get_by_id("blog", entry.id)
        assert store.listener_count() == 1

        await stream.cancel()

        assert store.listener_count() == 0
        await entry_repo.save(entry)
        with pytest.raises(StopAsyncIteration):
            await stream.next()
