"""Live value streams with explicit cancellation.

A Subscription is fed by a document store listener and read by the caller as
an async iterator. Cancelling it stops delivery and releases the listener.

Usage:
    async with await repo.get_by_id("blog", entry_id) as entries:
        async for entry in entries:
            ...
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

logger = logging.getLogger(__name__)

_CLOSED = object()

# Undelivered items held per subscription; the oldest goes first when full
MAX_PENDING = 64


class _Failure:
    def __init__(self, error: BaseException):
        self.error = error


class Subscription[T]:
    """Push-based stream of values delivered in commit order."""

    def __init__(
        self,
        on_cancel: Callable[[], Awaitable[None]] | None = None,
        max_pending: int = MAX_PENDING,
    ):
        if max_pending < 1:
            raise ValueError("max_pending must be 1 or greater")
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=max_pending)
        self._on_cancel = on_cancel
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _offer(self, item: Any) -> None:
        if self._queue.full():
            self._queue.get_nowait()
            logger.debug("Subscription reader is behind, dropped the oldest value")
        self._queue.put_nowait(item)

    def push(self, value: T) -> None:
        """Deliver a value to the reader (ignored once cancelled).

        A reader that falls more than max_pending values behind skips the
        oldest ones, so it always catches up to the latest state.
        """
        if not self._closed:
            self._offer(value)

    def fail(self, error: BaseException) -> None:
        """Terminate the stream with an error raised at the reader"""
        if not self._closed:
            self._offer(_Failure(error))

    def _ready(self) -> bool:
        return not self._closed and not self._queue.empty()

    def __aiter__(self) -> "Subscription[T]":
        return self

    async def __anext__(self) -> T:
        if self._closed:
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        if isinstance(item, _Failure):
            await self.cancel()
            raise item.error
        return item

    async def next(self) -> T:
        """Wait for the next value"""
        return await self.__anext__()

    async def latest(self) -> T:
        """Wait for a value, then skip ahead to the most recent one already delivered"""
        value = await self.__anext__()
        while self._ready():
            value = await self.__anext__()
        return value

    def map[U](self, fn: Callable[[T], U]) -> "Subscription[U]":
        """Derive a stream that applies fn to every value; cancelling either cancels both"""
        return _MappedSubscription(self, fn)

    async def cancel(self) -> None:
        """Stop delivery and release the underlying listener. Safe to call twice."""
        if self._closed:
            return
        self._closed = True
        self._offer(_CLOSED)
        if self._on_cancel is not None:
            on_cancel, self._on_cancel = self._on_cancel, None
            await on_cancel()
            logger.debug("Subscription released")

    async def __aenter__(self) -> "Subscription[T]":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.cancel()


class _MappedSubscription[S, T](Subscription[T]):
    def __init__(self, source: Subscription[S], fn: Callable[[S], T]):
        super().__init__()
        self._source = source
        self._fn = fn

    @property
    def closed(self) -> bool:
        return self._source.closed

    def push(self, value: Any) -> None:
        self._source.push(value)

    def fail(self, error: BaseException) -> None:
        self._source.fail(error)

    def _ready(self) -> bool:
        return self._source._ready()

    async def __anext__(self) -> T:
        value = await self._source.__anext__()
        try:
            return self._fn(value)
        except Exception:
            await self._source.cancel()
            raise

    async def cancel(self) -> None:
        await self._source.cancel()
