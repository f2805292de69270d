"""Cancellable async stream of notifications."""

import asyncio
import inspect
from collections.abc import Awaitable, Callable
from typing import Any, Generic, TypeVar

T = TypeVar("T")

_CLOSED = object()


class Subscription(Generic[T]):
    """Async iterator fed by ``push`` and ended by ``close``.

    Items pushed after ``close`` are ignored. Iteration ends once the items queued
    before the close have been consumed.
    """

    def __init__(self, on_close: Callable[[], Awaitable[None] | None] | None = None) -> None:
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._on_close = on_close
        self.closed = False

    def push(self, item: T) -> None:
        if not self.closed:
            self._queue.put_nowait(item)

    def pending(self) -> int:
        return self._queue.qsize()

    def __aiter__(self) -> "Subscription[T]":
        return self

    async def __anext__(self) -> T:
        if self.closed and self._queue.empty():
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._queue.put_nowait(_CLOSED)
        if self._on_close is not None:
            result = self._on_close()
            if inspect.isawaitable(result):
                await result

    async def __aenter__(self) -> "Subscription[T]":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()
