"""
Cooperative cancellation.

A :class:`CancellationToken` is handed to every suspension point (model
streams, tool executions, subprocesses, MCP calls). Cancelling it wakes
any waiter; long-running work checks it or races against :meth:`wait`.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterable, AsyncIterator, Awaitable
from typing import TypeVar

from agent_runtime.errors import CancellationError

T = TypeVar("T")

_END = object()


class CancellationToken:
    """A one-shot cancellation signal shared between cooperating tasks."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    def cancel(self, reason: str | None = None) -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, message: str = "Operation cancelled.") -> None:
        """Raise :class:`CancellationError` if the token has fired."""
        if self._event.is_set():
            raise CancellationError(message)

    async def wait(self) -> None:
        await self._event.wait()


async def iterate_cancellable(
    source: AsyncIterable[T],
    token: CancellationToken | None,
    message: str = "Operation cancelled.",
) -> AsyncIterator[T]:
    """
    Pull items from ``source`` until it ends or ``token`` fires.

    The source runs in its own producer task and hands items over a
    single-slot queue, so a cancellation unblocks the consumer even while
    the producer is suspended on I/O. On cancellation the producer task is
    cancelled (closing the underlying stream) and :class:`CancellationError`
    is raised to the consumer.
    """
    if token is None:
        async for item in source:
            yield item
        return

    token.raise_if_cancelled(message)
    queue: asyncio.Queue[tuple[object, BaseException | None]] = asyncio.Queue(maxsize=1)

    async def produce() -> None:
        try:
            async for item in source:
                await queue.put((item, None))
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            await queue.put((_END, exc))
        else:
            await queue.put((_END, None))

    producer = asyncio.create_task(produce())
    waiter = asyncio.create_task(token.wait())
    try:
        while True:
            getter = asyncio.create_task(queue.get())
            await asyncio.wait({getter, waiter}, return_when=asyncio.FIRST_COMPLETED)
            if token.cancelled:
                getter.cancel()
                await asyncio.gather(getter, return_exceptions=True)
                raise CancellationError(message)
            item, exc = getter.result()
            if exc is not None:
                raise exc
            if item is _END:
                return
            yield item  # type: ignore[misc]
    finally:
        producer.cancel()
        waiter.cancel()
        await asyncio.gather(producer, waiter, return_exceptions=True)


async def run_cancellable(
    awaitable: Awaitable[T],
    token: CancellationToken | None,
    message: str = "Operation cancelled.",
) -> T:
    """
    Await ``awaitable`` unless ``token`` fires first.

    On cancellation the underlying task is cancelled and awaited before
    :class:`CancellationError` is raised.
    """
    if token is None:
        return await awaitable
    token.raise_if_cancelled(message)
    task = asyncio.ensure_future(awaitable)
    waiter = asyncio.create_task(token.wait())
    try:
        await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        if not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            raise CancellationError(message)
        return task.result()
    finally:
        waiter.cancel()
        if not task.done():
            task.cancel()
