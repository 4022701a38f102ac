"""
Cooperative cancellation for in-flight chat requests.

A CancellationToken is handed to the client by the caller. Every suspension
point of a request (sending, waiting for headers, each body read) is raced
against the token so an abort stops the stream promptly instead of waiting for
the next chunk from the server.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import AsyncIterable, AsyncIterator, Awaitable
from typing import TypeVar

from multichat.errors import CancellationError

T = TypeVar("T")


class CancellationToken:
    """Advisory abort signal shared between the caller and one request."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str | None = None) -> None:
        """Signal cancellation. Repeated calls are no-ops."""
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise CancellationError(self.reason or "Request aborted by user")


async def race(awaitable: Awaitable[T], token: CancellationToken | None) -> T:
    """
    Await ``awaitable`` unless ``token`` fires first.

    Raises:
        CancellationError: if the token was already set or fires before the
            awaitable completes. The pending awaitable is cancelled.
    """
    if token is None:
        return await awaitable

    if token.cancelled:
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        token.raise_if_cancelled()

    work = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(token.wait())
    try:
        done, _ = await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        work.cancel()
        raise
    finally:
        waiter.cancel()

    if work in done:
        return work.result()

    work.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await work
    raise CancellationError(token.reason or "Request aborted by user")


async def iterate(source: AsyncIterable[T], token: CancellationToken | None) -> AsyncIterator[T]:
    """Yield items from ``source``, racing every read against ``token``."""
    iterator = source.__aiter__()
    while True:
        try:
            item = await race(_next(iterator), token)
        except StopAsyncIteration:
            return
        yield item


async def _next(iterator: AsyncIterator[T]) -> T:
    return await iterator.__anext__()
