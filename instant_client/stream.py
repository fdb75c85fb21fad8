# =============================================================================
# Instant Python Client -- Result Streams
# =============================================================================
#
#     async with client.query(Goal).values() as results:
#         async for result in results:
#             if result.is_success:
#                 print(result.data)
#
# The stream subscribes when it is created and unsubscribes exactly once:
# on aclose(), on leaving ``async with``, or when a pending __anext__ is
# cancelled.
# =============================================================================

from __future__ import annotations

import asyncio

from typing import Any, Callable, Generic, TypeVar

from ._logging import logger
from .registry import Subscription
from .results import TypedResult

T = TypeVar("T")

_CLOSED = object()


class QueryStream(Generic[T]):
    """Async iterator over the results of one subscription.

    Args:
        subscribe: Registers a callback and returns its
            :class:`Subscription`.  Called once, immediately.
    """

    def __init__(
        self, subscribe: Callable[[Callable[[TypedResult[T]], None]], Subscription]
    ) -> None:
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._closed = False
        self._subscription: Subscription | None = None
        self._subscription = subscribe(self._push)

    def _push(self, result: TypedResult[T]) -> None:
        if not self._closed:
            self._queue.put_nowait(result)

    @property
    def closed(self) -> bool:
        return self._closed

    def _unsubscribe(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._subscription is not None:
            self._subscription.cancel()
            logger.debug("Stream closed (%r)", self._subscription)
        self._queue.put_nowait(_CLOSED)

    # -- Async iterator -------------------------------------------------------

    def __aiter__(self) -> QueryStream[T]:
        return self

    async def __anext__(self) -> TypedResult[T]:
        if self._closed and self._queue.empty():
            raise StopAsyncIteration
        try:
            item = await self._queue.get()
        except asyncio.CancelledError:
            self._unsubscribe()
            raise
        if item is _CLOSED:
            raise StopAsyncIteration
        return item

    async def aclose(self) -> None:
        self._unsubscribe()

    # -- Context manager ------------------------------------------------------

    async def __aenter__(self) -> QueryStream[T]:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        self._unsubscribe()
