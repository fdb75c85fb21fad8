# =============================================================================
# Instant Python Client -- Synchronous Wrapper
# =============================================================================
#
# Thread-based wrapper around InstantClient for blocking usage.  The async
# client lives on a private event loop thread; every call is marshalled onto
# that loop, so the subscription registry is only ever touched from one
# thread.  Subscription callbacks run on the loop thread.
# =============================================================================

from __future__ import annotations

import asyncio
import concurrent.futures
import threading

from typing import Any, Callable, Coroutine, Mapping, TypeVar

from ._logging import logger
from .client import InstantClient, TransactArg
from .errors import InstantConnectionError, InstantError, InstantTimeoutError
from .query import TypedQuery
from .types import ConnectionState

T = TypeVar("T")

_CALL_TIMEOUT = 5.0


class SyncInstantClient:
    """Blocking / thread-based Instant client.

    Runs an :class:`InstantClient` on a background thread.  All public
    methods are thread-safe and block until complete.  Keyword arguments
    are forwarded to :class:`InstantClient`.

    Example::

        db = SyncInstantClient("my-app-id")
        db.connect()
        unsubscribe = db.subscribe({"goals": {}}, lambda r: print(r.data))
        db.transact(tx.goals[new_id()].update({"title": "Ship v1"}))
        unsubscribe()
        db.close()
    """

    def __init__(self, app_id: str, **kwargs: Any) -> None:
        self._app_id = app_id
        self._kwargs = kwargs

        self._loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None
        self._client: InstantClient | None = None
        self._stop: asyncio.Event | None = None
        self._running = False
        self._connected_event = threading.Event()
        self._connect_error: Exception | None = None

    # -- Lifecycle ------------------------------------------------------------

    def connect(self, timeout: float = 15.0) -> None:
        """Connect in a background thread.  Blocks until the session is ready.

        Raises:
            InstantTimeoutError: If *timeout* expires first.
            InstantConnectionError: If the connection failed.
        """
        if self._running:
            return

        self._running = True
        self._connect_error = None
        self._connected_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop, daemon=True, name="instant-client"
        )
        self._thread.start()

        if not self._connected_event.wait(timeout=timeout):
            self.close()
            raise InstantTimeoutError(f"Connection timed out after {timeout}s")

        err = self._connect_error
        if err is not None:
            self.close()
            raise InstantConnectionError(f"Connection failed: {err}") from err

    def close(self) -> None:
        """Disconnect and stop the background thread."""
        self._running = False
        loop, stop = self._loop, self._stop
        if loop is not None and stop is not None and not loop.is_closed():
            try:
                loop.call_soon_threadsafe(stop.set)
            except RuntimeError:
                logger.debug("Loop already closed")
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5.0)
        self._thread = None

    def disconnect(self) -> None:
        """Alias for close."""
        self.close()

    def __enter__(self) -> SyncInstantClient:
        self.connect()
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    # -- Queries --------------------------------------------------------------

    def query(self, target: str | type[T]) -> TypedQuery[T]:
        """Start a typed query; pass it to :meth:`subscribe`."""
        return TypedQuery.of(target)

    def subscribe(
        self,
        query: TypedQuery[Any] | Mapping[str, Any],
        callback: Callable[[Any], Any],
    ) -> Callable[[], None]:
        """Subscribe to a typed query or a raw payload.

        *callback* runs on the client thread.  Returns an idempotent
        unsubscribe function that can be called from any thread.
        """
        client, loop = self._require()

        async def register() -> Any:
            if isinstance(query, TypedQuery):
                return client.subscribe(query, callback)
            return client.subscribe_query(query, callback)

        subscription = self._call(register(), _CALL_TIMEOUT)

        def unsubscribe() -> None:
            if loop.is_closed():
                return
            try:
                loop.call_soon_threadsafe(subscription.cancel)
            except RuntimeError:
                logger.debug("Unsubscribe after loop shutdown ignored")

        return unsubscribe

    # -- Transactions ---------------------------------------------------------

    def transact(self, ops: TransactArg, *, timeout: float = 30.0) -> Any:
        """Apply a transaction; returns the server's ``tx-id``."""
        client, _ = self._require()
        return self._call(client.transact(ops, timeout=timeout), timeout + 1.0)

    # -- Properties -----------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        if self._client:
            return self._client.state
        return ConnectionState.DISCONNECTED

    @property
    def is_ready(self) -> bool:
        if self._client:
            return self._client.is_ready
        return False

    @property
    def client(self) -> InstantClient | None:
        """The wrapped async client; only use it from the client thread."""
        return self._client

    # -- Internal -------------------------------------------------------------

    def _require(self) -> tuple[InstantClient, asyncio.AbstractEventLoop]:
        if not self._running or self._loop is None or self._client is None:
            raise InstantConnectionError("SyncInstantClient is not connected")
        return self._client, self._loop

    def _call(self, coro: Coroutine[Any, Any, T], timeout: float) -> T:
        _, loop = self._require()
        future = asyncio.run_coroutine_threadsafe(coro, loop)
        try:
            return future.result(timeout=timeout)
        except concurrent.futures.TimeoutError:
            future.cancel()
            raise InstantTimeoutError(f"call timed out after {timeout}s") from None

    def _run_loop(self) -> None:
        """Background thread: run the async event loop."""
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        self._loop = loop
        try:
            loop.run_until_complete(self._async_main())
        except Exception as exc:
            logger.error("Background loop error: %s", exc)
        finally:
            loop.close()
            self._loop = None
            self._client = None

    async def _async_main(self) -> None:
        """Async entry point in the background thread."""
        self._stop = asyncio.Event()
        self._client = InstantClient(self._app_id, **self._kwargs)
        try:
            await self._client.connect()
            ready = asyncio.ensure_future(self._client.wait_until_ready())
            stopped = asyncio.ensure_future(self._stop.wait())
            if not self._running:
                self._stop.set()
            await asyncio.wait({ready, stopped}, return_when=asyncio.FIRST_COMPLETED)
            if ready.done():
                self._connected_event.set()
            else:
                ready.cancel()
            await stopped
        except InstantError as exc:
            self._connect_error = exc
            logger.error("Client error: %s", exc)
        finally:
            await self._client.disconnect()
            self._connected_event.set()  # Unblock connect() if still waiting
