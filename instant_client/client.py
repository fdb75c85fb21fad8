# =============================================================================
# Instant Python Client -- Async Client
# =============================================================================
#
# Primary public API.  Owns the session: sends init, tracks attrs and auth,
# routes query results into the subscription registry and correlates
# transactions with their acknowledgements.
# =============================================================================

from __future__ import annotations

import asyncio

from uuid import uuid4
from urllib.parse import urlencode
from typing import Any, Callable, Iterable, Mapping, Sequence, TypeVar, Union

from ._logging import logger
from ._version import __version__
from .auth import AuthProvider, MemoryTokenStore
from .connection import ConnectionManager
from .constants import (
    CLIENT_NAME,
    DEFAULT_BASE_URL,
    OP_ADD_QUERY,
    OP_ADD_QUERY_EXISTS,
    OP_ADD_QUERY_OK,
    OP_ERROR,
    OP_INIT,
    OP_INIT_OK,
    OP_REFRESH_OK,
    OP_REMOVE_QUERY,
    OP_REMOVE_QUERY_OK,
    OP_TRANSACT,
    OP_TRANSACT_OK,
    READY_TIMEOUT,
    SESSION_PATH,
)
from .errors import (
    DecodingError,
    InstantConnectionError,
    InstantError,
    InstantTimeoutError,
    InvalidQueryError,
    NotAuthenticatedError,
    ServerError,
)
from .normalizer import extract_all_page_info, normalize
from .protocol import MessageCodec
from .query import TypedQuery
from .registry import ResultCallback, Subscription, SubscriptionRecord, SubscriptionRegistry
from .results import QueryResult, TypedResult
from .stream import QueryStream
from .transaction import TransactionChunk, TxStep, transform
from .types import (
    Attribute,
    AuthInfo,
    ConnectionState,
    ConnectionStats,
    Envelope,
    ReconnectConfig,
    User,
)

T = TypeVar("T")

TransactArg = Union[TransactionChunk, Sequence[TransactionChunk], Sequence[TxStep]]


def session_url(base_url: str, app_id: str) -> str:
    """``wss://host/runtime/session?app_id=...``"""
    return f"{base_url.rstrip('/')}{SESSION_PATH}?{urlencode({'app_id': app_id})}"


class InstantClient:
    """Async InstantDB client.

    Args:
        app_id: Instant application id.
        base_url: Server base URL; defaults to ``INSTANT_BASE_URL`` or the
            hosted service.
        auth: Where the refresh token lives.  Defaults to an in-memory store
            (anonymous sessions).
        reconnect: Reconnection config.  Defaults to exponential backoff,
            infinite retries.
        extra_headers: Additional HTTP headers for the handshake.
        ready_timeout: How long :meth:`connect` waits for ``init-ok``.

    Example::

        async with InstantClient("my-app-id") as db:
            unsubscribe = db.subscribe_query({"goals": {}}, print)
            await db.transact(tx.goals[new_id()].update({"title": "Ship v1"}))
    """

    def __init__(
        self,
        app_id: str,
        *,
        base_url: str = DEFAULT_BASE_URL,
        auth: AuthProvider | None = None,
        reconnect: ReconnectConfig | None = None,
        extra_headers: Mapping[str, str] | None = None,
        ready_timeout: float = READY_TIMEOUT,
    ) -> None:
        if not app_id:
            raise ValueError("app_id is required")
        self._app_id = app_id
        self._auth: AuthProvider = auth if auth is not None else MemoryTokenStore()
        self._ready_timeout = ready_timeout

        # Session state, replaced on every init-ok
        self._session_id: str | None = None
        self._attributes: list[Attribute] = []
        self._attrs_by_id: dict[str, Attribute] = {}
        self._auth_info: AuthInfo | None = None
        self._ready_event = asyncio.Event()

        # Outstanding transactions: client-event-id -> future(tx-id)
        self._pending_tx: dict[str, asyncio.Future[Any]] = {}
        self._background_tasks: set[asyncio.Task[Any]] = set()

        self._registry = SubscriptionRegistry(
            on_add_query=self._on_add_query,
            on_remove_query=self._on_remove_query,
        )
        self._connection = ConnectionManager(
            session_url(base_url, app_id),
            codec=MessageCodec(),
            reconnect=reconnect,
            extra_headers=extra_headers,
            on_open=self._on_open,
            on_message=self._on_message,
            on_close=self._on_close,
        )

        # Inbound dispatch table (dict lookup = O(1))
        self._handlers: dict[str, Callable[[Envelope], None]] = {
            OP_INIT_OK: self._handle_init_ok,
            OP_ADD_QUERY_OK: self._handle_query_result,
            OP_ADD_QUERY_EXISTS: self._handle_query_result,
            OP_REFRESH_OK: self._handle_refresh_ok,
            OP_REMOVE_QUERY_OK: self._handle_remove_query_ok,
            OP_TRANSACT_OK: self._handle_transact_ok,
            OP_ERROR: self._handle_error,
        }

    # -- Context manager ------------------------------------------------------

    async def __aenter__(self) -> InstantClient:
        await self.connect()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.disconnect()

    # -- Connect / Disconnect -------------------------------------------------

    async def connect(self) -> None:
        """Open the session and wait (up to ``ready_timeout``) for init-ok."""
        await self._connection.connect()
        try:
            await asyncio.wait_for(self._ready_event.wait(), timeout=self._ready_timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "init-ok not received within %.0fs, proceeding anyway", self._ready_timeout
            )

    async def wait_until_ready(self, timeout: float | None = None) -> None:
        """Block until the session is authenticated.

        Raises:
            InstantTimeoutError: If *timeout* expires first.
        """
        if timeout is None:
            await self._ready_event.wait()
            return
        try:
            await asyncio.wait_for(self._ready_event.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            raise InstantTimeoutError(f"session not ready after {timeout}s") from None

    async def disconnect(self) -> None:
        """Close the session.  Subscriptions stay registered for a later connect."""
        for task in self._background_tasks:
            task.cancel()
        self._background_tasks.clear()

        await self._connection.disconnect()

        self._ready_event.clear()
        self._session_id = None
        self._set_attributes([])
        self._auth_info = None
        self._fail_pending(InstantConnectionError("client disconnected"))

    async def close(self) -> None:
        """Alias for disconnect."""
        await self.disconnect()

    async def sign_out(self) -> None:
        """Forget the stored token and restart the session anonymously."""
        self._auth.clear()
        self._auth_info = None
        if self._connection.state != ConnectionState.DISCONNECTED:
            await self.disconnect()
            await self.connect()

    # -- Properties -----------------------------------------------------------

    @property
    def app_id(self) -> str:
        return self._app_id

    @property
    def state(self) -> ConnectionState:
        return self._connection.state

    @property
    def error_reason(self) -> str | None:
        return self._connection.error_reason

    @property
    def session_id(self) -> str | None:
        return self._session_id

    @property
    def attributes(self) -> list[Attribute]:
        return list(self._attributes)

    @property
    def auth_info(self) -> AuthInfo | None:
        return self._auth_info

    @property
    def user(self) -> User | None:
        return self._auth_info.user if self._auth_info else None

    @property
    def is_authenticated(self) -> bool:
        """True when init-ok carried a user."""
        return self.user is not None

    @property
    def is_ready(self) -> bool:
        return (
            self._ready_event.is_set()
            and self._connection.state == ConnectionState.AUTHENTICATED
        )

    @property
    def stats(self) -> ConnectionStats:
        return self._connection.stats

    @property
    def subscription_count(self) -> int:
        return len(self._registry)

    # -- Queries --------------------------------------------------------------

    def subscribe_query(
        self, payload: Mapping[str, Any], callback: ResultCallback
    ) -> Subscription:
        """Subscribe to a raw InstaQL payload such as ``{"goals": {}}``.

        *callback* receives :class:`QueryResult`s: Loading first (or the
        cached result when the query is already live), then every update
        the server pushes.  Call the returned handle to unsubscribe.

        Raises:
            InvalidQueryError: If *payload* is empty or not JSON-serializable.
        """
        return self._registry.subscribe(payload, callback)

    def query(self, target: str | type[T]) -> TypedQuery[T]:
        """Start a typed query bound to this client."""
        return TypedQuery.of(target, client=self)

    def subscribe(
        self, query: TypedQuery[T], callback: Callable[[TypedResult[T]], Any]
    ) -> Subscription:
        """Subscribe to a typed query; results arrive decoded."""

        def deliver(result: QueryResult) -> Any:
            return callback(TypedResult.from_query_result(result, query))

        return self._registry.subscribe(query.to_wire_payload(), deliver)

    def stream(self, query: TypedQuery[T]) -> QueryStream[T]:
        """Async iterator over a typed query's results."""
        return QueryStream(lambda push: self.subscribe(query, push))

    # -- Transactions ---------------------------------------------------------

    async def transact(
        self, ops: TransactArg, *, timeout: float | None = None
    ) -> Any:
        """Apply a transaction and wait for the server's acknowledgement.

        Args:
            ops: A :class:`TransactionChunk`, a list of chunks, or already
                compiled tx-steps.
            timeout: Seconds to wait for ``transact-ok``.

        Returns:
            The server's ``tx-id``.

        Raises:
            NotAuthenticatedError: Before init-ok.
            InvalidQueryError: For malformed ops.
            ServerError: The server rejected the transaction.
            InstantConnectionError: The connection dropped before the ack.
            InstantTimeoutError: *timeout* expired.
        """
        if not self.is_ready:
            raise NotAuthenticatedError()

        steps = self._compile(ops)
        event_id = str(uuid4())
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._pending_tx[event_id] = future
        try:
            await self._connection.send(
                OP_TRANSACT, {"tx_steps": steps}, client_event_id=event_id
            )
            logger.debug("Transaction %s sent (%d steps)", event_id, len(steps))
            if timeout is None:
                return await future
            try:
                return await asyncio.wait_for(future, timeout=timeout)
            except asyncio.TimeoutError:
                raise InstantTimeoutError(
                    f"transaction not acknowledged after {timeout}s"
                ) from None
        finally:
            self._pending_tx.pop(event_id, None)

    def _compile(self, ops: TransactArg) -> list[TxStep]:
        if isinstance(ops, TransactionChunk):
            ops = [ops]
        if not isinstance(ops, Sequence) or isinstance(ops, (str, bytes)) or not ops:
            raise InvalidQueryError("transact() needs chunks or tx-steps")

        if all(isinstance(op, TransactionChunk) for op in ops):
            steps, new_attrs = transform(ops, self._attributes)  # type: ignore[arg-type]
            if new_attrs:
                # Optimistic: the server creates these with the transaction
                self._set_attributes(self._attributes + new_attrs)
            return steps
        if all(isinstance(op, (list, tuple)) for op in ops):
            return [list(op) for op in ops]  # type: ignore[union-attr]
        raise InvalidQueryError("transact() cannot mix chunks and tx-steps")

    def _fail_pending(self, error: Exception) -> None:
        pending, self._pending_tx = self._pending_tx, {}
        for future in pending.values():
            if not future.done():
                future.set_exception(error)

    # -- Internal: outbound ---------------------------------------------------

    def _fire_task(self, coro: Any) -> None:
        """Schedule a coroutine with a strong reference to prevent GC."""
        task = asyncio.ensure_future(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def _on_open(self) -> None:
        try:
            token = self._auth.current_refresh_token()
        except (InstantError, OSError) as exc:
            logger.error("Could not read refresh token, starting anonymously: %s", exc)
            token = None

        fields: dict[str, Any] = {
            "app_id": self._app_id,
            "versions": {CLIENT_NAME: __version__},
        }
        if token:
            fields["refresh_token"] = token
        try:
            await self._connection.send(OP_INIT, fields)
        except InstantError as exc:
            logger.warning("Failed to send init: %s", exc)

    def _on_add_query(self, record: SubscriptionRecord) -> None:
        # Before init-ok the query goes out with the rest after the handshake
        if self.is_ready:
            self._fire_task(self._send_add_query(record))

    def _on_remove_query(self, record: SubscriptionRecord) -> None:
        if self.is_ready:
            self._fire_task(self._send_remove_query(record))

    async def _send_add_query(self, record: SubscriptionRecord) -> None:
        try:
            await self._connection.send(
                OP_ADD_QUERY, {"q": record.query}, client_event_id=record.event_id
            )
        except InstantError as exc:
            logger.warning("add-query for %s failed: %s", record.fingerprint[:12], exc)

    async def _send_remove_query(self, record: SubscriptionRecord) -> None:
        try:
            await self._connection.send(OP_REMOVE_QUERY, {"q": record.query})
        except InstantError as exc:
            logger.warning("remove-query for %s failed: %s", record.fingerprint[:12], exc)

    # -- Internal: inbound ----------------------------------------------------

    def _on_message(self, envelope: Envelope) -> None:
        handler = self._handlers.get(envelope.op)
        if handler is None:
            logger.debug("Ignoring unknown op %r", envelope.op)
            return
        handler(envelope)

    def _on_close(self, code: int, reason: str) -> None:
        self._ready_event.clear()
        self._fail_pending(
            InstantConnectionError(f"connection closed before ack (code {code})")
        )

    def _set_attributes(self, attributes: Iterable[Attribute]) -> None:
        self._attributes = list(attributes)
        self._attrs_by_id = {attr.id: attr for attr in self._attributes}

    def _handle_init_ok(self, envelope: Envelope) -> None:
        self._session_id = envelope.get("session_id")

        attrs: list[Attribute] = []
        for raw in envelope.get("attrs") or ():
            try:
                attrs.append(Attribute.from_wire(raw))
            except DecodingError as exc:
                logger.warning("Skipping attribute: %s", exc)
        self._set_attributes(attrs)

        self._auth_info = None
        raw_auth = envelope.get("auth")
        if raw_auth:
            try:
                self._auth_info = AuthInfo.from_wire(raw_auth)
            except DecodingError as exc:
                logger.warning("Ignoring malformed auth block: %s", exc)

        user = self.user
        if user is not None:
            try:
                self._auth.persist(user)
            except Exception:
                logger.exception("Failed to persist user %s", user.id)

        self._connection.mark_authenticated()
        self._ready_event.set()

        records = self._registry.records()
        logger.info(
            "Session %s ready (%d attrs, user=%s, %d queries)",
            self._session_id,
            len(attrs),
            user.id if user else None,
            len(records),
        )
        for record in records:
            self._fire_task(self._send_add_query(record))

    def _handle_query_result(self, envelope: Envelope) -> None:
        blocks = envelope.get("result") or []
        try:
            data = normalize(blocks, self._attrs_by_id)
            page_info = extract_all_page_info(blocks)
        except DecodingError as exc:
            self._registry.handle_error(envelope.client_event_id, exc)
            return
        self._registry.handle_result(envelope.client_event_id, data, page_info)

    def _handle_refresh_ok(self, envelope: Envelope) -> None:
        self._registry.handle_refresh(envelope.get("computations") or [], self._attrs_by_id)

    def _handle_remove_query_ok(self, envelope: Envelope) -> None:
        logger.debug("remove-query acknowledged (%s)", envelope.client_event_id)

    def _handle_transact_ok(self, envelope: Envelope) -> None:
        future = self._pending_tx.pop(envelope.client_event_id or "", None)
        if future is None:
            logger.debug("transact-ok for unknown event %s", envelope.client_event_id)
            return
        if not future.done():
            future.set_result(envelope.get("tx_id"))

    def _handle_error(self, envelope: Envelope) -> None:
        error = ServerError(
            str(envelope.get("message") or "unknown server error"),
            envelope.get("hint"),
            status=envelope.get("status"),
            type=envelope.get("type"),
        )
        event_id = envelope.client_event_id
        if self._registry.handle_error(event_id, error):
            return

        future = self._pending_tx.pop(event_id or "", None)
        if future is not None:
            if not future.done():
                future.set_exception(error)
            return

        logger.error("Server error: %s", error)
