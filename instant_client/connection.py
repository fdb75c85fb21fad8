# =============================================================================
# Instant Python Client -- Connection Manager
# =============================================================================
#
# WebSocket lifecycle: open, receive loop, send, reconnect with backoff.
# Frames are decoded into Envelopes here; everything above this layer works
# with ops and fields, never with raw text.
# =============================================================================

from __future__ import annotations

import asyncio
import random
import time

from typing import Any, Callable, Mapping

import websockets
import websockets.asyncio.client
from websockets.exceptions import ConnectionClosed, WebSocketException

from ._logging import logger
from .constants import (
    CLOSE_TIMEOUT,
    CONNECTION_TIMEOUT,
    RECONNECT_ABSOLUTE_CAP,
    WS_CLOSE_NORMAL,
    WS_CLOSE_POLICY_VIOLATION,
)
from .errors import (
    DecodingError,
    InstantConnectionError,
    InstantError,
    InstantTimeoutError,
    NotConnectedError,
)
from .protocol import MessageCodec
from .types import (
    ConnectionState,
    ConnectionStats,
    Envelope,
    ReconnectConfig,
    ReconnectMode,
)

# Close code reported when the socket drops without a close frame
WS_CLOSE_ABNORMAL = 1006

_SENDABLE = (ConnectionState.CONNECTED, ConnectionState.AUTHENTICATED)


def _close_info(exc: ConnectionClosed) -> tuple[int, str]:
    frame = exc.rcvd
    if frame is None:
        return WS_CLOSE_ABNORMAL, ""
    return frame.code, frame.reason


class ConnectionManager:
    """Owns the socket for one Instant session.

    This is the low-level transport layer.  ``InstantClient`` uses it for
    all network I/O and reacts to its callbacks:

    * ``on_open()`` once the socket is open (send ``init`` from here),
    * ``on_message(envelope)`` for every decoded frame,
    * ``on_close(code, reason)`` when the socket drops unexpectedly,
    * ``on_state_change(state)`` on every transition.

    A callback may return a coroutine; it is scheduled as a task.
    """

    def __init__(
        self,
        url: str,
        *,
        codec: MessageCodec | None = None,
        reconnect: ReconnectConfig | None = None,
        extra_headers: Mapping[str, str] | None = None,
        on_open: Callable[[], Any] | None = None,
        on_message: Callable[[Envelope], Any] | None = None,
        on_close: Callable[[int, str], Any] | None = None,
        on_state_change: Callable[[ConnectionState], Any] | None = None,
    ) -> None:
        self._url = url
        self._codec = codec or MessageCodec()
        self._reconnect_cfg = reconnect or ReconnectConfig()
        self._extra_headers = dict(extra_headers or {})

        # Callbacks
        self._on_open = on_open
        self._on_message = on_message
        self._on_close = on_close
        self._on_state_change = on_state_change

        # State
        self._ws: websockets.asyncio.client.ClientConnection | None = None
        self._state = ConnectionState.DISCONNECTED
        self._error_reason: str | None = None
        self._is_connecting = False
        self._closing = False
        self._reconnect_attempts = 0
        self._stats = ConnectionStats()

        # Tasks
        self._recv_task: asyncio.Task[None] | None = None
        self._reconnect_task: asyncio.Task[None] | None = None
        self._background_tasks: set[asyncio.Task[Any]] = set()

    def _fire_task(self, coro: Any) -> None:
        """Schedule a coroutine with a strong reference to prevent GC."""
        task = asyncio.ensure_future(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    # -- Properties -----------------------------------------------------------

    @property
    def url(self) -> str:
        return self._url

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def error_reason(self) -> str | None:
        """Why the transport last entered ERROR; cleared on a good open."""
        return self._error_reason

    @property
    def is_connected(self) -> bool:
        return self._ws is not None and self._state in _SENDABLE

    @property
    def stats(self) -> ConnectionStats:
        return self._stats

    # -- Connect / Disconnect -------------------------------------------------

    async def connect(self) -> None:
        """Open the socket.

        On failure the state moves to ERROR.  With reconnection enabled a
        retry is scheduled and this returns; otherwise the error is raised.

        Raises:
            InstantConnectionError: Open failed and reconnection is disabled.
            InstantTimeoutError: Open timed out and reconnection is disabled.
        """
        if self.is_connected or self._is_connecting:
            return
        self._closing = False
        self._cancel_reconnect()
        try:
            await self._open()
        except (InstantConnectionError, InstantTimeoutError) as exc:
            if not self._reconnect_cfg.enabled:
                raise
            logger.warning("Connect failed: %s", exc)
            self._schedule_reconnect()

    async def _open(self) -> None:
        """Low-level WebSocket open."""
        self._is_connecting = True
        self._set_state(ConnectionState.CONNECTING)
        try:
            try:
                self._ws = await asyncio.wait_for(
                    websockets.asyncio.client.connect(
                        self._url,
                        additional_headers=self._extra_headers or None,
                        max_size=self._codec.max_message_size,
                        open_timeout=None,  # asyncio.wait_for handles timeout
                        close_timeout=CLOSE_TIMEOUT,
                    ),
                    timeout=CONNECTION_TIMEOUT,
                )
            except asyncio.TimeoutError:
                self._fail(f"connection timed out after {CONNECTION_TIMEOUT}s")
                raise InstantTimeoutError(
                    f"Connection timed out after {CONNECTION_TIMEOUT}s"
                ) from None
            except (OSError, WebSocketException) as exc:
                self._fail(str(exc) or type(exc).__name__)
                raise InstantConnectionError(f"Failed to connect: {exc}") from exc
        finally:
            self._is_connecting = False

        self._error_reason = None
        self._reconnect_attempts = 0
        self._stats.connected_since = time.monotonic()
        self._set_state(ConnectionState.CONNECTED)
        logger.debug("Connected to %s", self._url)

        self._recv_task = asyncio.create_task(self._recv_loop(self._ws))
        self._emit(self._on_open)

    async def disconnect(self) -> None:
        """Close the socket and stop reconnecting.  Safe from any state."""
        self._closing = True
        self._cancel_reconnect()

        tasks_to_await: list[asyncio.Task[Any]] = []
        if self._recv_task:
            self._recv_task.cancel()
            tasks_to_await.append(self._recv_task)
            self._recv_task = None
        for task in self._background_tasks:
            task.cancel()
            tasks_to_await.append(task)
        self._background_tasks.clear()
        if tasks_to_await:
            await asyncio.gather(*tasks_to_await, return_exceptions=True)

        ws, self._ws = self._ws, None
        if ws is not None:
            try:
                await ws.close(WS_CLOSE_NORMAL, "Client disconnect")
            except (OSError, ConnectionClosed) as exc:
                logger.debug("Close handshake failed: %s", exc)

        self._stats.connected_since = None
        self._set_state(ConnectionState.DISCONNECTED)

    def mark_authenticated(self) -> None:
        """CONNECTED -> AUTHENTICATED once the session is acknowledged."""
        if self._state == ConnectionState.CONNECTED:
            self._set_state(ConnectionState.AUTHENTICATED)

    # -- Send -----------------------------------------------------------------

    async def send(
        self,
        op: str,
        fields: Mapping[str, Any] | None = None,
        *,
        client_event_id: str | None = None,
    ) -> str:
        """Encode and send one envelope.

        Returns:
            The ``client-event-id`` the envelope was stamped with.

        Raises:
            NotConnectedError: Not CONNECTED or AUTHENTICATED.
            EncodingError: A field cannot be serialized.
            InstantConnectionError: The socket closed during the send.
        """
        ws = self._ws
        if ws is None or self._state not in _SENDABLE:
            raise NotConnectedError()

        event_id, text = self._codec.encode(op, fields, client_event_id=client_event_id)
        try:
            await ws.send(text)
        except ConnectionClosed as exc:
            raise InstantConnectionError(f"Connection closed while sending {op}") from exc

        self._stats.messages_sent += 1
        self._stats.bytes_sent += len(text)
        logger.debug("Sent %s (%s)", op, event_id)
        return event_id

    # -- Internal: receive loop -----------------------------------------------

    async def _recv_loop(self, ws: websockets.asyncio.client.ClientConnection) -> None:
        """Read frames until the socket closes."""
        try:
            async for message in ws:
                self._handle_raw_message(message)
        except ConnectionClosed as exc:
            code, reason = _close_info(exc)
        except asyncio.CancelledError:
            return
        else:
            code = ws.close_code or WS_CLOSE_NORMAL
            reason = ws.close_reason or ""

        if self._closing or ws is not self._ws:
            return
        self._recv_task = None
        self._handle_close(code, reason)

    def _handle_raw_message(self, data: str | bytes) -> None:
        """Decode one frame and forward it; malformed frames are dropped."""
        self._stats.messages_received += 1
        self._stats.bytes_received += len(data)
        try:
            envelope = self._codec.decode(data)
        except DecodingError as exc:
            self._stats.dropped_messages += 1
            logger.warning("Dropping malformed message: %s", exc)
            return
        self._emit(self._on_message, envelope)

    # -- Internal: close and reconnection -------------------------------------

    def _handle_close(self, code: int, reason: str) -> None:
        """React to an unexpected close."""
        logger.info("Connection closed: code=%d reason=%s", code, reason)
        self._ws = None
        self._stats.connected_since = None
        self._set_state(ConnectionState.DISCONNECTED)
        self._emit(self._on_close, code, reason)

        if code == WS_CLOSE_POLICY_VIOLATION:
            self._fail(f"closed by server: {reason or 'policy violation'}")
            logger.error("Server rejected the session (code %d): %s", code, reason)
            return
        if self._reconnect_cfg.enabled:
            self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        """Schedule a reconnection attempt with backoff."""
        if self._closing:
            return

        cfg = self._reconnect_cfg
        if cfg.max_attempts >= 0 and self._reconnect_attempts >= cfg.max_attempts:
            logger.error("Max reconnect attempts (%d) reached", cfg.max_attempts)
            self._fail(f"gave up after {self._reconnect_attempts} reconnect attempts")
            return

        delay = self._calculate_delay()
        logger.info(
            "Reconnecting in %.1fs (attempt %d/%s)",
            delay,
            self._reconnect_attempts + 1,
            cfg.max_attempts if cfg.max_attempts >= 0 else "inf",
        )
        self._reconnect_task = asyncio.ensure_future(self._reconnect_after(delay))

    async def _reconnect_after(self, delay: float) -> None:
        """Wait, then try to reconnect."""
        try:
            await asyncio.sleep(delay)
        except asyncio.CancelledError:
            return

        self._reconnect_task = None
        self._reconnect_attempts += 1
        self._stats.reconnect_count += 1
        try:
            await self._open()
        except InstantError as exc:
            logger.debug("Reconnect attempt failed: %s", exc)
            self._schedule_reconnect()

    def _cancel_reconnect(self) -> None:
        if self._reconnect_task:
            self._reconnect_task.cancel()
            self._reconnect_task = None

    def _calculate_delay(self) -> float:
        """Compute reconnect delay based on strategy."""
        cfg = self._reconnect_cfg
        attempt = self._reconnect_attempts

        if cfg.mode == ReconnectMode.LINEAR:
            delay = cfg.base_delay + attempt * 1.0
        elif cfg.mode == ReconnectMode.FIBONACCI:
            delay = cfg.base_delay * _fib(min(attempt + 1, 10))
        else:
            delay = cfg.base_delay * (cfg.factor**attempt)

        delay = min(delay, cfg.max_delay, RECONNECT_ABSOLUTE_CAP)

        if cfg.jitter:
            jitter_amount = delay * 0.2 * (random.random() - 0.5)
            delay = max(0.0, delay + jitter_amount)

        return delay

    # -- State management -----------------------------------------------------

    def _fail(self, reason: str) -> None:
        self._error_reason = reason
        self._set_state(ConnectionState.ERROR)

    def _set_state(self, new_state: ConnectionState) -> None:
        if new_state == self._state:
            return
        old = self._state
        self._state = new_state
        logger.debug("State: %s -> %s", old.value, new_state.value)
        self._emit(self._on_state_change, new_state)

    def _emit(self, callback: Callable[..., Any] | None, *args: Any) -> None:
        if callback is None:
            return
        try:
            result = callback(*args)
        except Exception:
            logger.exception("Connection callback %r raised", callback)
            return
        if asyncio.iscoroutine(result):
            self._fire_task(result)


def _fib(n: int) -> int:
    """Fibonacci number for reconnect delay calculation."""
    a, b = 0, 1
    for _ in range(n):
        a, b = b, a + b
    return a
