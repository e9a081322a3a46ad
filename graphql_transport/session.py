"""Subscription client for GraphQL over WebSocket.

This module owns one WebSocket connection and multiplexes any number of
subscriptions over it. It handles:
- Connection lifecycle and connection_init
- Keepalive pings
- Exponential backoff reconnection
- Routing of inbound messages to subscriber callbacks

Everything runs on the event loop that first calls connect(); socket frames
are consumed by a single listener task, so callbacks never run concurrently
with each other or with registry updates.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable, Mapping, Sequence
from enum import Enum
from typing import Any

from .errors import (
    GraphQLClientError,
    GraphQLConnectionError,
    GraphQLSubscriptionError,
)
from .protocol import (
    GQL_COMPLETE,
    GQL_CONNECTION_ACK,
    GQL_CONNECTION_ERROR,
    GQL_CONNECTION_KEEP_ALIVE,
    GQL_DATA,
    GQL_ERROR,
    GQL_NEXT,
    GQL_PING,
    GQL_PONG,
    ProtocolMessage,
    build_connection_init,
    build_ping,
    build_pong,
    build_start,
    build_stop,
    error_message_from_payload,
    parse_message,
)
from .subscriptions import (
    CompleteCallback,
    ErrorCallback,
    NextCallback,
    SubscriptionRegistry,
    invoke_callback,
)
from .ws_client import GraphQLWsClient, GraphQLWsMessageType

_LOGGER = logging.getLogger(__name__)

DEFAULT_KEEPALIVE_INTERVAL = 30.0
DEFAULT_RECONNECT_BASE_DELAY = 1.0
DEFAULT_MAX_RECONNECT_ATTEMPTS = 10

Unsubscribe = Callable[[], Awaitable[None]]


def _retrieve_exception(task: asyncio.Task[None]) -> None:
    # An open abandoned by teardown may fail with no awaiter left.
    if not task.cancelled():
        task.exception()


class ConnectionState(Enum):
    """Lifecycle states of the subscription connection."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECT_SCHEDULED = "reconnect_scheduled"
    CLOSED = "closed"


class GraphQLSubscriptionClient:
    """Connection manager and subscription multiplexer.

    Usage:
        client = GraphQLSubscriptionClient(
            "wss://api.example.com/graphql",
            {"authorization": "Bearer secret"},
            "graphql-ws",
        )
        unsubscribe = await client.subscribe(
            "subscription { messageAdded { id text } }",
            on_next=handle_message,
        )
        ...
        await unsubscribe()
        await client.close()
    """

    def __init__(
        self,
        url: str,
        connection_params: Mapping[str, Any] | None = None,
        protocols: str | Sequence[str] | None = None,
        *,
        keepalive_interval: float = DEFAULT_KEEPALIVE_INTERVAL,
        reconnect_base_delay: float = DEFAULT_RECONNECT_BASE_DELAY,
        max_reconnect_attempts: int = DEFAULT_MAX_RECONNECT_ATTEMPTS,
        connect_timeout: float = 15.0,
    ) -> None:
        """Initialize the client.

        Args:
            url: WebSocket endpoint (ws:// or wss://)
            connection_params: Payload sent with connection_init
            protocols: Sub-protocol token(s) offered during the handshake
            keepalive_interval: Seconds between keepalive pings
            reconnect_base_delay: Delay before the first reconnect (seconds),
                doubled on each further attempt
            max_reconnect_attempts: Automatic reconnect ceiling
            connect_timeout: Handshake timeout (seconds)
        """
        self.url = url
        if isinstance(protocols, str):
            self._protocols: list[str] | None = [protocols]
        else:
            self._protocols = list(protocols) if protocols else None
        self._connection_params: dict[str, Any] = dict(connection_params or {})

        self._keepalive_interval = keepalive_interval
        self._reconnect_base_delay = reconnect_base_delay
        self._max_reconnect_attempts = max_reconnect_attempts
        self._connect_timeout = connect_timeout

        # Connection state
        self._ws: GraphQLWsClient | None = None
        self._state = ConnectionState.DISCONNECTED
        self._connect_task: asyncio.Task[None] | None = None
        self._listen_task: asyncio.Task[None] | None = None
        self._keepalive_task: asyncio.Task[None] | None = None
        self._epoch = 0

        # Reconnection
        self._should_reconnect = True
        self._reconnect_attempts = 0
        self._reconnect_handle: asyncio.TimerHandle | None = None
        self._reconnect_task: asyncio.Task[None] | None = None

        self._registry = SubscriptionRegistry()
        self._connection_state_callback: Callable[[ConnectionState], None] | None = None

    # -------------------------------------------------------------------------
    # Public API: Connection Management
    # -------------------------------------------------------------------------

    @property
    def is_connected(self) -> bool:
        """Check if the transport is open."""
        return self._state is ConnectionState.CONNECTED

    @property
    def connection_state(self) -> ConnectionState:
        return self._state

    @property
    def connection_params(self) -> dict[str, Any]:
        return dict(self._connection_params)

    @property
    def reconnect_attempts(self) -> int:
        return self._reconnect_attempts

    @property
    def subscription_count(self) -> int:
        return len(self._registry)

    async def connect(self) -> None:
        """Open the connection, or wait for the one already opening.

        Returns once the transport is open and connection_init has been sent;
        the server's connection_ack is not awaited.

        Raises:
            GraphQLConnectionError: If the transport could not be opened
        """
        if self._state is ConnectionState.CONNECTED:
            return
        if self._state is ConnectionState.CONNECTING and self._connect_task is not None:
            await asyncio.shield(self._connect_task)
            return

        self._cancel_reconnect_timer()
        self._set_state(ConnectionState.CONNECTING)
        self._connect_task = asyncio.create_task(self._open(self._epoch))
        self._connect_task.add_done_callback(_retrieve_exception)
        await asyncio.shield(self._connect_task)

    async def close(self) -> None:
        """Close the connection and stop reconnecting.

        Active subscriptions are dropped silently; no callback is invoked.
        """
        _LOGGER.info("Closing subscription client for %s", self.url)
        self._should_reconnect = False
        await self._teardown(ConnectionState.CLOSED)

    async def reconnect(self) -> None:
        """Tear down the connection and open a fresh one.

        Active subscriptions are dropped as in close(), but automatic
        reconnection stays enabled and the attempt counter starts over.
        """
        _LOGGER.info("Forcing reconnect to %s", self.url)
        await self._teardown(ConnectionState.DISCONNECTED)
        self._should_reconnect = True
        self._reconnect_attempts = 0
        await self.connect()

    def update_connection_params(self, params: Mapping[str, Any]) -> None:
        """Merge params into the payload used by the next connection_init."""
        self._connection_params = {**self._connection_params, **params}

    def on_connection_state_changed(
        self, callback: Callable[[ConnectionState], None]
    ) -> None:
        """Register callback for connection state changes."""
        self._connection_state_callback = callback

    # -------------------------------------------------------------------------
    # Public API: Subscriptions
    # -------------------------------------------------------------------------

    async def subscribe(
        self,
        query: str,
        variables: Mapping[str, Any] | None = None,
        *,
        on_next: NextCallback | None = None,
        on_error: ErrorCallback | None = None,
        on_complete: CompleteCallback | None = None,
    ) -> Unsubscribe:
        """Start a subscription once the connection is open.

        Callbacks may be plain functions or coroutine functions. on_error
        receives a GraphQLSubscriptionError; the subscription stays active
        until the server completes it or it is unsubscribed.

        Returns:
            An async callable that stops the subscription. Calling it more
            than once is harmless.
        """
        await self.connect()

        subscription = self._registry.add(
            query,
            variables,
            on_next=on_next,
            on_error=on_error,
            on_complete=on_complete,
        )
        subscription_id = subscription.id
        _LOGGER.debug("Starting subscription %s", subscription_id)
        try:
            await self._send(build_start(subscription_id, query, variables))
        except Exception:
            self._registry.remove(subscription_id)
            raise

        async def unsubscribe() -> None:
            _LOGGER.debug("Stopping subscription %s", subscription_id)
            self._registry.remove(subscription_id)
            await self._send(build_stop(subscription_id))

        return unsubscribe

    # -------------------------------------------------------------------------
    # Internal: Connection State Machine
    # -------------------------------------------------------------------------

    def _set_state(self, state: ConnectionState) -> None:
        """Update connection state and notify callback."""
        if self._state is not state:
            _LOGGER.debug("State: %s → %s", self._state.value, state.value)
            self._state = state
            if self._connection_state_callback:
                self._connection_state_callback(state)

    async def _open(self, epoch: int) -> None:
        """Open a transport and start the listener and keepalive."""
        _LOGGER.info(
            "Connecting to %s (attempt #%d)", self.url, self._reconnect_attempts + 1
        )
        ws_client = GraphQLWsClient()
        try:
            await ws_client.connect(
                self.url,
                subprotocols=self._protocols,
                timeout=self._connect_timeout,
            )
        except GraphQLClientError as err:
            if epoch == self._epoch:
                _LOGGER.warning("Connection to %s failed: %s", self.url, err)
                self._set_state(ConnectionState.DISCONNECTED)
                self._schedule_reconnect()
            raise

        if epoch != self._epoch:
            await ws_client.close()
            raise GraphQLConnectionError("Connection closed while connecting")

        self._ws = ws_client
        self._reconnect_attempts = 0
        self._set_state(ConnectionState.CONNECTED)
        _LOGGER.info("WebSocket connected to %s", self.url)

        await self._send(build_connection_init(self._connection_params))
        if epoch != self._epoch:
            raise GraphQLConnectionError("Connection closed while connecting")

        self._keepalive_task = asyncio.create_task(self._keepalive_loop())
        self._listen_task = asyncio.create_task(self._listen(ws_client, epoch))

    async def _teardown(self, final_state: ConnectionState) -> None:
        """Stop timers and tasks, close the socket and drop all subscriptions."""
        self._epoch += 1
        self._cancel_reconnect_timer()
        self._connect_task = None

        current = asyncio.current_task()
        tasks = [
            task
            for task in (self._reconnect_task, self._keepalive_task, self._listen_task)
            if task is not None and task is not current
        ]
        self._reconnect_task = None
        self._keepalive_task = None
        self._listen_task = None

        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task

        ws, self._ws = self._ws, None
        if ws is not None:
            try:
                await asyncio.wait_for(ws.close(), timeout=2.0)
            except TimeoutError:
                _LOGGER.warning("WebSocket close timed out")

        self._registry.clear()
        self._set_state(final_state)

    def _handle_transport_lost(self) -> None:
        """React to the server closing the socket or a socket error."""
        self._ws = None
        self._listen_task = None
        if self._keepalive_task is not None:
            self._keepalive_task.cancel()
            self._keepalive_task = None
        self._set_state(ConnectionState.DISCONNECTED)
        self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        """Schedule a reconnection attempt with exponential backoff."""
        if not self._should_reconnect or self._reconnect_handle is not None:
            return

        if self._reconnect_attempts >= self._max_reconnect_attempts:
            _LOGGER.warning(
                "Giving up on %s after %d reconnect attempts",
                self.url,
                self._reconnect_attempts,
            )
            return

        self._reconnect_attempts += 1
        delay = self._reconnect_base_delay * 2 ** (self._reconnect_attempts - 1)

        _LOGGER.info(
            "Reconnecting in %.1fs (attempt %d)", delay, self._reconnect_attempts
        )

        self._reconnect_handle = asyncio.get_running_loop().call_later(
            delay, self._fire_reconnect
        )
        self._set_state(ConnectionState.RECONNECT_SCHEDULED)

    def _fire_reconnect(self) -> None:
        self._reconnect_handle = None
        if self._should_reconnect:
            self._reconnect_task = asyncio.create_task(self._attempt_reconnect())

    async def _attempt_reconnect(self) -> None:
        """Run one reconnect attempt; a failure schedules the next one."""
        try:
            await self.connect()
        except GraphQLClientError as err:
            _LOGGER.debug("Reconnect attempt failed: %s", err)
        finally:
            if self._reconnect_task is asyncio.current_task():
                self._reconnect_task = None

    def _cancel_reconnect_timer(self) -> None:
        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
            self._reconnect_handle = None

    # -------------------------------------------------------------------------
    # Internal: Message Listener
    # -------------------------------------------------------------------------

    async def _listen(self, ws_client: GraphQLWsClient, epoch: int) -> None:
        """Listen for frames until the socket closes."""
        message_count = 0

        try:
            async for msg in ws_client:
                if msg.type is GraphQLWsMessageType.TEXT:
                    message_count += 1
                    try:
                        message = parse_message(ws_client.decode_json(msg))
                    except (ValueError, GraphQLClientError) as err:
                        _LOGGER.warning("Invalid message: %s", err)
                        continue
                    await self._handle_message(message)

                elif msg.type is GraphQLWsMessageType.CLOSED:
                    _LOGGER.info("WebSocket closed by server")
                    break

                elif msg.type is GraphQLWsMessageType.ERROR:
                    _LOGGER.error("WebSocket error")
                    break

        except asyncio.CancelledError:
            _LOGGER.debug("Listener cancelled (%d messages)", message_count)
            raise

        if epoch == self._epoch:
            self._handle_transport_lost()

    # -------------------------------------------------------------------------
    # Internal: Protocol Handlers
    # -------------------------------------------------------------------------

    async def _handle_message(self, message: ProtocolMessage) -> None:
        """Route one inbound protocol message."""
        msg_type = message.type

        if msg_type == GQL_CONNECTION_ACK:
            _LOGGER.debug("Connection acknowledged")

        elif msg_type == GQL_PING:
            await self._send(build_pong())

        elif msg_type in (GQL_PONG, GQL_CONNECTION_KEEP_ALIVE):
            pass

        elif msg_type in (GQL_NEXT, GQL_DATA):
            subscription = self._registry.get(message.id)
            if subscription is not None:
                await invoke_callback(subscription.on_next, message.payload)

        elif msg_type == GQL_ERROR:
            subscription = self._registry.get(message.id)
            if subscription is not None:
                error = GraphQLSubscriptionError(
                    error_message_from_payload(message.payload), message.payload
                )
                await invoke_callback(subscription.on_error, error)

        elif msg_type == GQL_COMPLETE:
            subscription = self._registry.get(message.id)
            if subscription is not None:
                await invoke_callback(subscription.on_complete)
                self._registry.remove(subscription.id)

        elif msg_type == GQL_CONNECTION_ERROR:
            _LOGGER.error("Connection error from server: %s", message.payload)

        else:
            _LOGGER.debug("Unknown message type: %s", msg_type)

    async def _send(self, frame: dict[str, Any]) -> bool:
        """Send a frame if the transport is open.

        Returns:
            True if sent, False if dropped
        """
        if self._ws is None or self._state is not ConnectionState.CONNECTED:
            _LOGGER.debug("Dropping %s frame: not connected", frame["type"])
            return False

        try:
            await self._ws.send_json(frame)
            return True
        except GraphQLClientError as err:
            _LOGGER.warning("Failed to send %s frame: %s", frame["type"], err)
            return False

    # -------------------------------------------------------------------------
    # Internal: Keepalive
    # -------------------------------------------------------------------------

    async def _keepalive_loop(self) -> None:
        """Keepalive loop - send periodic pings."""
        try:
            while True:
                await asyncio.sleep(self._keepalive_interval)
                await self._send(build_ping())
        except asyncio.CancelledError:
            _LOGGER.debug("Keepalive cancelled")
            raise
