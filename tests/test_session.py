"""Tests for GraphQLSubscriptionClient connection lifecycle and routing."""

from __future__ import annotations

import asyncio
import gc
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from graphql_transport.errors import GraphQLConnectionError, GraphQLSubscriptionError
from graphql_transport.session import ConnectionState, GraphQLSubscriptionClient

from .conftest import FakeWsClient, settle, wait_until

WS_URL = "ws://localhost:4000/graphql"
WS_CLIENT = "graphql_transport.session.GraphQLWsClient"
SUBSCRIPTION = "subscription OnTick($every: Int) { tick(every: $every) }"


@pytest.fixture
async def client():
    client = GraphQLSubscriptionClient(
        WS_URL,
        {"authorization": "Bearer secret"},
        "graphql-ws",
        reconnect_base_delay=0.01,
    )
    yield client
    await client.close()


@pytest.fixture
def fake_ws() -> FakeWsClient:
    return FakeWsClient()


@pytest.fixture
def connected_ws(fake_ws: FakeWsClient):
    with patch(WS_CLIENT, return_value=fake_ws):
        yield fake_ws


class TestConnect:
    """Tests for connect() and the connection state machine."""

    async def test_initial_state(self, client):
        assert client.connection_state is ConnectionState.DISCONNECTED
        assert not client.is_connected
        assert client.subscription_count == 0

    async def test_connect_sends_connection_init(self, client, connected_ws):
        """Test transport open sends connection_init with stored params."""
        await client.connect()

        assert client.is_connected
        assert connected_ws.connect_calls == [(WS_URL, ["graphql-ws"])]
        assert connected_ws.sent == [
            {"type": "connection_init", "payload": {"authorization": "Bearer secret"}}
        ]

    async def test_connect_does_not_wait_for_ack(self, client, connected_ws):
        """Test connect() resolves without a connection_ack from the server."""
        await asyncio.wait_for(client.connect(), timeout=1.0)
        assert client.is_connected

    async def test_connect_is_idempotent(self, client, fake_ws):
        with patch(WS_CLIENT, return_value=fake_ws) as ws_cls:
            await client.connect()
            await client.connect()

        assert ws_cls.call_count == 1
        assert fake_ws.sent_types() == ["connection_init"]

    async def test_concurrent_connects_share_one_socket(self, client, fake_ws):
        """Test callers arriving while CONNECTING wait for the same open."""
        gate = asyncio.Event()
        fake_ws.gate = gate

        with patch(WS_CLIENT, return_value=fake_ws) as ws_cls:
            first = asyncio.create_task(client.connect())
            second = asyncio.create_task(client.connect())
            await settle()
            assert client.connection_state is ConnectionState.CONNECTING
            gate.set()
            await asyncio.gather(first, second)

        assert ws_cls.call_count == 1
        assert client.is_connected

    async def test_state_callback(self, client, connected_ws):
        states: list[ConnectionState] = []
        client.on_connection_state_changed(states.append)

        await client.connect()
        await client.close()

        assert states == [
            ConnectionState.CONNECTING,
            ConnectionState.CONNECTED,
            ConnectionState.CLOSED,
        ]

    async def test_connect_failure_raises(self, client):
        failing = FakeWsClient(fail_connect=GraphQLConnectionError("refused"))

        with patch(WS_CLIENT, return_value=failing):
            with pytest.raises(GraphQLConnectionError, match="refused"):
                await client.connect()

        assert not client.is_connected
        assert client.connection_state is ConnectionState.RECONNECT_SCHEDULED

    async def test_keepalive_sends_ping(self, connected_ws):
        client = GraphQLSubscriptionClient(WS_URL, keepalive_interval=0.01)
        try:
            await client.connect()
            await wait_until(lambda: "ping" in connected_ws.sent_types())
        finally:
            await client.close()


class TestSubscribe:
    """Tests for subscribe() and inbound routing."""

    async def test_subscribe_sends_start(self, client, connected_ws):
        await client.subscribe(SUBSCRIPTION, {"every": 5})

        assert connected_ws.sent[-1] == {
            "id": "1",
            "type": "start",
            "payload": {"query": SUBSCRIPTION, "variables": {"every": 5}},
        }
        assert client.subscription_count == 1

    async def test_ids_increase(self, client, connected_ws):
        await client.subscribe(SUBSCRIPTION)
        await client.subscribe(SUBSCRIPTION)
        await client.subscribe(SUBSCRIPTION)

        starts = [frame["id"] for frame in connected_ws.sent if frame["type"] == "start"]
        assert starts == ["1", "2", "3"]

    async def test_unencodable_variables_leave_no_entry(self, client, connected_ws):
        with pytest.raises(TypeError):
            await client.subscribe(SUBSCRIPTION, {"every": object()})

        assert client.subscription_count == 0
        assert connected_ws.sent_types() == ["connection_init"]

    async def test_next_routed_to_matching_subscription(self, client, connected_ws):
        first: list = []
        second: list = []
        await client.subscribe(SUBSCRIPTION, on_next=first.append)
        await client.subscribe(SUBSCRIPTION, on_next=second.append)

        connected_ws.feed({"id": "2", "type": "next", "payload": {"data": {"tick": 1}}})
        connected_ws.feed({"id": "1", "type": "next", "payload": {"data": {"tick": 2}}})
        await settle()

        assert first == [{"data": {"tick": 2}}]
        assert second == [{"data": {"tick": 1}}]
        assert client.subscription_count == 2

    async def test_legacy_data_routed_as_next(self, client, connected_ws):
        received: list = []
        await client.subscribe(SUBSCRIPTION, on_next=received.append)

        connected_ws.feed({"id": "1", "type": "data", "payload": {"data": {"tick": 1}}})
        await settle()

        assert received == [{"data": {"tick": 1}}]

    async def test_async_callbacks_awaited(self, client, connected_ws):
        on_next = AsyncMock()
        on_complete = AsyncMock()
        await client.subscribe(SUBSCRIPTION, on_next=on_next, on_complete=on_complete)

        connected_ws.feed({"id": "1", "type": "next", "payload": {"data": {}}})
        connected_ws.feed({"id": "1", "type": "complete"})
        await settle()

        on_next.assert_awaited_once_with({"data": {}})
        on_complete.assert_awaited_once_with()

    async def test_error_retains_subscription(self, client, connected_ws):
        """Test error keeps the entry so a later complete still fires."""
        on_next = MagicMock()
        on_error = MagicMock()
        on_complete = MagicMock()
        await client.subscribe(
            SUBSCRIPTION, on_next=on_next, on_error=on_error, on_complete=on_complete
        )

        connected_ws.feed({"id": "1", "type": "error", "payload": {"message": "boom"}})
        await settle()

        on_error.assert_called_once()
        error = on_error.call_args.args[0]
        assert isinstance(error, GraphQLSubscriptionError)
        assert str(error) == "boom"
        assert error.payload == {"message": "boom"}
        assert client.subscription_count == 1

        connected_ws.feed({"id": "1", "type": "next", "payload": {"data": {"tick": 3}}})
        connected_ws.feed({"id": "1", "type": "complete"})
        await settle()

        on_next.assert_called_once_with({"data": {"tick": 3}})
        on_complete.assert_called_once_with()
        assert client.subscription_count == 0

    async def test_error_without_message(self, client, connected_ws):
        on_error = MagicMock()
        await client.subscribe(SUBSCRIPTION, on_error=on_error)

        connected_ws.feed({"id": "1", "type": "error", "payload": [{"locations": []}]})
        await settle()

        assert str(on_error.call_args.args[0]) == "Subscription error"

    async def test_complete_removes_subscription(self, client, connected_ws):
        on_next = MagicMock()
        await client.subscribe(SUBSCRIPTION, on_next=on_next)

        connected_ws.feed({"id": "1", "type": "complete"})
        connected_ws.feed({"id": "1", "type": "next", "payload": {"data": {}}})
        await settle()

        assert client.subscription_count == 0
        on_next.assert_not_called()

    async def test_unsubscribe_sends_stop_and_stops_delivery(self, client, connected_ws):
        on_next = MagicMock()
        on_error = MagicMock()
        unsubscribe = await client.subscribe(SUBSCRIPTION, on_next=on_next, on_error=on_error)

        await unsubscribe()
        connected_ws.feed({"id": "1", "type": "next", "payload": {"data": {}}})
        connected_ws.feed({"id": "1", "type": "error", "payload": {"message": "late"}})
        await settle()

        assert connected_ws.sent[-1] == {"id": "1", "type": "stop"}
        assert client.subscription_count == 0
        on_next.assert_not_called()
        on_error.assert_not_called()

    async def test_unsubscribe_twice_is_harmless(self, client, connected_ws):
        unsubscribe = await client.subscribe(SUBSCRIPTION)

        await unsubscribe()
        await unsubscribe()

        assert connected_ws.sent_types().count("stop") == 2
        assert client.subscription_count == 0

    async def test_ping_answered_with_pong(self, client, connected_ws):
        await client.connect()

        connected_ws.feed({"type": "ping"})
        await settle()

        assert connected_ws.sent[-1] == {"type": "pong"}

    async def test_pong_ack_and_keepalive_ignored(self, client, connected_ws):
        await client.connect()

        connected_ws.feed({"type": "connection_ack"})
        connected_ws.feed({"type": "pong"})
        connected_ws.feed({"type": "ka"})
        await settle()

        assert connected_ws.sent_types() == ["connection_init"]
        assert client.is_connected

    async def test_unknown_id_and_bad_frames_dropped(self, client, connected_ws):
        """Test the listener survives junk and keeps routing."""
        received: list = []
        await client.subscribe(SUBSCRIPTION, on_next=received.append)

        connected_ws.feed({"id": "99", "type": "next", "payload": {"data": {}}})
        connected_ws.feed_raw("not json")
        connected_ws.feed_raw('["not", "an", "object"]')
        connected_ws.feed({"id": "1"})
        connected_ws.feed({"type": "mystery"})
        connected_ws.feed({"id": "1", "type": "next", "payload": {"data": {"ok": True}}})
        await settle()

        assert received == [{"data": {"ok": True}}]
        assert client.is_connected

    async def test_raising_callback_does_not_break_routing(self, client, connected_ws):
        calls: list = []

        def on_next(payload):
            calls.append(payload)
            raise RuntimeError("subscriber bug")

        await client.subscribe(SUBSCRIPTION, on_next=on_next)
        connected_ws.feed({"id": "1", "type": "next", "payload": 1})
        connected_ws.feed({"id": "1", "type": "next", "payload": 2})
        await settle()

        assert calls == [1, 2]
        assert client.is_connected


class TestClose:
    """Tests for close()."""

    async def test_close_drops_subscriptions_silently(self, client, connected_ws):
        on_error = MagicMock()
        on_complete = MagicMock()
        await client.subscribe(SUBSCRIPTION, on_error=on_error, on_complete=on_complete)

        await client.close()

        assert client.connection_state is ConnectionState.CLOSED
        assert client.subscription_count == 0
        assert connected_ws.closed
        on_error.assert_not_called()
        on_complete.assert_not_called()

    async def test_close_disables_reconnect(self, client, connected_ws):
        await client.connect()
        await client.close()
        await asyncio.sleep(0.05)

        assert client.connection_state is ConnectionState.CLOSED
        assert client._reconnect_handle is None

    async def test_unsubscribe_after_close_is_dropped(self, client, connected_ws):
        unsubscribe = await client.subscribe(SUBSCRIPTION)
        await client.close()
        sent_before = list(connected_ws.sent)

        await unsubscribe()

        assert connected_ws.sent == sent_before

    async def test_close_while_connecting(self, client, fake_ws):
        """Test a socket that opens after close() is discarded."""
        gate = asyncio.Event()
        fake_ws.gate = gate

        with patch(WS_CLIENT, return_value=fake_ws):
            pending = asyncio.create_task(client.connect())
            await settle()
            await client.close()
            gate.set()

            with pytest.raises(GraphQLConnectionError, match="closed while connecting"):
                await pending

        assert fake_ws.closed
        assert client.connection_state is ConnectionState.CLOSED

    async def test_close_during_reconnect_attempt(self, client):
        """Test an abandoned reconnect open does not leak an unretrieved error."""
        first = FakeWsClient()
        second = FakeWsClient(gate=asyncio.Event())
        loop = asyncio.get_running_loop()
        unhandled: list[dict] = []
        previous_handler = loop.get_exception_handler()
        loop.set_exception_handler(lambda _loop, context: unhandled.append(context))

        try:
            with patch(WS_CLIENT, side_effect=[first, second]):
                await client.connect()
                first.drop()
                await wait_until(lambda: second.connect_calls)

                await client.close()
                second.gate.set()
                await settle()

            assert second.closed
            gc.collect()
            await settle()
        finally:
            loop.set_exception_handler(previous_handler)

        assert not [c for c in unhandled if "never retrieved" in c.get("message", "")]
        assert client.connection_state is ConnectionState.CLOSED

    async def test_close_from_callback(self, client, connected_ws):
        """Test a subscriber may close the client from inside a callback."""

        async def on_next(payload):
            await client.close()

        await client.subscribe(SUBSCRIPTION, on_next=on_next)
        connected_ws.feed({"id": "1", "type": "next", "payload": {}})
        await wait_until(lambda: client.connection_state is ConnectionState.CLOSED)

        assert client.subscription_count == 0


class TestReconnect:
    """Tests for automatic and explicit reconnection."""

    async def test_server_close_schedules_reconnect(self, client):
        first, second = FakeWsClient(), FakeWsClient()
        seen: list[tuple[ConnectionState, int]] = []
        client.on_connection_state_changed(
            lambda state: seen.append((state, client.reconnect_attempts))
        )

        with patch(WS_CLIENT, side_effect=[first, second]):
            await client.connect()
            first.drop()
            await wait_until(lambda: (ConnectionState.RECONNECT_SCHEDULED, 1) in seen)
            await wait_until(lambda: client.is_connected)

        assert [state for state, _ in seen] == [
            ConnectionState.CONNECTING,
            ConnectionState.CONNECTED,
            ConnectionState.DISCONNECTED,
            ConnectionState.RECONNECT_SCHEDULED,
            ConnectionState.CONNECTING,
            ConnectionState.CONNECTED,
        ]
        assert client.reconnect_attempts == 0
        assert second.sent_types() == ["connection_init"]

    async def test_backoff_doubles_until_ceiling(self):
        """Test delays double per attempt and stop at the ceiling."""
        client = GraphQLSubscriptionClient(
            WS_URL, reconnect_base_delay=0.01, max_reconnect_attempts=3
        )
        failing = [
            FakeWsClient(fail_connect=GraphQLConnectionError("refused")) for _ in range(4)
        ]
        loop = asyncio.get_running_loop()

        try:
            with (
                patch(WS_CLIENT, side_effect=failing) as ws_cls,
                patch.object(loop, "call_later", wraps=loop.call_later) as call_later,
            ):
                with pytest.raises(GraphQLConnectionError):
                    await client.connect()
                await wait_until(
                    lambda: client.reconnect_attempts == 3
                    and client.connection_state is ConnectionState.DISCONNECTED
                )
                await asyncio.sleep(0.1)

            delays = [
                call.args[0]
                for call in call_later.call_args_list
                if call.args[1] == client._fire_reconnect
            ]
            assert delays == pytest.approx([0.01, 0.02, 0.04])
            assert ws_cls.call_count == 4
            assert not client.is_connected
            assert client.connection_state is ConnectionState.DISCONNECTED
        finally:
            await client.close()

    async def test_default_backoff_starts_at_one_second(self):
        default_client = GraphQLSubscriptionClient(WS_URL)
        failing = FakeWsClient(fail_connect=GraphQLConnectionError("refused"))
        loop = asyncio.get_running_loop()

        try:
            with patch(WS_CLIENT, return_value=failing):
                before = loop.time()
                with pytest.raises(GraphQLConnectionError):
                    await default_client.connect()

            handle = default_client._reconnect_handle
            assert handle is not None
            assert handle.when() - before == pytest.approx(1.0, abs=0.1)
        finally:
            await default_client.close()

    async def test_explicit_reconnect(self, client):
        """Test reconnect() tears down, resets attempts and opens a new socket."""
        first, second = FakeWsClient(), FakeWsClient()
        on_complete = MagicMock()

        with patch(WS_CLIENT, side_effect=[first, second]):
            await client.subscribe(SUBSCRIPTION, on_complete=on_complete)
            client._reconnect_attempts = 4

            await client.reconnect()

        assert first.closed
        assert client.is_connected
        assert client.reconnect_attempts == 0
        assert client.subscription_count == 0
        assert second.sent_types() == ["connection_init"]
        on_complete.assert_not_called()

    async def test_reconnect_after_giving_up(self):
        client = GraphQLSubscriptionClient(WS_URL, max_reconnect_attempts=0)
        failing = FakeWsClient(fail_connect=GraphQLConnectionError("refused"))
        healthy = FakeWsClient()

        try:
            with patch(WS_CLIENT, side_effect=[failing, healthy]):
                with pytest.raises(GraphQLConnectionError):
                    await client.connect()
                assert client.connection_state is ConnectionState.DISCONNECTED

                await client.reconnect()

            assert client.is_connected
        finally:
            await client.close()

    async def test_updated_params_used_on_next_connection(self, client):
        first, second = FakeWsClient(), FakeWsClient()

        with patch(WS_CLIENT, side_effect=[first, second]):
            await client.connect()
            client.update_connection_params({"authorization": "Bearer rotated", "tenant": "t1"})

            assert first.sent_types() == ["connection_init"]

            await client.reconnect()

        assert second.sent[0] == {
            "type": "connection_init",
            "payload": {"authorization": "Bearer rotated", "tenant": "t1"},
        }
        assert client.connection_params == {"authorization": "Bearer rotated", "tenant": "t1"}

    async def test_ids_not_reused_after_reconnect(self, client):
        first, second = FakeWsClient(), FakeWsClient()

        with patch(WS_CLIENT, side_effect=[first, second]):
            await client.subscribe(SUBSCRIPTION)
            await client.reconnect()
            await client.subscribe(SUBSCRIPTION)

        assert second.sent[-1]["id"] == "2"
