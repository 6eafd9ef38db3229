"""Tests for the WebSocket client against an in-memory Krist server."""

import asyncio
from unittest.mock import patch

import pytest

from conftest import real_sleep, wait_for
from krist.crypto.wallet_formats import AuthOptions
from krist.errors import (
    ArgumentError, ConnectionClosedError, InvalidFormatError, KristError, ServerError
)
from krist.ws.client import KristWsClient
from krist.ws.messages import ConnectionState, HelloMessage, TransactionEvent, WsEvent


def collect(client, event):
    seen = []
    client.on(event, lambda *args: seen.append(args[0] if len(args) == 1 else args))
    return seen


async def connect_ready(client):
    """Connect and wait for the handshake and subscription sync to finish."""
    ready = collect(client, WsEvent.READY)
    await client.connect()
    await wait_for(lambda: ready)
    return ready


@pytest.mark.unit
class TestHandshake:
    """Test connecting and the READY handshake."""

    @pytest.mark.asyncio
    async def test_guest_sync_removes_defaults(self, server, make_client):
        """Test that a guest with no subscriptions ends up with none."""
        client = make_client()
        ready = await connect_ready(client)

        assert isinstance(ready[0], HelloMessage)
        assert ready[0].motd == 'Welcome to Krist!'
        assert client.state == ConnectionState.CONNECTED
        assert server.ws_start_calls == [None]
        assert server.socket.subscriptions == []
        assert await client.get_subscriptions() == []

    @pytest.mark.asyncio
    async def test_initial_subscriptions(self, server, make_client):
        client = make_client(initial_subscriptions=["transactions", "blocks"])
        await connect_ready(client)

        assert sorted(server.socket.subscriptions) == ["blocks", "transactions"]
        assert client.subscriptions.actual == {"blocks", "transactions"}

    @pytest.mark.asyncio
    async def test_state_transitions(self, make_client):
        """Test the STATE signal sequence up to READY."""
        client = make_client()
        states = collect(client, WsEvent.STATE)
        await connect_ready(client)

        assert states == [
            (ConnectionState.CONNECTING, ConnectionState.DISCONNECTED),
            (ConnectionState.CONNECTED, ConnectionState.CONNECTING),
        ]

    @pytest.mark.asyncio
    async def test_ready_only_after_hello(self, server, make_client):
        """Test that the socket opening alone does not make the client ready."""
        server.send_hello = False
        client = make_client()
        ready = collect(client, WsEvent.READY)
        opened = collect(client, WsEvent.WS_OPEN)

        await client.connect()
        await real_sleep(0.01)

        assert len(opened) == 1
        assert ready == []
        assert client.state == ConnectionState.CONNECTING

    @pytest.mark.asyncio
    async def test_connect_options(self, server, make_client):
        client = make_client(ping_interval_seconds=5)
        await connect_ready(client)

        assert server.connect_kwargs[0]['user_agent_header'] == "krist-tests"
        assert server.connect_kwargs[0]['ping_interval'] == 5


class TestAuthentication:
    """Test authenticated connections."""

    @pytest.mark.asyncio
    async def test_explicit_private_key(self, server, make_client):
        client = make_client(auth=AuthOptions(private_key="a"))
        await connect_ready(client)

        me = await client.get_me()

        assert server.ws_start_calls == ["a"]
        assert me['isGuest'] is False
        assert me['address']['address'] == "k8juvewcui"

    @pytest.mark.asyncio
    async def test_password(self, server, make_client):
        """Test that the password is converted with the wallet format."""
        client = make_client(auth=AuthOptions(password="a"))
        await connect_ready(client)

        me = await client.get_me()

        assert server.ws_start_calls == [
            "9c61cce6bae9ac864b60238532ac8ce1a73006d943b44e060259e50363f4aebd-000"
        ]
        assert me['address']['address'] == "kxxk8invlf"

    @pytest.mark.asyncio
    async def test_guest_me(self, make_client):
        client = make_client()
        await connect_ready(client)
        assert (await client.get_me())['isGuest'] is True

    @pytest.mark.asyncio
    async def test_invalid_credentials_raise(self, server, make_client):
        """Test that bad credentials fail connect() instead of retrying."""
        client = make_client(auth=AuthOptions(password="a", wallet_format="bogus"))
        reconnects = collect(client, WsEvent.RECONNECT)

        with pytest.raises(InvalidFormatError):
            await client.connect()

        assert server.ws_start_calls == []
        assert reconnects == []


class TestRequests:
    """Test request helpers."""

    @pytest.mark.asyncio
    async def test_get_work_and_address(self, make_client):
        client = make_client()
        await connect_ready(client)

        assert await client.get_work() == 100000
        address = await client.get_address("k8juvewcui")
        assert address['address'] == "k8juvewcui"

    @pytest.mark.asyncio
    async def test_make_transaction(self, server, make_client):
        client = make_client(auth=AuthOptions(private_key="a"))
        await connect_ready(client)

        transaction = await client.make_transaction("kxxk8invlf", 5, metadata="hello", request_id="r1")

        assert transaction['from'] == "k8juvewcui"
        assert transaction['value'] == 5
        sent = [msg for msg in server.socket.sent if msg['type'] == 'make_transaction'][0]
        assert sent['requestId'] == "r1"
        assert sent['metadata'] == "hello"

    @pytest.mark.asyncio
    async def test_make_transaction_guest(self, server, make_client):
        """Test that a guest needs per-request credentials."""
        client = make_client()
        await connect_ready(client)

        with pytest.raises(ArgumentError):
            await client.make_transaction("kxxk8invlf", 5)

        transaction = await client.make_transaction("kxxk8invlf", 5, auth=AuthOptions(private_key="a"))
        assert transaction['from'] == "k8juvewcui"
        sent = [msg for msg in server.socket.sent if msg['type'] == 'make_transaction'][0]
        assert 'requestId' not in sent
        assert 'metadata' not in sent

    @pytest.mark.asyncio
    async def test_server_error(self, make_client):
        """Test that server errors surface with their code."""
        client = make_client(auth=AuthOptions(private_key="a"))
        await connect_ready(client)

        with pytest.raises(KristError) as exc_info:
            await client.make_transaction("kxxk8invlf", 1000)
        assert exc_info.value.error == 'insufficient_funds'

    @pytest.mark.asyncio
    async def test_request_before_connect(self, make_client):
        client = make_client()
        with pytest.raises(ConnectionClosedError):
            await client.get_work()


class TestEvents:
    """Test delivery of server events."""

    @pytest.mark.asyncio
    async def test_transaction_event(self, server, make_client):
        client = make_client(initial_subscriptions=["transactions"])
        transactions = collect(client, WsEvent.TRANSACTION)
        await connect_ready(client)

        server.socket.push({
            'type': 'event', 'event': 'transaction',
            'transaction': {'id': 10, 'from': 'k8juvewcui', 'to': 'kxxk8invlf', 'value': 1}
        })
        await wait_for(lambda: transactions)

        assert isinstance(transactions[0], TransactionEvent)
        assert transactions[0].transaction['id'] == 10

    @pytest.mark.asyncio
    async def test_invalid_frame(self, server, make_client):
        client = make_client()
        invalid = collect(client, WsEvent.INVALID_MESSAGE)
        await connect_ready(client)

        server.socket.push('{"ok": true}')
        await wait_for(lambda: invalid)

        assert client.get_stats()['invalid_messages'] == 1


class TestReconnection:
    """Test behaviour when the connection drops."""

    @pytest.mark.asyncio
    async def test_pending_request_rejected_on_close(self, server, make_client):
        """Test that a request in flight fails when the socket drops."""
        server.silent_types.add('work')
        client = make_client(initial_reconnect_seconds=0.01)
        closes = collect(client, WsEvent.WS_CLOSE)
        await connect_ready(client)

        first = server.socket
        request = asyncio.create_task(client.get_work())
        await wait_for(lambda: any(msg["type"] == "work" for msg in first.sent))
        await first.close(1006, "gone")

        with pytest.raises(ConnectionClosedError):
            await request

        assert closes[0] == (1006, "gone")
        assert client.correlator.pending_count == 0

    @pytest.mark.asyncio
    async def test_reconnects_and_resyncs(self, server, make_client):
        """Test that a new connection restores the desired subscriptions."""
        client = make_client(initial_subscriptions=["names"], initial_reconnect_seconds=0.01)
        ready = await connect_ready(client)

        await server.socket.close(1006, "gone")
        await wait_for(lambda: len(ready) == 2)

        assert len(server.sockets) == 2
        assert server.socket.subscriptions == ["names"]
        assert client.state == ConnectionState.CONNECTED
        assert client.backoff.attempts == 0

        # Message IDs start over on the new connection
        assert server.socket.sent[0]['id'] == 1
        assert client.get_stats()['connection_count'] == 2

    @pytest.mark.asyncio
    async def test_backoff_sequence(self, server, make_client):
        """Test that failed attempts back off exponentially up to the cap."""
        server.fail_ws_start = 1000
        client = make_client(initial_reconnect_seconds=1, max_reconnect_seconds=16)
        reconnects = collect(client, WsEvent.RECONNECT)
        errors = collect(client, WsEvent.WS_ERROR)
        delays = []

        async def fake_sleep(delay):
            delays.append(delay)
            await real_sleep(0)

        with patch("krist.ws.client.asyncio.sleep", new=fake_sleep):
            await client.connect()
            await wait_for(lambda: len(delays) >= 6)
            await client.force_close()

        assert delays[:6] == [1, 2, 4, 8, 16, 16]
        assert reconnects[:6] == [1, 2, 4, 8, 16, 16]
        assert isinstance(errors[0], OSError)
        assert client.state == ConnectionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_sync_failure_drops_connection(self, server, make_client, monkeypatch):
        """Test that a failed subscription sync closes the socket and retries."""
        handle = server.handle

        def failing_first_sync(ws, msg):
            if ws is server.sockets[0] and msg['type'] == 'get_subscription_level':
                return {'ok': False, 'type': 'error', 'id': msg['id'], 'error': 'server_error'}
            return handle(ws, msg)

        monkeypatch.setattr(server, "handle", failing_first_sync)
        client = make_client(initial_reconnect_seconds=0.01)
        errors = collect(client, WsEvent.WS_ERROR)
        await connect_ready(client)

        assert isinstance(errors[0], ServerError)
        assert server.sockets[0].closed
        assert len(server.sockets) == 2

    @pytest.mark.asyncio
    async def test_unexpected_sync_error_drops_connection(self, server, make_client, monkeypatch):
        """Test that a sync failure of any type still closes the socket and retries."""
        handle = server.handle

        def malformed_first_sync(ws, msg):
            if ws is server.sockets[0] and msg['type'] == 'get_subscription_level':
                return {'ok': True, 'type': 'response', 'id': msg['id'], 'subscription_level': 5}
            return handle(ws, msg)

        monkeypatch.setattr(server, "handle", malformed_first_sync)
        client = make_client(initial_reconnect_seconds=0.01)
        errors = collect(client, WsEvent.WS_ERROR)
        await connect_ready(client)

        assert isinstance(errors[0], TypeError)
        assert server.sockets[0].closed
        assert len(server.sockets) == 2
        assert client.state == ConnectionState.CONNECTED

    @pytest.mark.asyncio
    async def test_unknown_server_subscriptions_are_removed(self, server, make_client):
        """Test that levels the client does not know are unsubscribed during sync."""
        server.default_subscriptions = ["ownTransactions", "blocks", "ownWebhooks"]
        client = make_client()
        errors = collect(client, WsEvent.WS_ERROR)
        await connect_ready(client)

        assert errors == []
        assert client.state == ConnectionState.CONNECTED
        assert server.socket.subscriptions == []
        assert len(server.sockets) == 1

    @pytest.mark.asyncio
    async def test_connect_cancels_pending_reconnect(self, server, make_client):
        """Test that a manual connect replaces a scheduled reconnect."""
        server.fail_ws_start = 1
        client = make_client(initial_reconnect_seconds=0.05)
        reconnects = collect(client, WsEvent.RECONNECT)
        ready = collect(client, WsEvent.READY)

        await client.connect()
        assert reconnects == [0.05]

        server.ws_start_delay = 0.1
        await client.connect()
        await wait_for(lambda: ready)

        # Outlive the cancelled timer
        await real_sleep(0.2)

        assert len(server.sockets) == 1
        assert len(ready) == 1
        assert client.state == ConnectionState.CONNECTED

    @pytest.mark.asyncio
    async def test_concurrent_connect_opens_one_socket(self, server, make_client):
        """Test that a second connect() during a connection attempt is ignored."""
        server.ws_start_delay = 0.05
        client = make_client()
        ready = collect(client, WsEvent.READY)

        await asyncio.gather(client.connect(), client.connect())
        await wait_for(lambda: ready)

        assert len(server.ws_start_calls) == 1
        assert len(server.sockets) == 1

        # Also ignored once connected
        await client.connect()
        assert len(server.sockets) == 1


class TestForceClose:
    """Test permanently closing the client."""

    @pytest.mark.asyncio
    async def test_force_close_stops_reconnecting(self, server, make_client):
        client = make_client(initial_reconnect_seconds=0.01)
        await connect_ready(client)

        await client.force_close()
        await real_sleep(0.05)

        assert client.is_closed
        assert client.state == ConnectionState.DISCONNECTED
        assert server.socket.closed
        assert len(server.sockets) == 1

    @pytest.mark.asyncio
    async def test_force_close_idempotent(self, make_client):
        client = make_client()
        await connect_ready(client)

        await client.force_close()
        await client.force_close()

        await client.connect()
        assert client.state == ConnectionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_context_manager(self, server, rate_limiter):
        async with KristWsClient(server, rate_limiter, connect_fn=server.connect) as client:
            assert client.state == ConnectionState.CONNECTING
        assert client.is_closed
        assert server.socket.closed


class TestMonitoring:
    """Test stats and health checks."""

    @pytest.mark.asyncio
    async def test_health_check(self, make_client):
        client = make_client()

        health = await client.health_check()
        assert health['status'] == 'unhealthy'
        assert "WebSocket disconnected" in health['issues']

        await connect_ready(client)
        health = await client.health_check()

        assert health['status'] == 'healthy'
        assert health['stats']['state'] == 'connected'
        assert health['stats']['ready_count'] == 1
        assert health['stats']['pending_requests'] == 0
