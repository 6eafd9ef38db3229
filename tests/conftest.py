"""Pytest configuration and shared fixtures."""

import asyncio
import json
from typing import Any, Callable, Dict, List, Optional

import pytest
import pytest_asyncio

from krist.config.settings import WsConfig
from krist.crypto.address import make_v2_address
from krist.utils.rate_limiter import RateLimiter
from krist.ws.client import KristWsClient

# Captured before any test patches asyncio.sleep
real_sleep = asyncio.sleep

_CLOSE = object()

SAMPLE_HELLO: Dict[str, Any] = {
    'ok': True,
    'type': 'hello',
    'server_time': '2024-01-01T12:00:00.000Z',
    'motd': 'Welcome to Krist!',
    'motd_set': '2023-12-25T00:00:00.000Z',
    'public_url': 'krist.dev',
    'mining_enabled': True,
    'debug_mode': False,
    'work': 100000,
    'last_block': {'height': 1, 'address': 'k8juvewcui', 'value': 25},
    'package': {'name': 'krist', 'version': '3.5.2'},
    'constants': {'wallet_version': 16},
    'currency': {'address_prefix': 'k', 'currency_symbol': 'KST'},
}


async def wait_for(predicate: Callable[[], bool], timeout: float = 2.0):
    """Yield to the event loop until ``predicate`` holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("Timed out waiting for condition")
        await real_sleep(0.001)


class FakeWebSocket:
    """In-memory stand-in for a websockets client connection."""

    def __init__(self, server: "FakeKristServer", private_key: Optional[str]):
        self.server = server
        self.private_key = private_key
        self.subscriptions: List[str] = list(server.default_subscriptions)
        self.sent: List[Dict[str, Any]] = []
        self.incoming: asyncio.Queue = asyncio.Queue()
        self.closed = False
        self.close_code: Optional[int] = None
        self.close_reason = ""

    async def send(self, data: str):
        msg = json.loads(data)
        self.sent.append(msg)
        reply = self.server.handle(self, msg)
        if reply is not None:
            self.push(reply)

    def push(self, msg: Any):
        self.incoming.put_nowait(msg if isinstance(msg, str) else json.dumps(msg))

    async def close(self, code: int = 1000, reason: str = ""):
        if self.closed:
            return
        self.closed = True
        self.close_code = code
        self.close_reason = reason
        self.incoming.put_nowait(_CLOSE)

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self.incoming.get()
        if item is _CLOSE:
            raise StopAsyncIteration
        return item


class FakeKristServer:
    """
    Plays both the REST ``ws/start`` collaborator and the WebSocket server.

    New connections start subscribed to the server defaults and receive a
    ``hello`` straight away.
    """

    default_subscriptions = ["ownTransactions", "blocks"]
    valid_subscriptions = [
        "blocks", "ownBlocks", "transactions", "ownTransactions",
        "names", "ownNames", "motd"
    ]

    def __init__(self):
        self.sockets: List[FakeWebSocket] = []
        self.ws_start_calls: List[Optional[str]] = []
        self.connect_kwargs: List[Dict[str, Any]] = []
        self.silent_types = set()
        self.send_hello = True
        self.fail_ws_start = 0
        self.ws_start_delay = 0.0
        self._tokens: Dict[str, Optional[str]] = {}

    @property
    def socket(self) -> FakeWebSocket:
        return self.sockets[-1]

    async def ws_start(self, private_key: Optional[str] = None) -> str:
        self.ws_start_calls.append(private_key)
        if self.ws_start_delay:
            await real_sleep(self.ws_start_delay)
        if self.fail_ws_start:
            self.fail_ws_start -= 1
            raise OSError("Connection refused")
        url = f"wss://krist.test/ws/gateway/{len(self.ws_start_calls)}"
        self._tokens[url] = private_key
        return url

    async def connect(self, url: str, **kwargs) -> FakeWebSocket:
        self.connect_kwargs.append(kwargs)
        ws = FakeWebSocket(self, self._tokens[url])
        self.sockets.append(ws)
        if self.send_hello:
            ws.push(SAMPLE_HELLO)
        return ws

    def handle(self, ws: FakeWebSocket, msg: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        msg_type = msg['type']
        if msg_type in self.silent_types:
            return None

        response = {'ok': True, 'type': 'response', 'id': msg['id'], 'responding_to_type': msg_type}

        if msg_type == 'me':
            if ws.private_key is None:
                response['isGuest'] = True
            else:
                response['isGuest'] = False
                response['address'] = self._address(make_v2_address(ws.private_key))
        elif msg_type == 'address':
            response['address'] = self._address(msg['address'])
        elif msg_type == 'get_subscription_level':
            response['subscription_level'] = list(ws.subscriptions)
        elif msg_type == 'get_valid_subscription_levels':
            response['valid_subscription_levels'] = list(self.valid_subscriptions)
        elif msg_type == 'subscribe':
            if msg['event'] not in ws.subscriptions:
                ws.subscriptions.append(msg['event'])
            response['subscription_level'] = list(ws.subscriptions)
        elif msg_type == 'unsubscribe':
            if msg['event'] in ws.subscriptions:
                ws.subscriptions.remove(msg['event'])
            response['subscription_level'] = list(ws.subscriptions)
        elif msg_type == 'work':
            response['work'] = 100000
        elif msg_type == 'make_transaction':
            if msg['amount'] > 100:
                return {
                    'ok': False, 'type': 'error', 'id': msg['id'],
                    'error': 'insufficient_funds', 'message': 'Insufficient funds'
                }
            response['transaction'] = {
                'id': 1, 'from': make_v2_address(msg['privatekey']), 'to': msg['to'],
                'value': msg['amount'], 'metadata': msg.get('metadata'),
            }
        else:
            return {
                'ok': False, 'type': 'error', 'id': msg['id'],
                'error': 'invalid_parameter', 'parameter': 'type'
            }
        return response

    @staticmethod
    def _address(address: str) -> Dict[str, Any]:
        return {'address': address, 'balance': 0, 'totalin': 0, 'totalout': 0,
                'firstseen': '2024-01-01T00:00:00.000Z'}


@pytest.fixture
def server() -> FakeKristServer:
    return FakeKristServer()


@pytest.fixture
def rate_limiter() -> RateLimiter:
    """A limiter generous enough to never wait."""
    return RateLimiter(tokens_per_interval=10000, interval_seconds=60)


@pytest_asyncio.fixture
async def make_client(server, rate_limiter):
    """Factory for clients wired to the fake server; closes them on teardown."""
    clients: List[KristWsClient] = []

    def factory(auth=None, **config) -> KristWsClient:
        client = KristWsClient(
            server,
            rate_limiter,
            config=WsConfig(**config),
            auth=auth,
            user_agent="krist-tests",
            connect_fn=server.connect
        )
        clients.append(client)
        return client

    yield factory

    for client in clients:
        await client.force_close()
