"""Krist WebSocket client with automatic reconnection."""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

import websockets
from websockets.exceptions import ConnectionClosed

from ..config.settings import WsConfig
from ..crypto.wallet_formats import AuthOptions, resolve_private_key
from ..errors import ArgumentError, ConnectionClosedError
from ..utils.rate_limiter import RateLimiter
from ..utils.retry import ReconnectBackoff
from ..utils.validation import arg_number, arg_string_non_empty
from .correlator import MessageCorrelator
from .dispatcher import EventDispatcher
from .messages import ConnectionState, HelloMessage, WsEvent
from .observers import Observers
from .subscriptions import SubscriptionSynchronizer

logger = logging.getLogger(__name__)

ConnectFn = Callable[..., Awaitable[Any]]


class KristWsClient:
    """
    Krist WebSocket client.

    After ``connect`` the client owns the connection: whenever the socket
    drops it moves to DISCONNECTED and reconnects with exponential backoff,
    indefinitely, until ``force_close`` is called. Every (re)connection ends
    with a READY signal once the handshake has been received and the
    subscriptions have been synced; treat READY as the point from which
    requests can be made.

    Requests still waiting for a response when the socket drops are rejected
    with ``ConnectionClosedError``.

    Example::

        client = api.create_ws_client(initial_subscriptions=["transactions"])
        client.on(WsEvent.TRANSACTION, lambda event: print(event.transaction))
        await client.connect()
    """

    def __init__(
        self,
        rest,
        rate_limiter: RateLimiter,
        config: Optional[WsConfig] = None,
        auth: Optional[AuthOptions] = None,
        user_agent: str = "krist.py",
        connect_fn: Optional[ConnectFn] = None
    ):
        """
        Args:
            rest: Object providing ``async ws_start(private_key)``, normally a
                KristRESTClient
            rate_limiter: Limiter for outgoing messages, shared between clients
            config: WebSocket configuration
            auth: Credentials; without them the connection is a guest
            user_agent: User-Agent sent with the WebSocket handshake
            connect_fn: Opens the transport, ``websockets.connect`` by default
        """
        self.rest = rest
        self.config = config or WsConfig()
        self.user_agent = user_agent

        self.observers = Observers()
        self.correlator = MessageCorrelator(rate_limiter, self.observers)
        self.subscriptions = SubscriptionSynchronizer(self.correlator, self.config.initial_subscriptions)
        self.dispatcher = EventDispatcher(self.observers, self.correlator, self._handle_hello)
        self.backoff = ReconnectBackoff(
            initial_delay=self.config.initial_reconnect_seconds,
            max_delay=self.config.max_reconnect_seconds
        )

        self._connect_fn: ConnectFn = connect_fn or websockets.connect
        self._auth = auth
        self._private_key: Optional[str] = None

        self._state = ConnectionState.DISCONNECTED
        self._websocket = None
        self._reader_task: Optional[asyncio.Task] = None
        self._hello_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._force_closing = False
        self._connecting = False

        self.stats = {
            'connection_count': 0,
            'ready_count': 0,
            'last_message_time': None,
        }

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.force_close()

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_closed(self) -> bool:
        """True once ``force_close`` has been called."""
        return self._force_closing

    def on(self, event: WsEvent, handler: Callable) -> Callable:
        """Register an observer. Register before calling ``connect``."""
        return self.observers.on(event, handler)

    def off(self, event: WsEvent, handler: Callable):
        self.observers.off(event, handler)

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    async def connect(self):
        """
        Start connecting. Returns once the socket is open (not yet READY).

        Connection failures are not raised; they schedule a reconnect.

        Raises:
            ArgumentError: If the configured credentials are invalid
        """
        if self._force_closing:
            logger.warning("connect() called on a closed client, ignoring")
            return
        if self._connecting or self._websocket is not None:
            logger.warning("connect() called while already connecting or connected, ignoring")
            return

        # A manual connect supersedes any pending reconnect timer
        self._cancel_reconnect()

        self._connecting = True
        try:
            await self._connect()
        except ArgumentError:
            raise
        except Exception as e:
            logger.warning(f"Connection attempt failed: {e}")
            self.observers.emit(WsEvent.WS_ERROR, e)
            self._handle_disconnect()
        finally:
            self._connecting = False

    async def _connect(self):
        if self._private_key is None and self._auth is not None:
            self._private_key = resolve_private_key(self._auth)

        url = await self.rest.ws_start(self._private_key)
        if self._force_closing:
            return

        self._set_state(ConnectionState.CONNECTING)
        websocket = await self._connect_fn(
            url,
            user_agent_header=self.user_agent,
            ping_interval=self.config.ping_interval_seconds,
            close_timeout=self.config.close_timeout_seconds
        )

        if self._force_closing:
            await websocket.close()
            self._set_state(ConnectionState.DISCONNECTED)
            return

        self._websocket = websocket
        self.correlator.attach(self._send_raw)
        self.stats['connection_count'] += 1

        logger.info(f"WebSocket opened ({'authenticated' if self._private_key else 'guest'})")
        self.observers.emit(WsEvent.WS_OPEN)

        self._reader_task = asyncio.create_task(self._read_loop(websocket))

    async def force_close(self):
        """
        Close the connection for good.

        Cancels any pending reconnect and closes the live socket. The client
        never reconnects afterwards. Calling it again does nothing.
        """
        if self._force_closing:
            return
        self._force_closing = True
        logger.info("Force closing WebSocket client")

        self._cancel_reconnect()

        websocket = self._websocket
        if websocket is not None:
            await websocket.close()

        if self._reader_task is not None and self._reader_task is not asyncio.current_task():
            await asyncio.gather(self._reader_task, return_exceptions=True)

        if self._hello_task is not None and not self._hello_task.done():
            self._hello_task.cancel()

    async def _read_loop(self, websocket):
        try:
            async for raw in websocket:
                if self._force_closing:
                    continue
                self.stats['last_message_time'] = time.time()
                self.dispatcher.feed(raw)
        except ConnectionClosed as e:
            logger.warning(f"WebSocket connection closed: {e}")
        except Exception as e:
            logger.error(f"Unexpected error in message stream: {e}", exc_info=True)
            self.observers.emit(WsEvent.WS_ERROR, e)

        self._handle_close(websocket)

    def _handle_close(self, websocket):
        if websocket is not self._websocket:
            return
        self._websocket = None

        code = getattr(websocket, 'close_code', None)
        reason = getattr(websocket, 'close_reason', None) or ""
        logger.info(f"WebSocket closed (code={code}, reason={reason!r})")

        self.observers.emit(WsEvent.WS_CLOSE, code, reason)
        self._handle_disconnect()

    def _handle_disconnect(self):
        self.correlator.detach()

        if self._hello_task is not None and not self._hello_task.done():
            self._hello_task.cancel()

        self._set_state(ConnectionState.DISCONNECTED)

        if self._force_closing:
            return
        self._schedule_reconnect()

    def _schedule_reconnect(self):
        self._cancel_reconnect()

        delay = self.backoff.next_delay()
        logger.info(f"Reconnecting in {delay:.1f}s (attempt {self.backoff.attempts})")
        self.observers.emit(WsEvent.RECONNECT, delay)

        self._reconnect_task = asyncio.create_task(self._reconnect_after(delay))

    def _cancel_reconnect(self):
        task = self._reconnect_task
        self._reconnect_task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _reconnect_after(self, delay: float):
        await asyncio.sleep(delay)
        self._reconnect_task = None
        if self._force_closing:
            return
        await self.connect()

    def _handle_hello(self, msg: Dict[str, Any]):
        hello = HelloMessage.from_message(msg)
        self.backoff.reset()

        if self._hello_task is not None and not self._hello_task.done():
            self._hello_task.cancel()
        self._hello_task = asyncio.create_task(self._complete_handshake(hello, self._websocket))

    async def _complete_handshake(self, hello: HelloMessage, websocket):
        try:
            await self.subscriptions.sync()
        except ConnectionClosedError as e:
            logger.warning(f"Connection lost while syncing subscriptions: {e}")
            return
        except Exception as e:
            logger.error(f"Failed to sync subscriptions, dropping connection: {e}")
            self.observers.emit(WsEvent.WS_ERROR, e)
            if websocket is not None:
                await websocket.close()
            return

        if self._force_closing or websocket is None or websocket is not self._websocket:
            return

        self._set_state(ConnectionState.CONNECTED)
        self.stats['ready_count'] += 1
        logger.info(f"WebSocket ready, subscriptions: {sorted(self.subscriptions.actual)}")
        self.observers.emit(WsEvent.READY, hello)

    def _set_state(self, state: ConnectionState):
        old = self._state
        if state == old:
            return
        self._state = state
        logger.debug(f"Connection state: {old.value} -> {state.value}")
        self.observers.emit(WsEvent.STATE, state, old)

    async def _send_raw(self, data: str):
        websocket = self._websocket
        if websocket is None:
            raise ConnectionClosedError("WebSocket is not connected")
        try:
            await websocket.send(data)
        except ConnectionClosed as e:
            raise ConnectionClosedError(f"WebSocket closed while sending: {e}") from e

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    async def send_and_wait(self, message: Dict[str, Any]) -> Dict[str, Any]:
        """
        Send a raw request and wait for its response. The message ID is
        generated automatically. Prefer the specific request methods.
        """
        return await self.correlator.send_and_wait(message)

    async def get_me(self) -> Dict[str, Any]:
        """Return ``isGuest`` and, for authenticated connections, the ``address``."""
        return await self.send_and_wait({'type': 'me'})

    async def get_address(self, address: str, fetch_names: bool = False) -> Dict[str, Any]:
        arg_string_non_empty(address, "address")
        response = await self.send_and_wait({
            'type': 'address',
            'address': address,
            'fetchNames': fetch_names
        })
        return response['address']

    async def get_work(self) -> int:
        response = await self.send_and_wait({'type': 'work'})
        return response['work']

    async def get_subscriptions(self) -> List[str]:
        return await self.subscriptions.get_subscriptions()

    async def get_valid_subscriptions(self) -> List[str]:
        return await self.subscriptions.get_valid_subscriptions()

    async def subscribe(self, event: str) -> List[str]:
        """
        Subscribe to an event category for the current connection.

        The desired set fixed at construction is restored on reconnect.
        """
        return await self.subscriptions.subscribe(event)

    async def unsubscribe(self, event: str) -> List[str]:
        return await self.subscriptions.unsubscribe(event)

    async def make_transaction(
        self,
        to: str,
        amount: int,
        metadata: Optional[str] = None,
        request_id: Optional[str] = None,
        auth: Optional[AuthOptions] = None
    ) -> Dict[str, Any]:
        """
        Send Krist from the client's address, or from the address of ``auth``
        if the client is a guest.
        """
        arg_string_non_empty(to, "to")
        arg_number(amount, "amount")

        private_key = self._private_key or resolve_private_key(auth)
        if not private_key:
            raise ArgumentError("No private key provided", "auth")

        message = {
            'type': 'make_transaction',
            'privatekey': private_key,
            'to': to,
            'amount': amount,
        }
        if metadata is not None:
            message['metadata'] = metadata
        if request_id is not None:
            message['requestId'] = request_id

        response = await self.send_and_wait(message)
        return response['transaction']

    async def submit_block(self, address: str, nonce: Union[List[int], str]) -> Dict[str, Any]:
        arg_string_non_empty(address, "address")
        return await self.send_and_wait({
            'type': 'submit_block',
            'address': address,
            'nonce': nonce
        })

    # ------------------------------------------------------------------
    # Monitoring
    # ------------------------------------------------------------------

    def get_stats(self) -> Dict[str, Any]:
        """Get connection and processing statistics."""
        last_message_age = None
        if self.stats['last_message_time']:
            last_message_age = time.time() - self.stats['last_message_time']

        return {
            **self.stats,
            **self.dispatcher.stats,
            'state': self._state.value,
            'last_message_age_seconds': last_message_age,
            'pending_requests': self.correlator.pending_count,
            'reconnect_attempts': self.backoff.attempts,
            'next_reconnect_delay': self.backoff.current_delay,
        }

    async def health_check(self) -> Dict[str, Any]:
        """Perform health check on the WebSocket connection."""
        stats = self.get_stats()
        issues = []

        if self._state != ConnectionState.CONNECTED:
            issues.append(f"WebSocket {self._state.value}")

        # The server sends a keepalive every 10 seconds
        if stats['last_message_age_seconds'] and stats['last_message_age_seconds'] > 30:
            issues.append(f"No messages for {stats['last_message_age_seconds']:.1f}s")

        if stats['messages_received'] > 0:
            error_rate = stats['invalid_messages'] / stats['messages_received']
            if error_rate > 0.05:
                issues.append(f"High invalid message rate: {error_rate:.2%}")

        return {
            'status': 'healthy' if not issues else 'unhealthy',
            'issues': issues,
            'stats': stats
        }
