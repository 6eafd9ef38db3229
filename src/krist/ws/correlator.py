"""Request/response correlation over the shared WebSocket channel."""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from ..errors import ConnectionClosedError, coerce_krist_error
from ..utils.rate_limiter import RateLimiter
from ..utils.validation import arg_string_non_empty
from .messages import WsEvent
from .observers import Observers

logger = logging.getLogger(__name__)

FIRST_MESSAGE_ID = 1

SendFn = Callable[[str], Awaitable[None]]


@dataclass
class PendingRequest:
    """A request awaiting its response."""
    id: int
    type: str
    future: asyncio.Future


class MessageCorrelator:
    """
    Assigns IDs to outgoing requests and resolves them from inbound responses.

    The ID counter and the pending-request table are scoped to one connection
    attempt: ``attach`` starts a fresh scope bound to a live transport and
    ``detach`` rejects everything still outstanding with
    ``ConnectionClosedError``.
    """

    def __init__(self, rate_limiter: RateLimiter, observers: Observers):
        self.rate_limiter = rate_limiter
        self.observers = observers

        self._send: Optional[SendFn] = None
        self._next_id = FIRST_MESSAGE_ID
        self._pending: Dict[int, PendingRequest] = {}

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def next_id(self) -> int:
        return self._next_id

    def attach(self, send: SendFn):
        """Start a new connection attempt using ``send`` as the transport."""
        if self._pending:
            self.detach("Superseded by a new connection attempt")
        self._send = send
        self._next_id = FIRST_MESSAGE_ID
        self._pending = {}

    def detach(self, reason: str = "WebSocket connection closed"):
        """Unbind the transport and reject all outstanding requests."""
        self._send = None
        pending, self._pending = self._pending, {}

        if pending:
            logger.info(f"Rejecting {len(pending)} pending request(s): {reason}")

        for entry in pending.values():
            if not entry.future.done():
                entry.future.set_exception(ConnectionClosedError(reason))

    async def send_and_wait(self, message: Dict[str, Any]) -> Dict[str, Any]:
        """
        Send a request and wait for the correlated response.

        Any ``id`` in ``message`` is replaced by the generated one. Waiting on
        the rate limiter suspends the caller; it is not an error.

        Returns:
            The response message

        Raises:
            ConnectionClosedError: If no transport is open, or it drops
                before the response arrives
            KristError: The typed error for an ``ok=false`` response
        """
        msg_type = arg_string_non_empty(message.get('type'), "type")

        send = self._send
        if send is None:
            raise ConnectionClosedError("WebSocket is not connected")

        message_id = self._next_id
        self._next_id += 1

        loop = asyncio.get_running_loop()
        entry = PendingRequest(message_id, msg_type, loop.create_future())
        pending = self._pending
        pending[message_id] = entry

        try:
            await self.rate_limiter.acquire()

            # The connection may have dropped while waiting for a token
            if not entry.future.done():
                await send(json.dumps({**message, 'id': message_id}))

            return await entry.future
        except BaseException:
            if pending.get(message_id) is entry:
                del pending[message_id]
            raise

    def handle_response(self, msg: Dict[str, Any]) -> bool:
        """
        Resolve the pending request matching a ``response`` or ``error`` message.

        Returns:
            False if no request was waiting for this ID
        """
        msg_id = msg.get('id')
        entry = self._pending.pop(msg_id, None) if isinstance(msg_id, int) else None

        if entry is None:
            logger.warning(
                f"Received response for unknown message ID {msg_id!r} "
                f"(responding to {msg.get('responding_to_type')!r})"
            )
            self.observers.emit(WsEvent.UNEXPECTED_RESPONSE, msg)
            return False

        if entry.future.done():
            return True

        if msg.get('ok') and not msg.get('error'):
            entry.future.set_result(msg)
        else:
            logger.debug(f"Request {entry.id} ({entry.type}) failed: {msg.get('error')}")
            entry.future.set_exception(coerce_krist_error(msg))
        return True
