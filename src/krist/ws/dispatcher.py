"""Classification and routing of inbound WebSocket messages."""

import json
import logging
from typing import Any, Callable, Dict, Union

from .correlator import MessageCorrelator
from .messages import (
    EVENT_SIGNALS, MSG_ERROR, MSG_EVENT, MSG_HELLO, MSG_KEEPALIVE, MSG_RESPONSE,
    WsEvent, parse_event, parse_server_time
)
from .observers import Observers

logger = logging.getLogger(__name__)


class EventDispatcher:
    """
    Routes inbound messages by their ``type`` discriminator.

    Dispatch is synchronous; messages are handled in the order they are fed.
    Frames that are not JSON objects with a ``type`` field are reported via
    INVALID_MESSAGE and dropped.
    """

    def __init__(
        self,
        observers: Observers,
        correlator: MessageCorrelator,
        on_hello: Callable[[Dict[str, Any]], None]
    ):
        self.observers = observers
        self.correlator = correlator
        self.on_hello = on_hello

        self.stats = {
            'messages_received': 0,
            'messages_dispatched': 0,
            'invalid_messages': 0,
        }

    def feed(self, raw: Union[str, bytes]):
        """Decode and dispatch one raw frame."""
        self.stats['messages_received'] += 1
        try:
            msg = json.loads(raw)
        except (TypeError, ValueError) as e:
            logger.warning(f"Failed to decode message: {e}")
            self._invalid(raw)
            return

        self.dispatch(msg)

    def dispatch(self, msg: Any):
        if not isinstance(msg, dict) or not msg.get('type'):
            self._invalid(msg)
            return

        self.stats['messages_dispatched'] += 1
        self.observers.emit(WsEvent.MESSAGE, msg)

        msg_type = msg['type']
        if msg_type == MSG_HELLO:
            self.on_hello(msg)
        elif msg_type == MSG_EVENT:
            self._dispatch_event(msg)
        elif msg_type in (MSG_RESPONSE, MSG_ERROR):
            self.correlator.handle_response(msg)
        elif msg_type == MSG_KEEPALIVE:
            self.observers.emit(WsEvent.KEEPALIVE, parse_server_time(msg.get('server_time')))
        else:
            logger.debug(f"Ignoring message of unknown type {msg_type!r}")

    def _dispatch_event(self, msg: Dict[str, Any]):
        self.observers.emit(WsEvent.EVENT, msg)

        event = parse_event(msg)
        if event is None:
            logger.debug(f"Ignoring event of unknown sub-type {msg.get('event')!r}")
            return
        self.observers.emit(EVENT_SIGNALS[type(event)], event)

    def _invalid(self, msg: Any):
        self.stats['invalid_messages'] += 1
        self.observers.emit(WsEvent.INVALID_MESSAGE, msg)
