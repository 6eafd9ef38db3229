"""WebSocket message types exchanged with the Krist server."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class ConnectionState(Enum):
    """Connection lifecycle states of a WebSocket client."""
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


class WsEvent(Enum):
    """Categories of signals a WebSocket client emits to its observers."""
    READY = "ready"
    STATE = "state"
    EVENT = "event"
    BLOCK = "block"
    TRANSACTION = "transaction"
    NAME = "name"
    KEEPALIVE = "keepalive"
    MESSAGE = "message"
    WS_OPEN = "ws_open"
    WS_CLOSE = "ws_close"
    WS_ERROR = "ws_error"
    INVALID_MESSAGE = "invalid_message"
    UNEXPECTED_RESPONSE = "unexpected_response"
    RECONNECT = "reconnect"


# Server-to-client message discriminators
MSG_HELLO = "hello"
MSG_KEEPALIVE = "keepalive"
MSG_EVENT = "event"
MSG_RESPONSE = "response"
MSG_ERROR = "error"


def parse_server_time(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp sent by the server."""
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace('Z', '+00:00'))
    except ValueError:
        return None


@dataclass
class HelloMessage:
    """Handshake sent once per connection, carrying the node's status snapshot."""
    server_time: Optional[datetime]
    motd: Optional[str]
    motd_set: Optional[str]
    public_url: Optional[str]
    mining_enabled: bool
    debug_mode: bool
    work: Optional[int]
    last_block: Optional[Dict[str, Any]]
    package: Dict[str, Any] = field(default_factory=dict)
    constants: Dict[str, Any] = field(default_factory=dict)
    currency: Dict[str, Any] = field(default_factory=dict)
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_message(cls, msg: Dict[str, Any]) -> "HelloMessage":
        return cls(
            server_time=parse_server_time(msg.get('server_time')),
            motd=msg.get('motd'),
            motd_set=msg.get('motd_set'),
            public_url=msg.get('public_url'),
            mining_enabled=bool(msg.get('mining_enabled', False)),
            debug_mode=bool(msg.get('debug_mode', False)),
            work=msg.get('work'),
            last_block=msg.get('last_block'),
            package=msg.get('package') or {},
            constants=msg.get('constants') or {},
            currency=msg.get('currency') or {},
            raw=msg,
        )


@dataclass
class BlockEvent:
    """A block was mined."""
    block: Dict[str, Any]
    new_work: Optional[int]
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)


@dataclass
class TransactionEvent:
    """A transaction was made."""
    transaction: Dict[str, Any]
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)


@dataclass
class NameEvent:
    """A name was purchased, modified or transferred."""
    name: Dict[str, Any]
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)


def parse_event(msg: Dict[str, Any]):
    """Build the typed payload for an ``event`` message, or None for unknown sub-types."""
    event = msg.get('event')
    if event == 'block':
        return BlockEvent(block=msg.get('block') or {}, new_work=msg.get('new_work'), raw=msg)
    if event == 'transaction':
        return TransactionEvent(transaction=msg.get('transaction') or {}, raw=msg)
    if event == 'name':
        return NameEvent(name=msg.get('name') or {}, raw=msg)
    return None


EVENT_SIGNALS = {
    BlockEvent: WsEvent.BLOCK,
    TransactionEvent: WsEvent.TRANSACTION,
    NameEvent: WsEvent.NAME,
}
