"""Krist WebSocket client."""

from .client import KristWsClient
from .messages import (
    BlockEvent, ConnectionState, HelloMessage, NameEvent, TransactionEvent, WsEvent
)
