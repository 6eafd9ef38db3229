"""
Krist client - REST and WebSocket access to a Krist node.

Provides the wallet formats and address algorithm used to authenticate, and
a WebSocket client that reconnects by itself, correlates requests with
responses and keeps event subscriptions in sync.
"""

__version__ = "1.0.0"

from .api import KristApi
from .config.settings import KristSettings, load_settings
from .crypto import (
    AuthOptions, calculate_address, derive_key, format_needs_username, make_v2_address
)
from .errors import ArgumentError, ConnectionClosedError, InvalidFormatError, KristError
from .ws import ConnectionState, KristWsClient, WsEvent
