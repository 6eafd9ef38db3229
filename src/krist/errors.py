"""Error types raised by the Krist client."""

from typing import Any, Dict, Optional, Type


class ArgumentError(ValueError):
    """Raised synchronously when a caller passes an invalid argument."""

    def __init__(self, message: str, argument: str):
        super().__init__(message)
        self.argument = argument


class InvalidFormatError(ArgumentError):
    """Raised when a wallet format name is not one of the known formats."""


class KristError(Exception):
    """
    Base error for failures reported by the Krist server.

    Attributes:
        error: The machine-readable error code sent by the server
        server_message: The human-readable message sent by the server, if any
        parameter: The request parameter the server blamed, if any
    """

    def __init__(
        self,
        error: str,
        server_message: Optional[str] = None,
        parameter: Optional[str] = None
    ):
        super().__init__(server_message or error)
        self.error = error
        self.server_message = server_message
        self.parameter = parameter


class MissingParameterError(KristError):
    pass


class InvalidParameterError(KristError):
    pass


class NotFoundError(KristError):
    pass


class AddressNotFoundError(NotFoundError):
    pass


class BlockNotFoundError(NotFoundError):
    pass


class TransactionNotFoundError(NotFoundError):
    pass


class NameNotFoundError(NotFoundError):
    pass


class NameTakenError(KristError):
    pass


class NotNameOwnerError(KristError):
    pass


class InvalidWebSocketTokenError(KristError):
    pass


class AuthFailedError(KristError):
    pass


class ServerError(KristError):
    pass


class RateLimitError(KristError):
    """The server (or the client-side limiter) rejected the request as too frequent."""

    def __init__(self):
        super().__init__("rate_limit_hit", "Rate limit hit!")


class WebSocketStartError(KristError):
    """The server did not hand out a WebSocket URL."""

    def __init__(self):
        super().__init__("websocket_start", "Could not start a WebSocket connection!")


class ConnectionClosedError(KristError):
    """The WebSocket dropped before a response to a request arrived."""

    def __init__(self, server_message: str = "WebSocket connection closed"):
        super().__init__("connection_closed", server_message)


ERROR_CODES: Dict[str, Type[KristError]] = {
    'missing_parameter': MissingParameterError,
    'invalid_parameter': InvalidParameterError,
    'not_found': NotFoundError,
    'address_not_found': AddressNotFoundError,
    'block_not_found': BlockNotFoundError,
    'transaction_not_found': TransactionNotFoundError,
    'name_not_found': NameNotFoundError,
    'name_taken': NameTakenError,
    'not_name_owner': NotNameOwnerError,
    'invalid_websocket_token': InvalidWebSocketTokenError,
    'auth_failed': AuthFailedError,
    'server_error': ServerError,
}


def coerce_krist_error(data: Dict[str, Any]) -> KristError:
    """
    Map an error body returned by the server to a typed error.

    Unrecognised error codes fall back to a plain KristError carrying the
    server's code and message.
    """
    error = data.get('error')
    message = data.get('message')

    if not error or not isinstance(error, str):
        return KristError("unknown_error", message)

    if error == 'rate_limit_hit':
        return RateLimitError()

    error_cls = ERROR_CODES.get(error)
    if error_cls is None:
        return KristError(error, message)

    # Only the parameter errors carry the offending parameter name
    if error_cls in (MissingParameterError, InvalidParameterError):
        return error_cls(error, message, data.get('parameter'))
    return error_cls(error, message)
