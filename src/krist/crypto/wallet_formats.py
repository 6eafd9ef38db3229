"""Wallet formats: deterministic transforms from a password to a private key."""

import hashlib
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from ..errors import InvalidFormatError
from ..utils.validation import arg_callable, arg_one_of, arg_string_non_empty

HashFn = Callable[[str], str]

DEFAULT_WALLET_FORMAT = "kristwallet"


def sha256(text: str) -> str:
    """Return the hexadecimal SHA-256 digest of a UTF-8 string."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def double_sha256(text: str, hash_fn: HashFn = sha256) -> str:
    """Equivalent to ``hash_fn(hash_fn(text))``."""
    return hash_fn(hash_fn(text))


@dataclass(frozen=True)
class WalletFormat:
    """A named password transform and whether it consumes a username."""
    name: str
    transform: Callable[[HashFn, str, Optional[str]], str]
    needs_username: bool = False

    def apply(self, hash_fn: HashFn, password: str, username: Optional[str] = None) -> str:
        return self.transform(hash_fn, password, username)


def _kristwallet(h: HashFn, password: str, username: Optional[str]) -> str:
    return h("KRISTWALLET" + password) + "-000"


def _username_hash(h: HashFn, password: str, username: Optional[str]) -> str:
    return h(h(username or "") + "^" + h(password))


def _kristwallet_username_appendhashes(h: HashFn, password: str, username: Optional[str]) -> str:
    return h("KRISTWALLETEXTENSION" + _username_hash(h, password, username)) + "-000"


def _jwalelset(h: HashFn, password: str, username: Optional[str]) -> str:
    # 18 nested applications in total
    key = h(password)
    for _ in range(17):
        key = h(key)
    return key


def _api(h: HashFn, password: str, username: Optional[str]) -> str:
    return password


WALLET_FORMATS: Dict[str, WalletFormat] = {
    fmt.name: fmt for fmt in (
        WalletFormat("kristwallet", _kristwallet),
        WalletFormat("kristwallet_username_appendhashes", _kristwallet_username_appendhashes,
                     needs_username=True),
        WalletFormat("kristwallet_username", _username_hash, needs_username=True),
        WalletFormat("jwalelset", _jwalelset),
        WalletFormat("api", _api),
    )
}

WALLET_FORMAT_NAMES: List[str] = [
    "kristwallet", "api", "kristwallet_username_appendhashes",
    "kristwallet_username", "jwalelset"
]

# Formats a wallet UI should hide behind an "advanced" option
ADVANCED_WALLET_FORMATS: List[str] = [
    "kristwallet_username_appendhashes", "kristwallet_username", "jwalelset"
]


def get_wallet_format(name: str) -> WalletFormat:
    arg_one_of(name, "format", WALLET_FORMAT_NAMES, error_cls=InvalidFormatError)
    return WALLET_FORMATS[name]


def format_needs_username(name: str) -> bool:
    """Return whether the given wallet format requires a username."""
    return get_wallet_format(name).needs_username


def derive_key(
    wallet_format: Optional[str],
    password: str,
    username: Optional[str] = None,
    hash_fn: HashFn = sha256
) -> str:
    """
    Apply a wallet format to a password, converting it to a private key.

    Args:
        wallet_format: Name of the wallet format, defaults to ``kristwallet``
            when ``None`` or empty
        password: The password to convert
        username: The username for formats that need one
        hash_fn: The hash function to use, SHA-256 by default

    Returns:
        The private key

    Raises:
        InvalidFormatError: If the wallet format is unknown
        ArgumentError: If the password or a supplied username is empty, or
            the hash function is not callable
    """
    fmt = get_wallet_format(wallet_format or DEFAULT_WALLET_FORMAT)
    arg_string_non_empty(password, "password")
    if username is not None:
        arg_string_non_empty(username, "username")
    arg_callable(hash_fn, "hash_fn")

    return fmt.apply(hash_fn, password, username)


@dataclass
class AuthOptions:
    """
    Credentials used to authenticate a connection or a request.

    A password (with its wallet format) takes precedence over a raw private
    key. With neither, the credentials resolve to a guest (``None``).
    """
    private_key: Optional[str] = None
    password: Optional[str] = None
    username: Optional[str] = None
    wallet_format: str = DEFAULT_WALLET_FORMAT
    hash_fn: HashFn = sha256


def resolve_private_key(auth: Optional[AuthOptions]) -> Optional[str]:
    if auth is None:
        return None
    if auth.password:
        return derive_key(auth.wallet_format, auth.password, auth.username, auth.hash_fn)
    if auth.private_key:
        return auth.private_key
    return None
