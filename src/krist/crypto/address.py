"""Krist v2 address algorithm."""

from typing import List, Optional, Tuple

from ..utils.validation import arg_callable, arg_string_non_empty
from .wallet_formats import DEFAULT_WALLET_FORMAT, HashFn, derive_key, double_sha256, sha256

ADDRESS_LENGTH = 10
SLOT_COUNT = 9


def hex_to_base36(value: int) -> str:
    """Map a byte value onto the address alphabet ``[a-z0-9]``."""
    byte = 48 + value // 7
    if byte + 39 > 122:
        return chr(101)
    if byte > 57:
        return chr(byte + 39)
    return chr(byte)


def make_v2_address(key: str, prefix: str = "k", hash_fn: HashFn = sha256) -> str:
    """
    Generate a Krist address from a private key.

    Nine slots are seeded from a chain of double hashes. Characters are then
    drawn from the slots in an order picked by the final hash; whenever the
    picked slot was already consumed, the hash is re-hashed once and the same
    position is retried.

    Args:
        key: The private key
        prefix: The address prefix, ``k`` on the main network
        hash_fn: The hash function to use, SHA-256 by default

    Returns:
        The address: the prefix followed by nine derived characters
    """
    arg_string_non_empty(key, "key")
    arg_string_non_empty(prefix, "prefix")
    arg_callable(hash_fn, "hash_fn")

    slots: List[Optional[str]] = []
    chain = prefix
    hash_ = double_sha256(key, hash_fn)

    for _ in range(SLOT_COUNT):
        slots.append(hash_[:2])
        hash_ = double_sha256(hash_, hash_fn)

    i = 0
    while i < SLOT_COUNT:
        index = int(hash_[2 * i:2 * i + 2], 16) % SLOT_COUNT

        if slots[index] is None:
            hash_ = hash_fn(hash_)
            continue

        chain += hex_to_base36(int(slots[index], 16))
        slots[index] = None
        i += 1

    return chain


def calculate_address(
    password: str,
    username: Optional[str] = None,
    wallet_format: str = DEFAULT_WALLET_FORMAT,
    prefix: str = "k",
    hash_fn: HashFn = sha256
) -> Tuple[str, str]:
    """
    Generate an address from a password by first applying a wallet format.

    Returns:
        A ``(address, private_key)`` tuple
    """
    arg_string_non_empty(prefix, "prefix")
    private_key = derive_key(wallet_format, password, username, hash_fn)
    return make_v2_address(private_key, prefix, hash_fn), private_key
