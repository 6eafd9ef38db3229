"""Wallet formats and the address algorithm."""

from .address import calculate_address, make_v2_address
from .wallet_formats import (
    ADVANCED_WALLET_FORMATS, AuthOptions, WALLET_FORMAT_NAMES, derive_key, double_sha256,
    format_needs_username, resolve_private_key, sha256
)
