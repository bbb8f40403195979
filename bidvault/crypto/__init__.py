"""
Hashing and account addressing for bidvault.

This module provides:
- Hashing functions (SHA-256, Keccak-256)
- Account address derivation
- Hex encoding helpers

Design Notes:
-------------
Accounts are 20-byte addresses, derived Ethereum-style as the last 20 bytes
of a Keccak-256 digest. Human-readable labels ("alice", "operator") map to a
deterministic address so that scenarios and CLI sessions are reproducible.
"""

import hashlib

from Crypto.Hash import keccak


# =============================================================================
# Constants
# =============================================================================

ADDRESS_SIZE = 20


# =============================================================================
# Hashing
# =============================================================================


def sha256(data: bytes) -> bytes:
    """
    Compute SHA-256 hash.

    Used for: event digests, general content addressing.
    """
    return hashlib.sha256(data).digest()


def keccak256(data: bytes) -> bytes:
    """
    Compute Keccak-256 hash (Ethereum-style).

    Used for: address derivation, compatibility with EVM conventions.
    """
    k = keccak.new(digest_bits=256)
    k.update(data)
    return k.digest()


# =============================================================================
# Addresses
# =============================================================================


def address_from_label(label: str) -> bytes:
    """
    Derive a deterministic account address from a label.

    Address = last 20 bytes of keccak256(label).
    """
    return keccak256(label.encode("utf-8"))[-ADDRESS_SIZE:]


# =============================================================================
# Encoding
# =============================================================================


def bytes_to_hex(data: bytes) -> str:
    """Convert bytes to hex string with 0x prefix."""
    return "0x" + data.hex()


def hex_to_bytes(hex_str: str) -> bytes:
    """Convert hex string (with or without 0x prefix) to bytes."""
    if hex_str.startswith("0x") or hex_str.startswith("0X"):
        hex_str = hex_str[2:]
    return bytes.fromhex(hex_str)


def is_valid_address(address: str) -> bool:
    """Check if string is a valid address format."""
    if not address.startswith("0x"):
        return False
    if len(address) != 42:  # 0x + 40 hex chars
        return False
    try:
        int(address, 16)
        return True
    except ValueError:
        return False


def short_address(address: bytes) -> str:
    """Abbreviated hex form for log lines."""
    return bytes_to_hex(address)[:10]


__all__ = [
    "ADDRESS_SIZE",
    "sha256",
    "keccak256",
    "address_from_label",
    "bytes_to_hex",
    "hex_to_bytes",
    "is_valid_address",
    "short_address",
]
