"""Cryptographic helpers: hashing and random identifiers."""

from __future__ import annotations

import hashlib
import secrets


def sha256(data: bytes) -> bytes:
    """Single SHA-256 hash."""
    return hashlib.sha256(data).digest()


def blake2b256(data: bytes) -> bytes:
    """BLAKE2b with a 32-byte digest."""
    return hashlib.blake2b(data, digest_size=32).digest()


def new_object_id() -> str:
    """Random ledger object id: ``0x`` followed by 64 hex characters."""
    return "0x" + secrets.token_hex(32)


def new_bearer_token() -> str:
    """256-bit bearer token from the OS CSPRNG, hex-encoded."""
    return secrets.token_hex(32)


def new_nonce(size: int = 16) -> bytes:
    """Random nonce used to derive per-item encryption identities."""
    return secrets.token_bytes(size)


def object_id_bytes(object_id: str) -> bytes:
    """Decode a ``0x``-prefixed hex object id to raw bytes.

    Raises:
        ValueError: If the id is not valid hex.
    """
    return bytes.fromhex(object_id.removeprefix("0x"))
