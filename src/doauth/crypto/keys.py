"""secp256k1 key helpers: key generation, addresses, ECDSA signing.

- Compressed / uncompressed public key encoding
- Address derivation: ``0x`` + BLAKE2b-256(flag || compressed pubkey)
- Deterministic (RFC 6979) DER signatures over SHA-256 message digests
"""

from __future__ import annotations

import secrets

from ecdsa import SECP256k1, BadSignatureError, MalformedPointError, SigningKey, VerifyingKey
from ecdsa.der import UnexpectedDER
from ecdsa.util import sigdecode_der, sigencode_der

from doauth.utils.crypto import blake2b256, sha256

_CURVE = SECP256k1

# Signature-scheme flag prefixed to the public key before address hashing.
_SECP256K1_FLAG = b"\x01"


def generate_private_key() -> bytes:
    """Return a fresh 32-byte secp256k1 private key."""
    while True:
        candidate = secrets.token_bytes(32)
        scalar = int.from_bytes(candidate, "big")
        if 0 < scalar < _CURVE.order:
            return candidate


def private_key_to_public_key(privkey_bytes: bytes, *, compressed: bool = True) -> bytes:
    """Derive the public key from a 32-byte private key.

    Args:
        privkey_bytes: 32-byte big-endian scalar.
        compressed: If True, return the 33-byte SEC compressed encoding.

    Returns:
        The public key bytes (33 compressed or 65 uncompressed).
    """
    sk = SigningKey.from_string(privkey_bytes, curve=_CURVE)
    vk = sk.get_verifying_key()
    return vk.to_string("compressed" if compressed else "uncompressed")


def public_key_to_address(pubkey_bytes: bytes) -> str:
    """Derive the account address for a public key.

    Accepts compressed (33) or uncompressed (65) encodings; the address is
    always computed over the compressed form.

    Raises:
        ValueError: If the bytes are not a valid secp256k1 point.
    """
    try:
        vk = VerifyingKey.from_string(pubkey_bytes, curve=_CURVE)
    except MalformedPointError as exc:
        msg = f"invalid public key: {exc}"
        raise ValueError(msg) from exc
    compressed = vk.to_string("compressed")
    return "0x" + blake2b256(_SECP256K1_FLAG + compressed).hex()


def private_key_to_address(privkey_bytes: bytes) -> str:
    """Address of the account controlled by *privkey_bytes*."""
    return public_key_to_address(private_key_to_public_key(privkey_bytes))


def sign_message(privkey_bytes: bytes, message: bytes) -> bytes:
    """Sign SHA-256(message) with the private key (DER-encoded signature)."""
    sk = SigningKey.from_string(privkey_bytes, curve=_CURVE)
    return sk.sign_digest_deterministic(sha256(message), sigencode=sigencode_der)


def verify_signature(pubkey_bytes: bytes, message: bytes, signature: bytes) -> bool:
    """Verify a DER signature over SHA-256(message) against a public key."""
    try:
        vk = VerifyingKey.from_string(pubkey_bytes, curve=_CURVE)
        return vk.verify_digest(signature, sha256(message), sigdecode=sigdecode_der)
    except (BadSignatureError, UnexpectedDER, MalformedPointError, ValueError):
        return False
