"""Request-signature authentication for owner routes.

Every authenticated request carries three headers:

- ``x-auth-pubkey``: hex secp256k1 public key of the caller
- ``x-auth-time``: request time in epoch millis
- ``x-auth-signature``: hex DER signature over :func:`request_signing_message`

The caller's address is derived from the public key; services then check
the capabilities that address presents. Signatures older (or newer) than
``AUTH_SIGNATURE_TTL_SECONDS`` relative to ledger time are rejected.
"""

from __future__ import annotations

from dataclasses import dataclass

from doauth.crypto.keys import (
    private_key_to_public_key,
    public_key_to_address,
    sign_message,
    verify_signature,
)
from doauth.errors.definitions import ErrBadRequestSignature, ErrUnauthenticated
from doauth.utils.crypto import sha256

AUTH_HEADER_PUBKEY = "x-auth-pubkey"
AUTH_HEADER_TIME = "x-auth-time"
AUTH_HEADER_SIGNATURE = "x-auth-signature"

AUTH_SIGNATURE_TTL_SECONDS = 20


@dataclass(frozen=True)
class CallerContext:
    """Authenticated caller attached to the request."""

    address: str
    public_key: bytes


def request_signing_message(method: str, target: str, auth_time: str, body: bytes) -> bytes:
    """Canonical bytes signed by the caller.

    *target* is the request path, followed by ``?query`` when present.
    """
    return f"{method.upper()}\n{target}\n{auth_time}\n{sha256(body).hex()}".encode()


def sign_request(
    private_key: bytes,
    method: str,
    target: str,
    body: bytes = b"",
    *,
    now_ms: int,
) -> dict[str, str]:
    """Build the auth headers for a request (client-side helper)."""
    auth_time = str(now_ms)
    message = request_signing_message(method, target, auth_time, body)
    return {
        AUTH_HEADER_PUBKEY: private_key_to_public_key(private_key).hex(),
        AUTH_HEADER_TIME: auth_time,
        AUTH_HEADER_SIGNATURE: sign_message(private_key, message).hex(),
    }


def authenticate_request(
    *,
    now_ms: int,
    method: str,
    target: str,
    body: bytes,
    pubkey_header: str = "",
    time_header: str = "",
    signature_header: str = "",
) -> CallerContext:
    """Verify the auth headers of a request and resolve the caller.

    Raises:
        DOAuthError: 401 if headers are missing, stale or do not verify.
    """
    if not (pubkey_header and time_header and signature_header):
        raise ErrUnauthenticated

    try:
        public_key = bytes.fromhex(pubkey_header)
        signature = bytes.fromhex(signature_header)
        signed_at = int(time_header)
    except ValueError as exc:
        raise ErrBadRequestSignature from exc

    if abs(now_ms - signed_at) > AUTH_SIGNATURE_TTL_SECONDS * 1000:
        raise ErrBadRequestSignature

    message = request_signing_message(method, target, time_header, body)
    if not verify_signature(public_key, message, signature):
        raise ErrBadRequestSignature

    try:
        address = public_key_to_address(public_key)
    except ValueError as exc:
        raise ErrBadRequestSignature from exc
    return CallerContext(address=address, public_key=public_key)
