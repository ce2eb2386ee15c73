"""SessionCredential: ephemeral, address-bound decrypt credential.

A credential is created client-side with a fresh secp256k1 session key. The
holder of ``address`` signs :meth:`SessionCredential.personal_message` once;
afterwards the session key signs every decryption authorization until the TTL
runs out. Credentials live only with the client and are carried to the server
as an exported ``accessToken``.
"""

from __future__ import annotations

import base64
import binascii
import json
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Self

from doauth.crypto.keys import (
    generate_private_key,
    private_key_to_public_key,
    public_key_to_address,
    sign_message,
    verify_signature,
)
from doauth.errors.definitions import (
    ErrCredentialExpired,
    ErrCredentialMalformed,
    ErrCredentialUnsigned,
)
from doauth.errors.doauth_errors import InvalidCredentialError, ValidationError

_MS_PER_MINUTE = 60_000


@dataclass
class SessionCredential:
    """Session key plus the one-time signature binding it to ``address``."""

    address: str
    package_id: str
    creation_time_ms: int
    ttl_min: int
    session_key: bytes = field(repr=False)
    grant_id: str | None = None
    user_public_key: bytes | None = None
    signature: bytes | None = None

    @classmethod
    def create(
        cls,
        address: str,
        package_id: str,
        ttl_min: int,
        *,
        now_ms: int,
        grant_id: str | None = None,
        max_ttl_min: int | None = None,
    ) -> Self:
        """Start a new, unsigned credential.

        Args:
            address: Address whose key will sign the challenge.
            package_id: Domain-separation context baked into the challenge.
            ttl_min: Lifetime in minutes.
            now_ms: Ledger time at creation.
            grant_id: Restrict the credential to the items of one grant.
            max_ttl_min: Upper bound for ``ttl_min``.
        """
        if not address:
            msg = "address must not be empty"
            raise ValidationError(msg)
        if ttl_min < 1 or (max_ttl_min is not None and ttl_min > max_ttl_min):
            msg = f"ttl_min out of range: {ttl_min}"
            raise ValidationError(msg)
        return cls(
            address=address,
            package_id=package_id,
            creation_time_ms=now_ms,
            ttl_min=ttl_min,
            session_key=generate_private_key(),
            grant_id=grant_id,
        )

    # ------------------------------------------------------------------
    # Challenge and signature
    # ------------------------------------------------------------------

    @property
    def session_public_key(self) -> bytes:
        return private_key_to_public_key(self.session_key)

    @property
    def expires_at(self) -> int:
        """First ledger millisecond at which the credential is no longer usable."""
        return self.creation_time_ms + self.ttl_min * _MS_PER_MINUTE

    @property
    def is_signed(self) -> bool:
        return self.signature is not None

    def personal_message(self) -> bytes:
        """Challenge the address holder signs exactly once."""
        created = datetime.fromtimestamp(self.creation_time_ms / 1000, tz=UTC)
        session_pk = base64.b64encode(self.session_public_key).decode("ascii")
        message = (
            f"Accessing keys of package {self.package_id} for {self.ttl_min} mins from "
            f"{created.strftime('%Y-%m-%d %H:%M:%S')} UTC, session key {session_pk}"
        )
        if self.grant_id:
            message += f", grant {self.grant_id}"
        return message.encode("utf-8")

    def set_signature(self, public_key: bytes, signature: bytes) -> None:
        """Attach the address holder's signature over the challenge.

        Raises:
            InvalidCredentialError: If already signed, if *public_key* does not
                derive to ``address`` or if the signature does not verify.
        """
        if self.signature is not None:
            msg = "session credential is already signed"
            raise InvalidCredentialError(msg)
        self._check_signature(public_key, signature)
        self.user_public_key = bytes(public_key)
        self.signature = bytes(signature)

    def sign(self, user_private_key: bytes) -> None:
        """Convenience for clients holding the address key locally."""
        self.set_signature(
            private_key_to_public_key(user_private_key),
            sign_message(user_private_key, self.personal_message()),
        )

    def sign_with_session_key(self, payload: bytes) -> bytes:
        """Sign *payload* with the ephemeral session key."""
        return sign_message(self.session_key, payload)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def is_expired(self, now_ms: int) -> bool:
        return now_ms >= self.expires_at

    def verify(self, *, now_ms: int, package_id: str, max_ttl_min: int | None = None) -> None:
        """Check signature, domain context and TTL against ledger time.

        Raises:
            InvalidCredentialError: On any failure.
        """
        if self.user_public_key is None or self.signature is None:
            raise ErrCredentialUnsigned
        if self.package_id != package_id:
            msg = "session credential was issued for another package"
            raise InvalidCredentialError(msg)
        if self.ttl_min < 1 or (max_ttl_min is not None and self.ttl_min > max_ttl_min):
            msg = "session credential ttl is out of range"
            raise InvalidCredentialError(msg)
        self._check_signature(self.user_public_key, self.signature)
        if self.is_expired(now_ms):
            raise ErrCredentialExpired

    def _check_signature(self, public_key: bytes, signature: bytes) -> None:
        try:
            signer = public_key_to_address(public_key)
        except ValueError as exc:
            msg = "signature public key is invalid"
            raise InvalidCredentialError(msg) from exc
        if signer != self.address:
            msg = "signature key does not belong to the credential address"
            raise InvalidCredentialError(msg)
        if not verify_signature(public_key, self.personal_message(), signature):
            msg = "signature does not verify over the session challenge"
            raise InvalidCredentialError(msg)

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        return {
            "address": self.address,
            "packageId": self.package_id,
            "creationTimeMs": self.creation_time_ms,
            "ttlMin": self.ttl_min,
            "sessionKey": self.session_key.hex(),
            "grantId": self.grant_id,
            "userPublicKey": self.user_public_key.hex() if self.user_public_key else None,
            "signature": self.signature.hex() if self.signature else None,
        }

    def export(self) -> str:
        """Serialize to the base64 ``accessToken`` form."""
        raw = json.dumps(self.to_dict(), separators=(",", ":"), sort_keys=True)
        return base64.b64encode(raw.encode("utf-8")).decode("ascii")

    @classmethod
    def import_(cls, token: str) -> Self:
        """Parse an exported ``accessToken``.

        Raises:
            InvalidCredentialError: If the token cannot be decoded.
        """
        try:
            data = json.loads(base64.b64decode(token, validate=True))
            if not isinstance(data, dict):
                raise ErrCredentialMalformed
            session_key = bytes.fromhex(data["sessionKey"])
            if len(session_key) != 32:
                msg = "session key must be 32 bytes"
                raise ValueError(msg)
            return cls(
                address=str(data["address"]),
                package_id=str(data["packageId"]),
                creation_time_ms=_as_int(data["creationTimeMs"]),
                ttl_min=_as_int(data["ttlMin"]),
                session_key=session_key,
                grant_id=data.get("grantId") or None,
                user_public_key=_optional_hex(data.get("userPublicKey")),
                signature=_optional_hex(data.get("signature")),
            )
        except (binascii.Error, ValueError, KeyError, TypeError) as exc:
            raise ErrCredentialMalformed from exc


def _as_int(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        msg = f"expected integer, got {value!r}"
        raise TypeError(msg)
    return value


def _optional_hex(value: Any) -> bytes | None:
    if value is None:
        return None
    return bytes.fromhex(value)
