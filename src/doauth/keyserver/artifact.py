"""Decryption authorization artifact.

The artifact binds the encryption identity to the vault, the item, the
requester and (optionally) the grant, and is signed with the requester's
session key. A key server inspects it before releasing a decryption share.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any, Self

from doauth.crypto.keys import verify_signature
from doauth.errors.external_errors import InvalidArtifactError

if TYPE_CHECKING:
    from doauth.session.credential import SessionCredential

_DOMAIN = "doauth/decryption-authorization/v1"


@dataclass(frozen=True)
class DecryptionAuthorization:
    identity: bytes
    vault_id: str
    item_id: str
    requester: str
    grant_id: str | None
    issued_at: int
    session_public_key: bytes
    signature: bytes = b""

    def message(self) -> bytes:
        """Canonical bytes covered by the session-key signature."""
        body = {
            "domain": _DOMAIN,
            "identity": self.identity.hex(),
            "vaultId": self.vault_id,
            "itemId": self.item_id,
            "requester": self.requester,
            "grantId": self.grant_id,
            "issuedAt": self.issued_at,
            "sessionPublicKey": self.session_public_key.hex(),
        }
        return json.dumps(body, separators=(",", ":"), sort_keys=True).encode("utf-8")

    @property
    def digest(self) -> str:
        return hashlib.sha256(self.message()).hexdigest()

    @classmethod
    def build(
        cls,
        credential: SessionCredential,
        *,
        identity: bytes,
        vault_id: str,
        item_id: str,
        issued_at: int,
    ) -> Self:
        """Create and sign an artifact for one item with the credential's session key."""
        unsigned = cls(
            identity=identity,
            vault_id=vault_id,
            item_id=item_id,
            requester=credential.address,
            grant_id=credential.grant_id,
            issued_at=issued_at,
            session_public_key=credential.session_public_key,
        )
        return replace(unsigned, signature=credential.sign_with_session_key(unsigned.message()))

    def verify_for(self, credential: SessionCredential) -> None:
        """Check the artifact was signed by *credential* and names its holder.

        Raises:
            InvalidArtifactError: On any mismatch.
        """
        if self.session_public_key != credential.session_public_key:
            msg = "artifact was signed by another session"
            raise InvalidArtifactError(msg)
        if self.requester != credential.address or self.grant_id != credential.grant_id:
            msg = "artifact does not match the credential binding"
            raise InvalidArtifactError(msg)
        if not verify_signature(self.session_public_key, self.message(), self.signature):
            msg = "artifact signature is invalid"
            raise InvalidArtifactError(msg)

    def to_dict(self) -> dict[str, Any]:
        return {
            "identity": self.identity.hex(),
            "vaultId": self.vault_id,
            "itemId": self.item_id,
            "requester": self.requester,
            "grantId": self.grant_id,
            "issuedAt": self.issued_at,
            "sessionPublicKey": self.session_public_key.hex(),
            "signature": self.signature.hex(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        try:
            return cls(
                identity=bytes.fromhex(data["identity"]),
                vault_id=str(data["vaultId"]),
                item_id=str(data["itemId"]),
                requester=str(data["requester"]),
                grant_id=data.get("grantId"),
                issued_at=int(data["issuedAt"]),
                session_public_key=bytes.fromhex(data["sessionPublicKey"]),
                signature=bytes.fromhex(data["signature"]),
            )
        except (KeyError, TypeError, ValueError) as exc:
            msg = "artifact could not be decoded"
            raise InvalidArtifactError(msg) from exc
