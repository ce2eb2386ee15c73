"""Local development key server.

Simulates a threshold key-server committee in process: ``threshold`` servers
each derive a share for an identity from their own secret, and the data key
is derived from all shares together. Data is sealed with AES-256-GCM using
the identity as associated data.

Not a threshold scheme. Suitable for development and tests only.
"""

from __future__ import annotations

import logging
import os
import struct
from typing import TYPE_CHECKING

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes, hmac
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from doauth.errors.external_errors import (
    InsufficientSharesError,
    InvalidArtifactError,
    KeyServerError,
)
from doauth.keyserver.client import EncryptedObject

if TYPE_CHECKING:
    from doauth.config.settings import KeyServerConfig
    from doauth.keyserver.artifact import DecryptionAuthorization
    from doauth.keyserver.client import Approver
    from doauth.session.credential import SessionCredential

logger = logging.getLogger(__name__)

_MAGIC = b"DOA1"
_NONCE_SIZE = 12
_KEY_SIZE = 32


def _hkdf(material: bytes, info: bytes) -> bytes:
    return HKDF(algorithm=hashes.SHA256(), length=_KEY_SIZE, salt=None, info=info).derive(
        material
    )


class LocalKeyServer:
    def __init__(self, config: KeyServerConfig, *, approver: Approver | None = None) -> None:
        self._config = config
        self._approver = approver
        self._server_secrets: list[bytes] = []
        self._available: int | None = None

    async def connect(self) -> None:  # noqa: ASYNC910
        if self._config.master_key:
            master = bytes.fromhex(self._config.master_key)
        else:
            logger.warning("No key server master key configured; using an ephemeral one")
            master = os.urandom(_KEY_SIZE)
        self._server_secrets = [
            _hkdf(master, f"doauth-keyserver-{i}".encode()) for i in range(self._config.threshold)
        ]

    async def close(self) -> None:  # noqa: ASYNC910
        self._server_secrets = []

    async def reset(self) -> None:  # noqa: ASYNC910
        """No connection state to drop locally."""

    def set_available_servers(self, count: int | None) -> None:
        """Limit how many simulated servers answer (``None`` = all)."""
        self._available = count

    # ------------------------------------------------------------------

    def _shares(self, identity: bytes) -> list[bytes]:
        shares = []
        for secret in self._server_secrets:
            h = hmac.HMAC(secret, hashes.SHA256())
            h.update(identity)
            shares.append(h.finalize())
        return shares

    def _data_key(self, shares: list[bytes]) -> bytes:
        return _hkdf(b"".join(shares), b"doauth-data-key")

    async def encrypt(self, identity: bytes, plaintext: bytes) -> EncryptedObject:  # noqa: ASYNC910
        if not self._server_secrets:
            msg = "local key server not connected"
            raise KeyServerError(msg, status_code=500)
        key = self._data_key(self._shares(identity))
        nonce = os.urandom(_NONCE_SIZE)
        sealed = AESGCM(key).encrypt(nonce, plaintext, identity)
        header = _MAGIC + struct.pack(">H", len(identity)) + identity
        return EncryptedObject(ciphertext=header + nonce + sealed, backup_key=key)

    async def decrypt(
        self,
        ciphertext: bytes,
        artifact: DecryptionAuthorization,
        credential: SessionCredential,
    ) -> bytes:
        identity, nonce, sealed = _parse(ciphertext)
        if identity != artifact.identity:
            msg = "artifact identity does not match the ciphertext"
            raise InvalidArtifactError(msg)
        artifact.verify_for(credential)
        if self._approver is not None and not await self._approver(artifact):
            raise InvalidArtifactError

        answering = len(self._server_secrets)
        if self._available is not None:
            answering = min(answering, self._available)
        if answering < self._config.threshold or not self._server_secrets:
            msg = f"{answering} of {self._config.threshold} key servers answered"
            raise InsufficientSharesError(msg)

        key = self._data_key(self._shares(identity))
        try:
            return AESGCM(key).decrypt(nonce, sealed, identity)
        except InvalidTag as exc:
            msg = "ciphertext failed authentication"
            raise KeyServerError(msg, status_code=500) from exc


def _parse(ciphertext: bytes) -> tuple[bytes, bytes, bytes]:
    if len(ciphertext) < len(_MAGIC) + 2 or not ciphertext.startswith(_MAGIC):
        msg = "unrecognised ciphertext format"
        raise KeyServerError(msg, status_code=422)
    offset = len(_MAGIC)
    (id_len,) = struct.unpack(">H", ciphertext[offset : offset + 2])
    offset += 2
    identity = ciphertext[offset : offset + id_len]
    offset += id_len
    nonce = ciphertext[offset : offset + _NONCE_SIZE]
    sealed = ciphertext[offset + _NONCE_SIZE :]
    if len(identity) != id_len or len(nonce) != _NONCE_SIZE or not sealed:
        msg = "truncated ciphertext"
        raise KeyServerError(msg, status_code=422)
    return identity, nonce, sealed
