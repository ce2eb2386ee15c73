"""Decrypt oracle client: dispatches to the local or HTTP key server."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol

from doauth.config.settings import KeyServerEngine

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from doauth.config.settings import KeyServerConfig
    from doauth.keyserver.artifact import DecryptionAuthorization
    from doauth.session.credential import SessionCredential

    Approver = Callable[[DecryptionAuthorization], Awaitable[bool]]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EncryptedObject:
    """Result of ``encrypt``: the ciphertext and a key to recover it offline."""

    ciphertext: bytes
    backup_key: bytes


class DecryptOracle(Protocol):
    """Contract every key-server backend (and test double) fulfils."""

    async def connect(self) -> None: ...
    async def close(self) -> None: ...
    async def encrypt(self, identity: bytes, plaintext: bytes) -> EncryptedObject: ...
    async def decrypt(
        self,
        ciphertext: bytes,
        artifact: DecryptionAuthorization,
        credential: SessionCredential,
    ) -> bytes: ...
    async def reset(self) -> None: ...


class KeyServerClient:
    """Decrypt oracle backed by the configured key-server engine.

    ``approver`` is consulted by the local engine before it releases shares,
    standing in for the on-ledger approval check a real key server runs.
    """

    def __init__(
        self,
        config: KeyServerConfig,
        *,
        approver: Approver | None = None,
        backend: DecryptOracle | None = None,
    ) -> None:
        self._config = config
        self._approver = approver
        self._custom = backend
        self._backend: DecryptOracle | None = None

    async def connect(self) -> None:
        """Connect the injected backend, or build the configured one."""
        from doauth.keyserver.http import HttpKeyServer
        from doauth.keyserver.local import LocalKeyServer

        if self._custom is not None:
            self._backend = self._custom
        elif self._config.engine == KeyServerEngine.HTTP:
            self._backend = HttpKeyServer(self._config)
        else:
            self._backend = LocalKeyServer(self._config, approver=self._approver)
        await self._backend.connect()
        logger.info("Key server client connected (engine=%s)", self._config.engine)

    async def close(self) -> None:
        if self._backend is not None:
            await self._backend.close()
            self._backend = None

    @property
    def is_connected(self) -> bool:
        return self._backend is not None

    @property
    def backend(self) -> Any:
        """The connected backend instance."""
        return self._ensure_connected()

    async def encrypt(self, identity: bytes, plaintext: bytes) -> EncryptedObject:
        return await self._ensure_connected().encrypt(identity, plaintext)

    async def decrypt(
        self,
        ciphertext: bytes,
        artifact: DecryptionAuthorization,
        credential: SessionCredential,
    ) -> bytes:
        return await self._ensure_connected().decrypt(ciphertext, artifact, credential)

    async def reset(self) -> None:
        """Drop cached connection state before a retry."""
        await self._ensure_connected().reset()

    def _ensure_connected(self) -> DecryptOracle:
        if self._backend is None:
            msg = "Key server client not connected. Call connect() first."
            raise RuntimeError(msg)
        return self._backend
