"""Blob store client: content-addressed ciphertext storage."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Protocol

from doauth.config.settings import BlobStoreEngine
from doauth.errors.external_errors import BlobNotFoundError

if TYPE_CHECKING:
    from doauth.config.settings import BlobStoreConfig

logger = logging.getLogger(__name__)


class BlobStore(Protocol):
    """Contract every blob store backend (and test double) fulfils."""

    async def connect(self) -> None: ...
    async def close(self) -> None: ...
    async def write(self, data: bytes, *, epochs: int, deletable: bool) -> str: ...
    async def read(self, blob_ref: str) -> bytes: ...


class BlobStoreClient:
    """Blob store backed by the configured engine (in-memory or Walrus)."""

    def __init__(self, config: BlobStoreConfig, *, backend: BlobStore | None = None) -> None:
        self._config = config
        self._custom = backend
        self._backend: BlobStore | None = None

    async def connect(self) -> None:
        """Connect the injected backend, or build the configured one."""
        from doauth.blobstore.memory import MemoryBlobStore
        from doauth.blobstore.walrus import WalrusBlobStore

        if self._custom is not None:
            self._backend = self._custom
        elif self._config.engine == BlobStoreEngine.WALRUS:
            self._backend = WalrusBlobStore(self._config)
        else:
            self._backend = MemoryBlobStore()
        await self._backend.connect()
        logger.info("Blob store connected (engine=%s)", self._config.engine)

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

    async def write(
        self, data: bytes, *, epochs: int | None = None, deletable: bool | None = None
    ) -> str:
        """Store *data* and return its blob reference."""
        return await self._ensure_connected().write(
            data,
            epochs=self._config.epochs if epochs is None else epochs,
            deletable=self._config.deletable if deletable is None else deletable,
        )

    async def read(self, blob_ref: str) -> bytes:
        return await self._ensure_connected().read(blob_ref)

    async def confirm_readable(self, blob_ref: str) -> None:
        """Wait for a fresh write to become readable.

        Reads right after a write may miss while the blob is distributed; this
        retries ``BlobNotFoundError`` up to the configured attempt count.
        """
        attempts = self._config.read_after_write_attempts
        for attempt in range(attempts):
            try:
                await self.read(blob_ref)
                return
            except BlobNotFoundError:
                if attempt >= attempts - 1:
                    raise
                logger.debug("Blob %s not readable yet (attempt %d)", blob_ref, attempt + 1)
                await asyncio.sleep(self._config.read_after_write_delay_seconds)

    def _ensure_connected(self) -> BlobStore:
        if self._backend is None:
            msg = "Blob store not connected. Call connect() first."
            raise RuntimeError(msg)
        return self._backend
