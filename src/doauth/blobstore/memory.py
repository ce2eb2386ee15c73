"""In-memory content-addressed blob store."""

from __future__ import annotations

import base64

from doauth.errors.external_errors import BlobNotFoundError
from doauth.utils.crypto import blake2b256


def blob_id_for(data: bytes) -> str:
    """URL-safe, unpadded base64 of the BLAKE2b-256 digest of *data*."""
    return base64.urlsafe_b64encode(blake2b256(data)).rstrip(b"=").decode("ascii")


class MemoryBlobStore:
    """Process-local blob store.

    ``hidden_reads`` makes each new blob miss its first N reads, emulating a
    distributed store that has not finished propagating a fresh write.
    """

    def __init__(self, *, hidden_reads: int = 0) -> None:
        self._blobs: dict[str, bytes] = {}
        self._pending: dict[str, int] = {}
        self._hidden_reads = hidden_reads
        self.writes = 0
        self.reads = 0

    async def connect(self) -> None:  # noqa: ASYNC910
        """No-op for the in-memory backend."""

    async def close(self) -> None:  # noqa: ASYNC910
        self._blobs.clear()
        self._pending.clear()

    async def write(  # noqa: ASYNC910
        self,
        data: bytes,
        *,
        epochs: int = 1,  # noqa: ARG002
        deletable: bool = True,  # noqa: ARG002
    ) -> str:
        self.writes += 1
        blob_id = blob_id_for(data)
        if blob_id not in self._blobs and self._hidden_reads:
            self._pending[blob_id] = self._hidden_reads
        self._blobs[blob_id] = bytes(data)
        return blob_id

    async def read(self, blob_ref: str) -> bytes:  # noqa: ASYNC910
        self.reads += 1
        remaining = self._pending.get(blob_ref, 0)
        if remaining:
            self._pending[blob_ref] = remaining - 1
            raise BlobNotFoundError(blob_ref)
        try:
            return self._blobs[blob_ref]
        except KeyError:
            raise BlobNotFoundError(blob_ref) from None

    def __contains__(self, blob_ref: object) -> bool:
        return blob_ref in self._blobs
