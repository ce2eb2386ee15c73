"""Walrus blob store client (publisher for writes, aggregator for reads).

- PUT {publisher}/v1/blobs?epochs=N[&deletable=true]: store a blob
- GET {aggregator}/v1/blobs/{blob_id}: read a blob
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

import httpx

from doauth.errors.external_errors import (
    BlobNotFoundError,
    BlobStoreError,
    ExternalTimeoutError,
    NetworkError,
    NotEnoughReplicasError,
)

if TYPE_CHECKING:
    from doauth.config.settings import BlobStoreConfig

logger = logging.getLogger(__name__)

# Aggregator reads are bounded separately from uploads.
_READ_TIMEOUT = 60.0

_REPLICA_MARKERS = ("slivers", "not enough", "replicas")


class WalrusBlobStore:
    """Async HTTP client for a Walrus publisher/aggregator pair.

    Usage::

        store = WalrusBlobStore(config)
        await store.connect()
        try:
            blob_id = await store.write(b"...", epochs=1, deletable=True)
            data = await store.read(blob_id)
        finally:
            await store.close()
    """

    def __init__(
        self, config: BlobStoreConfig, *, transport: httpx.AsyncBaseTransport | None = None
    ) -> None:
        self._config = config
        self._transport = transport
        self._publisher: httpx.AsyncClient | None = None
        self._aggregator: httpx.AsyncClient | None = None

    async def connect(self) -> None:  # noqa: ASYNC910
        self._publisher = httpx.AsyncClient(
            base_url=self._config.publisher_url.rstrip("/"),
            timeout=self._config.timeout_seconds,
            transport=self._transport,
        )
        self._aggregator = httpx.AsyncClient(
            base_url=self._config.aggregator_url.rstrip("/"),
            timeout=min(_READ_TIMEOUT, self._config.timeout_seconds),
            transport=self._transport,
        )

    async def close(self) -> None:
        for client in (self._publisher, self._aggregator):
            if client is not None:
                await client.aclose()
        self._publisher = None
        self._aggregator = None

    @property
    def is_connected(self) -> bool:
        return self._publisher is not None and self._aggregator is not None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def write(self, data: bytes, *, epochs: int, deletable: bool) -> str:
        """Upload *data* and return the Walrus blob id."""
        publisher, _ = self._ensure_connected()
        params: dict[str, Any] = {"epochs": epochs}
        if deletable:
            params["deletable"] = "true"
        try:
            response = await publisher.put(
                "/v1/blobs",
                params=params,
                content=data,
                headers={"Content-Type": "application/octet-stream"},
            )
        except httpx.TimeoutException as exc:
            raise ExternalTimeoutError("blob upload", self._config.timeout_seconds) from exc
        except httpx.TransportError as exc:
            raise NetworkError(f"blob upload failed: {exc}") from exc

        if response.status_code != 200:
            self._raise_for_status(response, "upload")
        return self._blob_id_from(response.json())

    async def read(self, blob_ref: str) -> bytes:
        """Download a blob by id."""
        _, aggregator = self._ensure_connected()
        # refs are caller supplied; each one stays a single path segment
        segment = quote(blob_ref, safe="")
        try:
            response = await aggregator.get(f"/v1/blobs/{segment}")
        except httpx.TimeoutException as exc:
            timeout = aggregator.timeout.read or _READ_TIMEOUT
            raise ExternalTimeoutError("blob read", timeout) from exc
        except httpx.TransportError as exc:
            raise NetworkError(f"blob read failed: {exc}") from exc

        if response.status_code == 200:
            return response.content
        if response.status_code == 404:
            raise BlobNotFoundError(blob_ref)
        self._raise_for_status(response, "read", blob_ref)
        return b""  # unreachable

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _blob_id_from(body: dict[str, Any]) -> str:
        """Extract the blob id from either publisher response shape."""
        if "newlyCreated" in body:
            return str(body["newlyCreated"]["blobObject"]["blobId"])
        if "alreadyCertified" in body:
            return str(body["alreadyCertified"]["blobId"])
        msg = f"unexpected publisher response: {sorted(body)}"
        raise BlobStoreError(msg)

    @staticmethod
    def _raise_for_status(response: httpx.Response, operation: str, blob_ref: str = "") -> None:
        text = response.text
        lowered = text.lower()
        if response.status_code >= 500 and any(m in lowered for m in _REPLICA_MARKERS):
            raise NotEnoughReplicasError(blob_ref or "upload")
        if response.status_code in (502, 503, 504):
            raise NetworkError(f"blob {operation} gateway error {response.status_code}")
        logger.warning("Blob store %s returned %d: %s", operation, response.status_code, text[:200])
        raise BlobStoreError(f"blob {operation} failed ({response.status_code}): {text[:200]}")

    def _ensure_connected(self) -> tuple[httpx.AsyncClient, httpx.AsyncClient]:
        if self._publisher is None or self._aggregator is None:
            msg = "Blob store not connected. Call connect() first."
            raise BlobStoreError(msg, status_code=500)
        return self._publisher, self._aggregator
