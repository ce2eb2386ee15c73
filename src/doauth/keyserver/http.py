"""HTTP key server client.

Talks to a key-server gateway exposing:

- POST /v1/encrypt: ``{"identity", "plaintext"}`` -> ``{"ciphertext", "backupKey"}``
- POST /v1/decrypt: ``{"ciphertext", "artifact", "credential"}`` -> ``{"plaintext"}``

Binary fields travel base64-encoded (identity and backup key as hex).
"""

from __future__ import annotations

import base64
import logging
from typing import TYPE_CHECKING, Any

import httpx

from doauth.errors.external_errors import (
    ExternalTimeoutError,
    InsufficientSharesError,
    InvalidArtifactError,
    KeyServerError,
    NetworkError,
)
from doauth.keyserver.client import EncryptedObject

if TYPE_CHECKING:
    from doauth.config.settings import KeyServerConfig
    from doauth.keyserver.artifact import DecryptionAuthorization
    from doauth.session.credential import SessionCredential

logger = logging.getLogger(__name__)


class HttpKeyServer:
    """Async HTTP client for a remote key-server gateway.

    Usage::

        ks = HttpKeyServer(config)
        await ks.connect()
        try:
            obj = await ks.encrypt(identity, b"data")
        finally:
            await ks.close()
    """

    def __init__(
        self, config: KeyServerConfig, *, transport: httpx.AsyncBaseTransport | None = None
    ) -> None:
        self._config = config
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def connect(self) -> None:  # noqa: ASYNC910
        headers = {"Content-Type": "application/json"}
        if self._config.token:
            headers["Authorization"] = f"Bearer {self._config.token}"
        self._client = httpx.AsyncClient(
            base_url=self._config.url.rstrip("/"),
            headers=headers,
            timeout=self._config.timeout_seconds,
            transport=self._transport,
        )

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def reset(self) -> None:
        """Recreate the HTTP client so no pooled connection survives a retry."""
        await self.close()
        await self.connect()

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def encrypt(self, identity: bytes, plaintext: bytes) -> EncryptedObject:
        data = await self._post(
            "/v1/encrypt",
            {"identity": identity.hex(), "plaintext": base64.b64encode(plaintext).decode()},
            "encrypt",
        )
        try:
            return EncryptedObject(
                ciphertext=base64.b64decode(data["ciphertext"]),
                backup_key=bytes.fromhex(data.get("backupKey", "")),
            )
        except (KeyError, TypeError, ValueError) as exc:
            msg = "malformed encrypt response from key server"
            raise KeyServerError(msg) from exc

    async def decrypt(
        self,
        ciphertext: bytes,
        artifact: DecryptionAuthorization,
        credential: SessionCredential,
    ) -> bytes:
        data = await self._post(
            "/v1/decrypt",
            {
                "ciphertext": base64.b64encode(ciphertext).decode(),
                "artifact": artifact.to_dict(),
                "credential": credential.export(),
            },
            "decrypt",
        )
        try:
            return base64.b64decode(data["plaintext"])
        except (KeyError, TypeError, ValueError) as exc:
            msg = "malformed decrypt response from key server"
            raise KeyServerError(msg) from exc

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _post(self, path: str, payload: dict[str, Any], operation: str) -> dict[str, Any]:
        client = self._ensure_connected()
        try:
            response = await client.post(path, json=payload)
        except httpx.TimeoutException as exc:
            timeout = self._config.timeout_seconds
            raise ExternalTimeoutError(f"key server {operation}", timeout) from exc
        except httpx.TransportError as exc:
            raise NetworkError(f"key server {operation} failed: {exc}") from exc

        if response.status_code == 200:
            return response.json()
        self._raise_for_status(response, operation)
        return {}  # unreachable

    @staticmethod
    def _raise_for_status(response: httpx.Response, operation: str) -> None:
        """Map key-server HTTP errors onto the error taxonomy."""
        try:
            body = response.json()
        except ValueError:
            body = {}
        code = str(body.get("code", "")) if isinstance(body, dict) else ""
        detail = str(body.get("error", response.text)) if isinstance(body, dict) else response.text

        status = response.status_code
        if status == 403 or code == "invalid-artifact":
            raise InvalidArtifactError(detail or "decryption authorization rejected")
        if code == "insufficient-shares" or status == 503:
            raise InsufficientSharesError(detail or "not enough key server shares to decrypt")
        if status in (502, 504):
            raise NetworkError(f"key server {operation} gateway error {status}")
        logger.warning("Key server %s returned %d: %s", operation, status, detail)
        raise KeyServerError(f"key server {operation} failed ({status}): {detail}")

    def _ensure_connected(self) -> httpx.AsyncClient:
        if self._client is None:
            msg = "Key server not connected. Call connect() first."
            raise KeyServerError(msg, status_code=500)
        return self._client
