"""Decryption Gate: the read path guarding plaintext.

Order of work for one request:

1. load item and vault (local)
2. validate the session credential against ledger time (local)
3. grant binding and access decision for ``View`` (local)
4. fetch ciphertext from the blob store (external, cached)
5. build and sign the decryption authorization artifact
6. ask the decrypt oracle for plaintext (external)

Steps 1-3 fail closed and a denial stops the request before any external
call. External failures surface as typed, retryable-or-fatal errors; the
gate itself never retries.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from doauth.engine.models import AccessKind, Item, OAuthGrant, Vault
from doauth.engine.services.access_decision import DenyReason
from doauth.engine.services.grant_service import GrantStatus, grant_status
from doauth.errors.definitions import ErrCredentialAddressMismatch, ErrItemNotFound
from doauth.errors.doauth_errors import (
    AccessDeniedError,
    DanglingReferenceError,
    DOAuthError,
    ValidationError,
)
from doauth.keyserver.artifact import DecryptionAuthorization
from doauth.utils.calls import call_with_timeout

if TYPE_CHECKING:
    from doauth.cache.client import CacheClient
    from doauth.engine.client import DOAuthEngine
    from doauth.session.credential import SessionCredential

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DecryptResult:
    item_id: str
    vault_id: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


class DecryptionGate:
    """Checks access, then fetches and decrypts one item.

    ``cache`` holds ciphertext only; pass None to disable it.
    """

    def __init__(self, engine: DOAuthEngine, *, cache: CacheClient | None = None) -> None:
        self._engine = engine
        self._cache = cache

    async def decrypt(
        self,
        *,
        item_id: str,
        vault_id: str,
        credential: SessionCredential,
        requester_address: str,
    ) -> DecryptResult:
        """Return the plaintext of *item_id* for the credential holder.

        Raises:
            InvalidCredentialError: Credential expired, unsigned or mis-signed.
            AccessDeniedError: The decision (or grant binding) denied access.
            DanglingReferenceError: Ledger records are inconsistent.
            NetworkError, ExternalTimeoutError, BlobNotFoundError,
            NotEnoughReplicasError, InsufficientSharesError: Retryable
                external failures.
        """
        engine = self._engine
        config = engine.config

        async with engine.ledger.view() as view:
            item = await view.require(Item, item_id, ErrItemNotFound)
            if item.vault_id != vault_id:
                msg = f"item {item_id} does not belong to vault {vault_id}"
                raise ValidationError(msg)
            vault = await view.get(Vault, item.vault_id)
            if vault is None:
                logger.error("Item %s references missing vault %s", item.id, item.vault_id)
                msg = f"item {item.id} references missing vault {item.vault_id}"
                raise DanglingReferenceError(msg)
            now = view.now

        if requester_address != credential.address:
            raise ErrCredentialAddressMismatch
        credential.verify(
            now_ms=now,
            package_id=config.session.package_id,
            max_ttl_min=config.session.max_ttl_minutes,
        )

        await self._authorize(item, credential.address, credential.grant_id, now)

        ciphertext = await self._fetch_ciphertext(item.ciphertext_ref)

        identity = engine.identity.identity_for(vault.id, item.nonce)
        artifact = DecryptionAuthorization.build(
            credential,
            identity=identity,
            vault_id=vault.id,
            item_id=item.id,
            issued_at=now,
        )

        metrics = engine.metrics
        if metrics is not None:
            with metrics.track_decrypt():
                plaintext = await self._oracle_decrypt(ciphertext, artifact, credential)
        else:
            plaintext = await self._oracle_decrypt(ciphertext, artifact, credential)

        logger.debug("Released item %s to %s", item.id, credential.address)
        return DecryptResult(item_id=item.id, vault_id=vault.id, data=plaintext)

    async def approve_artifact(self, artifact: DecryptionAuthorization) -> bool:
        """Re-run the access check for an artifact on behalf of a key server."""
        try:
            async with self._engine.ledger.view() as view:
                item = await view.require(Item, artifact.item_id, ErrItemNotFound)
                now = view.now
            if item.vault_id != artifact.vault_id:
                return False
            expected = self._engine.identity.identity_for(item.vault_id, item.nonce)
            if expected != artifact.identity:
                return False
            await self._authorize(item, artifact.requester, artifact.grant_id, now)
        except DOAuthError as exc:
            logger.debug("Artifact for item %s not approved: %s", artifact.item_id, exc.code)
            return False
        return True

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _authorize(self, item: Item, requester: str, grant_id: str | None, now: int) -> None:
        if grant_id is not None:
            await self._check_grant(item, requester, grant_id, now)
        decision = await self._engine.decision_engine.decide(item, requester, AccessKind.VIEW, now)
        if not decision.allowed:
            logger.info("Access denied for %s on item %s: %s", requester, item.id, decision.reason)
            raise AccessDeniedError(str(decision.reason))

    async def _check_grant(self, item: Item, requester: str, grant_id: str, now: int) -> None:
        async with self._engine.ledger.view() as view:
            grant = await view.get(OAuthGrant, grant_id)
        if grant is None:
            raise AccessDeniedError(DenyReason.UNKNOWN_GRANT)
        if grant.owner_address != requester:
            raise AccessDeniedError(DenyReason.NOT_IN_GRANT)
        status = grant_status(grant, now)
        if status is GrantStatus.REVOKED:
            raise AccessDeniedError(DenyReason.GRANT_REVOKED)
        if status is GrantStatus.EXPIRED:
            raise AccessDeniedError(DenyReason.GRANT_EXPIRED)
        if item.id not in grant.resource_ids or grant.access_kinds.get(item.id) != AccessKind.VIEW:
            raise AccessDeniedError(DenyReason.NOT_IN_GRANT)

    async def _fetch_ciphertext(self, blob_ref: str) -> bytes:
        cache_key = f"ciphertext:{blob_ref}"
        metrics = self._engine.metrics
        if self._cache is not None:
            cached = await self._cache.get(cache_key)
            if metrics is not None:
                metrics.record_cache(hit=cached is not None)
            if cached is not None:
                return cached

        timeout = self._engine.config.blob.timeout_seconds
        read = self._engine.blob_store.read(blob_ref)
        if metrics is not None:
            with metrics.track_blob_read():
                data = await call_with_timeout(read, timeout=timeout, operation="blob read")
        else:
            data = await call_with_timeout(read, timeout=timeout, operation="blob read")

        if self._cache is not None:
            await self._cache.set(cache_key, data)
        return data

    async def _oracle_decrypt(
        self,
        ciphertext: bytes,
        artifact: DecryptionAuthorization,
        credential: SessionCredential,
    ) -> bytes:
        return await call_with_timeout(
            self._engine.keyserver.decrypt(ciphertext, artifact, credential),
            timeout=self._engine.config.keyserver.timeout_seconds,
            operation="decrypt",
        )
