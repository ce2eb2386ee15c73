"""Content service: encrypt, upload and register item payloads."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from doauth.engine.models import AccessKind
from doauth.engine.services.vault_service import authorize_vault, require_item_in_vault
from doauth.utils.calls import call_with_timeout
from doauth.utils.crypto import new_nonce

if TYPE_CHECKING:
    from doauth.engine.client import DOAuthEngine
    from doauth.engine.models import Item

logger = logging.getLogger(__name__)


class ContentService:
    """Writes item payloads through the decrypt oracle and the blob store."""

    def __init__(self, engine: DOAuthEngine) -> None:
        self._engine = engine

    async def store_item(
        self,
        caller: str,
        cap_id: str,
        vault_id: str,
        *,
        name: str,
        plaintext: bytes,
        access_kind: int | AccessKind = AccessKind.VIEW,
        confirm: bool = False,
    ) -> Item:
        """Encrypt *plaintext* under a fresh item identity and add it to the vault.

        With ``confirm`` the blob is read back (with retries) before the item
        record is written.
        """
        async with self._engine.ledger.view() as view:
            await authorize_vault(view, caller, cap_id, vault_id)

        nonce = new_nonce()
        blob_ref = await self._seal_and_upload(vault_id, nonce, plaintext, confirm=confirm)
        return await self._engine.vault_service.create_item(
            caller,
            cap_id,
            vault_id,
            name=name,
            access_kind=access_kind,
            ciphertext_ref=blob_ref,
            nonce=nonce,
        )

    async def replace_item_content(
        self,
        caller: str,
        cap_id: str,
        vault_id: str,
        item_id: str,
        plaintext: bytes,
        *,
        confirm: bool = False,
    ) -> Item:
        """Re-encrypt an item under its existing identity and repoint it."""
        async with self._engine.ledger.view() as view:
            vault, _ = await authorize_vault(view, caller, cap_id, vault_id)
            item = await require_item_in_vault(view, vault, item_id)
        old_ref = item.ciphertext_ref

        blob_ref = await self._seal_and_upload(vault_id, item.nonce, plaintext, confirm=confirm)
        updated = await self._engine.vault_service.update_item(
            caller, cap_id, vault_id, item_id, blob_ref
        )
        cache = self._engine.cache
        if cache is not None:
            await cache.delete(f"ciphertext:{old_ref}")
        return updated

    async def _seal_and_upload(
        self, vault_id: str, nonce: bytes, plaintext: bytes, *, confirm: bool
    ) -> str:
        engine = self._engine
        identity = engine.identity.identity_for(vault_id, nonce)
        sealed = await call_with_timeout(
            engine.keyserver.encrypt(identity, plaintext),
            timeout=engine.config.keyserver.timeout_seconds,
            operation="encrypt",
        )
        blob_ref = await call_with_timeout(
            engine.blob_store.write(sealed.ciphertext),
            timeout=engine.config.blob.timeout_seconds,
            operation="blob upload",
        )
        if confirm:
            await engine.blob_store.confirm_readable(blob_ref)
        logger.info("Uploaded %d ciphertext byte(s) as blob %s", len(sealed.ciphertext), blob_ref)
        return blob_ref
