"""Vault Registry: vaults, their items and the capabilities guarding them."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from sqlalchemy import delete, select

from doauth.engine.models import AccessEntry, AccessKind, Item, Vault, VaultCapability
from doauth.errors.definitions import (
    ErrCapabilityMismatch,
    ErrCapabilityNotHeld,
    ErrItemNotFound,
    ErrVaultNotFound,
)
from doauth.errors.doauth_errors import (
    DanglingReferenceError,
    ValidationError,
    VaultNotEmptyError,
)
from doauth.utils.crypto import new_object_id

if TYPE_CHECKING:
    from doauth.engine.client import DOAuthEngine
    from doauth.ledger.client import LedgerView

logger = logging.getLogger(__name__)


async def authorize_vault(
    tx: LedgerView, caller: str, cap_id: str, vault_id: str
) -> tuple[Vault, VaultCapability]:
    """Check that *caller* presents the capability for *vault_id*.

    The presented capability is the only source of authority: it must exist,
    target this exact vault and be held by the caller.

    Raises:
        UnauthorizedError: On any capability mismatch.
        NotFoundError: If the vault does not exist.
    """
    cap = await tx.get(VaultCapability, cap_id)
    if cap is None or not cap.authorizes(vault_id):
        raise ErrCapabilityMismatch
    if cap.holder != caller:
        raise ErrCapabilityNotHeld
    vault = await tx.require(Vault, vault_id, ErrVaultNotFound)
    return vault, cap


async def require_item_in_vault(tx: LedgerView, vault: Vault, item_id: str) -> Item:
    """Load *item_id* and confirm it belongs to *vault*.

    An item of another vault is a capability mismatch; an item whose back
    reference and vault listing disagree is a dangling reference.
    """
    item = await tx.require(Item, item_id, ErrItemNotFound)
    if item.vault_id != vault.id:
        raise ErrCapabilityMismatch
    if item.id not in vault.item_ids:
        logger.error("Item %s points at vault %s which does not list it", item.id, vault.id)
        msg = f"item {item.id} is not listed by vault {vault.id}"
        raise DanglingReferenceError(msg)
    return item


def _require_text(value: str, field: str) -> str:
    value = (value or "").strip()
    if not value:
        msg = f"{field} must not be empty"
        raise ValidationError(msg)
    return value


def parse_access_kind(value: int | AccessKind) -> AccessKind:
    """Coerce user input into an :class:`AccessKind`.

    Raises:
        ValidationError: If the value is not a known kind.
    """
    kind = AccessKind.parse(value)
    if kind is None:
        msg = f"unknown access kind: {value!r}"
        raise ValidationError(msg)
    return kind


class VaultService:
    """Business logic for vaults and items.

    Every mutation takes the caller's address and the capability id it
    presents; nothing is authorized by comparing the caller to ``vault.owner``.
    """

    def __init__(self, engine: DOAuthEngine) -> None:
        self._engine = engine

    # ------------------------------------------------------------------
    # Vaults
    # ------------------------------------------------------------------

    async def create_vault(self, caller: str, group_name: str) -> tuple[Vault, VaultCapability]:
        """Mint a vault and its capability in one transaction.

        Returns:
            The new vault and the capability delivered to *caller*.
        """
        group_name = _require_text(group_name, "group_name")
        owner = _require_text(caller, "caller")
        async with self._engine.ledger.transaction() as tx:
            vault = await tx.add(
                Vault(id=new_object_id(), owner=owner, group_name=group_name, item_ids=[])
            )
            cap = await tx.add(VaultCapability(id=new_object_id(), vault_id=vault.id, holder=owner))
        logger.info("Vault %s created for %s", vault.id, owner)
        return vault, cap

    async def delete_vault(self, caller: str, cap_id: str, vault_id: str) -> None:
        """Destroy an empty vault and burn its capability.

        Raises:
            VaultNotEmptyError: If the vault still lists items.
        """
        async with self._engine.ledger.transaction() as tx:
            vault, cap = await authorize_vault(tx, caller, cap_id, vault_id)
            if vault.item_ids:
                raise VaultNotEmptyError(vault.id, len(vault.item_ids))
            await tx.execute(delete(AccessEntry).where(AccessEntry.vault_id == vault.id))
            await tx.delete(cap)
            await tx.delete(vault)
        logger.info("Vault %s deleted", vault_id)

    async def transfer_vault_capability(
        self, caller: str, cap_id: str, new_holder: str
    ) -> VaultCapability:
        """Hand the vault capability (and with it vault ownership) to *new_holder*."""
        new_holder = _require_text(new_holder, "new_holder")
        async with self._engine.ledger.transaction() as tx:
            cap = await tx.get(VaultCapability, cap_id)
            if cap is None:
                raise ErrCapabilityMismatch
            vault, cap = await authorize_vault(tx, caller, cap_id, cap.vault_id)
            cap.holder = new_holder
            vault.owner = new_holder
            await tx.flush()
        logger.info("Capability for vault %s transferred to %s", vault.id, new_holder)
        return cap

    async def get_vault(self, vault_id: str) -> Vault:
        """Raises ``NotFoundError`` for unknown ids."""
        async with self._engine.ledger.view() as view:
            return await view.require(Vault, vault_id, ErrVaultNotFound)

    async def get_vault_capability(self, cap_id: str) -> VaultCapability | None:
        async with self._engine.ledger.view() as view:
            return await view.get(VaultCapability, cap_id)

    async def find_vault_capability(self, holder: str, vault_id: str) -> VaultCapability | None:
        """Capability for *vault_id* currently held by *holder*, if any."""
        async with self._engine.ledger.view() as view:
            return await view.scalar(
                select(VaultCapability).where(
                    VaultCapability.vault_id == vault_id,
                    VaultCapability.holder == holder,
                )
            )

    async def list_vault_capabilities(self, holder: str) -> list[VaultCapability]:
        async with self._engine.ledger.view() as view:
            caps = await view.scalars(
                select(VaultCapability)
                .where(VaultCapability.holder == holder)
                .order_by(VaultCapability.created_at, VaultCapability.id)
            )
        return list(caps)

    async def list_vaults_for(self, address: str) -> list[Vault]:
        """Vaults whose capability *address* holds."""
        async with self._engine.ledger.view() as view:
            vaults = await view.scalars(
                select(Vault)
                .join(VaultCapability, VaultCapability.vault_id == Vault.id)
                .where(VaultCapability.holder == address)
                .order_by(Vault.created_at, Vault.id)
            )
        return list(vaults)

    # ------------------------------------------------------------------
    # Items
    # ------------------------------------------------------------------

    async def create_item(
        self,
        caller: str,
        cap_id: str,
        vault_id: str,
        *,
        name: str,
        access_kind: int | AccessKind,
        ciphertext_ref: str,
        nonce: bytes,
    ) -> Item:
        """Create an item and append it to the vault's item list."""
        name = _require_text(name, "name")
        ciphertext_ref = _require_text(ciphertext_ref, "ciphertext_ref")
        kind = parse_access_kind(access_kind)
        if not nonce:
            msg = "nonce must not be empty"
            raise ValidationError(msg)

        async with self._engine.ledger.transaction() as tx:
            vault, _ = await authorize_vault(tx, caller, cap_id, vault_id)
            item = await tx.add(
                Item(
                    id=new_object_id(),
                    vault_id=vault.id,
                    name=name,
                    access_kind=int(kind),
                    ciphertext_ref=ciphertext_ref,
                    nonce=bytes(nonce),
                )
            )
            vault.item_ids = [*vault.item_ids, item.id]
            await tx.flush()
        logger.info("Item %s added to vault %s", item.id, vault_id)
        return item

    async def update_item(
        self, caller: str, cap_id: str, vault_id: str, item_id: str, ciphertext_ref: str
    ) -> Item:
        """Point an item at new ciphertext. Nonce and access kind never change."""
        ciphertext_ref = _require_text(ciphertext_ref, "ciphertext_ref")
        async with self._engine.ledger.transaction() as tx:
            vault, _ = await authorize_vault(tx, caller, cap_id, vault_id)
            item = await require_item_in_vault(tx, vault, item_id)
            item.ciphertext_ref = ciphertext_ref
            await tx.flush()
        logger.info("Item %s ciphertext replaced", item_id)
        return item

    async def delete_item(self, caller: str, cap_id: str, vault_id: str, item_id: str) -> None:
        """Remove an item, its item-scoped allow-list and its vault listing."""
        async with self._engine.ledger.transaction() as tx:
            vault, _ = await authorize_vault(tx, caller, cap_id, vault_id)
            item = await require_item_in_vault(tx, vault, item_id)
            await tx.execute(delete(AccessEntry).where(AccessEntry.item_id == item.id))
            vault.item_ids = [i for i in vault.item_ids if i != item.id]
            await tx.flush()
            await tx.delete(item)
        logger.info("Item %s removed from vault %s", item_id, vault_id)

    async def get_item(self, item_id: str) -> Item:
        """Raises ``NotFoundError`` for unknown ids."""
        async with self._engine.ledger.view() as view:
            return await view.require(Item, item_id, ErrItemNotFound)

    async def get_items(self, item_ids: list[str]) -> list[Item]:
        """Fetch several items concurrently, preserving input order."""
        return list(await asyncio.gather(*(self.get_item(i) for i in item_ids)))

    async def list_items(self, vault_id: str) -> list[Item]:
        """Items of a vault in the vault's own order."""
        async with self._engine.ledger.view() as view:
            vault = await view.require(Vault, vault_id, ErrVaultNotFound)
            items = await view.scalars(select(Item).where(Item.vault_id == vault.id))
        by_id = {item.id: item for item in items}
        missing = [i for i in vault.item_ids if i not in by_id]
        if missing:
            logger.error("Vault %s lists missing items %s", vault.id, missing)
            msg = f"vault {vault.id} lists {len(missing)} missing item(s)"
            raise DanglingReferenceError(msg)
        return [by_id[i] for i in vault.item_ids]
