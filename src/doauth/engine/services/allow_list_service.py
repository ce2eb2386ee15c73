"""Allow-List Manager: per-address access entries on vaults and items."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy import ColumnElement, delete, or_, select

from doauth.engine.models import AccessEntry, AccessKind, Item, Vault
from doauth.engine.services.vault_service import (
    authorize_vault,
    parse_access_kind,
    require_item_in_vault,
)
from doauth.errors.definitions import ErrVaultNotFound
from doauth.errors.doauth_errors import InvalidExpiryError, ValidationError

if TYPE_CHECKING:
    from doauth.engine.client import DOAuthEngine
    from doauth.ledger.client import LedgerTransaction

logger = logging.getLogger(__name__)


def _normalize_address(address: str) -> str:
    address = (address or "").strip()
    if not address:
        msg = "address must not be empty"
        raise ValidationError(msg)
    return address


def _scope_filter(vault: Vault, item: Item | None) -> ColumnElement[bool]:
    if item is None:
        return AccessEntry.vault_id == vault.id
    return AccessEntry.item_id == item.id


async def grant_access_in(
    tx: LedgerTransaction,
    vault: Vault,
    address: str,
    access_kind: AccessKind,
    expires_at: int,
    *,
    item: Item | None = None,
) -> AccessEntry:
    """Add (or extend) an entry inside an already-authorized transaction.

    An existing entry for the same scope, address and kind is extended to the
    later of the two expiries instead of being duplicated.

    Raises:
        InvalidExpiryError: If *expires_at* is not after ledger time.
    """
    if expires_at <= tx.now:
        raise InvalidExpiryError(expires_at, tx.now)
    address = _normalize_address(address)

    existing = await tx.scalar(
        select(AccessEntry).where(
            _scope_filter(vault, item),
            AccessEntry.address == address,
            AccessEntry.access_kind == int(access_kind),
        )
    )
    if existing is not None:
        existing.expires_at = max(existing.expires_at, expires_at)
        await tx.flush()
        return existing

    return await tx.add(
        AccessEntry(
            vault_id=vault.id if item is None else None,
            item_id=item.id if item is not None else None,
            address=address,
            access_kind=int(access_kind),
            expires_at=expires_at,
        )
    )


class AllowListService:
    """Mutates vault- and item-scoped allow-lists under a vault capability."""

    def __init__(self, engine: DOAuthEngine) -> None:
        self._engine = engine

    async def grant_access(
        self,
        caller: str,
        cap_id: str,
        vault_id: str,
        address: str,
        access_kind: int | AccessKind,
        expires_at: int,
        *,
        item_id: str | None = None,
    ) -> AccessEntry:
        """Grant *address* one access kind until *expires_at* (epoch millis).

        With ``item_id`` the entry is scoped to that item, otherwise to the
        whole vault.
        """
        kind = parse_access_kind(access_kind)
        async with self._engine.ledger.transaction() as tx:
            vault, _ = await authorize_vault(tx, caller, cap_id, vault_id)
            item = await require_item_in_vault(tx, vault, item_id) if item_id else None
            entry = await grant_access_in(tx, vault, address, kind, expires_at, item=item)
        logger.info(
            "Granted %s on %s to %s until %d",
            kind.name,
            item_id or vault_id,
            entry.address,
            entry.expires_at,
        )
        return entry

    async def revoke_access(
        self,
        caller: str,
        cap_id: str,
        vault_id: str,
        address: str,
        access_kind: int | AccessKind,
        *,
        item_id: str | None = None,
    ) -> int:
        """Remove every entry matching (scope, address, kind).

        Issued grants are left untouched; they stop working because access is
        always checked against the live allow-list.

        Returns:
            Number of entries removed.
        """
        kind = parse_access_kind(access_kind)
        address = _normalize_address(address)
        async with self._engine.ledger.transaction() as tx:
            vault, _ = await authorize_vault(tx, caller, cap_id, vault_id)
            item = await require_item_in_vault(tx, vault, item_id) if item_id else None
            removed = await tx.execute(
                delete(AccessEntry).where(
                    _scope_filter(vault, item),
                    AccessEntry.address == address,
                    AccessEntry.access_kind == int(kind),
                )
            )
        logger.info(
            "Revoked %s on %s from %s (%d entries)",
            kind.name,
            item_id or vault_id,
            address,
            removed,
        )
        return removed

    async def list_access(self, vault_id: str, *, item_id: str | None = None) -> list[AccessEntry]:
        """Entries attached to a vault, or to one of its items."""
        async with self._engine.ledger.view() as view:
            vault = await view.require(Vault, vault_id, ErrVaultNotFound)
            item = await require_item_in_vault(view, vault, item_id) if item_id else None
            entries = await view.scalars(
                select(AccessEntry).where(_scope_filter(vault, item)).order_by(AccessEntry.id)
            )
        return list(entries)

    async def prune_expired(self, caller: str, cap_id: str, vault_id: str) -> int:
        """Drop entries already expired at ledger time, on the vault and its items.

        Idempotent housekeeping. Expired entries never allow anything, so
        pruning cannot change a decision.
        """
        async with self._engine.ledger.transaction() as tx:
            vault, _ = await authorize_vault(tx, caller, cap_id, vault_id)
            scope = AccessEntry.vault_id == vault.id
            if vault.item_ids:
                scope = or_(scope, AccessEntry.item_id.in_(vault.item_ids))
            removed = await tx.execute(
                delete(AccessEntry).where(scope, AccessEntry.expires_at <= tx.now)
            )
        if removed:
            logger.info("Pruned %d expired entries from vault %s", removed, vault_id)
        return removed
