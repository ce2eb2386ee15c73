"""Access Decision Engine.

:func:`evaluate` is a pure function of the records handed to it and the
ledger time reading. :class:`AccessDecisionEngine` loads those records from
the ledger and always reads time fresh, so an expiry is never judged against
a stale clock.

Rules, in order:

1. The item must be listed by the vault it points at (else DanglingReference).
2. The vault owner is allowed every kind, even with an empty allow-list.
3. Otherwise some vault- or item-scoped entry must match the requester and
   the exact kind requested and satisfy ``now < expires_at``.

Anything that cannot be read cleanly is skipped, never counted as a match.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from sqlalchemy import or_, select

from doauth.engine.models import AccessEntry, AccessKind, Item, Vault
from doauth.errors.definitions import ErrItemNotFound
from doauth.errors.doauth_errors import DanglingReferenceError

if TYPE_CHECKING:
    from collections.abc import Iterable

    from doauth.engine.client import DOAuthEngine

logger = logging.getLogger(__name__)


class DenyReason(enum.StrEnum):
    """Why a request was denied."""

    NO_MATCHING_GRANT = "NoMatchingGrant"
    GRANT_EXPIRED = "GrantExpired"
    GRANT_REVOKED = "GrantRevoked"
    NOT_IN_GRANT = "NotInGrant"
    UNKNOWN_GRANT = "UnknownGrant"


class DecisionBasis(enum.StrEnum):
    """What an ALLOW rested on."""

    OWNER = "owner"
    VAULT_ENTRY = "vault_entry"
    ITEM_ENTRY = "item_entry"


@dataclass(frozen=True, slots=True)
class Decision:
    """Outcome of one access check."""

    allowed: bool
    access_kind: AccessKind
    reason: DenyReason | None = None
    basis: DecisionBasis | None = None
    expires_at: int | None = None

    @classmethod
    def allow(
        cls, kind: AccessKind, basis: DecisionBasis, expires_at: int | None = None
    ) -> Decision:
        return cls(allowed=True, access_kind=kind, basis=basis, expires_at=expires_at)

    @classmethod
    def deny(cls, kind: AccessKind, reason: DenyReason) -> Decision:
        return cls(allowed=False, access_kind=kind, reason=reason)


def _entry_matches(
    entry: AccessEntry, requester: str, kind: AccessKind, now: int, scope: tuple[str, str]
) -> bool:
    field, target = scope
    if getattr(entry, field) != target:
        logger.warning("Skipping access entry %s outside scope %s=%s", entry.id, field, target)
        return False
    if AccessKind.parse(entry.access_kind) is None:
        logger.warning("Skipping access entry %s with unknown kind %r", entry.id, entry.access_kind)
        return False
    if isinstance(entry.expires_at, bool) or not isinstance(entry.expires_at, int):
        logger.warning("Skipping access entry %s with malformed expiry", entry.id)
        return False
    return entry.address == requester and entry.access_kind == kind and now < entry.expires_at


def evaluate(
    item: Item,
    vault: Vault | None,
    requester: str,
    kind: AccessKind,
    now: int,
    *,
    vault_entries: Iterable[AccessEntry] = (),
    item_entries: Iterable[AccessEntry] = (),
) -> Decision:
    """Decide whether *requester* may exercise *kind* on *item* at time *now*.

    Raises:
        DanglingReferenceError: If *vault* is missing or does not list *item*.
    """
    if vault is None or vault.id != item.vault_id:
        logger.error("Item %s references missing vault %s", item.id, item.vault_id)
        msg = f"item {item.id} references missing vault {item.vault_id}"
        raise DanglingReferenceError(msg)
    if item.id not in (vault.item_ids or []):
        logger.error("Item %s is not listed by its vault %s", item.id, vault.id)
        msg = f"item {item.id} is not listed by vault {vault.id}"
        raise DanglingReferenceError(msg)

    if requester and vault.owner == requester:
        return Decision.allow(kind, DecisionBasis.OWNER)

    for entry in vault_entries:
        if _entry_matches(entry, requester, kind, now, ("vault_id", vault.id)):
            return Decision.allow(kind, DecisionBasis.VAULT_ENTRY, entry.expires_at)
    for entry in item_entries:
        if _entry_matches(entry, requester, kind, now, ("item_id", item.id)):
            return Decision.allow(kind, DecisionBasis.ITEM_ENTRY, entry.expires_at)
    return Decision.deny(kind, DenyReason.NO_MATCHING_GRANT)


class AccessDecisionEngine:
    """Loads the records a decision needs and runs :func:`evaluate`."""

    def __init__(self, engine: DOAuthEngine) -> None:
        self._engine = engine

    async def decide(
        self, item: Item, requester: str, kind: AccessKind, now: int | None = None
    ) -> Decision:
        """Decide for an already-loaded item.

        ``now`` defaults to a fresh ledger time reading.
        """
        async with self._engine.ledger.view() as view:
            vault = await view.get(Vault, item.vault_id)
            entries: list[AccessEntry] = []
            if vault is not None:
                entries = list(
                    await view.scalars(
                        select(AccessEntry).where(
                            AccessEntry.address == requester,
                            or_(
                                AccessEntry.vault_id == vault.id,
                                AccessEntry.item_id == item.id,
                            ),
                        )
                    )
                )
            at = view.now if now is None else now

        decision = evaluate(
            item,
            vault,
            requester,
            kind,
            at,
            vault_entries=[e for e in entries if e.vault_id is not None],
            item_entries=[e for e in entries if e.item_id is not None],
        )
        logger.debug(
            "Decision for %s on %s (%s): %s",
            requester,
            item.id,
            kind.name,
            "ALLOW" if decision.allowed else f"DENY({decision.reason})",
        )
        metrics = self._engine.metrics
        if metrics is not None:
            metrics.record_decision(decision)
        return decision

    async def decide_by_id(
        self, item_id: str, requester: str, kind: AccessKind, now: int | None = None
    ) -> Decision:
        async with self._engine.ledger.view() as view:
            item = await view.require(Item, item_id, ErrItemNotFound)
        return await self.decide(item, requester, kind, now)
