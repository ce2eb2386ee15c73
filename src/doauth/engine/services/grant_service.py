"""Grant Issuer: OAuth-style grants from users to registered services.

Lifecycle of a grant::

    NONE -> PENDING_SELECTION -> ISSUED -> ACTIVE | EXPIRED | REVOKED

``PENDING_SELECTION`` exists only client-side (see :meth:`begin_authorization`).
Issuance writes the allow-list entries and the grant record in a single
ledger transaction. ``EXPIRED`` is never stored; it is evaluated against
ledger time whenever the grant is read.
"""

from __future__ import annotations

import enum
import hmac
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING

from sqlalchemy import select

from doauth.engine.models import (
    AccessEntry,
    AccessKind,
    Item,
    OAuthGrant,
    OAuthService,
    Vault,
    VaultCapability,
)
from doauth.engine.services.allow_list_service import grant_access_in
from doauth.engine.services.vault_service import parse_access_kind
from doauth.errors.definitions import (
    ErrGrantNotFound,
    ErrItemNotFound,
    ErrNotGrantAuthorizer,
    ErrServiceNotFound,
)
from doauth.errors.doauth_errors import (
    DanglingReferenceError,
    InvalidCredentialError,
    NoCapabilityForVaultError,
    UnauthorizedError,
    ValidationError,
)
from doauth.utils.crypto import new_bearer_token, new_object_id

if TYPE_CHECKING:
    from collections.abc import Sequence

    from doauth.engine.client import DOAuthEngine
    from doauth.ledger.client import LedgerTransaction, LedgerView
    from doauth.session.credential import SessionCredential

logger = logging.getLogger(__name__)


class GrantStatus(enum.StrEnum):
    """Grant lifecycle states."""

    NONE = "NONE"
    PENDING_SELECTION = "PENDING_SELECTION"
    ISSUED = "ISSUED"
    ACTIVE = "ACTIVE"
    EXPIRED = "EXPIRED"
    REVOKED = "REVOKED"


def grant_status(grant: OAuthGrant, now: int) -> GrantStatus:
    """Evaluate a stored grant against ledger time."""
    if grant.revoked_at is not None:
        return GrantStatus.REVOKED
    if now >= grant.expires_at:
        return GrantStatus.EXPIRED
    return GrantStatus.ACTIVE


async def _vault_kinds(view: LedgerView, grant: OAuthGrant) -> set[tuple[str, int]]:
    """(vault id, access kind) pairs whose vault-level entries *grant* relies on."""
    pairs: set[tuple[str, int]] = set()
    for item_id in grant.resource_ids:
        item = await view.get(Item, item_id)
        if item is None:
            continue
        pairs.add((item.vault_id, int(grant.access_kinds.get(item_id, AccessKind.VIEW))))
    return pairs


@dataclass(frozen=True)
class AuthorizationRequest:
    """The PENDING_SELECTION view shown to a user: the service and their items."""

    service: OAuthService
    user_address: str
    items: list[Item]

    @property
    def status(self) -> GrantStatus:
        return GrantStatus.PENDING_SELECTION

    def selectable(self) -> list[Item]:
        """Items whose own kind the service declared."""
        return [i for i in self.items if i.access_kind in self.service.resource_kinds]


def _normalize_selection(
    selection: Mapping[str, int | AccessKind] | Sequence[str],
) -> dict[str, AccessKind]:
    if isinstance(selection, Mapping):
        chosen = {item_id: parse_access_kind(kind) for item_id, kind in selection.items()}
    else:
        chosen = dict.fromkeys(selection, AccessKind.VIEW)
    if not chosen:
        msg = "at least one item must be selected"
        raise ValidationError(msg)
    return chosen


class GrantService:
    """Issues, inspects and revokes OAuth grants."""

    def __init__(self, engine: DOAuthEngine) -> None:
        self._engine = engine

    # ------------------------------------------------------------------
    # Authorization flow
    # ------------------------------------------------------------------

    async def begin_authorization(self, service_id: str, user: str) -> AuthorizationRequest:
        """Load the service and every item the user controls for selection."""
        service = await self._engine.service_registry.get_service(service_id)
        items: list[Item] = []
        for vault in await self._engine.vault_service.list_vaults_for(user):
            items.extend(await self._engine.vault_service.list_items(vault.id))
        return AuthorizationRequest(service=service, user_address=user, items=items)

    async def issue_grant(
        self,
        caller: str,
        service_id: str,
        selection: Mapping[str, int | AccessKind] | Sequence[str],
        *,
        ttl_ms: int | None = None,
    ) -> OAuthGrant:
        """Authorize a service to access the selected items.

        For every vault touched by the selection the caller's capability is
        looked up and the service owner is added to that vault's allow-list
        with the selected kind, expiring together with the grant. The grant
        record is then written. All of it commits at once or not at all.

        Args:
            caller: Address of the authorizing user.
            service_id: Target OAuth service record.
            selection: Item ids (View access) or a mapping of item id to kind.
            ttl_ms: Grant lifetime; defaults to the configured grant TTL.

        Raises:
            NoCapabilityForVaultError: If the caller holds no capability for a
                vault of a selected item. Nothing is written.
        """
        grant_config = self._engine.config.grant
        ttl = grant_config.default_ttl_ms if ttl_ms is None else ttl_ms
        if ttl <= 0 or ttl > grant_config.max_ttl_ms:
            msg = f"grant ttl must be between 1 and {grant_config.max_ttl_ms} ms"
            raise ValidationError(msg)
        chosen = _normalize_selection(selection)

        async with self._engine.ledger.transaction() as tx:
            service = await tx.require(OAuthService, service_id, ErrServiceNotFound)
            undeclared = {k for k in chosen.values() if int(k) not in service.resource_kinds}
            if undeclared:
                names = ", ".join(sorted(k.name for k in undeclared))
                msg = f"service {service.client_id} did not declare access kind(s) {names}"
                raise ValidationError(msg)

            expires_at = tx.now + ttl

            # vault id -> kinds, in first-seen order
            per_vault: dict[str, set[AccessKind]] = {}
            for item_id, kind in chosen.items():
                item = await tx.require(Item, item_id, ErrItemNotFound)
                per_vault.setdefault(item.vault_id, set()).add(kind)

            for vault_id, kinds in per_vault.items():
                cap = await tx.scalar(
                    select(VaultCapability).where(
                        VaultCapability.vault_id == vault_id,
                        VaultCapability.holder == caller,
                    )
                )
                if cap is None:
                    raise NoCapabilityForVaultError(vault_id)
                vault = await tx.get(Vault, vault_id)
                if vault is None:
                    logger.error("Capability %s points at missing vault %s", cap.id, vault_id)
                    msg = f"capability {cap.id} references missing vault {vault_id}"
                    raise DanglingReferenceError(msg)
                for kind in sorted(kinds):
                    await grant_access_in(tx, vault, service.owner, kind, expires_at)

            grant = await tx.add(
                OAuthGrant(
                    id=new_object_id(),
                    service_id=service.id,
                    client_id=service.client_id,
                    user_address=caller,
                    owner_address=service.owner,
                    resource_ids=list(chosen),
                    access_kinds={item_id: int(kind) for item_id, kind in chosen.items()},
                    expires_at=expires_at,
                    bearer_token=new_bearer_token(),
                )
            )

        logger.info(
            "Grant %s issued by %s to service %s for %d item(s) until %d",
            grant.id,
            caller,
            service.client_id,
            len(grant.resource_ids),
            grant.expires_at,
        )
        metrics = self._engine.metrics
        if metrics is not None:
            metrics.grants_issued.inc()
        return grant

    async def exchange_for_session_credential(
        self,
        grant_id: str,
        bearer_token: str,
        credential: SessionCredential,
        *,
        public_key: bytes | None = None,
        signature: bytes | None = None,
    ) -> str:
        """Turn a grant's bearer token plus a signed credential into an access token.

        The credential must be bound to the grant and to the grant's recipient
        address. If ``public_key``/``signature`` are given they are attached
        first. The bearer token alone never decrypts anything; the returned
        token is the exported credential.

        Raises:
            UnauthorizedError: If the bearer token does not match.
            InvalidCredentialError: If the credential is not usable for this grant.
        """
        async with self._engine.ledger.view() as view:
            grant = await view.require(OAuthGrant, grant_id, ErrGrantNotFound)
            now = view.now
        if not hmac.compare_digest(grant.bearer_token.encode(), (bearer_token or "").encode()):
            msg = "bearer token does not match the grant"
            raise UnauthorizedError(msg, status_code=401)
        status = grant_status(grant, now)
        if status is not GrantStatus.ACTIVE:
            msg = f"grant is {status.value.lower()}"
            raise InvalidCredentialError(msg)
        if credential.grant_id != grant.id:
            msg = "session credential is not bound to this grant"
            raise InvalidCredentialError(msg)
        if credential.address != grant.owner_address:
            msg = "session credential is not bound to the grant recipient"
            raise InvalidCredentialError(msg)

        if public_key is not None and signature is not None:
            credential.set_signature(public_key, signature)
        session = self._engine.config.session
        credential.verify(
            now_ms=now, package_id=session.package_id, max_ttl_min=session.max_ttl_minutes
        )
        logger.info("Grant %s exchanged for a session credential", grant.id)
        return credential.export()

    # ------------------------------------------------------------------
    # Inspection and revocation
    # ------------------------------------------------------------------

    async def get_grant(self, grant_id: str) -> OAuthGrant:
        async with self._engine.ledger.view() as view:
            return await view.require(OAuthGrant, grant_id, ErrGrantNotFound)

    async def status(self, grant_id: str, now: int | None = None) -> GrantStatus:
        """Current status of a grant; ``now`` defaults to ledger time."""
        grant = await self.get_grant(grant_id)
        return grant_status(grant, self._engine.ledger.now() if now is None else now)

    async def revoke_grant(self, caller: str, grant_id: str) -> OAuthGrant:
        """Revoke a grant before it expires. Idempotent.

        Only the user who authorized the grant may revoke it. The vault-level
        entries written at issuance are withdrawn in the same transaction, so
        the recipient loses access whether or not its credential names the
        grant. An entry another active grant from the same user still relies
        on is cut back to that grant's expiry instead of being removed.
        """
        withdrawn = 0
        async with self._engine.ledger.transaction() as tx:
            grant = await tx.require(OAuthGrant, grant_id, ErrGrantNotFound)
            if grant.user_address != caller:
                raise ErrNotGrantAuthorizer
            if grant.revoked_at is None:
                grant.revoked_at = tx.now
                await tx.flush()
                withdrawn = await self._withdraw_entries(tx, grant)
        logger.info(
            "Grant %s revoked by %s (%d allow-list entries withdrawn)", grant_id, caller, withdrawn
        )
        return grant

    async def _withdraw_entries(self, tx: LedgerTransaction, grant: OAuthGrant) -> int:
        others = await tx.scalars(
            select(OAuthGrant).where(
                OAuthGrant.user_address == grant.user_address,
                OAuthGrant.owner_address == grant.owner_address,
                OAuthGrant.id != grant.id,
                OAuthGrant.revoked_at.is_(None),
                OAuthGrant.expires_at > tx.now,
            )
        )
        # (vault, kind) -> latest expiry among the grants that stay active
        still_needed: dict[tuple[str, int], int] = {}
        for other in others:
            for pair in await _vault_kinds(tx, other):
                still_needed[pair] = max(still_needed.get(pair, 0), other.expires_at)

        changed = 0
        for vault_id, kind in sorted(await _vault_kinds(tx, grant)):
            entry = await tx.scalar(
                select(AccessEntry).where(
                    AccessEntry.vault_id == vault_id,
                    AccessEntry.address == grant.owner_address,
                    AccessEntry.access_kind == kind,
                )
            )
            if entry is None:
                continue
            keep_until = still_needed.get((vault_id, kind))
            if keep_until is None:
                await tx.delete(entry)
            elif entry.expires_at > keep_until:
                entry.expires_at = keep_until
                await tx.flush()
            else:
                continue
            changed += 1
        return changed

    async def list_grants_for_user(self, user_address: str) -> list[OAuthGrant]:
        """Grants authorized by *user_address*, newest first."""
        async with self._engine.ledger.view() as view:
            grants = await view.scalars(
                select(OAuthGrant)
                .where(OAuthGrant.user_address == user_address)
                .order_by(OAuthGrant.created_at.desc(), OAuthGrant.id)
            )
        return list(grants)

    async def list_grants_for_recipient(self, owner_address: str) -> list[OAuthGrant]:
        """Grants whose allow-list recipient is *owner_address*, newest first."""
        async with self._engine.ledger.view() as view:
            grants = await view.scalars(
                select(OAuthGrant)
                .where(OAuthGrant.owner_address == owner_address)
                .order_by(OAuthGrant.created_at.desc(), OAuthGrant.id)
            )
        return list(grants)
