"""Fixtures shared by the service-layer tests."""

from __future__ import annotations

from dataclasses import dataclass

import pytest
from sqlalchemy import select

from doauth.engine.models import (
    AccessEntry,
    AccessKind,
    Item,
    OAuthService,
    Vault,
    VaultCapability,
)

PLAINTEXT = b'{"email": "alice@example.com"}'


@dataclass
class Stocked:
    vault: Vault
    cap: VaultCapability
    item: Item


@pytest.fixture
def stock(engine):
    """Factory: a vault owned by *address* holding one stored item."""

    async def _stock(
        address: str,
        *,
        group_name: str = "V1",
        name: str = "I1",
        plaintext: bytes = PLAINTEXT,
        access_kind: AccessKind = AccessKind.VIEW,
    ) -> Stocked:
        vault, cap = await engine.vault_service.create_vault(address, group_name)
        item = await engine.content_service.store_item(
            address, cap.id, vault.id, name=name, plaintext=plaintext, access_kind=access_kind
        )
        vault = await engine.vault_service.get_vault(vault.id)
        return Stocked(vault=vault, cap=cap, item=item)

    return _stock


@pytest.fixture
async def stocked(stock, owner) -> Stocked:
    return await stock(owner)


@pytest.fixture
async def service(engine, service_addr) -> OAuthService:
    """OAuth service operated by ``service_addr`` declaring View access."""
    svc, _ = await engine.service_registry.register_service(
        service_addr, "client-app", "https://app.example/callback", [AccessKind.VIEW]
    )
    return svc


@pytest.fixture
def all_entries(engine):
    """Every allow-list entry in the ledger, regardless of scope."""

    async def _all_entries() -> list[AccessEntry]:
        async with engine.ledger.view() as view:
            return list(await view.scalars(select(AccessEntry).order_by(AccessEntry.id)))

    return _all_entries


@pytest.fixture
def plaintext() -> bytes:
    """Payload stored by the ``stock`` factory unless overridden."""
    return PLAINTEXT
