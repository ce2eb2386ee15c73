"""Tests for the Allow-List Manager."""

from __future__ import annotations

import pytest

from doauth.engine.models import AccessKind
from doauth.errors.doauth_errors import InvalidExpiryError, ValidationError

HOUR_MS = 60 * 60 * 1000


async def test_grant_vault_scoped_entry(engine, stocked, owner, stranger, clock) -> None:
    expires = clock.now_ms() + HOUR_MS
    entry = await engine.allow_list_service.grant_access(
        owner, stocked.cap.id, stocked.vault.id, stranger, AccessKind.VIEW, expires
    )
    assert entry.vault_id == stocked.vault.id
    assert entry.item_id is None
    assert entry.address == stranger
    assert entry.access_kind == AccessKind.VIEW
    assert entry.expires_at == expires
    assert entry.is_active(clock.now_ms())
    assert not entry.is_active(expires)

    listed = await engine.allow_list_service.list_access(stocked.vault.id)
    assert [e.id for e in listed] == [entry.id]


async def test_regrant_merges_to_later_expiry(engine, stocked, owner, stranger, clock) -> None:
    now = clock.now_ms()
    grant = engine.allow_list_service.grant_access
    first = await grant(owner, stocked.cap.id, stocked.vault.id, stranger, 0, now + HOUR_MS)
    later = await grant(owner, stocked.cap.id, stocked.vault.id, stranger, 0, now + 2 * HOUR_MS)
    earlier = await grant(owner, stocked.cap.id, stocked.vault.id, stranger, 0, now + 1000)

    assert first.id == later.id == earlier.id
    assert earlier.expires_at == now + 2 * HOUR_MS
    assert len(await engine.allow_list_service.list_access(stocked.vault.id)) == 1


async def test_kinds_are_separate_entries(engine, stocked, owner, stranger, clock) -> None:
    expires = clock.now_ms() + HOUR_MS
    for kind in (AccessKind.VIEW, AccessKind.EDIT):
        await engine.allow_list_service.grant_access(
            owner, stocked.cap.id, stocked.vault.id, stranger, kind, expires
        )
    entries = await engine.allow_list_service.list_access(stocked.vault.id)
    assert sorted(e.access_kind for e in entries) == [AccessKind.VIEW, AccessKind.EDIT]


@pytest.mark.parametrize("offset", [0, -1, -HOUR_MS])
async def test_expiry_must_be_in_the_future(engine, stocked, owner, stranger, clock, offset):
    with pytest.raises(InvalidExpiryError) as exc_info:
        await engine.allow_list_service.grant_access(
            owner, stocked.cap.id, stocked.vault.id, stranger, 0, clock.now_ms() + offset
        )
    assert exc_info.value.status_code == 400
    assert await engine.allow_list_service.list_access(stocked.vault.id) == []


async def test_rejects_unknown_kind_and_empty_address(engine, stocked, owner, clock) -> None:
    expires = clock.now_ms() + HOUR_MS
    with pytest.raises(ValidationError, match="access kind"):
        await engine.allow_list_service.grant_access(
            owner, stocked.cap.id, stocked.vault.id, "0xabc", 5, expires
        )
    with pytest.raises(ValidationError, match="address"):
        await engine.allow_list_service.grant_access(
            owner, stocked.cap.id, stocked.vault.id, "  ", 0, expires
        )


async def test_item_scoped_entry(engine, stocked, owner, stranger, clock) -> None:
    entry = await engine.allow_list_service.grant_access(
        owner,
        stocked.cap.id,
        stocked.vault.id,
        stranger,
        AccessKind.VIEW,
        clock.now_ms() + HOUR_MS,
        item_id=stocked.item.id,
    )
    assert entry.item_id == stocked.item.id
    assert entry.vault_id is None

    assert await engine.allow_list_service.list_access(stocked.vault.id) == []
    scoped = await engine.allow_list_service.list_access(stocked.vault.id, item_id=stocked.item.id)
    assert [e.id for e in scoped] == [entry.id]


async def test_revoke_removes_matching_entries_only(
    engine, stocked, owner, stranger, clock
) -> None:
    expires = clock.now_ms() + HOUR_MS
    service = engine.allow_list_service
    for kind in (AccessKind.VIEW, AccessKind.EDIT):
        await service.grant_access(owner, stocked.cap.id, stocked.vault.id, stranger, kind, expires)

    removed = await service.revoke_access(
        owner, stocked.cap.id, stocked.vault.id, stranger, AccessKind.VIEW
    )
    assert removed == 1
    remaining = await service.list_access(stocked.vault.id)
    assert [e.access_kind for e in remaining] == [AccessKind.EDIT]

    again = await service.revoke_access(
        owner, stocked.cap.id, stocked.vault.id, stranger, AccessKind.VIEW
    )
    assert again == 0

    decision = await engine.decision_engine.decide(stocked.item, stranger, AccessKind.VIEW)
    assert not decision.allowed


async def test_revoke_normalizes_address_like_grant(
    engine, stocked, owner, stranger, clock
) -> None:
    service = engine.allow_list_service
    await service.grant_access(
        owner, stocked.cap.id, stocked.vault.id, f" {stranger} ", 0, clock.now_ms() + HOUR_MS
    )
    removed = await service.revoke_access(
        owner, stocked.cap.id, stocked.vault.id, f"  {stranger}", AccessKind.VIEW
    )
    assert removed == 1
    assert await service.list_access(stocked.vault.id) == []

    with pytest.raises(ValidationError):
        await service.revoke_access(owner, stocked.cap.id, stocked.vault.id, "  ", 0)


async def test_prune_expired(engine, stocked, owner, stranger, clock) -> None:
    now = clock.now_ms()
    service = engine.allow_list_service
    await service.grant_access(owner, stocked.cap.id, stocked.vault.id, stranger, 0, now + 1000)
    await service.grant_access(
        owner, stocked.cap.id, stocked.vault.id, stranger, 0, now + 1000, item_id=stocked.item.id
    )
    await service.grant_access(owner, stocked.cap.id, stocked.vault.id, stranger, 1, now + HOUR_MS)

    assert await service.prune_expired(owner, stocked.cap.id, stocked.vault.id) == 0
    clock.advance(seconds=1)
    assert await service.prune_expired(owner, stocked.cap.id, stocked.vault.id) == 2
    assert await service.prune_expired(owner, stocked.cap.id, stocked.vault.id) == 0

    remaining = await service.list_access(stocked.vault.id)
    assert [e.access_kind for e in remaining] == [AccessKind.EDIT]
