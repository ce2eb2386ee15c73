"""Tests for the Access Decision Engine."""

from __future__ import annotations

import pytest

from doauth.engine.models import AccessEntry, AccessKind, Item, Vault
from doauth.engine.services.access_decision import DecisionBasis, DenyReason, evaluate
from doauth.errors.doauth_errors import DanglingReferenceError

OWNER = "0x" + "0a" * 32
REQUESTER = "0x" + "0b" * 32
T = 1_700_000_000_000


def _vault(**overrides) -> Vault:
    values = {"id": "0xvault", "owner": OWNER, "group_name": "V", "item_ids": ["0xitem"]}
    values.update(overrides)
    return Vault(**values)


def _item(**overrides) -> Item:
    values = {
        "id": "0xitem",
        "vault_id": "0xvault",
        "name": "I",
        "access_kind": 0,
        "ciphertext_ref": "b1",
        "nonce": b"\x01",
    }
    values.update(overrides)
    return Item(**values)


def _entry(entry_id: int = 1, **overrides) -> AccessEntry:
    values = {
        "id": entry_id,
        "vault_id": "0xvault",
        "item_id": None,
        "address": REQUESTER,
        "access_kind": int(AccessKind.VIEW),
        "expires_at": T,
    }
    values.update(overrides)
    return AccessEntry(**values)


class TestEvaluate:
    @pytest.mark.parametrize("kind", list(AccessKind))
    def test_owner_allowed_with_empty_allow_list(self, kind: AccessKind) -> None:
        decision = evaluate(_item(), _vault(), OWNER, kind, T)
        assert decision.allowed
        assert decision.basis == DecisionBasis.OWNER
        assert decision.access_kind == kind

    @pytest.mark.parametrize(
        ("now", "allowed"), [(T - 60_000, True), (T - 1, True), (T, False), (T + 1, False)]
    )
    def test_expiry_boundary(self, now: int, allowed: bool) -> None:
        decision = evaluate(
            _item(), _vault(), REQUESTER, AccessKind.VIEW, now, vault_entries=[_entry()]
        )
        assert decision.allowed is allowed
        if not allowed:
            assert decision.reason == DenyReason.NO_MATCHING_GRANT

    @pytest.mark.parametrize(
        ("granted", "requested"),
        [
            (AccessKind.VIEW, AccessKind.EDIT),
            (AccessKind.EDIT, AccessKind.VIEW),
            (AccessKind.VIEW, AccessKind.DELETE),
        ],
    )
    def test_kinds_do_not_imply_each_other(self, granted, requested) -> None:
        entries = [_entry(access_kind=int(granted))]
        decision = evaluate(_item(), _vault(), REQUESTER, requested, T - 1, vault_entries=entries)
        assert not decision.allowed

    def test_other_address_does_not_match(self) -> None:
        entries = [_entry(address="0xsomeone-else")]
        decision = evaluate(_item(), _vault(), REQUESTER, AccessKind.VIEW, 0, vault_entries=entries)
        assert not decision.allowed

    def test_vault_entry_basis_and_expiry(self) -> None:
        decision = evaluate(
            _item(), _vault(), REQUESTER, AccessKind.VIEW, 0, vault_entries=[_entry()]
        )
        assert decision.basis == DecisionBasis.VAULT_ENTRY
        assert decision.expires_at == T

    def test_item_entry(self) -> None:
        entry = _entry(vault_id=None, item_id="0xitem")
        decision = evaluate(_item(), _vault(), REQUESTER, AccessKind.VIEW, 0, item_entries=[entry])
        assert decision.allowed
        assert decision.basis == DecisionBasis.ITEM_ENTRY

    def test_malformed_entries_are_skipped(self) -> None:
        malformed = [
            _entry(1, access_kind=9),
            _entry(2, expires_at="later"),
            _entry(3, expires_at=True),
            _entry(4, vault_id="0xother-vault"),
        ]
        denied = evaluate(
            _item(), _vault(), REQUESTER, AccessKind.VIEW, 0, vault_entries=malformed
        )
        assert not denied.allowed

        allowed = evaluate(
            _item(), _vault(), REQUESTER, AccessKind.VIEW, 0, vault_entries=[*malformed, _entry(5)]
        )
        assert allowed.allowed

    def test_item_entry_for_another_item_skipped(self) -> None:
        entry = _entry(vault_id=None, item_id="0xother-item")
        decision = evaluate(_item(), _vault(), REQUESTER, AccessKind.VIEW, 0, item_entries=[entry])
        assert not decision.allowed

    def test_missing_vault_is_dangling(self) -> None:
        with pytest.raises(DanglingReferenceError):
            evaluate(_item(), None, OWNER, AccessKind.VIEW, 0)

    def test_unlisted_item_is_dangling(self) -> None:
        with pytest.raises(DanglingReferenceError):
            evaluate(_item(), _vault(item_ids=[]), OWNER, AccessKind.VIEW, 0)

    def test_vault_mismatch_is_dangling(self) -> None:
        with pytest.raises(DanglingReferenceError):
            evaluate(_item(vault_id="0xelsewhere"), _vault(), OWNER, AccessKind.VIEW, 0)


class TestDecisionEngine:
    async def test_owner_allowed(self, engine, stocked, owner) -> None:
        for kind in AccessKind:
            decision = await engine.decision_engine.decide(stocked.item, owner, kind)
            assert decision.allowed

    async def test_entry_expires_with_ledger_time(
        self, engine, stocked, owner, stranger, clock
    ) -> None:
        expires = clock.now_ms() + 30 * 60_000
        await engine.allow_list_service.grant_access(
            owner, stocked.cap.id, stocked.vault.id, stranger, AccessKind.VIEW, expires
        )
        decide = engine.decision_engine.decide_by_id
        assert (await decide(stocked.item.id, stranger, AccessKind.VIEW)).allowed

        clock.set(expires - 1)
        assert (await decide(stocked.item.id, stranger, AccessKind.VIEW)).allowed
        clock.set(expires)
        decision = await decide(stocked.item.id, stranger, AccessKind.VIEW)
        assert decision.reason == DenyReason.NO_MATCHING_GRANT

    async def test_explicit_time_overrides_clock(
        self, engine, stocked, owner, stranger, clock
    ) -> None:
        expires = clock.now_ms() + 1000
        await engine.allow_list_service.grant_access(
            owner, stocked.cap.id, stocked.vault.id, stranger, AccessKind.VIEW, expires
        )
        decision = await engine.decision_engine.decide(
            stocked.item, stranger, AccessKind.VIEW, now=expires
        )
        assert not decision.allowed

    async def test_decisions_are_counted(self, engine, stocked, owner, stranger) -> None:
        await engine.decision_engine.decide(stocked.item, owner, AccessKind.VIEW)
        await engine.decision_engine.decide(stocked.item, stranger, AccessKind.VIEW)

        registry = engine.metrics.registry
        allow = registry.get_sample_value(
            "doauth_access_decisions_total", {"outcome": "allow", "reason": ""}
        )
        deny = registry.get_sample_value(
            "doauth_access_decisions_total",
            {"outcome": "deny", "reason": "NoMatchingGrant"},
        )
        assert allow == 1.0
        assert deny == 1.0
